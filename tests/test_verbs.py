"""Tests for the table verbs."""

import pandas as pd
import pytest

from verb_tables import (
    GroupedDt,
    GroupSpec,
    TblDt,
    arrange,
    filter,
    group_by,
    grouped_dt,
    mutate,
    rename,
    select,
    slice,
    summarise,
    summarize,
    tbl_dt,
)
from verb_tables.errors import ColumnNotFoundError, GroupingError, ShapeError


@pytest.fixture
def df():
    """Two interleaved groups."""
    return pd.DataFrame({"g": ["a", "a", "b", "b", "a"], "x": [1, 5, 3, 4, 2]})


@pytest.fixture
def grouped(df):
    """The same table grouped by g."""
    return grouped_dt(df, ["g"])


@pytest.fixture
def sliced():
    """Rows 5..7 of a larger table, still labelled 5..7."""
    return pd.DataFrame({"v": range(10)}).iloc[5:8]


class TestScenarios:
    """End-to-end pipelines."""

    def test_grouped_summary(self):
        """Test grouping then summarising to one row per group."""
        table = tbl_dt(pd.DataFrame({"k": [1, 1, 2, 2], "v": [10, 20, 30, 40]}))

        result = summarise(group_by(table, "k"), total="sum(v)")

        assert type(result) is TblDt
        assert list(result.columns) == ["k", "total"]
        assert result.frame["k"].tolist() == [1, 2]
        assert result.frame["total"].tolist() == [30, 70]

    def test_mutate_new_column(self):
        """Test adding a derived column."""
        result = mutate(tbl_dt({"v": [1, 2, 3]}), w="v * 2")

        assert result.frame["w"].tolist() == [2, 4, 6]

    def test_method_chain(self):
        """Test chaining verbs as methods with a local variable."""
        limit = 15
        table = tbl_dt(pd.DataFrame({"k": [1, 1, 2, 2], "v": [10, 20, 30, 40]}))

        result = table.filter("v > limit").group_by("k").summarise(n="n()", top="max(v)")

        assert result.frame.to_dict("list") == {"k": [1, 2], "n": [1, 2], "top": [20, 40]}


class TestWrapperKinds:
    """Tests that verbs answer with the kind of table they were given."""

    def test_plain_frame_in_plain_frame_out(self, df):
        """Test a plain DataFrame round trip."""
        assert isinstance(filter(df, "x > 1"), pd.DataFrame)

    def test_wrapped_in_wrapped_out(self, df):
        """Test a TblDt round trip."""
        result = filter(tbl_dt(df), "x > 1")

        assert type(result) is TblDt

    def test_grouped_in_grouped_out(self, grouped):
        """Test that grouping survives row and column verbs."""
        for result in (filter(grouped, "x > 1"), arrange(grouped, "x"), mutate(grouped, y="x")):
            assert isinstance(result, GroupedDt)
            assert result.groups == GroupSpec(("g",))

    def test_sliced_frame_filter(self, sliced):
        """Test a predicate mixing a column and a computed vector on a sliced frame."""
        assert filter(sliced, "v > lag(v)")["v"].tolist() == [6, 7]

    def test_sliced_frame_mutate(self, sliced):
        """Test that a computed column lines up with the rows of a sliced frame."""
        result = mutate(sliced, d="v - lag(v)")

        assert result["v"].tolist() == [5, 6, 7]
        assert pd.isna(result["d"].iloc[0])
        assert result["d"].tolist()[1:] == [1, 1]

    def test_sliced_frame_summarise(self, sliced):
        """Test aggregating a sliced frame."""
        result = summarise(sliced, total="sum(v)", step="max(v - lag(v), na_rm = TRUE)")

        assert result.to_dict("list") == {"total": [18], "step": [1]}

    def test_sliced_frame_slice(self, sliced):
        """Test that positions count from the first row of a sliced frame."""
        assert slice(sliced, 0, "-1")["v"].tolist() == [5, 7]

    def test_unsupported_input(self):
        """Test that other values are rejected."""
        with pytest.raises(TypeError):
            filter([1, 2, 3], "x > 1")


class TestFilter:
    """Tests for filter."""

    def test_conditions_combine(self, df):
        """Test that several predicates must all hold."""
        result = filter(df, "x > 1", "g == 'a'")

        assert result["x"].tolist() == [5, 2]

    def test_no_conditions(self, df):
        """Test that no predicates keep every row."""
        assert filter(df)["x"].tolist() == [1, 5, 3, 4, 2]

    def test_composes(self, df):
        """Test that successive filters equal one combined filter."""
        stepwise = filter(filter(df, "x > 1"), "x < 5")
        combined = filter(df, "x > 1 & x < 5")

        pd.testing.assert_frame_equal(stepwise, combined)

    def test_missing_condition_drops_row(self):
        """Test that a row whose predicate is missing is dropped."""
        frame = pd.DataFrame({"x": pd.array([1, None, 3], dtype="Int64")})

        assert filter(frame, "x > 0")["x"].tolist() == [1, 3]

    def test_local_variable(self, df):
        """Test that free names resolve in the calling scope."""
        threshold = 3

        assert filter(df, "x > threshold")["x"].tolist() == [5, 4]
        assert filter(df, "x > @threshold")["x"].tolist() == [5, 4]

    def test_column_shadows_local(self, df):
        """Test that a column wins over a local of the same name."""
        x = 100

        assert filter(df, "x > 2")["x"].tolist() == [5, 3, 4]
        assert x == 100

    def test_explicit_env(self, df):
        """Test passing the environment explicitly."""
        assert filter(df, "x > cutoff", _env={"cutoff": 4})["x"].tolist() == [5]

    def test_grouped(self, grouped):
        """Test a per-group aggregate inside a predicate."""
        result = filter(grouped, "x == max(x)")

        assert result.frame.to_dict("list") == {"g": ["a", "b"], "x": [5, 4]}

    def test_named_argument_rejected(self, df):
        """Test that a named argument is reported as a likely '==' typo."""
        with pytest.raises(ValueError, match="=="):
            filter(df, x=1)
        with pytest.raises(ValueError):
            filter(df, "x = 1")

    def test_input_unchanged(self, df):
        """Test that the input table is not modified."""
        filter(df, "x > 1")

        assert len(df) == 5


class TestSelectRename:
    """Tests for select and rename."""

    def test_select(self, df):
        """Test selecting columns."""
        assert list(select(df, "x").columns) == ["x"]

    def test_select_keeps_grouping_columns(self, grouped):
        """Test that grouping columns are always kept."""
        assert list(select(grouped, "x").columns) == ["g", "x"]
        assert list(select(grouped, "-g").columns) == ["g", "x"]

    def test_select_renames_grouping_column(self, grouped):
        """Test that renaming a grouping column renames the grouping."""
        result = select(grouped, G="g", y="x")

        assert list(result.columns) == ["G", "y"]
        assert result.groups == GroupSpec(("G",))

    def test_select_cannot_reuse_grouping_name(self, grouped):
        """Test that another column cannot take over a grouping column's name."""
        with pytest.raises(ValueError, match="'g'"):
            select(grouped, g="x")

    def test_select_unknown(self, df):
        """Test that an unknown column raises."""
        with pytest.raises(ColumnNotFoundError):
            select(df, "nope")

    def test_rename(self, grouped):
        """Test renaming keeps positions and follows the grouping."""
        result = rename(grouped, G="g")

        assert list(result.columns) == ["G", "x"]
        assert result.groups == GroupSpec(("G",))
        assert result.frame["x"].tolist() == [1, 5, 3, 4, 2]


class TestMutate:
    """Tests for mutate."""

    def test_later_sees_earlier(self):
        """Test that expressions are evaluated in order."""
        result = mutate(pd.DataFrame({"x": [1, 2]}), a="x + 1", b="a * 2")

        assert result["a"].tolist() == [2, 3]
        assert result["b"].tolist() == [4, 6]

    def test_assignment_strings(self):
        """Test 'name = expr' positional arguments."""
        result = mutate(pd.DataFrame({"x": [1, 2]}), "y = x * 3")

        assert result["y"].tolist() == [3, 6]

    def test_unnamed_uses_text(self):
        """Test that an unnamed expression is named after its text."""
        result = mutate(pd.DataFrame({"x": [1, 2]}), "x+1")

        assert "x + 1" in result.columns

    def test_replace_column(self):
        """Test overwriting an existing column."""
        result = mutate(pd.DataFrame({"x": [1, 2]}), x="x * 10")

        assert result["x"].tolist() == [10, 20]

    def test_input_unchanged(self, df):
        """Test that the input table is not modified."""
        mutate(df, y="x")

        assert "y" not in df.columns

    def test_grouped(self, grouped):
        """Test that aggregates are computed per group."""
        result = mutate(grouped, share="x / sum(x)", size="n()")

        assert result.frame["size"].tolist() == [3, 3, 2, 2, 3]
        assert result.frame["share"].tolist() == pytest.approx([1 / 8, 5 / 8, 3 / 7, 4 / 7, 2 / 8])

    def test_grouping_column_rejected(self, grouped):
        """Test that a grouping column cannot be modified."""
        with pytest.raises(GroupingError):
            mutate(grouped, g="'z'")

    def test_wrong_length(self, df):
        """Test that a value of the wrong length raises."""
        with pytest.raises(ShapeError):
            mutate(df, y="c(1, 2)")


class TestArrange:
    """Tests for arrange."""

    def test_ascending(self, df):
        """Test sorting by one key."""
        assert arrange(df, "x")["x"].tolist() == [1, 2, 3, 4, 5]

    def test_descending(self, df):
        """Test sorting with desc()."""
        assert arrange(df, "desc(x)")["x"].tolist() == [5, 4, 3, 2, 1]

    def test_several_keys(self, df):
        """Test that later keys break ties."""
        result = arrange(df, "g", "desc(x)")

        assert result.to_dict("list") == {"g": ["a", "a", "a", "b", "b"], "x": [5, 2, 1, 4, 3]}

    def test_grouped_sorts_by_groups_first(self):
        """Test that grouped rows sort by group, stably within ties."""
        frame = pd.DataFrame({"g": ["b", "a", "b", "a"], "x": [1, 1, 0, 1], "id": [0, 1, 2, 3]})

        result = arrange(grouped_dt(frame, ["g"]), "x")

        assert result.frame["id"].tolist() == [1, 3, 2, 0]

    def test_no_keys(self, df):
        """Test that no keys leave the order alone."""
        assert arrange(df)["x"].tolist() == [1, 5, 3, 4, 2]

    def test_named_argument_rejected(self, df):
        """Test that sort keys cannot be named."""
        with pytest.raises(ValueError):
            arrange(df, key="x")


class TestSlice:
    """Tests for slice."""

    def test_positions(self, df):
        """Test selecting rows by 0-based position."""
        assert slice(df, "0:1")["x"].tolist() == [1, 5]
        assert slice(df, 0, 2)["x"].tolist() == [1, 3]

    def test_negative(self, df):
        """Test counting from the end."""
        assert slice(df, "-1")["x"].tolist() == [2]

    def test_out_of_range_ignored(self, df):
        """Test that positions past the end select nothing."""
        result = slice(df, 10)

        assert len(result) == 0
        assert list(result.columns) == ["g", "x"]

    def test_grouped(self, grouped):
        """Test slicing within each group."""
        first = slice(grouped, 0)
        last = slice(grouped, "-1")

        assert first.frame.to_dict("list") == {"g": ["a", "b"], "x": [1, 3]}
        assert last.frame.to_dict("list") == {"g": ["a", "b"], "x": [2, 4]}
        assert first.groups == GroupSpec(("g",))

    def test_group_size(self, grouped):
        """Test that n() refers to each group's size."""
        assert slice(grouped, "n() - 1").frame["x"].tolist() == [2, 4]


class TestSummarise:
    """Tests for summarise."""

    def test_ungrouped(self, df):
        """Test one row for the whole table."""
        result = summarise(df, total="sum(x)", rows="n()")

        assert result.to_dict("list") == {"total": [15], "rows": [5]}

    def test_auto_name(self, df):
        """Test that unnamed results are named after their text."""
        assert list(summarise(df, "sum(x)").columns) == ["sum(x)"]

    def test_alias(self, df):
        """Test the American spelling."""
        assert summarize is summarise
        assert summarize(df, m="max(x)")["m"].tolist() == [5]

    def test_groups_in_first_appearance_order(self):
        """Test that result rows follow the order groups first appear."""
        frame = pd.DataFrame({"g": ["z", "a", "z"], "x": [1, 2, 3]})

        result = summarise(group_by(frame, "g"), s="sum(x)")

        assert result.frame.to_dict("list") == {"g": ["z", "a"], "s": [4, 2]}

    def test_rolls_up_one_level(self):
        """Test that each summarise removes the innermost grouping."""
        frame = pd.DataFrame(
            {"g1": ["a", "a", "b", "b"], "g2": ["x", "y", "x", "x"], "v": [1, 2, 3, 4]}
        )

        once = summarise(group_by(frame, "g1", "g2"), s="sum(v)")
        twice = summarise(once, s2="sum(s)")
        thrice = summarise(twice, total="sum(s2)")

        assert once.groups == GroupSpec(("g1",))
        assert once.frame.to_dict("list") == {"g1": ["a", "a", "b"], "g2": ["x", "y", "x"], "s": [1, 2, 7]}
        assert type(twice) is TblDt
        assert twice.frame.to_dict("list") == {"g1": ["a", "b"], "s2": [3, 7]}
        assert thrice.frame.to_dict("list") == {"total": [10]}

    def test_non_scalar_rejected(self, df):
        """Test that each expression must give one value per group."""
        with pytest.raises(ShapeError):
            summarise(df, values="x")

    def test_each_group_needs_one_row(self):
        """Test that an empty group and a two-row group are both rejected."""
        table = grouped_dt(pd.DataFrame({"k": [1, 1, 2, 2], "v": [10, 20, 30, 40]}), ["k"])

        with pytest.raises(ShapeError, match="one row per group, got 0 for group k = 1"):
            summarise(table, x="v[v > 25]")

    def test_grouping_column_rejected(self, grouped):
        """Test that a result may not overwrite a grouping column."""
        with pytest.raises(GroupingError):
            summarise(grouped, g="n()")

    def test_no_expressions(self, grouped):
        """Test that summarising nothing gives the distinct groups."""
        result = summarise(grouped)

        assert result.frame.to_dict("list") == {"g": ["a", "b"]}


class TestGroupBy:
    """Tests for group_by."""

    def test_group_by_names(self, df):
        """Test grouping a plain frame."""
        result = group_by(df, "g")

        assert isinstance(result, GroupedDt)
        assert result.groups == GroupSpec(("g",))

    def test_plain_frame_copied(self, df):
        """Test that the grouped table does not share the input frame."""
        result = group_by(df, "g")
        df.loc[0, "x"] = 99

        assert result.frame.loc[0, "x"] == 1

    def test_replaces_grouping(self, grouped):
        """Test that a new grouping replaces the old one."""
        assert group_by(grouped, "x").groups == GroupSpec(("x",))

    def test_add(self, grouped):
        """Test extending the current grouping."""
        assert group_by(grouped, "x", add=True).groups == GroupSpec(("g", "x"))

    def test_computed_key(self, df):
        """Test grouping by a derived column."""
        result = group_by(df, parity="x % 2")

        assert result.groups == GroupSpec(("parity",))
        assert result.frame["parity"].tolist() == [1, 1, 1, 0, 0]

    def test_unknown_column(self, df):
        """Test that grouping columns must exist."""
        with pytest.raises(ColumnNotFoundError):
            group_by(df, "nope")

    def test_no_keys_ungroups(self, grouped):
        """Test that grouping by nothing gives an ungrouped table."""
        assert type(group_by(grouped)) is TblDt
