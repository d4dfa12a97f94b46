"""Tests for process-wide options."""

import pytest

from verb_tables.config import get_option, option_context, options, set_option


class TestOptions:
    """Tests for reading and changing options."""

    def test_defaults(self):
        """Test the default values."""
        assert get_option("copy_on_wrap") is True
        assert get_option("na_last") is True

    def test_set_option(self):
        """Test changing an option."""
        set_option("na_last", False)
        try:
            assert options.na_last is False
        finally:
            set_option("na_last", True)

    def test_unknown_option(self):
        """Test that unknown names raise."""
        with pytest.raises(KeyError):
            get_option("nope")
        with pytest.raises(KeyError):
            set_option("nope", 1)

    def test_option_context_restores(self):
        """Test that overrides are undone on exit."""
        with option_context(copy_on_wrap=False) as current:
            assert current.copy_on_wrap is False

        assert get_option("copy_on_wrap") is True

    def test_option_context_restores_after_error(self):
        """Test that overrides are undone when the block raises."""
        with pytest.raises(RuntimeError):
            with option_context(na_last=False):
                raise RuntimeError("boom")

        assert get_option("na_last") is True

    def test_option_context_unknown(self):
        """Test that an unknown override raises before anything changes."""
        with pytest.raises(KeyError):
            with option_context(na_last=False, nope=1):
                pass

        assert get_option("na_last") is True
