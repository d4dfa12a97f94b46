"""Example usage of the verb_tables library."""

import logging

import pandas as pd

from verb_tables import filter, group_by, mutate, summarise, tbl_dt

# Show the engine calls each verb compiles to
logging.basicConfig(level=logging.DEBUG, format="%(name)s: %(message)s")

flights = pd.DataFrame(
    {
        "carrier": ["AA", "UA", "AA", "DL", "UA", "AA", "DL", "UA"],
        "month": [1, 1, 2, 2, 2, 3, 3, 3],
        "dep_delay": [5, 12, -3, 40, 0, 18, 7, None],
        "distance": [1200, 800, 1200, 950, 800, 400, 950, 1600],
    }
)

# Verbs as functions
table = tbl_dt(flights)
late = filter(table, "dep_delay > 0")
print(late)

# Verbs as methods; free names resolve against columns first, then locals
min_distance = 500
summary = (
    table.filter("distance >= min_distance")
    .group_by("carrier", "month")
    .summarise(flights="n()", mean_delay="mean(dep_delay, na_rm = TRUE)")
)
print(summary)

# summarise removes one grouping level; summarising again rolls up further
print(summary.summarise(months="n()", worst="max(mean_delay)"))

# Grouped mutate sees per-group aggregates
ranked = mutate(group_by(flights, "carrier"), share="distance / sum(distance)")
print(ranked)

# Plain DataFrames in, plain DataFrames out
print(summarise(flights, total_distance="sum(distance)"))
