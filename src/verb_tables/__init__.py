"""verb_tables - table verbs compiled to pandas engine calls."""

import logging

from verb_tables.bridge import EngineCall, dt_subset
from verb_tables.config import Options, get_option, option_context, options, set_option
from verb_tables.dots import DeferredExpression, Dots, caller_env, common_env, lazy_dots, make_call
from verb_tables.errors import (
    ColumnNotFoundError,
    ExpressionSyntaxError,
    GroupingError,
    ShapeError,
    UndefinedNameError,
    VerbTablesError,
)
from verb_tables.expr import and_expr, deparse
from verb_tables.functions import FUNCTIONS, register
from verb_tables.parsing import parse_expression
from verb_tables.tables import (
    GroupedDt,
    GroupSpec,
    TblDt,
    as_frame,
    auto_copy,
    group_vars,
    grouped_dt,
    groups,
    head,
    is_grouped_dt,
    same_src,
    tail,
    tbl_dt,
    tbl_vars,
    ungroup,
)
from verb_tables.verbs import arrange, filter, group_by, mutate, rename, select, slice, summarise, summarize

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    # Tables
    "TblDt",
    "GroupedDt",
    "GroupSpec",
    "tbl_dt",
    "grouped_dt",
    "is_grouped_dt",
    "groups",
    "group_vars",
    "tbl_vars",
    "ungroup",
    "same_src",
    "auto_copy",
    "as_frame",
    "head",
    "tail",
    # Verbs
    "filter",
    "select",
    "rename",
    "mutate",
    "arrange",
    "slice",
    "summarise",
    "summarize",
    "group_by",
    # Expressions
    "DeferredExpression",
    "Dots",
    "caller_env",
    "common_env",
    "lazy_dots",
    "make_call",
    "and_expr",
    "deparse",
    "parse_expression",
    "EngineCall",
    "dt_subset",
    "FUNCTIONS",
    "register",
    # Configuration
    "Options",
    "options",
    "get_option",
    "set_option",
    "option_context",
    # Errors
    "VerbTablesError",
    "ExpressionSyntaxError",
    "ColumnNotFoundError",
    "UndefinedNameError",
    "ShapeError",
    "GroupingError",
]

__version__ = "0.1.0"
