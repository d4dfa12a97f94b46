"""Parsing module for the column expression language."""

from verb_tables.parsing.expr_lexer import ExprLexer
from verb_tables.parsing.expr_parser import ExprParser, parse_expression

__all__ = [
    "ExprLexer",
    "ExprParser",
    "parse_expression",
]
