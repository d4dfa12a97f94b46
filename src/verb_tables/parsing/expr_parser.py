"""Parser for the column expression language."""

from __future__ import annotations

from functools import lru_cache
from typing import Any

import pandas as pd
import ply.yacc as yacc

from verb_tables.errors import ExpressionSyntaxError
from verb_tables.expr import (
    Assign,
    BinaryOp,
    Call,
    EnvRef,
    Expr,
    GroupSize,
    Index,
    Literal,
    Name,
    RowIndex,
    SubData,
    UnaryOp,
)
from verb_tables.parsing.expr_lexer import ExprLexer

_COMPARISON_OPS = {"==": "==", "!=": "!=", "<": "<", "<=": "<=", ">": ">", ">=": ">="}
_ARITHMETIC_OPS = {"+": "+", "-": "-", "*": "*", "/": "/", "//": "//", "%": "%", "**": "**", "^": "**"}


class ExprParser:
    """Parser for column expressions.

    A statement is either an expression or a top-level assignment
    ``name = expr`` / ``name := expr``, which parses to :class:`Assign`.
    """

    tokens = ExprLexer.tokens

    # Operator precedence: loosest to tightest
    precedence = (
        ("left", "OR", "PIPE"),
        ("left", "AND", "AMPERSAND"),
        ("right", "NOT", "BANG"),
        ("nonassoc", "EQ", "NEQ", "LT", "LTE", "GT", "GTE", "IN"),
        ("left", "PLUS", "MINUS"),
        ("left", "STAR", "SLASH", "DOUBLESLASH", "PERCENT"),
        ("left", "COLON"),
        ("right", "UMINUS"),
        ("right", "POWER"),
        ("left", "LBRACKET"),
    )

    def __init__(self) -> None:
        self.lexer = ExprLexer()
        self.lexer.build(errorlog=yacc.NullLogger())
        self.parser: yacc.LRParser | None = None

    def p_statement_expression(self, p: yacc.YaccProduction) -> None:
        """statement : expression"""
        p[0] = p[1]

    def p_statement_assign(self, p: yacc.YaccProduction) -> None:
        """statement : IDENTIFIER ASSIGN expression
                     | IDENTIFIER WALRUS expression"""
        p[0] = Assign(name=p[1], value=p[3])

    def p_expression_logical(self, p: yacc.YaccProduction) -> None:
        """expression : expression OR expression
                      | expression PIPE expression
                      | expression AND expression
                      | expression AMPERSAND expression"""
        op = "|" if p.slice[2].type in ("OR", "PIPE") else "&"
        p[0] = BinaryOp(op, p[1], p[3])

    def p_expression_not(self, p: yacc.YaccProduction) -> None:
        """expression : NOT expression
                      | BANG expression"""
        p[0] = UnaryOp("!", p[2])

    def p_expression_comparison(self, p: yacc.YaccProduction) -> None:
        """expression : expression EQ expression
                      | expression NEQ expression
                      | expression LT expression
                      | expression LTE expression
                      | expression GT expression
                      | expression GTE expression"""
        p[0] = BinaryOp(_COMPARISON_OPS[p[2]], p[1], p[3])

    def p_expression_in(self, p: yacc.YaccProduction) -> None:
        """expression : expression IN expression"""
        p[0] = BinaryOp("in", p[1], p[3])

    def p_expression_arithmetic(self, p: yacc.YaccProduction) -> None:
        """expression : expression PLUS expression
                      | expression MINUS expression
                      | expression STAR expression
                      | expression SLASH expression
                      | expression DOUBLESLASH expression
                      | expression PERCENT expression
                      | expression POWER expression"""
        p[0] = BinaryOp(_ARITHMETIC_OPS[p[2]], p[1], p[3])

    def p_expression_range(self, p: yacc.YaccProduction) -> None:
        """expression : expression COLON expression"""
        p[0] = BinaryOp(":", p[1], p[3])

    def p_expression_unary(self, p: yacc.YaccProduction) -> None:
        """expression : MINUS expression %prec UMINUS
                      | PLUS expression %prec UMINUS"""
        p[0] = UnaryOp(p[1], p[2])

    def p_expression_index(self, p: yacc.YaccProduction) -> None:
        """expression : expression LBRACKET expression RBRACKET"""
        p[0] = Index(target=p[1], index=p[3])

    def p_expression_call(self, p: yacc.YaccProduction) -> None:
        """expression : IDENTIFIER LPAREN argument_list RPAREN"""
        args, kwargs = p[3]
        p[0] = Call(func=p[1], args=tuple(args), kwargs=tuple(kwargs))

    def p_expression_paren(self, p: yacc.YaccProduction) -> None:
        """expression : LPAREN expression RPAREN"""
        p[0] = p[2]

    def p_expression_name(self, p: yacc.YaccProduction) -> None:
        """expression : IDENTIFIER"""
        p[0] = Name(p[1])

    def p_expression_env_name(self, p: yacc.YaccProduction) -> None:
        """expression : ENV_IDENTIFIER"""
        p[0] = EnvRef(p[1])

    def p_expression_special(self, p: yacc.YaccProduction) -> None:
        """expression : ROW_INDEX
                      | GROUP_SIZE
                      | SUBDATA"""
        kind = p.slice[1].type
        if kind == "ROW_INDEX":
            p[0] = RowIndex()
        elif kind == "GROUP_SIZE":
            p[0] = GroupSize()
        else:
            p[0] = SubData()

    def p_expression_literal(self, p: yacc.YaccProduction) -> None:
        """expression : INTEGER
                      | FLOAT
                      | STRING"""
        p[0] = Literal(p[1])

    def p_expression_constant(self, p: yacc.YaccProduction) -> None:
        """expression : TRUE
                      | FALSE
                      | NA
                      | NULL"""
        constants: dict[str, Any] = {"TRUE": True, "FALSE": False, "NA": pd.NA, "NULL": None}
        p[0] = Literal(constants[p.slice[1].type])

    def p_argument_list_empty(self, p: yacc.YaccProduction) -> None:
        """argument_list : """
        p[0] = ([], [])

    def p_argument_list(self, p: yacc.YaccProduction) -> None:
        """argument_list : arguments"""
        p[0] = p[1]

    def p_arguments_single(self, p: yacc.YaccProduction) -> None:
        """arguments : argument"""
        p[0] = self._add_argument(([], []), p[1], p.lexpos(1))

    def p_arguments_multiple(self, p: yacc.YaccProduction) -> None:
        """arguments : arguments COMMA argument"""
        p[0] = self._add_argument(p[1], p[3], p.lexpos(2))

    def p_argument_positional(self, p: yacc.YaccProduction) -> None:
        """argument : expression"""
        p[0] = (None, p[1])

    def p_argument_keyword(self, p: yacc.YaccProduction) -> None:
        """argument : IDENTIFIER ASSIGN expression"""
        p[0] = (p[1], p[3])

    @staticmethod
    def _add_argument(
        acc: tuple[list[Expr], list[tuple[str, Expr]]],
        argument: tuple[str | None, Expr],
        position: int,
    ) -> tuple[list[Expr], list[tuple[str, Expr]]]:
        args, kwargs = acc
        key, value = argument
        if key is None:
            if kwargs:
                raise ExpressionSyntaxError("Positional argument follows keyword argument", position)
            return args + [value], kwargs
        if any(existing == key for existing, _ in kwargs):
            raise ExpressionSyntaxError(f"Keyword argument '{key}' repeated", position)
        return args, kwargs + [(key, value)]

    def p_error(self, p: yacc.YaccProduction) -> None:
        if p:
            raise ExpressionSyntaxError(f"Syntax error at '{p.value}'", p.lexpos)
        raise ExpressionSyntaxError("Syntax error at end of input")

    def build(self, **kwargs: Any) -> None:
        """Build the parser tables (kept in memory; nothing is written to disk)."""
        kwargs.setdefault("debug", False)
        kwargs.setdefault("write_tables", False)
        kwargs.setdefault("errorlog", yacc.NullLogger())
        kwargs.setdefault("tabmodule", "verb_tables.parsing._exprparsetab")
        self.parser = yacc.yacc(module=self, start="statement", **kwargs)

    def parse(self, data: str) -> Expr:
        """Parse an expression string."""
        if self.parser is None:
            self.build()
        if not data.strip():
            raise ExpressionSyntaxError("Empty expression")
        return self.parser.parse(data, lexer=self.lexer.lexer)


_parser: ExprParser | None = None


@lru_cache(maxsize=1024)
def parse_expression(text: str) -> Expr:
    """Parse expression text with a shared parser; results are cached by text."""
    global _parser
    if _parser is None:
        _parser = ExprParser()
    return _parser.parse(text)
