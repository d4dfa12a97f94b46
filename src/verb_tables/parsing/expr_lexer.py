"""Lexer for the column expression language."""

import ply.lex as lex

from verb_tables.errors import ExpressionSyntaxError


class ExprLexer:
    """Lexer for tokenizing column expressions."""

    # Reserved words, matched case-insensitively, literals included
    reserved = {
        "and": "AND",
        "or": "OR",
        "not": "NOT",
        "in": "IN",
        "true": "TRUE",
        "false": "FALSE",
        "na": "NA",
        "none": "NULL",
        "null": "NULL",
    }

    tokens = [
        "IDENTIFIER",
        "ENV_IDENTIFIER",
        "ROW_INDEX",
        "GROUP_SIZE",
        "SUBDATA",
        "INTEGER",
        "FLOAT",
        "STRING",
        "WALRUS",
        "ASSIGN",
        "EQ",
        "NEQ",
        "LT",
        "LTE",
        "GT",
        "GTE",
        "PLUS",
        "MINUS",
        "STAR",
        "SLASH",
        "DOUBLESLASH",
        "PERCENT",
        "POWER",
        "AMPERSAND",
        "PIPE",
        "BANG",
        "COLON",
        "COMMA",
        "LPAREN",
        "RPAREN",
        "LBRACKET",
        "RBRACKET",
    ] + sorted(set(reserved.values()))

    # PLY sorts string-defined tokens longest-first
    t_WALRUS = r":="
    t_EQ = r"=="
    t_NEQ = r"!="
    t_LTE = r"<="
    t_GTE = r">="
    t_LT = r"<"
    t_GT = r">"
    t_ASSIGN = r"="
    t_PLUS = r"\+"
    t_MINUS = r"-"
    t_DOUBLESLASH = r"//"
    t_SLASH = r"/"
    t_PERCENT = r"%"
    t_AMPERSAND = r"&&?"
    t_PIPE = r"\|\|?"
    t_BANG = r"!"
    t_COLON = r":"
    t_COMMA = r","
    t_LPAREN = r"\("
    t_RPAREN = r"\)"
    t_LBRACKET = r"\["
    t_RBRACKET = r"\]"

    t_ignore = " \t\r\n"

    def __init__(self) -> None:
        self.lexer: lex.Lexer = None  # type: ignore

    def t_POWER(self, t: lex.LexToken) -> lex.LexToken:
        r"\*\*|\^"
        return t

    def t_STAR(self, t: lex.LexToken) -> lex.LexToken:
        r"\*"
        return t

    def t_ROW_INDEX(self, t: lex.LexToken) -> lex.LexToken:
        r"\.I\b"
        return t

    def t_GROUP_SIZE(self, t: lex.LexToken) -> lex.LexToken:
        r"\.N\b"
        return t

    def t_SUBDATA(self, t: lex.LexToken) -> lex.LexToken:
        r"\.SD\b"
        return t

    def t_FLOAT(self, t: lex.LexToken) -> lex.LexToken:
        r"(\d+\.\d*|\.\d+)([eE][+-]?\d+)?|\d+[eE][+-]?\d+"
        t.value = float(t.value)
        return t

    def t_INTEGER(self, t: lex.LexToken) -> lex.LexToken:
        r"\d+"
        t.value = int(t.value)
        return t

    def t_STRING(self, t: lex.LexToken) -> lex.LexToken:
        r'"([^"\\]|\\.)*"|\'([^\'\\]|\\.)*\''
        t.value = t.value[1:-1].encode("latin-1", "backslashreplace").decode("unicode_escape")
        return t

    def t_ENV_IDENTIFIER(self, t: lex.LexToken) -> lex.LexToken:
        r"@([a-zA-Z_][a-zA-Z0-9_]*|`[^`]+`)"
        t.value = t.value[1:].strip("`")
        return t

    def t_BACKTICK_IDENTIFIER(self, t: lex.LexToken) -> lex.LexToken:
        r"`[^`]+`"
        # Backticks always produce IDENTIFIER, bypassing keyword lookup
        t.value = t.value[1:-1]
        t.type = "IDENTIFIER"
        return t

    def t_IDENTIFIER(self, t: lex.LexToken) -> lex.LexToken:
        r"[a-zA-Z_][a-zA-Z0-9_.]*"
        t.type = self.reserved.get(t.value.lower(), "IDENTIFIER")
        return t

    def t_error(self, t: lex.LexToken) -> None:
        raise ExpressionSyntaxError(f"Illegal character '{t.value[0]}'", t.lexpos)

    # --- Lexer methods ---

    def build(self, **kwargs) -> None:  # type: ignore
        """Build the lexer."""
        self.lexer = lex.lex(module=self, **kwargs)

    def input(self, data: str) -> None:
        self.lexer.input(data)

    def token(self) -> lex.LexToken | None:
        return self.lexer.token()

    def tokenize(self, data: str) -> list[lex.LexToken]:
        """Tokenize the input and return all tokens."""
        self.input(data)
        tokens = []
        while True:
            tok = self.token()
            if tok is None:
                break
            tokens.append(tok)
        return tokens
