"""Tokenizer for the calculated-field expression grammar.

The grammar is a small SQL scalar-expression subset: column identifiers
(bare or double-quoted), numeric/string/boolean literals, arithmetic,
comparison and boolean operators, CASE, and calls to allow-listed functions.

Forbidden-construct scanning runs on the raw text, not on tokens, so that a
data-definition keyword or statement separator hidden inside a string
literal is still rejected. The expression is later embedded verbatim into
larger queries, so no position is considered safe.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum

MAX_EXPRESSION_LENGTH = 4000


class TokenType(str, Enum):
    NUMBER = "number"
    STRING = "string"
    IDENTIFIER = "identifier"
    QUOTED_IDENTIFIER = "quoted_identifier"
    KEYWORD = "keyword"
    OPERATOR = "operator"
    LPAREN = "lparen"
    RPAREN = "rparen"
    COMMA = "comma"
    EOF = "eof"


KEYWORDS = frozenset(
    {
        "AND",
        "OR",
        "NOT",
        "IS",
        "NULL",
        "TRUE",
        "FALSE",
        "CASE",
        "WHEN",
        "THEN",
        "ELSE",
        "END",
        "IN",
        "BETWEEN",
    }
)

# Data-definition, data-manipulation and privilege statements, plus engine
# statements that read or write outside the probed relation.
FORBIDDEN_KEYWORDS = frozenset(
    {
        "CREATE",
        "ALTER",
        "DROP",
        "INSERT",
        "UPDATE",
        "DELETE",
        "MERGE",
        "UPSERT",
        "TRUNCATE",
        "GRANT",
        "REVOKE",
        "ATTACH",
        "DETACH",
        "COPY",
        "EXPORT",
        "IMPORT",
        "INSTALL",
        "LOAD",
        "PRAGMA",
        "CALL",
        "EXECUTE",
        "EXEC",
        "SELECT",
        "FROM",
        "INTO",
        "UNION",
        "SET",
        "RESET",
        "CHECKPOINT",
        "VACUUM",
        "COMMIT",
        "ROLLBACK",
        "BEGIN",
    }
)

# Statement separators and comment openers hide or terminate statements
FORBIDDEN_SEQUENCES = (";", "--", "/*", "*/")

_FORBIDDEN_WORD = re.compile(
    r"\b(" + "|".join(sorted(FORBIDDEN_KEYWORDS)) + r")\b",
    re.IGNORECASE,
)

_OPERATORS = ("||", "<=", ">=", "<>", "!=", "=", "<", ">", "+", "-", "*", "/", "%")

_NUMBER = re.compile(r"(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?")
_IDENTIFIER = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")


@dataclass(frozen=True)
class Token:
    type: TokenType
    value: str
    position: int

    def is_keyword(self, *names: str) -> bool:
        return self.type == TokenType.KEYWORD and self.value in names

    def is_operator(self, *ops: str) -> bool:
        return self.type == TokenType.OPERATOR and self.value in ops


class ExpressionSyntaxError(Exception):
    """Raised when text does not conform to the expression grammar."""

    def __init__(self, message: str, position: int | None = None):
        super().__init__(message)
        self.message = message
        self.position = position


@dataclass(frozen=True)
class ForbiddenMatch:
    text: str
    position: int


def find_forbidden_constructs(text: str) -> list[ForbiddenMatch]:
    """Find every forbidden keyword or sequence anywhere in the raw text.

    Matches inside string literals and quoted identifiers are included.
    Results are ordered by position.
    """
    matches = [ForbiddenMatch(m.group(0), m.start()) for m in _FORBIDDEN_WORD.finditer(text)]
    for sequence in FORBIDDEN_SEQUENCES:
        start = text.find(sequence)
        while start != -1:
            matches.append(ForbiddenMatch(sequence, start))
            start = text.find(sequence, start + 1)
    return sorted(matches, key=lambda m: m.position)


def tokenize(text: str) -> list[Token]:
    """Split an expression into tokens.

    Raises:
        ExpressionSyntaxError: On characters outside the grammar or
            unterminated literals
    """
    if len(text) > MAX_EXPRESSION_LENGTH:
        raise ExpressionSyntaxError(
            f"expression is longer than {MAX_EXPRESSION_LENGTH} characters", 0
        )

    tokens: list[Token] = []
    i = 0
    length = len(text)

    while i < length:
        ch = text[i]

        if ch.isspace():
            i += 1
            continue

        if ch == "'":
            value, i_next = _read_quoted(text, i, "'")
            tokens.append(Token(TokenType.STRING, value, i))
            i = i_next
            continue

        if ch == '"':
            value, i_next = _read_quoted(text, i, '"')
            if not value:
                raise ExpressionSyntaxError("empty quoted identifier", i)
            tokens.append(Token(TokenType.QUOTED_IDENTIFIER, value, i))
            i = i_next
            continue

        number = _NUMBER.match(text, i)
        if number and (ch.isdigit() or ch == "."):
            tokens.append(Token(TokenType.NUMBER, number.group(0), i))
            i = number.end()
            continue

        identifier = _IDENTIFIER.match(text, i)
        if identifier:
            word = identifier.group(0)
            if word.upper() in KEYWORDS:
                tokens.append(Token(TokenType.KEYWORD, word.upper(), i))
            else:
                tokens.append(Token(TokenType.IDENTIFIER, word, i))
            i = identifier.end()
            continue

        if ch == "(":
            tokens.append(Token(TokenType.LPAREN, ch, i))
            i += 1
            continue
        if ch == ")":
            tokens.append(Token(TokenType.RPAREN, ch, i))
            i += 1
            continue
        if ch == ",":
            tokens.append(Token(TokenType.COMMA, ch, i))
            i += 1
            continue

        op = next((op for op in _OPERATORS if text.startswith(op, i)), None)
        if op is not None:
            tokens.append(Token(TokenType.OPERATOR, op, i))
            i += len(op)
            continue

        raise ExpressionSyntaxError(f"unexpected character {ch!r}", i)

    tokens.append(Token(TokenType.EOF, "", length))
    return tokens


def _read_quoted(text: str, start: int, quote: str) -> tuple[str, int]:
    """Read a quoted literal starting at ``start``; doubled quotes escape."""
    chars: list[str] = []
    i = start + 1
    while i < len(text):
        if text[i] == quote:
            if i + 1 < len(text) and text[i + 1] == quote:
                chars.append(quote)
                i += 2
                continue
            return "".join(chars), i + 1
        chars.append(text[i])
        i += 1
    kind = "string literal" if quote == "'" else "quoted identifier"
    raise ExpressionSyntaxError(f"unterminated {kind}", start)


def extract_identifiers(text: str) -> set[str]:
    """Extract column-like identifiers from an expression.

    Tolerant of malformed input: on a tokenizer error, falls back to a regex
    scan with string literals removed. Function names (identifiers directly
    followed by '(') are not included.
    """
    try:
        tokens = tokenize(text)
    except ExpressionSyntaxError:
        cleaned = re.sub(r"'[^']*'", "", text)
        names = set(re.findall(r'"([^"]+)"', cleaned))
        cleaned = re.sub(r'"[^"]*"', "", cleaned)
        for match in _IDENTIFIER.finditer(cleaned):
            rest = cleaned[match.end() :].lstrip()
            if match.group(0).upper() not in KEYWORDS and not rest.startswith("("):
                names.add(match.group(0))
        return names

    names = set()
    for index, token in enumerate(tokens):
        if token.type == TokenType.QUOTED_IDENTIFIER:
            names.add(token.value)
        elif token.type == TokenType.IDENTIFIER and tokens[index + 1].type != TokenType.LPAREN:
            names.add(token.value)
    return names
