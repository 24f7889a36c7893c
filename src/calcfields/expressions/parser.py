"""Recursive-descent parser and SQL renderer for field expressions.

Grammar (lowest to highest precedence):

    expr        := or_expr
    or_expr     := and_expr (OR and_expr)*
    and_expr    := not_expr (AND not_expr)*
    not_expr    := NOT not_expr | predicate
    predicate   := concat [ cmp_op concat
                          | IS [NOT] NULL
                          | [NOT] IN '(' expr (',' expr)* ')'
                          | [NOT] BETWEEN concat AND concat ]
    concat      := additive ('||' additive)*
    additive    := term (('+' | '-') term)*
    term        := unary (('*' | '/' | '%') unary)*
    unary       := ('-' | '+') unary | primary
    primary     := NUMBER | STRING | TRUE | FALSE | NULL
                 | IDENTIFIER '(' [expr (',' expr)*] ')'
                 | IDENTIFIER | QUOTED_IDENTIFIER
                 | '(' expr ')'
                 | CASE (WHEN expr THEN expr)+ [ELSE expr] END
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from dataclasses import dataclass

from calcfields.expressions.lexer import ExpressionSyntaxError, Token, TokenType, tokenize

MAX_NESTING_DEPTH = 64
MAX_TOKENS = 400

COMPARISON_OPERATORS = ("=", "<>", "!=", "<", "<=", ">", ">=")
ARITHMETIC_OPERATORS = ("+", "-", "*", "/", "%")


@dataclass(frozen=True)
class Node:
    position: int

    def children(self) -> tuple[Node, ...]:
        return ()

    def walk(self) -> Iterator[Node]:
        """Yield this node and all descendants, depth first."""
        yield self
        for child in self.children():
            yield from child.walk()


@dataclass(frozen=True)
class NumberLiteral(Node):
    text: str


@dataclass(frozen=True)
class StringLiteral(Node):
    value: str


@dataclass(frozen=True)
class BooleanLiteral(Node):
    value: bool


@dataclass(frozen=True)
class NullLiteral(Node):
    pass


@dataclass(frozen=True)
class ColumnRef(Node):
    name: str


@dataclass(frozen=True)
class FunctionCall(Node):
    name: str
    args: tuple[Node, ...]

    def children(self) -> tuple[Node, ...]:
        return self.args


@dataclass(frozen=True)
class UnaryOp(Node):
    op: str  # '-', '+', 'NOT'
    operand: Node

    def children(self) -> tuple[Node, ...]:
        return (self.operand,)


@dataclass(frozen=True)
class BinaryOp(Node):
    op: str  # arithmetic, comparison, '||', 'AND', 'OR'
    left: Node
    right: Node

    def children(self) -> tuple[Node, ...]:
        return (self.left, self.right)


@dataclass(frozen=True)
class IsNull(Node):
    operand: Node
    negated: bool

    def children(self) -> tuple[Node, ...]:
        return (self.operand,)


@dataclass(frozen=True)
class InList(Node):
    operand: Node
    items: tuple[Node, ...]
    negated: bool

    def children(self) -> tuple[Node, ...]:
        return (self.operand, *self.items)


@dataclass(frozen=True)
class Between(Node):
    operand: Node
    low: Node
    high: Node
    negated: bool

    def children(self) -> tuple[Node, ...]:
        return (self.operand, self.low, self.high)


@dataclass(frozen=True)
class Case(Node):
    whens: tuple[tuple[Node, Node], ...]
    else_: Node | None

    def children(self) -> tuple[Node, ...]:
        nodes: list[Node] = []
        for condition, result in self.whens:
            nodes.extend((condition, result))
        if self.else_ is not None:
            nodes.append(self.else_)
        return tuple(nodes)


class _Parser:
    def __init__(self, tokens: list[Token]):
        self.tokens = tokens
        self.index = 0
        self.depth = 0

    @property
    def current(self) -> Token:
        return self.tokens[self.index]

    def advance(self) -> Token:
        token = self.tokens[self.index]
        if token.type != TokenType.EOF:
            self.index += 1
        return token

    def expect(self, token_type: TokenType, what: str) -> Token:
        if self.current.type != token_type:
            raise ExpressionSyntaxError(
                f"expected {what}, found {self._describe(self.current)}", self.current.position
            )
        return self.advance()

    def expect_keyword(self, keyword: str) -> Token:
        if not self.current.is_keyword(keyword):
            raise ExpressionSyntaxError(
                f"expected {keyword}, found {self._describe(self.current)}",
                self.current.position,
            )
        return self.advance()

    @staticmethod
    def _describe(token: Token) -> str:
        if token.type == TokenType.EOF:
            return "end of expression"
        return repr(token.value)

    def parse(self) -> Node:
        node = self.expression()
        if self.current.type != TokenType.EOF:
            raise ExpressionSyntaxError(
                f"unexpected {self._describe(self.current)}", self.current.position
            )
        return node

    def expression(self) -> Node:
        self.depth += 1
        if self.depth > MAX_NESTING_DEPTH:
            raise ExpressionSyntaxError("expression nests too deeply", self.current.position)
        try:
            return self.or_expr()
        finally:
            self.depth -= 1

    def or_expr(self) -> Node:
        node = self.and_expr()
        while self.current.is_keyword("OR"):
            token = self.advance()
            node = BinaryOp(token.position, "OR", node, self.and_expr())
        return node

    def and_expr(self) -> Node:
        node = self.not_expr()
        while self.current.is_keyword("AND"):
            token = self.advance()
            node = BinaryOp(token.position, "AND", node, self.not_expr())
        return node

    def not_expr(self) -> Node:
        if self.current.is_keyword("NOT"):
            token = self.advance()
            self.depth += 1
            if self.depth > MAX_NESTING_DEPTH:
                raise ExpressionSyntaxError("expression nests too deeply", token.position)
            try:
                return UnaryOp(token.position, "NOT", self.not_expr())
            finally:
                self.depth -= 1
        return self.predicate()

    def predicate(self) -> Node:
        left = self.concat()
        token = self.current

        if token.type == TokenType.OPERATOR and token.value in COMPARISON_OPERATORS:
            self.advance()
            return BinaryOp(token.position, token.value, left, self.concat())

        if token.is_keyword("IS"):
            self.advance()
            negated = False
            if self.current.is_keyword("NOT"):
                self.advance()
                negated = True
            self.expect_keyword("NULL")
            return IsNull(token.position, left, negated)

        negated = False
        if token.is_keyword("NOT"):
            following = self.tokens[self.index + 1]
            if following.is_keyword("IN", "BETWEEN"):
                self.advance()
                negated = True
                token = self.current

        if token.is_keyword("IN"):
            self.advance()
            self.expect(TokenType.LPAREN, "'(' after IN")
            items = [self.expression()]
            while self.current.type == TokenType.COMMA:
                self.advance()
                items.append(self.expression())
            self.expect(TokenType.RPAREN, "')' to close IN list")
            return InList(token.position, left, tuple(items), negated)

        if token.is_keyword("BETWEEN"):
            self.advance()
            low = self.concat()
            self.expect_keyword("AND")
            high = self.concat()
            return Between(token.position, left, low, high, negated)

        return left

    def concat(self) -> Node:
        node = self.additive()
        while self.current.is_operator("||"):
            token = self.advance()
            node = BinaryOp(token.position, "||", node, self.additive())
        return node

    def additive(self) -> Node:
        node = self.term()
        while self.current.is_operator("+", "-"):
            token = self.advance()
            node = BinaryOp(token.position, token.value, node, self.term())
        return node

    def term(self) -> Node:
        node = self.unary()
        while self.current.is_operator("*", "/", "%"):
            token = self.advance()
            node = BinaryOp(token.position, token.value, node, self.unary())
        return node

    def unary(self) -> Node:
        if self.current.is_operator("-", "+"):
            token = self.advance()
            self.depth += 1
            if self.depth > MAX_NESTING_DEPTH:
                raise ExpressionSyntaxError("expression nests too deeply", token.position)
            try:
                return UnaryOp(token.position, token.value, self.unary())
            finally:
                self.depth -= 1
        return self.primary()

    def primary(self) -> Node:
        token = self.current

        if token.type == TokenType.NUMBER:
            self.advance()
            return NumberLiteral(token.position, token.value)

        if token.type == TokenType.STRING:
            self.advance()
            return StringLiteral(token.position, token.value)

        if token.is_keyword("TRUE", "FALSE"):
            self.advance()
            return BooleanLiteral(token.position, token.value == "TRUE")

        if token.is_keyword("NULL"):
            self.advance()
            return NullLiteral(token.position)

        if token.is_keyword("CASE"):
            return self.case()

        if token.type == TokenType.QUOTED_IDENTIFIER:
            self.advance()
            return ColumnRef(token.position, token.value)

        if token.type == TokenType.IDENTIFIER:
            self.advance()
            if self.current.type == TokenType.LPAREN:
                return self.call(token)
            return ColumnRef(token.position, token.value)

        if token.type == TokenType.LPAREN:
            self.advance()
            node = self.expression()
            self.expect(TokenType.RPAREN, "')'")
            return node

        raise ExpressionSyntaxError(f"unexpected {self._describe(token)}", token.position)

    def call(self, name_token: Token) -> Node:
        self.expect(TokenType.LPAREN, "'('")
        args: list[Node] = []
        if self.current.type != TokenType.RPAREN:
            args.append(self.expression())
            while self.current.type == TokenType.COMMA:
                self.advance()
                args.append(self.expression())
        self.expect(TokenType.RPAREN, f"')' to close {name_token.value}(")
        return FunctionCall(name_token.position, name_token.value.upper(), tuple(args))

    def case(self) -> Node:
        case_token = self.advance()
        whens: list[tuple[Node, Node]] = []
        while self.current.is_keyword("WHEN"):
            self.advance()
            condition = self.expression()
            self.expect_keyword("THEN")
            whens.append((condition, self.expression()))
        if not whens:
            raise ExpressionSyntaxError("CASE requires at least one WHEN", self.current.position)
        else_: Node | None = None
        if self.current.is_keyword("ELSE"):
            self.advance()
            else_ = self.expression()
        self.expect_keyword("END")
        return Case(case_token.position, tuple(whens), else_)


def parse_expression(text: str) -> Node:
    """Parse expression text into an AST.

    Raises:
        ExpressionSyntaxError: If the text is not a single valid expression
    """
    if not text.strip():
        raise ExpressionSyntaxError("expression is empty", 0)
    tokens = tokenize(text)
    if len(tokens) > MAX_TOKENS:
        raise ExpressionSyntaxError(
            f"expression has more than {MAX_TOKENS} tokens", tokens[MAX_TOKENS].position
        )
    return _Parser(tokens).parse()


def column_refs(node: Node) -> list[ColumnRef]:
    """All column references in source order."""
    refs = [n for n in node.walk() if isinstance(n, ColumnRef)]
    return sorted(refs, key=lambda r: r.position)


def quote_identifier(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def _quote_string(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def render_sql(node: Node, resolve: Callable[[str], str] | None = None) -> str:
    """Render an AST as canonical SQL.

    Column references are emitted as quoted identifiers, mapped through
    ``resolve`` (identifier -> canonical column name) when given. Every
    compound sub-expression is parenthesized so precedence never depends
    on the target dialect.
    """

    def column(name: str) -> str:
        return quote_identifier(resolve(name) if resolve else name)

    def nested(child: Node) -> str:
        text = render(child)
        # Nested unary minus must never render as '--'
        if isinstance(child, (BinaryOp, UnaryOp, IsNull, InList, Between)):
            return f"({text})"
        return text

    def render(n: Node) -> str:
        if isinstance(n, NumberLiteral):
            return n.text
        if isinstance(n, StringLiteral):
            return _quote_string(n.value)
        if isinstance(n, BooleanLiteral):
            return "TRUE" if n.value else "FALSE"
        if isinstance(n, NullLiteral):
            return "NULL"
        if isinstance(n, ColumnRef):
            return column(n.name)
        if isinstance(n, FunctionCall):
            return f"{n.name}({', '.join(render(a) for a in n.args)})"
        if isinstance(n, UnaryOp):
            if n.op == "NOT":
                return f"NOT {nested(n.operand)}"
            return f"{n.op}{nested(n.operand)}"
        if isinstance(n, BinaryOp):
            op = "<>" if n.op == "!=" else n.op
            return f"{nested(n.left)} {op} {nested(n.right)}"
        if isinstance(n, IsNull):
            return f"{nested(n.operand)} IS {'NOT ' if n.negated else ''}NULL"
        if isinstance(n, InList):
            items = ", ".join(render(i) for i in n.items)
            return f"{nested(n.operand)} {'NOT ' if n.negated else ''}IN ({items})"
        if isinstance(n, Between):
            keyword = "NOT BETWEEN" if n.negated else "BETWEEN"
            return f"{nested(n.operand)} {keyword} {nested(n.low)} AND {nested(n.high)}"
        if isinstance(n, Case):
            parts = ["CASE"]
            for condition, result in n.whens:
                parts.append(f"WHEN {render(condition)} THEN {render(result)}")
            if n.else_ is not None:
                parts.append(f"ELSE {render(n.else_)}")
            parts.append("END")
            return " ".join(parts)
        raise TypeError(f"Unknown expression node: {type(n).__name__}")

    return render(node)
