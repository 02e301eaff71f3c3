"""
Parser for the restricted SELECT dialect understood by the data service.

The backend only exposes REST filter/sort/paginate primitives, so queries are
reduced to a small structured intent instead of being executed as SQL:

    SELECT <cols> FROM <table> [[AS] alias]
      [WHERE <col> <op> <value> [(AND | OR) <col> <op> <value> ...]]
      [ORDER BY <col> [ASC | DESC] [, ...]]
      [LIMIT <value>] [OFFSET <value>] [;]

    op    := ILIKE | LIKE | = | != | <> | < | <= | > | >=
    value := $n | integer | 'string'

The select list is not interpreted; every column is returned. When no table
follows FROM (or there is no FROM at all) the intent carries table=None and
the caller decides how to run the text. Any other clause (JOIN, GROUP BY,
parenthesised predicates, ...) is rejected.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Sequence

KEYWORDS: frozenset[str] = frozenset({
    "SELECT", "FROM", "WHERE", "AND", "OR", "ORDER", "BY", "ASC", "DESC",
    "LIMIT", "OFFSET", "ILIKE", "LIKE", "AS",
    # Reserved so they are never mistaken for a table alias
    "JOIN", "INNER", "LEFT", "RIGHT", "FULL", "CROSS", "ON", "GROUP", "HAVING",
    "UNION", "INTERSECT", "EXCEPT", "NOT", "IN", "IS", "BETWEEN", "NULL",
})

COMPARISON_OPERATORS: frozenset[str] = frozenset({"=", "!=", "<>", "<", "<=", ">", ">="})
PATTERN_OPERATORS: frozenset[str] = frozenset({"ILIKE", "LIKE"})

TOKEN_PATTERN = re.compile(
    r"""
      (?P<ws>\s+)
    | (?P<comment>--[^\n]*)
    | (?P<param>\$\d+)
    | (?P<number>\d+(?:\.\d+)?)
    | (?P<string>'(?:[^']|'')*')
    | (?P<quoted>"(?:[^"]|"")+")
    | (?P<word>[A-Za-z_][A-Za-z0-9_$]*)
    | (?P<op><>|!=|<=|>=|=|<|>)
    | (?P<punct>[(),;*.])
    | (?P<other>\S)
    """,
    re.VERBOSE,
)


class QuerySyntaxError(ValueError):
    """Query text falls outside the supported dialect."""


class ParameterIndexError(QuerySyntaxError):
    """A $n placeholder has no matching positional parameter."""


@dataclass(frozen=True)
class Token:
    kind: str  # keyword, ident, param, number, string, op, punct, other
    text: str
    position: int


@dataclass(frozen=True)
class Param:
    """Positional placeholder, 1-based."""

    index: int


@dataclass(frozen=True)
class Literal:
    value: Any


Value = Param | Literal


@dataclass(frozen=True)
class Filter:
    column: str
    operator: str  # upper case
    value: Value

    @property
    def is_pattern(self) -> bool:
        return self.operator in PATTERN_OPERATORS


@dataclass(frozen=True)
class OrderBy:
    column: str
    descending: bool = False


@dataclass(frozen=True)
class ParsedIntent:
    """Structured form of a query; values stay unresolved until execution."""

    table: str | None
    filters: tuple[Filter, ...] = ()
    order_by: OrderBy | None = None
    limit: Value | None = None
    offset: Value | None = None

    @property
    def pattern_filter(self) -> Filter | None:
        """First ILIKE/LIKE predicate, if any."""
        return next((f for f in self.filters if f.is_pattern), None)


@dataclass(frozen=True)
class RawQuery:
    text: str
    params: tuple[Any, ...] = field(default_factory=tuple)


def tokenize(text: str) -> list[Token]:
    """Split query text into tokens, dropping whitespace and comments."""
    tokens: list[Token] = []
    for match in TOKEN_PATTERN.finditer(text):
        kind = match.lastgroup
        value = match.group()
        if kind in ("ws", "comment"):
            continue
        if kind == "word":
            upper = value.upper()
            if upper in KEYWORDS:
                tokens.append(Token("keyword", upper, match.start()))
            else:
                tokens.append(Token("ident", value, match.start()))
        elif kind == "quoted":
            tokens.append(Token("ident", value[1:-1].replace('""', '"'), match.start()))
        else:
            tokens.append(Token(kind, value, match.start()))
    return tokens


class _Parser:
    """Recursive-descent parser over the token list."""

    def __init__(self, tokens: list[Token]) -> None:
        self._tokens = tokens
        self._pos = 0

    def _peek(self) -> Token | None:
        if self._pos < len(self._tokens):
            return self._tokens[self._pos]
        return None

    def _advance(self) -> Token:
        token = self._peek()
        if token is None:
            raise QuerySyntaxError("Unexpected end of query")
        self._pos += 1
        return token

    def _at(self, kind: str, *texts: str) -> bool:
        token = self._peek()
        if token is None or token.kind != kind:
            return False
        return not texts or token.text in texts

    def _expect_keyword(self, word: str) -> None:
        if not self._at("keyword", word):
            raise QuerySyntaxError(f"Expected {word} {self._near()}")
        self._advance()

    def _near(self) -> str:
        token = self._peek()
        if token is None:
            return "at end of query"
        return f"near '{token.text}' (position {token.position})"

    def parse(self) -> ParsedIntent:
        if not self._at("keyword", "SELECT"):
            raise QuerySyntaxError("Only SELECT queries are supported")
        self._advance()

        if not self._skip_select_list():
            return ParsedIntent(table=None)
        if not self._at("ident"):
            # Subquery or function in FROM: nothing the REST primitives can express
            return ParsedIntent(table=None)

        table = self._qualified_name()
        self._skip_alias()

        filters: tuple[Filter, ...] = ()
        order_by: OrderBy | None = None
        limit: Value | None = None
        offset: Value | None = None
        seen: set[str] = set()

        while self._peek() is not None:
            token = self._advance()
            if token.kind == "punct" and token.text == ";":
                if self._peek() is not None:
                    raise QuerySyntaxError("Only a single statement is supported")
                break
            if token.kind != "keyword" or token.text not in ("WHERE", "ORDER", "LIMIT", "OFFSET"):
                raise QuerySyntaxError(
                    f"Unsupported clause near '{token.text}' (position {token.position})"
                )
            if token.text in seen:
                raise QuerySyntaxError(f"Duplicate {token.text} clause")
            seen.add(token.text)

            if token.text == "WHERE":
                filters = self._predicates()
            elif token.text == "ORDER":
                self._expect_keyword("BY")
                order_by = self._order_list()
            elif token.text == "LIMIT":
                limit = self._value()
            else:
                offset = self._value()

        return ParsedIntent(
            table=table,
            filters=filters,
            order_by=order_by,
            limit=limit,
            offset=offset,
        )

    def _skip_select_list(self) -> bool:
        """Consume tokens up to and including FROM. False if there is no FROM."""
        depth = 0
        while self._peek() is not None:
            token = self._advance()
            if token.kind == "punct" and token.text == "(":
                depth += 1
            elif token.kind == "punct" and token.text == ")":
                depth -= 1
            elif depth == 0 and token.kind == "keyword" and token.text == "FROM":
                return True
        return False

    def _qualified_name(self) -> str:
        """Parse ident[.ident]... and return the last part."""
        if not self._at("ident"):
            raise QuerySyntaxError(f"Expected identifier {self._near()}")
        name = self._advance().text
        while self._at("punct", "."):
            self._advance()
            if not self._at("ident"):
                raise QuerySyntaxError(f"Expected identifier {self._near()}")
            name = self._advance().text
        return name

    def _skip_alias(self) -> None:
        if self._at("keyword", "AS"):
            self._advance()
            self._qualified_name()
        elif self._at("ident"):
            self._advance()

    def _predicates(self) -> tuple[Filter, ...]:
        filters = [self._predicate()]
        while self._at("keyword", "AND", "OR"):
            self._advance()
            filters.append(self._predicate())
        return tuple(filters)

    def _predicate(self) -> Filter:
        column = self._qualified_name()
        token = self._peek()
        if token is not None and token.kind == "keyword" and token.text in PATTERN_OPERATORS:
            operator = token.text
        elif token is not None and token.kind == "op" and token.text in COMPARISON_OPERATORS:
            operator = token.text
        else:
            raise QuerySyntaxError(f"Expected comparison operator {self._near()}")
        self._advance()
        return Filter(column=column, operator=operator, value=self._value())

    def _order_list(self) -> OrderBy:
        first = self._order_item()
        # Only the first sort key maps onto the REST request
        while self._at("punct", ","):
            self._advance()
            self._order_item()
        return first

    def _order_item(self) -> OrderBy:
        column = self._qualified_name()
        descending = False
        if self._at("keyword", "ASC", "DESC"):
            descending = self._advance().text == "DESC"
        return OrderBy(column=column, descending=descending)

    def _value(self) -> Value:
        token = self._peek()
        if token is None:
            raise QuerySyntaxError("Expected value at end of query")
        if token.kind == "param":
            self._advance()
            return Param(int(token.text[1:]))
        if token.kind == "number":
            self._advance()
            number = float(token.text) if "." in token.text else int(token.text)
            return Literal(number)
        if token.kind == "string":
            self._advance()
            return Literal(token.text[1:-1].replace("''", "'"))
        raise QuerySyntaxError(f"Expected $n, number or string {self._near()}")


def parse_query(text: str) -> ParsedIntent:
    """
    Parse query text into a ParsedIntent.

    Raises:
        QuerySyntaxError: if the text is not a SELECT or uses unsupported clauses
    """
    return _Parser(tokenize(text)).parse()


def resolve_value(value: Value, params: Sequence[Any]) -> Any:
    """Substitute a $n placeholder (1-based) or unwrap a literal."""
    if isinstance(value, Param):
        if not 1 <= value.index <= len(params):
            raise ParameterIndexError(
                f"Parameter ${value.index} is out of range ({len(params)} given)"
            )
        return params[value.index - 1]
    return value.value
