"""
SQL Guard - safety validation for caller-supplied query text.

Layers, in order:
1. Keyword blocklist (substring match)
2. Statement type (text must start with SELECT)
3. Parse check via sqlglot (single, parseable statement)
4. LIMIT injection when the query carries none

The original casing of the query is preserved; only the inspection copy is
normalized.
"""

from __future__ import annotations

import sqlglot
from sqlglot.errors import ParseError, TokenError

# Mutating keywords - reject if found anywhere in the text.
# Matched as substrings, so a column such as updated_at is also rejected.
FORBIDDEN_KEYWORDS: tuple[str, ...] = (
    "drop", "delete", "update", "insert", "alter", "create", "truncate",
)

DEFAULT_LIMIT = 100


class SafetyViolation(Exception):
    """Base exception for rejected query text."""

    reason = "unsafe"


class ForbiddenKeywordError(SafetyViolation):
    """Mutating keyword detected."""

    reason = "keyword"

    def __init__(self, keyword: str) -> None:
        self.keyword = keyword
        super().__init__(
            f"Dangerous operation detected: {keyword}. Only SELECT queries are allowed."
        )


class ForbiddenStatementError(SafetyViolation):
    """Statement does not start with SELECT."""

    reason = "not_select"

    def __init__(self, message: str = "Only SELECT queries are allowed") -> None:
        super().__init__(message)


class MultipleStatementsError(SafetyViolation):
    """More than one statement in a single query."""

    reason = "multiple_statements"


class SQLParseError(SafetyViolation):
    """Failed to parse query text."""

    reason = "parse_error"


def _quick_keyword_check(normalized: str) -> str | None:
    """Return the first forbidden keyword contained in the text, if any."""
    for keyword in FORBIDDEN_KEYWORDS:
        if keyword in normalized:
            return keyword
    return None


def _count_statements(query: str) -> int:
    """Count non-empty statements; raises SQLParseError if sqlglot can't parse."""
    try:
        statements = sqlglot.parse(query, dialect="postgres")
    except (ParseError, TokenError) as e:
        raise SQLParseError(f"SQL parse error: {e}") from e
    return sum(1 for statement in statements if statement is not None)


def validate_custom_query(query: str, limit: int = DEFAULT_LIMIT) -> str:
    """
    Validate free-form query text and return the text to execute.

    Args:
        query: Caller-supplied SQL text
        limit: Row cap appended when the text has no LIMIT

    Returns:
        The query, with " LIMIT <limit>" appended if it had none

    Raises:
        SafetyViolation subclass if validation fails
    """
    normalized = query.lower().strip()

    # Layer 1: keyword blocklist
    keyword = _quick_keyword_check(normalized)
    if keyword:
        raise ForbiddenKeywordError(keyword)

    # Layer 2: statement type
    if not normalized.startswith("select"):
        raise ForbiddenStatementError()

    # Layer 3: single parseable statement
    if _count_statements(query) > 1:
        raise MultipleStatementsError("Only a single SELECT statement is allowed")

    # Layer 4: LIMIT injection
    if "limit" not in normalized:
        # Trailing ";" would otherwise end the statement before the LIMIT
        query = query.rstrip().rstrip(";").rstrip()
        query += f" LIMIT {limit}"

    return query
