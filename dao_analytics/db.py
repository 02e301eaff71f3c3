"""
Supabase data access with SQL-like query translation.

- The backend offers no SQL endpoint; SELECT text is parsed and mapped onto
  PostgREST filter / order / range primitives
- Table discovery by zero-row probe requests
- Remote-procedure fallback for queries that name no table
"""

from __future__ import annotations

import enum
import logging
import time
from typing import Any, Sequence

import httpx
from postgrest.exceptions import APIError
from postgrest.types import CountMethod
from supabase import AsyncClient, acreate_client
from supabase.lib.client_options import AsyncClientOptions

from dao_analytics.config import Settings, get_settings
from dao_analytics.models import QueryResult
from dao_analytics.query_parser import (
    ParsedIntent,
    QuerySyntaxError,
    RawQuery,
    parse_query,
    resolve_value,
)

logger = logging.getLogger(__name__)

# Error fragments PostgREST uses when a relation is missing
_ABSENT_MARKERS: tuple[str, ...] = ("does not exist", "could not find the table", "relation")
_ABSENT_CODES: frozenset[str] = frozenset({"42P01", "PGRST205"})
_DENIED_MARKERS: tuple[str, ...] = ("permission denied",)
_DENIED_CODES: frozenset[str] = frozenset({"42501"})


class DatabaseError(Exception):
    """Base exception for data access errors."""
    pass


class NotConnectedError(DatabaseError):
    """No Supabase client is available."""

    def __init__(self, message: str = "Supabase not connected") -> None:
        super().__init__(message)


class UnsupportedQueryError(DatabaseError):
    """Query is outside the supported dialect or references a missing parameter."""
    pass


class BackendError(DatabaseError):
    """The data service reported an error; message is passed through."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class ExistenceVerdict(enum.Enum):
    EXISTS = "exists"
    ABSENT = "absent"
    INDETERMINATE = "indeterminate"


def classify_probe_error(message: str, code: str | None = None) -> ExistenceVerdict:
    """Map a probe failure onto ABSENT or INDETERMINATE."""
    lower = message.lower()
    if code in _DENIED_CODES or any(marker in lower for marker in _DENIED_MARKERS):
        return ExistenceVerdict.INDETERMINATE
    if code in _ABSENT_CODES or any(marker in lower for marker in _ABSENT_MARKERS):
        return ExistenceVerdict.ABSENT
    return ExistenceVerdict.INDETERMINATE


def _row_count_value(value: Any, clause: str) -> int:
    """Coerce a LIMIT/OFFSET argument to a non-negative int."""
    if isinstance(value, float) and not value.is_integer():
        raise QuerySyntaxError(f"{clause} must be a whole number, got {value!r}")
    try:
        count = int(value)
    except (TypeError, ValueError) as e:
        raise QuerySyntaxError(f"{clause} must be an integer, got {value!r}") from e
    if count < 0:
        raise QuerySyntaxError(f"{clause} must not be negative, got {count}")
    return count


class Database:
    """Supabase client manager that executes SELECT text through the REST API."""

    def __init__(
        self,
        settings: Settings | None = None,
        client: AsyncClient | None = None,
    ) -> None:
        self._settings = settings
        self._client = client

    @property
    def settings(self) -> Settings:
        if self._settings is None:
            self._settings = get_settings()
        return self._settings

    @property
    def is_connected(self) -> bool:
        return self._client is not None

    async def connect(self) -> None:
        """Create the Supabase client. The client is kept for the process lifetime."""
        if self._client is not None:
            logger.warning("Supabase client already exists")
            return

        settings = self.settings
        try:
            self._client = await acreate_client(
                settings.supabase_url,
                settings.supabase_anon_key,
                options=AsyncClientOptions(
                    auto_refresh_token=False,
                    persist_session=False,
                ),
            )
        except Exception:
            logger.exception("Supabase connection failed")
            raise
        logger.info("Supabase connection established successfully")

    async def disconnect(self) -> None:
        """Close the client HTTP session and drop the client."""
        if self._client is None:
            return
        await self._client.postgrest.aclose()
        self._client = None
        logger.info("Supabase connection closed")

    def get_client(self) -> AsyncClient:
        """Get the active client or raise NotConnectedError."""
        if self._client is None:
            raise NotConnectedError()
        return self._client

    async def test_connection(self, table_name: str = "daos") -> bool:
        """Check that the data service answers a probe request."""
        if self._client is None:
            return False
        verdict = await self.probe_table(table_name)
        return verdict is not ExistenceVerdict.INDETERMINATE

    # ---------- Query translation ----------

    async def query(self, text: str, params: Sequence[Any] | None = None) -> QueryResult:
        """
        Execute a SELECT statement through the REST API.

        Args:
            text: SELECT text in the restricted dialect (see query_parser)
            params: Positional parameters referenced as $1, $2, ...

        Returns:
            QueryResult with rows in response order

        Raises:
            NotConnectedError: no client
            UnsupportedQueryError: text outside the dialect or bad $n index
            BackendError: the data service reported an error
        """
        return await self.execute(RawQuery(text=text, params=tuple(params or ())))

    async def execute(self, raw: RawQuery) -> QueryResult:
        client = self.get_client()
        start_time = time.perf_counter()

        try:
            intent = parse_query(raw.text)
            if intent.table is None:
                result = await self._call_custom_query(client, raw)
            else:
                result = await self._run(self._build_request(client, intent, raw.params))
        except QuerySyntaxError as e:
            logger.error("Unsupported query: %s (%s)", raw.text, e)
            raise UnsupportedQueryError(str(e)) from e
        except BackendError:
            logger.error("Supabase query failed: %s", raw.text)
            raise

        execution_time = (time.perf_counter() - start_time) * 1000
        logger.debug(
            "Supabase query executed in %.2fms: %s", execution_time, raw.text[:100]
        )
        return result

    def _build_request(
        self,
        client: AsyncClient,
        intent: ParsedIntent,
        params: Sequence[Any],
    ) -> Any:
        """Map a parsed intent onto a PostgREST request builder."""
        request = client.table(intent.table).select("*")

        # Pattern lookups resolve to a single entity
        pattern = intent.pattern_filter
        if pattern is not None:
            value = resolve_value(pattern.value, params)
            if value is None:
                raise QuerySyntaxError(f"{pattern.operator} on {pattern.column} has no value")
            if len(intent.filters) > 1:
                logger.debug(
                    "Only %s %s is applied; %d other predicate(s) ignored",
                    pattern.column, pattern.operator, len(intent.filters) - 1,
                )
            if pattern.operator == "ILIKE":
                request = request.ilike(pattern.column, value)
            else:
                request = request.like(pattern.column, value)
            return request.limit(1)

        if intent.filters:
            logger.debug(
                "Predicates without ILIKE/LIKE are not applied: %s",
                ", ".join(f"{f.column} {f.operator}" for f in intent.filters),
            )

        if intent.limit is not None:
            limit = _row_count_value(resolve_value(intent.limit, params), "LIMIT")
            if intent.order_by is not None:
                request = request.order(
                    intent.order_by.column, desc=intent.order_by.descending
                )
            if intent.offset is not None:
                offset = _row_count_value(resolve_value(intent.offset, params), "OFFSET")
                # range() sets both offset and limit on the request
                return request.range(offset, offset + limit - 1)
            return request.limit(limit)

        return request

    async def _run(self, request: Any) -> QueryResult:
        try:
            response = await request.execute()
        except APIError as e:
            raise BackendError(e.message or str(e)) from e
        except httpx.HTTPError as e:
            raise BackendError(str(e)) from e
        return QueryResult.wrap(response.data)

    async def _call_custom_query(self, client: AsyncClient, raw: RawQuery) -> QueryResult:
        """Run text that names no table through the server-side query function."""
        logger.info("No table in query, calling %s", self.settings.custom_query_rpc)
        request = client.rpc(
            self.settings.custom_query_rpc,
            {"query": raw.text, "parameters": list(raw.params)},
        )
        try:
            response = await request.execute()
        except APIError as e:
            raise BackendError(f"Custom query failed: {e.message or e}") from e
        except httpx.HTTPError as e:
            raise BackendError(f"Custom query failed: {e}") from e
        return QueryResult.wrap(response.data)

    # ---------- Discovery ----------

    async def probe_table(self, table_name: str) -> ExistenceVerdict:
        """Issue a zero-row request against a table and classify the outcome."""
        client = self.get_client()
        logger.debug("Checking if table '%s' exists...", table_name)
        try:
            await client.table(table_name).select("*").limit(0).execute()
        except APIError as e:
            verdict = classify_probe_error(e.message or "", e.code)
            logger.info(
                "Table '%s' check failed (%s): %s", table_name, verdict.value, e.message
            )
            return verdict
        except httpx.HTTPError as e:
            logger.warning("Exception checking table '%s': %s", table_name, e)
            return ExistenceVerdict.INDETERMINATE

        logger.debug("Table '%s' exists and is accessible", table_name)
        return ExistenceVerdict.EXISTS

    async def table_exists(self, table_name: str) -> bool:
        """
        True only when a probe succeeds.

        A missing table and a permission error both give False, so a single
        False must not drive destructive decisions.
        """
        return await self.probe_table(table_name) is ExistenceVerdict.EXISTS

    async def count_rows(self, table_name: str) -> int:
        """Exact row count of a table."""
        client = self.get_client()
        request = client.table(table_name).select("*", count=CountMethod.exact).limit(0)
        try:
            response = await request.execute()
        except APIError as e:
            raise BackendError(e.message or str(e)) from e
        except httpx.HTTPError as e:
            raise BackendError(str(e)) from e
        return response.count or 0


# Global database instance
_db: Database | None = None


def get_db() -> Database:
    """Get global database instance."""
    global _db
    if _db is None:
        _db = Database()
    return _db
