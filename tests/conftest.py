"""
Shared fixtures: an in-memory stand-in for the Supabase async client.

The fake records every builder call so tests can assert which REST
primitives a query was translated into, and answers requests from a dict of
table name -> rows the way PostgREST would.
"""

import fnmatch
import os
from dataclasses import dataclass
from typing import Any

import pytest

os.environ.setdefault("SUPABASE_URL", "https://test-project.supabase.co")
os.environ.setdefault("SUPABASE_ANON_KEY", "test-anon-key")

from postgrest.exceptions import APIError  # noqa: E402

from dao_analytics.config import Settings  # noqa: E402
from dao_analytics.db import Database  # noqa: E402


@dataclass
class FakeResponse:
    data: Any
    count: int | None = None


def missing_relation(table: str) -> APIError:
    return APIError({
        "message": f'relation "public.{table}" does not exist',
        "code": "42P01",
        "hint": None,
        "details": None,
    })


def permission_denied(table: str) -> APIError:
    return APIError({
        "message": f"permission denied for table {table}",
        "code": "42501",
        "hint": None,
        "details": None,
    })


class FakeRequest:
    """Chainable request builder mirroring the postgrest-py interface."""

    def __init__(self, client: "FakeSupabase", table: str) -> None:
        self.client = client
        self.table = table
        self.calls: list[tuple] = []
        self.count_method: Any = None

    def select(self, *columns: str, count: Any = None) -> "FakeRequest":
        self.count_method = count
        self.calls.append(("select", columns))
        return self

    def ilike(self, column: str, pattern: str) -> "FakeRequest":
        self.calls.append(("ilike", column, pattern))
        return self

    def like(self, column: str, pattern: str) -> "FakeRequest":
        self.calls.append(("like", column, pattern))
        return self

    def order(self, column: str, *, desc: bool = False) -> "FakeRequest":
        self.calls.append(("order", column, desc))
        return self

    def range(self, start: int, end: int) -> "FakeRequest":
        self.calls.append(("range", start, end))
        return self

    def limit(self, size: int) -> "FakeRequest":
        self.calls.append(("limit", size))
        return self

    def call_names(self) -> list[str]:
        return [call[0] for call in self.calls]

    async def execute(self) -> FakeResponse:
        return self.client.respond(self)


class FakeRpcRequest:
    def __init__(self, client: "FakeSupabase", fn: str, params: dict) -> None:
        self.client = client
        self.fn = fn
        self.params = params

    async def execute(self) -> FakeResponse:
        if self.client.rpc_error is not None:
            raise self.client.rpc_error
        return FakeResponse(data=self.client.rpc_result)


class FakePostgrest:
    """Stands in for the client HTTP session."""

    def __init__(self) -> None:
        self.closed = False

    async def aclose(self) -> None:
        self.closed = True


def _matches(value: Any, pattern: str, case_sensitive: bool) -> bool:
    glob = pattern.replace("%", "*").replace("_", "?")
    text = str(value)
    if not case_sensitive:
        return fnmatch.fnmatchcase(text.lower(), glob.lower())
    return fnmatch.fnmatchcase(text, glob)


class FakeSupabase:
    """In-memory tables answering translated requests."""

    def __init__(
        self,
        tables: dict[str, list[dict[str, Any]]] | None = None,
        errors: dict[str, Exception] | None = None,
    ) -> None:
        self.tables = tables or {}
        self.errors = errors or {}
        self.requests: list[FakeRequest] = []
        self.rpc_calls: list[FakeRpcRequest] = []
        self.rpc_result: Any = []
        self.rpc_error: Exception | None = None
        self.postgrest = FakePostgrest()

    def table(self, name: str) -> FakeRequest:
        request = FakeRequest(self, name)
        self.requests.append(request)
        return request

    def rpc(self, fn: str, params: dict | None = None) -> FakeRpcRequest:
        request = FakeRpcRequest(self, fn, params or {})
        self.rpc_calls.append(request)
        return request

    @property
    def last_request(self) -> FakeRequest:
        return self.requests[-1]

    def requests_for(self, table: str) -> list[FakeRequest]:
        return [r for r in self.requests if r.table == table]

    def respond(self, request: FakeRequest) -> FakeResponse:
        if request.table in self.errors:
            raise self.errors[request.table]
        if request.table not in self.tables:
            raise missing_relation(request.table)

        rows = list(self.tables[request.table])
        for call in request.calls:
            name = call[0]
            if name in ("ilike", "like"):
                _, column, pattern = call
                rows = [
                    r for r in rows
                    if column in r and _matches(r[column], pattern, name == "like")
                ]
            elif name == "order":
                _, column, desc = call
                rows = sorted(rows, key=lambda r: r.get(column), reverse=desc)
            elif name == "range":
                _, start, end = call
                rows = rows[start:end + 1]
            elif name == "limit":
                rows = rows[: call[1]]

        total = len(self.tables[request.table]) if request.count_method else None
        return FakeResponse(data=rows, count=total)


@pytest.fixture()
def settings() -> Settings:
    return Settings(
        supabase_url="https://test-project.supabase.co",
        supabase_anon_key="test-anon-key",
    )


@pytest.fixture()
def fake_client() -> FakeSupabase:
    return FakeSupabase()


@pytest.fixture()
def db(settings: Settings, fake_client: FakeSupabase) -> Database:
    return Database(settings=settings, client=fake_client)
