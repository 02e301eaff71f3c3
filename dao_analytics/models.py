"""
Pydantic models for query results and request/response schemas.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field, model_validator


class QueryResult(BaseModel):
    """Canonical envelope for rows returned by the data service."""

    rows: list[dict[str, Any]] = Field(default_factory=list)
    row_count: int = 0
    command: Literal["SELECT"] = "SELECT"

    @model_validator(mode="after")
    def _check_row_count(self) -> QueryResult:
        if self.row_count != len(self.rows):
            raise ValueError(
                f"row_count {self.row_count} does not match {len(self.rows)} rows"
            )
        return self

    @classmethod
    def wrap(cls, rows: list[dict[str, Any]] | dict[str, Any] | None) -> QueryResult:
        """Wrap a backend response; rows are kept in response order."""
        # Remote functions may return a single record
        if isinstance(rows, dict):
            rows = [rows]
        rows = list(rows or [])
        return cls(rows=rows, row_count=len(rows))


class CustomQueryRequest(BaseModel):
    """Request model for the custom query endpoint."""

    query: str = Field(..., min_length=1, max_length=4000)
    limit: int = Field(default=100, ge=1, le=100)


class EntityRecord(BaseModel):
    """A tracked organization, either registered or discovered from its tables."""

    internal_name: str
    display_name: str
    slug: str
    table_name: str
    is_registered: bool = False
    twitter_handle: str | None = None
    description: str | None = None
    website_url: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class EntityList(BaseModel):
    """Response model for the entity listing endpoint."""

    total: int
    entities: list[EntityRecord]


class DataAvailability(BaseModel):
    """Which platforms have data for an entity."""

    twitter: bool = False
    discord: bool = False
    telegram: bool = False
    governance: bool = False
    liquidity: bool = False


class EntityOverview(BaseModel):
    """Registry details plus data availability for one entity."""

    name: str
    display_name: str
    slug: str
    is_registered: bool
    registry: dict[str, Any] = Field(default_factory=dict)
    data_availability: DataAvailability = Field(default_factory=DataAvailability)


class DatabaseStats(BaseModel):
    """Snapshot of what the data service currently holds."""

    timestamp: datetime = Field(default_factory=datetime.now)
    connection_status: Literal["connected", "disconnected"] = "connected"
    database_type: str = "supabase"
    entity_count: int = 0
    registered_entities: int = 0
    entities_with_tweet_data: int = 0
    tables: dict[str, bool] = Field(default_factory=dict)
    row_counts: dict[str, int] = Field(default_factory=dict)
    available_entities: list[str] = Field(default_factory=list)
