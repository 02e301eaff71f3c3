"""
Entity catalog: which DAOs exist, discovered from the data service.

The backend has no static schema, so a DAO is known either because it is
registered in the registry table or because one of the configured candidate
tweet tables answers a probe request. Nothing is cached; every call probes.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable

import yaml

from dao_analytics.config import get_settings
from dao_analytics.db import BackendError, Database, get_db
from dao_analytics.models import (
    DataAvailability,
    DatabaseStats,
    EntityList,
    EntityOverview,
    EntityRecord,
)

logger = logging.getLogger(__name__)

# Case-insensitive substring rewrites applied after title-casing
ACRONYM_REWRITES: tuple[tuple[re.Pattern, str], ...] = (
    (re.compile("dao", re.IGNORECASE), "DAO"),
    (re.compile("ai", re.IGNORECASE), "AI"),
    (re.compile("bio", re.IGNORECASE), "Bio"),
)

REGISTRY_COLUMNS = "name, slug, twitter_handle, description, website_url, created_at, updated_at"


@dataclass
class CatalogConfig:
    """Tables the catalog probes and how entity names map onto them."""

    candidate_tables: list[str] = field(default_factory=list)
    registry_table: str = "daos"
    table_prefix: str = "dao_"
    table_suffix: str = "_tweets"
    shared_tables: dict[str, str] = field(default_factory=lambda: {
        "discord": "discord_messages",
        "telegram": "telegram_messages",
        "governance": "governance_snapshot_spaces",
        "liquidity": "lp_pool_snapshots",
    })


def load_catalog_config(path: Path) -> CatalogConfig:
    """
    Load the catalog configuration from YAML.

    Args:
        path: Path to catalog.yaml

    Returns:
        CatalogConfig; defaults with no candidate tables if the file is missing
    """
    config = CatalogConfig()

    if not path.exists():
        logger.warning("Catalog file not found: %s", path)
        return config

    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    config.candidate_tables = [str(t) for t in data.get("candidate_tables", [])]
    config.registry_table = data.get("registry_table", config.registry_table)
    config.table_prefix = data.get("table_prefix", config.table_prefix)
    config.table_suffix = data.get("table_suffix", config.table_suffix)
    config.shared_tables.update(data.get("shared_tables") or {})

    logger.info("Loaded %d candidate tables from %s", len(config.candidate_tables), path)
    return config


def format_display_name(name: str) -> str:
    """
    Presentation name: split on capitals, title-case, then fix acronyms.

    Never use the result for lookups; equality is always on the internal name.
    """
    words = re.split(r"(?<=[a-z0-9])(?=[A-Z])", name.strip())
    display = " ".join(words)
    display = re.sub(r"\b\w", lambda m: m.group().upper(), display)
    for pattern, replacement in ACRONYM_REWRITES:
        display = pattern.sub(replacement, display)
    return display.strip()


def slugify(name: str) -> str:
    return re.sub(r"\s+", "-", name.strip().lower())


def dedupe_names(names: Iterable[str]) -> list[str]:
    """Drop case-insensitive duplicates, keeping the first spelling."""
    seen: set[str] = set()
    unique: list[str] = []
    for name in names:
        key = name.lower()
        if key not in seen:
            seen.add(key)
            unique.append(name)
    return unique


class EntityCatalog:
    """Enumerates known DAOs and reports on their data."""

    def __init__(self, db: Database, config: CatalogConfig) -> None:
        self._db = db
        self._config = config

    @property
    def config(self) -> CatalogConfig:
        return self._config

    # ---------- Naming ----------

    def internal_name(self, table_name: str) -> str:
        """Strip the tweet-table prefix/suffix to recover the DAO name."""
        name = table_name
        if name.startswith(self._config.table_prefix):
            name = name[len(self._config.table_prefix):]
        if self._config.table_suffix and name.endswith(self._config.table_suffix):
            name = name[: -len(self._config.table_suffix)]
        return name

    def is_entity_table(self, name: str) -> bool:
        return name.startswith(self._config.table_prefix) and name.endswith(
            self._config.table_suffix
        )

    def display_name(self, name_or_table: str) -> str:
        if self.is_entity_table(name_or_table):
            return format_display_name(self.internal_name(name_or_table))
        return format_display_name(name_or_table)

    def table_name_for(self, name: str, kind: str = "tweets") -> str:
        """Table holding one kind of data for a DAO."""
        if kind in ("discord", "telegram"):
            # Messages for every DAO live in one shared table
            return self._config.shared_tables[kind]
        clean = re.sub(r"[^a-z0-9]", "", name.lower())
        if kind == "tweets":
            return f"{self._config.table_prefix}{clean}{self._config.table_suffix}"
        return f"{self._config.table_prefix}{clean}_{kind}"

    # ---------- Discovery ----------

    async def _registry_rows(self, columns: str = "name") -> list[dict[str, Any]]:
        """Rows of the registry table, or [] when it is missing or unreadable."""
        registry = self._config.registry_table
        if not await self._db.table_exists(registry):
            logger.info("%s table does not exist yet, skipping registered DAOs", registry)
            return []
        try:
            result = await self._db.query(f"SELECT {columns} FROM {registry} ORDER BY name")
        except BackendError as e:
            logger.warning("Could not fetch DAO names from %s table: %s", registry, e)
            return []
        logger.info("Found %d DAOs in %s table", result.row_count, registry)
        return [row for row in result.rows if row.get("name")]

    async def _discover_from_tables(self) -> list[str]:
        names: list[str] = []
        logger.info("Checking %d known DAO tables...", len(self._config.candidate_tables))
        for table_name in self._config.candidate_tables:
            if await self._db.table_exists(table_name):
                name = self.internal_name(table_name)
                names.append(name)
                logger.debug("Found DAO: %s (table: %s)", name, table_name)
        return names

    async def list_known_entities(self) -> list[str]:
        """
        Internal names of all known DAOs.

        Registry names are unioned with names recovered from candidate tables
        that exist. No two results compare equal ignoring case. Order is not
        meaningful; callers sort as needed.
        """
        registered = [row["name"] for row in await self._registry_rows()]
        discovered = await self._discover_from_tables()
        names = dedupe_names([*registered, *discovered])
        logger.info("Total DAOs found: %d", len(names))
        return names

    async def list_entities(self, limit: int = 50, offset: int = 0) -> EntityList:
        """Registered and discovered DAOs, sorted by display name, one page at a time."""
        registered = await self._registry_rows(REGISTRY_COLUMNS)
        discovered = await self._discover_from_tables()
        by_name = {row["name"].lower(): row for row in registered}

        names = dedupe_names(
            name.lower() for name in [*(row["name"] for row in registered), *discovered]
        )

        records: list[EntityRecord] = []
        for name in names:
            row = by_name.get(name, {})
            records.append(EntityRecord(
                internal_name=name,
                display_name=self.display_name(name),
                slug=row.get("slug") or slugify(name),
                table_name=self.table_name_for(name),
                is_registered=bool(row),
                twitter_handle=row.get("twitter_handle"),
                description=row.get("description"),
                website_url=row.get("website_url"),
                created_at=row.get("created_at"),
                updated_at=row.get("updated_at"),
            ))

        records.sort(key=lambda r: r.display_name.casefold())
        return EntityList(total=len(records), entities=records[offset:offset + limit])

    # ---------- Reporting ----------

    async def _find_registered(self, name: str) -> dict[str, Any] | None:
        registry = self._config.registry_table
        if not await self._db.table_exists(registry):
            return None
        result = await self._db.query(
            f"SELECT * FROM {registry} WHERE name ILIKE $1 LIMIT 1", [f"%{name}%"]
        )
        return result.rows[0] if result.rows else None

    async def _has_governance_space(self, name: str) -> bool:
        table = self._config.shared_tables["governance"]
        if not await self._db.table_exists(table):
            return False
        try:
            result = await self._db.query(
                f"SELECT * FROM {table} WHERE name ILIKE $1", [f"%{name}%"]
            )
        except BackendError as e:
            logger.warning("Governance lookup failed for %s: %s", name, e)
            return False
        return result.row_count > 0

    async def get_entity_overview(self, name: str) -> EntityOverview:
        """Registry details and per-platform data availability for one DAO."""
        row = await self._find_registered(name)
        shared = self._config.shared_tables

        availability = DataAvailability(
            twitter=await self._db.table_exists(self.table_name_for(name)),
            discord=await self._db.table_exists(shared["discord"]),
            telegram=await self._db.table_exists(shared["telegram"]),
            governance=await self._has_governance_space(name),
            liquidity=await self._db.table_exists(shared["liquidity"]),
        )

        entity_name = row.get("name", name) if row else name
        return EntityOverview(
            name=entity_name,
            display_name=self.display_name(entity_name.lower()),
            slug=(row or {}).get("slug") or slugify(entity_name),
            is_registered=row is not None,
            registry=row or {},
            data_availability=availability,
        )

    async def _count_or_zero(self, table_name: str) -> int:
        try:
            return await self._db.count_rows(table_name)
        except BackendError as e:
            logger.warning("Could not count rows in %s: %s", table_name, e)
            return 0

    async def get_database_stats(self) -> DatabaseStats:
        """Table existence, DAO counts and row totals."""
        registry = self._config.registry_table
        tables: dict[str, bool] = {registry: await self._db.table_exists(registry)}
        for table_name in self._config.shared_tables.values():
            tables[table_name] = await self._db.table_exists(table_name)

        registered = await self._count_or_zero(registry) if tables[registry] else 0
        names = await self.list_known_entities()

        tweet_tables = 0
        total_tweets = 0
        for name in names:
            table_name = self.table_name_for(name)
            if await self._db.table_exists(table_name):
                tweet_tables += 1
                total_tweets += await self._count_or_zero(table_name)

        row_counts = {"tweets": total_tweets}
        for kind, table_name in self._config.shared_tables.items():
            row_counts[kind] = await self._count_or_zero(table_name) if tables[table_name] else 0

        return DatabaseStats(
            entity_count=len(names),
            registered_entities=registered,
            entities_with_tweet_data=tweet_tables,
            tables=tables,
            row_counts=row_counts,
            available_entities=sorted(names, key=str.casefold),
        )


_catalog: EntityCatalog | None = None


def get_entity_catalog() -> EntityCatalog:
    """Get or create the global entity catalog."""
    global _catalog
    if _catalog is None:
        _catalog = EntityCatalog(get_db(), load_catalog_config(get_settings().catalog_path))
    return _catalog
