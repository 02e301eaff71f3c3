"""
FastAPI application exposing DAO analytics data with API key auth and rate limiting.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from dao_analytics.auth import require_api_key
from dao_analytics.config import get_settings
from dao_analytics.db import (
    BackendError,
    Database,
    DatabaseError,
    NotConnectedError,
    UnsupportedQueryError,
    get_db,
)
from dao_analytics.entities import EntityCatalog, get_entity_catalog
from dao_analytics.models import (
    CustomQueryRequest,
    DatabaseStats,
    EntityList,
    EntityOverview,
    QueryResult,
)
from dao_analytics.rate_limit import get_request_limiter
from dao_analytics.sql_guard import SafetyViolation, validate_custom_query

settings = get_settings()

logging.basicConfig(
    level=settings.log_level.upper(),
    format="[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


# ---------- Security headers middleware ----------


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses."""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        return response


# ---------- App setup ----------


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    logger.info("Starting DAO analytics service...")
    db = get_db()
    await db.connect()

    catalog = get_entity_catalog()
    if await db.test_connection(catalog.config.registry_table):
        logger.info("Database connection successful")
    else:
        logger.warning("Database connection check failed - queries may not work")

    yield

    await db.disconnect()
    logger.info("DAO analytics service stopped")


app = FastAPI(
    title="DAO Analytics",
    description="Social, governance and liquidity analytics for tracked DAOs",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-API-Key"],
)


def _get_client_ip(request: Request) -> str:
    """Get client IP, respecting X-Forwarded-For if behind proxy."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


async def enforce_rate_limit(request: Request) -> None:
    """FastAPI dependency: reject clients over their request budget."""
    client_ip = _get_client_ip(request)
    limiter = get_request_limiter()
    if not limiter.allow(client_ip):
        retry_after = limiter.retry_after(client_ip)
        logger.warning("Rate limited request from %s", client_ip)
        raise HTTPException(
            status_code=429,
            detail={"error": "Too Many Requests", "retry_after": retry_after},
            headers={"Retry-After": str(retry_after)},
        )


# ---------- API routes ----------

api = APIRouter(
    prefix="/api",
    dependencies=[Depends(enforce_rate_limit), Depends(require_api_key)],
)


@api.get("/entities", response_model=EntityList)
async def list_entities(
    limit: int = Query(default=50, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    catalog: EntityCatalog = Depends(get_entity_catalog),
):
    """List registered and discovered DAOs."""
    try:
        return await catalog.list_entities(limit=limit, offset=offset)
    except DatabaseError:
        logger.exception("Error listing DAOs")
        raise


@api.get("/entities/{name}", response_model=EntityOverview)
async def entity_overview(
    name: str,
    catalog: EntityCatalog = Depends(get_entity_catalog),
):
    """Registry details and data availability for one DAO."""
    try:
        return await catalog.get_entity_overview(name)
    except DatabaseError:
        logger.exception("Error getting DAO overview for %s", name)
        raise


@api.get("/stats", response_model=DatabaseStats)
async def database_stats(catalog: EntityCatalog = Depends(get_entity_catalog)):
    """Table existence, DAO counts and row totals."""
    try:
        return await catalog.get_database_stats()
    except DatabaseError:
        logger.exception("Error getting database stats")
        raise


@api.post("/query", response_model=QueryResult)
async def custom_query(
    request: CustomQueryRequest,
    db: Database = Depends(get_db),
):
    """Validate and run a read-only custom query."""
    limit = min(request.limit, settings.custom_query_max_rows)
    query = validate_custom_query(request.query, limit=limit)
    try:
        return await db.query(query)
    except DatabaseError:
        logger.exception("Custom query failed: %s", query)
        raise


app.include_router(api)


@app.get("/api/health")
async def health(
    db: Database = Depends(get_db),
    catalog: EntityCatalog = Depends(get_entity_catalog),
):
    """Health check endpoint (no auth required)."""
    registry = catalog.config.registry_table
    db_ok = await db.test_connection(registry) if db.is_connected else False
    return {
        "status": "healthy" if db_ok else "degraded",
        "database": "connected" if db_ok else "disconnected",
    }


# ---------- Exception handlers ----------


@app.exception_handler(SafetyViolation)
async def safety_violation_handler(request: Request, exc: SafetyViolation):
    logger.warning("Rejected query from %s: %s", _get_client_ip(request), exc)
    return JSONResponse(
        status_code=400,
        content={"detail": str(exc), "error_type": exc.reason},
    )


@app.exception_handler(UnsupportedQueryError)
async def unsupported_query_handler(request: Request, exc: UnsupportedQueryError):
    return JSONResponse(
        status_code=400,
        content={"detail": str(exc), "error_type": "unsupported_query"},
    )


@app.exception_handler(BackendError)
async def backend_error_handler(request: Request, exc: BackendError):
    return JSONResponse(
        status_code=502,
        content={"detail": exc.message, "error_type": "backend_error"},
    )


@app.exception_handler(NotConnectedError)
async def not_connected_handler(request: Request, exc: NotConnectedError):
    return JSONResponse(
        status_code=503,
        content={"detail": str(exc), "error_type": "not_connected"},
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
