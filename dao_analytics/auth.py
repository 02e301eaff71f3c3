"""
Authentication module: shared team API key for /api routes.
"""

from __future__ import annotations

import logging
import secrets

from fastapi import HTTPException, Request, status

from dao_analytics.config import Settings, get_settings

logger = logging.getLogger(__name__)

API_KEY_HEADER = "x-api-key"


def extract_api_key(request: Request) -> str | None:
    """Read the key from X-API-Key, falling back to an Authorization bearer token."""
    api_key = request.headers.get(API_KEY_HEADER)
    if api_key:
        return api_key

    authorization = request.headers.get("authorization", "")
    if authorization.startswith("Bearer "):
        return authorization[len("Bearer "):].strip() or None
    return None


def is_valid_api_key(api_key: str | None, settings: Settings) -> bool:
    """Constant-time comparison against the configured team key."""
    if not api_key or not settings.team_api_key:
        return False
    return secrets.compare_digest(api_key, settings.team_api_key)


def _client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


async def require_api_key(request: Request) -> None:
    """FastAPI dependency: require a valid API key when auth is enabled."""
    settings = get_settings()
    if not settings.enable_auth:
        return

    if not is_valid_api_key(extract_api_key(request), settings):
        logger.warning("Invalid API key attempt from %s", _client_ip(request))
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized: Invalid API key",
        )

    logger.debug("API access granted for %s", _client_ip(request))
