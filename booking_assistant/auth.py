"""Bearer-token dependencies for the HTTP endpoints.

Two guards, one per key:
  - require_voice_token(): voice function endpoints (VOICE_API_KEY)
  - require_admin_token(): operator endpoints (ADMIN_API_KEY)

Behavior matrix (same for both keys):
  key set + valid token    → allow
  key set + wrong/missing  → 401 Unauthorized
  key empty + DEBUG=true   → allow (local dev convenience)
  key empty + DEBUG=false  → 403 Forbidden (locked in production)
"""

from __future__ import annotations

import logging
import secrets

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from booking_assistant.config import settings

log = logging.getLogger("booking_assistant.auth")

_bearer_scheme = HTTPBearer(auto_error=False)


def _check(
    key: str, env_name: str, credentials: HTTPAuthorizationCredentials | None,
) -> None:
    if not key:
        if settings.debug:
            return  # Local dev: allow without auth
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"API key not configured. Set {env_name} in .env.",
        )

    if credentials is None or not secrets.compare_digest(credentials.credentials, key):
        log.warning("Rejected request with invalid or missing %s token", env_name)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing token.",
            headers={"WWW-Authenticate": "Bearer"},
        )


async def require_voice_token(
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
) -> None:
    """FastAPI dependency: protect voice function endpoints."""
    _check(settings.voice_api_key, "VOICE_API_KEY", credentials)


async def require_admin_token(
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
) -> None:
    """FastAPI dependency: protect admin endpoints."""
    _check(settings.admin_api_key, "ADMIN_API_KEY", credentials)
