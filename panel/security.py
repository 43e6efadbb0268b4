"""Operator authentication for the alerting endpoints."""
from __future__ import annotations

import hmac

from fastapi import Depends, Header, HTTPException, status

from panel.config import Settings, get_settings
from panel.utils.errors import error_response


def _extract_token(
    authorization: str | None = Header(default=None),
    x_api_key: str | None = Header(default=None, alias="X-API-Key"),
) -> str | None:
    """Read the token from ``Authorization: Bearer ...`` or ``X-API-Key``."""
    if x_api_key:
        return x_api_key.strip()
    if authorization and authorization.startswith("Bearer "):
        return authorization.split(" ", 1)[1].strip()
    return None


def require_admin_token(
    token: str | None = Depends(_extract_token),
    settings: Settings = Depends(get_settings),
) -> None:
    """Reject requests that do not carry the configured admin token."""

    expected = settings.ADMIN_API_TOKEN
    if expected is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=error_response("ADMIN_TOKEN_UNSET", "ADMIN_API_TOKEN is not configured."),
        )
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=error_response("NO_API_KEY", "API key required."),
        )
    if not hmac.compare_digest(token.encode("utf-8"), expected.encode("utf-8")):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=error_response("INVALID_API_KEY", "Invalid API key."),
        )


__all__ = ["require_admin_token"]
