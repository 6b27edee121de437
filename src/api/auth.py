"""Admin auth — mutating endpoints require a matching X-Admin-Token header."""

from __future__ import annotations

import hmac

from fastapi import HTTPException, Request

from src.config import settings

ADMIN_HEADER = "X-Admin-Token"


def require_admin(request: Request) -> None:
    """FastAPI dependency: reject callers that are not privileged.

    With no token configured, mutations are refused unless
    ``allow_anonymous_admin`` is set (dev mode).
    """
    token = settings.admin_token
    if not token:
        if settings.allow_anonymous_admin:
            return
        raise HTTPException(status_code=401, detail="Admin access is not configured")

    provided = request.headers.get(ADMIN_HEADER, "")
    if not hmac.compare_digest(provided.encode(), token.encode()):
        raise HTTPException(status_code=401, detail=f"Invalid or missing {ADMIN_HEADER}")
