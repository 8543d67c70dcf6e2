"""
api/dependencies.py -- FastAPI Depends() helpers for the trigger API.

Every route except /api/v1/health requires the X-API-Key header to match the
configured API_KEY. When no key is configured the API is open in DEBUG mode
and closed (401) otherwise, so a forgotten key never exposes a production
deployment.

Layer rule: no imports from engine/ or cmms/. Engine handles are read from
app.state by the routes themselves.
"""

from __future__ import annotations

import hmac

from fastapi import HTTPException, Request

from core.config import get_settings


def require_api_key(request: Request) -> None:
    """Reject the request with 401 unless it carries the configured API key.

    Use as a router-level dependency:
        router = APIRouter(dependencies=[Depends(require_api_key)])
    """
    settings = get_settings()
    if not settings.api_key:
        if settings.debug:
            return
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "API key not configured on the server."},
        )

    supplied = request.headers.get("X-API-Key", "")
    # Constant-time comparison.
    if not supplied or not hmac.compare_digest(supplied.encode(), settings.api_key.encode()):
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Valid X-API-Key header required."},
        )
