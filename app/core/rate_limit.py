from __future__ import annotations

from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from app.core.config import settings


def owner_or_remote_address(request: Request) -> str:
    # Job reads carry owner_id in the query; submissions fall back to the client address.
    owner = (request.query_params.get("owner_id") or "").strip()
    if owner:
        return f"owner:{owner}"
    return get_remote_address(request)


limiter = Limiter(key_func=owner_or_remote_address)


def rate_limit(limit: str | None = None):
    if settings.rate_limit_enabled:
        return limiter.limit(limit or settings.rate_limit)

    def decorator(func):
        return func

    return decorator
