"""
huddle.api.errors — HuddleError → HTTP response mapping
=========================================================

Services raise :class:`~huddle.errors.HuddleError` subclasses; this
handler turns them into the same ``{"detail": {"error", "message"}}``
shape FastAPI uses for ``HTTPException``.  ``RateLimited`` also carries a
``Retry-After`` header.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from huddle.errors import HuddleError, RateLimited

logger = logging.getLogger(__name__)


async def huddle_error_handler(request: Request, exc: HuddleError) -> JSONResponse:
    headers: dict[str, str] = {}
    if isinstance(exc, RateLimited):
        headers["Retry-After"] = str(exc.retry_after)
    if exc.http_status >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    else:
        logger.warning(
            "%s %s refused: %s (%s)",
            request.method, request.url.path, exc.code, exc.message,
        )
    return JSONResponse(
        status_code=exc.http_status,
        content={"detail": exc.to_dict()},
        headers=headers or None,
    )


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(HuddleError, huddle_error_handler)
