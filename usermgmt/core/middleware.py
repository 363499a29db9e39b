"""CORS, request-id, timing and request audit middleware."""

import json
import logging
import time
import uuid
from typing import Optional

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from slowapi.middleware import SlowAPIMiddleware
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware

from usermgmt.core.config import settings
from usermgmt.models.log_entry import LogEntry, level_for

logger = logging.getLogger("user_management")

SKIP_AUDIT_PATHS = ("/api/health", "/docs", "/redoc", "/openapi.json")

METHOD_VERBS = {
    "GET": "read",
    "HEAD": "read",
    "POST": "create",
    "PUT": "update",
    "PATCH": "update",
    "DELETE": "delete",
}


def describe(method: str, path: str) -> tuple[str, str]:
    """Derive (action, resource) from a request line, e.g. ``users.read``."""
    parts = [p for p in path.split("/") if p]
    if parts and parts[0] == "api":
        parts = parts[1:]
    resource = parts[0] if parts else "root"
    verb = METHOD_VERBS.get(method.upper(), method.lower())
    return f"{resource}.{verb}", resource


def _write_log_entry(session_factory, values: dict) -> None:
    db = session_factory()
    try:
        db.add(LogEntry(**values))
        db.commit()
    finally:
        db.close()


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Add a request id and timing headers, and record an audit row per request."""

    async def dispatch(self, request: Request, call_next):
        request_id = str(uuid.uuid4())
        request.state.request_id = request_id
        start_time = time.time()

        response: Optional[Response] = None
        error: Optional[str] = None
        try:
            response = await call_next(request)
        except Exception as exc:
            error = f"{type(exc).__name__}: {exc}"
            raise
        finally:
            duration = round((time.time() - start_time) * 1000, 2)
            status_code = response.status_code if response is not None else 500
            logger.info("%s %s %s %sms", request.method, request.url.path, status_code, duration)
            await self._audit(request, status_code, duration, error)

        response.headers["X-Request-Id"] = request_id
        response.headers["X-Response-Time-Ms"] = str(duration)
        return response

    async def _audit(self, request: Request, status_code: int, duration: float, error: Optional[str]) -> None:
        if not settings.REQUEST_LOG_ENABLED or request.method == "OPTIONS":
            return
        path = request.url.path
        if path == "/" or path.startswith(SKIP_AUDIT_PATHS):
            return

        session_factory = getattr(request.app.state, "session_factory", None)
        if session_factory is None:
            return

        error = error or getattr(request.state, "error", None)
        action, resource = describe(request.method, path)
        values = {
            "user_id": getattr(request.state, "user_id", None),
            "action": action,
            "resource": resource,
            "method": request.method,
            "path": path[:500],
            "status_code": status_code,
            "user_agent": (request.headers.get("user-agent") or "")[:500] or None,
            "ip": request.client.host if request.client else None,
            "duration_ms": int(duration),
            "error": error,
            "level": level_for(status_code, error),
            "metadata_json": json.dumps({
                "request_id": request.state.request_id,
                "query": str(request.url.query) or None,
            }),
        }
        try:
            await run_in_threadpool(_write_log_entry, session_factory, values)
        except Exception as exc:
            logger.warning("Failed to persist request log for %s %s: %s", request.method, path, exc)


def setup_middleware(app: FastAPI) -> None:
    """Configure all middleware for the application."""
    # Rate limiting (default limit; stricter limits are set per route)
    app.add_middleware(SlowAPIMiddleware)

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Request ID + timing + audit
    app.add_middleware(RequestIdMiddleware)
