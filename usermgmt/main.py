"""FastAPI main application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded

from usermgmt.core.config import settings
from usermgmt.core.exceptions import InternalError, UserManagementError
from usermgmt.core.middleware import setup_middleware
from usermgmt.core.rate_limiter import limiter, rate_limit_exceeded_handler
from usermgmt.db.session import SessionLocal

from usermgmt.api.auth import router as auth_router
from usermgmt.api.users import router as users_router
from usermgmt.api.profiles import router as profiles_router
from usermgmt.api.notifications import router as notifications_router
from usermgmt.api.logs import router as logs_router
from usermgmt.api.roles import router as roles_router

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger("user_management")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    logger.info("🚀 Starting User Management API")

    # Redis check; the permission cache degrades to database reads without it
    from usermgmt.services.cache_service import get_cache
    if get_cache().health_check():
        logger.info("✅ Redis connected")
    else:
        logger.warning("⚠️  Redis not available, permission cache disabled")

    yield

    logger.info("🔻 Shutting down User Management API")


app = FastAPI(
    title="User Management API",
    description="Users, roles, profiles, notifications and request logs",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# Middleware
setup_middleware(app)

# Request audit rows are written through this factory
app.state.session_factory = SessionLocal

# Rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)


@app.exception_handler(UserManagementError)
async def user_management_exception_handler(request: Request, exc: UserManagementError):
    headers = None
    if exc.status_code == 401:
        headers = {"WWW-Authenticate": "Bearer"}
    if exc.status_code >= 500:
        cause = exc.cause if isinstance(exc, InternalError) else None
        logger.error("%s %s failed: %s (cause: %r)", request.method, request.url.path, exc.message, cause)
        request.state.error = f"{type(exc).__name__}: {exc.message}"
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message},
        headers=headers,
    )


# Register routers
app.include_router(auth_router, prefix="/api")
app.include_router(users_router, prefix="/api")
app.include_router(profiles_router, prefix="/api")
app.include_router(notifications_router, prefix="/api")
app.include_router(logs_router, prefix="/api")
app.include_router(roles_router, prefix="/api")


@app.get("/")
async def root():
    return {
        "name": settings.APP_NAME,
        "version": "0.1.0",
        "docs": "/docs",
    }


@app.get("/api/health")
async def health():
    """Quick health check endpoint."""
    return {"status": "ok"}
