"""
ASGI entry point for the trainer auth service.

The lifespan wires up the process-wide singletons (Redis, Google OAuth,
Brevo and MSG91 clients) and, when enabled, the cleanup scheduler. The
auth flows themselves live in app.core.services and are mounted by
whatever API layer embeds this app.
"""

from contextlib import asynccontextmanager
from typing import Annotated

from fastapi import Depends, FastAPI, Request, status
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import app_logger, settings
from app.core.db import dispose_db
from app.core.dependencies import get_async_session
from app.core.exceptions.handlers import (
    account_locked_exception_handler,
    authentication_exception_handler,
    database_exception_handler,
    exception_schema,
    general_exception_handler,
    rate_limit_exception_handler,
    service_unavailable_exception_handler,
)
from app.core.exceptions.types import (
    AccountLockedException,
    AppException,
    AuthenticationException,
    DatabaseException,
    RateLimitExceededException,
    ServiceUnavailableException,
)
from app.core.services import (
    BrevoService,
    GoogleOAuthService,
    MSG91Service,
    RedisService,
)
from app.infrastructure.scheduler import initialize_scheduler, scheduler


async def _start_clients() -> None:
    await RedisService.init(settings.REDIS_URL)
    await GoogleOAuthService.init(
        client_id=settings.GOOGLE_CLIENT_ID,
        client_secret=settings.GOOGLE_CLIENT_SECRET,
        native_client_ids=settings.GOOGLE_NATIVE_CLIENT_IDS,
    )
    await BrevoService.init(
        api_key=settings.BREVO_API_KEY,
        sender_email=settings.BREVO_SENDER_EMAIL,
        sender_name=settings.BREVO_SENDER_NAME,
    )
    await MSG91Service.init(
        auth_key=settings.MSG91_AUTH_KEY,
        template_id=settings.MSG91_TEMPLATE_ID,
    )
    app_logger.info("External clients initialized")


async def _stop_clients() -> None:
    # Reverse order of _start_clients
    await MSG91Service.aclose()
    await BrevoService.aclose()
    await GoogleOAuthService.aclose()
    await RedisService.aclose()
    app_logger.info("External clients closed")


@asynccontextmanager
async def lifespan(app: FastAPI):
    app_logger.info(f"Starting {settings.APP_NAME} ({settings.ENVIRONMENT})")
    await _start_clients()

    run_scheduler = settings.ENABLE_SCHEDULER
    if run_scheduler:
        scheduler.start()
        initialize_scheduler()
        app_logger.info("Scheduler started")
    else:
        app_logger.info("Scheduler disabled via ENABLE_SCHEDULER")

    try:
        yield
    finally:
        app_logger.info("Shutting down")
        if run_scheduler and scheduler.running:
            scheduler.shutdown()
        await _stop_clients()
        await dispose_db()


app = FastAPI(
    lifespan=lifespan,
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description=settings.APP_DESCRIPTION,
    debug=settings.DEBUG,
    openapi_url="/openapi.json",
    docs_url="/docs",
    redoc_url="/redoc",
    responses=exception_schema,
)

# Most specific first; AppException is the catch-all.
for exc_class, handler in (
    (AccountLockedException, account_locked_exception_handler),
    (RateLimitExceededException, rate_limit_exception_handler),
    (ServiceUnavailableException, service_unavailable_exception_handler),
    (AuthenticationException, authentication_exception_handler),
    (DatabaseException, database_exception_handler),
    (AppException, general_exception_handler),
):
    app.add_exception_handler(exc_class, handler)


@app.get("/", include_in_schema=False)
async def root(request: Request):
    base_url = str(request.base_url).rstrip("/")
    return {
        "message": f"Welcome to {settings.APP_NAME}",
        "documentations": {
            "swagger": f"{base_url}/docs",
            "redoc": f"{base_url}/redoc",
        },
        "version": settings.APP_VERSION,
    }


async def _database_ok(session: AsyncSession) -> bool:
    try:
        async with session.begin():
            result = await session.execute(text("SELECT 1"))
            return result.scalar() == 1
    except Exception as e:
        app_logger.error(f"Database health check failed: {e}")
        return False


@app.head("/health", include_in_schema=False)
@app.get("/health")
async def health_check(session: Annotated[AsyncSession, Depends(get_async_session)]):
    """Report database and Redis reachability; 503 if either is down."""
    checks = {
        "database": await _database_ok(session),
        "redis": await RedisService.ping(),
    }
    body = {
        "status": "ok" if all(checks.values()) else "degraded",
        "checks": {name: "ok" if ok else "unhealthy" for name, ok in checks.items()},
    }
    if body["status"] != "ok":
        raise AppException(
            "One or more health checks failed.",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            details=body,
        )
    return body
