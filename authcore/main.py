import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager

from fastapi import APIRouter, FastAPI, Request
from fastapi.responses import JSONResponse

from authcore.config.logging_config import configure_logging
from authcore.config.settings import settings
from authcore.database.client import close_db, init_db
from authcore.features.auth.container import build_security_core
from authcore.features.auth.exceptions import SessionStoreError
from authcore.features.auth.maintenance import maintenance_loop
from authcore.features.auth.router import router as auth_router
from authcore.features.csrf.router import router as csrf_router
from authcore.shared.middlewares.security_headers import security_headers_middleware

logger = logging.getLogger(__name__)


async def session_store_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Map persistence failures to a generic 503."""
    logger.error(f"Session store failure on {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=503,
        content={"detail": "Authentication service error"},
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle startup and shutdown events."""
    # Startup
    configure_logging(settings.log_level, settings.log_format)
    session_factory = await init_db() if settings.store_backend == "database" else None
    core = build_security_core(settings, session_factory)
    app.state.security = core
    cleanup_task = asyncio.create_task(maintenance_loop(core, settings.cleanup_interval_seconds))
    logger.info(f"{settings.app_name} started in {settings.environment} mode")
    yield
    # Shutdown
    cleanup_task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await cleanup_task
    await core.close()
    await close_db()


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    lifespan=lifespan,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
    openapi_url="/openapi.json" if settings.debug else None,
)

app.add_exception_handler(SessionStoreError, session_store_error_handler)

# Add security headers to every response
app.middleware("http")(security_headers_middleware)

# Router Registration
routers: list[APIRouter] = [
    auth_router,
    csrf_router,
]

for router in routers:
    app.include_router(router, prefix=settings.api_prefix)


@app.get("/")
async def root():
    return {"message": settings.app_name, "status": "running"}


@app.get("/health")
async def health():
    return {"status": "healthy"}
