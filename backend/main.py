"""
Main FastAPI application entry point
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from dbms_advisor import __version__
from dbms_advisor.api.routes import health, metrics, recommend, wizard
from dbms_advisor.core.config import get_settings
from dbms_advisor.core.database import init_db
from dbms_advisor.core.logging_config import LoggingConfig
from dbms_advisor.core.middleware import LoggingContextMiddleware
from dbms_advisor.core.middleware_metrics import MetricsMiddleware
from dbms_advisor.services.session_eviction_background import get_eviction_monitor
from dbms_advisor.services.telegram_transport import TelegramTransport
from dbms_advisor.services.wizard_service import get_advisor_service, get_wizard_controller

# Configure logging first
LoggingConfig.configure()

logger = LoggingConfig.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan events for FastAPI app"""
    settings = get_settings()
    logger.info(f"Starting {settings.app_name} in {settings.app_env} mode...")

    try:
        init_db()
    except Exception as e:
        # Sessions still complete; each failed save is reported to the user
        logger.error(f"Database initialization failed: {e}", exc_info=True)

    if not settings.advisor_enabled:
        logger.warning("YANDEX_API_KEY or YANDEX_FOLDER_ID is not set, AI advisor disabled")

    eviction_monitor = get_eviction_monitor()
    await eviction_monitor.start()

    transport = TelegramTransport(get_wizard_controller(), settings=settings)
    await transport.start()

    yield

    logger.info(f"Shutting down {settings.app_name}...")
    await transport.stop()
    await eviction_monitor.stop()
    await get_advisor_service().close()


_settings = get_settings()
app = FastAPI(
    title=_settings.app_name,
    description="Checklist wizard recommending a DBMS deployment model",
    version=__version__,
    lifespan=lifespan,
)

# Add logging context middleware (before CORS to capture all requests)
app.add_middleware(LoggingContextMiddleware)
app.add_middleware(MetricsMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.allowed_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler to log all unhandled errors"""
    if isinstance(exc, HTTPException):
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})

    logger.error(
        "Unhandled exception",
        exc_info=exc,
        extra={
            "error": str(exc),
            "error_type": type(exc).__name__,
            "path": request.url.path,
            "method": request.method,
        }
    )
    return JSONResponse(
        status_code=500,
        content={
            "detail": "Internal server error",
            "type": type(exc).__name__
        }
    )


app.include_router(health.router)
app.include_router(metrics.router)
app.include_router(recommend.router)
app.include_router(wizard.router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host=_settings.api_host,
        port=_settings.api_port,
        reload=_settings.app_env == "development",
    )
