"""
app/main.py

Purpose: Application entry point

- Builds the FastAPI app and its InstanceRegistry
- Loads configuration and logging
- Registers API routes (instances, messages, groups)
- No business logic should be written here
- Manages application lifecycle (startup/shutdown)
"""

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from typing import Optional
import time

from app.api import groups, instances, messages
from app.core.config import settings, validate_settings
from app.core.errors import add_exception_handlers
from app.core.lifecycle import provision_directories, shutdown_instances
from app.core.logging import setup_logging, get_logger
from app.services.bridge_provider import BridgeProviderFactory
from app.services.instance_registry import InstanceRegistry
from utils.time_utils import uptime_seconds, utc_now_iso

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.
    Handles startup and shutdown events.
    """
    # Startup
    provision_directories()
    setup_logging()

    try:
        validate_settings()
        logger.info("✅ Configuration validated")
    except Exception as e:
        logger.critical(f"Failed to start application: {str(e)}", exc_info=True)
        raise

    logger.info(f"🚀 WhatsApp API Server running on port {settings.PORT}")
    logger.info(f"Environment: {settings.ENVIRONMENT}")

    yield  # Application runs here

    # Shutdown
    logger.info("🛑 Received shutdown signal. Starting graceful shutdown...")

    await shutdown_instances(app.state.registry)

    provider_factory = getattr(app.state, "provider_factory", None)
    if provider_factory is not None and hasattr(provider_factory, "aclose"):
        await provider_factory.aclose()
        logger.info("✅ Session bridge client closed")


def create_app(registry: Optional[InstanceRegistry] = None) -> FastAPI:
    """
    Builds the application around ``registry``.

    Without a registry, one backed by the session bridge is created.
    """
    app = FastAPI(
        title="WhatsApp Multi-Instance API",
        description="REST gateway over multiple WhatsApp sessions",
        version="1.0.0",
        lifespan=lifespan,
        debug=settings.DEBUG,
        docs_url="/docs" if settings.is_development else None,  # Disable docs in production
        redoc_url="/redoc" if settings.is_development else None,
    )

    if registry is None:
        provider_factory = BridgeProviderFactory(settings)
        registry = InstanceRegistry(provider_factory, auth_dir=settings.AUTH_DIR)
        app.state.provider_factory = provider_factory

    app.state.registry = registry

    # CORS Middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Request timing middleware
    @app.middleware("http")
    async def add_process_time_header(request: Request, call_next):
        """Add processing time header to all responses."""
        start_time = time.time()
        response = await call_next(request)
        process_time = time.time() - start_time
        response.headers["X-Process-Time"] = str(process_time)

        # Log slow requests
        if process_time > 5.0:
            logger.warning(
                f"Slow request detected: {request.method} {request.url.path} ({process_time:.2f}s)"
            )

        return response

    add_exception_handlers(app)

    app.include_router(instances.router, tags=["Instances"])
    app.include_router(messages.router, tags=["Messages"])
    app.include_router(groups.router, tags=["Groups"])

    @app.get("/health", tags=["Health"])
    async def health_check(request: Request):
        return {
            "success": True,
            "message": "WhatsApp API Server is running",
            "timestamp": utc_now_iso(),
            "uptime": uptime_seconds(),
            "instances": len(request.app.state.registry),
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.is_development,
        log_level=settings.LOG_LEVEL.lower()
    )
