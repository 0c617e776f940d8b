"""
FastAPI Application Entry Point
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from salescaller.api.errors import register_exception_handlers
from salescaller.api.v1.routes import api_router
from salescaller.container import Container, build_container
from salescaller.core.config import ConfigManager, Settings
from salescaller.core.logging_config import configure_logging

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan - startup and shutdown events.

    Startup:
    - Validates the selected provider configurations
    - Builds the container unless one was injected
    - Starts lane workers in-process when RUN_WORKERS is set

    Shutdown:
    - Drains in-process workers
    - Closes providers, Redis and the store (only what we built)
    """
    # ========================
    # STARTUP
    # ========================
    settings: Settings = app.state.settings
    configure_logging(settings.log_level)
    logger.info("Starting Sales Caller...")

    strict_validation = settings.environment == "production"
    owns_container = app.state.container is None

    if owns_container:
        config = ConfigManager(env=settings.environment)
        try:
            from salescaller.core.validation import validate_providers_on_startup
            validate_providers_on_startup(settings, config, strict=strict_validation)
        except RuntimeError as e:
            if strict_validation:
                logger.error(f"Startup failed: {e}")
                raise
            logger.warning(f"Configuration warnings (non-fatal in {settings.environment}): {e}")

        app.state.container = await build_container(settings, config)

    container: Container = app.state.container
    await container.queue.initialize()

    if settings.run_workers:
        await container.worker_pool.start()
        logger.info("In-process lane workers started")

    logger.info("Sales Caller started successfully")

    yield  # Application is running

    # ========================
    # SHUTDOWN
    # ========================
    logger.info("Shutting down Sales Caller...")

    if settings.run_workers:
        try:
            await container.worker_pool.shutdown()
        except Exception as e:
            logger.error(f"Error stopping workers: {e}")

    if owns_container:
        try:
            await container.close()
        except Exception as e:
            logger.error(f"Error during shutdown: {e}")
        app.state.container = None

    logger.info("Sales Caller shutdown complete")


def create_app(container: Optional[Container] = None, settings: Optional[Settings] = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        container: Pre-built container (tests); built in the lifespan otherwise
        settings: Environment settings; defaults to the container's or .env
    """
    settings = settings or (container.settings if container else Settings())

    app = FastAPI(
        title="Sales Caller",
        description="Sales operations backend: AI calls, WhatsApp follow-ups and payment links",
        version="1.0.0",
        lifespan=lifespan
    )
    app.state.settings = settings
    app.state.container = container

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)

    # Include API routes
    app.include_router(api_router, prefix=settings.api_prefix)

    @app.get("/")
    async def root():
        return {"message": "Sales Caller API", "status": "running"}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
