"""
FastAPI application for csvhub.
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from csvhub import __version__
from csvhub.api.errors import register_exception_handlers
from csvhub.api.v1.router import api_router
from csvhub.config import Settings, get_settings
from csvhub.services.user_service import UserService
from csvhub.storage.context import open_storage
from csvhub.storage.streamed_store import StreamedFileStore
from csvhub.utils.logging import get_logger, setup_logging

logger = get_logger("main")


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Build the application. Tests pass their own settings."""
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging(settings.log_level, settings.log_file)
        logger.info(f"Starting {settings.app_name} {__version__} ({settings.environment})")

        settings.resolved_upload_dir.mkdir(parents=True, exist_ok=True)
        # One streamed store per process: its indexes live in memory
        streamed_store = StreamedFileStore(settings.resolved_streamed_store_dir, settings)
        await streamed_store.init()
        app.state.streamed_store = streamed_store

        async with open_storage(settings, streamed_store=streamed_store) as storage:
            # Databases created before roles existed lack users.is_admin
            await UserService(storage).ensure_admin_column()
        logger.info(
            f"Record store: {settings.resolved_database_path} | "
            f"Streamed store: {settings.resolved_streamed_store_dir} | "
            f"Threshold: {settings.size_threshold_mb} MB"
        )
        try:
            yield
        finally:
            await streamed_store.close()
            logger.info(f"Stopping {settings.app_name}")

    app = FastAPI(
        title=settings.app_name,
        version=__version__,
        debug=settings.debug,
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_exception_handlers(app)
    app.include_router(api_router, prefix=settings.api_prefix)
    app.dependency_overrides[get_settings] = lambda: settings
    return app


app = create_app()
