"""FastAPI application factory."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from sheet_broadcast.api.admin import router as admin_router
from sheet_broadcast.app_logging import configure_logging
from sheet_broadcast.containers import AppContainer


def create_app(container: AppContainer) -> FastAPI:
    """Create a FastAPI app configured with dependencies."""
    configure_logging(container.settings.log_level)
    logger = logging.getLogger(__name__)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        state_container: AppContainer = app.state.container
        try:
            await state_container.engine.start()
            state_container.session_pool.start()
        except Exception:
            logger.exception("Failed to start the rendering engine")
        if state_container.settings.scheduler_autostart:
            try:
                await state_container.scheduler.start()
            except Exception:
                logger.exception("Failed to start the scheduler")
        try:
            if await state_container.messaging_client.is_connected():
                await state_container.group_directory.refresh()
        except Exception:
            logger.exception("Initial group sync failed")
        yield
        state_container.scheduler.stop()
        await state_container.session_pool.close_all()
        await state_container.engine.stop()
        await state_container.close_resources()

    app = FastAPI(lifespan=lifespan)
    app.state.container = container

    app.include_router(admin_router)

    @app.get("/health")
    async def health() -> dict[str, str]:
        """Simple health check endpoint."""
        return {"status": "ok"}

    return app
