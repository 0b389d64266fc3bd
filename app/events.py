import logging

from fastapi import FastAPI

from app.core.settings import settings
from app.db.url import redact_database_url
from app.services.runtime import SettlementRuntime

logger = logging.getLogger(__name__)


def register_event_handlers(app: FastAPI) -> None:
    app.state.runtime = None

    @app.on_event("startup")
    async def on_startup() -> None:
        logger.info("Application startup database=%s", redact_database_url(settings.database_url))
        if not settings.background_workers_enabled:
            logger.info("Background workers disabled by BACKGROUND_WORKERS_ENABLED=false")
            return
        runtime = SettlementRuntime()
        await runtime.start()
        app.state.runtime = runtime

    @app.on_event("shutdown")
    async def on_shutdown() -> None:
        logger.info("Application shutdown")
        runtime = app.state.runtime
        if runtime is not None:
            await runtime.stop()
            app.state.runtime = None
