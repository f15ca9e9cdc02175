# crosslister/main.py

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from crosslister import models  # noqa: F401  (registers tables)
from crosslister.core.config import get_settings
from crosslister.core.exceptions import BaseServiceError
from crosslister.core.logging_config import configure_logging
from crosslister.database import async_session
from crosslister.integrations.setup import setup_adapter_registry
from crosslister.routes import health, listings, notifications, platforms, sync
from crosslister.routes.errors import status_for
from crosslister.scheduler import start_scheduler, stop_scheduler

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    configure_logging(settings.LOG_LEVEL)

    async with async_session() as db:
        app.state.adapters = await setup_adapter_registry(db, settings)

    await start_scheduler(app.state.adapters)
    try:
        yield  # This is where the app runs
    finally:
        await stop_scheduler()
        await app.state.adapters.aclose()


app = FastAPI(
    title="Crosslister",
    description="Multi-platform listing synchronization",
    lifespan=lifespan
)


@app.exception_handler(BaseServiceError)
async def service_error_handler(request: Request, exc: BaseServiceError):
    # Safety net for errors raised outside the routes' own handling
    logger.warning(f"{request.method} {request.url.path} failed: {exc.code} {exc.message}")
    return JSONResponse(status_code=status_for(exc), content={"detail": exc.to_dict()})


app.include_router(listings.router)
app.include_router(sync.router)
app.include_router(platforms.router)
app.include_router(notifications.router)
app.include_router(health.router)
