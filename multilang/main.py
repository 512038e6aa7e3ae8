"""
FastAPI application for the multilanguage backend.

All routes are mounted under /api. When BACKGROUND_WORKERS_ENABLED is
true the lifespan also starts the metafield job worker and the daily
refresh sweep as background tasks, and cancels them on shutdown.

Usage:
    uvicorn multilang.main:app
"""

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from multilang.api.dependencies import get_api_client, get_job_worker
from multilang.api.routes import metafield_jobs, oauth, quota
from multilang.config.settings import get_settings
from multilang.platform.errors import AppError, ErrorHandlerMiddleware, app_error_handler
from multilang.workers.refresh_sweep import build_refresh_sweep, run_daily

logger = logging.getLogger(__name__)

API_PREFIX = "/api"


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    tasks = []

    if settings.worker.background_workers_enabled:
        tasks.append(asyncio.create_task(get_job_worker().run_forever()))
        tasks.append(asyncio.create_task(run_daily(build_refresh_sweep(), settings.worker.sweep_hour)))
        logger.info(
            "Background workers started",
            extra={"sweep_hour": settings.worker.sweep_hour},
        )

    try:
        yield
    finally:
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        await get_api_client().close()


def create_app() -> FastAPI:
    app = FastAPI(title="Haravan Multilanguage", lifespan=lifespan)

    app.add_middleware(ErrorHandlerMiddleware)
    app.add_exception_handler(AppError, app_error_handler)

    app.include_router(oauth.router, prefix=API_PREFIX)
    app.include_router(metafield_jobs.router, prefix=API_PREFIX)
    app.include_router(quota.router, prefix=API_PREFIX)

    @app.get("/health")
    def health():
        return {"status": "ok"}

    return app


app = create_app()
