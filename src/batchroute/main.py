"""FastAPI application entry point."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager, suppress

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api.routes import batches, drivers, health, maintenance, orders, stops
from .config import settings
from .services.dispatch import get_dispatch_service


async def _reconcile_periodically(interval: float) -> None:
    while True:
        await asyncio.sleep(interval)
        try:
            report = await asyncio.to_thread(get_dispatch_service().reconcile)
        except Exception as exc:
            logging.exception(f"Periodic reconciliation failed: {exc}")
            continue
        repaired = len(report.promoted) + len(report.delivered) + len(report.reweighed) + len(report.removed)
        if repaired:
            logging.info(f"Periodic reconciliation repaired {repaired} batch(es)")


@asynccontextmanager
async def lifespan(app: FastAPI):
    task = None
    if settings.reconcile_interval_seconds > 0:
        task = asyncio.create_task(_reconcile_periodically(settings.reconcile_interval_seconds))
    try:
        yield
    finally:
        if task is not None:
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task
        if get_dispatch_service.cache_info().currsize:
            get_dispatch_service().shutdown()


def create_app() -> FastAPI:
    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    if settings.frontend_allowed_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=list(settings.frontend_allowed_origins),
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    # Root endpoint for diagnostics
    @app.get("/")
    def root():
        return {
            "service": settings.app_name,
            "status": "running",
            "api_prefix": settings.api_prefix,
            "health": f"{settings.api_prefix}/health",
            "docs": "/docs",
        }

    app.include_router(health.router, prefix=settings.api_prefix)
    app.include_router(orders.router, prefix=settings.api_prefix)
    app.include_router(batches.router, prefix=settings.api_prefix)
    app.include_router(drivers.router, prefix=settings.api_prefix)
    app.include_router(stops.router, prefix=settings.api_prefix)
    app.include_router(maintenance.router, prefix=settings.api_prefix)
    return app


app = create_app()
