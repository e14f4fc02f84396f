from __future__ import annotations

from contextlib import asynccontextmanager
import logging
from pathlib import Path
from typing import AsyncIterator

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .. import __version__
from ..clock import Clock
from ..config import Settings
from ..db import WorkTallyDB
from ..errors import NotFoundError, StoreError, ValidationError
from ..notifier import NotificationSink
from ..store import DBStore, TrackerCache
from ..timer import TickerFactory, thread_ticker_factory
from .routes.categories import router as categories_router
from .routes.health import router as health_router
from .routes.meta import router as meta_router
from .routes.sessions import router as sessions_router
from .routes.stats import router as stats_router
from .routes.timer import router as timer_router
from .timer_service import TimerService

logger = logging.getLogger(__name__)


def create_app(
    db_path: Path | None = None,
    settings: Settings | None = None,
    clock: Clock | None = None,
    notifier: NotificationSink | None = None,
    ticker_factory: TickerFactory | None = None,
) -> FastAPI:
    resolved = (settings or Settings.from_env()).with_overrides(db_path=db_path)
    db = WorkTallyDB(resolved.db_path, journal_mode=resolved.journal_mode)
    store = DBStore(db)
    cache = TrackerCache(store).open()
    service = TimerService(
        store=store,
        clock=clock,
        notifier=notifier,
        ticker_factory=ticker_factory or thread_ticker_factory(resolved.tick_seconds),
        notifications_enabled=lambda: resolved.notify,
    )
    service.recover()

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        try:
            yield
        finally:
            service.close()
            cache.close()

    app = FastAPI(title="WorkTally API", version=__version__, lifespan=lifespan)
    app.state.db = db
    app.state.cache = cache
    app.state.timer_service = service

    app.add_exception_handler(ValidationError, _validation_error)
    app.add_exception_handler(NotFoundError, _not_found)
    app.add_exception_handler(StoreError, _store_error)

    app.include_router(health_router)
    app.include_router(meta_router)
    app.include_router(categories_router)
    app.include_router(sessions_router)
    app.include_router(stats_router)
    app.include_router(timer_router)
    return app


async def _validation_error(_: Request, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": str(exc)})


async def _not_found(_: Request, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": str(exc)})


async def _store_error(_: Request, exc: Exception) -> JSONResponse:
    logger.warning("Store error while handling request: %s", exc)
    return JSONResponse(status_code=503, content={"detail": str(exc)})
