from __future__ import annotations

from contextlib import asynccontextmanager
import logging
from time import perf_counter

from fastapi import FastAPI, Request
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware
from starlette.responses import Response

from campus_market.api.v1.router import api_router
from campus_market.core.errors import add_exception_handlers, success_response
from campus_market.core.logging import configure_logging
from campus_market.core.settings import Settings, get_settings
from campus_market.db.session import init_db, open_session
from campus_market.realtime import ConnectionManager, RealtimeDispatcher, RealtimePublisher

settings = get_settings()
configure_logging(debug=settings.debug, log_level=settings.log_level, sql_echo=settings.sql_echo)
logger = logging.getLogger(__name__)


def _build_realtime(app: FastAPI, config: Settings) -> RealtimeDispatcher:
    manager = ConnectionManager(max_subscriptions_per_connection=config.ws_max_subscriptions_per_connection)
    publisher = RealtimePublisher(manager)
    dispatcher = RealtimeDispatcher(
        publisher=publisher,
        session_factory=open_session,
        poll_interval_sec=config.realtime_dispatcher_poll_ms / 1000.0,
        batch_size=config.realtime_dispatcher_batch_size,
    )
    app.state.connection_manager = manager
    app.state.realtime_publisher = publisher
    app.state.realtime_dispatcher = dispatcher
    return dispatcher


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    dispatcher = _build_realtime(app, settings)
    if settings.realtime_dispatcher_enabled:
        await dispatcher.start()
    else:
        logger.warning("Realtime dispatcher disabled; outbox events will accumulate")
    logger.info("Campus market ready prefix=%s", settings.api_v1_prefix)
    try:
        yield
    finally:
        await dispatcher.stop()
        logger.info("Campus market stopped")


def _log_request_timing(app: FastAPI) -> None:
    @app.middleware("http")
    async def request_timing(request: Request, call_next) -> Response:
        started = perf_counter()
        response = await call_next(request)
        logger.debug(
            "HTTP %s %s status=%s duration_ms=%.2f",
            request.method,
            request.url.path,
            response.status_code,
            (perf_counter() - started) * 1000,
        )
        return response


def create_app() -> FastAPI:
    app = FastAPI(
        title=settings.app_name,
        lifespan=lifespan,
        middleware=[
            Middleware(
                CORSMiddleware,
                allow_origins=settings.cors_origins,
                allow_credentials=True,
                allow_methods=["*"],
                allow_headers=["*"],
            )
        ],
    )
    if settings.debug:
        _log_request_timing(app)

    add_exception_handlers(app)
    app.include_router(api_router, prefix=settings.api_v1_prefix)

    @app.get("/health")
    async def health_check(request: Request):
        dispatcher = getattr(request.app.state, "realtime_dispatcher", None)
        manager = getattr(request.app.state, "connection_manager", None)
        return success_response(
            {
                "ok": True,
                "realtime_dispatcher": bool(dispatcher and dispatcher.running),
                "connections": await manager.connection_count() if manager else 0,
            }
        )

    return app


app = create_app()
