from __future__ import annotations

import contextlib
from typing import TYPE_CHECKING

import structlog
from starlette.applications import Starlette
from starlette.middleware.cors import CORSMiddleware
from starlette.responses import JSONResponse
from starlette.routing import Route, WebSocketRoute

from hunt.messaging.router import MessageRouter
from hunt.server.rate_limit import SlidingWindowRateLimiter
from hunt.server.settings import HuntServerSettings
from hunt.server.websocket import websocket_endpoint
from hunt.session.gateway import SessionGateway
from hunt.session.recovery_cache import SessionRecoveryCache
from shared.build_info import build_info
from shared.logging import setup_logging

logger = structlog.get_logger()

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from starlette.requests import Request
    from starlette.websockets import WebSocket


async def health(_request: Request) -> JSONResponse:
    return JSONResponse({"status": "ok", **build_info()})


async def status(request: Request) -> JSONResponse:
    gateway: SessionGateway = request.app.state.gateway
    settings: HuntServerSettings = request.app.state.settings
    return JSONResponse(
        {
            "status": "ok",
            **build_info(),
            **gateway.status(),
            "max_connections": settings.max_connections,
        },
    )


def create_gateway(settings: HuntServerSettings) -> SessionGateway:
    return SessionGateway(
        settings.game_settings(),
        rate_limiter=SlidingWindowRateLimiter(settings.rate_limits()),
        recovery_cache=SessionRecoveryCache(ttl_seconds=settings.recovery_ttl_seconds),
        room_max_idle_seconds=settings.room_max_idle_seconds,
        maintenance_interval_seconds=settings.maintenance_interval_seconds,
    )


def create_app(
    settings: HuntServerSettings | None = None,
    gateway: SessionGateway | None = None,
    message_router: MessageRouter | None = None,
) -> Starlette:
    if settings is None:  # pragma: no cover
        settings = HuntServerSettings()

    if gateway is None:
        gateway = create_gateway(settings)

    if message_router is None:
        message_router = MessageRouter(gateway)

    async def ws_endpoint(websocket: WebSocket) -> None:
        await websocket_endpoint(websocket, message_router, max_connections=settings.max_connections)

    routes = [
        Route("/health", health, methods=["GET"]),
        Route("/status", status, methods=["GET"]),
        WebSocketRoute("/ws", ws_endpoint),
    ]

    @contextlib.asynccontextmanager
    async def lifespan(_app: Starlette) -> AsyncIterator[None]:
        gateway.start_maintenance()
        logger.info("hunt server ready")
        try:
            yield
        finally:
            await gateway.stop_maintenance()
            gateway.shutdown()

    app = Starlette(routes=routes, lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,  # type: ignore[arg-type]
        allow_origins=settings.cors_origins,
        allow_methods=["GET"],
        allow_headers=["Content-Type"],
    )
    app.state.settings = settings
    app.state.gateway = gateway
    return app


def get_app() -> Starlette:  # pragma: no cover
    """ASGI application factory for production use (e.g., uvicorn --factory)."""
    _settings = HuntServerSettings()
    setup_logging(log_dir=_settings.log_dir)
    return create_app(settings=_settings)
