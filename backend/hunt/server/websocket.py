from __future__ import annotations

import asyncio
import contextlib
from typing import TYPE_CHECKING
from uuid import uuid4

import structlog
from starlette.websockets import WebSocket, WebSocketDisconnect

from hunt.logic.enums import ErrorCode
from hunt.messaging.encoder import DecodeError, decode
from hunt.messaging.protocol import ConnectionProtocol
from hunt.messaging.types import ErrorMessage

logger = structlog.get_logger()

if TYPE_CHECKING:
    from hunt.messaging.router import MessageRouter

# Disconnect after this many consecutive decode errors
_MAX_DECODE_ERRORS = 5

# Strong references to cleanups still running after their endpoint was cancelled
_cleanup_tasks: set[asyncio.Task[None]] = set()


class WebSocketConnection(ConnectionProtocol):
    def __init__(self, websocket: WebSocket, connection_id: str | None = None) -> None:
        self._websocket = websocket
        self._connection_id = connection_id or uuid4().hex

    @property
    def connection_id(self) -> str:
        return self._connection_id

    async def send_bytes(self, data: bytes) -> None:
        try:
            await self._websocket.send_bytes(data)
        except WebSocketDisconnect:
            raise ConnectionError("WebSocket already disconnected") from None

    async def receive_bytes(self) -> bytes:
        try:
            return await self._websocket.receive_bytes()
        except WebSocketDisconnect:
            raise ConnectionError("WebSocket already disconnected") from None
        except KeyError:
            # text frame; decode() rejects the empty payload
            return b""

    async def close(self, code: int = 1000, reason: str = "") -> None:
        with contextlib.suppress(WebSocketDisconnect, RuntimeError):
            await self._websocket.close(code=code, reason=reason)


async def websocket_endpoint(websocket: WebSocket, router: MessageRouter, *, max_connections: int) -> None:
    if router.connection_count >= max_connections:
        await websocket.close(code=1013, reason="server_full")
        return

    await websocket.accept()

    connection = WebSocketConnection(websocket)
    logger.info("websocket connected", connection_id=connection.connection_id)
    await router.handle_connect(connection)

    decode_errors = 0

    try:
        while True:
            raw = await connection.receive_bytes()

            try:
                data = decode(raw)
            except DecodeError as e:
                decode_errors += 1
                logger.warning("decode error", error=str(e), strikes=decode_errors)
                await connection.send_message(
                    ErrorMessage(type=ErrorCode.INVALID_MESSAGE, message=str(e)).to_wire(),
                )
                if decode_errors >= _MAX_DECODE_ERRORS:
                    logger.info(
                        "too many decode errors, disconnecting",
                        connection_id=connection.connection_id,
                    )
                    await connection.close(code=4004, reason="too_many_decode_errors")
                    return
                continue

            decode_errors = 0
            await router.handle_message(connection, data)
    except (WebSocketDisconnect, RuntimeError, ConnectionError):
        pass
    finally:
        logger.info("websocket disconnected", connection_id=connection.connection_id)
        cleanup = asyncio.create_task(router.handle_disconnect(connection))
        _cleanup_tasks.add(cleanup)
        cleanup.add_done_callback(_cleanup_tasks.discard)
        try:
            # A cancelled endpoint must not cut the room's departure handling short
            await asyncio.shield(cleanup)
        finally:
            structlog.contextvars.clear_contextvars()
