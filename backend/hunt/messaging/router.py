from __future__ import annotations

from typing import TYPE_CHECKING, Any

import structlog
from pydantic import ValidationError

from hunt.logic.enums import ActionType, ErrorCode
from hunt.logic.exceptions import HuntError
from hunt.messaging.types import (
    AttemptRejoinMessage,
    ErrorMessage,
    JoinGameMessage,
    PingMessage,
    SubmitItemMessage,
    parse_client_message,
)

if TYPE_CHECKING:
    from hunt.messaging.protocol import ConnectionProtocol
    from hunt.session.gateway import SessionGateway

logger = structlog.get_logger()


def _describe_validation_error(error: ValidationError) -> str:
    """First validation failure as "field: reason", which is what a client can act on."""
    first = error.errors()[0]
    location = ".".join(str(part) for part in first["loc"])
    return f"{location}: {first['msg']}" if location else first["msg"]


class MessageRouter:
    """
    Routes incoming messages to the session gateway.

    This class contains pure business logic and can be tested
    without real WebSocket connections.
    """

    def __init__(self, gateway: SessionGateway) -> None:
        self._gateway = gateway

    @property
    def connection_count(self) -> int:
        return self._gateway.connection_count

    async def handle_message(
        self,
        connection: ConnectionProtocol,
        raw_message: dict[str, Any],
    ) -> None:
        structlog.contextvars.bind_contextvars(connection_id=connection.connection_id)
        try:
            self._gateway.check_rate(ActionType.MESSAGE, connection.connection_id)
            message = parse_client_message(raw_message)
        except HuntError as e:
            await self._gateway.send_error(connection, e)
            return
        except ValidationError as e:
            logger.warning("invalid message", error_count=e.error_count())
            await connection.send_message(
                ErrorMessage(type=ErrorCode.INVALID_INPUT, message=_describe_validation_error(e)).to_wire(),
            )
            return

        try:
            await self._dispatch(connection, message)
        except HuntError as e:
            await self._gateway.send_error(connection, e)
        except Exception:
            logger.exception("unexpected error while handling message", event_type=raw_message.get("event"))
            await connection.send_message(
                ErrorMessage(type=ErrorCode.INTERNAL_ERROR, message="Internal server error").to_wire(),
            )

    async def _dispatch(
        self,
        connection: ConnectionProtocol,
        message: JoinGameMessage | AttemptRejoinMessage | SubmitItemMessage | PingMessage,
    ) -> None:
        if isinstance(message, JoinGameMessage):
            await self._gateway.join_game(connection, message.name)
        elif isinstance(message, AttemptRejoinMessage):
            await self._gateway.attempt_rejoin(connection, message.player_id)
        elif isinstance(message, SubmitItemMessage):
            await self._gateway.submit_item(connection, message)
        elif isinstance(message, PingMessage):
            await self._gateway.handle_ping(connection)

    async def handle_connect(self, connection: ConnectionProtocol) -> None:
        self._gateway.register_connection(connection)

    async def handle_disconnect(self, connection: ConnectionProtocol) -> None:
        structlog.contextvars.bind_contextvars(connection_id=connection.connection_id)
        await self._gateway.handle_disconnect(connection)
