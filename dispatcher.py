from typing import Optional, Union

from backend import RoomRegistry
from connection import Connection
from constants import PROTOCOL_VERSION
from errors import (
    ErrorCode,
    InvalidJsonError,
    RateLimitError,
    RegistryClosedError,
    RelayError,
    RoomFullError,
    UnsupportedProtocolError,
)
from logging_config import get_logger
from metrics import MetricsTracker
from schemas.messages import (
    ChatBroadcast,
    ChatMessage,
    ErrorMessage,
    JoinedMessage,
    JoinMessage,
    SignalMessage,
    is_heartbeat_ack,
    parse_message,
)

logger = get_logger(__name__)


class MessageDispatcher:
    """Validates each inbound frame and routes it to the room registry."""

    def __init__(
        self,
        registry: RoomRegistry,
        metrics: Optional[MetricsTracker] = None,
        rate_limit: int = 100,
        max_chat_length: int = 1000,
        protocol_version: int = PROTOCOL_VERSION,
    ):
        self.registry = registry
        self.metrics = metrics or registry.metrics
        self.rate_limit = rate_limit
        self.max_chat_length = max_chat_length
        self.protocol_version = protocol_version

    def send_error(self, connection: Connection, code: ErrorCode) -> None:
        self.metrics.record_error(code)
        connection.send(ErrorMessage(code=code).to_json())

    async def dispatch(self, connection: Connection, raw: Union[str, bytes]) -> None:
        """Handle one raw frame. Errors are reported to ``connection`` only."""
        self.metrics.inc("messages_received")
        try:
            await self._dispatch(connection, raw)
        except RelayError as e:
            logger.debug(f"Rejected message from connection {connection.id}: {e.code.value} ({e})")
            self.send_error(connection, e.code)
        except RegistryClosedError:
            logger.debug(f"Dropped message from connection {connection.id}: shutting down")

    async def _dispatch(self, connection: Connection, raw: Union[str, bytes]) -> None:
        connection.mark_alive()
        connection.message_count += 1
        heartbeat_ack = isinstance(raw, str) and is_heartbeat_ack(raw)
        if connection.message_count > self.rate_limit:
            if connection.message_count == self.rate_limit + 1:
                logger.warning(f"Connection {connection.id} exceeded {self.rate_limit} messages in this window")
            if heartbeat_ack:
                return
            raise RateLimitError()

        if heartbeat_ack:
            return

        if isinstance(raw, bytes):
            try:
                raw = raw.decode("utf-8")
            except UnicodeDecodeError as e:
                raise InvalidJsonError("Binary frame is not UTF-8") from e

        message = parse_message(raw)

        if message.protocolVersion is not None and message.protocolVersion != self.protocol_version:
            raise UnsupportedProtocolError(f"Client speaks protocol {message.protocolVersion}")

        if self.registry.closed:
            raise RegistryClosedError("Registry is closed")

        await self.registry.touch(message.room)

        if isinstance(message, JoinMessage):
            await self._handle_join(connection, message)
        elif isinstance(message, SignalMessage):
            delivered = await self.registry.broadcast(message.room, connection, raw)
            self.metrics.inc("signals_relayed")
            logger.debug(f"Relayed signal from {connection.id} in room {message.room} to {delivered} peer(s)")
        elif isinstance(message, ChatMessage):
            text = (message.text or "")[: self.max_chat_length]
            payload = ChatBroadcast(from_=connection.identity, text=text).to_json()
            delivered = await self.registry.broadcast(message.room, connection, payload)
            self.metrics.inc("chats_relayed")
            logger.debug(f"Relayed chat from {connection.id} in room {message.room} to {delivered} peer(s)")

    async def _handle_join(self, connection: Connection, message: JoinMessage) -> None:
        try:
            await self.registry.join(message.room, connection)
        except RoomFullError:
            logger.info(f"Connection {connection.id} refused from full room {message.room}")
            raise
        connection.send(JoinedMessage(room=message.room).to_json())
