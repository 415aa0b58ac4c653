import asyncio
from typing import Dict, Optional

from fastapi import WebSocket
from starlette.websockets import WebSocketDisconnect

from auth import Authenticator
from backend import RoomRegistry
from connection import Connection
from constants import Settings
from dispatcher import MessageDispatcher
from errors import AuthFailure, ErrorCode
from logging_config import get_logger
from metrics import MetricsTracker
from monitors import LivenessMonitor, RoomSweeper
from schemas.messages import ErrorMessage, WelcomeMessage

logger = get_logger(__name__)

CLOSE_NORMAL = 1000
CLOSE_GOING_AWAY = 1001
CLOSE_POLICY_VIOLATION = 1008
CLOSE_TRY_AGAIN_LATER = 1013


class RelayService:
    """Owns the registry, dispatcher and periodic tasks for one relay process.

    Constructed at startup, started from the application lifespan and shut
    down exactly once. All connection admission goes through ``serve``.
    """

    def __init__(self, settings: Settings, authenticator: Optional[Authenticator] = None):
        self.settings = settings
        self.authenticator = authenticator or Authenticator(
            static_token=settings.static_token,
            jwt_secret=settings.jwt_secret,
            jwt_algorithms=settings.jwt_algorithms,
        )
        self.metrics = MetricsTracker()
        self.registry = RoomRegistry(capacity=settings.room_capacity, metrics=self.metrics)
        self.dispatcher = MessageDispatcher(
            self.registry,
            metrics=self.metrics,
            rate_limit=settings.rate_limit,
            max_chat_length=settings.max_chat_length,
            protocol_version=settings.protocol_version,
        )
        self.connections: Dict[str, Connection] = {}
        self.liveness = LivenessMonitor(
            self.registry, self.connections, interval=settings.heartbeat_interval_s, metrics=self.metrics
        )
        self.sweeper = RoomSweeper(self.registry, ttl=settings.room_ttl_s, interval=settings.cleanup_interval_s)
        self.shutting_down = False
        self._shutdown_complete = asyncio.Event()
        self._idle = asyncio.Event()
        self._idle.set()

    def start(self) -> None:
        self.liveness.start()
        self.sweeper.start()
        logger.info(
            f"Relay started: capacity={self.settings.room_capacity} rate_limit={self.settings.rate_limit} "
            f"heartbeat={self.settings.heartbeat_interval_s}s room_ttl={self.settings.room_ttl_s}s"
        )

    async def serve(self, websocket: WebSocket, token: Optional[str]) -> None:
        """Run one WebSocket session from admission to cleanup."""
        if self.shutting_down:
            logger.info("WebSocket connection rejected: server is shutting down")
            self.metrics.inc("connections_rejected")
            await websocket.close(code=CLOSE_TRY_AGAIN_LATER, reason="Server shutting down")
            return

        await websocket.accept()

        try:
            identity = self.authenticator.authenticate(token)
        except AuthFailure as e:
            logger.warning(f"WebSocket connection rejected: {e}")
            await self._reject_unauthorized(websocket)
            return

        connection = Connection(websocket, identity)
        self.connections[connection.id] = connection
        self._idle.clear()
        connection.start()
        self.metrics.inc("connections_accepted")
        logger.info(f"Connection {connection.id} admitted for user {identity}")

        connection.send(WelcomeMessage(user=identity, protocolVersion=self.settings.protocol_version).to_json())

        try:
            while connection.is_open:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    logger.info(f"WebSocket disconnected for connection {connection.id} (code={message.get('code')})")
                    break

                raw = message.get("text")
                if raw is None:
                    raw = message.get("bytes") or b""
                await self.dispatcher.dispatch(connection, raw)
        except WebSocketDisconnect:
            logger.info(f"WebSocket disconnected normally for connection {connection.id}")
        except RuntimeError as e:
            # Socket was closed server-side (heartbeat or shutdown) while we were reading.
            logger.debug(f"Receive loop ended for connection {connection.id}: {e}")
        except Exception as e:
            logger.error(f"Error receiving from connection {connection.id}: {e}", exc_info=True)
        finally:
            await self.disconnect(connection)

    async def _reject_unauthorized(self, websocket: WebSocket) -> None:
        self.metrics.inc("connections_rejected")
        self.metrics.record_error(ErrorCode.UNAUTHORIZED)
        try:
            await websocket.send_text(ErrorMessage(code=ErrorCode.UNAUTHORIZED).to_json())
        except Exception as e:
            logger.debug(f"Could not send UNAUTHORIZED notice: {e}")
        try:
            await websocket.close(code=CLOSE_POLICY_VIOLATION, reason="Unauthorized")
        except Exception as e:
            logger.debug(f"Error closing WebSocket: {e}")

    async def disconnect(self, connection: Connection, code: int = CLOSE_NORMAL, reason: str = "") -> None:
        """Remove ``connection`` from every room and close it. Safe to call repeatedly."""
        self.connections.pop(connection.id, None)
        left = await self.registry.leave(connection)
        if left:
            logger.info(f"Connection {connection.id} left room(s): {', '.join(left)}")
        await connection.close(code=code, reason=reason)
        if not self.connections:
            self._idle.set()

    async def shutdown(self, flush_timeout: float = 1.0, close_timeout: float = 5.0) -> None:
        """Stop admitting connections, notify every open one, and stop the timers."""
        if self.shutting_down:
            await self._shutdown_complete.wait()
            return
        self.shutting_down = True
        logger.info(f"Shutting down relay with {len(self.connections)} open connection(s)")

        await self.registry.close()
        await self.liveness.stop()
        await self.sweeper.stop()

        connections = list(self.connections.values())
        results = await asyncio.gather(
            *(c.close(code=CLOSE_GOING_AWAY, reason="Server shutting down", flush_timeout=flush_timeout) for c in connections),
            return_exceptions=True,
        )
        for connection, result in zip(connections, results):
            if isinstance(result, Exception):
                logger.error(f"Error during closing connection {connection.id}: {result}")

        if connections:
            try:
                await asyncio.wait_for(self._idle.wait(), timeout=close_timeout)
            except asyncio.TimeoutError:
                logger.warning(f"{len(self.connections)} connection(s) did not report closure in {close_timeout}s")
            for connection in list(self.connections.values()):
                await self.disconnect(connection, code=CLOSE_GOING_AWAY)

        self._shutdown_complete.set()
        logger.info("Relay shutdown complete")
