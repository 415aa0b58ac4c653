import asyncio
import time
import uuid
from typing import Optional

from logging_config import get_logger

logger = get_logger(__name__)

OUTBOX_SIZE = 256


class Connection:
    """One admitted client session.

    Outbound frames are queued and written by a single writer task so that
    ``send`` never blocks and frames reach the peer in the order they were
    queued. Sending on a closed connection is a no-op.
    """

    def __init__(self, websocket, identity: str, connection_id: Optional[str] = None, outbox_size: int = OUTBOX_SIZE):
        self.id = connection_id or uuid.uuid4().hex
        self._identity = identity
        self.websocket = websocket
        self.connected_at = time.time()
        self.is_alive = True
        self.message_count = 0
        self._outbox: asyncio.Queue = asyncio.Queue(maxsize=outbox_size)
        self._closed = False
        self._closing = False
        self._writer: Optional[asyncio.Task] = None

    def __repr__(self) -> str:
        return f"<Connection {self.id} identity={self._identity}>"

    @property
    def identity(self) -> str:
        return self._identity

    @property
    def is_open(self) -> bool:
        return not self._closed

    def start(self) -> None:
        if self._writer is None:
            self._writer = asyncio.create_task(self._write_loop(), name=f"writer-{self.id}")

    def send(self, payload: str) -> bool:
        if self._closed:
            return False
        try:
            self._outbox.put_nowait(payload)
        except asyncio.QueueFull:
            logger.warning(f"Outbound queue full for connection {self.id}, dropping frame")
            return False
        return True

    def mark_alive(self) -> None:
        """Record a heartbeat acknowledgment. Ignored once the connection is closed."""
        if self._closed:
            logger.debug(f"Discarding late heartbeat ack from closed connection {self.id}")
            return
        self.is_alive = True

    async def _write_loop(self) -> None:
        while True:
            payload = await self._outbox.get()
            try:
                await self.websocket.send_text(payload)
            except Exception as e:
                # Peer went away; remaining frames can never be delivered.
                logger.debug(f"Send failed on connection {self.id}: {e}")
                self._closed = True
                self._discard_pending()
            finally:
                self._outbox.task_done()

    def _discard_pending(self) -> None:
        while True:
            try:
                self._outbox.get_nowait()
            except asyncio.QueueEmpty:
                return
            self._outbox.task_done()

    async def drain(self) -> None:
        """Wait until every queued frame has been handed to the transport."""
        if self._writer is not None:
            await self._outbox.join()

    async def close(self, code: int = 1000, reason: str = "", flush_timeout: Optional[float] = None) -> None:
        """Close the connection. Idempotent.

        With ``flush_timeout`` the queued frames are given that long to be
        written first; without it the connection is terminated at once.
        """
        if self._closing:
            return
        self._closing = True
        self._closed = True

        if self._writer is not None:
            if flush_timeout:
                try:
                    await asyncio.wait_for(self.drain(), timeout=flush_timeout)
                except asyncio.TimeoutError:
                    logger.debug(f"Flush timed out for connection {self.id}")
            writer, self._writer = self._writer, None
            writer.cancel()
            try:
                await writer
            except asyncio.CancelledError:
                pass
        self._discard_pending()

        try:
            await self.websocket.close(code=code, reason=reason)
            logger.debug(f"Closed connection {self.id} with code {code}")
        except Exception as e:
            # Transport already closed by the peer.
            logger.debug(f"Error closing WebSocket for connection {self.id}: {e}")
