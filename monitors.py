import asyncio
from typing import Dict, List, Optional

from backend import RoomRegistry
from connection import Connection
from logging_config import get_logger
from metrics import MetricsTracker
from schemas.messages import PingMessage

logger = get_logger(__name__)

HEARTBEAT_TIMEOUT_CODE = 1011


class PeriodicTask:
    """Runs ``tick`` every ``interval`` seconds on the event loop until stopped."""

    name = "periodic"

    def __init__(self, interval: float):
        self.interval = interval
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name=self.name)
        logger.info(f"Started {self.name} task (every {self.interval}s)")

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info(f"Stopped {self.name} task")

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.tick()
            except Exception as e:
                logger.error(f"Error in {self.name} tick: {e}", exc_info=True)

    async def tick(self) -> None:
        raise NotImplementedError


class LivenessMonitor(PeriodicTask):
    """Heartbeat: terminate connections that missed the last ping, ping the rest.

    Each tick also resets every surviving connection's message counter, so
    the interval doubles as the rate-limit window.
    """

    name = "liveness-monitor"

    def __init__(
        self,
        registry: RoomRegistry,
        connections: Dict[str, Connection],
        interval: float = 30.0,
        metrics: Optional[MetricsTracker] = None,
    ):
        super().__init__(interval)
        self.registry = registry
        self.connections = connections
        self.metrics = metrics or registry.metrics

    async def tick(self) -> List[str]:
        stale = []
        for connection in list(self.connections.values()):
            if not connection.is_alive:
                stale.append(connection)
                continue
            connection.is_alive = False
            connection.message_count = 0
            connection.send(PingMessage().to_json())

        # Membership goes first; the transport closes run together so one
        # slow close handshake cannot hold up the rest of the tick.
        for connection in stale:
            logger.warning(f"Connection {connection.id} missed heartbeat, terminating")
            self.connections.pop(connection.id, None)
            await self.registry.leave(connection)
            self.metrics.inc("heartbeat_terminations")
        if stale:
            await self.close_all(stale)
            logger.info(f"Heartbeat terminated {len(stale)} stale connection(s)")

        logger.debug(f"Heartbeat pinged {len(self.connections)} connection(s)")
        return [connection.id for connection in stale]

    async def close_all(self, connections: List[Connection]) -> None:
        results = await asyncio.gather(
            *(c.close(code=HEARTBEAT_TIMEOUT_CODE, reason="heartbeat timeout") for c in connections),
            return_exceptions=True,
        )
        for connection, result in zip(connections, results):
            if isinstance(result, Exception):
                logger.error(f"Error terminating connection {connection.id}: {result}")


class RoomSweeper(PeriodicTask):
    """Reclaims rooms with no activity for longer than ``ttl`` seconds."""

    name = "room-sweeper"

    def __init__(self, registry: RoomRegistry, ttl: float = 3600.0, interval: float = 600.0):
        super().__init__(interval)
        self.registry = registry
        self.ttl = ttl

    async def tick(self) -> List[str]:
        swept = await self.registry.sweep(self.ttl)
        if swept:
            logger.info(f"Swept {len(swept)} inactive room(s): {', '.join(swept)}")
        return swept
