import asyncio

from backend import RoomRegistry
from connection import Connection
from monitors import HEARTBEAT_TIMEOUT_CODE, LivenessMonitor, RoomSweeper
from tests.conftest import make_connection, received, run


def test_tick_pings_live_connections_and_resets_counters(registry: RoomRegistry) -> None:
    async def scenario():
        a = make_connection("a")
        a.message_count = 42
        connections = {a.id: a}
        monitor = LivenessMonitor(registry, connections, interval=30)

        assert await monitor.tick() == []
        assert a.is_alive is False
        assert a.message_count == 0
        pings = await received(a)
        assert [p["type"] for p in pings] == ["ping"]

    run(scenario())


def test_tick_terminates_connections_that_missed_the_ping(registry: RoomRegistry) -> None:
    async def scenario():
        a, b = make_connection("a"), make_connection("b")
        await registry.join("r1", a)
        await registry.join("r1", b)
        connections = {a.id: a, b.id: b}
        monitor = LivenessMonitor(registry, connections, interval=30)

        await monitor.tick()
        b.mark_alive()
        assert await monitor.tick() == [a.id]

        assert a.id not in connections
        assert not a.is_open
        assert a.websocket.close_code == HEARTBEAT_TIMEOUT_CODE
        assert registry.get_room("r1").members == {b}
        assert registry.metrics.get("heartbeat_terminations") == 1

        # a late acknowledgment is discarded
        a.mark_alive()
        assert a.is_alive is False

    run(scenario())


def test_terminating_last_member_deletes_room(registry: RoomRegistry) -> None:
    async def scenario():
        a = make_connection("a")
        await registry.join("r1", a)
        connections = {a.id: a}
        monitor = LivenessMonitor(registry, connections, interval=30)
        a.is_alive = False
        await monitor.tick()
        assert "r1" not in registry

    run(scenario())


def test_periodic_task_runs_and_stops() -> None:
    registry = RoomRegistry(capacity=2)

    async def scenario():
        a = make_connection("a")
        await registry.join("r1", a)
        sweeper = RoomSweeper(registry, ttl=0.001, interval=0.01)
        sweeper.start()
        assert sweeper.running
        for _ in range(100):
            if "r1" not in registry:
                break
            await asyncio.sleep(0.01)
        await sweeper.stop()
        assert not sweeper.running
        assert "r1" not in registry

    run(scenario())


class SlowCloseWebSocket:
    """Close handshake that never completes quickly."""

    def __init__(self):
        self.sent = []
        self.close_code = None

    async def send_text(self, text: str) -> None:
        self.sent.append(text)

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self.close_code = code
        await asyncio.sleep(0.5)


def test_stale_connections_are_closed_concurrently(registry: RoomRegistry) -> None:
    async def scenario():
        connections = {}
        for i in range(5):
            conn = Connection(SlowCloseWebSocket(), f"user-{i}")
            conn.start()
            conn.is_alive = False
            await registry.join(f"room-{i}", conn)
            connections[conn.id] = conn
        live = make_connection("live")
        connections[live.id] = live
        monitor = LivenessMonitor(registry, connections, interval=30)

        loop = asyncio.get_running_loop()
        started = loop.time()
        terminated = await monitor.tick()
        elapsed = loop.time() - started

        assert len(terminated) == 5
        assert elapsed < 1.5
        assert list(connections) == [live.id]
        assert registry.room_count == 0
        assert live.message_count == 0
        assert [m["type"] for m in await received(live)] == ["ping"]

    run(scenario())
