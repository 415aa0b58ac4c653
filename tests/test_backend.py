import pytest

from backend import RoomRegistry
from errors import RegistryClosedError, RoomFullError
from tests.conftest import make_connection, received, run


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def test_join_creates_room_lazily(registry: RoomRegistry) -> None:
    async def scenario():
        a = make_connection("a")
        assert "r1" not in registry
        room = await registry.join("r1", a)
        assert room.members == {a}
        assert registry.room_count == 1
        assert registry.metrics.get("rooms_created") == 1

    run(scenario())


def test_join_full_room_is_rejected_without_mutation(registry: RoomRegistry) -> None:
    async def scenario():
        a, b, c = make_connection("a"), make_connection("b"), make_connection("c")
        await registry.join("r1", a)
        await registry.join("r1", b)
        with pytest.raises(RoomFullError):
            await registry.join("r1", c)
        assert registry.get_room("r1").members == {a, b}
        assert registry.snapshot() == {"r1": 2}

    run(scenario())


def test_rejoin_same_room_is_idempotent(registry: RoomRegistry) -> None:
    async def scenario():
        a, b = make_connection("a"), make_connection("b")
        await registry.join("r1", a)
        await registry.join("r1", b)
        await registry.join("r1", a)
        assert registry.get_room("r1").size == 2

    run(scenario())


def test_leave_deletes_empty_rooms(registry: RoomRegistry) -> None:
    async def scenario():
        a, b = make_connection("a"), make_connection("b")
        await registry.join("r1", a)
        await registry.join("r1", b)
        await registry.join("r2", a)

        assert sorted(await registry.leave(a)) == ["r1", "r2"]
        assert "r2" not in registry
        assert registry.get_room("r1").members == {b}

        assert await registry.leave(b) == ["r1"]
        assert registry.room_count == 0
        assert await registry.leave(b) == []

        # a fresh room is created on the next join
        c = make_connection("c")
        room = await registry.join("r1", c)
        assert room.members == {c}

    run(scenario())


def test_broadcast_excludes_sender(registry: RoomRegistry) -> None:
    async def scenario():
        a, b = make_connection("a"), make_connection("b")
        await registry.join("r1", a)
        await registry.join("r1", b)

        payload = '{"type":"signal","room":"r1","candidate":{"x":1}}'
        assert await registry.broadcast("r1", a, payload) == 1
        await b.drain()
        assert b.websocket.sent == [payload]
        assert await received(a) == []

    run(scenario())


def test_broadcast_with_no_peers_is_not_an_error(registry: RoomRegistry) -> None:
    async def scenario():
        a = make_connection("a")
        await registry.join("r1", a)
        assert await registry.broadcast("r1", a, "{}") == 0
        assert await registry.broadcast("missing", a, "{}") == 0

    run(scenario())


def test_broadcast_skips_closed_members(registry: RoomRegistry) -> None:
    async def scenario():
        a, b = make_connection("a"), make_connection("b")
        await registry.join("r1", a)
        await registry.join("r1", b)
        await b.close()
        assert await registry.broadcast("r1", a, "{}") == 0

    run(scenario())


def test_sweep_reclaims_stale_rooms_even_with_members() -> None:
    clock = FakeClock()
    registry = RoomRegistry(capacity=2, clock=clock)

    async def scenario():
        a, b = make_connection("a"), make_connection("b")
        await registry.join("stale", a)
        clock.now += 100
        await registry.join("fresh", b)
        clock.now += 3550

        assert await registry.sweep(ttl=3600) == ["stale"]
        assert "stale" not in registry
        assert "fresh" in registry
        assert registry.metrics.get("rooms_swept") == 1

    run(scenario())


def test_touch_postpones_sweep() -> None:
    clock = FakeClock()
    registry = RoomRegistry(capacity=2, clock=clock)

    async def scenario():
        a = make_connection("a")
        await registry.join("r1", a)
        clock.now += 3000
        await registry.touch("r1")
        await registry.touch("unknown")
        clock.now += 3000
        assert await registry.sweep(ttl=3600) == []
        assert "unknown" not in registry

    run(scenario())


def test_closed_registry_refuses_joins(registry: RoomRegistry) -> None:
    async def scenario():
        a, b = make_connection("a"), make_connection("b")
        await registry.join("r1", a)
        await registry.join("r1", b)
        await registry.close()
        with pytest.raises(RegistryClosedError):
            await registry.join("r2", a)
        assert await registry.broadcast("r1", a, "{}") == 0
        # leaving is still allowed so no membership dangles
        await registry.leave(a)
        assert registry.get_room("r1").members == {b}

    run(scenario())
