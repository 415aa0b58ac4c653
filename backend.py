import asyncio
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set

from connection import Connection
from errors import RegistryClosedError, RoomFullError
from logging_config import get_logger
from metrics import MetricsTracker

logger = get_logger(__name__)

DEFAULT_ROOM_CAPACITY = 2


@dataclass
class Room:
    room_id: str
    created_at: float = field(default_factory=time.monotonic)
    last_activity: float = field(default_factory=time.monotonic)
    members: Set[Connection] = field(default_factory=set)

    @property
    def size(self) -> int:
        return len(self.members)


class RoomRegistry:
    """In-memory mapping of room id to member connections.

    Every mutation runs under a single lock guarding the whole registry, and
    outbound frames are queued while holding it, so peers see broadcasts in
    the order they were dispatched.
    """

    def __init__(self, capacity: int = DEFAULT_ROOM_CAPACITY, metrics: Optional[MetricsTracker] = None, clock=time.monotonic):
        self.capacity = capacity
        self.metrics = metrics or MetricsTracker()
        self._clock = clock
        self._rooms: Dict[str, Room] = {}
        self._lock = asyncio.Lock()
        self.closed = False
        logger.info(f"Initializing RoomRegistry with capacity {capacity}")

    def get_room(self, room_id: str) -> Optional[Room]:
        return self._rooms.get(room_id)

    def __contains__(self, room_id: str) -> bool:
        return room_id in self._rooms

    @property
    def room_count(self) -> int:
        return len(self._rooms)

    @property
    def membership_count(self) -> int:
        return sum(room.size for room in self._rooms.values())

    def snapshot(self) -> Dict[str, int]:
        """Room id to member count."""
        return {room_id: room.size for room_id, room in self._rooms.items()}

    async def join(self, room_id: str, connection: Connection) -> Room:
        async with self._lock:
            if self.closed:
                raise RegistryClosedError("Registry is closed")

            room = self._rooms.get(room_id)
            if room is not None and connection in room.members:
                logger.debug(f"Connection {connection.id} already in room {room_id}")
                room.last_activity = self._clock()
                return room

            if room is not None and room.size >= self.capacity:
                logger.info(f"Join rejected: room {room_id} is full ({room.size}/{self.capacity})")
                raise RoomFullError(f"Room {room_id} is full")

            if room is None:
                room = Room(room_id=room_id, created_at=self._clock(), last_activity=self._clock())
                self._rooms[room_id] = room
                self.metrics.inc("rooms_created")
                logger.info(f"Created room {room_id}")

            room.members.add(connection)
            room.last_activity = self._clock()
            self.metrics.inc("joins")
            logger.info(f"Connection {connection.id} joined room {room_id} ({room.size}/{self.capacity})")
            return room

    async def leave(self, connection: Connection) -> List[str]:
        """Remove ``connection`` from every room. Idempotent."""
        async with self._lock:
            left = []
            for room_id, room in list(self._rooms.items()):
                if connection not in room.members:
                    continue
                room.members.discard(connection)
                left.append(room_id)
                logger.debug(f"Removed connection {connection.id} from room {room_id}")
                if not room.members:
                    del self._rooms[room_id]
                    self.metrics.inc("rooms_deleted_empty")
                    logger.info(f"Room {room_id} is empty, deleted")
            return left

    async def broadcast(self, room_id: str, sender: Optional[Connection], payload: str) -> int:
        """Queue ``payload`` to every open member except ``sender``; return the delivery count."""
        async with self._lock:
            if self.closed:
                return 0
            room = self._rooms.get(room_id)
            if room is None:
                logger.debug(f"Broadcast to unknown room {room_id}, nothing to do")
                return 0

            delivered = 0
            for member in room.members:
                if member is sender or not member.is_open:
                    continue
                if member.send(payload):
                    delivered += 1
            self.metrics.inc("messages_relayed", delivered)
            logger.debug(f"Broadcast in room {room_id} delivered to {delivered} peer(s)")
            return delivered

    async def touch(self, room_id: str) -> None:
        async with self._lock:
            if self.closed:
                return
            room = self._rooms.get(room_id)
            if room is not None:
                room.last_activity = self._clock()

    async def sweep(self, ttl: float, now: Optional[float] = None) -> List[str]:
        """Delete rooms whose last activity is older than ``ttl``, members or not."""
        if now is None:
            now = self._clock()
        async with self._lock:
            expired = [room_id for room_id, room in self._rooms.items() if now - room.last_activity > ttl]
            for room_id in expired:
                room = self._rooms.pop(room_id)
                logger.info(f"Room {room_id} inactive for {now - room.last_activity:.0f}s, swept ({room.size} member(s))")
            self.metrics.inc("rooms_swept", len(expired))
            return expired

    async def close(self) -> None:
        async with self._lock:
            self.closed = True
            logger.info(f"RoomRegistry closed with {len(self._rooms)} room(s)")
