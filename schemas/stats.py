from typing import Dict

from pydantic import BaseModel


class HealthResponse(BaseModel):
    status: str
    shutting_down: bool


class StatsResponse(BaseModel):
    uptime_s: float
    open_connections: int
    rooms: int
    memberships: int
    room_capacity: int
    counters: Dict[str, int]
    errors_by_code: Dict[str, int]
