from fastapi import APIRouter, Request

from logging_config import get_logger
from schemas.stats import HealthResponse, StatsResponse

logger = get_logger(__name__)

stats_router = APIRouter(tags=["stats"])


@stats_router.get("/health", response_model=HealthResponse)
async def health(request: Request):
    service = request.app.state.service
    return HealthResponse(status="shutting_down" if service.shutting_down else "ok", shutting_down=service.shutting_down)


@stats_router.get("/stats", response_model=StatsResponse)
async def get_stats(request: Request):
    """
    Relay statistics.

    Returns:
    - uptime_s: Seconds since the process started
    - open_connections: Currently admitted connections
    - rooms: Current number of rooms
    - memberships: Sum of members across rooms
    - room_capacity: Maximum members per room
    - counters: Monotonic activity counters
    - errors_by_code: Error replies sent, per code
    """
    service = request.app.state.service
    client_host = request.client.host if request.client else "unknown"
    logger.debug(f"Stats request from {client_host}")

    snapshot = service.metrics.snapshot()
    return StatsResponse(
        uptime_s=round(service.metrics.uptime_s(), 1),
        open_connections=len(service.connections),
        rooms=service.registry.room_count,
        memberships=service.registry.membership_count,
        room_capacity=service.registry.capacity,
        counters=snapshot["counters"],
        errors_by_code=snapshot["errors_by_code"],
    )
