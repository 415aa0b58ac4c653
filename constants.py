import os
from typing import Optional, Tuple

from pydantic import BaseModel, Field, ValidationError

from errors import ConfigurationError

PROTOCOL_VERSION = 1

HOST = os.getenv("HOST", "0.0.0.0")
PORT = os.getenv("PORT", 8808)
MAX_PAYLOAD_MB = os.getenv("MAX_PAYLOAD_MB", 10)
MAX_PAYLOAD_BYTES = os.getenv("MAX_PAYLOAD_BYTES", None)

STATIC_TOKEN = os.getenv("STATIC_TOKEN", None)
JWT_SECRET = os.getenv("JWT_SECRET", None)
JWT_ALGORITHMS = os.getenv("JWT_ALGORITHMS", "HS256")

ROOM_CAPACITY = os.getenv("ROOM_CAPACITY", 2)
HEARTBEAT_INTERVAL_S = os.getenv("HEARTBEAT_INTERVAL_S", 30)
ROOM_TTL_S = os.getenv("ROOM_TTL_S", 3600)
CLEANUP_INTERVAL_S = os.getenv("CLEANUP_INTERVAL_S", 600)
RATE_LIMIT = os.getenv("RATE_LIMIT", 100)
MAX_CHAT_LENGTH = os.getenv("MAX_CHAT_LENGTH", 1000)

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FILE = os.getenv("LOG_FILE", None)


class Settings(BaseModel):
    host: str = "0.0.0.0"
    port: int = Field(8808, gt=0, lt=65536)
    max_payload_bytes: int = Field(10 * 1024 * 1024, gt=0)
    static_token: Optional[str] = None
    jwt_secret: Optional[str] = None
    jwt_algorithms: Tuple[str, ...] = ("HS256",)
    room_capacity: int = Field(2, gt=0)
    heartbeat_interval_s: float = Field(30.0, gt=0)
    room_ttl_s: float = Field(3600.0, gt=0)
    cleanup_interval_s: float = Field(600.0, gt=0)
    rate_limit: int = Field(100, gt=0)
    max_chat_length: int = Field(1000, gt=0)
    protocol_version: int = PROTOCOL_VERSION

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from the environment variables read at import time.

        Empty strings count as unset so that ``JWT_SECRET=`` in a compose file
        does not silently enable a blank key.
        """
        if MAX_PAYLOAD_BYTES:
            max_payload = MAX_PAYLOAD_BYTES
        else:
            try:
                max_payload = int(MAX_PAYLOAD_MB) * 1024 * 1024
            except (TypeError, ValueError):
                raise ConfigurationError(f"MAX_PAYLOAD_MB must be an integer, got {MAX_PAYLOAD_MB!r}")

        algorithms = tuple(a.strip() for a in str(JWT_ALGORITHMS).split(",") if a.strip())

        try:
            return cls(
                host=HOST,
                port=PORT,
                max_payload_bytes=max_payload,
                static_token=STATIC_TOKEN or None,
                jwt_secret=JWT_SECRET or None,
                jwt_algorithms=algorithms or ("HS256",),
                room_capacity=ROOM_CAPACITY,
                heartbeat_interval_s=HEARTBEAT_INTERVAL_S,
                room_ttl_s=ROOM_TTL_S,
                cleanup_interval_s=CLEANUP_INTERVAL_S,
                rate_limit=RATE_LIMIT,
                max_chat_length=MAX_CHAT_LENGTH,
            )
        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration: {e}") from e
