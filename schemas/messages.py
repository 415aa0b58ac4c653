import json
import time
from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from errors import ErrorCode, InvalidFormatError, InvalidJsonError


def now_ms() -> int:
    return int(time.time() * 1000)


class InboundMessage(BaseModel):
    """Fields every inbound envelope may carry. Unknown fields are rejected."""

    model_config = ConfigDict(extra="forbid", strict=True, frozen=True)

    room: str
    protocolVersion: Optional[int] = None
    description: Optional[Dict[str, Any]] = None
    candidate: Optional[Dict[str, Any]] = None
    text: Optional[str] = None


class JoinMessage(InboundMessage):
    type: Literal["join"]


class SignalMessage(InboundMessage):
    type: Literal["signal"]


class ChatMessage(InboundMessage):
    type: Literal["chat"]


Inbound = Annotated[Union[JoinMessage, SignalMessage, ChatMessage], Field(discriminator="type")]

_inbound_adapter = TypeAdapter(Inbound)


def parse_message(raw: str) -> Union[JoinMessage, SignalMessage, ChatMessage]:
    """Parse one raw text frame into its typed message, failing closed."""
    try:
        data = json.loads(raw)
    except (ValueError, TypeError, RecursionError) as e:
        raise InvalidJsonError(str(e)) from e

    try:
        return _inbound_adapter.validate_python(data)
    except ValidationError as e:
        raise InvalidFormatError(f"{e.error_count()} validation error(s)") from e
    except RecursionError as e:
        raise InvalidFormatError("Message nested too deeply") from e


class Outbound(BaseModel):
    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)


class WelcomeMessage(Outbound):
    type: Literal["welcome"] = "welcome"
    user: str
    ts: int = Field(default_factory=now_ms)
    protocolVersion: int


class JoinedMessage(Outbound):
    type: Literal["joined"] = "joined"
    room: str


class ErrorMessage(Outbound):
    type: Literal["error"] = "error"
    code: ErrorCode


class ChatBroadcast(Outbound):
    type: Literal["chat"] = "chat"
    from_: str = Field(alias="from")
    text: str
    ts: int = Field(default_factory=now_ms)

    model_config = ConfigDict(populate_by_name=True)


class PingMessage(Outbound):
    type: Literal["ping"] = "ping"
    ts: int = Field(default_factory=now_ms)


PONG_TYPE = "pong"
MAX_ACK_LENGTH = 64


def is_heartbeat_ack(raw: str) -> bool:
    """True for the ``{"type": "pong"}`` frame clients may send in reply to a ping."""
    if len(raw) > MAX_ACK_LENGTH or PONG_TYPE not in raw:
        return False
    try:
        data = json.loads(raw)
    except (ValueError, TypeError, RecursionError):
        return False
    return isinstance(data, dict) and data.get("type") == PONG_TYPE and set(data) <= {"type", "ts"}
