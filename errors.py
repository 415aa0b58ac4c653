from enum import Enum


class ErrorCode(str, Enum):
    UNAUTHORIZED = "UNAUTHORIZED"
    INVALID_JSON = "INVALID_JSON"
    INVALID_FORMAT = "INVALID_FORMAT"
    UNSUPPORTED_PROTOCOL = "UNSUPPORTED_PROTOCOL"
    ROOM_FULL = "ROOM_FULL"
    RATE_LIMIT = "RATE_LIMIT"


class ConfigurationError(Exception):
    """Fatal startup error; the process must not serve traffic."""


class RelayError(Exception):
    """Non-fatal error reported back to the originating connection."""

    code: ErrorCode

    def __init__(self, message: str = ""):
        super().__init__(message or self.code.value)


class AuthFailure(RelayError):
    code = ErrorCode.UNAUTHORIZED


class ValidationFailure(RelayError):
    code = ErrorCode.INVALID_FORMAT


class InvalidJsonError(ValidationFailure):
    code = ErrorCode.INVALID_JSON


class InvalidFormatError(ValidationFailure):
    code = ErrorCode.INVALID_FORMAT


class UnsupportedProtocolError(ValidationFailure):
    code = ErrorCode.UNSUPPORTED_PROTOCOL


class RoomFullError(RelayError):
    code = ErrorCode.ROOM_FULL


class RateLimitError(RelayError):
    code = ErrorCode.RATE_LIMIT


class RegistryClosedError(Exception):
    """Raised when a room mutation is attempted after shutdown began."""
