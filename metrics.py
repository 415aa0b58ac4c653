"""Process-wide activity counters for the relay."""

import time
from typing import Dict

from errors import ErrorCode

COUNTERS = (
    "connections_accepted",
    "connections_rejected",
    "messages_received",
    "messages_relayed",
    "signals_relayed",
    "chats_relayed",
    "joins",
    "rooms_created",
    "rooms_deleted_empty",
    "rooms_swept",
    "errors_sent",
    "rate_limited",
    "heartbeat_terminations",
)


class MetricsTracker:
    """
    Monotonic counters covering:
    - Connection admission and rejection
    - Messages received and relayed
    - Room creation and deletion (empty or swept)
    - Errors sent, by code
    - Heartbeat terminations
    """

    def __init__(self):
        self.started_monotonic = time.monotonic()
        self._counters: Dict[str, int] = {name: 0 for name in COUNTERS}
        self._errors_by_code: Dict[str, int] = {code.value: 0 for code in ErrorCode}

    def inc(self, key: str, delta: int = 1) -> None:
        """Increment a counter. Non-positive deltas are ignored so counters never decrease."""
        if delta <= 0:
            return
        self._counters[key] = self._counters.get(key, 0) + delta

    def record_error(self, code: ErrorCode) -> None:
        self.inc("errors_sent")
        if code == ErrorCode.RATE_LIMIT:
            self.inc("rate_limited")
        self._errors_by_code[code.value] = self._errors_by_code.get(code.value, 0) + 1

    def get(self, key: str) -> int:
        return self._counters.get(key, 0)

    def uptime_s(self) -> float:
        return time.monotonic() - self.started_monotonic

    def snapshot(self) -> Dict[str, object]:
        return {
            "counters": dict(self._counters),
            "errors_by_code": dict(self._errors_by_code),
        }
