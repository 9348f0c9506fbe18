"""In-memory fixed-window rate limiter for guarded endpoints.

Each (purpose, client) pair gets a counter that lives for ``window_ms``
milliseconds from its first request. When the window expires the entry is
replaced, never extended. Windows are anchored on the first request, not on
wall-clock boundaries.

The table is process-local and best-effort: several deployed instances keep
independent counters, so the effective limit scales with instance count.
check() contains no await, so a single check is atomic on the event loop.

Memory is bounded without a background task: once the table holds more than
``sweep_threshold`` entries, expired windows are swept before the current
request is counted.
"""

from __future__ import annotations

import math
import time
from dataclasses import dataclass
from typing import Callable, Optional

from starlette.requests import Request

from gatekeeper.constants import RATE_LIMIT_SWEEP_THRESHOLD, UNKNOWN_CLIENT_ID
from gatekeeper.utils.logger import get_logger

logger = get_logger(__name__)


def monotonic_ms() -> float:
    return time.monotonic() * 1000.0


@dataclass
class RateLimitEntry:
    count: int
    reset_at: float  # clock milliseconds


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    retry_after_seconds: int = 0


class RateLimiter:
    """Fixed-window request counter keyed by ``"{purpose}:{client_id}"``.

    Owned by the application (app.state.limiter) and injected into the
    RequestGuard; tests build isolated instances with a fake clock.
    """

    def __init__(
        self,
        sweep_threshold: int = RATE_LIMIT_SWEEP_THRESHOLD,
        clock: Callable[[], float] = monotonic_ms,
    ) -> None:
        self._entries: dict[str, RateLimitEntry] = {}
        self._sweep_threshold = sweep_threshold
        self._clock = clock

    def __len__(self) -> int:
        return len(self._entries)

    def check(
        self,
        purpose: str,
        client_id: str,
        max_requests: int,
        window_ms: int,
    ) -> RateLimitResult:
        """Count one request and report whether it is within budget."""
        if len(self._entries) > self._sweep_threshold:
            self.sweep()

        key = f"{purpose}:{client_id}"
        now = self._clock()
        entry = self._entries.get(key)

        if entry is None or now >= entry.reset_at:
            self._entries[key] = RateLimitEntry(count=1, reset_at=now + window_ms)
            return RateLimitResult(allowed=True, remaining=max(0, max_requests - 1))

        if entry.count >= max_requests:
            retry_after = max(1, math.ceil((entry.reset_at - now) / 1000))
            return RateLimitResult(allowed=False, remaining=0, retry_after_seconds=retry_after)

        entry.count += 1
        return RateLimitResult(allowed=True, remaining=max(0, max_requests - entry.count))

    def sweep(self) -> int:
        """Delete every entry whose window has expired. Returns the number removed."""
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if now >= entry.reset_at]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug("rate_limit_sweep", removed=len(expired), remaining=len(self._entries))
        return len(expired)

    def reset(self) -> None:
        self._entries.clear()


def client_id_from_request(request: Request) -> str:
    """Identify the caller for rate limiting.

    Precedence:
      1. First comma-separated value of X-Forwarded-For (trimmed), when non-empty
      2. Transport peer address
      3. "unknown"
    """
    forwarded: Optional[str] = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    if request.client and request.client.host:
        return request.client.host
    return UNKNOWN_CLIENT_ID
