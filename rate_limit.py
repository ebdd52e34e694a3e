"""
Login attempt limiter keyed by client address.

A rolling window per address: the counter resets once no attempt has been
seen for a full window, mirroring a fixed-size "cool down" after bursts.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional

from fastapi import Request

logger = logging.getLogger(__name__)


@dataclass
class RateLimitResult:
    allowed: bool
    retry_after_seconds: Optional[float] = None


@dataclass
class _Entry:
    count: int
    last: float


@dataclass
class LoginRateLimiter:
    max_attempts: int = 10
    window_seconds: float = 300
    clock: Callable[[], float] = time.monotonic
    _entries: Dict[str, _Entry] = field(default_factory=dict)

    def hit(self, key: str) -> RateLimitResult:
        """Record one attempt for key and say whether it may proceed."""
        now = self.clock()
        entry = self._entries.get(key)
        if entry is None or entry.last + self.window_seconds < now:
            entry = _Entry(count=0, last=now)
            self._entries[key] = entry
        entry.count += 1
        entry.last = now
        if entry.count > self.max_attempts:
            return RateLimitResult(allowed=False, retry_after_seconds=self.window_seconds)
        return RateLimitResult(allowed=True)

    def cleanup(self) -> int:
        now = self.clock()
        stale = [k for k, e in self._entries.items() if e.last + self.window_seconds < now]
        for key in stale:
            del self._entries[key]
        return len(stale)

    def __len__(self) -> int:
        return len(self._entries)


def get_rate_limiter(request: Request) -> LoginRateLimiter:
    return request.app.state.rate_limiter
