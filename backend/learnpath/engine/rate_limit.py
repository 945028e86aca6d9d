"""Local rate limiting and response caching for provider calls.

Both are process-local and injectable; a deployment with several workers
supplies shared implementations through the same protocols.
"""

import math
import time
from collections import OrderedDict, deque
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

from learnpath.core.logging import get_logger

logger = get_logger(__name__)

WINDOW_SECONDS = 60.0
BURST_WINDOW_SECONDS = 10.0


@dataclass(frozen=True)
class RateDecision:
    allowed: bool
    retry_after: float | None = None


class RateLimiter(Protocol):
    def check_limit(self, estimated_tokens: int) -> RateDecision: ...

    def record_request(self, tokens: int) -> None: ...


class ResponseCache(Protocol):
    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...


class SlidingWindowRateLimiter:
    """Requests-per-minute and tokens-per-minute limits over a sliding window.

    A burst limit (default 10% of the per-minute request limit) applies to
    the last ten seconds.
    """

    def __init__(
        self,
        requests_per_minute: int,
        tokens_per_minute: int,
        burst_limit: int | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.requests_per_minute = requests_per_minute
        self.tokens_per_minute = tokens_per_minute
        self.burst_limit = burst_limit if burst_limit is not None else math.ceil(requests_per_minute * 0.1)
        self._clock = clock
        self._requests: deque[tuple[float, int]] = deque()

    def _prune(self, now: float) -> None:
        while self._requests and self._requests[0][0] <= now - WINDOW_SECONDS:
            self._requests.popleft()

    def check_limit(self, estimated_tokens: int = 1000) -> RateDecision:
        now = self._clock()
        self._prune(now)

        if len(self._requests) >= self.requests_per_minute:
            oldest = self._requests[0][0]
            return RateDecision(False, math.ceil(oldest + WINDOW_SECONDS - now))

        used = sum(tokens for _, tokens in self._requests)
        if used + estimated_tokens > self.tokens_per_minute:
            to_free = used + estimated_tokens - self.tokens_per_minute
            retry_after = WINDOW_SECONDS
            for stamp, tokens in self._requests:
                to_free -= tokens
                if to_free <= 0:
                    retry_after = math.ceil(stamp + WINDOW_SECONDS - now)
                    break
            return RateDecision(False, retry_after)

        recent = sum(1 for stamp, _ in self._requests if stamp > now - BURST_WINDOW_SECONDS)
        if self.burst_limit and recent >= self.burst_limit:
            return RateDecision(False, BURST_WINDOW_SECONDS)

        return RateDecision(True)

    def record_request(self, tokens: int) -> None:
        self._requests.append((self._clock(), tokens))

    def get_stats(self) -> dict[str, int]:
        self._prune(self._clock())
        requests = len(self._requests)
        tokens = sum(t for _, t in self._requests)
        return {
            "requests_in_last_minute": requests,
            "tokens_in_last_minute": tokens,
            "requests_remaining": max(0, self.requests_per_minute - requests),
            "tokens_remaining": max(0, self.tokens_per_minute - tokens),
        }

    def reset(self) -> None:
        self._requests.clear()


class TTLResponseCache:
    """Bounded LRU cache of provider responses with a time-to-live."""

    def __init__(
        self,
        ttl_seconds: float,
        max_size: int,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self.max_size = max_size
        self._clock = clock
        self._entries: OrderedDict[str, tuple[float, str]] = OrderedDict()
        self.hits = 0
        self.misses = 0

    def get(self, key: str) -> str | None:
        entry = self._entries.get(key)
        if entry is None or entry[0] <= self._clock():
            if entry is not None:
                del self._entries[key]
            self.misses += 1
            return None
        self._entries.move_to_end(key)
        self.hits += 1
        return entry[1]

    def set(self, key: str, value: str) -> None:
        self._entries[key] = (self._clock() + self.ttl_seconds, value)
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_size:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug("Evicted cached provider response", key=evicted[:12])

    def clear(self) -> None:
        self._entries.clear()

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0
