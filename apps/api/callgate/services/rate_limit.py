"""Per-client token bucket admission control.

One bucket per client identifier (usually the caller's IP). Buckets refill
continuously and lazily on access; nothing runs in the background. The
registry is bounded: buckets that sat idle long enough to refill completely
are dropped, and the least recently used bucket is evicted once the registry
holds ``max_clients`` entries.
"""
from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from typing import Callable

from fastapi import Request

from ..core.errors import RateLimitExceeded

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


class TokenBucket:
    """Capped pool of permits replenished at ``refill_rate`` tokens per second."""

    __slots__ = ("_capacity", "_refill_rate", "_tokens", "_last_refill", "_clock", "_lock")

    def __init__(self, capacity: float, refill_rate: float, clock: Clock = time.monotonic) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        if refill_rate <= 0:
            raise ValueError("refill_rate must be positive")
        self._capacity = float(capacity)
        self._refill_rate = float(refill_rate)
        self._tokens = float(capacity)
        self._clock = clock
        self._last_refill = clock()
        self._lock = threading.Lock()

    @property
    def capacity(self) -> float:
        return self._capacity

    @property
    def refill_rate(self) -> float:
        return self._refill_rate

    @property
    def tokens(self) -> float:
        with self._lock:
            return self._tokens

    def allow(self) -> bool:
        """Refill for the elapsed time, then try to take one token."""

        with self._lock:
            now = self._clock()
            # Monotonic clocks never go back, but injected ones might.
            elapsed = max(0.0, now - self._last_refill)
            self._tokens = min(self._capacity, self._tokens + elapsed * self._refill_rate)
            self._last_refill = now

            if self._tokens >= 1.0:
                self._tokens -= 1.0
                return True
            return False


class RateLimiterRegistry:
    """Lazily creates one :class:`TokenBucket` per client identifier."""

    def __init__(
        self,
        rate: float,
        burst: float,
        *,
        max_clients: int = 10_000,
        idle_seconds: float = 600.0,
        clock: Clock = time.monotonic,
    ) -> None:
        if max_clients < 1:
            raise ValueError("max_clients must be at least 1")
        self.rate = float(rate)
        self.burst = float(burst)
        self.max_clients = max_clients
        # A bucket idle for burst/rate seconds is full again, so dropping it
        # earlier than that would hand the client a fresh burst.
        self.idle_seconds = max(float(idle_seconds), self.burst / self.rate)
        self._clock = clock
        self._buckets: OrderedDict[str, tuple[TokenBucket, float]] = OrderedDict()
        self._lock = threading.Lock()

    @classmethod
    def from_per_minute(cls, per_minute: float, burst: float, **kwargs) -> "RateLimiterRegistry":
        """Build a registry from a requests-per-minute budget."""

        return cls(per_minute / 60.0, burst, **kwargs)

    def __len__(self) -> int:
        with self._lock:
            return len(self._buckets)

    def __contains__(self, client_id: object) -> bool:
        with self._lock:
            return client_id in self._buckets

    def get_or_create(self, client_id: str) -> TokenBucket:
        """Return the bucket for ``client_id``, creating it on first sight."""

        with self._lock:
            now = self._clock()
            self._evict_idle(now)

            entry = self._buckets.get(client_id)
            if entry is None:
                bucket = TokenBucket(self.burst, self.rate, clock=self._clock)
                while len(self._buckets) >= self.max_clients:
                    evicted, _ = self._buckets.popitem(last=False)
                    logger.debug("Evicted rate limit bucket for %s (registry full)", evicted)
            else:
                bucket = entry[0]
                self._buckets.move_to_end(client_id)

            self._buckets[client_id] = (bucket, now)
            return bucket

    def admit(self, client_id: str) -> bool:
        """Return ``True`` when the client may proceed."""

        return self.get_or_create(client_id).allow()

    def _evict_idle(self, now: float) -> None:
        # Entries are ordered by last access, so the stale ones sit at the front.
        while self._buckets:
            client_id, (_, last_seen) = next(iter(self._buckets.items()))
            if now - last_seen <= self.idle_seconds:
                break
            self._buckets.popitem(last=False)
            logger.debug("Evicted idle rate limit bucket for %s", client_id)


def client_identifier(request: Request, trust_proxy: bool = False) -> str:
    """Derive the admission key for a request.

    Proxy headers are only honoured when ``trust_proxy`` is set; otherwise any
    client could pick its own key and sidestep the limiter.
    """

    if trust_proxy:
        real_ip = request.headers.get("x-real-ip", "").strip()
        if real_ip:
            return real_ip
        forwarded = request.headers.get("x-forwarded-for", "")
        if forwarded:
            first = forwarded.split(",")[0].strip()
            if first:
                return first

    if request.client and request.client.host:
        return request.client.host
    return "unknown"


class RateLimit:
    """FastAPI dependency enforcing admission for a named registry.

    Registries live on ``app.state.rate_limiters`` so that every route sharing
    a name shares one budget per client.
    """

    def __init__(self, name: str) -> None:
        self.name = name

    async def __call__(self, request: Request) -> None:
        registry: RateLimiterRegistry = request.app.state.rate_limiters[self.name]
        client_id = client_identifier(request, trust_proxy=request.app.state.settings.trust_proxy)
        if not registry.admit(client_id):
            logger.warning("Rate limit exceeded for %s on %s", client_id, request.url.path)
            raise RateLimitExceeded(client_id)
