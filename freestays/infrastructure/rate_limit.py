"""Submission throttle for the checkout endpoint.

Every submit starts with a PreBook call, which puts a real hold on a room,
so submissions are counted per client over a sliding window. With Redis the
count is shared by every worker; without it each process keeps its own.
"""

import math
import time
import uuid
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict, Optional

from redis import asyncio as aioredis

from freestays.config import settings
from freestays.obs.logger import log_event

KEY_PREFIX = "submit_throttle:"


@dataclass(frozen=True)
class ThrottleDecision:
    allowed: bool
    current: int
    limit: int
    retry_after: Optional[int] = None


class SubmitThrottle:
    """Sliding window over submit timestamps, keyed by client.

    ``limit`` defaults to ``SUBMIT_RATE_LIMIT`` and is read on every hit.
    The local windows are swept every ``sweep_every`` hits so clients that
    stop submitting do not stay in memory.
    """

    def __init__(self, limit: int = None, window_seconds: int = 60,
                 redis_client: Optional[aioredis.Redis] = None,
                 clock: Callable[[], float] = time.time,
                 sweep_every: int = 256):
        self._limit = limit
        self.window_seconds = window_seconds
        self.redis_client = redis_client
        self.clock = clock
        self.sweep_every = sweep_every
        self._windows: Dict[str, Deque[float]] = {}
        self._hits = 0

    @property
    def limit(self) -> int:
        return self._limit or settings.SUBMIT_RATE_LIMIT

    async def hit(self, client_key: str) -> ThrottleDecision:
        if self.redis_client is not None:
            decision = await self._hit_redis(client_key)
        else:
            decision = self._hit_local(client_key)
        if not decision.allowed:
            log_event("submit_throttled", level="WARN", current=decision.current,
                      limit=decision.limit)
        return decision

    async def _hit_redis(self, client_key: str) -> ThrottleDecision:
        key = f"{KEY_PREFIX}{client_key}"
        now = self.clock()
        # Unique member so two submits in the same instant both count
        member = f"{now}:{uuid.uuid4().hex[:8]}"
        async with self.redis_client.pipeline(transaction=True) as pipe:
            pipe.zremrangebyscore(key, 0, now - self.window_seconds)
            pipe.zadd(key, {member: now})
            pipe.zcard(key)
            pipe.expire(key, self.window_seconds + 1)
            _, _, count, _ = await pipe.execute()

        limit = self.limit
        if count <= limit:
            return ThrottleDecision(True, count, limit)
        return ThrottleDecision(False, count, limit, retry_after=self.window_seconds)

    def _hit_local(self, client_key: str) -> ThrottleDecision:
        now = self.clock()
        cutoff = now - self.window_seconds
        self._hits += 1
        if self._hits % self.sweep_every == 0:
            self.sweep(now)

        stamps = self._windows.setdefault(client_key, deque())
        while stamps and stamps[0] <= cutoff:
            stamps.popleft()

        limit = self.limit
        if len(stamps) < limit:
            stamps.append(now)
            return ThrottleDecision(True, len(stamps), limit)

        retry_after = max(1, math.ceil(stamps[0] + self.window_seconds - now))
        return ThrottleDecision(False, len(stamps), limit, retry_after=retry_after)

    def sweep(self, now: float = None) -> int:
        """Drop clients with no submit inside the window. Returns how many."""
        now = self.clock() if now is None else now
        cutoff = now - self.window_seconds
        idle = [k for k, stamps in self._windows.items() if not stamps or stamps[-1] <= cutoff]
        for k in idle:
            del self._windows[k]
        return len(idle)

    def tracked_clients(self) -> int:
        return len(self._windows)
