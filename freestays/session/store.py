"""Where booking drafts live between requests.

A draft is stored as the plain dict from ``BookingDraft.to_dict()``, never
as a live object a running submission might be mutating. Either store
forgets a draft ``DRAFT_TTL_SECONDS`` after its last save.
"""

import json
import time
from typing import Any, Callable, Dict, Optional, Tuple

from redis import asyncio as aioredis

from freestays.config import settings


class MemoryDraftStore:
    """Per-process store for development and single-worker deployments.

    Expired drafts are dropped when read and by a sweep that runs every
    ``sweep_every`` saves.
    """

    def __init__(self, ttl_seconds: int = None,
                 clock: Callable[[], float] = time.monotonic,
                 sweep_every: int = 64):
        self.ttl_seconds = ttl_seconds or settings.DRAFT_TTL_SECONDS
        self.clock = clock
        self.sweep_every = sweep_every
        self._drafts: Dict[str, Tuple[float, Dict[str, Any]]] = {}
        self._writes = 0

    def _live(self, saved_at: float, now: float) -> bool:
        return now - saved_at <= self.ttl_seconds

    async def get(self, draft_id: str) -> Optional[Dict[str, Any]]:
        entry = self._drafts.get(draft_id)
        if entry is None:
            return None
        saved_at, draft = entry
        if not self._live(saved_at, self.clock()):
            del self._drafts[draft_id]
            return None
        return draft

    async def set(self, draft_id: str, draft: Dict[str, Any]) -> None:
        now = self.clock()
        self._drafts[draft_id] = (now, draft)
        self._writes += 1
        if self._writes % self.sweep_every == 0:
            self.sweep(now)

    async def clear(self, draft_id: str) -> None:
        self._drafts.pop(draft_id, None)

    async def exists(self, draft_id: str) -> bool:
        return await self.get(draft_id) is not None

    def sweep(self, now: float = None) -> int:
        now = self.clock() if now is None else now
        stale = [k for k, (saved_at, _) in self._drafts.items() if not self._live(saved_at, now)]
        for k in stale:
            del self._drafts[k]
        return len(stale)

    def __len__(self) -> int:
        return len(self._drafts)


class RedisDraftStore:
    """Drafts in Redis under ``draft:<id>``, expired by Redis itself."""

    prefix = "draft:"

    def __init__(self, client: aioredis.Redis, ttl_seconds: int = None):
        self.client = client
        self.ttl_seconds = ttl_seconds or settings.DRAFT_TTL_SECONDS

    def _key(self, draft_id: str) -> str:
        return f"{self.prefix}{draft_id}"

    async def get(self, draft_id: str) -> Optional[Dict[str, Any]]:
        data = await self.client.get(self._key(draft_id))
        if not data:
            return None
        return json.loads(data)

    async def set(self, draft_id: str, draft: Dict[str, Any]) -> None:
        await self.client.setex(self._key(draft_id), self.ttl_seconds, json.dumps(draft))

    async def clear(self, draft_id: str) -> None:
        await self.client.delete(self._key(draft_id))

    async def exists(self, draft_id: str) -> bool:
        return bool(await self.client.exists(self._key(draft_id)))
