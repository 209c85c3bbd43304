import json

from freestays.booking.draft import BookingDraft
from freestays.infrastructure.rate_limit import SubmitThrottle
from freestays.session.store import MemoryDraftStore, RedisDraftStore


class Clock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


class FakeAsyncRedis:
    """Just the redis.asyncio calls the stores make, kept in a dict."""

    def __init__(self):
        self.values = {}
        self.ttls = {}
        self.zsets = {}

    async def get(self, key):
        return self.values.get(key)

    async def setex(self, key, ttl, value):
        self.values[key] = value
        self.ttls[key] = ttl
        return True

    async def delete(self, key):
        return int(self.values.pop(key, None) is not None)

    async def exists(self, key):
        return int(key in self.values)

    def pipeline(self, transaction=True):
        return FakePipeline(self)


class FakePipeline:
    def __init__(self, redis):
        self.redis = redis
        self.ops = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    def zremrangebyscore(self, key, low, high):
        self.ops.append(("zrem", key, low, high))
        return self

    def zadd(self, key, mapping):
        self.ops.append(("zadd", key, mapping))
        return self

    def zcard(self, key):
        self.ops.append(("zcard", key))
        return self

    def expire(self, key, seconds):
        self.ops.append(("expire", key, seconds))
        return self

    async def execute(self):
        results = []
        for op in self.ops:
            zset = self.redis.zsets.setdefault(op[1], {})
            if op[0] == "zrem":
                for member, score in list(zset.items()):
                    if op[2] <= score <= op[3]:
                        del zset[member]
                results.append(0)
            elif op[0] == "zadd":
                zset.update(op[2])
                results.append(len(op[2]))
            elif op[0] == "zcard":
                results.append(len(zset))
            else:
                self.redis.ttls[op[1]] = op[2]
                results.append(True)
        self.ops = []
        return results


async def test_memory_store_round_trip(filled_draft):
    store = MemoryDraftStore(ttl_seconds=60)
    await store.set("d1", filled_draft.to_dict())
    assert await store.exists("d1")
    restored = BookingDraft.from_dict(await store.get("d1"))
    assert restored.roster.billing_name == "Ada Lovelace"
    assert restored.itinerary == filled_draft.itinerary
    await store.clear("d1")
    assert await store.get("d1") is None


async def test_memory_store_forgets_after_ttl():
    clock = Clock()
    store = MemoryDraftStore(ttl_seconds=10, clock=clock)
    await store.set("d1", {"locale": "en"})
    clock.now += 10
    assert await store.get("d1") == {"locale": "en"}
    clock.now += 1
    assert await store.get("d1") is None
    assert len(store) == 0


async def test_abandoned_drafts_are_swept_on_save():
    clock = Clock()
    store = MemoryDraftStore(ttl_seconds=10, clock=clock, sweep_every=4)
    for i in range(3):
        await store.set(f"old-{i}", {})
    clock.now += 60
    # The fourth save triggers the sweep; nobody ever reads the old drafts
    await store.set("fresh", {})
    assert len(store) == 1
    assert await store.exists("fresh")


async def test_redis_store_uses_prefix_and_ttl(filled_draft):
    redis = FakeAsyncRedis()
    store = RedisDraftStore(redis, ttl_seconds=900)

    await store.set("d1", filled_draft.to_dict())

    assert redis.ttls["draft:d1"] == 900
    assert json.loads(redis.values["draft:d1"])["roster"]["email"] == "ada@example.com"
    restored = BookingDraft.from_dict(await store.get("d1"))
    assert restored.roster.children_ages == "9"
    assert await store.exists("d1")
    await store.clear("d1")
    assert await store.get("d1") is None
    assert not await store.exists("d1")


def test_draft_occupancy_change_resizes_roster(filled_draft):
    filled_draft.set_occupancy(1, 0)
    assert len(filled_draft.roster.adults) == 1
    assert filled_draft.roster.children == []
    assert filled_draft.validation_problems() == []
    intent = filled_draft.build_intent()
    assert intent.adults == 1
    assert intent.children_ages == ""


async def test_local_throttle_window():
    clock = Clock()
    throttle = SubmitThrottle(limit=2, window_seconds=60, clock=clock)
    results = [(await throttle.hit("1.2.3.4")).allowed for _ in range(3)]
    assert results == [True, True, False]

    other = await throttle.hit("5.6.7.8")
    assert other.allowed and other.current == 1

    clock.now += 30
    denied = await throttle.hit("1.2.3.4")
    assert not denied.allowed
    assert denied.retry_after == 30

    clock.now += 31
    assert (await throttle.hit("1.2.3.4")).allowed


async def test_idle_clients_are_swept():
    clock = Clock()
    throttle = SubmitThrottle(limit=5, window_seconds=60, clock=clock, sweep_every=1000)
    for i in range(20):
        await throttle.hit(f"10.0.0.{i}")
    assert throttle.tracked_clients() == 20

    clock.now += 61
    assert throttle.sweep() == 20
    assert throttle.tracked_clients() == 0


async def test_periodic_sweep_bounds_tracked_clients():
    clock = Clock()
    throttle = SubmitThrottle(limit=5, window_seconds=60, clock=clock, sweep_every=10)
    for i in range(100):
        clock.now += 61
        await throttle.hit(f"10.0.{i}.1")
    assert throttle.tracked_clients() <= 10


async def test_redis_throttle_counts_across_calls():
    clock = Clock()
    redis = FakeAsyncRedis()
    throttle = SubmitThrottle(limit=2, window_seconds=60, redis_client=redis, clock=clock)

    first = await throttle.hit("1.2.3.4")
    second = await throttle.hit("1.2.3.4")
    third = await throttle.hit("1.2.3.4")

    assert (first.allowed, second.allowed, third.allowed) == (True, True, False)
    assert third.retry_after == 60
    assert redis.ttls["submit_throttle:1.2.3.4"] == 61

    clock.now += 61
    assert (await throttle.hit("1.2.3.4")).allowed
