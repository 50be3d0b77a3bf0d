import asyncio

import pytest

from thcplus.core import rate_limit
from thcplus.core.config import settings
from thcplus.core.rate_limit import SlidingWindowLimiter, check_rate_limit, format_time_until_reset


class _FakePipeline:
    def __init__(self, redis: "_FakeRedis") -> None:
        self._redis = redis
        self._ops: list[tuple] = []

    async def __aenter__(self) -> "_FakePipeline":
        return self

    async def __aexit__(self, *exc) -> None:
        return None

    def zremrangebyscore(self, key, low, high):
        self._ops.append(("zrem", key, high))

    def zcard(self, key):
        self._ops.append(("zcard", key))

    def zrange(self, key, start, end, withscores=False):
        self._ops.append(("zrange", key))

    def zadd(self, key, mapping):
        self._ops.append(("zadd", key, mapping))

    def expire(self, key, seconds):
        self._ops.append(("expire", key, seconds))

    async def execute(self) -> list:
        # Let other requests interleave between queueing and running the MULTI.
        await asyncio.sleep(0)
        results = []
        for op in self._ops:
            zset = self._redis.sets.setdefault(op[1], {})
            if op[0] == "zrem":
                for member in [m for m, score in zset.items() if score <= op[2]]:
                    del zset[member]
                results.append(None)
            elif op[0] == "zcard":
                results.append(len(zset))
            elif op[0] == "zrange":
                ordered = sorted(zset.items(), key=lambda item: item[1])
                results.append(ordered[:1])
            elif op[0] == "zadd":
                zset.update(op[2])
                results.append(1)
            elif op[0] == "expire":
                self._redis.ttls[op[1]] = op[2]
                results.append(True)
        self._ops = []
        return results


class _FakeRedis:
    def __init__(self) -> None:
        self.sets: dict[str, dict[str, float]] = {}
        self.ttls: dict[str, int] = {}

    def pipeline(self, transaction: bool = True) -> _FakePipeline:
        return _FakePipeline(self)

    async def zrem(self, key: str, member: str) -> int:
        await asyncio.sleep(0)
        return 1 if self.sets.get(key, {}).pop(member, None) is not None else 0


class _BrokenRedis:
    def pipeline(self, transaction: bool = True):
        raise ConnectionError("redis down")


@pytest.mark.anyio
async def test_memory_backend_allows_ten_then_blocks(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings, "rate_limit_backend", "memory")
    limiter = rate_limit.age_verification_rate_limit
    start = 1_000_000.0

    results = [await check_rate_limit("ip-hash", limiter, now=start + i) for i in range(11)]

    assert all(r.success for r in results[:10])
    assert [r.remaining for r in results[:3]] == [9, 8, 7]
    blocked = results[10]
    assert blocked.success is False
    assert blocked.limit == 10
    assert blocked.remaining == 0
    assert blocked.reset == start + 3600
    assert format_time_until_reset(blocked.reset, now=start + 10) == "1 hour"


@pytest.mark.anyio
async def test_memory_window_slides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings, "rate_limit_backend", "memory")
    limiter = SlidingWindowLimiter("test-slide", 2, 60)

    assert (await check_rate_limit("k", limiter, now=0)).success
    assert (await check_rate_limit("k", limiter, now=30)).success
    assert not (await check_rate_limit("k", limiter, now=59)).success
    # The first hit has left the trailing window; the second has not.
    assert (await check_rate_limit("k", limiter, now=60)).success
    assert not (await check_rate_limit("k", limiter, now=61)).success


@pytest.mark.anyio
async def test_limiters_do_not_share_budget(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings, "rate_limit_backend", "memory")
    for i in range(3):
        assert (await check_rate_limit("same", rate_limit.contact_form_rate_limit, now=100 + i)).success
    assert not (await check_rate_limit("same", rate_limit.contact_form_rate_limit, now=104)).success
    assert (await check_rate_limit("same", rate_limit.age_verification_rate_limit, now=104)).success
    assert rate_limit.contact_form_rate_limit.key_for("same") == "@ratelimit/contact-form:same"


@pytest.mark.anyio
async def test_fails_open_without_backend(monkeypatch: pytest.MonkeyPatch) -> None:
    assert (await check_rate_limit("k", None)) == rate_limit.ALLOW_ALL

    monkeypatch.setattr(settings, "rate_limit_backend", "disabled")
    assert (await check_rate_limit("k", rate_limit.api_rate_limit)) == rate_limit.ALLOW_ALL

    monkeypatch.setattr(settings, "rate_limit_backend", "redis")
    monkeypatch.setattr(rate_limit, "get_redis", lambda: None)
    result = await check_rate_limit("k", rate_limit.api_rate_limit)
    assert result.success is True
    assert (result.limit, result.remaining, result.reset) == (0, 0, 0)


@pytest.mark.anyio
async def test_fails_open_on_backend_error(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings, "rate_limit_backend", "redis")
    monkeypatch.setattr(rate_limit, "get_redis", lambda: _BrokenRedis())

    result = await check_rate_limit("k", rate_limit.api_rate_limit)

    assert result.success is True
    assert result.error == "Rate limit check failed"


@pytest.mark.anyio
async def test_redis_backend_sliding_log(monkeypatch: pytest.MonkeyPatch) -> None:
    fake = _FakeRedis()
    monkeypatch.setattr(settings, "rate_limit_backend", "redis")
    monkeypatch.setattr(rate_limit, "get_redis", lambda: fake)
    limiter = rate_limit.age_verification_rate_limit
    start = 2_000_000.0

    results = [await check_rate_limit("hashed", limiter, now=start + i) for i in range(11)]

    assert all(r.success for r in results[:10])
    assert results[0].remaining == 9
    assert results[10].success is False
    assert results[10].reset == start + 3600
    key = "@ratelimit/age-verification:hashed"
    # Rejected attempts are not recorded.
    assert len(fake.sets[key]) == 10
    assert fake.ttls[key] == 3600

    later = await check_rate_limit("hashed", limiter, now=start + 3600.5)
    assert later.success is True


@pytest.mark.anyio
async def test_redis_backend_holds_limit_under_concurrent_hits(monkeypatch: pytest.MonkeyPatch) -> None:
    fake = _FakeRedis()
    monkeypatch.setattr(settings, "rate_limit_backend", "redis")
    monkeypatch.setattr(rate_limit, "get_redis", lambda: fake)
    limiter = rate_limit.age_verification_rate_limit
    start = 3_000_000.0
    for i in range(9):
        assert (await check_rate_limit("burst", limiter, now=start + i)).success

    results = await asyncio.gather(*(check_rate_limit("burst", limiter, now=start + 20 + i) for i in range(5)))

    assert sum(r.success for r in results) == 1
    assert all(r.remaining == 0 for r in results)
    assert len(fake.sets["@ratelimit/age-verification:burst"]) == 10


@pytest.mark.parametrize(
    ("seconds", "expected"),
    [(-5, "now"), (0, "now"), (30, "1 minute"), (61, "2 minutes"), (59 * 60, "59 minutes"), (3600, "1 hour"), (3601, "2 hours")],
)
def test_format_time_until_reset(seconds: float, expected: str) -> None:
    assert format_time_until_reset(1000 + seconds, now=1000) == expected
