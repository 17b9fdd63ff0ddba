"""Tests for the Redis fixed-window rate limiter."""

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from reimburse.src.billing.shared.rate_limit import RateLimiter


class FakePipeline:
    """Enough of a redis.asyncio pipeline for INCR + EXPIRE."""

    def __init__(self, redis):
        self._redis = redis
        self._commands = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    def incr(self, key):
        self._commands.append(('incr', key))

    def expire(self, key, seconds):
        self._commands.append(('expire', key, seconds))

    async def execute(self):
        if self._redis.fail:
            raise RedisConnectionError('Connection refused')
        results = []
        for command in self._commands:
            if command[0] == 'incr':
                self._redis.counts[command[1]] = self._redis.counts.get(command[1], 0) + 1
                results.append(self._redis.counts[command[1]])
            else:
                self._redis.ttls[command[1]] = command[2]
                results.append(True)
        self._commands = []
        return results


class FakeRedis:

    def __init__(self, fail=False):
        self.counts = {}
        self.ttls = {}
        self.fail = fail

    def pipeline(self, transaction=True):
        return FakePipeline(self)


class TestRateLimiter:

    @pytest.mark.asyncio
    async def test_allows_up_to_limit(self):
        redis = FakeRedis()
        limiter = RateLimiter(redis=redis, prefix='test')

        results = [await limiter.check('checkout:u1', 3600, 2) for _ in range(3)]

        assert [r.ok for r in results] == [True, True, False]
        assert [r.remaining for r in results] == [1, 0, 0]
        key = next(iter(redis.counts))
        assert key.startswith('test:checkout:u1:')
        assert redis.ttls[key] == 3600

    @pytest.mark.asyncio
    async def test_keys_are_per_caller(self):
        limiter = RateLimiter(redis=FakeRedis(), prefix='test')

        await limiter.check('checkout:u1', 3600, 1)

        assert (await limiter.check('checkout:u2', 3600, 1)).ok

    @pytest.mark.asyncio
    async def test_redis_down_allows(self):
        limiter = RateLimiter(redis=FakeRedis(fail=True), prefix='test')

        result = await limiter.check('checkout:u1', 60, 5)

        assert result.ok
        assert result.remaining == 5

    def test_headers(self):
        from reimburse.src.billing.shared.rate_limit import RateLimitResult

        headers = RateLimitResult(ok=True, remaining=4, reset_in=30).headers(10)

        assert headers == {'X-RateLimit-Limit': '10', 'X-RateLimit-Remaining': '4', 'X-RateLimit-Reset': '30'}
