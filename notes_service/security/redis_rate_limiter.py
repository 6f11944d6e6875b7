"""Redis-backed sliding window counter store."""

from __future__ import annotations

from typing import Callable, Final

from redis.asyncio import Redis
from redis.exceptions import RedisError

from .rate_gate import StoreUnavailableError, WindowUsage


class RedisCounterStore:
    """Distributed sliding log implemented with Redis sorted sets."""

    _LUA_SCRIPT: Final[str] = """
    local key = KEYS[1]
    local counter_key = key .. ':seq'
    local window_ms = tonumber(ARGV[1])
    local max_requests = tonumber(ARGV[2])
    local now_ms = tonumber(ARGV[3])
    if not now_ms then
        local server_time = redis.call('TIME')
        now_ms = tonumber(server_time[1]) * 1000 + math.floor(tonumber(server_time[2]) / 1000)
    end

    redis.call('ZREMRANGEBYSCORE', key, '-inf', now_ms - window_ms)
    local current = redis.call('ZCARD', key)
    local admitted = 0
    if current < max_requests then
        local seq = redis.call('INCR', counter_key)
        redis.call('PEXPIRE', counter_key, window_ms)
        local member = tostring(now_ms) .. ':' .. tostring(seq)
        redis.call('ZADD', key, now_ms, member)
        redis.call('PEXPIRE', key, window_ms)
        current = current + 1
        admitted = 1
    end

    local reset_ms = 0
    local oldest = redis.call('ZRANGE', key, 0, 0, 'WITHSCORES')
    if oldest[2] then
        reset_ms = tonumber(oldest[2]) + window_ms - now_ms
        if reset_ms < 0 then
            reset_ms = 0
        end
    end
    return {admitted, current, reset_ms}
    """

    def __init__(
        self,
        client: Redis,
        *,
        key_prefix: str = "ratelimit",
        clock: Callable[[], float] | None = None,
    ) -> None:
        """Initialise the Redis client, key namespace, and Lua script cache.

        Without ``clock`` the script reads the Redis server time, so every
        process scores entries on one timeline regardless of local drift.
        """
        self._client = client
        self._key_prefix = key_prefix
        self._clock = clock
        self._script = client.register_script(self._LUA_SCRIPT)

    async def record_and_count(
        self, identity: str, *, window_seconds: int, limit: int
    ) -> WindowUsage:
        """Run the sliding window script for ``identity`` atomically on the server."""
        now_ms = "" if self._clock is None else int(self._clock() * 1000)
        redis_key = f"{self._key_prefix}:{identity}"
        try:
            admitted, count, reset_ms = await self._script(
                keys=[redis_key], args=[window_seconds * 1000, limit, now_ms]
            )
        except (RedisError, OSError) as exc:
            raise StoreUnavailableError(f"redis counter store unavailable: {exc}") from exc
        return WindowUsage(
            admitted=int(admitted) == 1,
            count=int(count),
            reset_after=int(reset_ms) / 1000,
        )
