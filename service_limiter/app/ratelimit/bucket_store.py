"""
Shared token buckets kept in Redis.

Every (route, identity) pair owns two plain string keys, one holding the
token count and one holding the unix-second timestamp of the last allowed
request. Both are read and written in a single indivisible step, either by
a Lua script or by a WATCH/MULTI retry loop for servers that refuse
scripting. The layout is shared by every process pointed at the same Redis
and must not change.
"""

from typing import Optional, Protocol, Tuple, Union

import redis.asyncio as redis
from redis.exceptions import RedisError, WatchError

from shared.errors import ConfigurationError, RemoteUnavailable
from shared.logging import get_logger

KEY_PREFIX = "rate"


def bucket_keys(route_name: str, identity: str) -> Tuple[str, str]:
    """Return the (tokens, lastRefill) keys for one caller on one route."""
    base = f"{KEY_PREFIX}:{route_name}:{identity}"
    return f"{base}:tokens", f"{base}:lastRefill"


def refill_and_consume(
    tokens: Optional[int],
    last_refill: Optional[int],
    max_tokens: int,
    refill_window_seconds: int,
    now: int,
) -> Tuple[bool, int]:
    """
    Apply one refill/consume step to a bucket.

    A missing bucket starts full. Each fully elapsed window adds a whole
    ``max_tokens`` burst, capped at ``max_tokens``. Returns
    ``(allowed, remaining)``; the caller persists ``remaining`` and ``now``
    only when ``allowed`` is true, so a denial keeps the old timestamp.
    """
    if tokens is None:
        tokens = max_tokens
    if last_refill is None:
        last_refill = now

    # Clock skew between processes must never drain a bucket.
    elapsed = max(0, now - last_refill)
    tokens_to_add = (elapsed // refill_window_seconds) * max_tokens
    available = min(max_tokens, tokens + tokens_to_add)

    if available > 0:
        return True, available - 1
    return False, available


def _to_int(value: Union[str, bytes, None]) -> Optional[int]:
    if value is None:
        return None
    return int(float(value))


def _parse_reply(reply) -> Tuple[bool, int]:
    try:
        allowed, remaining = reply
        return int(allowed) == 1, int(remaining)
    except (TypeError, ValueError) as e:
        raise RemoteUnavailable(
            "Unexpected reply from bucket store",
            details={"reply": repr(reply)}
        ) from e


class BucketStore(Protocol):
    """Atomic evaluate operation offered by a shared bucket store."""

    async def evaluate(
        self,
        token_key: str,
        last_refill_key: str,
        max_tokens: int,
        refill_window_seconds: int,
        now: int,
    ) -> Tuple[bool, int]:
        ...


class RedisScriptBucketStore:
    """Bucket store running the refill/consume step as a server-side Lua script."""

    LUA_SCRIPT = """
    local tokenKey = KEYS[1]
    local lastRefillKey = KEYS[2]

    local maxTokens = tonumber(ARGV[1])
    local refillWindow = tonumber(ARGV[2])
    local now = tonumber(ARGV[3])

    local tokens = tonumber(redis.call('GET', tokenKey))
    if tokens == nil then tokens = maxTokens end

    local lastRefill = tonumber(redis.call('GET', lastRefillKey))
    if lastRefill == nil then lastRefill = now end

    local elapsed = now - lastRefill
    if elapsed < 0 then elapsed = 0 end

    local available = math.min(maxTokens, tokens + math.floor(elapsed / refillWindow) * maxTokens)

    if available > 0 then
      available = available - 1
      redis.call('SET', tokenKey, available)
      redis.call('SET', lastRefillKey, now)
      return {1, available}
    end

    -- denial leaves lastRefill untouched
    return {0, available}
    """

    def __init__(self, client: redis.Redis):
        self.client = client
        self.logger = get_logger("limiter.store.script")
        # AsyncScript reloads itself on NOSCRIPT after a Redis restart
        self._script = client.register_script(self.LUA_SCRIPT)

    async def evaluate(
        self,
        token_key: str,
        last_refill_key: str,
        max_tokens: int,
        refill_window_seconds: int,
        now: int,
    ) -> Tuple[bool, int]:
        try:
            reply = await self._script(
                keys=[token_key, last_refill_key],
                args=[max_tokens, refill_window_seconds, now],
            )
        except (RedisError, OSError) as e:
            raise RemoteUnavailable(str(e) or type(e).__name__, details={"store": "script"}) from e
        return _parse_reply(reply)


class RedisWatchBucketStore:
    """
    Bucket store using optimistic WATCH/MULTI transactions.

    Both keys are watched, read, and recomputed client-side with
    :func:`refill_and_consume`. An allowed request commits both writes in
    one MULTI/EXEC; if another caller touched either key in between, EXEC
    aborts with ``WatchError`` and the whole step is redone from a fresh
    read. Denials write nothing.
    """

    def __init__(self, client: redis.Redis, max_attempts: int = 50):
        self.client = client
        self.max_attempts = max_attempts
        self.logger = get_logger("limiter.store.watch")

    async def evaluate(
        self,
        token_key: str,
        last_refill_key: str,
        max_tokens: int,
        refill_window_seconds: int,
        now: int,
    ) -> Tuple[bool, int]:
        try:
            async with self.client.pipeline(transaction=True) as pipe:
                for attempt in range(1, self.max_attempts + 1):
                    try:
                        await pipe.watch(token_key, last_refill_key)
                        raw_tokens, raw_last_refill = await pipe.mget(token_key, last_refill_key)

                        allowed, remaining = refill_and_consume(
                            _to_int(raw_tokens),
                            _to_int(raw_last_refill),
                            max_tokens,
                            refill_window_seconds,
                            now,
                        )
                        if not allowed:
                            # leaving the pipeline context UNWATCHes both keys
                            return allowed, remaining

                        pipe.multi()
                        pipe.set(token_key, remaining)
                        pipe.set(last_refill_key, now)
                        await pipe.execute()
                        return allowed, remaining
                    except WatchError:
                        self.logger.debug(
                            "Bucket changed during evaluation, retrying",
                            key=token_key,
                            attempt=attempt
                        )
        except (RedisError, OSError, ValueError) as e:
            raise RemoteUnavailable(str(e) or type(e).__name__, details={"store": "watch"}) from e

        raise RemoteUnavailable(
            "Bucket stayed contended for every attempt",
            details={"store": "watch", "key": token_key, "attempts": self.max_attempts}
        )


def create_bucket_store(client: redis.Redis, strategy: str = "script") -> BucketStore:
    """Build the bucket store for the configured atomic strategy."""
    if strategy == "script":
        return RedisScriptBucketStore(client)
    if strategy == "watch":
        return RedisWatchBucketStore(client)
    raise ConfigurationError(f"Unknown atomic strategy: {strategy}", details={"strategy": strategy})
