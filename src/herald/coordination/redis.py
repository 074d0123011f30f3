"""Election over a Redis key.

Uses Redis SET NX with a TTL as the lease:
1. Instances try to create the key with their identity (NX, PX ttl)
2. The holder renews the TTL, checking it still owns the key
3. If the holder dies, the key expires and another instance can claim it

Renewal and release compare the stored owner inside a Lua script, so an
instance never extends or deletes a lease that another one took over.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable
from typing import TYPE_CHECKING, cast

import redis.asyncio as redis
from redis.exceptions import RedisError

from herald.coordination.base import ElectionCallbacks, ElectionConfig, LeaseCoordinator
from herald.errors import ConfigurationError, CoordinatorConnectError

if TYPE_CHECKING:
    from redis.asyncio import Redis

logger = logging.getLogger(__name__)

LOCK_PREFIX = "herald:lease:"

_RENEW_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("pexpire", KEYS[1], ARGV[2])
else
    return 0
end
"""

_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""


def _decode(value: bytes | str | None) -> str | None:
    if value is None:
        return None
    return value.decode() if isinstance(value, bytes) else value


class RedisLeaseCoordinator(LeaseCoordinator):
    """Lease election against a Redis server.

    Args:
        config: Lease and timing configuration
        callbacks: Receiver of the election notifications
        redis_client: Redis client; created from `redis_url` if None
        redis_url: Redis URL used when no client is given
    """

    backend = "redis"

    def __init__(
        self,
        config: ElectionConfig,
        callbacks: ElectionCallbacks,
        redis_client: Redis | None = None,
        redis_url: str = "redis://localhost:6379/0",
    ) -> None:
        super().__init__(config, callbacks)
        self._redis = redis_client
        self._redis_url = redis_url
        self._lock_key = f"{LOCK_PREFIX}{config.namespace}/{config.lease_name}"

    @property
    def lock_key(self) -> str:
        """The Redis key used for the lease."""
        return self._lock_key

    @property
    def _ttl_ms(self) -> int:
        return int(self.config.lease_duration * 1000)

    def _get_redis(self) -> Redis:
        if self._redis is None:
            try:
                self._redis = redis.from_url(  # type: ignore[no-untyped-call]
                    self._redis_url,
                    encoding="utf-8",
                    decode_responses=False,
                )
            except ValueError as e:
                raise ConfigurationError(f"Invalid REDIS_URL {self._redis_url!r}: {e}") from e
        return self._redis

    async def _ping(self) -> None:
        try:
            await self._get_redis().ping()
        except (RedisError, OSError) as e:
            raise CoordinatorConnectError(f"Cannot reach Redis at {self._redis_url}: {e}") from e

    async def _try_acquire_or_renew(self) -> str | None:
        client = self._get_redis()

        if self.is_leader:
            renewed = await cast(
                Awaitable[int],
                client.eval(_RENEW_SCRIPT, 1, self._lock_key, self.identity, self._ttl_ms),
            )
            if renewed:
                logger.debug(f"Renewed lease {self.lease_ref}")
                return self.identity
            return _decode(await client.get(self._lock_key))

        # Use SET NX PX for atomic acquire
        acquired = await client.set(self._lock_key, self.identity, nx=True, px=self._ttl_ms)
        if acquired:
            logger.info(f"Acquired lease {self.lease_ref}")
            return self.identity

        return _decode(await client.get(self._lock_key))

    async def _release(self) -> None:
        await cast(
            Awaitable[int],
            self._get_redis().eval(_RELEASE_SCRIPT, 1, self._lock_key, self.identity),
        )

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None

