"""
Denylist cache backed by a single Redis set.

Every add refreshes the TTL of the whole set, not of individual members:
the denylist as a whole lives for DENYLIST_TTL_SECONDS after its most
recent write and must be refreshed by whatever populates it.
"""

import logging
from typing import Iterable, Set

import redis

from app.config import settings
from app.exceptions import DenylistUnavailable

logger = logging.getLogger(__name__)


def get_redis_client(url: str = None, timeout_seconds: float = None) -> redis.Redis:
    """Create a Redis client with bounded socket timeouts."""
    timeout_seconds = timeout_seconds or settings.REDIS_TIMEOUT_SECONDS
    return redis.from_url(
        url or settings.REDIS_URL,
        decode_responses=True,
        socket_timeout=timeout_seconds,
        socket_connect_timeout=timeout_seconds,
    )


class DenylistCache:
    """Set of phone numbers for which delivery is refused."""

    def __init__(self, client: redis.Redis, key: str = None, ttl_seconds: int = None):
        self._client = client
        self.key = key or settings.DENYLIST_KEY
        self.ttl_seconds = ttl_seconds or settings.DENYLIST_TTL_SECONDS

    def add(self, phone_numbers: Iterable[str]) -> None:
        phone_numbers = list(phone_numbers)
        logger.info(f"Adding phone numbers to blacklist: {phone_numbers}")
        if not phone_numbers:
            return
        try:
            pipe = self._client.pipeline(transaction=True)
            pipe.sadd(self.key, *phone_numbers)
            pipe.expire(self.key, self.ttl_seconds)
            pipe.execute()
        except redis.RedisError as e:
            logger.error(f"Failed to add phone numbers to blacklist: {e}")
            raise DenylistUnavailable(f"Failed to update blacklist: {e}") from e
        logger.info(f"Successfully added {len(phone_numbers)} phone numbers to blacklist")

    def remove(self, phone_numbers: Iterable[str]) -> None:
        phone_numbers = list(phone_numbers)
        logger.info(f"Removing phone numbers from blacklist: {phone_numbers}")
        if not phone_numbers:
            return
        try:
            self._client.srem(self.key, *phone_numbers)
        except redis.RedisError as e:
            logger.error(f"Failed to remove phone numbers from blacklist: {e}")
            raise DenylistUnavailable(f"Failed to update blacklist: {e}") from e
        logger.info(f"Successfully removed {len(phone_numbers)} phone numbers from blacklist")

    def members(self) -> Set[str]:
        try:
            return set(self._client.smembers(self.key))
        except redis.RedisError as e:
            logger.error(f"Failed to read blacklist: {e}")
            raise DenylistUnavailable(f"Failed to read blacklist: {e}") from e

    def is_member(self, phone_number: str) -> bool:
        """
        Point-read membership check.

        Raises:
            DenylistUnavailable: if Redis cannot answer. Callers treat this
            as "cannot confirm" and refuse delivery.
        """
        try:
            blacklisted = bool(self._client.sismember(self.key, phone_number))
        except redis.RedisError as e:
            logger.error(f"Blacklist lookup failed for {phone_number}: {e}")
            raise DenylistUnavailable(f"Failed to check blacklist: {e}") from e
        if blacklisted:
            logger.warning(f"Phone number {phone_number} is blacklisted")
        return blacklisted

    def ping(self) -> bool:
        try:
            return bool(self._client.ping())
        except redis.RedisError as e:
            logger.error(f"Redis health check failed: {e}")
            return False
