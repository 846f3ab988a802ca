from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from time import monotonic
from typing import Callable, Protocol

from redis import Redis
from redis.exceptions import RedisError

from app.core.config import Settings
from app.infrastructure.cache.redis_client import get_redis_client
from app.infrastructure.observability.metrics import measure_redis

logger = logging.getLogger(__name__)

FEE_SETTINGS_CACHE_KEY = "platform:fee_settings"


@dataclass(frozen=True)
class FeeSettings:
    """Global fee rates as fractions (0.04 == 4%)."""

    platform_fee: float
    stripe_fee: float


class FeeSettingsCache(Protocol):
    def get(self) -> FeeSettings | None: ...

    def set(self, fee_settings: FeeSettings) -> None: ...

    def clear(self) -> None: ...


class InProcessFeeSettingsCache:
    """Single shared slot, expired lazily on read."""

    def __init__(self, ttl_seconds: float = 300.0, clock: Callable[[], float] = monotonic) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._value: FeeSettings | None = None
        self._fetched_at = 0.0

    def get(self) -> FeeSettings | None:
        if self._value is None:
            return None
        if self._clock() - self._fetched_at >= self.ttl_seconds:
            return None
        return self._value

    def set(self, fee_settings: FeeSettings) -> None:
        self._value = fee_settings
        self._fetched_at = self._clock()

    def clear(self) -> None:
        self._value = None
        self._fetched_at = 0.0


class RedisFeeSettingsCache:
    """Slot shared by every API instance pointed at the same redis."""

    def __init__(self, redis: Redis, ttl_seconds: int = 300, key: str = FEE_SETTINGS_CACHE_KEY) -> None:
        self.redis = redis
        self.ttl_seconds = ttl_seconds
        self.key = key

    def get(self) -> FeeSettings | None:
        try:
            with measure_redis("fee_settings_cache_get"):
                cached = self.redis.get(self.key)
        except RedisError:
            logger.exception("fee_settings_cache_get_failed key=%s", self.key)
            return None
        if not cached:
            return None
        try:
            payload = json.loads(cached)
            return FeeSettings(
                platform_fee=float(payload["platform_fee"]),
                stripe_fee=float(payload["stripe_fee"]),
            )
        except (KeyError, TypeError, ValueError):
            logger.warning("fee_settings_cache_payload_invalid key=%s", self.key)
            return None

    def set(self, fee_settings: FeeSettings) -> None:
        payload = json.dumps({"platform_fee": fee_settings.platform_fee, "stripe_fee": fee_settings.stripe_fee})
        try:
            with measure_redis("fee_settings_cache_set"):
                self.redis.set(self.key, payload, ex=max(1, int(self.ttl_seconds)))
        except RedisError:
            logger.exception("fee_settings_cache_set_failed key=%s", self.key)

    def clear(self) -> None:
        try:
            with measure_redis("fee_settings_cache_clear"):
                self.redis.delete(self.key)
        except RedisError:
            logger.exception("fee_settings_cache_clear_failed key=%s", self.key)


def build_fee_settings_cache(app_settings: Settings) -> FeeSettingsCache:
    backend = app_settings.fee_settings_cache_backend.strip().lower()
    if backend == "redis":
        return RedisFeeSettingsCache(get_redis_client(), ttl_seconds=app_settings.fee_settings_cache_ttl_seconds)
    if backend != "memory":
        logger.warning("fee_settings_cache_backend_unknown backend=%s using=memory", backend)
    return InProcessFeeSettingsCache(ttl_seconds=app_settings.fee_settings_cache_ttl_seconds)
