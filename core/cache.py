import json
import logging
from typing import Any, Callable, Optional

import redis

from core.config import Settings, settings as default_settings

logger = logging.getLogger(__name__)


class Cache:
    """Cache-aside helper for JSON-serializable values.

    Disabled (every lookup misses) when no Redis URL is configured or when
    running tests. Redis failures are logged and treated as misses so the
    database stays the source of truth.
    """

    def __init__(self, settings: Settings, client: Optional[redis.Redis] = None):
        self.default_ttl = settings.CACHE_TTL_SECONDS
        if client is not None:
            self._client = client
        elif settings.REDIS_URL and not settings.TESTING:
            self._client = redis.from_url(settings.REDIS_URL, decode_responses=True)
        else:
            self._client = None

    @property
    def enabled(self) -> bool:
        return self._client is not None

    def get_json(self, key: str) -> Any:
        if not self._client:
            return None
        try:
            raw = self._client.get(key)
        except redis.RedisError as e:
            logger.warning("Cache read failed for %s: %s", key, e)
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (json.JSONDecodeError, TypeError):
            self.delete(key)
            return None

    def set_json(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        if not self._client:
            return
        try:
            self._client.setex(key, ttl or self.default_ttl, json.dumps(value, default=str))
        except redis.RedisError as e:
            logger.warning("Cache write failed for %s: %s", key, e)

    def delete(self, *keys: str) -> None:
        if not self._client or not keys:
            return
        try:
            self._client.delete(*keys)
        except redis.RedisError as e:
            logger.warning("Cache delete failed for %s: %s", keys, e)

    def get_or_set(self, key: str, loader: Callable[[], Any], ttl: Optional[int] = None) -> Any:
        cached = self.get_json(key)
        if cached is not None:
            return cached
        value = loader()
        if value is not None:
            self.set_json(key, value, ttl)
        return value


cache = Cache(default_settings)
