"""
Tenant context cache

Time-bounded cache of resolved tenant snapshots keyed by tenant id. Process
local; multi-instance deployments need a shared store instead.
"""

import time
from typing import Callable, Dict, Generic, Optional, Tuple, TypeVar

import structlog

from agritenant.core.config import get_settings

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class TenantContextCache(Generic[T]):
    """TTL cache: an entry set at T is served while now < T + ttl"""

    def __init__(self, ttl_seconds: Optional[float] = None, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = get_settings().TENANT_CACHE_TTL_SECONDS if ttl_seconds is None else ttl_seconds
        self.clock = clock
        self._entries: Dict[str, Tuple[T, float]] = {}

    def get(self, key: str) -> Optional[T]:
        entry = self._entries.get(key)
        if entry is None:
            logger.debug(f"Tenant cache miss: {key}")
            return None
        value, inserted_at = entry
        if self.clock() >= inserted_at + self.ttl_seconds:
            del self._entries[key]
            logger.debug(f"Tenant cache expired: {key}")
            return None
        logger.debug(f"Tenant cache hit: {key}")
        return value

    def set(self, key: str, value: T):
        self._entries[key] = (value, self.clock())

    def invalidate(self, key: str) -> bool:
        """Drop an entry; True if one was present"""
        return self._entries.pop(key, None) is not None

    def clear(self):
        self._entries.clear()

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None

    def __len__(self) -> int:
        return len(self._entries)
