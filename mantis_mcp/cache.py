"""In-memory read-through cache for Mantis API responses."""

import copy
import logging
import time
from typing import Any, Callable, Dict, Tuple
from urllib.parse import urlencode

logger = logging.getLogger(__name__)

DEFAULT_CACHE_TTL_SECONDS = 300  # 5 minutes


def make_cache_key(operation: str, **params) -> str:
    """
    Fingerprint of a logical request.

    None values are dropped and the rest sorted by name, so the key does not
    depend on the order optional parameters were supplied in.

    Example:
        >>> make_cache_key("issues", page=1, project_id=3, search=None)
        'issues?page=1&project_id=3'
    """
    normalized = []
    for name in sorted(params):
        value = params[name]
        if value is None:
            continue
        if isinstance(value, (list, tuple)):
            value = ",".join(str(v) for v in value)
        normalized.append((name, value))
    if not normalized:
        return operation
    return f"{operation}?{urlencode(normalized)}"


class RequestCache:
    """
    Maps request fingerprints to the last fetched payload and its capture time.

    Entries expire lazily: a read older than the TTL re-runs the producer and
    replaces the slot. Nothing is swept in the background.

    Stored payloads are private copies, so callers may mutate what they get
    back without touching the cache.
    """

    def __init__(self, enabled: bool = True, ttl_seconds: float = DEFAULT_CACHE_TTL_SECONDS,
                 clock: Callable[[], float] = time.monotonic):
        self.enabled = enabled
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, Tuple[float, Any]] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def read_through(self, key: str, producer: Callable[[], Any]) -> Any:
        """Return the live entry for key, or call producer and store its result."""
        if self.enabled and key in self._entries:
            captured_at, data = self._entries[key]
            age = self._clock() - captured_at
            if age < self.ttl_seconds:
                logger.debug(f"Using cached data: key={key}, age={age:.1f}s")
                return copy.deepcopy(data)

        logger.debug(f"Cache miss, fetching: {key}")
        data = producer()

        if self.enabled:
            self._entries[key] = (self._clock(), copy.deepcopy(data))
            logger.debug(f"Cache updated: {key}")
        return data

    def clear(self) -> None:
        if self._entries:
            logger.info(f"Clearing API cache ({len(self._entries)} entries)")
        self._entries.clear()
