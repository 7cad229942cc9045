"""
In-memory TTL cache for generated audience reports.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, Any, Optional, Callable

# Set up logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    """A cached value and the time it was stored."""
    value: Any
    stored_at: datetime


class ReportCache:
    """
    Keyed report snapshots that expire after a fixed lifetime.

    Writes replace the whole entry; two misses for the same key may both
    compute and the later write wins.
    """

    def __init__(self, ttl_hours: float = 1, clock: Callable[[], datetime] = datetime.now):
        self.ttl = timedelta(hours=ttl_hours)
        self.clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self.hits = 0
        self.misses = 0

    @staticmethod
    def make_key(segment: str, category: Optional[str] = None, include_non_residential: bool = False) -> str:
        return f"{segment}|{category or ''}|{include_non_residential}"

    def _is_expired(self, entry: CacheEntry) -> bool:
        return self.clock() - entry.stored_at >= self.ttl

    def get(self, key: str) -> Optional[Any]:
        """Cached value, or None when missing or expired."""
        entry = self._entries.get(key)
        if entry is None or self._is_expired(entry):
            if entry is not None:
                del self._entries[key]
            self.misses += 1
            return None

        self.hits += 1
        return entry.value

    def set(self, key: str, value: Any):
        self._entries[key] = CacheEntry(value=value, stored_at=self.clock())

    def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def clear(self):
        self._entries = {}
        logger.info("Report cache cleared")

    def clear_expired(self) -> int:
        """
        Drop expired entries.

        Returns:
            Number of entries removed
        """
        expired = [key for key, entry in self._entries.items() if self._is_expired(entry)]
        for key in expired:
            del self._entries[key]

        if expired:
            logger.info(f"Removed {len(expired)} expired report cache entries")
        return len(expired)

    def get_stats(self) -> Dict[str, Any]:
        return {
            'entries': len(self._entries),
            'hits': self.hits,
            'misses': self.misses,
            'ttl_hours': self.ttl.total_seconds() / 3600,
        }
