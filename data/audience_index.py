"""
In-memory index of weighted ZIP membership per audience segment.
"""

import logging
from typing import Dict, List, Optional, Any, Iterable, Set

from models.data_models import AudienceMembership
from .exceptions import DataUnavailable
from .parsers import AudienceWeightParser

# Set up logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class AudienceMembershipIndex:
    """
    Weighted geographic membership for every audience segment.

    Each (segment, ZIP) pair appears once; duplicate rows keep the highest
    weight. Segment lookups are case-insensitive: an exact name wins,
    otherwise every segment containing the search text is merged.
    """

    def __init__(self, file_path: Optional[str] = None):
        """
        Initialize the index.

        Args:
            file_path: Audience export used when ``load()`` is called without rows
        """
        self.file_path = file_path
        self.warnings: List[str] = []
        self._segments: Dict[str, Dict[str, AudienceMembership]] = {}
        self._names_by_key: Dict[str, str] = {}
        self._sorted_cache: Dict[str, List[AudienceMembership]] = {}
        self._loaded = False

    def load(self, memberships: Optional[Iterable[AudienceMembership]] = None) -> int:
        """
        Load membership rows and deduplicate them.

        Args:
            memberships: Rows to ingest. Parses ``file_path`` if None.

        Returns:
            Number of unique (segment, ZIP) entries

        Raises:
            DataUnavailable: If the source is missing, unreadable or empty
        """
        warnings: List[str] = []

        if memberships is None:
            if not self.file_path:
                raise DataUnavailable("No audience data source configured")
            try:
                parser = AudienceWeightParser(self.file_path)
                memberships, warnings = parser.parse_rows()
            except (FileNotFoundError, ValueError) as e:
                logger.error(f"Audience data unavailable: {str(e)}")
                raise DataUnavailable(f"Audience data unavailable: {str(e)}") from e

        segments: Dict[str, Dict[str, AudienceMembership]] = {}
        names_by_key: Dict[str, str] = {}
        duplicates = 0

        for position, row in enumerate(memberships):
            entries = segments.setdefault(row.segment, {})
            names_by_key.setdefault(row.segment.lower(), row.segment)

            existing = entries.get(row.zip_code)
            if existing is None:
                entries[row.zip_code] = AudienceMembership(
                    segment=row.segment,
                    zip_code=row.zip_code,
                    weight=row.weight,
                    seed=row.seed,
                    date=row.date,
                    order=position
                )
                continue

            duplicates += 1
            if row.weight > existing.weight:
                existing.weight = row.weight
                existing.seed = row.seed
                existing.date = row.date

        unique_rows = sum(len(entries) for entries in segments.values())
        if unique_rows == 0:
            raise DataUnavailable("Audience data source contained no usable rows")

        self._segments = segments
        self._names_by_key = names_by_key
        self._sorted_cache = {}
        self.warnings = warnings
        self._loaded = True

        logger.info(f"Indexed {unique_rows} memberships across {len(segments)} segments ({duplicates} duplicates merged)")
        return unique_rows

    @property
    def is_loaded(self) -> bool:
        return self._loaded

    def __len__(self) -> int:
        return len(self._segments)

    def segment_names(self) -> List[str]:
        return list(self._segments.keys())

    def find_segments(self, text: str) -> List[str]:
        """Segment names containing the text, case-insensitively."""
        needle = text.strip().lower()
        if not needle:
            return []
        return [name for name in self._segments if needle in name.lower()]

    def resolve(self, segment: str) -> List[str]:
        """
        Resolve a segment name to the stored segment(s) it refers to.

        Args:
            segment: Exact name or name fragment

        Returns:
            The exact match if one exists, otherwise all substring matches
        """
        exact = self._names_by_key.get(segment.strip().lower())
        if exact is not None:
            return [exact]
        return self.find_segments(segment)

    def has_segment(self, segment: str) -> bool:
        return bool(self.resolve(segment))

    def entries_for_segment(self, segment: str) -> List[AudienceMembership]:
        """
        All entries for a segment sorted by weight, descending.

        Ties keep their original load order. When the name matches several
        segments, entries are merged per ZIP keeping the highest weight.
        """
        names = self.resolve(segment)
        if not names:
            return []

        cache_key = '|'.join(names)
        cached = self._sorted_cache.get(cache_key)
        if cached is not None:
            return cached

        if len(names) == 1:
            merged = list(self._segments[names[0]].values())
        else:
            by_zip: Dict[str, AudienceMembership] = {}
            for name in names:
                for entry in self._segments[name].values():
                    current = by_zip.get(entry.zip_code)
                    if current is None or entry.weight > current.weight:
                        by_zip[entry.zip_code] = entry
            merged = list(by_zip.values())

        ranked = sorted(merged, key=lambda entry: (-entry.weight, entry.order))
        self._sorted_cache[cache_key] = ranked
        return ranked

    def top_for_segment(self, segment: str, n: int) -> List[AudienceMembership]:
        """
        Highest-weight ZIP entries for a segment.

        Args:
            segment: Segment name or fragment
            n: Maximum number of entries

        Returns:
            At most ``n`` entries, non-increasing by weight, unique per ZIP
        """
        if n <= 0:
            return []
        return self.entries_for_segment(segment)[:n]

    def zip_set(self, segment: str, n: int) -> Set[str]:
        return {entry.zip_code for entry in self.top_for_segment(segment, n)}

    def total_weight(self, segment: str) -> float:
        return sum(entry.weight for entry in self.entries_for_segment(segment))

    def segment_stats(self) -> List[Dict[str, Any]]:
        """
        Summary statistics for every segment.

        Returns:
            List of dictionaries sorted by total weight, descending
        """
        stats = []
        for name, entries in self._segments.items():
            total = sum(entry.weight for entry in entries.values())
            stats.append({
                'name': name,
                'total_zip_codes': len(entries),
                'total_weight': total,
                'average_weight': total / len(entries) if entries else 0.0,
            })

        stats.sort(key=lambda item: item['total_weight'], reverse=True)
        return stats
