"""
Segment-to-segment behavioral overlap and geographic over-index analysis.

Overlap is the Jaccard similarity of two segments' top ZIP sets, served
from a precomputed artifact when one is loaded and sampled otherwise.
Over-index measures how strongly two segments co-concentrate in the same
cities relative to an expected baseline.
"""

import logging
import json
import math
import random
import time
from datetime import datetime
from itertools import combinations
from pathlib import Path
from typing import Dict, List, Optional, Any, Set, Tuple

from models.data_models import OverlapRecord, OverIndexResult, RepresentativeMarket
from data.audience_index import AudienceMembershipIndex
from data.geo_store import GeoRecordStore

# Set up logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

OVERLAP_TOP_ZIPS = 100
FALLBACK_SAMPLE_SIZE = 30
OVER_INDEX_TOP_ZIPS = 200
PRECOMPUTE_TOP_ZIPS = 200
DEFAULT_OVERLAP_LIMIT = 7

MIN_OVER_INDEX = 1.0
MAX_OVER_INDEX = 15.0
EXPECTED_OVERLAP_FACTOR = 0.1


def jaccard_percentage(first: Set[str], second: Set[str]) -> Tuple[float, int, int]:
    """
    Jaccard similarity of two sets as a percentage.

    Returns:
        Tuple of (percentage, intersection size, union size)
    """
    intersection = len(first & second)
    union = len(first | second)
    if union == 0:
        return 0.0, 0, 0
    return intersection / union * 100, intersection, union


def market_descriptor(over_index: float) -> str:
    if over_index >= 15:
        return 'highly concentrated'
    if over_index >= 10:
        return 'strong presence'
    if over_index >= 5:
        return 'emerging market'
    return 'diverse market'


def clamp_over_index(value: float) -> float:
    return min(max(value, MIN_OVER_INDEX), MAX_OVER_INDEX)


class OverlapEngine:
    """
    Computes behavioral overlaps and over-index scores between segments.
    """

    def __init__(self, audience_index: AudienceMembershipIndex, geo_store: GeoRecordStore,
                 precomputed: Optional[Dict[str, Dict[str, OverlapRecord]]] = None):
        """
        Initialize the engine.

        Args:
            audience_index: Loaded audience membership index
            geo_store: Loaded census record store
            precomputed: Overlap lookup table from an artifact, if any,
                keyed by segment then other segment
        """
        self.audience_index = audience_index
        self.geo_store = geo_store
        self.precomputed = precomputed
        self._pair_cache: Dict[frozenset, float] = {}
        self._over_index_cache: Dict[frozenset, OverIndexResult] = {}

    @property
    def has_precomputed(self) -> bool:
        return bool(self.precomputed)

    def set_precomputed(self, precomputed: Optional[Dict[str, Dict[str, OverlapRecord]]]):
        self.precomputed = precomputed
        self.clear_cache()

    def clear_cache(self):
        self._pair_cache = {}
        self._over_index_cache = {}

    def get_overlaps(self, segment: str, limit: int = DEFAULT_OVERLAP_LIMIT) -> List[OverlapRecord]:
        """
        Segments most similar to the given one.

        Args:
            segment: Segment name
            limit: Maximum number of overlaps

        Returns:
            Overlap records sorted by percentage, descending
        """
        if self.has_precomputed and segment in self.precomputed:
            records = sorted(self.precomputed[segment].values(), key=lambda r: r.overlap_percentage, reverse=True)
            return [
                OverlapRecord(
                    segment=segment,
                    other_segment=record.other_segment,
                    overlap_percentage=record.overlap_percentage,
                    intersection_size=record.intersection_size,
                    union_size=record.union_size
                )
                for record in records[:limit]
            ]

        return self._sample_overlaps(segment, limit)

    def _sample_overlaps(self, segment: str, limit: int) -> List[OverlapRecord]:
        """
        Jaccard overlap against a deterministic sample of other segments.

        A name fragment is compared as the union of the segments it
        resolves to, so none of those segments count as "other".
        """
        target_zips = self.audience_index.zip_set(segment, OVERLAP_TOP_ZIPS)
        if not target_zips:
            return []

        own = set(self.audience_index.resolve(segment))
        others = sorted(name for name in self.audience_index.segment_names()
                        if name != segment and name not in own)
        rng = random.Random(segment)
        sample = rng.sample(others, min(FALLBACK_SAMPLE_SIZE, len(others)))

        overlaps = []
        for other in sample:
            other_zips = self.audience_index.zip_set(other, OVERLAP_TOP_ZIPS)
            percentage, intersection, union = jaccard_percentage(target_zips, other_zips)
            if percentage > 0:
                overlaps.append(OverlapRecord(
                    segment=segment,
                    other_segment=other,
                    overlap_percentage=percentage,
                    intersection_size=intersection,
                    union_size=union
                ))

        overlaps.sort(key=lambda r: (-r.overlap_percentage, r.other_segment))
        logger.info(f"Sampled {len(sample)} segments for {segment} overlaps; {len(overlaps)} non-zero")
        return overlaps[:limit]

    def overlap(self, first: str, second: str) -> float:
        """
        Overlap percentage between two segments.

        Symmetric: precomputed values are looked up from either side,
        otherwise Jaccard on each segment's top ZIP codes.
        """
        key = frozenset((first, second))
        cached = self._pair_cache.get(key)
        if cached is not None:
            return cached

        value = self._precomputed_pair(first, second)
        if value is None:
            value = self._precomputed_pair(second, first)
        if value is None:
            value, _, _ = jaccard_percentage(
                self.audience_index.zip_set(first, OVERLAP_TOP_ZIPS),
                self.audience_index.zip_set(second, OVERLAP_TOP_ZIPS)
            )

        self._pair_cache[key] = value
        return value

    def _precomputed_pair(self, segment: str, other: str) -> Optional[float]:
        if not self.precomputed:
            return None
        record = self.precomputed.get(segment, {}).get(other)
        return record.overlap_percentage if record is not None else None

    def calculate_over_index(self, first: str, second: str) -> OverIndexResult:
        """
        Geographic over-index for a pair of segments.

        Common ZIP codes are scored by the geometric mean of both weights and
        rolled up by city. Each city gets a relative score scaled by a
        population factor; the pair gets total score against an expected
        overlap. Both are clamped to [1, 15].

        Args:
            first: First segment name
            second: Second segment name

        Returns:
            OverIndexResult with city markets sorted by over-index
        """
        key = frozenset((first, second))
        cached = self._over_index_cache.get(key)
        if cached is not None:
            return cached

        first_entries = {e.zip_code: e.weight for e in self.audience_index.top_for_segment(first, OVER_INDEX_TOP_ZIPS)}
        second_entries = {e.zip_code: e.weight for e in self.audience_index.top_for_segment(second, OVER_INDEX_TOP_ZIPS)}
        common = [zip_code for zip_code in first_entries if zip_code in second_entries]

        if not common:
            result = OverIndexResult()
            self._over_index_cache[key] = result
            return result

        city_scores: Dict[Tuple[str, str], float] = {}
        city_population: Dict[Tuple[str, str], int] = {}
        total_score = 0.0

        for zip_code in common:
            score = math.sqrt(first_entries[zip_code] * second_entries[zip_code])
            total_score += score

            record = self.geo_store.get(zip_code)
            if record is None or not record.city:
                continue
            city_key = (record.city, record.state)
            city_scores[city_key] = city_scores.get(city_key, 0.0) + score
            city_population[city_key] = city_population.get(city_key, 0) + record.population

        markets = []
        if city_scores:
            mean_score = sum(city_scores.values()) / len(city_scores)
            for (city, state), score in city_scores.items():
                relative = score / mean_score if mean_score > 0 else 1.0
                population_factor = 0.7 + 0.3 * math.log10(max(city_population[(city, state)], 1000)) / 5
                over_index = round(clamp_over_index(relative * population_factor), 1)
                markets.append(RepresentativeMarket(
                    city=city,
                    state=state,
                    over_index=over_index,
                    descriptor=market_descriptor(over_index)
                ))
            markets.sort(key=lambda m: (-m.over_index, -city_scores[(m.city, m.state)], m.city))

        expected = math.sqrt(len(first_entries) * len(second_entries)) * EXPECTED_OVERLAP_FACTOR
        pair_index = clamp_over_index(total_score / expected) if expected > 0 else MIN_OVER_INDEX

        result = OverIndexResult(
            over_index=round(pair_index, 1),
            common_zip_count=len(common),
            total_score=total_score,
            city_markets=markets
        )
        self._over_index_cache[key] = result
        return result

    def assign_representative_markets(self, overlaps: List[OverlapRecord],
                                      per_segment: int = 3) -> Dict[str, List[RepresentativeMarket]]:
        """
        Distribute cities across overlaps so they do not repeat.

        Works round-robin: each round gives every overlap its best city not
        yet used in the report. When an overlap has no unused candidate
        left, it takes its next-best remaining candidate even if another
        overlap already shows it.

        Args:
            overlaps: Overlaps in display order
            per_segment: Markets per overlap

        Returns:
            Dictionary of other segment name -> representative markets
        """
        candidates = {
            record.other_segment: self.calculate_over_index(record.segment, record.other_segment).city_markets
            for record in overlaps
        }
        assigned: Dict[str, List[RepresentativeMarket]] = {record.other_segment: [] for record in overlaps}
        used: Set[Tuple[str, str]] = set()

        for _ in range(per_segment):
            for record in overlaps:
                name = record.other_segment
                markets = candidates[name]
                if not markets:
                    continue

                chosen = next((m for m in markets if (m.city, m.state) not in used), markets[0])

                assigned[name].append(chosen)
                used.add((chosen.city, chosen.state))
                candidates[name] = [m for m in markets if m is not chosen]

        return assigned

    def precompute_all_pairs(self, top_n: int = PRECOMPUTE_TOP_ZIPS) -> Dict[str, Any]:
        """
        Exhaustive pairwise Jaccard overlap across every segment.

        Args:
            top_n: ZIP codes per segment to compare

        Returns:
            Artifact dictionary with ``metadata`` and ``overlaps``
        """
        start = time.time()
        segments = sorted(self.audience_index.segment_names())
        zip_sets = {segment: self.audience_index.zip_set(segment, top_n) for segment in segments}
        timestamp = datetime.now().isoformat()

        overlaps = []
        for first, second in combinations(segments, 2):
            percentage, intersection, union = jaccard_percentage(zip_sets[first], zip_sets[second])
            overlaps.append({
                'segment1': first,
                'segment2': second,
                'overlapPercentage': round(percentage, 2),
                'intersection': intersection,
                'union': union,
                'timestamp': timestamp,
            })

        overlaps.sort(key=lambda item: item['overlapPercentage'], reverse=True)
        elapsed = time.time() - start

        logger.info(f"Precomputed {len(overlaps)} pairs across {len(segments)} segments in {elapsed:.1f}s")

        return {
            'metadata': {
                'totalSegments': len(segments),
                'totalPairs': len(overlaps),
                'zipLimitPerSegment': top_n,
                'calculatedAt': timestamp,
                'calculationTimeSeconds': round(elapsed, 2),
            },
            'overlaps': overlaps,
        }

    def save_overlap_table(self, output_path: str, top_n: int = PRECOMPUTE_TOP_ZIPS) -> Dict[str, Any]:
        """
        Precompute every pair and write the artifact as JSON.

        Args:
            output_path: Destination file
            top_n: ZIP codes per segment to compare

        Returns:
            The artifact metadata
        """
        artifact = self.precompute_all_pairs(top_n)

        path = Path(output_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w') as f:
            json.dump(artifact, f, indent=2)

        logger.info(f"Saved overlap table to {path}")
        return artifact['metadata']
