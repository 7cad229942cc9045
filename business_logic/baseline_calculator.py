"""
Cross-segment "typical commerce audience" baseline.

The baseline is the per-metric median of every segment's weighted profile,
computed over each segment's top ZIP codes. It is cached in memory and on
disk and recomputed once it is older than the configured lifetime.
"""

import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Any, Callable

from models.data_models import SegmentBaseline
from data.audience_index import AudienceMembershipIndex
from data.baseline_store import BaselineStore
from .weighted_aggregator import WeightedAggregator

# Set up logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

BASELINE_TOP_ZIPS = 50
DEFAULT_TTL_HOURS = 168

# SegmentBaseline field -> WeightedAggregator metric
BASELINE_METRICS = {
    'income': 'income_median',
    'age': 'age_median',
    'education': 'education_bachelors',
    'home_ownership': 'home_ownership',
    'household_size': 'household_size',
    'home_value': 'home_value',
    'self_employed': 'self_employed',
    'married': 'married',
    'dual_income': 'dual_income',
    'commute_time': 'commute_time',
    'charitable_givers': 'charitable_givers',
    'stem_degree': 'stem_degree',
}

WHOLE_NUMBER_FIELDS = {'income', 'home_value'}


def median(values: List[float]) -> float:
    """Median of a non-empty list; even counts average the middle pair."""
    ordered = sorted(values)
    middle = len(ordered) // 2
    if len(ordered) % 2 == 0:
        return (ordered[middle - 1] + ordered[middle]) / 2
    return ordered[middle]


class BaselineCalculator:
    """
    Computes and caches the SegmentBaseline.
    """

    def __init__(self, audience_index: AudienceMembershipIndex, aggregator: WeightedAggregator,
                 store: Optional[BaselineStore] = None, ttl_hours: int = DEFAULT_TTL_HOURS,
                 clock: Callable[[], datetime] = datetime.now):
        """
        Initialize the calculator.

        Args:
            audience_index: Loaded audience membership index
            aggregator: Weighted aggregator over the same geo store
            store: Durable snapshot store; in-memory only if None
            ttl_hours: Snapshot lifetime in hours
            clock: Source of the current time
        """
        self.audience_index = audience_index
        self.aggregator = aggregator
        self.store = store
        self.ttl = timedelta(hours=ttl_hours)
        self.clock = clock
        self._baseline: Optional[SegmentBaseline] = None

    def _is_fresh(self, baseline: SegmentBaseline) -> bool:
        return self.clock() - baseline.calculated_at < self.ttl

    def get_baseline(self) -> SegmentBaseline:
        """
        Current baseline, recomputed only when no fresh snapshot exists.

        Lookup order is memory, then the durable store, then a full
        computation that is saved back to the store.
        """
        if self._baseline is not None and self._is_fresh(self._baseline):
            return self._baseline

        if self.store is not None:
            stored = self.store.load()
            if stored is not None and self._is_fresh(stored):
                self._baseline = stored
                return stored

        return self.recalculate()

    def recalculate(self) -> SegmentBaseline:
        """Force a new baseline computation regardless of cache state."""
        baseline = self.compute()

        if baseline.segment_count > 0 and self.store is not None:
            self.store.save(baseline)

        self._baseline = baseline
        return baseline

    def compute(self) -> SegmentBaseline:
        """
        Compute the baseline from every segment's top ZIP codes.

        Returns:
            SegmentBaseline. With no computable segments, a zero baseline
            with segment_count 0.
        """
        start_time = self.clock()
        samples: Dict[str, List[float]] = {field_name: [] for field_name in BASELINE_METRICS}
        segment_count = 0

        for segment in sorted(self.audience_index.segment_names()):
            entries = self.audience_index.top_for_segment(segment, BASELINE_TOP_ZIPS)
            metrics = self.aggregator.weighted_metrics((entry.zip_code, entry.weight) for entry in entries)
            if metrics is None:
                continue

            segment_count += 1
            for field_name, metric in BASELINE_METRICS.items():
                samples[field_name].append(metrics[metric])

        if segment_count == 0:
            logger.warning("No segments produced metrics; returning an empty baseline")
            values = {field_name: 0.0 for field_name in BASELINE_METRICS}
        else:
            values = {}
            for field_name, metric_samples in samples.items():
                value = median(metric_samples)
                values[field_name] = round(value) if field_name in WHOLE_NUMBER_FIELDS else round(value, 1)

        baseline = SegmentBaseline(
            segment_count=segment_count,
            calculated_at=self.clock(),
            **values
        )

        elapsed = (baseline.calculated_at - start_time).total_seconds()
        logger.info(f"Calculated baseline from {segment_count} segments in {elapsed:.2f}s")
        return baseline

    def get_baseline_info(self) -> Dict[str, Any]:
        """
        Metadata about the current baseline.

        Returns:
            Dictionary with calculated_at, age_hours, is_stale and segment_count
        """
        baseline = self.get_baseline()
        age = self.clock() - baseline.calculated_at

        return {
            'calculated_at': baseline.calculated_at.isoformat(),
            'age_hours': round(age.total_seconds() / 3600, 1),
            'is_stale': age >= self.ttl,
            'segment_count': baseline.segment_count,
        }
