"""
Audience Report Controller - Orchestrates audience insight report generation.

This module wires the data repositories to the aggregation, baseline,
overlap and insight components and exposes a single report entry point
with the same (success, result, message, notification) contract used
across the application.
"""

import logging
from typing import Dict, List, Optional, Any, Tuple
from datetime import datetime

from models.data_models import AudienceReport, GeoHotspot, OverlapRecord, DemographicProfile, SegmentBaseline
from data.manager import DataManager
from data.exceptions import MissingRecord
from config.settings import config_manager, AppConfig
from .weighted_aggregator import WeightedAggregator, percent_delta
from .baseline_calculator import BaselineCalculator
from .overlap_engine import OverlapEngine, DEFAULT_OVERLAP_LIMIT
from .geo_aggregation import GeoAggregationEngine
from .report_cache import ReportCache
from .insight_rules import InsightRuleEngine
from .insight_narrator import InsightNarrator
from .error_handler import error_handler, ErrorInfo, ErrorSeverity, ErrorCategory

# Set up logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

US_POPULATION = 330_000_000
HOTSPOT_LIMIT = 50
MIN_RESIDENTIAL_POPULATION = 10000
MIN_OVER_INDEX_POPULATION = 1000
TOP_GEOGRAPHY_LIMIT = 10

REGION_STATES = {
    'westCoast': ['California', 'Oregon', 'Washington', 'Nevada'],
    'eastCoast': ['New York', 'New Jersey', 'Massachusetts', 'Pennsylvania', 'Virginia', 'Maryland',
                  'District of Columbia'],
    'south': ['Texas', 'Florida', 'Georgia', 'North Carolina', 'Tennessee'],
    'midwest': ['Illinois', 'Michigan', 'Ohio', 'Wisconsin', 'Minnesota'],
}


def vs_commerce(value: float, baseline_value: Optional[float]) -> float:
    """Percent difference against the commerce baseline; 0 without one."""
    if not baseline_value:
        return 0.0
    return percent_delta(value, baseline_value)


class AudienceReportController:
    """
    Main controller for audience insight reports.

    Loads data on first use, then assembles hotspots, demographics,
    geographic intelligence and behavioral overlaps for a segment.
    """

    def __init__(self, data_manager: Optional[DataManager] = None, testing_mode: bool = False,
                 config: Optional[AppConfig] = None, narrator: Optional[InsightNarrator] = None):
        """
        Initialize the audience report controller.

        Args:
            data_manager: Optional DataManager instance
            testing_mode: Skip OpenAI initialization for testing
            config: Application config; loaded from the config manager if None
            narrator: Pre-built insight narrator
        """
        self.config = config or config_manager.load_config()
        self.data_manager = data_manager or DataManager.from_config()

        self.aggregator = WeightedAggregator(self.data_manager.geo_store)
        self.baseline_calculator = BaselineCalculator(
            self.data_manager.audience_index,
            self.aggregator,
            self.data_manager.baseline_store,
            ttl_hours=self.config.baseline_ttl_hours
        )
        self.overlap_engine = OverlapEngine(
            self.data_manager.audience_index,
            self.data_manager.geo_store,
            self.data_manager.overlaps
        )
        self.geo_engine = GeoAggregationEngine(self.data_manager.geo_store)
        self.report_cache = ReportCache(ttl_hours=self.config.report_cache_ttl_hours)
        self.narrator = narrator or InsightNarrator(
            InsightRuleEngine.from_file(self.config.insight_rules_path),
            self.config,
            skip_openai_init=testing_mode
        )

        logger.info("AudienceReportController initialized")

    def _ensure_loaded(self):
        """
        Load data sources on first use.

        Raises:
            DataUnavailable: If census or audience data cannot be loaded
        """
        if self.data_manager.geo_store.is_loaded and self.data_manager.audience_index.is_loaded:
            return

        counts = self.data_manager.load_all()
        self.overlap_engine.set_precomputed(self.data_manager.overlaps)
        self.geo_engine.clear_cache()
        logger.info(f"Data loaded for reporting: {counts}")

    def _canonical_name(self, segment: str) -> str:
        names = self.data_manager.audience_index.resolve(segment)
        return names[0] if len(names) == 1 else segment

    def generate_report(self, segment: str, category: Optional[str] = None,
                        include_non_residential: bool = False
                        ) -> Tuple[bool, Optional[AudienceReport], str, Optional[Dict[str, Any]]]:
        """
        Generate an audience report with error handling.

        Args:
            segment: Segment name or name fragment
            category: Optional segment category label
            include_non_residential: Keep ZIP codes under 10,000 residents

        Returns:
            Tuple of (success, AudienceReport or None, status message, user_notification)
        """
        try:
            if not segment or not segment.strip():
                error_info = error_handler.handle_validation_error(
                    ValueError("Please enter an audience segment name."), "report request")
                return False, None, error_info.user_message, error_handler.create_user_notification(error_info)

            logger.info(f"Starting report generation for {segment}")
            self._ensure_loaded()

            if not self.data_manager.audience_index.has_segment(segment):
                suggestions = [stat['name'] for stat in self.list_segments()[:5]]
                error_info = ErrorInfo(
                    category=ErrorCategory.USER_ERROR,
                    severity=ErrorSeverity.WARNING,
                    message=f"Segment not found: {segment}",
                    user_message=f"No audience segment matches '{segment}'.",
                    suggested_action=f"Try one of: {', '.join(suggestions)}" if suggestions else None
                )
                error_handler.log_error(error_info, "Report Generation")
                return False, None, error_info.user_message, error_handler.create_user_notification(error_info)

            report = self.build_report(segment, category, include_non_residential)

            message = f"Generated audience report for {report.segment}"
            notification = None
            if report.demographics.used_fallback:
                message += " (Note: no populated ZIP codes matched; national averages shown)"
                notification = {
                    'type': 'warning',
                    'title': 'Limited Geographic Data',
                    'message': 'No populated ZIP codes matched this segment, so demographics show national averages.',
                    'dismissible': True
                }

            return True, report, message, notification

        except Exception as e:
            error_info = error_handler.classify_error(e, "audience report generation")
            error_handler.log_error(error_info, "Report Generation")
            notification = error_handler.create_user_notification(error_info)
            return False, None, error_info.user_message, notification

    def build_report(self, segment: str, category: Optional[str] = None,
                     include_non_residential: bool = False) -> AudienceReport:
        """
        Assemble a report, serving it from the cache when fresh.

        Raises:
            DataUnavailable: If data cannot be loaded
            MissingRecord: If no segment matches the name
        """
        self._ensure_loaded()

        cache_key = ReportCache.make_key(segment, category, include_non_residential)
        cached = self.report_cache.get(cache_key)
        if cached is not None:
            logger.info(f"Serving cached report for {segment}")
            return cached

        if not self.data_manager.audience_index.has_segment(segment):
            raise MissingRecord(f"No audience segment matches '{segment}'")

        name = self._canonical_name(segment)

        hotspots = self.get_top_geographic_concentration(segment, HOTSPOT_LIMIT, include_non_residential)
        demographics = self.aggregator.aggregate((h.zip_code, h.weight) for h in hotspots)
        baseline = self.baseline_calculator.get_baseline()

        report = AudienceReport(
            segment=name,
            category=category,
            include_non_residential=include_non_residential,
            generated_at=datetime.now(),
            key_metrics=self._key_metrics(demographics, baseline),
            geographic_hotspots=hotspots,
            demographics=demographics,
            geographic_intelligence=self._geographic_intelligence(hotspots),
            behavioral_overlaps=self._behavioral_overlaps(name),
            baseline_info=self.baseline_calculator.get_baseline_info()
        )

        self.report_cache.set(cache_key, report)
        logger.info(f"Report complete for {name}: {len(hotspots)} hotspots, "
                    f"{len(report.behavioral_overlaps)} overlaps")
        return report

    def get_top_geographic_concentration(self, segment: str, limit: int = HOTSPOT_LIMIT,
                                         include_non_residential: bool = False) -> List[GeoHotspot]:
        """
        ZIP codes where a segment is most concentrated.

        Args:
            segment: Segment name or fragment
            limit: Maximum hotspots
            include_non_residential: Keep ZIP codes under 10,000 residents

        Returns:
            Hotspots by weight, descending, with penetration and over-index
        """
        index = self.data_manager.audience_index
        geo_store = self.data_manager.geo_store

        total_weight = index.total_weight(segment)
        national_penetration = total_weight / US_POPULATION

        hotspots = []
        for entry in index.top_for_segment(segment, limit * 2):
            record = geo_store.get(entry.zip_code)
            if record is None:
                continue
            if not include_non_residential and record.population < MIN_RESIDENTIAL_POPULATION:
                continue

            penetration = entry.weight / record.population if record.population > 0 else 0.0
            over_index = penetration / national_penetration * 100 if national_penetration > 0 else None

            hotspots.append(GeoHotspot(
                zip_code=entry.zip_code,
                weight=entry.weight,
                city=record.city,
                state=record.state,
                population=record.population,
                over_index=over_index,
                penetration=penetration
            ))

        hotspots.sort(key=lambda h: h.weight, reverse=True)
        return hotspots[:limit]

    def _key_metrics(self, demographics: DemographicProfile, baseline: SegmentBaseline) -> Dict[str, Any]:
        income = demographics.income_median
        education = demographics.education_bachelors

        return {
            'median_household_income': {
                'value': round(income),
                'vs_national': demographics.vs_national.get('income_median', 0.0),
                'vs_commerce': vs_commerce(income, baseline.income),
            },
            'top_age_bracket': {
                'value': demographics.top_age_bracket,
                'share': round(demographics.age_brackets.get(demographics.top_age_bracket, 0.0), 1),
            },
            'education': {
                'value': round(education, 1),
                'level': demographics.education_profile,
                'vs_national': demographics.vs_national.get('education_bachelors', 0.0),
                'vs_commerce': vs_commerce(education, baseline.education),
            },
            'affluence_level': demographics.affluence_level,
            'family_profile': demographics.family_profile,
            'location_profile': demographics.location_profile,
        }

    def _geographic_intelligence(self, hotspots: List[GeoHotspot]) -> Dict[str, Any]:
        total_weight = sum(h.weight for h in hotspots)

        cities: Dict[str, Dict[str, Any]] = {}
        states: Dict[str, Dict[str, Any]] = {}
        regions = {key: 0.0 for key in REGION_STATES}
        regions['other'] = 0.0

        for hotspot in hotspots:
            if hotspot.city:
                city_key = f"{hotspot.city}, {hotspot.state}"
                city = cities.setdefault(city_key, {'name': city_key, 'weight': 0.0, 'zip_count': 0})
                city['weight'] += hotspot.weight
                city['zip_count'] += 1

            if hotspot.state:
                state = states.setdefault(hotspot.state, {'name': hotspot.state, 'weight': 0.0, 'zip_count': 0})
                state['weight'] += hotspot.weight
                state['zip_count'] += 1

            region = next((key for key, members in REGION_STATES.items() if hotspot.state in members), 'other')
            regions[region] += hotspot.weight

        regional_distribution = {
            key: round(weight / total_weight * 100, 1) if total_weight > 0 else 0.0
            for key, weight in regions.items()
        }

        over_indexed = [h for h in hotspots if h.population > MIN_OVER_INDEX_POPULATION and h.over_index is not None]
        over_indexed.sort(key=lambda h: h.over_index, reverse=True)

        return {
            'top_cities': sorted(cities.values(), key=lambda c: -c['weight'])[:TOP_GEOGRAPHY_LIMIT],
            'top_states': sorted(states.values(), key=lambda s: -s['weight'])[:TOP_GEOGRAPHY_LIMIT],
            'regional_distribution': regional_distribution,
            'top_over_index_zips': [
                {
                    'zip_code': h.zip_code,
                    'city': h.city,
                    'state': h.state,
                    'over_index': round(h.over_index, 1),
                    'population': h.population,
                }
                for h in over_indexed[:TOP_GEOGRAPHY_LIMIT]
            ],
        }

    def _behavioral_overlaps(self, segment: str) -> List[OverlapRecord]:
        own = set(self.data_manager.audience_index.resolve(segment))
        overlaps = [
            record for record in self.overlap_engine.get_overlaps(segment, DEFAULT_OVERLAP_LIMIT)
            if record.other_segment not in own
        ]
        representatives = self.overlap_engine.assign_representative_markets(overlaps)

        for record in overlaps:
            over_index = self.overlap_engine.calculate_over_index(segment, record.other_segment)
            insight = self.narrator.insight_for(segment, record.other_segment, record.overlap_percentage)

            record.over_index = over_index.over_index
            record.representative_markets = representatives.get(record.other_segment, [])
            record.insight = insight.text
            record.insight_confidence = insight.confidence

        return overlaps

    def list_segments(self) -> List[Dict[str, Any]]:
        self._ensure_loaded()
        return self.data_manager.audience_index.segment_stats()

    def search_segments(self, text: str) -> List[str]:
        self._ensure_loaded()
        return self.data_manager.audience_index.find_segments(text)

    def get_baseline_info(self) -> Dict[str, Any]:
        self._ensure_loaded()
        return self.baseline_calculator.get_baseline_info()

    def recalculate_baseline(self) -> Dict[str, Any]:
        """Force a new baseline and drop reports built on the old one."""
        self._ensure_loaded()
        self.baseline_calculator.recalculate()
        self.report_cache.clear()
        return self.baseline_calculator.get_baseline_info()

    def get_market_profile(self, level: str, name: str) -> Dict[str, Any]:
        self._ensure_loaded()
        return self.geo_engine.get_market_profile(level, name)

    def top_markets_by_metric(self, metric_id: str, level: str, limit: int = 50) -> List[Dict[str, Any]]:
        self._ensure_loaded()
        return self.geo_engine.top_markets_by_metric(metric_id, level, limit)

    def reload(self) -> Dict[str, bool]:
        """
        Re-read changed data sources and invalidate everything derived from them.

        Returns:
            Dictionary of source type -> whether it was reloaded
        """
        self._ensure_loaded()
        reloaded = self.data_manager.reload()
        if not any(reloaded.values()):
            return reloaded

        self.overlap_engine.set_precomputed(self.data_manager.overlaps)
        self.geo_engine.clear_cache()
        self.report_cache.clear()

        if reloaded['geo'] or reloaded['audience']:
            self.baseline_calculator.recalculate()

        logger.info(f"Report data reloaded: {reloaded}")
        return reloaded

    def clear_caches(self):
        """Drop report, overlap and market caches."""
        self.report_cache.clear()
        self.overlap_engine.clear_cache()
        self.geo_engine.clear_cache()
        logger.info("Report caches cleared")

    def get_system_status(self) -> Dict[str, Any]:
        """
        Overall system status and health information.

        Returns:
            Dictionary with data, cache and narrative status
        """
        try:
            data_status = self.data_manager.validate_data_freshness()

            return {
                'data_status': data_status,
                'segment_count': len(self.data_manager.audience_index),
                'geo_record_count': len(self.data_manager.geo_store),
                'precomputed_overlaps': self.overlap_engine.has_precomputed,
                'report_cache': self.report_cache.get_stats(),
                'narrative': {
                    'enabled': self.narrator.client is not None,
                    **self.narrator.get_stats(),
                },
                'error_stats': error_handler.get_error_statistics(),
                'system_ready': data_status['overall_status'] in ['ready', 'needs_refresh'],
                'last_updated': datetime.now().isoformat()
            }

        except Exception as e:
            logger.error(f"Error getting system status: {str(e)}")
            return {
                'error': str(e),
                'system_ready': False,
                'last_updated': datetime.now().isoformat()
            }
