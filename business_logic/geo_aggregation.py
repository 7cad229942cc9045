"""
Geographic rollups of ZIP-level census data.

Records are rolled up to region, state, metro, county, city or ZIP level
with population-weighted means, then scored with the derived market
indices. The engine also serves market rankings by catalogue metric and
full single-market profiles against a national benchmark.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Any, Callable, Union

from models.data_models import GeoRecord, AggregatedMarket
from data.exceptions import MissingRecord
from data.geo_store import GeoRecordStore
from .market_scoring import (
    compute_ranges, consumer_wealth_index, community_cohesion_score, opportunity_score,
    life_stage_segment, market_archetype, similarity_score, saturation_level, is_hidden_gem
)

# Set up logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

NATIONAL_NAME = "United States"
INDIVIDUAL_INCOME_RATIO = 0.65
SNAPSHOT_SIZE = 3


class GeographicLevel(Enum):
    """Supported rollup levels."""
    REGION = "region"
    STATE = "state"
    METRO = "metro"
    COUNTY = "county"
    CITY = "city"
    ZIP = "zip"


@dataclass(frozen=True)
class MetricDefinition:
    """A rankable market attribute."""
    id: str
    name: str
    category: str
    field: str
    format: str = "percentage"


METRIC_CATALOGUE: List[MetricDefinition] = [
    # Demographics
    MetricDefinition('population', 'Population', 'Demographics', 'population', 'number'),
    MetricDefinition('age_median', 'Median Age', 'Demographics', 'age_median', 'number'),
    MetricDefinition('age_under_10', 'Age Under 10', 'Demographics', 'age_under_10'),
    MetricDefinition('age_10_to_19', 'Age 10-19', 'Demographics', 'age_10_to_19'),
    MetricDefinition('age_20s', 'Age 20-29', 'Demographics', 'age_20s'),
    MetricDefinition('age_30s', 'Age 30-39', 'Demographics', 'age_30s'),
    MetricDefinition('age_40s', 'Age 40-49', 'Demographics', 'age_40s'),
    MetricDefinition('age_50s', 'Age 50-59', 'Demographics', 'age_50s'),
    MetricDefinition('age_60s', 'Age 60-69', 'Demographics', 'age_60s'),
    MetricDefinition('age_70s', 'Age 70-79', 'Demographics', 'age_70s'),
    MetricDefinition('age_over_80', 'Age 80+', 'Demographics', 'age_over_80'),
    MetricDefinition('age_over_65', 'Age 65+', 'Demographics', 'age_65_plus'),
    # Race & Ethnicity
    MetricDefinition('race_white', 'White', 'Race & Ethnicity', 'white'),
    MetricDefinition('race_black', 'Black', 'Race & Ethnicity', 'black'),
    MetricDefinition('race_asian', 'Asian', 'Race & Ethnicity', 'asian'),
    MetricDefinition('hispanic', 'Hispanic', 'Race & Ethnicity', 'hispanic'),
    # Socioeconomics
    MetricDefinition('income_household_median', 'Median Household Income', 'Socioeconomics',
                     'household_income_median', 'currency'),
    MetricDefinition('income_individual_median', 'Median Individual Income', 'Socioeconomics',
                     'individual_income_median', 'currency'),
    MetricDefinition('income_household_six_figure', 'Six-Figure Households', 'Socioeconomics',
                     'six_figure_households'),
    MetricDefinition('poverty', 'Poverty Rate', 'Socioeconomics', 'poverty_rate'),
    MetricDefinition('unemployment_rate', 'Unemployment Rate', 'Socioeconomics', 'unemployment_rate'),
    # Housing & Wealth
    MetricDefinition('home_value', 'Median Home Value', 'Housing & Wealth', 'median_home_value', 'currency'),
    MetricDefinition('rent_median', 'Median Rent', 'Housing & Wealth', 'median_rent', 'currency'),
    MetricDefinition('home_ownership', 'Homeownership Rate', 'Housing & Wealth', 'homeownership_rate'),
    # Education & Social
    MetricDefinition('education_college_or_above', 'College Educated', 'Education & Social', 'college_educated'),
    MetricDefinition('education_bachelors', "Bachelor's Degree", 'Education & Social', 'bachelor_degree'),
    MetricDefinition('education_stem_degree', 'STEM Degree', 'Education & Social', 'stem_degree'),
    MetricDefinition('married', 'Married', 'Education & Social', 'married'),
    MetricDefinition('family_dual_income', 'Dual-Income Families', 'Education & Social', 'dual_income'),
    # Work & Lifestyle
    MetricDefinition('commute_time', 'Average Commute (min)', 'Work & Lifestyle', 'commute_time', 'number'),
    MetricDefinition('self_employed', 'Self-Employed', 'Work & Lifestyle', 'self_employed'),
    MetricDefinition('family_size', 'Average Household Size', 'Work & Lifestyle', 'household_size_average',
                     'number'),
    MetricDefinition('charitable_givers', 'Charitable Givers', 'Work & Lifestyle', 'charitable_givers'),
    # Derived
    MetricDefinition('consumer_wealth_index', 'Consumer Wealth Index', 'Derived', 'consumer_wealth_index',
                     'number'),
    MetricDefinition('community_cohesion_score', 'Community Cohesion Score', 'Derived',
                     'community_cohesion_score', 'number'),
]

METRICS_BY_ID: Dict[str, MetricDefinition] = {metric.id: metric for metric in METRIC_CATALOGUE}

# Metrics left out of the strategic snapshot comparison
SNAPSHOT_EXCLUDED = {'population', 'consumer_wealth_index', 'community_cohesion_score'}

# AggregatedMarket field -> GeoRecord value accessor
WEIGHTED_FIELDS: Dict[str, Callable[[GeoRecord], Optional[float]]] = {
    'age_median': lambda r: r.age_median,
    'age_under_10': lambda r: r.age_under_10,
    'age_10_to_19': lambda r: r.age_10_to_19,
    'age_18_to_24': lambda r: r.age_distribution['18to24'],
    'age_20s': lambda r: r.age_20s,
    'age_30s': lambda r: r.age_30s,
    'age_40s': lambda r: r.age_40s,
    'age_50s': lambda r: r.age_50s,
    'age_60s': lambda r: r.age_60s,
    'age_65_plus': lambda r: r.age_65_plus,
    'age_70s': lambda r: r.age_70s,
    'age_over_80': lambda r: r.age_over_80,
    'white': lambda r: r.white,
    'black': lambda r: r.black,
    'asian': lambda r: r.asian,
    'hispanic': lambda r: r.hispanic,
    'household_income_median': lambda r: r.income_median,
    'six_figure_households': lambda r: r.six_figure_pct,
    'poverty_rate': lambda r: r.poverty_rate,
    'unemployment_rate': lambda r: r.unemployment_rate,
    'median_home_value': lambda r: r.home_value,
    'median_rent': lambda r: r.rent_median,
    'homeownership_rate': lambda r: r.home_ownership,
    'college_educated': lambda r: r.college_educated,
    'bachelor_degree': lambda r: r.education_bachelors,
    'stem_degree': lambda r: r.stem_degree,
    'married': lambda r: r.married,
    'dual_income': lambda r: r.dual_income,
    'commute_time': lambda r: r.commute_time,
    'self_employed': lambda r: r.self_employed,
    'household_size_average': lambda r: r.household_size,
    'charitable_givers': lambda r: r.charitable_givers,
    'veteran': lambda r: r.veteran,
    'rent_burden': lambda r: r.rent_burden,
}

# Levels shown above each level in a market profile
HIERARCHY_ABOVE = {
    GeographicLevel.ZIP: ['city', 'county', 'metro', 'state', 'region'],
    GeographicLevel.CITY: ['county', 'metro', 'state', 'region'],
    GeographicLevel.COUNTY: ['metro', 'state', 'region'],
    GeographicLevel.METRO: ['state', 'region'],
    GeographicLevel.STATE: ['region'],
    GeographicLevel.REGION: [],
}


def format_value(value: Optional[float], value_format: str) -> str:
    """
    Format a metric value for display.

    Args:
        value: Raw value
        value_format: 'currency', 'percentage' or 'number'

    Returns:
        Display string, or 'N/A' for missing values
    """
    if value is None:
        return 'N/A'
    if value_format == 'currency':
        return f"${value:,.0f}"
    if value_format == 'percentage':
        return f"{value:.1f}%"
    if float(value).is_integer() or abs(value) >= 100:
        return f"{value:,.0f}"
    return f"{value:,.1f}"


def percent_difference(value: float, national: float) -> float:
    if not national:
        return 0.0
    return round((value / national - 1) * 100, 1)


def _as_level(level: Union[GeographicLevel, str]) -> GeographicLevel:
    if isinstance(level, GeographicLevel):
        return level
    return GeographicLevel(str(level).lower())


class GeoAggregationEngine:
    """
    Rolls census records up to geographic markets and scores them.
    """

    def __init__(self, geo_store: GeoRecordStore):
        """
        Initialize the engine.

        Args:
            geo_store: Loaded census record store
        """
        self.geo_store = geo_store
        self._markets: Dict[GeographicLevel, Dict[str, AggregatedMarket]] = {}
        self._members: Dict[GeographicLevel, Dict[str, List[GeoRecord]]] = {}
        self._national: Optional[AggregatedMarket] = None

    def clear_cache(self):
        self._markets = {}
        self._members = {}
        self._national = None

    def market_key(self, record: GeoRecord, level: GeographicLevel) -> str:
        """Name of the market a record belongs to at a level; '' if unknown."""
        if level == GeographicLevel.REGION:
            return self.geo_store.region_for_state(record.state) if record.state else ''
        if level == GeographicLevel.STATE:
            return record.state
        if level == GeographicLevel.METRO:
            return record.metro_area
        if level == GeographicLevel.COUNTY:
            return f"{record.county}, {record.state}" if record.county else ''
        if level == GeographicLevel.CITY:
            return f"{record.city}, {record.state}" if record.city else ''
        return record.zip_code

    @staticmethod
    def rollup(name: str, level: str, records: List[GeoRecord]) -> AggregatedMarket:
        """
        Population-weighted rollup of a set of records.

        Missing values count as zero. A zero total population gives zeros.
        """
        population = sum(record.population for record in records)
        values: Dict[str, float] = {}

        for field_name, accessor in WEIGHTED_FIELDS.items():
            if population <= 0:
                values[field_name] = 0.0
                continue
            weighted = sum((accessor(record) or 0.0) * record.population for record in records)
            values[field_name] = weighted / population

        values['individual_income_median'] = values['household_income_median'] * INDIVIDUAL_INCOME_RATIO

        return AggregatedMarket(
            name=name,
            level=level,
            population=population,
            zip_codes=[record.zip_code for record in records],
            **values
        )

    def get_markets(self, level: Union[GeographicLevel, str]) -> List[AggregatedMarket]:
        """
        All markets at a level, scored with the derived indices.

        Args:
            level: GeographicLevel or its string value

        Returns:
            Markets sorted by population, descending
        """
        level = _as_level(level)
        if level not in self._markets:
            self._build_level(level)

        return sorted(self._markets[level].values(), key=lambda m: (-m.population, m.name))

    def _build_level(self, level: GeographicLevel):
        members: Dict[str, List[GeoRecord]] = {}
        for record in self.geo_store.all_records():
            key = self.market_key(record, level)
            if key:
                members.setdefault(key, []).append(record)

        markets = {name: self.rollup(name, level.value, records) for name, records in members.items()}

        ranges = compute_ranges(markets.values())
        for market in markets.values():
            market.consumer_wealth_index = consumer_wealth_index(market, ranges)
            market.community_cohesion_score = community_cohesion_score(market, ranges)
            market.opportunity_score, market.opportunity_tier = opportunity_score(market)
            market.life_stage_segment = life_stage_segment(market)

        self._markets[level] = markets
        self._members[level] = members
        logger.info(f"Aggregated {len(markets)} markets at {level.value} level")

    def get_market(self, level: Union[GeographicLevel, str], name: str) -> AggregatedMarket:
        """
        Look up a single market.

        Raises:
            MissingRecord: If no market has that name at the level
        """
        level = _as_level(level)
        self.get_markets(level)
        market = self._markets[level].get(name)
        if market is None:
            raise MissingRecord(f"No {level.value} market named '{name}'")
        return market

    def national_benchmark(self) -> AggregatedMarket:
        """All records rolled up into a single national market."""
        if self._national is None:
            self._national = self.rollup(NATIONAL_NAME, GeographicLevel.REGION.value,
                                         self.geo_store.all_records())
        return self._national

    def top_markets_by_metric(self, metric_id: str, level: Union[GeographicLevel, str],
                              limit: int = 50) -> List[Dict[str, Any]]:
        """
        Rank markets by a catalogue metric.

        Args:
            metric_id: Catalogue metric id
            level: Geographic level
            limit: Maximum number of markets

        Returns:
            Ranked market rows with formatted value, opportunity and
            competitive intelligence

        Raises:
            ValueError: If the metric id is not in the catalogue
        """
        metric = METRICS_BY_ID.get(metric_id)
        if metric is None:
            raise ValueError(f"Unknown metric: {metric_id}")

        markets = self.get_markets(level)
        ranked = sorted(markets, key=lambda m: (-getattr(m, metric.field), m.name))[:limit]

        results = []
        for rank, market in enumerate(ranked, start=1):
            value = getattr(market, metric.field)
            results.append({
                'rank': rank,
                'name': market.name,
                'level': market.level,
                'value': value,
                'formatted_value': format_value(value, metric.format),
                'population': market.population,
                'opportunity_score': market.opportunity_score,
                'opportunity_tier': market.opportunity_tier,
                'competitive_intel': {
                    'hidden_gem': is_hidden_gem(rank, market.opportunity_score),
                    'saturation': saturation_level(market),
                },
            })

        return results

    def find_similar_markets(self, level: Union[GeographicLevel, str], name: str,
                             limit: int = 5) -> List[Dict[str, Any]]:
        """
        Markets at the same level with the most similar demographic profile.

        Raises:
            MissingRecord: If the target market does not exist
        """
        target = self.get_market(level, name)

        scored = [
            {
                'name': market.name,
                'similarity': similarity_score(target, market),
                'population': market.population,
                'opportunity_tier': market.opportunity_tier,
            }
            for market in self.get_markets(level)
            if market.name != target.name
        ]
        scored.sort(key=lambda item: (-item['similarity'], item['name']))
        return scored[:limit]

    def get_market_profile(self, level: Union[GeographicLevel, str], name: str) -> Dict[str, Any]:
        """
        Full profile for a single market.

        Args:
            level: Geographic level
            name: Market name at that level

        Returns:
            Dictionary with attributes vs the national benchmark, strategic
            snapshot, archetype, hierarchy, similar markets and indices

        Raises:
            MissingRecord: If the market does not exist
        """
        level = _as_level(level)
        market = self.get_market(level, name)
        national = self.national_benchmark()

        attributes = []
        for metric in METRIC_CATALOGUE:
            value = getattr(market, metric.field)
            national_value = getattr(national, metric.field)
            attributes.append({
                'id': metric.id,
                'name': metric.name,
                'category': metric.category,
                'value': value,
                'formatted_value': format_value(value, metric.format),
                'national_value': national_value,
                'difference_pct': percent_difference(value, national_value),
            })

        records = self._members[level][market.name]
        poverty_ratio = market.poverty_rate / national.poverty_rate if national.poverty_rate else 1.0

        return {
            'name': market.name,
            'level': level.value,
            'population': market.population,
            'zip_count': len(market.zip_codes),
            'attributes': attributes,
            'strategic_snapshot': self._strategic_snapshot(attributes),
            'archetype': market_archetype(market),
            'hierarchy': self._hierarchy(records[0], level),
            'similar_markets': self.find_similar_markets(level, market.name),
            'poverty_ratio': round(poverty_ratio, 2),
            'consumer_wealth_index': market.consumer_wealth_index,
            'community_cohesion_score': market.community_cohesion_score,
            'opportunity_score': market.opportunity_score,
            'opportunity_tier': market.opportunity_tier,
            'life_stage_segment': market.life_stage_segment,
        }

    @staticmethod
    def _strategic_snapshot(attributes: List[Dict[str, Any]]) -> Dict[str, Any]:
        comparable = [a for a in attributes if a['id'] not in SNAPSHOT_EXCLUDED and a['difference_pct'] != 0]
        comparable.sort(key=lambda a: abs(a['difference_pct']), reverse=True)

        def describe(attribute: Dict[str, Any]) -> Dict[str, Any]:
            direction = 'above' if attribute['difference_pct'] > 0 else 'below'
            return {
                'metric': attribute['id'],
                'name': attribute['name'],
                'value': attribute['formatted_value'],
                'comparison': f"{abs(attribute['difference_pct']):.1f}% {direction} national average",
            }

        strengths = [describe(a) for a in comparable if a['difference_pct'] > 0][:SNAPSHOT_SIZE]
        concerns = [describe(a) for a in comparable if a['difference_pct'] < 0][:SNAPSHOT_SIZE]

        parts = []
        if strengths:
            parts.append(f"This market stands out for {', '.join(s['name'].lower() for s in strengths)}.")
        if concerns:
            parts.append(f"Key areas for consideration include {', '.join(c['name'].lower() for c in concerns)}.")
        summary = ' '.join(parts) if parts else "This market aligns closely with national averages across most metrics."

        return {'strengths': strengths, 'concerns': concerns, 'summary': summary}

    def _hierarchy(self, record: GeoRecord, level: GeographicLevel) -> Dict[str, str]:
        hierarchy = {}
        for parent in HIERARCHY_ABOVE[level]:
            value = self.market_key(record, GeographicLevel(parent))
            if value:
                hierarchy[parent] = value
        return hierarchy
