"""
Weighted demographic aggregation over ZIP/weight pairs.

Every numeric attribute is a weight-averaged mean over the ZIP codes that
resolve to a populated census record. Missing per-ZIP values and the
zero-weight case fall back to a fixed national-average profile, so results
are never NaN.
"""

import logging
from typing import Dict, List, Optional, Tuple, Iterable

from models.data_models import GeoRecord, DemographicProfile
from data.geo_store import GeoRecordStore

# Set up logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


NATIONAL_AVERAGES = {
    'income_median': 70420.0,
    'home_value': 300000.0,
    'age_median': 38.5,
    'education_bachelors': 35.0,
    'home_ownership': 65.0,
    'married': 48.0,
    'household_size': 2.5,
    'children_in_household': 32.0,
    'self_employed': 6.0,
    'labor_force': 63.0,
    'dual_income': 50.0,
    'commute_time': 27.0,
    'charitable_givers': 50.0,
    'stem_degree': 10.0,
}

NATIONAL_ETHNICITY = {
    'white': 60.0,
    'hispanic': 18.0,
    'black': 13.0,
    'asian': 6.0,
}

# National share of households per income bracket
NATIONAL_INCOME_DISTRIBUTION = {
    '<$50k': 35.0,
    '$50k-$75k': 25.0,
    '$75k-$100k': 18.0,
    '$100k-$150k': 15.0,
    '$150k+': 7.0,
}

# Decade bracket -> contributions from the census age bands
DECADE_COEFFICIENTS = {
    '0-9': {'under18': 0.56},
    '10-19': {'under18': 0.44, '18to24': 0.29},
    '20-29': {'18to24': 0.71, '25to44': 0.26},
    '30-39': {'25to44': 0.53},
    '40-49': {'25to44': 0.21, '45to64': 0.48},
    '50-59': {'45to64': 0.52},
    '60-69': {'65plus': 0.45},
    '70+': {'65plus': 0.55},
}

DEFAULT_TOP_AGE_BRACKET = '25-44'
MIN_BRACKET_SHARE = 0.5

INCOME_BRACKETS = [
    ('<$50k', 0, 50000),
    ('$50k-$75k', 50000, 75000),
    ('$75k-$100k', 75000, 100000),
    ('$100k-$150k', 100000, 150000),
    ('$150k+', 150000, float('inf')),
]

EDUCATION_LEVELS = [
    ('High School or Less', 0, 20),
    ('Some College', 20, 30),
    ("Bachelor's", 30, 40),
    ('Graduate', 40, float('inf')),
]

# Attributes where a zero or negative value means "not reported"
POSITIVE_ONLY = {'income_median', 'home_value', 'age_median', 'household_size'}

# DemographicProfile field -> GeoRecord attribute
METRIC_SOURCES = {
    'income_median': 'income_median',
    'home_value': 'home_value',
    'age_median': 'age_median',
    'education_bachelors': 'college_educated',
    'home_ownership': 'home_ownership',
    'household_size': 'household_size',
    'married': 'married',
    'self_employed': 'self_employed',
    'dual_income': 'dual_income',
    'commute_time': 'commute_time',
    'charitable_givers': 'charitable_givers',
    'stem_degree': 'stem_degree',
}

VS_NATIONAL_METRICS = [
    'income_median', 'home_value', 'age_median', 'education_bachelors',
    'home_ownership', 'married', 'household_size', 'self_employed',
]


def affluence_level(income: float) -> str:
    if income > 100000:
        return 'Affluent'
    if income > 75000:
        return 'Upper-Middle'
    if income > 50000:
        return 'Middle'
    return 'Lower-Middle'


def education_profile(college_share: float) -> str:
    if college_share < 20:
        return 'Blue-Collar/Trade-Skilled'
    if college_share < 35:
        return 'Mixed Education'
    return 'College-Educated'


def family_profile(household_size: float) -> str:
    if household_size > 2.8:
        return 'Family-Focused'
    if household_size > 2.2:
        return 'Couples & Small Families'
    return 'Singles & Couples'


def location_profile(urbanicity: Dict[str, float]) -> str:
    """Label from the dominant urban/suburban/rural weight share."""
    labels = {
        'urban': 'Urban Professionals',
        'suburban': 'Suburban Homeowners',
        'rural': 'Rural/Small Town',
    }
    if not urbanicity or not any(urbanicity.values()):
        return labels['suburban']
    dominant = max(('urban', 'suburban', 'rural'), key=lambda key: urbanicity.get(key, 0.0))
    return labels[dominant]


def percent_delta(value: float, reference: float) -> float:
    """Percent difference of value against reference; 0 when reference is 0."""
    if not reference:
        return 0.0
    return round((value / reference - 1) * 100, 1)


def _bracket(value: float, brackets: List[Tuple[str, float, float]]) -> str:
    for label, low, high in brackets:
        if low <= value < high:
            return label
    return brackets[0][0]


class WeightedAggregator:
    """
    Computes weighted demographic profiles for arbitrary ZIP/weight sets.
    """

    def __init__(self, geo_store: GeoRecordStore):
        """
        Initialize the aggregator.

        Args:
            geo_store: Loaded census record store
        """
        self.geo_store = geo_store

    def _resolve(self, pairs: Iterable[Tuple[str, float]]) -> List[Tuple[GeoRecord, float]]:
        """Pair each resolvable, populated record with its weight."""
        resolved = []
        for zip_code, weight in pairs:
            record = self.geo_store.get(zip_code)
            if record is None or record.population <= 0:
                continue
            resolved.append((record, max(float(weight), 0.0)))
        return resolved

    @staticmethod
    def _value(record: GeoRecord, attribute: str, fallback: float) -> float:
        value = getattr(record, attribute)
        if value is None:
            return fallback
        if attribute in POSITIVE_ONLY and value <= 0:
            return fallback
        return float(value)

    def _weighted_means(self, resolved: List[Tuple[GeoRecord, float]], total_weight: float) -> Dict[str, float]:
        means = {}
        for metric, attribute in METRIC_SOURCES.items():
            fallback = NATIONAL_AVERAGES[metric]
            if total_weight <= 0:
                means[metric] = fallback
                continue
            weighted = sum(self._value(record, attribute, fallback) * weight for record, weight in resolved)
            means[metric] = weighted / total_weight
        return means

    def weighted_metrics(self, pairs: Iterable[Tuple[str, float]]) -> Optional[Dict[str, float]]:
        """
        Weighted means of the baseline metrics only.

        Args:
            pairs: (zip_code, weight) pairs

        Returns:
            Dictionary of metric means, or None if no code resolved
        """
        resolved = self._resolve(pairs)
        if not resolved:
            return None
        total_weight = sum(weight for _, weight in resolved)
        return self._weighted_means(resolved, total_weight)

    def aggregate(self, pairs: Iterable[Tuple[str, float]]) -> DemographicProfile:
        """
        Build a weighted demographic profile.

        Args:
            pairs: (zip_code, weight) pairs. Unknown and zero-population
                codes are skipped.

        Returns:
            DemographicProfile. When the resolved weight is zero, every
            attribute comes from the national-average table.
        """
        resolved = self._resolve(pairs)
        total_weight = sum(weight for _, weight in resolved)
        used_fallback = total_weight <= 0

        if used_fallback:
            logger.warning(f"No weighted ZIP data ({len(resolved)} resolved records); using national averages")

        means = self._weighted_means(resolved, total_weight)

        if used_fallback:
            ethnicity = dict(NATIONAL_ETHNICITY)
            age_brackets: Dict[str, float] = {}
            income_brackets = dict(NATIONAL_INCOME_DISTRIBUTION)
            education_levels = {label: 0.0 for label, _, _ in EDUCATION_LEVELS}
            urbanicity = {'urban': 0.0, 'suburban': 0.0, 'rural': 0.0}
            six_figure_rate = NATIONAL_INCOME_DISTRIBUTION['$100k-$150k'] + NATIONAL_INCOME_DISTRIBUTION['$150k+']
        else:
            ethnicity = {
                key: sum(self._value(record, key, fallback) * weight for record, weight in resolved) / total_weight
                for key, fallback in NATIONAL_ETHNICITY.items()
            }
            age_brackets = self._age_brackets(resolved, total_weight)
            income_brackets = self._weight_shares(
                resolved, total_weight,
                lambda record: _bracket(self._value(record, 'income_median', NATIONAL_AVERAGES['income_median']),
                                        INCOME_BRACKETS),
                [label for label, _, _ in INCOME_BRACKETS])
            education_levels = self._weight_shares(
                resolved, total_weight,
                lambda record: _bracket(record.college_educated, EDUCATION_LEVELS),
                [label for label, _, _ in EDUCATION_LEVELS])
            urbanicity = self._weight_shares(
                resolved, total_weight,
                lambda record: record.urbanicity,
                ['urban', 'suburban', 'rural'])
            six_figure_count = sum(
                1 for record, _ in resolved
                if self._value(record, 'income_median', NATIONAL_AVERAGES['income_median']) >= 100000
            )
            six_figure_rate = six_figure_count / len(resolved) * 100

        top_age_bracket = max(age_brackets, key=age_brackets.get) if age_brackets else DEFAULT_TOP_AGE_BRACKET

        vs_national = {
            metric: percent_delta(means[metric], NATIONAL_AVERAGES[metric])
            for metric in VS_NATIONAL_METRICS
        }

        return DemographicProfile(
            income_median=means['income_median'],
            home_value=means['home_value'],
            age_median=means['age_median'],
            education_bachelors=means['education_bachelors'],
            home_ownership=means['home_ownership'],
            household_size=means['household_size'],
            married=means['married'],
            self_employed=means['self_employed'],
            dual_income=means['dual_income'],
            commute_time=means['commute_time'],
            charitable_givers=means['charitable_givers'],
            stem_degree=means['stem_degree'],
            ethnicity=ethnicity,
            age_brackets=age_brackets,
            top_age_bracket=top_age_bracket,
            income_brackets=income_brackets,
            education_levels=education_levels,
            urbanicity=urbanicity,
            six_figure_rate=six_figure_rate,
            affluence_level=affluence_level(means['income_median']),
            education_profile=education_profile(means['education_bachelors']),
            family_profile=family_profile(means['household_size']),
            location_profile=location_profile(urbanicity),
            vs_national=vs_national,
            valid_count=len(resolved),
            total_weight=total_weight,
            used_fallback=used_fallback
        )

    @staticmethod
    def _age_brackets(resolved: List[Tuple[GeoRecord, float]], total_weight: float) -> Dict[str, float]:
        """Weighted 10-year age brackets; brackets at or below 0.5% are dropped."""
        totals = {bracket: 0.0 for bracket in DECADE_COEFFICIENTS}

        for record, weight in resolved:
            bands = record.age_distribution
            for bracket, coefficients in DECADE_COEFFICIENTS.items():
                share = sum(bands[band] * factor for band, factor in coefficients.items())
                totals[bracket] += share * weight

        brackets = {}
        for bracket, total in totals.items():
            share = total / total_weight
            if share > MIN_BRACKET_SHARE:
                brackets[bracket] = share
        return brackets

    @staticmethod
    def _weight_shares(resolved: List[Tuple[GeoRecord, float]], total_weight: float,
                       classify, labels: List[str]) -> Dict[str, float]:
        shares = {label: 0.0 for label in labels}
        for record, weight in resolved:
            shares[classify(record)] += weight
        return {label: value / total_weight * 100 for label, value in shares.items()}
