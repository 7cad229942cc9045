"""
In-memory repository of per-ZIP census demographics.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Any, Tuple, Iterable

from models.data_models import GeoRecord
from .exceptions import DataUnavailable
from .parsers import GeoDataParser

# Set up logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


STATE_TO_REGION = {
    # Northeast
    'Connecticut': 'Northeast', 'Maine': 'Northeast', 'Massachusetts': 'Northeast',
    'New Hampshire': 'Northeast', 'Rhode Island': 'Northeast', 'Vermont': 'Northeast',
    'New Jersey': 'Northeast', 'New York': 'Northeast', 'Pennsylvania': 'Northeast',
    # Midwest
    'Illinois': 'Midwest', 'Indiana': 'Midwest', 'Michigan': 'Midwest', 'Ohio': 'Midwest',
    'Wisconsin': 'Midwest', 'Iowa': 'Midwest', 'Kansas': 'Midwest', 'Minnesota': 'Midwest',
    'Missouri': 'Midwest', 'Nebraska': 'Midwest', 'North Dakota': 'Midwest',
    'South Dakota': 'Midwest',
    # South
    'Delaware': 'South', 'District of Columbia': 'South', 'Florida': 'South',
    'Georgia': 'South', 'Maryland': 'South', 'North Carolina': 'South',
    'South Carolina': 'South', 'Virginia': 'South', 'West Virginia': 'South',
    'Alabama': 'South', 'Kentucky': 'South', 'Mississippi': 'South', 'Tennessee': 'South',
    'Arkansas': 'South', 'Louisiana': 'South', 'Oklahoma': 'South', 'Texas': 'South',
    # West
    'Arizona': 'West', 'Colorado': 'West', 'Idaho': 'West', 'Montana': 'West',
    'Nevada': 'West', 'New Mexico': 'West', 'Utah': 'West', 'Wyoming': 'West',
    'Alaska': 'West', 'California': 'West', 'Hawaii': 'West', 'Oregon': 'West',
    'Washington': 'West',
}

INCOME_BUCKETS = [
    ('<$50k', 0, 50000),
    ('$50k-$75k', 50000, 75000),
    ('$75k-$100k', 75000, 100000),
    ('$100k-$150k', 100000, 150000),
    ('$150k+', 150000, float('inf')),
]

AGE_BUCKETS = [
    ('Under 30', 0, 30),
    ('30-39', 30, 40),
    ('40-49', 40, 50),
    ('50-59', 50, 60),
    ('60+', 60, float('inf')),
]

EDUCATION_BUCKETS = [
    ('High School', 0, 20),
    ('Some College', 20, 40),
    ("Bachelor's", 40, 60),
    ('Graduate', 60, float('inf')),
]

COMMUTE_BUCKETS = [
    ('Under 20 min', 0, 20),
    ('20-30 min', 20, 30),
    ('30-45 min', 30, 45),
    ('45-60 min', 45, 60),
    ('60+ min', 60, float('inf')),
]


@dataclass
class GeoQueryFilters:
    """Filters for a census distribution query. Unset fields do not filter."""
    zip_codes: Optional[List[str]] = None
    states: Optional[List[str]] = None
    income_range: Optional[Tuple[float, float]] = None
    age_range: Optional[Tuple[float, float]] = None
    urbanicity: Optional[List[str]] = None
    max_commute: Optional[float] = None


def bucket_label(value: float, buckets: List[Tuple[str, float, float]]) -> str:
    """Return the label of the half-open bucket [low, high) containing value."""
    for label, low, high in buckets:
        if low <= value < high:
            return label
    return buckets[-1][0] if value >= buckets[-1][1] else buckets[0][0]


class GeoRecordStore:
    """
    Holds inhabited ZIP census records indexed by code.

    Records are loaded once (from the configured census file or a supplied
    list) and treated as read-only until the next ``load()``.
    """

    def __init__(self, file_path: Optional[str] = None):
        """
        Initialize the store.

        Args:
            file_path: Census export used when ``load()`` is called without records
        """
        self.file_path = file_path
        self.warnings: List[str] = []
        self._records: Dict[str, GeoRecord] = {}
        self._loaded = False

    def load(self, records: Optional[Iterable[GeoRecord]] = None) -> int:
        """
        Load census records, discarding non-inhabited codes.

        Args:
            records: Records to ingest. Parses ``file_path`` if None.

        Returns:
            Number of records retained

        Raises:
            DataUnavailable: If the source is missing, unreadable or empty
        """
        warnings: List[str] = []

        if records is None:
            if not self.file_path:
                raise DataUnavailable("No census data source configured")
            try:
                parser = GeoDataParser(self.file_path)
                records, warnings = parser.parse_records()
            except (FileNotFoundError, ValueError) as e:
                logger.error(f"Census data unavailable: {str(e)}")
                raise DataUnavailable(f"Census data unavailable: {str(e)}") from e

        indexed: Dict[str, GeoRecord] = {}
        dropped = 0

        for record in records:
            if not record.inhabited:
                dropped += 1
                continue
            if record.zip_code in indexed:
                warnings.append(f"Duplicate census record for {record.zip_code} ignored")
                continue
            indexed[record.zip_code] = record

        if not indexed:
            raise DataUnavailable("Census data source contained no inhabited ZIP records")

        self._records = indexed
        self.warnings = warnings
        self._loaded = True

        logger.info(f"Loaded {len(indexed)} inhabited ZIP records ({dropped} non-inhabited dropped)")
        return len(indexed)

    @property
    def is_loaded(self) -> bool:
        return self._loaded

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, zip_code: str) -> bool:
        return zip_code in self._records

    def get(self, zip_code: str) -> Optional[GeoRecord]:
        return self._records.get(zip_code)

    def get_by_codes(self, zip_codes: Iterable[str]) -> List[GeoRecord]:
        """
        Look up several codes at once.

        Args:
            zip_codes: Codes to look up

        Returns:
            Records that exist, in request order. Unknown codes are omitted.
        """
        found = []
        seen = set()
        for code in zip_codes:
            if code in seen:
                continue
            seen.add(code)
            record = self._records.get(code)
            if record is not None:
                found.append(record)
        return found

    def all_records(self) -> List[GeoRecord]:
        return list(self._records.values())

    @staticmethod
    def region_for_state(state: str) -> str:
        """Census region for a state name, or '' if unknown."""
        return STATE_TO_REGION.get(state, '')

    def query(self, filters: Optional[GeoQueryFilters] = None) -> Dict[str, Any]:
        """
        Summarize the census records matching a set of filters.

        Args:
            filters: Range and membership filters

        Returns:
            Dictionary with totals, bucketed distributions, dominant
            categories, top metros and opportunity ZIP lists
        """
        filters = filters or GeoQueryFilters()
        matched = [record for record in self._iter_candidates(filters) if self._matches(record, filters)]

        total_population = sum(record.population for record in matched)
        summary: Dict[str, Any] = {
            'total_zip_codes': len(matched),
            'total_population': total_population,
            'zip_codes': [record.zip_code for record in matched],
            'insights': self._distribution_insights(matched),
            'top_metros': self._top_metros(matched),
            'opportunities': self._opportunities(matched),
        }

        logger.info(f"Census query matched {len(matched)} ZIP codes")
        return summary

    def search_locations(self, text: str, limit: int = 50) -> List[Dict[str, Any]]:
        """
        Find ZIP codes whose city or state name contains the search text.

        Args:
            text: Case-insensitive city or state fragment
            limit: Maximum number of results

        Returns:
            List of location dictionaries sorted by population
        """
        needle = text.strip().lower()
        if not needle:
            return []

        matches = [
            record for record in self._records.values()
            if needle in record.city.lower() or needle in record.state.lower()
        ]
        matches.sort(key=lambda record: record.population, reverse=True)

        return [
            {
                'zip_code': record.zip_code,
                'city': record.city,
                'state': record.state,
                'population': record.population,
            }
            for record in matches[:limit]
        ]

    def _iter_candidates(self, filters: GeoQueryFilters) -> List[GeoRecord]:
        if filters.zip_codes:
            return self.get_by_codes(filters.zip_codes)
        return list(self._records.values())

    @staticmethod
    def _matches(record: GeoRecord, filters: GeoQueryFilters) -> bool:
        if filters.states:
            wanted = {state.lower() for state in filters.states}
            if record.state.lower() not in wanted and record.state_id.lower() not in wanted:
                return False

        if filters.income_range:
            low, high = filters.income_range
            income = record.income_median or 0
            if income < low or income > high:
                return False

        if filters.age_range:
            low, high = filters.age_range
            age = record.age_median or 0
            if age < low or age > high:
                return False

        if filters.urbanicity and record.urbanicity not in filters.urbanicity:
            return False

        if filters.max_commute is not None and (record.commute_time or 0) > filters.max_commute:
            return False

        return True

    @staticmethod
    def _distribution_insights(records: List[GeoRecord]) -> Dict[str, Any]:
        """Bucket matched records and detect dominant categories."""
        insights: Dict[str, Any] = {
            'income_distribution': {label: 0.0 for label, _, _ in INCOME_BUCKETS},
            'age_distribution': {label: 0.0 for label, _, _ in AGE_BUCKETS},
            'education_distribution': {label: 0.0 for label, _, _ in EDUCATION_BUCKETS},
            'commute_distribution': {label: 0.0 for label, _, _ in COMMUTE_BUCKETS},
            'dominant_ethnicity': None,
            'dominant_education': None,
            'dominant_urbanicity': None,
        }

        if not records:
            return insights

        count = len(records)
        for record in records:
            insights['income_distribution'][bucket_label(record.income_median or 0, INCOME_BUCKETS)] += 1
            insights['age_distribution'][bucket_label(record.age_median or 0, AGE_BUCKETS)] += 1
            insights['education_distribution'][bucket_label(record.college_educated, EDUCATION_BUCKETS)] += 1
            insights['commute_distribution'][bucket_label(record.commute_time or 0, COMMUTE_BUCKETS)] += 1

        for key in ('income_distribution', 'age_distribution', 'education_distribution', 'commute_distribution'):
            insights[key] = {label: round(hits / count * 100, 1) for label, hits in insights[key].items()}

        ethnicity_totals = {
            'White': sum(record.white or 0 for record in records),
            'Black': sum(record.black or 0 for record in records),
            'Asian': sum(record.asian or 0 for record in records),
            'Hispanic': sum(record.hispanic or 0 for record in records),
        }
        insights['dominant_ethnicity'] = max(ethnicity_totals, key=ethnicity_totals.get)

        college_average = sum(record.college_educated for record in records) / count
        if college_average > 30:
            insights['dominant_education'] = 'College-educated'
        elif college_average > 20:
            insights['dominant_education'] = 'Some college'
        else:
            insights['dominant_education'] = 'High school'

        urbanicity_counts: Dict[str, int] = {}
        for record in records:
            urbanicity_counts[record.urbanicity] = urbanicity_counts.get(record.urbanicity, 0) + 1
        insights['dominant_urbanicity'] = max(urbanicity_counts, key=urbanicity_counts.get)

        return insights

    @staticmethod
    def _top_metros(records: List[GeoRecord], limit: int = 10) -> List[Dict[str, Any]]:
        metros: Dict[str, Dict[str, Any]] = {}
        for record in records:
            if not record.metro_area:
                continue
            entry = metros.setdefault(record.metro_area, {'metro_area': record.metro_area, 'population': 0, 'zip_count': 0})
            entry['population'] += record.population
            entry['zip_count'] += 1

        ranked = sorted(metros.values(), key=lambda entry: entry['population'], reverse=True)
        return ranked[:limit]

    @staticmethod
    def _opportunities(records: List[GeoRecord]) -> Dict[str, List[str]]:
        """ZIP codes flagged by simple audience-opportunity rules."""
        return {
            'high_income': [
                record.zip_code for record in records
                if (record.income_median or 0) > 100000
            ],
            'young_professionals': [
                record.zip_code for record in records
                if record.age_median is not None and record.age_median < 35
                and record.education_bachelors > 30
            ],
            'family_communities': [
                record.zip_code for record in records
                if (record.household_size or 0) > 3 and (record.income_median or 0) > 75000
            ],
        }
