"""
Core data models for the Audience Insights engine.
"""

from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Dict, List, Optional, Any


@dataclass
class GeoRecord:
    """Census demographics for a single ZIP code (ZCTA)."""
    zip_code: str
    population: int = 0
    inhabited: bool = True

    # Geography
    city: str = ""
    state: str = ""
    state_id: str = ""
    county: str = ""
    metro_area: str = ""
    is_metro: bool = False
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    # Age (cohort shares are percentages of population)
    age_median: Optional[float] = None
    age_under_10: float = 0.0
    age_10_to_19: float = 0.0
    age_20s: float = 0.0
    age_30s: float = 0.0
    age_40s: float = 0.0
    age_50s: float = 0.0
    age_60s: float = 0.0
    age_70s: float = 0.0
    age_over_80: float = 0.0

    # Ethnicity
    white: Optional[float] = None
    black: Optional[float] = None
    asian: Optional[float] = None
    hispanic: Optional[float] = None

    # Education
    education_bachelors: float = 0.0
    education_graduate: float = 0.0

    # Household and lifestyle
    household_size: Optional[float] = None
    self_employed: Optional[float] = None
    married: Optional[float] = None
    dual_income: Optional[float] = None
    commute_time: Optional[float] = None
    charitable_givers: Optional[float] = None
    stem_degree: Optional[float] = None
    veteran: Optional[float] = None
    rent_burden: Optional[float] = None

    # Economics
    income_median: Optional[float] = None
    six_figure_pct: Optional[float] = None
    poverty_rate: Optional[float] = None
    unemployment_rate: Optional[float] = None

    # Housing
    home_value: Optional[float] = None
    rent_median: Optional[float] = None
    home_ownership: Optional[float] = None

    @property
    def college_educated(self) -> float:
        """Share with a bachelor's degree or higher."""
        return (self.education_bachelors or 0.0) + (self.education_graduate or 0.0)

    @property
    def age_distribution(self) -> Dict[str, float]:
        """Census cohorts redistributed into the standard age bands."""
        return {
            'under18': self.age_under_10 + self.age_10_to_19,
            '18to24': self.age_20s * 0.3,
            '25to44': self.age_20s * 0.7 + self.age_30s + self.age_40s * 0.5,
            '45to64': self.age_40s * 0.5 + self.age_50s + self.age_60s * 0.5,
            '65plus': self.age_60s * 0.5 + self.age_70s + self.age_over_80,
        }

    @property
    def age_65_plus(self) -> float:
        return self.age_distribution['65plus']

    @property
    def urbanicity(self) -> str:
        if self.is_metro and self.population > 50000:
            return 'urban'
        if self.is_metro and self.population > 10000:
            return 'suburban'
        return 'rural'


@dataclass
class AudienceMembership:
    """Weighted association between an audience segment and a ZIP code."""
    segment: str
    zip_code: str
    weight: float
    seed: Optional[str] = None
    date: Optional[str] = None
    order: int = 0


@dataclass
class SegmentBaseline:
    """Median "typical audience" profile across all segments."""
    income: float
    age: float
    education: float
    home_ownership: float
    household_size: float
    home_value: float
    self_employed: float
    married: float
    dual_income: float
    commute_time: float
    charitable_givers: float
    stem_degree: float
    segment_count: int
    calculated_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['calculated_at'] = self.calculated_at.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SegmentBaseline':
        values = dict(data)
        values['calculated_at'] = datetime.fromisoformat(values['calculated_at'])
        return cls(**values)


@dataclass
class RepresentativeMarket:
    """City chosen to illustrate where two segments concentrate together."""
    city: str
    state: str
    over_index: float
    descriptor: str = ""


@dataclass
class OverIndexResult:
    """Geographic over-index analysis for a pair of segments."""
    over_index: float = 1.0
    common_zip_count: int = 0
    total_score: float = 0.0
    city_markets: List[RepresentativeMarket] = field(default_factory=list)


@dataclass
class OverlapRecord:
    """Behavioral overlap between a segment and another segment."""
    segment: str
    other_segment: str
    overlap_percentage: float
    intersection_size: Optional[int] = None
    union_size: Optional[int] = None
    over_index: Optional[float] = None
    representative_markets: List[RepresentativeMarket] = field(default_factory=list)
    insight: Optional[str] = None
    insight_confidence: Optional[float] = None


@dataclass
class DemographicProfile:
    """Weighted demographic rollup for a set of ZIP/weight pairs."""
    income_median: float
    home_value: float
    age_median: float
    education_bachelors: float
    home_ownership: float
    household_size: float
    married: float
    self_employed: float
    dual_income: float
    commute_time: float
    charitable_givers: float
    stem_degree: float
    ethnicity: Dict[str, float]
    age_brackets: Dict[str, float]
    top_age_bracket: str
    income_brackets: Dict[str, float]
    education_levels: Dict[str, float]
    urbanicity: Dict[str, float]
    six_figure_rate: float
    affluence_level: str
    education_profile: str
    family_profile: str
    location_profile: str
    vs_national: Dict[str, float]
    valid_count: int = 0
    total_weight: float = 0.0
    used_fallback: bool = False


@dataclass
class GeoHotspot:
    """ZIP code where a segment is heavily concentrated."""
    zip_code: str
    weight: float
    city: str = ""
    state: str = ""
    population: int = 0
    over_index: Optional[float] = None
    penetration: Optional[float] = None


@dataclass
class AggregatedMarket:
    """Population-weighted rollup of ZIP records at a geographic level."""
    name: str
    level: str
    population: int
    zip_codes: List[str]

    age_median: float = 0.0
    age_under_10: float = 0.0
    age_10_to_19: float = 0.0
    age_18_to_24: float = 0.0
    age_20s: float = 0.0
    age_30s: float = 0.0
    age_40s: float = 0.0
    age_50s: float = 0.0
    age_60s: float = 0.0
    age_65_plus: float = 0.0
    age_70s: float = 0.0
    age_over_80: float = 0.0

    white: float = 0.0
    black: float = 0.0
    asian: float = 0.0
    hispanic: float = 0.0

    household_income_median: float = 0.0
    individual_income_median: float = 0.0
    six_figure_households: float = 0.0
    poverty_rate: float = 0.0
    unemployment_rate: float = 0.0

    median_home_value: float = 0.0
    median_rent: float = 0.0
    homeownership_rate: float = 0.0

    college_educated: float = 0.0
    bachelor_degree: float = 0.0
    stem_degree: float = 0.0
    married: float = 0.0
    dual_income: float = 0.0

    commute_time: float = 0.0
    self_employed: float = 0.0
    household_size_average: float = 0.0
    charitable_givers: float = 0.0
    veteran: float = 0.0
    rent_burden: float = 0.0

    # Derived indices
    consumer_wealth_index: int = 0
    community_cohesion_score: int = 0
    life_stage_segment: str = "Established/Mixed"
    opportunity_score: int = 0
    opportunity_tier: str = "Standard"

    @property
    def density_estimate(self) -> float:
        """People per square mile, assuming roughly 10 sq mi per ZIP."""
        area = len(self.zip_codes) * 10 if self.zip_codes else 10
        return self.population / area


@dataclass
class AudienceReport:
    """Composite audience insight report for a single segment."""
    segment: str
    category: Optional[str]
    include_non_residential: bool
    generated_at: datetime
    key_metrics: Dict[str, Any]
    geographic_hotspots: List[GeoHotspot]
    demographics: DemographicProfile
    geographic_intelligence: Dict[str, Any]
    behavioral_overlaps: List[OverlapRecord]
    baseline_info: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['generated_at'] = self.generated_at.isoformat()
        return data
