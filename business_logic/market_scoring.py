"""
Derived market indices, life-stage and archetype classification.

All functions take AggregatedMarket rollups and are free of I/O so they can
be applied to any geographic level.
"""

import math
from typing import Dict, List, Optional, Any, Tuple, Iterable

from models.data_models import AggregatedMarket

# Fields whose per-level range feeds the relative indices
RANGE_FIELDS = [
    'household_income_median',
    'median_home_value',
    'rent_burden',
    'charitable_givers',
    'veteran',
]

# Fixed ranges for the opportunity score
OPPORTUNITY_RANGES = {
    'population': (0, 10_000_000),
    'income': (20_000, 150_000),
    'education': (0, 100),
    'working_age': (0, 100),
    'density': (0, 5000),
}

OPPORTUNITY_WEIGHTS = {
    'population': 0.30,
    'income': 0.25,
    'education': 0.20,
    'working_age': 0.15,
    'density': 0.10,
}

SIMILARITY_FEATURES = [
    'age_median',
    'college_educated',
    'household_income_median',
    'six_figure_households',
    'homeownership_rate',
    'poverty_rate',
    'unemployment_rate',
    'white',
    'black',
    'hispanic',
    'asian',
]

ARCHETYPE_BEST_FOR = {
    'Affluent College Town': ['Higher education marketing', 'Tech products', 'Premium brands', 'Career services'],
    'Retirement Destination': ['Healthcare services', 'Financial planning', 'Leisure & travel', 'Home services'],
    'Tech Hub': ['B2B software', 'Tech recruitment', 'Coworking spaces', 'Professional services'],
    'Manufacturing Hub': ['Industrial equipment', 'Trade schools', 'B2B services', 'Transportation'],
    'Suburban Family Market': ['Family products', 'Education services', 'Home improvement', 'Automotive'],
    'Urban Metro': ['Entertainment & dining', 'Fashion & lifestyle', 'Transit services', 'Cultural events'],
    'Young Professional Market': ['Career development', 'Fitness & wellness', 'Dining & entertainment',
                                  'Financial services'],
    'Middle America': ['Retail', 'Consumer goods', 'Family services', 'Auto & home'],
    'Diverse Market': ['Multicultural marketing', 'Broad consumer brands', 'Local services', 'Retail'],
}

ARCHETYPE_DESCRIPTIONS = {
    'Affluent College Town': 'High income, highly educated and young',
    'Retirement Destination': 'Older, financially stable homeowners',
    'Tech Hub': 'STEM-heavy, high-earning working-age population',
    'Manufacturing Hub': 'Trade-skilled, self-employed middle-income workforce',
    'Suburban Family Market': 'Larger households, high homeownership',
    'Urban Metro': 'Small households, renters and diverse or educated residents',
    'Young Professional Market': 'Young, educated, mid-to-upper income',
    'Middle America': 'Middle income, mixed education',
    'Diverse Market': 'No single dominant profile',
}

DEFAULT_LIFE_STAGE = 'Established/Mixed'


def compute_ranges(markets: Iterable[AggregatedMarket]) -> Dict[str, Tuple[float, float]]:
    """
    Min/max of each range field over values greater than zero.

    Fields with no positive values default to (0, 100).
    """
    markets = list(markets)
    ranges = {}
    for field_name in RANGE_FIELDS:
        values = [getattr(market, field_name) for market in markets if getattr(market, field_name) > 0]
        ranges[field_name] = (min(values), max(values)) if values else (0.0, 100.0)
    return ranges


def normalize_relative(value: float, low: float, high: float) -> float:
    """Scale into 0-100; 0 when the value is 0 or the range is empty."""
    if high == low or value == 0:
        return 0.0
    return min(max((value - low) / (high - low) * 100, 0.0), 100.0)


def normalize_fixed(value: float, low: float, high: float) -> float:
    """Scale into 0-100 against a fixed range; 50 when the range is empty."""
    if high == low:
        return 50.0
    return min(max((value - low) / (high - low) * 100, 0.0), 100.0)


def consumer_wealth_index(market: AggregatedMarket, ranges: Dict[str, Tuple[float, float]]) -> int:
    """
    Relative affluence from income, home value and inverse rent burden.
    """
    income = normalize_relative(market.household_income_median, *ranges['household_income_median'])
    home_value = normalize_relative(market.median_home_value, *ranges['median_home_value'])

    min_rent_burden = ranges['rent_burden'][0]
    inverse_rent = 100 / market.rent_burden if market.rent_burden > 0 else 0.0
    inverse_max = 100 / min_rent_burden if min_rent_burden > 0 else 0.0
    rent = normalize_relative(inverse_rent, 0.0, inverse_max)

    score = round(0.40 * income + 0.35 * home_value + 0.25 * rent)
    return int(min(max(score, 0), 100))


def community_cohesion_score(market: AggregatedMarket, ranges: Dict[str, Tuple[float, float]]) -> int:
    charitable = normalize_relative(market.charitable_givers, *ranges['charitable_givers'])
    veteran = normalize_relative(market.veteran, *ranges['veteran'])
    return int(min(max(round(0.5 * charitable + 0.5 * veteran), 0), 100))


def working_age_share(market: AggregatedMarket) -> float:
    return 100 - market.age_under_10 - market.age_10_to_19 - market.age_65_plus


def opportunity_tier(score: float) -> str:
    if score >= 80:
        return 'Gold'
    if score >= 60:
        return 'Silver'
    if score >= 40:
        return 'Bronze'
    return 'Standard'


def opportunity_score(market: AggregatedMarket) -> Tuple[int, str]:
    """
    Market opportunity from size, income, education, working-age share and density.

    Returns:
        Tuple of (score 0-100, tier)
    """
    components = {
        'population': market.population,
        'income': market.household_income_median,
        'education': market.college_educated,
        'working_age': working_age_share(market),
        'density': market.density_estimate,
    }

    total = sum(
        normalize_fixed(value, *OPPORTUNITY_RANGES[name]) * OPPORTUNITY_WEIGHTS[name]
        for name, value in components.items()
    )
    score = int(round(total))
    return score, opportunity_tier(score)


def life_stage_segment(market: AggregatedMarket) -> str:
    """
    Dominant life stage of a market.

    Matching rules compete on their secondary score, then their primary
    score.
    """
    candidates: List[Tuple[float, float, str]] = []
    household = market.household_size_average
    young = market.age_20s + market.age_30s

    if market.age_65_plus > 25 and household < 2.5:
        candidates.append(((2.5 - household) * 20, market.age_65_plus, 'Retirement/Empty Nester'))

    if household >= 3.0 and market.age_30s >= 15 and market.married > 45:
        candidates.append((market.age_30s + market.married, household * 20, 'Grower (Family)'))

    if young > 30 and market.college_educated > 40:
        candidates.append((market.college_educated, young, 'Starter (Young Professional)'))

    if not candidates:
        return DEFAULT_LIFE_STAGE

    candidates.sort(key=lambda item: (item[0], item[1]), reverse=True)
    return candidates[0][2]


def market_archetype(market: AggregatedMarket) -> Dict[str, Any]:
    """
    Classify a market into a marketing archetype.

    Returns:
        Dictionary with name, description and best_for
    """
    income = market.household_income_median
    education = market.college_educated
    young = market.age_20s + market.age_30s
    family = market.household_size_average
    ownership = market.homeownership_rate

    if income > 70000 and education > 40 and young > 30:
        name = 'Affluent College Town'
    elif market.age_65_plus > 25 and market.unemployment_rate < 5 and ownership > 65:
        name = 'Retirement Destination'
    elif market.stem_degree > 15 and income > 75000 and young + market.age_40s > 50:
        name = 'Tech Hub'
    elif market.self_employed > 8 and 45000 <= income <= 70000 and education < 35:
        name = 'Manufacturing Hub'
    elif family > 2.8 and ownership > 65 and income >= 55000:
        name = 'Suburban Family Market'
    elif family < 2.5 and ownership < 50 and (market.white < 60 or education > 35):
        name = 'Urban Metro'
    elif young > 35 and income > 55000 and education > 30:
        name = 'Young Professional Market'
    elif 40000 <= income <= 65000 and 20 <= education <= 40:
        name = 'Middle America'
    else:
        name = 'Diverse Market'

    return {
        'name': name,
        'description': ARCHETYPE_DESCRIPTIONS[name],
        'best_for': list(ARCHETYPE_BEST_FOR[name]),
    }


def feature_vector(market: AggregatedMarket) -> List[float]:
    return [float(getattr(market, feature) or 0.0) for feature in SIMILARITY_FEATURES]


def cosine_similarity(first: List[float], second: List[float]) -> float:
    dot = sum(a * b for a, b in zip(first, second))
    norm_first = math.sqrt(sum(a * a for a in first))
    norm_second = math.sqrt(sum(b * b for b in second))
    if norm_first == 0 or norm_second == 0:
        return 0.0
    return dot / (norm_first * norm_second)


def similarity_score(first: AggregatedMarket, second: AggregatedMarket) -> float:
    """Cosine similarity as a percentage truncated to one decimal."""
    similarity = cosine_similarity(feature_vector(first), feature_vector(second))
    return math.floor(similarity * 1000) / 10


def saturation_level(market: AggregatedMarket) -> str:
    density = market.density_estimate
    income = market.household_income_median
    if density > 2000 and income > 75000:
        return 'High'
    if density > 500 or income > 60000:
        return 'Medium'
    return 'Low'


def is_hidden_gem(rank: int, score: Optional[int]) -> bool:
    """Ranked just outside the top 10 but with a strong opportunity score."""
    return 10 < rank <= 30 and (score or 0) >= 60
