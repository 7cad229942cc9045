"""
Tests for geographic rollups, market scoring and market profiles.
"""

import pytest

from data.geo_store import GeoRecordStore
from data.exceptions import MissingRecord
from models.data_models import GeoRecord, AggregatedMarket
from business_logic.geo_aggregation import (
    GeoAggregationEngine, GeographicLevel, format_value, percent_difference, METRICS_BY_ID
)
from business_logic.market_scoring import (
    compute_ranges, consumer_wealth_index, community_cohesion_score, opportunity_score,
    opportunity_tier, life_stage_segment, market_archetype, similarity_score, saturation_level,
    is_hidden_gem, normalize_relative, normalize_fixed
)


def build_store():
    store = GeoRecordStore()
    store.load([
        GeoRecord(zip_code='10001', population=30000, city='New York', state='New York', state_id='NY',
                  county='New York', metro_area='New York-Newark', is_metro=True, income_median=100000,
                  home_value=800000, rent_burden=35, charitable_givers=40, veteran=3, poverty_rate=12,
                  education_bachelors=40, education_graduate=25, age_20s=25, age_30s=20, white=45),
        GeoRecord(zip_code='10002', population=10000, city='New York', state='New York', state_id='NY',
                  county='New York', metro_area='New York-Newark', is_metro=True, income_median=60000,
                  home_value=600000, rent_burden=40, charitable_givers=35, veteran=2, poverty_rate=20,
                  education_bachelors=30, education_graduate=10, age_20s=20, age_30s=15, white=30),
        GeoRecord(zip_code='60601', population=25000, city='Chicago', state='Illinois', state_id='IL',
                  county='Cook', metro_area='Chicago-Naperville', is_metro=True, income_median=85000,
                  home_value=350000, rent_burden=30, charitable_givers=50, veteran=5, poverty_rate=10,
                  education_bachelors=35, education_graduate=20, age_20s=22, age_30s=18, white=50),
        GeoRecord(zip_code='62701', population=5000, city='Springfield', state='Illinois', state_id='IL',
                  county='Sangamon', income_median=48000, home_value=150000, rent_burden=28,
                  charitable_givers=60, veteran=9, poverty_rate=16, education_bachelors=20,
                  education_graduate=8, age_20s=12, age_30s=12, white=75),
    ])
    return store


def make_market(**overrides):
    values = {'name': 'Test', 'level': 'state', 'population': 100000, 'zip_codes': ['00001']}
    values.update(overrides)
    return AggregatedMarket(**values)


class TestRollups:
    """Test population-weighted rollups."""

    def setup_method(self):
        self.engine = GeoAggregationEngine(build_store())

    def test_rollup_is_population_weighted(self):
        store = build_store()
        market = GeoAggregationEngine.rollup('New York', 'state', store.get_by_codes(['10001', '10002']))

        assert market.population == 40000
        assert market.household_income_median == pytest.approx(90000)
        assert market.individual_income_median == pytest.approx(90000 * 0.65)
        assert market.zip_codes == ['10001', '10002']

    def test_missing_values_count_as_zero(self):
        records = [GeoRecord(zip_code='1', population=100, income_median=50000),
                   GeoRecord(zip_code='2', population=100, income_median=None)]
        market = GeoAggregationEngine.rollup('Mixed', 'city', records)
        assert market.household_income_median == pytest.approx(25000)

    def test_zero_population_rollup(self):
        market = GeoAggregationEngine.rollup('Empty', 'city', [GeoRecord(zip_code='1', population=0,
                                                                          income_median=50000)])
        assert market.household_income_median == 0.0

    def test_markets_by_level(self):
        states = self.engine.get_markets('state')
        assert [m.name for m in states] == ['New York', 'Illinois']

        regions = self.engine.get_markets(GeographicLevel.REGION)
        assert {m.name for m in regions} == {'Northeast', 'Midwest'}

        cities = self.engine.get_markets('city')
        assert cities[0].name == 'New York, New York'

        metros = self.engine.get_markets('metro')
        assert 'Springfield' not in {m.name for m in metros}

    def test_indices_are_bounded(self):
        for level in GeographicLevel:
            for market in self.engine.get_markets(level):
                assert 0 <= market.consumer_wealth_index <= 100
                assert 0 <= market.community_cohesion_score <= 100
                assert 0 <= market.opportunity_score <= 100
                assert market.opportunity_tier == opportunity_tier(market.opportunity_score)

    def test_get_market_missing(self):
        with pytest.raises(MissingRecord):
            self.engine.get_market('state', 'Atlantis')

    def test_unknown_level(self):
        with pytest.raises(ValueError):
            self.engine.get_markets('planet')

    def test_national_benchmark(self):
        national = self.engine.national_benchmark()
        assert national.name == 'United States'
        assert national.population == 70000


class TestRankingsAndProfiles:
    """Test metric rankings and market profiles."""

    def setup_method(self):
        self.engine = GeoAggregationEngine(build_store())

    def test_top_markets_by_metric(self):
        rows = self.engine.top_markets_by_metric('income_household_median', 'city')

        assert [row['rank'] for row in rows] == [1, 2, 3]
        assert rows[0]['name'] == 'New York, New York'
        assert rows[0]['formatted_value'] == '$90,000'
        values = [row['value'] for row in rows]
        assert values == sorted(values, reverse=True)
        assert rows[0]['competitive_intel']['hidden_gem'] is False
        assert rows[0]['competitive_intel']['saturation'] in ('High', 'Medium', 'Low')

    def test_top_markets_limit(self):
        assert len(self.engine.top_markets_by_metric('population', 'zip', limit=2)) == 2

    def test_unknown_metric(self):
        with pytest.raises(ValueError):
            self.engine.top_markets_by_metric('happiness', 'state')

    def test_similar_markets_exclude_target(self):
        similar = self.engine.find_similar_markets('city', 'Chicago, Illinois')

        names = [item['name'] for item in similar]
        assert 'Chicago, Illinois' not in names
        assert len(names) == 2
        assert all(0 <= item['similarity'] <= 100 for item in similar)

    def test_market_profile(self):
        profile = self.engine.get_market_profile('city', 'New York, New York')

        assert profile['population'] == 40000
        assert profile['zip_count'] == 2
        assert profile['hierarchy'] == {
            'county': 'New York, New York',
            'metro': 'New York-Newark',
            'state': 'New York',
            'region': 'Northeast',
        }
        assert profile['archetype']['name']
        assert len(profile['attributes']) == len(METRICS_BY_ID)

        snapshot = profile['strategic_snapshot']
        assert len(snapshot['strengths']) <= 3
        assert len(snapshot['concerns']) <= 3
        assert all('above' in item['comparison'] for item in snapshot['strengths'])
        assert all('below' in item['comparison'] for item in snapshot['concerns'])
        assert snapshot['summary']

    def test_market_profile_missing(self):
        with pytest.raises(MissingRecord):
            self.engine.get_market_profile('city', 'Gotham, New York')

    def test_format_value(self):
        assert format_value(None, 'number') == 'N/A'
        assert format_value(52000, 'currency') == '$52,000'
        assert format_value(12.345, 'percentage') == '12.3%'
        assert format_value(2.5, 'number') == '2.5'
        assert format_value(1234.4, 'number') == '1,234'

    def test_percent_difference(self):
        assert percent_difference(120, 100) == 20.0
        assert percent_difference(5, 0) == 0.0


class TestMarketScoring:
    """Test derived indices and classifications."""

    def test_normalizers(self):
        assert normalize_relative(0, 10, 20) == 0.0
        assert normalize_relative(15, 10, 10) == 0.0
        assert normalize_relative(15, 10, 20) == 50.0
        assert normalize_fixed(5, 5, 5) == 50.0
        assert normalize_fixed(500, 0, 100) == 100.0

    def test_ranges_ignore_non_positive_values(self):
        markets = [make_market(household_income_median=0), make_market(household_income_median=50000),
                   make_market(household_income_median=90000)]
        ranges = compute_ranges(markets)

        assert ranges['household_income_median'] == (50000, 90000)
        assert ranges['veteran'] == (0.0, 100.0)

    def test_consumer_wealth_index_extremes(self):
        rich = make_market(household_income_median=150000, median_home_value=900000, rent_burden=20)
        poor = make_market(household_income_median=30000, median_home_value=100000, rent_burden=50)
        ranges = compute_ranges([rich, poor])

        assert consumer_wealth_index(rich, ranges) == 100
        assert consumer_wealth_index(poor, ranges) < 20

    def test_community_cohesion_score(self):
        high = make_market(charitable_givers=60, veteran=10)
        low = make_market(charitable_givers=20, veteran=2)
        ranges = compute_ranges([high, low])

        assert community_cohesion_score(high, ranges) == 100
        assert community_cohesion_score(low, ranges) == 0

    def test_opportunity_score(self):
        best = make_market(population=10_000_000, household_income_median=150000, college_educated=100)
        assert opportunity_score(best) == (100, 'Gold')

        empty = make_market(population=0, household_income_median=0, college_educated=0)
        assert opportunity_score(empty) == (15, 'Standard')

    def test_opportunity_tier(self):
        assert opportunity_tier(80) == 'Gold'
        assert opportunity_tier(60) == 'Silver'
        assert opportunity_tier(40) == 'Bronze'
        assert opportunity_tier(39) == 'Standard'

    def test_life_stage_segment(self):
        assert life_stage_segment(make_market(age_65_plus=30, household_size_average=2.0)) == \
            'Retirement/Empty Nester'
        assert life_stage_segment(make_market(household_size_average=3.2, age_30s=20, married=50)) == \
            'Grower (Family)'
        assert life_stage_segment(make_market(age_20s=20, age_30s=15, college_educated=50,
                                              household_size_average=2.6)) == 'Starter (Young Professional)'
        assert life_stage_segment(make_market(household_size_average=2.6)) == 'Established/Mixed'

    def test_market_archetype(self):
        college_town = market_archetype(make_market(household_income_median=80000, college_educated=50,
                                                    age_20s=20, age_30s=15))
        assert college_town['name'] == 'Affluent College Town'
        assert college_town['best_for']

        diverse = market_archetype(make_market(household_income_median=100000, college_educated=20,
                                               household_size_average=2.6, homeownership_rate=60,
                                               age_20s=5, age_30s=5))
        assert diverse['name'] == 'Diverse Market'
        assert diverse['description']

    def test_similarity_score(self):
        market = make_market(age_median=38, college_educated=35, household_income_median=70000, white=60)
        assert similarity_score(market, market) >= 99.9
        assert similarity_score(market, make_market()) == 0.0

    def test_saturation_level(self):
        dense = make_market(population=50000, zip_codes=['1'], household_income_median=90000)
        sparse = make_market(population=1000, zip_codes=['1', '2'], household_income_median=40000)
        assert saturation_level(dense) == 'High'
        assert saturation_level(sparse) == 'Low'

    def test_is_hidden_gem(self):
        assert is_hidden_gem(11, 60)
        assert not is_hidden_gem(10, 90)
        assert not is_hidden_gem(31, 90)
        assert not is_hidden_gem(15, None)
