"""
Tests for rule-based overlap insights and OpenAI narrative escalation.
"""

import json
import os
import shutil
import tempfile
import pytest
import httpx
import openai
from unittest.mock import MagicMock

from config.settings import AppConfig, DEFAULT_INSIGHT_RULES_PATH
from business_logic.error_handler import ErrorHandler
from business_logic.insight_rules import InsightRule, InsightRuleEngine, InsightResult
from business_logic.insight_narrator import InsightNarrator


NARRATIVE = ("Shoppers in both segments are urban homeowners who restock weekly, so bundled "
             "subscription offers and shared loyalty rewards are likely to convert.")


def make_response(content, total_tokens=42):
    response = MagicMock()
    response.choices = [MagicMock()]
    response.choices[0].message.content = content
    response.usage.total_tokens = total_tokens
    return response


class TestInsightRuleEngine:
    """Test the default rule table."""

    def setup_method(self):
        self.engine = InsightRuleEngine.from_file(DEFAULT_INSIGHT_RULES_PATH)

    def test_keyword_rule_matches(self):
        result = self.engine.evaluate('Cycling', 'Sporting Goods', 20)

        assert result.rule_name == 'cycling_sports'
        assert result.confidence == 0.85
        assert 'Cycling enthusiasts' in result.text

    def test_matching_is_case_insensitive(self):
        result = self.engine.evaluate('COFFEE', 'Breakfast FOOD', 12)
        assert result.rule_name == 'beverage_pairing'

    def test_template_placeholders(self):
        result = self.engine.evaluate('Garden Hoses', 'Office Chairs', 18.4)

        assert result.rule_name == 'home_furnishing'
        assert '{' not in result.text

    def test_exclusion_keywords(self):
        result = self.engine.evaluate('Patio Furniture', 'Office Chairs', 18)
        assert result.rule_name != 'home_furnishing'

    def test_high_overlap_rule(self):
        result = self.engine.evaluate('Zzz Widgets', 'Qqq Gadgets', 65)

        assert result.rule_name == 'high_overlap'
        assert result.confidence == 0.4
        assert '65%' in result.text

    def test_min_percentage_is_strict(self):
        result = self.engine.evaluate('Zzz Widgets', 'Qqq Gadgets', 60)
        assert result.rule_name == 'generic'

    def test_generic_fallback_by_strength(self):
        strong = self.engine.evaluate('Zzz Widgets', 'Qqq Gadgets', 55)
        moderate = self.engine.evaluate('Zzz Widgets', 'Qqq Gadgets', 35)
        weak = self.engine.evaluate('Zzz Widgets', 'Qqq Gadgets', 10)

        assert strong.text.startswith('Strong 55%')
        assert moderate.text.startswith('Moderate 35%')
        assert weak.text.startswith('This 10%')
        assert {strong.confidence, moderate.confidence, weak.confidence} == {0.2}
        assert weak.rule_name == 'generic'

    def test_engine_without_fallbacks(self):
        engine = InsightRuleEngine()
        result = engine.evaluate('A', 'B', 12.6)

        assert result.text.startswith('This 13% overlap')
        assert result.rule_name == 'generic'


class TestInsightRule:
    """Test individual rule matching."""

    def test_from_dict_lowercases_keywords(self):
        rule = InsightRule.from_dict({
            'name': 'test', 'template': 'x', 'target_keywords': ['Coffee'], 'overlap_keywords': ['TEA']
        })

        assert rule.target_keywords == ['coffee']
        assert rule.confidence == 0.5
        assert rule.matches('coffee beans', 'green tea', 5)
        assert not rule.matches('coffee beans', 'juice', 5)

    def test_malformed_rule_file(self):
        temp_dir = tempfile.mkdtemp()
        try:
            path = os.path.join(temp_dir, 'rules.json')
            with open(path, 'w') as f:
                json.dump({'rules': [{'name': 'no_template'}]}, f)

            with pytest.raises(ValueError):
                InsightRuleEngine.from_file(path)
        finally:
            shutil.rmtree(temp_dir)


class TestInsightNarrator:
    """Test OpenAI escalation of low-confidence insights."""

    def setup_method(self):
        self.config = AppConfig(openai_api_key='test-key', narrative_timeout_seconds=12.0)
        self.rule_engine = InsightRuleEngine.from_file(DEFAULT_INSIGHT_RULES_PATH)
        self.sleeps = []
        self.handler = ErrorHandler(sleep=self.sleeps.append)
        self.client = MagicMock()

    def make_narrator(self, client=None):
        return InsightNarrator(self.rule_engine, config=self.config, client=client,
                               skip_openai_init=True, error_handler=self.handler)

    def test_high_confidence_is_not_escalated(self):
        narrator = self.make_narrator(self.client)
        result = narrator.insight_for('Cycling', 'Sporting Goods', 20)

        assert result.rule_name == 'cycling_sports'
        self.client.chat.completions.create.assert_not_called()

    def test_small_overlap_is_not_escalated(self):
        narrator = self.make_narrator(self.client)
        result = narrator.insight_for('Zzz Widgets', 'Qqq Gadgets', 8)

        assert result.rule_name == 'generic'
        self.client.chat.completions.create.assert_not_called()

    def test_low_confidence_is_narrated(self):
        self.client.chat.completions.create.return_value = make_response(NARRATIVE)
        narrator = self.make_narrator(self.client)

        result = narrator.insight_for('Zzz Widgets', 'Qqq Gadgets', 35)

        assert result.rule_name == 'narrative'
        assert result.text == NARRATIVE
        assert result.confidence == 0.5
        kwargs = self.client.chat.completions.create.call_args.kwargs
        assert kwargs['timeout'] == 12.0
        assert 'Qqq Gadgets' in kwargs['messages'][1]['content']
        assert narrator.get_stats() == {'escalations': 1, 'narrated': 1, 'fallbacks': 0, 'tokens': 42}

    def test_short_reply_falls_back_without_retry(self):
        self.client.chat.completions.create.return_value = make_response('Too short.')
        narrator = self.make_narrator(self.client)

        result = narrator.insight_for('Zzz Widgets', 'Qqq Gadgets', 35)

        assert result.rule_name == 'generic'
        assert result.text.startswith('Moderate 35%')
        assert self.client.chat.completions.create.call_count == 1
        assert self.sleeps == []
        assert narrator.get_stats()['fallbacks'] == 1
        assert len(self.handler.error_history) == 1

    def test_transient_failure_is_retried(self):
        self.client.chat.completions.create.side_effect = [
            RuntimeError('upstream hiccup'),
            make_response(NARRATIVE),
        ]
        narrator = self.make_narrator(self.client)

        result = narrator.insight_for('Zzz Widgets', 'Qqq Gadgets', 35)

        assert result.rule_name == 'narrative'
        assert self.client.chat.completions.create.call_count == 2
        assert self.sleeps == [1.0]

    def test_rate_limit_backs_off_within_cap(self):
        request = httpx.Request('POST', 'https://api.openai.com/v1/chat/completions')
        throttled = openai.RateLimitError('slow down', response=httpx.Response(429, request=request), body=None)
        self.client.chat.completions.create.side_effect = [throttled, make_response(NARRATIVE)]
        narrator = self.make_narrator(self.client)

        result = narrator.insight_for('Zzz Widgets', 'Qqq Gadgets', 35)

        assert result.rule_name == 'narrative'
        assert self.sleeps == [5.0]
        assert self.handler.rate_limit_tracker['count'] >= 1

    def test_no_client_uses_static_text(self):
        narrator = self.make_narrator()
        result = narrator.insight_for('Zzz Widgets', 'Qqq Gadgets', 35)

        assert isinstance(result, InsightResult)
        assert result.rule_name == 'generic'
        assert narrator.get_stats()['escalations'] == 1
        assert narrator.get_stats()['fallbacks'] == 1

    def test_no_api_key_leaves_client_unset(self):
        narrator = InsightNarrator(self.rule_engine, config=AppConfig(openai_api_key=None),
                                   error_handler=self.handler)
        assert narrator.client is None
