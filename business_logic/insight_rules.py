"""
Rule-based insight text for segment overlaps.

Rules live in a JSON table (config/insight_rules.json) and are matched in
file order on keywords found in the lower-cased segment names. The first
matching rule wins; otherwise a generic template chosen by overlap
strength is used.
"""

import logging
import json
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Any

# Set up logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

FALLBACK_CONFIDENCE = 0.2
FALLBACK_RULE_NAME = "generic"
DEFAULT_FALLBACK_TEMPLATE = "This {percentage}% overlap reveals a shared interest area between {overlap} and {target}."


@dataclass
class InsightRule:
    """A keyword-matched insight template."""
    name: str
    template: str
    confidence: float
    target_keywords: List[str] = field(default_factory=list)
    overlap_keywords: List[str] = field(default_factory=list)
    exclude_target_keywords: List[str] = field(default_factory=list)
    min_percentage: Optional[float] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'InsightRule':
        return cls(
            name=data['name'],
            template=data['template'],
            confidence=float(data.get('confidence', 0.5)),
            target_keywords=[k.lower() for k in data.get('target_keywords', [])],
            overlap_keywords=[k.lower() for k in data.get('overlap_keywords', [])],
            exclude_target_keywords=[k.lower() for k in data.get('exclude_target_keywords', [])],
            min_percentage=data.get('min_percentage')
        )

    def matches(self, target: str, overlap: str, percentage: float) -> bool:
        """
        Whether the rule applies; segment names must already be lower-cased.

        Empty keyword lists match anything.
        """
        if self.target_keywords and not any(k in target for k in self.target_keywords):
            return False
        if self.overlap_keywords and not any(k in overlap for k in self.overlap_keywords):
            return False
        if any(k in target for k in self.exclude_target_keywords):
            return False
        if self.min_percentage is not None and percentage <= self.min_percentage:
            return False
        return True


@dataclass
class InsightResult:
    """Insight text with the confidence of the rule that produced it."""
    text: str
    confidence: float
    rule_name: str


class InsightRuleEngine:
    """
    Evaluates overlap insight rules loaded from a JSON table.
    """

    def __init__(self, rules: Optional[List[InsightRule]] = None,
                 fallbacks: Optional[List[Dict[str, Any]]] = None):
        self.rules = rules or []
        self.fallbacks = sorted(fallbacks or [], key=lambda f: f.get('min_percentage', 0), reverse=True)

    @classmethod
    def from_file(cls, file_path: str) -> 'InsightRuleEngine':
        """
        Load the rule table.

        Args:
            file_path: Path to the JSON rule table

        Returns:
            Engine with the table's rules and fallbacks

        Raises:
            FileNotFoundError: If the table does not exist
            ValueError: If the table is malformed
        """
        with open(file_path, 'r') as f:
            data = json.load(f)

        try:
            rules = [InsightRule.from_dict(item) for item in data.get('rules', [])]
        except (KeyError, TypeError, AttributeError) as e:
            raise ValueError(f"Malformed insight rule in {file_path}: {str(e)}") from e

        logger.info(f"Loaded {len(rules)} insight rules from {file_path}")
        return cls(rules, data.get('fallbacks', []))

    @staticmethod
    def _render(template: str, target: str, overlap: str, percentage: float) -> str:
        return template.format(target=target, overlap=overlap, percentage=f"{percentage:.0f}")

    def evaluate(self, target: str, overlap: str, percentage: float) -> InsightResult:
        """
        Insight for a target segment and one of its overlapping segments.

        Args:
            target: Target segment name
            overlap: Overlapping segment name
            percentage: Overlap percentage

        Returns:
            InsightResult from the first matching rule, or a generic
            result with low confidence
        """
        target_key = target.lower()
        overlap_key = overlap.lower()

        for rule in self.rules:
            if rule.matches(target_key, overlap_key, percentage):
                return InsightResult(
                    text=self._render(rule.template, target, overlap, percentage),
                    confidence=rule.confidence,
                    rule_name=rule.name
                )

        return InsightResult(
            text=self._render(self._fallback_template(percentage), target, overlap, percentage),
            confidence=FALLBACK_CONFIDENCE,
            rule_name=FALLBACK_RULE_NAME
        )

    def _fallback_template(self, percentage: float) -> str:
        for fallback in self.fallbacks:
            if percentage > fallback.get('min_percentage', 0):
                return fallback['template']
        if self.fallbacks:
            return self.fallbacks[-1]['template']
        return DEFAULT_FALLBACK_TEMPLATE
