"""
OpenAI narrative enrichment for low-confidence overlap insights.

Rule-based text is always produced first. Only insights whose rule
confidence is below the escalation threshold, for overlaps large enough
to matter, are sent to the model; any failure keeps the static text.
"""

import logging
import time
from typing import Dict, Optional, Any
from openai import OpenAI

from config.settings import config_manager, AppConfig
from .error_handler import ErrorHandler, error_handler as default_error_handler, RetryConfig
from .insight_rules import InsightRuleEngine, InsightResult

# Set up logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

MIN_ESCALATION_PERCENTAGE = 10.0
MIN_NARRATIVE_LENGTH = 50
NARRATIVE_RULE_NAME = "narrative"

SYSTEM_PROMPT = """You are a commerce audience strategist. Given two shopper segments and the share of \
geography they have in common, explain in two or three sentences why the same consumers buy both and how an \
advertiser could act on it. Be specific about lifestyle or life stage. Do not mention percentages you were not given."""


class InsightNarrator:
    """
    Produces overlap insights, escalating weak rule matches to OpenAI.
    """

    def __init__(self, rule_engine: InsightRuleEngine, config: Optional[AppConfig] = None,
                 client: Optional[Any] = None, skip_openai_init: bool = False,
                 error_handler: Optional[ErrorHandler] = None):
        """
        Initialize the narrator.

        Args:
            rule_engine: Static rule engine
            config: Application config; loaded from the config manager if None
            client: Pre-built OpenAI client (used by tests)
            skip_openai_init: Skip OpenAI client initialization (for testing)
            error_handler: Error handler used for retries
        """
        self.rule_engine = rule_engine
        self.config = config or config_manager.load_config()
        self.error_handler = error_handler or default_error_handler
        self.client = client
        self.temperature = 0.7
        self.max_tokens = 300
        self.stats = {'escalations': 0, 'narrated': 0, 'fallbacks': 0, 'tokens': 0}

        if self.client is None and not skip_openai_init:
            self._initialize_openai_client()

    def _initialize_openai_client(self):
        """Create the OpenAI client when an API key is configured."""
        if not self.config.openai_api_key:
            logger.info("No OpenAI API key configured; insights will use static rules only")
            return

        try:
            self.client = OpenAI(api_key=self.config.openai_api_key)
            logger.info("OpenAI client initialized successfully")
        except Exception as e:
            logger.error(f"Failed to initialize OpenAI client: {str(e)}")
            self.client = None

    def should_escalate(self, result: InsightResult, percentage: float) -> bool:
        return (result.confidence < self.config.narrative_escalation_threshold
                and percentage > MIN_ESCALATION_PERCENTAGE)

    def insight_for(self, target: str, overlap: str, percentage: float) -> InsightResult:
        """
        Insight for an overlapping segment pair.

        Args:
            target: Target segment name
            overlap: Overlapping segment name
            percentage: Overlap percentage

        Returns:
            Narrated InsightResult when escalation succeeds, otherwise the
            rule engine's result
        """
        static = self.rule_engine.evaluate(target, overlap, percentage)
        if not self.should_escalate(static, percentage):
            return static

        self.stats['escalations'] += 1
        if self.client is None:
            self.stats['fallbacks'] += 1
            return static

        success, text, error_info = self.error_handler.retry_with_backoff(
            lambda: self._call_openai_api(target, overlap, percentage),
            RetryConfig(max_attempts=2, base_delay=1.0, exponential_backoff=True, max_delay=5.0),
            "overlap narrative"
        )

        if not success:
            self.error_handler.log_error(error_info, "Insight Narrative")
            self.stats['fallbacks'] += 1
            return static

        self.stats['narrated'] += 1
        return InsightResult(text=text, confidence=max(static.confidence, self.config.narrative_escalation_threshold),
                             rule_name=NARRATIVE_RULE_NAME)

    def _call_openai_api(self, target: str, overlap: str, percentage: float) -> str:
        """
        Request a narrative from OpenAI.

        Returns:
            Narrative text

        Raises:
            openai.OpenAIError: For API failures
            ValueError: If the reply is empty or too short to be useful
        """
        start_time = time.time()
        user_prompt = (
            f"Target segment: {target}\n"
            f"Overlapping segment: {overlap}\n"
            f"Geographic overlap: {percentage:.0f}%\n"
            "Explain the connection between these audiences."
        )

        response = self.client.chat.completions.create(
            model=self.config.openai_model,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": user_prompt}
            ],
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            timeout=self.config.narrative_timeout_seconds
        )

        if getattr(response, 'usage', None):
            self.stats['tokens'] += response.usage.total_tokens or 0

        if not response.choices:
            raise ValueError("Narrative validation failed: empty response")

        content = (response.choices[0].message.content or "").strip()
        if len(content) <= MIN_NARRATIVE_LENGTH:
            raise ValueError(f"Narrative validation failed: reply too short ({len(content)} characters)")

        logger.info(f"Narrated insight for {target} / {overlap} in {time.time() - start_time:.2f}s")
        return content

    def get_stats(self) -> Dict[str, int]:
        return dict(self.stats)
