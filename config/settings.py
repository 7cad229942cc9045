"""
Configuration management for the Audience Insights engine.
Handles data source paths, cache lifetimes, API keys and narrative settings.
"""

import os
import streamlit as st
from dotenv import load_dotenv
from typing import Optional
from dataclasses import dataclass
from pathlib import Path

# Load environment variables from .env file
load_dotenv()

DEFAULT_INSIGHT_RULES_PATH = str(Path(__file__).parent / "insight_rules.json")


@dataclass
class AppConfig:
    """Application configuration settings."""
    openai_api_key: Optional[str] = None
    openai_model: str = "gpt-4"
    geo_data_path: str = "data/census_zip_data.csv"
    audience_data_path: str = "data/commerce_audiences.csv"
    overlap_artifact_path: str = "data/segment-overlaps.json"
    cache_dir: str = ".cache"
    baseline_ttl_hours: int = 168
    report_cache_ttl_hours: int = 1
    insight_rules_path: str = DEFAULT_INSIGHT_RULES_PATH
    narrative_timeout_seconds: float = 30.0
    narrative_escalation_threshold: float = 0.5


class ConfigManager:
    """Manages application configuration and settings."""

    def __init__(self):
        self._config: Optional[AppConfig] = None

    def load_config(self) -> AppConfig:
        """Load configuration from Streamlit secrets and environment."""
        if self._config is not None:
            return self._config

        defaults = AppConfig()
        self._config = AppConfig(
            openai_api_key=self._get_secret_or_env("OPENAI_API_KEY"),
            openai_model=self._get_setting("OPENAI_MODEL", defaults.openai_model),
            geo_data_path=self._get_setting("GEO_DATA_PATH", defaults.geo_data_path),
            audience_data_path=self._get_setting("AUDIENCE_DATA_PATH", defaults.audience_data_path),
            overlap_artifact_path=self._get_setting("OVERLAP_ARTIFACT_PATH", defaults.overlap_artifact_path),
            cache_dir=self._get_setting("CACHE_DIR", defaults.cache_dir),
            baseline_ttl_hours=self._get_int_setting("BASELINE_TTL_HOURS", defaults.baseline_ttl_hours),
            report_cache_ttl_hours=self._get_int_setting("REPORT_CACHE_TTL_HOURS", defaults.report_cache_ttl_hours),
            insight_rules_path=self._get_setting("INSIGHT_RULES_PATH", defaults.insight_rules_path),
            narrative_timeout_seconds=self._get_float_setting(
                "NARRATIVE_TIMEOUT_SECONDS", defaults.narrative_timeout_seconds),
            narrative_escalation_threshold=self._get_float_setting(
                "NARRATIVE_ESCALATION_THRESHOLD", defaults.narrative_escalation_threshold)
        )

        return self._config

    def reset(self):
        """Forget the loaded configuration so the next access re-reads it."""
        self._config = None

    def _get_secret_or_env(self, key: str) -> Optional[str]:
        """Get value from Streamlit secrets or environment variables."""
        # Try Streamlit secrets first
        try:
            if hasattr(st, 'secrets') and key in st.secrets:
                return st.secrets[key]
        except Exception:
            pass

        # Fall back to environment variables
        return os.getenv(key)

    def _get_setting(self, key: str, default: str) -> str:
        """Get string setting with default value."""
        value = self._get_secret_or_env(key)
        return value if value is not None else default

    def _get_int_setting(self, key: str, default: int) -> int:
        """Get integer setting with default value."""
        value = self._get_secret_or_env(key)
        if value is not None:
            try:
                return int(value)
            except ValueError:
                pass
        return default

    def _get_float_setting(self, key: str, default: float) -> float:
        """Get float setting with default value."""
        value = self._get_secret_or_env(key)
        if value is not None:
            try:
                return float(value)
            except ValueError:
                pass
        return default

    def get_openai_api_key(self) -> str:
        """
        Get OpenAI API key.

        Raises:
            ValueError: If no key is configured
        """
        config = self.load_config()
        if not config.openai_api_key:
            raise ValueError(
                "OpenAI API key not found. Please set OPENAI_API_KEY in "
                "Streamlit secrets or environment variables."
            )
        return config.openai_api_key

    def has_openai_api_key(self) -> bool:
        return bool(self.load_config().openai_api_key)

    def get_baseline_ttl_hours(self) -> int:
        return self.load_config().baseline_ttl_hours

    def get_report_cache_ttl_hours(self) -> int:
        return self.load_config().report_cache_ttl_hours


# Global configuration manager instance
config_manager = ConfigManager()
