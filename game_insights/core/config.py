"""
Settings and environment management module for the Game Insights service.

This module provides centralized configuration management using pydantic-settings,
which automatically loads settings from environment variables and .env files.

Key Features:
- Environment variable validation and type coercion
- Sensible defaults for local development (no provider key required)
- Singleton pattern via @lru_cache for efficient access
- Anomaly, cohort and completion-provider tuning in one place

Environment Variables:
- OPENAI_API_KEY: Completion provider API key (optional; without it every
  provider-backed feature degrades to its deterministic fallback)
- LLM_MODEL: Chat model name (default: gpt-4o-mini)
- LLM_BASE_URL: Provider base URL (default: https://api.openai.com/v1)
- LLM_TIMEOUT_SECONDS: Deadline for a single provider call (default: 30)
- LLM_RATE_LIMIT_PER_MINUTE: Admissions per rolling 60 s window (default: 20)
- LLM_CACHE_TTL_SECONDS: Response cache entry lifetime (default: 1800)

Usage:
    from game_insights.core.config import get_settings

    settings = get_settings()
    timeout = settings.llm_timeout_seconds
    config = settings.detection_config()
"""

from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

from game_insights.models.enums import Granularity
from game_insights.models.schemas import AnomalyThresholds, DetectionConfig


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Attributes:
        openai_api_key: Provider API key. None disables the provider.
        llm_model: Chat completion model name.
        llm_base_url: Base URL of the OpenAI-compatible endpoint.
        llm_timeout_seconds: Deadline applied to each provider call.
        llm_cache_enabled: Whether validated responses are cached.
        llm_cache_ttl_seconds: Lifetime of a cache entry.
        llm_rate_limit_per_minute: Maximum provider admissions per rolling minute.
        classifier_confidence_threshold: Classifier mappings below this are
            re-checked against the alias table.
        anomaly_*: Detection thresholds (see AnomalyThresholds).
        anomaly_granularity: Default bucket size for metric series.
        baseline_window: Trailing buckets used per baseline.
        cohort_granularity: Default bucket size for install-date cohorts.
    """

    model_config = SettingsConfigDict(
        env_file='.env',
        env_file_encoding='utf-8',
        extra='ignore',
        case_sensitive=False,
    )

    # =========================================================================
    # Completion Provider
    # =========================================================================

    openai_api_key: Optional[str] = None
    llm_model: str = 'gpt-4o-mini'
    llm_base_url: str = 'https://api.openai.com/v1'

    # Applied with asyncio.wait_for around each call, on top of the httpx timeout
    llm_timeout_seconds: float = 30.0

    # =========================================================================
    # Response Cache and Rate Limiter
    # =========================================================================

    llm_cache_enabled: bool = True
    llm_cache_ttl_seconds: float = 1800.0
    llm_rate_limit_per_minute: int = 20

    # =========================================================================
    # Column Mapping
    # =========================================================================

    # Classifier mappings at or above this confidence are trusted as-is
    classifier_confidence_threshold: float = 0.8

    # =========================================================================
    # Anomaly Detection Defaults
    # =========================================================================

    anomaly_z_score_threshold: float = 2.0
    anomaly_min_percent_change: float = 20.0
    anomaly_trend_change_threshold: float = 0.25
    anomaly_granularity: Granularity = Granularity.DAY
    baseline_window: int = 30
    min_baseline_points: int = 3

    # =========================================================================
    # Cohort Defaults
    # =========================================================================

    cohort_granularity: Granularity = Granularity.WEEK

    def detection_config(self) -> DetectionConfig:
        """Build the default DetectionConfig from these settings."""
        return DetectionConfig(
            granularity=self.anomaly_granularity,
            baselineWindow=self.baseline_window,
            minBaselinePoints=self.min_baseline_points,
            thresholds=AnomalyThresholds(
                zScoreThreshold=self.anomaly_z_score_threshold,
                minPercentChange=self.anomaly_min_percent_change,
                trendChangeThreshold=self.anomaly_trend_change_threshold,
            ),
        )


@lru_cache()
def get_settings() -> Settings:
    """
    Get the application settings singleton.

    Returns:
        Settings: The cached settings instance.

    Note:
        To refresh settings in tests, clear the cache:
        >>> get_settings.cache_clear()
    """
    return Settings()
