"""
FastAPI dependency injection module for the Game Insights service.

The response cache and the rate limiter are the only shared mutable state in
the process. They are constructed once here (via @lru_cache) and injected by
reference into the orchestrator, which in turn is injected into the column
mapper, the query engine and the pipeline.

Key Dependencies Provided:
- get_settings_dependency / SettingsDep: cached Settings
- get_orchestrator / OrchestratorDep: provider + cache + limiter
- get_column_mapper / ColumnMapperDep
- get_anomaly_detector / AnomalyDetectorDep
- get_cohort_engine / CohortEngineDep
- get_query_engine / QueryEngineDep
- get_pipeline / PipelineDep

Testing:
    Override any provider with FastAPI's mechanism:

    app.dependency_overrides[get_orchestrator] = lambda: fake_orchestrator

    or call reset_services() after changing settings.
"""

from functools import lru_cache
from typing import Annotated, Optional

from fastapi import Depends

from game_insights.core.config import Settings, get_settings
from game_insights.services.anomaly_detection import AnomalyDetector
from game_insights.services.cohorts import CohortEngine
from game_insights.services.column_mapping import LLMColumnClassifier, SemanticColumnMapper
from game_insights.services.completion_provider import BaseCompletionProvider, OpenAICompletionProvider
from game_insights.services.insight_orchestrator import InsightOrchestrator
from game_insights.services.pipeline import AnalysisPipeline
from game_insights.services.query_engine import QueryEngine
from game_insights.services.rate_limiter import SlidingWindowRateLimiter
from game_insights.services.response_cache import ResponseCache


# =============================================================================
# Settings Dependency
# =============================================================================

def get_settings_dependency() -> Settings:
    """
    Return the Settings singleton.

    Thin wrapper around get_settings() so tests can use
    app.dependency_overrides[get_settings_dependency].
    """
    return get_settings()


# =============================================================================
# Shared Services (one instance per process)
# =============================================================================

@lru_cache()
def get_response_cache() -> ResponseCache:
    return ResponseCache(ttl_seconds=get_settings().llm_cache_ttl_seconds)


@lru_cache()
def get_rate_limiter() -> SlidingWindowRateLimiter:
    return SlidingWindowRateLimiter(max_requests=get_settings().llm_rate_limit_per_minute)


@lru_cache()
def get_completion_provider() -> Optional[BaseCompletionProvider]:
    """OpenAI-compatible provider, or None when no API key is configured."""
    settings = get_settings()
    if not settings.openai_api_key:
        return None
    return OpenAICompletionProvider(
        api_key=settings.openai_api_key,
        model=settings.llm_model,
        base_url=settings.llm_base_url,
        timeout=settings.llm_timeout_seconds,
    )


@lru_cache()
def get_orchestrator() -> InsightOrchestrator:
    settings = get_settings()
    return InsightOrchestrator(
        provider=get_completion_provider(),
        cache=get_response_cache() if settings.llm_cache_enabled else None,
        rate_limiter=get_rate_limiter(),
        timeout_seconds=settings.llm_timeout_seconds,
    )


@lru_cache()
def get_column_mapper() -> SemanticColumnMapper:
    orchestrator = get_orchestrator()
    classifier = LLMColumnClassifier(orchestrator) if orchestrator.is_available else None
    return SemanticColumnMapper(
        classifier=classifier,
        confidence_threshold=get_settings().classifier_confidence_threshold,
    )


@lru_cache()
def get_anomaly_detector() -> AnomalyDetector:
    return AnomalyDetector(get_settings().detection_config())


@lru_cache()
def get_cohort_engine() -> CohortEngine:
    return CohortEngine(default_granularity=get_settings().cohort_granularity)


@lru_cache()
def get_query_engine() -> QueryEngine:
    return QueryEngine(get_orchestrator())


@lru_cache()
def get_pipeline() -> AnalysisPipeline:
    return AnalysisPipeline(
        mapper=get_column_mapper(),
        detector=get_anomaly_detector(),
        cohort_engine=get_cohort_engine(),
        orchestrator=get_orchestrator(),
    )


def reset_services() -> None:
    """Drop every cached service so the next call rebuilds from current settings."""
    for factory in (
        get_response_cache,
        get_rate_limiter,
        get_completion_provider,
        get_orchestrator,
        get_column_mapper,
        get_anomaly_detector,
        get_cohort_engine,
        get_query_engine,
        get_pipeline,
    ):
        factory.cache_clear()


# =============================================================================
# Type Aliases for Dependency Injection
# =============================================================================

SettingsDep = Annotated[Settings, Depends(get_settings_dependency)]
OrchestratorDep = Annotated[InsightOrchestrator, Depends(get_orchestrator)]
ColumnMapperDep = Annotated[SemanticColumnMapper, Depends(get_column_mapper)]
AnomalyDetectorDep = Annotated[AnomalyDetector, Depends(get_anomaly_detector)]
CohortEngineDep = Annotated[CohortEngine, Depends(get_cohort_engine)]
QueryEngineDep = Annotated[QueryEngine, Depends(get_query_engine)]
PipelineDep = Annotated[AnalysisPipeline, Depends(get_pipeline)]
