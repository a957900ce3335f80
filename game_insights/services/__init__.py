"""
Analytics services.

Modules:
    column_mapping: SemanticColumnMapper, fuzzy alias matching, type inference
    baseline_stats: metric series bucketing and trailing baselines
    anomaly_detection: spike / drop / trend-change detection
    cohorts: cohort assignment, retention and comparison
    completion_provider: provider client and LLMError hierarchy
    response_cache: TTL cache of validated payloads
    rate_limiter: sliding-window admission control
    contracts: JSON contract validation
    prompts: prompt templates and question categorization
    insight_orchestrator: cached, rate-limited, validated provider calls
    query_engine: natural-language questions over a dataset
    pipeline: end-to-end analysis run
"""

from game_insights.services.anomaly_detection import AnomalyDetector, detect_anomalies
from game_insights.services.cohorts import CohortEngine
from game_insights.services.column_mapping import SemanticColumnMapper, find_column, fuzzy_match
from game_insights.services.completion_provider import (
    BaseCompletionProvider,
    LLMError,
    OpenAICompletionProvider,
)
from game_insights.services.insight_orchestrator import InsightOrchestrator, build_fallback_insights
from game_insights.services.pipeline import AnalysisPipeline
from game_insights.services.query_engine import QueryEngine
from game_insights.services.rate_limiter import SlidingWindowRateLimiter
from game_insights.services.response_cache import ResponseCache


__all__ = [
    'AnomalyDetector',
    'detect_anomalies',
    'CohortEngine',
    'SemanticColumnMapper',
    'find_column',
    'fuzzy_match',
    'BaseCompletionProvider',
    'LLMError',
    'OpenAICompletionProvider',
    'InsightOrchestrator',
    'build_fallback_insights',
    'AnalysisPipeline',
    'QueryEngine',
    'SlidingWindowRateLimiter',
    'ResponseCache',
]
