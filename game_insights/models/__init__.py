"""
Package initialization file for the analytics models.

Re-exports every Pydantic schema and enumeration so callers can write:

    from game_insights.models import Dataset, ColumnMapping, Anomaly, CanonicalField
"""

# =============================================================================
# Enums
# =============================================================================

from game_insights.models.enums import (
    # Column semantics
    CanonicalField,
    ColumnRole,
    InferredType,
    GameType,
    # Time bucketing
    Granularity,
    # Anomalies
    AnomalyKind,
    AnomalySeverity,
    # Cohorts
    CohortDimension,
    # Insights and Q&A
    InsightType,
    InsightCategory,
    QuestionType,
    AnswerSource,
    AggregationFunction,
    FilterOperator,
    ResponseFormat,
    # Provider errors
    LLMErrorCode,
)


# =============================================================================
# Schemas
# =============================================================================

from game_insights.models.schemas import (
    # Dataset input
    DatasetMetadata,
    Dataset,
    # Column semantics
    ColumnMapping,
    SchemaAnalysisResult,
    # Time series and anomalies
    MetricPoint,
    MetricSeries,
    BaselineStats,
    TimeRange,
    Anomaly,
    AnomalyThresholds,
    DetectionConfig,
    AnomalyDetectionResult,
    # Cohorts
    CohortDefinition,
    Cohort,
    CohortHighlight,
    CohortComparison,
    RetentionMatrix,
    CohortAnalysisResult,
    # Completion provider
    TokenUsage,
    CompletionRequest,
    CompletionResponse,
    RateLimitStatus,
    CacheStats,
    # Insight contract
    LLMInsight,
    InsightResponse,
    DataSnapshot,
    InsightContext,
    InsightGenerationResult,
    # Q&A contract
    QueryFilter,
    QueryAggregation,
    QueryLogic,
    QADataPoint,
    QAResponse,
    QAContextColumn,
    QAContext,
    QueryResult,
    Answer,
    QuestionResult,
    # Pipeline
    PipelineResult,
    # API requests
    ColumnAnalysisRequest,
    AnomalyDetectionRequest,
    CohortAnalysisRequest,
    InsightRequest,
    QueryRequest,
    PipelineRequest,
)


__all__ = [
    # ----- Enums -----
    'CanonicalField',
    'ColumnRole',
    'InferredType',
    'GameType',
    'Granularity',
    'AnomalyKind',
    'AnomalySeverity',
    'CohortDimension',
    'InsightType',
    'InsightCategory',
    'QuestionType',
    'AnswerSource',
    'AggregationFunction',
    'FilterOperator',
    'ResponseFormat',
    'LLMErrorCode',
    # ----- Dataset -----
    'DatasetMetadata',
    'Dataset',
    # ----- Column semantics -----
    'ColumnMapping',
    'SchemaAnalysisResult',
    # ----- Anomalies -----
    'MetricPoint',
    'MetricSeries',
    'BaselineStats',
    'TimeRange',
    'Anomaly',
    'AnomalyThresholds',
    'DetectionConfig',
    'AnomalyDetectionResult',
    # ----- Cohorts -----
    'CohortDefinition',
    'Cohort',
    'CohortHighlight',
    'CohortComparison',
    'RetentionMatrix',
    'CohortAnalysisResult',
    # ----- Completion provider -----
    'TokenUsage',
    'CompletionRequest',
    'CompletionResponse',
    'RateLimitStatus',
    'CacheStats',
    # ----- Insights -----
    'LLMInsight',
    'InsightResponse',
    'DataSnapshot',
    'InsightContext',
    'InsightGenerationResult',
    # ----- Q&A -----
    'QueryFilter',
    'QueryAggregation',
    'QueryLogic',
    'QADataPoint',
    'QAResponse',
    'QAContextColumn',
    'QAContext',
    'QueryResult',
    'Answer',
    'QuestionResult',
    # ----- Pipeline -----
    'PipelineResult',
    # ----- API requests -----
    'ColumnAnalysisRequest',
    'AnomalyDetectionRequest',
    'CohortAnalysisRequest',
    'InsightRequest',
    'QueryRequest',
    'PipelineRequest',
]
