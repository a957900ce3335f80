"""
Pydantic request/response models for the Game Insights analytics core.

This module provides type-safe data validation and serialization for every
structure that flows between the pipeline stages and out through the API:

- Dataset input: Dataset, DatasetMetadata
- Column semantics: ColumnMapping, SchemaAnalysisResult
- Time series and anomalies: MetricPoint, MetricSeries, BaselineStats,
  Anomaly, AnomalyThresholds, DetectionConfig, AnomalyDetectionResult
- Cohorts: CohortDefinition, Cohort, CohortComparison, RetentionMatrix,
  CohortAnalysisResult
- Completion provider: CompletionRequest, CompletionResponse, TokenUsage
- Insight / Q&A contracts: LLMInsight, InsightResponse, QueryLogic,
  QAResponse, QAContext, InsightContext
- Query answers and pipeline output: Answer, QuestionResult, PipelineResult
- API request bodies

Field names are camelCase so payloads match the JSON contracts consumed by
downstream renderers without alias configuration.

All models use Pydantic v2 syntax with field constraints where ranges matter.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from game_insights.models.enums import (
    AggregationFunction,
    AnomalyKind,
    AnomalySeverity,
    AnswerSource,
    CanonicalField,
    CohortDimension,
    ColumnRole,
    FilterOperator,
    GameType,
    Granularity,
    InferredType,
    InsightCategory,
    InsightType,
    QuestionType,
    ResponseFormat,
)


# =============================================================================
# Dataset Input
# =============================================================================


class DatasetMetadata(BaseModel):
    """Provenance information supplied by the upstream ingestion step."""
    model_config = ConfigDict(frozen=True)

    source: str = Field(default="unknown", description="Name of the upstream source")
    fetchedAt: Optional[datetime] = Field(default=None, description="When the rows were fetched")
    rowCount: int = Field(default=0, ge=0, description="Row count reported by the source")


class Dataset(BaseModel):
    """
    Tabular dataset of game-analytics events.

    Rows are loosely-typed key/value records. The model is frozen: a dataset
    is created once per ingestion and only read by the pipeline stages.
    """
    model_config = ConfigDict(
        frozen=True,
        json_schema_extra={
            "example": {
                "columns": ["uid", "ts", "revenue"],
                "rows": [{"uid": "u1", "ts": "2024-01-01T10:00:00Z", "revenue": 1.99}],
                "metadata": {"source": "csv", "rowCount": 1},
            }
        },
    )

    columns: List[str] = Field(default_factory=list, description="Ordered column names")
    rows: List[Dict[str, Any]] = Field(default_factory=list, description="Ordered row records")
    metadata: DatasetMetadata = Field(default_factory=DatasetMetadata)

    @property
    def headers(self) -> List[str]:
        """Column names, falling back to the keys of the first row."""
        if self.columns:
            return list(self.columns)
        return list(self.rows[0].keys()) if self.rows else []


# =============================================================================
# Column Semantics
# =============================================================================


class ColumnMapping(BaseModel):
    """Canonical meaning inferred for one raw column."""
    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "originalName": "uid",
                "canonical": "user_id",
                "role": "identifier",
                "inferredType": "string",
                "confidence": 0.8,
                "rationale": "Matched by pattern",
            }
        }
    )

    originalName: str = Field(..., description="Header as it appears in the dataset")
    canonical: CanonicalField = Field(default=CanonicalField.UNKNOWN)
    role: ColumnRole = Field(default=ColumnRole.UNKNOWN)
    inferredType: InferredType = Field(default=InferredType.STRING)
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    rationale: str = Field(default="")


class SchemaAnalysisResult(BaseModel):
    """Complete column mapping for a dataset plus quality metadata."""
    columns: List[ColumnMapping] = Field(default_factory=list)
    gameType: GameType = Field(default=GameType.CUSTOM)
    suggestedCharts: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    dataQuality: float = Field(default=0.5, ge=0.0, le=1.0)
    usedClassifier: bool = Field(
        default=False,
        description="True when the external classifier result was used",
    )


# =============================================================================
# Time Series, Baselines, Anomalies
# =============================================================================


class MetricPoint(BaseModel):
    """One aggregated bucket of a metric series."""
    bucketKey: str
    value: float
    sampleCount: int = Field(default=0, ge=0)


class MetricSeries(BaseModel):
    """Ordered buckets for one metric at one granularity."""
    metric: str
    column: str
    granularity: Granularity
    points: List[MetricPoint] = Field(default_factory=list)


class BaselineStats(BaseModel):
    """Trailing-window statistics, excluding the evaluated bucket."""
    mean: float = 0.0
    stdDev: float = Field(default=0.0, ge=0.0)
    median: float = 0.0
    sampleSize: int = Field(default=0, ge=0)


class TimeRange(BaseModel):
    """Inclusive date range as ISO date strings."""
    start: str
    end: str


class Anomaly(BaseModel):
    """A spike, drop or sustained trend change in one metric."""
    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "id": "a1b2c3d4e5f6",
                "metric": "revenue",
                "bucketKey": "2024-01-31",
                "type": "spike",
                "severity": "critical",
                "observedValue": 1000.0,
                "expectedValue": 10.0,
                "zScore": 1.0e9,
                "percentChange": 9900.0,
                "description": "revenue spiked 9900% above baseline on 2024-01-31",
                "possibleCauses": ["Promotional event or sale"],
                "detectedAt": "2024-01-31T00:00:00Z",
            }
        }
    )

    id: str
    metric: str
    bucketKey: str
    type: AnomalyKind
    severity: AnomalySeverity
    observedValue: float
    expectedValue: float
    zScore: float = Field(default=0.0, description="Absolute deviation in standard deviations")
    percentChange: float
    description: str
    possibleCauses: List[str] = Field(default_factory=list, max_length=3)
    detectedAt: datetime


class AnomalyThresholds(BaseModel):
    """
    Detection and severity thresholds.

    Severity bands are ascending lower bounds for low, medium, high and
    critical. The more extreme of the z-score band and the percent-change band
    decides the severity.
    """
    zScoreThreshold: float = Field(default=2.0, gt=0.0)
    minPercentChange: float = Field(default=20.0, ge=0.0)
    severityZBands: List[float] = Field(default_factory=lambda: [2.0, 2.5, 3.0, 4.0], min_length=4, max_length=4)
    severityPercentBands: List[float] = Field(
        default_factory=lambda: [20.0, 50.0, 100.0, 200.0], min_length=4, max_length=4
    )
    trendChangeThreshold: float = Field(default=0.25, gt=0.0, description="Relative half-over-half shift")
    minTrendPoints: int = Field(default=6, ge=4)
    epsilon: float = Field(default=1e-9, gt=0.0)


class DetectionConfig(BaseModel):
    """Which metrics to analyze and how."""
    metrics: List[str] = Field(
        default_factory=lambda: ["revenue", "active_users", "level", "score", "session_duration"],
        description="Canonical metric names; 'active_users' counts distinct users per bucket",
    )
    granularity: Granularity = Field(default=Granularity.DAY)
    baselineWindow: int = Field(default=30, ge=1, description="Trailing buckets used for each baseline")
    minBaselinePoints: int = Field(default=3, ge=1)
    minBucketSamples: int = Field(default=1, ge=1)
    thresholds: AnomalyThresholds = Field(default_factory=AnomalyThresholds)
    possibleCauses: Optional[Dict[str, List[str]]] = Field(
        default=None,
        description="Overrides for the per-category cause lists",
    )


class AnomalyDetectionResult(BaseModel):
    """Detector output, always complete even when nothing was flagged."""
    anomalies: List[Anomaly] = Field(default_factory=list)
    metricsAnalyzed: List[str] = Field(default_factory=list)
    timeRange: Optional[TimeRange] = None
    baselineStats: Dict[str, BaselineStats] = Field(default_factory=dict)
    granularity: Granularity = Granularity.DAY


# =============================================================================
# Cohorts
# =============================================================================


class CohortDefinition(BaseModel):
    """How to slice users into cohorts."""
    dimension: CohortDimension = Field(default=CohortDimension.INSTALL_DATE)
    granularity: Granularity = Field(default=Granularity.WEEK)
    customColumn: Optional[str] = Field(default=None, description="Column for the custom dimension")
    name: str = Field(default="")


class Cohort(BaseModel):
    """A group of users sharing a first-activity bucket or dimension value."""
    id: str
    name: str
    dimension: CohortDimension
    value: str = Field(..., description="Cohort label, e.g. 2024-W01 or iOS")
    userCount: int = Field(default=0, ge=0)
    userIds: List[str] = Field(default_factory=list)
    retention: Dict[str, float] = Field(default_factory=dict, description="D1..D30 -> percent")
    eligibleUsers: Dict[str, int] = Field(default_factory=dict, description="D1..D30 -> eligible members")
    totalRevenue: float = 0.0
    payingUsers: int = Field(default=0, ge=0)
    conversionRate: float = Field(default=0.0, ge=0.0, le=100.0, description="Percent of members who paid")


class CohortHighlight(BaseModel):
    """Best or worst cohort for a metric."""
    id: str
    name: str
    metric: str
    value: float


class CohortComparison(BaseModel):
    """Cross-cohort comparison and narrative findings."""
    bestCohort: Optional[CohortHighlight] = None
    worstCohort: Optional[CohortHighlight] = None
    avgRetention: Dict[str, float] = Field(default_factory=dict)
    insights: List[str] = Field(default_factory=list, max_length=5)


class RetentionMatrix(BaseModel):
    """Label x horizon retention grid."""
    labels: List[str] = Field(default_factory=list)
    days: List[str] = Field(default_factory=list)
    matrix: List[List[float]] = Field(default_factory=list)


class CohortAnalysisResult(BaseModel):
    """Complete cohort engine output."""
    definition: CohortDefinition
    cohorts: List[Cohort] = Field(default_factory=list)
    comparison: CohortComparison = Field(default_factory=CohortComparison)
    retentionMatrix: RetentionMatrix = Field(default_factory=RetentionMatrix)
    analyzedAt: datetime


# =============================================================================
# Completion Provider
# =============================================================================


class TokenUsage(BaseModel):
    promptTokens: int = Field(default=0, ge=0)
    completionTokens: int = Field(default=0, ge=0)
    totalTokens: int = Field(default=0, ge=0)


class CompletionRequest(BaseModel):
    """Provider-agnostic completion request."""
    systemPrompt: str
    userPrompt: str
    temperature: float = Field(default=0.3, ge=0.0, le=2.0)
    maxResponseTokens: int = Field(default=2000, ge=1)
    responseFormat: ResponseFormat = Field(default=ResponseFormat.JSON)


class CompletionResponse(BaseModel):
    """Provider-agnostic completion response."""
    content: str
    usage: TokenUsage = Field(default_factory=TokenUsage)
    cached: bool = False
    model: str = ""
    durationMs: int = Field(default=0, ge=0)


class RateLimitStatus(BaseModel):
    limit: int
    remaining: int
    resetsInSeconds: float


class CacheStats(BaseModel):
    entries: int
    totalTokens: int


# =============================================================================
# Insight Contract
# =============================================================================


class LLMInsight(BaseModel):
    """One validated insight."""
    type: InsightType = InsightType.NEUTRAL
    category: InsightCategory = InsightCategory.ENGAGEMENT
    title: str
    description: str
    metric: Optional[str] = None
    value: Optional[Union[float, str]] = None
    change: Optional[float] = None
    priority: int = Field(default=5, ge=1, le=10)
    recommendation: Optional[str] = None
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    evidence: List[str] = Field(default_factory=list)


class InsightResponse(BaseModel):
    """Validated insight payload returned by the provider."""
    insights: List[LLMInsight] = Field(..., min_length=1)
    summary: str = "Analysis complete."
    topPriority: Optional[str] = None


class DataSnapshot(BaseModel):
    totalUsers: int = 0
    totalRevenue: float = 0.0
    rowCount: int = 0
    dateRange: Optional[TimeRange] = None


class InsightContext(BaseModel):
    """Structured context rendered into the insight prompt."""
    gameType: GameType = GameType.CUSTOM
    columnMappings: List[ColumnMapping] = Field(default_factory=list)
    anomalies: List[Anomaly] = Field(default_factory=list)
    cohortComparison: Optional[CohortComparison] = None
    dataSnapshot: DataSnapshot = Field(default_factory=DataSnapshot)
    aggregations: Optional[Dict[str, Any]] = None


class InsightGenerationResult(BaseModel):
    """Insights plus how they were produced."""
    insights: List[LLMInsight] = Field(default_factory=list)
    summary: str = ""
    topPriority: Optional[str] = None
    generatedAt: datetime
    llmUsed: bool = False
    cached: bool = False
    fallbackUsed: bool = False
    tokensUsed: int = 0


# =============================================================================
# Q&A Contract
# =============================================================================


class QueryFilter(BaseModel):
    column: str
    operator: FilterOperator
    value: Any = None


class QueryAggregation(BaseModel):
    column: str
    function: AggregationFunction


class QueryLogic(BaseModel):
    """Structured query the provider may attach to an answer."""
    filters: List[QueryFilter] = Field(default_factory=list)
    aggregations: List[QueryAggregation] = Field(default_factory=list)
    groupBy: List[str] = Field(default_factory=list)


class QADataPoint(BaseModel):
    label: str
    value: str
    context: Optional[str] = None


class QAResponse(BaseModel):
    """Validated Q&A payload returned by the provider."""
    answer: str
    methodology: Optional[str] = None
    queryLogic: Optional[QueryLogic] = None
    dataPoints: List[QADataPoint] = Field(default_factory=list)
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    relatedQuestions: List[str] = Field(default_factory=list)
    limitations: Optional[str] = None


class QAContextColumn(BaseModel):
    name: str
    canonical: CanonicalField


class QAContext(BaseModel):
    """Dataset summary rendered into the Q&A prompt."""
    columns: List[QAContextColumn] = Field(default_factory=list)
    sampleRows: List[Dict[str, Any]] = Field(default_factory=list)
    rowCount: int = 0
    dateRange: Optional[TimeRange] = None
    availableMetrics: List[str] = Field(default_factory=list)
    gameType: GameType = GameType.CUSTOM


class QueryResult(BaseModel):
    """Outcome of executing a QueryLogic against the full dataset."""
    value: Optional[float] = None
    breakdown: Dict[str, float] = Field(default_factory=dict)
    rowsMatched: int = 0


class Answer(BaseModel):
    """Final answer handed to consumers."""
    text: str
    value: Optional[Union[float, str]] = None
    breakdown: Optional[Dict[str, float]] = None
    dataPoints: List[QADataPoint] = Field(default_factory=list)
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    suggestedFollowups: List[str] = Field(default_factory=list)
    source: AnswerSource = AnswerSource.COMPUTED
    questionType: QuestionType = QuestionType.UNKNOWN


class QuestionResult(BaseModel):
    question: str
    answer: Answer
    executionTimeMs: int = 0


# =============================================================================
# Pipeline Output
# =============================================================================


class PipelineResult(BaseModel):
    """Everything one pipeline run produced, including partial results."""
    columnAnalysis: SchemaAnalysisResult
    anomalies: AnomalyDetectionResult
    cohorts: CohortAnalysisResult
    insights: Optional[InsightGenerationResult] = None
    warnings: List[str] = Field(default_factory=list)


# =============================================================================
# API Request Bodies
# =============================================================================


class ColumnAnalysisRequest(BaseModel):
    dataset: Dataset
    useClassifier: bool = True


class AnomalyDetectionRequest(BaseModel):
    dataset: Dataset
    mappings: Optional[List[ColumnMapping]] = None
    config: Optional[DetectionConfig] = None


class CohortAnalysisRequest(BaseModel):
    dataset: Dataset
    mappings: Optional[List[ColumnMapping]] = None
    definition: CohortDefinition = Field(default_factory=CohortDefinition)
    now: Optional[datetime] = None


class InsightRequest(BaseModel):
    context: InsightContext


class QueryRequest(BaseModel):
    dataset: Dataset
    question: str = Field(..., min_length=1)
    mappings: Optional[List[ColumnMapping]] = None
    gameType: GameType = GameType.CUSTOM


class PipelineRequest(BaseModel):
    dataset: Dataset
    cohortDefinition: Optional[CohortDefinition] = None
    detectionConfig: Optional[DetectionConfig] = None
    generateInsights: bool = True
