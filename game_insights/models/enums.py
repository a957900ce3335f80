"""
Enumeration definitions for the Game Insights analytics core.

All enums inherit from both `str` and `Enum` so they serialize cleanly through
Pydantic models and FastAPI responses.

Groups:
- Column semantics: CanonicalField, ColumnRole, InferredType, GameType
- Time bucketing: Granularity
- Anomalies: AnomalyKind, AnomalySeverity
- Cohorts: CohortDimension
- Insights / Q&A: InsightType, InsightCategory, QuestionType, AnswerSource,
  AggregationFunction, FilterOperator, ResponseFormat
- Provider errors: LLMErrorCode
"""

from enum import Enum


class CanonicalField(str, Enum):
    """
    Canonical names that raw dataset columns are mapped onto.

    `unknown` and `noise` are reserved for headers that no alias matched;
    `noise` marks debug/internal columns that should be filtered out.
    """
    USER_ID = "user_id"
    SESSION_ID = "session_id"
    TIMESTAMP = "timestamp"
    EVENT_TYPE = "event_type"
    REVENUE = "revenue"
    LEVEL = "level"
    SCORE = "score"
    SESSION_DURATION = "session_duration"
    COUNTRY = "country"
    PLATFORM = "platform"
    DEVICE_MODEL = "device_model"
    APP_VERSION = "app_version"
    UNKNOWN = "unknown"
    NOISE = "noise"


class ColumnRole(str, Enum):
    """
    Analytical role of a column.

    - identifier: unique IDs (user, session, device)
    - timestamp: date/time columns
    - metric: numbers to aggregate (revenue, score)
    - dimension: categories to group by (country, level)
    - noise: debug/internal data to filter
    - unknown: unclear purpose
    """
    IDENTIFIER = "identifier"
    TIMESTAMP = "timestamp"
    METRIC = "metric"
    DIMENSION = "dimension"
    NOISE = "noise"
    UNKNOWN = "unknown"


class InferredType(str, Enum):
    """Value type inferred from sample data."""
    STRING = "string"
    NUMBER = "number"
    DATE = "date"
    BOOLEAN = "boolean"
    JSON = "json"


class GameType(str, Enum):
    """Game genre reported by the column classifier."""
    PUZZLE = "puzzle"
    IDLE = "idle"
    BATTLE_ROYALE = "battle_royale"
    MATCH3_META = "match3_meta"
    GACHA_RPG = "gacha_rpg"
    CUSTOM = "custom"


class Granularity(str, Enum):
    """Time bucket size for metric series and cohorts."""
    DAY = "day"
    WEEK = "week"
    MONTH = "month"


class AnomalyKind(str, Enum):
    """
    Type of a detected anomaly.

    - spike: bucket significantly above its trailing baseline
    - drop: bucket significantly below its trailing baseline
    - trend_change: sustained shift between the two halves of the window
    """
    SPIKE = "spike"
    DROP = "drop"
    TREND_CHANGE = "trend_change"


class AnomalySeverity(str, Enum):
    """
    Ordered severity bands, lowest first.

    Use `rank` for comparisons; string ordering of the values is meaningless.
    """
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    @classmethod
    def from_rank(cls, rank: int) -> "AnomalySeverity":
        return _SEVERITY_ORDER[max(0, min(rank, len(_SEVERITY_ORDER) - 1))]


_SEVERITY_ORDER = [
    AnomalySeverity.LOW,
    AnomalySeverity.MEDIUM,
    AnomalySeverity.HIGH,
    AnomalySeverity.CRITICAL,
]
_SEVERITY_RANK = {severity: index for index, severity in enumerate(_SEVERITY_ORDER)}


class CohortDimension(str, Enum):
    """
    How users are grouped into cohorts.

    - install_date: bucket of the first activity timestamp
    - first_purchase_date: bucket of the first row with positive revenue;
      users who never paid are left out
    - platform / country: value of the mapped column at the first activity row
    - custom: value of an explicitly configured column
    """
    INSTALL_DATE = "install_date"
    FIRST_PURCHASE_DATE = "first_purchase_date"
    PLATFORM = "platform"
    COUNTRY = "country"
    CUSTOM = "custom"


class InsightType(str, Enum):
    """Tone of a generated insight."""
    POSITIVE = "positive"
    NEGATIVE = "negative"
    NEUTRAL = "neutral"
    WARNING = "warning"
    OPPORTUNITY = "opportunity"


class InsightCategory(str, Enum):
    """Business area an insight belongs to."""
    RETENTION = "retention"
    MONETIZATION = "monetization"
    ENGAGEMENT = "engagement"
    PROGRESSION = "progression"
    QUALITY = "quality"


class QuestionType(str, Enum):
    """Category of a natural-language question."""
    RETENTION = "retention"
    REVENUE = "revenue"
    ENGAGEMENT = "engagement"
    COMPARISON = "comparison"
    TREND = "trend"
    FUNNEL = "funnel"
    COUNT = "count"
    UNKNOWN = "unknown"


class AnswerSource(str, Enum):
    """
    Where an answer came from.

    - computed: deterministic fast path
    - llm: fresh provider response
    - cached: provider response served from the response cache
    - fallback: deterministic explanation after a provider failure
    """
    COMPUTED = "computed"
    LLM = "llm"
    CACHED = "cached"
    FALLBACK = "fallback"


class AggregationFunction(str, Enum):
    """Aggregations supported by the query-logic executor."""
    SUM = "sum"
    AVG = "avg"
    COUNT = "count"
    MAX = "max"
    MIN = "min"


class FilterOperator(str, Enum):
    """Filter operators supported by the query-logic executor."""
    EQ = "="
    EQ_ALT = "=="
    NE = "!="
    GT = ">"
    LT = "<"
    GE = ">="
    LE = "<="
    CONTAINS = "contains"


class ResponseFormat(str, Enum):
    """Requested completion payload format."""
    JSON = "json"
    TEXT = "text"


class LLMErrorCode(str, Enum):
    """
    Typed failure codes raised by the provider-facing layer.

    Every code maps onto one LLMError subclass in
    game_insights.services.completion_provider.
    """
    AUTH_INVALID = "AUTH_INVALID"
    API_KEY_MISSING = "API_KEY_MISSING"
    RATE_LIMITED = "RATE_LIMITED"
    NETWORK = "NETWORK"
    PROVIDER_FAULT = "PROVIDER_FAULT"
    TIMEOUT = "TIMEOUT"
    SCHEMA_MISMATCH = "SCHEMA_MISMATCH"
