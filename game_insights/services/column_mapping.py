"""
Semantic Column Mapping Service.

Maps arbitrary dataset headers (``uid``, ``ts``, ``iap_revenue``) onto the
canonical fields every downstream stage consumes (``user_id``, ``timestamp``,
``revenue``).

Strategy:
    1. Primary path: an external column classifier (by default the completion
       provider, reached through the InsightOrchestrator) labels every header.
    2. Validation: classifier mappings below the confidence threshold are
       re-checked against the alias table. The alias match replaces the
       classifier's answer only when its raw confidence is strictly higher.
    3. Fallback: when no classifier is configured or it fails, every header is
       matched against the alias table alone with a confidence penalty.

The mapper never raises. Classifier failures are logged and degrade to the
alias fallback.

Usage:
    from game_insights.services.column_mapping import SemanticColumnMapper, find_column

    mapper = SemanticColumnMapper(classifier=None)
    result = mapper.fallback_analysis(dataset.headers, dataset.rows[:5])
    user_column = find_column(result.columns, CanonicalField.USER_ID)

Dependencies:
    - Pydantic models from game_insights/models/schemas.py
"""

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from game_insights.models.enums import CanonicalField, ColumnRole, GameType, InferredType
from game_insights.models.schemas import ColumnMapping, SchemaAnalysisResult
from game_insights.services.completion_provider import LLMError


logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

# Alias table in match priority order. Both the exact pass and the partial
# pass walk this table top to bottom and stop at the first hit.
COLUMN_ALIASES: Dict[CanonicalField, List[str]] = {
    CanonicalField.USER_ID: ['user_id', 'userid', 'uid', 'player_id', 'playerid', 'player', 'account_id'],
    CanonicalField.SESSION_ID: ['session_id', 'sessionid', 'session', 'game_session'],
    CanonicalField.TIMESTAMP: ['timestamp', 'time', 'ts', 'datetime', 'created_at', 'event_time', 'date'],
    CanonicalField.EVENT_TYPE: ['event_type', 'eventtype', 'event', 'action', 'event_name', 'type'],
    CanonicalField.REVENUE: ['revenue', 'money', 'amount', 'price', 'iap_revenue', 'purchase_amount', 'usd'],
    CanonicalField.LEVEL: ['level', 'lvl', 'stage', 'chapter', 'level_id', 'wave'],
    CanonicalField.SCORE: ['score', 'points', 'high_score', 'highscore'],
    CanonicalField.SESSION_DURATION: [
        'session_duration', 'session_length', 'duration', 'playtime', 'play_time', 'session_time',
    ],
    CanonicalField.COUNTRY: ['country', 'geo', 'region', 'location', 'country_code', 'nation'],
    CanonicalField.PLATFORM: ['platform', 'os', 'device_os', 'operating_system'],
    CanonicalField.DEVICE_MODEL: ['device_model', 'device', 'model', 'device_type'],
    CanonicalField.APP_VERSION: ['app_version', 'version', 'build', 'app_ver'],
}

# Containment matches must cover more than this share of the longer string
PARTIAL_MATCH_MIN_RATIO: float = 0.6

# Confidence multipliers applied to alias matches
FALLBACK_CONFIDENCE_PENALTY: float = 0.8
VALIDATION_CONFIDENCE_PENALTY: float = 0.9

UNMATCHED_CONFIDENCE: float = 0.3

# Substrings that mark a header as debug/internal data
NOISE_KEYWORDS: List[str] = ['debug', 'test', 'internal', 'hash', 'token', 'secret']

FALLBACK_WARNING: str = 'Analysis done without AI - results may be less accurate'
FALLBACK_DATA_QUALITY: float = 0.5
FALLBACK_CHARTS: List[str] = ['retention_curve', 'revenue_timeline']

_ROLE_BY_CANONICAL: Dict[CanonicalField, ColumnRole] = {
    CanonicalField.USER_ID: ColumnRole.IDENTIFIER,
    CanonicalField.SESSION_ID: ColumnRole.IDENTIFIER,
    CanonicalField.TIMESTAMP: ColumnRole.TIMESTAMP,
    CanonicalField.REVENUE: ColumnRole.METRIC,
    CanonicalField.SCORE: ColumnRole.METRIC,
    CanonicalField.SESSION_DURATION: ColumnRole.METRIC,
    CanonicalField.NOISE: ColumnRole.NOISE,
    CanonicalField.UNKNOWN: ColumnRole.UNKNOWN,
}

_DATE_PREFIX = re.compile(r'^\d{4}-\d{2}-\d{2}')
_EPOCH_DIGITS = re.compile(r'^\d{10,13}$')


@dataclass
class FuzzyMatch:
    """Result of matching one header against the alias table."""
    canonical: CanonicalField
    confidence: float


# =============================================================================
# Pure Helpers
# =============================================================================


def normalize_header(header: str) -> str:
    """Lowercase, collapse separators to '_' and drop other characters."""
    cleaned = re.sub(r'[-_\s]+', '_', str(header).lower())
    return re.sub(r'[^a-z0-9_]', '', cleaned)


def fuzzy_match(header: str) -> Optional[FuzzyMatch]:
    """
    Match a raw header against the alias table.

    Args:
        header: Column name as it appears in the dataset.

    Returns:
        FuzzyMatch with confidence 1.0 for an exact alias hit, the length
        ratio for a containment hit above PARTIAL_MATCH_MIN_RATIO, or None.

    Example:
        >>> fuzzy_match('uid')
        FuzzyMatch(canonical=<CanonicalField.USER_ID: 'user_id'>, confidence=1.0)
        >>> fuzzy_match('Player-ID').canonical
        <CanonicalField.USER_ID: 'user_id'>
    """
    cleaned = normalize_header(header)
    if not cleaned:
        return None

    for canonical, aliases in COLUMN_ALIASES.items():
        if cleaned in aliases:
            return FuzzyMatch(canonical=canonical, confidence=1.0)

    for canonical, aliases in COLUMN_ALIASES.items():
        for alias in aliases:
            if alias in cleaned or cleaned in alias:
                ratio = min(len(cleaned), len(alias)) / max(len(cleaned), len(alias))
                if ratio > PARTIAL_MATCH_MIN_RATIO:
                    return FuzzyMatch(canonical=canonical, confidence=ratio)

    return None


def role_for_canonical(canonical: CanonicalField) -> ColumnRole:
    """Analytical role implied by a canonical field."""
    return _ROLE_BY_CANONICAL.get(canonical, ColumnRole.DIMENSION)


def is_noise_header(header: str) -> bool:
    lowered = str(header).lower()
    return any(keyword in lowered for keyword in NOISE_KEYWORDS)


def infer_type(value: Any) -> InferredType:
    """
    Infer a column type from a single sample value.

    Edge Cases:
        - bool is checked before numbers (bool is an int subclass)
        - 'YYYY-MM-DD...' strings and 10-13 digit strings are dates
        - other numeric strings are numbers
        - dicts and lists are json
    """
    if isinstance(value, bool):
        return InferredType.BOOLEAN
    if isinstance(value, (int, float)):
        return InferredType.NUMBER
    if isinstance(value, (dict, list)):
        return InferredType.JSON
    if isinstance(value, str):
        stripped = value.strip()
        if _DATE_PREFIX.match(stripped) or _EPOCH_DIGITS.match(stripped):
            return InferredType.DATE
        if stripped:
            try:
                float(stripped)
            except ValueError:
                return InferredType.STRING
            return InferredType.NUMBER
    return InferredType.STRING


def infer_column_type(header: str, sample_rows: Sequence[Dict[str, Any]]) -> InferredType:
    """Infer from the first non-empty sample value of a column."""
    for row in sample_rows:
        value = row.get(header)
        if value is not None and value != '':
            return infer_type(value)
    return InferredType.STRING


def find_column(mappings: Sequence[ColumnMapping], canonical: CanonicalField) -> Optional[str]:
    """
    Resolve a canonical field to its source column.

    When several columns map to the same field, the most confident one wins;
    ties keep the first in dataset order.
    """
    best: Optional[ColumnMapping] = None
    for mapping in mappings:
        if mapping.canonical != canonical:
            continue
        if best is None or mapping.confidence > best.confidence:
            best = mapping
    return best.originalName if best else None


def _fallback_mapping(header: str, sample_rows: Sequence[Dict[str, Any]]) -> ColumnMapping:
    inferred = infer_column_type(header, sample_rows)
    match = fuzzy_match(header)
    if match is not None:
        return ColumnMapping(
            originalName=header,
            canonical=match.canonical,
            role=role_for_canonical(match.canonical),
            inferredType=inferred,
            confidence=round(match.confidence * FALLBACK_CONFIDENCE_PENALTY, 4),
            rationale='Matched by pattern',
        )

    noise = is_noise_header(header)
    return ColumnMapping(
        originalName=header,
        canonical=CanonicalField.NOISE if noise else CanonicalField.UNKNOWN,
        role=ColumnRole.NOISE if noise else ColumnRole.UNKNOWN,
        inferredType=inferred,
        confidence=UNMATCHED_CONFIDENCE,
        rationale='No pattern match found',
    )


# =============================================================================
# Classifier Capability
# =============================================================================


class ColumnClassifier(ABC):
    """External capability that labels dataset headers."""

    @abstractmethod
    async def classify_columns(
        self,
        headers: List[str],
        sample_rows: List[Dict[str, Any]],
    ) -> SchemaAnalysisResult:
        """Return a mapping for (ideally) every header."""


class LLMColumnClassifier(ColumnClassifier):
    """Classifier backed by the completion provider via the InsightOrchestrator."""

    def __init__(self, orchestrator):
        self.orchestrator = orchestrator

    async def classify_columns(
        self,
        headers: List[str],
        sample_rows: List[Dict[str, Any]],
    ) -> SchemaAnalysisResult:
        return await self.orchestrator.classify_columns(headers, sample_rows)


# =============================================================================
# Mapper
# =============================================================================


class SemanticColumnMapper:
    """
    Classifier-first column mapper with an alias-table fallback.

    Args:
        classifier: Optional ColumnClassifier. None means fallback only.
        confidence_threshold: Classifier mappings below this are re-checked
            against the alias table.
    """

    def __init__(
        self,
        classifier: Optional[ColumnClassifier] = None,
        confidence_threshold: float = 0.8,
    ):
        self.classifier = classifier
        self.confidence_threshold = confidence_threshold

    async def map_columns(
        self,
        headers: List[str],
        sample_rows: List[Dict[str, Any]],
    ) -> SchemaAnalysisResult:
        """
        Map every header to a canonical field.

        Args:
            headers: Dataset column names in order.
            sample_rows: A handful of rows used for type inference and
                as classifier context.

        Returns:
            SchemaAnalysisResult with exactly one mapping per header, in
            header order. usedClassifier is True when the classifier answered.
        """
        if self.classifier is None:
            return self.fallback_analysis(headers, sample_rows)

        try:
            classified = await self.classifier.classify_columns(list(headers), list(sample_rows))
        except LLMError as e:
            logger.warning("Column classifier unavailable (%s), falling back to alias matching", e)
            return self.fallback_analysis(headers, sample_rows)
        except Exception:
            logger.exception("Column classifier failed, falling back to alias matching")
            return self.fallback_analysis(headers, sample_rows)

        return self._merge_with_aliases(classified, headers, sample_rows)

    def fallback_analysis(
        self,
        headers: List[str],
        sample_rows: List[Dict[str, Any]],
    ) -> SchemaAnalysisResult:
        """Map headers with the alias table alone."""
        columns = [_fallback_mapping(header, sample_rows) for header in headers]
        return SchemaAnalysisResult(
            columns=columns,
            gameType=GameType.CUSTOM,
            suggestedCharts=list(FALLBACK_CHARTS),
            warnings=[FALLBACK_WARNING],
            dataQuality=FALLBACK_DATA_QUALITY,
            usedClassifier=False,
        )

    def _merge_with_aliases(
        self,
        classified: SchemaAnalysisResult,
        headers: List[str],
        sample_rows: List[Dict[str, Any]],
    ) -> SchemaAnalysisResult:
        by_name: Dict[str, ColumnMapping] = {}
        for mapping in classified.columns:
            by_name.setdefault(mapping.originalName, mapping)

        columns: List[ColumnMapping] = []
        warnings = list(classified.warnings)
        omitted: List[str] = []

        for header in headers:
            mapping = by_name.get(header)
            if mapping is None:
                omitted.append(header)
                columns.append(_fallback_mapping(header, sample_rows))
                continue
            columns.append(self._validate_mapping(mapping))

        if omitted:
            logger.info("Classifier omitted %d header(s): %s", len(omitted), omitted)
            warnings.append(f"Classifier omitted {len(omitted)} column(s); mapped by pattern: {', '.join(omitted)}")

        return SchemaAnalysisResult(
            columns=columns,
            gameType=classified.gameType,
            suggestedCharts=classified.suggestedCharts,
            warnings=warnings,
            dataQuality=classified.dataQuality,
            usedClassifier=True,
        )

    def _validate_mapping(self, mapping: ColumnMapping) -> ColumnMapping:
        if mapping.confidence >= self.confidence_threshold:
            return mapping

        match = fuzzy_match(mapping.originalName)
        if match is None or match.confidence <= mapping.confidence:
            return mapping

        return mapping.model_copy(update={
            'canonical': match.canonical,
            'role': role_for_canonical(match.canonical),
            'confidence': max(mapping.confidence, round(match.confidence * VALIDATION_CONFIDENCE_PENALTY, 4)),
            'rationale': f"{mapping.rationale} (validated by pattern matching)".strip(),
        })
