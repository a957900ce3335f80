"""
JSON contracts for provider payloads.

Pure functions that turn untrusted provider output into validated models.
They require the mandatory fields, clamp enums to known members and clamp
numbers into range:

- confidence -> [0, 1]
- priority -> [1, 10]
- dataQuality -> [0, 1]

Entries that cannot be repaired are dropped, including numbers that are not
finite. A payload with nothing usable, an array field holding another type,
or any coercion failure raises SchemaMismatchError (recoverable), which every
caller answers with a deterministic fallback.
"""

import functools
import json
import logging
import math
import re
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Type, TypeVar

from game_insights.models.enums import (
    AggregationFunction,
    CanonicalField,
    ColumnRole,
    FilterOperator,
    GameType,
    InferredType,
    InsightCategory,
    InsightType,
)
from game_insights.models.schemas import (
    ColumnMapping,
    InsightResponse,
    LLMInsight,
    QADataPoint,
    QAResponse,
    QueryAggregation,
    QueryFilter,
    QueryLogic,
    SchemaAnalysisResult,
)
from game_insights.services.column_mapping import role_for_canonical
from game_insights.services.completion_provider import SchemaMismatchError


logger = logging.getLogger(__name__)

E = TypeVar('E', bound=Enum)
R = TypeVar('R')

_CODE_FENCE = re.compile(r'^```(?:json)?\s*(.*?)\s*```$', re.DOTALL)

# Genre names some classifiers use for the catch-all bucket
_GAME_TYPE_ALIASES: Dict[str, GameType] = {'other': GameType.CUSTOM, 'unknown': GameType.CUSTOM}


# =============================================================================
# Primitive Coercion
# =============================================================================


def _is_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    try:
        return math.isfinite(value)
    except OverflowError:
        # ints beyond float range
        return False


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def coerce_enum(value: Any, enum_cls: Type[E], default: E) -> E:
    """Map a raw value onto an enum member, falling back to ``default``."""
    if isinstance(value, enum_cls):
        return value
    if isinstance(value, str):
        try:
            return enum_cls(value.strip().lower())
        except ValueError:
            try:
                return enum_cls(value.strip())
            except ValueError:
                return default
    return default


def _optional_str(value: Any) -> Optional[str]:
    return value if isinstance(value, str) and value.strip() else None


def _str_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, str) and item.strip()]


def _confidence(value: Any, default: float = 0.5) -> float:
    return clamp(float(value), 0.0, 1.0) if _is_number(value) else default


def _list_field(raw: Dict[str, Any], key: str) -> List[Any]:
    """Read an array field; missing or null is empty, any other type is a violation."""
    value = raw.get(key)
    if value is None:
        return []
    if not isinstance(value, list):
        raise SchemaMismatchError(f"'{key}' must be an array, got {type(value).__name__}")
    return value


def _contract(validator: Callable[[Any], R]) -> Callable[[Any], R]:
    """Surface coercion failures inside a validator as SchemaMismatchError."""
    @functools.wraps(validator)
    def wrapper(payload: Any) -> R:
        try:
            return validator(payload)
        except SchemaMismatchError:
            raise
        except (TypeError, ValueError, OverflowError) as e:
            raise SchemaMismatchError(f'{validator.__name__} rejected payload: {e}') from e
    return wrapper


def parse_json_content(content: str) -> Any:
    """
    Parse provider text as JSON, tolerating a surrounding markdown code fence.

    Raises:
        SchemaMismatchError: Content is not valid JSON.
    """
    text = (content or '').strip()
    fenced = _CODE_FENCE.match(text)
    if fenced:
        text = fenced.group(1)
    try:
        return json.loads(text)
    except (ValueError, TypeError) as e:
        raise SchemaMismatchError(f'Provider returned invalid JSON: {e}') from e


# =============================================================================
# Insight Contract
# =============================================================================


def _validate_insight(raw: Any) -> Optional[LLMInsight]:
    if not isinstance(raw, dict):
        return None
    for field_name in ('type', 'title', 'description'):
        if not isinstance(raw.get(field_name), str):
            return None
    if not _is_number(raw.get('priority')) or not _is_number(raw.get('confidence')):
        return None

    value = raw.get('value')
    if not (_is_number(value) or isinstance(value, str)):
        value = None

    return LLMInsight(
        type=coerce_enum(raw['type'], InsightType, InsightType.NEUTRAL),
        category=coerce_enum(raw.get('category'), InsightCategory, InsightCategory.ENGAGEMENT),
        title=raw['title'],
        description=raw['description'],
        metric=_optional_str(raw.get('metric')),
        value=value,
        change=float(raw['change']) if _is_number(raw.get('change')) else None,
        priority=int(clamp(round(raw['priority']), 1, 10)),
        recommendation=_optional_str(raw.get('recommendation')),
        confidence=clamp(float(raw['confidence']), 0.0, 1.0),
        evidence=_str_list(raw.get('evidence')),
    )


@_contract
def validate_insight_response(payload: Any) -> InsightResponse:
    """
    Validate an insight payload.

    Raises:
        SchemaMismatchError: Not an object, no insights array, or no insight
            survived validation.
    """
    if not isinstance(payload, dict) or not isinstance(payload.get('insights'), list):
        raise SchemaMismatchError('Insight payload must be an object with an insights array')

    insights = [insight for insight in map(_validate_insight, payload['insights']) if insight is not None]
    dropped = len(payload['insights']) - len(insights)
    if dropped:
        logger.info("Dropped %d malformed insight(s)", dropped)
    if not insights:
        raise SchemaMismatchError('Insight payload contained no valid insights')

    return InsightResponse(
        insights=insights,
        summary=_optional_str(payload.get('summary')) or 'Analysis complete.',
        topPriority=_optional_str(payload.get('topPriority')),
    )


# =============================================================================
# Q&A Contract
# =============================================================================


def _validate_query_logic(raw: Any) -> Optional[QueryLogic]:
    if raw is None:
        return None
    if not isinstance(raw, dict):
        raise SchemaMismatchError('queryLogic must be an object')

    filters: List[QueryFilter] = []
    for item in _list_field(raw, 'filters'):
        if not isinstance(item, dict) or not isinstance(item.get('column'), str):
            continue
        try:
            operator = FilterOperator(str(item.get('operator', '')).strip().lower())
        except ValueError:
            logger.debug("Dropping filter with unsupported operator %r", item.get('operator'))
            continue
        if isinstance(item.get('value'), (dict, list)):
            logger.debug("Dropping filter on %r with a non-scalar value", item['column'])
            continue
        filters.append(QueryFilter(column=item['column'], operator=operator, value=item.get('value')))

    aggregations: List[QueryAggregation] = []
    for item in _list_field(raw, 'aggregations'):
        if not isinstance(item, dict) or not isinstance(item.get('column'), str):
            continue
        function = coerce_enum(item.get('function'), AggregationFunction, None)
        if function is None:
            continue
        aggregations.append(QueryAggregation(column=item['column'], function=function))

    group_by = _str_list(raw.get('groupBy'))
    if not (filters or aggregations or group_by):
        return None
    return QueryLogic(filters=filters, aggregations=aggregations, groupBy=group_by)


@_contract
def validate_qa_response(payload: Any) -> QAResponse:
    """
    Validate a Q&A payload.

    Raises:
        SchemaMismatchError: Not an object or no string answer.
    """
    if not isinstance(payload, dict) or not isinstance(payload.get('answer'), str) or not payload['answer'].strip():
        raise SchemaMismatchError('Q&A payload must contain a string answer')

    data_points: List[QADataPoint] = []
    for item in _list_field(payload, 'dataPoints'):
        if not isinstance(item, dict) or not isinstance(item.get('label'), str):
            continue
        value = item.get('value')
        if _is_number(value):
            value = str(value)
        if not isinstance(value, str):
            continue
        data_points.append(QADataPoint(label=item['label'], value=value, context=_optional_str(item.get('context'))))

    return QAResponse(
        answer=payload['answer'],
        methodology=_optional_str(payload.get('methodology')),
        queryLogic=_validate_query_logic(payload.get('queryLogic')),
        dataPoints=data_points,
        confidence=_confidence(payload.get('confidence')),
        relatedQuestions=_str_list(payload.get('relatedQuestions')),
        limitations=_optional_str(payload.get('limitations')),
    )


# =============================================================================
# Column Classifier Contract
# =============================================================================


def _validate_column(raw: Any) -> Optional[ColumnMapping]:
    if not isinstance(raw, dict):
        return None
    original = raw.get('originalName', raw.get('original'))
    if not isinstance(original, str) or not original:
        return None

    canonical = coerce_enum(raw.get('canonical'), CanonicalField, CanonicalField.UNKNOWN)
    role = coerce_enum(raw.get('role'), ColumnRole, role_for_canonical(canonical))
    return ColumnMapping(
        originalName=original,
        canonical=canonical,
        role=role,
        inferredType=coerce_enum(raw.get('inferredType', raw.get('type')), InferredType, InferredType.STRING),
        confidence=_confidence(raw.get('confidence')),
        rationale=_optional_str(raw.get('rationale', raw.get('reasoning'))) or '',
    )


@_contract
def validate_schema_analysis(payload: Any) -> SchemaAnalysisResult:
    """
    Validate a column classifier payload.

    Raises:
        SchemaMismatchError: Not an object, no columns array, or no usable column.
    """
    if not isinstance(payload, dict) or not isinstance(payload.get('columns'), list):
        raise SchemaMismatchError('Classifier payload must be an object with a columns array')

    columns = [column for column in map(_validate_column, payload['columns']) if column is not None]
    if not columns:
        raise SchemaMismatchError('Classifier payload contained no valid columns')

    raw_game_type = payload.get('gameType')
    game_type = _GAME_TYPE_ALIASES.get(str(raw_game_type).lower()) if isinstance(raw_game_type, str) else None
    if game_type is None:
        game_type = coerce_enum(raw_game_type, GameType, GameType.CUSTOM)

    return SchemaAnalysisResult(
        columns=columns,
        gameType=game_type,
        suggestedCharts=_str_list(payload.get('suggestedCharts')),
        warnings=_str_list(payload.get('warnings')),
        dataQuality=_confidence(payload.get('dataQuality')),
        usedClassifier=True,
    )
