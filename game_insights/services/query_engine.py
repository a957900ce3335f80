"""
Natural-language Query Engine.

Answers questions about a dataset, preferring exact computation over
generation:

    1. Fast path: an ordered list of (pattern, compute) pairs. The first
       pattern whose compute returns an answer wins; the orchestrator is
       never called.
    2. Orchestrator path: build a compact QAContext and ask the completion
       provider. When the answer carries queryLogic, execute it against the
       full dataset and attach the value as a "Computed Result" data point.
    3. Failure: any provider error (or no provider) yields a deterministic
       explanation of which fields the question category needs and the
       dataset lacks. The engine never raises.

Usage:
    from game_insights.services.query_engine import QueryEngine

    engine = QueryEngine(orchestrator)
    result = await engine.ask("How many users?", dataset, mappings)
"""

import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence

from game_insights.models.enums import (
    AggregationFunction,
    AnswerSource,
    CanonicalField,
    FilterOperator,
    GameType,
    QuestionType,
)
from game_insights.models.schemas import (
    Answer,
    ColumnMapping,
    Dataset,
    QAContext,
    QAContextColumn,
    QADataPoint,
    QueryFilter,
    QueryLogic,
    QueryResult,
    QuestionResult,
    TimeRange,
)
from game_insights.services.baseline_stats import parse_timestamp, to_float
from game_insights.services.column_mapping import find_column
from game_insights.services.completion_provider import LLMError
from game_insights.services.prompts import SUGGESTED_QUESTIONS, detect_question_type


logger = logging.getLogger(__name__)


QA_CONTEXT_SAMPLE_ROWS: int = 5

# Canonical fields reported to the provider as pre-computable metrics
METRIC_FIELDS: List[CanonicalField] = [
    CanonicalField.REVENUE,
    CanonicalField.LEVEL,
    CanonicalField.SCORE,
    CanonicalField.SESSION_DURATION,
]

# Fields each question category cannot be answered without
REQUIRED_FIELDS: Dict[QuestionType, List[CanonicalField]] = {
    QuestionType.RETENTION: [CanonicalField.USER_ID, CanonicalField.TIMESTAMP],
    QuestionType.REVENUE: [CanonicalField.REVENUE],
    QuestionType.COUNT: [CanonicalField.USER_ID],
    QuestionType.ENGAGEMENT: [CanonicalField.USER_ID, CanonicalField.TIMESTAMP],
    QuestionType.TREND: [CanonicalField.TIMESTAMP],
    QuestionType.FUNNEL: [CanonicalField.LEVEL],
}

MISSING_CONTEXT_ANSWER: str = (
    'I need more context to answer this question. '
    'Try rephrasing or ask one of the suggested questions below.'
)


# =============================================================================
# Fast Path
# =============================================================================


@dataclass
class DirectAnswerPattern:
    pattern: re.Pattern
    compute: Callable[[Dataset, Sequence[ColumnMapping]], Optional[Answer]]


def _numeric_values(dataset: Dataset, column: str) -> List[float]:
    values = (to_float(row.get(column)) for row in dataset.rows)
    return [v for v in values if v is not None]


def _unique_users(dataset: Dataset, column: str) -> int:
    return len({str(row.get(column)) for row in dataset.rows if row.get(column) not in (None, '')})


def _answer_user_count(dataset: Dataset, mappings: Sequence[ColumnMapping]) -> Optional[Answer]:
    user_column = find_column(mappings, CanonicalField.USER_ID)
    if user_column is None:
        return None
    users = _unique_users(dataset, user_column)
    return Answer(
        text=f"There are {users:,} unique users in the dataset.",
        value=users,
        confidence=1.0,
        suggestedFollowups=[
            'How many sessions did they have?',
            'What is the retention rate?',
            'How much revenue did they generate?',
        ],
    )


def _answer_total_revenue(dataset: Dataset, mappings: Sequence[ColumnMapping]) -> Optional[Answer]:
    revenue_column = find_column(mappings, CanonicalField.REVENUE)
    if revenue_column is None:
        return None
    total = sum(_numeric_values(dataset, revenue_column))
    return Answer(
        text=f"Total revenue is ${total:,.2f}.",
        value=round(total, 2),
        confidence=1.0,
        suggestedFollowups=[
            'What is the ARPU?',
            'How is revenue distributed by platform?',
            'What is the revenue trend over time?',
        ],
    )


def _answer_arpu(dataset: Dataset, mappings: Sequence[ColumnMapping]) -> Optional[Answer]:
    revenue_column = find_column(mappings, CanonicalField.REVENUE)
    user_column = find_column(mappings, CanonicalField.USER_ID)
    if revenue_column is None or user_column is None:
        return None
    users = _unique_users(dataset, user_column)
    arpu = sum(_numeric_values(dataset, revenue_column)) / users if users else 0.0
    return Answer(
        text=f"Average Revenue Per User (ARPU) is ${arpu:.2f}.",
        value=round(arpu, 2),
        confidence=1.0,
        suggestedFollowups=[
            'What is the ARPPU (paying users only)?',
            'How does ARPU compare by platform?',
            'What is the conversion rate?',
        ],
    )


def _positive_levels(dataset: Dataset, mappings: Sequence[ColumnMapping]) -> List[float]:
    level_column = find_column(mappings, CanonicalField.LEVEL)
    if level_column is None:
        return []
    return [v for v in _numeric_values(dataset, level_column) if v > 0]


def _answer_max_level(dataset: Dataset, mappings: Sequence[ColumnMapping]) -> Optional[Answer]:
    levels = _positive_levels(dataset, mappings)
    if not levels:
        return None
    highest = max(levels)
    return Answer(
        text=f"The highest level reached is {highest:g}.",
        value=highest,
        confidence=1.0,
        suggestedFollowups=[
            'What is the average level?',
            'Where do players typically stop?',
            'Which level has the highest drop-off?',
        ],
    )


def _answer_average_level(dataset: Dataset, mappings: Sequence[ColumnMapping]) -> Optional[Answer]:
    levels = _positive_levels(dataset, mappings)
    if not levels:
        return None
    average = sum(levels) / len(levels)
    return Answer(
        text=f"The average level is {average:.1f}.",
        value=round(average, 1),
        confidence=1.0,
        suggestedFollowups=[
            'What is the max level reached?',
            'What is the level distribution?',
        ],
    )


def _answer_row_count(dataset: Dataset, mappings: Sequence[ColumnMapping]) -> Optional[Answer]:
    return Answer(
        text=f"The dataset contains {len(dataset.rows):,} rows.",
        value=len(dataset.rows),
        confidence=1.0,
        suggestedFollowups=[
            'What columns are available?',
            'What is the date range?',
        ],
    )


DIRECT_PATTERNS: List[DirectAnswerPattern] = [
    DirectAnswerPattern(re.compile(r'how many (users?|players?)', re.I), _answer_user_count),
    DirectAnswerPattern(re.compile(r'total revenue|how much revenue', re.I), _answer_total_revenue),
    DirectAnswerPattern(re.compile(r'arpu|average revenue per user', re.I), _answer_arpu),
    DirectAnswerPattern(re.compile(r'how many levels|max level|highest level', re.I), _answer_max_level),
    DirectAnswerPattern(re.compile(r'average level', re.I), _answer_average_level),
    DirectAnswerPattern(re.compile(r'how many rows|row count|data size|how much data', re.I), _answer_row_count),
]


def try_direct_answer(question: str, dataset: Dataset, mappings: Sequence[ColumnMapping]) -> Optional[Answer]:
    """First non-null fast-path answer, or None."""
    for direct in DIRECT_PATTERNS:
        if direct.pattern.search(question):
            answer = direct.compute(dataset, mappings)
            if answer is not None:
                return answer
    return None


# =============================================================================
# Query Logic Execution
# =============================================================================


def _loose_equals(left: Any, right: Any) -> bool:
    left_number, right_number = to_float(left), to_float(right)
    if left_number is not None and right_number is not None:
        return left_number == right_number
    if left is None or right is None:
        return left is None and right is None
    return str(left) == str(right)


def _matches(row: Dict[str, Any], query_filter: QueryFilter) -> bool:
    value = row.get(query_filter.column)
    operator = query_filter.operator

    if operator in (FilterOperator.EQ, FilterOperator.EQ_ALT):
        return _loose_equals(value, query_filter.value)
    if operator == FilterOperator.NE:
        return not _loose_equals(value, query_filter.value)
    if operator == FilterOperator.CONTAINS:
        return value is not None and str(query_filter.value) in str(value)

    left, right = to_float(value), to_float(query_filter.value)
    if left is None or right is None:
        return False
    if operator == FilterOperator.GT:
        return left > right
    if operator == FilterOperator.LT:
        return left < right
    if operator == FilterOperator.GE:
        return left >= right
    return left <= right


def _aggregate(values: List[float], function: AggregationFunction) -> Optional[float]:
    if not values:
        return None
    if function == AggregationFunction.SUM:
        return sum(values)
    if function == AggregationFunction.AVG:
        return sum(values) / len(values)
    if function == AggregationFunction.COUNT:
        return float(len(values))
    if function == AggregationFunction.MAX:
        return max(values)
    return min(values)


def execute_query_logic(logic: QueryLogic, rows: Sequence[Dict[str, Any]]) -> QueryResult:
    """
    Run structured query logic against every row.

    Filters are ANDed. Only the first aggregation runs; with none, the value
    is the matched row count. groupBy adds a per-group breakdown of the same
    aggregation (or row count), keyed by the group values joined with ' / '.
    """
    matched = [row for row in rows if all(_matches(row, f) for f in logic.filters)]
    aggregation = logic.aggregations[0] if logic.aggregations else None

    def summarize(group_rows: Sequence[Dict[str, Any]]) -> Optional[float]:
        if aggregation is None:
            return float(len(group_rows))
        values = [v for v in (to_float(r.get(aggregation.column)) for r in group_rows) if v is not None]
        return _aggregate(values, aggregation.function)

    value = summarize(matched)
    if aggregation is None and value is not None:
        value = float(int(value))

    breakdown: Dict[str, float] = {}
    if logic.groupBy:
        groups: Dict[str, List[Dict[str, Any]]] = {}
        for row in matched:
            key = ' / '.join(str(row.get(column, '')) for column in logic.groupBy)
            groups.setdefault(key, []).append(row)
        for key in sorted(groups):
            group_value = summarize(groups[key])
            if group_value is not None:
                breakdown[key] = round(group_value, 4)

    return QueryResult(
        value=round(value, 4) if value is not None else None,
        breakdown=breakdown,
        rowsMatched=len(matched),
    )


def _format_number(value: float) -> str:
    return f"{int(value):,}" if float(value).is_integer() else f"{value:,.2f}"


# =============================================================================
# Engine
# =============================================================================


class QueryEngine:
    """
    Args:
        orchestrator: InsightOrchestrator used for questions the fast path
            cannot answer. None means deterministic answers only.
    """

    def __init__(self, orchestrator=None):
        self.orchestrator = orchestrator
        self._history: List[str] = []

    def get_history(self) -> List[str]:
        return list(self._history)

    def clear_history(self) -> None:
        self._history = []

    def get_suggested_questions(self, game_type: GameType = GameType.CUSTOM) -> List[str]:
        return list(SUGGESTED_QUESTIONS.get(game_type, SUGGESTED_QUESTIONS[GameType.CUSTOM]))

    def build_qa_context(
        self,
        dataset: Dataset,
        mappings: Sequence[ColumnMapping],
        game_type: GameType = GameType.CUSTOM,
    ) -> QAContext:
        date_range: Optional[TimeRange] = None
        timestamp_column = find_column(mappings, CanonicalField.TIMESTAMP)
        if timestamp_column is not None:
            stamps = [ts for ts in (parse_timestamp(r.get(timestamp_column)) for r in dataset.rows) if ts is not None]
            if stamps:
                date_range = TimeRange(start=min(stamps).strftime('%Y-%m-%d'), end=max(stamps).strftime('%Y-%m-%d'))

        canonicals = {m.canonical for m in mappings}
        metrics = [field.value for field in METRIC_FIELDS if field in canonicals]
        if CanonicalField.USER_ID in canonicals:
            metrics.append('active_users')

        return QAContext(
            columns=[QAContextColumn(name=m.originalName, canonical=m.canonical) for m in mappings],
            sampleRows=list(dataset.rows[:QA_CONTEXT_SAMPLE_ROWS]),
            rowCount=len(dataset.rows),
            dateRange=date_range,
            availableMetrics=metrics,
            gameType=game_type,
        )

    def fallback_answer(
        self,
        question: str,
        mappings: Sequence[ColumnMapping],
        game_type: GameType = GameType.CUSTOM,
    ) -> Answer:
        """Explain which fields the question needs and the dataset lacks."""
        question_type = detect_question_type(question)
        available = {m.canonical for m in mappings}
        missing = [f.value for f in REQUIRED_FIELDS.get(question_type, []) if f not in available]

        if missing:
            text = (
                f"I cannot answer this question because the dataset is missing {' and '.join(missing)} data. "
                "Try a different question or upload additional data."
            )
        else:
            text = MISSING_CONTEXT_ANSWER

        return Answer(
            text=text,
            confidence=0.0,
            suggestedFollowups=self.get_suggested_questions(game_type),
            source=AnswerSource.FALLBACK,
            questionType=question_type,
        )

    async def ask(
        self,
        question: str,
        dataset: Dataset,
        mappings: Sequence[ColumnMapping],
        game_type: GameType = GameType.CUSTOM,
    ) -> QuestionResult:
        """
        Answer one question.

        Returns:
            QuestionResult whose answer.source tells which path produced it:
            computed, llm, cached or fallback.
        """
        started = time.monotonic()
        self._history.append(question)
        question_type = detect_question_type(question)

        answer = try_direct_answer(question, dataset, mappings)
        if answer is not None:
            answer.questionType = question_type
        else:
            answer = await self._ask_orchestrator(question, question_type, dataset, mappings, game_type)

        return QuestionResult(
            question=question,
            answer=answer,
            executionTimeMs=int((time.monotonic() - started) * 1000),
        )

    async def _ask_orchestrator(
        self,
        question: str,
        question_type: QuestionType,
        dataset: Dataset,
        mappings: Sequence[ColumnMapping],
        game_type: GameType,
    ) -> Answer:
        if self.orchestrator is None or not self.orchestrator.is_available:
            return self.fallback_answer(question, mappings, game_type)

        context = self.build_qa_context(dataset, mappings, game_type)
        try:
            completion = await self.orchestrator.answer_question(question, context)
        except LLMError as e:
            logger.warning("Question answering via provider failed: %s", e)
            return self.fallback_answer(question, mappings, game_type)

        response = completion.value
        data_points = list(response.dataPoints)
        value: Optional[float] = None
        breakdown: Optional[Dict[str, float]] = None

        if response.queryLogic is not None:
            result = execute_query_logic(response.queryLogic, dataset.rows)
            if result.value is not None:
                value = result.value
                data_points.append(QADataPoint(
                    label='Computed Result',
                    value=_format_number(result.value),
                    context=f"Computed over {result.rowsMatched:,} matching rows",
                ))
            if result.breakdown:
                breakdown = result.breakdown

        return Answer(
            text=response.answer,
            value=value,
            breakdown=breakdown,
            dataPoints=data_points,
            confidence=response.confidence,
            suggestedFollowups=response.relatedQuestions,
            source=AnswerSource.CACHED if completion.cached else AnswerSource.LLM,
            questionType=question_type,
        )
