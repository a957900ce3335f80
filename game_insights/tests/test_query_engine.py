"""
Tests for the Natural-Language Query Engine.

The tests verify:
1. Direct questions are answered on the deterministic fast path
2. Other questions are routed to the orchestrator, and its query logic runs
   against the dataset
3. Provider failures degrade to a fallback answer
4. Query logic filters, the first aggregation and groupBy breakdowns
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from game_insights.models import (
    AggregationFunction,
    AnswerSource,
    CanonicalField,
    ColumnRole,
    FilterOperator,
    QAResponse,
    QueryAggregation,
    QueryFilter,
    QueryLogic,
    QuestionType,
)
from game_insights.services.completion_provider import ProviderNetworkError
from game_insights.services.insight_orchestrator import InsightOrchestrator, ValidatedCompletion
from game_insights.services.prompts import detect_question_type
from game_insights.services.query_engine import (
    MISSING_CONTEXT_ANSWER,
    QueryEngine,
    execute_query_logic,
    try_direct_answer,
)
from game_insights.tests.conftest import FakeProvider, make_mapping


def mock_orchestrator(response: QAResponse = None, cached: bool = False) -> MagicMock:
    orchestrator = MagicMock(spec=InsightOrchestrator)
    orchestrator.is_available = True
    orchestrator.answer_question = AsyncMock(
        return_value=ValidatedCompletion(
            value=response or QAResponse(answer='Retention fell after the week 2 update.', confidence=0.7),
            cached=cached,
            tokens_used=0 if cached else 120,
        )
    )
    return orchestrator


# =============================================================================
# TEST CLASS: ROUTING
# =============================================================================


class TestRouting:

    @pytest.mark.scenario
    @pytest.mark.asyncio
    async def test_user_count_never_calls_orchestrator(self, small_dataset, event_mappings) -> None:
        orchestrator = mock_orchestrator()
        engine = QueryEngine(orchestrator)

        result = await engine.ask('How many users?', small_dataset, event_mappings)

        orchestrator.answer_question.assert_not_awaited()
        assert result.answer.source == AnswerSource.COMPUTED
        assert result.answer.value == 3
        assert result.answer.text == 'There are 3 unique users in the dataset.'
        assert result.answer.questionType == QuestionType.COUNT

    @pytest.mark.scenario
    @pytest.mark.asyncio
    async def test_open_question_is_routed_to_orchestrator(self, small_dataset, event_mappings) -> None:
        orchestrator = mock_orchestrator()
        engine = QueryEngine(orchestrator)

        result = await engine.ask('Why is retention dropping in week 3?', small_dataset, event_mappings)

        orchestrator.answer_question.assert_awaited_once()
        question, context = orchestrator.answer_question.await_args.args
        assert question == 'Why is retention dropping in week 3?'
        assert context.rowCount == 4
        assert 'revenue' in context.availableMetrics
        assert context.dateRange.start == '2024-01-01'
        assert result.answer.source == AnswerSource.LLM
        assert result.answer.text == 'Retention fell after the week 2 update.'

    @pytest.mark.asyncio
    async def test_cached_provider_answer_is_marked(self, small_dataset, event_mappings) -> None:
        engine = QueryEngine(mock_orchestrator(cached=True))

        result = await engine.ask('Why do players churn?', small_dataset, event_mappings)

        assert result.answer.source == AnswerSource.CACHED

    @pytest.mark.asyncio
    async def test_query_logic_result_is_attached(self, small_dataset, event_mappings) -> None:
        response = QAResponse(
            answer='Android revenue is shown below.',
            queryLogic=QueryLogic(
                filters=[QueryFilter(column='platform', operator=FilterOperator.EQ, value='android')],
                aggregations=[QueryAggregation(column='revenue', function=AggregationFunction.SUM)],
            ),
        )
        engine = QueryEngine(mock_orchestrator(response))

        result = await engine.ask('What do android players spend?', small_dataset, event_mappings)

        assert result.answer.value == pytest.approx(4.99)
        computed = [p for p in result.answer.dataPoints if p.label == 'Computed Result']
        assert computed[0].value == '4.99'
        assert 'Computed over 2 matching rows' == computed[0].context

    @pytest.mark.asyncio
    async def test_provider_failure_gives_fallback_answer(self, small_dataset, event_mappings) -> None:
        orchestrator = mock_orchestrator()
        orchestrator.answer_question.side_effect = ProviderNetworkError('down')
        engine = QueryEngine(orchestrator)

        result = await engine.ask('Why do players churn?', small_dataset, event_mappings)

        assert result.answer.source == AnswerSource.FALLBACK
        assert result.answer.text == MISSING_CONTEXT_ANSWER
        assert result.answer.suggestedFollowups

    @pytest.mark.asyncio
    @pytest.mark.parametrize('payload', [
        {'answer': 'Players churn after level 5.', 'dataPoints': 5},
        {'answer': 'Players churn after level 5.', 'queryLogic': {'filters': 3}},
        {'answer': 'Players churn after level 5.', 'queryLogic': 'SELECT COUNT(*) FROM events'},
        {'answer': 42},
    ])
    async def test_malformed_provider_payload_gives_fallback_answer(
        self, small_dataset, event_mappings, payload
    ) -> None:
        provider = FakeProvider([payload])
        engine = QueryEngine(InsightOrchestrator(provider))

        result = await engine.ask('Why do players churn?', small_dataset, event_mappings)

        assert provider.call_count == 1
        assert result.answer.source == AnswerSource.FALLBACK
        assert result.answer.text == MISSING_CONTEXT_ANSWER

    @pytest.mark.asyncio
    async def test_fallback_names_missing_fields(self, small_dataset) -> None:
        engine = QueryEngine(orchestrator=None)
        mappings = [make_mapping('uid', CanonicalField.USER_ID, ColumnRole.IDENTIFIER)]

        result = await engine.ask('What is the revenue trend over time?', small_dataset, mappings)

        assert result.answer.source == AnswerSource.FALLBACK
        assert 'missing timestamp data' in result.answer.text

    @pytest.mark.asyncio
    async def test_history_is_recorded(self, small_dataset, event_mappings) -> None:
        engine = QueryEngine()

        await engine.ask('How many users?', small_dataset, event_mappings)
        await engine.ask('What is the total revenue?', small_dataset, event_mappings)

        assert engine.get_history() == ['How many users?', 'What is the total revenue?']
        engine.clear_history()
        assert engine.get_history() == []


# =============================================================================
# TEST CLASS: FAST PATH
# =============================================================================


class TestFastPath:

    @pytest.mark.parametrize('question, expected', [
        ('What is the total revenue?', 6.98),
        ('What is our ARPU?', 2.33),
        ('What is the max level?', 7.0),
        ('What is the average level?', 4.2),
        ('How many rows are there?', 4),
    ])
    def test_direct_answers(self, small_dataset, event_mappings, question, expected) -> None:
        answer = try_direct_answer(question, small_dataset, event_mappings)

        assert answer is not None
        assert answer.value == pytest.approx(expected)
        assert answer.confidence == 1.0

    def test_missing_column_falls_through(self, small_dataset) -> None:
        assert try_direct_answer('What is the total revenue?', small_dataset, []) is None

    @pytest.mark.parametrize('question, expected', [
        ('What is my retention?', QuestionType.RETENTION),
        ('How many players do we have?', QuestionType.COUNT),
        ('Compare iOS vs Android', QuestionType.COMPARISON),
        ('Show the revenue trend', QuestionType.TREND),
        ('Why is retention dropping in week 3?', QuestionType.UNKNOWN),
    ])
    def test_question_type_detection(self, question, expected) -> None:
        assert detect_question_type(question) == expected


# =============================================================================
# TEST CLASS: QUERY LOGIC EXECUTION
# =============================================================================


class TestExecuteQueryLogic:

    def test_no_aggregation_counts_rows(self, small_dataset) -> None:
        logic = QueryLogic(filters=[QueryFilter(column='level', operator=FilterOperator.GE, value='3')])

        result = execute_query_logic(logic, small_dataset.rows)

        assert result.value == 3
        assert result.rowsMatched == 3

    def test_only_first_aggregation_runs(self, small_dataset) -> None:
        logic = QueryLogic(aggregations=[
            QueryAggregation(column='level', function=AggregationFunction.MAX),
            QueryAggregation(column='revenue', function=AggregationFunction.SUM),
        ])

        assert execute_query_logic(logic, small_dataset.rows).value == 7

    def test_group_by_breakdown(self, small_dataset) -> None:
        logic = QueryLogic(
            aggregations=[QueryAggregation(column='revenue', function=AggregationFunction.SUM)],
            groupBy=['platform'],
        )

        result = execute_query_logic(logic, small_dataset.rows)

        assert result.breakdown == {'android': 4.99, 'ios': 1.99}

    def test_contains_and_not_equal(self, small_dataset) -> None:
        logic = QueryLogic(filters=[
            QueryFilter(column='platform', operator=FilterOperator.CONTAINS, value='andr'),
            QueryFilter(column='uid', operator=FilterOperator.NE, value='u2'),
        ])

        result = execute_query_logic(logic, small_dataset.rows)

        assert result.rowsMatched == 1

    def test_no_matching_rows(self, small_dataset) -> None:
        logic = QueryLogic(
            filters=[QueryFilter(column='level', operator=FilterOperator.GT, value=100)],
            aggregations=[QueryAggregation(column='revenue', function=AggregationFunction.AVG)],
        )

        result = execute_query_logic(logic, small_dataset.rows)

        assert result.value is None
        assert result.rowsMatched == 0
