"""
Tests for the Semantic Column Mapping Service.

The tests verify:
1. Alias matching (exact, containment, no match)
2. Sample-based type inference
3. Fallback analysis when no classifier is configured or it fails
4. Merging and validation of classifier output
5. Canonical field resolution with find_column
"""

from typing import Any, Dict, List
from unittest.mock import AsyncMock

import pytest

from game_insights.models import (
    CanonicalField,
    ColumnMapping,
    ColumnRole,
    GameType,
    InferredType,
    SchemaAnalysisResult,
)
from game_insights.services.column_mapping import (
    FALLBACK_WARNING,
    ColumnClassifier,
    SemanticColumnMapper,
    find_column,
    fuzzy_match,
    infer_type,
    normalize_header,
)
from game_insights.services.completion_provider import ProviderTimeoutError
from game_insights.tests.conftest import make_mapping


SAMPLE_ROWS: List[Dict[str, Any]] = [
    {'uid': 'u1', 'ts': '2024-01-01T10:00:00Z', 'iap_revenue': 1.99, 'debug_flag': True, 'mystery': 'x'},
    {'uid': 'u2', 'ts': '2024-01-02T10:00:00Z', 'iap_revenue': 0, 'debug_flag': False, 'mystery': 'y'},
]


# =============================================================================
# TEST CLASS: ALIAS MATCHING
# =============================================================================


class TestFuzzyMatch:
    """Header matching against the alias table."""

    @pytest.mark.scenario
    def test_uid_maps_to_user_id_with_full_confidence(self) -> None:
        """A 'uid' header resolves to user_id at confidence 1.0 without a classifier."""
        match = fuzzy_match('uid')

        assert match is not None
        assert match.canonical == CanonicalField.USER_ID
        assert match.confidence == 1.0

    def test_separators_and_case_are_normalized(self) -> None:
        assert normalize_header('Player-ID') == 'player_id'
        assert fuzzy_match('Player-ID').canonical == CanonicalField.USER_ID
        assert fuzzy_match('Event Time').canonical == CanonicalField.TIMESTAMP

    def test_containment_match_uses_length_ratio(self) -> None:
        # 'user_ids' contains 'user_id': ratio 7/8
        match = fuzzy_match('user_ids')

        assert match.canonical == CanonicalField.USER_ID
        assert match.confidence == pytest.approx(7 / 8)

    def test_short_containment_below_ratio_is_rejected(self) -> None:
        assert fuzzy_match('xyz_total_amount_value') is None

    def test_unknown_header_returns_none(self) -> None:
        assert fuzzy_match('mystery') is None
        assert fuzzy_match('') is None


# =============================================================================
# TEST CLASS: TYPE INFERENCE
# =============================================================================


class TestTypeInference:

    @pytest.mark.parametrize('value, expected', [
        (True, InferredType.BOOLEAN),
        (42, InferredType.NUMBER),
        (1.5, InferredType.NUMBER),
        ('2024-01-01', InferredType.DATE),
        ('1704067200', InferredType.DATE),
        ('3.14', InferredType.NUMBER),
        ('hello', InferredType.STRING),
        ({'a': 1}, InferredType.JSON),
        ([1, 2], InferredType.JSON),
    ])
    def test_infer_type(self, value: Any, expected: InferredType) -> None:
        assert infer_type(value) == expected


# =============================================================================
# TEST CLASS: FALLBACK ANALYSIS
# =============================================================================


class TestFallbackAnalysis:

    @pytest.mark.asyncio
    async def test_no_classifier_uses_alias_table(self) -> None:
        mapper = SemanticColumnMapper(classifier=None)
        headers = ['uid', 'ts', 'iap_revenue', 'debug_flag', 'mystery']

        result = await mapper.map_columns(headers, SAMPLE_ROWS)

        assert [c.originalName for c in result.columns] == headers
        by_name = {c.originalName: c for c in result.columns}
        assert by_name['uid'].canonical == CanonicalField.USER_ID
        assert by_name['uid'].confidence == pytest.approx(0.8)
        assert by_name['uid'].role == ColumnRole.IDENTIFIER
        assert by_name['ts'].canonical == CanonicalField.TIMESTAMP
        assert by_name['ts'].inferredType == InferredType.DATE
        assert by_name['iap_revenue'].canonical == CanonicalField.REVENUE
        assert by_name['iap_revenue'].role == ColumnRole.METRIC
        assert by_name['debug_flag'].canonical == CanonicalField.NOISE
        assert by_name['debug_flag'].inferredType == InferredType.BOOLEAN
        assert by_name['mystery'].canonical == CanonicalField.UNKNOWN
        assert by_name['mystery'].confidence == pytest.approx(0.3)

        assert result.usedClassifier is False
        assert result.gameType == GameType.CUSTOM
        assert FALLBACK_WARNING in result.warnings
        assert result.dataQuality == 0.5

    @pytest.mark.asyncio
    async def test_classifier_failure_falls_back(self) -> None:
        classifier = AsyncMock(spec=ColumnClassifier)
        classifier.classify_columns.side_effect = ProviderTimeoutError('deadline')
        mapper = SemanticColumnMapper(classifier=classifier)

        result = await mapper.map_columns(['uid', 'ts'], SAMPLE_ROWS)

        classifier.classify_columns.assert_awaited_once()
        assert result.usedClassifier is False
        assert find_column(result.columns, CanonicalField.USER_ID) == 'uid'

    @pytest.mark.asyncio
    async def test_unexpected_classifier_error_falls_back(self) -> None:
        classifier = AsyncMock(spec=ColumnClassifier)
        classifier.classify_columns.side_effect = RuntimeError('boom')
        mapper = SemanticColumnMapper(classifier=classifier)

        result = await mapper.map_columns(['uid'], SAMPLE_ROWS)

        assert result.usedClassifier is False
        assert result.columns[0].canonical == CanonicalField.USER_ID


# =============================================================================
# TEST CLASS: CLASSIFIER MERGE
# =============================================================================


class TestClassifierMerge:

    @pytest.mark.asyncio
    async def test_omitted_headers_are_filled_by_alias_match(self) -> None:
        classifier = AsyncMock(spec=ColumnClassifier)
        classifier.classify_columns.return_value = SchemaAnalysisResult(
            columns=[make_mapping('uid', CanonicalField.USER_ID, ColumnRole.IDENTIFIER, confidence=0.95)],
            gameType=GameType.PUZZLE,
            dataQuality=0.9,
        )
        mapper = SemanticColumnMapper(classifier=classifier)

        result = await mapper.map_columns(['uid', 'ts'], SAMPLE_ROWS)

        assert result.usedClassifier is True
        assert result.gameType == GameType.PUZZLE
        assert [c.originalName for c in result.columns] == ['uid', 'ts']
        assert result.columns[1].canonical == CanonicalField.TIMESTAMP
        assert any('omitted' in w for w in result.warnings)

    @pytest.mark.asyncio
    async def test_low_confidence_mapping_is_replaced_by_stronger_alias(self) -> None:
        classifier = AsyncMock(spec=ColumnClassifier)
        classifier.classify_columns.return_value = SchemaAnalysisResult(
            columns=[make_mapping('uid', CanonicalField.UNKNOWN, ColumnRole.UNKNOWN, confidence=0.4)],
        )
        mapper = SemanticColumnMapper(classifier=classifier, confidence_threshold=0.8)

        result = await mapper.map_columns(['uid'], SAMPLE_ROWS)
        mapping = result.columns[0]

        assert mapping.canonical == CanonicalField.USER_ID
        assert mapping.role == ColumnRole.IDENTIFIER
        assert mapping.confidence == pytest.approx(0.9)
        assert mapping.rationale.endswith('(validated by pattern matching)')

    @pytest.mark.asyncio
    async def test_confident_mapping_is_kept(self) -> None:
        classifier = AsyncMock(spec=ColumnClassifier)
        classifier.classify_columns.return_value = SchemaAnalysisResult(
            columns=[make_mapping('uid', CanonicalField.SESSION_ID, ColumnRole.IDENTIFIER, confidence=0.85)],
        )
        mapper = SemanticColumnMapper(classifier=classifier)

        result = await mapper.map_columns(['uid'], SAMPLE_ROWS)

        assert result.columns[0].canonical == CanonicalField.SESSION_ID


# =============================================================================
# TEST CLASS: FIND COLUMN
# =============================================================================


class TestFindColumn:

    def test_highest_confidence_wins(self) -> None:
        mappings: List[ColumnMapping] = [
            make_mapping('user', CanonicalField.USER_ID, confidence=0.6),
            make_mapping('uid', CanonicalField.USER_ID, confidence=0.9),
        ]
        assert find_column(mappings, CanonicalField.USER_ID) == 'uid'

    def test_ties_keep_first_column(self) -> None:
        mappings = [
            make_mapping('a', CanonicalField.REVENUE, confidence=0.8),
            make_mapping('b', CanonicalField.REVENUE, confidence=0.8),
        ]
        assert find_column(mappings, CanonicalField.REVENUE) == 'a'

    def test_missing_field_returns_none(self) -> None:
        assert find_column([], CanonicalField.TIMESTAMP) is None
