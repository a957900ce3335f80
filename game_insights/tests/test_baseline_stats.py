"""
Tests for the Baseline Statistics Engine.

Covers lenient timestamp parsing, bucket keys, series construction with
pandas grouping, and numpy-backed trailing baselines.
"""

from datetime import date, datetime, timezone

import numpy as np
import pandas as pd
import pytest

from game_insights.models import Granularity
from game_insights.services.baseline_stats import (
    bucket_key,
    build_metric_series,
    calculate_baseline_stats,
    parse_timestamp,
    to_float,
    trailing_baseline,
)


# =============================================================================
# TEST CLASS: TIMESTAMP PARSING
# =============================================================================


class TestParseTimestamp:

    def test_epoch_seconds(self) -> None:
        assert parse_timestamp(1704067200) == pd.Timestamp('2024-01-01T00:00:00Z')

    def test_epoch_milliseconds(self) -> None:
        assert parse_timestamp(1704067200000) == pd.Timestamp('2024-01-01T00:00:00Z')

    def test_digit_string_epoch(self) -> None:
        assert parse_timestamp('1704067200') == pd.Timestamp('2024-01-01T00:00:00Z')

    def test_iso_string_is_converted_to_utc(self) -> None:
        parsed = parse_timestamp('2024-01-01T02:00:00+02:00')
        assert parsed == pd.Timestamp('2024-01-01T00:00:00Z')
        assert str(parsed.tzinfo) == 'UTC'

    def test_naive_datetime_and_date_are_localized(self) -> None:
        assert parse_timestamp(datetime(2024, 1, 1, 6)) == pd.Timestamp('2024-01-01T06:00:00Z')
        assert parse_timestamp(date(2024, 1, 1)) == pd.Timestamp('2024-01-01T00:00:00Z')

    @pytest.mark.parametrize('value', [None, '', '   ', 'not a date', True, float('nan'), {'a': 1}])
    def test_unparseable_values_return_none(self, value) -> None:
        assert parse_timestamp(value) is None


# =============================================================================
# TEST CLASS: BUCKETS AND COERCION
# =============================================================================


class TestBucketKey:

    def test_day_week_month_keys(self) -> None:
        # Wednesday 2024-01-03
        ts = pd.Timestamp('2024-01-03T15:30:00Z')

        assert bucket_key(ts, Granularity.DAY) == '2024-01-03'
        assert bucket_key(ts, Granularity.WEEK) == '2024-01-01'
        assert bucket_key(ts, Granularity.MONTH) == '2024-01'

    def test_to_float(self) -> None:
        assert to_float('2.5') == 2.5
        assert to_float(3) == 3.0
        assert to_float('abc') is None
        assert to_float(float('inf')) is None
        assert to_float(True) is None
        assert to_float([1]) is None


# =============================================================================
# TEST CLASS: SERIES CONSTRUCTION
# =============================================================================


class TestBuildMetricSeries:

    ROWS = [
        {'uid': 'u1', 'ts': '2024-01-01T01:00:00Z', 'revenue': 2},
        {'uid': 'u2', 'ts': '2024-01-01T05:00:00Z', 'revenue': 4},
        {'uid': 'u1', 'ts': '2024-01-02T01:00:00Z', 'revenue': 'n/a'},
        {'uid': 'u1', 'ts': '2024-01-02T02:00:00Z', 'revenue': 6},
        {'uid': 'u3', 'ts': 'garbage', 'revenue': 100},
    ]

    def test_numeric_metric_aggregates_to_bucket_mean(self) -> None:
        series = build_metric_series(self.ROWS, 'revenue', 'revenue', 'ts')

        assert [p.bucketKey for p in series.points] == ['2024-01-01', '2024-01-02']
        assert [p.value for p in series.points] == [3.0, 6.0]
        assert [p.sampleCount for p in series.points] == [2, 1]

    def test_active_users_counts_distinct_users(self) -> None:
        series = build_metric_series(self.ROWS, 'active_users', 'uid', 'ts')

        assert [p.value for p in series.points] == [2.0, 1.0]

    def test_sparse_buckets_are_dropped(self) -> None:
        series = build_metric_series(self.ROWS, 'revenue', 'revenue', 'ts', min_bucket_samples=2)

        assert [p.bucketKey for p in series.points] == ['2024-01-01']

    def test_no_usable_rows_gives_empty_series(self) -> None:
        series = build_metric_series([{'ts': 'garbage', 'revenue': 1}], 'revenue', 'revenue', 'ts')

        assert series.points == []


# =============================================================================
# TEST CLASS: BASELINE STATISTICS
# =============================================================================


class TestBaselineStats:

    def test_population_statistics(self) -> None:
        values = [2.0, 4.0, 4.0, 4.0, 5.0, 5.0, 7.0, 9.0]

        stats = calculate_baseline_stats(values)

        assert stats.mean == pytest.approx(5.0)
        assert stats.stdDev == pytest.approx(2.0)
        assert stats.median == pytest.approx(4.5)
        assert stats.sampleSize == 8

    def test_empty_window(self) -> None:
        stats = calculate_baseline_stats([])

        assert stats.sampleSize == 0
        assert stats.mean == 0.0

    def test_trailing_baseline_excludes_current_bucket(self) -> None:
        values = list(np.arange(1.0, 11.0))  # 1..10

        stats = trailing_baseline(values, index=9, window=3)

        # buckets 7, 8, 9 precede the bucket holding 10
        assert stats.sampleSize == 3
        assert stats.mean == pytest.approx(8.0)
