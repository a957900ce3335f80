"""
Baseline Statistics Engine.

Turns raw event rows into time-bucketed metric series and computes the
trailing-window statistics the anomaly detector compares each bucket against.

Series construction:
    - Timestamps are parsed leniently (datetimes, dates, epoch seconds or
      milliseconds, ISO strings). Rows whose timestamp cannot be parsed are
      skipped, never fatal.
    - Observations are grouped into day / week / month buckets with pandas.
    - Numeric metrics aggregate to the bucket mean. ``active_users`` counts
      distinct user ids per bucket.
    - Buckets with fewer than ``min_bucket_samples`` observations are dropped.

Baselines:
    ``trailing_baseline(values, index, window)`` summarizes up to ``window``
    buckets strictly before ``index`` with numpy (population std, ddof=0).

Dependencies:
    - numpy: mean, population std and median
    - pandas: timestamp parsing and per-bucket grouping
"""

import logging
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
import pandas as pd

from game_insights.models.enums import Granularity
from game_insights.models.schemas import BaselineStats, MetricPoint, MetricSeries


logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

# Numeric epochs above this are milliseconds, below it seconds
EPOCH_MILLISECONDS_CUTOFF: float = 1e12

# Metric name that counts distinct users instead of averaging a column
ACTIVE_USERS_METRIC: str = 'active_users'


# =============================================================================
# Timestamps and Buckets
# =============================================================================


def parse_timestamp(value: Any) -> Optional[pd.Timestamp]:
    """
    Parse a loosely-typed timestamp into a UTC pandas Timestamp.

    Args:
        value: datetime, date, pandas Timestamp, epoch number (seconds, or
            milliseconds above 1e12), numeric string, or parseable string.

    Returns:
        Timezone-aware UTC Timestamp, or None when the value is empty or
        cannot be parsed.

    Example:
        >>> parse_timestamp(1704067200).isoformat()
        '2024-01-01T00:00:00+00:00'
        >>> parse_timestamp('not a date') is None
        True
    """
    if value is None or isinstance(value, bool):
        return None

    try:
        if isinstance(value, (int, float, np.integer, np.floating)):
            if not np.isfinite(value):
                return None
            unit = 'ms' if abs(value) > EPOCH_MILLISECONDS_CUTOFF else 's'
            parsed = pd.to_datetime(value, unit=unit, utc=True)
        elif isinstance(value, (datetime, date)):
            parsed = pd.Timestamp(value)
        elif isinstance(value, str):
            text = value.strip()
            if not text:
                return None
            if text.isdigit() and 10 <= len(text) <= 13:
                return parse_timestamp(int(text))
            parsed = pd.to_datetime(text, utc=True)
        else:
            return None
    except (ValueError, TypeError, OverflowError, pd.errors.OutOfBoundsDatetime):
        return None

    if parsed is None or pd.isna(parsed):
        return None
    if parsed.tzinfo is None:
        return parsed.tz_localize('UTC')
    return parsed.tz_convert('UTC')


def bucket_key(ts: pd.Timestamp, granularity: Granularity) -> str:
    """
    Format the bucket a timestamp falls into.

    - day: YYYY-MM-DD
    - week: YYYY-MM-DD of the Monday starting the ISO week
    - month: YYYY-MM
    """
    if granularity == Granularity.WEEK:
        monday = ts.normalize() - pd.Timedelta(days=ts.weekday())
        return monday.strftime('%Y-%m-%d')
    if granularity == Granularity.MONTH:
        return ts.strftime('%Y-%m')
    return ts.strftime('%Y-%m-%d')


def to_float(value: Any) -> Optional[float]:
    """Coerce a cell to a finite float, or None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float, np.integer, np.floating)):
        number = float(value)
    elif isinstance(value, str):
        number = float(pd.to_numeric(value.strip(), errors='coerce')) if value.strip() else np.nan
    else:
        return None
    return number if np.isfinite(number) else None


def parse_row_timestamps(rows: Sequence[Dict[str, Any]], timestamp_column: str) -> List[Optional[pd.Timestamp]]:
    """Parse the timestamp column of every row, keeping row alignment."""
    return [parse_timestamp(row.get(timestamp_column)) for row in rows]


# =============================================================================
# Series Construction
# =============================================================================


def build_metric_series(
    rows: Sequence[Dict[str, Any]],
    metric: str,
    column: str,
    timestamp_column: str,
    granularity: Granularity = Granularity.DAY,
    min_bucket_samples: int = 1,
    timestamps: Optional[List[Optional[pd.Timestamp]]] = None,
) -> MetricSeries:
    """
    Aggregate one metric into ordered time buckets.

    Args:
        rows: Dataset rows.
        metric: Metric name; ``active_users`` counts distinct values of
            ``column`` per bucket, anything else averages ``column``.
        column: Source column for the metric.
        timestamp_column: Column holding the event timestamp.
        granularity: Bucket size.
        min_bucket_samples: Buckets with fewer observations are dropped.
        timestamps: Pre-parsed timestamps aligned with ``rows``.

    Returns:
        MetricSeries ordered by bucket key. Empty when nothing is usable.
    """
    if timestamps is None:
        timestamps = parse_row_timestamps(rows, timestamp_column)

    distinct = metric == ACTIVE_USERS_METRIC
    buckets: List[str] = []
    values: List[Any] = []
    skipped = 0

    for row, ts in zip(rows, timestamps):
        if ts is None:
            skipped += 1
            continue
        raw = row.get(column)
        if raw is None or raw == '':
            continue
        if distinct:
            buckets.append(bucket_key(ts, granularity))
            values.append(str(raw))
            continue
        numeric = to_float(raw)
        if numeric is None:
            continue
        buckets.append(bucket_key(ts, granularity))
        values.append(numeric)

    if skipped:
        logger.debug("Skipped %d row(s) with unparseable '%s' for metric %s", skipped, timestamp_column, metric)

    series = MetricSeries(metric=metric, column=column, granularity=granularity)
    if not buckets:
        return series

    frame = pd.DataFrame({'bucket': buckets, 'value': values})
    grouped = frame.groupby('bucket', sort=True)['value']
    if distinct:
        summary = pd.DataFrame({'value': grouped.nunique(), 'samples': grouped.size()})
    else:
        summary = pd.DataFrame({'value': grouped.mean(), 'samples': grouped.size()})

    summary = summary[summary['samples'] >= min_bucket_samples]
    series.points = [
        MetricPoint(bucketKey=str(key), value=float(item['value']), sampleCount=int(item['samples']))
        for key, item in summary.iterrows()
    ]
    return series


# =============================================================================
# Baseline Statistics
# =============================================================================


def calculate_baseline_stats(values: Sequence[float]) -> BaselineStats:
    """
    Mean, population standard deviation and median of a window.

    Edge Cases:
        - Empty window: all zeros with sampleSize 0
        - Single value: stdDev 0.0
    """
    if len(values) == 0:
        return BaselineStats()

    values_array = np.array(values, dtype=np.float64)
    return BaselineStats(
        mean=float(np.mean(values_array)),
        stdDev=float(np.std(values_array)),  # Population std (ddof=0)
        median=float(np.median(values_array)),
        sampleSize=int(values_array.size),
    )


def trailing_baseline(values: Sequence[float], index: int, window: int) -> BaselineStats:
    """Stats over up to ``window`` values strictly before ``index``."""
    start = max(0, index - window)
    return calculate_baseline_stats(list(values[start:index]))


def series_values(series: MetricSeries) -> List[float]:
    return [point.value for point in series.points]
