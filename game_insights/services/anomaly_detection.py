"""
Anomaly Detection Service.

Flags spikes, drops and sustained trend changes in time-bucketed game
metrics by comparing every bucket with a trailing baseline.

Algorithm Overview:
    Spike / drop:
        For bucket i, take the baseline over up to ``baselineWindow`` buckets
        before i. With ``z = |observed - mean| / max(stdDev, epsilon)`` and
        ``percentChange = (observed - mean) / |mean| * 100``, flag the bucket
        when z >= zScoreThreshold AND |percentChange| >= minPercentChange.
        A (near) zero baseline mean never flags.
    Trend change:
        Split the most recent ``baselineWindow`` buckets into halves. Flag
        when the relative mean shift and the relative median shift both
        exceed trendChangeThreshold in the same direction. A single-bucket
        blip moves the mean but not the median, so it is not a trend.
    Severity:
        The higher of the z-score band and the percent-change band. A final
        pass per (metric, type) raises severities so a larger |percentChange|
        never ranks below a smaller one.

Edge Cases:
    - A series with zero variance over all usable buckets yields no anomalies
    - Fewer than 2 usable buckets yields no anomalies (the metric is still
      reported in metricsAnalyzed)
    - Unparseable timestamps are skipped
    - Missing timestamp column: every metric is reported, nothing is flagged

Output is deterministic: ids hash (metric, bucket, type) and detectedAt is the
latest timestamp in the data, so re-running on unchanged input gives an
identical result.

Usage:
    from game_insights.services.anomaly_detection import AnomalyDetector

    detector = AnomalyDetector(config)
    result = detector.detect(dataset, mappings)

Dependencies:
    - numpy: variance checks and half-window statistics
    - game_insights.services.baseline_stats: series and trailing baselines
"""

import hashlib
import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from game_insights.models.enums import AnomalyKind, AnomalySeverity, CanonicalField
from game_insights.models.schemas import (
    Anomaly,
    AnomalyDetectionResult,
    AnomalyThresholds,
    BaselineStats,
    ColumnMapping,
    Dataset,
    DetectionConfig,
    MetricSeries,
    TimeRange,
)
from game_insights.services.baseline_stats import (
    ACTIVE_USERS_METRIC,
    build_metric_series,
    parse_row_timestamps,
    series_values,
    trailing_baseline,
)
from game_insights.services.column_mapping import find_column


logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

# Canonical field backing each built-in metric name
METRIC_FIELDS: Dict[str, CanonicalField] = {
    'revenue': CanonicalField.REVENUE,
    ACTIVE_USERS_METRIC: CanonicalField.USER_ID,
    'level': CanonicalField.LEVEL,
    'score': CanonicalField.SCORE,
    'session_duration': CanonicalField.SESSION_DURATION,
}

DEFAULT_POSSIBLE_CAUSES: Dict[str, List[str]] = {
    'revenue': [
        'Promotional event or sale',
        'App store featuring',
        'Marketing campaign launched',
        'Payment provider issues',
        'Currency exchange fluctuation',
        'New IAP content released',
    ],
    'dau': [
        'Marketing campaign effect',
        'App store visibility change',
        'Competitor app launch',
        'Technical issues (crashes, servers)',
        'Seasonal effect',
        'Content update released',
    ],
    'retention': [
        'Onboarding flow changed',
        'Game balance adjustment',
        'New content added',
        'Technical stability issues',
        'Matchmaking changes',
    ],
    'engagement': [
        'Event or limited-time content',
        'UI/UX changes',
        'Notification strategy change',
        'Server performance issues',
    ],
    'error': [
        'New build deployment',
        'Third-party SDK update',
        'Server-side changes',
        'Device OS update',
    ],
    'default': [
        'Recent update or change',
        'External factors',
        'Data collection issue',
    ],
}

MAX_POSSIBLE_CAUSES: int = 3

# Substring rules mapping a metric name to its cause category, checked in order
_CATEGORY_RULES: List[Tuple[Tuple[str, ...], str]] = [
    (('revenue', 'price', 'arpu'), 'revenue'),
    (('dau', 'mau', 'user'), 'dau'),
    (('retention',), 'retention'),
    (('session', 'engagement'), 'engagement'),
    (('error', 'crash'), 'error'),
]


# =============================================================================
# Pure Helpers
# =============================================================================


def metric_category(metric: str) -> str:
    """Cause category for a metric name (revenue, dau, retention, ...)."""
    lowered = metric.lower()
    for keywords, category in _CATEGORY_RULES:
        if any(keyword in lowered for keyword in keywords):
            return category
    return 'default'


def possible_causes_for(metric: str, overrides: Optional[Dict[str, List[str]]] = None) -> List[str]:
    causes = dict(DEFAULT_POSSIBLE_CAUSES)
    if overrides:
        causes.update(overrides)
    category = metric_category(metric)
    return list(causes.get(category) or causes.get('default', []))[:MAX_POSSIBLE_CAUSES]


def _band_rank(value: float, bands: Sequence[float]) -> int:
    """Index of the highest band lower bound <= value, or -1 below all bands."""
    rank = -1
    for index, lower_bound in enumerate(bands):
        if value >= lower_bound:
            rank = index
    return rank


def classify_severity(z_score: float, percent_change: float, thresholds: AnomalyThresholds) -> AnomalySeverity:
    """
    Severity from the more extreme of the z-score and percent-change bands.

    Example:
        >>> classify_severity(2.7, 30.0, AnomalyThresholds())
        <AnomalySeverity.MEDIUM: 'medium'>
    """
    z_rank = _band_rank(abs(z_score), thresholds.severityZBands)
    pct_rank = _band_rank(abs(percent_change), thresholds.severityPercentBands)
    return AnomalySeverity.from_rank(max(z_rank, pct_rank, 0))


def enforce_monotonic_severity(anomalies: List[Anomaly]) -> List[Anomaly]:
    """
    Raise severities so a larger |percentChange| never ranks lower.

    Applied per (metric, type); anomalies are updated in place and returned.
    """
    groups: Dict[Tuple[str, AnomalyKind], List[Anomaly]] = {}
    for anomaly in anomalies:
        groups.setdefault((anomaly.metric, anomaly.type), []).append(anomaly)

    for members in groups.values():
        running_rank = 0
        for anomaly in sorted(members, key=lambda a: abs(a.percentChange)):
            running_rank = max(running_rank, anomaly.severity.rank)
            anomaly.severity = AnomalySeverity.from_rank(running_rank)
    return anomalies


def anomaly_id(metric: str, bucket: str, kind: AnomalyKind) -> str:
    digest = hashlib.sha1(f"{metric}|{bucket}|{kind.value}".encode('utf-8')).hexdigest()
    return digest[:12]


def describe_anomaly(kind: AnomalyKind, metric: str, percent_change: float, bucket: str) -> str:
    magnitude = abs(round(percent_change))
    if kind == AnomalyKind.SPIKE:
        return f"{metric} spiked {magnitude}% above baseline on {bucket}"
    if kind == AnomalyKind.DROP:
        return f"{metric} dropped {magnitude}% below baseline on {bucket}"
    direction = 'increased' if percent_change > 0 else 'decreased'
    return f"{metric} {direction} by {magnitude}% indicating a trend change on {bucket}"


def sort_anomalies(anomalies: List[Anomaly]) -> List[Anomaly]:
    """Critical first, then most recent bucket, then metric and type."""
    ordered = sorted(anomalies, key=lambda a: (a.metric, a.type.value))
    ordered.sort(key=lambda a: a.bucketKey, reverse=True)
    ordered.sort(key=lambda a: a.severity.rank, reverse=True)
    return ordered


def _rounded_stats(stats: BaselineStats) -> BaselineStats:
    return BaselineStats(
        mean=round(stats.mean, 2),
        stdDev=round(stats.stdDev, 2),
        median=round(stats.median, 2),
        sampleSize=stats.sampleSize,
    )


# =============================================================================
# Detector
# =============================================================================


class AnomalyDetector:
    """
    Deterministic spike/drop/trend detector over time-bucketed metrics.

    Args:
        config: Detection configuration. Defaults to DetectionConfig().
    """

    def __init__(self, config: Optional[DetectionConfig] = None):
        self.config = config or DetectionConfig()

    def resolve_metric_column(self, metric: str, mappings: Sequence[ColumnMapping], headers: Sequence[str]) -> Optional[str]:
        """Source column for a metric: its canonical field, else a raw header of the same name."""
        field = METRIC_FIELDS.get(metric)
        if field is not None:
            column = find_column(mappings, field)
            if column is not None and column in headers:
                return column
        if metric in headers and metric != ACTIVE_USERS_METRIC:
            return metric
        return None

    def detect(self, dataset: Dataset, mappings: Sequence[ColumnMapping]) -> AnomalyDetectionResult:
        """
        Detect anomalies for every configured metric.

        Args:
            dataset: Rows to analyze.
            mappings: Column mappings from the SemanticColumnMapper.

        Returns:
            AnomalyDetectionResult; never raises on bad or missing data.
        """
        config = self.config
        result = AnomalyDetectionResult(granularity=config.granularity)
        headers = dataset.headers

        metric_columns: List[Tuple[str, str]] = []
        for metric in config.metrics:
            column = self.resolve_metric_column(metric, mappings, headers)
            if column is None:
                logger.debug("Metric %s has no source column; skipping", metric)
                continue
            metric_columns.append((metric, column))
        result.metricsAnalyzed = [metric for metric, _ in metric_columns]

        timestamp_column = find_column(mappings, CanonicalField.TIMESTAMP)
        if timestamp_column is None:
            logger.warning("No timestamp column mapped; anomaly detection skipped")
            return result

        timestamps = parse_row_timestamps(dataset.rows, timestamp_column)
        valid = [ts for ts in timestamps if ts is not None]
        if not valid:
            logger.warning("No parseable timestamps in column '%s'", timestamp_column)
            return result

        earliest, latest = min(valid), max(valid)
        result.timeRange = TimeRange(start=earliest.strftime('%Y-%m-%d'), end=latest.strftime('%Y-%m-%d'))
        detected_at = latest.to_pydatetime()

        anomalies: List[Anomaly] = []
        for metric, column in metric_columns:
            series = build_metric_series(
                dataset.rows,
                metric=metric,
                column=column,
                timestamp_column=timestamp_column,
                granularity=config.granularity,
                min_bucket_samples=config.minBucketSamples,
                timestamps=timestamps,
            )
            values = series_values(series)
            if len(values) < 2:
                continue

            result.baselineStats[metric] = _rounded_stats(
                trailing_baseline(values, len(values) - 1, config.baselineWindow)
            )

            if float(np.std(values)) <= config.thresholds.epsilon:
                logger.debug("Metric %s has zero variance; no anomalies", metric)
                continue

            anomalies.extend(self._detect_point_anomalies(series, values, detected_at))
            trend = self._detect_trend_change(series, values, detected_at)
            if trend is not None:
                anomalies.append(trend)

        result.anomalies = sort_anomalies(enforce_monotonic_severity(anomalies))
        logger.info(
            "Anomaly detection: %d metric(s) analyzed, %d anomaly(ies) found",
            len(result.metricsAnalyzed), len(result.anomalies),
        )
        return result

    def _build_anomaly(
        self,
        series: MetricSeries,
        bucket: str,
        kind: AnomalyKind,
        observed: float,
        expected: float,
        z_score: float,
        percent_change: float,
        detected_at: datetime,
    ) -> Anomaly:
        return Anomaly(
            id=anomaly_id(series.metric, bucket, kind),
            metric=series.metric,
            bucketKey=bucket,
            type=kind,
            severity=classify_severity(z_score, percent_change, self.config.thresholds),
            observedValue=round(observed, 2),
            expectedValue=round(expected, 2),
            zScore=round(z_score, 2),
            percentChange=round(percent_change, 2),
            description=describe_anomaly(kind, series.metric, percent_change, bucket),
            possibleCauses=possible_causes_for(series.metric, self.config.possibleCauses),
            detectedAt=detected_at,
        )

    def _detect_point_anomalies(self, series: MetricSeries, values: List[float], detected_at: datetime) -> List[Anomaly]:
        thresholds = self.config.thresholds
        found: List[Anomaly] = []

        for index, point in enumerate(series.points):
            baseline = trailing_baseline(values, index, self.config.baselineWindow)
            if baseline.sampleSize < self.config.minBaselinePoints:
                continue
            if abs(baseline.mean) <= thresholds.epsilon:
                continue

            deviation = point.value - baseline.mean
            z_score = abs(deviation) / max(baseline.stdDev, thresholds.epsilon)
            percent_change = deviation / abs(baseline.mean) * 100

            if z_score < thresholds.zScoreThreshold or abs(percent_change) < thresholds.minPercentChange:
                continue

            kind = AnomalyKind.SPIKE if deviation > 0 else AnomalyKind.DROP
            found.append(self._build_anomaly(
                series, point.bucketKey, kind, point.value, baseline.mean, z_score, percent_change, detected_at,
            ))
        return found

    def _detect_trend_change(self, series: MetricSeries, values: List[float], detected_at: datetime) -> Optional[Anomaly]:
        thresholds = self.config.thresholds
        window = values[-self.config.baselineWindow:]
        if len(window) < thresholds.minTrendPoints:
            return None

        offset = len(values) - len(window)
        half = len(window) // 2
        first = np.array(window[:half], dtype=np.float64)
        second = np.array(window[half:], dtype=np.float64)

        first_mean, second_mean = float(np.mean(first)), float(np.mean(second))
        first_median, second_median = float(np.median(first)), float(np.median(second))
        if abs(first_mean) <= thresholds.epsilon or abs(first_median) <= thresholds.epsilon:
            return None

        mean_shift = (second_mean - first_mean) / abs(first_mean)
        median_shift = (second_median - first_median) / abs(first_median)
        rising = mean_shift > thresholds.trendChangeThreshold and median_shift > thresholds.trendChangeThreshold
        falling = mean_shift < -thresholds.trendChangeThreshold and median_shift < -thresholds.trendChangeThreshold
        if not (rising or falling):
            return None

        z_score = abs(second_mean - first_mean) / max(float(np.std(first)), thresholds.epsilon)
        bucket = series.points[offset + half].bucketKey
        return self._build_anomaly(
            series, bucket, AnomalyKind.TREND_CHANGE, second_mean, first_mean, z_score, mean_shift * 100, detected_at,
        )


def detect_anomalies(
    dataset: Dataset,
    mappings: Sequence[ColumnMapping],
    config: Optional[DetectionConfig] = None,
) -> AnomalyDetectionResult:
    """Functional wrapper around AnomalyDetector.detect."""
    return AnomalyDetector(config).detect(dataset, mappings)
