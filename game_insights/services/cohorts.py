"""
Cohort and Retention Engine.

Groups users into cohorts (by first-activity bucket or by a dimension value
at first activity) and computes D1/D3/D7/D14/D30 retention, revenue,
conversion and a cross-cohort comparison.

Retention Rules:
    - A user's cohort is decided by their earliest valid (user, timestamp)
      row; ties keep the earlier row in input order.
    - A user is eligible for day N when floor((now - first) / 1 day) >= N.
    - A user is retained on day N when they have an activity row on the
      calendar date first_day + N (exact day, not "on or after").
    - retention = round(retained / eligible * 100, 2), or 0 when nobody is
      eligible, so every value is within [0, 100].
    - Rows without a parseable timestamp are ignored, revenue included.
    - conversionRate is the percent of members with positive revenue (2dp).

Usage:
    from game_insights.services.cohorts import CohortEngine

    engine = CohortEngine()
    result = engine.analyze(dataset, mappings, CohortDefinition(dimension=CohortDimension.PLATFORM))

Dependencies:
    - pandas (via baseline_stats.parse_timestamp) for timestamp parsing
"""

import logging
from datetime import date, datetime, timedelta, timezone
from typing import Dict, List, Optional, Sequence, Set

import pandas as pd

from game_insights.models.enums import CanonicalField, CohortDimension, Granularity
from game_insights.models.schemas import (
    Cohort,
    CohortAnalysisResult,
    CohortComparison,
    CohortDefinition,
    CohortHighlight,
    ColumnMapping,
    Dataset,
    RetentionMatrix,
)
from game_insights.services.baseline_stats import parse_timestamp, to_float
from game_insights.services.column_mapping import find_column


logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

RETENTION_DAYS: List[int] = [1, 3, 7, 14, 30]
RETENTION_LABELS: List[str] = [f"D{day}" for day in RETENTION_DAYS]

# Horizon used to rank cohorts against each other
COMPARISON_HORIZON: str = 'D7'

# First-vs-last D7 gap (percentage points) worth reporting as a trend
TREND_INSIGHT_MIN_GAP: float = 5.0

MAX_COMPARISON_INSIGHTS: int = 5

UNKNOWN_LABEL: str = 'Unknown'
INSUFFICIENT_DATA_INSIGHT: str = 'Insufficient data for cohort analysis'
NO_COHORTS_INSIGHT: str = 'No cohorts available for comparison'

_DIMENSION_FIELDS: Dict[CohortDimension, CanonicalField] = {
    CohortDimension.PLATFORM: CanonicalField.PLATFORM,
    CohortDimension.COUNTRY: CanonicalField.COUNTRY,
}

# Dimensions labelled by a timestamp bucket rather than a column value
_DATE_DIMENSIONS = frozenset({CohortDimension.INSTALL_DATE, CohortDimension.FIRST_PURCHASE_DATE})


# =============================================================================
# Pure Helpers
# =============================================================================


def cohort_label(ts: pd.Timestamp, granularity: Granularity) -> str:
    """
    Format a first-activity timestamp as a cohort label.

    - day: YYYY-MM-DD
    - week: ISO week as YYYY-Www
    - month: YYYY-MM
    """
    if granularity == Granularity.WEEK:
        iso_year, iso_week, _ = ts.isocalendar()
        return f"{iso_year}-W{iso_week:02d}"
    if granularity == Granularity.MONTH:
        return ts.strftime('%Y-%m')
    return ts.strftime('%Y-%m-%d')


def tenure_days(first_seen: pd.Timestamp, now: datetime) -> int:
    """Whole days elapsed since first activity."""
    return int((pd.Timestamp(now) - first_seen) // pd.Timedelta(days=1))


def _label_for_value(value) -> str:
    if value is None:
        return UNKNOWN_LABEL
    text = str(value).strip()
    return text if text else UNKNOWN_LABEL


def _empty_result(definition: CohortDefinition, now: datetime) -> CohortAnalysisResult:
    return CohortAnalysisResult(
        definition=definition,
        cohorts=[],
        comparison=CohortComparison(insights=[INSUFFICIENT_DATA_INSIGHT]),
        retentionMatrix=RetentionMatrix(),
        analyzedAt=now,
    )


def compare_cohorts(cohorts: Sequence[Cohort]) -> CohortComparison:
    """
    Average retention, best/worst cohort by D7 and narrative insights.

    Args:
        cohorts: Cohorts in label order.

    Returns:
        CohortComparison with at most MAX_COMPARISON_INSIGHTS insights.

    Edge Cases:
        - No cohorts: single 'No cohorts available for comparison' insight
        - worstCohort is only set when at least two cohorts have non-zero D7
    """
    if not cohorts:
        return CohortComparison(insights=[NO_COHORTS_INSIGHT])

    avg_retention: Dict[str, float] = {}
    for label in RETENTION_LABELS:
        values = [c.retention.get(label, 0.0) for c in cohorts if c.retention.get(label, 0.0) > 0]
        avg_retention[label] = round(sum(values) / len(values), 2) if values else 0.0

    # Stable sort keeps first-seen order among equal D7 values
    ranked = sorted(
        (c for c in cohorts if c.retention.get(COMPARISON_HORIZON, 0.0) > 0),
        key=lambda c: c.retention[COMPARISON_HORIZON],
        reverse=True,
    )

    best: Optional[CohortHighlight] = None
    worst: Optional[CohortHighlight] = None
    if ranked:
        top = ranked[0]
        best = CohortHighlight(
            id=top.id, name=top.name, metric='D7 Retention', value=top.retention[COMPARISON_HORIZON],
        )
        if len(ranked) > 1:
            bottom = ranked[-1]
            worst = CohortHighlight(
                id=bottom.id, name=bottom.name, metric='D7 Retention', value=bottom.retention[COMPARISON_HORIZON],
            )

    insights: List[str] = []
    if best and worst:
        gap = best.value - worst.value
        insights.append(f"{best.name} has {gap:.1f}% higher D7 retention than {worst.name}")

    if len(cohorts) >= 2:
        first, last = cohorts[0], cohorts[-1]
        first_d7 = first.retention.get(COMPARISON_HORIZON, 0.0)
        last_d7 = last.retention.get(COMPARISON_HORIZON, 0.0)
        if first_d7 > 0 and last_d7 > 0:
            trend = last_d7 - first_d7
            if abs(trend) > TREND_INSIGHT_MIN_GAP:
                if trend > 0:
                    insights.append(f"Retention is improving: +{trend:.1f}% from {first.value} to {last.value}")
                else:
                    insights.append(f"Retention is declining: {trend:.1f}% from {first.value} to {last.value}")

    conversion_rates = [c.conversionRate for c in cohorts if c.conversionRate > 0]
    if conversion_rates:
        avg_conversion = sum(conversion_rates) / len(conversion_rates)
        insights.append(f"Average conversion rate across cohorts: {avg_conversion:.2f}%")

    return CohortComparison(
        bestCohort=best,
        worstCohort=worst,
        avgRetention=avg_retention,
        insights=insights[:MAX_COMPARISON_INSIGHTS],
    )


def build_retention_matrix(cohorts: Sequence[Cohort]) -> RetentionMatrix:
    return RetentionMatrix(
        labels=[c.value for c in cohorts],
        days=list(RETENTION_LABELS),
        matrix=[[c.retention.get(label, 0.0) for label in RETENTION_LABELS] for c in cohorts],
    )


def suggest_cohort_definitions(mappings: Sequence[ColumnMapping]) -> List[CohortDefinition]:
    """Cohort definitions the mapped columns can support."""
    canonicals = {m.canonical for m in mappings}
    suggestions: List[CohortDefinition] = []
    if CanonicalField.TIMESTAMP in canonicals:
        suggestions.append(CohortDefinition(
            dimension=CohortDimension.INSTALL_DATE, granularity=Granularity.WEEK, name='Weekly Install Cohorts',
        ))
    if CanonicalField.TIMESTAMP in canonicals and CanonicalField.REVENUE in canonicals:
        suggestions.append(CohortDefinition(
            dimension=CohortDimension.FIRST_PURCHASE_DATE, granularity=Granularity.WEEK, name='First Purchase Cohorts',
        ))
    if CanonicalField.PLATFORM in canonicals:
        suggestions.append(CohortDefinition(dimension=CohortDimension.PLATFORM, name='Platform Cohorts'))
    if CanonicalField.COUNTRY in canonicals:
        suggestions.append(CohortDefinition(dimension=CohortDimension.COUNTRY, name='Country Cohorts'))
    return suggestions


# =============================================================================
# Engine
# =============================================================================


class CohortEngine:
    """Builds cohorts and retention curves from event rows."""

    def __init__(self, default_granularity: Granularity = Granularity.WEEK):
        self.default_granularity = default_granularity

    def analyze_install_cohorts(
        self,
        dataset: Dataset,
        mappings: Sequence[ColumnMapping],
        granularity: Optional[Granularity] = None,
        now: Optional[datetime] = None,
    ) -> CohortAnalysisResult:
        """Install-date cohorts named after their granularity (e.g. 'Weekly Install Cohorts')."""
        granularity = granularity or self.default_granularity
        name = {
            Granularity.DAY: 'Daily Install Cohorts',
            Granularity.WEEK: 'Weekly Install Cohorts',
            Granularity.MONTH: 'Monthly Install Cohorts',
        }[granularity]
        definition = CohortDefinition(dimension=CohortDimension.INSTALL_DATE, granularity=granularity, name=name)
        return self.analyze(dataset, mappings, definition, now=now)

    def analyze(
        self,
        dataset: Dataset,
        mappings: Sequence[ColumnMapping],
        definition: Optional[CohortDefinition] = None,
        now: Optional[datetime] = None,
    ) -> CohortAnalysisResult:
        """
        Assign users to cohorts and compute retention, revenue and conversion.

        Args:
            dataset: Event rows.
            mappings: Column mappings (user_id and timestamp are required).
            definition: Cohort definition; defaults to install-date cohorts.
            now: Reference time for eligibility. Defaults to the current UTC time.

        Returns:
            CohortAnalysisResult. Missing columns give an empty result with an
            'Insufficient data for cohort analysis' insight.
        """
        definition = definition or CohortDefinition(granularity=self.default_granularity)
        now = now or datetime.now(timezone.utc)
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)

        user_column = find_column(mappings, CanonicalField.USER_ID)
        timestamp_column = find_column(mappings, CanonicalField.TIMESTAMP)
        if user_column is None or timestamp_column is None:
            logger.warning("Cohort analysis needs user_id and timestamp columns; got %s / %s", user_column, timestamp_column)
            return _empty_result(definition, now)

        dimension_column: Optional[str] = None
        if definition.dimension == CohortDimension.CUSTOM:
            if definition.customColumn and definition.customColumn in dataset.headers:
                dimension_column = definition.customColumn
        elif definition.dimension in _DIMENSION_FIELDS:
            dimension_column = find_column(mappings, _DIMENSION_FIELDS[definition.dimension])
        if definition.dimension not in _DATE_DIMENSIONS and dimension_column is None:
            logger.warning("Cohort dimension %s has no source column", definition.dimension.value)
            return _empty_result(definition, now)

        revenue_column = find_column(mappings, CanonicalField.REVENUE)
        if definition.dimension == CohortDimension.FIRST_PURCHASE_DATE and revenue_column is None:
            logger.warning("First-purchase cohorts need a revenue column")
            return _empty_result(definition, now)

        first_seen: Dict[str, pd.Timestamp] = {}
        first_value: Dict[str, object] = {}
        first_purchase: Dict[str, pd.Timestamp] = {}
        activity_days: Dict[str, Set[date]] = {}
        revenue_by_user: Dict[str, float] = {}

        for row in dataset.rows:
            raw_user = row.get(user_column)
            if raw_user is None or raw_user == '':
                continue
            user = str(raw_user)

            ts = parse_timestamp(row.get(timestamp_column))
            if ts is None:
                continue
            activity_days.setdefault(user, set()).add(ts.date())
            if user not in first_seen or ts < first_seen[user]:
                first_seen[user] = ts
                first_value[user] = row.get(dimension_column) if dimension_column else None

            if revenue_column is not None:
                amount = to_float(row.get(revenue_column))
                if amount is not None and amount > 0:
                    revenue_by_user[user] = revenue_by_user.get(user, 0.0) + amount
                    if user not in first_purchase or ts < first_purchase[user]:
                        first_purchase[user] = ts

        if not first_seen:
            logger.warning("No valid (user, timestamp) rows for cohort analysis")
            return _empty_result(definition, now)

        members: Dict[str, List[str]] = {}
        for user, ts in first_seen.items():
            if definition.dimension == CohortDimension.INSTALL_DATE:
                label = cohort_label(ts, definition.granularity)
            elif definition.dimension == CohortDimension.FIRST_PURCHASE_DATE:
                if user not in first_purchase:
                    continue
                label = cohort_label(first_purchase[user], definition.granularity)
            else:
                label = _label_for_value(first_value.get(user))
            members.setdefault(label, []).append(user)

        cohorts: List[Cohort] = []
        for index, label in enumerate(sorted(members)):
            users = members[label]
            retention: Dict[str, float] = {}
            eligible_counts: Dict[str, int] = {}
            for day, horizon in zip(RETENTION_DAYS, RETENTION_LABELS):
                eligible = [u for u in users if tenure_days(first_seen[u], now) >= day]
                retained = [
                    u for u in eligible
                    if first_seen[u].date() + timedelta(days=day) in activity_days[u]
                ]
                eligible_counts[horizon] = len(eligible)
                retention[horizon] = round(len(retained) / len(eligible) * 100, 2) if eligible else 0.0

            paying = [u for u in users if revenue_by_user.get(u, 0.0) > 0]
            total_revenue = sum(revenue_by_user.get(u, 0.0) for u in users)
            cohorts.append(Cohort(
                id=f"cohort_{index + 1}",
                name=f"Cohort {label}",
                dimension=definition.dimension,
                value=label,
                userCount=len(users),
                userIds=users,
                retention=retention,
                eligibleUsers=eligible_counts,
                totalRevenue=round(total_revenue, 2),
                payingUsers=len(paying),
                conversionRate=round(len(paying) / len(users) * 100, 2) if users else 0.0,
            ))

        logger.info("Cohort analysis: %d cohort(s), %d user(s)", len(cohorts), len(first_seen))
        return CohortAnalysisResult(
            definition=definition,
            cohorts=cohorts,
            comparison=compare_cohorts(cohorts),
            retentionMatrix=build_retention_matrix(cohorts),
            analyzedAt=now,
        )
