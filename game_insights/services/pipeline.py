"""
Analysis Pipeline.

Runs the full analysis for one dataset:

    column mapping -> anomaly detection -> cohorts -> insights

The deterministic stages always complete. The insight stage tries the
completion provider and falls back to ``build_fallback_insights`` on any
provider failure, recording a warning instead of failing the run.
"""

import logging
from datetime import datetime
from typing import List, Optional

from game_insights.models.enums import CanonicalField
from game_insights.models.schemas import (
    CohortDefinition,
    DataSnapshot,
    Dataset,
    DetectionConfig,
    InsightContext,
    InsightGenerationResult,
    PipelineResult,
)
from game_insights.services.anomaly_detection import AnomalyDetector
from game_insights.services.baseline_stats import to_float
from game_insights.services.cohorts import CohortEngine
from game_insights.services.column_mapping import SemanticColumnMapper, find_column
from game_insights.services.completion_provider import LLMError
from game_insights.services.insight_orchestrator import InsightOrchestrator, build_fallback_insights


logger = logging.getLogger(__name__)

MAPPER_SAMPLE_ROWS: int = 5


def build_data_snapshot(dataset: Dataset, mappings, time_range=None) -> DataSnapshot:
    """Headline counts rendered into the insight prompt."""
    user_column = find_column(mappings, CanonicalField.USER_ID)
    revenue_column = find_column(mappings, CanonicalField.REVENUE)

    total_users = 0
    if user_column is not None:
        total_users = len({str(r.get(user_column)) for r in dataset.rows if r.get(user_column) not in (None, '')})
    total_revenue = 0.0
    if revenue_column is not None:
        total_revenue = sum(v for v in (to_float(r.get(revenue_column)) for r in dataset.rows) if v is not None)

    return DataSnapshot(
        totalUsers=total_users,
        totalRevenue=round(total_revenue, 2),
        rowCount=len(dataset.rows),
        dateRange=time_range,
    )


class AnalysisPipeline:
    """
    Args:
        mapper: Column mapper (classifier-first or fallback-only).
        detector: Anomaly detector.
        cohort_engine: Cohort engine.
        orchestrator: Optional orchestrator for provider-backed insights.
    """

    def __init__(
        self,
        mapper: SemanticColumnMapper,
        detector: AnomalyDetector,
        cohort_engine: CohortEngine,
        orchestrator: Optional[InsightOrchestrator] = None,
    ):
        self.mapper = mapper
        self.detector = detector
        self.cohort_engine = cohort_engine
        self.orchestrator = orchestrator

    async def run(
        self,
        dataset: Dataset,
        cohort_definition: Optional[CohortDefinition] = None,
        generate_insights: bool = True,
        detection_config: Optional[DetectionConfig] = None,
        now: Optional[datetime] = None,
    ) -> PipelineResult:
        warnings: List[str] = []

        column_analysis = await self.mapper.map_columns(dataset.headers, list(dataset.rows[:MAPPER_SAMPLE_ROWS]))
        warnings.extend(column_analysis.warnings)
        mappings = column_analysis.columns

        detector = AnomalyDetector(detection_config) if detection_config is not None else self.detector
        anomalies = detector.detect(dataset, mappings)
        if not anomalies.metricsAnalyzed:
            warnings.append('No metric columns found for anomaly detection')

        cohorts = self.cohort_engine.analyze(dataset, mappings, cohort_definition, now=now)
        if not cohorts.cohorts:
            warnings.append('Cohort analysis produced no cohorts')

        insights: Optional[InsightGenerationResult] = None
        if generate_insights:
            insights = await self._generate_insights(column_analysis, anomalies, cohorts, dataset, warnings)

        return PipelineResult(
            columnAnalysis=column_analysis,
            anomalies=anomalies,
            cohorts=cohorts,
            insights=insights,
            warnings=warnings,
        )

    async def _generate_insights(self, column_analysis, anomalies, cohorts, dataset, warnings: List[str]) -> InsightGenerationResult:
        if self.orchestrator is None or not self.orchestrator.is_available:
            warnings.append('Completion provider not configured; insights generated deterministically')
            return build_fallback_insights(anomalies.anomalies, cohorts.comparison)

        context = InsightContext(
            gameType=column_analysis.gameType,
            columnMappings=column_analysis.columns,
            anomalies=anomalies.anomalies,
            cohortComparison=cohorts.comparison,
            dataSnapshot=build_data_snapshot(dataset, column_analysis.columns, anomalies.timeRange),
        )
        try:
            return await self.orchestrator.generate_insights(context)
        except LLMError as e:
            logger.warning("Insight generation failed, using deterministic insights: %s", e)
            warnings.append(f"Insight generation failed ({e.code.value}); insights generated deterministically")
            return build_fallback_insights(anomalies.anomalies, cohorts.comparison)
