"""
FastAPI router module for game analytics endpoints.

This module exposes each analysis operation as a JSON endpoint:
- Column mapping: classify dataset headers into canonical fields
- Anomaly detection: spikes, drops and trend changes per metric
- Cohort analysis: retention, revenue and conversion per cohort
- Insights: provider-backed insight generation for an analysis context
- Query: natural-language questions over a dataset
- Run: the full pipeline in one call
- LLM status: rate-limit window and cache statistics

Requests carry the dataset inline. Mappings are optional on every endpoint;
when omitted they are derived with the column mapper first.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence

from fastapi import APIRouter, HTTPException

from game_insights.core.dependencies import (
    AnomalyDetectorDep,
    CohortEngineDep,
    ColumnMapperDep,
    OrchestratorDep,
    PipelineDep,
    QueryEngineDep,
)
from game_insights.models import (
    AnomalyDetectionRequest,
    AnomalyDetectionResult,
    CohortAnalysisRequest,
    CohortAnalysisResult,
    ColumnAnalysisRequest,
    ColumnMapping,
    Dataset,
    GameType,
    InsightGenerationResult,
    InsightRequest,
    PipelineRequest,
    PipelineResult,
    QueryRequest,
    QuestionResult,
    SchemaAnalysisResult,
)
from game_insights.services.anomaly_detection import AnomalyDetector
from game_insights.services.column_mapping import SemanticColumnMapper
from game_insights.services.completion_provider import (
    ApiKeyMissingError,
    AuthInvalidError,
    LLMError,
)
from game_insights.services.pipeline import MAPPER_SAMPLE_ROWS

# Configure logging
logger = logging.getLogger(__name__)

# Create router with prefix and tags for OpenAPI documentation
router = APIRouter(prefix="/analysis", tags=["analysis"])


# =============================================================================
# Helper Functions
# =============================================================================


async def _resolve_mappings(
    mapper: SemanticColumnMapper,
    dataset: Dataset,
    mappings: Optional[Sequence[ColumnMapping]],
) -> List[ColumnMapping]:
    """Use the caller's mappings, or derive them from the dataset headers."""
    if mappings:
        return list(mappings)
    analysis = await mapper.map_columns(dataset.headers, list(dataset.rows[:MAPPER_SAMPLE_ROWS]))
    return analysis.columns


def _llm_http_exception(error: LLMError) -> HTTPException:
    """
    Translate a provider failure into an HTTP error.

    Missing or rejected credentials mean the service is not usable (503);
    everything else is an upstream failure (502).
    """
    if isinstance(error, (ApiKeyMissingError, AuthInvalidError)):
        return HTTPException(status_code=503, detail=str(error))
    return HTTPException(status_code=502, detail=str(error))


# =============================================================================
# Column Mapping
# =============================================================================


@router.post("/columns", response_model=SchemaAnalysisResult)
async def analyze_columns(request: ColumnAnalysisRequest, mapper: ColumnMapperDep) -> SchemaAnalysisResult:
    """
    Map every dataset header to a canonical field.

    Set useClassifier=false to skip the provider and use alias matching only.
    """
    dataset = request.dataset
    sample_rows = list(dataset.rows[:MAPPER_SAMPLE_ROWS])
    if not request.useClassifier:
        return mapper.fallback_analysis(dataset.headers, sample_rows)
    return await mapper.map_columns(dataset.headers, sample_rows)


# =============================================================================
# Anomaly Detection
# =============================================================================


@router.post("/anomalies", response_model=AnomalyDetectionResult)
async def detect_anomalies(
    request: AnomalyDetectionRequest,
    mapper: ColumnMapperDep,
    detector: AnomalyDetectorDep,
) -> AnomalyDetectionResult:
    """Detect anomalies, using the request config when given."""
    mappings = await _resolve_mappings(mapper, request.dataset, request.mappings)
    if request.config is not None:
        detector = AnomalyDetector(request.config)
    return detector.detect(request.dataset, mappings)


# =============================================================================
# Cohort Analysis
# =============================================================================


@router.post("/cohorts", response_model=CohortAnalysisResult)
async def analyze_cohorts(
    request: CohortAnalysisRequest,
    mapper: ColumnMapperDep,
    cohort_engine: CohortEngineDep,
) -> CohortAnalysisResult:
    mappings = await _resolve_mappings(mapper, request.dataset, request.mappings)
    return cohort_engine.analyze(request.dataset, mappings, request.definition, now=request.now)


# =============================================================================
# Insights
# =============================================================================


@router.post("/insights", response_model=InsightGenerationResult)
async def generate_insights(request: InsightRequest, orchestrator: OrchestratorDep) -> InsightGenerationResult:
    """
    Generate insights through the completion provider.

    Raises:
        HTTPException 503: No provider configured or credentials rejected
        HTTPException 502: Any other provider or contract failure
    """
    try:
        return await orchestrator.generate_insights(request.context)
    except LLMError as e:
        logger.warning("Insight generation failed: %s", e)
        raise _llm_http_exception(e) from e


# =============================================================================
# Question Answering
# =============================================================================


@router.post("/query", response_model=QuestionResult)
async def ask_question(
    request: QueryRequest,
    mapper: ColumnMapperDep,
    query_engine: QueryEngineDep,
) -> QuestionResult:
    mappings = await _resolve_mappings(mapper, request.dataset, request.mappings)
    return await query_engine.ask(request.question, request.dataset, mappings, request.gameType)


@router.get("/query/suggestions", response_model=List[str])
async def get_suggested_questions(query_engine: QueryEngineDep, game_type: GameType = GameType.CUSTOM) -> List[str]:
    return query_engine.get_suggested_questions(game_type)


@router.get("/query/history", response_model=List[str])
async def get_query_history(query_engine: QueryEngineDep) -> List[str]:
    return query_engine.get_history()


@router.delete("/query/history")
async def clear_query_history(query_engine: QueryEngineDep) -> Dict[str, Any]:
    query_engine.clear_history()
    return {"cleared": True}


# =============================================================================
# Full Pipeline
# =============================================================================


@router.post("/run", response_model=PipelineResult)
async def run_pipeline(request: PipelineRequest, pipeline: PipelineDep) -> PipelineResult:
    """Run mapping, anomaly detection, cohorts and insights in one call."""
    logger.info("Pipeline run requested: %d rows", len(request.dataset.rows))
    return await pipeline.run(
        request.dataset,
        cohort_definition=request.cohortDefinition,
        generate_insights=request.generateInsights,
        detection_config=request.detectionConfig,
    )


# =============================================================================
# LLM Status
# =============================================================================


@router.get("/llm/status")
async def get_llm_status(orchestrator: OrchestratorDep) -> Dict[str, Any]:
    """
    Report provider availability, the rate-limit window and cache statistics.

    Returns:
        Dict with 'available', 'rateLimit' and 'cache'
    """
    return {
        "available": orchestrator.is_available,
        "rateLimit": orchestrator.rate_limit_status().model_dump(),
        "cache": orchestrator.cache_stats().model_dump(),
    }


@router.delete("/llm/cache")
async def clear_llm_cache(orchestrator: OrchestratorDep) -> Dict[str, Any]:
    orchestrator.clear_cache()
    logger.info("Response cache cleared")
    return {"cleared": True}
