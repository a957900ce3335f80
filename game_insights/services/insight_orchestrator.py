"""
Insight Orchestrator.

Resilient wrapper around a nondeterministic completion provider. Every
provider-backed feature (insights, question answering, column classification)
goes through ``complete_validated``:

    1. Render the prompt and hash it into a cache key.
    2. Cache hit: revalidate the stored payload and return it (zero tokens).
    3. Acquire a slot from the sliding-window rate limiter (may wait).
    4. Call the provider under a deadline (asyncio.wait_for).
    5. Parse the JSON and validate it against its contract.
    6. Store the validated payload in the cache.

Errors surface as LLMError subclasses; callers decide on a deterministic
fallback. ``build_fallback_insights`` is the fallback for insight generation.

Usage:
    from game_insights.services.insight_orchestrator import InsightOrchestrator

    orchestrator = InsightOrchestrator(provider, cache, rate_limiter, timeout_seconds=30)
    result = await orchestrator.generate_insights(context)

Dependencies:
    - asyncio for the call deadline
    - game_insights.services.{completion_provider, response_cache, rate_limiter,
      contracts, prompts}
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Generic, List, Optional, Sequence, TypeVar

from game_insights.models.enums import (
    AnomalyKind,
    AnomalySeverity,
    InsightCategory,
    InsightType,
    ResponseFormat,
)
from game_insights.models.schemas import (
    Anomaly,
    CacheStats,
    CohortComparison,
    CompletionRequest,
    InsightContext,
    InsightGenerationResult,
    InsightResponse,
    LLMInsight,
    QAContext,
    QAResponse,
    RateLimitStatus,
    SchemaAnalysisResult,
)
from game_insights.services.anomaly_detection import metric_category
from game_insights.services.completion_provider import (
    ApiKeyMissingError,
    BaseCompletionProvider,
    ProviderTimeoutError,
    SchemaMismatchError,
)
from game_insights.services.contracts import (
    parse_json_content,
    validate_insight_response,
    validate_qa_response,
    validate_schema_analysis,
)
from game_insights.services.prompts import (
    CLASSIFIER_SYSTEM_PROMPT,
    INSIGHT_SYSTEM_PROMPT,
    QA_SYSTEM_PROMPT,
    build_classifier_user_prompt,
    build_insight_user_prompt,
    build_qa_user_prompt,
)
from game_insights.services.rate_limiter import SlidingWindowRateLimiter
from game_insights.services.response_cache import ResponseCache, cache_key


logger = logging.getLogger(__name__)

T = TypeVar('T')


# =============================================================================
# Request Options
# =============================================================================

INSIGHT_TEMPERATURE: float = 0.3
INSIGHT_MAX_TOKENS: int = 2000

QA_TEMPERATURE: float = 0.4
QA_MAX_TOKENS: int = 1500

CLASSIFIER_TEMPERATURE: float = 0.2
CLASSIFIER_MAX_TOKENS: int = 2000


@dataclass
class ValidatedCompletion(Generic[T]):
    """A contract-validated provider payload and how it was obtained."""
    value: T
    cached: bool
    tokens_used: int = 0
    model: str = ''


class InsightOrchestrator:
    """
    Args:
        provider: Completion provider, or None when no provider is configured.
        cache: Response cache, or None to disable caching.
        rate_limiter: Shared sliding-window limiter.
        timeout_seconds: Deadline for a single provider call.
    """

    def __init__(
        self,
        provider: Optional[BaseCompletionProvider],
        cache: Optional[ResponseCache] = None,
        rate_limiter: Optional[SlidingWindowRateLimiter] = None,
        timeout_seconds: float = 30.0,
    ):
        self.provider = provider
        self.cache = cache
        self.rate_limiter = rate_limiter or SlidingWindowRateLimiter()
        self.timeout_seconds = timeout_seconds

    @property
    def is_available(self) -> bool:
        return self.provider is not None

    # =========================================================================
    # Core Call Path
    # =========================================================================

    async def complete_validated(
        self,
        system_prompt: str,
        user_prompt: str,
        validator: Callable[[Any], T],
        temperature: float = INSIGHT_TEMPERATURE,
        max_tokens: int = INSIGHT_MAX_TOKENS,
        response_format: ResponseFormat = ResponseFormat.JSON,
    ) -> ValidatedCompletion[T]:
        """
        Cache, rate-limit, call, parse and validate one completion.

        Raises:
            ApiKeyMissingError: No provider configured.
            ProviderTimeoutError: The deadline expired.
            SchemaMismatchError: The payload violated its contract.
            LLMError: Any other provider failure.
        """
        if self.provider is None:
            raise ApiKeyMissingError('No completion provider configured')

        request = CompletionRequest(
            systemPrompt=system_prompt,
            userPrompt=user_prompt,
            temperature=temperature,
            maxResponseTokens=max_tokens,
            responseFormat=response_format,
        )
        key = cache_key(request)

        if self.cache is not None:
            entry = self.cache.get(key)
            if entry is not None:
                try:
                    value = validator(parse_json_content(entry.serializedResponse))
                except SchemaMismatchError:
                    logger.warning("Cached payload %s failed revalidation; refetching", key[:12])
                else:
                    logger.debug("Response cache hit %s", key[:12])
                    return ValidatedCompletion(value=value, cached=True, tokens_used=0)

        await self.rate_limiter.acquire()

        try:
            response = await asyncio.wait_for(self.provider.complete(request), timeout=self.timeout_seconds)
        except asyncio.TimeoutError as e:
            raise ProviderTimeoutError(f'Provider call exceeded {self.timeout_seconds}s deadline') from e

        value = validator(parse_json_content(response.content))

        if self.cache is not None:
            self.cache.set(key, response.content, token_cost=response.usage.totalTokens)

        logger.info(
            "Provider call completed: model=%s tokens=%d duration=%dms",
            response.model, response.usage.totalTokens, response.durationMs,
        )
        return ValidatedCompletion(
            value=value,
            cached=False,
            tokens_used=response.usage.totalTokens,
            model=response.model,
        )

    # =========================================================================
    # Operations
    # =========================================================================

    async def generate_insights(self, context: InsightContext) -> InsightGenerationResult:
        """Generate validated insights for an analysis context."""
        completion: ValidatedCompletion[InsightResponse] = await self.complete_validated(
            INSIGHT_SYSTEM_PROMPT,
            build_insight_user_prompt(context),
            validate_insight_response,
            temperature=INSIGHT_TEMPERATURE,
            max_tokens=INSIGHT_MAX_TOKENS,
        )
        payload = completion.value
        return InsightGenerationResult(
            insights=payload.insights,
            summary=payload.summary,
            topPriority=payload.topPriority,
            generatedAt=datetime.now(timezone.utc),
            llmUsed=not completion.cached,
            cached=completion.cached,
            fallbackUsed=False,
            tokensUsed=completion.tokens_used,
        )

    async def answer_question(self, question: str, context: QAContext) -> ValidatedCompletion[QAResponse]:
        """Answer a natural-language question about the dataset."""
        return await self.complete_validated(
            QA_SYSTEM_PROMPT,
            build_qa_user_prompt(question, context),
            validate_qa_response,
            temperature=QA_TEMPERATURE,
            max_tokens=QA_MAX_TOKENS,
        )

    async def classify_columns(self, headers: List[str], sample_rows: List[Dict[str, Any]]) -> SchemaAnalysisResult:
        """Classify dataset headers into canonical fields."""
        completion: ValidatedCompletion[SchemaAnalysisResult] = await self.complete_validated(
            CLASSIFIER_SYSTEM_PROMPT,
            build_classifier_user_prompt(headers, sample_rows),
            validate_schema_analysis,
            temperature=CLASSIFIER_TEMPERATURE,
            max_tokens=CLASSIFIER_MAX_TOKENS,
        )
        return completion.value

    # =========================================================================
    # Shared State
    # =========================================================================

    def cache_stats(self) -> CacheStats:
        if self.cache is None:
            return CacheStats(entries=0, totalTokens=0)
        return self.cache.stats()

    def clear_cache(self) -> None:
        if self.cache is not None:
            self.cache.clear()

    def rate_limit_status(self) -> RateLimitStatus:
        return self.rate_limiter.status()


# =============================================================================
# Deterministic Fallback
# =============================================================================

_SEVERITY_PRIORITY: Dict[AnomalySeverity, int] = {
    AnomalySeverity.CRITICAL: 9,
    AnomalySeverity.HIGH: 7,
    AnomalySeverity.MEDIUM: 5,
    AnomalySeverity.LOW: 3,
}

_CATEGORY_BY_METRIC_GROUP: Dict[str, InsightCategory] = {
    'revenue': InsightCategory.MONETIZATION,
    'dau': InsightCategory.ENGAGEMENT,
    'retention': InsightCategory.RETENTION,
    'engagement': InsightCategory.ENGAGEMENT,
    'error': InsightCategory.QUALITY,
}

FALLBACK_MAX_ANOMALY_INSIGHTS: int = 5
FALLBACK_CONFIDENCE: float = 0.6


def _anomaly_insight(anomaly: Anomaly) -> LLMInsight:
    group = metric_category(anomaly.metric)
    category = _CATEGORY_BY_METRIC_GROUP.get(group, InsightCategory.PROGRESSION)

    if anomaly.type == AnomalyKind.DROP:
        insight_type = InsightType.NEGATIVE
    elif anomaly.type == AnomalyKind.SPIKE:
        insight_type = InsightType.OPPORTUNITY if group in ('revenue', 'dau') else InsightType.WARNING
    else:
        insight_type = InsightType.POSITIVE if anomaly.percentChange > 0 else InsightType.NEGATIVE

    label = anomaly.type.value.replace('_', ' ')
    recommendation = None
    if anomaly.possibleCauses:
        recommendation = f"Check whether this was caused by: {anomaly.possibleCauses[0].lower()}"

    return LLMInsight(
        type=insight_type,
        category=category,
        title=f"{anomaly.metric} {label} on {anomaly.bucketKey}"[:60],
        description=anomaly.description,
        metric=anomaly.metric,
        value=anomaly.observedValue,
        change=anomaly.percentChange,
        priority=_SEVERITY_PRIORITY[anomaly.severity],
        recommendation=recommendation,
        confidence=FALLBACK_CONFIDENCE,
        evidence=[
            f"Observed {anomaly.observedValue} vs expected {anomaly.expectedValue}",
            f"Severity {anomaly.severity.value}, z-score {anomaly.zScore}",
        ],
    )


def build_fallback_insights(
    anomalies: Sequence[Anomaly],
    cohort_comparison: Optional[CohortComparison] = None,
) -> InsightGenerationResult:
    """
    Deterministic insights from detector and cohort output.

    Used whenever the provider pass fails, so the pipeline always has
    something to show.
    """
    insights: List[LLMInsight] = [_anomaly_insight(a) for a in list(anomalies)[:FALLBACK_MAX_ANOMALY_INSIGHTS]]

    if cohort_comparison is not None:
        best, worst = cohort_comparison.bestCohort, cohort_comparison.worstCohort
        if best is not None and worst is not None:
            insights.append(LLMInsight(
                type=InsightType.OPPORTUNITY,
                category=InsightCategory.RETENTION,
                title='Retention gap between cohorts',
                description=(
                    f"{best.name} retains {best.value}% at D7 while {worst.name} retains {worst.value}%."
                ),
                metric='D7 Retention',
                value=best.value,
                change=round(best.value - worst.value, 2),
                priority=6,
                recommendation=f"Compare onboarding and acquisition sources of {best.name} and {worst.name}",
                confidence=FALLBACK_CONFIDENCE,
                evidence=list(cohort_comparison.insights),
            ))
        d7 = cohort_comparison.avgRetention.get('D7', 0.0)
        if d7 > 0:
            insights.append(LLMInsight(
                type=InsightType.NEUTRAL,
                category=InsightCategory.RETENTION,
                title=f"Average D7 retention is {d7}%",
                description=f"Across cohorts with eligible users, average D7 retention is {d7}%.",
                metric='D7 Retention',
                value=d7,
                priority=4,
                confidence=FALLBACK_CONFIDENCE,
            ))

    if not insights:
        insights.append(LLMInsight(
            type=InsightType.NEUTRAL,
            category=InsightCategory.QUALITY,
            title='No significant changes detected',
            description='Metrics stayed within their normal range for the analyzed period.',
            priority=2,
            confidence=FALLBACK_CONFIDENCE,
        ))

    insights.sort(key=lambda i: i.priority, reverse=True)
    top = insights[0]
    return InsightGenerationResult(
        insights=insights,
        summary=(
            f"Deterministic analysis found {len(anomalies)} anomaly(ies); "
            f"{len(insights)} insight(s) generated without the completion provider."
        ),
        topPriority=top.recommendation or top.title,
        generatedAt=datetime.now(timezone.utc),
        llmUsed=False,
        cached=False,
        fallbackUsed=True,
        tokensUsed=0,
    )
