"""
Pytest Configuration and Shared Fixtures for Game Insights Tests.

This module provides fixtures and configuration for all tests, supporting:
- Async test execution with pytest-asyncio
- Synthetic event datasets (constant revenue with a spike, weekly cohorts)
- Column mappings matching the alias fallback output
- A scripted completion provider that never touches the network
- A fake monotonic clock whose sleep advances time instantly

Dependencies:
- pytest
- pytest-asyncio
- numpy / pandas (through the services under test)
"""

import asyncio
import json
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Union

import pytest

from game_insights.models import (
    CanonicalField,
    ColumnMapping,
    ColumnRole,
    CompletionRequest,
    CompletionResponse,
    Dataset,
    InferredType,
    TokenUsage,
)
from game_insights.services.completion_provider import BaseCompletionProvider
from game_insights.services.insight_orchestrator import InsightOrchestrator
from game_insights.services.rate_limiter import SlidingWindowRateLimiter
from game_insights.services.response_cache import ResponseCache


# ============================================================
# PYTEST PLUGINS CONFIGURATION
# ============================================================

pytest_plugins: List[str] = ['pytest_asyncio']


# ============================================================
# PYTEST HOOKS
# ============================================================

def pytest_configure(config) -> None:
    """
    Configure custom pytest markers for test organization.

    Custom markers defined:
    - scenario: Marks end-to-end acceptance scenarios
    - api: Marks tests going through the FastAPI application

    Usage:
        pytest -m scenario
        pytest -m "not api"
    """
    config.addinivalue_line(
        'markers',
        'scenario: marks end-to-end acceptance scenarios'
    )
    config.addinivalue_line(
        'markers',
        'api: marks tests exercising the HTTP layer'
    )


# ============================================================
# FAKES
# ============================================================

class FakeClock:
    """
    Manually advanced monotonic clock.

    ``sleep`` advances the clock by the requested delay instead of waiting,
    so rate-limiter backpressure can be tested without real time passing.
    """

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeProvider(BaseCompletionProvider):
    """
    Scripted completion provider.

    Each call pops the next scripted item: a dict/list is serialized to JSON
    content, a string is returned verbatim, an exception is raised. When the
    script is exhausted the last item is repeated.
    """

    name = 'fake'

    def __init__(self, script: Optional[List[Union[Dict[str, Any], str, Exception]]] = None, delay: float = 0.0):
        self.script = list(script or [])
        self.delay = delay
        self.requests: List[CompletionRequest] = []
        self.closed = False

    @property
    def call_count(self) -> int:
        return len(self.requests)

    async def complete(self, request: CompletionRequest) -> CompletionResponse:
        self.requests.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)

        item = self.script.pop(0) if len(self.script) > 1 else self.script[0]
        if isinstance(item, Exception):
            raise item
        content = item if isinstance(item, str) else json.dumps(item)
        return CompletionResponse(
            content=content,
            usage=TokenUsage(promptTokens=100, completionTokens=50, totalTokens=150),
            model='fake-model',
            durationMs=5,
        )

    async def aclose(self) -> None:
        self.closed = True


# ============================================================
# HELPERS
# ============================================================

def make_mapping(
    name: str,
    canonical: CanonicalField,
    role: ColumnRole = ColumnRole.DIMENSION,
    inferred_type: InferredType = InferredType.STRING,
    confidence: float = 1.0,
) -> ColumnMapping:
    return ColumnMapping(
        originalName=name,
        canonical=canonical,
        role=role,
        inferredType=inferred_type,
        confidence=confidence,
        rationale='test fixture',
    )


def valid_insight_payload(**overrides: Any) -> Dict[str, Any]:
    """Minimal insight payload that satisfies the insight contract."""
    payload: Dict[str, Any] = {
        'insights': [
            {
                'type': 'warning',
                'category': 'monetization',
                'title': 'Revenue spike on 2024-01-31',
                'description': 'Revenue jumped far above baseline.',
                'metric': 'revenue',
                'value': 1000,
                'change': 9900,
                'priority': 9,
                'recommendation': 'Check for duplicated purchase events',
                'confidence': 0.9,
                'evidence': ['revenue spiked 9900% above baseline on 2024-01-31'],
            }
        ],
        'summary': 'One critical revenue spike.',
        'topPriority': 'Check for duplicated purchase events',
    }
    payload.update(overrides)
    return payload


# ============================================================
# MAPPING FIXTURES
# ============================================================

@pytest.fixture
def event_mappings() -> List[ColumnMapping]:
    """Mappings for datasets with uid / ts / revenue / level / platform columns."""
    return [
        make_mapping('uid', CanonicalField.USER_ID, ColumnRole.IDENTIFIER),
        make_mapping('ts', CanonicalField.TIMESTAMP, ColumnRole.TIMESTAMP, InferredType.DATE),
        make_mapping('revenue', CanonicalField.REVENUE, ColumnRole.METRIC, InferredType.NUMBER),
        make_mapping('level', CanonicalField.LEVEL, ColumnRole.DIMENSION, InferredType.NUMBER),
        make_mapping('platform', CanonicalField.PLATFORM),
    ]


# ============================================================
# DATASET FIXTURES
# ============================================================

@pytest.fixture
def spike_dataset() -> Dataset:
    """
    30 days of revenue=10 from one user, then a single day at 1000.

    Expected: exactly one critical revenue spike on 2024-01-31 with a
    percent change of +9900%.
    """
    start = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
    rows: List[Dict[str, Any]] = []
    for day in range(30):
        rows.append({'uid': 'u1', 'ts': (start + timedelta(days=day)).isoformat(), 'revenue': 10})
    rows.append({'uid': 'u1', 'ts': (start + timedelta(days=30)).isoformat(), 'revenue': 1000})
    return Dataset(columns=['uid', 'ts', 'revenue'], rows=rows)


@pytest.fixture
def constant_dataset() -> Dataset:
    """45 days of identical revenue values: zero variance."""
    start = datetime(2024, 1, 1, tzinfo=timezone.utc)
    rows = [
        {'uid': 'u1', 'ts': (start + timedelta(days=day)).isoformat(), 'revenue': 5.0}
        for day in range(45)
    ]
    return Dataset(columns=['uid', 'ts', 'revenue'], rows=rows)


@pytest.fixture
def cohort_dataset() -> Dataset:
    """
    50 users first active on Monday 2024-01-01 (ISO week 2024-W01).

    Users u0..u19 come back exactly 7 days later; u20..u49 never return.
    Users u0..u4 spend 4.99 on day one.
    """
    first_day = datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)
    rows: List[Dict[str, Any]] = []
    for n in range(50):
        rows.append({
            'uid': f'u{n}',
            'ts': first_day.isoformat(),
            'revenue': 4.99 if n < 5 else 0,
            'platform': 'ios' if n % 2 == 0 else 'android',
        })
    for n in range(20):
        rows.append({
            'uid': f'u{n}',
            'ts': (first_day + timedelta(days=7, hours=3)).isoformat(),
            'revenue': 0,
            'platform': 'ios' if n % 2 == 0 else 'android',
        })
    return Dataset(columns=['uid', 'ts', 'revenue', 'platform'], rows=rows)


@pytest.fixture
def analysis_now() -> datetime:
    """Reference time far enough after the cohort fixture for every horizon."""
    return datetime(2024, 3, 1, tzinfo=timezone.utc)


@pytest.fixture
def small_dataset() -> Dataset:
    """A handful of rows for the query engine fast path and executor."""
    rows = [
        {'uid': 'u1', 'ts': '2024-01-01T10:00:00Z', 'revenue': 1.99, 'level': 3, 'platform': 'ios'},
        {'uid': 'u1', 'ts': '2024-01-02T10:00:00Z', 'revenue': 0, 'level': 5, 'platform': 'ios'},
        {'uid': 'u2', 'ts': '2024-01-01T11:00:00Z', 'revenue': 4.99, 'level': 2, 'platform': 'android'},
        {'uid': 'u3', 'ts': '2024-01-03T12:00:00Z', 'revenue': 0, 'level': 7, 'platform': 'android'},
    ]
    return Dataset(columns=['uid', 'ts', 'revenue', 'level', 'platform'], rows=rows)


# ============================================================
# SERVICE FIXTURES
# ============================================================

@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_provider() -> FakeProvider:
    return FakeProvider([valid_insight_payload()])


@pytest.fixture
def orchestrator(fake_provider: FakeProvider, fake_clock: FakeClock) -> InsightOrchestrator:
    """Orchestrator wired to the fake provider, a fake-clock cache and limiter."""
    return InsightOrchestrator(
        provider=fake_provider,
        cache=ResponseCache(ttl_seconds=1800, clock=fake_clock),
        rate_limiter=SlidingWindowRateLimiter(max_requests=20, window_seconds=60, clock=fake_clock, sleep=fake_clock.sleep),
        timeout_seconds=5.0,
    )
