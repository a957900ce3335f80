"""
Tests for the FastAPI analysis endpoints.

Services are replaced through app.dependency_overrides so no test reaches
a real completion provider or depends on environment settings.
"""

from typing import Any, Dict, Iterator

import pytest
from fastapi.testclient import TestClient

from game_insights.core.dependencies import (
    get_anomaly_detector,
    get_cohort_engine,
    get_column_mapper,
    get_orchestrator,
    get_pipeline,
    get_query_engine,
)
from game_insights.main import app
from game_insights.services.anomaly_detection import AnomalyDetector
from game_insights.services.cohorts import CohortEngine
from game_insights.services.column_mapping import SemanticColumnMapper
from game_insights.services.completion_provider import ProviderFaultError
from game_insights.services.insight_orchestrator import InsightOrchestrator
from game_insights.services.pipeline import AnalysisPipeline
from game_insights.services.query_engine import QueryEngine
from game_insights.tests.conftest import FakeProvider


pytestmark = pytest.mark.api


@pytest.fixture
def client(orchestrator: InsightOrchestrator) -> Iterator[TestClient]:
    mapper = SemanticColumnMapper(classifier=None)
    detector = AnomalyDetector()
    cohort_engine = CohortEngine()
    query_engine = QueryEngine(orchestrator)
    pipeline = AnalysisPipeline(mapper, detector, cohort_engine, orchestrator=None)

    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    app.dependency_overrides[get_column_mapper] = lambda: mapper
    app.dependency_overrides[get_anomaly_detector] = lambda: detector
    app.dependency_overrides[get_cohort_engine] = lambda: cohort_engine
    app.dependency_overrides[get_query_engine] = lambda: query_engine
    app.dependency_overrides[get_pipeline] = lambda: pipeline
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def dataset_json(dataset) -> Dict[str, Any]:
    return dataset.model_dump(mode='json')


class TestHealth:

    def test_health(self, client: TestClient) -> None:
        response = client.get('/health')

        assert response.status_code == 200
        assert response.json() == {'status': 'healthy'}


class TestAnalysisEndpoints:

    def test_columns_without_classifier(self, client: TestClient, spike_dataset) -> None:
        response = client.post('/analysis/columns', json={'dataset': dataset_json(spike_dataset), 'useClassifier': False})

        assert response.status_code == 200
        body = response.json()
        assert [c['canonical'] for c in body['columns']] == ['user_id', 'timestamp', 'revenue']
        assert body['usedClassifier'] is False

    def test_anomalies_derive_mappings(self, client: TestClient, spike_dataset) -> None:
        response = client.post('/analysis/anomalies', json={'dataset': dataset_json(spike_dataset)})

        assert response.status_code == 200
        anomalies = response.json()['anomalies']
        assert len(anomalies) == 1
        assert anomalies[0]['type'] == 'spike'
        assert anomalies[0]['severity'] == 'critical'

    def test_anomalies_honor_request_config(self, client: TestClient, spike_dataset) -> None:
        payload = {'dataset': dataset_json(spike_dataset), 'config': {'metrics': ['active_users']}}

        response = client.post('/analysis/anomalies', json=payload)

        assert response.status_code == 200
        assert response.json()['metricsAnalyzed'] == ['active_users']
        assert response.json()['anomalies'] == []

    def test_cohorts_with_reference_time(self, client: TestClient, cohort_dataset) -> None:
        payload = {
            'dataset': dataset_json(cohort_dataset),
            'definition': {'dimension': 'install_date', 'granularity': 'week'},
            'now': '2024-03-01T00:00:00Z',
        }

        response = client.post('/analysis/cohorts', json=payload)

        assert response.status_code == 200
        cohort = response.json()['cohorts'][0]
        assert cohort['value'] == '2024-W01'
        assert cohort['retention']['D7'] == 40.0

    def test_query_fast_path(self, client: TestClient, small_dataset, fake_provider: FakeProvider) -> None:
        response = client.post('/analysis/query', json={'dataset': dataset_json(small_dataset), 'question': 'How many users?'})

        assert response.status_code == 200
        answer = response.json()['answer']
        assert answer['source'] == 'computed'
        assert answer['value'] == 3
        assert fake_provider.call_count == 0

    def test_query_rejects_empty_question(self, client: TestClient, small_dataset) -> None:
        response = client.post('/analysis/query', json={'dataset': dataset_json(small_dataset), 'question': ''})

        assert response.status_code == 422

    def test_query_history(self, client: TestClient, small_dataset) -> None:
        client.post('/analysis/query', json={'dataset': dataset_json(small_dataset), 'question': 'How many rows?'})

        assert client.get('/analysis/query/history').json() == ['How many rows?']
        assert client.delete('/analysis/query/history').json() == {'cleared': True}
        assert client.get('/analysis/query/history').json() == []

    def test_suggested_questions(self, client: TestClient) -> None:
        response = client.get('/analysis/query/suggestions', params={'game_type': 'puzzle'})

        assert response.status_code == 200
        assert len(response.json()) > 0

    def test_run_pipeline(self, client: TestClient, spike_dataset) -> None:
        response = client.post('/analysis/run', json={'dataset': dataset_json(spike_dataset)})

        assert response.status_code == 200
        body = response.json()
        assert body['insights']['fallbackUsed'] is True
        assert body['anomalies']['anomalies'][0]['metric'] == 'revenue'


class TestInsightEndpoint:

    def test_insights_from_provider(self, client: TestClient) -> None:
        response = client.post('/analysis/insights', json={'context': {'gameType': 'puzzle'}})

        assert response.status_code == 200
        body = response.json()
        assert body['llmUsed'] is True
        assert body['insights'][0]['priority'] == 9

    def test_missing_provider_is_503(self, client: TestClient) -> None:
        app.dependency_overrides[get_orchestrator] = lambda: InsightOrchestrator(provider=None)

        response = client.post('/analysis/insights', json={'context': {}})

        assert response.status_code == 503

    def test_provider_fault_is_502(self, client: TestClient) -> None:
        failing = InsightOrchestrator(FakeProvider([ProviderFaultError('upstream 500', status_code=500)]))
        app.dependency_overrides[get_orchestrator] = lambda: failing

        response = client.post('/analysis/insights', json={'context': {}})

        assert response.status_code == 502
        assert 'PROVIDER_FAULT' in response.json()['detail']


class TestLLMStatus:

    def test_status_and_cache_clear(self, client: TestClient) -> None:
        client.post('/analysis/insights', json={'context': {}})

        status = client.get('/analysis/llm/status').json()
        assert status['available'] is True
        assert status['rateLimit']['limit'] == 20
        assert status['rateLimit']['remaining'] == 19
        assert status['cache']['entries'] == 1

        assert client.delete('/analysis/llm/cache').json() == {'cleared': True}
        assert client.get('/analysis/llm/status').json()['cache']['entries'] == 0
