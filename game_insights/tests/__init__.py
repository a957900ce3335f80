'''
Game Insights Test Suite

Test Modules:
-------------
- test_column_mapping.py: alias matching, type inference, classifier merge
- test_baseline_stats.py: timestamp parsing, bucketing, trailing baselines
- test_anomaly_detection.py: spikes, drops, trend changes, severity
- test_cohorts.py: cohort assignment, retention, comparison
- test_orchestrator.py: provider client, cache, rate limiter, contracts
- test_query_engine.py: fast path, query logic, provider routing
- test_pipeline.py: end-to-end analysis runs
- test_api.py: FastAPI endpoints

Running Tests:
--------------
    pip install -e ".[test]"
    pytest -v

See conftest.py for shared fixtures and test configuration.
'''

__all__ = []
