"""
Game Insights Package.

Analytics service for game telemetry datasets: maps arbitrary column names to
canonical fields, detects metric anomalies, builds retention cohorts, and
turns the results into prioritized insights and answers to questions.

Subpackages:
    - api: FastAPI route handlers
    - core: Configuration and dependency injection
    - models: Pydantic schemas and enums
    - services: Analytics and provider-orchestration services
"""

__version__ = "0.1.0"
