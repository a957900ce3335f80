"""
Core infrastructure package.

Provides:
- Configuration management via pydantic-settings
- Process-wide service construction and FastAPI dependency injection

Simplified imports:

    from game_insights.core import get_settings, OrchestratorDep, PipelineDep
"""

# =============================================================================
# Re-exports from game_insights.core.config
# =============================================================================
from game_insights.core.config import Settings, get_settings

# =============================================================================
# Re-exports from game_insights.core.dependencies
# =============================================================================
from game_insights.core.dependencies import (
    get_settings_dependency,
    get_orchestrator,
    get_column_mapper,
    get_anomaly_detector,
    get_cohort_engine,
    get_query_engine,
    get_pipeline,
    reset_services,
    SettingsDep,
    OrchestratorDep,
    ColumnMapperDep,
    AnomalyDetectorDep,
    CohortEngineDep,
    QueryEngineDep,
    PipelineDep,
)


__all__ = [
    # Configuration management (from config.py)
    'Settings',
    'get_settings',
    # Service providers (from dependencies.py)
    'get_settings_dependency',
    'get_orchestrator',
    'get_column_mapper',
    'get_anomaly_detector',
    'get_cohort_engine',
    'get_query_engine',
    'get_pipeline',
    'reset_services',
    # Dependency aliases
    'SettingsDep',
    'OrchestratorDep',
    'ColumnMapperDep',
    'AnomalyDetectorDep',
    'CohortEngineDep',
    'QueryEngineDep',
    'PipelineDep',
]
