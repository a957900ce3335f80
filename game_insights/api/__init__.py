"""
API package initialization.

This package contains FastAPI router modules for the Game Insights service:
- analysis: column mapping, anomalies, cohorts, insights, questions and full runs
"""

from fastapi import APIRouter

from game_insights.api.analysis import router as analysis_router

# Create main API router
api_router = APIRouter()
api_router.include_router(analysis_router)  # analysis router has its own prefix

__all__ = [
    "api_router",
    "analysis_router",
]
