"""
FastAPI application entry point for the Game Insights API.

This module configures logging, registers the analysis router and owns the
lifecycle of the completion provider's HTTP client.

Run locally:
    uvicorn game_insights.main:app --reload
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from game_insights.api.analysis import router as analysis_router
from game_insights.core.config import get_settings
from game_insights.core.dependencies import get_completion_provider

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Lifespan context manager for application startup and shutdown.

    On startup:
        - Log whether a completion provider is configured

    On shutdown:
        - Close the provider's HTTP client
    """
    settings = get_settings()
    if settings.openai_api_key:
        logger.info("Game Insights API starting (model=%s)", settings.llm_model)
    else:
        logger.info("Game Insights API starting without a completion provider; deterministic mode only")

    yield

    logger.info("Game Insights API shutting down")
    provider = get_completion_provider()
    if provider is not None:
        await provider.aclose()
        logger.info("Completion provider client closed")


# Create FastAPI application
app = FastAPI(
    title="Game Insights API",
    version="0.1.0",
    description=(
        "Analytics for game telemetry: column mapping, anomaly detection, "
        "cohort retention, provider-backed insights and natural-language questions."
    ),
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(analysis_router)  # Has its own /analysis prefix


@app.get("/health")
async def health_check():
    """
    Health check endpoint for monitoring and load balancer probes.

    Returns:
        Dict with status 'healthy'
    """
    return {"status": "healthy"}


@app.get("/")
async def root():
    return {
        "name": "Game Insights API",
        "version": "0.1.0",
        "docs": "/docs",
        "openapi": "/openapi.json",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "game_insights.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
