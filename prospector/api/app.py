"""FastAPI application entry point for Prospector."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from prospector.api.routes import router
from prospector.config.settings import APIConfig, ProspectorConfig
from prospector.jobs.runner import JobRunner

SERVICE_NAME = "prospector"
VERSION = "1.0.0"


def create_app(
    config: ProspectorConfig | None = None,
    api_config: APIConfig | None = None,
    runner: JobRunner | None = None,
) -> FastAPI:
    """Factory function for creating the FastAPI application."""
    config = config or ProspectorConfig()
    api_config = api_config or APIConfig()
    logging.getLogger().setLevel(config.log_level.upper())

    job_runner = runner or JobRunner(config, retention_limit=api_config.job_retention_limit)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        await job_runner.aclose()

    app = FastAPI(
        title="Prospector",
        description="Contractor contact discovery pipeline",
        version=VERSION,
        lifespan=lifespan,
    )
    app.state.runner = job_runner

    app.add_middleware(
        CORSMiddleware,
        allow_origins=api_config.allowed_origins,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(router, prefix="/api/v1")

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        return {"status": "healthy", "service": SERVICE_NAME, "version": VERSION}

    return app
