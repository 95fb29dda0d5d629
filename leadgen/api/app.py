"""
FastAPI application exposing the pipeline callback surface.

Run with:
    uvicorn leadgen.api.app:app
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from leadgen.common.config import Config
from leadgen.common.logger import setup_logging
from leadgen.services.pipeline_factory import PipelineServices, create_pipeline

from .routes import router

logger = logging.getLogger(__name__)


def create_app(services: Optional[PipelineServices] = None) -> FastAPI:
    """
    Args:
        services: Pre-built services (tests); built from Config at startup otherwise
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if getattr(app.state, "services", None) is None:
            setup_logging(Config.LOG_LEVEL, Config.LOG_FORMAT)
            Config.validate()
            logger.info(Config.summary())
            app.state.services = create_pipeline()
        yield
        await app.state.services.dispatcher.drain()

    app = FastAPI(title="Lead Generation Pipeline", version="0.1.0", lifespan=lifespan)
    app.state.services = services
    app.include_router(router)

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    return app


app = create_app()
