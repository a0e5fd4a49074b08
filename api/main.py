"""Watercolor Render FastAPI Application"""

import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import AsyncGenerator, Optional

from dotenv import load_dotenv
load_dotenv()  # Load .env file

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from watercolor.billing import BillingStore
from watercolor.render import (
    JobStore,
    JsonFileJobStore,
    MissingCredentialError,
    RenderService,
    WatercolorPipeline,
)
from watercolor.render.config import ServiceConfig
from watercolor.replicate import ImageGenerationClient, ReplicateConfig

from .routes import health, render

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


class ProxyHeadersMiddleware(BaseHTTPMiddleware):
    """Middleware to handle X-Forwarded-Proto for HTTPS redirects behind a reverse proxy."""

    async def dispatch(self, request: Request, call_next):
        if request.headers.get("x-forwarded-proto") == "https":
            request.scope["scheme"] = "https"
        return await call_next(request)


def build_render_service(
    replicate_config: Optional[ReplicateConfig] = None,
    service_config: Optional[ServiceConfig] = None,
) -> RenderService:
    """Build the render service from configuration.

    The service is still built without a Replicate token so status lookups
    keep working; submissions are then rejected with a 503.
    """
    replicate_config = replicate_config or ReplicateConfig.from_env()
    service_config = service_config or ServiceConfig.from_env()

    pipeline = None
    try:
        client = ImageGenerationClient(replicate_config)
        pipeline = WatercolorPipeline(client, replicate_config.models)
    except MissingCredentialError as e:
        logger.warning(f"Replicate not available for renders: {e}")

    if service_config.is_persistent():
        job_store = JsonFileJobStore(service_config.jobs_file)
    else:
        job_store = JobStore()

    if service_config.profiles_file:
        billing = BillingStore.from_file(service_config.profiles_file)
    else:
        billing = BillingStore()

    stale_after = None
    if service_config.is_reconciling():
        stale_after = timedelta(seconds=service_config.stale_after_seconds)

    return RenderService(
        job_store,
        billing,
        pipeline,
        max_workers=service_config.max_workers,
        stale_after=stale_after,
        sweep_interval=service_config.sweep_interval_seconds,
    )


def create_app(render_service: Optional[RenderService] = None) -> FastAPI:
    """Create the API application around a render service."""
    service = render_service or build_render_service()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator:
        """Application lifespan handler."""
        logger.info("Starting Watercolor Render API...")
        await service.start()
        yield
        logger.info("Shutting down Watercolor Render API...")
        await service.stop()

    app = FastAPI(
        title="Watercolor Render",
        description="Tiered watercolor rendering API for interior design images",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.render_service = service

    # Proxy headers middleware (must be added first)
    app.add_middleware(ProxyHeadersMiddleware)

    # CORS middleware for frontend
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

    # Include routers
    app.include_router(health.router, tags=["Health"])
    app.include_router(render.router, prefix="/api/render", tags=["Render"])

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {
            "name": "Watercolor Render",
            "version": "0.1.0",
            "status": "running",
            "docs": "/docs",
        }

    return app


app = create_app()
