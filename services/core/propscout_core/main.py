"""PropScout Core API - Main Application."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from propscout_core.api.middleware import RequestLoggingMiddleware
from propscout_core.api.routes import account as account_routes
from propscout_core.api.routes import pipeline as pipeline_routes
from propscout_core.api.routes import preferences as preferences_routes
from propscout_core.api.routes import sessions as sessions_routes
from propscout_core.config import get_settings
from propscout_core.observability import configure_logging, get_logger

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    # Startup
    settings = get_settings()
    configure_logging(
        level=settings.log_level,
        json_format=settings.log_json,
        service_name="propscout-core",
    )
    app.state.settings = settings
    if not settings.openai_api_key:
        logger.warning("No AI credential configured; AI stages will fail")
    yield
    # Shutdown


settings = get_settings()

app = FastAPI(
    title="PropScout Core API",
    description="Staged enrichment of UK property listings with quota-metered AI analysis",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(RequestLoggingMiddleware)

# Include API routers
app.include_router(account_routes.router)
app.include_router(pipeline_routes.router)
app.include_router(preferences_routes.router)
app.include_router(sessions_routes.router)


@app.get("/healthz")
async def health_check() -> dict:
    """Health check endpoint."""
    return {"ok": True, "service": "propscout-core"}


@app.get("/")
async def root() -> dict:
    """Root endpoint."""
    return {
        "name": "PropScout Core API",
        "version": "0.1.0",
        "status": "running",
    }
