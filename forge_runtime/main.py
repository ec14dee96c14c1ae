"""
Prompt Forge Runtime - Main Entry Point

HTTP service that executes studio prompts against OpenAI, Gemini or a
local Ollama server, with live telemetry, output validation and a
single automatic repair pass.

Usage:
    python -m forge_runtime.main

Environment Variables:
    FORGE_HOST       - Server host (default: 0.0.0.0)
    FORGE_PORT       - Server port (default: 8000)
    FORGE_PROVIDER   - Active provider: openai, gemini, ollama (default: ollama)
    FORGE_PROFILE    - Run profile: fast, balanced, reliable (default: reliable)
    OPENAI_API_KEY   - OpenAI key
    GEMINI_API_KEY   - Gemini key
    OLLAMA_URL       - Ollama API URL (default: http://localhost:11434)
    OLLAMA_MODEL     - Local model hint (default: first installed)
    REQUEST_TIMEOUT  - Provider request timeout in seconds (default: 300)
    DEBUG            - Enable debug logging
"""

import logging
import os
import sys
from contextlib import asynccontextmanager

import httpx
import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import __version__
from .api import router as api_router
from .config import RUN_PROFILES, config
from .execution import ExecutionOrchestrator
from .registry import build_registry

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if os.getenv("DEBUG") else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown lifecycle."""

    # Startup
    logger.info("=" * 60)
    logger.info("Prompt Forge Runtime Starting")
    logger.info("=" * 60)

    client = httpx.AsyncClient(timeout=httpx.Timeout(config.request_timeout, connect=10.0))
    registry = build_registry(client)
    app.state.registry = registry
    app.state.orchestrator = ExecutionOrchestrator(registry, config)

    for provider_id, settings in config.providers.items():
        logger.info(f"Provider {provider_id.value}: {settings.base_url} (model: {settings.model or 'default'})")
    logger.info(f"Active provider: {config.active_provider.value}")
    logger.info(f"Run profile: {config.profile().label}")

    logger.info("-" * 60)
    logger.info(f"Server ready at http://{config.host}:{config.port}")
    logger.info("=" * 60)

    yield

    # Shutdown
    logger.info("Shutting down...")
    app.state.orchestrator.cancel()
    await client.aclose()
    logger.info("Shutdown complete")


# Create FastAPI app
app = FastAPI(
    title="Prompt Forge Runtime",
    description=(
        "Provider-agnostic execution runtime for studio prompts. "
        "Streams or polls results, samples live telemetry, classifies "
        "failures and repairs low-scoring output once."
    ),
    version=__version__,
    lifespan=lifespan,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Mount routers
app.include_router(api_router)


@app.get("/health")
async def health():
    """Health check endpoint."""
    orchestrator = app.state.orchestrator
    return {
        "status": "healthy",
        "active_provider": config.active_provider.value,
        "run_phase": orchestrator.session.phase.value,
        "providers": [adapter.name for adapter in app.state.registry.values()],
    }


@app.get("/")
async def root():
    """Root endpoint with basic info."""
    return {
        "name": "Prompt Forge Runtime",
        "version": __version__,
        "profiles": list(RUN_PROFILES),
        "endpoints": {
            "runs": "/v1/runs",
            "cancel": "/v1/runs/cancel",
            "current": "/v1/runs/current",
            "check": "/v1/providers/{provider}/check",
            "models": "/v1/models",
            "health": "/health",
        },
    }


def main():
    """Run the runtime server."""
    uvicorn.run(
        "forge_runtime.main:app",
        host=config.host,
        port=config.port,
        reload=False,
        log_level="info",
    )


if __name__ == "__main__":
    main()
