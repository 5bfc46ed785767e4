"""
FastAPI Application Entry Point

This module creates and configures the FastAPI application for the
attendance portal's face verification service.

The application provides:
- REST endpoints for verification (two fingerprints, or against an identity)
- REST endpoints for managing enrolled fingerprints
- Health check endpoint

Usage:
    # From project root:
    uvicorn api.app:app --host 0.0.0.0 --port 8000 --reload

    # Or run directly:
    python -m api.app
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.routes import enrollment_router, verification_router
from api.schemas import HealthResponse
from faceverify.config import get_optional_section
from faceverify.store import get_fingerprint_store
from faceverify.strategy import Strategy

API_VERSION = "0.1.0"

# Configure logging
_logging_config = get_optional_section("logging")
logging.basicConfig(
    level=_logging_config.get("level", "INFO"),
    format=_logging_config.get("format", "%(asctime)s - %(name)s - %(levelname)s - %(message)s"),
)
logger = logging.getLogger(__name__)


def default_strategy() -> Strategy:
    return Strategy.parse(get_optional_section("capture").get("strategy", "heuristic"))


def model_loaded() -> bool:
    """Whether the shared model backend has its models in memory."""
    from faceverify.model_backend import get_model_backend

    return get_model_backend().is_loaded


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Runs on startup:
    - Load the face models once when the model strategy is configured
    - Initialize the enrolled fingerprint store

    Runs on shutdown:
    - Release the face models
    """
    logger.info("=" * 60)
    logger.info("Starting Face Verification API")
    logger.info("=" * 60)

    strategy = default_strategy()
    logger.info(f"Default capture strategy: {strategy.value}")

    backend = None
    if strategy is Strategy.MODEL:
        from faceverify.model_backend import get_model_backend

        logger.info("Loading face models...")
        backend = get_model_backend()
        await backend.acquire_async()
        logger.info("Face models loaded")

    store = get_fingerprint_store()
    logger.info(f"Fingerprint store ready: {len(store)} identities enrolled")

    logger.info("API startup complete!")
    logger.info("=" * 60)

    yield

    # Cleanup on shutdown
    logger.info("Shutting down API...")
    if backend is not None:
        backend.release()
    logger.info("Shutdown complete")


# Create FastAPI application
app = FastAPI(
    title="Face Verification API",
    description="""
API for verifying attendance check-ins by face.

## Features
- **Verification**: Compare a live fingerprint with an enrolled one
- **Enrollment**: Keep enrolled fingerprints for identity verification

Fingerprints are strategy-tagged vectors (`heuristic` or `model`); two
fingerprints can only be compared when their strategies match.
    """,
    version=API_VERSION,
    lifespan=lifespan,
)

# Configure CORS for frontend access
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Allows all origins (adjust for production)
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(verification_router)
app.include_router(enrollment_router)


# ============================================================
# Health Check Endpoint
# ============================================================

@app.get("/health", response_model=HealthResponse, tags=["system"])
async def health_check():
    """
    Check the health of the API and its dependencies.

    Returns status of:
    - Face models (loaded/not loaded)
    - Number of enrolled identities
    """
    strategy = default_strategy()
    loaded = model_loaded() if strategy is Strategy.MODEL else False

    # The model strategy cannot serve without its models
    status = "degraded" if strategy is Strategy.MODEL and not loaded else "healthy"

    return HealthResponse(
        status=status,
        default_strategy=strategy,
        model_loaded=loaded,
        enrolled_identities=len(get_fingerprint_store()),
    )


@app.get("/", tags=["system"])
async def root():
    """Root endpoint with API information."""
    return {
        "name": "Face Verification API",
        "version": API_VERSION,
        "docs": "/docs",
        "health": "/health",
    }


if __name__ == "__main__":
    import uvicorn

    api_config = get_optional_section("api")

    # Parse host/port from base_url or use defaults
    host = "0.0.0.0"
    port = 8000

    base_url = api_config.get("base_url", "http://localhost:8000")
    if ":" in base_url.split("//")[-1]:
        port_str = base_url.split(":")[-1].rstrip("/")
        try:
            port = int(port_str)
        except ValueError:
            logger.warning(f"Invalid port in api.base_url: {base_url}, using {port}")

    logger.info(f"Starting server on {host}:{port}")
    uvicorn.run(
        "api.app:app",
        host=host,
        port=port,
        reload=True,
        log_level="info",
    )
