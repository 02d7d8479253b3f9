"""FastAPI application entry point for partnerlink.

Partner identity-linking REST API.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from partnerlink import __version__
from partnerlink.api import register_exception_handlers
from partnerlink.api.deps import close_services, get_link_store
from partnerlink.api.middleware import setup_middleware
from partnerlink.api.partner import router as partner_router
from partnerlink.config import get_settings
from partnerlink.logging import get_logger, setup_logging

# Initialize logging
setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup and shutdown events."""
    # Startup
    settings = get_settings()
    logger.info(
        "Starting partnerlink API",
        extra={
            "environment": settings.environment,
            "debug": settings.api_debug,
            "storage_backend": settings.storage_backend,
            "partners": len(settings.partner_keys),
        },
    )
    if not settings.partner_keys:
        logger.warning("No PARTNER_API_KEYS configured; every request will be rejected")

    get_link_store()

    yield

    # Shutdown
    logger.info("Shutting down partnerlink API")
    await close_services()


# Create FastAPI application
settings = get_settings()

app = FastAPI(
    title="partnerlink API",
    description="Partner agent and client identity linking",
    version=__version__,
    docs_url="/docs" if settings.is_development else None,
    redoc_url="/redoc" if settings.is_development else None,
    openapi_url="/openapi.json" if settings.is_development else None,
    lifespan=lifespan,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
setup_middleware(app)
register_exception_handlers(app)


# =========================
# Health Check Endpoints
# =========================


@app.get("/health", tags=["Health"])
async def health_check():
    """Basic health check endpoint."""
    return {"status": "healthy", "service": "partnerlink-api"}


@app.get("/health/live", tags=["Health"])
async def liveness_check():
    """Liveness check - just confirms the service is running."""
    return {"status": "alive"}


# =========================
# API Routers
# =========================

app.include_router(partner_router, prefix="/v1", tags=["Partner"])
