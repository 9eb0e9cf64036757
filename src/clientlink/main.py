"""FastAPI application entry point for clientlink."""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from clientlink import __version__
from clientlink.api import register_exception_handlers
from clientlink.api.linking import router as linking_router
from clientlink.api.telegram import router as telegram_router
from clientlink.config import get_settings
from clientlink.db import close_db
from clientlink.linking.state_machine import close_state_machine
from clientlink.logging import get_logger, setup_logging

# Initialize logging
setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup and shutdown events."""
    settings = get_settings()
    logger.info(
        "Starting clientlink API",
        extra={
            "environment": settings.environment,
            "debug": settings.api_debug,
            "ai_configured": settings.has_ai_credentials,
            "telegram_configured": settings.has_telegram_credentials,
        },
    )

    yield

    logger.info("Shutting down clientlink API")
    await close_state_machine()
    await close_db()


# Create FastAPI application
settings = get_settings()

app = FastAPI(
    title="clientlink API",
    description="Links transcripts and form responses to clients",
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

register_exception_handlers(app)


# =========================
# Health Check Endpoints
# =========================


@app.get("/health", tags=["Health"])
async def health_check():
    """Basic health check endpoint."""
    return {"status": "healthy", "service": "clientlink-api"}


# =========================
# API Routers
# =========================

app.include_router(linking_router, prefix="/api/v1", tags=["Linking"])
app.include_router(telegram_router, prefix="/api/v1", tags=["Telegram"])
