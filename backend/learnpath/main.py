"""FastAPI application entry point."""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from learnpath.api.routes import roadmaps
from learnpath.core.config import get_settings
from learnpath.core.database import close_db, init_db
from learnpath.core.logging import clear_request_context, configure_logging, get_logger

settings = get_settings()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    # Startup
    configure_logging(debug=settings.DEBUG)
    logger.info(
        "Starting LearnPath",
        version=settings.APP_VERSION,
        env=settings.ENV,
        debug=settings.DEBUG,
        ai_enabled=settings.AI_ENABLED,
    )
    await init_db()
    yield
    # Shutdown
    logger.info("Shutting down LearnPath")
    await close_db()


# Create FastAPI app
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Personalized learning roadmap generation and adaptive adjustment",
    docs_url="/docs" if settings.is_development else None,
    redoc_url="/redoc" if settings.is_development else None,
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.is_development else [],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def reset_log_context(request: Request, call_next):
    """Drop request-scoped log fields once the response is produced."""
    clear_request_context()
    try:
        return await call_next(request)
    finally:
        clear_request_context()


# Include routers
app.include_router(roadmaps.router, prefix="/api")


@app.get("/health")
async def health_check() -> dict:
    """Health check endpoint."""
    return {
        "status": "healthy",
        "version": settings.APP_VERSION,
        "env": settings.ENV,
    }


@app.get("/")
async def root() -> dict:
    """Root endpoint."""
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "docs": "/docs",
    }
