"""
ChatLake FastAPI Application.

Review API for import batches, inference runs, project suggestions,
conversation similarity and project drift.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from chatlake.api.routes import batches, conversations, projects, runs, suggestions
from chatlake.logging_config import setup_logging

logger = logging.getLogger(__name__)

API_VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Configure logging and check the database before serving requests."""
    setup_logging(context="api")

    from chatlake.db.connection import check_connection

    if check_connection():
        logger.info("✓ Database connection OK")
    else:
        logger.error("Database connection failed; requests will return errors until it recovers")

    logger.info("Application startup complete")
    yield
    logger.info("Application shutdown complete")


app = FastAPI(
    lifespan=lifespan,
    title="ChatLake API",
    description="API for reviewing imported chat history and discovered projects",
    version=API_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
)

# Configure CORS for a local review UI
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://localhost:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint - API health check."""
    return {
        "status": "ok",
        "message": "ChatLake API is running",
        "version": API_VERSION,
    }


@app.get("/health")
async def health() -> dict[str, str]:
    """Health check endpoint."""
    from chatlake.db.connection import check_connection

    db_status = "healthy" if check_connection() else "unhealthy"

    return {
        "status": "healthy" if db_status == "healthy" else "degraded",
        "database": db_status,
    }


app.include_router(batches.router, prefix="/batches", tags=["batches"])
app.include_router(runs.router, prefix="/runs", tags=["runs"])
app.include_router(suggestions.router, prefix="/suggestions", tags=["suggestions"])
app.include_router(conversations.router, prefix="/conversations", tags=["conversations"])
app.include_router(projects.router, prefix="/projects", tags=["projects"])
