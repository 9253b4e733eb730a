"""Main FastAPI application module.

This module initializes the FastAPI application, registers the route handlers
and owns the startup/shutdown lifecycle of the shared cache and search index.
"""

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.routes import auth, users
from config import API_HOST, API_PORT, CORS_ALLOWED_ORIGINS
from core import dependencies
from core.database import SessionLocal
from core.logging_config import setup_logging
from schemas.user import HealthResponse
from utils.bootstrap import BootstrapReconciler

# Setup logging
setup_logging()

logger = logging.getLogger(__name__)

# Initialize FastAPI application
app = FastAPI(
    title="User Directory API",
    description="User management backend with a lookaside cache and a fuzzy search index.",
    version="1.0.0",
)

# Configure CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register route handlers
app.include_router(auth.router)
app.include_router(users.router)


@app.on_event("startup")
def startup_tasks() -> None:
    """Open shared resources and reconcile the database before serving.

    A ``BootstrapError`` propagates and stops the server from starting.
    """
    dependencies.init_resources()
    BootstrapReconciler(
        SessionLocal,
        cache=dependencies.get_user_cache(),
        worker=dependencies.get_index_worker(),
    ).run()


@app.on_event("shutdown")
def shutdown_tasks() -> None:
    dependencies.close_resources()


@app.get("/", summary="API root", tags=["Info"])
def root() -> dict:
    """Return API information and documentation links."""
    return {
        "name": "User Directory API",
        "version": "1.0.0",
        "description": "User management backend with a lookaside cache and a fuzzy search index.",
        "docs": {
            "swagger": "/docs",
            "redoc": "/redoc",
        },
        "health": "/api/health",
    }


@app.get("/api/health", response_model=HealthResponse, summary="Health check", tags=["Health"])
def health() -> HealthResponse:
    cache = dependencies.get_user_cache()
    return HealthResponse(
        status="ok",
        cache=cache.get_stats() if cache is not None else {"open": False},
        search_enabled=dependencies.get_search_index() is not None,
    )


# --- Startup code for direct execution ---
if __name__ == "__main__":
    import uvicorn

    server_url = f"http://{API_HOST}:{API_PORT}"
    logger.info("Starting User Directory API at %s (docs: %s/docs)", server_url, server_url)
    uvicorn.run("app:app", host=API_HOST, port=API_PORT, reload=True)
