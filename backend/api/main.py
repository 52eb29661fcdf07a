"""
FastAPI application for the ASICS inventory scraper.

Provides REST endpoints for:
- Managing the monitored URL list
- Starting, stopping and monitoring scrape batches
- Viewing stored inventory and scrape logs

Run with:
    cd backend
    source venv/bin/activate
    uvicorn api.main:app --port 8000
"""

from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

import requests
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

import settings

from .routes import batches, inventory, logs, urls
from .services.database import db_pool
from .services.runner import runner


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Initializes database connection on startup, stops any running batch and
    closes the connection on shutdown.
    """
    # Startup
    try:
        db_pool.initialize()
        print("Database connection initialized")
    except Exception as e:
        print(f"Warning: Could not initialize database: {e}")
        print("Some endpoints may not work without database connection")

    yield

    # Shutdown
    if runner.request_stop():
        runner.join(timeout=settings.NAVIGATION_TIMEOUT_MS / 1000)
    db_pool.close()
    print("Database connection closed")


app = FastAPI(
    title="ASICS Inventory API",
    description="Backend API for the ASICS B2B inventory scraper",
    version="1.0.0",
    lifespan=lifespan,
)

# Configure CORS for frontend development
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:5173",  # Vite dev server
        "http://127.0.0.1:5173",
        "http://localhost:3000",
        "http://localhost:8501",  # Streamlit
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(urls.router)
app.include_router(batches.router)
app.include_router(inventory.router)
app.include_router(logs.router)


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    timestamp: datetime
    database: str
    browserless: str
    scraper: str


def check_browserless(timeout: float = 5.0) -> str:
    """Probe Browserless's /json/version; 'not configured' when running a local browser."""
    base = settings.browserless_http_url()
    if not base:
        return "not configured"
    try:
        response = requests.get(f"{base}/json/version", timeout=timeout)
        response.raise_for_status()
        browser: Optional[str] = response.json().get("Browser")
        return f"reachable ({browser})" if browser else "reachable"
    except (requests.RequestException, ValueError) as e:
        return f"error: {e}"


@app.get("/api/health", response_model=HealthResponse, tags=["health"])
def health_check():
    """
    Health check endpoint.

    Returns:
        Health status including database and Browserless connectivity
    """
    db_status = "unknown"

    try:
        with db_pool.get_connection() as conn:
            conn.cursor().execute("SELECT 1")
            db_status = f"connected ({db_pool.backend})"
    except Exception as e:
        db_status = f"error: {str(e)}"

    return HealthResponse(
        status="ok",
        timestamp=datetime.utcnow(),
        database=db_status,
        browserless=check_browserless(),
        scraper=runner.status()['state'],
    )


@app.get("/", tags=["root"])
def root():
    """
    Root endpoint with API information.

    Returns:
        API welcome message and documentation link
    """
    return {
        "message": "ASICS Inventory API",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/api/health",
    }
