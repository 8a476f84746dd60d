"""
Co-founder Matching API - Main Application Entry Point

This module initializes the FastAPI application with:
- Database schema initialization
- Stale matching job sweep (APScheduler)
- Prometheus metrics middleware and /metrics endpoint
- API router registration

Architecture:
    FastAPI App
    ├── Lifespan Management (startup/shutdown)
    ├── CORS Middleware (localhost:3000)
    ├── Prometheus Middleware
    └── API Router
        └── /matching
            ├── POST /calculate - Start (or resume) a match run
            ├── GET /status/{job_id} - Poll job state
            └── GET /results/{user_id} - Ranked matches

Match runs themselves execute on the Celery worker (matchmaker.celery).
"""

import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from matchmaker.config import get_settings
from matchmaker.database import init_db
from matchmaker.api import api_router
from matchmaker.middleware.metrics import setup_metrics
from matchmaker.scheduler import start_scheduler, stop_scheduler

settings = get_settings()
logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application lifecycle events.

    Startup:
        1. Initialize database tables
        2. Start the stale job sweep

    Shutdown:
        1. Gracefully stop the scheduler
    """
    init_db()
    start_scheduler()
    yield
    stop_scheduler()


app = FastAPI(
    title="Co-founder Matching API",
    description="Asynchronous co-founder matching engine",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

setup_metrics(app)

app.include_router(api_router)


@app.get("/health")
async def health_check():
    return {"status": "healthy"}
