"""
RemindSync - Main Application Entry Point

Escalating reminders with calendar feed sync and iCalendar export, using
FastAPI, SQLite and APScheduler.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from remindsync.api.policies import router as policies_router
from remindsync.api.reminders import router as reminders_router
from remindsync.api.sources import router as sources_router
from remindsync.config.settings import get_settings
from remindsync.infrastructure.database import init_database
from remindsync.infrastructure.scheduler import get_scheduler, schedule_feed_sync, start_scheduler, stop_scheduler

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S"
)

logger = logging.getLogger(__name__)
settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.
    Handles startup and shutdown events.
    """
    # Startup
    logger.info("Starting RemindSync...")

    logger.info("Initializing database...")
    await init_database()

    logger.info("Starting scheduler...")
    await start_scheduler()
    schedule_feed_sync(settings.sync_poll_minutes)

    logger.info("Application startup complete!")
    logger.info(f"Timezone: {settings.timezone}")
    logger.info(f"Alert capacity: {settings.scheduler_capacity}, repeat cap: {settings.max_repeat_alerts}")

    yield

    # Shutdown
    logger.info("Shutting down...")
    await stop_scheduler()
    logger.info("Application shutdown complete")


# Create FastAPI application
app = FastAPI(
    title="RemindSync",
    description="Escalating reminders with calendar feed sync",
    version="1.0.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["GET", "POST", "PATCH", "DELETE"],
    allow_headers=["*"],
)

# Register routers
app.include_router(reminders_router, tags=["Reminders"])
app.include_router(policies_router, tags=["Policies"])
app.include_router(sources_router, tags=["Sources"])


@app.get("/")
async def root():
    """Root endpoint with API information."""
    return {
        "name": "RemindSync",
        "version": "1.0.0",
        "status": "running",
        "endpoints": {
            "reminders": "/reminders",
            "policies": "/policies",
            "sources": "/sources",
            "calendar": "/calendar.ics",
            "health": "/health"
        }
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "service": "remindsync"}


@app.get("/scheduler/status")
async def scheduler_status():
    """Get scheduler status and pending jobs."""
    scheduler = get_scheduler()

    jobs = []
    for job in scheduler.get_jobs():
        jobs.append({
            "id": job.id,
            "name": job.name,
            "next_run": str(job.next_run_time) if job.next_run_time else None
        })

    return {
        "running": scheduler.running,
        "jobs_count": len(jobs),
        "jobs": jobs
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "remindsync.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug
    )
