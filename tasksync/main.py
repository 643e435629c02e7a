"""Main FastAPI application"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from tasksync.api import audit, mappings, sync
from tasksync.config import settings
from tasksync.models.base import init_db
from tasksync.scheduler import scheduler

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events"""
    logger.info("Starting task sync service")
    init_db()
    scheduler.start()
    yield
    logger.info("Stopping task sync service")
    scheduler.stop()


app = FastAPI(
    title="Task Sync Service",
    description="Synchronize tickets between a task board and an issue tracker, with rollback and audit history",
    version="1.0.0",
    lifespan=lifespan,
)

app.include_router(sync.router)
app.include_router(audit.router)
app.include_router(mappings.router)


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "service": "Task Sync"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "tasksync.main:app",
        host=settings.host,
        port=settings.port,
        reload=False,
        log_level=settings.log_level.lower(),
    )
