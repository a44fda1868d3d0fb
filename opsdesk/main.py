"""
Opsdesk task service - main application entry point.

FastAPI application with the task lifecycle routes, the realtime change
feed and the daily rollover scheduler.
"""

import logging
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config import settings
from .api.routes import router
from .context import AppContext
from .database import init_database, close_database
from .database.exceptions import EntityNotFoundError, ValidationError, DatabaseError
from .exceptions import (
    BulkActionValidationError,
    DailyTaskIntegrityError,
    EvidenceUploadError,
    EvidenceValidationError,
    InvalidBulkActionError,
    NotAuthenticatedError,
    NotAuthorizedError,
    OpsDeskError,
)
from .scheduler.jobs import SchedulerManager

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(sys.stdout)
    ]
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup and shutdown."""
    logger.info(f"Starting {settings.app_name}...")

    try:
        if await init_database():
            logger.info("PostgreSQL database initialized")
        else:
            logger.warning("PostgreSQL not configured or failed to initialize")
    except Exception as e:
        logger.warning(f"PostgreSQL init failed: {e}")

    context = AppContext()
    await context.start()
    app.state.context = context

    scheduler = SchedulerManager(context)
    try:
        scheduler.start()
    except Exception as e:
        logger.error(f"Scheduler failed to start: {e}")
    app.state.scheduler = scheduler

    yield

    logger.info(f"Shutting down {settings.app_name}...")

    try:
        scheduler.stop()
    except Exception as e:
        logger.warning(f"Failed to stop scheduler during shutdown: {e}")

    try:
        await context.close()
    except Exception as e:
        logger.warning(f"Failed to close app context during shutdown: {e}")

    try:
        await close_database()
    except Exception as e:
        logger.warning(f"Failed to close database during shutdown: {e}")

    logger.info("Shutdown complete")


app = FastAPI(
    title=settings.app_name,
    description="Daily task instantiation, evidence submission and task board",
    version="1.0.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(router)


# Error handlers

ERROR_STATUS = (
    (NotAuthenticatedError, 401),
    (NotAuthorizedError, 403),
    (EntityNotFoundError, 404),
    (EvidenceValidationError, 400),
    (InvalidBulkActionError, 400),
    (BulkActionValidationError, 400),
    (ValidationError, 400),
    (EvidenceUploadError, 502),
    (DailyTaskIntegrityError, 500),
)


def status_for(exc: Exception) -> int:
    for error_type, status_code in ERROR_STATUS:
        if isinstance(exc, error_type):
            return status_code
    return 500


@app.exception_handler(OpsDeskError)
@app.exception_handler(DatabaseError)
async def domain_exception_handler(request: Request, exc: Exception):
    status_code = status_for(exc)
    if status_code >= 500:
        logger.error(f"{type(exc).__name__} on {request.url.path}: {exc}", exc_info=True)
    else:
        logger.info(f"{type(exc).__name__} on {request.url.path}: {exc}")
    return JSONResponse(
        status_code=status_code,
        content={"error": type(exc).__name__, "detail": str(exc)}
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler."""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error", "detail": str(exc)}
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "opsdesk.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug
    )
