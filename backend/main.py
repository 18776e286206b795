"""
FastAPI application entry point.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import async_sessionmaker

from config import settings
from utils.exceptions import AppError
from utils.logging_config import setup_logging
from models.database import init_db, async_session, engine
from engine.job_queue import JobQueue
from engine.worker_pool import WorkerPool
from services.auth_service import Authenticator
from services.call_store import CallStore
from services.transcription_service import Transcriber, build_transcriber

setup_logging(settings.log_level, settings.log_file)

logger = logging.getLogger(__name__)


def attach_services(app: FastAPI, session_factory: async_sessionmaker, transcriber: Transcriber = None) -> WorkerPool:
    """
    Build the queue, store, authenticator and worker pool and hang them on
    ``app.state`` where the endpoint dependencies look them up.
    """
    queue = JobQueue(
        session_factory,
        max_attempts=settings.transcription_max_attempts,
        backoff_ms=settings.transcription_backoff_ms,
        keep_completed=settings.queue_keep_completed,
        keep_failed=settings.queue_keep_failed,
    )
    store = CallStore(session_factory)
    pool = WorkerPool(
        queue,
        store,
        transcriber or build_transcriber(settings),
        concurrency=settings.transcription_concurrency,
        poll_interval=settings.queue_poll_interval_seconds,
        submit_delay_ms=settings.transcription_submit_delay_ms,
        timeout_seconds=settings.transcription_timeout_seconds,
    )

    app.state.queue = queue
    app.state.call_store = store
    app.state.authenticator = Authenticator(
        settings.jwt_secret_key,
        algorithm=settings.jwt_algorithm,
        expire_minutes=settings.access_token_expire_minutes,
    )
    app.state.worker_pool = pool
    return pool


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.
    Handles startup (init, reconciliation, workers) and shutdown.
    """
    # === STARTUP ===
    logger.info("Starting application...")
    if settings.jwt_secret_key == "change-me":
        logger.warning("JWT_SECRET_KEY is not set, using the insecure development default")

    # Initialize database
    await init_db()

    pool = attach_services(app, async_session)

    # Reconciles any stuck calls from a previous crash, then starts the workers
    if settings.start_workers:
        await pool.start()
    else:
        logger.info("Worker pool disabled by configuration")

    logger.info("Application ready")

    yield

    # === SHUTDOWN ===
    logger.info("Shutting down...")
    await pool.stop(wait_for_current=True)
    await engine.dispose()
    logger.info("Shutdown complete")


# Create FastAPI app with lifespan
app = FastAPI(
    title=settings.app_name,
    description="Call records with an asynchronous transcription pipeline",
    version="1.0.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(AppError)
async def app_error_handler(request, exc: AppError):
    """Global handler for custom application errors."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "type": type(exc).__name__}
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request, exc: RequestValidationError):
    """Report the first body/query validation problem as a 400."""
    errors = exc.errors()
    if errors:
        first = errors[0]
        field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"{field}: {first.get('msg')}" if field else first.get("msg")
    else:
        message = "Invalid input"
    return JSONResponse(status_code=400, content={"detail": message, "type": "ValidationError"})


# Include routers
from routers import auth, calls, analytics, system
app.include_router(auth.router, prefix="/api/auth", tags=["Auth"])
app.include_router(calls.router, prefix="/api/calls", tags=["Calls"])
app.include_router(analytics.router, prefix="/api/analytics", tags=["Analytics"])
app.include_router(system.router, prefix="/api/system", tags=["System"])


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    pool = app.state.worker_pool
    return {
        "status": "healthy",
        "app": settings.app_name,
        "queue": await app.state.queue.counts(),
        "worker_running": pool.is_running,
    }


def run():
    import uvicorn

    logger.info(f"Starting server on {settings.host}:{settings.port}")
    uvicorn.run(app, host=settings.host, port=settings.port)


if __name__ == "__main__":
    run()
