"""Main entry point for the chain worker service."""

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from chain_worker.config import get_settings
from chain_worker.lib.json_logger import setup_json_logging, setup_text_logging
from chain_worker.routes import dlq, health, metrics

logger = logging.getLogger(__name__)

# Configure logging based on settings
settings = get_settings()

if settings.log_format == "json":
    setup_json_logging(level=settings.log_level)
else:
    setup_text_logging(level=settings.log_level)


async def stop_worker(worker, worker_task: asyncio.Task, timeout: float = 10.0) -> None:
    """Stop the loop, then let in-flight passes finish."""
    worker.stop()
    try:
        await asyncio.wait_for(worker_task, timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning(f"Queue worker did not stop within {timeout}s, cancelling")
        worker_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await worker_task
    await worker.engine.shutdown()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the queue worker alongside the HTTP server."""
    from chain_worker.queue.worker import build_worker

    worker = build_worker()
    app.state.worker = worker
    worker_task = asyncio.create_task(worker.run())
    logger.info("Background queue worker started")
    yield
    await stop_worker(worker, worker_task)
    logger.info("Background queue worker stopped")


app = FastAPI(
    title="Chain Worker",
    description="Resilient submission queue for blockchain operations",
    version=health.SERVICE_VERSION,
    lifespan=lifespan,
)

# CORS middleware - origins from environment variable
cors_origins = [origin.strip() for origin in settings.cors_origins.split(",") if origin.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.router, prefix="/health", tags=["Health"])
app.include_router(metrics.router, tags=["Metrics"])
app.include_router(dlq.router, tags=["Dead Letter Queue"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "service": "Chain Worker",
        "version": health.SERVICE_VERSION,
        "status": "running",
    }


if __name__ == "__main__":
    uvicorn.run(
        "chain_worker.main:app",
        host="0.0.0.0",
        port=settings.port,
        reload=settings.debug,
    )
