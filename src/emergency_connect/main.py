# src/emergency_connect/main.py
"""Main entry point for the Emergency Connect API."""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from emergency_connect import __version__
from emergency_connect.api.v1 import credentials_router, emergency_router, incidents_router
from emergency_connect.core.settings import settings
from emergency_connect.db.session import create_tables
from emergency_connect.services.retry_worker import RetryWorker

logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title=settings.app_name,
    description="Covert help-summoning service with incident alerts and risk triage",
    version=__version__,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API routers
app.include_router(emergency_router, prefix="/api/v1")
app.include_router(credentials_router, prefix="/api/v1")
app.include_router(incidents_router, prefix="/api/v1")


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.error("Database error on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error"},
    )


@app.on_event("startup")
async def on_startup() -> None:
    create_tables()
    if settings.notification_worker_embedded:
        worker = RetryWorker()
        await worker.start()
        app.state.notification_worker = worker
    else:
        app.state.notification_worker = None


@app.on_event("shutdown")
async def on_shutdown() -> None:
    worker: RetryWorker | None = getattr(app.state, "notification_worker", None)
    if worker:
        await worker.stop()


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint to verify the service is running."""
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("emergency_connect.main:app", host="0.0.0.0", port=8000, reload=settings.debug)
