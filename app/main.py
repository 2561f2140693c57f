"""FastAPI application entry point."""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncGenerator
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field
from temporalio.service import RPCError
from temporalio.exceptions import WorkflowAlreadyStartedError

from app.api.v1.router import api_router
from app.core.config import settings
from app.core.database import close_database, init_database
from app.core.temporal_client import close_temporal_client, get_temporal_client
from app.temporal.core.constants import ARTIFACT_PURGE_CRON, ARTIFACT_PURGE_WORKFLOW_ID
from app.temporal.shared.workflows.artifact_purge import ArtifactPurgeWorkflow
from app.utils.logging import get_logger

LOGGER = get_logger(__name__, level=settings.log_level)


class RootResponse(BaseModel):
    """Root endpoint response payload."""

    message: str = Field(..., description="Service status message")
    version: str = Field(..., description="Running application version")
    docs: str = Field(..., description="Path to the interactive API docs")
    health: str = Field(..., description="Path to the health check endpoint")


async def schedule_artifact_purge() -> None:
    """Ensure the periodic purge workflow is running."""
    try:
        client = await get_temporal_client()
        await client.start_workflow(
            ArtifactPurgeWorkflow.run,
            id=ARTIFACT_PURGE_WORKFLOW_ID,
            task_queue=settings.temporal_task_queue,
            cron_schedule=ARTIFACT_PURGE_CRON,
        )
        LOGGER.info("Scheduled artifact purge workflow")
    except WorkflowAlreadyStartedError:
        LOGGER.debug("Artifact purge workflow already scheduled")
    except (RuntimeError, RPCError) as e:
        LOGGER.warning(f"Could not schedule artifact purge: {e}")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    LOGGER.info("Validating configuration...")
    if not settings.llm.openrouter_api_key:
        LOGGER.error("OPENROUTER_API_KEY is missing")
    if not settings.storage.url:
        LOGGER.error("SUPABASE_URL is missing")

    LOGGER.info(
        "Starting application",
        extra={
            "app_name": settings.app_name,
            "version": settings.app_version,
            "environment": settings.environment,
        },
    )

    try:
        await asyncio.wait_for(init_database(auto_migrate=True), timeout=settings.db_init_timeout)
        LOGGER.info("Database initialized successfully")
    except asyncio.TimeoutError:
        LOGGER.error(f"Database initialization timed out after {settings.db_init_timeout}s")
    except Exception as e:
        LOGGER.error(f"Database initialization failed: {e}", exc_info=True)

    await schedule_artifact_purge()

    yield

    LOGGER.info("Shutting down application")
    await close_temporal_client()
    try:
        await close_database()
    except Exception as e:
        LOGGER.error("Error closing database", exc_info=True, extra={"error": str(e)})


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Turns real-estate contract packets into one canonical record of their terms",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
)


@app.middleware("http")
async def add_correlation_id(request: Request, call_next):
    correlation_id = request.headers.get("X-Correlation-ID", str(uuid4()))
    request.state.correlation_id = correlation_id
    response = await call_next(request)
    response.headers["X-Correlation-ID"] = correlation_id
    return response


# CORS middleware - added last to ensure it wraps all other middleware/responses
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["*"],
    expose_headers=["X-Correlation-ID"],
)

app.include_router(api_router, prefix=settings.api_v1_prefix)


@app.get(
    "/",
    response_model=RootResponse,
    tags=["Root"],
    summary="Root endpoint",
    description="Get basic information about the API",
    operation_id="get_public_root_metadata",
)
async def root() -> RootResponse:
    return RootResponse(
        message="Server is running",
        version=settings.app_version,
        docs="/docs",
        health=f"{settings.api_v1_prefix}/health",
    )
