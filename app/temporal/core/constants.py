"""Shared constants for Temporal workflows."""

from app.core.config import settings

DEFAULT_TASK_QUEUE = settings.temporal_task_queue

ARTIFACT_PURGE_WORKFLOW_ID = "artifact-purge"
ARTIFACT_PURGE_CRON = "*/30 * * * *"
