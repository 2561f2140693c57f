"""Periodic purge of preview archives and expired short-lived entries."""

from datetime import timedelta

from temporalio import workflow
from temporalio.common import RetryPolicy

from app.temporal.core.workflow_registry import WorkflowRegistry, WorkflowType


@WorkflowRegistry.register(category=WorkflowType.MAINTENANCE)
@workflow.defn
class ArtifactPurgeWorkflow:
    """Started on a cron schedule by the API on startup."""

    @workflow.run
    async def run(self) -> dict:
        return await workflow.execute_activity(
            "purge_expired_artifacts",
            start_to_close_timeout=timedelta(minutes=5),
            retry_policy=RetryPolicy(maximum_attempts=2),
        )
