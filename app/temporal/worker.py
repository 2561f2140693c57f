"""Temporal worker for contract packet parsing.

Runs one worker per task queue found in the workflow registry, every
registered activity on each, plus a small health endpoint.
"""

import asyncio
import os

import uvicorn
from fastapi import FastAPI
from temporalio.client import Client
from temporalio.worker import Worker
from temporalio.worker.workflow_sandbox import SandboxedWorkflowRunner, SandboxRestrictions

from app.core.config import settings
from app.core.temporal_client import connect_temporal

# Registers every workflow and activity before the registries are read
from app.temporal.core.discovery import discover_all
discover_all()

from app.temporal.core.activity_registry import ActivityRegistry
from app.temporal.core.constants import DEFAULT_TASK_QUEUE
from app.temporal.core.workflow_registry import WorkflowRegistry
from app.utils.logging import get_logger

logger = get_logger(__name__)

health_app = FastAPI(title="Contract parser worker")


@health_app.get("/health")
async def health():
    return {"status": "ok", "service": "contract-parser-worker"}


async def run_health_check_server():
    port = int(os.getenv("WORKER_HEALTH_PORT", 8001))
    logger.info(f"Worker health endpoint on port {port}")
    server = uvicorn.Server(uvicorn.Config(health_app, host="0.0.0.0", port=port, log_level="info"))
    await server.serve()


def queues_by_name() -> dict[str, list]:
    """Group registered workflow classes by the task queue they run on."""
    queues: dict[str, list] = {}
    for name, metadata in WorkflowRegistry.get_all_workflows().items():
        queue = metadata.task_queue or DEFAULT_TASK_QUEUE
        queues.setdefault(queue, []).append(metadata.workflow_class)
        logger.debug(f"Workflow '{name}' runs on queue '{queue}'")
    return queues


def build_workers(client: Client) -> list[Worker]:
    activities = list(ActivityRegistry.get_all_activities().values())
    queues = queues_by_name()
    logger.info(
        f"Building {len(queues)} workers for {sum(len(w) for w in queues.values())} workflows "
        f"and {len(activities)} activities"
    )
    return [
        Worker(
            client,
            task_queue=queue,
            workflows=workflows,
            activities=activities,
            max_concurrent_activities=settings.temporal.max_concurrent_activities,
            max_concurrent_workflow_tasks=20,
            workflow_runner=SandboxedWorkflowRunner(
                restrictions=SandboxRestrictions.default.with_passthrough_all_modules()
            ),
        )
        for queue, workflows in queues.items()
    ]


async def run_workers():
    client = await connect_temporal(max_retries=5)
    workers = build_workers(client)
    await asyncio.gather(*(worker.run() for worker in workers))


async def main():
    await asyncio.gather(run_health_check_server(), run_workers())


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Worker stopped by user")
