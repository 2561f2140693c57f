"""Workflow turning one uploaded contract packet into a canonical record."""

from datetime import timedelta
from typing import Dict, Optional

from temporalio import workflow
from temporalio.common import RetryPolicy
from temporalio.exceptions import ActivityError, ApplicationError

from app.models.parse import ParseStatus
from app.temporal.core.workflow_registry import WorkflowRegistry, WorkflowType

STAGE_RETRY_POLICY = RetryPolicy(
    maximum_attempts=3,
    initial_interval=timedelta(seconds=5),
    maximum_interval=timedelta(seconds=30),
    backoff_coefficient=2.0,
)

NOTIFY_RETRY_POLICY = RetryPolicy(
    maximum_attempts=5,
    initial_interval=timedelta(seconds=10),
    maximum_interval=timedelta(minutes=2),
    backoff_coefficient=2.0,
)

BOOKKEEPING_RETRY_POLICY = RetryPolicy(maximum_attempts=5, initial_interval=timedelta(seconds=2))

STAGES = (
    ("render", "render_document", timedelta(minutes=10)),
    ("classify", "classify_pages", timedelta(minutes=10)),
    ("extract", "extract_pages", timedelta(minutes=15)),
    ("reconcile", "reconcile_and_finalize", timedelta(minutes=10)),
)


def failure_message(error: ActivityError) -> str:
    cause = error.cause
    while isinstance(cause, ActivityError) and cause.cause is not None:
        cause = cause.cause
    if isinstance(cause, ApplicationError):
        return cause.message
    return str(cause or error)


def failure_type(error: ActivityError) -> Optional[str]:
    cause = error.cause
    return cause.type if isinstance(cause, ApplicationError) else None


@WorkflowRegistry.register(category=WorkflowType.PARSING)
@workflow.defn
class ParseContractWorkflow:
    """Render, classify, extract and reconcile one parse, then clean up and notify."""

    def __init__(self):
        self._status = "initialized"
        self._current_stage: Optional[str] = None

    @workflow.query
    def get_status(self) -> dict:
        return {"status": self._status, "current_stage": self._current_stage}

    @workflow.run
    async def run(self, payload: Dict) -> dict:
        parse_id = payload["parse_id"]
        run_id = payload["run_id"]
        self._status = "processing"

        results: Dict[str, Dict] = {}
        try:
            for stage, activity_name, timeout in STAGES:
                self._current_stage = stage
                results[stage] = await workflow.execute_activity(
                    activity_name,
                    args=[parse_id, run_id],
                    start_to_close_timeout=timeout,
                    retry_policy=STAGE_RETRY_POLICY,
                )
        except ActivityError as e:
            return await self._handle_failure(parse_id, run_id, e)

        self._status = results["reconcile"]["status"]
        await self._cleanup(parse_id, run_id)
        await self._notify(parse_id)

        return {
            "parse_id": parse_id,
            "status": self._status,
            "needs_review": results["reconcile"]["needs_review"],
            "overall_confidence": results["reconcile"]["overall_confidence"],
            "page_count": results["render"].get("page_count"),
            "critical_pages": results["classify"].get("critical_pages"),
        }

    async def _handle_failure(self, parse_id: str, run_id: str, error: ActivityError) -> dict:
        message = failure_message(error)
        if failure_type(error) == "RunConflictError":
            # A newer run owns the parse; leave its state alone
            workflow.logger.warning(f"Run {run_id} superseded: {message}")
            self._status = "superseded"
            return {"parse_id": parse_id, "status": self._status, "error": message}

        status = (
            ParseStatus.RENDER_FAILED if self._current_stage == "render" else ParseStatus.EXTRACT_FAILED
        )
        workflow.logger.error(
            f"Parse {parse_id} failed during {self._current_stage}: {message}"
        )
        # Clean up while this run still owns the parse: a retry is only
        # accepted once the failure status below is committed
        await self._cleanup(parse_id, run_id)
        outcome = await workflow.execute_activity(
            "mark_parse_failed",
            args=[parse_id, run_id, status.value, message],
            start_to_close_timeout=timedelta(minutes=1),
            retry_policy=BOOKKEEPING_RETRY_POLICY,
        )
        if not outcome["marked"]:
            workflow.logger.warning(
                f"Parse {parse_id} was not marked {status.value}; it is {outcome['status']}"
            )
        self._status = outcome["status"] or "deleted"
        await self._notify(parse_id)
        return {"parse_id": parse_id, "status": self._status, "error": message}

    async def _cleanup(self, parse_id: str, run_id: str) -> None:
        try:
            await workflow.execute_activity(
                "cleanup_parse",
                args=[parse_id, run_id],
                start_to_close_timeout=timedelta(minutes=2),
                retry_policy=BOOKKEEPING_RETRY_POLICY,
            )
        except ActivityError as e:
            workflow.logger.warning(f"Cleanup of parse {parse_id} failed: {failure_message(e)}")

    async def _notify(self, parse_id: str) -> None:
        try:
            await workflow.execute_activity(
                "notify_parse_finished",
                args=[parse_id],
                start_to_close_timeout=timedelta(seconds=30),
                retry_policy=NOTIFY_RETRY_POLICY,
            )
        except ActivityError as e:
            workflow.logger.warning(f"Notification for parse {parse_id} failed: {failure_message(e)}")
