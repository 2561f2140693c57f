"""Integration tests for ParseContractWorkflow.

Activities are replaced by an in-process stub so the tests cover stage
ordering, failure routing and the always-run cleanup and notification steps.
"""

import pytest
from uuid import uuid4
from unittest.mock import MagicMock, patch

from temporalio.exceptions import ActivityError, ApplicationError, RetryState

from app.temporal.shared.workflows.parse_contract import (
    ParseContractWorkflow,
    failure_message,
    failure_type,
)


def activity_error(activity_type: str, message: str, error_type: str) -> ActivityError:
    error = ActivityError(
        "Activity task failed",
        scheduled_event_id=5,
        started_event_id=6,
        identity="worker-1",
        activity_type=activity_type,
        activity_id="1",
        retry_state=RetryState.MAXIMUM_ATTEMPTS_REACHED,
    )
    error.__cause__ = ApplicationError(message, type=error_type)
    return error


class TestParseContractWorkflow:
    """Stage routing of ParseContractWorkflow."""

    @pytest.fixture
    def parse_id(self):
        return str(uuid4())

    @pytest.fixture
    def payload(self, parse_id):
        return {"parse_id": parse_id, "run_id": f"parse-{parse_id}-attempt-1"}

    @pytest.fixture
    def stage_results(self):
        return {
            "render_document": {"page_count": 10},
            "classify_pages": {"critical_pages": [3, 9], "failed_batches": 0, "form_codes": ["RPA", "SCO"]},
            "extract_pages": {"extracted_pages": 2, "dropped_pages": 0},
            "reconcile_and_finalize": {"status": "COMPLETED", "needs_review": False, "overall_confidence": 85.0},
            "cleanup_parse": {"deleted_paths": 2, "errors": []},
            "notify_parse_finished": {"delivered": True},
            "mark_parse_failed": {"marked": True, "status": "EXTRACT_FAILED"},
        }

    @pytest.mark.asyncio
    async def test_workflow_runs_all_stages_in_order(self, payload, parse_id, stage_results):
        workflow = ParseContractWorkflow()
        calls = []

        with patch('app.temporal.shared.workflows.parse_contract.workflow') as mock_workflow:
            async def mock_execute_activity(activity_name, *args, **kwargs):
                calls.append((activity_name, kwargs.get("args")))
                return stage_results[activity_name]

            mock_workflow.execute_activity = mock_execute_activity
            mock_workflow.logger = MagicMock()

            result = await workflow.run(payload)

        assert [name for name, _ in calls] == [
            "render_document",
            "classify_pages",
            "extract_pages",
            "reconcile_and_finalize",
            "cleanup_parse",
            "notify_parse_finished",
        ]
        assert calls[0][1] == [parse_id, payload["run_id"]]
        assert calls[4][1] == [parse_id, payload["run_id"]]
        assert calls[-1][1] == [parse_id]

        assert result == {
            "parse_id": parse_id,
            "status": "COMPLETED",
            "needs_review": False,
            "overall_confidence": 85.0,
            "page_count": 10,
            "critical_pages": [3, 9],
        }
        assert workflow.get_status() == {"status": "COMPLETED", "current_stage": "reconcile"}

    @pytest.mark.asyncio
    async def test_render_failure_cleans_up_before_marking_parse(self, payload, parse_id, stage_results):
        workflow = ParseContractWorkflow()
        calls = []

        with patch('app.temporal.shared.workflows.parse_contract.workflow') as mock_workflow:
            async def mock_execute_activity(activity_name, *args, **kwargs):
                calls.append((activity_name, kwargs.get("args")))
                if activity_name == "render_document":
                    raise activity_error(activity_name, "Document is not a PDF", "RenderError")
                if activity_name == "mark_parse_failed":
                    return {"marked": True, "status": kwargs["args"][2]}
                return stage_results[activity_name]

            mock_workflow.execute_activity = mock_execute_activity
            mock_workflow.logger = MagicMock()

            result = await workflow.run(payload)

        assert [name for name, _ in calls] == [
            "render_document",
            "cleanup_parse",
            "mark_parse_failed",
            "notify_parse_finished",
        ]
        assert calls[1][1] == [parse_id, payload["run_id"]]
        assert calls[2][1] == [parse_id, payload["run_id"], "RENDER_FAILED", "Document is not a PDF"]
        assert result == {"parse_id": parse_id, "status": "RENDER_FAILED", "error": "Document is not a PDF"}

    @pytest.mark.asyncio
    async def test_later_stage_failure_is_extract_failed(self, payload, stage_results):
        workflow = ParseContractWorkflow()
        failed_with = []

        with patch('app.temporal.shared.workflows.parse_contract.workflow') as mock_workflow:
            async def mock_execute_activity(activity_name, *args, **kwargs):
                if activity_name == "extract_pages":
                    raise activity_error(activity_name, "LLM API returned 503", "LLMError")
                if activity_name == "mark_parse_failed":
                    failed_with.append(kwargs["args"][2])
                return stage_results[activity_name]

            mock_workflow.execute_activity = mock_execute_activity
            mock_workflow.logger = MagicMock()

            result = await workflow.run(payload)

        assert failed_with == ["EXTRACT_FAILED"]
        assert result["status"] == "EXTRACT_FAILED"
        assert workflow.get_status()["current_stage"] == "extract"

    @pytest.mark.asyncio
    async def test_failure_after_finalize_reports_persisted_status(self, payload, stage_results):
        workflow = ParseContractWorkflow()

        with patch('app.temporal.shared.workflows.parse_contract.workflow') as mock_workflow:
            async def mock_execute_activity(activity_name, *args, **kwargs):
                if activity_name == "reconcile_and_finalize":
                    raise activity_error(
                        activity_name,
                        "Parse cannot move from COMPLETED to COMPLETED",
                        "InvalidTransitionError",
                    )
                if activity_name == "mark_parse_failed":
                    return {"marked": False, "status": "COMPLETED"}
                return stage_results[activity_name]

            mock_workflow.execute_activity = mock_execute_activity
            mock_workflow.logger = MagicMock()

            result = await workflow.run(payload)

            mock_workflow.logger.warning.assert_called_once()

        assert result["status"] == "COMPLETED"
        assert workflow.get_status()["status"] == "COMPLETED"

    @pytest.mark.asyncio
    async def test_superseded_run_leaves_parse_alone(self, payload, stage_results):
        workflow = ParseContractWorkflow()
        calls = []

        with patch('app.temporal.shared.workflows.parse_contract.workflow') as mock_workflow:
            async def mock_execute_activity(activity_name, *args, **kwargs):
                calls.append(activity_name)
                if activity_name == "classify_pages":
                    raise activity_error(activity_name, "Run no longer owns parse", "RunConflictError")
                return stage_results[activity_name]

            mock_workflow.execute_activity = mock_execute_activity
            mock_workflow.logger = MagicMock()

            result = await workflow.run(payload)

        assert calls == ["render_document", "classify_pages"]
        assert result["status"] == "superseded"

    @pytest.mark.asyncio
    async def test_notification_failure_does_not_fail_the_run(self, payload, stage_results):
        workflow = ParseContractWorkflow()

        with patch('app.temporal.shared.workflows.parse_contract.workflow') as mock_workflow:
            async def mock_execute_activity(activity_name, *args, **kwargs):
                if activity_name in ("cleanup_parse", "notify_parse_finished"):
                    raise activity_error(activity_name, "webhook unreachable", "NotificationError")
                return stage_results[activity_name]

            mock_workflow.execute_activity = mock_execute_activity
            mock_workflow.logger = MagicMock()

            result = await workflow.run(payload)

            assert result["status"] == "COMPLETED"
            assert mock_workflow.logger.warning.call_count == 2

    def test_workflow_initial_status(self):
        workflow = ParseContractWorkflow()

        assert workflow.get_status() == {"status": "initialized", "current_stage": None}


class TestFailureHelpers:
    def test_message_and_type_come_from_application_error(self):
        error = activity_error("render_document", "Render service unavailable", "RenderError")

        assert failure_message(error) == "Render service unavailable"
        assert failure_type(error) == "RenderError"

    def test_nested_activity_errors_are_unwrapped(self):
        outer = activity_error("render_document", "ignored", "RenderError")
        inner = activity_error("render_document", "Storage download failed", "StorageError")
        outer.__cause__ = inner

        assert failure_message(outer) == "Storage download failed"
        assert failure_type(outer) is None
