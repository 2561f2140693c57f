"""Error translation between pipeline stages and Temporal."""

import pytest
from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

from temporalio.exceptions import ApplicationError

from app.core.exceptions import (
    APIClientError,
    InvalidTransitionError,
    ParseNotFoundError,
    RenderError,
    RenderErrorKind,
    RunConflictError,
)
from app.temporal.shared.activities import parse_stages

MODULE = "app.temporal.shared.activities.parse_stages"


@asynccontextmanager
async def fake_session():
    yield MagicMock()


@pytest.fixture
def pipeline():
    pipeline = MagicMock()
    pipeline.render = AsyncMock(return_value={"page_count": 10})
    pipeline.extract = AsyncMock(return_value={"extracted_pages": 2, "dropped_pages": 0})
    pipeline.mark_failed = AsyncMock()
    return pipeline


@pytest.fixture
def patched(pipeline):
    with patch(f"{MODULE}.async_session_maker", side_effect=fake_session), \
            patch(f"{MODULE}.ParsePipeline", return_value=pipeline), \
            patch(f"{MODULE}.StorageService"), \
            patch(f"{MODULE}.get_ttl_store"), \
            patch(f"{MODULE}.activity") as mock_activity:
        mock_activity.logger = MagicMock()
        yield mock_activity


class TestStageActivities:
    async def test_render_delegates_to_pipeline(self, patched, pipeline):
        parse_id = str(uuid4())

        result = await parse_stages.render_document(parse_id, "run-1")

        assert result == {"page_count": 10}
        called_id, called_run = pipeline.render.await_args.args
        assert str(called_id) == parse_id
        assert called_run == "run-1"

    async def test_invalid_document_is_not_retried(self, patched, pipeline):
        pipeline.render.side_effect = RenderError("Document is not a PDF", kind=RenderErrorKind.INVALID_INPUT)

        with pytest.raises(ApplicationError) as exc_info:
            await parse_stages.render_document(str(uuid4()), "run-1")

        assert exc_info.value.type == "RenderError"
        assert exc_info.value.non_retryable is True
        assert exc_info.value.message == "Document is not a PDF"

    async def test_transient_render_error_propagates_for_retry(self, patched, pipeline):
        pipeline.render.side_effect = RenderError("Render service returned 503")

        with pytest.raises(RenderError):
            await parse_stages.render_document(str(uuid4()), "run-1")

    async def test_stale_run_is_reported_as_conflict(self, patched, pipeline):
        pipeline.extract.side_effect = RunConflictError("Run run-1 no longer owns parse")

        with pytest.raises(ApplicationError) as exc_info:
            await parse_stages.extract_pages(str(uuid4()), "run-1")

        assert exc_info.value.type == "RunConflictError"
        patched.logger.warning.assert_called_once()

    async def test_model_outage_propagates_for_retry(self, patched, pipeline):
        pipeline.extract.side_effect = APIClientError("LLM API returned 503")

        with pytest.raises(APIClientError):
            await parse_stages.extract_pages(str(uuid4()), "run-1")


class TestMarkParseFailed:
    async def test_marks_failure(self, patched, pipeline):
        result = await parse_stages.mark_parse_failed(str(uuid4()), "run-1", "RENDER_FAILED", "boom")

        assert result == {"marked": True, "status": "RENDER_FAILED"}
        assert pipeline.mark_failed.await_args.args[2].value == "RENDER_FAILED"

    async def test_finalized_parse_reports_its_real_status(self, patched, pipeline):
        pipeline.mark_failed.side_effect = InvalidTransitionError(
            "Parse cannot move from COMPLETED to EXTRACT_FAILED"
        )
        pipeline.lifecycle.repository.get_by_id = AsyncMock(return_value=MagicMock(status="COMPLETED"))

        result = await parse_stages.mark_parse_failed(str(uuid4()), "run-1", "EXTRACT_FAILED", "boom")

        assert result == {"marked": False, "status": "COMPLETED"}

    async def test_deleted_parse_has_no_status(self, patched, pipeline):
        pipeline.mark_failed.side_effect = ParseNotFoundError("Parse not found")

        result = await parse_stages.mark_parse_failed(str(uuid4()), "run-1", "EXTRACT_FAILED", "boom")

        assert result == {"marked": False, "status": None}


class TestCleanupParse:
    async def test_cleanup_is_scoped_to_the_run(self, patched, pipeline):
        parse_id = str(uuid4())
        pipeline.cleanup.cleanup = AsyncMock(
            return_value=MagicMock(
                deleted_paths=[], cache_cleared=False, errors=[], skipped_reason="superseded"
            )
        )

        result = await parse_stages.cleanup_parse(parse_id, "run-1")

        assert pipeline.cleanup.cleanup.await_args.kwargs == {"run_id": "run-1"}
        assert result["skipped_reason"] == "superseded"
