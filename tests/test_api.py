"""Tests for API endpoints."""

from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from app.api.v1.endpoints.parses import get_parse_service
from app.core.config import settings
from app.core.exceptions import (
    AppError,
    InvalidTransitionError,
    ParseNotFoundError,
    PreviewUnavailableError,
    RenderError,
    RenderErrorKind,
    StorageError,
)
from app.main import app
from app.services.lifecycle import CleanupReport
from app.services.progress_channel import ProgressEntry

OWNER_HEADERS = {"X-Owner-Id": "owner-1"}


def make_parse(**overrides) -> SimpleNamespace:
    values = {
        "id": uuid4(),
        "owner_id": "owner-1",
        "file_name": "packet.pdf",
        "status": "COMPLETED",
        "page_count": 10,
        "critical_pages": [3, 9],
        "needs_review": False,
        "overall_confidence": 85.0,
        "canonical_extraction": {"purchase_price": 510000.0},
        "confidence_summary": {"overall": 85.0, "provenance": {"purchase_price": 9}},
        "validation_warnings": [],
        "error_message": None,
        "attempt_count": 1,
        "preview_key": "parses/x/previews.zip",
        "created_at": datetime(2025, 1, 12, tzinfo=timezone.utc),
        "updated_at": datetime(2025, 1, 12, tzinfo=timezone.utc),
        "finalized_at": datetime(2025, 1, 12, tzinfo=timezone.utc),
        "archived_at": None,
    }
    values.update(overrides)
    return SimpleNamespace(**values)


@pytest.fixture
def mock_service() -> AsyncMock:
    service = AsyncMock()
    app.dependency_overrides[get_parse_service] = lambda: service
    return service


class TestSubmitParse:
    """Upload endpoint: validation happens before anything is stored."""

    def test_submit_returns_accepted(
        self, test_client: TestClient, mock_service: AsyncMock, sample_pdf_content: bytes
    ) -> None:
        parse_id = uuid4()
        mock_service.submit.return_value = {
            "parse_id": str(parse_id),
            "workflow_id": f"parse-{parse_id}-attempt-1",
            "status": "PENDING",
        }

        response = test_client.post(
            "/api/v1/parses",
            files={"file": ("packet.pdf", sample_pdf_content, "application/pdf")},
            headers=OWNER_HEADERS,
        )

        assert response.status_code == 202
        body = response.json()
        assert body["status"] is True
        assert body["data"]["parse_id"] == str(parse_id)
        assert body["data"]["status"] == "PENDING"
        mock_service.submit.assert_awaited_once_with("owner-1", "packet.pdf", sample_pdf_content)

    def test_submit_requires_owner(
        self, test_client: TestClient, mock_service: AsyncMock, sample_pdf_content: bytes
    ) -> None:
        response = test_client.post(
            "/api/v1/parses",
            files={"file": ("packet.pdf", sample_pdf_content, "application/pdf")},
        )

        assert response.status_code == 401
        assert response.json()["detail"]["title"] == "Missing Owner"
        mock_service.submit.assert_not_called()

    def test_submit_rejects_non_pdf(self, test_client: TestClient, mock_service: AsyncMock) -> None:
        mock_service.submit.side_effect = RenderError(
            "Document is not a PDF", kind=RenderErrorKind.INVALID_INPUT
        )

        response = test_client.post(
            "/api/v1/parses",
            files={"file": ("notes.txt", b"hello", "text/plain")},
            headers=OWNER_HEADERS,
        )

        assert response.status_code == 400
        detail = response.json()["detail"]
        assert detail["status"] == 400
        assert detail["detail"] == "Document is not a PDF"

    def test_submit_rejects_oversized_upload(
        self, test_client: TestClient, mock_service: AsyncMock, sample_pdf_content: bytes
    ) -> None:
        with patch.object(settings.render, "max_bytes", 16):
            response = test_client.post(
                "/api/v1/parses",
                files={"file": ("packet.pdf", sample_pdf_content, "application/pdf")},
                headers=OWNER_HEADERS,
            )

        assert response.status_code == 413
        mock_service.submit.assert_not_called()

    def test_submit_reports_scheduling_failure(
        self, test_client: TestClient, mock_service: AsyncMock, sample_pdf_content: bytes
    ) -> None:
        mock_service.submit.side_effect = AppError("Could not schedule processing")

        response = test_client.post(
            "/api/v1/parses",
            files={"file": ("packet.pdf", sample_pdf_content, "application/pdf")},
            headers=OWNER_HEADERS,
        )

        assert response.status_code == 503


class TestParseEndpoints:
    def test_get_parse(self, test_client: TestClient, mock_service: AsyncMock) -> None:
        parse = make_parse()
        mock_service.get.return_value = parse

        response = test_client.get(f"/api/v1/parses/{parse.id}", headers=OWNER_HEADERS)

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["status"] == "COMPLETED"
        assert data["canonical_extraction"]["purchase_price"] == 510000.0
        assert data["has_preview"] is True
        assert "preview_key" not in data

    def test_get_parse_not_found(self, test_client: TestClient, mock_service: AsyncMock) -> None:
        parse_id = uuid4()
        mock_service.get.side_effect = ParseNotFoundError(f"Parse {parse_id} not found")

        response = test_client.get(f"/api/v1/parses/{parse_id}", headers=OWNER_HEADERS)

        assert response.status_code == 404
        assert response.json()["detail"]["instance"] == f"/api/v1/parses/{parse_id}"

    def test_get_parse_rejects_malformed_id(self, test_client: TestClient, mock_service: AsyncMock) -> None:
        response = test_client.get("/api/v1/parses/not-a-uuid", headers=OWNER_HEADERS)

        assert response.status_code == 422

    def test_list_parses(self, test_client: TestClient, mock_service: AsyncMock) -> None:
        mock_service.list_parses.return_value = [make_parse(), make_parse(status="NEEDS_REVIEW")]

        response = test_client.get(
            "/api/v1/parses", params={"status": "NEEDS_REVIEW", "limit": 10}, headers=OWNER_HEADERS
        )

        assert response.status_code == 200
        data = response.json()["data"]
        assert len(data["items"]) == 2
        assert data["limit"] == 10
        kwargs = mock_service.list_parses.await_args.kwargs
        assert kwargs["status"].value == "NEEDS_REVIEW"
        assert kwargs["limit"] == 10

    def test_progress_before_first_update(self, test_client: TestClient, mock_service: AsyncMock) -> None:
        mock_service.progress_for.return_value = None

        response = test_client.get(f"/api/v1/parses/{uuid4()}/progress", headers=OWNER_HEADERS)

        assert response.status_code == 200
        assert response.json()["data"] == {"phase": None, "message": None, "done": False}

    def test_progress_entry(self, test_client: TestClient, mock_service: AsyncMock) -> None:
        mock_service.progress_for.return_value = ProgressEntry(
            phase="extracting", message="Reading terms from 2 key pages"
        )

        response = test_client.get(f"/api/v1/parses/{uuid4()}/progress", headers=OWNER_HEADERS)

        data = response.json()["data"]
        assert data["phase"] == "extracting"
        assert data["done"] is False

    def test_retry_of_completed_parse_conflicts(self, test_client: TestClient, mock_service: AsyncMock) -> None:
        mock_service.retry.side_effect = InvalidTransitionError(
            "Parse cannot move from COMPLETED to PENDING"
        )

        response = test_client.post(f"/api/v1/parses/{uuid4()}/retry", headers=OWNER_HEADERS)

        assert response.status_code == 409
        assert response.json()["detail"]["title"] == "Invalid Transition"

    def test_retry_accepted(self, test_client: TestClient, mock_service: AsyncMock) -> None:
        parse_id = uuid4()
        mock_service.retry.return_value = {
            "parse_id": str(parse_id),
            "workflow_id": f"parse-{parse_id}-attempt-2",
            "status": "PENDING",
        }

        response = test_client.post(f"/api/v1/parses/{parse_id}/retry", headers=OWNER_HEADERS)

        assert response.status_code == 202
        assert response.json()["data"]["workflow_id"].endswith("attempt-2")

    def test_cleanup_reports_partial_failure(self, test_client: TestClient, mock_service: AsyncMock) -> None:
        parse_id = uuid4()
        mock_service.cleanup.return_value = CleanupReport(
            parse_id=str(parse_id),
            cache_cleared=True,
            errors=["Delete failed: storage unavailable"],
        )

        response = test_client.post(f"/api/v1/parses/{parse_id}/cleanup", headers=OWNER_HEADERS)

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["cache_cleared"] is True
        assert data["errors"] == ["Delete failed: storage unavailable"]

    def test_cleanup_deferred_while_processing(self, test_client: TestClient, mock_service: AsyncMock) -> None:
        parse_id = uuid4()
        mock_service.cleanup.return_value = CleanupReport(
            parse_id=str(parse_id), skipped_reason="deferred while RENDERED"
        )

        response = test_client.post(f"/api/v1/parses/{parse_id}/cleanup", headers=OWNER_HEADERS)

        assert response.status_code == 200
        body = response.json()
        assert body["message"] == "Cleanup deferred"
        assert body["data"]["skipped_reason"] == "deferred while RENDERED"
        assert body["data"]["deleted_paths"] == []

    def test_preview_link(self, test_client: TestClient, mock_service: AsyncMock) -> None:
        parse_id = uuid4()
        mock_service.preview_url.return_value = {
            "parse_id": str(parse_id),
            "url": "http://storage.test/signed/previews.zip",
            "expires_in": 3600,
            "page_count": 10,
        }

        response = test_client.get(f"/api/v1/parses/{parse_id}/preview", headers=OWNER_HEADERS)

        assert response.status_code == 200
        assert response.json()["data"]["url"] == "http://storage.test/signed/previews.zip"
        mock_service.preview_url.assert_awaited_once_with(parse_id, "owner-1")

    def test_preview_purged(self, test_client: TestClient, mock_service: AsyncMock) -> None:
        mock_service.preview_url.side_effect = PreviewUnavailableError("Parse has no preview available")

        response = test_client.get(f"/api/v1/parses/{uuid4()}/preview", headers=OWNER_HEADERS)

        assert response.status_code == 404
        assert response.json()["detail"]["title"] == "Preview Not Available"

    def test_archive(self, test_client: TestClient, mock_service: AsyncMock) -> None:
        parse = make_parse(status="ARCHIVED", archived_at=datetime(2025, 2, 1, tzinfo=timezone.utc))
        mock_service.archive.return_value = parse

        response = test_client.post(f"/api/v1/parses/{parse.id}/archive", headers=OWNER_HEADERS)

        assert response.status_code == 200
        assert response.json()["data"]["status"] == "ARCHIVED"

    def test_delete_storage_failure(self, test_client: TestClient, mock_service: AsyncMock) -> None:
        mock_service.delete.side_effect = StorageError("Delete failed")

        response = test_client.delete(f"/api/v1/parses/{uuid4()}", headers=OWNER_HEADERS)

        assert response.status_code == 502

    def test_bulk_delete(self, test_client: TestClient, mock_service: AsyncMock) -> None:
        kept, other = uuid4(), uuid4()
        mock_service.bulk_delete.return_value = [kept]

        response = test_client.post(
            "/api/v1/parses/bulk-delete",
            json={"parse_ids": [str(kept), str(other)]},
            headers=OWNER_HEADERS,
        )

        assert response.status_code == 200
        assert response.json()["data"] == {"deleted": [str(kept)]}

    def test_bulk_delete_requires_ids(self, test_client: TestClient, mock_service: AsyncMock) -> None:
        response = test_client.post(
            "/api/v1/parses/bulk-delete", json={"parse_ids": []}, headers=OWNER_HEADERS
        )

        assert response.status_code == 422
