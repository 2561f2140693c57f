from typing import Annotated, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, File, Header, HTTPException, Query, Request, UploadFile, status
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.database import get_async_session as get_session
from app.core.exceptions import (
    AppError,
    InvalidTransitionError,
    ParseNotFoundError,
    PreviewUnavailableError,
    RenderError,
    StorageError,
)
from app.models.parse import ParseStatus
from app.schemas.common import ApiResponse
from app.schemas.parses import (
    BulkDeleteRequest,
    CleanupResponse,
    ParseResponse,
    ParseSubmissionResponse,
    ParseSummary,
    PreviewResponse,
)
from app.services.parse_service import ParseService
from app.services.progress_channel import ProgressStreamer
from app.utils.logging import get_logger
from app.utils.responses import create_api_response, create_error_detail

LOGGER = get_logger(__name__)

router = APIRouter()


async def get_parse_service(
    db_session: Annotated[AsyncSession, Depends(get_session)]
) -> ParseService:
    return ParseService(db_session)


async def get_owner_id(
    request: Request,
    x_owner_id: Annotated[Optional[str], Header()] = None,
) -> str:
    if not x_owner_id:
        raise_http_error(request, status.HTTP_401_UNAUTHORIZED, "Missing Owner", "X-Owner-Id header is required")
    return x_owner_id


def raise_http_error(request: Request, status_code: int, title: str, detail: str) -> None:
    error_detail = create_error_detail(title=title, status=status_code, detail=detail, request=request)
    raise HTTPException(status_code=status_code, detail=error_detail.model_dump(mode="json"))


def raise_for_app_error(request: Request, error: AppError) -> None:
    if isinstance(error, ParseNotFoundError):
        raise_http_error(request, status.HTTP_404_NOT_FOUND, "Parse Not Found", error.message)
    if isinstance(error, PreviewUnavailableError):
        raise_http_error(request, status.HTTP_404_NOT_FOUND, "Preview Not Available", error.message)
    if isinstance(error, InvalidTransitionError):
        raise_http_error(request, status.HTTP_409_CONFLICT, "Invalid Transition", error.message)
    if isinstance(error, RenderError):
        raise_http_error(request, status.HTTP_400_BAD_REQUEST, "Invalid Document", error.message)
    if isinstance(error, StorageError):
        raise_http_error(request, status.HTTP_502_BAD_GATEWAY, "Storage Unavailable", error.message)
    LOGGER.error(f"Unhandled application error: {error.message}", exc_info=True)
    raise_http_error(request, status.HTTP_503_SERVICE_UNAVAILABLE, "Service Unavailable", error.message)


Owner = Annotated[str, Depends(get_owner_id)]
Service = Annotated[ParseService, Depends(get_parse_service)]


@router.post(
    "",
    response_model=ApiResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Submit a contract packet",
    operation_id="submit_parse",
)
async def submit_parse(
    request: Request,
    owner_id: Owner,
    parse_service: Service,
    file: UploadFile = File(..., description="Contract packet PDF"),
) -> ApiResponse:
    """Store the packet and schedule its processing; returns before any page is rendered."""
    content = await file.read(settings.render.max_bytes + 1)
    if len(content) > settings.render.max_bytes:
        raise_http_error(
            request,
            status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            "Document Too Large",
            f"Documents are limited to {settings.render.max_bytes} bytes",
        )

    try:
        result = await parse_service.submit(owner_id, file.filename or "document.pdf", content)
    except AppError as e:
        raise_for_app_error(request, e)

    return create_api_response(
        data=ParseSubmissionResponse(**result),
        message="Parse accepted for processing",
        request=request,
    )


@router.get(
    "",
    response_model=ApiResponse,
    summary="List parses",
    operation_id="list_parses",
)
async def list_parses(
    request: Request,
    owner_id: Owner,
    parse_service: Service,
    status_filter: Optional[ParseStatus] = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
) -> ApiResponse:
    parses = await parse_service.list_parses(owner_id, status=status_filter, skip=offset, limit=limit)
    return create_api_response(
        data={
            "items": [ParseSummary.model_validate(p).model_dump(mode="json") for p in parses],
            "limit": limit,
            "offset": offset,
        },
        message="Parses retrieved successfully",
        request=request,
    )


@router.post(
    "/bulk-delete",
    response_model=ApiResponse,
    summary="Delete several parses",
    operation_id="bulk_delete_parses",
)
async def bulk_delete_parses(
    request: Request,
    payload: BulkDeleteRequest,
    owner_id: Owner,
    parse_service: Service,
) -> ApiResponse:
    deleted = await parse_service.bulk_delete(payload.parse_ids, owner_id)
    return create_api_response(
        data={"deleted": [str(parse_id) for parse_id in deleted]},
        message=f"Deleted {len(deleted)} parses",
        request=request,
    )


@router.get(
    "/{parse_id}",
    response_model=ApiResponse,
    summary="Get parse status and result",
    operation_id="get_parse",
)
async def get_parse(
    request: Request,
    parse_id: UUID,
    owner_id: Owner,
    parse_service: Service,
) -> ApiResponse:
    try:
        parse = await parse_service.get(parse_id, owner_id)
    except AppError as e:
        raise_for_app_error(request, e)

    return create_api_response(
        data=ParseResponse.from_parse(parse),
        message="Parse retrieved successfully",
        request=request,
    )


@router.get(
    "/{parse_id}/progress",
    response_model=ApiResponse,
    summary="Get current progress",
    operation_id="get_parse_progress",
)
async def get_parse_progress(
    request: Request,
    parse_id: UUID,
    owner_id: Owner,
    parse_service: Service,
) -> ApiResponse:
    try:
        entry = await parse_service.progress_for(parse_id, owner_id)
    except AppError as e:
        raise_for_app_error(request, e)

    return create_api_response(
        data=entry.model_dump(mode="json") if entry else {"phase": None, "message": None, "done": False},
        message="Progress retrieved successfully",
        request=request,
    )


@router.get(
    "/{parse_id}/stream",
    summary="Stream progress via SSE",
    operation_id="stream_parse_progress",
)
async def stream_parse_progress(
    request: Request,
    parse_id: UUID,
    owner_id: Owner,
    parse_service: Service,
) -> StreamingResponse:
    try:
        await parse_service.get(parse_id, owner_id)
    except AppError as e:
        raise_for_app_error(request, e)

    streamer = ProgressStreamer(parse_service.progress)
    return StreamingResponse(
        streamer.stream(str(parse_id)),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


@router.get(
    "/{parse_id}/preview",
    response_model=ApiResponse,
    summary="Get a download link for the page previews",
    operation_id="get_parse_preview",
)
async def get_parse_preview(
    request: Request,
    parse_id: UUID,
    owner_id: Owner,
    parse_service: Service,
) -> ApiResponse:
    """Signed URL of the high-resolution preview archive, kept for a limited time after finalization."""
    try:
        preview = await parse_service.preview_url(parse_id, owner_id)
    except AppError as e:
        raise_for_app_error(request, e)

    return create_api_response(
        data=PreviewResponse(**preview),
        message="Preview link created",
        request=request,
    )


@router.post(
    "/{parse_id}/retry",
    response_model=ApiResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Retry a failed parse",
    operation_id="retry_parse",
)
async def retry_parse(
    request: Request,
    parse_id: UUID,
    owner_id: Owner,
    parse_service: Service,
) -> ApiResponse:
    try:
        result = await parse_service.retry(parse_id, owner_id)
    except AppError as e:
        raise_for_app_error(request, e)

    return create_api_response(
        data=ParseSubmissionResponse(**result),
        message="Parse resubmitted for processing",
        request=request,
    )


@router.post(
    "/{parse_id}/cleanup",
    response_model=ApiResponse,
    summary="Release transient artifacts of a parse",
    operation_id="cleanup_parse",
)
async def cleanup_parse(
    request: Request,
    parse_id: UUID,
    owner_id: Owner,
    parse_service: Service,
) -> ApiResponse:
    try:
        report = await parse_service.cleanup(parse_id, owner_id)
    except AppError as e:
        raise_for_app_error(request, e)

    return create_api_response(
        data=CleanupResponse(
            parse_id=parse_id,
            deleted_paths=report.deleted_paths,
            cache_cleared=report.cache_cleared,
            errors=report.errors,
            skipped_reason=report.skipped_reason,
        ),
        message="Cleanup deferred" if report.skipped else "Cleanup finished",
        request=request,
    )


@router.post(
    "/{parse_id}/archive",
    response_model=ApiResponse,
    summary="Archive a finished parse",
    operation_id="archive_parse",
)
async def archive_parse(
    request: Request,
    parse_id: UUID,
    owner_id: Owner,
    parse_service: Service,
) -> ApiResponse:
    try:
        parse = await parse_service.archive(parse_id, owner_id)
    except AppError as e:
        raise_for_app_error(request, e)

    return create_api_response(
        data=ParseResponse.from_parse(parse),
        message="Parse archived",
        request=request,
    )


@router.delete(
    "/{parse_id}",
    response_model=ApiResponse,
    summary="Delete a parse",
    operation_id="delete_parse",
)
async def delete_parse(
    request: Request,
    parse_id: UUID,
    owner_id: Owner,
    parse_service: Service,
) -> ApiResponse:
    try:
        await parse_service.delete(parse_id, owner_id)
    except AppError as e:
        raise_for_app_error(request, e)

    return create_api_response(
        data={"parse_id": str(parse_id)},
        message="Parse deleted",
        request=request,
    )
