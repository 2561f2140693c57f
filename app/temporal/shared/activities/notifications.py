"""Completion notification activity, retried on its own policy."""

from typing import Dict
from uuid import UUID

from temporalio import activity

from app.core.database import async_session_maker
from app.repositories.parse_repository import ParseRepository
from app.services.notifications import NotificationService
from app.temporal.core.activity_registry import ActivityRegistry


@ActivityRegistry.register("parsing", "notify_parse_finished")
@activity.defn
async def notify_parse_finished(parse_id: str) -> bool:
    """Send the terminal state of a parse to the configured webhook."""
    async with async_session_maker() as session:
        parse = await ParseRepository(session).get_by_id(UUID(parse_id))

    if parse is None:
        activity.logger.warning(f"Parse {parse_id} disappeared before notification")
        return False

    payload: Dict = {
        "parse_id": parse_id,
        "owner_id": parse.owner_id,
        "status": parse.status,
        "needs_review": parse.needs_review,
        "overall_confidence": parse.overall_confidence,
        "error_message": parse.error_message,
    }
    return await NotificationService().send_parse_finished(payload)
