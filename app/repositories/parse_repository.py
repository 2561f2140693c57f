import uuid
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import ColumnElement, delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import SQLAlchemyError

from app.database.models import Parse
from app.models.parse import ParseStatus
from app.repositories.base_repository import BaseRepository


class ParseRepository(BaseRepository[Parse]):
    """Repository for Parse records.

    Status changes are conditional single-statement updates: the new status
    and the data that goes with it are written together, and only when the
    row is still in one of the expected states.
    """

    def __init__(self, session: AsyncSession):
        super().__init__(session, Parse)

    async def create_parse(
        self,
        owner_id: str,
        file_name: str,
        parse_id: Optional[uuid.UUID] = None,
        raw_document_key: Optional[str] = None,
        run_id: Optional[str] = None,
    ) -> Parse:
        return await self.create(
            id=parse_id or uuid.uuid4(),
            owner_id=owner_id,
            file_name=file_name,
            status=ParseStatus.PENDING.value,
            raw_document_key=raw_document_key,
            active_run_id=run_id,
            attempt_count=1 if run_id else 0,
        )

    async def conditional_update(
        self,
        parse_id: uuid.UUID,
        from_statuses: Iterable[ParseStatus],
        values: Dict[str, Any],
        run_id: Optional[str] = None,
        extra_conditions: Iterable[ColumnElement[bool]] = (),
    ) -> Optional[Parse]:
        """Apply ``values`` if the parse is in ``from_statuses`` (and owned by ``run_id``).

        Returns:
            The refreshed Parse, or None when no row matched.
        """
        allowed = [status.value for status in from_statuses]
        stmt = (
            update(Parse)
            .where(Parse.id == parse_id, Parse.status.in_(allowed))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if run_id is not None:
            stmt = stmt.where(Parse.active_run_id == run_id)
        for condition in extra_conditions:
            stmt = stmt.where(condition)

        try:
            result = await self.session.execute(stmt)
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            self.logger.error(f"Conditional update of parse {parse_id} failed: {e}", exc_info=True)
            raise

        if result.rowcount == 0:
            return None
        return await self.get_by_id(parse_id)

    async def clear_fields(
        self, parse_id: uuid.UUID, fields: Iterable[str], run_id: Optional[str] = None
    ) -> bool:
        """Null out reference columns regardless of status, optionally only while ``run_id`` owns the parse."""
        values = {field: None for field in fields}
        if not values:
            return False
        stmt = (
            update(Parse)
            .where(Parse.id == parse_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if run_id is not None:
            stmt = stmt.where(Parse.active_run_id == run_id)
        result = await self.session.execute(stmt)
        await self.session.commit()
        return result.rowcount > 0

    async def list_for_owner(
        self,
        owner_id: str,
        status: Optional[ParseStatus] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> List[Parse]:
        query = select(Parse).where(Parse.owner_id == owner_id)
        if status is not None:
            query = query.where(Parse.status == status.value)
        query = query.order_by(Parse.created_at.desc(), Parse.id.desc()).offset(skip).limit(limit)
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def get_many_for_owner(self, parse_ids: List[uuid.UUID], owner_id: str) -> List[Parse]:
        if not parse_ids:
            return []
        result = await self.session.execute(
            select(Parse).where(Parse.id.in_(parse_ids), Parse.owner_id == owner_id)
        )
        return list(result.scalars().all())

    async def delete_parses(self, parse_ids: List[uuid.UUID]) -> int:
        if not parse_ids:
            return 0
        result = await self.session.execute(
            delete(Parse)
            .where(Parse.id.in_(parse_ids))
            .execution_options(synchronize_session=False)
        )
        await self.session.commit()
        return result.rowcount

    async def find_expired_previews(self, finalized_before: datetime, limit: int = 100) -> List[Parse]:
        result = await self.session.execute(
            select(Parse)
            .where(Parse.preview_key.is_not(None), Parse.finalized_at < finalized_before)
            .order_by(Parse.finalized_at)
            .limit(limit)
        )
        return list(result.scalars().all())
