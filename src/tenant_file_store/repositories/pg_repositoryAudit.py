import logging
from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tenant_file_store.db.audit_orm import AuditLogORM
from tenant_file_store.db.base import get_session
from tenant_file_store.exceptions import DatabaseError
from tenant_file_store.models.audit import AuditEntry

logger = logging.getLogger(__name__)


class AuditRepository:
    """Append-only хранилище записей аудита. Update/delete намеренно отсутствуют."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def record(self, entry: AuditEntry) -> None:
        async with get_session(self._session_factory) as session:
            try:
                session.add(AuditLogORM(**entry.model_dump()))
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                raise DatabaseError(f"Failed to write audit entry: {e}") from e

    async def list_for_user(
        self,
        user_id: UUID,
        action: Optional[str] = None,
        limit: int | None = 100,
    ) -> list[AuditEntry]:
        async with get_session(self._session_factory) as session:
            q = select(AuditLogORM).where(AuditLogORM.user_id == user_id)
            if action:
                q = q.where(AuditLogORM.action == action)
            q = q.order_by(AuditLogORM.timestamp.asc())
            if limit is not None:
                q = q.limit(limit)
            try:
                rows = await session.execute(q)
            except SQLAlchemyError as e:
                raise DatabaseError(f"Failed to read audit entries for user {user_id}: {e}") from e
            return [o.to_pydantic() for o in rows.scalars().all()]

    async def list_for_entity(self, entity_type: str, entity_id: str) -> list[AuditEntry]:
        async with get_session(self._session_factory) as session:
            q = (
                select(AuditLogORM)
                .where(AuditLogORM.entity_type == entity_type, AuditLogORM.entity_id == entity_id)
                .order_by(AuditLogORM.timestamp.asc())
            )
            try:
                rows = await session.execute(q)
            except SQLAlchemyError as e:
                raise DatabaseError(f"Failed to read audit entries for {entity_type} {entity_id}: {e}") from e
            return [o.to_pydantic() for o in rows.scalars().all()]
