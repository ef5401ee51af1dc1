# tenant_file_store/repositories/pg_repositoryQuota.py

import logging
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

from sqlalchemy import case, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tenant_file_store.config import GIB
from tenant_file_store.db.base import get_session
from tenant_file_store.db.quota_orm import UserQuotaORM
from tenant_file_store.exceptions import DatabaseError, ValidationError
from tenant_file_store.models.quota import QuotaRecord

logger = logging.getLogger(__name__)

DEFAULT_LIMIT_BYTES = 5 * GIB


class QuotaRepository:
    """
    Учет занятого места по пользователям.

    Проверка (can_admit) и списание (charge) - два отдельных неатомарных вызова:
    параллельные загрузки одного пользователя могут кратковременно превысить лимит.
    Квота рекомендательная и синхронизируется через resync. Для строгого режима
    есть try_reserve - проверка и списание одним условным UPDATE.

    Изменения used_bytes делаются одним SQL-выражением (used_bytes = used_bytes + n),
    без read-modify-write в памяти процесса, так что конкурентные charge/release
    сериализуются самой БД на уровне строки.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], default_limit_bytes: int = DEFAULT_LIMIT_BYTES):
        self._session_factory = session_factory
        self._default_limit = default_limit_bytes

    @property
    def default_limit_bytes(self) -> int:
        return self._default_limit

    async def get(self, user_id: UUID) -> Optional[QuotaRecord]:
        async with get_session(self._session_factory) as session:
            stmt = select(UserQuotaORM).where(UserQuotaORM.user_id == user_id)
            try:
                orm = (await session.execute(stmt)).scalar_one_or_none()
            except SQLAlchemyError as e:
                raise DatabaseError(f"Failed to load quota for user {user_id}: {e}") from e
            return orm.to_pydantic() if orm else None

    async def get_or_create(self, user_id: UUID, default_limit: Optional[int] = None) -> QuotaRecord:
        """Находит квоту пользователя или лениво создает ее с лимитом по умолчанию."""
        existing = await self.get(user_id)
        if existing:
            return existing

        limit = self._default_limit if default_limit is None else default_limit
        async with get_session(self._session_factory) as session:
            try:
                orm = UserQuotaORM(user_id=user_id, used_bytes=0, limit_bytes=limit)
                session.add(orm)
                await session.commit()
                await session.refresh(orm)
                logger.info(f"Created quota for user {user_id} with limit {limit} bytes")
                return orm.to_pydantic()
            except IntegrityError:
                # Параллельный запрос успел создать строку первым - берем ее
                await session.rollback()
            except SQLAlchemyError as e:
                await session.rollback()
                raise DatabaseError(f"Failed to create quota for user {user_id}: {e}") from e

        created = await self.get(user_id)
        if created is None:
            raise DatabaseError(f"Quota for user {user_id} vanished after concurrent create.")
        return created

    async def can_admit(self, user_id: UUID, size: int) -> bool:
        if size < 0:
            return False
        quota = await self.get_or_create(user_id)
        return quota.can_store(size)

    async def _apply(self, user_id: UUID, stmt) -> bool:
        async with get_session(self._session_factory) as session:
            try:
                res = await session.execute(stmt)
                await session.commit()
                return res.rowcount > 0
            except SQLAlchemyError as e:
                await session.rollback()
                raise DatabaseError(f"Quota update failed for user {user_id}: {e}") from e

    async def charge(self, user_id: UUID, size: int) -> bool:
        if size < 0:
            raise ValidationError("Bytes cannot be negative.")
        await self.get_or_create(user_id)
        stmt = (
            update(UserQuotaORM)
            .where(UserQuotaORM.user_id == user_id)
            .values(used_bytes=UserQuotaORM.used_bytes + size, updated_at=datetime.now(timezone.utc))
        )
        return await self._apply(user_id, stmt)

    async def release(self, user_id: UUID, size: int) -> bool:
        """Уменьшает used_bytes, не опускаясь ниже нуля (повторный release оставляет дрейф, его чинит resync)."""
        if size < 0:
            raise ValidationError("Bytes cannot be negative.")
        await self.get_or_create(user_id)
        stmt = (
            update(UserQuotaORM)
            .where(UserQuotaORM.user_id == user_id)
            .values(
                used_bytes=case(
                    (UserQuotaORM.used_bytes - size < 0, 0),
                    else_=UserQuotaORM.used_bytes - size,
                ),
                updated_at=datetime.now(timezone.utc),
            )
        )
        return await self._apply(user_id, stmt)

    async def try_reserve(self, user_id: UUID, size: int) -> bool:
        """Атомарно: списать size, только если после списания лимит не превышен."""
        if size < 0:
            return False
        await self.get_or_create(user_id)
        stmt = (
            update(UserQuotaORM)
            .where(
                UserQuotaORM.user_id == user_id,
                UserQuotaORM.used_bytes + size <= UserQuotaORM.limit_bytes,
            )
            .values(used_bytes=UserQuotaORM.used_bytes + size, updated_at=datetime.now(timezone.utc))
        )
        return await self._apply(user_id, stmt)

    async def update_limit(self, user_id: UUID, limit_bytes: int) -> bool:
        if limit_bytes < 0:
            raise ValidationError("Limit bytes cannot be negative.")
        stmt = (
            update(UserQuotaORM)
            .where(UserQuotaORM.user_id == user_id)
            .values(limit_bytes=limit_bytes, updated_at=datetime.now(timezone.utc))
        )
        updated = await self._apply(user_id, stmt)
        if updated:
            logger.info(f"Updated quota limit for user {user_id} to {limit_bytes} bytes")
        return updated

    async def resync(self, user_id: UUID, true_used: int) -> bool:
        """Перезаписывает used_bytes фактическим значением (ремонт дрейфа)."""
        if true_used < 0:
            raise ValidationError("Used bytes cannot be negative.")
        stmt = (
            update(UserQuotaORM)
            .where(UserQuotaORM.user_id == user_id)
            .values(used_bytes=true_used, updated_at=datetime.now(timezone.utc))
        )
        updated = await self._apply(user_id, stmt)
        if updated:
            logger.info(f"Resynced quota for user {user_id}: used_bytes={true_used}")
        return updated
