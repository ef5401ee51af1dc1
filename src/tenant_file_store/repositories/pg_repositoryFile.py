import logging
import os
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

from sqlalchemy import delete, func, or_, select, text, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tenant_file_store.db.base import get_session
from tenant_file_store.db.file_orm import FileORM
from tenant_file_store.exceptions import DatabaseError
from tenant_file_store.models.file import FileCreate, FileRecord, FileUpdate

logger = logging.getLogger(__name__)


def extension_of(file_name: str) -> str:
    return os.path.splitext(file_name)[1].lower()


class FileRepository:
    """
    Каталог метаданных файлов. Все выборки по владельцу, кроме явно
    внутренних (hard delete, агрегат удержанных байт), исключают soft-deleted строки.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def check_connection(self):
        """Проверяет соединение с базой данных, выполняя простой запрос."""
        logger.debug("Checking database connection...")
        async with get_session(self._session_factory) as session:
            try:
                await session.execute(text("SELECT 1"))
            except SQLAlchemyError as e:
                logger.error(f"Database connection failed: {e}")
                raise DatabaseError("Failed to connect to the database.") from e

    # ――― queries ――― #
    @staticmethod
    def _owner_scope(owner_id: UUID, folder_id: Optional[UUID]):
        # folder_id=None - корень пользователя, а не "все папки"
        folder_clause = FileORM.folder_id.is_(None) if folder_id is None else FileORM.folder_id == folder_id
        return (FileORM.owner_id == owner_id, FileORM.is_deleted.is_(False), folder_clause)

    @staticmethod
    def _search_clause(term: str):
        needle = term.strip().lower()
        return or_(
            func.lower(FileORM.file_name).contains(needle, autoescape=True),
            func.lower(func.coalesce(FileORM.description, "")).contains(needle, autoescape=True),
        )

    async def create(self, data: FileCreate) -> FileRecord:
        orm = FileORM(**data.model_dump())
        async with get_session(self._session_factory) as session:
            try:
                session.add(orm)
                await session.commit()
                await session.refresh(orm)
                return orm.to_pydantic()
            except SQLAlchemyError as e:
                await session.rollback()
                raise DatabaseError(f"Failed to save file metadata: {e}") from e

    async def get_by_id(self, file_id: UUID) -> Optional[FileRecord]:
        """По id отдается и soft-deleted строка."""
        async with get_session(self._session_factory) as session:
            try:
                orm = await session.get(FileORM, file_id)
            except SQLAlchemyError as e:
                raise DatabaseError(f"Failed to load file {file_id}: {e}") from e
            return orm.to_pydantic() if orm else None

    async def get_by_id_and_owner(
        self, file_id: UUID, owner_id: UUID, include_deleted: bool = False
    ) -> Optional[FileRecord]:
        async with get_session(self._session_factory) as session:
            stmt = select(FileORM).where(FileORM.id == file_id, FileORM.owner_id == owner_id)
            if not include_deleted:
                stmt = stmt.where(FileORM.is_deleted.is_(False))
            try:
                orm = (await session.execute(stmt)).scalar_one_or_none()
            except SQLAlchemyError as e:
                raise DatabaseError(f"Failed to load file {file_id}: {e}") from e
            return orm.to_pydantic() if orm else None

    async def list_by_owner(
        self,
        owner_id: UUID,
        folder_id: Optional[UUID] = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[FileRecord]:
        async with get_session(self._session_factory) as session:
            q = (
                select(FileORM)
                .where(*self._owner_scope(owner_id, folder_id))
                .order_by(FileORM.created_at.desc(), FileORM.id)
                .offset(offset)
            )
            if limit is not None:
                q = q.limit(limit)
            try:
                rows = await session.execute(q)
            except SQLAlchemyError as e:
                raise DatabaseError(f"Failed to list files for owner {owner_id}: {e}") from e
            return [o.to_pydantic() for o in rows.scalars().all()]

    async def count_by_owner(self, owner_id: UUID, folder_id: Optional[UUID] = None) -> int:
        stmt = select(func.count(FileORM.id)).where(*self._owner_scope(owner_id, folder_id))
        return await self._scalar(stmt, f"Failed to count files for owner {owner_id}")

    async def search(
        self,
        owner_id: UUID,
        term: str,
        folder_id: Optional[UUID] = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[FileRecord]:
        """Регистронезависимый поиск подстроки в имени и описании, без ранжирования."""
        async with get_session(self._session_factory) as session:
            q = select(FileORM).where(*self._owner_scope(owner_id, folder_id))
            if term and term.strip():
                q = q.where(self._search_clause(term))
            q = q.order_by(FileORM.created_at.desc(), FileORM.id).offset(offset)
            if limit is not None:
                q = q.limit(limit)
            try:
                rows = await session.execute(q)
            except SQLAlchemyError as e:
                raise DatabaseError(f"Failed to search files for owner {owner_id}: {e}") from e
            return [o.to_pydantic() for o in rows.scalars().all()]

    async def count_search(self, owner_id: UUID, term: str, folder_id: Optional[UUID] = None) -> int:
        stmt = select(func.count(FileORM.id)).where(*self._owner_scope(owner_id, folder_id))
        if term and term.strip():
            stmt = stmt.where(self._search_clause(term))
        return await self._scalar(stmt, f"Failed to count search results for owner {owner_id}")

    async def total_size_by_owner(self, owner_id: UUID) -> int:
        """Суммарный размер активных (не удаленных) файлов владельца."""
        stmt = select(func.coalesce(func.sum(FileORM.size_bytes), 0)).where(
            FileORM.owner_id == owner_id, FileORM.is_deleted.is_(False)
        )
        return int(await self._scalar(stmt, f"Failed to sum file sizes for owner {owner_id}"))

    async def total_retained_by_owner(self, owner_id: UUID) -> int:
        """
        Байты, которые реально лежат в хранилище: включая soft-deleted файлы
        (корзина держит байты и квоту до permanent delete). Источник правды для resync.
        """
        stmt = select(func.coalesce(func.sum(FileORM.size_bytes), 0)).where(FileORM.owner_id == owner_id)
        return int(await self._scalar(stmt, f"Failed to sum retained bytes for owner {owner_id}"))

    async def list_storage_keys(self) -> set[str]:
        async with get_session(self._session_factory) as session:
            try:
                rows = await session.execute(select(FileORM.storage_key))
            except SQLAlchemyError as e:
                raise DatabaseError(f"Failed to list storage keys: {e}") from e
            return set(rows.scalars().all())

    async def _scalar(self, stmt, error: str):
        async with get_session(self._session_factory) as session:
            try:
                return (await session.execute(stmt)).scalar_one()
            except SQLAlchemyError as e:
                raise DatabaseError(f"{error}: {e}") from e

    # ――― mutations ――― #
    async def update(self, file_id: UUID, patch: FileUpdate) -> Optional[FileRecord]:
        values = patch.model_dump(exclude_none=True)
        if "file_name" in values:
            values["extension"] = extension_of(values["file_name"])
        async with get_session(self._session_factory) as session:
            try:
                orm = await session.get(FileORM, file_id)
                if orm is None:
                    return None
                for key, value in values.items():
                    setattr(orm, key, value)
                orm.updated_at = datetime.now(timezone.utc)
                await session.commit()
                await session.refresh(orm)
                return orm.to_pydantic()
            except SQLAlchemyError as e:
                await session.rollback()
                raise DatabaseError(f"Failed to update file {file_id}: {e}") from e

    async def soft_delete(self, file_id: UUID) -> bool:
        now = datetime.now(timezone.utc)
        async with get_session(self._session_factory) as session:
            try:
                res = await session.execute(
                    update(FileORM)
                    .where(FileORM.id == file_id, FileORM.is_deleted.is_(False))
                    .values(is_deleted=True, deleted_at=now, updated_at=now)
                )
                await session.commit()
                return res.rowcount > 0
            except SQLAlchemyError as e:
                await session.rollback()
                raise DatabaseError(f"Failed to soft-delete file {file_id}: {e}") from e

    async def hard_delete(self, file_id: UUID) -> bool:
        async with get_session(self._session_factory) as session:
            try:
                res = await session.execute(delete(FileORM).where(FileORM.id == file_id))
                await session.commit()
                return res.rowcount > 0
            except SQLAlchemyError as e:
                await session.rollback()
                raise DatabaseError(f"Failed to delete file {file_id}: {e}") from e
