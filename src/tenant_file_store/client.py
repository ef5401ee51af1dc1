import logging
from typing import BinaryIO, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncEngine

from tenant_file_store.audit import EMPTY_ENTITY_ID, AuditSink
from tenant_file_store.exceptions import AuthenticationError, FileStoreError
from tenant_file_store.identity.validator import CachedIdentityValidator
from tenant_file_store.models import FileCreate, FileRecord, FileUpdate, Identity, Page, QuotaRecord, Result
from tenant_file_store.repositories.content_store import ContentStore
from tenant_file_store.repositories.pg_repositoryFile import FileRepository, extension_of
from tenant_file_store.repositories.pg_repositoryQuota import QuotaRepository
from tenant_file_store.utils.streams import StreamLike, as_sized_stream
from tenant_file_store.validators import validate_description, validate_file_name, validate_search_term

logger = logging.getLogger(__name__)

ENTITY_FILE = "File"
ACTION_UPLOAD = "FileUpload"
ACTION_DOWNLOAD = "FileDownload"
ACTION_UPDATE = "FileUpdate"
ACTION_DELETE = "FileDelete"
ACTION_PERMANENT_DELETE = "FilePermanentDelete"

NOT_FOUND_MESSAGE = "File not found or access denied."


class FileStoreClient:
    """
    Единая точка доступа к файловому хранилищу.

    Координирует валидацию ввода, квоты, байтовое хранилище, каталог
    метаданных и аудит. Бизнес-ошибки возвращаются как Result.failure,
    исключения наружу не выходят.
    """

    def __init__(
        self,
        file_repo: FileRepository,
        quota_repo: QuotaRepository,
        content_store: ContentStore,
        audit: AuditSink,
        identity: Optional[CachedIdentityValidator] = None,
        strict_admission: bool = False,
        engine: Optional[AsyncEngine] = None,
    ):
        self.files = file_repo
        self.quotas = quota_repo
        self.store = content_store
        self.audit = audit
        self.identity = identity
        self.strict_admission = strict_admission
        self._engine = engine
        self._closers = []

    def add_closer(self, closer) -> None:
        """Регистрирует корутин-функцию, которую нужно вызвать в aclose()."""
        self._closers.append(closer)

    # ――― health ――― #
    async def check_connections(self) -> dict[str, str]:
        """
        Проверяет доступность базы данных и хранилища байтов
        (и Identity-сервиса, если он настроен). Возвращает словарь статусов.
        """
        statuses = {}

        try:
            await self.files.check_connection()
            statuses["database"] = "ok"
        except FileStoreError as e:
            statuses["database"] = f"failed: {e}"

        try:
            await self.store.check_connection()
            statuses["storage"] = "ok"
        except FileStoreError as e:
            statuses["storage"] = f"failed: {e}"

        authority = getattr(self.identity, "authority", None)
        check = getattr(authority, "check_connection", None)
        if check is not None:
            try:
                await check()
                statuses["identity"] = "ok"
            except FileStoreError as e:
                statuses["identity"] = f"failed: {e}"

        return statuses

    # ――― identity ――― #
    async def validate_session(self, token: Optional[str]) -> Optional[Identity]:
        if self.identity is None:
            logger.warning("Session validation requested but identity service is not configured")
            return None
        return await self.identity.validate_session(token)

    async def require_session(self, token: Optional[str]) -> Identity:
        if self.identity is None:
            raise AuthenticationError("Identity service is not configured.")
        return await self.identity.require_session(token)

    # ――― upload / download ――― #
    def _upload_failed(
        self, owner_id: UUID, details: str, error: str, ip_address: Optional[str], user_agent: Optional[str]
    ) -> Result[FileRecord]:
        self.audit.record(
            owner_id, ACTION_UPLOAD, ENTITY_FILE, EMPTY_ENTITY_ID,
            is_success=False, details=details, error_message=error,
            ip_address=ip_address, user_agent=user_agent,
        )
        return Result.failure(error)

    async def _quota_exceeded_message(self, owner_id: UUID) -> str:
        quota = await self.quotas.get(owner_id)
        if quota is None:
            return "Storage quota exceeded."
        return (
            f"Storage quota exceeded. Used: {quota.used_bytes} bytes, "
            f"Limit: {quota.limit_bytes} bytes, Available: {quota.available_bytes} bytes"
        )

    async def upload_file(
        self,
        stream: Optional[StreamLike],
        file_name: str,
        content_type: str,
        owner_id: UUID,
        folder_id: Optional[UUID] = None,
        description: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Result[FileRecord]:
        """
        Загрузка файла:
        1. проверка потока и имени/описания (до любых побочных эффектов)
        2. допуск по квоте (в strict-режиме - сразу резерв)
        3. запись байтов -> строка каталога -> списание квоты -> аудит

        Если каталог не сохранился после записи байтов, байты удаляются
        (best effort); если и это не удалось, они остаются сиротами до отчета orphans.
        """
        data, size = as_sized_stream(stream)
        if data is None or size <= 0:
            return self._upload_failed(
                owner_id, f"File: {file_name}", "File stream cannot be null or empty.", ip_address, user_agent
            )

        for check in (validate_file_name(file_name), validate_description(description)):
            if not check:
                return self._upload_failed(owner_id, f"File: {file_name}", check.error, ip_address, user_agent)

        details = f"File: {file_name}, Size: {size} bytes"
        try:
            if self.strict_admission:
                admitted = await self.quotas.try_reserve(owner_id, size)
            else:
                admitted = await self.quotas.can_admit(owner_id, size)
            if not admitted:
                message = await self._quota_exceeded_message(owner_id)
                return self._upload_failed(owner_id, details, message, ip_address, user_agent)
        except FileStoreError as e:
            logger.error(f"Quota admission failed for user {owner_id}: {e}")
            return self._upload_failed(owner_id, details, f"Failed to upload file: {e}", ip_address, user_agent)

        try:
            storage_key = await self.store.save(data, file_name)
        except FileStoreError as e:
            logger.warning(f"Storage write failed for user {owner_id}: {e}")
            await self._release_reservation(owner_id, size)
            return self._upload_failed(owner_id, details, f"Failed to upload file: {e}", ip_address, user_agent)

        try:
            record = await self.files.create(
                FileCreate(
                    file_name=file_name,
                    content_type=content_type or "application/octet-stream",
                    size_bytes=size,
                    storage_key=storage_key,
                    owner_id=owner_id,
                    folder_id=folder_id,
                    extension=extension_of(file_name),
                    description=description,
                )
            )
        except FileStoreError as e:
            logger.error(f"Catalog write failed for '{storage_key}', removing stored bytes: {e}")
            try:
                await self.store.delete(storage_key)
            except FileStoreError as cleanup_error:
                logger.error(f"Orphaned bytes at '{storage_key}': compensation delete failed: {cleanup_error}")
            await self._release_reservation(owner_id, size)
            return self._upload_failed(owner_id, details, f"Failed to upload file: {e}", ip_address, user_agent)

        if not self.strict_admission:
            try:
                await self.quotas.charge(owner_id, size)
            except FileStoreError as e:
                # файл уже сохранен; расхождение квоты чинит resync
                logger.error(f"Quota charge of {size} bytes failed for user {owner_id}: {e}")

        self.audit.record(
            owner_id, ACTION_UPLOAD, ENTITY_FILE, str(record.id),
            is_success=True, details=f"{details}, ContentType: {record.content_type}",
            ip_address=ip_address, user_agent=user_agent,
        )
        logger.info(f"Uploaded file {record.id} ({size} bytes) for user {owner_id}")
        return Result.success(record)

    async def _release_reservation(self, owner_id: UUID, size: int) -> None:
        if not self.strict_admission:
            return
        try:
            await self.quotas.release(owner_id, size)
        except FileStoreError as e:
            logger.error(f"Failed to release reserved {size} bytes for user {owner_id}: {e}")

    async def download_file(
        self,
        file_id: UUID,
        owner_id: UUID,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Result[tuple[FileRecord, BinaryIO]]:
        try:
            record = await self.files.get_by_id_and_owner(file_id, owner_id)
        except FileStoreError as e:
            return Result.failure(f"Failed to retrieve file: {e}")

        if record is None:
            self.audit.record(
                owner_id, ACTION_DOWNLOAD, ENTITY_FILE, str(file_id),
                is_success=False, error_message=NOT_FOUND_MESSAGE,
                ip_address=ip_address, user_agent=user_agent,
            )
            return Result.failure(NOT_FOUND_MESSAGE)

        try:
            stream = await self.store.get(record.storage_key)
        except FileStoreError as e:
            logger.error(f"Bytes for file {file_id} unavailable at '{record.storage_key}': {e}")
            self.audit.record(
                owner_id, ACTION_DOWNLOAD, ENTITY_FILE, str(file_id),
                is_success=False, error_message=str(e),
                ip_address=ip_address, user_agent=user_agent,
            )
            return Result.failure(f"Failed to retrieve file: {e}")

        return Result.success((record, stream))

    # ――― catalog reads ――― #
    async def get_file(self, file_id: UUID, owner_id: UUID) -> Result[FileRecord]:
        try:
            record = await self.files.get_by_id_and_owner(file_id, owner_id)
        except FileStoreError as e:
            return Result.failure(f"Failed to retrieve file: {e}")
        if record is None:
            return Result.failure(NOT_FOUND_MESSAGE)
        return Result.success(record)

    async def list_files(
        self,
        owner_id: UUID,
        folder_id: Optional[UUID] = None,
        search_term: Optional[str] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> Result[Page[FileRecord]]:
        check = validate_search_term(search_term)
        if not check:
            return Result.failure(check.error)
        if offset < 0 or (limit is not None and limit < 0):
            return Result.failure("Limit and offset cannot be negative.")

        try:
            if search_term and search_term.strip():
                items = await self.files.search(owner_id, search_term, folder_id, limit=limit, offset=offset)
                total = await self.files.count_search(owner_id, search_term, folder_id)
            else:
                items = await self.files.list_by_owner(owner_id, folder_id, limit=limit, offset=offset)
                total = await self.files.count_by_owner(owner_id, folder_id)
        except FileStoreError as e:
            return Result.failure(f"Failed to list files: {e}")

        return Result.success(Page[FileRecord](items=items, total=total, limit=limit, offset=offset))

    # ――― mutations ――― #
    async def update_file(
        self,
        file_id: UUID,
        owner_id: UUID,
        file_name: Optional[str] = None,
        description: Optional[str] = None,
        folder_id: Optional[UUID] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Result[FileRecord]:
        def failed(error: str) -> Result[FileRecord]:
            self.audit.record(
                owner_id, ACTION_UPDATE, ENTITY_FILE, str(file_id),
                is_success=False, error_message=error,
                ip_address=ip_address, user_agent=user_agent,
            )
            return Result.failure(error)

        if file_name is not None:
            check = validate_file_name(file_name)
            if not check:
                return failed(check.error)
        check = validate_description(description)
        if not check:
            return failed(check.error)

        try:
            existing = await self.files.get_by_id_and_owner(file_id, owner_id)
            if existing is None:
                return failed(NOT_FOUND_MESSAGE)
            updated = await self.files.update(
                file_id, FileUpdate(file_name=file_name, description=description, folder_id=folder_id)
            )
        except FileStoreError as e:
            logger.error(f"Failed to update file {file_id}: {e}")
            return failed("Failed to update file.")
        if updated is None:
            return failed(NOT_FOUND_MESSAGE)

        changes = ", ".join(
            f"{name}: {value}"
            for name, value in (("FileName", file_name), ("Description", description), ("FolderId", folder_id))
            if value is not None
        )
        self.audit.record(
            owner_id, ACTION_UPDATE, ENTITY_FILE, str(file_id),
            is_success=True, details=changes or None,
            ip_address=ip_address, user_agent=user_agent,
        )
        return Result.success(updated)

    async def soft_delete_file(
        self,
        file_id: UUID,
        owner_id: UUID,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Result[None]:
        """Переносит файл в корзину. Байты и квота не трогаются; повторный вызов - no-op."""
        try:
            record = await self.files.get_by_id_and_owner(file_id, owner_id, include_deleted=True)
            if record is None:
                self.audit.record(
                    owner_id, ACTION_DELETE, ENTITY_FILE, str(file_id),
                    is_success=False, error_message=NOT_FOUND_MESSAGE,
                    ip_address=ip_address, user_agent=user_agent,
                )
                return Result.failure(NOT_FOUND_MESSAGE)
            if record.is_deleted:
                return Result.success()
            await self.files.soft_delete(file_id)
        except FileStoreError as e:
            logger.error(f"Failed to soft-delete file {file_id}: {e}")
            self.audit.record(
                owner_id, ACTION_DELETE, ENTITY_FILE, str(file_id),
                is_success=False, error_message=str(e),
                ip_address=ip_address, user_agent=user_agent,
            )
            return Result.failure("Failed to delete file.")

        self.audit.record(
            owner_id, ACTION_DELETE, ENTITY_FILE, str(file_id),
            is_success=True, details=f"File: {record.file_name}",
            ip_address=ip_address, user_agent=user_agent,
        )
        return Result.success()

    async def permanent_delete_file(
        self,
        file_id: UUID,
        owner_id: UUID,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Result[None]:
        """
        Безвозвратное удаление: байты -> строка каталога -> возврат квоты.
        Ошибка удаления байтов логируется и аудируется, но не блокирует остальное.
        """
        try:
            record = await self.files.get_by_id_and_owner(file_id, owner_id, include_deleted=True)
        except FileStoreError as e:
            return Result.failure(f"Failed to permanently delete file: {e}")
        if record is None:
            self.audit.record(
                owner_id, ACTION_PERMANENT_DELETE, ENTITY_FILE, str(file_id),
                is_success=False, error_message=NOT_FOUND_MESSAGE,
                ip_address=ip_address, user_agent=user_agent,
            )
            return Result.failure(NOT_FOUND_MESSAGE)

        try:
            await self.store.delete(record.storage_key)
        except FileStoreError as e:
            logger.error(f"Failed to delete bytes at '{record.storage_key}' for file {file_id}: {e}")
            self.audit.record(
                owner_id, ACTION_PERMANENT_DELETE, ENTITY_FILE, str(file_id),
                is_success=False, details=f"Storage key: {record.storage_key}",
                error_message=f"Failed to delete stored bytes: {e}",
                ip_address=ip_address, user_agent=user_agent,
            )

        try:
            await self.files.hard_delete(file_id)
        except FileStoreError as e:
            logger.error(f"Failed to hard-delete file {file_id}: {e}")
            self.audit.record(
                owner_id, ACTION_PERMANENT_DELETE, ENTITY_FILE, str(file_id),
                is_success=False, error_message=str(e),
                ip_address=ip_address, user_agent=user_agent,
            )
            return Result.failure("Failed to permanently delete file.")

        try:
            await self.quotas.release(owner_id, record.size_bytes)
        except FileStoreError as e:
            logger.error(f"Quota release of {record.size_bytes} bytes failed for user {owner_id}: {e}")

        self.audit.record(
            owner_id, ACTION_PERMANENT_DELETE, ENTITY_FILE, str(file_id),
            is_success=True, details=f"File: {record.file_name}, Size: {record.size_bytes} bytes",
            ip_address=ip_address, user_agent=user_agent,
        )
        logger.info(f"Permanently deleted file {file_id} ({record.size_bytes} bytes) for user {owner_id}")
        return Result.success()

    # ――― quota ――― #
    async def get_total_storage_used(self, owner_id: UUID) -> int:
        return await self.files.total_size_by_owner(owner_id)

    async def get_quota(self, owner_id: UUID) -> QuotaRecord:
        return await self.quotas.get_or_create(owner_id)

    async def set_quota_limit(self, owner_id: UUID, limit_bytes: int) -> Result[QuotaRecord]:
        try:
            await self.quotas.get_or_create(owner_id)
            await self.quotas.update_limit(owner_id, limit_bytes)
            quota = await self.quotas.get(owner_id)
        except FileStoreError as e:
            return Result.failure(str(e))
        if quota is None:
            return Result.failure("Quota not found.")
        return Result.success(quota)

    async def resync_quota(self, owner_id: UUID) -> Result[QuotaRecord]:
        """Выставляет used_bytes по каталогу (включая файлы в корзине - их байты еще лежат в хранилище)."""
        try:
            true_used = await self.files.total_retained_by_owner(owner_id)
            await self.quotas.get_or_create(owner_id)
            await self.quotas.resync(owner_id, true_used)
            quota = await self.quotas.get(owner_id)
        except FileStoreError as e:
            return Result.failure(str(e))
        if quota is None:
            return Result.failure("Quota not found.")
        return Result.success(quota)

    # ――― maintenance ――― #
    async def find_orphaned_keys(self, prefix: Optional[str] = None) -> list[str]:
        """Ключи в хранилище без строки в каталоге. Только отчет, ничего не удаляет."""
        stored = await self.store.list_keys(prefix)
        known = await self.files.list_storage_keys()
        return [key for key in stored if key not in known]

    async def aclose(self, audit_timeout: Optional[float] = 10.0) -> None:
        await self.audit.drain(timeout=audit_timeout)
        for closer in self._closers:
            try:
                await closer()
            except Exception as e:
                logger.warning(f"Error while closing resource: {e}")
        if self._engine is not None:
            await self._engine.dispose()
