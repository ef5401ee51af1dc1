import logging
import posixpath
from io import BytesIO
from typing import BinaryIO, Optional

from minio import Minio
from minio.error import S3Error
from tenant_file_store.config import MinioConfig, StorageConfig
from tenant_file_store.exceptions import AccessDeniedError, NotFoundError, StorageError, ValidationError
from tenant_file_store.repositories.content_store import build_storage_key, check_upload_limits, normalize_extensions
from tenant_file_store.utils.io_async import run_io_bound
from tenant_file_store.utils.streams import StreamLike, as_sized_stream
import urllib3

logger = logging.getLogger(__name__)
urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

MISSING_OBJECT_CODES = {"NoSuchKey", "NoSuchObject"}
# Ответ S3 с ошибкой либо сбой транспорта (недоступный endpoint, обрыв соединения)
MINIO_ERRORS = (S3Error, urllib3.exceptions.HTTPError)


class MinioContentStore:
    """
    ContentStore поверх бакета MinIO. Та же схема ключей, что и у локального
    хранилища; ключ нормализуется и не может выйти за пределы бакета.
    """

    def __init__(self, settings: MinioConfig, storage: StorageConfig, client: Optional[Minio] = None):
        http_client = None
        if settings.secure:
            http_client = urllib3.PoolManager(
                cert_reqs='CERT_NONE',
            )
        self._client = client or Minio(
            endpoint=settings.endpoint,
            access_key=settings.accesskey,
            secret_key=settings.secretkey,
            secure=settings.secure,
            http_client=http_client
        )
        self._bucket = settings.bucket
        self._max_size = storage.max_file_size_bytes
        self._allowed = normalize_extensions(storage.allowed_extensions)

    @property
    def bucket(self) -> str:
        return self._bucket

    async def _ensure_bucket(self):
        exists = await run_io_bound(self._client.bucket_exists, bucket_name=self._bucket)
        if not exists:
            await run_io_bound(self._client.make_bucket, bucket_name=self._bucket)

    async def check_connection(self):
        """Проверяет соединение с MinIO и наличие бакета."""
        logger.debug(f"Checking MinIO connection and bucket '{self._bucket}' existence...")
        try:
            await self._ensure_bucket()
            logger.debug("MinIO connection and bucket presence confirmed.")
        except MINIO_ERRORS as e:
            logger.error(f"MinIO connection failed: {e}")
            raise StorageError(str(e)) from e

    def _object_name(self, storage_key: str) -> str:
        if not storage_key or not storage_key.strip():
            raise ValidationError("Storage key cannot be null or empty.")
        normalized = posixpath.normpath(storage_key.replace("\\", "/"))
        if normalized.startswith("/") or normalized in (".", "..") or normalized.startswith("../"):
            logger.warning(f"Rejected storage key outside of bucket: {storage_key!r}")
            raise AccessDeniedError("Access to the specified path is not allowed.")
        return normalized

    def resolve(self, storage_key: str) -> str:
        return f"{self._bucket}/{self._object_name(storage_key)}"

    async def _stat(self, object_name: str):
        try:
            return await run_io_bound(self._client.stat_object, bucket_name=self._bucket, object_name=object_name)
        except S3Error as e:
            if e.code in MISSING_OBJECT_CODES:
                return None
            raise StorageError(str(e)) from e
        except urllib3.exceptions.HTTPError as e:
            raise StorageError(f"MinIO request failed: {e}") from e

    async def save(self, stream: StreamLike, declared_name: str) -> str:
        data, size = as_sized_stream(stream)
        if data is None:
            raise ValidationError("File stream cannot be null or empty.")
        check_upload_limits(size, declared_name, self._max_size, self._allowed)

        try:
            await self._ensure_bucket()
        except MINIO_ERRORS as e:
            raise StorageError(str(e)) from e
        storage_key = build_storage_key(declared_name)
        object_name = self._object_name(storage_key)
        # S3 не умеет exclusive-create, поэтому проверяем явно; uuid в ключе делает гонку практически невозможной
        if await self._stat(object_name) is not None:
            raise StorageError(f"Object already exists: {object_name}")
        try:
            await run_io_bound(
                self._client.put_object,
                bucket_name=self._bucket,
                object_name=object_name,
                data=data,
                length=size,
                content_type="application/octet-stream",
            )
        except MINIO_ERRORS as e:
            raise StorageError(str(e)) from e
        return storage_key

    async def get(self, storage_key: str) -> BinaryIO:
        object_name = self._object_name(storage_key)
        try:
            resp = await run_io_bound(self._client.get_object, bucket_name=self._bucket, object_name=object_name)
        except S3Error as e:
            if e.code in MISSING_OBJECT_CODES:
                raise NotFoundError(f"File not found at key: {storage_key}") from e
            raise StorageError(str(e)) from e
        except urllib3.exceptions.HTTPError as e:
            raise StorageError(f"MinIO request failed: {e}") from e
        try:
            data = await run_io_bound(resp.read)
        except urllib3.exceptions.HTTPError as e:
            raise StorageError(f"Failed to read object {object_name}: {e}") from e
        finally:
            resp.close()
            resp.release_conn()
        return BytesIO(data)

    async def delete(self, storage_key: str) -> None:
        object_name = self._object_name(storage_key)
        try:
            await run_io_bound(self._client.remove_object, bucket_name=self._bucket, object_name=object_name)
        except S3Error as e:
            # повторное удаление - не ошибка
            if e.code in MISSING_OBJECT_CODES:
                return
            raise StorageError(str(e)) from e
        except urllib3.exceptions.HTTPError as e:
            raise StorageError(f"MinIO request failed: {e}") from e

    async def exists(self, storage_key: str) -> bool:
        return await self._stat(self._object_name(storage_key)) is not None

    async def list_keys(self, prefix: Optional[str] = None) -> list[str]:
        """
        Возвращает список всех объектов в бакете (или под-префиксе).
        """
        def _collect():
            # list_objects – генератор, собираем сразу в список
            return sorted(
                obj.object_name
                for obj in self._client.list_objects(
                    bucket_name=self._bucket, prefix=prefix, recursive=True
                )
            )

        try:
            return await run_io_bound(_collect)
        except MINIO_ERRORS as e:
            raise StorageError(str(e)) from e
