import logging
import os
import uuid
from contextlib import suppress
from datetime import datetime, timezone
from typing import BinaryIO, Optional, Protocol

from tenant_file_store.config import StorageConfig
from tenant_file_store.exceptions import AccessDeniedError, NotFoundError, StorageError, ValidationError
from tenant_file_store.utils.io_async import run_io_bound
from tenant_file_store.utils.streams import StreamLike, as_sized_stream

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024
INVALID_KEY_CHARS = frozenset('/\\:*?"<>|')
# uuid4 (36) + "_" + имя должны уложиться в NAME_MAX (255) файловой системы
MAX_KEY_NAME_LENGTH = 200  # bytes


class ContentStore(Protocol):
    async def save(self, stream: StreamLike, declared_name: str) -> str: ...
    async def get(self, storage_key: str) -> BinaryIO: ...
    async def delete(self, storage_key: str) -> None: ...
    def resolve(self, storage_key: str) -> str: ...
    async def exists(self, storage_key: str) -> bool: ...
    async def list_keys(self, prefix: Optional[str] = None) -> list[str]: ...
    async def check_connection(self) -> None: ...


def sanitize_file_name(file_name: str) -> str:
    """Режет имя по недопустимым для ФС символам и склеивает куски через '_'."""
    parts, current = [], []
    for ch in file_name:
        if ch in INVALID_KEY_CHARS or ord(ch) < 32 or ord(ch) == 127:
            if current:
                parts.append("".join(current))
                current = []
        else:
            current.append(ch)
    if current:
        parts.append("".join(current))
    sanitized = "_".join(parts).strip()
    sanitized = sanitized or "file"
    if len(sanitized.encode("utf-8")) > MAX_KEY_NAME_LENGTH:
        stem, ext = os.path.splitext(sanitized)
        ext = ext[:16]
        budget = MAX_KEY_NAME_LENGTH - len(ext.encode("utf-8"))
        stem = stem.encode("utf-8")[:budget].decode("utf-8", errors="ignore")
        sanitized = (stem + ext) or "file"
    return sanitized


def build_storage_key(declared_name: str, now: Optional[datetime] = None) -> str:
    """
    {year}/{month}/{uuid}_{name}: шардирование по дате ограничивает число файлов в
    каталоге, uuid делает ключ уникальным даже для одинаковых имен.
    """
    now = now or datetime.now(timezone.utc)
    return f"{now.year:04d}/{now.month:02d}/{uuid.uuid4()}_{sanitize_file_name(declared_name)}"


def check_upload_limits(size: int, declared_name: str, max_size: int, allowed_extensions: set[str]) -> None:
    if size <= 0:
        raise ValidationError("File stream cannot be null or empty.")
    if not declared_name or not declared_name.strip():
        raise ValidationError("File name cannot be null or empty.")
    if size > max_size:
        raise ValidationError(f"File size {size} bytes exceeds maximum allowed size {max_size} bytes.")
    ext = os.path.splitext(declared_name)[1].lower()
    if allowed_extensions and ext not in allowed_extensions:
        raise ValidationError(
            f"File extension '{ext}' is not allowed. Allowed extensions: {', '.join(sorted(allowed_extensions))}"
        )


def normalize_extensions(extensions: list[str]) -> set[str]:
    return {(e if e.startswith(".") else f".{e}").lower() for e in extensions if e}


class LocalContentStore:
    """
    Хранилище байтов на локальной ФС. Ключ - относительный путь от base_path,
    каждое разрешение ключа заново проверяет, что путь не выходит за корень.
    """

    def __init__(self, settings: StorageConfig):
        self._base = os.path.realpath(settings.base_path)
        self._max_size = settings.max_file_size_bytes
        self._allowed = normalize_extensions(settings.allowed_extensions)
        os.makedirs(self._base, exist_ok=True)

    @property
    def base_path(self) -> str:
        return self._base

    def resolve(self, storage_key: str) -> str:
        """Возвращает абсолютный путь для ключа или бросает AccessDeniedError."""
        if not storage_key or not storage_key.strip():
            raise ValidationError("Storage key cannot be null or empty.")
        candidate = os.path.realpath(os.path.join(self._base, storage_key))
        try:
            contained = os.path.commonpath([self._base, candidate]) == self._base
        except ValueError:
            contained = False
        if not contained or candidate == self._base:
            logger.warning(f"Rejected storage key outside of storage root: {storage_key!r}")
            raise AccessDeniedError("Access to the specified path is not allowed.")
        return candidate

    async def check_connection(self):
        ok = await run_io_bound(lambda: os.path.isdir(self._base) and os.access(self._base, os.W_OK))
        if not ok:
            raise StorageError(f"Storage root '{self._base}' is missing or not writable.")

    async def save(self, stream: StreamLike, declared_name: str) -> str:
        data, size = as_sized_stream(stream)
        if data is None:
            raise ValidationError("File stream cannot be null or empty.")
        # Все проверки до первого обращения к диску
        check_upload_limits(size, declared_name, self._max_size, self._allowed)

        storage_key = build_storage_key(declared_name)
        full_path = self.resolve(storage_key)
        written = await run_io_bound(self._write_exclusive, full_path, data)
        if written != size:
            await run_io_bound(self._remove_quietly, full_path)
            raise StorageError(f"Short write for '{storage_key}': expected {size} bytes, wrote {written}.")

        logger.debug(f"Stored {written} bytes at '{storage_key}'")
        return storage_key

    async def get(self, storage_key: str) -> BinaryIO:
        full_path = self.resolve(storage_key)
        try:
            return await run_io_bound(open, full_path, "rb")
        except (FileNotFoundError, IsADirectoryError) as e:
            raise NotFoundError(f"File not found at key: {storage_key}") from e
        except OSError as e:
            raise StorageError(f"Failed to open '{storage_key}': {e}") from e

    async def delete(self, storage_key: str) -> None:
        full_path = self.resolve(storage_key)
        try:
            await run_io_bound(self._remove_quietly, full_path)
        except OSError as e:
            raise StorageError(f"Failed to delete '{storage_key}': {e}") from e

    async def exists(self, storage_key: str) -> bool:
        return await run_io_bound(os.path.isfile, self.resolve(storage_key))

    async def list_keys(self, prefix: Optional[str] = None) -> list[str]:
        def _collect():
            keys = []
            for root, _dirs, files in os.walk(self._base):
                for name in files:
                    rel = os.path.relpath(os.path.join(root, name), self._base).replace(os.sep, "/")
                    if prefix is None or rel.startswith(prefix):
                        keys.append(rel)
            return sorted(keys)

        return await run_io_bound(_collect)

    # ――― helpers ――― #
    @staticmethod
    def _write_exclusive(full_path: str, data: BinaryIO) -> int:
        os.makedirs(os.path.dirname(full_path), exist_ok=True)
        written = 0
        try:
            # "x" - эксклюзивное создание, существующий файл никогда не перезаписывается
            with open(full_path, "xb") as fh:
                while True:
                    chunk = data.read(CHUNK_SIZE)
                    if not chunk:
                        break
                    fh.write(chunk)
                    written += len(chunk)
        except FileExistsError as e:
            raise StorageError(f"Storage path already exists: {full_path}") from e
        except OSError as e:
            LocalContentStore._remove_quietly(full_path)
            raise StorageError(f"Failed to write file: {e}") from e
        return written

    @staticmethod
    def _remove_quietly(full_path: str) -> None:
        with suppress(FileNotFoundError):
            os.remove(full_path)
