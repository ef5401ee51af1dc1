class FileStoreError(Exception):
    """Base class."""


class ValidationError(FileStoreError):
    pass


class QuotaExceededError(FileStoreError):
    pass


class NotFoundError(FileStoreError):
    pass


class StorageError(FileStoreError):
    pass


class AccessDeniedError(StorageError):
    """Ключ хранилища указывает за пределы корня хранилища."""


class AuthenticationError(FileStoreError):
    pass


class TransientDownstreamError(FileStoreError):
    """Временный сбой внешнего сервиса (таймаут, 5xx, обрыв соединения)."""


class DatabaseError(FileStoreError):
    pass
