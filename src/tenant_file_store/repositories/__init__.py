from .content_store import ContentStore, LocalContentStore
from .minio_repository import MinioContentStore
from .pg_repositoryFile import FileRepository
from .pg_repositoryQuota import QuotaRepository
from .pg_repositoryAudit import AuditRepository

__all__ = [
    "ContentStore",
    "LocalContentStore",
    "MinioContentStore",
    "FileRepository",
    "QuotaRepository",
    "AuditRepository",
]
