# tenant_file_store/db/__init__.py

from .base import Base

from .file_orm import FileORM
from .quota_orm import UserQuotaORM
from .audit_orm import AuditLogORM


__all__ = [
    "Base",
    "FileORM",
    "UserQuotaORM",
    "AuditLogORM",
]
