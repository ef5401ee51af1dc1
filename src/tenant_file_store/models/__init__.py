from .file import FileRecord, FileCreate, FileUpdate
from .quota import QuotaRecord
from .audit import AuditEntry
from .identity import Identity, CachedIdentity
from .common import Result, Page

__all__ = [
    "FileRecord", "FileCreate", "FileUpdate",
    "QuotaRecord", "AuditEntry",
    "Identity", "CachedIdentity",
    "Result", "Page",
]
