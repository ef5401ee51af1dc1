from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, model_validator


class FileRecord(BaseModel):
    """Метаданные сохраненного файла (строка каталога)."""
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    file_name: str
    content_type: str
    size_bytes: int
    storage_key: str
    owner_id: UUID
    folder_id: Optional[UUID] = None
    extension: str = ""
    description: Optional[str] = None
    is_deleted: bool = False
    deleted_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    @model_validator(mode="after")
    def _deleted_has_timestamp(self) -> "FileRecord":
        if self.is_deleted and self.deleted_at is None:
            raise ValueError("Soft-deleted file must have deleted_at set.")
        return self


class FileCreate(BaseModel):
    file_name: str
    content_type: str = "application/octet-stream"
    size_bytes: int
    storage_key: str
    owner_id: UUID
    folder_id: Optional[UUID] = None
    extension: str = ""
    description: Optional[str] = None


class FileUpdate(BaseModel):
    """Патч метаданных. None = поле не меняется."""
    file_name: Optional[str] = None
    description: Optional[str] = None
    folder_id: Optional[UUID] = None
