from datetime import datetime
from uuid import UUID, uuid4
from typing import Optional

from sqlalchemy import BigInteger, Boolean, DateTime, Index, String, Text, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column

from tenant_file_store.db.base import Base, CreatedAt, UpdatedAt
from tenant_file_store.models.file import FileRecord


class FileORM(Base):
    __tablename__ = "files"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    content_type: Mapped[str] = mapped_column(String(255), nullable=False, default="application/octet-stream")
    size_bytes: Mapped[int] = mapped_column(BigInteger, nullable=False)
    # Относительный ключ в ContentStore: {year}/{month}/{uuid}_{name}
    storage_key: Mapped[str] = mapped_column(String(1024), nullable=False, unique=True)

    owner_id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), nullable=False, index=True)
    # Папки живут в отдельном сервисе, здесь только ссылка без FK
    folder_id: Mapped[Optional[UUID]] = mapped_column(Uuid(as_uuid=True), nullable=True)

    # Суффикс может занимать почти все имя файла, поэтому та же длина, что у file_name
    extension: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    is_deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=text("false"))
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[CreatedAt]
    updated_at: Mapped[UpdatedAt]

    __table_args__ = (
        Index("idx_files_owner_folder", "owner_id", "folder_id"),
        Index("idx_files_owner_deleted", "owner_id", "is_deleted"),
    )

    def to_pydantic(self) -> FileRecord:
        return FileRecord.model_validate(self)
