from uuid import UUID, uuid4

from sqlalchemy import BigInteger, CheckConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from tenant_file_store.db.base import Base, CreatedAt, UpdatedAt
from tenant_file_store.models.quota import QuotaRecord


class UserQuotaORM(Base):
    __tablename__ = "user_quotas"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), nullable=False, unique=True, index=True)
    used_bytes: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    limit_bytes: Mapped[int] = mapped_column(BigInteger, nullable=False)

    created_at: Mapped[CreatedAt]
    updated_at: Mapped[UpdatedAt]

    __table_args__ = (
        CheckConstraint("used_bytes >= 0", name="used_non_negative"),
        CheckConstraint("limit_bytes >= 0", name="limit_non_negative"),
    )

    def to_pydantic(self) -> QuotaRecord:
        return QuotaRecord.model_validate(self)
