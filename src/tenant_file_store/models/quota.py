from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class QuotaRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: UUID
    used_bytes: int = Field(ge=0)
    limit_bytes: int = Field(ge=0)

    @property
    def available_bytes(self) -> int:
        return max(0, self.limit_bytes - self.used_bytes)

    @property
    def usage_percentage(self) -> float:
        if self.limit_bytes <= 0:
            return 0.0
        return self.used_bytes / self.limit_bytes * 100

    @property
    def is_exceeded(self) -> bool:
        return self.used_bytes > self.limit_bytes

    def can_store(self, size: int) -> bool:
        return self.used_bytes + size <= self.limit_bytes
