from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class Identity(BaseModel):
    """Пользователь, подтвержденный Identity-сервисом."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    user_id: UUID = Field(validation_alias=AliasChoices("user_id", "userId", "id"))
    display_name: str = Field("", validation_alias=AliasChoices("display_name", "displayName"))
    email: Optional[str] = None
    is_active: bool = Field(True, validation_alias=AliasChoices("is_active", "isActive"))


class CachedIdentity(BaseModel):
    """Запись кэша: ключ - sha256 токена, сам токен не хранится."""
    token_hash: str
    identity: Identity
    expires_at: datetime
