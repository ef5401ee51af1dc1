# Файл: src/tenant_file_store/config.py

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Literal, Optional

GIB = 1024 * 1024 * 1024
MIB = 1024 * 1024


# --- 1. Настройки PostgreSQL ---
class PostgresConfig(BaseModel):
    user: str = "postgres"
    password: str = "postgres"
    host: str = "localhost"
    port: int = 5432
    db: str = "files"

    pool_size: int = 5
    max_overflow: int = 5
    pool_timeout: int = 30
    pool_recycle: int = 1800
    pool_pre_ping: bool = True
    application_name: str = "tenant_file_store"

    # Полный DSN (например, sqlite+aiosqlite:///...) перекрывает поля выше
    dsn: Optional[str] = None

    def get_pg_dsn(self) -> str:
        """Собирает DSN для SQLAlchemy из полей этого объекта."""
        if self.dsn:
            return self.dsn
        return f"postgresql+asyncpg://{self.user}:{self.password}@{self.host}:{self.port}/{self.db}"

    @property
    def is_postgres(self) -> bool:
        return self.get_pg_dsn().startswith("postgresql")


# --- 2. Настройки MinIO ---
class MinioConfig(BaseModel):
    endpoint: str = "localhost:9000"
    accesskey: str = "minioadmin"
    secretkey: str = "minioadmin"
    bucket: str = "files"
    secure: bool = False


# --- 3. Хранилище байтов ---
class StorageConfig(BaseModel):
    backend: Literal["local", "minio"] = "local"
    base_path: str = "./storage"
    max_file_size_bytes: int = Field(100 * MIB, gt=0)
    # Пустой список = разрешены любые расширения. Сравнение без учета регистра.
    allowed_extensions: list[str] = Field(default_factory=list)


class QuotaConfig(BaseModel):
    default_limit_bytes: int = Field(5 * GIB, ge=0)
    # True = admit+charge одним условным UPDATE (см. QuotaRepository.try_reserve)
    strict_admission: bool = False


class IdentityConfig(BaseModel):
    base_url: Optional[str] = None
    validate_path: str = "/api/auth/me"
    timeout: float = 5.0
    max_retries: int = Field(3, ge=0)
    backoff_base: float = 0.2
    breaker_failure_threshold: int = Field(5, ge=1)
    breaker_reset_timeout: float = 30.0
    cache_ttl_seconds: int = Field(300, gt=0)
    cache_backend: Literal["memory", "redis"] = "memory"


class RedisConfig(BaseModel):
    url: str = "redis://localhost:6379/0"
    key_prefix: str = "tfs:"


# --- 4. Основной класс для явной передачи конфигурации ---
class FileStoreConfig(BaseModel):
    postgres: PostgresConfig = Field(default_factory=PostgresConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    minio: MinioConfig = Field(default_factory=MinioConfig)
    quota: QuotaConfig = Field(default_factory=QuotaConfig)
    identity: IdentityConfig = Field(default_factory=IdentityConfig)
    redis: RedisConfig = Field(default_factory=RedisConfig)


# --- 5. Settings для чтения из .env ---
class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        # '__', потому что в именах полей уже есть '_' (STORAGE__BASE_PATH)
        env_nested_delimiter="__",
        extra="ignore",
    )

    log_level: str = Field("INFO", alias="LOG_LEVEL")

    postgres: PostgresConfig = Field(default_factory=PostgresConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    minio: MinioConfig = Field(default_factory=MinioConfig)
    quota: QuotaConfig = Field(default_factory=QuotaConfig)
    identity: IdentityConfig = Field(default_factory=IdentityConfig)
    redis: RedisConfig = Field(default_factory=RedisConfig)

    def to_config(self) -> FileStoreConfig:
        return FileStoreConfig(
            postgres=self.postgres,
            storage=self.storage,
            minio=self.minio,
            quota=self.quota,
            identity=self.identity,
            redis=self.redis,
        )


# --- Ленивая инициализация ---
_cached_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """
    Возвращает синглтон-экземпляр настроек, создавая его при первом вызове.
    Это предотвращает ошибки валидации при импорте.
    """
    global _cached_settings
    if _cached_settings is None:
        _cached_settings = Settings()
    return _cached_settings


def reset_settings() -> None:
    """Сбрасывает кэш настроек (нужно после изменения переменных окружения)."""
    global _cached_settings
    _cached_settings = None
