# Файл: src/tenant_file_store/__init__.py

from typing import Optional

from redis import asyncio as redis_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine

from .audit import AuditAuthority, AuditSink
from .client import FileStoreClient
from .config import (
    FileStoreConfig, IdentityConfig, MinioConfig, PostgresConfig, QuotaConfig,
    RedisConfig, StorageConfig, get_settings,
)
from .identity import (
    CachedIdentityValidator, HttpIdentityAuthority, IdentityAuthority, IdentityCache,
    MemoryIdentityCache, RedisIdentityCache,
)
from .models import FileRecord, Identity, Page, QuotaRecord, Result
from .repositories import (
    AuditRepository, ContentStore, FileRepository, LocalContentStore, MinioContentStore, QuotaRepository,
)

from .exceptions import *


def create_engine_from_config(cfg: PostgresConfig) -> AsyncEngine:
    """Async-движок SQLAlchemy; пул и server_settings - только для PostgreSQL."""
    if not cfg.is_postgres:
        return create_async_engine(cfg.get_pg_dsn())
    return create_async_engine(
        cfg.get_pg_dsn(),
        pool_size=cfg.pool_size,
        max_overflow=cfg.max_overflow,
        pool_timeout=cfg.pool_timeout,
        pool_recycle=cfg.pool_recycle,
        pool_pre_ping=cfg.pool_pre_ping,
        connect_args={
            "server_settings": {
                "application_name": cfg.application_name
            }
        },
    )


def create_content_store(config: FileStoreConfig) -> ContentStore:
    if config.storage.backend == "minio":
        return MinioContentStore(config.minio, config.storage)
    return LocalContentStore(config.storage)


def create_file_store(
    config: Optional[FileStoreConfig] = None,
    engine: Optional[AsyncEngine] = None,
    content_store: Optional[ContentStore] = None,
    identity_authority: Optional[IdentityAuthority] = None,
    identity_cache: Optional[IdentityCache] = None,
    audit_authority: Optional[AuditAuthority] = None,
) -> FileStoreClient:
    """
    Фабричная функция для создания и конфигурации FileStoreClient.

    :param config: Единый объект с настройками.
                   Если не предоставлен, используются переменные окружения.
    :param engine: Готовый движок (например, общий для приложения). Чужой движок не закрывается в aclose().
    :return: Сконфигурированный экземпляр FileStoreClient.
    """
    if config is None:
        config = get_settings().to_config()

    owns_engine = engine is None
    if engine is None:
        engine = create_engine_from_config(config.postgres)
    session_factory = async_sessionmaker(bind=engine, expire_on_commit=False)

    file_repo = FileRepository(session_factory)
    quota_repo = QuotaRepository(session_factory, default_limit_bytes=config.quota.default_limit_bytes)
    audit = AuditSink(audit_authority or AuditRepository(session_factory))
    store = content_store or create_content_store(config)

    closers = []
    identity = None
    if identity_authority is None and config.identity.base_url:
        http_authority = HttpIdentityAuthority(config.identity)
        closers.append(http_authority.aclose)
        identity_authority = http_authority
    if identity_authority is not None:
        if identity_cache is None:
            if config.identity.cache_backend == "redis":
                redis_cache = RedisIdentityCache(
                    redis_asyncio.from_url(config.redis.url), key_prefix=config.redis.key_prefix
                )
                closers.append(redis_cache.aclose)
                identity_cache = redis_cache
            else:
                identity_cache = MemoryIdentityCache()
        identity = CachedIdentityValidator(identity_authority, identity_cache, config.identity.cache_ttl_seconds)

    client = FileStoreClient(
        file_repo=file_repo,
        quota_repo=quota_repo,
        content_store=store,
        audit=audit,
        identity=identity,
        strict_admission=config.quota.strict_admission,
        engine=engine if owns_engine else None,
    )
    for closer in closers:
        client.add_closer(closer)
    return client


__all__ = [
    "FileStoreClient", "create_file_store", "create_engine_from_config", "create_content_store",
    "FileStoreConfig", "PostgresConfig", "StorageConfig", "MinioConfig", "QuotaConfig",
    "IdentityConfig", "RedisConfig",
    "FileRecord", "QuotaRecord", "Identity", "Page", "Result",
    "FileStoreError", "ValidationError", "QuotaExceededError", "NotFoundError", "StorageError",
    "AccessDeniedError", "AuthenticationError", "TransientDownstreamError", "DatabaseError",
]
