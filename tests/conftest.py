import uuid

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

# Base нужен для создания/удаления таблиц
from tenant_file_store.db.base import Base
# Фабрика - чтобы тесты собирали клиент так же, как реальное приложение
from tenant_file_store import FileStoreClient, create_file_store
from tenant_file_store.config import FileStoreConfig, PostgresConfig, QuotaConfig, StorageConfig
from tenant_file_store.models.audit import AuditEntry


class RecordingAuditAuthority:
    """Audit authority в памяти: складывает записи в список."""

    def __init__(self):
        self.entries: list[AuditEntry] = []

    async def record(self, entry: AuditEntry) -> None:
        self.entries.append(entry)

    def actions(self, success: bool | None = None) -> list[str]:
        return [e.action for e in self.entries if success is None or e.is_success == success]


@pytest.fixture
def owner_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture
def storage_config(tmp_path) -> StorageConfig:
    return StorageConfig(base_path=str(tmp_path / "storage"))


@pytest.fixture
def sqlite_dsn(tmp_path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'files.db'}"


@pytest_asyncio.fixture(scope="function")
async def db_engine(sqlite_dsn):
    """
    Движок на файловой SQLite с созданными таблицами.
    После теста таблицы удаляются, движок закрывается.
    """
    engine = create_async_engine(sqlite_dsn)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(bind=db_engine, expire_on_commit=False)


@pytest.fixture
def audit_log() -> RecordingAuditAuthority:
    return RecordingAuditAuthority()


@pytest.fixture
def store_config(sqlite_dsn, storage_config) -> FileStoreConfig:
    return FileStoreConfig(
        postgres=PostgresConfig(dsn=sqlite_dsn),
        storage=storage_config,
        quota=QuotaConfig(default_limit_bytes=10_000),
    )


@pytest_asyncio.fixture(scope="function")
async def file_store(store_config, db_engine, audit_log) -> FileStoreClient:
    """Полностью собранный клиент; аудит пишется в память, чтобы его можно было проверять."""
    client = create_file_store(store_config, engine=db_engine, audit_authority=audit_log)
    yield client
    await client.aclose()
