"""
Сквозные тесты на настоящих PostgreSQL и MinIO (testcontainers).
Запускаются только с TFS_CONTAINER_TESTS=1 и доступным Docker.
"""
import os
import uuid

import pytest
import pytest_asyncio

from tenant_file_store import create_engine_from_config, create_file_store
from tenant_file_store.config import FileStoreConfig, MinioConfig, PostgresConfig, StorageConfig
from tenant_file_store.db.base import Base

pytestmark = [
    pytest.mark.containers,
    pytest.mark.skipif(os.environ.get("TFS_CONTAINER_TESTS") != "1", reason="set TFS_CONTAINER_TESTS=1 to run"),
]


@pytest.fixture(scope="module")
def container_config():
    """
    Поднимает контейнеры один раз на модуль и отдает конфиг для подключения к ним.
    """
    from testcontainers.minio import MinioContainer
    from testcontainers.postgres import PostgresContainer

    postgres = PostgresContainer("postgres:16")
    minio = MinioContainer("minio/minio:latest", access_key="minioadmin", secret_key="minioadmin")
    postgres.start()
    minio.start()
    try:
        minio_cfg = minio.get_config()
        yield FileStoreConfig(
            postgres=PostgresConfig(
                user=postgres.username,
                password=postgres.password,
                db=postgres.dbname,
                host=postgres.get_container_host_ip(),
                port=int(postgres.get_exposed_port(5432)),
            ),
            storage=StorageConfig(backend="minio"),
            minio=MinioConfig(
                endpoint=minio_cfg["endpoint"].replace("http://", ""),
                accesskey=minio_cfg["access_key"],
                secretkey=minio_cfg["secret_key"],
                bucket="test-bucket",
            ),
        )
    finally:
        postgres.stop()
        minio.stop()


@pytest_asyncio.fixture(scope="function")
async def pg_file_store(container_config):
    engine = create_engine_from_config(container_config.postgres)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    client = create_file_store(container_config, engine=engine)
    yield client
    await client.aclose()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.mark.asyncio
async def test_round_trip_on_postgres_and_minio(pg_file_store):
    owner_id = uuid.uuid4()
    payload = os.urandom(4096)

    assert await pg_file_store.check_connections() == {"database": "ok", "storage": "ok"}

    record = (await pg_file_store.upload_file(payload, "blob.bin", "application/octet-stream", owner_id)).value
    meta, stream = (await pg_file_store.download_file(record.id, owner_id)).value
    assert stream.read() == payload
    assert (await pg_file_store.get_quota(owner_id)).used_bytes == 4096

    assert (await pg_file_store.soft_delete_file(record.id, owner_id)).succeeded
    assert (await pg_file_store.permanent_delete_file(record.id, owner_id)).succeeded
    assert (await pg_file_store.get_quota(owner_id)).used_bytes == 0
    assert await pg_file_store.find_orphaned_keys() == []

    await pg_file_store.audit.drain()
    entries = await pg_file_store.audit.authority.list_for_user(owner_id)
    assert [e.action for e in entries] == ["FileUpload", "FileDelete", "FilePermanentDelete"]
