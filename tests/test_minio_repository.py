import io

import pytest
from urllib3.exceptions import MaxRetryError, ProtocolError

from tenant_file_store import create_file_store
from tenant_file_store.config import MinioConfig, StorageConfig
from tenant_file_store.exceptions import AccessDeniedError, StorageError, ValidationError
from tenant_file_store.repositories.minio_repository import MinioContentStore


class FakeObject:
    def __init__(self, name):
        self.object_name = name


class FakeResponse(io.BytesIO):
    def release_conn(self):
        pass


class FakeMinio:
    """Минимальный двойник клиента minio: бакеты и объекты в словаре."""

    def __init__(self):
        self.buckets = set()
        self.objects = {}

    def bucket_exists(self, bucket_name):
        return bucket_name in self.buckets

    def make_bucket(self, bucket_name):
        self.buckets.add(bucket_name)

    def stat_object(self, bucket_name, object_name):
        return object() if (bucket_name, object_name) in self.objects else None

    def put_object(self, bucket_name, object_name, data, length, content_type=None):
        self.objects[(bucket_name, object_name)] = data.read(length)

    def get_object(self, bucket_name, object_name):
        return FakeResponse(self.objects[(bucket_name, object_name)])

    def remove_object(self, bucket_name, object_name):
        self.objects.pop((bucket_name, object_name), None)

    def list_objects(self, bucket_name, prefix=None, recursive=False):
        for bucket, name in list(self.objects):
            if bucket == bucket_name and (prefix is None or name.startswith(prefix)):
                yield FakeObject(name)


@pytest.fixture
def fake_minio():
    return FakeMinio()


@pytest.fixture
def minio_store(fake_minio):
    return MinioContentStore(
        MinioConfig(bucket="test-bucket"),
        StorageConfig(max_file_size_bytes=1024, allowed_extensions=[".txt", ".bin"]),
        client=fake_minio,
    )


@pytest.mark.asyncio
async def test_save_creates_bucket_and_object(minio_store, fake_minio):
    key = await minio_store.save(b"payload", "doc.txt")

    assert "test-bucket" in fake_minio.buckets
    assert fake_minio.objects[("test-bucket", key)] == b"payload"
    assert await minio_store.exists(key)
    assert minio_store.resolve(key) == f"test-bucket/{key}"

    fh = await minio_store.get(key)
    assert fh.read() == b"payload"
    assert await minio_store.list_keys() == [key]


@pytest.mark.asyncio
async def test_save_refuses_to_overwrite(minio_store, fake_minio, monkeypatch):
    key = await minio_store.save(b"first", "doc.txt")
    monkeypatch.setattr(
        "tenant_file_store.repositories.minio_repository.build_storage_key", lambda name, now=None: key
    )
    with pytest.raises(StorageError):
        await minio_store.save(b"second", "doc.txt")
    assert fake_minio.objects[("test-bucket", key)] == b"first"


@pytest.mark.asyncio
async def test_limits_checked_before_upload(minio_store, fake_minio):
    with pytest.raises(ValidationError):
        await minio_store.save(b"", "empty.txt")
    with pytest.raises(ValidationError):
        await minio_store.save(b"x" * 1025, "big.bin")
    with pytest.raises(ValidationError):
        await minio_store.save(b"x", "run.exe")
    assert fake_minio.objects == {}


@pytest.mark.asyncio
async def test_delete_and_missing_exists(minio_store, fake_minio):
    key = await minio_store.save(b"bye", "bye.txt")
    await minio_store.delete(key)
    assert not await minio_store.exists(key)


@pytest.mark.parametrize("key", ["../other-bucket/x", "/abs/key", "a/../../x", ".."])
def test_keys_cannot_escape_bucket(minio_store, key):
    with pytest.raises(AccessDeniedError):
        minio_store.resolve(key)


def test_blank_key_rejected(minio_store):
    with pytest.raises(ValidationError):
        minio_store.resolve(" ")


class UnreachableMinio(FakeMinio):
    """Бакет и запись работают, а удаление и чтение падают на транспорте."""

    def remove_object(self, bucket_name, object_name):
        raise MaxRetryError(None, f"/{bucket_name}/{object_name}", reason=ConnectionRefusedError())

    def get_object(self, bucket_name, object_name):
        raise ProtocolError("Connection aborted.")


class DownMinio(FakeMinio):
    def bucket_exists(self, bucket_name):
        raise MaxRetryError(None, f"/{bucket_name}", reason=ConnectionRefusedError())


@pytest.mark.asyncio
async def test_transport_errors_become_storage_errors():
    config = MinioConfig(bucket="test-bucket")
    storage = StorageConfig(allowed_extensions=[".txt"])

    down = MinioContentStore(config, storage, client=DownMinio())
    with pytest.raises(StorageError):
        await down.save(b"payload", "doc.txt")
    with pytest.raises(StorageError):
        await down.check_connection()

    flaky = MinioContentStore(config, storage, client=UnreachableMinio())
    key = await flaky.save(b"payload", "doc.txt")
    with pytest.raises(StorageError):
        await flaky.delete(key)
    with pytest.raises(StorageError):
        await flaky.get(key)


@pytest.mark.asyncio
async def test_permanent_delete_survives_unreachable_minio(store_config, db_engine, audit_log, owner_id):
    store = MinioContentStore(MinioConfig(bucket="test-bucket"), store_config.storage, client=UnreachableMinio())
    client = create_file_store(store_config, engine=db_engine, content_store=store, audit_authority=audit_log)
    try:
        record = (await client.upload_file(b"stuck", "doc.txt", "text/plain", owner_id)).value

        result = await client.permanent_delete_file(record.id, owner_id)
        assert result.succeeded
        assert await client.files.get_by_id(record.id) is None
        assert (await client.get_quota(owner_id)).used_bytes == 0

        await client.audit.drain()
        outcomes = [e.is_success for e in audit_log.entries if e.action == "FilePermanentDelete"]
        assert outcomes == [False, True]
    finally:
        await client.aclose()
