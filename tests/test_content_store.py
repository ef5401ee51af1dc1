import io
import os
import re
from datetime import datetime, timezone

import pytest

from tenant_file_store.config import StorageConfig
from tenant_file_store.exceptions import AccessDeniedError, NotFoundError, StorageError, ValidationError
from tenant_file_store.repositories.content_store import LocalContentStore, build_storage_key, sanitize_file_name


@pytest.fixture
def store(storage_config) -> LocalContentStore:
    return LocalContentStore(storage_config)


# ――― key layout ――― #
def test_storage_key_layout():
    key = build_storage_key("report.pdf", now=datetime(2024, 3, 7, tzinfo=timezone.utc))
    assert re.fullmatch(r"2024/03/[0-9a-f\-]{36}_report\.pdf", key)


def test_storage_keys_are_unique_for_same_name():
    assert build_storage_key("a.txt") != build_storage_key("a.txt")


@pytest.mark.parametrize(
    "name, expected",
    [
        ("report.pdf", "report.pdf"),
        ("a/b\\c.txt", "a_b_c.txt"),
        ("///", "file"),
        ("  spaced  ", "spaced"),
        ("what?*.txt", "what_.txt"),
    ],
)
def test_sanitize_file_name(name, expected):
    assert sanitize_file_name(name) == expected


def test_sanitize_truncates_long_names_keeping_extension():
    sanitized = sanitize_file_name("ж" * 250 + ".pdf")
    assert sanitized.endswith(".pdf")
    assert len(sanitized.encode("utf-8")) <= 200


# ――― save / get / delete ――― #
@pytest.mark.asyncio
async def test_save_and_get_round_trip(store):
    payload = b"hello, storage" * 1000
    key = await store.save(payload, "greeting.txt")

    assert key.endswith("_greeting.txt")
    assert await store.exists(key)
    with await store.get(key) as fh:
        assert fh.read() == payload


@pytest.mark.asyncio
async def test_save_accepts_file_objects_without_consuming_position(store):
    src = io.BytesIO(b"0123456789")
    src.seek(4)
    key = await store.save(src, "digits.bin")
    with await store.get(key) as fh:
        assert fh.read() == b"456789"


@pytest.mark.asyncio
@pytest.mark.parametrize("payload", [None, b"", io.BytesIO(b"")])
async def test_empty_stream_rejected_before_io(store, payload):
    with pytest.raises(ValidationError):
        await store.save(payload, "empty.txt")
    assert await store.list_keys() == []


@pytest.mark.asyncio
async def test_max_size_enforced(tmp_path):
    store = LocalContentStore(StorageConfig(base_path=str(tmp_path / "s"), max_file_size_bytes=10))
    with pytest.raises(ValidationError, match="exceeds maximum allowed size"):
        await store.save(b"x" * 11, "big.bin")
    assert await store.list_keys() == []


@pytest.mark.asyncio
async def test_extension_allow_list_is_case_insensitive(tmp_path):
    store = LocalContentStore(
        StorageConfig(base_path=str(tmp_path / "s"), allowed_extensions=["pdf", ".TXT"])
    )
    assert await store.save(b"ok", "notes.txt")
    assert await store.save(b"ok", "SCAN.PDF")
    with pytest.raises(ValidationError, match="not allowed"):
        await store.save(b"nope", "script.exe")


@pytest.mark.asyncio
async def test_get_missing_key_raises_not_found(store):
    with pytest.raises(NotFoundError):
        await store.get("2024/01/missing.txt")


@pytest.mark.asyncio
async def test_delete_is_idempotent(store):
    key = await store.save(b"bytes", "a.txt")
    await store.delete(key)
    await store.delete(key)
    assert not await store.exists(key)


@pytest.mark.asyncio
async def test_exclusive_create_never_overwrites(store, monkeypatch):
    key = await store.save(b"first", "same.txt")
    monkeypatch.setattr(
        "tenant_file_store.repositories.content_store.build_storage_key", lambda name, now=None: key
    )
    with pytest.raises(StorageError):
        await store.save(b"second", "same.txt")
    with await store.get(key) as fh:
        assert fh.read() == b"first"


# ――― containment ――― #
@pytest.mark.parametrize("key", ["../outside.txt", "2024/../../etc/passwd", "/etc/passwd", "."])
def test_resolve_rejects_keys_outside_root(store, key):
    with pytest.raises(AccessDeniedError):
        store.resolve(key)


@pytest.mark.parametrize("key", ["", "   "])
def test_resolve_rejects_blank_keys(store, key):
    with pytest.raises(ValidationError):
        store.resolve(key)


@pytest.mark.asyncio
async def test_get_and_delete_respect_containment(store, tmp_path):
    outside = tmp_path / "secret.txt"
    outside.write_bytes(b"secret")
    with pytest.raises(AccessDeniedError):
        await store.get("../secret.txt")
    with pytest.raises(AccessDeniedError):
        await store.delete("../secret.txt")
    assert outside.exists()


@pytest.mark.asyncio
async def test_symlink_escape_rejected(store, tmp_path):
    outside = tmp_path / "outside"
    outside.mkdir()
    (outside / "x.txt").write_bytes(b"x")
    os.symlink(outside, os.path.join(store.base_path, "link"))
    with pytest.raises(AccessDeniedError):
        await store.get("link/x.txt")


@pytest.mark.asyncio
async def test_list_keys_and_prefix(store):
    k1 = await store.save(b"1", "one.txt")
    k2 = await store.save(b"2", "two.txt")
    assert await store.list_keys() == sorted([k1, k2])
    assert await store.list_keys(prefix="1999/") == []


@pytest.mark.asyncio
async def test_check_connection(store):
    await store.check_connection()
