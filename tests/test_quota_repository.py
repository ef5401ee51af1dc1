import asyncio
import uuid

import pytest

from tenant_file_store.exceptions import ValidationError
from tenant_file_store.repositories.pg_repositoryQuota import DEFAULT_LIMIT_BYTES, QuotaRepository

pytestmark = pytest.mark.asyncio


@pytest.fixture
def quotas(session_factory) -> QuotaRepository:
    return QuotaRepository(session_factory, default_limit_bytes=1000)


async def test_get_or_create_is_lazy_and_stable(quotas, owner_id):
    assert await quotas.get(owner_id) is None
    created = await quotas.get_or_create(owner_id)
    assert created.used_bytes == 0
    assert created.limit_bytes == 1000
    again = await quotas.get_or_create(owner_id, default_limit=5)
    assert again.limit_bytes == 1000


async def test_default_limit_is_five_gib(session_factory, owner_id):
    repo = QuotaRepository(session_factory)
    quota = await repo.get_or_create(owner_id)
    assert quota.limit_bytes == DEFAULT_LIMIT_BYTES == 5 * 1024 ** 3


async def test_can_admit_boundaries(quotas, owner_id):
    assert await quotas.can_admit(owner_id, 1000)
    assert not await quotas.can_admit(owner_id, 1001)
    assert not await quotas.can_admit(owner_id, -1)
    # проверка лениво создала запись
    assert await quotas.get(owner_id) is not None


async def test_charge_and_release(quotas, owner_id):
    await quotas.charge(owner_id, 600)
    await quotas.charge(owner_id, 300)
    assert (await quotas.get(owner_id)).used_bytes == 900
    assert await quotas.can_admit(owner_id, 100)
    assert not await quotas.can_admit(owner_id, 101)

    await quotas.release(owner_id, 400)
    assert (await quotas.get(owner_id)).used_bytes == 500


async def test_release_floors_at_zero(quotas, owner_id):
    await quotas.charge(owner_id, 100)
    await quotas.release(owner_id, 100)
    await quotas.release(owner_id, 100)
    assert (await quotas.get(owner_id)).used_bytes == 0


async def test_negative_amounts_rejected(quotas, owner_id):
    with pytest.raises(ValidationError):
        await quotas.charge(owner_id, -1)
    with pytest.raises(ValidationError):
        await quotas.release(owner_id, -1)
    with pytest.raises(ValidationError):
        await quotas.update_limit(owner_id, -1)
    with pytest.raises(ValidationError):
        await quotas.resync(owner_id, -1)


async def test_concurrent_charges_are_not_lost(quotas, owner_id):
    await quotas.get_or_create(owner_id)
    await asyncio.gather(*(quotas.charge(owner_id, 10) for _ in range(10)))
    assert (await quotas.get(owner_id)).used_bytes == 100


async def test_try_reserve_is_conditional(quotas, owner_id):
    assert await quotas.try_reserve(owner_id, 900)
    assert not await quotas.try_reserve(owner_id, 101)
    assert await quotas.try_reserve(owner_id, 100)
    assert not await quotas.try_reserve(owner_id, -5)
    assert (await quotas.get(owner_id)).used_bytes == 1000


async def test_update_limit_and_resync_require_existing_record(quotas):
    stranger = uuid.uuid4()
    assert not await quotas.update_limit(stranger, 10)
    assert not await quotas.resync(stranger, 10)


async def test_update_limit_and_resync(quotas, owner_id):
    await quotas.charge(owner_id, 200)
    assert await quotas.update_limit(owner_id, 150)
    quota = await quotas.get(owner_id)
    assert quota.is_exceeded
    assert quota.available_bytes == 0

    assert await quotas.resync(owner_id, 50)
    quota = await quotas.get(owner_id)
    assert quota.used_bytes == 50
    assert quota.available_bytes == 100
    assert round(quota.usage_percentage, 2) == 33.33
