import hashlib
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Protocol

from tenant_file_store.models.identity import CachedIdentity, Identity

logger = logging.getLogger(__name__)

CACHE_KEY_PREFIX = "identity:token:"
DEFAULT_SWEEP_INTERVAL = 60.0


def token_hash(token: str) -> str:
    """sha256 токена - единственное, что попадает в кэш и логи."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


class IdentityCache(Protocol):
    async def get(self, token_digest: str) -> Optional[Identity]: ...
    async def set(self, token_digest: str, identity: Identity, ttl_seconds: int) -> None: ...


class MemoryIdentityCache:
    """
    Кэш в памяти процесса. Вытеснение только по времени (не LRU): протухшая
    запись удаляется при чтении, а раз в sweep_interval секунд set() вычищает
    все протухшие записи.
    """

    def __init__(self, clock: Callable[[], float] = time.time, sweep_interval: float = DEFAULT_SWEEP_INTERVAL):
        self._clock = clock
        self._sweep_interval = sweep_interval
        self._last_sweep = clock()
        self._entries: dict[str, CachedIdentity] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def _now(self) -> datetime:
        return datetime.fromtimestamp(self._clock(), tz=timezone.utc)

    async def get(self, token_digest: str) -> Optional[Identity]:
        entry = self._entries.get(token_digest)
        if entry is None:
            return None
        if entry.expires_at <= self._now():
            self._entries.pop(token_digest, None)
            return None
        return entry.identity

    async def set(self, token_digest: str, identity: Identity, ttl_seconds: int) -> None:
        if self._clock() - self._last_sweep >= self._sweep_interval:
            purged = self.purge_expired()
            if purged:
                logger.debug(f"Purged {purged} expired identity cache entries")
        self._entries[token_digest] = CachedIdentity(
            token_hash=token_digest,
            identity=identity,
            expires_at=self._now() + timedelta(seconds=ttl_seconds),
        )

    def purge_expired(self) -> int:
        now = self._now()
        self._last_sweep = self._clock()
        expired = [k for k, v in self._entries.items() if v.expires_at <= now]
        for key in expired:
            del self._entries[key]
        return len(expired)


class RedisIdentityCache:
    """Общий для всех воркеров кэш в Redis; TTL выставляет сам Redis (SET ... EX)."""

    def __init__(self, redis, key_prefix: str = ""):
        self._redis = redis
        self._prefix = key_prefix

    def _key(self, token_digest: str) -> str:
        return f"{self._prefix}{CACHE_KEY_PREFIX}{token_digest}"

    async def get(self, token_digest: str) -> Optional[Identity]:
        raw = await self._redis.get(self._key(token_digest))
        if not raw:
            return None
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        return Identity.model_validate_json(raw)

    async def set(self, token_digest: str, identity: Identity, ttl_seconds: int) -> None:
        await self._redis.set(self._key(token_digest), identity.model_dump_json(), ex=ttl_seconds)

    async def aclose(self) -> None:
        close = getattr(self._redis, "aclose", None)
        if close is not None:
            await close()
