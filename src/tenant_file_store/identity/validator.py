import logging
from typing import Optional

from tenant_file_store.exceptions import AuthenticationError, FileStoreError
from tenant_file_store.identity.authority import IdentityAuthority
from tenant_file_store.identity.cache import IdentityCache, token_hash
from tenant_file_store.models.identity import Identity

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 300


class CachedIdentityValidator:
    """
    Обертка над Identity-сервисом, кэширующая успешные проверки токена.

    Ключ кэша - sha256 токена, сам токен не хранится и не логируется.
    Неуспешные проверки не кэшируются, чтобы исправление на стороне сервиса
    было видно сразу. Любая ошибка сервиса -> None (fail closed).
    """

    def __init__(self, authority: IdentityAuthority, cache: IdentityCache, ttl_seconds: int = DEFAULT_TTL_SECONDS):
        self._authority = authority
        self._cache = cache
        self._ttl = ttl_seconds

    @property
    def authority(self) -> IdentityAuthority:
        return self._authority

    async def validate_session(self, token: Optional[str]) -> Optional[Identity]:
        if token is None or not token.strip():
            return None

        digest = token_hash(token)
        try:
            cached = await self._cache.get(digest)
        except Exception as e:
            logger.warning(f"Identity cache read failed, treating as miss: {e}")
            cached = None
        if cached is not None:
            return cached

        try:
            identity = await self._authority.validate(token)
        except FileStoreError as e:
            logger.warning(f"Session validation failed closed for token {digest[:12]}: {e}")
            return None
        except Exception as e:
            logger.error(f"Unexpected identity service error for token {digest[:12]}, failing closed: {e!r}")
            return None

        if identity is not None:
            try:
                await self._cache.set(digest, identity, self._ttl)
            except Exception as e:
                logger.warning(f"Identity cache write failed: {e}")
        return identity

    async def require_session(self, token: Optional[str]) -> Identity:
        identity = await self.validate_session(token)
        if identity is None:
            raise AuthenticationError("Invalid or expired session.")
        if not identity.is_active:
            raise AuthenticationError("User account is inactive.")
        return identity
