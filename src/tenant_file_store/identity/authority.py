import logging
from typing import Optional, Protocol

import httpx
from pydantic import ValidationError as PydanticValidationError

from tenant_file_store.config import IdentityConfig
from tenant_file_store.exceptions import AuthenticationError, TransientDownstreamError
from tenant_file_store.identity.resilience import CircuitBreaker, retry_async
from tenant_file_store.models.identity import Identity

logger = logging.getLogger(__name__)

# Окончательный отказ сервиса: токен невалиден, повторять бессмысленно
REJECTED_STATUSES = {401, 403, 404}


class IdentityAuthority(Protocol):
    async def validate(self, token: str) -> Optional[Identity]: ...


class HttpIdentityAuthority:
    """
    HTTP-клиент Identity-сервиса: GET /api/auth/me с Bearer-токеном.

    - 2xx -> Identity
    - 401/403/404 -> None (токен отклонен)
    - 5xx, таймауты, сетевые ошибки -> повтор с backoff, затем AuthenticationError
    - прочие ошибки httpx -> AuthenticationError без повтора
    Вызовы идут через circuit breaker, чтобы один больной сервис не выедал пул соединений.
    """

    def __init__(self, cfg: IdentityConfig, client: Optional[httpx.AsyncClient] = None):
        if not cfg.base_url and client is None:
            raise ValueError("IdentityConfig.base_url is not set.")
        self._cfg = cfg
        self._client = client or httpx.AsyncClient(base_url=cfg.base_url, timeout=cfg.timeout)
        self._owns_client = client is None
        self.breaker = CircuitBreaker(
            "identity",
            failure_threshold=cfg.breaker_failure_threshold,
            reset_timeout=cfg.breaker_reset_timeout,
        )

    async def _request(self, token: str) -> Optional[Identity]:
        try:
            response = await self._client.get(
                self._cfg.validate_path,
                headers={"Authorization": f"Bearer {token}"},
            )
        except httpx.TimeoutException as e:
            raise TransientDownstreamError(f"Identity service timed out: {e.__class__.__name__}") from e
        except httpx.TransportError as e:
            raise TransientDownstreamError(f"Identity service unreachable: {e.__class__.__name__}") from e
        except httpx.HTTPError as e:
            # например, битое сжатое тело ответа (DecodingError)
            raise AuthenticationError(f"Identity service request failed: {e.__class__.__name__}") from e

        if response.status_code in REJECTED_STATUSES:
            return None
        if response.status_code >= 500:
            raise TransientDownstreamError(f"Identity service returned {response.status_code}")
        if not response.is_success:
            logger.warning(f"Unexpected identity response status {response.status_code}")
            return None

        try:
            return Identity.model_validate(response.json())
        except (ValueError, PydanticValidationError) as e:
            # битый ответ - не повод пускать пользователя
            raise AuthenticationError("Identity service returned a malformed payload.") from e

    async def validate(self, token: str) -> Optional[Identity]:
        async def _attempt():
            return await retry_async(
                lambda: self._request(token),
                max_retries=self._cfg.max_retries,
                backoff_base=self._cfg.backoff_base,
            )

        try:
            return await self.breaker.call(_attempt)
        except TransientDownstreamError as e:
            raise AuthenticationError(f"Identity service unavailable: {e}") from e

    async def check_connection(self) -> None:
        try:
            await self._client.get("/", timeout=self._cfg.timeout)
        except httpx.HTTPError as e:
            raise TransientDownstreamError(f"Identity service unreachable: {e.__class__.__name__}") from e

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
