"""
Retry с экспоненциальной задержкой и простой circuit breaker для вызовов
внешних сервисов. Breaker считает подряд идущие неудачи: после порога он
открывается и отбивает вызовы без обращения к сети, пока не истечет
reset_timeout; затем пропускает один пробный вызов (half-open).
"""
import asyncio
import enum
import logging
import time
from typing import Awaitable, Callable, Optional, TypeVar

from tenant_file_store.exceptions import AuthenticationError, TransientDownstreamError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class BreakerState(str, enum.Enum):
    closed = "closed"
    open = "open"
    half_open = "half_open"


class CircuitOpenError(AuthenticationError):
    """Breaker открыт - вызов отклонен без обращения к сервису."""


class CircuitBreaker:
    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        reset_timeout: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be positive")
        self.name = name
        self._threshold = failure_threshold
        self._reset_timeout = reset_timeout
        self._clock = clock
        self._failures = 0
        self._opened_at: Optional[float] = None
        self._trial_in_flight = False

    @property
    def state(self) -> BreakerState:
        if self._opened_at is None:
            return BreakerState.closed
        if self._clock() - self._opened_at >= self._reset_timeout:
            return BreakerState.half_open
        return BreakerState.open

    @property
    def consecutive_failures(self) -> int:
        return self._failures

    def _before_call(self) -> None:
        state = self.state
        if state is BreakerState.open:
            raise CircuitOpenError(f"Circuit '{self.name}' is open; downstream call skipped.")
        if state is BreakerState.half_open:
            if self._trial_in_flight:
                raise CircuitOpenError(f"Circuit '{self.name}' is half-open; trial call already in flight.")
            self._trial_in_flight = True

    def record_success(self) -> None:
        if self._opened_at is not None:
            logger.info(f"Circuit '{self.name}' closed after successful trial call")
        self._failures = 0
        self._opened_at = None
        self._trial_in_flight = False

    def record_failure(self) -> None:
        self._failures += 1
        self._trial_in_flight = False
        if self._opened_at is not None or self._failures >= self._threshold:
            if self._opened_at is None:
                logger.warning(f"Circuit '{self.name}' opened after {self._failures} consecutive failures")
            self._opened_at = self._clock()

    async def call(self, operation: Callable[[], Awaitable[T]]) -> T:
        self._before_call()
        try:
            result = await operation()
        except Exception:
            self.record_failure()
            raise
        self.record_success()
        return result


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    max_retries: int = 3,
    backoff_base: float = 0.2,
    retry_on: tuple[type[BaseException], ...] = (TransientDownstreamError,),
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Повторяет operation до max_retries раз при временных ошибках; задержка base * 2**attempt."""
    attempt = 0
    while True:
        try:
            return await operation()
        except retry_on as e:
            if attempt >= max_retries:
                raise
            delay = backoff_base * (2 ** attempt)
            attempt += 1
            logger.info(f"Transient downstream failure ({e}); retry {attempt}/{max_retries} in {delay:.2f}s")
            if delay > 0:
                await sleep(delay)
