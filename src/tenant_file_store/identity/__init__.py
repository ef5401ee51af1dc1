from .authority import HttpIdentityAuthority, IdentityAuthority
from .cache import MemoryIdentityCache, RedisIdentityCache, IdentityCache, token_hash
from .resilience import CircuitBreaker, BreakerState, CircuitOpenError, retry_async
from .validator import CachedIdentityValidator

__all__ = [
    "HttpIdentityAuthority", "IdentityAuthority",
    "MemoryIdentityCache", "RedisIdentityCache", "IdentityCache", "token_hash",
    "CircuitBreaker", "BreakerState", "CircuitOpenError", "retry_async",
    "CachedIdentityValidator",
]
