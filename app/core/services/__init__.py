from app.core.services.code_vault import (
    CodeInfo,
    CodeVault,
    RedeemResult,
    get_code_vault,
)
from app.core.services.rate_limit import (
    DatabaseBackend,
    MemoryBackend,
    RateLimitBackend,
    RateLimiter,
    RateLimitResult,
    RedisBackend,
    get_rate_limiter,
    rate_limit_by_user,
)
from app.core.services.redis_service import RedisService
from app.core.services.session_registry import (
    DeviceInfo,
    SessionEntry,
    SessionListing,
    SessionRegistry,
    get_session_registry,
)
from app.core.services.token_issuer import (
    Identity,
    TokenIssuer,
    TokenPair,
    get_token_issuer,
)

__all__ = [
    # Core services
    "RedisService",
    # Code vault
    "CodeInfo",
    "CodeVault",
    "RedeemResult",
    "get_code_vault",
    # Token issuer
    "Identity",
    "TokenIssuer",
    "TokenPair",
    "get_token_issuer",
    # Rate limiting
    "DatabaseBackend",
    "MemoryBackend",
    "RateLimitBackend",
    "RateLimiter",
    "RateLimitResult",
    "RedisBackend",
    "get_rate_limiter",
    "rate_limit_by_user",
    # Session registry
    "DeviceInfo",
    "SessionEntry",
    "SessionListing",
    "SessionRegistry",
    "get_session_registry",
]
