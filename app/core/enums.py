from enum import Enum


class UserRole(str, Enum):
    """Role of a dashboard user; carried into codes and token claims."""

    USER = "user"
    TESTER = "tester"
    ADMIN = "admin"


class DevicePlatform(str, Enum):
    """Operating system reported by the desktop client (Node's process.platform)."""

    WIN32 = "win32"
    DARWIN = "darwin"
    LINUX = "linux"
    UNKNOWN = "unknown"


class TokenType(str, Enum):
    """Value of the `type` claim in issued tokens."""

    ACCESS = "access"
    REFRESH = "refresh"


class RedeemStatus(str, Enum):
    """Outcome of redeeming a one-time code."""

    REDEEMED = "redeemed"
    NOT_FOUND = "not_found"
    EXPIRED = "expired"
    CONSUMED = "consumed"


class DeactivateOutcome(str, Enum):
    """Outcome of deactivating a desktop session."""

    DEACTIVATED = "deactivated"
    NOT_FOUND = "not_found"