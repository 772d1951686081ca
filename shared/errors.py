"""Error taxonomy shared by the registry clients, the store and the sync services.

Transient errors are retried by the caller, permanent ones surface immediately.
"""

from shared.models.registry import RateLimitInfo


class SyncError(Exception):
    """Base class for every error raised by the sync engine."""


##########################################
############### REGISTRY #################
##########################################

class RegistryError(SyncError):
    """A call to the registry failed.

    Attributes:
        status_code (int | None): HTTP status of the failed response, None for transport failures.
        target (str): The endpoint or entity the call was made for.
    """

    def __init__(self, message: str, status_code: int | None = None, target: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.target = target


class RegistryAuthError(RegistryError):
    """The registry rejected the credential (401/403)."""


class RegistryRateLimitError(RegistryError):
    """The registry answered 429. Carries the rate-limit telemetry of the response."""

    def __init__(self, message: str, rate_limit: RateLimitInfo, status_code: int | None = 429, target: str = "") -> None:
        super().__init__(message, status_code=status_code, target=target)
        self.rate_limit = rate_limit


class RegistryTransientError(RegistryError):
    """Network failure, timeout or 5xx response. Safe to retry."""


class RegistryRequestError(RegistryError):
    """Any other non-success response."""


##########################################
################# STORE ##################
##########################################

class TransientStoreConflict(SyncError):
    """Deadlock or write conflict reported by the store. Safe to retry."""


##########################################
################## SYNC ##################
##########################################

class InvalidSyncInputError(SyncError, ValueError):
    """Malformed input handed to the engine. Never retried."""


class SyncFailedError(SyncError):
    """The registry produced nothing and no persisted data exists to fall back to."""
