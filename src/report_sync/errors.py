"""Exception types raised by the synchronization engine."""

from typing import List, Optional


class SyncError(Exception):
    """Base class for all report-sync errors."""

    default_message = "ERR_SYNC_FAILED"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.default_message)


class ConfigurationError(SyncError):
    """Raised synchronously at setup time, never retried."""

    default_message = "ERR_CONFIGURATION"


class UnknownCollectionError(ConfigurationError):
    """Allow-list names a collection outside the fixed vocabulary."""

    default_message = "ERR_COLLECTION_IS_NOT_ALLOWED"

    def __init__(self, names: List[str]):
        self.names = list(names)
        super().__init__(f"{self.default_message}: {', '.join(self.names)}")


class HookNotCallableError(ConfigurationError):
    default_message = "ERR_POST_SYNC_HOOK_IS_NOT_CALLABLE"


class ProgressHandlerNotCallableError(ConfigurationError):
    default_message = "ERR_PROGRESS_HANDLER_IS_NOT_CALLABLE"


class CollectionNotFoundError(SyncError):
    default_message = "ERR_COLLECTION_NOT_FOUND"


class UnknownMethodError(SyncError):
    """The gateway does not recognize a method referenced by a schema."""

    default_message = "ERR_METHOD_NOT_FOUND"

    def __init__(self, method: str):
        self.method = method
        super().__init__(f"{self.default_message}: {method}")


class RemoteError(SyncError):
    """Error reported by the remote API."""

    default_message = "ERR_REMOTE_API"

    def __init__(
        self,
        message: Optional[str] = None,
        status: Optional[int] = None,
        body: Optional[str] = None
    ):
        self.status = status
        self.body = body
        super().__init__(message)


class RateLimitError(RemoteError):
    default_message = "ERR_RATE_LIMIT"


class NonceTooSmallError(RemoteError):
    default_message = "nonce: small"


class SymbolInvalidError(RemoteError):
    default_message = "symbol: invalid"


class RetryLimitExceededError(SyncError):
    """Transient failures kept happening past the retry bound."""

    def __init__(self, kind: str, attempts: int, last_error: Exception):
        self.kind = kind
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"ERR_RETRY_LIMIT_EXCEEDED: {kind} after {attempts} attempts: {last_error}"
        )


class HookFailureError(SyncError):
    """One or more post-sync hooks failed."""

    def __init__(self, errors: List[BaseException]):
        self.errors = list(errors)
        super().__init__(
            f"ERR_POST_SYNC_HOOK_FAILED: {len(self.errors)} hook(s) failed: "
            + "; ".join(repr(e) for e in self.errors)
        )


class SyncCancelledError(SyncError):
    default_message = "ERR_SYNC_CANCELLED"
