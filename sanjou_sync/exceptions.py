"""
Custom exceptions for offline-first synchronization.

Every component catches I/O failures at its own boundary and converts
them into one of these classified errors (or a sync state signal), so
callers never see raw SDK or filesystem exceptions.
"""


class SanjouSyncError(Exception):
    """Base exception for all sync errors."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationAbsentError(SanjouSyncError):
    """Raised when remote sync is not configured.

    This is not a failure: the reconciler treats it as a permanent
    offline state and never attempts a remote exchange.
    """

    def __init__(self, setting: str, reason: str | None = None):
        details = {"setting": setting}
        if reason:
            details["reason"] = reason
        super().__init__(f"Remote sync not configured: {setting} is not set", details)
        self.setting = setting
        self.reason = reason


class StorageIOError(SanjouSyncError):
    """Raised when a storage I/O operation fails."""

    def __init__(self, operation: str, path: str | None = None, cause: Exception | None = None):
        details = {"operation": operation}
        if path:
            details["path"] = path
        if cause:
            details["cause"] = str(cause)
        message = f"Storage I/O error during {operation}"
        if path:
            message += f": {path}"
        if cause:
            message += f" ({cause})"
        super().__init__(message, details)
        self.operation = operation
        self.path = path
        self.cause = cause


class TransientIOError(StorageIOError):
    """Raised for lock/busy/unavailable conditions that may clear on retry."""


class PermanentIOError(SanjouSyncError):
    """Raised when an item exceeded its retry ceiling and was dropped."""

    def __init__(self, item: str, attempts: int):
        super().__init__(
            f"Giving up on {item} after {attempts} attempts",
            {"item": item, "attempts": attempts},
        )
        self.item = item
        self.attempts = attempts


class FormatError(SanjouSyncError):
    """Raised when content fails shape validation.

    Format errors are surfaced, never retried: re-reading the same bytes
    would fail the same way.
    """

    def __init__(self, source: str, reason: str):
        super().__init__(
            f"Invalid format in {source}: {reason}",
            {"source": source, "reason": reason},
        )
        self.source = source
        self.reason = reason


class StorageConnectionError(SanjouSyncError):
    """Raised when connection to remote storage fails.

    Note: Named StorageConnectionError to avoid shadowing the builtin ConnectionError.
    """

    def __init__(self, endpoint: str, cause: Exception | None = None):
        details = {"endpoint": endpoint}
        if cause:
            details["cause"] = str(cause)
        super().__init__(f"Connection failed to {endpoint}", details)
        self.endpoint = endpoint
        self.cause = cause


class AuthenticationError(SanjouSyncError):
    """Raised when authentication to remote storage fails."""

    def __init__(self, endpoint: str, reason: str | None = None):
        details = {"endpoint": endpoint}
        if reason:
            details["reason"] = reason
        super().__init__(f"Authentication failed for {endpoint}", details)
        self.endpoint = endpoint
        self.reason = reason


class ValidationError(SanjouSyncError):
    """Raised when entity data validation fails."""

    def __init__(self, field: str, reason: str, value: str | None = None):
        details = {"field": field, "reason": reason}
        if value is not None:
            details["value"] = value
        super().__init__(f"Validation failed for {field}: {reason}", details)
        self.field = field
        self.reason = reason
        self.value = value


class SyncError(SanjouSyncError):
    """Raised when a remote exchange fails."""

    def __init__(self, message: str, partition_key: str | None = None, cause: Exception | None = None):
        details: dict = {}
        if partition_key:
            details["partition_key"] = partition_key
        if cause:
            details["cause"] = str(cause)
        super().__init__(message, details)
        self.partition_key = partition_key
        self.cause = cause
