"""
FLEETWATCH Custom Exceptions

Domain-specific exception hierarchy for the FLEETWATCH alert engine. Callers
branch on these classes to decide whether an error is retried, recorded and
dropped, or fatal at startup.

Exception Hierarchy:
    FleetwatchError (base)
    ├── ConfigurationError
    ├── StateStoreError
    ├── DataError
    ├── TransientNetworkError
    │   ├── ModemSessionExpiredError
    │   └── DeliveryTimeoutError
    └── ModemResponseError
"""

from typing import Any, Optional


class FleetwatchError(Exception):
    """Base exception for all FLEETWATCH errors.

    Attributes:
        message: Human-readable error description
        details: Optional dict with additional error context
    """

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({detail_str})"
        return self.message


# =============================================================================
# Configuration Errors
# =============================================================================

class ConfigurationError(FleetwatchError):
    """Error in configuration file or settings.

    Raised when configuration validation fails, a transport is missing
    required settings, or a channel has no usable thresholds. Never retried.
    """

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        config_file: Optional[str] = None,
    ) -> None:
        details = {}
        if config_key:
            details["config_key"] = config_key
        if config_file:
            details["config_file"] = config_file
        super().__init__(message, details)
        self.config_key = config_key
        self.config_file = config_file


# =============================================================================
# Persistence Errors
# =============================================================================

class StateStoreError(FleetwatchError):
    """The persisted connection-state store could not be opened or written."""

    def __init__(self, message: str, db_path: Optional[str] = None) -> None:
        details = {}
        if db_path:
            details["db_path"] = db_path
        super().__init__(message, details)
        self.db_path = db_path


# =============================================================================
# Data Errors
# =============================================================================

class DataError(FleetwatchError):
    """A reading or event is malformed and must be discarded.

    The offending input is dropped with a warning; counters and buckets are
    left untouched.
    """

    def __init__(
        self,
        message: str,
        channel_id: Optional[str] = None,
        value: Any = None,
    ) -> None:
        details: dict[str, Any] = {}
        if channel_id:
            details["channel_id"] = channel_id
        if value is not None:
            details["value"] = value
        super().__init__(message, details)
        self.channel_id = channel_id
        self.value = value


# =============================================================================
# Network Errors
# =============================================================================

class TransientNetworkError(FleetwatchError):
    """A delivery attempt failed in a way that may succeed on retry.

    Covers timeouts, connection resets and modem session expiry.
    """

    def __init__(
        self,
        message: str,
        endpoint: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        details = kwargs
        if endpoint:
            details["endpoint"] = endpoint
        super().__init__(message, details)
        self.endpoint = endpoint


class ModemSessionExpiredError(TransientNetworkError):
    """The modem rejected the session cookie or verification token."""

    def __init__(
        self,
        message: str,
        endpoint: Optional[str] = None,
        error_code: Optional[str] = None,
    ) -> None:
        super().__init__(message, endpoint)
        if error_code:
            self.details["error_code"] = error_code
        self.error_code = error_code


class DeliveryTimeoutError(TransientNetworkError):
    """A request did not complete within its timeout."""

    def __init__(
        self,
        message: str,
        endpoint: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
    ) -> None:
        super().__init__(message, endpoint)
        if timeout_seconds is not None:
            self.details["timeout_seconds"] = timeout_seconds
        self.timeout_seconds = timeout_seconds


class ModemResponseError(FleetwatchError):
    """The modem answered but did not acknowledge the message."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        error_message: Optional[str] = None,
    ) -> None:
        details: dict[str, Any] = {}
        if error_code:
            details["error_code"] = error_code
        if error_message:
            details["error_message"] = error_message
        super().__init__(message, details)
        self.error_code = error_code
        self.error_message = error_message


# =============================================================================
# Convenience aliases
# =============================================================================

Error = FleetwatchError
