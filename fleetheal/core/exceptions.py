import traceback
from datetime import datetime, timezone
from typing import Any

# =============================================================================
# Base Exception
# =============================================================================


class FleetHealError(Exception):
    """
    Base exception for every fleetheal error.

    Carries:
    - a stable error code
    - structured details for logs and reports
    - remediation suggestions
    - the original cause, when wrapping
    """

    error_code: str = "FH_000"
    error_category: str = "general"
    severity: str = "error"  # debug, info, warning, error, critical

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        suggestions: list[str] | None = None,
        cause: Exception | None = None,
        recoverable: bool = True,
        context: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.suggestions = suggestions or []
        self.cause = cause
        self.recoverable = recoverable
        self.context = context or {}
        self.timestamp = datetime.now(timezone.utc)
        self.traceback = traceback.format_exc() if cause else None

    def to_dict(self) -> dict[str, Any]:
        """Serialise for logging and run reports."""
        return {
            "error_code": self.error_code,
            "error_category": self.error_category,
            "severity": self.severity,
            "message": self.message,
            "details": self.details,
            "suggestions": self.suggestions,
            "recoverable": self.recoverable,
            "timestamp": self.timestamp.isoformat(),
            "context": self.context,
            "cause": str(self.cause) if self.cause else None,
            "traceback": self.traceback,
        }

    def __str__(self) -> str:
        parts = [f"[{self.error_code}] {self.message}"]
        if self.details:
            parts.append(f"Details: {self.details}")
        if self.suggestions:
            parts.append(f"Suggestions: {', '.join(self.suggestions)}")
        return " | ".join(parts)


# =============================================================================
# Remote Call Exceptions
# =============================================================================


class RemoteCallError(FleetHealError):
    """A probe or repair call against a node failed."""

    error_code = "FH_RMT_001"
    error_category = "remote"

    def __init__(self, node: str, reason: str, **kwargs: Any) -> None:
        details = {"node": node, "reason": reason, **kwargs.pop("details", {})}
        super().__init__(message=f"Remote call to '{node}' failed: {reason}", details=details, **kwargs)
        self.node = node
        self.reason = reason


class TransientRemoteError(RemoteCallError):
    """Retryable failure: RPC unavailable, network path, timeouts."""

    error_code = "FH_RMT_002"
    severity = "warning"

    def __init__(self, node: str, reason: str, **kwargs: Any) -> None:
        kwargs.setdefault("suggestions", ["Retry after backoff", "Check network reachability"])
        super().__init__(node, reason, recoverable=True, **kwargs)


class PermanentRemoteError(RemoteCallError):
    """Never retried: access denied, logon failure, missing domain or object."""

    error_code = "FH_RMT_003"

    def __init__(self, node: str, reason: str, **kwargs: Any) -> None:
        kwargs.setdefault(
            "suggestions",
            ["Check the service account permissions", "Verify the node and domain names"],
        )
        super().__init__(node, reason, recoverable=False, **kwargs)


# =============================================================================
# Scope Exceptions
# =============================================================================


class ScopeError(FleetHealError):
    """Scope could not be resolved to a node list. Fatal, raised before scanning."""

    error_code = "FH_SCP_001"
    error_category = "scope"
    severity = "critical"

    def __init__(self, message: str, **kwargs: Any) -> None:
        kwargs.setdefault("suggestions", ["Pass --nodes for an explicit scope", "Check the site name"])
        super().__init__(message, recoverable=False, **kwargs)


# =============================================================================
# Configuration Exceptions
# =============================================================================


class ConfigurationError(FleetHealError):
    """Invalid configuration."""

    error_code = "FH_CFG_001"
    error_category = "configuration"


class PolicyConfigError(ConfigurationError):
    """Invalid healing policy or parameter combination. Fatal."""

    error_code = "FH_CFG_002"
    severity = "critical"

    def __init__(self, message: str, **kwargs: Any) -> None:
        super().__init__(message, recoverable=False, **kwargs)


class ConfigLoadError(ConfigurationError):
    """Configuration file could not be read or parsed."""

    error_code = "FH_CFG_003"

    def __init__(self, config_path: str, reason: str, **kwargs: Any) -> None:
        super().__init__(
            message=f"Failed to load configuration from '{config_path}'",
            details={"path": config_path, "reason": reason},
            suggestions=[
                "Check if the file exists",
                "Verify the file format (YAML/JSON)",
                "Check file permissions",
            ],
            recoverable=False,
            **kwargs,
        )


# =============================================================================
# Storage / Internal Exceptions
# =============================================================================


class StorageError(FleetHealError):
    """Persisted state could not be written or read."""

    error_code = "FH_STO_001"
    error_category = "storage"

    def __init__(self, name: str, reason: str, **kwargs: Any) -> None:
        super().__init__(
            message=f"Failed to persist '{name}': {reason}",
            details={"store": name, "reason": reason},
            **kwargs,
        )


class CorruptStateError(StorageError):
    """A persisted document exists but cannot be read back."""

    error_code = "FH_STO_002"

    def __init__(self, name: str, reason: str, **kwargs: Any) -> None:
        FleetHealError.__init__(
            self,
            message=f"Stored document '{name}' is unreadable: {reason}",
            details={"store": name, "reason": reason},
            suggestions=[f"Inspect or restore {name}.json in the state directory"],
            **kwargs,
        )


class InternalError(FleetHealError):
    """Unexpected failure caught at the outermost boundary (result code 4)."""

    error_code = "FH_INT_001"
    error_category = "internal"
    severity = "critical"

    def __init__(self, stage: str, cause: Exception, **kwargs: Any) -> None:
        super().__init__(
            message=f"Unexpected error during {stage}: {cause}",
            details={"stage": stage, "error_type": type(cause).__name__},
            cause=cause,
            recoverable=False,
            **kwargs,
        )
        self.stage = stage


__all__ = [
    "FleetHealError",
    "RemoteCallError",
    "TransientRemoteError",
    "PermanentRemoteError",
    "ScopeError",
    "ConfigurationError",
    "PolicyConfigError",
    "ConfigLoadError",
    "StorageError",
    "CorruptStateError",
    "InternalError",
]
