"""
fleetheal core: types, exceptions, logging and collaborator contracts.

Configuration lives in ``fleetheal.core.config`` and is imported from there.
"""

from .base import (
    BlockingActuatorAdapter,
    BlockingProbeAdapter,
    NodeHealthProbe,
    NodeRepairActuator,
    ReportSink,
    ScopeResolver,
)
from .exceptions import (
    ConfigLoadError,
    ConfigurationError,
    CorruptStateError,
    FleetHealError,
    InternalError,
    PermanentRemoteError,
    PolicyConfigError,
    RemoteCallError,
    ScopeError,
    StorageError,
    TransientRemoteError,
)
from .logging import bind_run_context, clear_run_context, configure_logging, get_logger
from .types import (
    ApprovalDecision,
    ErrorKind,
    HealthSnapshot,
    HealthStatus,
    Issue,
    IssueCategory,
    RepairActionKind,
    ResultCode,
    ScanMode,
    ScopeMode,
    ScopeSpec,
    Severity,
)

__all__ = [
    # Base
    "ScopeResolver",
    "NodeHealthProbe",
    "NodeRepairActuator",
    "ReportSink",
    "BlockingProbeAdapter",
    "BlockingActuatorAdapter",
    # Exceptions
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
    # Logging
    "get_logger",
    "configure_logging",
    "bind_run_context",
    "clear_run_context",
    # Types
    "ApprovalDecision",
    "ErrorKind",
    "HealthSnapshot",
    "HealthStatus",
    "Issue",
    "IssueCategory",
    "RepairActionKind",
    "ResultCode",
    "ScanMode",
    "ScopeMode",
    "ScopeSpec",
    "Severity",
]
