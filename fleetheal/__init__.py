"""
fleetheal
=========

Replication health control loop for a fleet of directory service nodes
(domain controllers): audit, repair and verify.

Pipeline:
    - Collection: scope resolution, bounded parallel probing with retry/backoff
    - Analysis: issue classification, delta (incremental) scan planning
    - Healing: policy gate, cooldown ledger, repair dispatch, rollback, verification

Usage:
    from fleetheal import FleetHealthRunner, RunOptions, ScopeSpec, HealingPolicy

    runner = FleetHealthRunner(resolver, probe, actuator, JsonStateStore())
    report = await runner.run(ScopeSpec.for_site("HQ"), RunOptions(auto_heal=True))
    print(report.summary.result_code)
"""

__version__ = "1.0.0"

from .core.config import FleetHealConfig, load_config
from .core.exceptions import (
    FleetHealError,
    InternalError,
    PermanentRemoteError,
    PolicyConfigError,
    ScopeError,
    TransientRemoteError,
)
from .core.types import (
    ApprovalDecision,
    HealthSnapshot,
    HealthStatus,
    Issue,
    IssueCategory,
    ResultCode,
    ScopeSpec,
    Severity,
)
from .healing.policy import HealingPolicy, create_healing_policy
from .reporting import RunReport
from .runner import FleetHealthRunner, RunOptions
from .storage.state import InMemoryStateStore, JsonStateStore

__all__ = [
    "__version__",
    "FleetHealthRunner",
    "RunOptions",
    "RunReport",
    "FleetHealConfig",
    "load_config",
    "HealingPolicy",
    "create_healing_policy",
    "JsonStateStore",
    "InMemoryStateStore",
    "ApprovalDecision",
    "HealthSnapshot",
    "HealthStatus",
    "Issue",
    "IssueCategory",
    "ResultCode",
    "ScopeSpec",
    "Severity",
    "FleetHealError",
    "InternalError",
    "PermanentRemoteError",
    "PolicyConfigError",
    "ScopeError",
    "TransientRemoteError",
]
