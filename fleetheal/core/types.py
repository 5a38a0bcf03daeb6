"""
Core Types for fleetheal

Value objects shared by every stage of the health control loop:

Enums:
    - HealthStatus: per-node status derived from one probe
    - IssueCategory / Severity: issue classification
    - ErrorKind: backoff classification of a remote error
    - RepairActionKind: what the repair actuator is asked to do
    - ScanMode: full fleet scan or delta re-scan
    - ResultCode: stable run result contract (0, 2, 3, 4)

Records:
    - PartnerRecord, FailureRecord, RawHealthData, HealthSnapshot
    - Issue
    - RetryAttemptRecord, RetryResult
    - CooldownEntry, HealingAction, RollbackRecord, RepairOutcome
    - DeltaCacheEntry, ScanPlan
    - ApprovalDecision, VerificationResult, RunSummary

All timestamps are timezone-aware UTC datetimes.
"""

import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum, IntEnum, auto
from typing import Any, Generic, TypeVar

T = TypeVar("T")

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: str | datetime | None) -> datetime | None:
    """Parse an ISO timestamp, assuming UTC when no offset is given."""
    if value is None:
        return None
    parsed = value if isinstance(value, datetime) else datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# =============================================================================
# Enums
# =============================================================================


class HealthStatus(Enum):
    """Status of one node at one point in time."""

    HEALTHY = auto()
    DEGRADED = auto()  # reachable, replication failing or stale
    UNREACHABLE = auto()  # probe failed or timed out
    UNKNOWN = auto()  # probe answered with incomplete data


class IssueCategory(Enum):
    REPLICATION_FAILURE = auto()
    CONNECTIVITY = auto()
    STALE_REPLICATION = auto()


class Severity(Enum):
    """
    Issue severity. Values are ordered so policies and the engine can rank.

    Usage:
        >>> Severity.HIGH.rank > Severity.MEDIUM.rank
        True
    """

    LOW = 1
    MEDIUM = 2
    HIGH = 3
    CRITICAL = 4

    @property
    def rank(self) -> int:
        return int(self.value)


class ErrorKind(Enum):
    TRANSIENT = auto()  # retried with backoff
    PERMANENT = auto()  # never retried
    UNKNOWN = auto()  # treated as non-retryable


class RepairActionKind(Enum):
    FORCE_SYNC = auto()  # sync all inbound partners of the node
    REPLICATE_FROM_PARTNER = auto()  # targeted replication from one partner
    RESYNC = auto()  # corrective fresh sync issued by the rollback manager


class ScanMode(Enum):
    FULL = auto()
    DELTA = auto()


class ScopeMode(Enum):
    ALL = auto()  # every node in the inventory (forest)
    SITE = auto()  # nodes of one named site
    EXPLICIT = auto()  # caller-supplied node list


class ResultCode(IntEnum):
    """Run result contract consumed by the CLI as process exit status."""

    OK = 0
    ISSUES_REMAIN = 2
    UNREACHABLE = 3
    FATAL = 4


# =============================================================================
# Scope
# =============================================================================


@dataclass(frozen=True)
class ScopeSpec:
    """
    Which nodes a run covers.

    Usage:
        >>> ScopeSpec.explicit(["DC01", "DC02"])
        >>> ScopeSpec.for_site("HQ")
        >>> ScopeSpec()  # whole fleet
    """

    mode: ScopeMode = ScopeMode.ALL
    nodes: tuple[str, ...] = ()
    site: str | None = None

    @classmethod
    def explicit(cls, nodes: list[str] | tuple[str, ...]) -> "ScopeSpec":
        return cls(mode=ScopeMode.EXPLICIT, nodes=tuple(nodes))

    @classmethod
    def for_site(cls, site: str) -> "ScopeSpec":
        return cls(mode=ScopeMode.SITE, site=site)


# =============================================================================
# Health Data
# =============================================================================


@dataclass(frozen=True)
class PartnerRecord:
    """Inbound replication partner metadata as reported by a node."""

    partner: str
    naming_context: str = ""
    last_success: datetime | None = None
    last_attempt: datetime | None = None
    consecutive_failures: int = 0
    last_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "partner": self.partner,
            "naming_context": self.naming_context,
            "last_success": self.last_success.isoformat() if self.last_success else None,
            "last_attempt": self.last_attempt.isoformat() if self.last_attempt else None,
            "consecutive_failures": self.consecutive_failures,
            "last_error": self.last_error,
        }


@dataclass(frozen=True)
class FailureRecord:
    """An outstanding replication failure against one partner."""

    partner: str
    failure_count: int = 1
    first_failure: datetime | None = None
    last_error: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "partner": self.partner,
            "failure_count": self.failure_count,
            "first_failure": self.first_failure.isoformat() if self.first_failure else None,
            "last_error": self.last_error,
        }


@dataclass
class RawHealthData:
    """What a node health probe returns."""

    partners: list[PartnerRecord] = field(default_factory=list)
    failures: list[FailureRecord] = field(default_factory=list)
    complete: bool = True


@dataclass(frozen=True)
class HealthSnapshot:
    """Point-in-time health read of one node. Immutable once created."""

    node: str
    timestamp: datetime
    status: HealthStatus
    partners: tuple[PartnerRecord, ...] = ()
    failures: tuple[FailureRecord, ...] = ()
    error: str | None = None
    error_kind: ErrorKind | None = None
    attempts: int = 1

    @property
    def reachable(self) -> bool:
        return self.status is not HealthStatus.UNREACHABLE

    def to_dict(self) -> dict[str, Any]:
        return {
            "node": self.node,
            "timestamp": self.timestamp.isoformat(),
            "status": self.status.name,
            "partners": [p.to_dict() for p in self.partners],
            "failures": [f.to_dict() for f in self.failures],
            "error": self.error,
            "error_kind": self.error_kind.name if self.error_kind else None,
            "attempts": self.attempts,
        }


@dataclass(frozen=True)
class Issue:
    """A classified problem on one node. Never mutated; superseded by the next scan."""

    node: str
    category: IssueCategory
    severity: Severity
    description: str
    actionable: bool
    partner: str | None = None

    @property
    def key(self) -> tuple[str, IssueCategory]:
        """Cooldown key."""
        return (self.node, self.category)

    def sort_key(self) -> tuple[int, str, str, str]:
        """Severity descending, then node, category, partner."""
        return (-self.severity.rank, self.node.lower(), self.category.name, self.partner or "")

    def to_dict(self) -> dict[str, Any]:
        return {
            "node": self.node,
            "category": self.category.name,
            "severity": self.severity.name,
            "description": self.description,
            "actionable": self.actionable,
            "partner": self.partner,
        }


# =============================================================================
# Retry
# =============================================================================


@dataclass(frozen=True)
class RetryAttemptRecord:
    """One attempt inside a single retry execution. Not persisted."""

    attempt: int
    kind: ErrorKind | None
    delay: float
    timestamp: datetime
    error: str | None = None


@dataclass
class RetryResult(Generic[T]):
    success: bool
    value: T | None = None
    error: BaseException | None = None
    error_kind: ErrorKind | None = None
    attempts: int = 0
    history: list[RetryAttemptRecord] = field(default_factory=list)

    @property
    def error_message(self) -> str | None:
        return str(self.error) if self.error is not None else None


# =============================================================================
# Healing Records
# =============================================================================


@dataclass(frozen=True)
class CooldownEntry:
    node: str
    category: IssueCategory
    last_attempt: datetime

    @property
    def key(self) -> tuple[str, IssueCategory]:
        return (self.node, self.category)


@dataclass
class RepairOutcome:
    """What the repair actuator reports for one call."""

    success: bool
    message: str = ""
    details: dict[str, Any] = field(default_factory=dict)


@dataclass
class HealingAction:
    """
    One dispatched repair. Appended to the history ledger; the only field
    ever changed afterwards is ``rolled_back``.
    """

    node: str
    category: IssueCategory
    policy: str
    action_kind: RepairActionKind
    success: bool
    message: str
    timestamp: datetime = field(default_factory=utc_now)
    partner: str | None = None
    attempts: int = 0
    rolled_back: bool = False
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def mark_rolled_back(self) -> None:
        self.rolled_back = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "node": self.node,
            "category": self.category.name,
            "policy": self.policy,
            "action_kind": self.action_kind.name,
            "partner": self.partner,
            "timestamp": self.timestamp.isoformat(),
            "success": self.success,
            "message": self.message,
            "attempts": self.attempts,
            "rolled_back": self.rolled_back,
        }


@dataclass(frozen=True)
class RollbackRecord:
    action_id: str
    timestamp: datetime
    success: bool
    reason: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "action_id": self.action_id,
            "timestamp": self.timestamp.isoformat(),
            "success": self.success,
            "reason": self.reason,
        }


# =============================================================================
# Delta Cache
# =============================================================================


@dataclass(frozen=True)
class DeltaCacheEntry:
    """Result of the previous run, read at the start of the next one."""

    timestamp: datetime
    scanned_nodes: frozenset[str]
    flagged_nodes: frozenset[str]
    issue_count: int = 0

    def __post_init__(self) -> None:
        if not self.flagged_nodes <= self.scanned_nodes:
            extra = sorted(self.flagged_nodes - self.scanned_nodes)
            raise ValueError(f"flagged nodes not in scanned set: {extra}")


@dataclass(frozen=True)
class ScanPlan:
    mode: ScanMode
    nodes: tuple[str, ...]
    reason: str


# =============================================================================
# Approval / Verification / Summary
# =============================================================================


@dataclass(frozen=True)
class ApprovalDecision:
    """
    Replaces interactive confirmation prompts.

    ``auto_approved`` is the policy-computed go/no-go for automatic repair.
    An ``operator_token`` both approves dispatch and, together with
    ``override_categories``, lifts the manual-approval gate for those
    categories.
    """

    auto_approved: bool = True
    operator_token: str | None = None
    override_categories: frozenset[IssueCategory] = frozenset()

    @property
    def allows_dispatch(self) -> bool:
        return self.auto_approved or bool(self.operator_token)

    def overrides(self, category: IssueCategory) -> bool:
        return bool(self.operator_token) and category in self.override_categories

    @classmethod
    def automatic(cls) -> "ApprovalDecision":
        return cls(auto_approved=True)

    @classmethod
    def denied(cls) -> "ApprovalDecision":
        return cls(auto_approved=False)

    @classmethod
    def operator(
        cls, token: str, categories: frozenset[IssueCategory] | set[IssueCategory] = frozenset()
    ) -> "ApprovalDecision":
        return cls(auto_approved=False, operator_token=token, override_categories=frozenset(categories))


@dataclass(frozen=True)
class VerificationResult:
    node: str
    verified_healthy: bool
    status: HealthStatus
    remaining_issues: tuple[Issue, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "node": self.node,
            "verified_healthy": self.verified_healthy,
            "status": self.status.name,
            "remaining_issues": [i.to_dict() for i in self.remaining_issues],
        }


@dataclass
class RunSummary:
    """Structured run summary handed to the CLI/report layer."""

    run_id: str
    result_code: ResultCode
    scan_mode: ScanMode | None = None
    total_nodes: int = 0
    healthy: int = 0
    degraded: int = 0
    unreachable: int = 0
    unknown: int = 0
    issues_found: int = 0
    issues_remaining: int = 0
    actions_performed: int = 0
    actions_failed: int = 0
    rollbacks: int = 0
    verified_healthy: int = 0
    started_at: datetime = field(default_factory=utc_now)
    finished_at: datetime | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "result_code": int(self.result_code),
            "result": self.result_code.name,
            "scan_mode": self.scan_mode.name if self.scan_mode else None,
            "total_nodes": self.total_nodes,
            "healthy": self.healthy,
            "degraded": self.degraded,
            "unreachable": self.unreachable,
            "unknown": self.unknown,
            "issues_found": self.issues_found,
            "issues_remaining": self.issues_remaining,
            "actions_performed": self.actions_performed,
            "actions_failed": self.actions_failed,
            "rollbacks": self.rollbacks,
            "verified_healthy": self.verified_healthy,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "error": self.error,
        }
