"""
Healing Policy Engine
=====================

Decides which issues may be repaired automatically in this run.

Checks, applied to every issue in severity order:
    1. category allowed by the policy
    2. severity allowed by the policy
    3. category not gated on manual approval (unless overridden by an operator)
    4. cooldown for (node, category) absent or expired (boundary inclusive)
    5. issue is actionable

A (node, category) key selected earlier in the same pass blocks later
issues with the same key. The eligible list is then truncated to
min(policy.max_concurrent_actions, operator_limit).

The CooldownLedger is the one piece of cross-run shared state. Writes go
through a single lock; ``try_reserve`` is the atomic check-and-set used by
the dispatcher right before a repair call.
"""

import threading
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from fleetheal.core.exceptions import PolicyConfigError
from fleetheal.core.logging import get_logger
from fleetheal.core.types import ApprovalDecision, CooldownEntry, Issue, IssueCategory
from fleetheal.healing.policy import HealingPolicy
from fleetheal.storage.state import StateStore

CooldownKey = tuple[str, IssueCategory]

# =============================================================================
# Cooldown Ledger
# =============================================================================


class CooldownLedger:
    """
    Last repair attempt per (node, category).

    Usage:
        ledger = CooldownLedger.load(store)
        if ledger.try_reserve("DC02", IssueCategory.STALE_REPLICATION, now, policy.cooldown):
            ...  # repair
    """

    def __init__(
        self,
        entries: Iterable[CooldownEntry] = (),
        store: StateStore | None = None,
    ) -> None:
        self._lock = threading.Lock()
        self._entries: dict[CooldownKey, datetime] = {}
        self._store = store
        self._logger = get_logger("fleetheal.cooldown")
        for entry in entries:
            self._record(entry.node, entry.category, entry.last_attempt)

    @classmethod
    def load(cls, store: StateStore) -> "CooldownLedger":
        return cls(store.load_cooldowns(), store=store)

    def _record(self, node: str, category: IssueCategory, when: datetime) -> datetime:
        key = (node, category)
        previous = self._entries.get(key)
        latest = when if previous is None else max(previous, when)
        self._entries[key] = latest
        return latest

    def last_attempt(self, node: str, category: IssueCategory) -> datetime | None:
        with self._lock:
            return self._entries.get((node, category))

    def is_cooling_down(
        self, node: str, category: IssueCategory, now: datetime, cooldown: timedelta
    ) -> bool:
        last = self.last_attempt(node, category)
        return last is not None and now - last < cooldown

    def record_attempt(self, node: str, category: IssueCategory, when: datetime) -> None:
        """Record an attempt; the stored timestamp never moves backwards."""
        with self._lock:
            self._record(node, category, when)
        self.persist()

    def try_reserve(
        self, node: str, category: IssueCategory, now: datetime, cooldown: timedelta
    ) -> bool:
        """Claim (node, category) for a repair at ``now`` unless it is cooling down."""
        with self._lock:
            last = self._entries.get((node, category))
            if last is not None and now - last < cooldown:
                return False
            self._record(node, category, now)
        self.persist()
        return True

    def entries(self) -> list[CooldownEntry]:
        with self._lock:
            return [
                CooldownEntry(node=node, category=category, last_attempt=when)
                for (node, category), when in sorted(
                    self._entries.items(), key=lambda kv: (kv[0][0], kv[0][1].name)
                )
            ]

    def persist(self) -> None:
        if self._store is None:
            return
        self._store.save_cooldowns(self.entries())

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


# =============================================================================
# Eligibility
# =============================================================================

REASON_CATEGORY = "category not allowed by policy"
REASON_SEVERITY = "severity not allowed by policy"
REASON_APPROVAL = "category requires manual approval"
REASON_COOLDOWN = "cooldown active"
REASON_NOT_ACTIONABLE = "issue is not actionable"
REASON_DUPLICATE = "same node and category already selected"
REASON_LIMIT = "action limit reached"


@dataclass
class EligibilityDecision:
    issue: Issue
    eligible: bool
    reasons: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "issue": self.issue.to_dict(),
            "eligible": self.eligible,
            "reasons": list(self.reasons),
        }


@dataclass
class EligibilityReport:
    policy: str
    limit: int
    decisions: list[EligibilityDecision] = field(default_factory=list)

    @property
    def eligible(self) -> list[Issue]:
        return [d.issue for d in self.decisions if d.eligible]

    @property
    def rejected(self) -> list[EligibilityDecision]:
        return [d for d in self.decisions if not d.eligible]

    @property
    def truncated(self) -> int:
        return sum(1 for d in self.decisions if d.reasons == [REASON_LIMIT])


class HealingPolicyEngine:
    """
    Usage:
        engine = HealingPolicyEngine(ledger)
        report = engine.evaluate(issues, HealingPolicy.conservative(), now=utc_now(), operator_limit=3)
        for issue in report.eligible:
            ...
    """

    def __init__(self, ledger: CooldownLedger) -> None:
        self.ledger = ledger
        self._logger = get_logger("fleetheal.policy_engine")

    def check(
        self,
        issue: Issue,
        policy: HealingPolicy,
        *,
        now: datetime,
        approval: ApprovalDecision,
    ) -> list[str]:
        """Failed checks for one issue, ignoring in-pass duplicates and limits."""
        reasons: list[str] = []
        if not policy.allows_category(issue.category):
            reasons.append(REASON_CATEGORY)
        if not policy.allows_severity(issue.severity):
            reasons.append(REASON_SEVERITY)
        if policy.requires_approval(issue.category) and not approval.overrides(issue.category):
            reasons.append(REASON_APPROVAL)
        if self.ledger.is_cooling_down(issue.node, issue.category, now, policy.cooldown):
            reasons.append(REASON_COOLDOWN)
        if not issue.actionable:
            reasons.append(REASON_NOT_ACTIONABLE)
        return reasons

    def evaluate(
        self,
        issues: Iterable[Issue],
        policy: HealingPolicy,
        *,
        now: datetime,
        approval: ApprovalDecision | None = None,
        operator_limit: int | None = None,
    ) -> EligibilityReport:
        if operator_limit is not None and operator_limit < 0:
            raise PolicyConfigError(
                "operator action limit must be non-negative",
                details={"operator_limit": operator_limit},
            )

        approval = approval or ApprovalDecision.automatic()
        limit = policy.max_concurrent_actions
        if operator_limit is not None:
            limit = min(limit, operator_limit)

        report = EligibilityReport(policy=policy.name, limit=limit)
        selected: set[CooldownKey] = set()

        for issue in sorted(issues, key=lambda i: (*i.sort_key(), i.description)):
            reasons = self.check(issue, policy, now=now, approval=approval)
            if not reasons and issue.key in selected:
                reasons.append(REASON_DUPLICATE)
            if not reasons and len(selected) >= limit:
                reasons.append(REASON_LIMIT)

            eligible = not reasons
            if eligible:
                selected.add(issue.key)
            report.decisions.append(EligibilityDecision(issue=issue, eligible=eligible, reasons=reasons))

            self._logger.debug(
                "Eligibility evaluated",
                node=issue.node,
                category=issue.category.name,
                severity=issue.severity.name,
                eligible=eligible,
                reasons=reasons,
            )

        self._logger.info(
            "Healing eligibility evaluated",
            policy=policy.name,
            issues=len(report.decisions),
            eligible=len(selected),
            limit=limit,
            truncated=report.truncated,
        )
        return report
