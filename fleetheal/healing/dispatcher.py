"""
Repair Dispatcher
=================

Turns eligible issues into repair calls.

Flow per issue:
    1. look up the repair action for the category (CONNECTIVITY has none
       and goes to the manual review list)
    2. reserve the cooldown key BEFORE calling the actuator, so a slow
       repair can never be picked up again by a concurrent pass
    3. call the actuator through the dispatcher's own retry executor
    4. append a HealingAction to the history store (a failed write is
       logged, the action is still reported)
    5. on failure, hand the action to the rollback manager (if enabled)

Repair failures never propagate out of ``dispatch``.

Usage:
    dispatcher = RepairDispatcher(actuator, ledger, store, rollback_manager=rollback)
    result = await dispatcher.dispatch(report.eligible, policy, ApprovalDecision.automatic(), now=utc_now())
"""

import asyncio
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime

from fleetheal.core.base import NodeRepairActuator
from fleetheal.core.exceptions import StorageError
from fleetheal.core.logging import get_logger
from fleetheal.core.types import (
    ApprovalDecision,
    Clock,
    HealingAction,
    Issue,
    IssueCategory,
    RepairActionKind,
    RepairOutcome,
    RollbackRecord,
    utc_now,
)
from fleetheal.healing.engine import CooldownLedger
from fleetheal.healing.policy import HealingPolicy
from fleetheal.healing.rollback import RollbackManager
from fleetheal.resilience.retry import RetryExecutor
from fleetheal.storage.state import StateStore

REPAIR_ACTIONS: dict[IssueCategory, RepairActionKind | None] = {
    IssueCategory.REPLICATION_FAILURE: RepairActionKind.FORCE_SYNC,
    IssueCategory.STALE_REPLICATION: RepairActionKind.REPLICATE_FROM_PARTNER,
    IssueCategory.CONNECTIVITY: None,
}


def repair_action_for(category: IssueCategory) -> RepairActionKind | None:
    return REPAIR_ACTIONS.get(category)


@dataclass
class DispatchResult:
    actions: list[HealingAction] = field(default_factory=list)
    rollbacks: list[RollbackRecord] = field(default_factory=list)
    manual_review: list[Issue] = field(default_factory=list)
    skipped: list[tuple[Issue, str]] = field(default_factory=list)
    denied: bool = False

    @property
    def succeeded(self) -> list[HealingAction]:
        return [a for a in self.actions if a.success]

    @property
    def failed(self) -> list[HealingAction]:
        return [a for a in self.actions if not a.success]

    @property
    def repaired_nodes(self) -> list[str]:
        return sorted({a.node for a in self.actions})


class RepairDispatcher:
    def __init__(
        self,
        actuator: NodeRepairActuator,
        ledger: CooldownLedger,
        store: StateStore,
        retry: RetryExecutor | None = None,
        rollback_manager: RollbackManager | None = None,
        enable_rollback: bool = True,
        repair_timeout: float | None = 300.0,
        clock: Clock = utc_now,
    ) -> None:
        self.actuator = actuator
        self.ledger = ledger
        self.store = store
        # Repairs get a shorter retry budget than probes.
        self.retry = retry or RetryExecutor(
            max_attempts=2, initial_delay=5.0, max_delay=30.0, operation="repair"
        )
        self.rollback_manager = rollback_manager
        self.enable_rollback = enable_rollback
        self.repair_timeout = repair_timeout
        self._clock = clock
        self._logger = get_logger("fleetheal.dispatcher")

    async def dispatch(
        self,
        issues: Iterable[Issue],
        policy: HealingPolicy,
        approval: ApprovalDecision,
        *,
        now: datetime | None = None,
    ) -> DispatchResult:
        result = DispatchResult()
        issue_list = list(issues)

        if not approval.allows_dispatch:
            result.denied = True
            result.skipped = [(issue, "dispatch not approved") for issue in issue_list]
            self._logger.warning("Repair dispatch not approved", issues=len(issue_list), policy=policy.name)
            return result

        now = now or self._clock()
        planned: list[tuple[Issue, RepairActionKind]] = []

        for issue in issue_list:
            kind = repair_action_for(issue.category)
            if kind is None:
                result.manual_review.append(issue)
                self._logger.info(
                    "Issue needs manual review",
                    node=issue.node,
                    category=issue.category.name,
                )
                continue
            try:
                reserved = self.ledger.try_reserve(issue.node, issue.category, now, policy.cooldown)
            except StorageError as e:
                # Never repair without a durable reservation.
                result.skipped.append((issue, "cooldown ledger not persisted"))
                self._logger.error(
                    "Repair skipped, cooldown reservation not persisted",
                    node=issue.node,
                    category=issue.category.name,
                    error=e.message,
                )
                continue
            if not reserved:
                result.skipped.append((issue, "cooldown active"))
                self._logger.info(
                    "Repair skipped, cooldown reserved elsewhere",
                    node=issue.node,
                    category=issue.category.name,
                )
                continue
            planned.append((issue, kind))

        if not planned:
            return result

        semaphore = asyncio.Semaphore(policy.max_concurrent_actions)

        async def run_one(issue: Issue, kind: RepairActionKind) -> tuple[HealingAction, RollbackRecord | None]:
            async with semaphore:
                action = await self._repair(issue, kind, policy)
            rollback = None
            if not action.success and self.enable_rollback and self.rollback_manager is not None:
                rollback = await self.rollback_manager.rollback(action, reason=action.message)
            return action, rollback

        outcomes = await asyncio.gather(
            *(run_one(issue, kind) for issue, kind in planned), return_exceptions=True
        )

        for (issue, kind), outcome in zip(planned, outcomes):
            if isinstance(outcome, BaseException) and not isinstance(outcome, Exception):
                raise outcome
            if isinstance(outcome, BaseException):
                # The cooldown is already reserved; keep the attempt on the record.
                self._logger.error(
                    "Repair task crashed",
                    node=issue.node,
                    category=issue.category.name,
                    repair_action=kind.name,
                    error=str(outcome),
                )
                outcome = (self._crashed_action(issue, kind, policy, outcome), None)
            action, rollback = outcome
            result.actions.append(action)
            if rollback is not None:
                result.rollbacks.append(rollback)

        self._logger.info(
            "Repair dispatch finished",
            policy=policy.name,
            actions=len(result.actions),
            failed=len(result.failed),
            rollbacks=len(result.rollbacks),
            manual_review=len(result.manual_review),
            skipped=len(result.skipped),
        )
        return result

    async def _repair(self, issue: Issue, kind: RepairActionKind, policy: HealingPolicy) -> HealingAction:
        async def call() -> RepairOutcome:
            return await asyncio.wait_for(
                self.actuator.repair(issue.node, kind, issue.partner),
                timeout=self.repair_timeout,
            )

        retry_result = await self.retry.execute(
            call, node=issue.node, category=issue.category.name, repair_action=kind.name
        )

        if retry_result.success and retry_result.value is not None:
            outcome = retry_result.value
            success = outcome.success
            message = outcome.message or ("repair succeeded" if success else "repair reported failure")
        else:
            success = False
            message = retry_result.error_message or "repair failed"

        action = HealingAction(
            node=issue.node,
            category=issue.category,
            policy=policy.name,
            action_kind=kind,
            success=success,
            message=message,
            timestamp=self._clock(),
            partner=issue.partner,
            attempts=retry_result.attempts,
        )
        self._record(action)

        if success:
            self._logger.info(
                "Repair succeeded",
                action_id=action.id,
                node=issue.node,
                category=issue.category.name,
                repair_action=kind.name,
                attempts=action.attempts,
            )
        else:
            self._logger.error(
                "Repair failed",
                action_id=action.id,
                node=issue.node,
                category=issue.category.name,
                repair_action=kind.name,
                attempts=action.attempts,
                kind=retry_result.error_kind.name if retry_result.error_kind else None,
                error=message,
            )
        return action

    def _record(self, action: HealingAction) -> None:
        """Append to the history store; the in-memory action survives a failed write."""
        try:
            self.store.append_action(action)
        except StorageError as e:
            self._logger.error(
                "Failed to record healing action",
                action_id=action.id,
                node=action.node,
                category=action.category.name,
                error=e.message,
            )

    def _crashed_action(
        self, issue: Issue, kind: RepairActionKind, policy: HealingPolicy, error: BaseException
    ) -> HealingAction:
        action = HealingAction(
            node=issue.node,
            category=issue.category,
            policy=policy.name,
            action_kind=kind,
            success=False,
            message=f"repair crashed: {error}",
            timestamp=self._clock(),
            partner=issue.partner,
        )
        self._record(action)
        return action
