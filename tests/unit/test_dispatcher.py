"""
Unit tests for repair dispatch, rollback and verification
"""

import asyncio
from datetime import timedelta

import pytest

from fleetheal.analysis.classifier import IssueClassifier
from fleetheal.collection.collector import NodeHealthCollector
from fleetheal.collection.scanner import FleetScanner
from fleetheal.core.exceptions import PermanentRemoteError, StorageError, TransientRemoteError
from fleetheal.core.types import (
    ApprovalDecision,
    HealingAction,
    HealthStatus,
    Issue,
    IssueCategory,
    RawHealthData,
    RepairActionKind,
    RepairOutcome,
    Severity,
)
from fleetheal.healing.dispatcher import REPAIR_ACTIONS, RepairDispatcher, repair_action_for
from fleetheal.healing.engine import CooldownLedger
from fleetheal.healing.policy import HealingPolicy
from fleetheal.healing.rollback import RollbackManager
from fleetheal.healing.verifier import Verifier
from fleetheal.resilience.retry import RetryExecutor
from fleetheal.storage.state import InMemoryStateStore
from helpers import NOW, ScriptedActuator, ScriptedProbe, healthy_data, partner

STALE = IssueCategory.STALE_REPLICATION
FAILURE = IssueCategory.REPLICATION_FAILURE


def make_issue(node, category=STALE, partner_name="DC01"):
    return Issue(
        node=node,
        category=category,
        severity=Severity.MEDIUM if category is STALE else Severity.HIGH,
        description=f"{category.name} on {node}",
        actionable=category is not IssueCategory.CONNECTIVITY,
        partner=partner_name,
    )


class BrokenDiskStore(InMemoryStateStore):
    """In-memory store whose selected writes fail like a full disk."""

    def __init__(self, fail_actions_for=(), fail_rollbacks=False, fail_cooldowns=False):
        super().__init__()
        self.fail_actions_for = set(fail_actions_for)
        self.fail_rollbacks = fail_rollbacks
        self.fail_cooldowns = fail_cooldowns

    def append_action(self, action):
        if action.node in self.fail_actions_for:
            raise StorageError("healing_history", "disk full")
        super().append_action(action)

    def append_rollback(self, record):
        if self.fail_rollbacks:
            raise StorageError("rollback_history", "disk full")
        super().append_rollback(record)

    def save_cooldowns(self, entries):
        if self.fail_cooldowns:
            raise StorageError("cooldown_ledger", "disk full")
        super().save_cooldowns(entries)


def make_dispatcher(actuator, store, clock, sleeper, enable_rollback=True, ledger=None):
    retry = RetryExecutor(max_attempts=2, initial_delay=5.0, sleep=sleeper, operation="repair")
    return RepairDispatcher(
        actuator,
        ledger if ledger is not None else CooldownLedger.load(store),
        store,
        retry=retry,
        rollback_manager=RollbackManager(actuator, store, clock=clock),
        enable_rollback=enable_rollback,
        clock=clock,
    )


class TestRepairLookup:
    """Test the category to repair action table"""

    def test_table(self):
        assert repair_action_for(FAILURE) is RepairActionKind.FORCE_SYNC
        assert repair_action_for(STALE) is RepairActionKind.REPLICATE_FROM_PARTNER
        assert repair_action_for(IssueCategory.CONNECTIVITY) is None

    def test_every_category_mapped(self):
        assert set(REPAIR_ACTIONS) == set(IssueCategory)


class TestRepairDispatcher:
    """Test dispatching repairs"""

    @pytest.mark.asyncio
    async def test_successful_repair_recorded(self, memory_store, clock, sleeper):
        actuator = ScriptedActuator()
        dispatcher = make_dispatcher(actuator, memory_store, clock, sleeper)

        result = await dispatcher.dispatch(
            [make_issue("DC02")], HealingPolicy.conservative(), ApprovalDecision.automatic(), now=NOW
        )

        assert actuator.calls == [("DC02", RepairActionKind.REPLICATE_FROM_PARTNER, "DC01")]
        assert len(result.actions) == 1
        action = result.actions[0]
        assert action.success
        assert action.policy == "conservative"
        assert action.attempts == 1
        assert memory_store.actions == [action]
        assert result.rollbacks == []
        assert result.repaired_nodes == ["DC02"]

    @pytest.mark.asyncio
    async def test_denied_approval_dispatches_nothing(self, memory_store, clock, sleeper):
        actuator = ScriptedActuator()
        dispatcher = make_dispatcher(actuator, memory_store, clock, sleeper)

        result = await dispatcher.dispatch(
            [make_issue("DC02")], HealingPolicy.conservative(), ApprovalDecision.denied(), now=NOW
        )

        assert result.denied
        assert actuator.calls == []
        assert len(result.skipped) == 1
        assert memory_store.cooldowns == []

    @pytest.mark.asyncio
    async def test_operator_token_approves(self, memory_store, clock, sleeper):
        actuator = ScriptedActuator()
        dispatcher = make_dispatcher(actuator, memory_store, clock, sleeper)

        result = await dispatcher.dispatch(
            [make_issue("DC02")], HealingPolicy.conservative(), ApprovalDecision.operator("ticket-7"), now=NOW
        )
        assert not result.denied
        assert len(result.actions) == 1

    @pytest.mark.asyncio
    async def test_connectivity_goes_to_manual_review(self, memory_store, clock, sleeper):
        actuator = ScriptedActuator()
        dispatcher = make_dispatcher(actuator, memory_store, clock, sleeper)
        issue = make_issue("DC03", IssueCategory.CONNECTIVITY, partner_name=None)

        result = await dispatcher.dispatch([issue], HealingPolicy.aggressive(), ApprovalDecision.automatic(), now=NOW)

        assert result.manual_review == [issue]
        assert actuator.calls == []

    @pytest.mark.asyncio
    async def test_cooldown_reserved_before_repair_call(self, memory_store, clock, sleeper):
        """Test the ledger holds the key while the actuator is running"""
        actuator = ScriptedActuator()
        ledger = CooldownLedger.load(memory_store)
        seen = []
        actuator.on_repair = lambda node, kind: seen.append(ledger.last_attempt(node, STALE))
        dispatcher = make_dispatcher(actuator, memory_store, clock, sleeper, ledger=ledger)

        await dispatcher.dispatch(
            [make_issue("DC02")], HealingPolicy.conservative(), ApprovalDecision.automatic(), now=NOW
        )

        assert seen == [NOW]
        assert [(e.node, e.category, e.last_attempt) for e in memory_store.cooldowns] == [
            ("DC02", STALE, NOW)
        ]

    @pytest.mark.asyncio
    async def test_key_in_cooldown_is_skipped(self, memory_store, clock, sleeper):
        actuator = ScriptedActuator()
        ledger = CooldownLedger.load(memory_store)
        ledger.record_attempt("DC02", STALE, NOW - timedelta(minutes=5))
        dispatcher = make_dispatcher(actuator, memory_store, clock, sleeper, ledger=ledger)

        result = await dispatcher.dispatch(
            [make_issue("DC02")], HealingPolicy.conservative(), ApprovalDecision.automatic(), now=NOW
        )

        assert actuator.calls == []
        assert result.skipped[0][1] == "cooldown active"

    @pytest.mark.asyncio
    async def test_failed_repair_rolled_back_once(self, memory_store, clock, sleeper):
        """Test a failed repair produces exactly one rollback record"""
        actuator = ScriptedActuator(
            outcomes={"DC02": [RepairOutcome(False, "sync did not converge"), RepairOutcome(True, "resynced")]}
        )
        dispatcher = make_dispatcher(actuator, memory_store, clock, sleeper)

        result = await dispatcher.dispatch(
            [make_issue("DC02")], HealingPolicy.conservative(), ApprovalDecision.automatic(), now=NOW
        )

        action = result.actions[0]
        assert not action.success
        assert action.rolled_back
        assert len(result.rollbacks) == 1
        record = result.rollbacks[0]
        assert record.action_id == action.id
        assert record.success
        assert "sync did not converge" in record.reason
        assert memory_store.rollbacks == [record]
        assert memory_store.actions[0].rolled_back
        assert [c[1] for c in actuator.calls] == [RepairActionKind.REPLICATE_FROM_PARTNER, RepairActionKind.RESYNC]

    @pytest.mark.asyncio
    async def test_failed_repair_without_rollback(self, memory_store, clock, sleeper):
        actuator = ScriptedActuator(default=RepairOutcome(False, "nope"))
        dispatcher = make_dispatcher(actuator, memory_store, clock, sleeper, enable_rollback=False)

        result = await dispatcher.dispatch(
            [make_issue("DC02")], HealingPolicy.conservative(), ApprovalDecision.automatic(), now=NOW
        )

        assert result.rollbacks == []
        assert not result.actions[0].rolled_back
        assert len(actuator.calls) == 1

    @pytest.mark.asyncio
    async def test_actuator_exception_becomes_failed_action(self, memory_store, clock, sleeper):
        """Test repair errors never escape dispatch"""
        actuator = ScriptedActuator(
            outcomes={"DC02": [PermanentRemoteError("DC02", "Access is denied"), RepairOutcome(True, "ok")]}
        )
        dispatcher = make_dispatcher(actuator, memory_store, clock, sleeper)

        result = await dispatcher.dispatch(
            [make_issue("DC02")], HealingPolicy.conservative(), ApprovalDecision.automatic(), now=NOW
        )

        action = result.actions[0]
        assert not action.success
        assert "Access is denied" in action.message
        assert action.attempts == 1
        assert len(result.rollbacks) == 1

    @pytest.mark.asyncio
    async def test_transient_repair_error_retried(self, memory_store, clock, sleeper):
        actuator = ScriptedActuator(
            outcomes={
                "DC02": [
                    TransientRemoteError("DC02", "The RPC server is unavailable"),
                    RepairOutcome(True, "synced"),
                ]
            }
        )
        dispatcher = make_dispatcher(actuator, memory_store, clock, sleeper)

        result = await dispatcher.dispatch(
            [make_issue("DC02")], HealingPolicy.conservative(), ApprovalDecision.automatic(), now=NOW
        )

        assert result.actions[0].success
        assert result.actions[0].attempts == 2
        assert sleeper.delays == [5.0]

    @pytest.mark.asyncio
    async def test_concurrency_bounded_by_policy(self, memory_store, clock, sleeper):
        actuator = ScriptedActuator(delay=0.01)
        dispatcher = make_dispatcher(actuator, memory_store, clock, sleeper)
        policy = HealingPolicy(name="narrow", max_concurrent_actions=2)
        issues = [make_issue(f"DC{i:02d}") for i in range(6)]

        result = await dispatcher.dispatch(issues, policy, ApprovalDecision.automatic(), now=NOW)

        assert len(result.actions) == 6
        assert actuator.max_in_flight <= 2

    @pytest.mark.asyncio
    async def test_history_write_failure_keeps_action(self, clock, sleeper):
        """Test a failed history write neither escapes nor drops the repair"""
        store = BrokenDiskStore(fail_actions_for={"DC02"})
        actuator = ScriptedActuator()
        dispatcher = make_dispatcher(actuator, store, clock, sleeper)

        result = await dispatcher.dispatch(
            [make_issue("DC02"), make_issue("DC03")],
            HealingPolicy(name="pair", max_concurrent_actions=2),
            ApprovalDecision.automatic(),
            now=NOW,
        )

        assert [a.node for a in result.actions] == ["DC02", "DC03"]
        assert all(a.success for a in result.actions)
        assert [a.node for a in store.actions] == ["DC03"]
        assert len(actuator.calls) == 2

    @pytest.mark.asyncio
    async def test_unpersisted_reservation_skips_repair(self, clock, sleeper):
        store = BrokenDiskStore(fail_cooldowns=True)
        actuator = ScriptedActuator()
        dispatcher = make_dispatcher(actuator, store, clock, sleeper)

        result = await dispatcher.dispatch(
            [make_issue("DC02")], HealingPolicy.conservative(), ApprovalDecision.automatic(), now=NOW
        )

        assert actuator.calls == []
        assert result.actions == []
        assert result.skipped[0][1] == "cooldown ledger not persisted"


class TestRollbackManager:
    """Test rollback bookkeeping"""

    def make_action(self):
        return HealingAction(
            node="DC02",
            category=FAILURE,
            policy="moderate",
            action_kind=RepairActionKind.FORCE_SYNC,
            success=False,
            message="force sync failed",
            timestamp=NOW,
            partner="DC01",
        )

    @pytest.mark.asyncio
    async def test_resync_error_still_recorded(self, memory_store, clock):
        actuator = ScriptedActuator(outcomes={"DC02": [RuntimeError("agent crashed")]})
        action = self.make_action()
        memory_store.append_action(action)

        record = await RollbackManager(actuator, memory_store, clock=clock).rollback(action)

        assert not record.success
        assert "agent crashed" in record.reason
        assert "force sync failed" in record.reason
        assert memory_store.rollbacks == [record]
        assert action.rolled_back

    @pytest.mark.asyncio
    async def test_rollback_write_failure_keeps_record(self, clock):
        store = BrokenDiskStore(fail_rollbacks=True)
        actuator = ScriptedActuator(default=RepairOutcome(True, "resynced"))
        action = self.make_action()

        record = await RollbackManager(actuator, store, clock=clock).rollback(action)

        assert record.success
        assert record.action_id == action.id
        assert action.rolled_back
        assert store.rollbacks == []

    @pytest.mark.asyncio
    async def test_resync_timeout(self, memory_store, clock):
        actuator = ScriptedActuator(delay=1.0)
        action = self.make_action()

        record = await RollbackManager(actuator, memory_store, timeout=0.05, clock=clock).rollback(action, "boom")

        assert not record.success
        assert "timed out" in record.reason
        assert record.reason.startswith("boom")

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self, memory_store, clock):
        actuator = ScriptedActuator(delay=10.0)
        manager = RollbackManager(actuator, memory_store, clock=clock)

        task = asyncio.create_task(manager.rollback(self.make_action()))
        await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert memory_store.rollbacks == []


class TestVerifier:
    """Test post-repair verification"""

    def make_verifier(self, probe, sleeper, clock):
        collector = NodeHealthCollector(probe, RetryExecutor(sleep=sleeper), clock=clock)
        return Verifier(FleetScanner(collector, clock=clock), IssueClassifier(), convergence_wait=30.0, sleep=sleeper)

    @pytest.mark.asyncio
    async def test_healthy_and_remaining(self, sleeper, clock):
        probe = ScriptedProbe(
            {
                "DC01": [healthy_data("DC02")],
                "DC02": [RawHealthData(partners=[partner("DC01", 30)])],
            }
        )
        verifier = self.make_verifier(probe, sleeper, clock)

        results = await verifier.verify(["DC01", "DC02", "DC01"])

        assert sleeper.delays == [30.0]
        assert set(results) == {"DC01", "DC02"}
        assert results["DC01"].verified_healthy
        assert results["DC01"].status is HealthStatus.HEALTHY
        assert not results["DC02"].verified_healthy
        assert results["DC02"].status is HealthStatus.DEGRADED
        assert [i.category for i in results["DC02"].remaining_issues] == [STALE]

    @pytest.mark.asyncio
    async def test_nothing_to_verify(self, sleeper, clock):
        verifier = self.make_verifier(ScriptedProbe(), sleeper, clock)
        assert await verifier.verify([]) == {}
        assert sleeper.delays == []
