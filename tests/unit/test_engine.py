"""
Unit tests for the cooldown ledger and healing policy engine
"""

from datetime import timedelta

import pytest

from fleetheal.core.exceptions import PolicyConfigError
from fleetheal.core.types import ApprovalDecision, CooldownEntry, Issue, IssueCategory, Severity
from fleetheal.healing.engine import (
    REASON_APPROVAL,
    REASON_CATEGORY,
    REASON_COOLDOWN,
    REASON_DUPLICATE,
    REASON_LIMIT,
    REASON_NOT_ACTIONABLE,
    REASON_SEVERITY,
    CooldownLedger,
    HealingPolicyEngine,
)
from fleetheal.healing.policy import HealingPolicy, create_healing_policy
from helpers import NOW

STALE = IssueCategory.STALE_REPLICATION
FAILURE = IssueCategory.REPLICATION_FAILURE
CONNECTIVITY = IssueCategory.CONNECTIVITY


def make_issue(node, category=STALE, severity=Severity.MEDIUM, partner="DC01", actionable=True):
    return Issue(
        node=node,
        category=category,
        severity=severity,
        description=f"{category.name} on {node} from {partner}",
        actionable=actionable,
        partner=partner,
    )


class TestCooldownLedger:
    """Test the cooldown ledger"""

    def test_empty(self):
        ledger = CooldownLedger()
        assert ledger.last_attempt("DC01", STALE) is None
        assert not ledger.is_cooling_down("DC01", STALE, NOW, timedelta(hours=1))
        assert len(ledger) == 0

    def test_record_never_moves_backwards(self):
        ledger = CooldownLedger()
        ledger.record_attempt("DC01", STALE, NOW)
        ledger.record_attempt("DC01", STALE, NOW - timedelta(hours=2))
        assert ledger.last_attempt("DC01", STALE) == NOW

    def test_duplicate_loaded_entries_keep_latest(self):
        ledger = CooldownLedger(
            [
                CooldownEntry("DC01", STALE, NOW - timedelta(minutes=5)),
                CooldownEntry("DC01", STALE, NOW - timedelta(minutes=50)),
            ]
        )
        assert ledger.last_attempt("DC01", STALE) == NOW - timedelta(minutes=5)
        assert len(ledger) == 1

    def test_try_reserve(self):
        ledger = CooldownLedger()
        cooldown = timedelta(minutes=30)

        assert ledger.try_reserve("DC01", STALE, NOW, cooldown)
        assert not ledger.try_reserve("DC01", STALE, NOW + timedelta(minutes=10), cooldown)
        assert ledger.try_reserve("DC01", FAILURE, NOW, cooldown)
        assert ledger.try_reserve("DC01", STALE, NOW + cooldown, cooldown)
        assert ledger.last_attempt("DC01", STALE) == NOW + cooldown

    def test_persists_through_store(self, memory_store):
        ledger = CooldownLedger.load(memory_store)
        ledger.try_reserve("DC02", STALE, NOW, timedelta(minutes=60))

        reloaded = CooldownLedger.load(memory_store)
        assert reloaded.last_attempt("DC02", STALE) == NOW

    def test_entries_sorted(self):
        ledger = CooldownLedger()
        ledger.record_attempt("DC02", STALE, NOW)
        ledger.record_attempt("DC01", STALE, NOW)
        ledger.record_attempt("DC01", FAILURE, NOW)
        assert [(e.node, e.category) for e in ledger.entries()] == [
            ("DC01", FAILURE),
            ("DC01", STALE),
            ("DC02", STALE),
        ]


class TestEligibilityChecks:
    """Test individual eligibility checks"""

    def setup_method(self):
        self.ledger = CooldownLedger()
        self.engine = HealingPolicyEngine(self.ledger)

    def test_conservative_allows_stale(self):
        report = self.engine.evaluate([make_issue("DC02")], HealingPolicy.conservative(), now=NOW)
        assert report.eligible == [make_issue("DC02")]

    def test_category_and_approval_rejections(self):
        issue = make_issue("DC02", FAILURE, Severity.HIGH)
        report = self.engine.evaluate([issue], HealingPolicy.conservative(), now=NOW)

        reasons = report.decisions[0].reasons
        assert REASON_CATEGORY in reasons
        assert REASON_SEVERITY in reasons
        assert REASON_APPROVAL in reasons
        assert report.eligible == []

    def test_operator_override_lifts_manual_gate(self):
        policy = create_healing_policy(
            "conservative",
            allowed_categories=["stale_replication", "replication_failure"],
            allowed_severities=["LOW", "MEDIUM", "HIGH"],
        )
        issue = make_issue("DC02", FAILURE, Severity.HIGH)

        blocked = self.engine.evaluate([issue], policy, now=NOW)
        assert blocked.decisions[0].reasons == [REASON_APPROVAL]

        approval = ApprovalDecision.operator("ticket-42", {FAILURE})
        allowed = self.engine.evaluate([issue], policy, now=NOW, approval=approval)
        assert allowed.eligible == [issue]

    def test_override_needs_a_token(self):
        approval = ApprovalDecision(auto_approved=True, override_categories=frozenset({FAILURE}))
        assert not approval.overrides(FAILURE)

    def test_not_actionable(self):
        issue = make_issue("DC03", CONNECTIVITY, Severity.HIGH, partner=None, actionable=False)
        report = self.engine.evaluate([issue], HealingPolicy.aggressive(), now=NOW)
        assert report.decisions[0].reasons == [REASON_NOT_ACTIONABLE]

    def test_cooldown_boundary_is_inclusive(self):
        """Test a key is eligible exactly when the cooldown has fully elapsed"""
        policy = HealingPolicy.conservative()

        self.ledger.record_attempt("DC02", STALE, NOW - policy.cooldown)
        report = self.engine.evaluate([make_issue("DC02")], policy, now=NOW)
        assert report.eligible == [make_issue("DC02")]

        self.ledger.record_attempt("DC02", STALE, NOW - policy.cooldown + timedelta(seconds=1))
        report = self.engine.evaluate([make_issue("DC02")], policy, now=NOW)
        assert report.eligible == []
        assert report.decisions[0].reasons == [REASON_COOLDOWN]

    def test_cooldown_is_per_key(self):
        self.ledger.record_attempt("DC02", FAILURE, NOW)
        report = self.engine.evaluate([make_issue("DC02")], HealingPolicy.conservative(), now=NOW)
        assert len(report.eligible) == 1


class TestEvaluation:
    """Test ordering, duplicates and limits"""

    def setup_method(self):
        self.engine = HealingPolicyEngine(CooldownLedger())

    def test_duplicate_key_blocked_within_pass(self):
        """Test two partners stale on one node give one repair"""
        issues = [make_issue("DC02", partner="DC01"), make_issue("DC02", partner="DC03")]
        report = self.engine.evaluate(issues, HealingPolicy.conservative(), now=NOW)

        assert len(report.eligible) == 1
        assert report.eligible[0].partner == "DC01"
        assert report.rejected[0].reasons == [REASON_DUPLICATE]

    def test_operator_limit_below_policy_limit(self):
        """Test min(policy limit, operator limit) wins"""
        issues = [make_issue(f"DC{i:02d}", FAILURE, Severity.HIGH) for i in range(10)]
        report = self.engine.evaluate(issues, HealingPolicy.aggressive(), now=NOW, operator_limit=3)

        assert report.limit == 3
        assert [i.node for i in report.eligible] == ["DC00", "DC01", "DC02"]
        assert report.truncated == 7

    def test_policy_limit(self):
        issues = [make_issue(f"DC{i:02d}") for i in range(8)]
        report = self.engine.evaluate(issues, HealingPolicy.conservative(), now=NOW)
        assert len(report.eligible) == 5

    def test_zero_operator_limit(self):
        report = self.engine.evaluate(
            [make_issue("DC01")], HealingPolicy.conservative(), now=NOW, operator_limit=0
        )
        assert report.eligible == []
        assert report.decisions[0].reasons == [REASON_LIMIT]

    def test_negative_operator_limit_rejected(self):
        with pytest.raises(PolicyConfigError):
            self.engine.evaluate([], HealingPolicy.conservative(), now=NOW, operator_limit=-1)

    def test_severity_order_before_limit(self):
        """Test higher severities are selected first when truncating"""
        issues = [
            make_issue("DC01", STALE, Severity.MEDIUM),
            make_issue("DC09", FAILURE, Severity.HIGH),
        ]
        report = self.engine.evaluate(issues, HealingPolicy.aggressive(), now=NOW, operator_limit=1)
        assert [i.node for i in report.eligible] == ["DC09"]

    def test_evaluation_does_not_touch_ledger(self):
        ledger = CooldownLedger()
        HealingPolicyEngine(ledger).evaluate([make_issue("DC02")], HealingPolicy.conservative(), now=NOW)
        assert len(ledger) == 0
