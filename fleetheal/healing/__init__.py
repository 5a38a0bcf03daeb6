"""
Auto-Healing
============

Components:
    - HealingPolicy: what may be repaired automatically (presets)
    - CooldownLedger: last repair attempt per (node, category)
    - HealingPolicyEngine: five-check eligibility gate
    - RepairDispatcher: runs repairs, records HealingActions
    - RollbackManager: one corrective resync per failed repair
    - Verifier: observation-only re-scan of repaired nodes

Usage:
    from fleetheal.healing import HealingPolicy, HealingPolicyEngine, CooldownLedger

    engine = HealingPolicyEngine(CooldownLedger.load(store))
    report = engine.evaluate(issues, HealingPolicy.moderate(), now=utc_now(), operator_limit=3)
"""

from .dispatcher import REPAIR_ACTIONS, DispatchResult, RepairDispatcher, repair_action_for
from .engine import CooldownLedger, EligibilityDecision, EligibilityReport, HealingPolicyEngine
from .policy import POLICIES, HealingPolicy, create_healing_policy
from .rollback import RollbackManager
from .verifier import Verifier

__all__ = [
    "HealingPolicy",
    "POLICIES",
    "create_healing_policy",
    "CooldownLedger",
    "EligibilityDecision",
    "EligibilityReport",
    "HealingPolicyEngine",
    "REPAIR_ACTIONS",
    "repair_action_for",
    "DispatchResult",
    "RepairDispatcher",
    "RollbackManager",
    "Verifier",
]
