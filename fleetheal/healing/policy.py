"""
Healing Policy - What May Be Repaired Automatically
===================================================

A policy is a configuration value, never mutated once built.

Presets (strictly widening in categories and severities, shortening cooldown):
    - conservative(): stale replication only, LOW/MEDIUM, 60 min cooldown
    - moderate():     + replication failures, up to HIGH, 30 min cooldown
    - aggressive():   every category and severity, 15 min cooldown

Usage:
    policy = HealingPolicy.conservative()

    # Named preset with overrides
    policy = create_healing_policy("moderate", max_concurrent_actions=3)

    # From a config file section
    policy = HealingPolicy.from_dict({"name": "custom", "allowed_categories": ["STALE_REPLICATION"]})
"""

from dataclasses import dataclass, field, replace
from datetime import timedelta
from typing import Any, Literal

from fleetheal.core.exceptions import PolicyConfigError
from fleetheal.core.types import IssueCategory, Severity

PolicyName = Literal["conservative", "moderate", "aggressive"]


def _categories(values: Any) -> frozenset[IssueCategory]:
    try:
        return frozenset(v if isinstance(v, IssueCategory) else IssueCategory[str(v).upper()] for v in values)
    except KeyError as e:
        raise PolicyConfigError(f"unknown issue category: {e.args[0]}") from e


def _severities(values: Any) -> frozenset[Severity]:
    try:
        return frozenset(v if isinstance(v, Severity) else Severity[str(v).upper()] for v in values)
    except KeyError as e:
        raise PolicyConfigError(f"unknown severity: {e.args[0]}") from e


@dataclass(frozen=True)
class HealingPolicy:
    """
    Gate for automatic repair.

    Attributes:
        name: Policy name recorded on every HealingAction
        allowed_categories: Issue categories that may be auto-repaired
        allowed_severities: Severities that may be auto-repaired
        requires_manual_approval_categories: Categories needing an operator override
        cooldown: Minimum spacing between repairs of the same (node, category)
        max_concurrent_actions: Upper bound on actions dispatched per run
    """

    name: str = "conservative"
    allowed_categories: frozenset[IssueCategory] = field(
        default_factory=lambda: frozenset({IssueCategory.STALE_REPLICATION})
    )
    allowed_severities: frozenset[Severity] = field(
        default_factory=lambda: frozenset({Severity.LOW, Severity.MEDIUM})
    )
    requires_manual_approval_categories: frozenset[IssueCategory] = field(
        default_factory=lambda: frozenset(
            {IssueCategory.REPLICATION_FAILURE, IssueCategory.CONNECTIVITY}
        )
    )
    cooldown: timedelta = timedelta(minutes=60)
    max_concurrent_actions: int = 5

    def __post_init__(self) -> None:
        if not self.name:
            raise PolicyConfigError("policy name must not be empty")

        if self.cooldown < timedelta(0):
            raise PolicyConfigError(
                "cooldown must be non-negative",
                details={"policy": self.name, "cooldown": str(self.cooldown)},
            )

        if self.max_concurrent_actions < 1:
            raise PolicyConfigError(
                "max_concurrent_actions must be at least 1",
                details={"policy": self.name, "max_concurrent_actions": self.max_concurrent_actions},
            )

    def allows_category(self, category: IssueCategory) -> bool:
        return category in self.allowed_categories

    def allows_severity(self, severity: Severity) -> bool:
        return severity in self.allowed_severities

    def requires_approval(self, category: IssueCategory) -> bool:
        return category in self.requires_manual_approval_categories

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "allowed_categories": sorted(c.name for c in self.allowed_categories),
            "allowed_severities": sorted(
                (s.name for s in self.allowed_severities), key=lambda n: Severity[n].rank
            ),
            "requires_manual_approval_categories": sorted(
                c.name for c in self.requires_manual_approval_categories
            ),
            "cooldown_minutes": self.cooldown.total_seconds() / 60,
            "max_concurrent_actions": self.max_concurrent_actions,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "HealingPolicy":
        base = cls()
        return cls(
            name=data.get("name", base.name),
            allowed_categories=_categories(
                data.get("allowed_categories", base.allowed_categories)
            ),
            allowed_severities=_severities(
                data.get("allowed_severities", base.allowed_severities)
            ),
            requires_manual_approval_categories=_categories(
                data.get(
                    "requires_manual_approval_categories",
                    base.requires_manual_approval_categories,
                )
            ),
            cooldown=timedelta(
                minutes=float(data.get("cooldown_minutes", base.cooldown.total_seconds() / 60))
            ),
            max_concurrent_actions=int(
                data.get("max_concurrent_actions", base.max_concurrent_actions)
            ),
        )

    @classmethod
    def conservative(cls) -> "HealingPolicy":
        """
        Preset for conservative healing.

        - Only stale replication is repaired
        - Replication failures and connectivity need an operator
        - One hour between repairs of the same issue
        """
        return cls(
            name="conservative",
            allowed_categories=frozenset({IssueCategory.STALE_REPLICATION}),
            allowed_severities=frozenset({Severity.LOW, Severity.MEDIUM}),
            requires_manual_approval_categories=frozenset(
                {IssueCategory.REPLICATION_FAILURE, IssueCategory.CONNECTIVITY}
            ),
            cooldown=timedelta(minutes=60),
            max_concurrent_actions=5,
        )

    @classmethod
    def moderate(cls) -> "HealingPolicy":
        """
        Preset for moderate healing.

        - Stale replication and replication failures
        - Up to HIGH severity
        - Connectivity still needs an operator
        """
        return cls(
            name="moderate",
            allowed_categories=frozenset(
                {IssueCategory.STALE_REPLICATION, IssueCategory.REPLICATION_FAILURE}
            ),
            allowed_severities=frozenset({Severity.LOW, Severity.MEDIUM, Severity.HIGH}),
            requires_manual_approval_categories=frozenset({IssueCategory.CONNECTIVITY}),
            cooldown=timedelta(minutes=30),
            max_concurrent_actions=10,
        )

    @classmethod
    def aggressive(cls) -> "HealingPolicy":
        """
        Preset for aggressive healing.

        - Every category and severity
        - No manual approval gate
        - Shortest cooldown
        """
        return cls(
            name="aggressive",
            allowed_categories=frozenset(IssueCategory),
            allowed_severities=frozenset(Severity),
            requires_manual_approval_categories=frozenset(),
            cooldown=timedelta(minutes=15),
            max_concurrent_actions=20,
        )


POLICIES = {
    "conservative": HealingPolicy.conservative,
    "moderate": HealingPolicy.moderate,
    "aggressive": HealingPolicy.aggressive,
}


def create_healing_policy(name: PolicyName | str = "conservative", **overrides: Any) -> HealingPolicy:
    """
    Factory function to create a HealingPolicy.

    Args:
        name: Preset name
        **overrides: Override specific fields

    Raises:
        PolicyConfigError: unknown preset or unknown field

    Example:
        >>> policy = create_healing_policy("aggressive", max_concurrent_actions=3)
    """
    factory = POLICIES.get(name.lower())
    if factory is None:
        raise PolicyConfigError(
            f"unknown healing policy: {name}",
            suggestions=[f"Use one of: {', '.join(POLICIES)}"],
        )

    policy = factory()
    if not overrides:
        return policy

    if "cooldown_minutes" in overrides:
        overrides["cooldown"] = timedelta(minutes=float(overrides.pop("cooldown_minutes")))

    unknown = [key for key in overrides if not hasattr(policy, key)]
    if unknown:
        raise PolicyConfigError(f"unknown policy fields: {', '.join(sorted(unknown))}")

    if "allowed_categories" in overrides:
        overrides["allowed_categories"] = _categories(overrides["allowed_categories"])
    if "requires_manual_approval_categories" in overrides:
        overrides["requires_manual_approval_categories"] = _categories(
            overrides["requires_manual_approval_categories"]
        )
    if "allowed_severities" in overrides:
        overrides["allowed_severities"] = _severities(overrides["allowed_severities"])

    return replace(policy, **overrides)
