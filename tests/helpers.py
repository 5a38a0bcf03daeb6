"""
Test doubles and record builders shared by the unit and integration tests

Includes:
    - Fixed clock and recording sleep for timing properties
    - Scripted probe / actuator fakes
    - Snapshot and partner builders
"""

import asyncio
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any

from fleetheal.core.base import NodeHealthProbe, NodeRepairActuator
from fleetheal.core.types import (
    FailureRecord,
    HealthSnapshot,
    HealthStatus,
    PartnerRecord,
    RawHealthData,
    RepairActionKind,
    RepairOutcome,
)

NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


# =============================================================================
# Clock / Sleep
# =============================================================================


class FixedClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingSleep:
    """Async sleep replacement that records requested delays and returns at once."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


# =============================================================================
# Fakes
# =============================================================================


class ScriptedProbe(NodeHealthProbe):
    """
    Probe whose answers are scripted per node.

    Each script is a list of steps consumed in order; the last step repeats.
    A step is RawHealthData (returned), an exception (raised), or a callable
    taking the node name.
    """

    def __init__(self, scripts: dict[str, list[Any]] | None = None, hang: set[str] | None = None):
        self.scripts = {node: list(steps) for node, steps in (scripts or {}).items()}
        self.hang = set(hang or ())
        self.calls: dict[str, int] = {}

    async def probe(self, node: str) -> RawHealthData:
        self.calls[node] = self.calls.get(node, 0) + 1
        if node in self.hang:
            await asyncio.sleep(3600)

        steps = self.scripts.get(node) or [RawHealthData()]
        step = steps.pop(0) if len(steps) > 1 else steps[0]
        if isinstance(step, BaseException):
            raise step
        if callable(step):
            return step(node)
        return step


class ScriptedActuator(NodeRepairActuator):
    """Actuator returning scripted outcomes; records every call."""

    def __init__(
        self,
        outcomes: dict[str, list[Any]] | None = None,
        default: RepairOutcome | None = None,
        delay: float = 0.0,
    ):
        self.outcomes = {node: list(steps) for node, steps in (outcomes or {}).items()}
        self.default = default or RepairOutcome(success=True, message="ok")
        self.delay = delay
        self.calls: list[tuple[str, RepairActionKind, str | None]] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.on_repair: Callable[[str, RepairActionKind], None] | None = None

    async def repair(
        self,
        node: str,
        action_kind: RepairActionKind,
        partner: str | None = None,
    ) -> RepairOutcome:
        self.calls.append((node, action_kind, partner))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.on_repair is not None:
                self.on_repair(node, action_kind)
            steps = self.outcomes.get(node)
            if not steps:
                return self.default
            step = steps.pop(0) if len(steps) > 1 else steps[0]
            if isinstance(step, BaseException):
                raise step
            return step
        finally:
            self.in_flight -= 1


# =============================================================================
# Builders
# =============================================================================


def partner(
    name: str,
    hours_ago: float | None = 1.0,
    now: datetime = NOW,
    consecutive_failures: int = 0,
    naming_context: str = "DC=corp,DC=example,DC=com",
) -> PartnerRecord:
    last_success = None if hours_ago is None else now - timedelta(hours=hours_ago)
    return PartnerRecord(
        partner=name,
        naming_context=naming_context,
        last_success=last_success,
        last_attempt=now - timedelta(minutes=5),
        consecutive_failures=consecutive_failures,
    )


def failure(name: str, count: int = 3, error: str = "The RPC server is unavailable") -> FailureRecord:
    return FailureRecord(partner=name, failure_count=count, first_failure=NOW - timedelta(hours=2), last_error=error)


def snapshot(
    node: str,
    status: HealthStatus = HealthStatus.HEALTHY,
    partners: list[PartnerRecord] | None = None,
    failures: list[FailureRecord] | None = None,
    timestamp: datetime = NOW,
    error: str | None = None,
) -> HealthSnapshot:
    return HealthSnapshot(
        node=node,
        timestamp=timestamp,
        status=status,
        partners=tuple(partners or ()),
        failures=tuple(failures or ()),
        error=error,
    )


def healthy_data(*partner_names: str, now: datetime = NOW) -> RawHealthData:
    return RawHealthData(partners=[partner(p, 1.0, now=now) for p in partner_names])

