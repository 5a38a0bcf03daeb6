"""
Fixture Fleet
=============

A scripted, in-process fleet implementing the probe, actuator and scope
resolver contracts. Drives demos (``fleetheal run --fixture``) and
integration tests without a real directory.

Fixture format (YAML):

    sites:
      HQ: [DC01, DC02]
      Branch: [DC03]
    nodes:
      DC02:
        errors:                      # raised by the first probes, in order
          - "The RPC server is unavailable"
        probe_delay: 0.0             # seconds slept inside every probe
        incomplete: false            # probe answers with partial data
        unreachable: null            # message raised by every probe
        partners:
          - partner: DC01
            naming_context: "DC=corp,DC=example,DC=com"
            last_success_hours_ago: 26
            consecutive_failures: 0
        failures:
          - partner: DC03
            failure_count: 4
            last_error: "The RPC server is unavailable"
        repair:
          success: true              # what the actuator reports
          heals: true                # later probes show converged replication
          errors: []                 # raised by the first repair calls

Nodes listed under ``sites`` but not under ``nodes`` are healthy with no
partners.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

import yaml

from fleetheal.collection.scope import InventoryScopeResolver
from fleetheal.core.base import NodeHealthProbe, NodeRepairActuator
from fleetheal.core.exceptions import ConfigLoadError, RemoteCallError
from fleetheal.core.logging import get_logger
from fleetheal.core.types import (
    Clock,
    FailureRecord,
    PartnerRecord,
    RawHealthData,
    RepairActionKind,
    RepairOutcome,
    parse_timestamp,
    utc_now,
)

logger = get_logger("fleetheal.adapters.fixture")


@dataclass
class FixtureNode:
    name: str
    partners: list[dict[str, Any]] = field(default_factory=list)
    failures: list[dict[str, Any]] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    unreachable: str | None = None
    incomplete: bool = False
    probe_delay: float = 0.0
    repair_success: bool = True
    repair_heals: bool = True
    repair_errors: list[str] = field(default_factory=list)
    healed: bool = False
    probe_calls: int = 0
    repair_calls: list[tuple[RepairActionKind, str | None]] = field(default_factory=list)

    @classmethod
    def from_dict(cls, name: str, data: dict[str, Any] | None) -> "FixtureNode":
        data = data or {}
        repair = data.get("repair") or {}
        return cls(
            name=name,
            partners=list(data.get("partners") or []),
            failures=list(data.get("failures") or []),
            errors=[str(e) for e in data.get("errors") or []],
            unreachable=data.get("unreachable"),
            incomplete=bool(data.get("incomplete", False)),
            probe_delay=float(data.get("probe_delay", 0.0)),
            repair_success=bool(repair.get("success", True)),
            repair_heals=bool(repair.get("heals", True)),
            repair_errors=[str(e) for e in repair.get("errors") or []],
        )


def _timestamp(entry: dict[str, Any], key: str, now: datetime) -> datetime | None:
    hours_ago = entry.get(f"{key}_hours_ago")
    if hours_ago is not None:
        return now - timedelta(hours=float(hours_ago))
    return parse_timestamp(entry.get(key))


class FixtureFleet:
    """
    Example:
        >>> fleet = FixtureFleet.from_yaml("fixtures/demo.yaml")
        >>> runner = FleetHealthRunner(fleet.resolver, fleet.probe, fleet.actuator, store)
    """

    def __init__(
        self,
        sites: dict[str, list[str]] | None = None,
        nodes: dict[str, dict[str, Any] | None] | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self._clock = clock
        self.nodes: dict[str, FixtureNode] = {
            name: FixtureNode.from_dict(name, data) for name, data in (nodes or {}).items()
        }
        sites = dict(sites or {})
        if not sites and self.nodes:
            sites = {"Default": list(self.nodes)}
        for site_nodes in sites.values():
            for name in site_nodes:
                self.nodes.setdefault(name, FixtureNode(name=name))

        self.resolver = InventoryScopeResolver(sites)
        self.probe = FixtureProbe(self)
        self.actuator = FixtureActuator(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any], clock: Clock = utc_now) -> "FixtureFleet":
        return cls(sites=data.get("sites"), nodes=data.get("nodes"), clock=clock)

    @classmethod
    def from_yaml(cls, path: Path | str, clock: Clock = utc_now) -> "FixtureFleet":
        try:
            data = yaml.safe_load(Path(path).read_text(encoding="utf-8")) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigLoadError(str(path), str(e), cause=e) from e
        if not isinstance(data, dict):
            raise ConfigLoadError(str(path), "fixture top level must be a mapping")
        return cls.from_dict(data, clock=clock)

    def node(self, name: str) -> FixtureNode:
        try:
            return self.nodes[name]
        except KeyError:
            raise RemoteCallError(
                name, "The specified domain either does not exist or could not be contacted"
            ) from None

    def raw_health(self, node: FixtureNode) -> RawHealthData:
        now = self._clock()
        if node.healed:
            partners = [
                PartnerRecord(
                    partner=p["partner"],
                    naming_context=p.get("naming_context", ""),
                    last_success=now,
                    last_attempt=now,
                )
                for p in node.partners
            ]
            return RawHealthData(partners=partners, failures=[], complete=True)

        partners = [
            PartnerRecord(
                partner=p["partner"],
                naming_context=p.get("naming_context", ""),
                last_success=_timestamp(p, "last_success", now),
                last_attempt=_timestamp(p, "last_attempt", now),
                consecutive_failures=int(p.get("consecutive_failures", 0)),
                last_error=p.get("last_error"),
            )
            for p in node.partners
        ]
        failures = [
            FailureRecord(
                partner=f["partner"],
                failure_count=int(f.get("failure_count", 1)),
                first_failure=_timestamp(f, "first_failure", now),
                last_error=f.get("last_error", ""),
            )
            for f in node.failures
        ]
        return RawHealthData(partners=partners, failures=failures, complete=not node.incomplete)


class FixtureProbe(NodeHealthProbe):
    def __init__(self, fleet: FixtureFleet) -> None:
        self.fleet = fleet

    async def probe(self, node: str) -> RawHealthData:
        fixture = self.fleet.node(node)
        fixture.probe_calls += 1
        if fixture.probe_delay > 0:
            await asyncio.sleep(fixture.probe_delay)
        if fixture.unreachable:
            raise RemoteCallError(node, fixture.unreachable)
        if fixture.errors:
            raise RemoteCallError(node, fixture.errors.pop(0))
        return self.fleet.raw_health(fixture)


class FixtureActuator(NodeRepairActuator):
    def __init__(self, fleet: FixtureFleet) -> None:
        self.fleet = fleet

    async def repair(
        self,
        node: str,
        action_kind: RepairActionKind,
        partner: str | None = None,
    ) -> RepairOutcome:
        fixture = self.fleet.node(node)
        fixture.repair_calls.append((action_kind, partner))
        if fixture.repair_errors:
            raise RemoteCallError(node, fixture.repair_errors.pop(0))

        if not fixture.repair_success:
            logger.debug("Fixture repair reports failure", node=node, action=action_kind.name)
            return RepairOutcome(success=False, message=f"{action_kind.name} did not complete on {node}")

        if fixture.repair_heals:
            fixture.healed = True
        target = f" from {partner}" if partner else ""
        return RepairOutcome(success=True, message=f"{action_kind.name}{target} completed on {node}")
