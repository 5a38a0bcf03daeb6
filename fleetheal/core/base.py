# Core Base Classes
"""
Contracts for the collaborators the control loop is handed from outside:
scope resolution, node probing, node repair and report emission.
Concrete directory-backed implementations live outside this package;
``fleetheal.adapters`` ships fixture-backed ones.
"""

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import TYPE_CHECKING

from .types import RawHealthData, RepairActionKind, RepairOutcome, ScopeSpec

if TYPE_CHECKING:
    from fleetheal.reporting import RunReport


# =============================================================================
# Scope
# =============================================================================


class ScopeResolver(ABC):
    """Maps a scope spec to the list of nodes to audit."""

    @abstractmethod
    def resolve(self, spec: ScopeSpec) -> list[str]:
        """
        Resolve a scope.

        Raises:
            ScopeError: explicit scope without nodes, unknown site, empty result
        """


# =============================================================================
# Probe / Actuator
# =============================================================================


class NodeHealthProbe(ABC):
    """Reads replication health from one node. May be slow; may raise."""

    @abstractmethod
    async def probe(self, node: str) -> RawHealthData:
        """Return raw partner and failure metadata for ``node``."""


class NodeRepairActuator(ABC):
    """Performs a repair action against one node."""

    @abstractmethod
    async def repair(
        self,
        node: str,
        action_kind: RepairActionKind,
        partner: str | None = None,
    ) -> RepairOutcome:
        """Run ``action_kind`` on ``node`` (optionally scoped to ``partner``)."""


class BlockingProbeAdapter(NodeHealthProbe):
    """
    Wraps a blocking probe function (shelling out to a directory tool, an
    LDAP bind...) so it runs on a worker thread instead of the event loop.
    """

    def __init__(self, probe_func: Callable[[str], RawHealthData]) -> None:
        self._probe_func = probe_func

    async def probe(self, node: str) -> RawHealthData:
        return await asyncio.to_thread(self._probe_func, node)


class BlockingActuatorAdapter(NodeRepairActuator):
    """Thread-offloading counterpart of BlockingProbeAdapter for repairs."""

    def __init__(
        self,
        repair_func: Callable[[str, RepairActionKind, str | None], RepairOutcome],
    ) -> None:
        self._repair_func = repair_func

    async def repair(
        self,
        node: str,
        action_kind: RepairActionKind,
        partner: str | None = None,
    ) -> RepairOutcome:
        return await asyncio.to_thread(self._repair_func, node, action_kind, partner)


# =============================================================================
# Reporting
# =============================================================================


class ReportSink(ABC):
    """Receives the finished run report for rendering or shipping."""

    @abstractmethod
    def emit(self, report: "RunReport") -> None:
        """Consume one run report."""
