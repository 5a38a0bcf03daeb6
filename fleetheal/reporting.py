"""
Run Report
==========

Everything a run produced, as typed records:

    HealthSnapshot | Issue | HealingAction | RollbackRecord | VerificationResult

``RunReport.records()`` yields them as one tagged stream; ``render_record``
maps each variant to a JSON-ready dict and rejects anything else, so a new
record type cannot slip through a sink unrendered.

Sinks:
    - CollectingReportSink: keeps reports in memory (tests, embedding)
    - JsonReportSink: writes the report atomically as JSON
"""

from collections.abc import Iterator
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import orjson

from fleetheal.core.base import ReportSink
from fleetheal.core.logging import get_logger
from fleetheal.core.types import (
    HealingAction,
    HealthSnapshot,
    Issue,
    RollbackRecord,
    RunSummary,
    ScanPlan,
    VerificationResult,
)
from fleetheal.storage.atomic import atomic_write

RunRecord = HealthSnapshot | Issue | HealingAction | RollbackRecord | VerificationResult

logger = get_logger("fleetheal.reporting")


@dataclass
class RunReport:
    summary: RunSummary
    plan: ScanPlan | None = None
    policy: str | None = None
    dry_run: bool = False
    snapshots: dict[str, HealthSnapshot] = field(default_factory=dict)
    issues: list[Issue] = field(default_factory=list)
    eligible: list[Issue] = field(default_factory=list)
    manual_review: list[Issue] = field(default_factory=list)
    actions: list[HealingAction] = field(default_factory=list)
    rollbacks: list[RollbackRecord] = field(default_factory=list)
    verification: dict[str, VerificationResult] = field(default_factory=dict)
    remaining_issues: list[Issue] = field(default_factory=list)
    healing_refused: str | None = None

    @property
    def result_code(self) -> int:
        return int(self.summary.result_code)

    def records(self) -> Iterator[RunRecord]:
        """Snapshots (by node), issues found, actions, rollbacks, then verification results."""
        for node in sorted(self.snapshots, key=str.lower):
            yield self.snapshots[node]
        yield from self.issues
        yield from self.actions
        yield from self.rollbacks
        for node in sorted(self.verification, key=str.lower):
            yield self.verification[node]

    def to_dict(self) -> dict[str, Any]:
        return {
            "summary": self.summary.to_dict(),
            "plan": (
                {
                    "mode": self.plan.mode.name,
                    "nodes": list(self.plan.nodes),
                    "reason": self.plan.reason,
                }
                if self.plan
                else None
            ),
            "policy": self.policy,
            "dry_run": self.dry_run,
            "healing_refused": self.healing_refused,
            "eligible": [i.to_dict() for i in self.eligible],
            "manual_review": [i.to_dict() for i in self.manual_review],
            "remaining_issues": [i.to_dict() for i in self.remaining_issues],
            "records": [render_record(r) for r in self.records()],
        }


def render_record(record: RunRecord) -> dict[str, Any]:
    """Tag and serialise one run record."""
    if isinstance(record, HealthSnapshot):
        return {"type": "snapshot", **record.to_dict()}
    if isinstance(record, Issue):
        return {"type": "issue", **record.to_dict()}
    if isinstance(record, HealingAction):
        return {"type": "healing_action", **record.to_dict()}
    if isinstance(record, RollbackRecord):
        return {"type": "rollback", **record.to_dict()}
    if isinstance(record, VerificationResult):
        return {"type": "verification", **record.to_dict()}
    raise TypeError(f"unsupported run record: {type(record).__name__}")


# =============================================================================
# Sinks
# =============================================================================


class CollectingReportSink(ReportSink):
    def __init__(self) -> None:
        self.reports: list[RunReport] = []

    def emit(self, report: RunReport) -> None:
        self.reports.append(report)

    @property
    def last(self) -> RunReport | None:
        return self.reports[-1] if self.reports else None


class JsonReportSink(ReportSink):
    """
    Writes each report to ``path``; a ``{run_id}`` placeholder keeps one
    file per run.

    Example:
        >>> sink = JsonReportSink("reports/run-{run_id}.json")
    """

    def __init__(self, path: Path | str) -> None:
        self.path = str(path)

    def target_for(self, report: RunReport) -> Path:
        return Path(self.path.format(run_id=report.summary.run_id))

    def emit(self, report: RunReport) -> None:
        target = self.target_for(report)
        atomic_write(target, orjson.dumps(report.to_dict(), option=orjson.OPT_INDENT_2))
        logger.info("Run report written", path=str(target), result_code=report.result_code)
