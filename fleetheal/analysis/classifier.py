"""
Issue Classifier
================

Pure mapping from health snapshots to categorised, severity-ranked issues.
No I/O, no clock: staleness is measured against each snapshot's own
timestamp, so identical input always yields an identical issue set.

Rules (all evaluated for every node):
    - UNREACHABLE                      -> CONNECTIVITY / HIGH / not actionable
    - each failure record              -> REPLICATION_FAILURE / HIGH / actionable
    - each partner idle past threshold
      with no failing attempts of its own -> STALE_REPLICATION / MEDIUM / actionable

A failure record and a stale partner for the same partner both produce an
issue; they are repaired independently.
"""

from collections.abc import Iterable, Mapping
from datetime import timedelta

from fleetheal.collection.collector import DEFAULT_STALE_THRESHOLD, is_stale
from fleetheal.core.types import (
    HealthSnapshot,
    HealthStatus,
    Issue,
    IssueCategory,
    PartnerRecord,
    Severity,
)


def _format_age(delta: timedelta) -> str:
    hours = delta.total_seconds() / 3600
    return f"{hours:.1f}h"


def _older(a: PartnerRecord, b: PartnerRecord) -> bool:
    if a.last_success is None:
        return b.last_success is not None
    if b.last_success is None:
        return False
    return a.last_success < b.last_success


def classify_snapshot(
    snapshot: HealthSnapshot,
    stale_threshold: timedelta = DEFAULT_STALE_THRESHOLD,
) -> list[Issue]:
    issues: list[Issue] = []

    if snapshot.status is HealthStatus.UNREACHABLE:
        issues.append(
            Issue(
                node=snapshot.node,
                category=IssueCategory.CONNECTIVITY,
                severity=Severity.HIGH,
                description=f"Node unreachable: {snapshot.error or 'no response'}",
                actionable=False,
            )
        )

    for failure in snapshot.failures:
        issues.append(
            Issue(
                node=snapshot.node,
                category=IssueCategory.REPLICATION_FAILURE,
                severity=Severity.HIGH,
                description=(
                    f"Replication from {failure.partner} failing "
                    f"({failure.failure_count} failures): {failure.last_error or 'unknown error'}"
                ),
                actionable=True,
                partner=failure.partner,
            )
        )

    # One partner can appear once per naming context; report its stalest record.
    stalest: dict[str, PartnerRecord] = {}
    for partner in snapshot.partners:
        if partner.consecutive_failures > 0:
            continue
        if not is_stale(partner, snapshot.timestamp, stale_threshold):
            continue
        current = stalest.get(partner.partner)
        if current is None or _older(partner, current):
            stalest[partner.partner] = partner

    for partner in stalest.values():
        if partner.last_success is None:
            age = "never succeeded"
        else:
            age = f"last success {_format_age(snapshot.timestamp - partner.last_success)} ago"
        issues.append(
            Issue(
                node=snapshot.node,
                category=IssueCategory.STALE_REPLICATION,
                severity=Severity.MEDIUM,
                description=f"Replication from {partner.partner} is stale ({age})",
                actionable=True,
                partner=partner.partner,
            )
        )

    return issues


def classify_snapshots(
    snapshots: Mapping[str, HealthSnapshot] | Iterable[HealthSnapshot],
    stale_threshold: timedelta = DEFAULT_STALE_THRESHOLD,
) -> list[Issue]:
    """Classify every snapshot; the result is sorted (severity desc, node, category, partner)."""
    items = snapshots.values() if isinstance(snapshots, Mapping) else snapshots

    issues: set[Issue] = set()
    for snapshot in items:
        issues.update(classify_snapshot(snapshot, stale_threshold))

    return sorted(issues, key=lambda i: (*i.sort_key(), i.description))


def flagged_nodes(issues: Iterable[Issue]) -> frozenset[str]:
    """Nodes carrying at least one issue."""
    return frozenset(issue.node for issue in issues)


class IssueClassifier:
    """Object form of classify_snapshots, carrying the stale threshold."""

    def __init__(self, stale_threshold: timedelta = DEFAULT_STALE_THRESHOLD) -> None:
        self.stale_threshold = stale_threshold

    def classify(
        self, snapshots: Mapping[str, HealthSnapshot] | Iterable[HealthSnapshot]
    ) -> list[Issue]:
        return classify_snapshots(snapshots, self.stale_threshold)
