"""
Delta Cache
===========

Decides whether a run can re-scan only the nodes the previous run flagged.

Decision order (first match wins):
    1. no previous entry                    -> FULL
    2. entry older than max_age             -> FULL
    3. previous run flagged nothing         -> FULL
    4. flagged set misses requested scope   -> FULL
    5. caller forces a full scan            -> FULL
    6. otherwise                            -> DELTA over flagged ∩ requested

The entry itself lives in the injected state store; the cache holds no
module-level state and is overwritten at the end of every run.

Usage:
    cache = DeltaCache(store, max_age=timedelta(hours=1))
    plan = cache.decide(["DC01", "DC02", "DC03"], now=utc_now())
    snapshots = await scanner.scan(plan.nodes)
    cache.update(snapshots, issues, now=utc_now())
"""

from collections.abc import Iterable, Mapping
from datetime import datetime, timedelta

from fleetheal.analysis.classifier import flagged_nodes
from fleetheal.core.exceptions import PolicyConfigError
from fleetheal.core.logging import get_logger
from fleetheal.core.types import DeltaCacheEntry, HealthSnapshot, Issue, ScanMode, ScanPlan
from fleetheal.storage.state import StateStore

DEFAULT_MAX_AGE = timedelta(hours=1)


class DeltaCache:
    def __init__(self, store: StateStore, max_age: timedelta = DEFAULT_MAX_AGE) -> None:
        if max_age <= timedelta(0):
            raise PolicyConfigError("delta cache max_age must be positive", details={"max_age": str(max_age)})
        self.store = store
        self.max_age = max_age
        self._logger = get_logger("fleetheal.delta_cache")

    def current(self) -> DeltaCacheEntry | None:
        return self.store.load_delta_cache()

    def decide(
        self,
        requested_nodes: Iterable[str],
        *,
        now: datetime,
        force_full: bool = False,
    ) -> ScanPlan:
        requested = list(dict.fromkeys(requested_nodes))
        entry = self.current()

        def full(reason: str) -> ScanPlan:
            self._logger.info("Full scan planned", reason=reason, nodes=len(requested))
            return ScanPlan(mode=ScanMode.FULL, nodes=tuple(requested), reason=reason)

        if entry is None:
            return full("no previous scan")
        age = now - entry.timestamp
        if age > self.max_age:
            return full(f"previous scan is {age.total_seconds():.0f}s old (max {self.max_age.total_seconds():.0f}s)")
        if not entry.flagged_nodes:
            return full("previous scan flagged no nodes")

        targets = tuple(node for node in requested if node in entry.flagged_nodes)
        if not targets:
            return full("no flagged nodes in requested scope")
        if force_full:
            return full("full scan forced")

        self._logger.info(
            "Delta scan planned",
            nodes=len(targets),
            requested=len(requested),
            previous_scan=entry.timestamp.isoformat(),
        )
        return ScanPlan(
            mode=ScanMode.DELTA,
            nodes=targets,
            reason=f"re-scanning {len(targets)} node(s) flagged by previous scan",
        )

    def update(
        self,
        snapshots: Mapping[str, HealthSnapshot],
        issues: Iterable[Issue],
        *,
        now: datetime,
    ) -> DeltaCacheEntry:
        """Overwrite the stored entry with this run's result, whatever the scan mode."""
        issue_list = list(issues)
        scanned = frozenset(snapshots)
        entry = DeltaCacheEntry(
            timestamp=now,
            scanned_nodes=scanned,
            flagged_nodes=flagged_nodes(issue_list) & scanned,
            issue_count=len(issue_list),
        )
        self.store.save_delta_cache(entry)
        self._logger.debug(
            "Delta cache updated",
            scanned=len(entry.scanned_nodes),
            flagged=len(entry.flagged_nodes),
            issues=entry.issue_count,
        )
        return entry
