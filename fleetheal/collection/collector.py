# Node Health Collector
from datetime import datetime, timedelta

from fleetheal.core.base import NodeHealthProbe
from fleetheal.core.logging import get_logger
from fleetheal.core.types import (
    Clock,
    ErrorKind,
    HealthSnapshot,
    HealthStatus,
    PartnerRecord,
    RawHealthData,
    utc_now,
)
from fleetheal.resilience.retry import RetryExecutor

DEFAULT_STALE_THRESHOLD = timedelta(hours=24)


def is_stale(partner: PartnerRecord, now: datetime, threshold: timedelta) -> bool:
    """A partner is stale when it has not replicated successfully within ``threshold``."""
    if partner.last_success is None:
        return True
    return now - partner.last_success > threshold


def derive_status(raw: RawHealthData, now: datetime, stale_threshold: timedelta) -> HealthStatus:
    if not raw.complete:
        return HealthStatus.UNKNOWN
    if raw.failures:
        return HealthStatus.DEGRADED
    if any(is_stale(p, now, stale_threshold) for p in raw.partners):
        return HealthStatus.DEGRADED
    return HealthStatus.HEALTHY


class NodeHealthCollector:
    """Fetches one node's health snapshot through the retry executor."""

    def __init__(
        self,
        probe: NodeHealthProbe,
        retry: RetryExecutor,
        stale_threshold: timedelta = DEFAULT_STALE_THRESHOLD,
        clock: Clock = utc_now,
    ) -> None:
        self.probe = probe
        self.retry = retry
        self.stale_threshold = stale_threshold
        self._clock = clock
        self._logger = get_logger("fleetheal.collector")

    async def collect(self, node: str) -> HealthSnapshot:
        result = await self.retry.execute(lambda: self.probe.probe(node), node=node)
        now = self._clock()

        if not result.success or result.value is None:
            self._logger.warning(
                "Node unreachable",
                node=node,
                attempts=result.attempts,
                kind=result.error_kind.name if result.error_kind else None,
                error=result.error_message,
            )
            return unreachable_snapshot(
                node,
                now,
                error=result.error_message or "probe returned no data",
                error_kind=result.error_kind,
                attempts=result.attempts,
            )

        raw = result.value
        status = derive_status(raw, now, self.stale_threshold)
        self._logger.debug(
            "Node probed",
            node=node,
            status=status.name,
            partners=len(raw.partners),
            failures=len(raw.failures),
            attempts=result.attempts,
        )
        return HealthSnapshot(
            node=node,
            timestamp=now,
            status=status,
            partners=tuple(raw.partners),
            failures=tuple(raw.failures),
            attempts=result.attempts,
        )


def unreachable_snapshot(
    node: str,
    timestamp: datetime,
    error: str,
    error_kind: ErrorKind | None = None,
    attempts: int = 0,
) -> HealthSnapshot:
    return HealthSnapshot(
        node=node,
        timestamp=timestamp,
        status=HealthStatus.UNREACHABLE,
        error=error,
        error_kind=error_kind,
        attempts=attempts,
    )
