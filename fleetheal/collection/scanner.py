"""
Fleet Scanner
=============

Fans the node health collector out over a node set.

- at most ``concurrency_limit`` probes in flight (asyncio.Semaphore)
- ``per_node_timeout`` bounds the probe work of one node, not its queueing
- ``global_timeout`` bounds the whole scan; stragglers are cancelled
- a failure in one node never aborts the others: it becomes that node's
  UNREACHABLE snapshot

The result is a map keyed by node, built on the event loop; iteration order
carries no meaning.
"""

import asyncio
from collections.abc import Iterable

from fleetheal.collection.collector import NodeHealthCollector, unreachable_snapshot
from fleetheal.core.exceptions import PolicyConfigError
from fleetheal.core.logging import get_logger
from fleetheal.core.types import Clock, ErrorKind, HealthSnapshot, HealthStatus, utc_now
from fleetheal.resilience.backoff import classify

SCAN_DEADLINE_MESSAGE = "scan deadline exceeded"


class FleetScanner:
    def __init__(
        self,
        collector: NodeHealthCollector,
        concurrency_limit: int = 8,
        per_node_timeout: float | None = 60.0,
        global_timeout: float | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self.collector = collector
        self.concurrency_limit = concurrency_limit
        self.per_node_timeout = per_node_timeout
        self.global_timeout = global_timeout
        self._clock = clock
        self._logger = get_logger("fleetheal.scanner")

    async def scan(
        self,
        nodes: Iterable[str],
        *,
        concurrency_limit: int | None = None,
        per_node_timeout: float | None = None,
        global_timeout: float | None = None,
    ) -> dict[str, HealthSnapshot]:
        """
        Scan ``nodes`` and return one snapshot per distinct node.

        Keyword arguments override the values given at construction.
        """
        limit = concurrency_limit if concurrency_limit is not None else self.concurrency_limit
        node_timeout = per_node_timeout if per_node_timeout is not None else self.per_node_timeout
        deadline = global_timeout if global_timeout is not None else self.global_timeout

        if limit < 1:
            raise PolicyConfigError("concurrency_limit must be at least 1", details={"value": limit})
        if node_timeout is not None and node_timeout <= 0:
            raise PolicyConfigError("per_node_timeout must be positive", details={"value": node_timeout})
        if deadline is not None and deadline <= 0:
            raise PolicyConfigError("global_timeout must be positive", details={"value": deadline})

        unique_nodes = list(dict.fromkeys(nodes))
        if not unique_nodes:
            return {}

        semaphore = asyncio.Semaphore(limit)
        results: dict[str, HealthSnapshot] = {}

        async def scan_one(node: str) -> None:
            async with semaphore:
                try:
                    snapshot = await asyncio.wait_for(
                        self.collector.collect(node), timeout=node_timeout
                    )
                except asyncio.TimeoutError:
                    self._logger.warning(
                        "Node probe timed out", node=node, timeout=node_timeout
                    )
                    snapshot = unreachable_snapshot(
                        node,
                        self._clock(),
                        error=f"probe timed out after {node_timeout}s",
                        error_kind=ErrorKind.TRANSIENT,
                    )
                except Exception as e:
                    self._logger.exception("Node scan failed", node=node, error=str(e))
                    snapshot = unreachable_snapshot(
                        node, self._clock(), error=str(e), error_kind=classify(e)
                    )
            results[node] = snapshot

        self._logger.info(
            "Scan started",
            nodes=len(unique_nodes),
            concurrency_limit=limit,
            per_node_timeout=node_timeout,
            global_timeout=deadline,
        )

        tasks = [asyncio.create_task(scan_one(node), name=f"scan:{node}") for node in unique_nodes]
        _, pending = await asyncio.wait(tasks, timeout=deadline)

        if pending:
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

        for node in unique_nodes:
            if node not in results:
                self._logger.warning("Node cancelled by scan deadline", node=node, timeout=deadline)
                results[node] = unreachable_snapshot(
                    node,
                    self._clock(),
                    error=SCAN_DEADLINE_MESSAGE,
                    error_kind=ErrorKind.TRANSIENT,
                )

        self._logger.info(
            "Scan finished",
            nodes=len(results),
            unreachable=sum(1 for s in results.values() if s.status is HealthStatus.UNREACHABLE),
            cancelled=len(pending),
        )
        return results
