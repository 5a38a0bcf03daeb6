# Post-repair Verifier
import asyncio
from collections.abc import Awaitable, Callable, Iterable
from typing import Any

from fleetheal.analysis.classifier import IssueClassifier
from fleetheal.collection.scanner import FleetScanner
from fleetheal.core.logging import get_logger
from fleetheal.core.types import Issue, VerificationResult


class Verifier:
    """
    Observation-only re-check of repaired nodes.

    Waits ``convergence_wait`` seconds for replication to settle, re-scans
    just the given nodes and re-classifies them. A node is verified healthy
    iff it yields zero issues. Never triggers healing.
    """

    def __init__(
        self,
        scanner: FleetScanner,
        classifier: IssueClassifier,
        convergence_wait: float = 30.0,
        sleep: Callable[[float], Awaitable[Any]] | None = None,
    ) -> None:
        self.scanner = scanner
        self.classifier = classifier
        self.convergence_wait = convergence_wait
        self._sleep = sleep or asyncio.sleep
        self._logger = get_logger("fleetheal.verifier")

    async def verify(self, nodes: Iterable[str]) -> dict[str, VerificationResult]:
        targets = list(dict.fromkeys(nodes))
        if not targets:
            return {}

        if self.convergence_wait > 0:
            self._logger.info("Waiting for replication to converge", seconds=self.convergence_wait, nodes=len(targets))
            await self._sleep(self.convergence_wait)

        snapshots = await self.scanner.scan(targets)
        issues = self.classifier.classify(snapshots)

        by_node: dict[str, list[Issue]] = {node: [] for node in targets}
        for issue in issues:
            by_node.setdefault(issue.node, []).append(issue)

        results: dict[str, VerificationResult] = {}
        for node in targets:
            remaining = tuple(by_node[node])
            results[node] = VerificationResult(
                node=node,
                verified_healthy=not remaining,
                status=snapshots[node].status,
                remaining_issues=remaining,
            )
            self._logger.info(
                "Node verified",
                node=node,
                verified_healthy=not remaining,
                status=snapshots[node].status.name,
                remaining_issues=len(remaining),
            )
        return results
