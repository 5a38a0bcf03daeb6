"""
Fleet Health Runner
===================

One pass of the control loop:

    resolve scope
      -> delta cache picks FULL or DELTA scan
      -> scan (bounded, per-node and global timeouts)
      -> classify
      -> [auto-heal] evaluate eligibility -> dispatch repairs -> rollback failures
                     -> verify repaired nodes
      -> update delta cache, persist cooldown ledger
      -> result code

Result codes (highest wins): 4 fatal > 3 unreachable > 2 issues remain > 0 ok.

ScopeError and PolicyConfigError abort the run before scanning and are
raised to the caller. Anything else escaping a stage is wrapped as an
InternalError, logged with its traceback and reported as result code 4.

Usage:
    runner = FleetHealthRunner(resolver, probe, actuator, JsonStateStore(), config=config)
    report = await runner.run(ScopeSpec(), RunOptions(auto_heal=True))
    sys.exit(report.result_code)
"""

import asyncio
import uuid
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from fleetheal.analysis.classifier import IssueClassifier
from fleetheal.analysis.delta_cache import DeltaCache
from fleetheal.collection.collector import NodeHealthCollector
from fleetheal.collection.scanner import FleetScanner
from fleetheal.core.base import NodeHealthProbe, NodeRepairActuator, ReportSink, ScopeResolver
from fleetheal.core.config import FleetHealConfig
from fleetheal.core.exceptions import InternalError, PolicyConfigError, ScopeError, StorageError
from fleetheal.core.logging import bind_run_context, clear_run_context, get_logger
from fleetheal.core.types import (
    ApprovalDecision,
    Clock,
    HealthStatus,
    Issue,
    ResultCode,
    RunSummary,
    ScanMode,
    ScanPlan,
    ScopeSpec,
    VerificationResult,
    utc_now,
)
from fleetheal.healing.dispatcher import RepairDispatcher
from fleetheal.healing.engine import REASON_APPROVAL, CooldownLedger, HealingPolicyEngine
from fleetheal.healing.policy import HealingPolicy
from fleetheal.healing.rollback import RollbackManager
from fleetheal.healing.verifier import Verifier
from fleetheal.reporting import RunReport
from fleetheal.resilience.retry import RetryExecutor
from fleetheal.storage.state import StateStore

SleepFunc = Callable[[float], Awaitable[Any]]


@dataclass
class RunOptions:
    """Per-run switches; defaults are an audit-only full-or-delta scan."""

    policy: HealingPolicy = field(default_factory=HealingPolicy.conservative)
    auto_heal: bool = False
    dry_run: bool = False
    force_full_scan: bool = False
    max_actions: int | None = None
    approval: ApprovalDecision | None = None

    @classmethod
    def from_config(cls, config: FleetHealConfig, **overrides: Any) -> "RunOptions":
        options = cls(
            policy=config.healing.policy_object(),
            auto_heal=config.healing.auto_heal,
            dry_run=config.healing.dry_run,
            max_actions=config.healing.max_actions,
        )
        for key, value in overrides.items():
            if not hasattr(options, key):
                raise PolicyConfigError(f"unknown run option: {key}")
            setattr(options, key, value)
        return options


def compute_result_code(
    statuses: Iterable[HealthStatus], remaining_issues: Iterable[Issue]
) -> ResultCode:
    status_list = list(statuses)
    if any(s is HealthStatus.UNREACHABLE for s in status_list):
        return ResultCode.UNREACHABLE
    if any(True for _ in remaining_issues) or any(s is HealthStatus.UNKNOWN for s in status_list):
        return ResultCode.ISSUES_REMAIN
    return ResultCode.OK


class FleetHealthRunner:
    def __init__(
        self,
        resolver: ScopeResolver,
        probe: NodeHealthProbe,
        actuator: NodeRepairActuator,
        store: StateStore,
        *,
        config: FleetHealConfig | None = None,
        sinks: Iterable[ReportSink] = (),
        sleep: SleepFunc | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self.config = config or FleetHealConfig()
        self.resolver = resolver
        self.actuator = actuator
        self.store = store
        self.sinks = list(sinks)
        self._clock = clock
        self._logger = get_logger("fleetheal.runner")

        cfg = self.config
        probe_retry = RetryExecutor(
            max_attempts=cfg.retry.max_attempts,
            initial_delay=cfg.retry.initial_delay,
            max_delay=cfg.retry.max_delay,
            jitter=cfg.retry.jitter,
            operation="probe",
            sleep=sleep,
            clock=clock,
        )
        self.repair_retry = RetryExecutor(
            max_attempts=cfg.repair.max_attempts,
            initial_delay=cfg.repair.initial_delay,
            max_delay=cfg.repair.max_delay,
            jitter=cfg.retry.jitter,
            operation="repair",
            sleep=sleep,
            clock=clock,
        )
        collector = NodeHealthCollector(
            probe, probe_retry, stale_threshold=cfg.classifier.stale_threshold, clock=clock
        )
        self.scanner = FleetScanner(
            collector,
            concurrency_limit=cfg.scan.concurrency_limit,
            per_node_timeout=cfg.scan.per_node_timeout,
            global_timeout=cfg.scan.effective_global_timeout,
            clock=clock,
        )
        self.classifier = IssueClassifier(cfg.classifier.stale_threshold)
        self.delta_cache = DeltaCache(store, max_age=cfg.delta.max_age) if cfg.delta.enabled else None
        self.verifier = Verifier(
            self.scanner,
            self.classifier,
            convergence_wait=cfg.healing.convergence_wait,
            sleep=sleep,
        )
        self.rollback_manager = RollbackManager(
            actuator, store, timeout=cfg.repair.rollback_timeout, clock=clock
        )

    async def run(self, scope: ScopeSpec, options: RunOptions | None = None) -> RunReport:
        options = options or RunOptions()
        run_id = uuid.uuid4().hex[:12]
        started = self._clock()
        stage = "scope"

        bind_run_context(run_id=run_id)
        try:
            if options.max_actions is not None and options.max_actions < 0:
                raise PolicyConfigError(
                    "max_actions must be non-negative", details={"max_actions": options.max_actions}
                )
            nodes = self.resolver.resolve(scope)

            self._logger.info(
                "Run started",
                nodes=len(nodes),
                policy=options.policy.name,
                auto_heal=options.auto_heal,
                dry_run=options.dry_run,
            )
            report = RunReport(
                summary=RunSummary(run_id=run_id, result_code=ResultCode.OK, started_at=started),
                policy=options.policy.name,
                dry_run=options.dry_run,
            )

            stage = "delta"
            report.plan = self._plan(nodes, options)
            report.summary.scan_mode = report.plan.mode

            stage = "scan"
            report.snapshots = await self.scanner.scan(report.plan.nodes)

            stage = "classify"
            report.issues = self.classifier.classify(report.snapshots)

            if options.auto_heal:
                stage = "heal"
                await self._heal(report, options)

            stage = "finalize"
            self._finalize(report)

        except (ScopeError, PolicyConfigError) as e:
            self._logger.error("Run aborted", stage=stage, error_code=e.error_code, error=e.message)
            clear_run_context()
            raise

        except asyncio.CancelledError:
            clear_run_context()
            raise

        except Exception as e:
            error = InternalError(stage, e)
            self._logger.exception("Run failed", stage=stage, error_code=error.error_code, error=str(e))
            report = RunReport(
                summary=RunSummary(
                    run_id=run_id,
                    result_code=ResultCode.FATAL,
                    started_at=started,
                    finished_at=self._clock(),
                    error=error.message,
                ),
                policy=options.policy.name,
                dry_run=options.dry_run,
            )

        self._emit(report)
        clear_run_context()
        return report

    # -------------------------------------------------------------------------
    # Stages
    # -------------------------------------------------------------------------

    def _plan(self, nodes: list[str], options: RunOptions) -> ScanPlan:
        if self.delta_cache is None:
            return ScanPlan(mode=ScanMode.FULL, nodes=tuple(nodes), reason="delta scan disabled")
        return self.delta_cache.decide(nodes, now=self._clock(), force_full=options.force_full_scan)

    async def _heal(self, report: RunReport, options: RunOptions) -> None:
        try:
            ledger = CooldownLedger.load(self.store)
        except StorageError as e:
            # Without the ledger there is no healing-loop protection.
            report.healing_refused = e.message
            self._logger.error("Cooldown ledger unreadable, healing refused", error=e.message)
            return

        engine = HealingPolicyEngine(ledger)
        approval = options.approval or ApprovalDecision.automatic()

        eligibility = engine.evaluate(
            report.issues,
            options.policy,
            now=self._clock(),
            approval=approval,
            operator_limit=options.max_actions,
        )
        report.eligible = eligibility.eligible
        report.manual_review = [d.issue for d in eligibility.rejected if REASON_APPROVAL in d.reasons]

        if options.dry_run:
            for issue in report.eligible:
                self._logger.info(
                    "Dry run: would repair",
                    node=issue.node,
                    category=issue.category.name,
                    partner=issue.partner,
                )
            return

        dispatcher = RepairDispatcher(
            self.actuator,
            ledger,
            self.store,
            retry=self.repair_retry,
            rollback_manager=self.rollback_manager,
            enable_rollback=self.config.repair.rollback_enabled,
            repair_timeout=self.config.repair.timeout,
            clock=self._clock,
        )
        dispatched = await dispatcher.dispatch(report.eligible, options.policy, approval, now=self._clock())
        report.actions = dispatched.actions
        report.rollbacks = dispatched.rollbacks
        report.manual_review.extend(dispatched.manual_review)
        try:
            ledger.persist()
        except StorageError as e:
            self._logger.error("Failed to persist cooldown ledger", error=e.message)

        if dispatched.repaired_nodes:
            report.verification = await self.verifier.verify(dispatched.repaired_nodes)

    def _finalize(self, report: RunReport) -> None:
        verification: dict[str, VerificationResult] = report.verification
        remaining = [i for i in report.issues if i.node not in verification]
        for result in verification.values():
            remaining.extend(result.remaining_issues)
        report.remaining_issues = sorted(remaining, key=lambda i: (*i.sort_key(), i.description))

        statuses = {
            node: verification[node].status if node in verification else snapshot.status
            for node, snapshot in report.snapshots.items()
        }

        if self.delta_cache is not None:
            self.delta_cache.update(report.snapshots, report.remaining_issues, now=self._clock())

        summary = report.summary
        summary.total_nodes = len(statuses)
        summary.healthy = sum(1 for s in statuses.values() if s is HealthStatus.HEALTHY)
        summary.degraded = sum(1 for s in statuses.values() if s is HealthStatus.DEGRADED)
        summary.unreachable = sum(1 for s in statuses.values() if s is HealthStatus.UNREACHABLE)
        summary.unknown = sum(1 for s in statuses.values() if s is HealthStatus.UNKNOWN)
        summary.issues_found = len(report.issues)
        summary.issues_remaining = len(report.remaining_issues)
        summary.actions_performed = len(report.actions)
        summary.actions_failed = sum(1 for a in report.actions if not a.success)
        summary.rollbacks = len(report.rollbacks)
        summary.verified_healthy = sum(1 for v in verification.values() if v.verified_healthy)
        summary.result_code = compute_result_code(statuses.values(), report.remaining_issues)
        summary.finished_at = self._clock()

        self._logger.info(
            "Run finished",
            result_code=int(summary.result_code),
            scan_mode=summary.scan_mode.name if summary.scan_mode else None,
            nodes=summary.total_nodes,
            issues_found=summary.issues_found,
            issues_remaining=summary.issues_remaining,
            actions=summary.actions_performed,
            rollbacks=summary.rollbacks,
        )

    def _emit(self, report: RunReport) -> None:
        for sink in self.sinks:
            try:
                sink.emit(report)
            except Exception as e:
                self._logger.exception(
                    "Report sink failed", sink=type(sink).__name__, error=str(e)
                )
