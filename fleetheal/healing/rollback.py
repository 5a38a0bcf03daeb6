# Rollback Manager
import asyncio

from fleetheal.core.base import NodeRepairActuator
from fleetheal.core.exceptions import StorageError
from fleetheal.core.logging import get_logger
from fleetheal.core.types import Clock, HealingAction, RepairActionKind, RollbackRecord, utc_now
from fleetheal.storage.state import StateStore


class RollbackManager:
    """
    Issues one corrective RESYNC after a failed repair.

    Exactly one RollbackRecord is appended per call, whether the corrective
    call succeeds, reports failure, or raises. The originating action is
    flagged ``rolled_back`` in memory and in the history store. A failed
    history write is logged and does not lose the in-memory record.
    """

    def __init__(
        self,
        actuator: NodeRepairActuator,
        store: StateStore,
        timeout: float | None = 120.0,
        clock: Clock = utc_now,
    ) -> None:
        self.actuator = actuator
        self.store = store
        self.timeout = timeout
        self._clock = clock
        self._logger = get_logger("fleetheal.rollback")

    async def rollback(self, action: HealingAction, reason: str = "") -> RollbackRecord:
        reason = reason or action.message or "repair failed"
        try:
            outcome = await asyncio.wait_for(
                self.actuator.repair(action.node, RepairActionKind.RESYNC, action.partner),
                timeout=self.timeout,
            )
            success = outcome.success
            detail = outcome.message
        except asyncio.CancelledError:
            raise
        except asyncio.TimeoutError:
            success = False
            detail = f"resync timed out after {self.timeout}s"
        except Exception as e:
            success = False
            detail = str(e)

        record = RollbackRecord(
            action_id=action.id,
            timestamp=self._clock(),
            success=success,
            reason=f"{reason}; resync: {detail}" if detail else reason,
        )
        action.mark_rolled_back()
        try:
            self.store.append_rollback(record)
            self.store.mark_rolled_back(action.id)
        except StorageError as e:
            self._logger.error(
                "Failed to record rollback",
                action_id=action.id,
                node=action.node,
                category=action.category.name,
                error=e.message,
            )

        log = self._logger.info if success else self._logger.error
        log(
            "Rollback finished",
            action_id=action.id,
            node=action.node,
            category=action.category.name,
            success=success,
            detail=detail,
        )
        return record
