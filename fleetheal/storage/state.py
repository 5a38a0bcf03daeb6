"""
State Store
===========

Durable cross-run state of the control loop:

- cooldown ledger       (read at run start, written after every reservation;
                         an unreadable ledger is an error, never "empty")
- delta cache entry     (read at run start, overwritten at run end)
- healing history       (append-only, rolled_back flag updated in place)
- rollback history      (append-only)

``JsonStateStore`` keeps each as a JSON document validated with pydantic;
``InMemoryStateStore`` serves tests and dry runs.
"""

import threading
from abc import ABC, abstractmethod
from pathlib import Path

from pydantic import ValidationError

from fleetheal.core.exceptions import CorruptStateError
from fleetheal.core.logging import get_logger
from fleetheal.core.types import CooldownEntry, DeltaCacheEntry, HealingAction, RollbackRecord
from fleetheal.storage.json_store import JSONStore
from fleetheal.storage.models import (
    CooldownLedgerDocument,
    CooldownModel,
    DeltaCacheDocument,
    HealingActionModel,
    RollbackRecordModel,
)

COOLDOWN_DOCUMENT = "cooldown_ledger"
DELTA_CACHE_DOCUMENT = "delta_cache"
HEALING_HISTORY_DOCUMENT = "healing_history"
ROLLBACK_HISTORY_DOCUMENT = "rollback_history"

DEFAULT_HISTORY_LIMIT = 1000


class StateStore(ABC):
    @abstractmethod
    def load_cooldowns(self) -> list[CooldownEntry]: ...

    @abstractmethod
    def save_cooldowns(self, entries: list[CooldownEntry]) -> None: ...

    @abstractmethod
    def load_delta_cache(self) -> DeltaCacheEntry | None: ...

    @abstractmethod
    def save_delta_cache(self, entry: DeltaCacheEntry) -> None: ...

    @abstractmethod
    def append_action(self, action: HealingAction) -> None: ...

    @abstractmethod
    def mark_rolled_back(self, action_id: str) -> bool: ...

    @abstractmethod
    def append_rollback(self, record: RollbackRecord) -> None: ...

    @abstractmethod
    def recent_actions(self, limit: int = 50) -> list[HealingAction]: ...

    @abstractmethod
    def recent_rollbacks(self, limit: int = 50) -> list[RollbackRecord]: ...


class InMemoryStateStore(StateStore):
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.cooldowns: list[CooldownEntry] = []
        self.delta_cache: DeltaCacheEntry | None = None
        self.actions: list[HealingAction] = []
        self.rollbacks: list[RollbackRecord] = []

    def load_cooldowns(self) -> list[CooldownEntry]:
        with self._lock:
            return list(self.cooldowns)

    def save_cooldowns(self, entries: list[CooldownEntry]) -> None:
        with self._lock:
            self.cooldowns = list(entries)

    def load_delta_cache(self) -> DeltaCacheEntry | None:
        return self.delta_cache

    def save_delta_cache(self, entry: DeltaCacheEntry) -> None:
        self.delta_cache = entry

    def append_action(self, action: HealingAction) -> None:
        with self._lock:
            self.actions.append(action)

    def mark_rolled_back(self, action_id: str) -> bool:
        with self._lock:
            for action in self.actions:
                if action.id == action_id:
                    action.mark_rolled_back()
                    return True
            return False

    def append_rollback(self, record: RollbackRecord) -> None:
        with self._lock:
            self.rollbacks.append(record)

    def recent_actions(self, limit: int = 50) -> list[HealingAction]:
        with self._lock:
            return self.actions[-limit:]

    def recent_rollbacks(self, limit: int = 50) -> list[RollbackRecord]:
        with self._lock:
            return self.rollbacks[-limit:]


class JsonStateStore(StateStore):
    """
    Example:
        >>> store = JsonStateStore(".fleetheal/state")
        >>> store.save_delta_cache(entry)
        >>> store.load_delta_cache() == entry
        True
    """

    def __init__(
        self,
        base_dir: Path | str = ".fleetheal/state",
        history_limit: int = DEFAULT_HISTORY_LIMIT,
    ) -> None:
        self.documents = JSONStore(base_dir)
        self.history_limit = history_limit
        self._logger = get_logger("fleetheal.storage.state")

    @property
    def base_dir(self) -> Path:
        return self.documents.base_dir

    # -- cooldown ledger ------------------------------------------------------

    def load_cooldowns(self) -> list[CooldownEntry]:
        """
        Raises:
            CorruptStateError: the ledger exists but cannot be read
        """
        data = self.documents.load(COOLDOWN_DOCUMENT, strict=True)
        if data is None:
            return []
        try:
            document = CooldownLedgerDocument.model_validate(data)
        except ValidationError as e:
            raise CorruptStateError(COOLDOWN_DOCUMENT, str(e), cause=e) from e
        return [model.to_entry() for model in document.entries]

    def save_cooldowns(self, entries: list[CooldownEntry]) -> None:
        document = CooldownLedgerDocument(entries=[CooldownModel.from_entry(e) for e in entries])
        self.documents.save(COOLDOWN_DOCUMENT, document.model_dump(mode="json"))

    # -- delta cache ----------------------------------------------------------

    def load_delta_cache(self) -> DeltaCacheEntry | None:
        data = self.documents.load(DELTA_CACHE_DOCUMENT)
        if data is None:
            return None
        try:
            return DeltaCacheDocument.model_validate(data).to_entry()
        except (ValidationError, ValueError) as e:
            self._logger.error("Delta cache is invalid, ignoring it", error=str(e))
            return None

    def save_delta_cache(self, entry: DeltaCacheEntry) -> None:
        document = DeltaCacheDocument.from_entry(entry)
        self.documents.save(DELTA_CACHE_DOCUMENT, document.model_dump(mode="json"))

    # -- history --------------------------------------------------------------

    def append_action(self, action: HealingAction) -> None:
        model = HealingActionModel.from_action(action)
        self.documents.append(
            HEALING_HISTORY_DOCUMENT, model.model_dump(mode="json"), max_items=self.history_limit
        )

    def mark_rolled_back(self, action_id: str) -> bool:
        return self.documents.update(HEALING_HISTORY_DOCUMENT, action_id, {"rolled_back": True})

    def append_rollback(self, record: RollbackRecord) -> None:
        model = RollbackRecordModel.from_record(record)
        self.documents.append(
            ROLLBACK_HISTORY_DOCUMENT, model.model_dump(mode="json"), max_items=self.history_limit
        )

    def recent_actions(self, limit: int = 50) -> list[HealingAction]:
        data = self.documents.load(HEALING_HISTORY_DOCUMENT, default=[])
        actions: list[HealingAction] = []
        for item in data[-limit:] if isinstance(data, list) else []:
            try:
                actions.append(HealingActionModel.model_validate(item).to_action())
            except (ValidationError, KeyError) as e:
                self._logger.warning("Skipping invalid healing history item", error=str(e))
        return actions

    def recent_rollbacks(self, limit: int = 50) -> list[RollbackRecord]:
        data = self.documents.load(ROLLBACK_HISTORY_DOCUMENT, default=[])
        records: list[RollbackRecord] = []
        for item in data[-limit:] if isinstance(data, list) else []:
            try:
                records.append(RollbackRecordModel.model_validate(item).to_record())
            except ValidationError as e:
                self._logger.warning("Skipping invalid rollback history item", error=str(e))
        return records
