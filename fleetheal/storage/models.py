"""Pydantic schemas for persisted state documents."""

from datetime import datetime, timezone

from pydantic import BaseModel, Field, field_validator

from fleetheal.core.types import (
    CooldownEntry,
    DeltaCacheEntry,
    HealingAction,
    IssueCategory,
    RepairActionKind,
    RollbackRecord,
)

SCHEMA_VERSION = 1


def _as_utc(value: datetime) -> datetime:
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


class CooldownModel(BaseModel):
    node: str
    category: str
    last_attempt: datetime

    @field_validator("category")
    @classmethod
    def _known_category(cls, value: str) -> str:
        if value not in IssueCategory.__members__:
            raise ValueError(f"unknown issue category: {value}")
        return value

    @classmethod
    def from_entry(cls, entry: CooldownEntry) -> "CooldownModel":
        return cls(node=entry.node, category=entry.category.name, last_attempt=entry.last_attempt)

    def to_entry(self) -> CooldownEntry:
        return CooldownEntry(
            node=self.node,
            category=IssueCategory[self.category],
            last_attempt=_as_utc(self.last_attempt),
        )


class CooldownLedgerDocument(BaseModel):
    version: int = SCHEMA_VERSION
    entries: list[CooldownModel] = Field(default_factory=list)


class DeltaCacheDocument(BaseModel):
    version: int = SCHEMA_VERSION
    timestamp: datetime
    scanned_nodes: list[str]
    flagged_nodes: list[str]
    issue_count: int = 0

    @classmethod
    def from_entry(cls, entry: DeltaCacheEntry) -> "DeltaCacheDocument":
        return cls(
            timestamp=entry.timestamp,
            scanned_nodes=sorted(entry.scanned_nodes),
            flagged_nodes=sorted(entry.flagged_nodes),
            issue_count=entry.issue_count,
        )

    def to_entry(self) -> DeltaCacheEntry:
        return DeltaCacheEntry(
            timestamp=_as_utc(self.timestamp),
            scanned_nodes=frozenset(self.scanned_nodes),
            flagged_nodes=frozenset(self.flagged_nodes),
            issue_count=self.issue_count,
        )


class HealingActionModel(BaseModel):
    id: str
    node: str
    category: str
    policy: str
    action_kind: str
    partner: str | None = None
    timestamp: datetime
    success: bool
    message: str = ""
    attempts: int = 0
    rolled_back: bool = False

    @classmethod
    def from_action(cls, action: HealingAction) -> "HealingActionModel":
        return cls.model_validate(action.to_dict())

    def to_action(self) -> HealingAction:
        return HealingAction(
            id=self.id,
            node=self.node,
            category=IssueCategory[self.category],
            policy=self.policy,
            action_kind=RepairActionKind[self.action_kind],
            partner=self.partner,
            timestamp=_as_utc(self.timestamp),
            success=self.success,
            message=self.message,
            attempts=self.attempts,
            rolled_back=self.rolled_back,
        )


class RollbackRecordModel(BaseModel):
    action_id: str
    timestamp: datetime
    success: bool
    reason: str = ""

    @classmethod
    def from_record(cls, record: RollbackRecord) -> "RollbackRecordModel":
        return cls.model_validate(record.to_dict())

    def to_record(self) -> RollbackRecord:
        return RollbackRecord(
            action_id=self.action_id,
            timestamp=_as_utc(self.timestamp),
            success=self.success,
            reason=self.reason,
        )
