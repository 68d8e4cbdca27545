"""
Sync engine data models.

ItemRecord is the unit every remote source produces; SyncPlan and
RunSummary describe what one collection pass intends to do and what
it actually did.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator, Optional


@dataclass(frozen=True)
class ItemRecord:
    """
    One remote entity.

    Attributes:
        identifier: Stable unique name within the collection
        update_marker: Freshness token, compared only after normalization
    """
    identifier: str
    update_marker: str

    def __post_init__(self):
        if not self.identifier:
            raise ValueError("ItemRecord identifier must not be empty")


class PlanReason(Enum):
    """Why an item was planned for transfer."""
    NEW = "new"
    UPDATED = "updated"


@dataclass(frozen=True)
class PlannedItem:
    """A catalog item together with the reason it needs a transfer."""
    item: ItemRecord
    reason: PlanReason

    @property
    def identifier(self) -> str:
        return self.item.identifier


@dataclass(frozen=True)
class SyncPlan:
    """Ordered, immutable set of items requiring transfer."""
    items: tuple[PlannedItem, ...] = ()

    def __len__(self) -> int:
        return len(self.items)

    def __iter__(self) -> Iterator[PlannedItem]:
        return iter(self.items)

    def __bool__(self) -> bool:
        return bool(self.items)

    @property
    def identifiers(self) -> list[str]:
        return [planned.identifier for planned in self.items]


class RunPhase(Enum):
    """Phases of a single collection pass."""
    INITIALIZING = "initializing"
    CATALOG_FETCH = "catalog_fetch"
    PLANNING = "planning"
    TRANSFERRING = "transferring"
    PRUNING = "pruning"
    SUMMARIZING = "summarizing"
    DONE = "done"


class RunOutcome(Enum):
    """Result of a collection pass; every value except SUCCESS is a failure."""
    SUCCESS = "success"
    TRANSFER_FAILURES = "transfer_failures"
    CATALOG_ERROR = "catalog_error"
    FILESYSTEM_ERROR = "filesystem_error"
    STATE_ERROR = "state_error"

    @property
    def exit_code(self) -> int:
        return _EXIT_CODES[self]


_EXIT_CODES = {
    RunOutcome.SUCCESS: 0,
    RunOutcome.TRANSFER_FAILURES: 1,
    RunOutcome.CATALOG_ERROR: 2,
    RunOutcome.FILESYSTEM_ERROR: 3,
    RunOutcome.STATE_ERROR: 3,
}


@dataclass
class RunSummary:
    """Counts and outcome from one collection pass. Reported, never persisted."""
    target: str
    dry_run: bool = False
    planned: int = 0
    succeeded: int = 0
    failed: int = 0
    deleted: int = 0
    phase: RunPhase = RunPhase.INITIALIZING
    outcome: RunOutcome = RunOutcome.SUCCESS
    error: Optional[str] = None
    failed_identifiers: list[str] = field(default_factory=list)

    @property
    def is_success(self) -> bool:
        return self.outcome is RunOutcome.SUCCESS

    def __str__(self) -> str:
        mode = " (dry run)" if self.dry_run else ""
        deleted = f", {self.deleted} deleted" if self.deleted else ""
        return (
            f"{self.target}{mode}: {self.planned} planned, "
            f"{self.succeeded} succeeded, {self.failed} failed{deleted} "
            f"[{self.outcome.value}]"
        )
