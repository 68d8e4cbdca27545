"""
Diff detection for sync engine.

Compares the remote catalog against stored state to determine which
items need a transfer.
"""

import logging
from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Optional, Protocol

from .models import ItemRecord, PlannedItem, PlanReason, SyncPlan

logger = logging.getLogger(__name__)

# Tried in order; markers are read as UTC.
MARKER_FORMATS = (
    "%Y-%m-%dT%H:%M:%SZ",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%d %H:%M:%S",
    "%Y%m%d%H%M%S",
    "%Y%m%d%H%M%S.%f",
)

EPOCH_ZERO = 0


class StateLookup(Protocol):
    def get(self, identifier: str, default: Optional[str] = None) -> Optional[str]:
        ...

    def __contains__(self, identifier: str) -> bool:
        ...


def to_epoch(marker: Optional[str]) -> int:
    """
    Normalize an update marker to whole epoch seconds.

    Markers matching none of MARKER_FORMATS normalize to EPOCH_ZERO.
    """
    if not marker:
        return EPOCH_ZERO

    text = marker.strip()
    for fmt in MARKER_FORMATS:
        try:
            parsed = datetime.strptime(text, fmt)
        except ValueError:
            continue
        return int(parsed.replace(tzinfo=timezone.utc).timestamp())

    return EPOCH_ZERO


def compute_diff(item: ItemRecord, recorded_marker: Optional[str]) -> Optional[PlanReason]:
    """
    Decide whether a single item needs a transfer.

    Rules:
    - No recorded entry → NEW
    - Remote marker strictly newer than recorded marker → UPDATED
    - Otherwise → None

    An unparseable remote marker never beats an existing entry, since
    it normalizes to epoch zero.
    """
    if recorded_marker is None:
        return PlanReason.NEW

    remote_epoch = to_epoch(item.update_marker)
    local_epoch = to_epoch(recorded_marker)

    logger.debug(
        f"Date comparison for {item.identifier}: "
        f"remote={remote_epoch}, local={local_epoch}"
    )

    if remote_epoch > local_epoch:
        return PlanReason.UPDATED
    return None


def plan(catalog: Iterable[ItemRecord], state: StateLookup) -> SyncPlan:
    """
    Compute the ordered transfer plan.

    Pure function of its inputs: state may be a StateStore or any
    mapping of identifier to marker. Output order equals catalog order.

    Args:
        catalog: Remote items in server order
        state: Recorded identifier → update marker lookup

    Returns:
        SyncPlan of new and updated items
    """
    planned = []
    for item in catalog:
        recorded = state.get(item.identifier) if item.identifier in state else None
        reason = compute_diff(item, recorded)
        if reason is not None:
            planned.append(PlannedItem(item=item, reason=reason))

    return SyncPlan(items=tuple(planned))
