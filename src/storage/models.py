"""
Persistent state storage models.

One StateEntry per successfully transferred item, serialized as a
tab-separated line.
"""

from dataclasses import dataclass
from typing import Optional

FIELD_SEPARATOR = "\t"


@dataclass(frozen=True)
class StateEntry:
    """
    Record of the last successful transfer of an item.

    Attributes:
        identifier: Remote item identifier
        update_marker: Marker seen when the item was transferred
    """
    identifier: str
    update_marker: str

    @property
    def is_serializable(self) -> bool:
        """Check that neither field would break the line format."""
        return not any(
            ch in value
            for value in (self.identifier, self.update_marker)
            for ch in (FIELD_SEPARATOR, "\n", "\r")
        )

    def to_line(self) -> str:
        """Serialize to a state file line, newline included."""
        return f"{self.identifier}{FIELD_SEPARATOR}{self.update_marker}\n"

    @classmethod
    def from_line(cls, line: str) -> Optional["StateEntry"]:
        """
        Parse a state file line.

        Returns:
            StateEntry, or None if the line is malformed
        """
        line = line.rstrip("\r\n")
        if FIELD_SEPARATOR not in line:
            return None

        identifier, _, update_marker = line.partition(FIELD_SEPARATOR)
        if not identifier or FIELD_SEPARATOR in update_marker:
            return None

        return cls(identifier=identifier, update_marker=update_marker)
