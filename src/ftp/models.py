"""
FTP listing models.
"""

from dataclasses import dataclass

from ..sync.models import ItemRecord


@dataclass(frozen=True)
class RemoteFile:
    """
    A regular file found while walking an FTP tree.

    Attributes:
        path: Path relative to the walked directory, "/"-separated
        modify: MLSD modify fact or MDTM reply (YYYYMMDDHHMMSS[.sss]),
            empty if the server reports neither
    """
    path: str
    modify: str = ""

    @classmethod
    def from_mlsd(cls, relative_dir: str, name: str, facts: dict) -> "RemoteFile":
        """Create from one MLSD entry."""
        return cls(
            path=f"{relative_dir}/{name}" if relative_dir else name,
            modify=facts.get("modify", ""),
        )

    def to_item(self) -> ItemRecord:
        return ItemRecord(identifier=self.path, update_marker=self.modify)
