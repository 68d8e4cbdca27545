"""
Line-oriented persistent state store.

Tracks which items of a collection were transferred successfully and
with which update marker. Every record() rewrites the file atomically,
so an interrupted run never leaves a truncated line behind.
"""

import logging
import os
import shutil
import tempfile
import threading
from pathlib import Path
from typing import Iterable, Optional

from .models import StateEntry

logger = logging.getLogger(__name__)

STATE_FILE_NAME = "fileList.txt"
BACKUP_FILE_NAME = "fileListOld.txt"


class StateStoreError(Exception):
    """Raised when state store operations fail."""
    pass


class StateStore:
    """
    Tab-separated state file with a single backup generation.

    Features:
    - Tolerant loading (malformed lines are skipped)
    - Atomic per-record persistence via temp file + os.replace
    - Pre-run snapshot rotation to a backup file

    The whole file is rewritten on each record(), which is fine for
    collections of tens of thousands of items but grows linearly.

    Usage:
        store = StateStore(Path("apple_ii_library_4am"))
        store.rotate()

        if store.lookup("some_item") is None:
            ...
            store.record("some_item", "2024-01-01T00:00:00Z")
    """

    def __init__(
        self,
        directory: Path,
        file_name: str = STATE_FILE_NAME,
        backup_name: str = BACKUP_FILE_NAME,
    ):
        """
        Initialize state store.

        Args:
            directory: Collection working directory
            file_name: Name of the state file
            backup_name: Name of the pre-run snapshot file
        """
        self.directory = Path(directory)
        self.path = self.directory / file_name
        self.backup_path = self.directory / backup_name

        self._entries: Optional[dict[str, str]] = None
        self._lock = threading.Lock()

    def __repr__(self) -> str:
        return f"StateStore(path='{self.path}')"

    @property
    def reserved_names(self) -> frozenset[str]:
        """File names inside the directory owned by the store."""
        return frozenset({self.path.name, self.backup_path.name})

    def load(self) -> dict[str, str]:
        """
        Parse the state file from disk.

        A missing file yields an empty mapping. Malformed lines are
        skipped with a warning.

        Returns:
            Mapping of identifier to update marker

        Raises:
            StateStoreError: If the file exists but cannot be read
        """
        entries = self._read(self.path)
        logger.debug(f"Loaded {len(entries)} entries from {self.path}")
        self._entries = entries
        return dict(entries)

    @staticmethod
    def _read(path: Path) -> dict[str, str]:
        entries: dict[str, str] = {}

        if not path.exists():
            logger.debug(f"No state file at {path}")
            return entries

        try:
            with open(path, encoding="utf-8", errors="replace") as f:
                for line_num, line in enumerate(f, 1):
                    if not line.strip():
                        continue

                    entry = StateEntry.from_line(line)
                    if entry is None:
                        logger.warning(f"Skipping malformed line {line_num} in {path}")
                        continue

                    # Last write wins
                    entries.pop(entry.identifier, None)
                    entries[entry.identifier] = entry.update_marker
        except OSError as e:
            raise StateStoreError(f"Failed to read state file {path}: {e}") from e

        return entries

    def _loaded(self) -> dict[str, str]:
        if self._entries is None:
            self.load()
        return self._entries

    def lookup(self, identifier: str) -> Optional[str]:
        """
        Get the recorded update marker for an identifier.

        The file is read at most once per store; later lookups are
        answered from memory.

        Returns:
            Update marker if recorded, None otherwise
        """
        return self._loaded().get(identifier)

    def __contains__(self, identifier: str) -> bool:
        return identifier in self._loaded()

    def get(self, identifier: str, default: Optional[str] = None) -> Optional[str]:
        marker = self.lookup(identifier)
        return default if marker is None else marker

    def entries(self) -> list[StateEntry]:
        """All recorded entries in file order."""
        return [
            StateEntry(identifier=identifier, update_marker=marker)
            for identifier, marker in self._loaded().items()
        ]

    def count(self) -> int:
        """Number of recorded entries."""
        return len(self._loaded())

    def backup_count(self) -> int:
        """Number of entries in the pre-run snapshot."""
        return len(self._read(self.backup_path))

    def record(self, identifier: str, update_marker: str) -> None:
        """
        Insert or replace the entry for an identifier and persist it.

        The re-recorded identifier moves to the end of the file.

        Raises:
            StateStoreError: If the entry cannot be serialized or written
        """
        entry = StateEntry(identifier=identifier, update_marker=update_marker)
        if not entry.is_serializable:
            raise StateStoreError(
                f"Cannot record {identifier!r}: identifier and marker must not "
                f"contain tabs or newlines"
            )

        with self._lock:
            entries = dict(self._loaded())
            entries.pop(identifier, None)
            entries[identifier] = update_marker

            self._write(entries)
            self._entries = entries

        logger.debug(f"Recorded {identifier} at {update_marker}")

    def _write(self, entries: dict[str, str]) -> None:
        """Atomically replace the state file with the given entries."""
        tmp_name = None
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self.path.name}.", suffix=".tmp", dir=self.directory
            )
            with os.fdopen(fd, "w", encoding="utf-8", newline="\n") as f:
                for identifier, marker in entries.items():
                    f.write(StateEntry(identifier, marker).to_line())
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.path)
            tmp_name = None
        except OSError as e:
            raise StateStoreError(f"Failed to write state file {self.path}: {e}") from e
        finally:
            if tmp_name is not None and os.path.exists(tmp_name):
                os.unlink(tmp_name)

    def forget(self, identifiers: Iterable[str]) -> None:
        """
        Drop entries for the given identifiers and persist once.

        Unknown identifiers are ignored.

        Raises:
            StateStoreError: If the file cannot be written
        """
        identifiers = set(identifiers)

        with self._lock:
            entries = {
                identifier: marker
                for identifier, marker in self._loaded().items()
                if identifier not in identifiers
            }
            if len(entries) == len(self._loaded()):
                return

            self._write(entries)
            self._entries = entries

        logger.debug(f"Forgot {len(identifiers)} entries in {self.path}")

    def rotate(self) -> None:
        """
        Snapshot the current state before a run.

        Copies the state file to a temp file and moves that over the
        backup slot, so the working file is never absent and an older
        backup is replaced atomically.

        Raises:
            StateStoreError: If the snapshot cannot be written
        """
        with self._lock:
            if self.path.exists():
                tmp_name = None
                try:
                    fd, tmp_name = tempfile.mkstemp(
                        prefix=f".{self.backup_path.name}.", suffix=".tmp", dir=self.directory
                    )
                    os.close(fd)
                    shutil.copy2(self.path, tmp_name)
                    os.replace(tmp_name, self.backup_path)
                    tmp_name = None
                    logger.info(f"Archived old file list to {self.backup_path.name}")
                except OSError as e:
                    raise StateStoreError(
                        f"Failed to rotate state file {self.path}: {e}"
                    ) from e
                finally:
                    if tmp_name is not None and os.path.exists(tmp_name):
                        os.unlink(tmp_name)
            else:
                logger.debug(f"No state file to archive in {self.directory}")

            self._entries = None

        self.load()
