"""
Per-item transfer execution.

Downloads one item into the collection working directory. Data is
written to a hidden, uniquely named ".part" file beside the artifact
and moved into place only when complete; on failure every artifact for
the item is removed so the next run starts a fresh transfer.
"""

import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional

from ..storage.models import StateEntry
from .models import ItemRecord
from .source import RemoteSource, SourceError

logger = logging.getLogger(__name__)

PARTIAL_SUFFIX = ".part"
ARTIFACT_MODE = 0o644


class TransferError(Exception):
    """Raised when a single item cannot be transferred."""

    def __init__(self, message: str, identifier: str):
        super().__init__(message)
        self.identifier = identifier


@dataclass(frozen=True)
class TransferResult:
    """Outcome of one transfer call."""
    item: ItemRecord
    destination: Optional[Path] = None
    error: Optional[TransferError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class TransferExecutor:
    """
    Performs downloads for a single collection directory.

    Never retries and never touches state; the caller records
    successful results.
    """

    def __init__(
        self,
        source: RemoteSource,
        directory: Path,
        reserved_names: Iterable[str] = (),
    ):
        """
        Args:
            source: Transport used for retrieval
            directory: Collection working directory
            reserved_names: File names in directory that must not be overwritten
        """
        self.source = source
        self.directory = Path(directory)
        self.reserved_names = frozenset(reserved_names)

    def destination_for(self, item: ItemRecord) -> Path:
        """
        Resolve the local artifact path for an item.

        Raises:
            TransferError: If the item could not be recorded afterwards,
                or its path escapes the directory or is reserved
        """
        if not StateEntry(item.identifier, item.update_marker).is_serializable:
            raise TransferError(
                f"Refusing to download {item.identifier!r}: identifier and marker "
                f"must not contain tabs or newlines",
                identifier=item.identifier,
            )

        relative = self.source.artifact_name(item.identifier)
        root = self.directory.resolve()
        destination = (root / relative).resolve()

        if destination == root or root not in destination.parents:
            raise TransferError(
                f"Refusing to write {item.identifier}: path escapes {root}",
                identifier=item.identifier,
            )
        if destination.parent == root and destination.name in self.reserved_names:
            raise TransferError(
                f"Refusing to write {item.identifier}: {destination.name} is reserved",
                identifier=item.identifier,
            )
        return destination

    def transfer(self, item: ItemRecord) -> TransferResult:
        """
        Download one item.

        Returns:
            TransferResult; failures carry a TransferError instead of raising
        """
        try:
            destination = self.destination_for(item)
        except TransferError as e:
            logger.error(str(e))
            return TransferResult(item=item, error=e)

        partial = None
        completed = False

        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            partial = _reserve_partial(destination)
            self.source.retrieve(item.identifier, partial)
            os.replace(partial, destination)
            completed = True
        except (SourceError, OSError) as e:
            error = TransferError(
                f"Failed to download {item.identifier} to {destination}: {e}",
                identifier=item.identifier,
            )
            logger.error(str(error))
            _remove(destination)
            return TransferResult(item=item, destination=destination, error=error)
        finally:
            if not completed and partial is not None:
                _remove(partial)

        return TransferResult(item=item, destination=destination)

    def remove(self, item: ItemRecord) -> Path:
        """
        Delete an item's local artifact and any directories it leaves empty.

        Returns:
            The artifact path, whether or not it existed

        Raises:
            TransferError: If the item's path is not inside the directory
            OSError: If the artifact cannot be deleted
        """
        destination = self.destination_for(item)
        destination.unlink(missing_ok=True)

        root = self.directory.resolve()
        parent = destination.parent
        while parent != root:
            try:
                parent.rmdir()
            except OSError:
                break
            parent = parent.parent

        return destination


def _reserve_partial(destination: Path) -> Path:
    """
    Create an empty, uniquely named partial file next to destination.

    mkstemp opens with O_EXCL, so an existing file (including another
    item's artifact) is never reused as the partial.
    """
    fd, name = tempfile.mkstemp(
        prefix=f".{destination.name}.", suffix=PARTIAL_SUFFIX, dir=destination.parent
    )
    os.close(fd)
    os.chmod(name, ARTIFACT_MODE)
    return Path(name)


def _remove(path: Path) -> None:
    try:
        path.unlink()
        logger.debug(f"Removed incomplete artifact: {path}")
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning(f"Could not remove incomplete artifact {path}: {e}")
