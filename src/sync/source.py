"""
Remote source capability consumed by the sync engine.

A source lists a target's items and retrieves one item to a local
path. Transport failures are raised as SourceError tagged with a
FailureKind so the catalog layer can decide whether to retry.
"""

from enum import Enum
from pathlib import Path
from typing import Any, Optional, Protocol

from .models import ItemRecord


class FailureKind(Enum):
    """Classification of remote failures."""
    TRANSIENT = "transient"
    NOT_FOUND = "not_found"
    RATE_LIMITED = "rate_limited"
    MALFORMED = "malformed"
    UNEXPECTED = "unexpected"

    @property
    def retryable(self) -> bool:
        return self is FailureKind.TRANSIENT


class SourceError(Exception):
    """Raised by a remote source when a query or retrieval fails."""

    def __init__(
        self,
        message: str,
        kind: FailureKind = FailureKind.UNEXPECTED,
        status_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.status_code = status_code


def classify_http_status(status_code: int) -> FailureKind:
    """Map an HTTP status code to a failure kind."""
    if status_code == 404:
        return FailureKind.NOT_FOUND
    if status_code == 429:
        return FailureKind.RATE_LIMITED
    if 500 <= status_code < 600:
        return FailureKind.TRANSIENT
    return FailureKind.UNEXPECTED


class RemoteSource(Protocol):
    """Transport used by RemoteCatalog and TransferExecutor."""

    def query(self, target: str, limit: int) -> Any:
        """Return the raw catalog payload for a target."""
        ...

    def parse_catalog(self, payload: Any) -> list[ItemRecord]:
        """Turn a payload into ordered item records."""
        ...

    def retrieve(self, identifier: str, destination: Path) -> None:
        """Write one item's bytes to destination."""
        ...

    def artifact_name(self, identifier: str) -> str:
        """Relative local path for an item."""
        ...

    def working_dir_name(self, target: str) -> str:
        """Directory name, under the root, holding a target's files."""
        ...

    def close(self) -> None:
        ...
