"""
Pytest configuration and shared fixtures.

Provides an in-memory remote source and sample catalog data.
"""

from pathlib import Path
from typing import Optional

import pytest

from config.settings import SyncConfig
from src.storage.state_store import StateStore
from src.sync.models import ItemRecord
from src.sync.source import FailureKind, SourceError


# ============================================================================
# Fake Remote Source
# ============================================================================

class FakeSource:
    """
    In-memory RemoteSource.

    Args:
        items: Catalog returned by every successful query
        fail_ids: Identifiers whose retrieval fails after a partial write
        interrupt_on: Identifier whose retrieval raises KeyboardInterrupt
        query_errors: Errors raised by successive queries before succeeding
    """

    def __init__(
        self,
        items: Optional[list[ItemRecord]] = None,
        fail_ids: tuple[str, ...] = (),
        interrupt_on: Optional[str] = None,
        query_errors: Optional[list[Exception]] = None,
    ):
        self.items = list(items or [])
        self.fail_ids = set(fail_ids)
        self.interrupt_on = interrupt_on
        self.query_errors = list(query_errors or [])
        self.queries: list[tuple[str, int]] = []
        self.retrieved: list[str] = []
        self.partials: list[Path] = []
        self.closed = False

    def query(self, target: str, limit: int):
        self.queries.append((target, limit))
        if self.query_errors:
            raise self.query_errors.pop(0)
        return list(self.items)

    def parse_catalog(self, payload):
        return list(payload)

    def retrieve(self, identifier: str, destination: Path) -> None:
        self.retrieved.append(identifier)
        self.partials.append(destination)
        destination.write_bytes(b"partial")
        if identifier == self.interrupt_on:
            raise KeyboardInterrupt()
        if identifier in self.fail_ids:
            raise SourceError(f"connection reset while fetching {identifier}", kind=FailureKind.TRANSIENT)
        destination.write_bytes(f"data:{identifier}".encode())

    def artifact_name(self, identifier: str) -> str:
        return f"{identifier}.zip"

    def working_dir_name(self, target: str) -> str:
        return target

    def close(self) -> None:
        self.closed = True


class PathSource(FakeSource):
    """FakeSource whose artifact names are the identifiers themselves, as for FTP."""

    def artifact_name(self, identifier: str) -> str:
        return identifier


# ============================================================================
# Catalog Fixtures
# ============================================================================

@pytest.fixture
def sample_items() -> list[ItemRecord]:
    """Three items with ISO update markers."""
    return [
        ItemRecord("item-1", "2024-01-01T10:00:00Z"),
        ItemRecord("item-2", "2024-01-02T10:00:00Z"),
        ItemRecord("item-3", "2024-01-03T10:00:00Z"),
    ]


@pytest.fixture
def fake_source(sample_items: list[ItemRecord]) -> FakeSource:
    return FakeSource(items=sample_items)


# ============================================================================
# Storage / Config Fixtures
# ============================================================================

@pytest.fixture
def collection_dir(tmp_path: Path) -> Path:
    directory = tmp_path / "collection"
    directory.mkdir()
    return directory


@pytest.fixture
def state_store(collection_dir: Path) -> StateStore:
    """Create a StateStore in an empty collection directory."""
    return StateStore(collection_dir)


@pytest.fixture
def sync_config(tmp_path: Path) -> SyncConfig:
    """Run configuration rooted in a temp directory with no retry delay."""
    return SyncConfig(
        source="archive",
        root_dir=tmp_path / "mirror",
        rows=100,
        retry_delay_seconds=0,
    )


# ============================================================================
# API Response Fixtures
# ============================================================================

@pytest.fixture
def search_response() -> dict:
    """Sample advancedsearch.php JSON body."""
    return {
        "responseHeader": {"status": 0, "QTime": 12},
        "response": {
            "numFound": 3,
            "start": 0,
            "docs": [
                {
                    "identifier": "Choplifter_4am_crack",
                    "oai_updatedate": ["2015-03-01T12:00:00Z", "2019-06-10T08:30:00Z"],
                },
                {
                    "identifier": "Lode_Runner_4am_crack",
                    "oai_updatedate": "2020-01-15T00:00:00Z",
                },
                {
                    "identifier": "Oregon_Trail_4am_crack",
                },
            ],
        },
    }


@pytest.fixture
def empty_search_response() -> dict:
    return {"responseHeader": {"status": 0}, "response": {"numFound": 0, "start": 0, "docs": []}}


# ============================================================================
# Environment Fixtures
# ============================================================================

ENV_VARS = (
    "SYNC_SOURCE",
    "SYNC_ROOT_DIR",
    "SYNC_ROWS",
    "SYNC_DRY_RUN",
    "SYNC_DELETE",
    "SYNC_MAX_RETRIES",
    "SYNC_RETRY_DELAY",
    "ARCHIVE_BASE_URL",
    "FTP_HOST",
    "FTP_PORT",
    "FTP_DIR",
    "FTP_USE_TLS",
    "LOG_LEVEL",
)


@pytest.fixture
def clean_env(monkeypatch, tmp_path: Path) -> Path:
    """
    Remove sync variables from the environment and run in an empty directory.

    Variables are set before being deleted so that values written by
    .env loading are also rolled back after the test.
    """
    for name in ENV_VARS:
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)
    monkeypatch.chdir(tmp_path)
    return tmp_path
