"""
Resumable sync engine.

Drives one pass per collection: snapshot state, fetch the catalog,
plan the diff, transfer item by item and record each success before
moving on. State therefore reflects exactly the transfers that
completed, even if the process dies mid-batch.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

from config.settings import SyncConfig
from ..storage.state_store import StateStore, StateStoreError
from .catalog import CatalogFetchError, RemoteCatalog
from .diff import plan as plan_transfers
from .models import ItemRecord, RunOutcome, RunPhase, RunSummary, SyncPlan
from .source import RemoteSource
from .transfer import TransferError, TransferExecutor

logger = logging.getLogger(__name__)


class FileSystemError(Exception):
    """Raised when a collection working directory cannot be prepared."""

    def __init__(self, message: str, path: Path):
        super().__init__(message)
        self.path = path


@dataclass(frozen=True)
class CollectionStatus:
    """Local sync status of a target, read without network access."""
    target: str
    directory: Path
    tracked: int
    previous_run: int


class SyncOrchestrator:
    """
    Orchestrates synchronization of remote collections.

    Core principles:
    - Re-running against an unchanged catalog transfers nothing
    - One item's failure never blocks the others
    - One collection's failure never blocks the next collection
    - State is persisted after each successful transfer

    Usage:
        orchestrator = SyncOrchestrator(source=ArchiveClient(...), config=settings.sync)
        summaries = orchestrator.run(["apple_ii_library_4am"])
    """

    def __init__(self, source: RemoteSource, config: SyncConfig):
        """
        Initialize orchestrator.

        Args:
            source: Remote transport for catalog and transfers
            config: Immutable run configuration
        """
        self.source = source
        self.config = config
        self.catalog = RemoteCatalog(
            source,
            max_attempts=config.max_retries,
            retry_delay=config.retry_delay_seconds,
        )

    def working_dir(self, target: str) -> Path:
        return self.config.root_dir / self.source.working_dir_name(target)

    def run(self, targets: Iterable[str]) -> list[RunSummary]:
        """
        Sync each target in order.

        Returns:
            One RunSummary per target
        """
        targets = list(targets)
        summaries = []

        for index, target in enumerate(targets, 1):
            logger.info("=" * 50)
            logger.info(f"Processing collection {index} of {len(targets)}: {target}")
            logger.info("=" * 50)

            summary = self.sync_collection(target)
            summaries.append(summary)

            if summary.is_success:
                logger.info(f"Collection '{target}' processed successfully")
            else:
                logger.error(f"Collection '{target}' completed with errors: {summary}")

        return summaries

    def sync_collection(self, target: str) -> RunSummary:
        """
        Execute one full pass for a single target.

        Run-level failures are returned as the summary outcome rather
        than raised.
        """
        summary = RunSummary(target=target, dry_run=self.config.dry_run)

        if self.config.dry_run:
            logger.info("DRY RUN MODE - No files will be downloaded")

        # Initializing
        try:
            directory = self._prepare_directory(target)
            store = StateStore(directory)
            store.rotate()
        except FileSystemError as e:
            return self._abort(summary, RunOutcome.FILESYSTEM_ERROR, e)
        except StateStoreError as e:
            return self._abort(summary, RunOutcome.STATE_ERROR, e)

        # Catalog fetch
        self._enter(summary, RunPhase.CATALOG_FETCH)
        try:
            items = self.catalog.fetch(target, self.config.rows)
        except CatalogFetchError as e:
            return self._abort(summary, RunOutcome.CATALOG_ERROR, e)

        # Planning
        self._enter(summary, RunPhase.PLANNING)
        sync_plan = plan_transfers(items, store)
        summary.planned = len(sync_plan)
        logger.info(f"Found {summary.planned} items to download")

        executor = TransferExecutor(self.source, directory, reserved_names=store.reserved_names)

        if sync_plan:
            self._enter(summary, RunPhase.TRANSFERRING)
            try:
                self._execute(sync_plan, executor, store, summary)
            except StateStoreError as e:
                return self._abort(summary, RunOutcome.STATE_ERROR, e)
        else:
            logger.info("All items are already up to date")

        # Pruning
        if self.config.delete:
            self._enter(summary, RunPhase.PRUNING)
            try:
                self._prune(items, executor, store, summary)
            except StateStoreError as e:
                return self._abort(summary, RunOutcome.STATE_ERROR, e)

        # Summarizing
        self._enter(summary, RunPhase.SUMMARIZING)
        if summary.failed > 0:
            summary.outcome = RunOutcome.TRANSFER_FAILURES
        self._log_summary(summary)

        self._enter(summary, RunPhase.DONE)
        return summary

    def status(self, target: str) -> CollectionStatus:
        """Report local state for a target without touching the network."""
        directory = self.working_dir(target)
        store = StateStore(directory)
        return CollectionStatus(
            target=target,
            directory=directory,
            tracked=store.count(),
            previous_run=store.backup_count(),
        )

    def _prepare_directory(self, target: str) -> Path:
        directory = self.working_dir(target)
        if not directory.is_dir():
            logger.info(f"Creating directory: {directory}")
            try:
                directory.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise FileSystemError(
                    f"Failed to create directory {directory}: {e}", path=directory
                ) from e
        return directory

    def _execute(
        self,
        sync_plan: SyncPlan,
        executor: TransferExecutor,
        store: StateStore,
        summary: RunSummary,
    ) -> None:
        """
        Transfer planned items in order, recording each success.

        Raises:
            StateStoreError: If a successful transfer cannot be recorded
        """
        total = len(sync_plan)

        for count, planned in enumerate(sync_plan, 1):
            item = planned.item
            name = self.source.artifact_name(item.identifier)

            if self.config.dry_run:
                logger.info(f"[{count}/{total}] [DRY RUN] Would download: {name} ({planned.reason.value})")
                continue

            logger.info(f"[{count}/{total}] Downloading: {name} ({planned.reason.value})")
            result = executor.transfer(item)

            if result.ok:
                store.record(item.identifier, item.update_marker)
                summary.succeeded += 1
                logger.info(f"[{count}/{total}] Successfully downloaded: {name}")
            else:
                summary.failed += 1
                summary.failed_identifiers.append(item.identifier)
                logger.error(f"[{count}/{total}] Failed to download: {name}")

    def _prune(
        self,
        items: list[ItemRecord],
        executor: TransferExecutor,
        store: StateStore,
        summary: RunSummary,
    ) -> None:
        """
        Delete recorded items that are no longer in the catalog.

        Skipped when the catalog hit the row limit, since items beyond
        the limit would look deleted. A file that cannot be removed keeps
        its state entry and is retried next run.

        Raises:
            StateStoreError: If the pruned entries cannot be persisted
        """
        if len(items) >= self.config.rows:
            logger.warning(
                f"Catalog for {summary.target} reached the {self.config.rows} row limit; "
                f"not deleting local items"
            )
            return

        remote = {item.identifier for item in items}
        stale = [entry for entry in store.entries() if entry.identifier not in remote]
        if not stale:
            logger.info("No local items to delete")
            return

        total = len(stale)
        removed = []

        for count, entry in enumerate(stale, 1):
            name = self.source.artifact_name(entry.identifier)

            if self.config.dry_run:
                logger.info(f"[{count}/{total}] [DRY RUN] Would delete: {name}")
                summary.deleted += 1
                continue

            try:
                executor.remove(ItemRecord(entry.identifier, entry.update_marker))
            except (TransferError, OSError) as e:
                logger.error(f"[{count}/{total}] Failed to delete {name}: {e}")
                continue

            removed.append(entry.identifier)
            summary.deleted += 1
            logger.info(f"[{count}/{total}] Deleted: {name}")

        store.forget(removed)

    def _enter(self, summary: RunSummary, phase: RunPhase) -> None:
        logger.debug(f"{summary.target}: {summary.phase.value} -> {phase.value}")
        summary.phase = phase

    def _abort(self, summary: RunSummary, outcome: RunOutcome, error: Exception) -> RunSummary:
        logger.error(f"{summary.target}: {error}")
        summary.outcome = outcome
        summary.error = str(error)
        self._enter(summary, RunPhase.DONE)
        self._log_summary(summary)
        return summary

    def _log_summary(self, summary: RunSummary) -> None:
        logger.info("Download summary:")
        logger.info(f"  Total items planned:     {summary.planned}")
        logger.info(f"  Successfully downloaded: {summary.succeeded}")
        if self.config.delete:
            logger.info(f"  Deleted locally:         {summary.deleted}")
        if summary.failed > 0:
            logger.warning(f"  Failed downloads:        {summary.failed}")
            for identifier in summary.failed_identifiers:
                logger.warning(f"    - {identifier}")


def overall_exit_code(summaries: Iterable[RunSummary]) -> int:
    """Most severe exit code across collection summaries, 0 if all succeeded."""
    return max((summary.outcome.exit_code for summary in summaries), default=0)
