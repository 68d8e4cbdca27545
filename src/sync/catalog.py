"""
Remote catalog retrieval.

Fetches the list of items for a target through a RemoteSource, with a
bounded fixed-delay retry for transient failures. Any failure that
survives the retry policy aborts the collection pass: a partial catalog
is never usable for diffing.
"""

import logging
import time

from .models import ItemRecord
from .source import FailureKind, RemoteSource, SourceError

logger = logging.getLogger(__name__)


class CatalogFetchError(Exception):
    """Raised when a target's catalog cannot be retrieved."""

    def __init__(self, message: str, kind: FailureKind, target: str, attempts: int = 1):
        super().__init__(message)
        self.kind = kind
        self.target = target
        self.attempts = attempts


class RemoteCatalog:
    """
    Retrieves ordered (identifier, update marker) pairs for a target.

    Usage:
        catalog = RemoteCatalog(source, max_attempts=3, retry_delay=2.0)
        items = catalog.fetch("apple_ii_library_4am", limit=30000)
    """

    def __init__(
        self,
        source: RemoteSource,
        max_attempts: int = 3,
        retry_delay: float = 2.0,
    ):
        """
        Args:
            source: Transport used for the query
            max_attempts: Total attempts for transient failures
            retry_delay: Fixed delay between attempts in seconds
        """
        self.source = source
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay

    def fetch(self, target: str, limit: int) -> list[ItemRecord]:
        """
        Fetch at most `limit` items for a target in server order.

        Returns:
            List of ItemRecord, possibly empty

        Raises:
            CatalogFetchError: On non-retryable failure or exhausted retries
        """
        logger.info(f"Fetching catalog for {target}...")

        payload = self._query_with_retry(target, limit)

        try:
            items = self.source.parse_catalog(payload)
        except SourceError as e:
            raise CatalogFetchError(
                f"Failed to parse catalog for {target}: {e}", kind=e.kind, target=target
            ) from e
        except (KeyError, TypeError, ValueError) as e:
            raise CatalogFetchError(
                f"Failed to parse catalog for {target}: {type(e).__name__}: {e}",
                kind=FailureKind.MALFORMED,
                target=target,
            ) from e

        if len(items) > limit:
            items = items[:limit]

        if not items:
            logger.warning(f"No items found for {target}")
        else:
            logger.info(f"Parsed {len(items)} items for {target}")

        return items

    def _query_with_retry(self, target: str, limit: int):
        """
        Run the source query with the retry policy.

        Only TRANSIENT failures consume the retry budget.
        """
        last_error = None

        for attempt in range(1, self.max_attempts + 1):
            try:
                return self.source.query(target, limit)
            except SourceError as e:
                last_error = e

                if not e.kind.retryable:
                    logger.error(f"Catalog request for {target} failed ({e.kind.value}): {e}")
                    raise CatalogFetchError(
                        f"Catalog request for {target} failed ({e.kind.value}): {e}",
                        kind=e.kind,
                        target=target,
                        attempts=attempt,
                    ) from e

                if attempt < self.max_attempts:
                    logger.warning(
                        f"Request failed, retrying... "
                        f"(attempt {attempt + 1}/{self.max_attempts}): {e}"
                    )
                    time.sleep(self.retry_delay)

        logger.error(
            f"Failed to fetch catalog for {target} after {self.max_attempts} attempts"
        )
        raise CatalogFetchError(
            f"Failed to fetch catalog for {target} after {self.max_attempts} "
            f"attempts: {last_error}",
            kind=FailureKind.TRANSIENT,
            target=target,
            attempts=self.max_attempts,
        ) from last_error
