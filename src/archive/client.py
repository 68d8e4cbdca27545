"""
Internet Archive API client.

Queries collection metadata through advancedsearch.php and downloads
items as zip archives from the compress endpoint.
"""

import logging
import time
from pathlib import Path
from typing import Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..sync.models import ItemRecord
from ..sync.source import FailureKind, SourceError, classify_http_status
from .models import SearchResponse

logger = logging.getLogger(__name__)


class ArchiveAPIError(SourceError):
    """Raised when the Internet Archive returns an error."""
    pass


class ArchiveClient:
    """
    Client for the Internet Archive.

    Handles:
    - Collection metadata search sorted by identifier
    - Streaming zip downloads with a total-duration limit
    - Classification of failures for the catalog retry policy

    Retries are not done here: the adapter's budget is zero and the
    catalog layer owns the retry loop.

    Usage:
        with ArchiveClient(base_url="https://archive.org") as client:
            payload = client.query("apple_ii_library_4am", limit=50)
            items = client.parse_catalog(payload)
    """

    SEARCH_ENDPOINT = "/advancedsearch.php"
    COMPRESS_ENDPOINT = "/compress/{identifier}"
    ARTIFACT_EXTENSION = ".zip"
    CHUNK_SIZE = 64 * 1024

    def __init__(
        self,
        base_url: str = "https://archive.org",
        connect_timeout: float = 30.0,
        catalog_max_duration: float = 300.0,
        transfer_max_duration: float = 1800.0,
        session: Optional[requests.Session] = None,
    ):
        """
        Initialize archive client.

        Args:
            base_url: Archive instance URL
            connect_timeout: Connection timeout in seconds
            catalog_max_duration: Max seconds for a metadata query
            transfer_max_duration: Max seconds for one item download
            session: Optional pre-built session
        """
        self.base_url = base_url.rstrip("/")
        self.connect_timeout = connect_timeout
        self.catalog_max_duration = catalog_max_duration
        self.transfer_max_duration = transfer_max_duration

        if session is None:
            session = requests.Session()
            adapter = HTTPAdapter(max_retries=Retry(total=0, raise_on_status=False))
            session.mount("https://", adapter)
            session.mount("http://", adapter)
        self._session = session

        logger.debug(f"Archive client initialized for {self.base_url}")

    def __repr__(self) -> str:
        return f"ArchiveClient(base_url='{self.base_url}')"

    def search_params(self, collection: str, rows: int) -> list[tuple[str, str]]:
        """Query parameters for a collection metadata search."""
        return [
            ("q", f"collection:{collection}"),
            ("fl[]", "identifier"),
            ("fl[]", "oai_updatedate"),
            ("sort[]", "identifier asc"),
            ("rows", str(rows)),
            ("output", "json"),
        ]

    def query(self, target: str, limit: int) -> dict:
        """
        Fetch the raw search response for a collection.

        Raises:
            ArchiveAPIError: On network failure, HTTP error or invalid JSON
        """
        url = f"{self.base_url}{self.SEARCH_ENDPOINT}"
        params = self.search_params(target, limit)
        logger.debug(f"URL: {url} params={params}")

        try:
            response = self._session.get(
                url,
                params=params,
                headers={"Accept": "application/json"},
                timeout=(self.connect_timeout, self.catalog_max_duration),
            )
        except requests.exceptions.RequestException as e:
            raise ArchiveAPIError(
                f"Search request for {target} failed: {e}", kind=FailureKind.TRANSIENT
            ) from e

        self._raise_for_status(response, f"search {target}")

        try:
            data = response.json()
        except ValueError as e:
            raise ArchiveAPIError(
                f"Invalid JSON response for {target}: {e}", kind=FailureKind.MALFORMED
            ) from e

        if not isinstance(data, dict):
            raise ArchiveAPIError(
                f"Unexpected response body for {target}: {type(data).__name__}",
                kind=FailureKind.MALFORMED,
            )

        num_found = (data.get("response") or {}).get("numFound")
        logger.info(f"Found {num_found} items in collection {target}")
        return data

    def parse_catalog(self, payload: dict) -> list[ItemRecord]:
        return list(SearchResponse.from_api_response(payload).items)

    def download_url(self, identifier: str) -> str:
        return f"{self.base_url}{self.COMPRESS_ENDPOINT.format(identifier=identifier)}"

    def retrieve(self, identifier: str, destination: Path) -> None:
        """
        Stream an item's zip archive to destination.

        Raises:
            ArchiveAPIError: On network failure, HTTP error or timeout
            OSError: If the destination cannot be written
        """
        url = self.download_url(identifier)
        logger.debug(f"From: {url}")
        started = time.monotonic()

        try:
            with self._session.get(
                url,
                stream=True,
                allow_redirects=True,
                timeout=(self.connect_timeout, self.transfer_max_duration),
            ) as response:
                self._raise_for_status(response, f"download {identifier}")

                with open(destination, "wb") as f:
                    for chunk in response.iter_content(chunk_size=self.CHUNK_SIZE):
                        if time.monotonic() - started > self.transfer_max_duration:
                            raise ArchiveAPIError(
                                f"Download of {identifier} exceeded "
                                f"{self.transfer_max_duration:.0f}s",
                                kind=FailureKind.TRANSIENT,
                            )
                        if chunk:
                            f.write(chunk)
        except requests.exceptions.RequestException as e:
            raise ArchiveAPIError(
                f"Download of {identifier} failed: {e}", kind=FailureKind.TRANSIENT
            ) from e

    def artifact_name(self, identifier: str) -> str:
        return f"{identifier}{self.ARTIFACT_EXTENSION}"

    def working_dir_name(self, target: str) -> str:
        return target

    def _raise_for_status(self, response: requests.Response, operation: str) -> None:
        if response.status_code == 200:
            return

        kind = classify_http_status(response.status_code)
        messages = {
            FailureKind.NOT_FOUND: "not found",
            FailureKind.RATE_LIMITED: "rate limited, please try again later",
            FailureKind.TRANSIENT: "server error, please try again later",
        }
        detail = messages.get(kind, "unexpected HTTP status code")
        raise ArchiveAPIError(
            f"Request to {operation} failed with HTTP {response.status_code}: {detail}",
            kind=kind,
            status_code=response.status_code,
        )

    def close(self) -> None:
        """Close the HTTP session."""
        self._session.close()
        logger.debug("Archive client session closed")

    def __enter__(self) -> "ArchiveClient":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
