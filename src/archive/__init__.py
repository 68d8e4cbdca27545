"""Internet Archive API client module."""

from .client import ArchiveClient
from .models import SearchResponse

__all__ = ["ArchiveClient", "SearchResponse"]
