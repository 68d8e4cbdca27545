"""
Internet Archive data models.

Parses advancedsearch.php JSON responses into item records.
"""

import logging
from dataclasses import dataclass

from ..sync.models import ItemRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SearchResponse:
    """
    Parsed advancedsearch response.

    Attributes:
        num_found: Total matches reported by the server
        items: Items in server order (identifier ascending)
    """
    num_found: int
    items: tuple[ItemRecord, ...] = ()

    @classmethod
    def from_api_response(cls, data: dict) -> "SearchResponse":
        """
        Create SearchResponse from an advancedsearch JSON body.

        Docs without an identifier are skipped. A missing update date
        becomes an empty marker.

        Raises:
            KeyError, TypeError, ValueError: If the body is not a search response
        """
        response = data["response"]
        num_found = int(response.get("numFound") or 0)

        if num_found == 0:
            return cls(num_found=0)

        items = []
        for doc in response["docs"]:
            identifier = doc.get("identifier")
            if not identifier or not isinstance(identifier, str):
                logger.warning(f"Skipping search result without identifier: {doc}")
                continue

            items.append(ItemRecord(
                identifier=identifier,
                update_marker=latest_update_date(doc.get("oai_updatedate")),
            ))

        return cls(num_found=num_found, items=tuple(items))


def latest_update_date(value) -> str:
    """
    Extract the most recent update date from an oai_updatedate field.

    The field is a list of dates in ascending order, or occasionally a
    single string.
    """
    if isinstance(value, list):
        return str(value[-1]) if value else ""
    if value is None:
        return ""
    return str(value)
