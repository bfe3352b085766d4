"""
Search-owned persistence models.

These tables are OWNED by the search side.
The projector writes to them, the search API only reads from them.
"""

from search_core.persistence.models import (
    ParkedEvent,
    ProcessedEvent,
    SearchBase,
    SearchItem,
    SearchStatus,
)
from search_core.persistence.repo import SearchRepository

__all__ = [
    "SearchBase",
    "SearchItem",
    "SearchStatus",
    "ProcessedEvent",
    "ParkedEvent",
    "SearchRepository",
]
