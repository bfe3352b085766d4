"""
Read-model projection.

The projector writes ONLY to search-owned tables and never calls the
auction service while applying an event.
"""

from search_core.projection.search_projector import SearchProjector

__all__ = ["SearchProjector"]
