"""
Event handlers - routing events to the projector.
"""

from search_core.handlers.router import EventRouter, handle_event

__all__ = ["EventRouter", "handle_event"]
