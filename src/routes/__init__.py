# Understood/src/routes/__init__.py
"""API routes for Understood."""
from .slack_events import router as slack_events_router

__all__ = [
    "slack_events_router",
]
