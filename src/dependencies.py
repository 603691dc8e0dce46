# Understood/src/dependencies.py
"""FastAPI dependency injection for Understood."""
from __future__ import annotations

from typing import TYPE_CHECKING, Optional

from .auth import SlackRequestVerifier

if TYPE_CHECKING:
    from .agents.pipeline import EventPipeline

# Global instances (initialized in main.py lifespan)
_pipeline: Optional["EventPipeline"] = None
_verifier: Optional[SlackRequestVerifier] = None


def set_pipeline(pipeline: Optional["EventPipeline"]) -> None:
    """Set the global EventPipeline instance (None until Redis is up)."""
    global _pipeline
    _pipeline = pipeline


async def get_pipeline() -> "EventPipeline":
    """
    Get the EventPipeline instance.

    FastAPI dependency.
    """
    if _pipeline is None:
        raise RuntimeError("EventPipeline not initialized. Check startup sequence.")
    return _pipeline


async def get_verifier() -> SlackRequestVerifier:
    """Request verifier; created lazily from SLACK_SIGNING_SECRET on first request."""
    global _verifier
    if _verifier is None:
        _verifier = SlackRequestVerifier()
    return _verifier
