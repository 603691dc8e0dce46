# Understood/src/auth.py
# @ai-rules:
# 1. [Constraint]: Verification runs on the RAW request body before any JSON parsing.
# 2. [Pattern]: Delegates HMAC + replay window to slack_sdk SignatureVerifier (v0:{ts}:{body}, sha256, 5 min).
# 3. [Gotcha]: A missing SLACK_SIGNING_SECRET rejects everything. There is no "dev mode" bypass.
"""Inbound webhook authentication for the Slack Events API."""
from __future__ import annotations

import logging
import os
import time
from typing import Callable, Optional

from slack_sdk.signature import SignatureVerifier

logger = logging.getLogger(__name__)

SLACK_SIGNING_SECRET = os.getenv("SLACK_SIGNING_SECRET", "")


class SignatureError(Exception):
    """Raised when an inbound request fails signature verification."""
    pass


class SlackRequestVerifier:
    """Validates X-Slack-Signature / X-Slack-Request-Timestamp headers."""

    def __init__(
        self,
        signing_secret: Optional[str] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._secret = signing_secret if signing_secret is not None else SLACK_SIGNING_SECRET
        self._verifier = (
            SignatureVerifier(self._secret, clock=_ClockAdapter(clock)) if self._secret else None
        )

    def verify(self, body: str, timestamp: str, signature: str) -> None:
        """Raise SignatureError unless the request is authentic and fresh."""
        if self._verifier is None:
            raise SignatureError("Signing secret not configured")
        if not timestamp or not signature:
            raise SignatureError("Missing signature headers")
        if not timestamp.isdigit():
            raise SignatureError("Malformed timestamp")
        if not self._verifier.is_valid(body=body, timestamp=timestamp, signature=signature):
            logger.warning(f"Rejected Slack request (ts={timestamp})")
            raise SignatureError("Invalid or expired signature")

    def sign(self, body: str, timestamp: str) -> str:
        """Compute the v0 signature for a body. Used by tests and local replay tools."""
        if self._verifier is None:
            raise SignatureError("Signing secret not configured")
        return self._verifier.generate_signature(timestamp=timestamp, body=body)


class _ClockAdapter:
    """slack_sdk expects a Clock object with now()."""

    def __init__(self, fn: Callable[[], float]) -> None:
        self._fn = fn

    def now(self) -> float:
        return self._fn()
