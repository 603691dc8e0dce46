# Understood/src/routes/slack_events.py
# @ai-rules:
# 1. [Constraint]: Signature is verified on the RAW body before json parsing. Failure -> 401, nothing else runs.
# 2. [Pattern]: Acknowledge fast with {"ok": true}; the pipeline runs as a BackgroundTask after the response.
# 3. [Gotcha]: Slack retries on slow acks (X-Slack-Retry-Num). Retries still go through admission, which drops them.
"""
Slack Events API webhook.

Handles the url_verification handshake and event_callback envelopes.
"""
from __future__ import annotations

import json
import logging

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request

from ..agents.pipeline import EventPipeline
from ..auth import SignatureError, SlackRequestVerifier
from ..dependencies import get_pipeline, get_verifier

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/slack", tags=["slack"])


@router.post("/events")
async def slack_events(
    request: Request,
    background_tasks: BackgroundTasks,
    verifier: SlackRequestVerifier = Depends(get_verifier),
    pipeline: EventPipeline = Depends(get_pipeline),
) -> dict:
    """Verify, acknowledge, and hand the envelope to the pipeline."""
    raw = (await request.body()).decode("utf-8")
    try:
        verifier.verify(
            raw,
            request.headers.get("X-Slack-Request-Timestamp", ""),
            request.headers.get("X-Slack-Signature", ""),
        )
    except SignatureError as e:
        raise HTTPException(status_code=401, detail=str(e))

    try:
        envelope = json.loads(raw)
    except json.JSONDecodeError:
        raise HTTPException(status_code=400, detail="Malformed JSON body")

    if envelope.get("type") == "url_verification":
        return {"challenge": envelope.get("challenge", "")}

    if envelope.get("type") != "event_callback":
        logger.debug(f"Ignoring envelope type {envelope.get('type')}")
        return {"ok": True}

    retry = request.headers.get("X-Slack-Retry-Num")
    if retry:
        logger.info(f"Slack retry #{retry} for {envelope.get('event_id')}")

    background_tasks.add_task(pipeline.handle, envelope)
    return {"ok": True}
