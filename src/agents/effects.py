# Understood/src/agents/effects.py
# @ai-rules:
# 1. [Constraint]: Payload shapes here are the contract with Dispatcher.execute(). Change both together.
# 2. [Pattern]: Record payloads are model_dump(mode="json") so they survive any transport and re-validate cleanly.
"""Side-effect constructors used by agents."""
from __future__ import annotations

from typing import Any, Optional

from ..models import (
    CopyFeedbackRecord,
    Exemplar,
    GenerationRecord,
    SideEffect,
    SideEffectType,
)
from .security import sanitize


def add_brand_note(channel_id: str, slack_user_id: str, text: str) -> SideEffect:
    """Note text is sanitized here; the store persists it as given."""
    return SideEffect(
        type=SideEffectType.ADD_BRAND_NOTE,
        payload={"channel_id": channel_id, "slack_user_id": slack_user_id, "text": sanitize(text)},
    )


def save_generation(generation: GenerationRecord) -> SideEffect:
    return SideEffect(type=SideEffectType.SAVE_GENERATION, payload={"generation": generation.model_dump(mode="json")})


def update_profile(channel_id: str, fields: dict[str, Any]) -> SideEffect:
    return SideEffect(type=SideEffectType.UPDATE_PROFILE, payload={"channel_id": channel_id, "fields": fields})


def update_customer(slack_user_id: str, **fields: Any) -> SideEffect:
    return SideEffect(
        type=SideEffectType.UPDATE_CUSTOMER,
        payload={"slack_user_id": slack_user_id, "fields": fields},
    )


def save_copy_feedback(record: CopyFeedbackRecord) -> SideEffect:
    return SideEffect(type=SideEffectType.SAVE_COPY_FEEDBACK, payload={"record": record.model_dump(mode="json")})


def save_exemplar(exemplar: Exemplar) -> SideEffect:
    return SideEffect(type=SideEffectType.SAVE_EXEMPLAR, payload={"exemplar": exemplar.model_dump(mode="json")})


def update_generation_meta(
    channel_id: str,
    message_ts: str,
    agent_turns: Optional[int] = None,
    agent_duration_ms: Optional[int] = None,
    quality_issues: Optional[list[str]] = None,
) -> SideEffect:
    fields = {
        "agent_turns": agent_turns,
        "agent_duration_ms": agent_duration_ms,
        "quality_issues": quality_issues,
    }
    return SideEffect(
        type=SideEffectType.UPDATE_GENERATION_META,
        payload={
            "channel_id": channel_id,
            "message_ts": message_ts,
            "fields": {k: v for k, v in fields.items() if v is not None},
        },
    )
