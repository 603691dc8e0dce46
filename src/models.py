# Understood/src/models.py
# @ai-rules:
# 1. [Constraint]: All persisted and pipeline models are Pydantic BaseModel. Use Field() for defaults and descriptions.
# 2. [Pattern]: EventContext is built once by the normalizer and frozen. Agents never mutate it.
# 3. [Pattern]: SideEffect is a closed tagged union: SideEffectType enum + payload dict. Dispatcher switches on type.
# 4. [Gotcha]: GenerationRecord.variants holds CopyVariant dicts for copy threads and ONE CompetitorAnalysis dict for competitor threads.
"""Pydantic schemas for events, brand state, generations and learning."""
from __future__ import annotations

import time
import uuid
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# =============================================================================
# Inbound Events
# =============================================================================

class EventKind(str, Enum):
    """Coarse event kind after normalization."""
    MESSAGE = "message"
    FILE_UPLOAD = "file_upload"
    MEMBER_JOINED = "member_joined"


class FileDescriptor(BaseModel):
    """Attached file reference from a file_shared event."""
    file_id: str
    name: Optional[str] = None
    mimetype: Optional[str] = None
    size: int = 0
    url: Optional[str] = Field(None, description="url_private_download, falling back to url_private")


class EventContext(BaseModel):
    """Canonical view of one inbound chat event. Read-only after normalization."""
    model_config = ConfigDict(frozen=True)

    type: EventKind
    team_id: str
    bot_user_id: str = ""
    user_id: str
    channel_id: str
    text: str = ""
    thread_ts: Optional[str] = Field(None, description="Thread root when the message is a reply")
    parent_ts: Optional[str] = Field(None, description="Anchor for replies: thread_ts, or the message's own ts")
    ts: Optional[str] = None
    file: Optional[FileDescriptor] = None
    is_dm: bool = False
    is_thread: bool = False

    @property
    def reply_ts(self) -> Optional[str]:
        """Thread anchor every reply to this event should use."""
        return self.thread_ts or self.parent_ts


class RouteDecision(BaseModel):
    """Router output: which agent, plus opaque metadata for it."""
    agent: str
    meta: dict[str, Any] = Field(default_factory=dict)


# =============================================================================
# Brand State (persisted)
# =============================================================================

class VoiceProfile(BaseModel):
    """Structured brand voice. Exactly one per channel."""
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    channel_id: str
    slack_user_id: str = ""
    name: str = "Default"
    headline_patterns: list[str] = Field(default_factory=list)
    description_patterns: list[str] = Field(default_factory=list)
    primary_text_structure: list[str] = Field(default_factory=list)
    tone_description: str = ""
    mandatory_phrases: list[str] = Field(default_factory=list)
    banned_phrases: list[str] = Field(default_factory=list)
    value_prop_angles: list[str] = Field(default_factory=list)
    cta_language: str = ""
    full_context: str = ""
    raw_examples: str = ""
    updated_at: float = Field(default_factory=time.time)

    @field_validator(
        "headline_patterns", "description_patterns", "primary_text_structure",
        "mandatory_phrases", "banned_phrases", "value_prop_angles",
        mode="before",
    )
    @classmethod
    def coerce_str_list(cls, v: Any) -> list[str]:
        """LLM extraction sometimes returns objects or a bare string instead of list[str]."""
        if v is None:
            return []
        if isinstance(v, str):
            return [v]
        out = []
        for item in v:
            if isinstance(item, dict):
                out.append(" - ".join(str(x) for x in item.values()))
            else:
                out.append(str(item))
        return out


class CustomerState(BaseModel):
    """Onboarding interview state for one actor."""
    slack_user_id: str
    onboarding_step: int = 0
    onboarding_complete: bool = False
    answers: dict[str, Optional[str]] = Field(default_factory=dict, description="Interview answers keyed by field name")
    copy_examples: str = ""
    active_thread_type: Optional[str] = None
    onboarding_channel_id: Optional[str] = None
    onboarding_thread_ts: Optional[str] = None
    updated_at: float = Field(default_factory=time.time)


class BrandNote(BaseModel):
    """Free-text brand context contributed by any channel member."""
    channel_id: str
    slack_user_id: str = ""
    note: str
    created_at: float = Field(default_factory=time.time)


class CopyVariant(BaseModel):
    """One ad copy variant."""
    angle: str
    headline: str
    description: str
    primary_text: str


class CompetitorAnalysis(BaseModel):
    """Three-section creative brief for a competitor ad."""
    what_works: str = ""
    your_brief: str = ""
    copy_direction: str = ""


class SourceType(str, Enum):
    VIDEO = "video"
    IMAGE = "image"
    COMPETITOR_ANALYSIS = "competitor_analysis"


class GenerationRecord(BaseModel):
    """One processed creative and its output. Keyed by (channel, message ts)."""
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    slack_user_id: str = ""
    voice_profile_id: Optional[str] = None
    slack_channel_id: str
    slack_message_ts: str
    video_filename: str = "upload"
    transcript: str = ""
    variants: list[dict[str, Any]] = Field(default_factory=list)
    source_type: SourceType = SourceType.VIDEO
    agent_turns: Optional[int] = None
    agent_duration_ms: Optional[int] = None
    quality_issues: Optional[list[str]] = None
    created_at: float = Field(default_factory=time.time)

    def copy_variants(self) -> list[CopyVariant]:
        return [CopyVariant(**v) for v in self.variants if "headline" in v]


class FeedbackAction(str, Enum):
    APPROVED = "approved"
    REVISED = "revised"
    REJECTED = "rejected"
    CLARIFICATION_REQUESTED = "clarification_requested"


class CopyFeedbackRecord(BaseModel):
    """Append-only structured feedback against a generation."""
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    channel_id: str
    generation_id: Optional[str] = None
    slack_user_id: str = ""
    action: FeedbackAction
    variant_index: Optional[int] = Field(None, description="1-based variant the feedback targets; None means the whole set")
    feedback_text: str = ""
    before_snapshot: Optional[dict[str, Any]] = None
    after_snapshot: Optional[dict[str, Any]] = None
    approval_reason: Optional[str] = None
    created_at: float = Field(default_factory=time.time)


class InsightCategory(str, Enum):
    ANGLE_PREFERENCE = "angle_preference"
    STYLE_PATTERN = "style_pattern"
    TONE_DRIFT = "tone_drift"
    FORMAT_INSIGHT = "format_insight"


class LearningInsight(BaseModel):
    """A distilled, versioned pattern for a channel. Never deleted, only superseded."""
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    channel_id: str
    category: InsightCategory
    insight: str
    confidence: float = Field(0.5, ge=0.0, le=1.0)
    sample_size: int = 1
    version: int = 1
    active: bool = True
    superseded_by: Optional[str] = None
    created_at: float = Field(default_factory=time.time)
    last_reinforced_at: Optional[float] = None

    @field_validator("confidence", mode="before")
    @classmethod
    def clamp_confidence(cls, v: Any) -> float:
        try:
            value = float(v)
        except (TypeError, ValueError):
            return 0.5
        return max(0.0, min(1.0, value))


class Exemplar(BaseModel):
    """An approved variant kept as a few-shot reference."""
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    channel_id: str
    generation_id: Optional[str] = None
    variant: dict[str, Any]
    source_type: str = "video"
    why_approved: Optional[str] = None
    score: float = 1.0
    active: bool = True
    created_at: float = Field(default_factory=time.time)


# =============================================================================
# Dispatch Contract
# =============================================================================

class Maturity(str, Enum):
    NEW = "new"
    ONBOARDING = "onboarding"
    ACTIVE = "active"


class BrandContext(BaseModel):
    """Read-mostly snapshot assembled once per dispatch."""
    profile: Optional[VoiceProfile] = None
    brand_notes: str = ""
    generation: Optional[GenerationRecord] = None
    learnings: Optional[str] = None
    exemplars: list[Exemplar] = Field(default_factory=list)
    thread_history: Optional[str] = None
    maturity: Maturity = Maturity.NEW


class OutboundMessage(BaseModel):
    """A message an agent wants posted."""
    channel: str
    text: str
    thread_ts: Optional[str] = None
    pin: bool = Field(False, description="Pin the message once posted")


class SideEffectType(str, Enum):
    ADD_BRAND_NOTE = "add_brand_note"
    SAVE_GENERATION = "save_generation"
    UPDATE_PROFILE = "update_profile"
    UPDATE_CUSTOMER = "update_customer"
    SAVE_COPY_FEEDBACK = "save_copy_feedback"
    SAVE_EXEMPLAR = "save_exemplar"
    UPDATE_GENERATION_META = "update_generation_meta"


class SideEffect(BaseModel):
    type: SideEffectType
    payload: dict[str, Any] = Field(default_factory=dict)


class AgentResult(BaseModel):
    """The one return shape every registered agent produces."""
    messages: list[OutboundMessage] = Field(default_factory=list)
    side_effects: list[SideEffect] = Field(default_factory=list)
    trigger_learning: bool = False


# =============================================================================
# API
# =============================================================================

class HealthResponse(BaseModel):
    """Health check response."""
    status: str = "ok"
    learning_queue_dropped: int = 0
