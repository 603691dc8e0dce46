# Understood/tests/conftest.py
# @ai-rules:
# 1. [Constraint]: No test touches Redis, Slack or an LLM. Everything goes through the stubs below.
# 2. [Pattern]: StubStore mirrors the BrandStore method surface, in memory. Keep signatures in sync.
# 3. [Pattern]: StubLLM is scripted: queue replies for generate() and LLMResponses for the chat session API.
"""Shared stubs and fixtures for the Understood test suite."""
from __future__ import annotations

import time
from typing import Any, Callable, Optional, Union

import pytest

from src.agents.llm import FunctionCall, LLMResponse
from src.models import (
    BrandContext,
    BrandNote,
    CopyFeedbackRecord,
    CustomerState,
    EventContext,
    EventKind,
    Exemplar,
    GenerationRecord,
    LearningInsight,
    VoiceProfile,
)


# =========================================================================
# Store
# =========================================================================

class StubStore:
    """In-memory BrandStore."""

    def __init__(self):
        self.admitted: set[str] = set()
        self.profiles: dict[str, VoiceProfile] = {}
        self.customers: dict[str, CustomerState] = {}
        self.notes: dict[str, list[BrandNote]] = {}
        self.generations: dict[tuple[str, str], GenerationRecord] = {}
        self.feedback: dict[str, list[CopyFeedbackRecord]] = {}
        self.insights: dict[str, LearningInsight] = {}
        self.exemplars: dict[str, list[Exemplar]] = {}

    async def admit_event(self, event_id: str) -> bool:
        if event_id in self.admitted:
            return False
        self.admitted.add(event_id)
        return True

    async def get_profile(self, channel_id: str) -> Optional[VoiceProfile]:
        return self.profiles.get(channel_id)

    async def upsert_profile(self, channel_id: str, fields: dict[str, Any]) -> VoiceProfile:
        current = self.profiles[channel_id].model_dump() if channel_id in self.profiles else {}
        current.update(fields)
        current["channel_id"] = channel_id
        profile = VoiceProfile.model_validate(current)
        self.profiles[channel_id] = profile
        return profile

    async def get_customer(self, slack_user_id: str) -> Optional[CustomerState]:
        return self.customers.get(slack_user_id)

    async def get_or_create_customer(self, slack_user_id: str) -> CustomerState:
        if slack_user_id not in self.customers:
            self.customers[slack_user_id] = CustomerState(slack_user_id=slack_user_id)
        return self.customers[slack_user_id]

    async def save_customer(self, customer: CustomerState) -> None:
        self.customers[customer.slack_user_id] = customer

    async def update_customer(self, slack_user_id: str, fields: dict[str, Any]) -> CustomerState:
        customer = await self.get_or_create_customer(slack_user_id)
        data = customer.model_dump()
        fields = dict(fields)
        answers = fields.pop("answers", None)
        data.update(fields)
        if answers is not None:
            data["answers"] = {**data.get("answers", {}), **answers} if answers else {}
        updated = CustomerState.model_validate(data)
        self.customers[slack_user_id] = updated
        return updated

    async def add_brand_note(self, channel_id: str, slack_user_id: str, text: str) -> None:
        self.notes.setdefault(channel_id, []).append(
            BrandNote(channel_id=channel_id, slack_user_id=slack_user_id, note=text)
        )

    async def get_brand_notes(self, channel_id: str) -> list[BrandNote]:
        return list(self.notes.get(channel_id, []))

    async def count_brand_notes(self, channel_id: str) -> int:
        return len(self.notes.get(channel_id, []))

    async def save_generation(self, generation: GenerationRecord) -> None:
        self.generations[(generation.slack_channel_id, generation.slack_message_ts)] = generation

    async def get_generation(self, channel_id: str, message_ts: str) -> Optional[GenerationRecord]:
        return self.generations.get((channel_id, message_ts))

    async def update_generation_meta(self, channel_id: str, message_ts: str, fields: dict[str, Any]) -> bool:
        generation = self.generations.get((channel_id, message_ts))
        if generation is None:
            return False
        self.generations[(channel_id, message_ts)] = generation.model_copy(update=fields)
        return True

    async def count_generations(self, channel_id: str) -> int:
        return len([g for (c, _), g in self.generations.items() if c == channel_id])

    async def list_generations(
        self, channel_id: str, limit: int = 20, source_type: Optional[str] = None,
    ) -> list[GenerationRecord]:
        gens = [g for (c, _), g in self.generations.items() if c == channel_id]
        if source_type is not None:
            gens = [g for g in gens if g.source_type.value == source_type]
        gens.sort(key=lambda g: g.created_at, reverse=True)
        return gens[:limit]

    async def add_copy_feedback(self, record: CopyFeedbackRecord) -> None:
        self.feedback.setdefault(record.channel_id, []).append(record)

    async def list_copy_feedback(self, channel_id: str, limit: int = 50) -> list[CopyFeedbackRecord]:
        return list(reversed(self.feedback.get(channel_id, [])))[:limit]

    async def get_insight(self, insight_id: str) -> Optional[LearningInsight]:
        return self.insights.get(insight_id)

    async def list_insights(self, channel_id: str) -> list[LearningInsight]:
        return [i for i in self.insights.values() if i.channel_id == channel_id]

    async def get_active_insights(self, channel_id: str) -> list[LearningInsight]:
        active = [i for i in await self.list_insights(channel_id) if i.active]
        active.sort(key=lambda i: i.confidence, reverse=True)
        return active

    async def insert_insight(self, insight: LearningInsight) -> LearningInsight:
        self.insights[insight.id] = insight
        return insight

    async def reinforce_insight(self, insight_id: str) -> Optional[LearningInsight]:
        insight = self.insights.get(insight_id)
        if insight is None or not insight.active:
            return None
        insight.confidence = min(1.0, round(insight.confidence + 0.05, 4))
        insight.sample_size += 1
        insight.version += 1
        insight.last_reinforced_at = time.time()
        return insight

    async def supersede_insight(self, old_id: str, new: LearningInsight) -> Optional[LearningInsight]:
        old = self.insights.get(old_id)
        if old is None or not old.active:
            return None
        new.active = True
        new.version = 1
        new.channel_id = old.channel_id
        old.active = False
        old.superseded_by = new.id
        self.insights[new.id] = new
        return new

    async def save_exemplar(self, exemplar: Exemplar) -> None:
        self.exemplars.setdefault(exemplar.channel_id, []).append(exemplar)

    async def get_exemplars(self, channel_id: str, limit: int = 5) -> list[Exemplar]:
        exemplars = [e for e in self.exemplars.get(channel_id, []) if e.active]
        exemplars.sort(key=lambda e: (e.score, e.created_at), reverse=True)
        return exemplars[:limit]


# =========================================================================
# LLM
# =========================================================================

Scripted = Union[str, LLMResponse, Exception, Callable[..., Any]]


class StubLLM:
    """Scripted LLMPort. generate() pops `replies`; the chat API pops `chat_responses`."""

    def __init__(self, replies: Optional[list[Scripted]] = None, chat_responses: Optional[list[Scripted]] = None):
        self.replies: list[Scripted] = list(replies or [])
        self.chat_responses: list[Scripted] = list(chat_responses or [])
        self.generate_calls: list[dict] = []
        self.chat_calls: list[tuple[str, Any]] = []
        self.tool_results: list[list[tuple[str, str]]] = []
        self.tool_sets: list[list[dict] | None] = []
        self.closed: list[str] = []
        self._sessions = 0

    @staticmethod
    def _resolve(item: Scripted, *args: Any) -> LLMResponse:
        if isinstance(item, Exception):
            raise item
        if callable(item) and not isinstance(item, LLMResponse):
            item = item(*args)
        if isinstance(item, LLMResponse):
            return item
        return LLMResponse(text=item)

    async def generate(
        self,
        system_prompt: str,
        contents: str | list,
        tools: list[dict] | None = None,
        model: str | None = None,
        temperature: float = 0.7,
        max_output_tokens: int = 4000,
    ) -> LLMResponse:
        self.generate_calls.append({"system_prompt": system_prompt, "contents": contents, "model": model})
        if not self.replies:
            return LLMResponse(text="")
        return self._resolve(self.replies.pop(0), system_prompt, contents)

    def create_chat(
        self,
        system_prompt: str,
        tools: list[dict] | None = None,
        model: str | None = None,
        temperature: float = 0.7,
        max_output_tokens: int = 4000,
    ) -> str:
        self._sessions += 1
        self.tool_sets.append(tools)
        return f"session-{self._sessions}"

    async def _next_chat(self, session_id: str) -> LLMResponse:
        if not self.chat_responses:
            return LLMResponse(text="done", stop_reason="end_turn")
        return self._resolve(self.chat_responses.pop(0), session_id)

    async def chat_send(self, session_id: str, contents: str | list) -> LLMResponse:
        self.chat_calls.append(("send", contents))
        return await self._next_chat(session_id)

    async def chat_report_tool_results(self, session_id: str, results: list[tuple[str, str]]) -> LLMResponse:
        self.chat_calls.append(("tool_results", results))
        self.tool_results.append(results)
        return await self._next_chat(session_id)

    def set_chat_tools(self, session_id: str, tools: list[dict] | None) -> None:
        self.tool_sets.append(tools)

    def close_chat(self, session_id: str) -> None:
        self.closed.append(session_id)


def tool_call(name: str, call_id: str = "", **args: Any) -> LLMResponse:
    """One assistant turn carrying a single tool call."""
    return LLMResponse(function_calls=[FunctionCall(name=name, args=args, id=call_id or f"tu_{name}")], stop_reason="tool_use")


# =========================================================================
# Slack
# =========================================================================

class StubSlack:
    """Recording SlackClient."""

    def __init__(self, bot_user: str = "UBOT"):
        self.bot_user = bot_user
        self.posted: list[dict] = []
        self.updated: list[dict] = []
        self.pinned: list[tuple[str, str]] = []
        self.file_info: dict = {}
        self.file_bytes: bytes = b""
        self.messages: dict[tuple[str, str], dict] = {}
        self.thread_replies: list[dict] = []
        self.fail_posts = False
        self._ts = 1000

    async def bot_user_id(self) -> str:
        return self.bot_user

    async def post_message(self, channel: str, text: str, thread_ts: Optional[str] = None) -> Optional[str]:
        if self.fail_posts:
            raise RuntimeError("slack is down")
        self._ts += 1
        ts = f"{self._ts}.000100"
        self.posted.append({"channel": channel, "text": text, "thread_ts": thread_ts, "ts": ts})
        return ts

    async def update_message(self, channel: str, ts: str, text: str) -> None:
        self.updated.append({"channel": channel, "ts": ts, "text": text})

    async def pin_message(self, channel: str, ts: str) -> None:
        self.pinned.append((channel, ts))

    async def get_file_info(self, file_id: str) -> dict:
        return self.file_info

    async def get_message(self, channel: str, ts: str) -> Optional[dict]:
        return self.messages.get((channel, ts))

    async def get_thread_replies(self, channel: str, thread_ts: str) -> list[dict]:
        return self.thread_replies

    async def download_file(self, url: str) -> bytes:
        return self.file_bytes


# =========================================================================
# Factories
# =========================================================================

CHANNEL = "C123"
USER = "U456"


def make_ctx(
    text: str = "",
    kind: EventKind = EventKind.MESSAGE,
    thread_ts: Optional[str] = None,
    ts: str = "1700000000.000100",
    is_dm: bool = False,
    user_id: str = USER,
    channel_id: str = CHANNEL,
) -> EventContext:
    return EventContext(
        type=kind,
        team_id="T1",
        bot_user_id="UBOT",
        user_id=user_id,
        channel_id=channel_id,
        text=text,
        thread_ts=thread_ts,
        parent_ts=thread_ts or ts,
        ts=ts,
        is_dm=is_dm,
        is_thread=thread_ts is not None,
    )


def make_profile(**overrides: Any) -> VoiceProfile:
    fields: dict[str, Any] = {
        "channel_id": CHANNEL,
        "name": "Brightside Coffee",
        "tone_description": "Warm, witty, never pushy",
        "headline_patterns": ["Short benefit-led lines"],
        "mandatory_phrases": [],
        "banned_phrases": ["synergy"],
        "value_prop_angles": ["Freshness", "Convenience", "Taste", "Price"],
        "cta_language": "Shop Now",
        "full_context": "Brand: Brightside Coffee\nWhat they sell: small-batch coffee subscriptions",
    }
    fields.update(overrides)
    return VoiceProfile(**fields)


PRIMARY_TEXTS = [
    "Roasted on Monday, delivered by Thursday, sipped on Friday morning.\n\n"
    "Every bag is packed within hours of the roaster cooling down.\n\n"
    "Freshness you can smell the second the box opens.",
    "Skip the grocery aisle and the guesswork about what to buy next.\n\n"
    "Pick a rhythm that suits your kitchen schedule and forget about it.\n\n"
    "We handle the reminders, shipping, and the small print for you.",
    "Chocolate, cherry, caramel notes in a single morning mug.\n\n"
    "Our tasting panel rejects nine lots for every one we actually ship.\n\n"
    "Taste the difference that obsessive sourcing really makes.",
    "Cafe quality coffee costs less than your weekly latte habit.\n\n"
    "Subscribers save twenty percent on every single shipment.\n\n"
    "Cancel whenever life changes direction, no awkward phone calls.",
]
ANGLES = ["Freshness", "Convenience", "Taste", "Price"]
HEADLINES = ["Roasted This Week", "Coffee On Autopilot", "Taste The Origin", "Better Than Your Latte"]


def variant_args(i: int, **overrides: Any) -> dict:
    args = {
        "angle": ANGLES[i],
        "headline": HEADLINES[i],
        "description": "Fresh coffee, delivered.",
        "primary_text": PRIMARY_TEXTS[i],
    }
    args.update(overrides)
    return args


def make_generation(source_type: str = "video", ts: str = "1700000000.000100", **overrides: Any) -> GenerationRecord:
    fields: dict[str, Any] = {
        "slack_channel_id": CHANNEL,
        "slack_message_ts": ts,
        "video_filename": "launch.mp4",
        "transcript": "Fresh coffee every week.",
        "variants": [variant_args(i) for i in range(4)],
        "source_type": source_type,
    }
    fields.update(overrides)
    return GenerationRecord(**fields)


@pytest.fixture
def store() -> StubStore:
    return StubStore()


@pytest.fixture
def slack() -> StubSlack:
    return StubSlack()


@pytest.fixture
def llm() -> StubLLM:
    return StubLLM()


@pytest.fixture
def profile() -> VoiceProfile:
    return make_profile()


@pytest.fixture
def brand(profile: VoiceProfile) -> BrandContext:
    return BrandContext(profile=profile)
