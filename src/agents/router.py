# Understood/src/agents/router.py
# @ai-rules:
# 1. [Constraint]: Tier 1 (deterministic) ALWAYS runs first. The LLM is only called for top-level channel
#    messages that are not commands, not competitor links, and longer than LENGTH_FLOOR.
# 2. [Pattern]: First match wins: member_joined -> file_upload -> DM -> thread reply -> top-level.
# 3. [Gotcha]: Any LLM classifier failure degrades to brand_context. Routing never raises for a model error.
# 4. [Gotcha]: Slack wraps links as <https://...|label>. URL_RE stops at ">" and "|".
"""Smart Router: EventContext -> RouteDecision (or None to ignore)."""
from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, Optional

from ..models import EventContext, EventKind, RouteDecision, SourceType
from .commands import parse_command
from .prompts import run_prompt
from .security import sanitize

if TYPE_CHECKING:
    from ..state.store import BrandStore
    from .llm import LLMPort

logger = logging.getLogger(__name__)

LENGTH_FLOOR = 10
URL_RE = re.compile(r"https?://[^\s>|]+", re.IGNORECASE)
COMPETITOR_SIGNAL_RE = re.compile(
    r"love\s*(this|the|that)|inspired|competitor|saw\s*this|how\s*would|break.*down|analy[zs]|style|this\s*ad",
    re.IGNORECASE,
)
CLASSIFIER_LABELS = ("brand_context", "competitor_analysis", "command", "conversation")
CONVERSATION_SOURCES = {SourceType.VIDEO, SourceType.IMAGE, SourceType.COMPETITOR_ANALYSIS}


def extract_url(text: str) -> Optional[str]:
    match = URL_RE.search(text or "")
    return match.group(0) if match else None


class SmartRouter:
    """Two-tier router. Deterministic rules first, LLM classification as the last resort."""

    def __init__(self, store: "BrandStore", llm: "LLMPort"):
        self.store = store
        self.llm = llm

    async def route(self, ctx: EventContext) -> Optional[RouteDecision]:
        if ctx.type == EventKind.MEMBER_JOINED:
            return RouteDecision(
                agent="welcome",
                meta={"is_bot_join": bool(ctx.bot_user_id) and ctx.user_id == ctx.bot_user_id},
            )

        if ctx.type == EventKind.FILE_UPLOAD:
            return RouteDecision(agent="copy_generation", meta={"needs_intent_classification": True})

        text = (ctx.text or "").strip()
        if not text:
            return None

        if ctx.is_dm:
            return await self._route_dm(ctx, text)
        if ctx.is_thread:
            return await self._route_thread(ctx)
        return await self._route_top_level(ctx, text)

    # =========================================================================
    # Tier 1: deterministic
    # =========================================================================

    async def _route_dm(self, ctx: EventContext, text: str) -> RouteDecision:
        customer = await self.store.get_customer(ctx.user_id)
        if (
            customer is not None
            and not customer.onboarding_complete
            and (customer.onboarding_step > 0 or customer.active_thread_type == "onboarding")
        ):
            return RouteDecision(agent="onboarding")
        command = parse_command(text)
        return RouteDecision(agent="command", meta={"command": command or "help"})

    async def _route_thread(self, ctx: EventContext) -> Optional[RouteDecision]:
        customer = await self.store.get_customer(ctx.user_id)
        if (
            customer is not None
            and not customer.onboarding_complete
            and customer.active_thread_type == "onboarding"
            and customer.onboarding_channel_id == ctx.channel_id
            and customer.onboarding_thread_ts == ctx.thread_ts
        ):
            return RouteDecision(agent="onboarding")

        generation = await self.store.get_generation(ctx.channel_id, ctx.thread_ts or "")
        if generation is not None and generation.source_type in CONVERSATION_SOURCES:
            return RouteDecision(agent="conversation", meta={"thread_type": generation.source_type.value})

        logger.debug(f"Ignoring reply in unrecognized thread {ctx.channel_id}:{ctx.thread_ts}")
        return None

    async def _route_top_level(self, ctx: EventContext, text: str) -> RouteDecision:
        command = parse_command(text)
        if command:
            return RouteDecision(agent="command", meta={"command": command})

        url = extract_url(text)
        if url and len(text) > LENGTH_FLOOR and COMPETITOR_SIGNAL_RE.search(text):
            return RouteDecision(agent="competitor_analysis", meta={"url": url, "is_link": True})

        if len(text) <= LENGTH_FLOOR:
            return RouteDecision(agent="command", meta={"command": "fallback"})

        return await self._classify(text, url)

    # =========================================================================
    # Tier 2: LLM fallback
    # =========================================================================

    async def _classify(self, text: str, url: Optional[str]) -> RouteDecision:
        label = await self.classify_message(text)
        logger.info(f"Router LLM fallback classified message as {label}")
        if label == "command":
            return RouteDecision(agent="command", meta={"command": "help"})
        if label == "competitor_analysis":
            meta: dict = {"url": url, "is_link": True} if url else {}
            return RouteDecision(agent="competitor_analysis", meta=meta)
        return RouteDecision(agent="brand_context")

    async def classify_message(self, text: str) -> str:
        """Cheap closed-label classification. Defaults to brand_context on any failure."""
        try:
            reply = await run_prompt(self.llm, "route_classify", sanitize(text))
        except Exception as e:
            logger.warning(f"Router classifier failed, defaulting to brand_context: {e}")
            return "brand_context"
        return _match_label(reply, CLASSIFIER_LABELS, default="brand_context")

    async def classify_upload_intent(self, content_description: str, user_notes: str) -> str:
        """Decide whether an uploaded creative is the brand's own or a competitor's."""
        contents = (
            f"User's message with the upload:\n<user_notes>\n{sanitize(user_notes) or '(none)'}\n</user_notes>\n\n"
            f"Creative content:\n<creative>\n{sanitize(content_description)[:3000]}\n</creative>"
        )
        try:
            reply = await run_prompt(self.llm, "upload_intent", contents)
        except Exception as e:
            logger.warning(f"Upload intent classifier failed, defaulting to own_creative: {e}")
            return "own_creative"
        return _match_label(reply, ("competitor", "own_creative"), default="own_creative")


def _match_label(reply: str, labels: tuple[str, ...], default: str) -> str:
    cleaned = (reply or "").strip().lower()
    for label in labels:
        if cleaned.startswith(label):
            return label
    for label in labels:
        if label in cleaned:
            return label
    return default
