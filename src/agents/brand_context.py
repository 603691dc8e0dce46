# Understood/src/agents/brand_context.py
# @ai-rules:
# 1. [Pattern]: Regex categories first, fast-model classification only when none match. Model failure -> general_context.
# 2. [Constraint]: conversational messages are acknowledged silently: no note, no reply.
# 3. [Gotcha]: Notes are stored as "[category] text". The learning fallback and prompts read that prefix.
"""Brand context agent: classify free-text brand info and store it as a note."""
from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, Optional

from ..models import AgentResult, BrandContext, EventContext, OutboundMessage, VoiceProfile
from . import effects
from .prompts import run_prompt
from .security import sanitize

if TYPE_CHECKING:
    from .llm import LLMPort

logger = logging.getLogger(__name__)

CONVERSATIONAL_MAX_CHARS = 30
CONVERSATIONAL_RE = re.compile(r"\b(thanks|thank you|cool|ok|okay|got it|nice|great)\b", re.IGNORECASE)

# Checked in order, first match wins
CATEGORY_PATTERNS: list[tuple[str, re.Pattern]] = [
    ("pricing_update", re.compile(r"\$\d|price|pricing|cost|per\s*month|/mo\b", re.IGNORECASE)),
    ("new_restriction", re.compile(r"never\s*(say|use|mention)|don'?t\s*(say|use|mention)|avoid|\bban", re.IGNORECASE)),
    ("tone_guidance", re.compile(r"\b(tone|sound|feel|vibe|voice|style)\b", re.IGNORECASE)),
    ("product_update", re.compile(r"launch|new\s*(feature|product)|just\s*released|now\s*offer", re.IGNORECASE)),
    ("temporary_promo", re.compile(
        r"\bsale\b|discount|promo|limited\s*time|black\s*friday|holiday|percent\s*off|\d+%\s*off",
        re.IGNORECASE,
    )),
]

LLM_CATEGORIES = (
    "pricing_update", "new_restriction", "tone_guidance", "product_update",
    "temporary_promo", "general_context", "conversational",
)

PRICE_RE = re.compile(r"\$[\d,.]*\d(?:/mo(?:nth)?)?")

CATEGORY_RESPONSES = {
    "pricing_update": "Noted. I'll use this pricing in future copy.",
    "tone_guidance": "Noted. I'll adjust the tone in future copy.",
    "product_update": "Noted. I'll work this into future copy.",
    "temporary_promo": "Noted. I'll work this promotion into copy. Tell me when it ends and I'll stop using it.",
    "new_restriction": "Noted. I'll avoid that in all future copy.",
    "general_context": "Noted. I'll keep this in mind for future copy.",
}


def classify_deterministic(text: str) -> Optional[str]:
    if len(text) < CONVERSATIONAL_MAX_CHARS and CONVERSATIONAL_RE.search(text):
        return "conversational"
    for category, pattern in CATEGORY_PATTERNS:
        if pattern.search(text):
            return category
    return None


def detect_price_contradiction(text: str, profile: VoiceProfile) -> Optional[str]:
    """Ask before trusting a price that differs from one baked into the mandatory phrases."""
    new_price = PRICE_RE.search(text)
    if not new_price:
        return None
    for phrase in profile.mandatory_phrases:
        existing = PRICE_RE.search(phrase)
        if existing and existing.group(0) != new_price.group(0):
            return (
                "Noted. I'll keep this in mind for future copy.\n\n"
                f'_Your mandatory phrases include "{phrase}" but you just mentioned {new_price.group(0)}. '
                "Should I update your voice profile to use the new pricing?_"
            )
    return None


class BrandContextAgent:

    def __init__(self, llm: "LLMPort"):
        self.llm = llm

    async def classify(self, text: str) -> str:
        category = classify_deterministic(text)
        if category:
            return category
        try:
            reply = await run_prompt(self.llm, "brand_context_classify", sanitize(text))
        except Exception as e:
            logger.warning(f"Brand context classifier failed, using general_context: {e}")
            return "general_context"
        cleaned = reply.strip().strip('"').lower()
        return cleaned if cleaned in LLM_CATEGORIES else "general_context"

    async def handle(self, ctx: EventContext, brand: BrandContext, meta: Optional[dict] = None) -> AgentResult:
        text = (ctx.text or "").strip()
        if not text:
            return AgentResult()

        category = await self.classify(text)
        if category == "conversational":
            return AgentResult()

        logger.info(f"Brand context [{category}] from {ctx.user_id} in {ctx.channel_id}")
        reply = None
        if brand.profile is not None:
            reply = detect_price_contradiction(text, brand.profile)
        if reply is None:
            reply = CATEGORY_RESPONSES.get(category, CATEGORY_RESPONSES["general_context"])

        return AgentResult(
            messages=[OutboundMessage(channel=ctx.channel_id, text=reply, thread_ts=ctx.reply_ts)],
            side_effects=[effects.add_brand_note(ctx.channel_id, ctx.user_id, f"[{category}] {text}")],
        )
