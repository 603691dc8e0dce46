# Understood/src/agents/competitor_analysis.py
# @ai-rules:
# 1. [Pattern]: One generate() call. Output is split on ===WHAT_WORKS=== / ===YOUR_BRIEF=== / ===COPY_DIRECTION===.
# 2. [Pattern]: Saved as a GenerationRecord with source_type=competitor_analysis and ONE analysis dict in variants,
#    so thread replies route to the conversation agent.
# 3. [Gotcha]: Previous-brief patterns need >= MIN_PREVIOUS_ANALYSES earlier analyses, otherwise the section is omitted.
"""Competitor analysis agent: competitor ad -> why it works + brief + copy direction."""
from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, Optional

from ..channels.formatter import format_competitor_analysis
from ..models import (
    AgentResult,
    BrandContext,
    CompetitorAnalysis,
    EventContext,
    GenerationRecord,
    OutboundMessage,
    SourceType,
    VoiceProfile,
)
from . import effects
from .prompts import run_prompt
from .security import sanitize

if TYPE_CHECKING:
    from ..state.store import BrandStore
    from .llm import LLMPort

logger = logging.getLogger(__name__)

PREVIOUS_ANALYSES_LIMIT = 5
MIN_PREVIOUS_ANALYSES = 2
BRIEF_PREVIEW_CHARS = 200
SECTIONS = ("WHAT_WORKS", "YOUR_BRIEF", "COPY_DIRECTION")
SECTION_RE = re.compile(r"===\s*(WHAT_WORKS|YOUR_BRIEF|COPY_DIRECTION)\s*===")


def parse_sections(text: str) -> CompetitorAnalysis:
    """Split the model reply on section markers. No markers at all -> everything is what_works."""
    parts = SECTION_RE.split(text or "")
    if len(parts) == 1:
        return CompetitorAnalysis(what_works=(text or "").strip())
    found: dict[str, str] = {}
    # parts: [preamble, name1, body1, name2, body2, ...]
    for name, body in zip(parts[1::2], parts[2::2]):
        found.setdefault(name, body.strip())
    return CompetitorAnalysis(
        what_works=found.get("WHAT_WORKS", ""),
        your_brief=found.get("YOUR_BRIEF", ""),
        copy_direction=found.get("COPY_DIRECTION", ""),
    )


def describe_brand(profile: VoiceProfile) -> str:
    return (
        f"Business: {sanitize(profile.name)}\n"
        f"{sanitize(profile.full_context)}\n"
        f"Tone: {sanitize(profile.tone_description)}\n"
        f"Key phrases to include: {', '.join(profile.mandatory_phrases) or '(none)'}\n"
        f"Words to avoid: {', '.join(profile.banned_phrases) or '(none)'}\n"
        f"CTA style: {sanitize(profile.cta_language)}"
    )


def summarize_previous(generations: list[GenerationRecord]) -> Optional[str]:
    if len(generations) < MIN_PREVIOUS_ANALYSES:
        return None
    lines = []
    for gen in generations:
        if not gen.variants:
            continue
        brief = str(gen.variants[0].get("your_brief") or "")
        if brief:
            lines.append(f"- {gen.video_filename}: {brief[:BRIEF_PREVIEW_CHARS]}...")
    if len(lines) < MIN_PREVIOUS_ANALYSES:
        return None
    return (
        f"This team has analyzed {len(generations)} competitor ads recently. Previous briefs focused on:\n"
        + "\n".join(lines)
    )


class CompetitorAnalysisAgent:

    def __init__(self, store: "BrandStore", llm: "LLMPort"):
        self.store = store
        self.llm = llm

    async def previous_patterns(self, channel_id: str) -> Optional[str]:
        try:
            generations = await self.store.list_generations(
                channel_id, limit=PREVIOUS_ANALYSES_LIMIT, source_type=SourceType.COMPETITOR_ANALYSIS.value,
            )
        except Exception as e:
            logger.warning(f"Previous analyses lookup failed for {channel_id}: {e}")
            return None
        return summarize_previous(generations)

    async def handle(self, ctx: EventContext, brand: BrandContext, meta: Optional[dict] = None) -> AgentResult:
        meta = meta or {}
        anchor = meta.get("message_ts") or ctx.reply_ts

        if brand.profile is None:
            return _reply(
                ctx,
                "I don't have a brand profile for this channel yet. Say *setup* to get started; it takes about 3 minutes.",
                anchor,
            )

        content = meta.get("source_content") or ""
        if not content:
            return _reply(ctx, "Something went wrong: I couldn't extract any content from that ad.", anchor)

        source_label = meta.get("source_type") or "image"
        if source_label == SourceType.COMPETITOR_ANALYSIS.value:
            source_label = "image"
        filename = meta.get("filename") or "competitor ad"
        user_notes = meta.get("user_notes") or ctx.text or ""

        extra = []
        if brand.brand_notes:
            extra.append(f"\nBRAND CONTEXT (from team messages):\n<brand_notes>\n{sanitize(brand.brand_notes)}\n</brand_notes>\n")
        if user_notes:
            extra.append(
                f"\nWHAT THE USER SAID ABOUT THIS AD:\n<user_commentary>\n{sanitize(user_notes)}\n</user_commentary>\n"
                "Shape the analysis and brief around what caught their eye.\n"
            )
        patterns = await self.previous_patterns(ctx.channel_id)
        if patterns:
            extra.append(
                f"\nCREATIVE DIRECTION PATTERNS (from earlier competitor ads this team shared):\n"
                f"<previous_patterns>\n{patterns}\n</previous_patterns>\n"
                "Calibrate the brief to the styles this team gravitates toward.\n"
            )
        if brand.learnings:
            extra.append(f"\nLEARNED PATTERNS:\n<learned_patterns>\n{brand.learnings}\n</learned_patterns>\n")

        reply = await run_prompt(
            self.llm,
            "competitor_analysis",
            f"Here is the {source_label} ad to analyze:\n\n<{source_label}_analysis>\n{sanitize(content)}\n</{source_label}_analysis>",
            source_label=source_label,
            brand_profile=describe_brand(brand.profile),
            extra_sections="".join(extra),
        )
        if not reply:
            raise ValueError("Competitor analysis returned an empty reply")

        analysis = parse_sections(reply)
        logger.info(f"Competitor analysis for {filename} in {ctx.channel_id} ({len(reply)} chars)")

        generation = GenerationRecord(
            slack_user_id=ctx.user_id,
            voice_profile_id=brand.profile.id,
            slack_channel_id=ctx.channel_id,
            slack_message_ts=anchor or "",
            video_filename=filename,
            transcript=content,
            variants=[analysis.model_dump()],
            source_type=SourceType.COMPETITOR_ANALYSIS,
        )
        return AgentResult(
            messages=[OutboundMessage(
                channel=ctx.channel_id, text=format_competitor_analysis(analysis, filename), thread_ts=anchor,
            )],
            side_effects=[effects.save_generation(generation)],
        )


def _reply(ctx: EventContext, text: str, thread_ts: Optional[str]) -> AgentResult:
    return AgentResult(messages=[OutboundMessage(channel=ctx.channel_id, text=text, thread_ts=thread_ts)])
