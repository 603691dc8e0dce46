# Understood/src/agents/copy_generation.py
# @ai-rules:
# 1. [Pattern]: Propose-validate-repair loop over one chat session. The model proposes via tools; tools.py validates.
# 2. [Constraint]: Bounded by MAX_TURNS model calls and MAX_DURATION_MS wall time. Budget exhaustion is NOT an error.
# 3. [Gotcha]: Every tool_use of a turn is answered in ONE chat_report_tool_results() call, in call order.
# 4. [Gotcha]: 0 accepted variants is the only hard failure. A loop exception with variants in hand degrades gracefully.
# 5. [Pattern]: COPY_REQUIRE_EXEMPLARS_FIRST gates submit_variant/review_set behind fetch_exemplars (off by default).
# 6. [Pattern]: Every LEARNING_EVERY_N_GENERATIONS-th saved generation sets trigger_learning for a periodic review (0 disables).
"""
Copy Generation Agent -- tool-validated agent loop producing 4 ad copy variants.

Workflow the model is steered through:
    fetch_exemplars -> submit_variant x4 -> review_set -> (replace + review_set)
"""
from __future__ import annotations

import logging
import os
import re
from typing import TYPE_CHECKING, Optional

from ..channels.formatter import format_variants
from ..models import (
    AgentResult,
    BrandContext,
    EventContext,
    GenerationRecord,
    OutboundMessage,
    SourceType,
    VoiceProfile,
)
from . import effects
from .llm import COPY_TOOL_SCHEMAS, FETCH_EXEMPLARS_SCHEMA
from .prompts import get_prompt
from .security import sanitize
from .tools import MAX_VARIANTS, AgentLoopState, execute_tool

if TYPE_CHECKING:
    from ..state.store import BrandStore
    from .llm import LLMPort

logger = logging.getLogger(__name__)

MAX_TURNS = 12
MAX_DURATION_MS = 100_000
COPY_REQUIRE_EXEMPLARS_FIRST = os.getenv("COPY_REQUIRE_EXEMPLARS_FIRST", "false").lower() == "true"
LEARNING_EVERY_N_GENERATIONS = int(os.getenv("LEARNING_EVERY_N_GENERATIONS", "5"))

NO_PROFILE_MESSAGE = (
    "I don't have a brand profile for this channel yet. Say *setup* to get started; it takes about 3 minutes."
)
NO_CONTENT_MESSAGE = "Something went wrong: I couldn't extract any content from that file."
DEFAULT_ANGLES = "1. Cost savings\n2. Time savings\n3. Quality\n4. Convenience"
ANGLE_PREF_RE = re.compile(r"^\[angle_preference\].*$", re.MULTILINE)

WORKFLOW = (
    "1. Call fetch_exemplars FIRST to see past approved copy and learn from what worked\n"
    "2. Write variants ONE AT A TIME with submit_variant ({n} total)\n"
    "3. If a variant is rejected, fix every listed issue and resubmit it\n"
    "4. Once {n} are accepted, call review_set to validate the whole set\n"
    "5. If review_set fails, resubmit the flagged variant(s) with replace_index, then call review_set again\n"
    "6. When review_set passes, stop and reply with one short sentence"
).format(n=MAX_VARIANTS)

FORMAT_GUIDANCE = {
    SourceType.IMAGE: (
        "This is an IMAGE ad. The copy carries more weight with no video or audio, so write more "
        "descriptive primary text."
    ),
    SourceType.VIDEO: (
        "This is a VIDEO ad. The video does the heavy lifting, so write shorter hooks and punchier primary text."
    ),
}


def _join(items: list[str]) -> str:
    return "; ".join(sanitize(i) for i in items) if items else "(none)"


def build_angles(profile: VoiceProfile, learnings: Optional[str]) -> str:
    if not profile.value_prop_angles:
        return DEFAULT_ANGLES
    angles = "\n".join(f"{i + 1}. {a}" for i, a in enumerate(profile.value_prop_angles))
    prefs = ANGLE_PREF_RE.findall(learnings or "")
    if prefs:
        angles += "\n\nAngle insights from feedback:\n" + "\n".join(prefs)
    return angles


def build_system_prompt(
    profile: VoiceProfile,
    brand: BrandContext,
    source_type: SourceType,
    user_notes: str,
) -> str:
    extra = []
    if brand.brand_notes:
        extra.append(
            "\nADDITIONAL BRAND CONTEXT (from team messages):\n"
            f"<brand_notes>\n{sanitize(brand.brand_notes)}\n</brand_notes>\n"
        )
    if user_notes:
        extra.append(
            "\nUSER NOTES FOR THIS SPECIFIC AD (apply them to shape this copy):\n"
            f"<user_notes>\n{sanitize(user_notes)}\n</user_notes>\n"
        )
    if brand.learnings:
        extra.append(
            "\nLEARNED PATTERNS (from previous feedback, apply proactively):\n"
            f"<learned_patterns>\n{brand.learnings}\n</learned_patterns>\n"
        )

    is_image = source_type == SourceType.IMAGE
    return get_prompt("copy_generation").render(
        source_label="an ad image" if is_image else "a video transcript",
        workflow=WORKFLOW,
        source_kind="image description" if is_image else "transcript",
        business_context=sanitize(profile.full_context),
        tone=sanitize(profile.tone_description),
        headline_patterns=_join(profile.headline_patterns),
        description_patterns=_join(profile.description_patterns),
        primary_text_structure=_join(profile.primary_text_structure),
        mandatory_phrases=_join(profile.mandatory_phrases),
        banned_phrases=_join(profile.banned_phrases),
        cta_language=sanitize(profile.cta_language),
        extra_sections="".join(extra),
        format_guidance=FORMAT_GUIDANCE.get(source_type, FORMAT_GUIDANCE[SourceType.VIDEO]),
        angles=build_angles(profile, brand.learnings),
    )


def build_user_message(source_type: SourceType, content: str, filename: str, image: Optional[dict]) -> list:
    instruction = "Use the tools: fetch_exemplars first, then submit_variant for each, then review_set."
    if source_type == SourceType.IMAGE:
        text = f"Write {MAX_VARIANTS} Meta ad copy variants for this ad image ({filename}). {instruction}"
        if content:
            text += f"\n\nImage description:\n<image_context>\n{sanitize(content)}\n</image_context>"
        return [image, text] if image else [text]
    return [
        f"Write {MAX_VARIANTS} Meta ad copy variants for this video transcript ({filename}):\n\n"
        f"<transcript>\n{sanitize(content)}\n</transcript>\n\n{instruction}"
    ]


class CopyGenerationAgent:
    """Runs the tool-validated loop for one creative and renders the result."""

    def __init__(
        self,
        store: "BrandStore",
        llm: "LLMPort",
        require_exemplars: bool = COPY_REQUIRE_EXEMPLARS_FIRST,
        max_turns: int = MAX_TURNS,
        max_duration_ms: int = MAX_DURATION_MS,
        learning_every: int = LEARNING_EVERY_N_GENERATIONS,
    ):
        self.store = store
        self.llm = llm
        self.require_exemplars = require_exemplars
        self.max_turns = max_turns
        self.max_duration_ms = max_duration_ms
        self.learning_every = learning_every

    async def _periodic_review_due(self, channel_id: str) -> bool:
        if self.learning_every <= 0:
            return False
        # This generation is not saved yet.
        saved = await self.store.count_generations(channel_id) + 1
        return saved % self.learning_every == 0

    async def handle(self, ctx: EventContext, brand: BrandContext, meta: Optional[dict] = None) -> AgentResult:
        meta = meta or {}
        anchor = meta.get("message_ts") or ctx.reply_ts

        if brand.profile is None:
            return _reply(ctx, NO_PROFILE_MESSAGE, anchor)

        content = meta.get("source_content") or ""
        image = meta.get("image")
        if not content and not image:
            return _reply(ctx, NO_CONTENT_MESSAGE, anchor)

        source_type = SourceType(meta.get("source_type") or SourceType.VIDEO.value)
        filename = meta.get("filename") or "upload"

        state = await self.run_loop(
            ctx.channel_id,
            brand.profile,
            build_system_prompt(brand.profile, brand, source_type, meta.get("user_notes") or ""),
            build_user_message(source_type, content, filename, image),
        )

        if not state.variants:
            return _reply(
                ctx,
                "I had trouble generating copy for that file. Try uploading again, "
                "or tell me if something specific looks off.",
                anchor,
            )

        generation = GenerationRecord(
            slack_user_id=ctx.user_id,
            voice_profile_id=brand.profile.id,
            slack_channel_id=ctx.channel_id,
            slack_message_ts=anchor or "",
            video_filename=filename,
            transcript=content or "(image only, no text description)",
            variants=[v.model_dump() for v in state.variants],
            source_type=source_type,
        )
        periodic = await self._periodic_review_due(ctx.channel_id)
        if periodic:
            logger.info(f"Periodic learning review due for {ctx.channel_id}")
        return AgentResult(
            messages=[OutboundMessage(
                channel=ctx.channel_id, text=format_variants(state.variants, filename), thread_ts=anchor,
            )],
            side_effects=[
                effects.save_generation(generation),
                effects.update_generation_meta(
                    ctx.channel_id,
                    anchor or "",
                    agent_turns=state.turns,
                    agent_duration_ms=state.elapsed_ms,
                    quality_issues=state.quality_issues or None,
                ),
            ],
            trigger_learning=periodic,
        )

    async def run_loop(
        self,
        channel_id: str,
        profile: VoiceProfile,
        system_prompt: str,
        user_message: list,
    ) -> AgentLoopState:
        """Drive the model until review passes, it stops calling tools, or the budget runs out.

        Returns the loop state; state.variants holds 0-4 accepted variants.

        Raises:
            Exception: Only when the loop fails before any variant was accepted.
        """
        state = AgentLoopState(require_exemplars=self.require_exemplars)
        prompt = get_prompt("copy_generation")
        session = self.llm.create_chat(
            system_prompt=system_prompt,
            tools=[FETCH_EXEMPLARS_SCHEMA] if self.require_exemplars else COPY_TOOL_SCHEMAS,
            model=prompt.model,
            temperature=prompt.temperature,
            max_output_tokens=prompt.max_tokens,
        )
        tools_unlocked = not self.require_exemplars

        try:
            state.turns = 1
            response = await self.llm.chat_send(session, user_message)

            while True:
                calls = response.function_calls
                if not calls:
                    logger.debug(f"Agent loop: model finished at turn {state.turns} ({response.stop_reason})")
                    break

                results: list[tuple[str, str]] = []
                for call in calls:
                    result = await execute_tool(call, state, profile, self.store, channel_id)
                    logger.debug(f"Agent loop turn {state.turns}: {call.name} -> success={result.success}")
                    results.append((call.id or call.name, result.to_json()))

                if not tools_unlocked and state.exemplars_fetched:
                    self.llm.set_chat_tools(session, COPY_TOOL_SCHEMAS)
                    tools_unlocked = True

                if state.review_passed:
                    break
                if state.turns >= self.max_turns:
                    logger.warning(
                        f"Agent loop: turn budget exhausted ({state.turns}) with {len(state.variants)} variants"
                    )
                    break
                if state.elapsed_ms >= self.max_duration_ms:
                    logger.warning(
                        f"Agent loop: time budget exhausted ({state.elapsed_ms}ms) with {len(state.variants)} variants"
                    )
                    break

                state.turns += 1
                response = await self.llm.chat_report_tool_results(session, results)
        except Exception as e:
            if not state.variants:
                raise
            logger.error(f"Agent loop error after {len(state.variants)} variants, using partial set: {e}")
        finally:
            self.llm.close_chat(session)

        logger.info(
            f"Agent loop done: {len(state.variants)} variants, {state.turns} turns, "
            f"{state.elapsed_ms}ms, review_passed={state.review_passed}"
        )
        return state


def _reply(ctx: EventContext, text: str, thread_ts: Optional[str]) -> AgentResult:
    return AgentResult(messages=[OutboundMessage(channel=ctx.channel_id, text=text, thread_ts=thread_ts)])
