# Understood/src/agents/conversation.py
# @ai-rules:
# 1. [Pattern]: Deterministic intent first (approval, why-answer), LLM only for revisions and questions.
# 2. [Constraint]: The GenerationRecord is never rewritten. Revisions are recorded as copy_feedback with before/after snapshots.
# 3. [Gotcha]: "Variant N" targets ONE variant: only that variant is revised and rendered, the others stay untouched.
# 4. [Gotcha]: The why-question is detected from the last [Bot] line of thread history via WHY_QUESTION_MARKER.
# 5. [Pattern]: Every feedback-bearing turn sets trigger_learning. Questions and competitor replies do not.
"""Conversation agent: every reply inside a copy or competitor-analysis thread."""
from __future__ import annotations

import json
import logging
import re
from typing import TYPE_CHECKING, Optional

from ..channels.formatter import (
    DIVIDER,
    format_revised_variant,
    format_thread_reply,
    format_variant_block,
)
from ..models import (
    AgentResult,
    BrandContext,
    CompetitorAnalysis,
    CopyFeedbackRecord,
    CopyVariant,
    EventContext,
    Exemplar,
    FeedbackAction,
    GenerationRecord,
    OutboundMessage,
    SourceType,
    VoiceProfile,
)
from ..utils import parse_llm_json
from . import effects
from .prompts import get_prompt
from .security import sanitize

if TYPE_CHECKING:
    from .llm import LLMPort

logger = logging.getLogger(__name__)

VARIANT_RE = re.compile(r"variant\s*#?\s*(\d+)", re.IGNORECASE)
APPROVAL_RE = re.compile(
    r"\b(approved?|approving|love (it|these|them|this|that)|perfect|ship (it|them)|looks? (great|good)|"
    r"good to go|these work|nailed it|lgtm|great job)\b",
    re.IGNORECASE,
)
CHANGE_RE = re.compile(
    r"\b(but|change|make|more|less|instead|revise|rewrite|shorter|longer|tweak|fix|except|too)\b",
    re.IGNORECASE,
)
REJECTION_RE = re.compile(
    r"\b(hate|terrible|awful|reject|start over|none of these|not (it|right|good|great)|no good|wrong|off[- ]brand)\b",
    re.IGNORECASE,
)
NEGATION_RE = re.compile(r"\b(not|never|no)\b|n't\b", re.IGNORECASE)
CLAUSE_BREAK_RE = re.compile(r"[.!?,;]")
QUESTION_START_RE = re.compile(
    r"^(why|what|how|can|could|would|should|is|are|do|does|did|which|who|when)\b", re.IGNORECASE,
)

WHY_QUESTION_MARKER = "helps me write better copy next time"
THANKS_FOR_REASON = "Thanks, that's really useful. I'll lean into that in future copy."


def _join(items: list[str]) -> str:
    return "; ".join(sanitize(i) for i in items) if items else "(none)"


def named_variant(text: str) -> Optional[int]:
    """The variant number the message names, in range or not."""
    match = VARIANT_RE.search(text or "")
    return int(match.group(1)) if match else None


def target_variant(text: str, count: int) -> Optional[int]:
    index = named_variant(text)
    return index if index is not None and 1 <= index <= count else None


def is_negated_approval(text: str) -> bool:
    """True when a negation precedes the approval word in the same clause ("not approved", "I don't love these")."""
    match = APPROVAL_RE.search(text)
    if not match:
        return False
    clause = CLAUSE_BREAK_RE.split(text[:match.start()])[-1]
    return bool(NEGATION_RE.search(clause))


def is_approval(text: str) -> bool:
    if not APPROVAL_RE.search(text) or CHANGE_RE.search(text) or REJECTION_RE.search(text):
        return False
    return not is_negated_approval(text)


def is_change_request(text: str) -> bool:
    return bool(CHANGE_RE.search(text) or REJECTION_RE.search(text)) or is_negated_approval(text)


def feedback_action(text: str) -> FeedbackAction:
    if REJECTION_RE.search(text) or is_negated_approval(text):
        return FeedbackAction.REJECTED
    return FeedbackAction.REVISED


def out_of_range_message(index: int, count: int) -> str:
    return f"There's no Variant {index} here. This set has Variants 1 to {count}; name one of those and I'll work on it."


def is_question(text: str) -> bool:
    stripped = text.strip()
    return stripped.endswith("?") or bool(QUESTION_START_RE.match(stripped))


def last_bot_line(thread_history: Optional[str]) -> Optional[str]:
    if not thread_history:
        return None
    for line in reversed(thread_history.splitlines()):
        if line.startswith("[Bot]"):
            return line
    return None


def why_question(count: int) -> str:
    subject = "these" if count > 1 else "it"
    return f"What made {subject} work for you? Your answer {WHY_QUESTION_MARKER}."


def render_revised_set(variants: list[CopyVariant]) -> str:
    blocks = [f"{DIVIDER}\n{format_variant_block(i + 1, v)}" for i, v in enumerate(variants)]
    return f"*Revised: {len(variants)} Ad Copy Variants*\n\n" + "\n\n".join(blocks) + f"\n{DIVIDER}"


class ConversationAgent:

    def __init__(self, llm: "LLMPort"):
        self.llm = llm

    async def handle(self, ctx: EventContext, brand: BrandContext, meta: Optional[dict] = None) -> AgentResult:
        if brand.profile is None or brand.generation is None:
            logger.debug(f"Conversation reply without profile/generation in {ctx.channel_id}:{ctx.thread_ts}")
            return AgentResult()

        thread_type = (meta or {}).get("thread_type") or brand.generation.source_type.value
        if thread_type in (SourceType.VIDEO.value, SourceType.IMAGE.value):
            return await self._copy_thread(ctx, brand)
        if thread_type == SourceType.COMPETITOR_ANALYSIS.value:
            return await self._competitor_thread(ctx, brand)
        return AgentResult()

    # =========================================================================
    # Copy threads
    # =========================================================================

    async def _copy_thread(self, ctx: EventContext, brand: BrandContext) -> AgentResult:
        generation: GenerationRecord = brand.generation
        variants = generation.copy_variants()
        text = (ctx.text or "").strip()
        named = named_variant(text)
        if named is not None and not 1 <= named <= len(variants):
            logger.info(f"Variant {named} named in {ctx.channel_id}:{ctx.thread_ts}, set has {len(variants)}")
            return AgentResult(messages=[OutboundMessage(
                channel=ctx.channel_id, text=out_of_range_message(named, len(variants)), thread_ts=ctx.thread_ts,
            )])
        target = named

        if is_approval(text):
            return self._approve(ctx, generation, variants, target)

        bot_line = last_bot_line(brand.thread_history)
        answers_why = bot_line is not None and WHY_QUESTION_MARKER in bot_line
        if target is None and answers_why and not is_question(text) and not is_change_request(text):
            return self._record_reason(ctx, generation, text)

        system_prompt = self._copy_system_prompt(brand.profile, brand, generation)
        if target is not None:
            return await self._revise_one(ctx, generation, variants, target, text, system_prompt)
        if is_question(text):
            return await self._answer(ctx, generation, variants, text, system_prompt)
        return await self._revise_all(ctx, generation, variants, text, system_prompt)

    def _approve(
        self,
        ctx: EventContext,
        generation: GenerationRecord,
        variants: list[CopyVariant],
        target: Optional[int],
    ) -> AgentResult:
        indices = [target] if target is not None else list(range(1, len(variants) + 1))
        side_effects = [
            effects.save_exemplar(Exemplar(
                channel_id=ctx.channel_id,
                generation_id=generation.id,
                variant=variants[i - 1].model_dump(),
                source_type=generation.source_type.value,
                score=1.0,
            ))
            for i in indices
        ]
        side_effects.append(effects.save_copy_feedback(CopyFeedbackRecord(
            channel_id=ctx.channel_id,
            generation_id=generation.id,
            slack_user_id=ctx.user_id,
            action=FeedbackAction.APPROVED,
            variant_index=target,
            feedback_text=sanitize(ctx.text),
        )))

        saved = f"Variant {target}" if target is not None else f"all {len(indices)} variants"
        logger.info(f"Approval in {ctx.channel_id}:{ctx.thread_ts}: saved {saved} as exemplars")
        return AgentResult(
            messages=[OutboundMessage(
                channel=ctx.channel_id,
                text=f"Saved {saved} as approved examples. {why_question(len(indices))}",
                thread_ts=ctx.thread_ts,
            )],
            side_effects=side_effects,
            trigger_learning=True,
        )

    def _record_reason(self, ctx: EventContext, generation: GenerationRecord, text: str) -> AgentResult:
        reason = sanitize(text)
        return AgentResult(
            messages=[OutboundMessage(channel=ctx.channel_id, text=THANKS_FOR_REASON, thread_ts=ctx.thread_ts)],
            side_effects=[
                effects.save_copy_feedback(CopyFeedbackRecord(
                    channel_id=ctx.channel_id,
                    generation_id=generation.id,
                    slack_user_id=ctx.user_id,
                    action=FeedbackAction.APPROVED,
                    feedback_text=reason,
                    approval_reason=reason,
                )),
                effects.add_brand_note(ctx.channel_id, ctx.user_id, f"Approved copy because: {text}"),
            ],
            trigger_learning=True,
        )

    def _copy_system_prompt(self, profile: VoiceProfile, brand: BrandContext, generation: GenerationRecord) -> str:
        extra = []
        if brand.thread_history:
            extra.append(f"\nFULL FEEDBACK HISTORY (apply ALL of these, not just the latest):\n{brand.thread_history}\n")
        if brand.learnings:
            extra.append(f"\nLEARNED PATTERNS (from this brand's feedback history):\n{brand.learnings}\n")
        return get_prompt("conversation_copy").render(
            tone=sanitize(profile.tone_description),
            headline_patterns=_join(profile.headline_patterns),
            description_patterns=_join(profile.description_patterns),
            primary_text_structure=_join(profile.primary_text_structure),
            mandatory_phrases=_join(profile.mandatory_phrases),
            banned_phrases=_join(profile.banned_phrases),
            cta_language=sanitize(profile.cta_language),
            business_context=sanitize(profile.full_context),
            extra_sections="".join(extra),
            source_type=generation.source_type.value,
            filename=generation.video_filename,
        )

    async def _generate(self, system_prompt: str, contents: str, max_tokens: int) -> str:
        prompt = get_prompt("conversation_copy")
        response = await self.llm.generate(
            system_prompt=system_prompt,
            contents=contents,
            model=prompt.model,
            temperature=prompt.temperature,
            max_output_tokens=max_tokens,
        )
        return (response.text or "").strip()

    async def _revise_one(
        self,
        ctx: EventContext,
        generation: GenerationRecord,
        variants: list[CopyVariant],
        target: int,
        text: str,
        system_prompt: str,
    ) -> AgentResult:
        original = variants[target - 1]
        reply = await self._generate(
            system_prompt,
            f"Here is variant {target}:\n{json.dumps(original.model_dump())}\n\n"
            f"Other headlines already in use: {json.dumps([v.headline for v in variants if v is not original])}\n\n"
            f'Latest message: "{sanitize(text)}"\n\n'
            "Revise this variant incorporating ALL feedback. Return ONLY valid JSON: "
            '{"angle": "...", "headline": "...", "description": "...", "primary_text": "..."}',
            max_tokens=1500,
        )
        revised = CopyVariant.model_validate(parse_llm_json(reply, expect=dict))
        action = feedback_action(text)

        logger.info(f"Revised variant {target} in {ctx.channel_id}:{ctx.thread_ts} ({action.value})")
        return AgentResult(
            messages=[OutboundMessage(
                channel=ctx.channel_id, text=format_revised_variant(target, revised), thread_ts=ctx.thread_ts,
            )],
            side_effects=[
                effects.save_copy_feedback(CopyFeedbackRecord(
                    channel_id=ctx.channel_id,
                    generation_id=generation.id,
                    slack_user_id=ctx.user_id,
                    action=action,
                    variant_index=target,
                    feedback_text=sanitize(text),
                    before_snapshot=original.model_dump(),
                    after_snapshot=revised.model_dump(),
                )),
                effects.add_brand_note(ctx.channel_id, ctx.user_id, f"Copy feedback: {text}"),
            ],
            trigger_learning=True,
        )

    async def _revise_all(
        self,
        ctx: EventContext,
        generation: GenerationRecord,
        variants: list[CopyVariant],
        text: str,
        system_prompt: str,
    ) -> AgentResult:
        source_label = "image analysis" if generation.source_type == SourceType.IMAGE else "transcript"
        reply = await self._generate(
            system_prompt,
            f"Here are the current {len(variants)} variants:\n{json.dumps([v.model_dump() for v in variants])}\n\n"
            f"Original {source_label}:\n{sanitize(generation.transcript)}\n\n"
            f'Latest message: "{sanitize(text)}"\n\n'
            f"Revise ALL {len(variants)} variants incorporating ALL feedback. Every headline must be unique. "
            'Return ONLY a valid JSON array: [{"angle": "...", "headline": "...", "description": "...", "primary_text": "..."}]',
            max_tokens=3000,
        )
        revised = [CopyVariant.model_validate(v) for v in parse_llm_json(reply, expect=list)]
        if not revised:
            raise ValueError("Revision returned no variants")
        action = feedback_action(text)

        logger.info(f"Revised all variants in {ctx.channel_id}:{ctx.thread_ts} ({action.value})")
        return AgentResult(
            messages=[OutboundMessage(channel=ctx.channel_id, text=render_revised_set(revised), thread_ts=ctx.thread_ts)],
            side_effects=[
                effects.save_copy_feedback(CopyFeedbackRecord(
                    channel_id=ctx.channel_id,
                    generation_id=generation.id,
                    slack_user_id=ctx.user_id,
                    action=action,
                    feedback_text=sanitize(text),
                    before_snapshot={"variants": [v.model_dump() for v in variants]},
                    after_snapshot={"variants": [v.model_dump() for v in revised]},
                )),
                effects.add_brand_note(ctx.channel_id, ctx.user_id, f"Copy feedback: {text}"),
            ],
            trigger_learning=True,
        )

    async def _answer(
        self,
        ctx: EventContext,
        generation: GenerationRecord,
        variants: list[CopyVariant],
        text: str,
        system_prompt: str,
    ) -> AgentResult:
        reply = await self._generate(
            system_prompt,
            f"Current variants:\n{json.dumps([v.model_dump() for v in variants])}\n\n"
            f'Question: "{sanitize(text)}"\n\nAnswer in plain text. Do not return JSON.',
            max_tokens=1500,
        )
        return AgentResult(
            messages=[OutboundMessage(channel=ctx.channel_id, text=format_thread_reply(reply), thread_ts=ctx.thread_ts)],
            side_effects=[effects.save_copy_feedback(CopyFeedbackRecord(
                channel_id=ctx.channel_id,
                generation_id=generation.id,
                slack_user_id=ctx.user_id,
                action=FeedbackAction.CLARIFICATION_REQUESTED,
                feedback_text=sanitize(text),
            ))],
        )

    # =========================================================================
    # Competitor threads
    # =========================================================================

    async def _competitor_thread(self, ctx: EventContext, brand: BrandContext) -> AgentResult:
        profile = brand.profile
        generation = brand.generation
        analysis = CompetitorAnalysis.model_validate(generation.variants[0]) if generation.variants else CompetitorAnalysis()

        extra = ""
        if brand.thread_history:
            extra = f"\nFULL FEEDBACK HISTORY (address ALL of these):\n{brand.thread_history}\n"
        prompt = get_prompt("conversation_competitor")
        system_prompt = prompt.render(
            brand_profile=(
                f"Business: {sanitize(profile.name)}\n{sanitize(profile.full_context)}\n"
                f"Tone: {sanitize(profile.tone_description)}"
            ),
            what_works=sanitize(analysis.what_works),
            your_brief=sanitize(analysis.your_brief),
            copy_direction=sanitize(analysis.copy_direction),
            source_content=sanitize(generation.transcript),
            extra_sections=extra,
        )
        response = await self.llm.generate(
            system_prompt=system_prompt,
            contents=sanitize(ctx.text),
            model=prompt.model,
            temperature=prompt.temperature,
            max_output_tokens=prompt.max_tokens,
        )
        reply = (response.text or "").strip()
        if not reply:
            raise ValueError("Competitor thread reply was empty")

        return AgentResult(
            messages=[OutboundMessage(channel=ctx.channel_id, text=format_thread_reply(reply), thread_ts=ctx.thread_ts)],
            side_effects=[
                effects.add_brand_note(ctx.channel_id, ctx.user_id, f"Competitor analysis feedback: {ctx.text}"),
            ],
        )
