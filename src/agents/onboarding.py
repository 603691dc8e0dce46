# Understood/src/agents/onboarding.py
# @ai-rules:
# 1. [Pattern]: One interview turn per call. State lives on CustomerState; every write is an update_customer side effect.
# 2. [Constraint]: onboarding_step only moves forward inside an interview. start() is the ONLY reset path.
# 3. [Gotcha]: "skip" stores None for the field but still advances the step.
# 4. [Gotcha]: Step 12 collects examples until "done". A failed profile extraction leaves the user at step 12.
"""Onboarding agent: 11-question brand interview + copy examples -> voice profile."""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Optional

from ..models import AgentResult, BrandContext, EventContext, OutboundMessage
from . import effects
from .security import sanitize
from .voice_profile import extract_voice_profile, format_profile_summary

if TYPE_CHECKING:
    from ..state.store import BrandStore
    from .llm import LLMPort

logger = logging.getLogger(__name__)

QUESTIONS: dict[int, str] = {
    1: "Let's build your brand profile. *What's your brand name?*",
    2: "*What's your website URL?* (If you don't have one, say *skip*.)",
    3: "*What does your brand sell? Give me the elevator pitch.*",
    4: "*Who is your ideal customer?* Not just demographics: what are they struggling with when they find you?",
    5: "*Why do they buy from you instead of alternatives?* What's the thing that tips the decision?",
    6: "*What's your price point and offer structure?* (e.g., \"$49/mo unlimited\", \"free trial then $99/yr\")",
    7: "*How should your ads sound?* Give me 3-5 adjectives, or describe a person whose voice matches your brand.",
    8: "*Any words or phrases that MUST appear in every ad?* (taglines, pricing, product names)",
    9: "*Any words, phrases, or tones to ALWAYS avoid?*",
    10: "*What's your primary CTA?* (Join, Buy, Book a Demo, Start Free Trial, Learn More, etc.)",
    11: "*Where do you primarily run ads?* (Meta, TikTok, Google, LinkedIn, YouTube: list all that apply)",
    12: (
        "Last step: share *examples of ad copy* you love. Your own ads, competitor ads, anything that "
        "represents how you want to sound.\n\nSend as many messages as you want, then say *done*.\n\n"
        "Don't have examples yet? Just say *done* and I'll build your voice profile from what you've told me."
    ),
}

STEP_TO_FIELD: dict[int, str] = {
    1: "business_name",
    2: "website_url",
    3: "product_description",
    4: "target_audience",
    5: "buying_reasons",
    6: "price_and_offer",
    7: "tone_preference",
    8: "mandatory_phrases_raw",
    9: "banned_phrases_raw",
    10: "cta_preference",
    11: "ad_platforms",
}

TOTAL_MAIN_QUESTIONS = 11
EXAMPLES_STEP = 12
COMPLETE_STEP = 13
EXAMPLE_SEPARATOR = "\n\n---\n\n"

READY_MESSAGE = (
    "Your brand profile is ready. Upload any video, audio, or image ad to this channel and I'll "
    "generate 4 copy variants in your voice.\n\n"
    "You can also send competitor ads with a message about what you like. I'll break them down "
    "and write a brief your team can execute in your style.\n\n"
    "Send me brand context anytime: pricing changes, new taglines, words to avoid. I learn from every message."
)
ALREADY_RUNNING_MESSAGE = (
    "You're already in the middle of setting up. Check the thread where we started and pick up "
    "where you left off, or say *new setup* to start over."
)


class OnboardingAgent:
    """Resumable interview state machine keyed by the acting user."""

    def __init__(self, store: "BrandStore", llm: "LLMPort"):
        self.store = store
        self.llm = llm

    async def start(self, ctx: EventContext, force: bool = False) -> AgentResult:
        """Begin (or with force, restart) the interview threaded under the triggering message."""
        customer = await self.store.get_or_create_customer(ctx.user_id)
        anchor = ctx.reply_ts
        if not force and customer.onboarding_step > 0 and not customer.onboarding_complete:
            return _reply(ctx, ALREADY_RUNNING_MESSAGE, anchor)

        logger.info(f"Onboarding started for {ctx.user_id} in {ctx.channel_id} (force={force})")
        return AgentResult(
            messages=[OutboundMessage(channel=ctx.channel_id, text=QUESTIONS[1], thread_ts=anchor)],
            side_effects=[effects.update_customer(
                ctx.user_id,
                onboarding_step=1,
                onboarding_complete=False,
                onboarding_channel_id=ctx.channel_id,
                onboarding_thread_ts=anchor,
                active_thread_type="onboarding",
                copy_examples="",
                answers={},
            )],
        )

    async def handle(self, ctx: EventContext, brand: BrandContext, meta: Optional[dict] = None) -> AgentResult:
        text = (ctx.text or "").strip()
        if not text:
            return AgentResult()

        customer = await self.store.get_or_create_customer(ctx.user_id)
        if customer.onboarding_complete:
            return AgentResult()

        step = customer.onboarding_step
        thread_ts = ctx.thread_ts or customer.onboarding_thread_ts

        if step == 0:
            return AgentResult(
                messages=[OutboundMessage(channel=ctx.channel_id, text=QUESTIONS[1], thread_ts=thread_ts)],
                side_effects=[effects.update_customer(
                    ctx.user_id,
                    onboarding_step=1,
                    onboarding_channel_id=ctx.channel_id,
                    onboarding_thread_ts=thread_ts,
                    active_thread_type="onboarding",
                )],
            )

        if 1 <= step <= TOTAL_MAIN_QUESTIONS:
            field = STEP_TO_FIELD[step]
            value = None if text.lower() == "skip" else sanitize(text)
            shown_step = step + 1 if step < TOTAL_MAIN_QUESTIONS else step
            progress = f"Got it.  [Step {shown_step} of {TOTAL_MAIN_QUESTIONS}]\n\n{QUESTIONS[step + 1]}"
            return AgentResult(
                messages=[OutboundMessage(channel=ctx.channel_id, text=progress, thread_ts=thread_ts)],
                side_effects=[effects.update_customer(
                    ctx.user_id, answers={field: value}, onboarding_step=step + 1,
                )],
            )

        if step == EXAMPLES_STEP:
            if text.lower() == "done":
                return await self._finish(ctx, customer, thread_ts)
            examples = customer.copy_examples
            examples = f"{examples}{EXAMPLE_SEPARATOR if examples else ''}{sanitize(text)}"
            count = examples.count(EXAMPLE_SEPARATOR) + 1
            plural = "" if count == 1 else "s"
            return AgentResult(
                messages=[OutboundMessage(
                    channel=ctx.channel_id,
                    text=f"Got it ({count} example{plural} so far). Keep going, or say *done* when you're finished.",
                    thread_ts=thread_ts,
                )],
                side_effects=[effects.update_customer(ctx.user_id, copy_examples=examples)],
            )

        logger.warning(f"Customer {ctx.user_id} at unexpected onboarding step {step}")
        return AgentResult()

    async def _finish(self, ctx: EventContext, customer, thread_ts: Optional[str]) -> AgentResult:
        try:
            fields = await extract_voice_profile(self.llm, customer)
        except Exception as e:
            logger.error(f"Voice profile extraction failed for {ctx.user_id}: {e}")
            return _reply(
                ctx,
                "I had trouble analyzing your answers. Send me a few more examples and say *done* again.",
                thread_ts,
            )

        summary = format_profile_summary(fields, customer.answers)
        logger.info(f"Onboarding complete for {ctx.user_id}; profile built for {ctx.channel_id}")
        return AgentResult(
            messages=[
                OutboundMessage(channel=ctx.channel_id, text="Building your voice profile...", thread_ts=thread_ts),
                OutboundMessage(channel=ctx.channel_id, text=summary, thread_ts=thread_ts),
                OutboundMessage(channel=ctx.channel_id, text=READY_MESSAGE, thread_ts=thread_ts),
            ],
            side_effects=[
                effects.update_profile(ctx.channel_id, fields),
                effects.update_customer(
                    ctx.user_id,
                    onboarding_step=COMPLETE_STEP,
                    onboarding_complete=True,
                    active_thread_type=None,
                ),
            ],
        )


def _reply(ctx: EventContext, text: str, thread_ts: Optional[str]) -> AgentResult:
    return AgentResult(messages=[OutboundMessage(channel=ctx.channel_id, text=text, thread_ts=thread_ts)])
