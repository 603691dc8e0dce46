# Understood/src/agents/command.py
# @ai-rules:
# 1. [Pattern]: meta["command"] comes from the router (parse_command or fallback). Unknown values fall back to help.
# 2. [Pattern]: setup / new_setup delegate to OnboardingAgent.start(); this agent never touches CustomerState itself.
# 3. [Gotcha]: refresh only sets trigger_learning. The learning run happens on the background worker.
"""Command agent: setup, new setup, profile, help, learnings, refresh, fallback."""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Optional

from ..channels.formatter import (
    format_fallback_message,
    format_help_message,
    format_learnings,
    format_profile,
)
from ..models import AgentResult, BrandContext, EventContext, OutboundMessage

if TYPE_CHECKING:
    from ..state.store import BrandStore
    from .onboarding import OnboardingAgent

logger = logging.getLogger(__name__)


class CommandAgent:

    def __init__(self, store: "BrandStore", onboarding: "OnboardingAgent"):
        self.store = store
        self.onboarding = onboarding

    async def handle(self, ctx: EventContext, brand: BrandContext, meta: Optional[dict] = None) -> AgentResult:
        command = (meta or {}).get("command") or "help"
        logger.debug(f"Command '{command}' from {ctx.user_id} in {ctx.channel_id}")

        if command == "setup":
            if brand.profile is not None:
                return _reply(
                    ctx,
                    f"This channel already has a brand profile for *{brand.profile.name}*.\n\n"
                    f"*Tone:* {brand.profile.tone_description or 'Not set'}\n\n"
                    "You don't need to run setup again. I learn from every message, so just share brand "
                    "context (pricing changes, tone preferences, new taglines) and I'll keep improving.\n\n"
                    "To start completely fresh with a new profile, say *new setup*.",
                )
            return await self.onboarding.start(ctx)

        if command == "new_setup":
            return await self.onboarding.start(ctx, force=True)

        if command == "profile":
            if brand.profile is None:
                return _reply(ctx, "No brand profile set up for this channel yet. Say *setup* to get started.")
            notes = await self.store.count_brand_notes(ctx.channel_id)
            generations = await self.store.count_generations(ctx.channel_id)
            return _reply(ctx, format_profile(brand.profile, notes, generations))

        if command == "learnings":
            insights = await self.store.get_active_insights(ctx.channel_id)
            return _reply(ctx, format_learnings(insights))

        if command == "refresh":
            if brand.profile is None:
                return _reply(ctx, "No brand profile to refresh. Say *setup* to create one.")
            result = _reply(
                ctx,
                "Re-reading your recent feedback now. Say *learnings* in a minute to see what changed.",
            )
            result.trigger_learning = True
            return result

        if command == "fallback":
            return _reply(ctx, format_fallback_message())

        return _reply(ctx, format_help_message())


def _reply(ctx: EventContext, text: str) -> AgentResult:
    return AgentResult(messages=[OutboundMessage(channel=ctx.channel_id, text=text, thread_ts=ctx.reply_ts)])
