# Understood/src/agents/context.py
# @ai-rules:
# 1. [Pattern]: One snapshot per dispatch. All store reads run concurrently via asyncio.gather.
# 2. [Gotcha]: Thread history skips the thread parent (the generation itself) and the triggering message.
# 3. [Constraint]: Read-only. Nothing in here writes to the store or posts to Slack.
"""BrandContext assembly: profile, notes, generation, learnings, exemplars, thread history."""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional

from ..models import BrandContext, EventContext, LearningInsight, Maturity

if TYPE_CHECKING:
    from ..channels.slack import SlackClient
    from ..state.store import BrandStore

logger = logging.getLogger(__name__)

EXEMPLAR_LIMIT = 5
ACTIVE_GENERATION_FLOOR = 3
MIN_HISTORY_LINE_CHARS = 7


def format_learnings(insights: list[LearningInsight]) -> Optional[str]:
    """Flatten active insights (already ordered by confidence) into prompt text."""
    if not insights:
        return None
    return "\n".join(
        f"[{i.category.value}] (confidence: {i.confidence:.2f}, samples: {i.sample_size}) {i.insight}"
        for i in insights
    )


def compute_maturity(has_profile: bool, generation_count: int) -> Maturity:
    if not has_profile:
        return Maturity.NEW
    if generation_count < ACTIVE_GENERATION_FLOOR:
        return Maturity.ONBOARDING
    return Maturity.ACTIVE


class BrandContextAssembler:
    """Builds the per-event BrandContext view over durable records."""

    def __init__(self, store: "BrandStore", slack: Optional["SlackClient"] = None):
        self.store = store
        self.slack = slack

    async def assemble(self, ctx: EventContext) -> BrandContext:
        channel = ctx.channel_id
        thread_ts = ctx.thread_ts

        profile, notes, generation, insights, exemplars, generation_count, history = await asyncio.gather(
            self.store.get_profile(channel),
            self.store.get_brand_notes(channel),
            self.store.get_generation(channel, thread_ts) if thread_ts else _none(),
            self.store.get_active_insights(channel),
            self.store.get_exemplars(channel, limit=EXEMPLAR_LIMIT),
            self.store.count_generations(channel),
            self._thread_history(ctx) if thread_ts else _none(),
        )

        return BrandContext(
            profile=profile,
            brand_notes="\n".join(
                f"[{datetime.fromtimestamp(n.created_at, tz=timezone.utc).date().isoformat()}] {n.note}"
                for n in notes
            ),
            generation=generation,
            learnings=format_learnings(insights),
            exemplars=exemplars,
            thread_history=history,
            maturity=compute_maturity(profile is not None, generation_count),
        )

    async def _thread_history(self, ctx: EventContext) -> Optional[str]:
        if self.slack is None or not ctx.thread_ts:
            return None
        try:
            replies = await self.slack.get_thread_replies(ctx.channel_id, ctx.thread_ts)
        except Exception as e:
            logger.warning(f"Thread history fetch failed for {ctx.channel_id}:{ctx.thread_ts}: {e}")
            return None
        return build_thread_history(replies, ctx.thread_ts, ctx.ts, ctx.bot_user_id)


def build_thread_history(
    replies: list[dict],
    thread_ts: str,
    current_ts: Optional[str],
    bot_user_id: str = "",
) -> Optional[str]:
    """Render thread replies as [Bot]/[User] lines. Returns None when nothing useful remains."""
    lines = []
    for msg in replies:
        ts = msg.get("ts")
        if ts == thread_ts or (current_ts and ts == current_ts):
            continue
        text = (msg.get("text") or "").strip()
        if len(text) < MIN_HISTORY_LINE_CHARS:
            continue
        is_bot = bool(msg.get("bot_id")) or (bool(bot_user_id) and msg.get("user") == bot_user_id)
        lines.append(f"[{'Bot' if is_bot else 'User'}] {text}")
    return "\n".join(lines) if lines else None


async def _none() -> None:
    return None
