# Understood/src/agents/dispatcher.py
# @ai-rules:
# 1. [Pattern]: assemble BrandContext -> registry lookup -> handler -> quality gate -> post messages -> side effects -> learning.
# 2. [Constraint]: Each side effect runs in its OWN try/except. One failure is logged and never blocks the others.
# 3. [Constraint]: Any exception escaping the handler is converted to ONE friendly_error() post. A failing error post is suppressed.
# 4. [Gotcha]: trigger_learning only ENQUEUES on the LearningWorker. It is never awaited on the reply path.
# 5. [Gotcha]: The registry is injected and read-only. The Dispatcher never registers handlers.
"""Dispatcher: runs one routed event through its agent and applies the result."""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Optional

from ..models import (
    AgentResult,
    CopyFeedbackRecord,
    EventContext,
    Exemplar,
    GenerationRecord,
    OutboundMessage,
    RouteDecision,
    SideEffect,
    SideEffectType,
)
from .context import BrandContextAssembler
from .errors import friendly_error
from .quality_gate import apply_quality_gate

if TYPE_CHECKING:
    from ..channels.slack import SlackClient
    from ..state.store import BrandStore
    from .agent_registry import AgentRegistry
    from .learning_worker import LearningWorker

logger = logging.getLogger(__name__)


class Dispatcher:
    """Executes a RouteDecision against the immutable agent registry."""

    def __init__(
        self,
        registry: "AgentRegistry",
        store: "BrandStore",
        slack: "SlackClient",
        learning: Optional["LearningWorker"] = None,
        assembler: Optional[BrandContextAssembler] = None,
    ):
        self.registry = registry
        self.store = store
        self.slack = slack
        self.learning = learning
        self.assembler = assembler or BrandContextAssembler(store, slack)

    async def dispatch(self, ctx: EventContext, decision: RouteDecision) -> Optional[AgentResult]:
        """Run the agent and apply its result. Returns the applied result, or None on failure."""
        try:
            handler = self.registry.get(decision.agent)
            if handler is None:
                raise KeyError(f"No agent registered for '{decision.agent}'")

            brand = await self.assembler.assemble(ctx)
            result = await handler(ctx, brand, decision.meta)
            gate = apply_quality_gate(result, brand.profile)
            if gate.major_issues:
                logger.warning(
                    f"Agent {decision.agent} shipped {len(gate.major_issues)} major quality issue(s) in {ctx.channel_id}"
                )
            result = gate.result

            await self.post_messages(result.messages)
            await self.apply_side_effects(result.side_effects)

            if result.trigger_learning:
                self.trigger_learning(ctx.channel_id)
            return result

        except Exception as e:
            logger.error(f"Dispatch of {decision.agent} failed in {ctx.channel_id}: {e}", exc_info=True)
            await self._post_error(ctx, decision, e)
            return None

    # =========================================================================
    # Messages
    # =========================================================================

    async def post_messages(self, messages: list[OutboundMessage]) -> None:
        """Post in order. A failed post propagates: silence would be worse than an error message."""
        for message in messages:
            ts = await self.slack.post_message(message.channel, message.text, message.thread_ts)
            if message.pin and ts:
                await self.slack.pin_message(message.channel, ts)

    async def _post_error(self, ctx: EventContext, decision: RouteDecision, error: BaseException) -> None:
        thread_ts = decision.meta.get("message_ts") or ctx.reply_ts
        try:
            await self.slack.post_message(ctx.channel_id, friendly_error(error), thread_ts)
        except Exception as post_error:
            logger.error(f"Could not post error message to {ctx.channel_id}: {post_error}")

    # =========================================================================
    # Side Effects
    # =========================================================================

    async def apply_side_effects(self, side_effects: list[SideEffect]) -> int:
        """Execute every side effect independently. Returns how many failed."""
        failed = 0
        for effect in side_effects:
            try:
                await self.execute(effect)
            except Exception as e:
                failed += 1
                logger.error(f"Side effect {effect.type.value} failed: {e}", exc_info=True)
        return failed

    async def execute(self, effect: SideEffect) -> None:
        p = effect.payload
        if effect.type == SideEffectType.ADD_BRAND_NOTE:
            await self.store.add_brand_note(p["channel_id"], p.get("slack_user_id", ""), p["text"])
        elif effect.type == SideEffectType.SAVE_GENERATION:
            await self.store.save_generation(GenerationRecord.model_validate(p["generation"]))
        elif effect.type == SideEffectType.UPDATE_PROFILE:
            await self.store.upsert_profile(p["channel_id"], p["fields"])
        elif effect.type == SideEffectType.UPDATE_CUSTOMER:
            await self.store.update_customer(p["slack_user_id"], p["fields"])
        elif effect.type == SideEffectType.SAVE_COPY_FEEDBACK:
            await self.store.add_copy_feedback(CopyFeedbackRecord.model_validate(p["record"]))
        elif effect.type == SideEffectType.SAVE_EXEMPLAR:
            await self.store.save_exemplar(Exemplar.model_validate(p["exemplar"]))
        elif effect.type == SideEffectType.UPDATE_GENERATION_META:
            updated = await self.store.update_generation_meta(p["channel_id"], p["message_ts"], p["fields"])
            if not updated:
                logger.warning(f"Generation {p['channel_id']}:{p['message_ts']} not found for telemetry update")
        else:
            raise ValueError(f"Unknown side effect type: {effect.type}")

    def trigger_learning(self, channel_id: str) -> None:
        if self.learning is None:
            logger.debug(f"Learning requested for {channel_id} but no worker is configured")
            return
        if self.learning.enqueue(channel_id):
            logger.info(f"Learning run queued for {channel_id}")
