# Understood/src/agents/pipeline.py
# @ai-rules:
# 1. [Pattern]: admission -> normalize -> route -> intake (uploads / links) -> dispatch -> status line edit.
# 2. [Constraint]: Admission (SET NX EX on event_id) happens BEFORE any other work. A re-delivery is a silent no-op.
# 3. [Gotcha]: Both transports (HTTP webhook, Socket Mode) hand the SAME envelope shape to handle().
# 4. [Constraint]: Once an event is admitted and routed, every failure ends in a visible friendly_error post.
"""EventPipeline: one inbound Slack envelope end to end."""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Optional

from ..models import EventContext, EventKind, RouteDecision, SourceType
from .errors import friendly_error
from .intake import finish_status
from .normalize import normalize_event

if TYPE_CHECKING:
    from ..channels.slack import SlackClient
    from ..state.store import BrandStore
    from .dispatcher import Dispatcher
    from .intake import MediaIntake
    from .router import SmartRouter

logger = logging.getLogger(__name__)


def envelope_bot_user_id(envelope: dict) -> str:
    """Bot identity from the Events API envelope (authorizations[0].user_id), if present."""
    authorizations = envelope.get("authorizations") or []
    if authorizations and isinstance(authorizations[0], dict):
        return authorizations[0].get("user_id") or ""
    return ""


class EventPipeline:

    def __init__(
        self,
        store: "BrandStore",
        slack: "SlackClient",
        router: "SmartRouter",
        intake: "MediaIntake",
        dispatcher: "Dispatcher",
    ):
        self.store = store
        self.slack = slack
        self.router = router
        self.intake = intake
        self.dispatcher = dispatcher

    async def handle(self, envelope: dict) -> None:
        """Process one event_callback envelope. Never raises."""
        event = envelope.get("event") or {}
        event_id = envelope.get("event_id")

        try:
            if event_id and not await self.store.admit_event(event_id):
                logger.info(f"Duplicate delivery {event_id} ignored")
                return

            bot_user_id = envelope_bot_user_id(envelope) or await self.slack.bot_user_id()
            ctx = normalize_event(event, envelope.get("team_id", ""), bot_user_id)
        except Exception as e:
            logger.error(f"Event {event_id} rejected before routing: {e}", exc_info=True)
            return

        if ctx is None:
            return
        if ctx.type != EventKind.MEMBER_JOINED and bot_user_id and ctx.user_id == bot_user_id:
            return

        logger.debug(f"Event {event_id}: {ctx.type.value} in {ctx.channel_id} from {ctx.user_id}")
        try:
            decision = await self.router.route(ctx)
            if decision is None:
                return
            decision = await self._intake(ctx, decision)
            if decision is None:
                return
        except Exception as e:
            logger.error(f"Event {event_id} failed before dispatch: {e}", exc_info=True)
            await self._post_error(ctx, e)
            return

        logger.info(f"Event {event_id} -> {decision.agent}")
        result = await self.dispatcher.dispatch(ctx, decision)
        await self._finish_status(ctx, decision, succeeded=result is not None)

    async def _intake(self, ctx: EventContext, decision: RouteDecision) -> Optional[RouteDecision]:
        if decision.meta.get("needs_intent_classification"):
            return await self.intake.process_upload(ctx)
        if decision.meta.get("is_link"):
            return await self.intake.process_link(ctx, decision)
        return decision

    async def _finish_status(self, ctx: EventContext, decision: RouteDecision, succeeded: bool) -> None:
        kind = SourceType.IMAGE if decision.meta.get("source_type") == SourceType.IMAGE.value else SourceType.VIDEO
        await finish_status(self.slack, ctx.channel_id, decision.meta.get("status_ts"), kind, succeeded)

    async def _post_error(self, ctx: EventContext, error: BaseException) -> None:
        try:
            await self.slack.post_message(ctx.channel_id, friendly_error(error), ctx.reply_ts)
        except Exception as post_error:
            logger.error(f"Could not post error message to {ctx.channel_id}: {post_error}")
