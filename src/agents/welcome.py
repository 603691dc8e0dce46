# Understood/src/agents/welcome.py
"""Welcome agent: pinned intro when the bot joins, a short hello when a person joins."""
from __future__ import annotations

from typing import Optional

from ..channels.formatter import format_team_member_welcome, format_welcome_message
from ..models import AgentResult, BrandContext, EventContext, OutboundMessage

MEMBER_WELCOME_NO_PROFILE = "Welcome! Check the pinned message to see how Understood works."


async def welcome_agent(ctx: EventContext, brand: BrandContext, meta: Optional[dict] = None) -> AgentResult:
    is_bot_join = bool((meta or {}).get("is_bot_join")) or (
        bool(ctx.bot_user_id) and ctx.user_id == ctx.bot_user_id
    )
    if is_bot_join:
        return AgentResult(messages=[
            OutboundMessage(channel=ctx.channel_id, text=format_welcome_message(), pin=True),
        ])

    if brand.profile is not None:
        text = format_team_member_welcome(brand.profile)
    else:
        text = MEMBER_WELCOME_NO_PROFILE
    return AgentResult(messages=[OutboundMessage(channel=ctx.channel_id, text=text)])
