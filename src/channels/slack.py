# Understood/src/channels/slack.py
# @ai-rules:
# 1. [Constraint]: SlackClient is the ONLY outbound path to Slack. Agents never hold a WebClient.
# 2. [Pattern]: Socket Mode is optional (SLACK_APP_TOKEN). Both transports feed the same EventPipeline envelope.
# 3. [Gotcha]: Bolt's AsyncIgnoringSelfEvents drops the bot's own messages but KEEPS member_joined_channel for the bot.
# 4. [Pattern]: pin_message() logs and continues when the optional pins:write scope is missing.
# 5. [Gotcha]: File downloads need the bot token as a Bearer header -- url_private is not public.
"""SlackClient (outbound Web API) and SlackSocketChannel (optional Socket Mode inbound)."""
from __future__ import annotations

import logging
import os
from typing import Any, Awaitable, Callable, Optional

import httpx
from slack_bolt.adapter.socket_mode.async_handler import AsyncSocketModeHandler
from slack_bolt.async_app import AsyncApp
from slack_sdk.web.async_client import AsyncWebClient

logger = logging.getLogger("understood.slack")

SLACK_BOT_TOKEN = os.getenv("SLACK_BOT_TOKEN", "")
SLACK_APP_TOKEN = os.getenv("SLACK_APP_TOKEN", "")
DOWNLOAD_TIMEOUT_SECONDS = float(os.getenv("SLACK_DOWNLOAD_TIMEOUT", "120"))


class SlackClient:
    """Thin async wrapper over the Slack Web API calls the bot needs."""

    def __init__(self, bot_token: Optional[str] = None, client: Optional[AsyncWebClient] = None) -> None:
        self._token = bot_token or SLACK_BOT_TOKEN
        self._client = client or AsyncWebClient(token=self._token)
        self._bot_user_id: Optional[str] = os.getenv("SLACK_BOT_USER_ID") or None

    async def bot_user_id(self) -> str:
        """Resolve (and cache) the bot's own user id via auth.test."""
        if self._bot_user_id is None:
            result = await self._client.auth_test()
            self._bot_user_id = result.get("user_id", "")
            logger.info(f"Resolved bot user id: {self._bot_user_id}")
        return self._bot_user_id or ""

    # =========================================================================
    # Messages
    # =========================================================================

    async def post_message(self, channel: str, text: str, thread_ts: Optional[str] = None) -> Optional[str]:
        """Post a message (optionally threaded). Returns the new message ts."""
        kwargs: dict[str, Any] = {"channel": channel, "text": text}
        if thread_ts:
            kwargs["thread_ts"] = thread_ts
        result = await self._client.chat_postMessage(**kwargs)
        return result.get("ts")

    async def update_message(self, channel: str, ts: str, text: str) -> None:
        await self._client.chat_update(channel=channel, ts=ts, text=text)

    async def pin_message(self, channel: str, ts: str) -> None:
        try:
            await self._client.pins_add(channel=channel, timestamp=ts)
        except Exception as e:
            logger.warning(f"Pin failed in {channel} (missing pins:write?): {e}")

    # =========================================================================
    # Reads
    # =========================================================================

    async def get_file_info(self, file_id: str) -> dict:
        result = await self._client.files_info(file=file_id)
        return result.get("file") or {}

    async def get_message(self, channel: str, ts: str) -> Optional[dict]:
        """Fetch one message by ts (e.g. the text posted alongside an upload)."""
        result = await self._client.conversations_history(
            channel=channel, latest=ts, oldest=ts, inclusive=True, limit=1,
        )
        messages = result.get("messages") or []
        return messages[0] if messages else None

    async def get_thread_replies(self, channel: str, thread_ts: str) -> list[dict]:
        result = await self._client.conversations_replies(channel=channel, ts=thread_ts, limit=100)
        return result.get("messages") or []

    async def download_file(self, url: str) -> bytes:
        """Download a private Slack file using the bot token."""
        async with httpx.AsyncClient(timeout=DOWNLOAD_TIMEOUT_SECONDS, follow_redirects=True) as http:
            response = await http.get(url, headers={"Authorization": f"Bearer {self._token}"})
            response.raise_for_status()
            return response.content


class SlackSocketChannel:
    """Optional Socket Mode transport: forwards raw event envelopes to a handler."""

    def __init__(
        self,
        bot_token: str,
        app_token: str,
        on_envelope: Callable[[dict], Awaitable[None]],
    ) -> None:
        self._app_token = app_token
        self._on_envelope = on_envelope
        self._handler: AsyncSocketModeHandler | None = None
        self._app = AsyncApp(token=bot_token)
        self._register_handlers()

    def _register_handlers(self) -> None:
        """Register the three event types the pipeline understands."""

        @self._app.event("message")
        async def on_message(body: dict) -> None:
            await self._forward(body)

        @self._app.event("file_shared")
        async def on_file_shared(body: dict) -> None:
            await self._forward(body)

        @self._app.event("member_joined_channel")
        async def on_member_joined(body: dict) -> None:
            await self._forward(body)

    async def _forward(self, body: dict) -> None:
        try:
            await self._on_envelope(body)
        except Exception as e:
            logger.error(f"Socket Mode event {body.get('event_id')} failed: {e}", exc_info=True)

    async def start(self) -> None:
        self._handler = AsyncSocketModeHandler(self._app, self._app_token)
        await self._handler.connect_async()
        logger.info("Slack Socket Mode connected")

    async def stop(self) -> None:
        if self._handler:
            await self._handler.close_async()
            logger.info("Slack Socket Mode disconnected")
