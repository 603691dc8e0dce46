# Understood/src/agents/normalize.py
# @ai-rules:
# 1. [Constraint]: Pure function. No I/O, no logging side effects on the happy path. Table-test it.
# 2. [Pattern]: Returns None for bot echoes, any message subtype, and unsupported event types.
# 3. [Gotcha]: parent_ts for a top-level message is its OWN ts so replies always have a stable anchor.
"""Raw Slack event -> EventContext."""
from __future__ import annotations

from typing import Any, Optional

from ..models import EventContext, EventKind, FileDescriptor


def normalize_event(event: dict[str, Any], team_id: str, bot_user_id: str = "") -> Optional[EventContext]:
    """Convert one raw Slack event into an EventContext, or None to drop it."""
    event_type = event.get("type")

    if event_type == "member_joined_channel":
        return EventContext(
            type=EventKind.MEMBER_JOINED,
            team_id=team_id,
            bot_user_id=bot_user_id,
            user_id=event.get("user", ""),
            channel_id=event.get("channel", ""),
        )

    if event_type == "file_shared":
        file_id = event.get("file_id") or (event.get("file") or {}).get("id", "")
        return EventContext(
            type=EventKind.FILE_UPLOAD,
            team_id=team_id,
            bot_user_id=bot_user_id,
            user_id=event.get("user_id", ""),
            channel_id=event.get("channel_id", ""),
            ts=event.get("event_ts"),
            parent_ts=event.get("event_ts"),
            file=FileDescriptor(file_id=file_id),
        )

    if event_type == "message":
        if event.get("subtype") or event.get("bot_id"):
            return None
        thread_ts = event.get("thread_ts")
        ts = event.get("ts")
        is_thread = bool(thread_ts)
        return EventContext(
            type=EventKind.MESSAGE,
            team_id=team_id,
            bot_user_id=bot_user_id,
            user_id=event.get("user", ""),
            channel_id=event.get("channel", ""),
            text=event.get("text") or "",
            thread_ts=thread_ts if is_thread else None,
            parent_ts=thread_ts if is_thread else ts,
            ts=ts,
            is_dm=event.get("channel_type") == "im",
            is_thread=is_thread,
        )

    return None


def build_file_descriptor(file_info: dict[str, Any]) -> FileDescriptor:
    """Slack files.info payload -> FileDescriptor."""
    return FileDescriptor(
        file_id=file_info.get("id", ""),
        name=file_info.get("name"),
        mimetype=file_info.get("mimetype"),
        size=int(file_info.get("size") or 0),
        url=file_info.get("url_private_download") or file_info.get("url_private"),
    )
