# Understood/src/agents/intake.py
# @ai-rules:
# 1. [Pattern]: Runs BETWEEN routing and dispatch. Turns a file upload or a link into source content + a final RouteDecision.
# 2. [Constraint]: Non-media uploads return None (silently ignored). User-facing failures raise IntakeError.
# 3. [Gotcha]: file_shared carries the EVENT ts, not the message ts. The share ts comes from files.info "shares".
# 4. [Gotcha]: Link media is best effort. Any fetch failure falls back to the link text + page title/description.
# 5. [Pattern]: The status line ts travels in meta["status_ts"] so the pipeline can edit it when the work finishes.
#    If intake itself fails after posting it, intake marks it "stopped." before re-raising.
"""
Media intake: Slack uploads and competitor links -> transcript / image description.

Upload flow:
    files.info -> extension + size checks -> status line -> download (bot token)
    -> transcribe (audio/video) or describe (image) -> user notes -> intent -> re-route

Link flow:
    page fetch -> og:video / og:image -> download -> transcribe / describe
    (fallback: link text + og:title + og:description)
"""
from __future__ import annotations

import html
import logging
import os
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

import httpx

from ..models import EventContext, RouteDecision, SourceType
from .errors import IntakeError
from .prompts import run_prompt

if TYPE_CHECKING:
    from ..channels.slack import SlackClient
    from .llm import LLMPort
    from .router import SmartRouter

logger = logging.getLogger(__name__)

MAX_UPLOAD_MB = float(os.getenv("MAX_UPLOAD_MB", "500"))
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")
OPENAI_BASE_URL = os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1")
TRANSCRIPTION_MODEL = os.getenv("TRANSCRIPTION_MODEL", "whisper-1")
TRANSCRIPTION_MAX_MB = 25
TRANSCRIPTION_TIMEOUT_SECONDS = float(os.getenv("TRANSCRIPTION_TIMEOUT", "120"))
NO_SPEECH_THRESHOLD = 0.5

PAGE_TIMEOUT_SECONDS = 10.0
MEDIA_TIMEOUT_SECONDS = 15.0
MIN_MEDIA_BYTES = 1000
BROWSER_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    ),
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
}

VIDEO_EXTENSIONS = {"mp4", "mp3", "m4a", "wav", "webm", "mov", "ogg", "flac"}
IMAGE_EXTENSIONS = {"jpg", "jpeg", "png", "gif", "webp"}
IMAGE_MIME_TYPES = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "webp": "image/webp",
}

NO_SPEECH_MESSAGE = "I couldn't detect any speech in that video. Try a video with clear audio."
NO_ACCESS_MESSAGE = "I couldn't access that file. Make sure I'm in this channel and try again."
TRANSCRIPTION_DISABLED_MESSAGE = "Video transcription isn't configured for this workspace yet. Try an image instead."


def file_extension(filename: str) -> str:
    return filename.rsplit(".", 1)[-1].lower() if "." in filename else ""


def media_kind(filename: str) -> Optional[SourceType]:
    ext = file_extension(filename)
    if ext in VIDEO_EXTENSIONS:
        return SourceType.VIDEO
    if ext in IMAGE_EXTENSIONS:
        return SourceType.IMAGE
    return None


def share_ts(file_info: dict, channel_id: str) -> Optional[str]:
    """Timestamp of the message that shared the file in a channel, if Slack reports one."""
    shares = file_info.get("shares") or {}
    for visibility in ("public", "private"):
        entries = (shares.get(visibility) or {}).get(channel_id) or []
        if entries and entries[0].get("ts"):
            return entries[0]["ts"]
    return None


def too_large_message(size_mb: float, limit_mb: float) -> str:
    return f"That file is {size_mb:.0f}MB, too large to process. Try a file under {limit_mb:.0f}MB."


def status_text(kind: SourceType) -> str:
    return "Looking at your image..." if kind == SourceType.IMAGE else "Processing your video..."


async def finish_status(slack: "SlackClient", channel_id: str, status_ts: Optional[str], kind: SourceType, succeeded: bool) -> None:
    """Edit the status line to "... done." / "... stopped.". A failed edit is logged only."""
    if not status_ts:
        return
    suffix = "done." if succeeded else "stopped."
    try:
        await slack.update_message(channel_id, status_ts, f"{status_text(kind)} {suffix}")
    except Exception as e:
        logger.warning(f"Status line update failed in {channel_id}: {e}")


def extract_meta_content(page: str, prop: str) -> Optional[str]:
    """Read an Open Graph <meta> value regardless of attribute order or quote style."""
    name = re.escape(prop)
    patterns = (
        rf"<meta[^>]+(?:property|name)=[\"']{name}[\"'][^>]+content=[\"']([^\"']+)[\"']",
        rf"<meta[^>]+content=[\"']([^\"']+)[\"'][^>]+(?:property|name)=[\"']{name}[\"']",
    )
    for pattern in patterns:
        match = re.search(pattern, page, re.IGNORECASE)
        if match:
            return html.unescape(match.group(1))
    return None


# =============================================================================
# Transcription
# =============================================================================

def join_speech_segments(payload: dict) -> str:
    """Keep only segments the model believes contain speech; fall back to the full text."""
    segments = payload.get("segments") or []
    speech = " ".join(
        (seg.get("text") or "").strip()
        for seg in segments
        if float(seg.get("no_speech_prob", 0.0)) < NO_SPEECH_THRESHOLD
    ).strip()
    return speech or (payload.get("text") or "").strip()


class Transcriber:
    """Speech-to-text over the OpenAI audio transcription HTTP API."""

    def __init__(self, api_key: Optional[str] = None, model: str = TRANSCRIPTION_MODEL, base_url: str = OPENAI_BASE_URL):
        self.api_key = api_key if api_key is not None else OPENAI_API_KEY
        self.model = model
        self.base_url = base_url.rstrip("/")

    async def transcribe(self, data: bytes, filename: str) -> str:
        if not self.api_key:
            raise IntakeError(TRANSCRIPTION_DISABLED_MESSAGE)
        size_mb = len(data) / (1024 * 1024)
        if size_mb > TRANSCRIPTION_MAX_MB:
            raise IntakeError(too_large_message(size_mb, TRANSCRIPTION_MAX_MB))

        async with httpx.AsyncClient(timeout=TRANSCRIPTION_TIMEOUT_SECONDS) as http:
            response = await http.post(
                f"{self.base_url}/audio/transcriptions",
                headers={"Authorization": f"Bearer {self.api_key}"},
                data={"model": self.model, "response_format": "verbose_json", "temperature": "0"},
                files={"file": (filename, data)},
            )
            response.raise_for_status()
            payload = response.json()

        text = join_speech_segments(payload)
        logger.info(f"Transcribed {filename}: {len(text)} chars")
        return text


# =============================================================================
# Intake
# =============================================================================

@dataclass
class FetchedMedia:
    kind: SourceType
    data: bytes
    filename: str
    mime_type: Optional[str] = None


class MediaIntake:
    """Resolves uploads and links into content the copy / competitor agents can work with."""

    def __init__(
        self,
        slack: "SlackClient",
        router: "SmartRouter",
        llm: "LLMPort",
        transcriber: Optional[Transcriber] = None,
    ):
        self.slack = slack
        self.router = router
        self.llm = llm
        self.transcriber = transcriber or Transcriber()

    async def describe_image(self, data: bytes, mime_type: str) -> str:
        return await run_prompt(
            self.llm,
            "describe_image",
            [{"bytes": data, "mime_type": mime_type}, "Describe this ad image."],
        )

    async def extract(self, kind: SourceType, data: bytes, filename: str, mime_type: Optional[str]) -> tuple[str, Optional[dict]]:
        """Return (source_content, image block or None)."""
        if kind == SourceType.IMAGE:
            mime = mime_type or IMAGE_MIME_TYPES.get(file_extension(filename), "image/jpeg")
            description = await self.describe_image(data, mime)
            return description, {"bytes": data, "mime_type": mime}
        transcript = await self.transcriber.transcribe(data, filename)
        if not transcript:
            raise IntakeError(NO_SPEECH_MESSAGE)
        return transcript, None

    # =========================================================================
    # Uploads
    # =========================================================================

    async def process_upload(self, ctx: EventContext) -> Optional[RouteDecision]:
        """files.info -> checks -> download -> extract -> intent. None means ignore the upload."""
        if ctx.file is None:
            return None

        info = await self.slack.get_file_info(ctx.file.file_id)
        filename = info.get("name") or ctx.file.name or "upload"
        kind = media_kind(filename)
        if kind is None:
            logger.debug(f"Ignoring non-media upload {filename}")
            return None

        anchor = share_ts(info, ctx.channel_id) or ctx.reply_ts
        size_mb = int(info.get("size") or 0) / (1024 * 1024)
        if size_mb > MAX_UPLOAD_MB:
            raise IntakeError(too_large_message(size_mb, MAX_UPLOAD_MB))

        url = info.get("url_private_download") or info.get("url_private")
        if not url:
            raise IntakeError(NO_ACCESS_MESSAGE)

        status_ts = await self.slack.post_message(ctx.channel_id, status_text(kind), anchor)
        try:
            data = await self.slack.download_file(url)
            content, image = await self.extract(kind, data, filename, info.get("mimetype"))
            user_notes = await self._user_notes(ctx.channel_id, anchor)
            intent = await self.router.classify_upload_intent(content, user_notes)
        except Exception:
            await finish_status(self.slack, ctx.channel_id, status_ts, kind, succeeded=False)
            raise
        agent = "competitor_analysis" if intent == "competitor" else "copy_generation"
        logger.info(f"Upload {filename} in {ctx.channel_id} classified as {intent} -> {agent}")

        meta = {
            "source_content": content,
            "source_type": kind.value,
            "filename": filename,
            "user_notes": user_notes,
            "message_ts": anchor,
            "status_ts": status_ts,
        }
        if image is not None:
            meta["image"] = image
        return RouteDecision(agent=agent, meta=meta)

    async def _user_notes(self, channel_id: str, ts: Optional[str]) -> str:
        if not ts:
            return ""
        try:
            message = await self.slack.get_message(channel_id, ts)
        except Exception as e:
            logger.warning(f"Could not read upload message {channel_id}:{ts}: {e}")
            return ""
        return ((message or {}).get("text") or "").strip()

    # =========================================================================
    # Links
    # =========================================================================

    async def process_link(self, ctx: EventContext, decision: RouteDecision) -> RouteDecision:
        """Best-effort media fetch for a competitor link. Never raises for an unreachable page."""
        url = decision.meta.get("url") or ""
        meta = dict(decision.meta)
        meta.update({"user_notes": ctx.text, "message_ts": ctx.reply_ts})

        page = await self.fetch_page(url) if url else None
        title = extract_meta_content(page, "og:title") if page else None
        description = extract_meta_content(page, "og:description") if page else None

        media = await self.fetch_media(page) if page else None
        if media is not None:
            try:
                content, image = await self.extract(media.kind, media.data, media.filename, media.mime_type)
                meta.update({"source_content": content, "source_type": media.kind.value, "filename": media.filename})
                if image is not None:
                    meta["image"] = image
                return decision.model_copy(update={"meta": meta})
            except Exception as e:
                logger.warning(f"Link media extraction failed for {url}, using page text: {e}")

        parts = [f"Link: {url}", f"User's message: {ctx.text}"]
        if title:
            parts.append(f"Page title: {title}")
        if description:
            parts.append(f"Page description: {description}")
        meta.update({"source_content": "\n".join(parts), "source_type": "link", "filename": url or "shared link"})
        return decision.model_copy(update={"meta": meta})

    async def fetch_page(self, url: str) -> Optional[str]:
        try:
            async with httpx.AsyncClient(timeout=PAGE_TIMEOUT_SECONDS, follow_redirects=True) as http:
                response = await http.get(url, headers=BROWSER_HEADERS)
                response.raise_for_status()
                return response.text
        except httpx.HTTPError as e:
            logger.info(f"Page fetch failed for {url}: {e}")
            return None

    async def fetch_media(self, page: str) -> Optional[FetchedMedia]:
        """Video first (more to analyse), then image."""
        video_url = extract_meta_content(page, "og:video") or extract_meta_content(page, "og:video:url")
        if video_url:
            data = await self._download(video_url)
            if data:
                return FetchedMedia(SourceType.VIDEO, data, "competitor-video.mp4")

        image_url = extract_meta_content(page, "og:image")
        if image_url:
            data = await self._download(image_url)
            if data:
                match = re.search(r"\.(png|jpg|jpeg|webp|gif)", image_url, re.IGNORECASE)
                ext = match.group(1).lower() if match else "jpg"
                return FetchedMedia(SourceType.IMAGE, data, f"competitor-image.{ext}", IMAGE_MIME_TYPES[ext])
        return None

    async def _download(self, url: str) -> Optional[bytes]:
        try:
            async with httpx.AsyncClient(timeout=MEDIA_TIMEOUT_SECONDS, follow_redirects=True) as http:
                response = await http.get(url, headers={"User-Agent": BROWSER_HEADERS["User-Agent"]})
                response.raise_for_status()
        except httpx.HTTPError as e:
            logger.info(f"Media download failed for {url}: {e}")
            return None
        if len(response.content) <= MIN_MEDIA_BYTES:
            return None
        return response.content
