# Understood/src/channels/formatter.py
# @ai-rules:
# 1. [Constraint]: Pure functions only -- no I/O, no Slack API calls. Returns mrkdwn strings.
# 2. [Gotcha]: The quality gate parses "*Headline:*" and "*Primary Text:*" out of rendered variants. Keep those labels stable.
# 3. [Gotcha]: Slack messages cap at ~40k chars but readability dies far earlier. _truncate long free text.
"""Render variants, briefs, profiles and static copy as Slack mrkdwn."""
from __future__ import annotations

import re
from typing import TYPE_CHECKING, Sequence

if TYPE_CHECKING:
    from ..models import CompetitorAnalysis, CopyVariant, LearningInsight, VoiceProfile

DIVIDER = "———————————————————"
_MAX_TEXT = 3900


def _md_to_mrkdwn(text: str) -> str:
    """Convert standard Markdown to Slack mrkdwn (LLMs love **bold** and ### headings)."""
    text = re.sub(r"^#{1,6}\s+(.+)$", r"*\1*", text, flags=re.MULTILINE)
    text = re.sub(r"\*\*(.+?)\*\*", r"*\1*", text)
    text = re.sub(r"\[([^\]]+)\]\(([^)]+)\)", r"<\2|\1>", text)
    return text


def _truncate(text: str, limit: int = _MAX_TEXT) -> str:
    if len(text) <= limit:
        return text
    return text[: limit - 20] + "\n...(truncated)"


def _plural(n: int, word: str) -> str:
    return f"{n} {word}" if n == 1 else f"{n} {word}s"


# =============================================================================
# Copy variants
# =============================================================================

def format_variant_block(index: int, variant: "CopyVariant", label: str = "Variant") -> str:
    return (
        f"*{label} {index}: {variant.angle}*\n\n"
        f"*Headline:* {variant.headline}\n"
        f"*Description:* {variant.description}\n\n"
        f"*Primary Text:*\n{variant.primary_text}"
    )


def format_variants(variants: Sequence["CopyVariant"], filename: str) -> str:
    """Full copy-generation reply: header, one block per variant, feedback hints."""
    n = len(variants)
    header = f"*{n} Ad Copy Variant{'' if n == 1 else 's'} for {filename}*\n"
    blocks = [f"{DIVIDER}\n{format_variant_block(i + 1, v)}" for i, v in enumerate(variants)]
    footer = (
        f"\n{DIVIDER}\n\n"
        "Want changes? Reply in this thread with feedback and I'll revise and remember for next time.\n"
        "• Feedback on one variant: _\"Variant 2: make it less formal\"_\n"
        "• Feedback on all: _\"these are all too salesy\"_\n"
        "• Love them? Say _\"approved\"_ and I'll keep them as examples for future copy."
    )
    return header + "\n" + "\n\n".join(blocks) + footer


def format_revised_variant(index: int, variant: "CopyVariant") -> str:
    return format_variant_block(index, variant, label="Revised Variant")


# =============================================================================
# Competitor analysis
# =============================================================================

def format_competitor_analysis(analysis: "CompetitorAnalysis", filename: str) -> str:
    return (
        f"*Competitor Ad Analysis: {filename}*\n\n"
        f"*What Makes This Ad Work*\n{_md_to_mrkdwn(analysis.what_works)}\n\n"
        f"{DIVIDER}\n\n"
        f"*Your Brief*\n{_md_to_mrkdwn(analysis.your_brief)}\n\n"
        f"{DIVIDER}\n\n"
        f"*Copy Direction*\n{_md_to_mrkdwn(analysis.copy_direction)}\n\n"
        f"{DIVIDER}\n\n"
        "Want changes? Reply in this thread with what to adjust and I'll revise the brief."
    )


# =============================================================================
# Static copy
# =============================================================================

def format_welcome_message() -> str:
    return """*Welcome to Understood*

I turn your ad creatives into Meta ad copy in your brand's voice, and I can break down competitor ads into briefs your team can shoot.

*Step 1: Build your brand profile (~3 minutes)*
Say *setup* and I'll learn about your brand through a quick interview. Do this first.

*Step 2: Upload your creatives*
Upload any video, audio, or image ad here. I'll write 4 copy variants in your brand voice.

*Step 3: Share competitor ads*
Drop a screenshot, screen recording or link with a note about what you like, e.g. _"Love the visual style, how would we do this?"_

*Step 4: Keep teaching me*
Send pricing changes, taglines, tone notes or words to avoid any time. I learn from every reply.

*Commands:*
• *setup*: build your brand profile
• *profile*: view your current brand profile
• *learnings*: see what I've learned from your feedback
• *help*: see this message again"""


def format_help_message() -> str:
    return """*How to use Understood:*

• Upload your ad creative and I'll generate 4 copy variants in your brand voice
• Upload or link a competitor ad with a note about what you like and I'll write a production brief
• Send brand context (pricing, tone, phrases) and I'll remember it for future copy
• Reply to any output with feedback and I'll revise and learn for next time

*Commands:*
• *setup*: build your brand profile
• *new setup*: start the interview over
• *profile*: view your current brand profile
• *learnings*: see learned preferences
• *refresh*: re-run learning on recent feedback
• *help*: see this message"""


def format_fallback_message() -> str:
    return (
        "Not sure what to do with that one. Upload a creative, share a competitor ad, "
        "or say *help* to see everything I can do."
    )


def format_profile(profile: "VoiceProfile", notes_count: int, generation_count: int) -> str:
    def bullets(items: Sequence[str]) -> str:
        return "\n".join(f"  - {p}" for p in items) or "  - (none)"

    angles = "\n".join(f"  {i + 1}. {a}" for i, a in enumerate(profile.value_prop_angles)) or "  (none)"
    return (
        f"*Brand Profile: {profile.name}*\n\n"
        f"*Tone:* {profile.tone_description}\n\n"
        f"*Headline Patterns:*\n{bullets(profile.headline_patterns)}\n\n"
        f"*Primary Text Structure:*\n{bullets(profile.primary_text_structure)}\n\n"
        f"*Always Include:* {', '.join(profile.mandatory_phrases) or '(none)'}\n"
        f"*Never Use:* {', '.join(profile.banned_phrases) or '(none)'}\n\n"
        f"*CTA Style:* {profile.cta_language}\n\n"
        f"*Variant Angles:*\n{angles}\n\n"
        f"{DIVIDER}\n"
        f"{_plural(notes_count, 'brand note')} accumulated · {_plural(generation_count, 'creative')} processed"
    )


def format_team_member_welcome(profile: "VoiceProfile") -> str:
    return (
        "Welcome! This channel uses Understood to generate ad copy.\n\n"
        f"*Brand profile: {profile.name}*\n"
        f"Tone: {profile.tone_description}\n\n"
        "Check the pinned message for how things work. Upload a creative here and "
        "I'll write copy using the brand profile above."
    )


def format_learnings(insights: Sequence["LearningInsight"]) -> str:
    if not insights:
        return (
            "I haven't learned any patterns for this channel yet. Give feedback on a few "
            "generations (approve, revise, or tell me what's off) and I'll start picking things up."
        )
    lines = ["*What I've learned from your feedback:*", ""]
    for ins in insights:
        label = ins.category.value.replace("_", " ")
        lines.append(
            f"• _{label}_ ({int(round(ins.confidence * 100))}% confident, "
            f"{_plural(ins.sample_size, 'sample')}): {ins.insight}"
        )
    return _truncate("\n".join(lines))


def format_thread_reply(text: str) -> str:
    """Free-form model reply for a thread: mrkdwn, bounded length."""
    return _truncate(_md_to_mrkdwn(text.strip()))
