# Understood/src/agents/voice_profile.py
# @ai-rules:
# 1. [Pattern]: extract_voice_profile() returns profile FIELDS only. The caller persists them via an update_profile side effect.
# 2. [Constraint]: Every interview answer is wrapped with wrap_user_content() before it enters the prompt.
# 3. [Gotcha]: LLM list fields sometimes come back as objects; VoiceProfile.coerce_str_list normalizes them on upsert.
"""Interview answers + copy examples -> voice profile fields and a readable summary."""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from ..channels.formatter import DIVIDER
from ..models import CustomerState
from ..utils import parse_llm_json
from .prompts import run_prompt
from .security import sanitize, wrap_user_content

if TYPE_CHECKING:
    from .llm import LLMPort

logger = logging.getLogger(__name__)

PROFILE_KEYS = (
    "headline_patterns",
    "description_patterns",
    "primary_text_structure",
    "tone_description",
    "mandatory_phrases",
    "banned_phrases",
    "value_prop_angles",
    "cta_language",
)

# (answer key, prompt label)
CONTEXT_FIELDS = (
    ("business_name", "business_name"),
    ("website_url", "website"),
    ("product_description", "product"),
    ("target_audience", "audience"),
    ("buying_reasons", "buying_reasons"),
    ("price_and_offer", "offer"),
    ("tone_preference", "tone"),
    ("mandatory_phrases_raw", "must_include"),
    ("banned_phrases_raw", "must_avoid"),
    ("cta_preference", "cta"),
    ("ad_platforms", "platforms"),
)


def build_business_context(answers: dict[str, Any]) -> str:
    return "\n".join(
        wrap_user_content(label, answers.get(key) or "Not provided") for key, label in CONTEXT_FIELDS
    )


def build_full_context(answers: dict[str, Any]) -> str:
    """Plain-text business summary stored on the profile and fed to every copy prompt."""
    return "\n".join([
        f"BUSINESS: {sanitize(answers.get('business_name') or '')}",
        f"PRODUCT: {sanitize(answers.get('product_description') or '')}",
        f"AUDIENCE: {sanitize(answers.get('target_audience') or '')}",
        f"WHY THEY BUY: {sanitize(answers.get('buying_reasons') or '')}",
        f"OFFER: {sanitize(answers.get('price_and_offer') or '')}",
        f"CTA: {sanitize(answers.get('cta_preference') or '')}",
        f"PLATFORMS: {sanitize(answers.get('ad_platforms') or '')}",
    ])


async def extract_voice_profile(llm: "LLMPort", customer: CustomerState) -> dict[str, Any]:
    """Run the extraction prompt and return upsert-ready VoiceProfile fields.

    Raises:
        ValueError: The model reply held no usable profile JSON.
    """
    answers = customer.answers
    has_examples = bool(customer.copy_examples.strip())
    if has_examples:
        examples_section = (
            f"\nAD COPY EXAMPLES:\n{wrap_user_content('copy_examples', customer.copy_examples)}\n\n"
            "Extract the patterns you SEE in the examples above, weighted by the interview answers.\n"
        )
    else:
        examples_section = (
            "\nNo ad copy examples were provided. Infer a strong starting profile from the "
            "business context alone.\n"
        )

    reply = await run_prompt(
        llm,
        "voice_profile",
        "Build the voice profile now.",
        examples_clause=" and ad copy examples" if has_examples else "",
        business_context=build_business_context(answers),
        examples_section=examples_section,
    )
    data = parse_llm_json(reply, expect=dict)
    missing = [k for k in PROFILE_KEYS if k not in data]
    if missing:
        logger.warning(f"Voice profile JSON missing keys: {missing}")

    fields: dict[str, Any] = {k: data[k] for k in PROFILE_KEYS if k in data}
    fields["name"] = answers.get("business_name") or "Default"
    fields["slack_user_id"] = customer.slack_user_id
    fields["full_context"] = build_full_context(answers)
    fields["raw_examples"] = customer.copy_examples
    return fields


def _angle_line(i: int, angle: Any) -> str:
    if isinstance(angle, dict):
        label = angle.get("label") or angle.get("name") or ""
        desc = angle.get("description") or ""
        return f"  {i}. *{label}*: {desc}" if label else f"  {i}. {desc}"
    return f"  {i}. {angle}"


def format_profile_summary(fields: dict[str, Any], answers: dict[str, Any]) -> str:
    angles = "\n".join(_angle_line(i + 1, a) for i, a in enumerate(fields.get("value_prop_angles") or []))
    return (
        f"*Brand Profile: {answers.get('business_name') or 'Your Brand'}*\n\n"
        f"*What you sell:* {answers.get('product_description') or 'Not specified'}\n"
        f"*Target customer:* {answers.get('target_audience') or 'Not specified'}\n"
        f"*Why they buy:* {answers.get('buying_reasons') or 'Not specified'}\n"
        f"*Pricing:* {answers.get('price_and_offer') or 'Not specified'}\n\n"
        f"*Tone:* {fields.get('tone_description') or ''}\n\n"
        f"*Core Value Props:*\n{angles or '  (none)'}\n\n"
        f"{DIVIDER}\n"
        "I'll use this profile every time I write copy for you. Send me brand context anytime to make it even better."
    )
