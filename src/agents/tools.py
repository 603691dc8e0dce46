# Understood/src/agents/tools.py
# @ai-rules:
# 1. [Constraint]: Validation results are PROTOCOL messages for the model, never exceptions. Only execute_tool() catches.
# 2. [Pattern]: AgentLoopState is the single mutable object of one copy generation. Tools mutate it, the loop reads it.
# 3. [Gotcha]: Accepted variants are capped at MAX_VARIANTS. A 5th submit without replace_index is rejected.
# 4. [Gotcha]: replace_index is 1-based. Replacing a variant clears review_passed; review_set must run again.
# 5. [Constraint]: Tool names here must match COPY_TOOL_SCHEMAS in llm/types.py.
"""
Copy agent tool executors: fetch_exemplars, submit_variant, review_set.

Each executor returns a ToolResult that is serialized to JSON and fed back to
the model as the tool result, so rejections carry itemized, fixable issues.
"""
from __future__ import annotations

import json
import logging
import re
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Optional

from ..models import CopyVariant, VoiceProfile

if TYPE_CHECKING:
    from ..state.store import BrandStore
    from .llm import FunctionCall

logger = logging.getLogger(__name__)

MAX_VARIANTS = 4
MAX_HEADLINE_CHARS = 40
MIN_PARAGRAPHS = 3
MAX_EXEMPLARS = 5
JACCARD_THRESHOLD = 0.7
MIN_PRIMARY_TEXT_CHARS = 100

PARAGRAPH_SPLIT_RE = re.compile(r"\n\s*\n")
REQUIRED_FIELDS = ("angle", "headline", "description", "primary_text")


@dataclass
class ToolResult:
    success: bool
    message: str
    data: Any = None

    def to_json(self) -> str:
        payload: dict[str, Any] = {"success": self.success, "message": self.message}
        if self.data is not None:
            payload["data"] = self.data
        return json.dumps(payload)


@dataclass
class AgentLoopState:
    """Mutable state of one copy-generation loop."""
    variants: list[CopyVariant] = field(default_factory=list)
    turns: int = 0
    start_time: float = field(default_factory=time.monotonic)
    quality_issues: list[str] = field(default_factory=list)
    review_passed: bool = False
    exemplars_fetched: bool = False
    require_exemplars: bool = False

    @property
    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self.start_time) * 1000)

    @property
    def exemplar_gate_open(self) -> bool:
        return self.exemplars_fetched or not self.require_exemplars


# =============================================================================
# Validation helpers
# =============================================================================

def jaccard(a: str, b: str) -> float:
    """Token Jaccard similarity over lowercase words longer than 3 chars."""
    set_a = {w for w in a.lower().split() if len(w) > 3}
    set_b = {w for w in b.lower().split() if len(w) > 3}
    if not set_a or not set_b:
        return 0.0
    return len(set_a & set_b) / len(set_a | set_b)


def count_paragraphs(text: str) -> int:
    return len([p for p in PARAGRAPH_SPLIT_RE.split(text.strip()) if p.strip()])


def validate_variant(
    variant: CopyVariant,
    profile: Optional[VoiceProfile],
    others: list[CopyVariant],
) -> list[str]:
    """Hard constraints for a single variant. Empty list means valid."""
    issues: list[str] = []

    headline_len = len(variant.headline)
    if headline_len > MAX_HEADLINE_CHARS:
        issues.append(
            f"Headline is {headline_len} chars; it must be {MAX_HEADLINE_CHARS} characters or fewer. "
            f'Current: "{variant.headline}"'
        )

    combined = f"{variant.headline}\n{variant.description}\n{variant.primary_text}".lower()
    if profile is not None:
        for phrase in profile.banned_phrases:
            if phrase and phrase.lower() in combined:
                issues.append(f'Contains banned phrase "{phrase}". Remove it.')
        for phrase in profile.mandatory_phrases:
            if phrase and phrase.lower() not in combined:
                issues.append(f'Missing mandatory phrase "{phrase}". Work it in naturally.')

    normalized = variant.headline.strip().lower()
    for other in others:
        if other.headline.strip().lower() == normalized:
            issues.append(f'Headline duplicates an accepted variant: "{other.headline}". Write a different one.')
            break

    paragraphs = count_paragraphs(variant.primary_text)
    if paragraphs < MIN_PARAGRAPHS:
        issues.append(
            f"Primary text has {paragraphs} paragraph(s); it needs at least {MIN_PARAGRAPHS} "
            "short paragraphs separated by blank lines."
        )

    if "```" in combined:
        issues.append("Contains code fence markers (```). Write plain ad copy.")

    return issues


# =============================================================================
# Executors
# =============================================================================

async def execute_fetch_exemplars(
    args: dict,
    state: AgentLoopState,
    store: "BrandStore",
    channel_id: str,
) -> ToolResult:
    try:
        requested = int(args.get("count") or MAX_EXEMPLARS)
    except (TypeError, ValueError):
        requested = MAX_EXEMPLARS
    count = max(1, min(requested, MAX_EXEMPLARS))

    exemplars = await store.get_exemplars(channel_id, limit=count)
    state.exemplars_fetched = True
    if not exemplars:
        return ToolResult(
            True,
            "No exemplars found yet. This brand has no approved copy; follow the voice profile.",
            data=[],
        )
    data = [
        {
            "index": i + 1,
            "variant": ex.variant,
            "sourceType": ex.source_type,
            "whyApproved": ex.why_approved,
            "score": ex.score,
        }
        for i, ex in enumerate(exemplars)
    ]
    return ToolResult(True, f"Found {len(data)} approved exemplar(s). Match their quality, not their wording.", data)


def execute_submit_variant(args: dict, state: AgentLoopState, profile: Optional[VoiceProfile]) -> ToolResult:
    if not state.exemplar_gate_open:
        return ToolResult(False, "Call fetch_exemplars before submitting variants.")

    missing = [f for f in REQUIRED_FIELDS if not str(args.get(f) or "").strip()]
    if missing:
        issues = [f"Missing field: {f}" for f in missing]
        state.quality_issues.extend(issues)
        return ToolResult(False, "Variant rejected. Fix these issues and resubmit:\n- " + "\n- ".join(issues))

    variant = CopyVariant(
        angle=str(args["angle"]).strip(),
        headline=str(args["headline"]).strip(),
        description=str(args["description"]).strip(),
        primary_text=str(args["primary_text"]).strip(),
    )

    replace_index = args.get("replace_index")
    if replace_index is not None:
        try:
            replace_index = int(replace_index)
        except (TypeError, ValueError):
            return ToolResult(False, f"replace_index must be an integer between 1 and {len(state.variants)}.")
        if not 1 <= replace_index <= len(state.variants):
            return ToolResult(
                False, f"replace_index {replace_index} is out of range; {len(state.variants)} variant(s) accepted.",
            )
    elif len(state.variants) >= MAX_VARIANTS:
        return ToolResult(
            False,
            f"All {MAX_VARIANTS} variants are already accepted. Call review_set, "
            "or pass replace_index to replace one.",
        )

    others = [v for i, v in enumerate(state.variants) if replace_index is None or i != replace_index - 1]
    issues = validate_variant(variant, profile, others)
    if issues:
        state.quality_issues.extend(issues)
        logger.debug(f"submit_variant rejected ({len(issues)} issues): {issues}")
        return ToolResult(False, "Variant rejected. Fix these issues and resubmit:\n- " + "\n- ".join(issues))

    if replace_index is not None:
        state.variants[replace_index - 1] = variant
        state.review_passed = False
        return ToolResult(True, f"Variant {replace_index} replaced ({variant.angle}). Call review_set again.")

    state.variants.append(variant)
    n = len(state.variants)
    remaining = MAX_VARIANTS - n
    message = f"Variant {n} accepted ({variant.angle}). {remaining} remaining."
    if remaining == 0:
        message += " Call review_set to validate the full set."
    return ToolResult(True, message)


def execute_review_set(state: AgentLoopState) -> ToolResult:
    variants = state.variants
    if len(variants) < MAX_VARIANTS:
        return ToolResult(
            False,
            f"Only {len(variants)}/{MAX_VARIANTS} variants submitted. "
            f"Submit {MAX_VARIANTS - len(variants)} more before calling review_set.",
        )

    issues: list[str] = []
    angles = {v.angle.strip().lower() for v in variants}
    if len(angles) < len(variants):
        issues.append("Angles are not distinct. Each variant must target a different value proposition.")

    headlines = {v.headline.strip().lower() for v in variants}
    if len(headlines) < len(variants):
        issues.append("Headlines are not unique across the set.")

    for i in range(len(variants)):
        for j in range(i + 1, len(variants)):
            score = jaccard(variants[i].primary_text, variants[j].primary_text)
            if score > JACCARD_THRESHOLD:
                issues.append(
                    f"Variants {i + 1} and {j + 1} primary texts overlap {int(score * 100)}%. "
                    "Rewrite one so it reads differently."
                )

    for i, v in enumerate(variants):
        if len(v.primary_text) < MIN_PRIMARY_TEXT_CHARS:
            issues.append(
                f"Variant {i + 1} primary text is only {len(v.primary_text)} chars; "
                f"it needs at least {MIN_PRIMARY_TEXT_CHARS}."
            )

    if issues:
        state.quality_issues.extend(issues)
        return ToolResult(
            False,
            "Set review FAILED. Fix these issues:\n- " + "\n- ".join(issues)
            + "\n\nResubmit the affected variant(s) with submit_variant and replace_index, then call review_set again.",
        )

    state.review_passed = True
    return ToolResult(True, f"Set review PASSED. All {MAX_VARIANTS} variants are ready.")


async def execute_tool(
    call: "FunctionCall",
    state: AgentLoopState,
    profile: Optional[VoiceProfile],
    store: "BrandStore",
    channel_id: str,
) -> ToolResult:
    """Dispatch one model tool call. Any exception becomes a failed ToolResult."""
    try:
        if call.name == "fetch_exemplars":
            return await execute_fetch_exemplars(call.args or {}, state, store, channel_id)
        if call.name == "submit_variant":
            return execute_submit_variant(call.args or {}, state, profile)
        if call.name == "review_set":
            if not state.exemplar_gate_open:
                return ToolResult(False, "Call fetch_exemplars first.")
            return execute_review_set(state)
        return ToolResult(False, f"Unknown tool: {call.name}")
    except Exception as e:
        logger.warning(f"Tool {call.name} raised: {e}")
        return ToolResult(False, f"Tool error: {e}")
