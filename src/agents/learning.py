# Understood/src/agents/learning.py
# @ai-rules:
# 1. [Constraint]: Never posts to chat. Runs on the LearningWorker, off the reply path.
# 2. [Pattern]: Three-way merge protocol: reinforce (in place), supersede (deactivate + forward pointer), new (insert).
# 3. [Constraint]: Evidence floor before any LLM call: >= MIN_FEEDBACK feedback items AND >= MIN_GENERATIONS generations.
# 4. [Gotcha]: Each merge action is fault-isolated. A bad insight id or category is logged and skipped, never fatal.
# 5. [Gotcha]: evidence_count < MIN_EVIDENCE is skipped in code even if the model returns it.
# 6. [Gotcha]: reinforce/supersede only accept ids of insights that are ACTIVE for this channel right now.
"""
Learning Agent -- reconciles feedback evidence with learned insights.

Evidence sources, in priority order:
    1. Structured copy feedback records (approve / revise / reject / clarify)
    2. Recent generations with their variants
    3. Currently active insights (merge targets, each with a stable id)
    4. Legacy "Copy feedback:" brand notes when structured feedback is thin
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from ..models import (
    CopyFeedbackRecord,
    GenerationRecord,
    InsightCategory,
    LearningInsight,
)
from ..utils import parse_llm_json
from .prompts import run_prompt
from .security import sanitize

if TYPE_CHECKING:
    from ..state.store import BrandStore
    from .llm import LLMPort

logger = logging.getLogger(__name__)

FEEDBACK_LIMIT = 50
GENERATION_LIMIT = 20
MIN_FEEDBACK = 3
MIN_GENERATIONS = 3
MIN_EVIDENCE = 2
LEGACY_NOTE_PREFIX = "Copy feedback:"
DEFAULT_CONFIDENCE = 0.5


@dataclass
class MergeSummary:
    reinforced: int = 0
    superseded: int = 0
    inserted: int = 0
    skipped: int = 0
    ran: bool = False


# =============================================================================
# Evidence rendering
# =============================================================================

def _variant_line(v: dict) -> str:
    return f'"{v.get("headline", "")}" ({v.get("angle", "")})'


def render_generations(generations: list[GenerationRecord]) -> str:
    lines = []
    for gen in generations:
        if gen.source_type.value == "competitor_analysis":
            continue
        variants = "; ".join(_variant_line(v) for v in gen.variants) or "(none)"
        lines.append(f"- generation {gen.id} [{gen.source_type.value}] {gen.video_filename}: {variants}")
    return "\n".join(lines) or "(none)"


def render_feedback(records: list[CopyFeedbackRecord]) -> str:
    lines = []
    for r in records:
        target = f"variant {r.variant_index}" if r.variant_index else "whole set"
        parts = [f"- [{r.action.value}] {target} of generation {r.generation_id}: \"{sanitize(r.feedback_text)}\""]
        if r.approval_reason:
            parts.append(f"  Approval reason: {sanitize(r.approval_reason)}")
        if r.before_snapshot and r.after_snapshot:
            parts.append(f"  Before: {json.dumps(r.before_snapshot)[:400]}")
            parts.append(f"  After: {json.dumps(r.after_snapshot)[:400]}")
        lines.extend(parts)
    return "\n".join(lines)


def render_insights(insights: list[LearningInsight]) -> str:
    if not insights:
        return "(none yet)"
    return "\n".join(
        f"- id={i.id} [{i.category.value}] (confidence {i.confidence:.2f}, samples {i.sample_size}) {i.insight}"
        for i in insights
    )


# =============================================================================
# Agent
# =============================================================================

class LearningAgent:

    def __init__(self, store: "BrandStore", llm: "LLMPort"):
        self.store = store
        self.llm = llm

    async def run(self, channel_id: str) -> MergeSummary:
        """Gather evidence, ask the model for merge actions, apply them."""
        summary = MergeSummary()

        feedback = await self.store.list_copy_feedback(channel_id, limit=FEEDBACK_LIMIT)
        generations = await self.store.list_generations(channel_id, limit=GENERATION_LIMIT)
        existing = await self.store.get_active_insights(channel_id)

        if len(feedback) >= MIN_FEEDBACK:
            evidence = f"STRUCTURED FEEDBACK (most recent first):\n{render_feedback(feedback)}"
        else:
            notes = [n for n in await self.store.get_brand_notes(channel_id) if n.note.startswith(LEGACY_NOTE_PREFIX)]
            notes = notes[-FEEDBACK_LIMIT:]
            if len(notes) < MIN_FEEDBACK:
                logger.debug(f"Learning skipped for {channel_id}: only {len(feedback)} feedback / {len(notes)} notes")
                return summary
            evidence = "FEEDBACK NOTES (most recent last):\n" + "\n".join(f"- {sanitize(n.note)}" for n in notes)

        if len(generations) < MIN_GENERATIONS:
            logger.debug(f"Learning skipped for {channel_id}: only {len(generations)} generations")
            return summary

        contents = (
            f"RECENT GENERATIONS:\n{render_generations(generations)}\n\n"
            f"{evidence}\n\n"
            f"ACTIVE INSIGHTS:\n{render_insights(existing)}"
        )
        reply = await run_prompt(self.llm, "learning", contents)
        try:
            actions = parse_llm_json(reply or "[]", expect=list)
        except ValueError as e:
            logger.warning(f"Learning reply for {channel_id} was not a JSON array: {e}")
            return summary

        summary.ran = True
        active_ids = {i.id for i in existing}
        for action in actions:
            try:
                outcome = await self.apply_action(channel_id, action, active_ids)
            except Exception as e:
                logger.warning(f"Learning action failed for {channel_id}: {action!r}: {e}")
                outcome = None
            if outcome == "reinforce":
                summary.reinforced += 1
            elif outcome == "supersede":
                summary.superseded += 1
            elif outcome == "new":
                summary.inserted += 1
            else:
                summary.skipped += 1

        logger.info(
            f"Learning for {channel_id}: reinforced={summary.reinforced}, superseded={summary.superseded}, "
            f"new={summary.inserted}, skipped={summary.skipped}"
        )
        return summary

    async def apply_action(self, channel_id: str, action: Any, active_ids: set[str]) -> str | None:
        """Apply one merge action. Returns the action name applied, or None if skipped."""
        if not isinstance(action, dict):
            logger.warning(f"Learning: ignoring non-object action {action!r}")
            return None

        kind = action.get("action")
        evidence = int(action.get("evidence_count") or 0)
        if evidence < MIN_EVIDENCE:
            logger.debug(f"Learning: skipping {kind} with evidence_count={evidence}")
            return None

        if kind == "reinforce":
            insight_id = str(action.get("insight_id") or "")
            if insight_id not in active_ids:
                logger.warning(f"Learning: reinforce references unknown/inactive insight {insight_id}")
                return None
            updated = await self.store.reinforce_insight(insight_id)
            return "reinforce" if updated else None

        if kind == "supersede":
            old_id = str(action.get("insight_id") or "")
            if old_id not in active_ids:
                logger.warning(f"Learning: supersede references unknown/inactive insight {old_id}")
                return None
            new = self._build_insight(channel_id, action, evidence)
            created = await self.store.supersede_insight(old_id, new)
            if created is None:
                return None
            active_ids.discard(old_id)
            active_ids.add(created.id)
            return "supersede"

        if kind == "new":
            created = await self.store.insert_insight(self._build_insight(channel_id, action, evidence))
            active_ids.add(created.id)
            return "new"

        logger.warning(f"Learning: unknown merge action {kind!r}")
        return None

    @staticmethod
    def _build_insight(channel_id: str, action: dict, evidence: int) -> LearningInsight:
        text = sanitize(str(action.get("insight") or "")).strip()
        if not text:
            raise ValueError("merge action has no insight text")
        return LearningInsight(
            channel_id=channel_id,
            category=InsightCategory(action.get("category")),
            insight=text,
            confidence=action.get("confidence", DEFAULT_CONFIDENCE),
            sample_size=evidence,
        )
