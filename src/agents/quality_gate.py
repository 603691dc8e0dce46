# Understood/src/agents/quality_gate.py
# @ai-rules:
# 1. [Constraint]: Deterministic. No LLM, no I/O. Runs on EVERY agent result before anything is posted.
# 2. [Pattern]: Only code-fence stripping rewrites a message. Every other finding is logged, never blocking.
# 3. [Gotcha]: Messages at or under LENGTH_FLOOR are exempt (status lines, acks).
# 4. [Gotcha]: Banned/mandatory checks need a profile. Structural checks run without one.
"""Quality Gate: final structural safety net for agent output."""
from __future__ import annotations

import logging
import re
from collections import Counter
from dataclasses import dataclass, field
from typing import Optional

from ..models import AgentResult, VoiceProfile

logger = logging.getLogger(__name__)

LENGTH_FLOOR = 200
LONG_FORM_FLOOR = 500
MIN_PRIMARY_TEXT_CHARS = 50

JSON_ARTIFACTS = ('{"angle"', '"headline":', "[{", '"}]')
CODE_FENCE_RE = re.compile(r"```[a-zA-Z]*\n?")
HEADLINE_RE = re.compile(r"\*Headline:\*\s*(.+)")
PRIMARY_TEXT_RE = re.compile(r"\*Primary Text:\*\s*\n(.*?)(?=\n———|\n\*(?:Revised )?Variant \d|\Z)", re.DOTALL)

MINOR = "minor"
MAJOR = "major"


@dataclass
class QualityIssue:
    severity: str
    check: str
    detail: str
    message_index: int
    fixed: bool = False


@dataclass
class GateResult:
    result: AgentResult
    issues: list[QualityIssue] = field(default_factory=list)

    @property
    def major_issues(self) -> list[QualityIssue]:
        return [i for i in self.issues if i.severity == MAJOR]

    @property
    def modified(self) -> bool:
        return any(i.fixed for i in self.issues)


def inspect_text(text: str, profile: Optional[VoiceProfile], index: int = 0) -> tuple[str, list[QualityIssue]]:
    """Run all checks on one message. Returns (possibly fixed text, issues)."""
    issues: list[QualityIssue] = []

    # (a) leaked JSON
    leaked = [a for a in JSON_ARTIFACTS if a in text]
    if leaked:
        issues.append(QualityIssue(MINOR, "json_artifact", f"Leaked JSON fragments: {leaked}", index))

    # (b) code fences -- the only auto-fix
    if "```" in text:
        text = CODE_FENCE_RE.sub("", text).replace("```", "")
        issues.append(QualityIssue(MINOR, "code_fence", "Stripped code fence markers", index, fixed=True))

    # (c) unbalanced emphasis
    if text.count("*") % 2 == 1:
        issues.append(QualityIssue(MINOR, "unbalanced_emphasis", "Odd number of * markers", index))

    lowered = text.lower()
    if profile is not None:
        # (d) banned phrases
        for phrase in profile.banned_phrases:
            if phrase and phrase.lower() in lowered:
                issues.append(QualityIssue(MAJOR, "banned_phrase", f'Contains banned phrase "{phrase}"', index))

        # (e) mandatory phrases, long-form only
        if len(text) > LONG_FORM_FLOOR:
            missing = [p for p in profile.mandatory_phrases if p and p.lower() not in lowered]
            if missing:
                issues.append(QualityIssue(MINOR, "missing_mandatory", f"Missing mandatory phrases: {missing}", index))

    # (f) duplicate headlines across rendered variants
    headlines = [h.strip().lower() for h in HEADLINE_RE.findall(text)]
    dupes = [h for h, n in Counter(headlines).items() if n > 1]
    if dupes:
        issues.append(QualityIssue(MAJOR, "duplicate_headline", f"Duplicate headlines: {dupes}", index))

    # (g) truncated primary text
    for block in PRIMARY_TEXT_RE.findall(text):
        if len(block.strip()) < MIN_PRIMARY_TEXT_CHARS:
            issues.append(QualityIssue(
                MINOR, "truncation", f"Primary text block only {len(block.strip())} chars", index,
            ))

    return text, issues


def apply_quality_gate(result: AgentResult, profile: Optional[VoiceProfile]) -> GateResult:
    """Inspect every long message of an agent result. Returns the (possibly rewritten) result."""
    if not any(len(m.text) > LENGTH_FLOOR for m in result.messages):
        return GateResult(result=result)

    all_issues: list[QualityIssue] = []
    new_messages = []
    for idx, message in enumerate(result.messages):
        if len(message.text) <= LENGTH_FLOOR:
            new_messages.append(message)
            continue
        fixed_text, issues = inspect_text(message.text, profile, idx)
        all_issues.extend(issues)
        new_messages.append(message.model_copy(update={"text": fixed_text}) if fixed_text != message.text else message)

    for issue in all_issues:
        if issue.severity == MAJOR:
            logger.warning(f"Quality gate MAJOR [{issue.check}] msg#{issue.message_index}: {issue.detail}")
        else:
            logger.info(f"Quality gate minor [{issue.check}] msg#{issue.message_index}: {issue.detail}")

    gate = GateResult(result=result, issues=all_issues)
    if gate.modified:
        gate.result = result.model_copy(update={"messages": new_messages})
    return gate
