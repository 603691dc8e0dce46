# Understood/src/agents/security.py
# @ai-rules:
# 1. [Constraint]: sanitize() runs on EVERY piece of user text before it enters a prompt or a brand note.
# 2. [Pattern]: INJECTION_PATTERNS are replaced with "[removed]", never raise. Users paste real ad copy.
# 3. [Gotcha]: MAX_INPUT_CHARS truncation happens AFTER pattern stripping.
"""Prompt-injection hygiene for user-provided text."""
from __future__ import annotations

import logging
import re

logger = logging.getLogger(__name__)

MAX_INPUT_CHARS = 10000

INJECTION_PATTERNS = [
    r"ignore\s+(all\s+)?(previous|above|prior)\s+(instructions?|prompts?|rules?)",
    r"disregard\s+(all\s+)?(previous|above|prior)\s+(instructions?|prompts?|rules?)",
    r"forget\s+(all\s+)?(previous|above|prior)\s+(instructions?|prompts?|rules?)",
    r"you\s+are\s+now\s+(a|an)\s+",
    r"new\s+instructions?:",
    r"system\s*prompt:",
    r"\[INST\]",
    r"\[/INST\]",
    r"<\|im_start\|>",
    r"<\|im_end\|>",
    r"<<\s*SYS\s*>>",
    r"<<\s*/SYS\s*>>",
]

_COMPILED = [re.compile(p, re.IGNORECASE) for p in INJECTION_PATTERNS]


def sanitize(text: str | None) -> str:
    """Strip known injection patterns and cap length. Keeps normal punctuation."""
    if not text:
        return ""
    cleaned = text
    for pattern in _COMPILED:
        cleaned, n = pattern.subn("[removed]", cleaned)
        if n:
            logger.warning(f"Stripped injection pattern ({n}x): {pattern.pattern}")
    if len(cleaned) > MAX_INPUT_CHARS:
        cleaned = cleaned[:MAX_INPUT_CHARS] + "\n[truncated: input too long]"
    return cleaned.strip()


def wrap_user_content(label: str, content: str | None) -> str:
    """Wrap sanitized user content in XML-style delimiters for prompts."""
    return f"<user_{label}>\n{sanitize(content)}\n</user_{label}>"
