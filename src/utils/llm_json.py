# Understood/src/utils/llm_json.py
"""
Lenient JSON parsing for LLM replies.

Models wrap JSON in code fences, leave trailing commas, or put raw newlines
inside strings. parse_llm_json() repairs those in escalating steps before
giving up with ValueError.
"""
import json
import re
from typing import Any

_FENCE_RE = re.compile(r"```(?:json)?\s*\n?", re.IGNORECASE)
_TRAILING_COMMA_RE = re.compile(r",\s*([\]}])")
_STRING_RE = re.compile(r'"([^"\\]*(?:\\.[^"\\]*)*)"', re.DOTALL)


def strip_code_fences(text: str) -> str:
    return _FENCE_RE.sub("", text or "").replace("```", "").strip()


def _escape_newlines_in_strings(raw: str) -> str:
    def fix(match: re.Match) -> str:
        return match.group(0).replace("\n", "\\n").replace("\r", "\\r").replace("\t", "\\t")
    return _STRING_RE.sub(fix, raw)


def parse_llm_json(text: str, expect: type = dict) -> Any:
    """Parse a JSON object or array out of an LLM reply.

    Args:
        text: Raw model text.
        expect: dict or list. Used to pick brace vs bracket extraction.

    Raises:
        ValueError: Nothing parseable of the expected type was found.
    """
    cleaned = strip_code_fences(text)
    candidates = [cleaned]

    repaired = _escape_newlines_in_strings(_TRAILING_COMMA_RE.sub(r"\1", cleaned))
    candidates.append(repaired)

    open_ch, close_ch = ("[", "]") if expect is list else ("{", "}")
    start, end = repaired.find(open_ch), repaired.rfind(close_ch)
    if start != -1 and end > start:
        candidates.append(repaired[start:end + 1])

    for candidate in candidates:
        try:
            value = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(value, expect):
            return value
    raise ValueError(f"Could not parse JSON {expect.__name__} from model response")
