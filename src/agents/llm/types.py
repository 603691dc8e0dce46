# Understood/src/agents/llm/types.py
# @ai-rules:
# 1. [Constraint]: All tool schemas are plain dicts (provider-agnostic). No anthropic imports.
# 2. [Pattern]: LLMPort defines generate() (stateless) plus the chat session API used by the copy agent loop.
# 3. [Gotcha]: A single assistant turn can carry SEVERAL tool calls. LLMResponse.function_calls keeps them all, in order.
# 4. [Constraint]: COPY_TOOL_SCHEMAS must stay in sync with execute_tool() in agents/tools.py.
"""
Provider-agnostic LLM types, protocol, and tool schemas.

Agents import from this module and never touch SDK-specific types directly.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Protocol


# =============================================================================
# Data Types
# =============================================================================

@dataclass
class FunctionCall:
    """Normalized tool call from any LLM provider."""
    name: str
    args: dict = field(default_factory=dict)
    id: Optional[str] = None


@dataclass
class LLMResponse:
    """One assistant turn."""
    text: Optional[str] = None
    function_calls: list[FunctionCall] = field(default_factory=list)
    stop_reason: Optional[str] = None
    raw_parts: Optional[list] = None

    @property
    def function_call(self) -> Optional[FunctionCall]:
        """First tool call, for callers that only expect one."""
        return self.function_calls[0] if self.function_calls else None


# =============================================================================
# Port Protocol
# =============================================================================

class LLMPort(Protocol):
    """Hexagonal port -- adapters implement this for each LLM provider."""

    async def generate(
        self,
        system_prompt: str,
        contents: str | list,
        tools: list[dict] | None = None,
        model: str | None = None,
        temperature: float = 0.7,
        max_output_tokens: int = 4000,
    ) -> LLMResponse: ...

    def create_chat(
        self,
        system_prompt: str,
        tools: list[dict] | None = None,
        model: str | None = None,
        temperature: float = 0.7,
        max_output_tokens: int = 4000,
    ) -> str: ...

    async def chat_send(self, session_id: str, contents: str | list) -> LLMResponse: ...

    async def chat_report_tool_results(
        self, session_id: str, results: list[tuple[str, str]],
    ) -> LLMResponse: ...

    def set_chat_tools(self, session_id: str, tools: list[dict] | None) -> None: ...

    def close_chat(self, session_id: str) -> None: ...


# =============================================================================
# Copy Agent Tool Schemas (3 tools -- plain dicts, provider-agnostic)
# =============================================================================

FETCH_EXEMPLARS_SCHEMA: dict = {
    "name": "fetch_exemplars",
    "description": (
        "Fetch previously approved ad copy for this brand. Call this FIRST to learn "
        "what has worked before. Returns up to 5 approved variants with the reason they were approved."
    ),
    "input_schema": {
        "type": "object",
        "properties": {
            "count": {
                "type": "integer",
                "description": "How many exemplars to fetch (max 5)",
            },
        },
    },
}

SUBMIT_VARIANT_SCHEMA: dict = {
    "name": "submit_variant",
    "description": (
        "Submit ONE ad copy variant for validation. Returns accepted with a running count, "
        "or rejected with a list of issues to fix before resubmitting."
    ),
    "input_schema": {
        "type": "object",
        "properties": {
            "angle": {"type": "string", "description": "The value-proposition angle this variant targets"},
            "headline": {"type": "string", "description": "Headline, under 40 characters"},
            "description": {"type": "string", "description": "One sentence restating the offer"},
            "primary_text": {
                "type": "string",
                "description": "3-5 short paragraphs separated by blank lines. Plain text, no markdown.",
            },
            "replace_index": {
                "type": "integer",
                "description": "Optional 1-based index of an accepted variant to replace (use after review_set fails)",
            },
        },
        "required": ["angle", "headline", "description", "primary_text"],
    },
}

REVIEW_SET_SCHEMA: dict = {
    "name": "review_set",
    "description": (
        "Validate the complete set once 4 variants are accepted: distinct angles, unique headlines, "
        "low overlap between primary texts, minimum length."
    ),
    "input_schema": {
        "type": "object",
        "properties": {
            "confirm": {"type": "boolean", "description": "Always true"},
        },
        "required": ["confirm"],
    },
}

COPY_TOOL_SCHEMAS: list[dict] = [FETCH_EXEMPLARS_SCHEMA, SUBMIT_VARIANT_SCHEMA, REVIEW_SET_SCHEMA]
