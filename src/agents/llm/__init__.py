# Understood/src/agents/llm/__init__.py
# @ai-rules:
# 1. [Pattern]: Lazy imports -- the SDK is only loaded when an adapter is actually created.
# 2. [Constraint]: This is the ONLY entry point. Consumers import from .llm, never from .llm.claude_client.
"""
LLM adapter factory and re-exports.

Usage:
    from .llm import create_adapter, COPY_TOOL_SCHEMAS, LLMResponse
    adapter = create_adapter("claude", model_name)
"""
import os

from .types import (
    COPY_TOOL_SCHEMAS,
    FETCH_EXEMPLARS_SCHEMA,
    REVIEW_SET_SCHEMA,
    SUBMIT_VARIANT_SCHEMA,
    FunctionCall,
    LLMPort,
    LLMResponse,
)

LLM_MODEL_COPY = os.getenv("LLM_MODEL_COPY", "claude-opus-4-1")
LLM_MODEL_FAST = os.getenv("LLM_MODEL_FAST", "claude-3-5-haiku-latest")

__all__ = [
    "create_adapter",
    "FunctionCall",
    "LLMResponse",
    "LLMPort",
    "COPY_TOOL_SCHEMAS",
    "FETCH_EXEMPLARS_SCHEMA",
    "SUBMIT_VARIANT_SCHEMA",
    "REVIEW_SET_SCHEMA",
    "LLM_MODEL_COPY",
    "LLM_MODEL_FAST",
]


def create_adapter(provider: str, model_name: str | None = None) -> LLMPort:
    """Factory: create the LLM adapter for a provider string."""
    if provider == "claude":
        from .claude_client import ClaudeAdapter
        return ClaudeAdapter(model_name or LLM_MODEL_COPY)
    raise ValueError(f"Unsupported LLM provider: {provider}")
