# Understood/src/agents/llm/claude_client.py
# @ai-rules:
# 1. [Constraint]: anthropic is imported here and nowhere else. Callers only see LLMResponse/FunctionCall.
# 2. [Pattern]: generate() and the chat calls share _request(). tools=None sends no tool config at all.
# 3. [Pattern]: A session keeps its full message list. The assistant turn is stored before the response is returned.
# 4. [Gotcha]: Each tool_use from the last assistant turn needs a tool_result in the very next user message,
#    and all results of one turn go into that ONE message.
# 5. [Pattern]: 429/529 are retried inside the SDK (max_retries). Callers see only the final exception.
"""
ClaudeAdapter: the Anthropic-backed LLMPort.

Stateless generate() for routing, extraction and revisions, plus
chat sessions (chat_send / chat_report_tool_results) for the
tool-driven copy loop.
"""
from __future__ import annotations

import base64
import logging
import os
import uuid
from dataclasses import dataclass, field

from .types import FunctionCall, LLMResponse

logger = logging.getLogger(__name__)

LLM_MAX_RETRIES = int(os.getenv("LLM_MAX_RETRIES", "5"))


@dataclass
class _Session:
    system: str
    tools: list[dict] | None
    model: str | None
    temperature: float
    max_tokens: int
    messages: list[dict] = field(default_factory=list)


def to_anthropic_tools(schemas: list[dict]) -> list[dict]:
    """Our schemas already use input_schema; keep only the keys the API accepts."""
    return [{k: s[k] for k in ("name", "description", "input_schema")} for s in schemas]


def to_user_content(contents: str | list) -> str | list[dict]:
    """Plain text passes through. Lists may mix text and {"bytes", "mime_type"} image dicts."""
    if isinstance(contents, str):
        return contents

    blocks: list[dict] = []
    for part in contents:
        if isinstance(part, str):
            blocks.append({"type": "text", "text": part})
            continue
        if isinstance(part, dict) and "bytes" in part:
            encoded = base64.b64encode(part["bytes"]).decode()
            blocks.append({
                "type": "image",
                "source": {"type": "base64", "media_type": part["mime_type"], "data": encoded},
            })
    return blocks


def from_anthropic_message(message) -> LLMResponse:
    texts = [block.text for block in message.content if block.type == "text"]
    calls = [
        FunctionCall(name=block.name, args=block.input or {}, id=block.id)
        for block in message.content
        if block.type == "tool_use"
    ]
    return LLMResponse(
        text="\n".join(texts) or None,
        function_calls=calls,
        stop_reason=message.stop_reason,
        raw_parts=[block.model_dump(exclude_none=True) for block in message.content],
    )


class ClaudeAdapter:
    """LLMPort over AsyncAnthropic."""

    def __init__(self, model_name: str, api_key: str | None = None):
        from anthropic import AsyncAnthropic

        self._client = AsyncAnthropic(
            api_key=api_key or os.getenv("ANTHROPIC_API_KEY"),
            max_retries=LLM_MAX_RETRIES,
        )
        self._model_name = model_name
        self._sessions: dict[str, _Session] = {}
        logger.info(f"ClaudeAdapter ready (default model {model_name})")

    async def _request(
        self,
        system_prompt: str,
        messages: list[dict],
        tools: list[dict] | None,
        model: str | None,
        temperature: float,
        max_output_tokens: int,
    ) -> LLMResponse:
        kwargs: dict = {
            "model": model or self._model_name,
            "messages": messages,
            "max_tokens": max_output_tokens,
            "temperature": temperature,
        }
        if system_prompt:
            kwargs["system"] = system_prompt
        if tools:
            kwargs["tools"] = to_anthropic_tools(tools)
        message = await self._client.messages.create(**kwargs)
        return from_anthropic_message(message)

    # =========================================================================
    # Stateless
    # =========================================================================

    async def generate(
        self,
        system_prompt: str,
        contents: str | list,
        tools: list[dict] | None = None,
        model: str | None = None,
        temperature: float = 0.7,
        max_output_tokens: int = 4000,
    ) -> LLMResponse:
        messages = [{"role": "user", "content": to_user_content(contents)}]
        return await self._request(system_prompt, messages, tools, model, temperature, max_output_tokens)

    # =========================================================================
    # Chat sessions
    # =========================================================================

    def create_chat(
        self,
        system_prompt: str,
        tools: list[dict] | None = None,
        model: str | None = None,
        temperature: float = 0.7,
        max_output_tokens: int = 4000,
    ) -> str:
        session_id = uuid.uuid4().hex
        self._sessions[session_id] = _Session(
            system=system_prompt,
            tools=tools,
            model=model,
            temperature=temperature,
            max_tokens=max_output_tokens,
        )
        logger.debug(f"Opened chat {session_id}")
        return session_id

    def _session(self, session_id: str) -> _Session:
        try:
            return self._sessions[session_id]
        except KeyError:
            raise ValueError(f"No such chat session: {session_id}") from None

    def set_chat_tools(self, session_id: str, tools: list[dict] | None) -> None:
        """Replace the tools offered from the next turn on."""
        self._session(session_id).tools = tools

    async def _turn(self, session: _Session, user_content) -> LLMResponse:
        session.messages.append({"role": "user", "content": user_content})
        response = await self._request(
            session.system,
            list(session.messages),
            session.tools,
            session.model,
            session.temperature,
            session.max_tokens,
        )
        session.messages.append({"role": "assistant", "content": response.raw_parts})
        return response

    async def chat_send(self, session_id: str, contents: str | list) -> LLMResponse:
        return await self._turn(self._session(session_id), to_user_content(contents))

    async def chat_report_tool_results(
        self,
        session_id: str,
        results: list[tuple[str, str]],
    ) -> LLMResponse:
        """Answer every tool_use of the previous turn in one user message and continue."""
        session = self._session(session_id)
        if not results:
            raise ValueError(f"Chat {session_id}: nothing to report")
        blocks = [
            {"type": "tool_result", "tool_use_id": call_id, "content": content}
            for call_id, content in results
        ]
        return await self._turn(session, blocks)

    def close_chat(self, session_id: str) -> None:
        if self._sessions.pop(session_id, None) is not None:
            logger.debug(f"Closed chat {session_id}")
