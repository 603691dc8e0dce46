# Understood/src/agents/prompts.py
# @ai-rules:
# 1. [Constraint]: ZERO dependency on any agent class. Testable in isolation.
# 2. [Pattern]: Glob discovery at first use. All files cached in memory. Zero I/O per LLM call.
# 3. [Pattern]: YAML frontmatter parsed via yaml.safe_load between --- delimiters (tier, max_tokens, temperature).
# 4. [Gotcha]: Bodies are str.format templates. Literal JSON braces in a prompt body MUST be doubled ({{ }}).
"""
Filesystem-driven prompt templates.

Each prompts/<name>.md file holds one system prompt with optional YAML
frontmatter declaring LLM parameters:

    ---
    tier: fast          # fast -> LLM_MODEL_FAST, copy -> LLM_MODEL_COPY
    max_tokens: 20
    temperature: 0
    ---
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

import yaml

from .llm import LLM_MODEL_COPY, LLM_MODEL_FAST, LLMPort

logger = logging.getLogger(__name__)

PROMPTS_DIR = Path(__file__).parent / "prompts"


@dataclass
class Prompt:
    """A loaded prompt template and its LLM parameters."""
    name: str
    body: str
    tier: str = "copy"
    max_tokens: int = 4000
    temperature: float = 0.7

    @property
    def model(self) -> str:
        return LLM_MODEL_FAST if self.tier == "fast" else LLM_MODEL_COPY

    def render(self, **values: Any) -> str:
        return self.body.format(**values)


class PromptLoader:
    """Discovers and caches prompts/*.md."""

    def __init__(self, prompts_dir: Path = PROMPTS_DIR):
        self._dir = Path(prompts_dir)
        self._cache: dict[str, Prompt] = {}
        self._discover()

    def _discover(self) -> None:
        if not self._dir.is_dir():
            logger.warning(f"Prompts directory not found: {self._dir}")
            return
        for md_file in sorted(self._dir.glob("*.md")):
            body, meta = self._parse_frontmatter(md_file.read_text())
            self._cache[md_file.stem] = Prompt(
                name=md_file.stem,
                body=body,
                tier=meta.get("tier", "copy"),
                max_tokens=int(meta.get("max_tokens", 4000)),
                temperature=float(meta.get("temperature", 0.7)),
            )
        logger.info(f"Prompts loaded: {len(self._cache)}")

    @staticmethod
    def _parse_frontmatter(text: str) -> tuple[str, dict]:
        """Parse YAML frontmatter from markdown. Returns (body, metadata)."""
        if not text.startswith("---"):
            return text, {}
        end = text.find("---", 3)
        if end == -1:
            return text, {}
        try:
            meta = yaml.safe_load(text[3:end]) or {}
        except yaml.YAMLError as e:
            logger.warning(f"Bad prompt frontmatter: {e}")
            meta = {}
        return text[end + 3:].strip(), meta

    def get(self, name: str) -> Prompt:
        try:
            return self._cache[name]
        except KeyError:
            raise KeyError(f"Unknown prompt: {name}") from None

    def names(self) -> list[str]:
        return sorted(self._cache)


_loader: Optional[PromptLoader] = None


def get_prompt(name: str) -> Prompt:
    """Module-level cached access used by agents."""
    global _loader
    if _loader is None:
        _loader = PromptLoader()
    return _loader.get(name)


async def run_prompt(llm: LLMPort, name: str, contents: str | list, **values: Any) -> str:
    """Render a prompt, call the LLM with its frontmatter parameters, return the text ("" if none)."""
    prompt = get_prompt(name)
    response = await llm.generate(
        system_prompt=prompt.render(**values),
        contents=contents,
        model=prompt.model,
        temperature=prompt.temperature,
        max_output_tokens=prompt.max_tokens,
    )
    return (response.text or "").strip()
