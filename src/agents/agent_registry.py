# Understood/src/agents/agent_registry.py
# @ai-rules:
# 1. [Pattern]: Built ONCE at startup and passed into the Dispatcher. Backed by MappingProxyType: no registration after build.
# 2. [Constraint]: Every handler satisfies AgentHandler: (EventContext, BrandContext, meta) -> AgentResult.
# 3. [Gotcha]: The learning agent is NOT a routed handler. It runs on the LearningWorker.
# 4. [Constraint]: Pure wiring. No LLM logic, no routing decisions.
"""Agent Registry -- immutable name -> handler map for the fixed agent set."""
from __future__ import annotations

import logging
from types import MappingProxyType
from typing import TYPE_CHECKING, Awaitable, Callable, Iterator, Mapping, Optional

from ..models import AgentResult, BrandContext, EventContext
from .brand_context import BrandContextAgent
from .command import CommandAgent
from .competitor_analysis import CompetitorAnalysisAgent
from .conversation import ConversationAgent
from .copy_generation import CopyGenerationAgent
from .onboarding import OnboardingAgent
from .welcome import welcome_agent

if TYPE_CHECKING:
    from ..state.store import BrandStore
    from .llm import LLMPort

logger = logging.getLogger(__name__)

AgentHandler = Callable[[EventContext, BrandContext, Optional[dict]], Awaitable[AgentResult]]

AGENT_NAMES = (
    "onboarding",
    "copy_generation",
    "competitor_analysis",
    "conversation",
    "command",
    "welcome",
    "brand_context",
)


class AgentRegistry:
    """Read-only view over the registered handlers."""

    def __init__(self, handlers: Mapping[str, AgentHandler]):
        self._handlers: Mapping[str, AgentHandler] = MappingProxyType(dict(handlers))

    def get(self, name: str) -> Optional[AgentHandler]:
        return self._handlers.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self._handlers

    def __iter__(self) -> Iterator[str]:
        return iter(self._handlers)

    def __len__(self) -> int:
        return len(self._handlers)

    @property
    def handlers(self) -> Mapping[str, AgentHandler]:
        return self._handlers


def create_registry(store: "BrandStore", llm: "LLMPort") -> AgentRegistry:
    """Wire the fixed agent set. Model tier is chosen per prompt, so one adapter serves all agents."""
    onboarding = OnboardingAgent(store, llm)
    registry = AgentRegistry({
        "onboarding": onboarding.handle,
        "copy_generation": CopyGenerationAgent(store, llm).handle,
        "competitor_analysis": CompetitorAnalysisAgent(store, llm).handle,
        "conversation": ConversationAgent(llm).handle,
        "command": CommandAgent(store, onboarding).handle,
        "welcome": welcome_agent,
        "brand_context": BrandContextAgent(llm).handle,
    })
    logger.info(f"Agent registry built: {', '.join(registry)}")
    return registry
