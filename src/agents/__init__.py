# Understood/src/agents/__init__.py
"""Routing, agents and dispatch for Understood."""
from .agent_registry import AgentRegistry, create_registry
from .dispatcher import Dispatcher
from .intake import MediaIntake, Transcriber
from .learning import LearningAgent
from .learning_worker import LearningWorker
from .pipeline import EventPipeline
from .router import SmartRouter

__all__ = [
    "AgentRegistry", "Dispatcher", "EventPipeline", "LearningAgent",
    "LearningWorker", "MediaIntake", "SmartRouter", "Transcriber", "create_registry",
]
