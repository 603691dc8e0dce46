# Understood/src/agents/commands.py
"""Exact command-word parsing shared by the router and the command agent."""
from __future__ import annotations

from typing import Optional

COMMAND_WORDS = ("setup", "profile", "help", "learnings", "refresh")


def parse_command(text: str) -> Optional[str]:
    """Return the command name for an exact command message, else None.

    "new setup" -> "new_setup"; otherwise the first word must be a command word.
    """
    cleaned = (text or "").strip().lower()
    if not cleaned:
        return None
    if cleaned.startswith("new setup"):
        return "new_setup"
    first = cleaned.split()[0].strip("*_.!?")
    return first if first in COMMAND_WORDS else None
