# Understood/src/utils/__init__.py
"""Utility modules for Understood."""

from .llm_json import parse_llm_json, strip_code_fences

__all__ = ["parse_llm_json", "strip_code_fences"]
