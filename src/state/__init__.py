# Understood/src/state/__init__.py
"""Persistence layer for Understood."""
from .redis_client import RedisClient
from .store import BrandStore

__all__ = ["BrandStore", "RedisClient"]
