"""Service layer helpers for story data and AI-assisted writing."""

from __future__ import annotations

from .story_store import RecordNotFoundError, StoreError  # noqa: F401
from .text_generation import GenerationError  # noqa: F401

__all__ = [
    "GenerationError",
    "RecordNotFoundError",
    "StoreError",
]
