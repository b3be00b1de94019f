"""Conversation persistence backends."""

from __future__ import annotations

from .base import ConversationBackend
from .local import LocalBackend
from .memory import MemoryBackend
from .rest import RestBackend

__all__ = ["ConversationBackend", "LocalBackend", "MemoryBackend", "RestBackend"]
