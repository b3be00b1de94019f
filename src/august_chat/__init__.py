"""Top-level package for august-chat."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

__version__ = "0.1.0"

if TYPE_CHECKING:
    from .app import AugustChatApp
    from .attachments import AttachmentProcessor, FileUpload
    from .config import ensure_config_dir, load_config
    from .exceptions import (
        AugustChatError,
        ConfigValidationError,
        GatewayError,
        PersistenceError,
    )
    from .gateway.service import CompletionGateway
    from .orchestrator import ChatOrchestrator
    from .render import ProgressiveRenderer
    from .state import SessionState, StateManager
    from .store import ConversationStore
    from .turns import TurnAssembler

__all__ = [
    "AttachmentProcessor",
    "AugustChatApp",
    "AugustChatError",
    "ChatOrchestrator",
    "CompletionGateway",
    "ConfigValidationError",
    "ConversationStore",
    "FileUpload",
    "GatewayError",
    "PersistenceError",
    "ProgressiveRenderer",
    "SessionState",
    "StateManager",
    "TurnAssembler",
    "ensure_config_dir",
    "load_config",
]


def __getattr__(name: str) -> Any:
    """Lazily import symbols so the gateway server never pulls in the UI stack."""
    if name in {"AttachmentProcessor", "FileUpload"}:
        from .attachments import AttachmentProcessor, FileUpload

        return {"AttachmentProcessor": AttachmentProcessor, "FileUpload": FileUpload}[name]
    if name in {"ensure_config_dir", "load_config"}:
        from .config import ensure_config_dir, load_config

        return {"ensure_config_dir": ensure_config_dir, "load_config": load_config}[name]
    if name in {
        "AugustChatError",
        "ConfigValidationError",
        "GatewayError",
        "PersistenceError",
    }:
        from . import exceptions

        return getattr(exceptions, name)
    if name == "CompletionGateway":
        from .gateway.service import CompletionGateway

        return CompletionGateway
    if name == "ChatOrchestrator":
        from .orchestrator import ChatOrchestrator

        return ChatOrchestrator
    if name == "ProgressiveRenderer":
        from .render import ProgressiveRenderer

        return ProgressiveRenderer
    if name in {"SessionState", "StateManager"}:
        from .state import SessionState, StateManager

        return {"SessionState": SessionState, "StateManager": StateManager}[name]
    if name == "ConversationStore":
        from .store import ConversationStore

        return ConversationStore
    if name == "TurnAssembler":
        from .turns import TurnAssembler

        return TurnAssembler
    if name == "AugustChatApp":
        from .app import AugustChatApp

        return AugustChatApp
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
