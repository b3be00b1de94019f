"""Wire configured collaborators into a ready orchestrator."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import httpx

from .attachments import AttachmentProcessor
from .backends import ConversationBackend, LocalBackend, RestBackend
from .gateway.client import GatewayClient
from .identity import IdentityProvider, LocalIdentity, SupabaseAuthClient
from .orchestrator import ChatOrchestrator
from .preferences import PreferencesStore
from .render import ProgressiveRenderer
from .store import ConversationStore
from .turns import TurnAssembler

LOGGER = logging.getLogger(__name__)


def build_identity_and_backend(
    config: dict[str, Any],
    http_client: httpx.AsyncClient | None = None,
) -> tuple[IdentityProvider, ConversationBackend]:
    """Hosted identity and rows when configured, otherwise the local pair."""
    identity_cfg = config["identity"]
    url = str(identity_cfg.get("url") or "")
    if not url:
        LOGGER.info("factory.backend.local", extra={"event": "factory.backend.local"})
        return LocalIdentity(), LocalBackend(Path(str(config["storage"]["local_path"])))

    anon_key = str(identity_cfg.get("anon_key") or "")
    LOGGER.info("factory.backend.rest", extra={"event": "factory.backend.rest"})
    return (
        SupabaseAuthClient(url, anon_key, http_client=http_client),
        RestBackend(url, anon_key, http_client=http_client),
    )


def build_orchestrator(
    config: dict[str, Any],
    *,
    http_client: httpx.AsyncClient | None = None,
) -> ChatOrchestrator:
    gateway_cfg = config["gateway"]
    attachments_cfg = config["attachments"]
    render_cfg = config["render"]

    identity, backend = build_identity_and_backend(config, http_client)
    preferences = PreferencesStore(
        Path(str(config["storage"]["preferences_path"])),
        default_model=str(gateway_cfg["default_model"]),
        allowed_models=list(gateway_cfg["models"]),
    )
    preferences.load()

    return ChatOrchestrator(
        store=ConversationStore(backend),
        gateway=GatewayClient(
            str(gateway_cfg["url"]),
            http_client=http_client,
            timeout_seconds=float(gateway_cfg["timeout_seconds"]),
        ),
        identity=identity,
        preferences=preferences,
        processor=AttachmentProcessor(
            max_files=int(attachments_cfg["max_files"]),
            max_file_bytes=int(attachments_cfg["max_file_bytes"]),
            ocr_enabled=bool(attachments_cfg["ocr_enabled"]),
        ),
        assembler=TurnAssembler(max_text_chars=int(attachments_cfg["max_text_chars"])),
        renderer=ProgressiveRenderer(
            steps=int(render_cfg["steps"]),
            interval_seconds=float(render_cfg["interval_seconds"]),
        ),
    )
