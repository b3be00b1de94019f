"""Single-user backend persisted to a private JSON file."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
import json
import logging
import os
from pathlib import Path
from typing import Any

from ..exceptions import PersistenceError, PersistenceFormatError
from ..models import Conversation, Message
from .memory import MemoryBackend

LOGGER = logging.getLogger(__name__)

FORMAT_VERSION = 1


class LocalBackend(MemoryBackend):
    """Manage conversations on disk, rewriting the file after every mutation."""

    def __init__(
        self,
        path: str | Path,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        super().__init__(clock=clock)
        self.path = Path(path).expanduser()
        self._load()

    def _enforce_permissions(self, path: Path, mode: int = 0o600) -> None:
        if os.name != "posix":
            return
        try:
            path.chmod(mode)
        except OSError as exc:
            LOGGER.warning(
                "local_backend.permissions.failed",
                extra={
                    "event": "local_backend.permissions.failed",
                    "path": str(path),
                    "error": str(exc),
                },
            )

    def _load(self) -> None:
        if not self.path.exists():
            return
        try:
            payload = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            raise PersistenceFormatError(f"Unable to read {self.path}: {exc}") from exc
        if not isinstance(payload, dict):
            raise PersistenceFormatError(f"{self.path} does not hold a conversation store.")

        try:
            for row in payload.get("conversations", []):
                conversation = Conversation.from_row(row)
                self._conversations[conversation.id] = conversation
                self._messages.setdefault(conversation.id, [])
            for row in payload.get("messages", []):
                message = Message.from_row(row)
                if message.conversation_id in self._conversations:
                    self._messages[message.conversation_id].append(message)
        except (KeyError, TypeError, ValueError) as exc:
            raise PersistenceFormatError(f"Invalid row in {self.path}: {exc}") from exc

        LOGGER.debug(
            "local_backend.loaded",
            extra={
                "event": "local_backend.loaded",
                "conversations": len(self._conversations),
            },
        )

    def _snapshot(self) -> dict[str, Any]:
        return {
            "version": FORMAT_VERSION,
            "conversations": [c.to_row() for c in self._conversations.values()],
            "messages": [
                m.to_row() for rows in self._messages.values() for m in rows
            ],
        }

    def _changed(self) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            temp_path = self.path.with_suffix(self.path.suffix + ".tmp")
            temp_path.write_text(
                json.dumps(self._snapshot(), ensure_ascii=False, indent=2),
                encoding="utf-8",
            )
            self._enforce_permissions(temp_path)
            temp_path.replace(self.path)
        except OSError as exc:
            raise PersistenceError(f"Unable to write {self.path}: {exc}") from exc
