"""Persistent user preferences: selected model and web toggle."""

from __future__ import annotations

from collections.abc import Sequence
import json
import logging
import os
from pathlib import Path
from typing import Any

from .config import DEFAULT_MODEL

LOGGER = logging.getLogger(__name__)

SELECTED_MODEL_KEY = "august.selectedModel"
ENABLE_WEB_KEY = "august.enableWeb"


class PreferencesStore:
    """Process-wide preferences with explicit load and save-on-change.

    A stored model outside ``allowed_models`` is ignored on load so a stale
    preference never selects a model the gateway would reject.
    """

    def __init__(
        self,
        path: Path,
        *,
        default_model: str = DEFAULT_MODEL,
        allowed_models: Sequence[str] = (),
    ) -> None:
        self._path = Path(path).expanduser()
        self.default_model = default_model
        self.allowed_models = list(allowed_models)
        self._selected_model = default_model
        self._enable_web = False

    @property
    def path(self) -> Path:
        return self._path

    @property
    def selected_model(self) -> str:
        return self._selected_model

    @property
    def enable_web(self) -> bool:
        return self._enable_web

    def _is_allowed(self, model: str) -> bool:
        return not self.allowed_models or model in self.allowed_models

    def load(self) -> None:
        """Load stored values; unreadable files keep the defaults."""
        if not self._path.exists():
            return
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            LOGGER.warning(
                "preferences.load.failed",
                extra={"event": "preferences.load.failed", "error": str(exc)},
            )
            return
        if not isinstance(data, dict):
            return

        model = data.get(SELECTED_MODEL_KEY)
        if isinstance(model, str) and model.strip() and self._is_allowed(model.strip()):
            self._selected_model = model.strip()
        web = data.get(ENABLE_WEB_KEY)
        if isinstance(web, bool):
            self._enable_web = web

    def save(self) -> None:
        payload: dict[str, Any] = {
            SELECTED_MODEL_KEY: self._selected_model,
            ENABLE_WEB_KEY: self._enable_web,
        }
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
            if os.name == "posix":
                self._path.chmod(0o600)
        except OSError as exc:
            LOGGER.warning(
                "preferences.save.failed",
                extra={"event": "preferences.save.failed", "error": str(exc)},
            )

    def set_selected_model(self, model: str) -> bool:
        """Select a model; returns False when the model is not allowed."""
        candidate = model.strip()
        if not candidate or not self._is_allowed(candidate):
            return False
        if candidate != self._selected_model:
            self._selected_model = candidate
            self.save()
        return True

    def set_enable_web(self, enabled: bool) -> None:
        if bool(enabled) != self._enable_web:
            self._enable_web = bool(enabled)
            self.save()

    def toggle_web(self) -> bool:
        self.set_enable_web(not self._enable_web)
        return self._enable_web
