"""Status bar widget for identity, model, and staged attachments."""

from __future__ import annotations

from textual.app import ComposeResult
from textual.widgets import Label, Static


class StatusBar(Static):
    """Render compact session status.

    Segments (left to right):
        you@example.com  |  Model: openai/gpt-oss-20b:free  |  Web: off  |  Files: 2
    """

    DEFAULT_CSS = """
    StatusBar {
        layout: horizontal;
        height: auto;
    }
    StatusBar Label {
        margin-right: 1;
    }
    """

    def compose(self) -> ComposeResult:
        yield Label("Signed out", id="status_identity")
        yield Label("|")
        yield Label("Model: -", id="status_model")
        yield Label("|")
        yield Label("Web: off", id="status_web")
        yield Label("|")
        yield Label("Files: 0", id="status_files")

    def set_status(
        self,
        *,
        identity: str,
        model: str,
        enable_web: bool,
        attachment_names: list[str],
    ) -> None:
        self.query_one("#status_identity", Label).update(identity or "Signed out")
        self.query_one("#status_model", Label).update(f"Model: {model}")
        self.query_one("#status_web", Label).update(f"Web: {'on' if enable_web else 'off'}")
        files = f"Files: {len(attachment_names)}"
        if attachment_names:
            files += f" ({', '.join(attachment_names)})"
        self.query_one("#status_files", Label).update(files)
