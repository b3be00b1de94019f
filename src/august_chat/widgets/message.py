"""Message bubble widget for conversation rendering."""

from __future__ import annotations

from typing import Any

from rich.markdown import Markdown
from rich.text import Text
from textual.app import ComposeResult
from textual.containers import Vertical
from textual.widgets import Static

from ..models import AttachmentMeta


def describe_attachments(attachments: tuple[AttachmentMeta, ...]) -> str:
    return "  ".join(f"[{meta.name}, {meta.size} bytes]" for meta in attachments)


class MessageBubble(Vertical):
    """Render a single chat message with role header and attachment chips."""

    DEFAULT_CSS = """
    MessageBubble {
        height: auto;
        margin-bottom: 1;
    }
    MessageBubble > #attachments-block {
        color: $text-muted;
        padding: 0 1;
    }
    MessageBubble.pending > #header-block {
        color: $text-muted;
    }
    MessageBubble > #content-block {
        height: auto;
    }
    """

    def __init__(
        self,
        content: str,
        role: str,
        attachments: tuple[AttachmentMeta, ...] = (),
        pending: bool = False,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        self.message_content = content
        self.role = role
        self.attachments = attachments
        self.set_class(pending, "pending")
        self.add_class(f"role-{role}")
        self._content_widget: Static | None = None
        self._attachments_widget: Static | None = None

    @property
    def role_prefix(self) -> str:
        return {"user": "You", "system": "System"}.get(self.role, "Assistant")

    def compose(self) -> ComposeResult:
        self._attachments_widget = Static("", id="attachments-block")
        self._content_widget = Static("", id="content-block")
        yield Static(Markdown(f"**{self.role_prefix}**"), id="header-block")
        yield self._attachments_widget
        yield self._content_widget

    def on_mount(self) -> None:
        self._refresh()

    def _refresh(self) -> None:
        if self._content_widget is None or self._attachments_widget is None:
            return
        text = self.message_content.rstrip()
        self._content_widget.update(Markdown(text) if text else "")
        chips = describe_attachments(self.attachments)
        self._attachments_widget.update(Text(chips, style="dim"))
        self._attachments_widget.display = bool(chips)

    def update_entry(
        self,
        content: str,
        attachments: tuple[AttachmentMeta, ...],
        pending: bool,
    ) -> None:
        """Update in place; skips the rerender when nothing changed."""
        if (
            content == self.message_content
            and attachments == self.attachments
            and pending == self.has_class("pending")
        ):
            return
        self.message_content = content
        self.attachments = attachments
        self.set_class(pending, "pending")
        self._refresh()
