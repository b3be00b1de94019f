"""Input row containing message field, attach and send buttons, and slash menu."""

from __future__ import annotations

from textual.app import ComposeResult
from textual.containers import Horizontal, Vertical
from textual.message import Message
from textual.widgets import Button, Input, OptionList


class InputBox(Vertical):
    """Input region with message field, attach button, send button, and slash menu."""

    DEFAULT_CSS = """
    InputBox {
        height: auto;
    }
    InputBox #input_row {
        height: auto;
    }
    InputBox #message_input {
        width: 1fr;
    }
    """

    class AttachRequested(Message):
        """Posted when the user clicks the attach button."""

    class SendRequested(Message):
        """Posted when the user clicks the send button."""

    def compose(self) -> ComposeResult:
        with Horizontal(id="input_row"):
            yield Input(
                placeholder="Type your message... (/ for commands)",
                id="message_input",
            )
            yield Button("Attach", id="attach_button", variant="default")
            yield Button("Send", id="send_button", variant="success")
        yield OptionList(id="slash_menu", classes="hidden")

    def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "attach_button":
            event.stop()
            self.post_message(self.AttachRequested())
        elif event.button.id == "send_button":
            event.stop()
            self.post_message(self.SendRequested())
