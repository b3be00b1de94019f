"""Modal screens for sign-in, confirmation, pickers, and prompts."""

from __future__ import annotations

from typing import Any

from textual.app import ComposeResult
from textual.containers import Container, Horizontal
from textual.screen import ModalScreen
from textual.widgets import Button, Input, OptionList, Static


class SignInScreen(ModalScreen[tuple[str, str] | None]):
    """Collect email and password; dismisses with the pair or ``None``."""

    CSS = """
    SignInScreen {
        align: center middle;
    }

    #signin-dialog {
        width: 60;
        height: auto;
        padding: 1 2;
        border: round $panel;
        background: $surface;
    }

    #signin-title {
        padding-bottom: 1;
        text-style: bold;
    }

    #signin-error {
        color: $error;
    }

    #signin-dialog Input {
        margin-bottom: 1;
    }
    """

    def __init__(self, error: str = "") -> None:
        super().__init__()
        self._error = error

    def compose(self) -> ComposeResult:
        with Container(id="signin-dialog"):
            yield Static("Sign in to August Chat", id="signin-title")
            yield Input(placeholder="Email", id="signin-email")
            yield Input(placeholder="Password", password=True, id="signin-password")
            yield Static(self._error, id="signin-error")
            yield Button("Sign in", id="signin-submit", variant="primary")

    def on_mount(self) -> None:
        self.query_one("#signin-email", Input).focus()
        self.query_one("#signin-error", Static).display = bool(self._error)

    def _submit(self) -> None:
        email = self.query_one("#signin-email", Input).value.strip()
        password = self.query_one("#signin-password", Input).value
        if not email or not password:
            error = self.query_one("#signin-error", Static)
            error.update("Email and password are required.")
            error.display = True
            return
        self.dismiss((email, password))

    def on_input_submitted(self, event: Input.Submitted) -> None:
        event.stop()
        if event.input.id == "signin-email":
            self.query_one("#signin-password", Input).focus()
            return
        self._submit()

    def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "signin-submit":
            event.stop()
            self._submit()

    def on_key(self, event: Any) -> None:  # noqa: ANN401
        if str(getattr(event, "key", "")).lower() == "escape":
            self.dismiss(None)


class ConfirmScreen(ModalScreen[bool]):
    """Yes/no confirmation; Escape answers no."""

    CSS = """
    ConfirmScreen {
        align: center middle;
    }

    #confirm-dialog {
        width: 60;
        height: auto;
        padding: 1 2;
        border: round $panel;
        background: $surface;
    }

    #confirm-actions {
        height: 3;
        align: right middle;
    }
    """

    def __init__(self, question: str, confirm_label: str = "Delete") -> None:
        super().__init__()
        self._question = question
        self._confirm_label = confirm_label

    def compose(self) -> ComposeResult:
        with Container(id="confirm-dialog"):
            yield Static(self._question, id="confirm-body")
            with Horizontal(id="confirm-actions"):
                yield Button("Cancel", id="confirm-no")
                yield Button(self._confirm_label, id="confirm-yes", variant="error")

    def on_button_pressed(self, event: Button.Pressed) -> None:
        event.stop()
        self.dismiss(event.button.id == "confirm-yes")

    def on_key(self, event: Any) -> None:  # noqa: ANN401
        if str(getattr(event, "key", "")).lower() == "escape":
            self.dismiss(False)


class SimplePickerScreen(ModalScreen[str | None]):
    """Modal picker for selecting from a list of strings."""

    CSS = """
    SimplePickerScreen {
        align: center middle;
    }

    #picker-dialog {
        width: 60;
        max-height: 24;
        padding: 1 2;
        border: round $panel;
        background: $surface;
    }

    #picker-title {
        padding-bottom: 1;
        text-style: bold;
    }
    """

    def __init__(self, title: str, options: list[str]) -> None:
        super().__init__()
        self._title = title
        self._options = options

    def compose(self) -> ComposeResult:
        with Container(id="picker-dialog"):
            yield Static(self._title, id="picker-title")
            yield OptionList(*self._options, id="picker-options")
            yield Static("Enter/click to select | Esc to cancel", id="picker-help")

    def on_option_list_option_selected(self, event: OptionList.OptionSelected) -> None:
        index = event.option_index
        if 0 <= index < len(self._options):
            self.dismiss(self._options[index])

    def on_key(self, event: Any) -> None:  # noqa: ANN401
        if str(getattr(event, "key", "")).lower() == "escape":
            self.dismiss(None)


class TextPromptScreen(ModalScreen[str | None]):
    """Modal screen to prompt for a single line of text."""

    CSS = """
    TextPromptScreen {
        align: center middle;
    }

    #text-prompt-dialog {
        width: 70;
        height: auto;
        padding: 1 2;
        border: round $panel;
        background: $surface;
    }

    #text-prompt-title {
        padding-bottom: 1;
        text-style: bold;
    }
    """

    def __init__(self, title: str, placeholder: str = "") -> None:
        super().__init__()
        self._title = title
        self._placeholder = placeholder

    def compose(self) -> ComposeResult:
        with Container(id="text-prompt-dialog"):
            yield Static(self._title, id="text-prompt-title")
            yield Input(placeholder=self._placeholder, id="text-prompt-input")
            yield Static("Enter to confirm | Esc to cancel")

    def on_mount(self) -> None:
        self.query_one("#text-prompt-input", Input).focus()

    def on_input_submitted(self, event: Input.Submitted) -> None:
        if event.input.id != "text-prompt-input":
            return
        event.stop()
        self.dismiss(event.value.strip())

    def on_key(self, event: Any) -> None:  # noqa: ANN401
        if str(getattr(event, "key", "")).lower() == "escape":
            self.dismiss(None)
