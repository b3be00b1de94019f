"""Main Textual application for August Chat."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
import logging
import shlex
from typing import Any

from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Horizontal, Vertical
from textual.widgets import Footer, Header, Input, OptionList

from .attachments import FileUpload
from .config import load_config
from .exceptions import AttachmentError, IdentityError
from .factory import build_orchestrator
from .logging_utils import configure_logging
from .orchestrator import BUSY_NOTICE, ChatOrchestrator
from .screens import ConfirmScreen, SignInScreen, SimplePickerScreen, TextPromptScreen
from .state import SEND_READY_STATES
from .widgets.conversation import ConversationView
from .widgets.input_box import InputBox
from .widgets.sidebar import ConversationSidebar
from .widgets.status_bar import StatusBar

LOGGER = logging.getLogger(__name__)

_SlashCommand = Callable[[str], Awaitable[None]]


class AugustChatApp(App[None]):
    """Terminal chat client backed by the completion gateway."""

    CSS = """
    Screen {
        layout: vertical;
        background: $background;
    }

    #app-root {
        height: 1fr;
    }

    #chat-column {
        width: 1fr;
        height: 1fr;
    }

    #conversation {
        height: 1fr;
        padding: 0 1;
    }

    #slash_menu {
        max-height: 8;
    }

    .hidden {
        display: none;
    }
    """

    BINDINGS = [
        Binding("escape", "skip_reveal", "Skip", show=False),
        Binding("ctrl+n", "new_conversation", "New Chat"),
        Binding("ctrl+d", "delete_conversation", "Delete"),
        Binding("ctrl+w", "toggle_web", "Web"),
        Binding("ctrl+q", "quit", "Quit"),
    ]

    SLASH_COMMANDS: tuple[tuple[str, str], ...] = (
        ("/attach <path>...", "Attach files to the next message"),
        ("/detach [n]", "Remove staged file n, or all files"),
        ("/new", "Start a new conversation"),
        ("/delete", "Delete the current conversation"),
        ("/model [name]", "Switch model"),
        ("/web", "Toggle web-augmented answers"),
        ("/signout", "Sign out"),
    )

    def __init__(
        self,
        config: dict[str, Any] | None = None,
        orchestrator: ChatOrchestrator | None = None,
    ) -> None:
        self.config = config or load_config()
        configure_logging(self.config["logging"])
        self.window_title = str(self.config["app"]["title"])
        self.orchestrator = orchestrator or build_orchestrator(self.config)
        self._identity_label = ""
        self._sync_pending = False
        self._sidebar_signature: tuple[Any, ...] = ()
        self._unsubscribers: list[Callable[[], None]] = []
        self._slash_registry = self._build_slash_registry()
        super().__init__()

    def compose(self) -> ComposeResult:
        yield Header(name=self.window_title)
        with Horizontal(id="app-root"):
            yield ConversationSidebar(id="sidebar")
            with Vertical(id="chat-column"):
                yield ConversationView(id="conversation")
                yield InputBox()
                yield StatusBar(id="status_bar")
        yield Footer()

    async def on_mount(self) -> None:
        self.title = self.window_title
        store = self.orchestrator.store
        self._unsubscribers.append(store.on_change(self._schedule_sync))
        self._unsubscribers.append(self.orchestrator.on_notice(self._show_notice))
        self.query_one("#message_input", Input).focus()
        self._update_status_bar()
        self.run_worker(self._startup(), group="session", exclusive=True)

    async def on_unmount(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()
        self.orchestrator.close()

    # -- session ---------------------------------------------------------

    async def _startup(self) -> None:
        session = await self.orchestrator.start()
        if session is None:
            if self.orchestrator.identity.requires_sign_in:
                self._prompt_sign_in()
            return
        self._identity_label = session.email
        self._update_status_bar()

    def _prompt_sign_in(self, error: str = "") -> None:
        self.push_screen(SignInScreen(error), callback=self._on_sign_in_dismissed)

    def _on_sign_in_dismissed(self, result: tuple[str, str] | None) -> None:
        if result is None:
            self.sub_title = "Signed out. Use /signout then sign in again to continue."
            return
        email, password = result
        self.run_worker(self._sign_in(email, password), group="session", exclusive=True)

    async def _sign_in(self, email: str, password: str) -> None:
        try:
            session = await self.orchestrator.sign_in(email, password)
        except IdentityError as exc:
            LOGGER.info("app.sign_in.failed", extra={"event": "app.sign_in.failed"})
            self._prompt_sign_in(str(exc))
            return
        self._identity_label = session.email
        self.sub_title = f"Signed in as {session.email}"
        self._update_status_bar()

    async def _sign_out(self) -> None:
        if not await self.orchestrator.sign_out():
            return
        self._identity_label = ""
        self._update_status_bar()
        if self.orchestrator.identity.requires_sign_in:
            self._prompt_sign_in()
        else:
            await self._startup()

    # -- rendering -------------------------------------------------------

    def _show_notice(self, message: str) -> None:
        self.sub_title = message

    def _schedule_sync(self) -> None:
        if self._sync_pending:
            return
        self._sync_pending = True
        self.call_later(self._sync_view)

    async def _sync_view(self) -> None:
        self._sync_pending = False
        store = self.orchestrator.store
        await self.query_one(ConversationView).sync(store.messages)

        signature = (
            store.active_conversation_id,
            tuple((c.id, c.title, c.updated_at) for c in store.conversations),
        )
        if signature != self._sidebar_signature:
            self._sidebar_signature = signature
            self.query_one(ConversationSidebar).set_groups(
                store.grouped_conversations(), store.active_conversation_id
            )
        self._update_status_bar()

    def _update_status_bar(self) -> None:
        preferences = self.orchestrator.preferences
        self.query_one(StatusBar).set_status(
            identity=self._identity_label,
            model=preferences.selected_model,
            enable_web=preferences.enable_web,
            attachment_names=[a.meta.name for a in self.orchestrator.attachments],
        )

    # -- input -----------------------------------------------------------

    async def on_input_submitted(self, event: Input.Submitted) -> None:
        if event.input.id != "message_input":
            return
        await self._submit_input()

    async def on_input_box_send_requested(self, event: InputBox.SendRequested) -> None:
        await self._submit_input()

    async def on_input_box_attach_requested(self, event: InputBox.AttachRequested) -> None:
        self._open_attach_prompt()

    async def _submit_input(self) -> None:
        input_widget = self.query_one("#message_input", Input)
        raw_text = input_widget.value
        if raw_text.strip().startswith("/") and await self._dispatch_slash_command(raw_text.strip()):
            return
        if self.orchestrator.state.state not in SEND_READY_STATES:
            self.sub_title = BUSY_NOTICE
            return
        input_widget.value = ""
        self.run_worker(self._send(raw_text), group="send")

    async def _send(self, text: str) -> None:
        outcome = await self.orchestrator.send(text)
        if outcome.restored_text:
            input_widget = self.query_one("#message_input", Input)
            if not input_widget.value:
                input_widget.value = outcome.restored_text
                input_widget.cursor_position = len(input_widget.value)
        self._update_status_bar()

    def on_input_changed(self, event: Input.Changed) -> None:
        if event.input.id != "message_input":
            return
        value = event.value
        if value.startswith("/"):
            self._show_slash_menu(prefix=value.split(" ", 1)[0])
        else:
            self._hide_slash_menu()
        self.run_worker(self.orchestrator.note_draft(value), group="draft", exclusive=True)

    def on_option_list_option_selected(self, event: OptionList.OptionSelected) -> None:
        if event.option_list.id != "slash_menu":
            return
        command = str(event.option.prompt).split(" ", 1)[0]
        input_widget = self.query_one("#message_input", Input)
        input_widget.value = f"{command} "
        input_widget.cursor_position = len(input_widget.value)
        self._hide_slash_menu()
        input_widget.focus()
        event.stop()

    def _show_slash_menu(self, prefix: str) -> None:
        menu = self.query_one("#slash_menu", OptionList)
        menu.clear_options()
        normalized_prefix = prefix.lower()
        for command, description in self.SLASH_COMMANDS:
            if command.lower().startswith(normalized_prefix):
                menu.add_option(f"{command} - {description}")
        menu.set_class(menu.option_count == 0, "hidden")

    def _hide_slash_menu(self) -> None:
        menu = self.query_one("#slash_menu", OptionList)
        menu.add_class("hidden")
        menu.clear_options()

    async def on_conversation_sidebar_conversation_selected(
        self, event: ConversationSidebar.ConversationSelected
    ) -> None:
        self.run_worker(
            self.orchestrator.open_conversation(event.conversation_id),
            group="open",
            exclusive=True,
        )

    # -- actions ---------------------------------------------------------

    def action_skip_reveal(self) -> None:
        self.orchestrator.skip_reveal()

    def action_new_conversation(self) -> None:
        if self.orchestrator.new_conversation():
            self.sub_title = "New conversation"
        else:
            self.sub_title = BUSY_NOTICE

    async def action_delete_conversation(self) -> None:
        conversation = self.orchestrator.store.active_conversation
        if conversation is None:
            self.sub_title = "No conversation selected."
            return
        if not await self.orchestrator.request_delete(conversation.id):
            self.sub_title = BUSY_NOTICE
            return
        title = conversation.title or "this conversation"
        self.push_screen(
            ConfirmScreen(f"Delete {title!r}? This cannot be undone."),
            callback=self._on_delete_dismissed,
        )

    def _on_delete_dismissed(self, confirmed: bool | None) -> None:
        if confirmed:
            self.run_worker(self.orchestrator.confirm_delete(), group="delete")
        else:
            self.run_worker(self.orchestrator.cancel_delete(), group="delete")

    def action_toggle_web(self) -> None:
        enabled = self.orchestrator.toggle_web()
        self.sub_title = f"Web answers {'enabled' if enabled else 'disabled'}"
        self._update_status_bar()

    def _open_attach_prompt(self) -> None:
        self.push_screen(
            TextPromptScreen("Attach files", placeholder="Path(s), space separated"),
            callback=self._on_attach_dismissed,
        )

    def _on_attach_dismissed(self, value: str | None) -> None:
        if value:
            self.run_worker(self._attach_paths(value), group="attach")

    async def _attach_paths(self, raw: str) -> None:
        uploads: list[FileUpload] = []
        try:
            paths = shlex.split(raw)
        except ValueError as exc:
            self.sub_title = f"Invalid path list: {exc}"
            return
        for path in paths:
            try:
                uploads.append(FileUpload.from_path(path))
            except AttachmentError as exc:
                self.sub_title = str(exc)
        if uploads:
            await self.orchestrator.attach(uploads)
        self._update_status_bar()

    # -- slash commands --------------------------------------------------

    def _build_slash_registry(self) -> dict[str, _SlashCommand]:
        async def _handle_attach(args: str) -> None:
            if args.strip():
                await self._attach_paths(args)
            else:
                self._open_attach_prompt()

        async def _handle_detach(args: str) -> None:
            staged = self.orchestrator.attachments
            if not args.strip():
                self.orchestrator.clear_attachments()
                self.sub_title = "Removed all staged files."
            else:
                try:
                    index = int(args.strip()) - 1
                except ValueError:
                    index = -1
                if not 0 <= index < len(staged):
                    self.sub_title = f"No staged file {args.strip()}."
                    return
                self.orchestrator.detach(staged[index].meta.id)
                self.sub_title = f"Removed {staged[index].meta.name}."
            self._update_status_bar()

        async def _handle_new(_args: str) -> None:
            self.action_new_conversation()

        async def _handle_delete(_args: str) -> None:
            await self.action_delete_conversation()

        async def _handle_model(args: str) -> None:
            name = args.strip()
            if name:
                if self.orchestrator.select_model(name):
                    self.sub_title = f"Model set: {name}"
                self._update_status_bar()
                return
            self.push_screen(
                SimplePickerScreen("Models", list(self.config["gateway"]["models"])),
                callback=self._on_model_picked,
            )

        async def _handle_web(_args: str) -> None:
            self.action_toggle_web()

        async def _handle_signout(_args: str) -> None:
            self.run_worker(self._sign_out(), group="session", exclusive=True)

        return {
            "/attach": _handle_attach,
            "/detach": _handle_detach,
            "/new": _handle_new,
            "/delete": _handle_delete,
            "/model": _handle_model,
            "/web": _handle_web,
            "/signout": _handle_signout,
        }

    def _on_model_picked(self, model: str | None) -> None:
        if model and self.orchestrator.select_model(model):
            self.sub_title = f"Model set: {model}"
        self._update_status_bar()

    async def _dispatch_slash_command(self, raw_text: str) -> bool:
        """Intercept and execute slash commands. Returns True if handled."""
        parts = raw_text.split(maxsplit=1)
        prefix = parts[0].lower()
        args = parts[1] if len(parts) == 2 else ""

        handler = self._slash_registry.get(prefix)
        if handler is None:
            return False

        self.query_one("#message_input", Input).value = ""
        self._hide_slash_menu()
        await handler(args)
        return True
