"""Composes attachments, turn assembly, the store, and the gateway per send."""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
import logging
from typing import Any, Protocol

from .attachments import AttachmentProcessor, FileUpload
from .exceptions import GatewayError, IdentityError, PersistenceError
from .identity import SIGNED_OUT, AuthSession, IdentityProvider
from .models import Attachment
from .preferences import PreferencesStore
from .render import ProgressiveRenderer
from .state import SEND_READY_STATES, SessionState, StateManager
from .store import ConversationStore
from .turns import TurnAssembler

LOGGER = logging.getLogger(__name__)

EMPTY_SEND_NOTICE = "Type a message or attach a file first."
SIGNED_OUT_NOTICE = "Please sign in to send messages."
SEND_FAILED_NOTICE = "Failed to send message"
SAVE_FAILED_NOTICE = "Failed to save your message. Your text and files were restored."
REPLY_SAVE_FAILED_NOTICE = "The reply could not be saved."
EMPTY_REPLY_NOTICE = "The model returned an empty response."
DELETE_FAILED_NOTICE = "Failed to delete conversation."
BUSY_NOTICE = "Wait for the current reply to finish."
REPLY_DISCARDED_NOTICE = "You were signed out before the reply arrived."

NoticeListener = Callable[[str], None]


class CompletionClient(Protocol):
    async def complete(
        self,
        access_token: str,
        messages: Sequence[Mapping[str, Any]],
        model: str,
        enable_web: bool = False,
    ) -> str: ...


class SendStatus(str, Enum):
    """How a send attempt ended."""

    SENT = "sent"
    IGNORED = "ignored"
    REJECTED = "rejected"
    RESTORED = "restored"
    FAILED = "failed"


@dataclass
class SendOutcome:
    status: SendStatus
    reply: str | None = None
    restored_text: str | None = None
    notices: list[str] = field(default_factory=list)


class ChatOrchestrator:
    """Drives one client session.

    Responsibilities:
    - Holding the attachments staged for the next turn
    - Running the send protocol under the session state machine
    - Turning every failure path into a user-visible notice
    """

    def __init__(
        self,
        *,
        store: ConversationStore,
        gateway: CompletionClient,
        identity: IdentityProvider,
        preferences: PreferencesStore,
        processor: AttachmentProcessor | None = None,
        assembler: TurnAssembler | None = None,
        renderer: ProgressiveRenderer | None = None,
        state: StateManager | None = None,
    ) -> None:
        self.store = store
        self.gateway = gateway
        self.identity = identity
        self.preferences = preferences
        self.processor = processor or AttachmentProcessor()
        self.assembler = assembler or TurnAssembler()
        self.renderer = renderer or ProgressiveRenderer()
        self.state = state or StateManager()
        self._attachments: list[Attachment] = []
        self._pending_delete: str | None = None
        self._notice_listeners: list[NoticeListener] = []
        self._unsubscribe_identity = identity.on_session_change(self._on_session_change)

    # -- notices ---------------------------------------------------------

    def on_notice(self, listener: NoticeListener) -> Callable[[], None]:
        self._notice_listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._notice_listeners:
                self._notice_listeners.remove(listener)

        return unsubscribe

    def _notice(self, message: str, outcome: SendOutcome | None = None) -> None:
        LOGGER.info("orchestrator.notice", extra={"event": "orchestrator.notice", "notice": message})
        if outcome is not None:
            outcome.notices.append(message)
        for listener in list(self._notice_listeners):
            listener(message)

    # -- session ---------------------------------------------------------

    def _on_session_change(self, event: str, session: AuthSession | None) -> None:
        if event == SIGNED_OUT or session is None:
            self.store.bind(None)
            self._attachments.clear()
            return
        self.store.bind(session.user_id, session.access_token)

    async def start(self) -> AuthSession | None:
        """Restore an existing session and load its conversations."""
        session = await self.identity.current_session()
        if session is None:
            return None
        self.store.bind(session.user_id, session.access_token)
        await self._load_conversations()
        return session

    async def _load_conversations(self) -> None:
        try:
            await self.store.load_conversations()
        except PersistenceError as exc:
            LOGGER.warning(
                "orchestrator.load.failed",
                extra={"event": "orchestrator.load.failed", "error": str(exc)},
            )
            self._notice("Failed to load conversations.")

    async def sign_in(self, email: str, password: str) -> AuthSession:
        """Sign in and load conversations; ``IdentityError`` propagates."""
        session = await self.identity.sign_in(email, password)
        self.store.bind(session.user_id, session.access_token)
        await self._load_conversations()
        return session

    async def sign_out(self) -> bool:
        """Sign out and clear session state; refused while a send is running."""
        if not await self.state.can_send_message():
            self._notice(BUSY_NOTICE)
            return False
        try:
            await self.identity.sign_out()
        except IdentityError as exc:
            LOGGER.warning(
                "orchestrator.sign_out.failed",
                extra={"event": "orchestrator.sign_out.failed", "error": str(exc)},
            )
        self.store.bind(None)
        self._attachments.clear()
        return True

    def close(self) -> None:
        self._unsubscribe_identity()

    # -- preferences -----------------------------------------------------

    def select_model(self, model: str) -> bool:
        if self.preferences.set_selected_model(model):
            return True
        self._notice(f"Model {model!r} is not available.")
        return False

    def toggle_web(self) -> bool:
        return self.preferences.toggle_web()

    # -- composing -------------------------------------------------------

    @property
    def attachments(self) -> list[Attachment]:
        return list(self._attachments)

    async def note_draft(self, text: str) -> None:
        """Track whether the user is composing; purely informational."""
        if text.strip() or self._attachments:
            await self.state.transition_if(SessionState.IDLE, SessionState.COMPOSING)
        else:
            await self.state.transition_if(SessionState.COMPOSING, SessionState.IDLE)

    async def attach(self, files: Sequence[FileUpload]) -> list[str]:
        """Process a selection and stage the accepted files for the next send."""
        result = await self.processor.process_batch(files, current_count=len(self._attachments))
        self._attachments.extend(result.attachments)
        for notice in result.notices:
            self._notice(notice)
        if self._attachments:
            await self.state.transition_if(SessionState.IDLE, SessionState.COMPOSING)
        return result.notices

    def detach(self, attachment_id: str) -> bool:
        before = len(self._attachments)
        self._attachments = [a for a in self._attachments if a.meta.id != attachment_id]
        return len(self._attachments) != before

    def clear_attachments(self) -> None:
        self._attachments.clear()

    # -- conversations ---------------------------------------------------

    def new_conversation(self) -> bool:
        if self.state.state not in SEND_READY_STATES:
            return False
        self.store.start_new_conversation()
        return True

    async def open_conversation(self, conversation_id: str) -> bool:
        if self.state.state not in SEND_READY_STATES:
            return False
        try:
            await self.store.select_conversation(conversation_id)
        except PersistenceError as exc:
            LOGGER.warning(
                "orchestrator.open.failed",
                extra={"event": "orchestrator.open.failed", "error": str(exc)},
            )
            self._notice("Failed to load messages.")
            return False
        return True

    async def request_delete(self, conversation_id: str) -> bool:
        if not await self.state.transition_if(SEND_READY_STATES, SessionState.CONFIRMING_DELETE):
            return False
        self._pending_delete = conversation_id
        return True

    async def cancel_delete(self) -> None:
        self._pending_delete = None
        await self.state.transition_if(SessionState.CONFIRMING_DELETE, SessionState.IDLE)

    async def confirm_delete(self) -> bool:
        conversation_id = self._pending_delete
        if conversation_id is None or self.state.state is not SessionState.CONFIRMING_DELETE:
            return False
        self._pending_delete = None
        try:
            await self.store.delete_conversation(conversation_id)
            return True
        except PersistenceError as exc:
            LOGGER.warning(
                "orchestrator.delete.failed",
                extra={"event": "orchestrator.delete.failed", "error": str(exc)},
            )
            self._notice(DELETE_FAILED_NOTICE)
            return False
        finally:
            await self.state.transition_to(SessionState.IDLE)

    # -- sending ---------------------------------------------------------

    def skip_reveal(self) -> None:
        self.renderer.skip()

    async def send(self, text: str) -> SendOutcome:
        """Run one turn end to end.

        Returns once the reply is revealed and persisted, or as soon as a
        failure has been reported.
        """
        normalized = text.strip()
        if not normalized and not self._attachments:
            outcome = SendOutcome(SendStatus.REJECTED)
            self._notice(EMPTY_SEND_NOTICE, outcome)
            return outcome

        if not await self.state.transition_if(SEND_READY_STATES, SessionState.SENDING):
            LOGGER.debug("orchestrator.send.ignored", extra={"event": "orchestrator.send.ignored"})
            return SendOutcome(SendStatus.IGNORED, restored_text=normalized)

        try:
            return await self._send(normalized)
        finally:
            await self.state.transition_to(SessionState.IDLE)

    async def _send(self, text: str) -> SendOutcome:
        session = await self.identity.current_session()
        if session is None:
            outcome = SendOutcome(SendStatus.REJECTED, restored_text=text)
            self._notice(SIGNED_OUT_NOTICE, outcome)
            return outcome

        attachments = list(self._attachments)
        self._attachments.clear()
        turn = self.assembler.assemble(self.store.messages, text, attachments)

        try:
            conversation_id = await self.store.ensure_conversation()
            await self.store.insert_message("user", turn.persisted_content, turn.attachments_meta)
        except PersistenceError as exc:
            LOGGER.warning(
                "orchestrator.user_message.failed",
                extra={"event": "orchestrator.user_message.failed", "error": str(exc)},
            )
            self._attachments = attachments + self._attachments
            outcome = SendOutcome(SendStatus.RESTORED, restored_text=text)
            self._notice(SAVE_FAILED_NOTICE, outcome)
            return outcome

        try:
            await self.store.title_if_unset(conversation_id, turn.persisted_content)
        except PersistenceError as exc:
            LOGGER.warning(
                "orchestrator.title.failed",
                extra={"event": "orchestrator.title.failed", "error": str(exc)},
            )

        try:
            reply = await self.gateway.complete(
                session.access_token,
                turn.request_messages,
                self.preferences.selected_model,
                self.preferences.enable_web,
            )
        except GatewayError as exc:
            LOGGER.warning(
                "orchestrator.gateway.failed",
                extra={
                    "event": "orchestrator.gateway.failed",
                    "status": exc.status,
                    "error": exc.error,
                },
            )
            outcome = SendOutcome(SendStatus.FAILED)
            self._notice(SEND_FAILED_NOTICE, outcome)
            return outcome

        await self.state.transition_to(SessionState.RECONCILING)
        if not self._still_bound(session, conversation_id):
            return self._discard_reply(reply)
        outcome = SendOutcome(SendStatus.SENT, reply=reply)
        if not reply:
            self._notice(EMPTY_REPLY_NOTICE, outcome)
            return outcome

        local_id = self.store.add_placeholder()
        await self.renderer.reveal(
            reply, lambda prefix: self.store.update_placeholder(local_id, prefix)
        )
        if not self._still_bound(session, conversation_id):
            return self._discard_reply(reply)
        try:
            await self.store.persist_placeholder(local_id, reply)
        except PersistenceError as exc:
            LOGGER.warning(
                "orchestrator.reply.save_failed",
                extra={"event": "orchestrator.reply.save_failed", "error": str(exc)},
            )
            self._notice(REPLY_SAVE_FAILED_NOTICE, outcome)
        return outcome

    def _still_bound(self, session: AuthSession, conversation_id: str) -> bool:
        """True while the store is scoped to the session and conversation of the send."""
        return (
            self.store.owner == session.user_id
            and self.store.active_conversation_id == conversation_id
        )

    def _discard_reply(self, reply: str) -> SendOutcome:
        LOGGER.warning(
            "orchestrator.reply.discarded",
            extra={"event": "orchestrator.reply.discarded", "reply_chars": len(reply)},
        )
        outcome = SendOutcome(SendStatus.FAILED, reply=reply)
        self._notice(REPLY_DISCARDED_NOTICE, outcome)
        return outcome
