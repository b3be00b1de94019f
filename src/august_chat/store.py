"""Client-side conversation state with optimistic writes and reconciliation."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Sequence
from datetime import datetime
import logging

from .backends.base import ConversationBackend
from .exceptions import PersistenceError
from .models import (
    AttachmentMeta,
    Conversation,
    MessageEntry,
    PendingMessage,
    PersistedMessage,
    Role,
    new_local_id,
    utc_now,
)
from .timeline import group_conversations

LOGGER = logging.getLogger(__name__)

TITLE_MAX_CHARS = 60
ELLIPSIS = "…"

ChangeListener = Callable[[], None]


def make_title(text: str, limit: int = TITLE_MAX_CHARS) -> str:
    """Cut the first user message to ``limit`` characters, keeping its own spacing."""
    trimmed = text.strip()
    if len(trimmed) <= limit:
        return trimmed
    return trimmed[:limit] + ELLIPSIS


class ConversationStore:
    """Sole client-side writer of conversation and message state.

    Responsibilities:
    - Keeping the conversation list and the active conversation's messages
    - Optimistic inserts replaced in place by the persisted record
    - The assistant placeholder lifecycle used by the progressive reveal
    """

    def __init__(self, backend: ConversationBackend) -> None:
        self._backend = backend
        self._owner: str | None = None
        self._conversations: list[Conversation] = []
        self._active_id: str | None = None
        self._messages: list[MessageEntry] = []
        self._create_lock = asyncio.Lock()
        self._listeners: list[ChangeListener] = []

    # -- observation -----------------------------------------------------

    def on_change(self, listener: ChangeListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self) -> None:
        for listener in list(self._listeners):
            listener()

    @property
    def owner(self) -> str | None:
        return self._owner

    @property
    def conversations(self) -> list[Conversation]:
        return list(self._conversations)

    @property
    def messages(self) -> list[MessageEntry]:
        return list(self._messages)

    @property
    def active_conversation_id(self) -> str | None:
        return self._active_id

    @property
    def active_conversation(self) -> Conversation | None:
        return self._find(self._active_id) if self._active_id else None

    def grouped_conversations(
        self, now: datetime | None = None
    ) -> list[tuple[str, list[Conversation]]]:
        return group_conversations(self._conversations, now)

    def _find(self, conversation_id: str | None) -> Conversation | None:
        for conversation in self._conversations:
            if conversation.id == conversation_id:
                return conversation
        return None

    def _index_of(self, entry_id: str) -> int:
        for index, entry in enumerate(self._messages):
            if entry.id == entry_id:
                return index
        raise KeyError(entry_id)

    def _require_owner(self) -> str:
        if not self._owner:
            raise PersistenceError("Not signed in.")
        return self._owner

    # -- session lifecycle -----------------------------------------------

    def bind(self, owner: str | None, access_token: str | None = None) -> None:
        """Scope the store to a signed-in identity; ``None`` resets it."""
        if owner != self._owner:
            self.reset()
        self._owner = owner
        self._backend.bind(access_token if owner else None)

    def reset(self) -> None:
        self._conversations = []
        self._active_id = None
        self._messages = []
        self._emit()

    async def load_conversations(self) -> list[Conversation]:
        owner = self._require_owner()
        conversations = await self._backend.list_conversations(owner)
        self._conversations = sorted(
            conversations, key=lambda c: c.last_activity, reverse=True
        )
        if self._active_id and self._find(self._active_id) is None:
            self._active_id = None
            self._messages = []
        self._emit()
        return self.conversations

    async def select_conversation(self, conversation_id: str) -> None:
        owner = self._require_owner()
        if self._find(conversation_id) is None:
            raise PersistenceError(f"Conversation {conversation_id} not found.")
        records = await self._backend.list_messages(owner, conversation_id)
        self._active_id = conversation_id
        self._messages = [PersistedMessage(record) for record in records]
        self._emit()

    def start_new_conversation(self) -> None:
        """Clear the active conversation; one is created lazily on next send."""
        self._active_id = None
        self._messages = []
        self._emit()

    async def ensure_conversation(self) -> str:
        """Return the active conversation id, creating one if needed."""
        async with self._create_lock:
            if self._active_id is not None:
                return self._active_id
            owner = self._require_owner()
            conversation = await self._backend.create_conversation(owner)
            self._conversations.insert(0, conversation)
            self._active_id = conversation.id
            self._messages = []
            LOGGER.info(
                "store.conversation.created",
                extra={"event": "store.conversation.created", "conversation_id": conversation.id},
            )
            self._emit()
            return conversation.id

    def _touch(self, conversation_id: str, timestamp: datetime) -> None:
        conversation = self._find(conversation_id)
        if conversation is None:
            return
        if timestamp > conversation.updated_at:
            conversation.updated_at = timestamp
        # Most recently active first.
        self._conversations.remove(conversation)
        self._conversations.insert(0, conversation)

    # -- messages --------------------------------------------------------

    async def insert_message(
        self,
        role: Role,
        content: str,
        attachments_meta: Sequence[AttachmentMeta] = (),
    ) -> PersistedMessage:
        """Append optimistically, then swap in the persisted record in place.

        On failure the optimistic entry is removed and ``PersistenceError``
        propagates; nothing is retried.
        """
        owner = self._require_owner()
        conversation_id = await self.ensure_conversation()
        pending = PendingMessage(
            local_id=new_local_id(),
            conversation_id=conversation_id,
            role=role,
            content=content,
            created_at=utc_now(),
            attachments=tuple(attachments_meta),
        )
        self._messages.append(pending)
        self._emit()

        try:
            record = await self._backend.insert_message(
                owner, conversation_id, role, content, pending.attachments
            )
        except PersistenceError:
            self._drop(pending.local_id)
            LOGGER.warning(
                "store.message.insert_failed",
                extra={"event": "store.message.insert_failed", "role": role},
            )
            raise

        persisted = PersistedMessage(record)
        self._swap(pending.local_id, persisted)
        self._touch(conversation_id, record.created_at)
        self._emit()
        return persisted

    def _drop(self, local_id: str) -> None:
        try:
            del self._messages[self._index_of(local_id)]
        except KeyError:
            return
        self._emit()

    def _swap(self, local_id: str, persisted: PersistedMessage) -> None:
        index = self._index_of(local_id)
        match self._messages[index]:
            case PendingMessage():
                self._messages[index] = persisted
            case PersistedMessage():
                raise PersistenceError(f"Entry {local_id} is already persisted.")

    def add_placeholder(self) -> str:
        """Insert an empty assistant entry and return its local id."""
        if self._active_id is None:
            raise PersistenceError("No active conversation for the reply.")
        placeholder = PendingMessage(
            local_id=new_local_id(),
            conversation_id=self._active_id,
            role="assistant",
            content="",
            created_at=utc_now(),
        )
        self._messages.append(placeholder)
        self._emit()
        return placeholder.local_id

    def update_placeholder(self, local_id: str, content: str) -> None:
        try:
            index = self._index_of(local_id)
        except KeyError:
            # Dropped by a reset; later prefixes have nowhere to go.
            return
        entry = self._messages[index]
        if isinstance(entry, PendingMessage):
            self._messages[index] = entry.with_content(content)
            self._emit()

    async def persist_placeholder(self, local_id: str, content: str) -> PersistedMessage:
        """Persist the full reply and swap it in for the placeholder.

        On failure the placeholder keeps its last rendered content and the
        error propagates.
        """
        owner = self._require_owner()
        try:
            entry = self._messages[self._index_of(local_id)]
        except KeyError:
            raise PersistenceError(f"Placeholder {local_id} no longer exists.") from None
        if not isinstance(entry, PendingMessage):
            raise PersistenceError(f"Entry {local_id} is not a placeholder.")

        record = await self._backend.insert_message(
            owner, entry.conversation_id, entry.role, content
        )
        persisted = PersistedMessage(record)
        try:
            self._swap(local_id, persisted)
        except KeyError:
            return persisted
        self._touch(entry.conversation_id, record.created_at)
        self._emit()
        return persisted

    # -- conversations ---------------------------------------------------

    async def title_if_unset(self, conversation_id: str, candidate: str) -> bool:
        """Set the title from ``candidate`` unless one already exists."""
        owner = self._require_owner()
        conversation = self._find(conversation_id)
        if conversation is not None and conversation.title is not None:
            return False
        title = make_title(candidate)
        if not title:
            return False
        updated = await self._backend.set_title_if_unset(owner, conversation_id, title)
        if updated is None:
            return False
        if conversation is not None:
            conversation.title = updated.title
        self._emit()
        return True

    async def delete_conversation(self, conversation_id: str) -> None:
        """Delete remotely first; local state changes only after success."""
        owner = self._require_owner()
        await self._backend.delete_conversation(owner, conversation_id)
        self._conversations = [c for c in self._conversations if c.id != conversation_id]
        LOGGER.info(
            "store.conversation.deleted",
            extra={"event": "store.conversation.deleted", "conversation_id": conversation_id},
        )
        if self._active_id != conversation_id:
            self._emit()
            return

        self._active_id = None
        self._messages = []
        remaining = sorted(self._conversations, key=lambda c: c.last_activity, reverse=True)
        if remaining:
            await self.select_conversation(remaining[0].id)
        else:
            self._emit()
