"""In-process conversation backend."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from datetime import datetime, timedelta
import logging
from uuid import uuid4

from ..exceptions import PersistenceError
from ..models import AttachmentMeta, Conversation, Message, Role, VALID_ROLES, utc_now

LOGGER = logging.getLogger(__name__)


class MemoryBackend:
    """Owner-scoped rows held in dictionaries.

    Mirrors what the hosted store does server-side: a message insert touches
    the parent's ``updated_at`` and deleting a conversation drops its messages.
    """

    def __init__(self, clock: Callable[[], datetime] | None = None) -> None:
        self._clock = clock or utc_now
        self._last_timestamp: datetime | None = None
        self._conversations: dict[str, Conversation] = {}
        self._messages: dict[str, list[Message]] = {}

    def bind(self, access_token: str | None) -> None:
        return None

    def _now(self) -> datetime:
        # Strictly increasing so message order by created_at is stable.
        current = self._clock()
        if self._last_timestamp is not None and current <= self._last_timestamp:
            current = self._last_timestamp + timedelta(microseconds=1)
        self._last_timestamp = current
        return current

    def _owned(self, owner: str, conversation_id: str) -> Conversation:
        conversation = self._conversations.get(conversation_id)
        if conversation is None or conversation.owner != owner:
            raise PersistenceError(f"Conversation {conversation_id} not found.")
        return conversation

    def _changed(self) -> None:
        """Hook for subclasses that persist after each mutation."""

    def _commit(self, undo: Callable[[], None]) -> None:
        """Persist a mutation, reverting it in memory when persisting fails."""
        try:
            self._changed()
        except PersistenceError:
            undo()
            raise

    async def list_conversations(self, owner: str) -> list[Conversation]:
        owned = [c for c in self._conversations.values() if c.owner == owner]
        return sorted(owned, key=lambda c: c.last_activity, reverse=True)

    async def create_conversation(self, owner: str) -> Conversation:
        if not owner:
            raise PersistenceError("An owner is required to create a conversation.")
        now = self._now()
        conversation = Conversation(
            id=str(uuid4()), owner=owner, title=None, created_at=now, updated_at=now
        )
        self._conversations[conversation.id] = conversation
        self._messages[conversation.id] = []

        def undo() -> None:
            self._conversations.pop(conversation.id, None)
            self._messages.pop(conversation.id, None)

        self._commit(undo)
        return conversation

    async def set_title_if_unset(
        self, owner: str, conversation_id: str, title: str
    ) -> Conversation | None:
        conversation = self._owned(owner, conversation_id)
        if conversation.title is not None:
            return None
        conversation.title = title

        def undo() -> None:
            conversation.title = None

        self._commit(undo)
        return conversation

    async def delete_conversation(self, owner: str, conversation_id: str) -> None:
        conversation = self._owned(owner, conversation_id)
        del self._conversations[conversation_id]
        messages = self._messages.pop(conversation_id, [])

        def undo() -> None:
            self._conversations[conversation_id] = conversation
            self._messages[conversation_id] = messages

        self._commit(undo)

    async def list_messages(self, owner: str, conversation_id: str) -> list[Message]:
        self._owned(owner, conversation_id)
        return sorted(self._messages.get(conversation_id, []), key=lambda m: m.created_at)

    async def insert_message(
        self,
        owner: str,
        conversation_id: str,
        role: Role,
        content: str,
        attachments: Sequence[AttachmentMeta] = (),
    ) -> Message:
        conversation = self._owned(owner, conversation_id)
        if role not in VALID_ROLES:
            raise PersistenceError(f"Invalid message role: {role!r}")
        now = self._now()
        message = Message(
            id=str(uuid4()),
            conversation_id=conversation_id,
            role=role,
            content=content,
            created_at=now,
            attachments=tuple(attachments),
        )
        rows = self._messages.setdefault(conversation_id, [])
        rows.append(message)
        previous_updated_at = conversation.updated_at
        conversation.updated_at = now

        def undo() -> None:
            rows.remove(message)
            conversation.updated_at = previous_updated_at

        self._commit(undo)
        return message
