"""Persistence contract consumed by the conversation store."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol, runtime_checkable

from ..models import AttachmentMeta, Conversation, Message, Role


@runtime_checkable
class ConversationBackend(Protocol):
    """Owner-scoped row CRUD over conversations and their messages.

    Implementations advance the parent conversation's ``updated_at`` on every
    message insert and cascade conversation deletes to messages. Failures are
    raised as ``PersistenceError``.
    """

    def bind(self, access_token: str | None) -> None:
        """Attach (or clear) the caller credential used for scoped access."""

    async def list_conversations(self, owner: str) -> list[Conversation]:
        """Return the owner's conversations, most recently active first."""

    async def create_conversation(self, owner: str) -> Conversation: ...

    async def set_title_if_unset(
        self, owner: str, conversation_id: str, title: str
    ) -> Conversation | None:
        """Set the title only where it is still null.

        Returns the updated conversation, or ``None`` when a title was already
        present and nothing changed.
        """

    async def delete_conversation(self, owner: str, conversation_id: str) -> None: ...

    async def list_messages(self, owner: str, conversation_id: str) -> list[Message]:
        """Return messages ordered by ``created_at`` ascending."""

    async def insert_message(
        self,
        owner: str,
        conversation_id: str,
        role: Role,
        content: str,
        attachments: Sequence[AttachmentMeta] = (),
    ) -> Message: ...
