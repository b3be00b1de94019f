"""Conversation, message, and attachment records shared across the client."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
import enum
from typing import Any, Literal, TypeAlias
from uuid import uuid4

Role = Literal["system", "user", "assistant"]
VALID_ROLES: frozenset[str] = frozenset({"system", "user", "assistant"})


def utc_now() -> datetime:
    return datetime.now(UTC)


def new_local_id() -> str:
    """Return a locally generated identifier for optimistic records."""
    return f"local-{uuid4().hex}"


def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO-8601 timestamp from a row; naive values are taken as UTC."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        parsed = datetime.fromisoformat(value.strip())
    else:
        raise ValueError(f"Invalid timestamp: {value!r}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


@dataclass(frozen=True)
class AttachmentMeta:
    """Display and persistence descriptor of an attachment (no payload)."""

    name: str
    media_type: str
    size: int
    id: str = field(default_factory=lambda: uuid4().hex)

    def to_row(self) -> dict[str, Any]:
        return {"name": self.name, "type": self.media_type, "size": self.size}

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> AttachmentMeta:
        return cls(
            name=str(row.get("name", "")),
            media_type=str(row.get("type", "") or ""),
            size=int(row.get("size", 0) or 0),
        )


class TextSource(str, enum.Enum):
    """Where the text of a TextAttachment came from."""

    PLAIN = "plain"
    PDF = "pdf"
    DOCX = "docx"


@dataclass(frozen=True)
class ImageAttachment:
    """An image sent inline to the model, with best-effort recognized text."""

    meta: AttachmentMeta
    data_url: str
    ocr_text: str | None = None

    @property
    def text(self) -> str | None:
        return self.ocr_text


@dataclass(frozen=True)
class TextAttachment:
    """A document whose text was extracted (possibly empty on failure)."""

    meta: AttachmentMeta
    text: str
    source: TextSource = TextSource.PLAIN


@dataclass(frozen=True)
class BinaryAttachment:
    """An opaque file; the model only learns its name, type, and size."""

    meta: AttachmentMeta

    @property
    def text(self) -> str | None:
        return None


Attachment: TypeAlias = ImageAttachment | TextAttachment | BinaryAttachment


@dataclass
class Conversation:
    """An identity-scoped container of messages."""

    id: str
    owner: str
    title: str | None
    created_at: datetime
    updated_at: datetime

    @property
    def last_activity(self) -> datetime:
        return self.updated_at or self.created_at

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> Conversation:
        created = parse_timestamp(row["created_at"])
        updated_raw = row.get("updated_at")
        return cls(
            id=str(row["id"]),
            owner=str(row.get("user_id", "")),
            title=row.get("title") or None,
            created_at=created,
            updated_at=parse_timestamp(updated_raw) if updated_raw else created,
        )

    def to_row(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.owner,
            "title": self.title,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass(frozen=True)
class Message:
    """A persisted message. Role never changes after creation."""

    id: str
    conversation_id: str
    role: Role
    content: str
    created_at: datetime
    attachments: tuple[AttachmentMeta, ...] = ()

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> Message:
        role = str(row.get("role", "")).strip().lower()
        if role not in VALID_ROLES:
            raise ValueError(f"Invalid message role: {role!r}")
        raw_attachments = row.get("attachments") or []
        return cls(
            id=str(row["id"]),
            conversation_id=str(row["conversation_id"]),
            role=role,  # type: ignore[arg-type]
            content=str(row.get("content") or ""),
            created_at=parse_timestamp(row["created_at"]),
            attachments=tuple(
                AttachmentMeta.from_row(item)
                for item in raw_attachments
                if isinstance(item, dict)
            ),
        )

    def to_row(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "conversation_id": self.conversation_id,
            "role": self.role,
            "content": self.content,
            "created_at": self.created_at.isoformat(),
            "attachments": [meta.to_row() for meta in self.attachments] or None,
        }


@dataclass(frozen=True)
class PendingMessage:
    """An optimistic entry shown before the store confirms the write."""

    local_id: str
    conversation_id: str
    role: Role
    content: str
    created_at: datetime
    attachments: tuple[AttachmentMeta, ...] = ()

    @property
    def id(self) -> str:
        return self.local_id

    def with_content(self, content: str) -> PendingMessage:
        return replace(self, content=content)


@dataclass(frozen=True)
class PersistedMessage:
    """An entry backed by the canonical stored record."""

    record: Message

    @property
    def id(self) -> str:
        return self.record.id

    @property
    def role(self) -> Role:
        return self.record.role

    @property
    def content(self) -> str:
        return self.record.content

    @property
    def attachments(self) -> tuple[AttachmentMeta, ...]:
        return self.record.attachments

    @property
    def created_at(self) -> datetime:
        return self.record.created_at


MessageEntry: TypeAlias = PendingMessage | PersistedMessage
