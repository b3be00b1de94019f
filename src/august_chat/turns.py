"""Turn assembly: what gets persisted and what gets sent to the model."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from .models import (
    Attachment,
    AttachmentMeta,
    BinaryAttachment,
    ImageAttachment,
    MessageEntry,
)

MAX_ATTACHMENT_TEXT_CHARS = 20_000
NO_TEXT_PLACEHOLDER = "(No message text. See the attached files.)"
ATTACHED_FILES_PREFIX = "Attached files: "
TRUNCATION_MARKER = "\n...[truncated]"

# Public request message type, as sent in the gateway's ``messages`` list.
RequestMessage = dict[str, Any]


@dataclass(frozen=True)
class AssembledTurn:
    """The two views of a single user turn."""

    persisted_content: str
    request_messages: list[RequestMessage]
    attachments_meta: tuple[AttachmentMeta, ...] = field(default_factory=tuple)

    @property
    def is_empty(self) -> bool:
        return not self.persisted_content and not self.attachments_meta


def persisted_content_for(text: str, attachments: Sequence[Attachment]) -> str:
    """Return the user-facing content stored for the turn."""
    normalized = text.strip()
    if normalized:
        return normalized
    if attachments:
        return ATTACHED_FILES_PREFIX + ", ".join(a.meta.name for a in attachments)
    return ""


def _truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + TRUNCATION_MARKER


def _prior_to_request(message: MessageEntry | Mapping[str, Any]) -> RequestMessage:
    if isinstance(message, Mapping):
        return {"role": message["role"], "content": message["content"]}
    return {"role": message.role, "content": message.content}


class TurnAssembler:
    """Builds the persisted content and the model request for one turn.

    Request layout never changes order: prior messages as stored, then a
    single user message whose content is the combined text part followed by
    zero or more trailing image parts.
    """

    def __init__(self, max_text_chars: int = MAX_ATTACHMENT_TEXT_CHARS) -> None:
        self.max_text_chars = max(1, max_text_chars)

    def file_section(self, attachment: Attachment) -> str | None:
        """Return the labeled text section for one attachment, if any."""
        meta = attachment.meta
        header = f"--- File: {meta.name} ---"
        text = attachment.text
        if text:
            return f"{header}\n{_truncate(text, self.max_text_chars)}"
        if isinstance(attachment, ImageAttachment):
            # The image itself travels as a separate part.
            return None
        media_type = meta.media_type or "unknown type"
        if isinstance(attachment, BinaryAttachment):
            return f"{header}\n[{media_type}, {meta.size} bytes; content not extracted]"
        return f"{header}\n[{media_type}, {meta.size} bytes; no text could be extracted]"

    def combined_text(self, text: str, attachments: Sequence[Attachment]) -> str:
        sections = [text.strip() or NO_TEXT_PLACEHOLDER]
        for attachment in attachments:
            section = self.file_section(attachment)
            if section:
                sections.append(section)
        return "\n\n".join(sections)

    def assemble(
        self,
        prior_messages: Sequence[MessageEntry | Mapping[str, Any]],
        new_text: str,
        attachments: Sequence[Attachment] = (),
    ) -> AssembledTurn:
        normalized = new_text.strip()
        request_messages = [_prior_to_request(m) for m in prior_messages]

        if not attachments:
            request_messages.append({"role": "user", "content": normalized})
        else:
            parts: list[dict[str, Any]] = [
                {"type": "text", "text": self.combined_text(normalized, attachments)}
            ]
            for attachment in attachments:
                if isinstance(attachment, ImageAttachment):
                    parts.append(
                        {"type": "image_url", "image_url": {"url": attachment.data_url}}
                    )
            request_messages.append({"role": "user", "content": parts})

        return AssembledTurn(
            persisted_content=persisted_content_for(normalized, attachments),
            request_messages=request_messages,
            attachments_meta=tuple(a.meta for a in attachments),
        )
