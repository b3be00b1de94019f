"""Attachment ingestion: classification, text extraction, and batch policy.

Every selected file is turned into one of the attachment variants from
``august_chat.models``:

- images become an inline base64 data URL plus best-effort OCR text,
- plain text, PDF, and DOCX files become extracted text,
- everything else is kept as metadata only.

Extraction never raises for a bad document; it degrades to empty text or a
metadata-only attachment and logs a warning instead.
"""

from __future__ import annotations

import asyncio
import base64
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
import enum
import html
import io
import logging
import mimetypes
from pathlib import Path
import re
import zipfile

from PIL import Image
from pypdf import PdfReader
import pytesseract

from .exceptions import AttachmentError
from .models import (
    Attachment,
    AttachmentMeta,
    BinaryAttachment,
    ImageAttachment,
    TextAttachment,
    TextSource,
)

LOGGER = logging.getLogger(__name__)

MAX_FILES_PER_TURN = 5
MAX_FILE_BYTES = 10 * 1024 * 1024  # 10 MiB

DOCX_MEDIA_TYPE = (
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
)
GENERIC_MEDIA_TYPES: frozenset[str] = frozenset({"", "application/octet-stream"})
TEXT_MEDIA_TYPES: frozenset[str] = frozenset(
    {"application/json", "application/xml", "application/csv"}
)
TEXT_EXTENSIONS: frozenset[str] = frozenset({".txt", ".md", ".json", ".csv"})

# (prefix, media type) pairs checked against the first bytes of a file.
MAGIC_SIGNATURES: tuple[tuple[bytes, str], ...] = (
    (b"\x89PNG\r\n\x1a\n", "image/png"),
    (b"\xff\xd8\xff", "image/jpeg"),
    (b"GIF87a", "image/gif"),
    (b"GIF89a", "image/gif"),
    (b"%PDF-", "application/pdf"),
)

_DOCX_PARAGRAPH_END = re.compile(r"</w:p>")
_DOCX_BREAK = re.compile(r"<w:(?:br|cr)\b[^>]*/>")
_DOCX_TAB = re.compile(r"<w:tab\b[^>]*/>")
_XML_TAG = re.compile(r"<[^>]+>")
_INLINE_WHITESPACE = re.compile(r"[ \t\r\f\v]+")


class AttachmentKind(str, enum.Enum):
    """Extraction strategy chosen for a file."""

    IMAGE = "image"
    TEXT = "text"
    PDF = "pdf"
    DOCX = "docx"
    BINARY = "binary"


@dataclass(frozen=True)
class FileUpload:
    """A file selected by the user, either already in memory or on disk."""

    name: str
    media_type: str
    size: int
    data: bytes | None = None
    path: Path | None = None

    @classmethod
    def from_bytes(cls, name: str, data: bytes, media_type: str = "") -> FileUpload:
        return cls(name=name, media_type=media_type.strip().lower(), size=len(data), data=data)

    @classmethod
    def from_path(cls, path: str | Path, media_type: str | None = None) -> FileUpload:
        resolved = Path(path).expanduser().resolve()
        if not resolved.is_file():
            raise AttachmentError(f"Not a file: {path}")
        declared = media_type
        if declared is None:
            declared, _ = mimetypes.guess_type(resolved.name)
        return cls(
            name=resolved.name,
            media_type=(declared or "").strip().lower(),
            size=resolved.stat().st_size,
            path=resolved,
        )

    def read_bytes(self) -> bytes:
        if self.data is not None:
            return self.data
        if self.path is None:
            raise AttachmentError(f"No content available for {self.name}")
        try:
            return self.path.read_bytes()
        except OSError as exc:
            raise AttachmentError(f"Unable to read {self.name}: {exc}") from exc


@dataclass
class BatchSelection:
    """Files accepted for processing plus user-visible rejection notices."""

    accepted: list[FileUpload] = field(default_factory=list)
    notices: list[str] = field(default_factory=list)


@dataclass
class BatchResult:
    """Processed attachments, in selection order, and any notices."""

    attachments: list[Attachment] = field(default_factory=list)
    notices: list[str] = field(default_factory=list)


def sniff_media_type(name: str, declared: str, head: bytes = b"") -> str:
    """Return the declared type, or sniff one when it is missing or generic."""
    normalized = (declared or "").strip().lower()
    if normalized not in GENERIC_MEDIA_TYPES:
        return normalized
    for signature, media_type in MAGIC_SIGNATURES:
        if head.startswith(signature):
            return media_type
    if head[:4] == b"RIFF" and head[8:12] == b"WEBP":
        return "image/webp"
    guessed, _ = mimetypes.guess_type(name)
    if guessed:
        return guessed.lower()
    if Path(name).suffix.lower() == ".docx":
        return DOCX_MEDIA_TYPE
    return normalized or "application/octet-stream"


def classify(name: str, media_type: str) -> AttachmentKind:
    """Pick the extraction strategy; the first matching rule wins."""
    media = (media_type or "").lower()
    extension = Path(name).suffix.lower()
    if media.startswith("image/"):
        return AttachmentKind.IMAGE
    if media.startswith("text/") or media in TEXT_MEDIA_TYPES or extension in TEXT_EXTENSIONS:
        return AttachmentKind.TEXT
    if media == "application/pdf" or extension == ".pdf":
        return AttachmentKind.PDF
    if media == DOCX_MEDIA_TYPE or extension == ".docx":
        return AttachmentKind.DOCX
    return AttachmentKind.BINARY


def encode_data_url(data: bytes, media_type: str) -> str:
    encoded = base64.b64encode(data).decode("ascii")
    return f"data:{media_type};base64,{encoded}"


def recognize_image_text(data: bytes) -> str | None:
    """Run OCR over image bytes; any failure means "no text"."""
    try:
        with Image.open(io.BytesIO(data)) as image:
            recognized = pytesseract.image_to_string(image)
    except Exception as exc:  # noqa: BLE001 - OCR is best-effort (missing binary, bad image).
        LOGGER.debug(
            "attachment.ocr.failed",
            extra={"event": "attachment.ocr.failed", "error": str(exc)},
        )
        return None
    text = (recognized or "").strip()
    return text or None


def extract_pdf_text(data: bytes, name: str = "") -> str:
    """Extract text per page with ``--- Page N ---`` boundaries."""
    try:
        reader = PdfReader(io.BytesIO(data))
        sections: list[str] = []
        for number, page in enumerate(reader.pages, start=1):
            page_text = (page.extract_text() or "").strip()
            sections.append(f"--- Page {number} ---\n{page_text}")
        return "\n\n".join(sections)
    except Exception as exc:  # noqa: BLE001 - malformed/encrypted PDFs fail in many ways.
        LOGGER.warning(
            "attachment.pdf.failed",
            extra={"event": "attachment.pdf.failed", "file": name, "error": str(exc)},
        )
        return ""


def docx_xml_to_text(xml: str) -> str:
    """Flatten WordprocessingML into paragraphs separated by line breaks."""
    marked = _DOCX_PARAGRAPH_END.sub("\n", xml)
    marked = _DOCX_BREAK.sub("\n", marked)
    marked = _DOCX_TAB.sub(" ", marked)
    stripped = html.unescape(_XML_TAG.sub("", marked))
    lines = (_INLINE_WHITESPACE.sub(" ", line).strip() for line in stripped.split("\n"))
    return "\n".join(line for line in lines if line)


def extract_docx_text(data: bytes, name: str = "") -> str:
    try:
        with zipfile.ZipFile(io.BytesIO(data)) as archive:
            xml = archive.read("word/document.xml").decode("utf-8", errors="replace")
    except (zipfile.BadZipFile, KeyError, OSError) as exc:
        LOGGER.warning(
            "attachment.docx.failed",
            extra={"event": "attachment.docx.failed", "file": name, "error": str(exc)},
        )
        return ""
    return docx_xml_to_text(xml)


class AttachmentProcessor:
    """Turns selected files into model-ready attachments.

    Responsibilities:
    - Enforcing the per-turn file count and per-file size limits
    - Sniffing media types and choosing an extraction strategy
    - Running extraction concurrently, off the event loop
    """

    def __init__(
        self,
        *,
        max_files: int = MAX_FILES_PER_TURN,
        max_file_bytes: int = MAX_FILE_BYTES,
        ocr_enabled: bool = True,
        ocr: Callable[[bytes], str | None] | None = None,
    ) -> None:
        self.max_files = max(1, max_files)
        self.max_file_bytes = max(1, max_file_bytes)
        self.ocr_enabled = ocr_enabled
        self._ocr = ocr or recognize_image_text

    def select_batch(self, files: Sequence[FileUpload], current_count: int = 0) -> BatchSelection:
        """Apply the count and size limits, earliest selections first."""
        selection = BatchSelection()
        slots = max(0, self.max_files - max(0, current_count))
        candidates = list(files[:slots])
        overflow = list(files[slots:])
        if overflow:
            skipped = ", ".join(upload.name for upload in overflow)
            selection.notices.append(
                f"You can attach up to {self.max_files} files per message. Skipped: {skipped}."
            )
        max_mb = self.max_file_bytes / (1024 * 1024)
        for upload in candidates:
            if upload.size > self.max_file_bytes:
                selection.notices.append(
                    f"{upload.name} is larger than {max_mb:g} MB and was skipped."
                )
                continue
            selection.accepted.append(upload)
        for notice in selection.notices:
            LOGGER.info(
                "attachment.rejected",
                extra={"event": "attachment.rejected", "reason": notice},
            )
        return selection

    async def process(self, upload: FileUpload) -> Attachment:
        """Read and extract one file without blocking the event loop."""
        return await asyncio.to_thread(self.process_sync, upload)

    def process_sync(self, upload: FileUpload) -> Attachment:
        data = upload.read_bytes()
        media_type = sniff_media_type(upload.name, upload.media_type, data[:16])
        meta = AttachmentMeta(name=upload.name, media_type=media_type, size=len(data))
        kind = classify(upload.name, media_type)
        LOGGER.debug(
            "attachment.classified",
            extra={"event": "attachment.classified", "file": upload.name, "kind": kind.value},
        )

        if kind is AttachmentKind.IMAGE:
            ocr_text = self._ocr(data) if self.ocr_enabled else None
            return ImageAttachment(
                meta=meta, data_url=encode_data_url(data, media_type), ocr_text=ocr_text
            )
        if kind is AttachmentKind.TEXT:
            return TextAttachment(meta=meta, text=data.decode("utf-8", errors="replace"))
        if kind is AttachmentKind.PDF:
            return TextAttachment(
                meta=meta, text=extract_pdf_text(data, upload.name), source=TextSource.PDF
            )
        if kind is AttachmentKind.DOCX:
            return TextAttachment(
                meta=meta, text=extract_docx_text(data, upload.name), source=TextSource.DOCX
            )
        return BinaryAttachment(meta=meta)

    async def process_batch(
        self, files: Sequence[FileUpload], current_count: int = 0
    ) -> BatchResult:
        """Select, then process accepted files concurrently in selection order."""
        selection = self.select_batch(files, current_count)
        result = BatchResult(notices=list(selection.notices))
        outcomes = await asyncio.gather(
            *(self.process(upload) for upload in selection.accepted),
            return_exceptions=True,
        )
        for upload, outcome in zip(selection.accepted, outcomes):
            if isinstance(outcome, BaseException):
                if isinstance(outcome, asyncio.CancelledError):
                    raise outcome
                LOGGER.warning(
                    "attachment.process.failed",
                    extra={
                        "event": "attachment.process.failed",
                        "file": upload.name,
                        "error_type": type(outcome).__name__,
                        "error": str(outcome),
                    },
                )
                result.attachments.append(
                    BinaryAttachment(
                        meta=AttachmentMeta(
                            name=upload.name,
                            media_type=upload.media_type or "application/octet-stream",
                            size=upload.size,
                        )
                    )
                )
                continue
            result.attachments.append(outcome)
        return result
