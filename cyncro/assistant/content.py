"""Attachment classification and transcript assembly.

Classification is total: every attachment is an image, a PDF or
unsupported, decided by MIME type with a filename-extension fallback
when the type is missing or generic.
"""

from __future__ import annotations

from collections.abc import Iterable
from enum import StrEnum

from pydantic import BaseModel, Field

from cyncro.llm.types import (
    SUPPORTED_IMAGE_TYPES,
    ContentBlock,
    ImageMediaType,
    Message,
)

GENERIC_MIME_TYPES = frozenset({"", "application/octet-stream", "binary/octet-stream"})

_IMAGE_EXTENSIONS: dict[str, str] = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".heic": "image/heic",
    ".heif": "image/heif",
    ".tif": "image/tiff",
    ".tiff": "image/tiff",
    ".bmp": "image/bmp",
}


class AttachmentKind(StrEnum):
    IMAGE = "image"
    PDF = "pdf"
    UNSUPPORTED = "unsupported"


class Attachment(BaseModel):
    """A user-supplied file; lives only for the duration of one request."""

    name: str
    type: str | None = None  # MIME, may be absent or generic
    size: int = 0
    data: str  # base64


class UploadedFile(BaseModel):
    """Where an attachment's original was stored."""

    storage_path: str
    file_name: str
    file_type: str
    file_size: int


class BuiltContent(BaseModel):
    content: str | tuple[ContentBlock, ...]
    uploaded_files: list[UploadedFile] = Field(default_factory=list)


def _extension(name: str) -> str:
    dot = name.rfind(".")
    return name[dot:].lower() if dot != -1 else ""


def effective_mime_type(name: str, mime_type: str | None) -> str:
    """MIME type, or the one implied by the extension when it is missing/generic."""
    mime = (mime_type or "").split(";")[0].strip().lower()
    if mime not in GENERIC_MIME_TYPES:
        return mime
    ext = _extension(name)
    if ext == ".pdf":
        return "application/pdf"
    return _IMAGE_EXTENSIONS.get(ext, mime or "application/octet-stream")


def classify_attachment(name: str, mime_type: str | None) -> AttachmentKind:
    mime = effective_mime_type(name, mime_type)
    if mime.startswith("image/"):
        return AttachmentKind.IMAGE
    if mime == "application/pdf":
        return AttachmentKind.PDF
    return AttachmentKind.UNSUPPORTED


def normalize_image_media_type(name: str, mime_type: str | None) -> ImageMediaType:
    """Map to a type every vendor accepts.

    HEIC, TIFF, BMP and other subtypes are reported as JPEG. This is a
    deliberate lossy normalization.
    """
    mime = effective_mime_type(name, mime_type)
    if mime == "image/jpg":
        return "image/jpeg"
    if mime in SUPPORTED_IMAGE_TYPES:
        return mime  # type: ignore[return-value]
    return "image/jpeg"


# ---------------------------------------------------------------------------
# Transcript
# ---------------------------------------------------------------------------


def _merge(a: Message, b: Message) -> Message:
    if isinstance(a.content, str) and isinstance(b.content, str):
        return Message(role=a.role, content="\n\n".join(p for p in (a.content, b.content) if p))
    return Message(role=a.role, content=a.blocks() + b.blocks())


class Transcript:
    """Immutable, append-only sequence of messages sent to the model."""

    __slots__ = ("_messages",)

    def __init__(self, messages: Iterable[Message] = ()) -> None:
        self._messages: tuple[Message, ...] = tuple(messages)

    @classmethod
    def from_history(cls, history: Iterable[Message], new_message: Message) -> Transcript:
        """Build the turn's opening transcript from stored history.

        Leading assistant messages (a truncated window) are dropped and
        consecutive same-role messages (a turn that failed before its
        reply was stored) are merged, so roles strictly alternate.
        """
        merged: list[Message] = []
        for message in [*history, new_message]:
            if message.role == "system":
                continue
            if not merged and message.role != "user":
                continue
            if merged and merged[-1].role == message.role:
                merged[-1] = _merge(merged[-1], message)
            else:
                merged.append(message)
        return cls(merged)

    def append(self, *messages: Message) -> Transcript:
        return Transcript(self._messages + messages)

    @property
    def messages(self) -> tuple[Message, ...]:
        return self._messages

    def __iter__(self):
        return iter(self._messages)

    def __len__(self) -> int:
        return len(self._messages)

    def __getitem__(self, index: int) -> Message:
        return self._messages[index]
