"""Turns a chat message plus raw attachments into model content.

Images become image blocks, PDFs contribute extracted text, and anything
else is reported in a note. Originals of images and PDFs are uploaded
best-effort; the uploaded files are listed in the outgoing text so a
tool can later reference them by storage_path.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging

from cyncro.assistant.content import (
    Attachment,
    AttachmentKind,
    BuiltContent,
    UploadedFile,
    classify_attachment,
    effective_mime_type,
    normalize_image_media_type,
)
from cyncro.assistant.pdf import PdfTextExtractor
from cyncro.config import Settings
from cyncro.llm.types import ContentBlock, ImageBlock, TextBlock
from cyncro.storage.blobs import BlobStore, build_storage_path

logger = logging.getLogger(__name__)

DEFAULT_INSTRUCTION = "Please review the attached file(s)."
UPLOADED_FILES_HEADER = "[Uploaded files - use storage_path with attach_document to link a file to a record]"


def _unsupported_note(name: str, reason: str) -> str:
    return f'[Attachment "{name}" could not be processed: {reason}]'


class AttachmentPreprocessor:
    def __init__(
        self,
        blob_store: BlobStore | None,
        pdf_extractor: PdfTextExtractor,
        settings: Settings,
    ) -> None:
        self._blobs = blob_store
        self._pdf = pdf_extractor
        self._min_pdf_chars = settings.pdf_min_text_chars
        self._max_bytes = settings.max_attachment_bytes

    async def build_message_content(
        self,
        user_id: str,
        text: str,
        attachments: list[Attachment] | None = None,
    ) -> BuiltContent:
        if not attachments:
            return BuiltContent(content=text)

        images: list[ContentBlock] = []
        pdf_sections: list[str] = []
        notes: list[str] = []
        uploaded: list[UploadedFile] = []

        for attachment in attachments:
            kind = classify_attachment(attachment.name, attachment.type)
            if kind is AttachmentKind.UNSUPPORTED:
                mime = effective_mime_type(attachment.name, attachment.type)
                notes.append(_unsupported_note(attachment.name, f"unsupported file type ({mime})"))
                continue

            try:
                raw = base64.b64decode(attachment.data, validate=True)
            except (binascii.Error, ValueError):
                notes.append(_unsupported_note(attachment.name, "data is not valid base64"))
                continue
            if len(raw) > self._max_bytes:
                notes.append(_unsupported_note(attachment.name, "file is too large"))
                continue

            stored = await self._upload(user_id, attachment, raw)
            if stored is not None:
                uploaded.append(stored)

            if kind is AttachmentKind.IMAGE:
                images.append(ImageBlock(
                    media_type=normalize_image_media_type(attachment.name, attachment.type),
                    data=attachment.data,
                ))
                continue

            pdf_text = await self._extract_pdf(attachment.name, raw)
            if len(pdf_text) < self._min_pdf_chars:
                notes.append(_unsupported_note(
                    attachment.name, "no readable text found in PDF (it may be scanned)"
                ))
            else:
                pdf_sections.append(
                    f"--- Content of PDF: {attachment.name} ---\n{pdf_text}\n--- End of PDF: {attachment.name} ---"
                )

        parts = [p for p in (text.strip(), *pdf_sections, *notes) if p]
        if uploaded:
            listing = json.dumps([f.model_dump() for f in uploaded], indent=2)
            parts.append(f"{UPLOADED_FILES_HEADER}\n{listing}")
        combined = "\n\n".join(parts)

        if not combined and not images:
            combined = DEFAULT_INSTRUCTION

        if not images:
            return BuiltContent(content=combined, uploaded_files=uploaded)

        blocks = list(images)
        if combined:
            blocks.append(TextBlock(text=combined))
        return BuiltContent(content=tuple(blocks), uploaded_files=uploaded)

    async def _upload(self, user_id: str, attachment: Attachment, raw: bytes) -> UploadedFile | None:
        if self._blobs is None:
            return None
        path = build_storage_path(user_id, attachment.name)
        content_type = effective_mime_type(attachment.name, attachment.type)
        try:
            await self._blobs.upload(path, raw, content_type)
        except Exception as e:
            logger.warning("Upload of %s failed, continuing without it: %s", attachment.name, e)
            return None
        return UploadedFile(
            storage_path=path,
            file_name=attachment.name,
            file_type=content_type,
            file_size=attachment.size or len(raw),
        )

    async def _extract_pdf(self, name: str, raw: bytes) -> str:
        try:
            return (await self._pdf.extract(raw)).strip()
        except Exception as e:
            logger.warning("PDF text extraction failed for %s: %s", name, e)
            return ""
