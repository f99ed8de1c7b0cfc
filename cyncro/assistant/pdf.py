"""PDF text extraction."""

from __future__ import annotations

import asyncio
import io
import re
from typing import Protocol

from pypdf import PdfReader


class PdfTextExtractor(Protocol):
    async def extract(self, data: bytes) -> str: ...


def clean_pdf_text(text: str) -> str:
    text = text.replace("\r", "").replace("\f", "\n")
    text = re.sub(r"[ \t]+", " ", text)
    text = re.sub(r" *\n *", "\n", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


class PypdfTextExtractor:
    """Extracts page text with pypdf in a worker thread."""

    async def extract(self, data: bytes) -> str:
        return await asyncio.to_thread(self._extract_sync, data)

    @staticmethod
    def _extract_sync(data: bytes) -> str:
        reader = PdfReader(io.BytesIO(data))
        pages = [page.extract_text() or "" for page in reader.pages]
        return clean_pdf_text("\n\n".join(pages))
