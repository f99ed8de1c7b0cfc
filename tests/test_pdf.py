"""Tests for PDF text cleanup and the pypdf extractor."""

import io

import pytest
from pypdf import PdfWriter

from cyncro.assistant.pdf import PypdfTextExtractor, clean_pdf_text


def test_clean_pdf_text():
    raw = "Invoice\r\n\n\n\nTotal:\t\t 499   NOK  \fPage 2  "

    assert clean_pdf_text(raw) == "Invoice\n\nTotal: 499 NOK\nPage 2"


@pytest.mark.asyncio
async def test_blank_pdf_has_no_text():
    writer = PdfWriter()
    writer.add_blank_page(width=595, height=842)
    buf = io.BytesIO()
    writer.write(buf)

    assert await PypdfTextExtractor().extract(buf.getvalue()) == ""


@pytest.mark.asyncio
async def test_garbage_raises():
    with pytest.raises(Exception):
        await PypdfTextExtractor().extract(b"definitely not a pdf")
