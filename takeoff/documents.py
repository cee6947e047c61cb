"""Document decoding collaborator."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Protocol

import pypdfium2 as pdfium
from loguru import logger

from takeoff.exceptions import DocumentDecodeError
from takeoff.markups.session import PageSize


@dataclass
class DecodedDocument:
    page_sizes: List[PageSize]
    text_by_page: Dict[int, str] = field(default_factory=dict)

    @property
    def page_count(self) -> int:
        return len(self.page_sizes)


class DocumentDecoder(Protocol):
    def decode(self, data: bytes) -> DecodedDocument: ...


class PdfiumDecoder:
    """Reads page count, page sizes and optionally page text with pypdfium2."""

    def __init__(self, extract_text: bool = False) -> None:
        self.extract_text = extract_text

    def decode(self, data: bytes) -> DecodedDocument:
        if not data:
            raise DocumentDecodeError("Document is empty")
        try:
            pdf = pdfium.PdfDocument(data)
        except Exception as exc:
            raise DocumentDecodeError(f"Unable to decode document: {exc}") from exc
        try:
            sizes: List[PageSize] = []
            text: Dict[int, str] = {}
            for index in range(len(pdf)):
                page = pdf[index]
                width, height = page.get_size()
                sizes.append(PageSize(width=float(width), height=float(height)))
                if self.extract_text:
                    textpage = page.get_textpage()
                    text[index + 1] = textpage.get_text_range()
                    textpage.close()
                page.close()
        finally:
            pdf.close()
        if not sizes:
            raise DocumentDecodeError("Document has no pages")
        logger.debug("Decoded document with {} page(s)", len(sizes))
        return DecodedDocument(page_sizes=sizes, text_by_page=text)


__all__ = ["DecodedDocument", "DocumentDecoder", "PdfiumDecoder"]
