from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple
from uuid import uuid4

from takeoff.exceptions import SessionBusyError, ValidationError
from takeoff.geometry import contract
from takeoff.geometry.coords import PageFrame
from takeoff.history import History


@dataclass(frozen=True)
class PageSize:
    """Native page size in PDF points."""

    width: float
    height: float

    def frame(self) -> PageFrame:
        return PageFrame(width=self.width, height=self.height)


@dataclass
class DocumentSession:
    """One open document and its per-page markup collections."""

    name: str
    page_sizes: List[PageSize]
    original_bytes: bytes = b""
    id: str = field(default_factory=lambda: str(uuid4()))
    current_page: int = 1
    zoom: float = contract.DEFAULT_ZOOM
    markups_by_page: Dict[int, Tuple[Any, ...]] = field(default_factory=dict)
    text_by_page: Dict[int, Any] = field(default_factory=dict)
    modified: bool = False
    history: History = field(default_factory=History)
    busy: bool = False

    @property
    def page_count(self) -> int:
        return len(self.page_sizes)

    def page_size(self, page: int) -> PageSize:
        self.require_page(page)
        return self.page_sizes[page - 1]

    def require_page(self, page: int) -> None:
        if page < 1 or page > self.page_count:
            raise ValidationError(
                f"Page {page} is outside the document (1..{self.page_count})",
                {"document_id": self.id, "page": str(page)},
            )

    def markups(self, page: int) -> Tuple[Any, ...]:
        return self.markups_by_page.get(page, ())

    def pages_with_markups(self) -> List[int]:
        return sorted(page for page, items in self.markups_by_page.items() if items)

    def all_markups(self) -> List[Any]:
        return [m for page in self.pages_with_markups() for m in self.markups_by_page[page]]

    def find_markup(self, markup_id: str) -> Optional[Tuple[int, Any]]:
        for page in self.pages_with_markups():
            for markup in self.markups_by_page[page]:
                if markup.id == markup_id:
                    return page, markup
        return None

    def set_page(self, page: int) -> None:
        self.require_page(page)
        self.current_page = page

    def set_zoom(self, zoom: float) -> None:
        self.zoom = max(contract.MIN_ZOOM, min(contract.MAX_ZOOM, float(zoom)))

    def ensure_idle(self) -> None:
        if self.busy:
            raise SessionBusyError(
                f"Document {self.name} has async work in flight",
                {"document_id": self.id},
            )

    @asynccontextmanager
    async def in_flight(self) -> AsyncIterator["DocumentSession"]:
        """Mark the session busy for the duration of an awaited operation."""
        self.ensure_idle()
        self.busy = True
        try:
            yield self
        finally:
            self.busy = False


__all__ = ["DocumentSession", "PageSize"]
