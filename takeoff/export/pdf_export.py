from __future__ import annotations

from dataclasses import dataclass
from io import BytesIO
from typing import Any, Dict, List, Mapping, Sequence, Tuple

from loguru import logger
from pypdf import PdfReader, PdfWriter, Transformation
from reportlab.lib.colors import HexColor, black
from reportlab.pdfgen import canvas

from takeoff.exceptions import DegenerateMarkupError, PDFExportError
from takeoff.geometry import contract
from takeoff.geometry.coords import NativePoint, PageFrame, native_to_export
from takeoff.export.recipes import Paint, draw_markup


def _color(value: str | None) -> Any:
    if not value:
        return black
    try:
        return HexColor(value)
    except (ValueError, TypeError):
        return black


class PdfPainter:
    """Draws recipes onto a reportlab canvas sized like the target page."""

    def __init__(self, c: canvas.Canvas, frame: PageFrame, base_scale: float = contract.BASE_RENDER_SCALE) -> None:
        self.c = c
        self.frame = frame
        self.base_scale = base_scale
        self.scale_factor = 1.0 / base_scale

    def _pt(self, x: float, y: float) -> Tuple[float, float]:
        p = native_to_export(NativePoint(x, y), self.frame, self.base_scale)
        return p.x, p.y

    def _apply_paint(self, paint: Paint) -> Tuple[int, int]:
        stroke = 1 if paint.stroke_color and paint.stroke_width > 0 else 0
        fill = 1 if paint.fill_color else 0
        if stroke:
            self.c.setStrokeColor(_color(paint.stroke_color))
            self.c.setStrokeAlpha(paint.stroke_opacity)
            self.c.setLineWidth(paint.stroke_width * self.scale_factor)
        if fill:
            self.c.setFillColor(_color(paint.fill_color))
            self.c.setFillAlpha(paint.fill_opacity)
        return stroke, fill

    def polyline(self, points: Sequence[NativePoint], paint: Paint, *, closed: bool = False) -> None:
        self.c.saveState()
        stroke, fill = self._apply_paint(paint)
        path = self.c.beginPath()
        path.moveTo(*self._pt(*points[0]))
        for point in points[1:]:
            path.lineTo(*self._pt(*point))
        if closed:
            path.close()
        self.c.drawPath(path, stroke=stroke, fill=fill if closed else 0)
        self.c.restoreState()

    def rect(self, x: float, y: float, width: float, height: float, paint: Paint) -> None:
        self.c.saveState()
        stroke, fill = self._apply_paint(paint)
        left, bottom = self._pt(x, y + height)
        self.c.rect(left, bottom, width * self.scale_factor, height * self.scale_factor, stroke=stroke, fill=fill)
        self.c.restoreState()

    def ellipse(self, cx: float, cy: float, rx: float, ry: float, paint: Paint) -> None:
        self.c.saveState()
        stroke, fill = self._apply_paint(paint)
        x1, y1 = self._pt(cx - rx, cy + ry)
        x2, y2 = self._pt(cx + rx, cy - ry)
        self.c.ellipse(x1, y1, x2, y2, stroke=stroke, fill=fill)
        self.c.restoreState()

    def text(
        self,
        x: float,
        y: float,
        content: str,
        *,
        size: float,
        color: str,
        opacity: float = 1.0,
        bold: bool = False,
        centered: bool = False,
    ) -> None:
        if not content:
            return
        self.c.saveState()
        font_size = size * self.scale_factor
        self.c.setFont("Helvetica-Bold" if bold else "Helvetica", font_size)
        self.c.setFillColor(_color(color))
        self.c.setFillAlpha(opacity)
        px, py = self._pt(x, y)
        if centered:
            self.c.drawCentredString(px, py - font_size * 0.35, content)
        else:
            self.c.drawString(px, py, content)
        self.c.restoreState()


@dataclass
class ExportSummary:
    pages: int = 0
    drawn: int = 0
    skipped: int = 0


def _draw_page(painter: PdfPainter, markups: Sequence[Any], summary: ExportSummary, label_offset: float) -> None:
    for markup in markups:
        try:
            draw_markup(painter, markup, label_offset=label_offset)
        except DegenerateMarkupError as exc:
            summary.skipped += 1
            logger.warning("Skipping markup during export: {}", exc.message)
            continue
        summary.drawn += 1


def export_to_document(
    original_bytes: bytes,
    markups_by_page: Mapping[int, Sequence[Any]],
    base_scale: float = contract.BASE_RENDER_SCALE,
    *,
    label_offset: float = contract.LABEL_OFFSET,
) -> bytes:
    """
    Bake markups into a copy of the original PDF.

    Each page with markups gets a reportlab overlay in its own user space,
    merged over the page. Pages outside the document are ignored.
    """
    if not original_bytes:
        raise PDFExportError("Invalid PDF bytes provided")
    try:
        reader = PdfReader(BytesIO(original_bytes))
    except Exception as exc:
        raise PDFExportError(f"Unable to read source PDF: {exc}") from exc

    page_count = len(reader.pages)
    targets: Dict[int, Sequence[Any]] = {
        page: items for page, items in markups_by_page.items() if items and 1 <= page <= page_count
    }
    ignored = [page for page in markups_by_page if page not in targets and markups_by_page[page]]
    if ignored:
        logger.warning("Ignoring markups for pages outside the document: {}", sorted(ignored))

    writer = PdfWriter(clone_from=reader)
    summary = ExportSummary()

    for page_number in sorted(targets):
        page = writer.pages[page_number - 1]
        box = page.mediabox
        frame = PageFrame(width=float(box.width), height=float(box.height))

        buffer = BytesIO()
        c = canvas.Canvas(buffer, pagesize=(frame.width, frame.height), invariant=1)
        painter = PdfPainter(c, frame, base_scale)
        _draw_page(painter, targets[page_number], summary, label_offset)
        c.showPage()
        c.save()

        overlay = PdfReader(BytesIO(buffer.getvalue())).pages[0]
        try:
            page.merge_transformed_page(
                overlay,
                Transformation().translate(float(box.left), float(box.bottom)),
            )
        except Exception as exc:
            raise PDFExportError(f"Failed to merge markups into page {page_number}: {exc}") from exc
        summary.pages += 1

    out = BytesIO()
    writer.write(out)
    logger.info(
        "Exported {} page(s) with {} markup(s), {} skipped",
        summary.pages,
        summary.drawn,
        summary.skipped,
    )
    return out.getvalue()


def group_by_page(markups: Sequence[Any]) -> Dict[int, List[Any]]:
    grouped: Dict[int, List[Any]] = {}
    for markup in markups:
        grouped.setdefault(markup.page, []).append(markup)
    return grouped


__all__ = ["ExportSummary", "PdfPainter", "export_to_document", "group_by_page"]
