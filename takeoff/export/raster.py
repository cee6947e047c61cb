from __future__ import annotations

from dataclasses import dataclass
from typing import Any, List, Mapping, Optional, Sequence, Tuple

import pypdfium2 as pdfium
from loguru import logger
from PIL import Image, ImageColor, ImageDraw, ImageFont

from takeoff.exceptions import DegenerateMarkupError, PrintRenderError
from takeoff.geometry import contract
from takeoff.geometry.coords import NativePoint
from takeoff.export.recipes import Paint, draw_markup


@dataclass
class PrintPage:
    page: int
    image: Image.Image
    width_px: int
    height_px: int


def _rgba(value: Optional[str], opacity: float) -> Tuple[int, int, int, int]:
    try:
        r, g, b = ImageColor.getrgb(value or "#000000")[:3]
    except ValueError:
        r, g, b = 0, 0, 0
    return r, g, b, int(round(255 * max(0.0, min(1.0, opacity))))


class RasterPainter:
    """
    Draws recipes onto an RGBA overlay. The raster shares the markup
    top-left origin; ``scale`` maps native units to pixels.
    """

    def __init__(self, size: Tuple[int, int], scale: float = 1.0) -> None:
        self.overlay = Image.new("RGBA", size, (0, 0, 0, 0))
        self.draw = ImageDraw.Draw(self.overlay)
        self.scale = scale

    def _xy(self, x: float, y: float) -> Tuple[float, float]:
        return x * self.scale, y * self.scale

    def _width(self, paint: Paint) -> int:
        return max(1, int(round(paint.stroke_width * self.scale)))

    def polyline(self, points: Sequence[NativePoint], paint: Paint, *, closed: bool = False) -> None:
        xy = [self._xy(*p) for p in points]
        if closed and paint.fill_color:
            self.draw.polygon(xy, fill=_rgba(paint.fill_color, paint.fill_opacity))
        if closed:
            xy = xy + xy[:1]
        if paint.stroke_color and paint.stroke_width > 0:
            self.draw.line(xy, fill=_rgba(paint.stroke_color, paint.stroke_opacity), width=self._width(paint), joint="curve")

    def _box(self, x0: float, y0: float, x1: float, y1: float) -> List[float]:
        (ax, ay), (bx, by) = self._xy(x0, y0), self._xy(x1, y1)
        return [min(ax, bx), min(ay, by), max(ax, bx), max(ay, by)]

    def rect(self, x: float, y: float, width: float, height: float, paint: Paint) -> None:
        box = self._box(x, y, x + width, y + height)
        fill = _rgba(paint.fill_color, paint.fill_opacity) if paint.fill_color else None
        outline = _rgba(paint.stroke_color, paint.stroke_opacity) if paint.stroke_color and paint.stroke_width > 0 else None
        self.draw.rectangle(box, fill=fill, outline=outline, width=self._width(paint) if outline else 0)

    def ellipse(self, cx: float, cy: float, rx: float, ry: float, paint: Paint) -> None:
        box = self._box(cx - rx, cy - ry, cx + rx, cy + ry)
        fill = _rgba(paint.fill_color, paint.fill_opacity) if paint.fill_color else None
        outline = _rgba(paint.stroke_color, paint.stroke_opacity) if paint.stroke_color and paint.stroke_width > 0 else None
        self.draw.ellipse(box, fill=fill, outline=outline, width=self._width(paint) if outline else 0)

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
        font = ImageFont.load_default(size=max(1.0, size * self.scale))
        self.draw.text(
            self._xy(x, y),
            content,
            fill=_rgba(color, opacity),
            font=font,
            anchor="mm" if centered else "ls",
        )


def draw_overlay(
    base: Image.Image,
    markups: Sequence[Any],
    scale: float = 1.0,
    *,
    label_offset: float = contract.LABEL_OFFSET,
) -> Image.Image:
    """Composite markups over a rendered page; degenerate markups are skipped."""
    painter = RasterPainter(base.size, scale)
    for markup in markups:
        try:
            draw_markup(painter, markup, label_offset=label_offset)
        except DegenerateMarkupError as exc:
            logger.warning("Skipping markup during print render: {}", exc.message)
    return Image.alpha_composite(base.convert("RGBA"), painter.overlay)


def render_print_pages(
    original_bytes: bytes,
    markups_by_page: Mapping[int, Sequence[Any]],
    *,
    base_scale: float = contract.BASE_RENDER_SCALE,
    render_scale: Optional[float] = None,
    pages: Optional[Sequence[int]] = None,
    include_markups: bool = True,
) -> List[PrintPage]:
    """Render pages with pypdfium2 and draw markups on top, without a vertical flip."""
    render_scale = render_scale or base_scale
    try:
        pdf = pdfium.PdfDocument(original_bytes)
    except Exception as exc:
        raise PrintRenderError(f"Unable to open document for printing: {exc}") from exc

    results: List[PrintPage] = []
    try:
        page_numbers = list(pages) if pages else list(range(1, len(pdf) + 1))
        for number in page_numbers:
            if number < 1 or number > len(pdf):
                logger.warning("Print range page {} is outside the document", number)
                continue
            image = pdf[number - 1].render(scale=render_scale).to_pil()
            if include_markups:
                image = draw_overlay(image, markups_by_page.get(number, ()), render_scale / base_scale)
            results.append(PrintPage(page=number, image=image, width_px=image.width, height_px=image.height))
    finally:
        pdf.close()
    logger.info("Rendered {} print page(s)", len(results))
    return results


__all__ = ["PrintPage", "RasterPainter", "draw_overlay", "render_print_pages"]
