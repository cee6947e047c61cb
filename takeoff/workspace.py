from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional, Sequence, Tuple
from uuid import uuid4

from loguru import logger

from takeoff.ai.placement import CanvasPlacement, convert_placements, parse_placements
from takeoff.catalog.links import MeasurementLinkGraph
from takeoff.catalog.products import LinkedMeasurement, ProductCatalog
from takeoff.documents import DocumentDecoder, PdfiumDecoder
from takeoff.exceptions import (
    DocumentNotFoundError,
    MarkupNotFoundError,
    ProjectFormatError,
    TakeoffError,
    ValidationError,
)
from takeoff.export.pdf_export import export_to_document
from takeoff.export.raster import PrintPage, render_print_pages
from takeoff.geometry.coords import NativePoint, ScreenPoint, screen_to_native
from takeoff.geometry.measure import Calibration, polygon_area, polyline_length
from takeoff.history import History, HistoryStep
from takeoff.markups.models import (
    CountMarker,
    MarkupStyle,
    MeasurementMarkup,
    Point,
    build_measurement_from_markup,
    dump_markup,
    linked_product_id,
    parse_markup,
)
from takeoff.markups.session import DocumentSession
from takeoff.markups.store import MarkupStore
from takeoff.project.format import (
    ProjectDocument,
    ProjectFile,
    ProjectProducts,
    ProjectSettings,
    build_id_remap,
    decode_pdf,
    encode_pdf,
    filter_product_nodes,
    parse_project,
    remap_product_nodes,
    resolved_id,
)
from takeoff.settings import Settings
from takeoff.snapping.engine import SnapEngine, SnapMode, SnapResult
from takeoff.vector.extractor import ExtractionLimits, VectorIndex
from takeoff.vector.index import VectorIndexCache


class Workspace:
    """
    Owns every open document session plus the shared catalog, link graph,
    calibration and snapping state. Exactly one session is active for
    editing commands.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        decoder: Optional[DocumentDecoder] = None,
        catalog: Optional[ProductCatalog] = None,
    ) -> None:
        self.settings = settings or Settings()
        engine = self.settings.engine
        self.decoder: DocumentDecoder = decoder or PdfiumDecoder()
        self.catalog = catalog or ProductCatalog()
        self.links = MeasurementLinkGraph(self.catalog)
        self.sessions: Dict[str, DocumentSession] = {}
        self.active_id: Optional[str] = None

        self.base_scale = engine.base_render_scale
        self.calibration: Optional[Calibration] = None
        self.scale_unit = engine.default_scale_unit
        self.snap_modes = SnapMode.NONE
        self.grid_size = engine.grid_size

        style = self.settings.style
        self.default_style = MarkupStyle(
            stroke_color=style.stroke_color,
            fill_color=style.fill_color,
            stroke_width=style.stroke_width,
            opacity=style.opacity,
            font_size=style.font_size,
            font_family=style.font_family,
        )
        self.vectors = VectorIndexCache(
            base_scale=self.base_scale,
            limits=ExtractionLimits.from_settings(self.settings.vector),
        )
        self.snap = SnapEngine(radius=engine.snap_radius, grid_size=engine.grid_size)

    # ------------------------------------------------------------ sessions

    def session(self, document_id: Optional[str] = None) -> DocumentSession:
        doc_id = document_id or self.active_id
        if doc_id is None or doc_id not in self.sessions:
            raise DocumentNotFoundError(
                f"Document not found: {doc_id}" if doc_id else "No active document",
                {"document_id": doc_id or ""},
            )
        return self.sessions[doc_id]

    @property
    def active(self) -> Optional[DocumentSession]:
        return self.sessions.get(self.active_id) if self.active_id else None

    def add_session(self, session: DocumentSession, *, activate: bool = True) -> DocumentSession:
        self.sessions[session.id] = session
        for page in session.pages_with_markups():
            self._page_changed(session, page)
        if activate or self.active_id is None:
            self.active_id = session.id
        return session

    def _new_history(self) -> History:
        return History(self.settings.engine.max_history)

    async def open_document(self, data: bytes, name: str, *, document_id: Optional[str] = None) -> DocumentSession:
        """Decode a document off the event loop and open it as the active session."""
        decoded = await asyncio.to_thread(self.decoder.decode, data)
        session = DocumentSession(
            name=name,
            page_sizes=list(decoded.page_sizes),
            original_bytes=bytes(data),
            id=document_id or str(uuid4()),
            text_by_page=dict(decoded.text_by_page),
            history=self._new_history(),
        )
        self.add_session(session)
        logger.info("Opened document {} ({} pages) as {}", name, session.page_count, session.id)
        return session

    def close_document(self, document_id: str) -> List[Tuple[str, LinkedMeasurement]]:
        session = self.session(document_id)
        session.ensure_idle()
        removed = self.links.unlink_document(document_id)
        del self.sessions[document_id]
        self.vectors.evict_document(document_id)
        self.snap.forget_document(document_id)
        if self.active_id == document_id:
            self.active_id = next(iter(self.sessions), None)
        logger.info("Closed document {} ({} link(s) removed)", session.name, len(removed))
        return removed

    def set_active(self, document_id: str) -> DocumentSession:
        session = self.session(document_id)
        self.active_id = session.id
        return session

    def _page_changed(self, session: DocumentSession, page: int) -> None:
        self.snap.update_markup_points(session.id, page, session.markups(page))

    def store(self, document_id: Optional[str] = None) -> MarkupStore:
        return MarkupStore(self.session(document_id), self.links, self._page_changed)

    def undo(self, document_id: Optional[str] = None) -> Optional[HistoryStep]:
        return self.store(document_id).undo()

    def redo(self, document_id: Optional[str] = None) -> Optional[HistoryStep]:
        return self.store(document_id).redo()

    # --------------------------------------------------------- measurement

    def calibrate(
        self,
        p1: Sequence[float],
        p2: Sequence[float],
        known_distance: float,
        unit: Optional[str] = None,
    ) -> Calibration:
        self.calibration = Calibration.from_points(p1, p2, known_distance, unit or self.scale_unit)
        self.scale_unit = self.calibration.unit
        logger.info("Calibrated scale {:.4f} px/{}", self.calibration.scale, self.calibration.unit)
        return self.calibration

    def _calibration(self) -> Calibration:
        return self.calibration or Calibration(scale=1.0, unit=self.scale_unit)

    def measure_length(
        self,
        page: int,
        points: Sequence[Sequence[float]],
        *,
        product_id: Optional[str] = None,
        style: Optional[MarkupStyle] = None,
    ) -> MeasurementMarkup:
        calibration = self._calibration()
        value = polyline_length(points)
        return MeasurementMarkup(
            type="measurement-length",
            page=page,
            style=style or self.default_style,
            points=tuple(Point(x=float(p[0]), y=float(p[1])) for p in points),
            value=value,
            scaled_value=calibration.to_real(value),
            unit=calibration.unit,
            product_id=product_id,
            author=self.settings.engine.author,
        )

    def measure_area(
        self,
        page: int,
        points: Sequence[Sequence[float]],
        *,
        product_id: Optional[str] = None,
        style: Optional[MarkupStyle] = None,
    ) -> MeasurementMarkup:
        calibration = self._calibration()
        value = polygon_area(points)
        return MeasurementMarkup(
            type="measurement-area",
            page=page,
            style=style or self.default_style,
            points=tuple(Point(x=float(p[0]), y=float(p[1])) for p in points),
            value=value,
            scaled_value=calibration.area_to_real(value),
            unit=calibration.area_unit,
            product_id=product_id,
            author=self.settings.engine.author,
        )

    def add_measurement(self, markup: MeasurementMarkup, document_id: Optional[str] = None) -> MeasurementMarkup:
        """Add a measurement markup and link it when it names a product."""
        return self._add_linked(self.store(document_id), markup)

    def place_count(
        self,
        page: int,
        point: Sequence[float],
        *,
        product_id: Optional[str] = None,
        group_id: Optional[str] = None,
        document_id: Optional[str] = None,
    ) -> CountMarker:
        store = self.store(document_id)
        group = group_id or self.links.get_or_create_count_group()
        in_group = [
            m for m in store.session.all_markups() if isinstance(m, CountMarker) and m.group_id == group
        ]
        marker = CountMarker(
            page=page,
            x=float(point[0]),
            y=float(point[1]),
            number=len(in_group) + 1,
            group_id=group,
            product_id=product_id,
            style=self.default_style,
            author=self.settings.engine.author,
        )
        return self._add_linked(store, marker)

    def _add_linked(self, store: MarkupStore, markup: Any) -> Any:
        product_id = linked_product_id(markup)
        if product_id:
            self.links.ensure_linkable(product_id, markup.id)
        added = store.add_markup(markup.page, markup)
        rebuilt = build_measurement_from_markup(added, store.session.id)
        if rebuilt is not None:
            self.links.link(*rebuilt)
        return added

    def link_markup(self, markup_id: str, product_id: str, document_id: Optional[str] = None) -> LinkedMeasurement:
        """Link an existing count or measurement markup to a product."""
        session = self.session(document_id)
        found = session.find_markup(markup_id)
        if found is None:
            raise MarkupNotFoundError(f"Markup {markup_id} not found", {"markup_id": markup_id})
        _, markup = found
        if not isinstance(markup, (CountMarker, MeasurementMarkup)):
            raise ValidationError(f"{markup.type} markups cannot be linked", {"markup_id": markup_id})
        rebuilt = build_measurement_from_markup(markup.model_copy(update={"product_id": product_id}), session.id)
        assert rebuilt is not None
        return self.links.link(*rebuilt)

    # ------------------------------------------------------------------ AI

    def place_ai_markups(
        self,
        placements: CanvasPlacement | Dict[str, Any],
        *,
        scale_x: float = 1.0,
        scale_y: float = 1.0,
        group_id: Optional[str] = None,
        document_id: Optional[str] = None,
    ) -> List[Any]:
        """Convert pipeline placements and insert them as one undoable batch."""
        if not isinstance(placements, CanvasPlacement):
            placements = parse_placements(placements)
        converted = convert_placements(
            placements,
            self.default_style,
            group_id or self.links.get_or_create_count_group(),
            scale_x,
            scale_y,
            self._calibration(),
        )
        if not converted:
            return []
        return self.store(document_id).add_markup_batch(converted, pending=None)

    # ------------------------------------------------------------ snapping

    def set_snap(self, *, snap_enabled: Optional[bool] = None, grid_enabled: Optional[bool] = None) -> SnapMode:
        snap_on = SnapMode.DOCUMENT in self.snap_modes if snap_enabled is None else snap_enabled
        grid_on = SnapMode.GRID in self.snap_modes if grid_enabled is None else grid_enabled
        self.snap_modes = SnapMode.from_flags(snap_on, grid_on)
        return self.snap_modes

    def set_grid_size(self, size: float) -> None:
        if size <= 0:
            raise ValidationError("Grid size must be positive", {"grid_size": str(size)})
        self.grid_size = size
        self.snap.grid_size = size

    async def prepare_snapping(self, page: Optional[int] = None, document_id: Optional[str] = None) -> Optional[VectorIndex]:
        """Extract (or reuse) the vector index of a page and hand it to the snap engine."""
        session = self.session(document_id)
        page = page or session.current_page
        session.require_page(page)
        index = await self.vectors.ensure(session.id, session.original_bytes, page)
        self.snap.set_vector_index(session.id, page, index)
        return index

    def resolve_snap(
        self,
        page: int,
        point: Sequence[float],
        modes: Optional[SnapMode] = None,
        *,
        document_id: Optional[str] = None,
    ) -> SnapResult:
        session = self.session(document_id)
        return self.snap.resolve_snap(
            session.id,
            page,
            NativePoint(float(point[0]), float(point[1])),
            self.snap_modes if modes is None else modes,
        )

    def resolve_screen_snap(
        self,
        page: int,
        point: ScreenPoint,
        modes: Optional[SnapMode] = None,
        *,
        document_id: Optional[str] = None,
    ) -> SnapResult:
        session = self.session(document_id)
        return self.resolve_snap(page, screen_to_native(point, session.zoom), modes, document_id=session.id)

    # -------------------------------------------------------------- export

    async def export_document(self, document_id: Optional[str] = None) -> bytes:
        session = self.session(document_id)
        async with session.in_flight():
            markups = {page: list(session.markups(page)) for page in session.pages_with_markups()}
            return await asyncio.to_thread(
                export_to_document,
                session.original_bytes,
                markups,
                self.base_scale,
                label_offset=self.settings.export.label_offset,
            )

    async def render_print_pages(
        self,
        document_id: Optional[str] = None,
        *,
        pages: Optional[Sequence[int]] = None,
        include_markups: bool = True,
    ) -> List[PrintPage]:
        session = self.session(document_id)
        async with session.in_flight():
            markups = {page: list(session.markups(page)) for page in session.pages_with_markups()}
            return await asyncio.to_thread(
                render_print_pages,
                session.original_bytes,
                markups,
                base_scale=self.base_scale,
                render_scale=self.settings.export.print_scale,
                pages=pages,
                include_markups=include_markups,
            )

    def export_products(self, project_name: str) -> Dict[str, Any]:
        names = {doc_id: session.name for doc_id, session in self.sessions.items()}
        return self.catalog.export_products(project_name, names)

    # ------------------------------------------------------------- project

    def save_project(self, name: str) -> ProjectFile:
        documents = []
        for session in self.sessions.values():
            documents.append(
                ProjectDocument(
                    id=session.id,
                    name=session.name,
                    pdf_data=encode_pdf(session.original_bytes),
                    pages=session.page_count,
                    current_page=session.current_page,
                    zoom=session.zoom,
                    markups=[dump_markup(m) for m in session.all_markups()],
                    measurements=[
                        link.model_dump(by_alias=True, exclude_none=True)
                        for _, link in self.links.links_for_document(session.id)
                    ],
                )
            )
        catalog = self.catalog.to_dict()
        project = ProjectFile(
            name=name,
            documents=documents,
            products=ProjectProducts(
                nodes=filter_product_nodes(catalog["nodes"], set(self.sessions)),
                root_ids=catalog["rootIds"],
            ),
            settings=ProjectSettings(
                scale=self.calibration.scale if self.calibration else None,
                scale_unit=self.scale_unit,
                snap_enabled=SnapMode.DOCUMENT in self.snap_modes,
                grid_enabled=SnapMode.GRID in self.snap_modes,
                grid_size=self.grid_size,
            ),
        )
        for session in self.sessions.values():
            session.modified = False
        logger.info("Saved project {} with {} document(s)", name, len(documents))
        return project

    async def load_project(self, payload: Any) -> ProjectFile:
        """
        Replace the workspace with a saved project. Everything is validated
        and decoded first; on any failure the workspace is left untouched.
        """
        project = parse_project(payload)
        remap = build_id_remap(project.documents)

        prepared: List[DocumentSession] = []
        for index, document in enumerate(project.documents):
            data = decode_pdf(document.pdf_data, document=document.name)
            try:
                decoded = await asyncio.to_thread(self.decoder.decode, data)
            except TakeoffError as exc:
                raise ProjectFormatError(
                    f"Document {document.name!r} cannot be decoded: {exc.message}",
                    {"document": document.name},
                ) from exc
            markups_by_page: Dict[int, List[Any]] = {}
            for raw in document.markups:
                try:
                    markup = parse_markup(raw)
                except ValidationError as exc:
                    raise ProjectFormatError(
                        f"Document {document.name!r} holds an invalid markup",
                        {"document": document.name, **exc.details},
                    ) from exc
                if markup.page > decoded.page_count:
                    raise ProjectFormatError(
                        f"Markup {markup.id} references page {markup.page} beyond the document",
                        {"document": document.name},
                    )
                markups_by_page.setdefault(markup.page, []).append(markup)
            prepared.append(
                DocumentSession(
                    name=document.name,
                    page_sizes=list(decoded.page_sizes),
                    original_bytes=data,
                    id=resolved_id(remap, document, index),
                    current_page=min(document.current_page, decoded.page_count),
                    zoom=document.zoom,
                    markups_by_page={page: tuple(items) for page, items in markups_by_page.items()},
                    text_by_page=dict(decoded.text_by_page),
                    history=self._new_history(),
                )
            )

        try:
            catalog = ProductCatalog.from_dict(
                {
                    "nodes": remap_product_nodes(project.products.nodes, remap),
                    "rootIds": project.products.root_ids,
                }
            )
        except Exception as exc:
            raise ProjectFormatError(f"Project products are invalid: {exc}") from exc

        # Validation complete; apply.
        for doc_id in {*self.sessions, *(session.id for session in prepared)}:
            self.snap.forget_document(doc_id)
        self.sessions.clear()
        self.active_id = None
        self.vectors.clear()
        self.catalog.replace(catalog)
        self.links.reset()
        for index, session in enumerate(prepared):
            self.add_session(session, activate=index == 0)

        settings = project.settings
        self.scale_unit = settings.scale_unit
        self.calibration = Calibration(scale=settings.scale, unit=settings.scale_unit) if settings.scale else None
        self.snap_modes = SnapMode.from_flags(settings.snap_enabled, settings.grid_enabled)
        if settings.grid_size:
            self.set_grid_size(settings.grid_size)
        logger.info("Loaded project {} with {} document(s)", project.name, len(prepared))
        return project


__all__ = ["Workspace"]
