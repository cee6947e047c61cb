from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Body, Depends, File, HTTPException, Request, UploadFile
from fastapi.responses import Response
from loguru import logger

from takeoff.exceptions import MarkupNotFoundError
from takeoff.geometry.coords import ScreenPoint
from takeoff.markups.models import dump_markup
from takeoff.markups.session import DocumentSession
from takeoff.snapping.engine import SnapMode
from takeoff.workspace import Workspace

from services.api.schemas import (
    AIBatchOut,
    AIPlacementRequest,
    CalibrationOut,
    CalibrationRequest,
    CountRequest,
    DocumentOut,
    HistoryOut,
    LinkRequest,
    MarkupDeleteRequest,
    MarkupListOut,
    MarkupUpdateRequest,
    MeasurementRequest,
    PageNavigation,
    ProductNodeOut,
    ProductNodeRequest,
    ProjectLoadOut,
    ProjectSaveRequest,
    SnapOut,
    SnapRequest,
    SnapSettingsRequest,
)


router = APIRouter(prefix="/v1")


def get_workspace(request: Request) -> Workspace:
    return request.app.state.workspace


WorkspaceDep = Annotated[Workspace, Depends(get_workspace)]


def _document_out(workspace: Workspace, session: DocumentSession) -> DocumentOut:
    return DocumentOut(
        id=session.id,
        name=session.name,
        pages=session.page_count,
        current_page=session.current_page,
        zoom=session.zoom,
        modified=session.modified,
        active=workspace.active_id == session.id,
    )


def _history_out(session: DocumentSession, step: Any) -> HistoryOut:
    return HistoryOut(
        applied=step is not None,
        description="; ".join(e.description for e in step) if step else None,
        can_undo=session.history.can_undo(),
        can_redo=session.history.can_redo(),
    )


# ----------------------------------------------------------------- documents


@router.post("/documents", response_model=DocumentOut, status_code=201, tags=["documents"])
async def open_document(workspace: WorkspaceDep, file: UploadFile = File(...)) -> DocumentOut:
    if not file.filename:
        raise HTTPException(status_code=400, detail="File name is missing")
    data = await file.read()
    if not data:
        raise HTTPException(status_code=400, detail="Uploaded file is empty")
    session = await workspace.open_document(data, file.filename)
    return _document_out(workspace, session)


@router.get("/documents", response_model=list[DocumentOut], tags=["documents"])
async def list_documents(workspace: WorkspaceDep) -> list[DocumentOut]:
    return [_document_out(workspace, s) for s in workspace.sessions.values()]


@router.delete("/documents/{document_id}", tags=["documents"])
async def close_document(document_id: str, workspace: WorkspaceDep) -> dict[str, Any]:
    removed = workspace.close_document(document_id)
    return {"closed": document_id, "unlinked": len(removed)}


@router.put("/documents/{document_id}/active", response_model=DocumentOut, tags=["documents"])
async def activate_document(document_id: str, workspace: WorkspaceDep) -> DocumentOut:
    return _document_out(workspace, workspace.set_active(document_id))


@router.put("/documents/{document_id}/view", response_model=DocumentOut, tags=["documents"])
async def navigate(document_id: str, payload: PageNavigation, workspace: WorkspaceDep) -> DocumentOut:
    session = workspace.session(document_id)
    if payload.page is not None:
        session.set_page(payload.page)
    if payload.zoom is not None:
        session.set_zoom(payload.zoom)
    return _document_out(workspace, session)


@router.get("/documents/{document_id}/export", tags=["documents"])
async def export_document(document_id: str, workspace: WorkspaceDep) -> Response:
    session = workspace.session(document_id)
    data = await workspace.export_document(document_id)
    stem = session.name.rsplit(".", 1)[0]
    return Response(
        content=data,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{stem}_marked.pdf"'},
    )


# ------------------------------------------------------------------- markups


@router.get("/documents/{document_id}/pages/{page}/markups", response_model=MarkupListOut, tags=["markups"])
async def list_markups(document_id: str, page: int, workspace: WorkspaceDep) -> MarkupListOut:
    session = workspace.session(document_id)
    session.require_page(page)
    return MarkupListOut(
        document_id=session.id,
        page=page,
        markups=[dump_markup(m) for m in session.markups(page)],
    )


@router.post("/documents/{document_id}/pages/{page}/markups", status_code=201, tags=["markups"])
async def add_markup(
    document_id: str,
    page: int,
    workspace: WorkspaceDep,
    payload: dict[str, Any] = Body(...),
) -> dict[str, Any]:
    markup = workspace.store(document_id).add_markup(page, {**payload, "page": page})
    return dump_markup(markup)


@router.patch("/documents/{document_id}/pages/{page}/markups/{markup_id}", tags=["markups"])
async def update_markup(
    document_id: str,
    page: int,
    markup_id: str,
    payload: MarkupUpdateRequest,
    workspace: WorkspaceDep,
) -> dict[str, Any]:
    return dump_markup(workspace.store(document_id).update_markup(page, markup_id, payload.changes))


@router.post("/documents/{document_id}/pages/{page}/markups/delete", tags=["markups"])
async def delete_markups(
    document_id: str,
    page: int,
    payload: MarkupDeleteRequest,
    workspace: WorkspaceDep,
) -> dict[str, Any]:
    deleted = workspace.store(document_id).delete_markups(page, payload.ids)
    if not deleted:
        raise MarkupNotFoundError(f"No markups matched on page {page}", {"page": str(page)})
    return {"deleted": [m.id for m in deleted]}


@router.delete("/documents/{document_id}/markups/{markup_id}", tags=["markups"])
async def delete_markup(document_id: str, markup_id: str, workspace: WorkspaceDep) -> dict[str, Any]:
    deleted = workspace.store(document_id).delete_markup_anywhere(markup_id)
    if deleted is None:
        raise MarkupNotFoundError(f"Markup {markup_id} not found", {"markup_id": markup_id})
    return {"deleted": [deleted.id], "page": deleted.page}


@router.post("/documents/{document_id}/undo", response_model=HistoryOut, tags=["history"])
async def undo(document_id: str, workspace: WorkspaceDep) -> HistoryOut:
    step = workspace.undo(document_id)
    return _history_out(workspace.session(document_id), step)


@router.post("/documents/{document_id}/redo", response_model=HistoryOut, tags=["history"])
async def redo(document_id: str, workspace: WorkspaceDep) -> HistoryOut:
    step = workspace.redo(document_id)
    return _history_out(workspace.session(document_id), step)


# --------------------------------------------------------------- measurement


@router.post("/calibration", response_model=CalibrationOut, tags=["measurement"])
async def calibrate(payload: CalibrationRequest, workspace: WorkspaceDep) -> CalibrationOut:
    calibration = workspace.calibrate(payload.p1, payload.p2, payload.known_distance, payload.unit)
    return CalibrationOut(scale=calibration.scale, unit=calibration.unit, area_unit=calibration.area_unit)


@router.post("/documents/{document_id}/measurements", status_code=201, tags=["measurement"])
async def add_measurement(document_id: str, payload: MeasurementRequest, workspace: WorkspaceDep) -> dict[str, Any]:
    workspace.session(document_id).require_page(payload.page)
    builder = workspace.measure_area if payload.kind == "area" else workspace.measure_length
    markup = builder(payload.page, payload.points, product_id=payload.product_id)
    return dump_markup(workspace.add_measurement(markup, document_id))


@router.post("/documents/{document_id}/counts", status_code=201, tags=["measurement"])
async def place_count(document_id: str, payload: CountRequest, workspace: WorkspaceDep) -> dict[str, Any]:
    marker = workspace.place_count(
        payload.page,
        (payload.x, payload.y),
        product_id=payload.product_id,
        group_id=payload.group_id,
        document_id=document_id,
    )
    return dump_markup(marker)


@router.post("/documents/{document_id}/counts/{group_id}/renumber", tags=["measurement"])
async def renumber_count_group(document_id: str, group_id: str, workspace: WorkspaceDep) -> dict[str, int]:
    return {"renumbered": workspace.store(document_id).renumber_count_group(group_id)}


# ------------------------------------------------------------------ snapping


@router.put("/snap/settings", tags=["snapping"])
async def snap_settings(payload: SnapSettingsRequest, workspace: WorkspaceDep) -> dict[str, Any]:
    modes = workspace.set_snap(snap_enabled=payload.snap_enabled, grid_enabled=payload.grid_enabled)
    if payload.grid_size is not None:
        workspace.set_grid_size(payload.grid_size)
    return {
        "snapEnabled": SnapMode.DOCUMENT in modes,
        "gridEnabled": SnapMode.GRID in modes,
        "gridSize": workspace.grid_size,
    }


@router.post("/documents/{document_id}/snap", response_model=SnapOut, tags=["snapping"])
async def resolve_snap(document_id: str, payload: SnapRequest, workspace: WorkspaceDep) -> SnapOut:
    session = workspace.session(document_id)
    session.require_page(payload.page)
    modes = workspace.snap_modes
    if payload.snap_enabled is not None or payload.grid_enabled is not None:
        modes = SnapMode.from_flags(
            SnapMode.DOCUMENT in modes if payload.snap_enabled is None else payload.snap_enabled,
            SnapMode.GRID in modes if payload.grid_enabled is None else payload.grid_enabled,
        )
    if SnapMode.DOCUMENT in modes:
        await workspace.prepare_snapping(payload.page, document_id)
    if payload.space == "screen":
        result = workspace.resolve_screen_snap(
            payload.page, ScreenPoint(payload.x, payload.y), modes, document_id=document_id
        )
    else:
        result = workspace.resolve_snap(payload.page, (payload.x, payload.y), modes, document_id=document_id)
    return SnapOut(
        x=result.point.x,
        y=result.point.y,
        snapped=result.snapped,
        source=result.source.value if result.source else None,
    )


# ------------------------------------------------------------------------ AI


@router.post("/documents/{document_id}/ai/placements", response_model=AIBatchOut, status_code=201, tags=["ai"])
async def place_ai_markups(document_id: str, payload: AIPlacementRequest, workspace: WorkspaceDep) -> AIBatchOut:
    inserted = workspace.place_ai_markups(
        payload.placements,
        scale_x=payload.scale_x,
        scale_y=payload.scale_y,
        group_id=payload.group_id,
        document_id=document_id,
    )
    return AIBatchOut(affected=len(inserted), markups=[dump_markup(m) for m in inserted])


@router.post("/documents/{document_id}/ai/confirm", response_model=AIBatchOut, tags=["ai"])
async def confirm_ai_markups(document_id: str, workspace: WorkspaceDep) -> AIBatchOut:
    return AIBatchOut(affected=workspace.store(document_id).confirm_all_ai_markups())


@router.post("/documents/{document_id}/ai/reject", response_model=AIBatchOut, tags=["ai"])
async def reject_ai_markups(document_id: str, workspace: WorkspaceDep) -> AIBatchOut:
    return AIBatchOut(affected=workspace.store(document_id).reject_all_ai_markups())


# ------------------------------------------------------------------ products


@router.get("/products", tags=["products"])
async def list_products(workspace: WorkspaceDep) -> dict[str, Any]:
    return workspace.catalog.to_dict()


@router.post("/products", response_model=ProductNodeOut, status_code=201, tags=["products"])
async def add_product_node(payload: ProductNodeRequest, workspace: WorkspaceDep) -> ProductNodeOut:
    if payload.type == "folder":
        node_id = workspace.catalog.add_folder(payload.parent_id, payload.name)
    else:
        node_id = workspace.catalog.add_product(payload.parent_id, payload.name)
    return ProductNodeOut(id=node_id)


@router.delete("/products/{node_id}", tags=["products"])
async def delete_product_node(node_id: str, workspace: WorkspaceDep) -> dict[str, Any]:
    return {"deleted": workspace.catalog.delete_node(node_id)}


@router.get("/products/export", tags=["products"])
async def export_products(workspace: WorkspaceDep, project_name: str = "Untitled Project") -> dict[str, Any]:
    return workspace.export_products(project_name)


@router.post("/links", status_code=201, tags=["products"])
async def link_markup(payload: LinkRequest, workspace: WorkspaceDep) -> dict[str, Any]:
    link = workspace.link_markup(payload.markup_id, payload.product_id, payload.document_id)
    return link.model_dump(by_alias=True, exclude_none=True)


@router.delete("/links/{markup_id}", tags=["products"])
async def unlink_markup(markup_id: str, workspace: WorkspaceDep) -> dict[str, Any]:
    removed = workspace.links.unlink_by_markup_id(markup_id)
    if removed is None:
        raise MarkupNotFoundError(f"Markup {markup_id} has no link", {"markup_id": markup_id})
    return {"unlinked": markup_id, "productId": removed[0]}


# ------------------------------------------------------------------- project


@router.post("/project/save", tags=["project"])
async def save_project(payload: ProjectSaveRequest, workspace: WorkspaceDep) -> Response:
    project = workspace.save_project(payload.name)
    return Response(content=project.to_json(), media_type="application/json")


@router.post("/project/load", response_model=ProjectLoadOut, tags=["project"])
async def load_project(workspace: WorkspaceDep, payload: dict[str, Any] = Body(...)) -> ProjectLoadOut:
    project = await workspace.load_project(payload)
    logger.info("Project {} loaded through the API", project.name)
    return ProjectLoadOut(
        name=project.name,
        documents=[_document_out(workspace, s) for s in workspace.sessions.values()],
    )


__all__ = ["router", "get_workspace"]
