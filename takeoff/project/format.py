from __future__ import annotations

import base64
import binascii
import json
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from takeoff.exceptions import ProjectFormatError

PROJECT_VERSION = "1.0.0"
SUPPORTED_MAJOR = "1"


class _ProjectModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class ProjectDocument(_ProjectModel):
    id: Optional[str] = None
    name: str
    original_path: Optional[str] = None
    pdf_data: str
    pages: int = Field(..., ge=1)
    current_page: int = Field(1, ge=1)
    zoom: float = Field(100.0, gt=0.0)
    markups: List[Dict[str, Any]] = Field(default_factory=list)
    measurements: List[Dict[str, Any]] = Field(default_factory=list)


class ProjectProducts(_ProjectModel):
    nodes: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
    root_ids: List[str] = Field(default_factory=list)


class ProjectSettings(_ProjectModel):
    scale: Optional[float] = None
    scale_unit: str = "ft"
    snap_enabled: bool = False
    grid_enabled: bool = False
    grid_size: Optional[float] = None


class ProjectFile(_ProjectModel):
    version: str = PROJECT_VERSION
    name: str
    created_at: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    modified_at: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    documents: List[ProjectDocument] = Field(default_factory=list)
    products: ProjectProducts = Field(default_factory=ProjectProducts)
    settings: ProjectSettings = Field(default_factory=ProjectSettings)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True, indent=2)


def encode_pdf(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def decode_pdf(data: str, *, document: str = "") -> bytes:
    try:
        return base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ProjectFormatError(f"Document {document!r} has invalid pdfData", {"document": document}) from exc


def parse_project(payload: Any) -> ProjectFile:
    """Validate a project payload (dict, JSON text or bytes) before anything is applied."""
    if isinstance(payload, (bytes, bytearray)):
        payload = payload.decode("utf-8")
    if isinstance(payload, str):
        try:
            payload = json.loads(payload)
        except json.JSONDecodeError as exc:
            raise ProjectFormatError(f"Project file is not valid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise ProjectFormatError("Project file root must be an object")
    try:
        project = ProjectFile.model_validate(payload)
    except PydanticValidationError as exc:
        raise ProjectFormatError(
            "Project file is missing required fields",
            {"errors": str(exc.errors(include_url=False))},
        ) from exc
    if project.version.split(".")[0] != SUPPORTED_MAJOR:
        raise ProjectFormatError(
            f"Unsupported project version {project.version}",
            {"version": project.version},
        )
    return project


def build_id_remap(documents: List[ProjectDocument]) -> Dict[str, str]:
    """Stored ids are kept; documents without an id receive a generated one."""
    remap: Dict[str, str] = {}
    for index, document in enumerate(documents):
        key = document.id or f"__missing_{index}"
        remap[key] = document.id or f"doc-{uuid4().hex[:12]}-{index}"
    return remap


def resolved_id(remap: Dict[str, str], document: ProjectDocument, index: int) -> str:
    return remap[document.id or f"__missing_{index}"]


def remap_product_nodes(nodes: Dict[str, Dict[str, Any]], remap: Dict[str, str]) -> Dict[str, Dict[str, Any]]:
    remapped: Dict[str, Dict[str, Any]] = {}
    for node_id, node in nodes.items():
        if node.get("type") == "product":
            measurements = [
                {**m, "documentId": remap.get(m.get("documentId", ""), m.get("documentId"))}
                for m in node.get("measurements") or []
            ]
            remapped[node_id] = {**node, "measurements": measurements}
        else:
            remapped[node_id] = node
    return remapped


def filter_product_nodes(nodes: Dict[str, Dict[str, Any]], document_ids: Set[str]) -> Dict[str, Dict[str, Any]]:
    """Keep only measurements that belong to documents in the project."""
    filtered: Dict[str, Dict[str, Any]] = {}
    for node_id, node in nodes.items():
        if node.get("type") == "product":
            filtered[node_id] = {
                **node,
                "measurements": [m for m in node.get("measurements") or [] if m.get("documentId") in document_ids],
            }
        else:
            filtered[node_id] = node
    return filtered


__all__ = [
    "PROJECT_VERSION",
    "ProjectDocument",
    "ProjectFile",
    "ProjectProducts",
    "ProjectSettings",
    "build_id_remap",
    "decode_pdf",
    "encode_pdf",
    "filter_product_nodes",
    "parse_project",
    "remap_product_nodes",
    "resolved_id",
]
