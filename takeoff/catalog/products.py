from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional
from uuid import uuid4

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from takeoff.exceptions import ProductNotFoundError, ValidationError

MeasurementKind = Literal["length", "area", "count"]
UnitOfMeasure = Literal["length", "area", "count", "each"]


def _generate_id() -> str:
    return str(uuid4())


class _CatalogModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class MeasurementPayload(_CatalogModel):
    """A link request before it receives an id and timestamp."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    markup_id: str
    document_id: str
    page: int = Field(1, ge=1)
    type: MeasurementKind
    value: float
    unit: str
    group_id: Optional[str] = None
    group_label: Optional[str] = None


class LinkedMeasurement(MeasurementPayload):
    id: str = Field(default_factory=_generate_id)
    created_at: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def payload(self) -> MeasurementPayload:
        return MeasurementPayload(**self.model_dump(exclude={"id", "created_at"}))


class ProductComponent(_CatalogModel):
    id: str = Field(default_factory=_generate_id)
    name: str
    quantity: float = 1.0
    unit: str = "ea"
    notes: Optional[str] = None


class ProductNode(_CatalogModel):
    id: str = Field(default_factory=_generate_id)
    name: str
    type: Literal["folder", "product"]
    parent_id: Optional[str] = None
    children: List[str] = Field(default_factory=list)
    expanded: bool = True

    description: Optional[str] = None
    unit_of_measure: Optional[UnitOfMeasure] = None
    components: Optional[List[ProductComponent]] = None
    measurements: Optional[List[LinkedMeasurement]] = None

    @property
    def is_product(self) -> bool:
        return self.type == "product"


class ProductCatalog:
    """
    Hierarchical folder/product tree.

    Products own their linked measurements; the link graph mutates them through
    :meth:`product` and keeps the at-most-one-link-per-markup rule.
    """

    def __init__(self, nodes: Optional[Dict[str, ProductNode]] = None, root_ids: Optional[List[str]] = None) -> None:
        self.nodes: Dict[str, ProductNode] = dict(nodes or {})
        self.root_ids: List[str] = list(root_ids or [])

    # ------------------------------------------------------------------ tree

    def get(self, node_id: str) -> ProductNode:
        node = self.nodes.get(node_id)
        if node is None:
            raise ProductNotFoundError(f"Product node not found: {node_id}", {"node_id": node_id})
        return node

    def product(self, product_id: str) -> ProductNode:
        node = self.get(product_id)
        if not node.is_product:
            raise ProductNotFoundError(f"Node is a folder, not a product: {product_id}", {"node_id": product_id})
        return node

    def products(self) -> List[ProductNode]:
        return [node for node in self.nodes.values() if node.is_product]

    def children(self, parent_id: Optional[str]) -> List[ProductNode]:
        ids = self.root_ids if parent_id is None else self.get(parent_id).children
        return [self.nodes[i] for i in ids if i in self.nodes]

    def _attach(self, node: ProductNode) -> str:
        if node.parent_id is not None:
            parent = self.get(node.parent_id)
            if parent.is_product:
                raise ValidationError("Products cannot contain children", {"parent_id": parent.id})
            parent.children.append(node.id)
        else:
            self.root_ids.append(node.id)
        self.nodes[node.id] = node
        return node.id

    def add_folder(self, parent_id: Optional[str], name: str) -> str:
        node = ProductNode(name=name, type="folder", parent_id=parent_id, expanded=True)
        logger.debug("Adding folder {} under {}", name, parent_id)
        return self._attach(node)

    def add_product(self, parent_id: Optional[str], name: str) -> str:
        node = ProductNode(
            name=name,
            type="product",
            parent_id=parent_id,
            expanded=False,
            description="",
            unit_of_measure="each",
            components=[],
            measurements=[],
        )
        logger.debug("Adding product {} under {}", name, parent_id)
        return self._attach(node)

    def _descendants(self, node_id: str) -> List[str]:
        node = self.nodes.get(node_id)
        if node is None:
            return [node_id]
        collected = [node_id]
        for child_id in node.children:
            collected.extend(self._descendants(child_id))
        return collected

    def delete_node(self, node_id: str) -> List[str]:
        """Delete a node and its subtree; returns the removed ids."""
        node = self.get(node_id)
        removed = self._descendants(node_id)
        for removed_id in removed:
            self.nodes.pop(removed_id, None)
        if node.parent_id and node.parent_id in self.nodes:
            parent = self.nodes[node.parent_id]
            parent.children = [cid for cid in parent.children if cid != node_id]
        self.root_ids = [rid for rid in self.root_ids if rid != node_id]
        return removed

    def rename_node(self, node_id: str, name: str) -> None:
        self.get(node_id).name = name

    def move_node(self, node_id: str, new_parent_id: Optional[str]) -> bool:
        """Re-parent a node. Moving a node under itself or a descendant is refused."""
        node = self.get(node_id)
        if new_parent_id is not None:
            current: Optional[ProductNode] = self.get(new_parent_id)
            if current.is_product:
                raise ValidationError("Products cannot contain children", {"parent_id": new_parent_id})
            while current is not None:
                if current.id == node_id:
                    return False
                current = self.nodes.get(current.parent_id) if current.parent_id else None

        if node.parent_id and node.parent_id in self.nodes:
            old_parent = self.nodes[node.parent_id]
            old_parent.children = [cid for cid in old_parent.children if cid != node_id]
        if new_parent_id is not None:
            self.nodes[new_parent_id].children.append(node_id)
        node.parent_id = new_parent_id

        self.root_ids = [rid for rid in self.root_ids if rid != node_id]
        if new_parent_id is None:
            self.root_ids.append(node_id)
        return True

    def toggle_expanded(self, node_id: str) -> None:
        node = self.get(node_id)
        node.expanded = not node.expanded

    # --------------------------------------------------------------- product

    def update_description(self, product_id: str, description: str) -> None:
        self.product(product_id).description = description

    def update_unit_of_measure(self, product_id: str, unit: UnitOfMeasure) -> None:
        self.product(product_id).unit_of_measure = unit

    def add_component(self, product_id: str, name: str, quantity: float, unit: str, notes: Optional[str] = None) -> str:
        product = self.product(product_id)
        component = ProductComponent(name=name, quantity=quantity, unit=unit, notes=notes)
        product.components = [*(product.components or []), component]
        return component.id

    def update_component(self, product_id: str, component_id: str, **updates: Any) -> None:
        product = self.product(product_id)
        product.components = [
            c.model_copy(update=updates) if c.id == component_id else c for c in (product.components or [])
        ]

    def delete_component(self, product_id: str, component_id: str) -> None:
        product = self.product(product_id)
        product.components = [c for c in (product.components or []) if c.id != component_id]

    def get_product_path(self, node_id: str) -> str:
        path: List[str] = []
        current = self.nodes.get(node_id)
        while current is not None:
            path.insert(0, current.name)
            current = self.nodes.get(current.parent_id) if current.parent_id else None
        return "/".join(path)

    def clear_measurements(self) -> None:
        """Drop every linked measurement while keeping the tree."""
        for node in self.products():
            node.measurements = []

    def export_products(self, project_name: str, document_names: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        """Estimation payload: products with at least one link, with totals per kind."""
        names = document_names or {}
        products: List[Dict[str, Any]] = []
        for node in self.products():
            measurements = node.measurements or []
            if not measurements:
                continue
            products.append(
                {
                    "id": node.id,
                    "name": node.name,
                    "path": self.get_product_path(node.id),
                    "description": node.description or "",
                    "unitOfMeasure": node.unit_of_measure or "each",
                    "components": [
                        {"name": c.name, "quantity": c.quantity, "unit": c.unit} for c in (node.components or [])
                    ],
                    "measurements": {
                        "totalLength": sum(m.value for m in measurements if m.type == "length"),
                        "totalArea": sum(m.value for m in measurements if m.type == "area"),
                        "totalCount": sum(m.value for m in measurements if m.type == "count"),
                        "details": [
                            {
                                "type": m.type,
                                "value": m.value,
                                "unit": m.unit,
                                "documentName": names.get(m.document_id, m.document_id),
                                "page": m.page,
                            }
                            for m in measurements
                        ],
                    },
                }
            )
        return {
            "projectName": project_name,
            "exportDate": datetime.now(timezone.utc).isoformat(),
            "products": products,
        }

    # ----------------------------------------------------------- persistence

    def to_dict(self) -> Dict[str, Any]:
        return {
            "nodes": {nid: node.model_dump(by_alias=True, exclude_none=True) for nid, node in self.nodes.items()},
            "rootIds": list(self.root_ids),
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "ProductCatalog":
        nodes = {nid: ProductNode.model_validate(raw) for nid, raw in (payload.get("nodes") or {}).items()}
        return cls(nodes=nodes, root_ids=list(payload.get("rootIds") or []))

    def replace(self, other: "ProductCatalog") -> None:
        self.nodes = other.nodes
        self.root_ids = other.root_ids


__all__ = [
    "LinkedMeasurement",
    "MeasurementKind",
    "MeasurementPayload",
    "ProductCatalog",
    "ProductComponent",
    "ProductNode",
]
