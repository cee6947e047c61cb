from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Protocol, Tuple
from uuid import uuid4

from loguru import logger

from takeoff.catalog.products import LinkedMeasurement, MeasurementPayload, ProductCatalog
from takeoff.exceptions import MeasurementLinkError


@dataclass(frozen=True)
class LinkEvent:
    """Notification for estimation listeners."""

    action: str  # "linked" | "unlinked" | "updated"
    product_id: str
    markup_id: str
    document_id: str
    page: int
    type: str
    value: float
    unit: str
    group_id: Optional[str] = None

    def to_dict(self) -> Dict[str, object]:
        payload: Dict[str, object] = {
            "action": self.action,
            "productId": self.product_id,
            "markupId": self.markup_id,
            "documentId": self.document_id,
            "page": self.page,
            "type": self.type,
            "value": self.value,
            "unit": self.unit,
        }
        if self.group_id is not None:
            payload["groupId"] = self.group_id
        return payload


LinkListener = Callable[[LinkEvent], None]


class LinkSink(Protocol):
    """Cascade capability the markup store depends on."""

    def unlink_by_markup_id(self, markup_id: str) -> Optional[Tuple[str, LinkedMeasurement]]: ...

    def get_by_markup_id(self, markup_id: str) -> Optional[Tuple[str, LinkedMeasurement]]: ...

    def relink(self, product_id: str, payload: MeasurementPayload) -> Optional[LinkedMeasurement]: ...

    def update_count_value(self, markup_id: str, value: float) -> bool: ...


class MeasurementLinkGraph:
    """
    Markup-to-product association layer.

    At most one link exists per markup id. A markup id whose link was removed
    can only be linked again through :meth:`relink`, the history replay path.
    """

    def __init__(self, catalog: ProductCatalog) -> None:
        self.catalog = catalog
        self._retired: set[str] = set()
        self._listeners: List[LinkListener] = []
        self._count_group_id: Optional[str] = None
        self._measurement_group_id: Optional[str] = None

    # ------------------------------------------------------------ listeners

    def subscribe(self, listener: LinkListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _emit(self, action: str, product_id: str, link: LinkedMeasurement) -> None:
        event = LinkEvent(
            action=action,
            product_id=product_id,
            markup_id=link.markup_id,
            document_id=link.document_id,
            page=link.page,
            type=link.type,
            value=link.value,
            unit=link.unit,
            group_id=link.group_id,
        )
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as exc:  # listener failures never break a cascade
                logger.warning("Link listener failed: {}", exc)

    # --------------------------------------------------------------- queries

    def get_by_markup_id(self, markup_id: str) -> Optional[Tuple[str, LinkedMeasurement]]:
        for node in self.catalog.products():
            for link in node.measurements or []:
                if link.markup_id == markup_id:
                    return node.id, link
        return None

    def links_for_product(self, product_id: str) -> List[LinkedMeasurement]:
        return list(self.catalog.product(product_id).measurements or [])

    def links_for_document(self, document_id: str) -> List[Tuple[str, LinkedMeasurement]]:
        return [
            (node.id, link)
            for node in self.catalog.products()
            for link in node.measurements or []
            if link.document_id == document_id
        ]

    def all_links(self) -> List[Tuple[str, LinkedMeasurement]]:
        return [(node.id, link) for node in self.catalog.products() for link in node.measurements or []]

    # ------------------------------------------------------------- mutation

    def _append(self, product_id: str, payload: MeasurementPayload) -> LinkedMeasurement:
        product = self.catalog.product(product_id)
        link = LinkedMeasurement(**payload.model_dump())
        product.measurements = [*(product.measurements or []), link]
        self._retired.discard(payload.markup_id)
        self._emit("linked", product_id, link)
        return link

    def ensure_linkable(self, product_id: str, markup_id: str) -> None:
        """Raise whatever :meth:`link` would raise for this pair, without linking."""
        if self.get_by_markup_id(markup_id) is not None:
            raise MeasurementLinkError(
                f"Markup {markup_id} is already linked",
                {"markup_id": markup_id, "product_id": product_id},
            )
        if markup_id in self._retired:
            raise MeasurementLinkError(
                f"Markup {markup_id} was unlinked; it can only be restored through undo/redo",
                {"markup_id": markup_id},
            )
        self.catalog.product(product_id)

    def link(self, product_id: str, payload: MeasurementPayload) -> LinkedMeasurement:
        """Create a new link with a generated id and timestamp."""
        self.ensure_linkable(product_id, payload.markup_id)
        link = self._append(product_id, payload)
        logger.debug("Linked markup {} to product {} ({} {})", link.markup_id, product_id, link.value, link.unit)
        return link

    def relink(self, product_id: str, payload: MeasurementPayload) -> Optional[LinkedMeasurement]:
        """Replay path. Returns None when a link for the markup already exists."""
        if self.get_by_markup_id(payload.markup_id) is not None:
            return None
        if product_id not in self.catalog.nodes:
            logger.warning("Skipping relink of {}: product {} no longer exists", payload.markup_id, product_id)
            return None
        link = self._append(product_id, payload)
        logger.debug("Relinked markup {} to product {}", link.markup_id, product_id)
        return link

    def unlink_by_markup_id(self, markup_id: str) -> Optional[Tuple[str, LinkedMeasurement]]:
        found = self.get_by_markup_id(markup_id)
        if found is None:
            return None
        product_id, link = found
        product = self.catalog.product(product_id)
        product.measurements = [m for m in product.measurements or [] if m.markup_id != markup_id]
        self._retired.add(markup_id)
        self._emit("unlinked", product_id, link)
        logger.debug("Unlinked markup {} from product {}", markup_id, product_id)
        return product_id, link

    def unlink_measurement(self, product_id: str, measurement_id: str) -> Optional[LinkedMeasurement]:
        product = self.catalog.product(product_id)
        for link in product.measurements or []:
            if link.id == measurement_id:
                self.unlink_by_markup_id(link.markup_id)
                return link
        return None

    def unlink_document(self, document_id: str) -> List[Tuple[str, LinkedMeasurement]]:
        removed = []
        for _, link in self.links_for_document(document_id):
            result = self.unlink_by_markup_id(link.markup_id)
            if result is not None:
                removed.append(result)
        if removed:
            logger.info("Removed {} links of closed document {}", len(removed), document_id)
        return removed

    def update_count_value(self, markup_id: str, value: float) -> bool:
        """Patch a count link's displayed value in place; link identity is kept."""
        found = self.get_by_markup_id(markup_id)
        if found is None:
            return False
        product_id, link = found
        if link.type != "count":
            raise MeasurementLinkError(
                "Only count links can be patched in place",
                {"markup_id": markup_id, "type": link.type},
            )
        product = self.catalog.product(product_id)
        patched = link.model_copy(update={"value": float(value)})
        product.measurements = [patched if m.markup_id == markup_id else m for m in product.measurements or []]
        self._emit("updated", product_id, patched)
        return True

    # ---------------------------------------------------------------- groups

    def get_or_create_count_group(self) -> str:
        if self._count_group_id is None:
            self._count_group_id = str(uuid4())
        return self._count_group_id

    def get_or_create_measurement_group(self) -> str:
        if self._measurement_group_id is None:
            self._measurement_group_id = str(uuid4())
        return self._measurement_group_id

    def reset_groups(self) -> None:
        self._count_group_id = None
        self._measurement_group_id = None

    def link_group_counts(
        self,
        product_id: str,
        markup_ids: Iterable[str],
        document_id: str,
        page: int,
        group_label: Optional[str] = None,
    ) -> List[LinkedMeasurement]:
        """Link a batch of counted markups under the session count group."""
        group_id = self.get_or_create_count_group()
        created = []
        for markup_id in markup_ids:
            if self.get_by_markup_id(markup_id) is not None:
                continue
            payload = MeasurementPayload(
                markup_id=markup_id,
                document_id=document_id,
                page=page,
                type="count",
                value=1.0,
                unit="ea",
                group_id=group_id,
                group_label=group_label,
            )
            created.append(self.link(product_id, payload))
        return created

    def reset(self) -> None:
        """Forget retired markup ids and session groups; links stay."""
        self._retired.clear()
        self.reset_groups()

    def clear(self) -> None:
        self.catalog.clear_measurements()
        self.reset()


__all__ = ["LinkEvent", "LinkListener", "LinkSink", "MeasurementLinkGraph"]
