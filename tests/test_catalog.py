from __future__ import annotations

import pytest

from takeoff.catalog.links import MeasurementLinkGraph
from takeoff.catalog.products import MeasurementPayload, ProductCatalog
from takeoff.exceptions import ProductNotFoundError, ValidationError


@pytest.fixture()
def catalog() -> ProductCatalog:
    return ProductCatalog()


def test_tree_building_and_paths(catalog):
    electrical = catalog.add_folder(None, "Electrical")
    lighting = catalog.add_folder(electrical, "Lighting")
    fixture = catalog.add_product(lighting, "Troffer 2x4")
    assert catalog.root_ids == [electrical]
    assert catalog.get_product_path(fixture) == "Electrical/Lighting/Troffer 2x4"
    assert [n.id for n in catalog.children(lighting)] == [fixture]
    assert catalog.product(fixture).unit_of_measure == "each"


def test_products_cannot_have_children(catalog):
    product = catalog.add_product(None, "Door")
    with pytest.raises(ValidationError):
        catalog.add_product(product, "Hinge")


def test_delete_node_removes_subtree(catalog):
    folder = catalog.add_folder(None, "Doors")
    inner = catalog.add_folder(folder, "Hollow metal")
    product = catalog.add_product(inner, "3070")
    removed = catalog.delete_node(folder)
    assert set(removed) == {folder, inner, product}
    assert catalog.nodes == {}
    assert catalog.root_ids == []
    with pytest.raises(ProductNotFoundError):
        catalog.get(product)


def test_move_node_refuses_cycles(catalog):
    parent = catalog.add_folder(None, "A")
    child = catalog.add_folder(parent, "B")
    assert catalog.move_node(parent, child) is False
    assert catalog.get(parent).parent_id is None

    product = catalog.add_product(child, "P")
    assert catalog.move_node(product, None) is True
    assert product in catalog.root_ids
    assert product not in catalog.get(child).children


def test_rename_toggle_and_product_fields(catalog):
    product = catalog.add_product(None, "Wall")
    catalog.rename_node(product, "Partition")
    catalog.toggle_expanded(product)
    catalog.update_description(product, "Metal stud")
    catalog.update_unit_of_measure(product, "area")
    node = catalog.get(product)
    assert (node.name, node.expanded, node.description, node.unit_of_measure) == ("Partition", True, "Metal stud", "area")


def test_component_crud(catalog):
    product = catalog.add_product(None, "Wall")
    component = catalog.add_component(product, "Stud", 12, "ea")
    catalog.update_component(product, component, quantity=16)
    assert catalog.product(product).components[0].quantity == 16
    catalog.delete_component(product, component)
    assert catalog.product(product).components == []


def test_folder_is_not_a_product(catalog):
    folder = catalog.add_folder(None, "F")
    with pytest.raises(ProductNotFoundError):
        catalog.update_description(folder, "nope")


def test_export_products_totals(catalog):
    graph = MeasurementLinkGraph(catalog)
    walls = catalog.add_product(None, "Walls")
    catalog.add_product(None, "Unused")
    graph.link(walls, MeasurementPayload(markup_id="a", document_id="d1", page=1, type="length", value=10.0, unit="ft"))
    graph.link(walls, MeasurementPayload(markup_id="b", document_id="d1", page=2, type="length", value=5.5, unit="ft"))
    graph.link(walls, MeasurementPayload(markup_id="c", document_id="d1", page=2, type="area", value=3.0, unit="sq ft"))
    graph.link(walls, MeasurementPayload(markup_id="d", document_id="d1", page=2, type="count", value=1.0, unit="ea"))

    exported = catalog.export_products("Tower", {"d1": "A-101.pdf"})
    assert exported["projectName"] == "Tower"
    assert [p["name"] for p in exported["products"]] == ["Walls"]
    totals = exported["products"][0]["measurements"]
    assert totals["totalLength"] == pytest.approx(15.5)
    assert totals["totalArea"] == pytest.approx(3.0)
    assert totals["totalCount"] == pytest.approx(1.0)
    assert {d["documentName"] for d in totals["details"]} == {"A-101.pdf"}


def test_dict_round_trip(catalog):
    folder = catalog.add_folder(None, "F")
    product = catalog.add_product(folder, "P")
    MeasurementLinkGraph(catalog).link(
        product, MeasurementPayload(markup_id="m", document_id="d", page=1, type="count", value=1.0, unit="ea")
    )
    restored = ProductCatalog.from_dict(catalog.to_dict())
    assert restored.root_ids == [folder]
    assert restored.get(product).measurements[0].markup_id == "m"
    assert restored.get_product_path(product) == "F/P"

    restored.clear_measurements()
    assert restored.get(product).measurements == []
