"""Product catalog: creation, updates and listing."""

import re

import pytest

from backoffice.errors import ConflictError, NotFound, ValidationError
from backoffice.services import catalog_service, stock_ledger_service


def test_create_generates_sku_when_blank(db_session):
    product = catalog_service.create_product(patch={"name": "Loose Tea", "sku": "  "})

    assert re.fullmatch(r"SKU-[0-9A-Z]+-[0-9A-Z]{3}", product.sku)
    assert product.current_stock == 0
    assert product.minimum_stock_level == 10
    assert product.is_active is True


def test_create_requires_name(db_session):
    with pytest.raises(ValidationError):
        catalog_service.create_product(patch={"sku": "NO-NAME"})


def test_duplicate_sku_conflicts(make_product):
    make_product(sku="DUP-1")
    with pytest.raises(ConflictError):
        catalog_service.create_product(patch={"name": "Copy", "sku": "DUP-1"})


def test_update_cannot_touch_stock(make_product):
    product = make_product(stock=4)
    with pytest.raises(ValidationError):
        catalog_service.update_product(product.id, {"current_stock": 100})
    assert stock_ledger_service.current_stock(product.id) == 4


def test_update_changes_catalog_fields(make_product):
    product = make_product(sku="OLD-SKU")
    updated = catalog_service.update_product(product.id, {"sku": "NEW-SKU", "selling_price_cents": 1234})
    assert updated.sku == "NEW-SKU"
    assert updated.selling_price_cents == 1234


def test_update_rejects_sku_taken_by_another_product(make_product):
    make_product(sku="TAKEN")
    product = make_product(sku="MINE")
    with pytest.raises(ConflictError):
        catalog_service.update_product(product.id, {"sku": "TAKEN"})


def test_get_product_inactive_and_missing(make_product):
    product = make_product(active=False)
    assert catalog_service.get_product(product.id).is_active is False
    with pytest.raises(ValidationError):
        catalog_service.get_product(product.id, require_active=True)
    with pytest.raises(NotFound):
        catalog_service.get_product(999_001)


def test_list_filters(make_product):
    low = make_product(name="Batteries", stock=2, minimum_stock_level=5)
    make_product(name="Bread", stock=50, minimum_stock_level=5)
    make_product(name="Old Stock", stock=50, active=False)

    low_only = catalog_service.list_products(low_stock=True)
    assert [p["id"] for p in low_only["items"]] == [low.id]
    assert low_only["items"][0]["is_low_stock"] is True

    searched = catalog_service.list_products(search="bat")
    assert [p["name"] for p in searched["items"]] == ["Batteries"]

    active = catalog_service.list_products(active_only=True)
    assert {p["name"] for p in active["items"]} == {"Batteries", "Bread"}

    paged = catalog_service.list_products(page=2, per_page=2)
    assert paged["pagination"]["total"] == 3
    assert paged["count"] == 1


def test_list_page_size_is_clamped(make_product):
    make_product()

    listed = catalog_service.list_products(page=0, per_page=500)

    assert listed["pagination"]["per_page"] == 100
    assert listed["pagination"]["page"] == 1
    assert listed["count"] == 1
