"""Supplier purchases and their reversal."""

import pytest

from backoffice.errors import InvalidState, NotFound, ReversalConflict, ValidationError
from backoffice.extensions import db
from backoffice.models import Product, StockTransaction
from backoffice.models.inventory import REF_PURCHASE, REF_PURCHASE_REVERSAL
from backoffice.models.purchases import PURCHASE_COMPLETED, PURCHASE_REVERSED
from backoffice.services import purchase_service, sales_service, stock_ledger_service


def _receive(supplier, product, quantity=10, cost=450, **kwargs):
    return purchase_service.create_purchase(
        supplier_id=supplier.id,
        items=[{"product_id": product.id, "quantity": quantity, "cost_price_cents": cost}],
        actor_user_id=2,
        **kwargs,
    )


def test_purchase_adds_stock_and_updates_cost(make_supplier, make_product):
    supplier = make_supplier()
    product = make_product(cost_cents=400, stock=2)

    purchase = _receive(supplier, product, quantity=10, cost=450, notes="  weekly order ")

    assert purchase.purchase_number == "PO-00001"
    assert purchase.status == PURCHASE_COMPLETED
    assert purchase.total_amount_cents == 4_500
    assert purchase.notes == "weekly order"
    assert purchase.to_dict()["supplier_name"] == supplier.name
    assert stock_ledger_service.current_stock(product.id) == 12
    assert db.session.get(Product, product.id).cost_price_cents == 450

    entries = db.session.query(StockTransaction).filter_by(reference_type=REF_PURCHASE, reference_id=purchase.id).all()
    assert [(e.type, e.quantity, e.actor_user_id) for e in entries] == [("STOCK_IN", 10, 2)]


def test_purchase_numbers_are_sequential(make_supplier, make_product):
    supplier = make_supplier()
    product = make_product()
    assert _receive(supplier, product).purchase_number == "PO-00001"
    assert _receive(supplier, product).purchase_number == "PO-00002"


def test_purchase_then_delete_restores_stock(make_supplier, make_product):
    supplier = make_supplier()
    product = make_product(stock=5)
    purchase = _receive(supplier, product, quantity=10)

    reversed_purchase = purchase_service.delete_purchase(purchase.id, actor_user_id=1)

    assert reversed_purchase.status == PURCHASE_REVERSED
    assert reversed_purchase.reversed_by_user_id == 1
    assert stock_ledger_service.current_stock(product.id) == 5

    entries = db.session.query(StockTransaction).filter_by(
        reference_type=REF_PURCHASE_REVERSAL, reference_id=purchase.id
    ).all()
    assert [(e.type, e.quantity) for e in entries] == [("STOCK_OUT", 10)]


def test_reversal_after_stock_was_sold_is_refused(make_supplier, make_product):
    supplier = make_supplier()
    product = make_product()
    purchase = _receive(supplier, product, quantity=10)
    sales_service.create_sale(
        items=[{"product_id": product.id, "quantity": 3}],
        payment_method="CASH",
        customer_name="Walk-in",
    )

    with pytest.raises(ReversalConflict) as exc:
        purchase_service.delete_purchase(purchase.id)

    assert exc.value.details["items"][0]["product_id"] == product.id
    assert stock_ledger_service.current_stock(product.id) == 7
    assert purchase_service.get_purchase(purchase.id).status == PURCHASE_COMPLETED


def test_reversing_twice_is_invalid(make_supplier, make_product):
    supplier = make_supplier()
    product = make_product()
    purchase = _receive(supplier, product)
    purchase_service.delete_purchase(purchase.id)

    with pytest.raises(InvalidState):
        purchase_service.delete_purchase(purchase.id)


def test_reversal_is_allowed_for_deactivated_product(make_supplier, make_product):
    from backoffice.services import catalog_service

    supplier = make_supplier()
    product = make_product()
    purchase = _receive(supplier, product, quantity=4)
    catalog_service.deactivate_product(product.id)

    purchase_service.delete_purchase(purchase.id)
    assert stock_ledger_service.current_stock(product.id) == 0


def test_supplier_must_exist_and_be_active(make_supplier, make_product):
    product = make_product()
    with pytest.raises(NotFound):
        purchase_service.create_purchase(
            supplier_id=4040,
            items=[{"product_id": product.id, "quantity": 1, "cost_price_cents": 10}],
        )

    dormant = make_supplier(name="Dormant Ltd", active=False)
    with pytest.raises(ValidationError):
        _receive(dormant, product)
    assert stock_ledger_service.current_stock(product.id) == 0


@pytest.mark.parametrize("item", [
    {"quantity": 0, "cost_price_cents": 100},
    {"quantity": 2, "cost_price_cents": 0},
    {"quantity": 2, "cost_price_cents": -5},
    {"quantity": 2},
])
def test_invalid_lines_are_rejected(make_supplier, make_product, item):
    supplier = make_supplier()
    product = make_product()
    with pytest.raises(ValidationError):
        purchase_service.create_purchase(supplier_id=supplier.id, items=[{"product_id": product.id, **item}])


def test_repeated_product_with_conflicting_cost_is_rejected(make_supplier, make_product):
    supplier = make_supplier()
    product = make_product()
    with pytest.raises(ValidationError):
        purchase_service.create_purchase(
            supplier_id=supplier.id,
            items=[
                {"product_id": product.id, "quantity": 1, "cost_price_cents": 100},
                {"product_id": product.id, "quantity": 1, "cost_price_cents": 120},
            ],
        )


def test_inactive_product_aborts_whole_purchase(make_supplier, make_product):
    supplier = make_supplier()
    good = make_product()
    retired = make_product(active=False)

    with pytest.raises(ValidationError):
        purchase_service.create_purchase(
            supplier_id=supplier.id,
            items=[
                {"product_id": good.id, "quantity": 5, "cost_price_cents": 100},
                {"product_id": retired.id, "quantity": 5, "cost_price_cents": 100},
            ],
        )
    assert stock_ledger_service.current_stock(good.id) == 0


def test_list_purchases_by_supplier(make_supplier, make_product):
    first = make_supplier(name="First")
    second = make_supplier(name="Second")
    product = make_product()
    mine = _receive(first, product)
    _receive(second, product)

    listed = purchase_service.list_purchases(supplier_id=first.id)
    assert [p["id"] for p in listed["items"]] == [mine.id]
    assert listed["pagination"]["total"] == 1
