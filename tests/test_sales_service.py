"""Sale processing: totals, stock effects, coupons, loyalty, update and delete."""

from datetime import timedelta

import pytest

from backoffice.errors import (
    CouponAlreadyUsed,
    CouponExpired,
    CouponNotFound,
    InvalidCoupon,
    InvalidState,
    NotFound,
    OutOfStock,
    ValidationError,
)
from backoffice.extensions import db
from backoffice.models import Coupon, Customer, Sale, StockTransaction
from backoffice.models.customers import COUPON_SOURCE_LOYALTY, DISCOUNT_FIXED, DISCOUNT_PERCENTAGE
from backoffice.models.inventory import REF_SALE, REF_SALE_DELETE, REF_SALE_UPDATE
from backoffice.models.sales import SALE_COMPLETED, SALE_DELETED
from backoffice.services import (
    catalog_service,
    coupon_service,
    loyalty_service,
    sales_service,
    stock_ledger_service,
)
from backoffice.time_utils import utcnow


def _sell(product, quantity=1, **kwargs):
    kwargs.setdefault("payment_method", "CASH")
    if "customer_id" not in kwargs:
        kwargs.setdefault("customer_name", "Walk-in")
    return sales_service.create_sale(
        items=[{"product_id": product.id, "quantity": quantity}],
        actor_user_id=5,
        **kwargs,
    )


def _sale_count():
    return db.session.query(Sale).count()


def test_tax_is_ten_percent_of_subtotal(make_product):
    product = make_product(price_cents=100_000, cost_cents=60_000, stock=5)

    sale = _sell(product).sale

    assert sale.subtotal_cents == 100_000
    assert sale.tax_cents == 10_000
    assert sale.discount_cents == 0
    assert sale.grand_total_cents == 110_000
    assert sale.total_cost_cents == 60_000
    assert sale.total_profit_cents == 40_000
    assert sale.status == SALE_COMPLETED


def test_tax_rounds_half_up(make_product):
    product = make_product(price_cents=5, stock=5)
    sale = _sell(product).sale
    assert sale.tax_cents == 1


def test_sale_writes_stock_out_per_line(make_product):
    a = make_product(stock=10)
    b = make_product(stock=4)

    sale = sales_service.create_sale(
        items=[{"product_id": a.id, "quantity": 3}, {"product_id": b.id, "quantity": 4}],
        payment_method="card",
        customer_name="Jordan",
        actor_user_id=5,
    ).sale

    assert sale.payment_method == "CARD"
    assert stock_ledger_service.current_stock(a.id) == 7
    assert stock_ledger_service.current_stock(b.id) == 0

    entries = db.session.query(StockTransaction).filter_by(reference_type=REF_SALE, reference_id=sale.id).all()
    assert sorted((e.product_id, e.quantity) for e in entries) == sorted([(a.id, 3), (b.id, 4)])
    assert all(e.actor_user_id == 5 for e in entries)


def test_invoice_numbers_are_sequential(make_product):
    product = make_product(stock=5)
    first = _sell(product).sale
    second = _sell(product).sale
    assert first.invoice_number == "INV-000001"
    assert second.invoice_number == "INV-000002"


def test_line_snapshots_survive_catalog_changes(make_product):
    product = make_product(name="Green Tea", price_cents=250, stock=5)
    sale = _sell(product, 2).sale

    catalog_service.update_product(product.id, {"name": "Matcha", "selling_price_cents": 999})

    line = sales_service.get_sale(sale.id).lines[0]
    assert line.product_name == "Green Tea"
    assert line.unit_price_cents == 250
    assert line.line_total_cents == 500


def test_duplicate_product_lines_are_merged(make_product):
    product = make_product(stock=5)

    sale = sales_service.create_sale(
        items=[{"product_id": product.id, "quantity": 2}, {"product_id": product.id, "quantity": 3}],
        payment_method="CASH",
        customer_name="Walk-in",
    ).sale

    assert len(sale.lines) == 1
    assert sale.lines[0].quantity == 5
    assert stock_ledger_service.current_stock(product.id) == 0


def test_merged_duplicates_are_checked_against_stock(make_product):
    product = make_product(stock=4)

    with pytest.raises(OutOfStock):
        sales_service.create_sale(
            items=[{"product_id": product.id, "quantity": 2}, {"product_id": product.id, "quantity": 3}],
            payment_method="CASH",
            customer_name="Walk-in",
        )


def test_one_bad_line_aborts_the_whole_sale(make_product):
    fine = make_product(stock=10)
    short = make_product(stock=1)

    with pytest.raises(OutOfStock) as exc:
        sales_service.create_sale(
            items=[{"product_id": fine.id, "quantity": 2}, {"product_id": short.id, "quantity": 3}],
            payment_method="CASH",
            customer_name="Walk-in",
        )

    assert exc.value.details["items"] == [{
        "product_id": short.id,
        "product_name": short.name,
        "requested": 3,
        "available": 1,
    }]
    assert _sale_count() == 0
    assert stock_ledger_service.current_stock(fine.id) == 10
    assert stock_ledger_service.current_stock(short.id) == 1


@pytest.mark.parametrize("items", [None, [], [{"product_id": 1, "quantity": 0}], [{"product_id": 1, "quantity": "x"}]])
def test_malformed_items_are_rejected(db_session, items):
    with pytest.raises(ValidationError):
        sales_service.create_sale(items=items, payment_method="CASH", customer_name="Walk-in")


def test_unknown_payment_method(make_product):
    product = make_product(stock=1)
    with pytest.raises(ValidationError):
        _sell(product, payment_method="CHEQUE")


def test_customer_reference_is_required(make_product):
    product = make_product(stock=1)
    with pytest.raises(ValidationError):
        sales_service.create_sale(
            items=[{"product_id": product.id, "quantity": 1}],
            payment_method="CASH",
            customer_name="   ",
        )


def test_unknown_product_and_customer(make_product):
    product = make_product(stock=1)
    with pytest.raises(NotFound):
        sales_service.create_sale(
            items=[{"product_id": 987654, "quantity": 1}],
            payment_method="CASH",
            customer_name="Walk-in",
        )
    with pytest.raises(NotFound):
        _sell(product, customer_id=987654)


def test_inactive_product_cannot_be_sold(make_product):
    product = make_product(stock=3, active=False)
    with pytest.raises(ValidationError):
        _sell(product)
    assert stock_ledger_service.current_stock(product.id) == 3


def test_client_prices_are_ignored(make_product):
    product = make_product(price_cents=1_000, stock=2)
    sale = sales_service.create_sale(
        items=[{"product_id": product.id, "quantity": 1, "unit_price_cents": 1}],
        payment_method="CASH",
        customer_name="Walk-in",
    ).sale
    assert sale.subtotal_cents == 1_000


# ---------------------------------------------------------------------------
# Coupons
# ---------------------------------------------------------------------------

def test_percentage_coupon_discounts_subtotal_plus_tax(make_product, make_customer):
    customer = make_customer()
    product = make_product(price_cents=10_000, stock=2)
    coupon = coupon_service.generate(customer_id=customer.id, discount_type=DISCOUNT_PERCENTAGE, discount_value=5)

    sale = _sell(product, customer_id=customer.id, coupon_code=coupon.code).sale

    assert sale.discount_cents == 550
    assert sale.grand_total_cents == 10_450
    assert sale.coupon_id == coupon.id
    used = db.session.get(Coupon, coupon.id)
    assert used.is_used is True
    assert used.used_in_sale_id == sale.id


def test_fixed_coupon_is_capped_at_total(make_product, make_customer):
    customer = make_customer()
    # 272.73 + 27.27 tax = 300.00
    product = make_product(price_cents=27_273, stock=1)
    coupon = coupon_service.generate(customer_id=customer.id, discount_type=DISCOUNT_FIXED, discount_value=50_000)

    sale = _sell(product, customer_id=customer.id, coupon_code=coupon.code).sale

    assert sale.subtotal_cents + sale.tax_cents == 30_000
    assert sale.discount_cents == 30_000
    assert sale.grand_total_cents == 0


def test_coupon_code_is_case_insensitive(make_product, make_customer):
    customer = make_customer()
    product = make_product(stock=1)
    coupon = coupon_service.generate(customer_id=customer.id)

    sale = _sell(product, customer_id=customer.id, coupon_code=f"  {coupon.code.lower()} ").sale
    assert sale.coupon_id == coupon.id


def test_used_coupon_aborts_second_sale(make_product, make_customer):
    customer = make_customer()
    product = make_product(stock=5)
    coupon = coupon_service.generate(customer_id=customer.id)
    _sell(product, customer_id=customer.id, coupon_code=coupon.code)

    with pytest.raises(CouponAlreadyUsed):
        _sell(product, customer_id=customer.id, coupon_code=coupon.code)

    assert _sale_count() == 1
    assert stock_ledger_service.current_stock(product.id) == 4


def test_unknown_coupon_aborts_sale(make_product):
    product = make_product(stock=1)
    with pytest.raises(CouponNotFound):
        _sell(product, coupon_code="CPN-NOPE00")
    assert stock_ledger_service.current_stock(product.id) == 1


def test_expired_coupon_aborts_sale(make_product, make_customer):
    customer = make_customer()
    product = make_product(stock=1)
    coupon = coupon_service.generate(customer_id=customer.id)
    coupon.expiry_date = utcnow() - timedelta(days=1)
    db.session.commit()

    with pytest.raises(CouponExpired):
        _sell(product, customer_id=customer.id, coupon_code=coupon.code)
    assert db.session.get(Coupon, coupon.id).is_used is False


def test_coupon_of_another_customer_is_rejected(make_product, make_customer):
    owner = make_customer()
    other = make_customer()
    product = make_product(stock=1)
    coupon = coupon_service.generate(customer_id=owner.id)

    with pytest.raises(InvalidCoupon):
        _sell(product, customer_id=other.id, coupon_code=coupon.code)
    assert db.session.get(Coupon, coupon.id).is_used is False


def test_walk_in_sale_with_coupon_is_attributed_to_coupon_owner(make_product, make_customer):
    owner = make_customer(first_name="Robin", last_name="Hale")
    product = make_product(stock=1)
    coupon = coupon_service.generate(customer_id=owner.id)

    sale = _sell(product, coupon_code=coupon.code).sale

    assert sale.customer_id == owner.id
    assert sale.customer_name == "Walk-in"


def test_coupon_is_not_consumed_when_stock_fails(make_product, make_customer):
    customer = make_customer()
    product = make_product(stock=1)
    coupon = coupon_service.generate(customer_id=customer.id)

    with pytest.raises(OutOfStock):
        _sell(product, 2, customer_id=customer.id, coupon_code=coupon.code)

    assert db.session.get(Coupon, coupon.id).is_used is False


# ---------------------------------------------------------------------------
# Loyalty
# ---------------------------------------------------------------------------

def test_sale_credits_points_and_mints_threshold_coupon(make_product, make_customer):
    customer = make_customer(points=480)
    # 6363.64 + 636.36 tax = 7000.00
    product = make_product(price_cents=636_364, stock=1)

    result = _sell(product, customer_id=customer.id)

    assert result.warnings == []
    assert result.sale.grand_total_cents == 700_000
    assert result.sale.points_earned == 70

    refreshed = db.session.get(Customer, customer.id)
    assert refreshed.loyalty_points == 550
    assert refreshed.total_purchases == 1

    minted = db.session.query(Coupon).filter_by(customer_id=customer.id, source=COUPON_SOURCE_LOYALTY).all()
    assert len(minted) == 1
    assert minted[0].discount_type == DISCOUNT_PERCENTAGE
    assert minted[0].discount_value == 5


def test_walk_in_sale_earns_no_points(make_product):
    product = make_product(price_cents=1_000_000, stock=1)
    result = _sell(product)
    assert result.sale.points_earned == 0
    assert db.session.query(Coupon).count() == 0


def test_loyalty_failure_becomes_warning(make_product, make_customer, monkeypatch):
    customer = make_customer()
    product = make_product(stock=2)

    def _boom(*args, **kwargs):
        raise RuntimeError("loyalty store unavailable")

    monkeypatch.setattr(loyalty_service, "credit", _boom)

    result = _sell(product, customer_id=customer.id)

    assert result.warnings == [sales_service.LOYALTY_WARNING]
    assert result.sale.id is not None
    assert _sale_count() == 1
    assert stock_ledger_service.current_stock(product.id) == 1


# ---------------------------------------------------------------------------
# Update / delete
# ---------------------------------------------------------------------------

def test_update_applies_net_quantity_change(make_product):
    product = make_product(price_cents=200, stock=10)
    sale = _sell(product, 2).sale

    catalog_service.update_product(product.id, {"selling_price_cents": 900})
    updated = sales_service.update_sale(sale.id, items=[{"product_id": product.id, "quantity": 5}], actor_user_id=2)

    assert stock_ledger_service.current_stock(product.id) == 5
    assert updated.lines[0].unit_price_cents == 200
    assert updated.subtotal_cents == 1_000
    assert updated.tax_cents == 100

    deltas = db.session.query(StockTransaction).filter_by(reference_type=REF_SALE_UPDATE, reference_id=sale.id).all()
    assert [(d.type, d.quantity) for d in deltas] == [("STOCK_OUT", 3)]


def test_update_checks_only_the_net_increase(make_product):
    product = make_product(stock=3)
    sale = _sell(product, 2).sale
    assert stock_ledger_service.current_stock(product.id) == 1

    updated = sales_service.update_sale(sale.id, items=[{"product_id": product.id, "quantity": 3}])

    assert updated.lines[0].quantity == 3
    assert stock_ledger_service.current_stock(product.id) == 0
    assert stock_ledger_service.reconcile(product.id)["consistent"] is True


def test_update_rejects_net_increase_beyond_stock(make_product):
    product = make_product(stock=3)
    sale = _sell(product, 2).sale

    with pytest.raises(OutOfStock) as exc:
        sales_service.update_sale(sale.id, items=[{"product_id": product.id, "quantity": 4}])

    assert exc.value.details["items"][0]["requested"] == 2
    assert stock_ledger_service.current_stock(product.id) == 1


def test_update_returns_stock_for_removed_products(make_product):
    keep = make_product(stock=5)
    drop = make_product(price_cents=700, stock=5)
    sale = sales_service.create_sale(
        items=[{"product_id": keep.id, "quantity": 1}, {"product_id": drop.id, "quantity": 2}],
        payment_method="CASH",
        customer_name="Walk-in",
    ).sale

    added = make_product(price_cents=300, stock=5)
    updated = sales_service.update_sale(
        sale.id,
        items=[{"product_id": keep.id, "quantity": 1}, {"product_id": added.id, "quantity": 1}],
    )

    assert stock_ledger_service.current_stock(keep.id) == 4
    assert stock_ledger_service.current_stock(drop.id) == 5
    assert stock_ledger_service.current_stock(added.id) == 4
    assert {line.product_id for line in updated.lines} == {keep.id, added.id}
    assert updated.subtotal_cents == 1_000 + 300


def test_update_beyond_stock_changes_nothing(make_product):
    product = make_product(stock=3)
    sale = _sell(product, 2).sale

    with pytest.raises(OutOfStock):
        sales_service.update_sale(sale.id, items=[{"product_id": product.id, "quantity": 4}])

    assert stock_ledger_service.current_stock(product.id) == 1
    assert sales_service.get_sale(sale.id).lines[0].quantity == 2


def test_update_keeps_discount_clamped(make_product, make_customer):
    customer = make_customer()
    product = make_product(price_cents=1_000, stock=10)
    coupon = coupon_service.generate(customer_id=customer.id, discount_type=DISCOUNT_FIXED, discount_value=1_500)
    sale = _sell(product, 2, customer_id=customer.id, coupon_code=coupon.code).sale
    assert sale.discount_cents == 1_500

    updated = sales_service.update_sale(sale.id, items=[{"product_id": product.id, "quantity": 1}])

    assert updated.discount_cents == 1_100
    assert updated.grand_total_cents == 0


def test_delete_returns_stock_and_keeps_loyalty(make_product, make_customer):
    customer = make_customer()
    product = make_product(price_cents=100_000, stock=3)
    sale = _sell(product, 2, customer_id=customer.id).sale
    points = db.session.get(Customer, customer.id).loyalty_points

    deleted = sales_service.delete_sale(sale.id, actor_user_id=1)

    assert deleted.status == SALE_DELETED
    assert deleted.deleted_by_user_id == 1
    assert deleted.deleted_at is not None
    assert stock_ledger_service.current_stock(product.id) == 3
    assert db.session.get(Customer, customer.id).loyalty_points == points

    back = db.session.query(StockTransaction).filter_by(reference_type=REF_SALE_DELETE, reference_id=sale.id).all()
    assert [(t.type, t.quantity) for t in back] == [("STOCK_IN", 2)]


def test_deleted_sale_cannot_change_again(make_product):
    product = make_product(stock=3)
    sale = _sell(product).sale
    sales_service.delete_sale(sale.id)

    with pytest.raises(InvalidState):
        sales_service.delete_sale(sale.id)
    with pytest.raises(InvalidState):
        sales_service.update_sale(sale.id, items=[{"product_id": product.id, "quantity": 1}])


def test_list_sales_hides_deleted_and_searches(make_product):
    product = make_product(stock=5)
    kept = _sell(product, customer_name="Alice").sale
    gone = _sell(product, customer_name="Bob").sale
    sales_service.delete_sale(gone.id)

    listed = sales_service.list_sales()
    assert [s["id"] for s in listed["items"]] == [kept.id]

    everything = sales_service.list_sales(include_deleted=True)
    assert {s["id"] for s in everything["items"]} == {kept.id, gone.id}

    found = sales_service.list_sales(search="alice")
    assert [s["id"] for s in found["items"]] == [kept.id]


def test_get_sale_unknown(db_session):
    with pytest.raises(NotFound):
        sales_service.get_sale(31337)
