# test_billing.py
import re
from decimal import Decimal

import pytest

from tableside.errors import ConflictError, NotFoundError, ValidationError
from tableside.models.core import (
    ChargeMode, DiningTable, DiscountType, Invoice, OrderStatus, OrderType, TableStatus,
)
from tableside.services import billing, kot, orders, tables
from tableside.services.billing import BillLine, DiscountRule, compute_bill, validate_discount
from tableside.services.catalog import ChargeConfig, TaxComponentInfo
from tableside.services.orders import NewItem

INVOICE_NO = re.compile(r"^INV-\d{8}-\d{4}$")

GST5 = {"gst": [TaxComponentInfo("CGST", "CGST", Decimal("2.5")), TaxComponentInfo("SGST", "SGST", Decimal("2.5"))]}
CHARGES = ChargeConfig(
    service_charge_mode=ChargeMode.PERCENT, service_charge_value=Decimal("10"),
    packing_charge_mode=ChargeMode.FLAT, packing_charge_value=Decimal("20"), delivery_charge=Decimal("40"),
)


def _flat(v):
    return DiscountRule(DiscountType.FLAT, Decimal(v))


def _pct(v):
    return DiscountRule(DiscountType.PERCENTAGE, Decimal(v))


def _balanced(x):
    return (x.subtotal - x.discount_amount + x.tax_amount + x.service_charge + x.packaging_charge
            + x.delivery_charge + x.round_off)


# ── Pure computation ────────────────────────────────────────────────────────
def test_compute_bill_dine_in_with_flat_discount():
    bd = compute_bill([BillLine(Decimal("1000"), "gst")], [_flat("100")], GST5, CHARGES)
    assert bd.subtotal == Decimal("1000.00")
    assert bd.discount_amount == Decimal("100.00")
    assert bd.taxable_amount == Decimal("900.00")
    assert bd.total_tax == Decimal("45.00")
    assert bd.tax_breakdown["CGST@2.50"]["tax_amount"] == 22.5
    assert bd.tax_breakdown["SGST@2.50"]["taxable_amount"] == 900.0
    assert bd.service_charge == Decimal("90.00")
    assert bd.packaging_charge == bd.delivery_charge == Decimal("0.00")
    assert bd.round_off == Decimal("0.00")
    assert bd.grand_total == Decimal("1035.00")


def test_compute_bill_rounds_to_whole_unit():
    bd = compute_bill([BillLine(Decimal("250"), "gst")], [], GST5, CHARGES)
    # 250 + 12.50 tax + 25 service
    assert bd.grand_total == Decimal("288.00")
    assert bd.round_off == Decimal("0.50")


def test_compute_bill_interstate_folds_to_igst():
    bd = compute_bill([BillLine(Decimal("1000"), "gst")], [], GST5, CHARGES, is_interstate=True)
    assert list(bd.tax_breakdown) == ["IGST@5.00"]
    assert bd.tax_breakdown["IGST@5.00"]["tax_amount"] == 50.0
    assert bd.total_tax == Decimal("50.00")


def test_compute_bill_spreads_discount_over_tax_groups():
    lines = [BillLine(Decimal("1000"), "gst"), BillLine(Decimal("40"), None)]
    bd = compute_bill(lines, [_flat("104")], GST5, CHARGES)
    # 100 of the discount lands on the taxed group, 4 on the untaxed one
    assert bd.tax_breakdown["CGST@2.50"]["taxable_amount"] == 900.0
    assert bd.total_tax == Decimal("45.00")
    assert bd.taxable_amount == Decimal("936.00")


@pytest.mark.parametrize("order_type, packaging, delivery, service", [
    (OrderType.DINE_IN, "0.00", "0.00", "100.00"),
    (OrderType.TAKEAWAY, "20.00", "0.00", "0.00"),
    (OrderType.DELIVERY, "20.00", "40.00", "0.00"),
])
def test_compute_bill_charges_by_order_type(order_type, packaging, delivery, service):
    bd = compute_bill([BillLine(Decimal("1000"), "gst")], [], GST5, CHARGES, order_type=order_type)
    assert bd.packaging_charge == Decimal(packaging)
    assert bd.delivery_charge == Decimal(delivery)
    assert bd.service_charge == Decimal(service)


def test_compute_bill_service_override_and_adjustment():
    bd = compute_bill([BillLine(Decimal("1000"), "gst")], [], GST5, CHARGES,
                      price_adjustment=Decimal("-50"), apply_service_charge=False)
    assert bd.subtotal == Decimal("950.00")
    assert bd.service_charge == Decimal("0.00")
    # the adjustment is not taxed
    assert bd.total_tax == Decimal("50.00")
    assert bd.grand_total == Decimal("1000.00")


def test_percentage_discounts_use_subtotal_and_cap():
    bd = compute_bill([BillLine(Decimal("1000"), "gst")], [_pct("60"), _pct("60")], GST5, CHARGES)
    assert bd.discount_amounts == [Decimal("600.00"), Decimal("400.00")]
    assert bd.grand_total == Decimal("0.00")


@pytest.mark.parametrize("existing, new, message", [
    ([], _pct("120"), "percentage discount exceeds 100%"),
    ([], _flat("0"), "discount value must be positive"),
    ([_pct("100")], _flat("1"), "discount exceeds remaining subtotal: a 100% discount is already applied"),
    ([_flat("900")], _flat("200"), "discount exceeds remaining subtotal"),
])
def test_validate_discount_rejects(existing, new, message):
    with pytest.raises(ValidationError) as ei:
        validate_discount(Decimal("1000.00"), existing, new)
    assert ei.value.message == message


def test_validate_discount_reports_remaining():
    with pytest.raises(ValidationError) as ei:
        validate_discount(Decimal("1000.00"), [_flat("900")], _flat("200"))
    assert ei.value.detail == {"subtotal": 1000.0, "applied": 900.0, "remaining": 100.0, "requested": 200.0}
    assert validate_discount(Decimal("1000.00"), [_flat("900")], _flat("100")) == Decimal("100.00")


# ── Bills on orders ─────────────────────────────────────────────────────────
def _dine_in(db, menu, catalog, *items):
    tables.start_session(db, menu.t1, 2, "captain-1")
    o, _ = orders.create_order(db, menu.outlet_id, OrderType.DINE_IN, "captain-1", table_id=menu.t1)
    orders.add_items(db, catalog, o.id, [NewItem(i) for i in items], "captain-1")
    return o


def test_generate_bill_snapshots_order(db, menu, catalog):
    o = _dine_in(db, menu, catalog, menu.thali)
    kot.send_kot(db, catalog, o.id, "captain-1")

    inv, order, effects = billing.generate_bill(db, catalog, o.id, "cashier-1",
                                                discount=_flat("100"), discount_reason="regular")
    assert INVOICE_NO.match(inv.invoice_no) and inv.invoice_no.endswith("-0001")
    assert inv.grand_total == Decimal("1035.00") and inv.round_off == Decimal("0.00")
    assert inv.tax_breakdown["CGST@2.50"]["tax_amount"] == 22.5
    assert order.status == OrderStatus.BILLED and order.billed_by == "cashier-1"
    assert order.total_amount == inv.grand_total and order.due_amount == inv.grand_total
    assert _balanced(order) == order.total_amount
    assert db.get(DiningTable, menu.t1).status == TableStatus.BILLING

    assert [getattr(e, "event", None) or e.kind for e in effects] == ["order:billed", "table:updated", "bill"]
    bill = effects[-1].payload
    assert bill["invoice_no"] == inv.invoice_no and bill["table"] == "T1"
    assert bill["lines"] == [{"name": "Royal Thali", "variant": None, "qty": 1, "amount": 1000.0}]


def test_rebill_supersedes_unpaid_invoice(db, menu, catalog):
    o = _dine_in(db, menu, catalog, menu.thali)
    first, _, _ = billing.generate_bill(db, catalog, o.id, "cashier-1")
    second, order, _ = billing.generate_bill(db, catalog, o.id, "cashier-1", apply_service_charge=False)

    db.refresh(first)
    assert first.is_cancelled and first.cancel_reason == "re-billed"
    assert second.invoice_no.endswith("-0002")
    assert second.service_charge == Decimal("0.00") and second.grand_total == Decimal("1050.00")
    assert billing.active_invoice(db, o.id).id == second.id
    assert db.query(Invoice).filter(Invoice.order_id == o.id, Invoice.is_cancelled.is_(False)).count() == 1


def test_changing_billed_order_reopens_it(db, menu, catalog):
    o = _dine_in(db, menu, catalog, menu.thali)
    inv, _, _ = billing.generate_bill(db, catalog, o.id, "cashier-1")

    _, order, effects = orders.add_items(db, catalog, o.id, [NewItem(menu.soda)], "captain-1")
    db.refresh(inv)
    assert inv.is_cancelled
    assert order.status == OrderStatus.PENDING and order.billed_at is None
    assert order.subtotal == Decimal("1090.00")
    assert db.get(DiningTable, menu.t1).status == TableStatus.OCCUPIED
    assert "table:updated" in [e.event for e in effects]


def test_bill_needs_items(db, menu, catalog):
    tables.start_session(db, menu.t1, 2, "captain-1")
    o, _ = orders.create_order(db, menu.outlet_id, OrderType.DINE_IN, "captain-1", table_id=menu.t1)
    with pytest.raises(ValidationError):
        billing.generate_bill(db, catalog, o.id, "cashier-1")
    assert db.query(Invoice).count() == 0


@pytest.mark.parametrize("order_type, total", [
    (OrderType.TAKEAWAY, Decimal("1070.00")),
    (OrderType.DELIVERY, Decimal("1110.00")),
])
def test_takeaway_and_delivery_bills(db, menu, catalog, order_type, total):
    o, _ = orders.create_order(db, menu.outlet_id, order_type, "cashier-1")
    orders.add_items(db, catalog, o.id, [NewItem(menu.thali)], "cashier-1")
    inv, order, effects = billing.generate_bill(db, catalog, o.id, "cashier-1")
    assert inv.service_charge == Decimal("0.00") and inv.packaging_charge == Decimal("20.00")
    assert inv.grand_total == total
    assert _balanced(order) == total
    assert [getattr(e, "event", None) or e.kind for e in effects] == ["order:billed", "bill"]


def test_interstate_order_bills_igst(db, menu, catalog):
    o, _ = orders.create_order(db, menu.outlet_id, OrderType.TAKEAWAY, "cashier-1", is_interstate=True)
    orders.add_items(db, catalog, o.id, [NewItem(menu.paneer)], "cashier-1")
    inv, _, _ = billing.generate_bill(db, catalog, o.id, "cashier-1")
    assert list(inv.tax_breakdown) == ["IGST@5.00"]
    # 250 + 12.50 + 20 packing
    assert inv.grand_total == Decimal("283.00") and inv.round_off == Decimal("0.50")


def test_apply_and_remove_discount(db, menu, catalog):
    o = _dine_in(db, menu, catalog, menu.thali)
    d, order, _ = billing.apply_discount(db, catalog, o.id, "manager-1", DiscountType.PERCENTAGE, 10, "birthday")
    assert d.amount == Decimal("100.00")
    assert order.discount_amount == Decimal("100.00") and order.total_amount == Decimal("1035.00")

    with pytest.raises(ValidationError):
        billing.apply_discount(db, catalog, o.id, "manager-1", DiscountType.FLAT, 950)

    order, _ = billing.remove_discount(db, catalog, o.id, d.id, "manager-1")
    assert order.discount_amount == Decimal("0.00") and order.total_amount == Decimal("1150.00")
    with pytest.raises(NotFoundError):
        billing.remove_discount(db, catalog, o.id, d.id, "manager-1")


def test_cancel_invoice_returns_order_to_service(db, menu, catalog):
    o = _dine_in(db, menu, catalog, menu.thali)
    kot.send_kot(db, catalog, o.id, "captain-1")
    inv, _, _ = billing.generate_bill(db, catalog, o.id, "cashier-1")

    with pytest.raises(ConflictError):
        billing.cancel_invoice(db, o.id, "not-the-invoice", "manager-1")

    inv, order, effects = billing.cancel_invoice(db, o.id, inv.id, "manager-1", "wrong table")
    assert inv.is_cancelled and inv.cancel_reason == "wrong table"
    assert order.status == OrderStatus.CONFIRMED
    assert db.get(DiningTable, menu.t1).status == TableStatus.RUNNING
    assert [e.event for e in effects] == ["order:updated", "table:updated"]
