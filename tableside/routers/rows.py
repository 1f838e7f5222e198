"""Response shapes. Money goes out as 2-dp numbers, enums as their values."""
from tableside.models.core import (
    DiningTable, FloorShift, Invoice, KotItem, KotTicket, Order, OrderDiscount, OrderItem, OrderItemAddon,
    Payment, SplitPayment, TableSession,
)
from tableside.util.money import money


def _money(x) -> float | None:
    return None if x is None else money(x)


def row_table(t: DiningTable, s: TableSession | None = None) -> dict:
    out = {
        "id": t.id,
        "outlet_id": t.outlet_id,
        "floor_id": t.floor_id,
        "code": t.code,
        "capacity": t.capacity,
        "status": t.status.value,
    }
    if s is not None:
        out["session"] = row_session(s)
    return out


def row_session(s: TableSession) -> dict:
    return {
        "id": s.id,
        "table_id": s.table_id,
        "floor_id": s.floor_id,
        "shift_id": s.shift_id,
        "order_id": s.order_id,
        "guest_count": s.guest_count,
        "opened_by": s.opened_by,
        "opened_at": s.opened_at,
        "closed_at": s.closed_at,
    }


def row_shift(sh: FloorShift) -> dict:
    return {
        "id": sh.id,
        "outlet_id": sh.outlet_id,
        "floor_id": sh.floor_id,
        "opened_by": sh.opened_by,
        "opened_at": sh.opened_at,
        "opening_float": _money(sh.opening_float),
        "closed_at": sh.closed_at,
        "expected_cash": _money(sh.expected_cash),
        "actual_cash": _money(sh.actual_cash),
    }


def row_order(o: Order) -> dict:
    return {
        "id": o.id,
        "outlet_id": o.outlet_id,
        "order_no": o.order_no,
        "order_type": o.order_type.value,
        "status": o.status.value,
        "table_id": o.table_id,
        "session_id": o.session_id,
        "guest_count": o.guest_count,
        "is_interstate": o.is_interstate,
        "note": o.note,
        "price_adjustment": _money(o.price_adjustment),
        "subtotal": _money(o.subtotal),
        "discount_amount": _money(o.discount_amount),
        "tax_amount": _money(o.tax_amount),
        "service_charge": _money(o.service_charge),
        "packaging_charge": _money(o.packaging_charge),
        "delivery_charge": _money(o.delivery_charge),
        "round_off": _money(o.round_off),
        "total_amount": _money(o.total_amount),
        "paid_amount": _money(o.paid_amount),
        "due_amount": _money(o.due_amount),
        "opened_at": o.opened_at,
        "billed_at": o.billed_at,
        "paid_at": o.paid_at,
        "cancelled_at": o.cancelled_at,
        "cancel_reason": o.cancel_reason,
    }


def row_item(i: OrderItem, addons: list[OrderItemAddon] | None = None) -> dict:
    return {
        "id": i.id,
        "order_id": i.order_id,
        "item_id": i.item_id,
        "variant_id": i.variant_id,
        "item_name": i.item_name,
        "variant_name": i.variant_name,
        "quantity": i.quantity,
        "unit_price": _money(i.unit_price),
        "addon_total": _money(i.addon_total),
        "line_total": _money(i.line_total),
        "station": i.station,
        "special_instructions": i.special_instructions,
        "status": i.status.value,
        "kot_id": i.kot_id,
        "cancel_reason": i.cancel_reason,
        "addons": [{"addon_id": a.addon_id, "name": a.name, "price": _money(a.price)} for a in addons or []],
    }


def row_ticket(t: KotTicket, items: list[KotItem] | None = None) -> dict:
    out = {
        "id": t.id,
        "order_id": t.order_id,
        "outlet_id": t.outlet_id,
        "kot_no": t.kot_no,
        "station": t.station,
        "table_code": t.table_code,
        "status": t.status.value,
        "accepted_at": t.accepted_at,
        "preparing_at": t.preparing_at,
        "ready_at": t.ready_at,
        "served_at": t.served_at,
        "served_by": t.served_by,
        "cancelled_at": t.cancelled_at,
        "cancel_reason": t.cancel_reason,
        "reprint_count": t.reprint_count,
    }
    if items is not None:
        out["items"] = [row_kot_item(i) for i in items]
    return out


def row_kot_item(i: KotItem) -> dict:
    return {
        "id": i.id,
        "kot_id": i.kot_id,
        "order_item_id": i.order_item_id,
        "item_name": i.item_name,
        "variant_name": i.variant_name,
        "quantity": i.quantity,
        "addons": i.addons_text,
        "special_instructions": i.special_instructions,
        "status": i.status.value,
    }


def row_discount(d: OrderDiscount) -> dict:
    return {
        "id": d.id,
        "discount_type": d.discount_type.value,
        "value": _money(d.value),
        "amount": _money(d.amount),
        "reason": d.reason,
    }


def row_invoice(inv: Invoice) -> dict:
    return {
        "id": inv.id,
        "order_id": inv.order_id,
        "invoice_no": inv.invoice_no,
        "invoice_dt": inv.invoice_dt,
        "subtotal": _money(inv.subtotal),
        "discount_amount": _money(inv.discount_amount),
        "taxable_amount": _money(inv.taxable_amount),
        "tax_breakdown": inv.tax_breakdown or {},
        "total_tax": _money(inv.total_tax),
        "service_charge": _money(inv.service_charge),
        "packaging_charge": _money(inv.packaging_charge),
        "delivery_charge": _money(inv.delivery_charge),
        "round_off": _money(inv.round_off),
        "grand_total": _money(inv.grand_total),
        "payment_status": inv.payment_status.value,
        "is_cancelled": inv.is_cancelled,
        "cancel_reason": inv.cancel_reason,
    }


def row_payment(p: Payment, splits: list[SplitPayment] | None = None) -> dict:
    return {
        "id": p.id,
        "payment_no": p.payment_no,
        "order_id": p.order_id,
        "invoice_id": p.invoice_id,
        "mode": p.mode.value,
        "amount": _money(p.amount),
        "card_last_four": p.card_last_four,
        "transaction_id": p.transaction_id,
        "reference_number": p.reference_number,
        "upi_id": p.upi_id,
        "paid_at": p.paid_at,
        "splits": [
            {"mode": s.mode.value, "amount": _money(s.amount), "reference_number": s.reference_number,
             "transaction_id": s.transaction_id}
            for s in splits or []
        ],
    }
