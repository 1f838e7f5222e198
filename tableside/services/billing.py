import logging
from dataclasses import dataclass, field
from decimal import Decimal

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from tableside.db import unit_of_work
from tableside.errors import ConflictError, NotFoundError, ValidationError
from tableside.models.core import (
    ChargeMode, DiscountType, DiningTable, Invoice, InvoicePayStatus, ItemStatus, Order, OrderDiscount,
    OrderItem, OrderStatus, OrderType, OutletSettings, Payment, TERMINAL_ORDER_STATUSES,
)
from tableside.services.catalog import Catalog, ChargeConfig, TaxComponentInfo
from tableside.services.effects import PrintJob
from tableside.services.status import lock_order, order_event, refresh_order_status, refresh_table, table_updated
from tableside.util.audit import audit
from tableside.util.clock import local_today, utcnow
from tableside.util.money import ZERO, money, q2, round_unit

logger = logging.getLogger(__name__)

INVOICE_NO_ATTEMPTS = 3


@dataclass
class BillLine:
    line_total: Decimal
    tax_group_id: str | None


@dataclass
class DiscountRule:
    discount_type: DiscountType
    value: Decimal


@dataclass
class BillBreakdown:
    items_total: Decimal
    price_adjustment: Decimal
    subtotal: Decimal
    discount_amount: Decimal
    taxable_amount: Decimal
    total_tax: Decimal
    service_charge: Decimal
    packaging_charge: Decimal
    delivery_charge: Decimal
    round_off: Decimal
    grand_total: Decimal
    tax_breakdown: dict = field(default_factory=dict)
    discount_amounts: list[Decimal] = field(default_factory=list)


# ── Pure computation ────────────────────────────────────────────────────────
def _discount_value(subtotal: Decimal, d: DiscountRule) -> Decimal:
    if d.discount_type == DiscountType.PERCENTAGE:
        return q2(subtotal * Decimal(d.value) / 100)
    return q2(d.value)


def discount_amounts(subtotal: Decimal, discounts: list[DiscountRule]) -> list[Decimal]:
    """Amount of each discount, in order, capped by whatever subtotal is left."""
    remaining = max(subtotal, ZERO)
    out = []
    for d in discounts:
        amt = min(_discount_value(subtotal, d), remaining)
        remaining -= amt
        out.append(amt)
    return out


def validate_discount(subtotal: Decimal, existing: list[DiscountRule], new: DiscountRule) -> Decimal:
    """Returns the amount the new discount would take; raises if it breaks the caps."""
    value = Decimal(new.value)
    if value <= 0:
        raise ValidationError("discount value must be positive", {"value": float(value)})
    if new.discount_type == DiscountType.PERCENTAGE and value > 100:
        raise ValidationError("percentage discount exceeds 100%", {"value": float(value)})
    if any(d.discount_type == DiscountType.PERCENTAGE and Decimal(d.value) >= 100 for d in existing):
        raise ValidationError("discount exceeds remaining subtotal: a 100% discount is already applied",
                              {"subtotal": money(subtotal), "remaining": 0.0})

    applied = sum(discount_amounts(subtotal, existing), ZERO)
    amount = _discount_value(subtotal, new)
    if applied + amount > subtotal:
        raise ValidationError("discount exceeds remaining subtotal", {
            "subtotal": money(subtotal),
            "applied": money(applied),
            "remaining": money(max(subtotal - applied, ZERO)),
            "requested": money(amount),
        })
    return amount


def _fold_interstate(components: list[TaxComponentInfo]) -> list[TaxComponentInfo]:
    gst = [c for c in components if c.code.upper() in ("CGST", "SGST")]
    if not gst:
        return components
    rest = [c for c in components if c.code.upper() not in ("CGST", "SGST")]
    return [TaxComponentInfo(code="IGST", name="IGST", rate=sum((c.rate for c in gst), Decimal("0")))] + rest


def _charge(mode: ChargeMode, value: Decimal, base: Decimal) -> Decimal:
    if mode == ChargeMode.PERCENT:
        return q2(base * Decimal(value) / 100)
    if mode == ChargeMode.FLAT:
        return q2(value)
    return ZERO


def compute_bill(
    lines: list[BillLine],
    discounts: list[DiscountRule],
    tax_components: dict[str, list[TaxComponentInfo]],
    charges: ChargeConfig,
    order_type: OrderType = OrderType.DINE_IN,
    is_interstate: bool = False,
    price_adjustment=0,
    apply_service_charge: bool | None = None,
) -> BillBreakdown:
    items_total = sum((q2(l.line_total) for l in lines), ZERO)
    adjustment = q2(price_adjustment)
    subtotal = items_total + adjustment

    amounts = discount_amounts(subtotal, discounts)
    discount = sum(amounts, ZERO)

    # tax per group on its share of the post-discount amount
    groups: dict[str | None, Decimal] = {}
    for l in lines:
        groups[l.tax_group_id] = groups.get(l.tax_group_id, ZERO) + q2(l.line_total)

    breakdown: dict[str, dict] = {}
    total_tax = taxable_total = allotted = ZERO
    keys = list(groups)
    for i, gid in enumerate(keys):
        group_total = groups[gid]
        if i == len(keys) - 1:
            share = discount - allotted
        else:
            share = q2(discount * group_total / items_total) if items_total else ZERO
        allotted += share
        taxable = max(group_total - share, ZERO)
        taxable_total += taxable
        if gid is None:
            continue
        comps = tax_components.get(gid, [])
        for c in (_fold_interstate(comps) if is_interstate else comps):
            tax = q2(taxable * c.rate / 100)
            key = f"{c.code}@{q2(c.rate)}"
            entry = breakdown.setdefault(key, {
                "code": c.code, "name": c.name, "rate": float(c.rate),
                "taxable_amount": ZERO, "tax_amount": ZERO,
            })
            entry["taxable_amount"] += taxable
            entry["tax_amount"] += tax
            total_tax += tax

    base = subtotal - discount
    if apply_service_charge is None:
        apply_service_charge = charges.service_charge_mode != ChargeMode.NONE and (
            order_type == OrderType.DINE_IN or not charges.service_charge_dine_in_only)
    service = _charge(charges.service_charge_mode, charges.service_charge_value, base) if apply_service_charge else ZERO
    packaging = ZERO
    if order_type in (OrderType.TAKEAWAY, OrderType.DELIVERY):
        packaging = _charge(charges.packing_charge_mode, charges.packing_charge_value, base)
    delivery = q2(charges.delivery_charge) if order_type == OrderType.DELIVERY else ZERO

    raw = base + total_tax + service + packaging + delivery
    grand = round_unit(raw)

    return BillBreakdown(
        items_total=items_total,
        price_adjustment=adjustment,
        subtotal=subtotal,
        discount_amount=discount,
        taxable_amount=taxable_total,
        total_tax=total_tax,
        service_charge=service,
        packaging_charge=packaging,
        delivery_charge=delivery,
        round_off=grand - raw,
        grand_total=grand,
        tax_breakdown={k: {**v, "taxable_amount": money(v["taxable_amount"]), "tax_amount": money(v["tax_amount"])}
                       for k, v in breakdown.items()},
        discount_amounts=amounts,
    )


# ── Order totals ────────────────────────────────────────────────────────────
def active_items(db: Session, order_id: str) -> list[OrderItem]:
    return (db.query(OrderItem)
            .filter(OrderItem.order_id == order_id, OrderItem.status != ItemStatus.CANCELLED)
            .order_by(OrderItem.created_at, OrderItem.id)
            .all())


def order_discounts(db: Session, order_id: str) -> list[OrderDiscount]:
    return (db.query(OrderDiscount)
            .filter(OrderDiscount.order_id == order_id)
            .order_by(OrderDiscount.created_at, OrderDiscount.id)
            .all())


def recalculate_totals(db: Session, order: Order, catalog: Catalog) -> BillBreakdown:
    """Recompute every monetary field on the order from its live items and discounts."""
    db.flush()
    items = active_items(db, order.id)
    discounts = order_discounts(db, order.id)
    groups = {i.tax_group_id for i in items if i.tax_group_id}
    comps = {gid: catalog.tax_components(gid) for gid in sorted(groups)}
    charges = catalog.charge_config(order.outlet_id)

    bd = compute_bill(
        [BillLine(i.line_total, i.tax_group_id) for i in items],
        [DiscountRule(d.discount_type, d.value) for d in discounts],
        comps, charges,
        order_type=order.order_type,
        is_interstate=bool(order.is_interstate),
        price_adjustment=order.price_adjustment or 0,
        apply_service_charge=order.service_charge_enabled,
    )
    for d, amt in zip(discounts, bd.discount_amounts):
        d.amount = amt

    order.subtotal = bd.subtotal
    order.discount_amount = bd.discount_amount
    order.tax_amount = bd.total_tax
    order.service_charge = bd.service_charge
    order.packaging_charge = bd.packaging_charge
    order.delivery_charge = bd.delivery_charge
    order.round_off = bd.round_off
    order.total_amount = bd.grand_total
    order.due_amount = max(bd.grand_total - q2(order.paid_amount), ZERO)
    return bd


# ── Invoices ────────────────────────────────────────────────────────────────
def active_invoice(db: Session, order_id: str) -> Invoice | None:
    return (db.query(Invoice)
            .filter(Invoice.order_id == order_id, Invoice.is_cancelled.is_(False))
            .order_by(Invoice.created_at.desc())
            .first())


def _paid_against(db: Session, invoice_id: str) -> Decimal:
    return q2(db.query(func.coalesce(func.sum(Payment.amount), 0)).filter(Payment.invoice_id == invoice_id).scalar())


def supersede_invoice(db: Session, order: Order, actor_id: str, reason: str,
                      keep_payments: bool = False) -> Invoice | None:
    """
    Cancel the order's live invoice so the order can change; refused once money was
    taken unless `keep_payments` is set, in which case the payment rows stay on the
    voided invoice.
    """
    inv = active_invoice(db, order.id)
    if not inv:
        return None
    paid = _paid_against(db, inv.id)
    if paid > 0 and not keep_payments:
        raise ConflictError("invoice already has payments recorded", {
            "invoice_id": inv.id, "invoice_no": inv.invoice_no, "paid_amount": money(paid),
            "order_status": order.status.value,
        })
    inv.is_cancelled = True
    inv.cancelled_at = utcnow()
    inv.cancelled_by = actor_id
    inv.cancel_reason = reason
    audit(db, actor_id, "Invoice", inv.id, "CANCEL", reason=reason,
          after={"paid_amount": str(paid)} if paid > 0 else None)
    if paid > 0:
        logger.warning("invoice %s voided with %s already paid", inv.invoice_no, paid)
    return inv


def reopen_if_billed(db: Session, order: Order, actor_id: str, reason: str) -> list:
    """A billed order that changes loses its unpaid bill and goes back to its ticket-derived status."""
    if order.status != OrderStatus.BILLED:
        return []
    supersede_invoice(db, order, actor_id, reason)
    refresh_order_status(db, order, reopen=True)
    t, changed = refresh_table(db, order.table_id)
    return [table_updated(t)] if changed else []


def _next_invoice_no(db: Session, bump: int) -> str:
    prefix = f"INV-{local_today().strftime('%Y%m%d')}"
    n = int(db.query(func.count(Invoice.id)).filter(Invoice.invoice_no.like(f"{prefix}-%")).scalar() or 0)
    return f"{prefix}-{n + 1 + bump:04d}"


def _invoice_print_payload(db: Session, order: Order, inv: Invoice) -> dict:
    table = db.get(DiningTable, order.table_id) if order.table_id else None
    os_ = db.query(OutletSettings).filter(OutletSettings.outlet_id == order.outlet_id).first()
    return {
        "invoice_no": inv.invoice_no,
        "order_no": order.order_no,
        "order_type": order.order_type.value,
        "table": table.code if table else None,
        "lines": [
            {"name": i.item_name, "variant": i.variant_name, "qty": i.quantity, "amount": money(i.line_total)}
            for i in active_items(db, order.id)
        ],
        "subtotal": money(inv.subtotal),
        "discount": money(inv.discount_amount),
        "taxes": inv.tax_breakdown,
        "service_charge": money(inv.service_charge),
        "packaging_charge": money(inv.packaging_charge),
        "delivery_charge": money(inv.delivery_charge),
        "round_off": money(inv.round_off),
        "grand_total": money(inv.grand_total),
        "footer": os_.invoice_footer if os_ else None,
    }


def _add_discount(db: Session, order: Order, discount_type: DiscountType, value, reason: str | None,
                  actor_id: str) -> OrderDiscount:
    db.flush()
    subtotal = sum((q2(i.line_total) for i in active_items(db, order.id)), ZERO) + q2(order.price_adjustment)
    existing = [DiscountRule(d.discount_type, d.value) for d in order_discounts(db, order.id)]
    amount = validate_discount(subtotal, existing, DiscountRule(discount_type, Decimal(str(value))))
    d = OrderDiscount(order_id=order.id, discount_type=discount_type, value=q2(value), amount=amount,
                      reason=reason, applied_by=actor_id)
    db.add(d)
    audit(db, actor_id, "Order", order.id, "DISCOUNT", after={
        "type": discount_type.value, "value": str(value), "amount": str(amount)}, reason=reason)
    return d


def _ensure_open(order: Order):
    if order.status in TERMINAL_ORDER_STATUSES:
        raise ConflictError(f"order is already {order.status.value}", {"order_id": order.id, "status": order.status.value})


def generate_bill(db: Session, catalog: Catalog, order_id: str, actor_id: str,
                  discount: DiscountRule | None = None, discount_reason: str | None = None,
                  apply_service_charge: bool | None = None):
    """
    Snapshot the order into a new invoice, superseding any unpaid one.

    Returns (invoice, order, effects). The invoice number is a daily sequence; a
    clash with a concurrent bill rolls the whole unit back and tries the next number.
    """
    for attempt in range(INVOICE_NO_ATTEMPTS):
        try:
            with unit_of_work(db):
                order = lock_order(db, order_id)
                _ensure_open(order)
                if not active_items(db, order.id):
                    raise ValidationError("no active items to bill", {"order_id": order.id})

                if discount is not None:
                    _add_discount(db, order, discount.discount_type, discount.value, discount_reason, actor_id)
                if apply_service_charge is not None:
                    order.service_charge_enabled = apply_service_charge

                supersede_invoice(db, order, actor_id, "re-billed")
                bd = recalculate_totals(db, order, catalog)

                now = utcnow()
                inv = Invoice(
                    outlet_id=order.outlet_id,
                    order_id=order.id,
                    invoice_no=_next_invoice_no(db, attempt),
                    invoice_dt=now,
                    subtotal=bd.subtotal,
                    discount_amount=bd.discount_amount,
                    taxable_amount=bd.taxable_amount,
                    tax_breakdown=bd.tax_breakdown,
                    total_tax=bd.total_tax,
                    service_charge=bd.service_charge,
                    packaging_charge=bd.packaging_charge,
                    delivery_charge=bd.delivery_charge,
                    round_off=bd.round_off,
                    grand_total=bd.grand_total,
                    payment_status=InvoicePayStatus.PENDING,
                    generated_by=actor_id,
                )
                db.add(inv)
                order.status = OrderStatus.BILLED
                order.billed_by = actor_id
                order.billed_at = now

                t, changed = refresh_table(db, order.table_id)
                audit(db, actor_id, "Order", order.id, "BILL", after={
                    "invoice_no": inv.invoice_no, "grand_total": str(bd.grand_total)})

                effects = [order_event(order, "order:billed", invoice_id=inv.id, invoice_no=inv.invoice_no,
                                       grand_total=money(inv.grand_total))]
                if changed:
                    effects.append(table_updated(t))
                effects.append(PrintJob("bill", None, _invoice_print_payload(db, order, inv)))
            logger.info("order %s billed as %s (%s)", order.id, inv.invoice_no, bd.grand_total)
            return inv, order, effects
        except IntegrityError:
            logger.warning("invoice number clash for order %s (attempt %d)", order_id, attempt + 1)

    raise ConflictError("could not allocate a unique invoice number", {"order_id": order_id})


def apply_discount(db: Session, catalog: Catalog, order_id: str, actor_id: str,
                   discount_type: DiscountType, value, reason: str | None = None):
    with unit_of_work(db):
        order = lock_order(db, order_id)
        _ensure_open(order)
        d = _add_discount(db, order, discount_type, value, reason, actor_id)
        effects = reopen_if_billed(db, order, actor_id, "discount applied")
        recalculate_totals(db, order, catalog)
        effects.insert(0, order_event(order, "order:updated"))
    return d, order, effects


def remove_discount(db: Session, catalog: Catalog, order_id: str, discount_id: str, actor_id: str):
    with unit_of_work(db):
        order = lock_order(db, order_id)
        _ensure_open(order)
        d = db.get(OrderDiscount, discount_id)
        if not d or d.order_id != order.id:
            raise NotFoundError("discount not found", {"discount_id": discount_id})
        audit(db, actor_id, "Order", order.id, "DISCOUNT_REMOVE", before={
            "type": d.discount_type.value, "value": str(d.value), "amount": str(d.amount)})
        db.delete(d)
        effects = reopen_if_billed(db, order, actor_id, "discount removed")
        recalculate_totals(db, order, catalog)
        effects.insert(0, order_event(order, "order:updated"))
    return order, effects


def cancel_invoice(db: Session, order_id: str, invoice_id: str, actor_id: str, reason: str | None = None):
    with unit_of_work(db):
        order = lock_order(db, order_id)
        _ensure_open(order)
        inv = active_invoice(db, order.id)
        if not inv or inv.id != invoice_id:
            raise ConflictError("invoice is not the order's active invoice", {
                "invoice_id": invoice_id, "active_invoice_id": inv.id if inv else None})
        supersede_invoice(db, order, actor_id, reason or "cancelled")
        refresh_order_status(db, order, reopen=True)
        t, changed = refresh_table(db, order.table_id)
        effects = [order_event(order, "order:updated", invoice_cancelled=inv.id)]
        if changed:
            effects.append(table_updated(t))
    return inv, order, effects
