"""
Settlement against the order's live invoice.

Payments accumulate until nothing is due. The payment that clears the bill also
closes the order out: remaining items and tickets are marked served, the session
ends and the table is released. Nobody has to remember a separate release step.
"""
import logging
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import func
from sqlalchemy.orm import Session

from tableside.db import unit_of_work
from tableside.errors import ConflictError, ValidationError
from tableside.models.core import (
    InvoicePayStatus, ItemStatus, Order, OrderItem, OrderStatus, Payment, PayMode, SplitPayment,
)
from tableside.services.billing import active_invoice
from tableside.services.kot import active_tickets, kot_event, serve_ticket_rows
from tableside.services.status import lock_order, order_event, refresh_table, table_updated
from tableside.services.tables import release_order_session
from tableside.util.audit import audit
from tableside.util.clock import utcnow
from tableside.util.money import ZERO, money, q2

logger = logging.getLogger(__name__)

# fields a payment may carry; none of them are validated beyond type
PAYMENT_META = (
    "card_last_four", "card_type", "transaction_id", "reference_number", "upi_id",
    "wallet_name", "bank_name", "notes",
)
SPLIT_META = ("transaction_id", "reference_number", "card_last_four", "upi_id", "notes")


@dataclass
class SplitPart:
    mode: PayMode
    amount: Decimal
    transaction_id: str | None = None
    reference_number: str | None = None
    card_last_four: str | None = None
    upi_id: str | None = None
    notes: str | None = None


@dataclass
class Settlement:
    payment: Payment
    order: Order
    invoice_id: str
    paid_amount: Decimal
    due_amount: Decimal
    change: Decimal
    payment_status: str  # partial / completed


def _open_for_payment(db: Session, order_id: str, invoice_id: str):
    order = lock_order(db, order_id)
    if order.status in (OrderStatus.PAID, OrderStatus.CANCELLED):
        raise ConflictError(f"order is already {order.status.value}", {
            "order_id": order.id, "status": order.status.value})
    if order.status != OrderStatus.BILLED:
        raise ConflictError("order has not been billed", {"order_id": order.id, "status": order.status.value})
    inv = active_invoice(db, order.id)
    if not inv or inv.id != invoice_id:
        raise ConflictError("invoice is not the order's active invoice", {
            "invoice_id": invoice_id, "active_invoice_id": inv.id if inv else None})
    return order, inv


def _payment_no(db: Session, inv) -> str:
    n = db.query(func.count(Payment.id)).filter(Payment.invoice_id == inv.id).scalar() or 0
    return f"{inv.invoice_no}-P{int(n) + 1}"


def _settle(db: Session, order: Order, inv, p: Payment, actor_id: str) -> tuple[Settlement, list]:
    db.flush()
    paid = q2(db.query(func.coalesce(func.sum(Payment.amount), 0)).filter(Payment.order_id == order.id).scalar())
    total = q2(order.total_amount)
    due = max(total - paid, ZERO)
    order.paid_amount = paid
    order.due_amount = due

    effects = []
    if due > 0:
        inv.payment_status = InvoicePayStatus.PARTIAL
        effects.append(order_event(order, "order:payment_received", payment_id=p.id, amount=money(p.amount)))
        status = "partial"
    else:
        inv.payment_status = InvoicePayStatus.PAID
        order.status = OrderStatus.PAID
        order.paid_at = utcnow()
        for t in active_tickets(db, order.id):
            serve_ticket_rows(db, t, actor_id)
            effects.append(kot_event(t, "kot:served"))
        for oi in db.query(OrderItem).filter(OrderItem.order_id == order.id).all():
            if oi.status not in (ItemStatus.CANCELLED, ItemStatus.SERVED):
                oi.status = ItemStatus.SERVED
        release_order_session(db, order, actor_id)
        tbl, _ = refresh_table(db, order.table_id)
        effects.append(order_event(order, "order:paid", payment_id=p.id, change=money(max(paid - total, ZERO))))
        if tbl:
            effects.append(table_updated(tbl))
        status = "completed"

    audit(db, actor_id, "Order", order.id, "PAYMENT", after={
        "payment_no": p.payment_no, "mode": p.mode.value, "amount": str(p.amount), "due": str(due)})
    return Settlement(
        payment=p, order=order, invoice_id=inv.id, paid_amount=paid, due_amount=due,
        change=max(paid - total, ZERO), payment_status=status,
    ), effects


def record_payment(db: Session, order_id: str, invoice_id: str, mode: PayMode, amount, actor_id: str, **meta):
    """Take one payment. Overpayment is accepted and reported back as change."""
    amount = q2(amount)
    if amount <= 0:
        raise ValidationError("payment amount must be positive", {"amount": float(amount)})
    if mode == PayMode.SPLIT:
        raise ValidationError("split payments must list their parts", {"mode": mode.value})
    with unit_of_work(db):
        order, inv = _open_for_payment(db, order_id, invoice_id)
        p = Payment(
            order_id=order.id, invoice_id=inv.id, payment_no=_payment_no(db, inv), mode=mode, amount=amount,
            received_by=actor_id, paid_at=utcnow(),
            **{k: meta.get(k) for k in PAYMENT_META},
        )
        db.add(p)
        result, effects = _settle(db, order, inv, p, actor_id)
    logger.info("order %s: %s payment %s, due %s", order.id, mode.value, amount, result.due_amount)
    return result, effects


def record_split_payment(db: Session, order_id: str, invoice_id: str, splits: list[SplitPart], actor_id: str,
                         notes: str | None = None):
    """One payment of mode `split`, itemized per tender."""
    if not splits:
        raise ValidationError("split payment needs at least one part", {})
    for s in splits:
        if s.mode == PayMode.SPLIT:
            raise ValidationError("a split part cannot itself be split", {})
        if q2(s.amount) <= 0:
            raise ValidationError("payment amount must be positive", {"amount": float(s.amount)})
    total = sum((q2(s.amount) for s in splits), ZERO)

    with unit_of_work(db):
        order, inv = _open_for_payment(db, order_id, invoice_id)
        p = Payment(
            order_id=order.id, invoice_id=inv.id, payment_no=_payment_no(db, inv), mode=PayMode.SPLIT,
            amount=total, notes=notes, received_by=actor_id, paid_at=utcnow(),
        )
        db.add(p)
        db.flush()
        for s in splits:
            db.add(SplitPayment(payment_id=p.id, mode=s.mode, amount=q2(s.amount),
                                **{k: getattr(s, k) for k in SPLIT_META}))
        result, effects = _settle(db, order, inv, p, actor_id)
    logger.info("order %s: split payment %s over %d part(s)", order.id, total, len(splits))
    return result, effects


def payments_for_order(db: Session, order_id: str) -> list[tuple[Payment, list[SplitPayment]]]:
    rows = db.query(Payment).filter(Payment.order_id == order_id).order_by(Payment.created_at, Payment.id).all()
    splits = {}
    if rows:
        for sp in db.query(SplitPayment).filter(SplitPayment.payment_id.in_([p.id for p in rows])):
            splits.setdefault(sp.payment_id, []).append(sp)
    return [(p, splits.get(p.id, [])) for p in rows]
