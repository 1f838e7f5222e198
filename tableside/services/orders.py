import logging
from dataclasses import dataclass, field
from decimal import Decimal

from sqlalchemy import func
from sqlalchemy.orm import Session

from tableside.db import unit_of_work
from tableside.errors import ConflictError, NotFoundError, ValidationError
from tableside.models.core import (
    TERMINAL_ORDER_STATUSES, DiningTable, Invoice, ItemStatus, KOTItemStatus, KOTStatus, KotItem, KotTicket,
    Order, OrderDiscount, OrderItem, OrderItemAddon, OrderStatus, OrderType, TableSession,
)
from tableside.services.billing import recalculate_totals, reopen_if_billed, supersede_invoice
from tableside.services.catalog import Catalog
from tableside.services.kot import (
    active_tickets, cancel_slip, cancel_ticket_rows, kot_event, ticket_items, ticket_payload,
)
from tableside.services.payments import payments_for_order
from tableside.services.status import (
    lock_order, lock_table, open_session_for, order_event, refresh_order_status, refresh_table, table_updated,
)
from tableside.services.tables import release_order_session
from tableside.util.audit import audit
from tableside.util.clock import day_start_utc, utcnow
from tableside.util.money import q2

logger = logging.getLogger(__name__)


@dataclass
class NewItem:
    item_id: str
    quantity: int = 1
    variant_id: str | None = None
    addon_ids: list[str] = field(default_factory=list)
    special_instructions: str | None = None


def _next_order_no(db: Session, outlet_id: str) -> int:
    n = (db.query(func.count(Order.id))
         .filter(Order.outlet_id == outlet_id, Order.created_at >= day_start_utc())
         .scalar()) or 0
    return int(n) + 1


def _ensure_not_terminal(order: Order, exc=ConflictError):
    if order.status in TERMINAL_ORDER_STATUSES:
        raise exc(f"order is already {order.status.value}", {"order_id": order.id, "status": order.status.value})


# ── Create ──────────────────────────────────────────────────────────────────
def create_order(db: Session, outlet_id: str, order_type: OrderType, actor_id: str,
                 table_id: str | None = None, session_id: str | None = None, guest_count: int = 1,
                 is_interstate: bool = False, note: str | None = None):
    """
    Open a guest check. A dine-in order lives on the table's open session, and a
    session carries at most one active order.
    """
    with unit_of_work(db):
        session = None
        if order_type == OrderType.DINE_IN:
            if not table_id and session_id:
                s = db.get(TableSession, session_id)
                table_id = s.table_id if s else None
            if not table_id:
                raise ValidationError("dine-in orders need a table", {"order_type": order_type.value})
            t = lock_table(db, table_id)
            session = open_session_for(db, t.id)
            if not session or (session_id and session.id != session_id):
                raise ConflictError("table has no open session", {
                    "table_id": t.id, "status": t.status.value, "session_id": session_id})
            if session.order_id:
                current = db.get(Order, session.order_id)
                if current and current.status not in TERMINAL_ORDER_STATUSES:
                    raise ConflictError("session already has an active order", {
                        "session_id": session.id, "order_id": current.id, "status": current.status.value})
            if t.outlet_id != outlet_id:
                raise ValidationError("table belongs to another outlet", {"table_id": t.id})
        else:
            table_id = None

        now = utcnow()
        o = Order(
            outlet_id=outlet_id,
            order_no=_next_order_no(db, outlet_id),
            order_type=order_type,
            status=OrderStatus.PENDING,
            table_id=table_id,
            session_id=session.id if session else None,
            floor_id=session.floor_id if session else None,
            guest_count=guest_count or (session.guest_count if session else 1),
            is_interstate=is_interstate,
            note=note,
            opened_by=actor_id,
            opened_at=now,
        )
        db.add(o)
        db.flush()
        if session:
            session.order_id = o.id
        effects = [order_event(o, "order:created")]
    logger.info("order %s (#%s, %s) opened", o.id, o.order_no, order_type.value)
    return o, effects


# ── Items ───────────────────────────────────────────────────────────────────
def add_items(db: Session, catalog: Catalog, order_id: str, items: list[NewItem], actor_id: str):
    with unit_of_work(db):
        order = lock_order(db, order_id)
        _ensure_not_terminal(order, ValidationError)
        if not items:
            raise ValidationError("no items to add", {"order_id": order.id})

        # resolve everything before writing anything
        resolved = []
        for it in items:
            if it.quantity < 1:
                raise ValidationError("quantity must be at least 1", {"item_id": it.item_id, "quantity": it.quantity})
            resolved.append((it, catalog.resolve_item(order.outlet_id, it.item_id, it.variant_id, it.addon_ids)))

        added = []
        for it, info in resolved:
            addon_total = sum((a.price for a in info.addons), Decimal("0"))
            oi = OrderItem(
                order_id=order.id,
                item_id=info.item_id,
                variant_id=info.variant_id,
                item_name=info.name,
                variant_name=info.variant_name,
                quantity=it.quantity,
                unit_price=q2(info.unit_price),
                addon_total=q2(addon_total),
                line_total=q2((info.unit_price + addon_total) * it.quantity),
                tax_group_id=info.tax_group_id,
                special_instructions=it.special_instructions,
                status=ItemStatus.PENDING,
                created_by=actor_id,
            )
            db.add(oi)
            db.flush()
            for a in info.addons:
                db.add(OrderItemAddon(order_item_id=oi.id, addon_id=a.addon_id, name=a.name, price=q2(a.price)))
            added.append(oi)

        effects = reopen_if_billed(db, order, actor_id, "items added")
        refresh_order_status(db, order)
        recalculate_totals(db, order, catalog)
        effects.insert(0, order_event(order, "order:updated", added=len(added)))
    return added, order, effects


def update_item_quantity(db: Session, catalog: Catalog, item_id: str, quantity: int, actor_id: str):
    """Only items not yet sent to the kitchen can change quantity."""
    oi = db.get(OrderItem, item_id)
    if not oi:
        raise NotFoundError("order item not found", {"item_id": item_id})
    with unit_of_work(db):
        order = lock_order(db, oi.order_id)
        db.refresh(oi)
        _ensure_not_terminal(order, ValidationError)
        if oi.status != ItemStatus.PENDING:
            raise ConflictError(f"item is already {oi.status.value}", {"item_id": oi.id, "status": oi.status.value})
        if quantity < 1:
            raise ValidationError("quantity must be at least 1", {"item_id": oi.id, "quantity": quantity})
        before = oi.quantity
        oi.quantity = quantity
        oi.line_total = q2((Decimal(oi.unit_price) + Decimal(oi.addon_total or 0)) * quantity)
        effects = reopen_if_billed(db, order, actor_id, "item quantity changed")
        recalculate_totals(db, order, catalog)
        audit(db, actor_id, "OrderItem", oi.id, "QTY", before={"quantity": before}, after={"quantity": quantity})
        effects.insert(0, order_event(order, "order:updated"))
    return oi, order, effects


def cancel_item(db: Session, catalog: Catalog, item_id: str, actor_id: str, reason: str,
                approved_by: str | None = None):
    """
    Void one line. Printed ticket content is left alone; the ticket only tracks the
    item as cancelled, and goes away entirely when nothing live remains on it.
    """
    oi = db.get(OrderItem, item_id)
    if not oi:
        raise NotFoundError("order item not found", {"item_id": item_id})
    with unit_of_work(db):
        order = lock_order(db, oi.order_id)
        db.refresh(oi)
        _ensure_not_terminal(order)
        if oi.status in (ItemStatus.CANCELLED, ItemStatus.SERVED):
            raise ConflictError(f"item is already {oi.status.value}", {"item_id": oi.id, "status": oi.status.value})
        if oi.status in (ItemStatus.PREPARING, ItemStatus.READY) and not approved_by:
            raise ValidationError("cancelling an item the kitchen has started needs approval", {
                "item_id": oi.id, "status": oi.status.value})

        oi.status = ItemStatus.CANCELLED
        oi.cancel_reason = reason
        oi.cancelled_by = actor_id
        oi.cancelled_at = utcnow()

        effects = []
        if oi.kot_id:
            t = db.get(KotTicket, oi.kot_id)
            kis = (db.query(KotItem)
                   .filter(KotItem.kot_id == t.id, KotItem.order_item_id == oi.id,
                           KotItem.status != KOTItemStatus.CANCELLED)
                   .all())
            for ki in kis:
                ki.status = KOTItemStatus.CANCELLED
            db.flush()
            live = [i for i in ticket_items(db, t.id) if i.status != KOTItemStatus.CANCELLED]
            if not live and t.status != KOTStatus.CANCELLED:
                cancel_ticket_rows(db, t, reason, actor_id)
                effects.append(kot_event(t, "kot:cancelled", {**ticket_payload(t, kis), "reason": reason}))
            else:
                effects.append(kot_event(t, "kot:item_cancelled", {
                    "kot_id": t.id, "kot_no": t.kot_no, "station": t.station,
                    "order_item_id": oi.id, "name": oi.item_name, "qty": oi.quantity, "reason": reason}))
            effects.append(cancel_slip(t, kis, reason))

        effects += reopen_if_billed(db, order, actor_id, "item cancelled")
        refresh_order_status(db, order)
        recalculate_totals(db, order, catalog)
        tbl, changed = refresh_table(db, order.table_id)
        if changed:
            effects.append(table_updated(tbl))
        effects.append(order_event(order, "order:updated", cancelled_item=oi.id))
        audit(db, actor_id, "OrderItem", oi.id, "CANCEL", reason=reason,
              after={"approved_by": approved_by} if approved_by else None)
    return oi, order, effects


# ── Cancel order ────────────────────────────────────────────────────────────
def cancel_order(db: Session, catalog: Catalog, order_id: str, actor_id: str, reason: str | None = None):
    """
    Cancel everything the order still has in flight in one unit of work, then let
    the caller dispatch one cancellation per ticket plus the order and table events.

    A part-paid bill is voided with its payments kept for reconciliation. Totals are
    recomputed over whatever was already served.
    """
    with unit_of_work(db):
        order = lock_order(db, order_id)
        _ensure_not_terminal(order)

        effects = []
        for t in active_tickets(db, order.id):
            items = cancel_ticket_rows(db, t, reason, actor_id)
            effects.append(kot_event(t, "kot:cancelled", {**ticket_payload(t, items, order), "reason": reason}))
            effects.append(cancel_slip(t, items, reason))

        now = utcnow()
        for oi in db.query(OrderItem).filter(OrderItem.order_id == order.id).all():
            if oi.status not in (ItemStatus.CANCELLED, ItemStatus.SERVED):
                oi.status = ItemStatus.CANCELLED
                oi.cancel_reason = reason
                oi.cancelled_by = actor_id
                oi.cancelled_at = now

        supersede_invoice(db, order, actor_id, "order cancelled", keep_payments=True)
        before = order.status
        order.status = OrderStatus.CANCELLED
        order.cancelled_by = actor_id
        order.cancelled_at = now
        order.cancel_reason = reason
        recalculate_totals(db, order, catalog)

        release_order_session(db, order, actor_id)
        tbl, _ = refresh_table(db, order.table_id)
        audit(db, actor_id, "Order", order.id, "CANCEL", before={"status": before.value},
              after={"status": order.status.value}, reason=reason)

        effects.append(order_event(order, "order:cancelled", reason=reason))
        if tbl:
            effects.append(table_updated(tbl))
    logger.info("order %s cancelled (%d ticket(s))", order.id,
                sum(1 for e in effects if getattr(e, "event", None) == "kot:cancelled"))
    return order, effects


# ── Queries ─────────────────────────────────────────────────────────────────
def get_order(db: Session, order_id: str) -> dict:
    o = db.get(Order, order_id)
    if not o:
        raise NotFoundError("order not found", {"order_id": order_id})
    items = db.query(OrderItem).filter(OrderItem.order_id == o.id).order_by(OrderItem.created_at, OrderItem.id).all()
    addons = {}
    if items:
        for a in db.query(OrderItemAddon).filter(OrderItemAddon.order_item_id.in_([i.id for i in items])):
            addons.setdefault(a.order_item_id, []).append(a)
    tickets = db.query(KotTicket).filter(KotTicket.order_id == o.id).order_by(KotTicket.created_at, KotTicket.id).all()
    return {
        "order": o,
        "table": db.get(DiningTable, o.table_id) if o.table_id else None,
        "session": db.get(TableSession, o.session_id) if o.session_id else None,
        "items": [(i, addons.get(i.id, [])) for i in items],
        "tickets": [(t, ticket_items(db, t.id)) for t in tickets],
        "discounts": db.query(OrderDiscount).filter(OrderDiscount.order_id == o.id)
                       .order_by(OrderDiscount.created_at, OrderDiscount.id).all(),
        "invoices": db.query(Invoice).filter(Invoice.order_id == o.id).order_by(Invoice.created_at).all(),
        "payments": payments_for_order(db, o.id),
    }


def list_orders(db: Session, outlet_id: str | None = None, status: OrderStatus | None = None,
                table_id: str | None = None, page: int = 1, size: int = 20):
    q = db.query(Order)
    if outlet_id:
        q = q.filter(Order.outlet_id == outlet_id)
    if status:
        q = q.filter(Order.status == status)
    if table_id:
        q = q.filter(Order.table_id == table_id)

    # simple pagination math
    if page < 1:
        page = 1
    if size < 1:
        size = 20
    total = q.count()
    rows = (q.order_by(Order.created_at.desc(), Order.order_no.desc(), Order.id.desc())
            .offset((page - 1) * size)
            .limit(size)
            .all())
    return rows, total
