"""
Derived state shared by every component.

Order and table statuses are never set from arbitrary call sites: each unit of
work ends by re-deriving them from the rows it touched.
"""
from sqlalchemy.orm import Session

from tableside.errors import NotFoundError
from tableside.models.core import (
    DiningTable, ItemStatus, KOTStatus, KotTicket, Order, OrderItem, OrderStatus, TableSession, TableStatus,
)
from tableside.util.money import money
from tableside.services.effects import Broadcast, captain_room, table_rooms

STICKY_ORDER_STATUSES = (OrderStatus.BILLED, OrderStatus.PAID, OrderStatus.CANCELLED)
IDLE_OVERRIDES = (TableStatus.RESERVED, TableStatus.CLEANING, TableStatus.BLOCKED)


def derive_order_status(ticket_statuses, has_unsent_items: bool, current: OrderStatus | None = None) -> OrderStatus:
    """
    Aggregate of the order's tickets. billed/paid/cancelled are owned by billing,
    payment and cancellation and are returned unchanged. Items not yet sent to the
    kitchen hold the order at preparing even when every ticket is ready or served.
    """
    if current in STICKY_ORDER_STATUSES:
        return current
    live = [s for s in ticket_statuses if s != KOTStatus.CANCELLED]
    if not live:
        return OrderStatus.PENDING
    if not has_unsent_items:
        if all(s == KOTStatus.SERVED for s in live):
            return OrderStatus.SERVED
        if all(s in (KOTStatus.READY, KOTStatus.SERVED) for s in live):
            return OrderStatus.READY
    if any(s in (KOTStatus.PREPARING, KOTStatus.READY, KOTStatus.SERVED) for s in live):
        return OrderStatus.PREPARING
    return OrderStatus.CONFIRMED


def recompute_table_status(current: TableStatus, has_open_session: bool, kot_sent: bool, billed: bool) -> TableStatus:
    if has_open_session:
        if billed:
            return TableStatus.BILLING
        if kot_sent:
            return TableStatus.RUNNING
        return TableStatus.OCCUPIED
    # staff overrides survive while nobody is seated
    if current in IDLE_OVERRIDES:
        return current
    return TableStatus.AVAILABLE


# ── Row access ──────────────────────────────────────────────────────────────
def lock_order(db: Session, order_id: str) -> Order:
    o = db.query(Order).filter(Order.id == order_id).with_for_update().first()
    if not o:
        raise NotFoundError("order not found", {"order_id": order_id})
    return o


def lock_table(db: Session, table_id: str) -> DiningTable:
    t = db.query(DiningTable).filter(DiningTable.id == table_id).with_for_update().first()
    if not t:
        raise NotFoundError("table not found", {"table_id": table_id})
    return t


def open_session_for(db: Session, table_id: str) -> TableSession | None:
    return (db.query(TableSession)
            .filter(TableSession.table_id == table_id, TableSession.closed_at.is_(None))
            .first())


# ── Refresh after a write ───────────────────────────────────────────────────
def refresh_order_status(db: Session, order: Order, reopen: bool = False) -> OrderStatus:
    """Re-derive from tickets. `reopen` drops a billed status whose invoice was superseded."""
    db.flush()
    tickets = [s for (s,) in db.query(KotTicket.status).filter(KotTicket.order_id == order.id).all()]
    unsent = (db.query(OrderItem.id)
              .filter(OrderItem.order_id == order.id, OrderItem.status == ItemStatus.PENDING)
              .first()) is not None
    current = order.status
    if reopen and current == OrderStatus.BILLED:
        current = None
        order.billed_at = None
        order.billed_by = None
    order.status = derive_order_status(tickets, unsent, current)
    return order.status


def refresh_table(db: Session, table_id: str | None) -> tuple[DiningTable | None, bool]:
    """Recompute a table's status from its open session and that session's order."""
    if not table_id:
        return None, False
    db.flush()
    t = db.get(DiningTable, table_id)
    if not t:
        return None, False
    s = open_session_for(db, table_id)
    kot_sent = billed = False
    if s and s.order_id:
        o = db.get(Order, s.order_id)
        billed = bool(o and o.status == OrderStatus.BILLED)
        kot_sent = (db.query(KotTicket.id)
                    .filter(KotTicket.order_id == s.order_id, KotTicket.status != KOTStatus.CANCELLED)
                    .first()) is not None
    new = recompute_table_status(t.status, s is not None, kot_sent, billed)
    changed = new != t.status
    t.status = new
    return t, changed


def table_updated(t: DiningTable, session: TableSession | None = None) -> Broadcast:
    return Broadcast(table_rooms(t.outlet_id, t.floor_id), "table:updated", {
        "table_id": t.id,
        "code": t.code,
        "floor_id": t.floor_id,
        "status": t.status.value,
        "session_id": session.id if session else None,
    })


def order_event(order: Order, event: str, **extra) -> Broadcast:
    return Broadcast((captain_room(order.outlet_id),), event, {
        "order_id": order.id,
        "order_no": order.order_no,
        "table_id": order.table_id,
        "status": order.status.value,
        "total_amount": money(order.total_amount or 0),
        "due_amount": money(order.due_amount or 0),
        **extra,
    })
