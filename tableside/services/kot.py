"""
Kitchen order tickets.

send_kot partitions an order's unsent items by preparation station and opens one
ticket per station. Each ticket then walks pending -> accepted -> preparing ->
ready -> served, or is cancelled from any active state.
"""
import logging
from collections import OrderedDict

from sqlalchemy import func
from sqlalchemy.orm import Session

from tableside.db import unit_of_work
from tableside.errors import ConflictError, NotFoundError, ValidationError
from tableside.models.core import (
    ACTIVE_KOT_STATUSES, TERMINAL_ORDER_STATUSES, DiningTable, ItemStatus, KOTItemStatus, KOTStatus, KotItem,
    KotTicket, Order, OrderItem, OrderItemAddon,
)
from tableside.services.billing import recalculate_totals, reopen_if_billed
from tableside.services.catalog import Catalog
from tableside.services.effects import Broadcast, PrintJob, captain_room, kot_rooms
from tableside.services.status import lock_order, order_event, refresh_order_status, refresh_table, table_updated
from tableside.util.audit import audit
from tableside.util.clock import day_start_utc, local_today, utcnow

logger = logging.getLogger(__name__)

# ticket status -> matching status for its order items
_ITEM_STATUS_FOR = {
    KOTItemStatus.PREPARING: ItemStatus.PREPARING,
    KOTItemStatus.READY: ItemStatus.READY,
    KOTItemStatus.SERVED: ItemStatus.SERVED,
    KOTItemStatus.CANCELLED: ItemStatus.CANCELLED,
}


# ── Payloads ────────────────────────────────────────────────────────────────
def ticket_items(db: Session, kot_id: str) -> list[KotItem]:
    return db.query(KotItem).filter(KotItem.kot_id == kot_id).order_by(KotItem.created_at, KotItem.id).all()


def ticket_payload(t: KotTicket, items: list[KotItem], order: Order | None = None) -> dict:
    return {
        "kot_id": t.id,
        "kot_no": t.kot_no,
        "order_id": t.order_id,
        "order_no": order.order_no if order else None,
        "station": t.station,
        "table": t.table_code,
        "status": t.status.value,
        "items": [
            {
                "kot_item_id": i.id,
                "order_item_id": i.order_item_id,
                "name": i.item_name,
                "variant": i.variant_name,
                "qty": i.quantity,
                "addons": i.addons_text,
                "instructions": i.special_instructions,
                "status": i.status.value,
            }
            for i in items
        ],
    }


def kot_event(t: KotTicket, event: str, payload: dict | None = None) -> Broadcast:
    return Broadcast(kot_rooms(t.outlet_id, t.station), event, payload or {
        "kot_id": t.id, "kot_no": t.kot_no, "order_id": t.order_id, "station": t.station,
        "status": t.status.value,
    })


def cancel_slip(t: KotTicket, items: list[KotItem], reason: str | None) -> PrintJob:
    return PrintJob("cancel_slip", t.station, {
        "kot_no": t.kot_no,
        "table": t.table_code,
        "reason": reason,
        "items": [{"name": i.item_name, "variant": i.variant_name, "qty": i.quantity} for i in items],
    })


# ── Cascades used by orders / payments ──────────────────────────────────────
def set_ticket_items(db: Session, t: KotTicket, status: KOTItemStatus, only_from=None, reason: str | None = None,
                     actor_id: str | None = None) -> list[KotItem]:
    """Move a ticket's live items (and their order items) to `status`; returns the items moved."""
    moved = []
    for ki in ticket_items(db, t.id):
        if ki.status in (KOTItemStatus.CANCELLED, KOTItemStatus.SERVED):
            continue
        if only_from and ki.status not in only_from:
            continue
        ki.status = status
        moved.append(ki)
        oi = db.get(OrderItem, ki.order_item_id)
        if oi and oi.status not in (ItemStatus.CANCELLED, ItemStatus.SERVED):
            oi.status = _ITEM_STATUS_FOR[status]
            if status == KOTItemStatus.CANCELLED:
                oi.cancel_reason = reason
                oi.cancelled_by = actor_id
                oi.cancelled_at = utcnow()
    return moved


def cancel_ticket_rows(db: Session, t: KotTicket, reason: str | None, actor_id: str) -> list[KotItem]:
    t.status = KOTStatus.CANCELLED
    t.cancelled_at = utcnow()
    t.cancel_reason = reason
    return set_ticket_items(db, t, KOTItemStatus.CANCELLED, reason=reason, actor_id=actor_id)


def serve_ticket_rows(db: Session, t: KotTicket, actor_id: str):
    t.status = KOTStatus.SERVED
    t.served_at = utcnow()
    t.served_by = actor_id
    set_ticket_items(db, t, KOTItemStatus.SERVED)


def active_tickets(db: Session, order_id: str) -> list[KotTicket]:
    return (db.query(KotTicket)
            .filter(KotTicket.order_id == order_id, KotTicket.status.in_(ACTIVE_KOT_STATUSES))
            .order_by(KotTicket.created_at, KotTicket.id)
            .all())


# ── Send ────────────────────────────────────────────────────────────────────
def _next_kot_no(db: Session, outlet_id: str, station: str) -> str:
    prefix = "BOT" if station == "bar" else "KOT"
    n = (db.query(func.count(KotTicket.id))
         .filter(KotTicket.outlet_id == outlet_id, KotTicket.station == station,
                 KotTicket.created_at >= day_start_utc())
         .scalar()) or 0
    return f"{prefix}{local_today().strftime('%m%d')}{n + 1:03d}"


def send_kot(db: Session, catalog: Catalog, order_id: str, actor_id: str):
    """Ticket every unsent item, one ticket per station. Returns (tickets, order, effects)."""
    with unit_of_work(db):
        order = lock_order(db, order_id)
        if order.status in TERMINAL_ORDER_STATUSES:
            raise ConflictError(f"order is already {order.status.value}", {
                "order_id": order.id, "status": order.status.value})
        pending = (db.query(OrderItem)
                   .filter(OrderItem.order_id == order.id, OrderItem.status == ItemStatus.PENDING,
                           OrderItem.kot_id.is_(None))
                   .order_by(OrderItem.created_at, OrderItem.id)
                   .all())
        if not pending:
            raise ValidationError("no pending items to send", {"order_id": order.id})

        by_station: OrderedDict[str, list[OrderItem]] = OrderedDict()
        for oi in pending:
            oi.station = catalog.station_for(order.outlet_id, oi.item_id)
            by_station.setdefault(oi.station, []).append(oi)

        table = db.get(DiningTable, order.table_id) if order.table_id else None
        tickets, effects = [], []
        for station, items in by_station.items():
            t = KotTicket(
                order_id=order.id, outlet_id=order.outlet_id, station=station,
                kot_no=_next_kot_no(db, order.outlet_id, station),
                table_code=table.code if table else None,
                status=KOTStatus.PENDING, created_by=actor_id,
            )
            db.add(t)
            db.flush()
            kis = []
            for oi in items:
                addons = [a.name for a in db.query(OrderItemAddon).filter(OrderItemAddon.order_item_id == oi.id)]
                ki = KotItem(
                    kot_id=t.id, order_item_id=oi.id, item_name=oi.item_name, variant_name=oi.variant_name,
                    quantity=oi.quantity, addons_text=", ".join(addons) or None,
                    special_instructions=oi.special_instructions, status=KOTItemStatus.PENDING,
                )
                db.add(ki)
                kis.append(ki)
                oi.status = ItemStatus.SENT
                oi.kot_id = t.id
            db.flush()
            tickets.append(t)
            payload = ticket_payload(t, kis, order)
            effects.append(kot_event(t, "kot:created", payload))
            effects.append(PrintJob("kot", station, payload))

        refresh_order_status(db, order)
        tbl, changed = refresh_table(db, order.table_id)
        effects.append(order_event(order, "order:updated", kot_nos=[t.kot_no for t in tickets]))
        if changed:
            effects.append(table_updated(tbl))
    logger.info("order %s sent %d ticket(s): %s", order.id, len(tickets), ", ".join(t.kot_no for t in tickets))
    return tickets, order, effects


# ── Transitions ─────────────────────────────────────────────────────────────
def _load_for_update(db: Session, ticket_id: str) -> tuple[KotTicket, Order]:
    t = db.get(KotTicket, ticket_id)
    if not t:
        raise NotFoundError("ticket not found", {"kot_id": ticket_id})
    # serialize with other writers on the same order
    order = lock_order(db, t.order_id)
    db.refresh(t)
    return t, order


def _expect(t: KotTicket, *allowed: KOTStatus, action: str):
    if t.status not in allowed:
        raise ConflictError(f"cannot {action} a {t.status.value} ticket", {
            "kot_id": t.id, "status": t.status.value, "allowed_from": [s.value for s in allowed]})


def accept(db: Session, ticket_id: str, actor_id: str):
    with unit_of_work(db):
        t, order = _load_for_update(db, ticket_id)
        _expect(t, KOTStatus.PENDING, action="accept")
        t.status = KOTStatus.ACCEPTED
        t.accepted_at = utcnow()
        t.accepted_by = actor_id
        refresh_order_status(db, order)
        effects = [kot_event(t, "kot:accepted")]
    return t, effects


def start_preparing(db: Session, ticket_id: str, actor_id: str):
    with unit_of_work(db):
        t, order = _load_for_update(db, ticket_id)
        _expect(t, KOTStatus.ACCEPTED, action="start preparing")
        t.status = KOTStatus.PREPARING
        t.preparing_at = utcnow()
        set_ticket_items(db, t, KOTItemStatus.PREPARING, only_from=(KOTItemStatus.PENDING,))
        refresh_order_status(db, order)
        effects = [kot_event(t, "kot:preparing"), order_event(order, "order:updated")]
    return t, effects


def mark_ready(db: Session, ticket_id: str, actor_id: str):
    with unit_of_work(db):
        t, order = _load_for_update(db, ticket_id)
        _expect(t, KOTStatus.PREPARING, action="mark ready")
        _ready(db, t)
        refresh_order_status(db, order)
        effects = [kot_event(t, "kot:ready"), order_event(order, "order:updated", kot_no=t.kot_no)]
    return t, effects


def _ready(db: Session, t: KotTicket):
    t.status = KOTStatus.READY
    t.ready_at = utcnow()
    set_ticket_items(db, t, KOTItemStatus.READY, only_from=(KOTItemStatus.PENDING, KOTItemStatus.PREPARING))


def mark_item_ready(db: Session, kot_item_id: str, actor_id: str):
    """One dish is up. The ticket follows once every live item on it is ready."""
    ki = db.get(KotItem, kot_item_id)
    if not ki:
        raise NotFoundError("ticket item not found", {"kot_item_id": kot_item_id})
    with unit_of_work(db):
        t, order = _load_for_update(db, ki.kot_id)
        db.refresh(ki)
        _expect(t, KOTStatus.PENDING, KOTStatus.ACCEPTED, KOTStatus.PREPARING, action="mark items ready on")
        if ki.status not in (KOTItemStatus.PENDING, KOTItemStatus.PREPARING):
            raise ConflictError(f"item is already {ki.status.value}", {
                "kot_item_id": ki.id, "status": ki.status.value})
        ki.status = KOTItemStatus.READY
        oi = db.get(OrderItem, ki.order_item_id)
        if oi:
            oi.status = ItemStatus.READY

        db.flush()
        live = [i for i in ticket_items(db, t.id) if i.status != KOTItemStatus.CANCELLED]
        ticket_ready = all(i.status == KOTItemStatus.READY for i in live)
        if ticket_ready:
            _ready(db, t)
        refresh_order_status(db, order)

        effects = [
            kot_event(t, "kot:item_ready", {"kot_id": t.id, "kot_no": t.kot_no, "kot_item_id": ki.id,
                                            "name": ki.item_name, "station": t.station}),
            Broadcast((captain_room(order.outlet_id),), "item:ready", {
                "order_id": order.id, "table": t.table_code, "kot_no": t.kot_no,
                "name": ki.item_name, "qty": ki.quantity}),
        ]
        if ticket_ready:
            effects.append(kot_event(t, "kot:ready"))
    return ki, t, effects


def mark_served(db: Session, ticket_id: str, actor_id: str):
    with unit_of_work(db):
        t, order = _load_for_update(db, ticket_id)
        _expect(t, KOTStatus.READY, action="serve")
        serve_ticket_rows(db, t, actor_id)
        refresh_order_status(db, order)
        effects = [kot_event(t, "kot:served"), order_event(order, "order:updated", kot_no=t.kot_no)]
    return t, order, effects


def cancel(db: Session, catalog: Catalog, ticket_id: str, actor_id: str, reason: str | None = None):
    with unit_of_work(db):
        t, order = _load_for_update(db, ticket_id)
        _expect(t, *ACTIVE_KOT_STATUSES, action="cancel")
        items = cancel_ticket_rows(db, t, reason, actor_id)
        effects = [kot_event(t, "kot:cancelled", {**ticket_payload(t, items), "reason": reason}),
                   cancel_slip(t, items, reason)]
        effects += reopen_if_billed(db, order, actor_id, "ticket cancelled")
        refresh_order_status(db, order)
        recalculate_totals(db, order, catalog)
        tbl, changed = refresh_table(db, order.table_id)
        effects.append(order_event(order, "order:updated"))
        if changed:
            effects.append(table_updated(tbl))
        audit(db, actor_id, "KotTicket", t.id, "CANCEL", reason=reason)
    logger.info("ticket %s cancelled", t.kot_no)
    return t, effects


def reprint_ticket(db: Session, ticket_id: str, actor_id: str, reason: str | None = None):
    with unit_of_work(db):
        t = db.query(KotTicket).filter(KotTicket.id == ticket_id).with_for_update().first()
        if not t:
            raise NotFoundError("ticket not found", {"kot_id": ticket_id})
        t.reprint_count = (t.reprint_count or 0) + 1
        audit(db, actor_id, "KotTicket", t.id, "REPRINT", reason=reason)
        order = db.get(Order, t.order_id)
        payload = {**ticket_payload(t, ticket_items(db, t.id), order), "reprint": True}
        effects = [PrintJob("kot", t.station, payload)]
    return t, effects


# ── Queries ─────────────────────────────────────────────────────────────────
def get_ticket(db: Session, ticket_id: str) -> tuple[KotTicket, list[KotItem]]:
    t = db.get(KotTicket, ticket_id)
    if not t:
        raise NotFoundError("ticket not found", {"kot_id": ticket_id})
    return t, ticket_items(db, t.id)


def list_tickets(db: Session, outlet_id: str | None = None, station: str | None = None,
                 status: KOTStatus | None = None, active_only: bool = False) -> list[KotTicket]:
    q = db.query(KotTicket)
    if outlet_id:
        q = q.filter(KotTicket.outlet_id == outlet_id)
    if station:
        q = q.filter(KotTicket.station == station)
    if status:
        q = q.filter(KotTicket.status == status)
    elif active_only:
        q = q.filter(KotTicket.status.in_(ACTIVE_KOT_STATUSES))
    return q.order_by(KotTicket.created_at, KotTicket.id).all()


def tickets_for_order(db: Session, order_id: str) -> list[KotTicket]:
    return db.query(KotTicket).filter(KotTicket.order_id == order_id).order_by(KotTicket.created_at, KotTicket.id).all()
