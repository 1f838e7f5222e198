import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from tableside.config import settings
from tableside.db import unit_of_work
from tableside.errors import ConflictError, NotFoundError, ValidationError
from tableside.models.core import (
    ACTIVE_KOT_STATUSES, TERMINAL_ORDER_STATUSES, DiningTable, KotTicket, TableSession, TableStatus,
)
from tableside.services.shifts import current_shift
from tableside.services.status import (
    lock_order, lock_table, open_session_for, order_event, refresh_table, table_updated,
)
from tableside.util.audit import audit
from tableside.util.clock import utcnow

logger = logging.getLogger(__name__)


def create_table(db: Session, outlet_id: str, code: str, floor_id: str | None = None, capacity: int = 2):
    try:
        with unit_of_work(db):
            t = DiningTable(outlet_id=outlet_id, code=code, floor_id=floor_id, capacity=capacity,
                            status=TableStatus.AVAILABLE)
            db.add(t)
    except IntegrityError:
        raise ConflictError("table code already exists", {"outlet_id": outlet_id, "code": code})
    return t


def list_tables(db: Session, outlet_id: str | None = None, floor_id: str | None = None):
    q = db.query(DiningTable).filter(DiningTable.deleted_at.is_(None))
    if outlet_id:
        q = q.filter(DiningTable.outlet_id == outlet_id)
    if floor_id:
        q = q.filter(DiningTable.floor_id == floor_id)
    return q.order_by(DiningTable.code).all()


def get_table(db: Session, table_id: str):
    t = db.get(DiningTable, table_id)
    if not t:
        raise NotFoundError("table not found", {"table_id": table_id})
    return t, open_session_for(db, table_id)


def start_session(db: Session, table_id: str, guest_count: int, actor_id: str):
    """Seat guests. Returns (session, table, effects)."""
    try:
        with unit_of_work(db):
            t = lock_table(db, table_id)
            existing = open_session_for(db, t.id)
            if existing:
                raise ConflictError("table already has an open session", {
                    "table_id": t.id, "status": t.status.value, "session_id": existing.id})
            if t.status not in (TableStatus.AVAILABLE, TableStatus.RESERVED):
                raise ConflictError(f"table is {t.status.value}", {"table_id": t.id, "status": t.status.value})

            shift = current_shift(db, t.outlet_id, t.floor_id) if t.floor_id else None
            if settings.REQUIRE_FLOOR_SHIFT and not shift:
                raise ConflictError("no open shift for this floor", {"table_id": t.id, "floor_id": t.floor_id})

            s = TableSession(
                table_id=t.id, floor_id=t.floor_id, shift_id=shift.id if shift else None,
                guest_count=guest_count, opened_by=actor_id, opened_at=utcnow(),
            )
            db.add(s)
            refresh_table(db, t.id)
            effects = [table_updated(t, s)]
    except IntegrityError:
        # lost a race with another captain on the open-session index
        raise ConflictError("table already has an open session", {"table_id": table_id})
    logger.info("session %s opened on table %s", s.id, t.code)
    return s, t, effects


def close_session(db: Session, table_id: str | None, actor_id: str) -> TableSession | None:
    """Close the open session, if any, inside the caller's unit of work."""
    if not table_id:
        return None
    s = open_session_for(db, table_id)
    if s:
        s.closed_at = utcnow()
        s.closed_by = actor_id
    return s


def end_session(db: Session, table_id: str, actor_id: str):
    """Release the table. Calling it on a table with no open session is a no-op."""
    with unit_of_work(db):
        t = lock_table(db, table_id)
        s = close_session(db, t.id, actor_id)
        _, changed = refresh_table(db, t.id)
        effects = [table_updated(t)] if (s or changed) else []
    if s:
        logger.info("session %s closed on table %s", s.id, t.code)
    return t, effects


def set_status(db: Session, table_id: str, status: TableStatus, actor_id: str, reason: str | None = None):
    """Staff override, used for cleaning/blocking and manual recovery."""
    with unit_of_work(db):
        t = lock_table(db, table_id)
        before = t.status
        t.status = status
        audit(db, actor_id, "DiningTable", t.id, "STATUS_OVERRIDE",
              before={"status": before.value}, after={"status": status.value}, reason=reason)
        effects = [table_updated(t, open_session_for(db, t.id))]
    logger.info("table %s status overridden %s -> %s", t.code, before.value, status.value)
    return t, effects


def transfer_table(db: Session, order_id: str, to_table_id: str, actor_id: str):
    """
    Move a live dine-in order and its open session to a free table, then re-derive
    both tables. Returns (order, from_table, to_table, effects).
    """
    with unit_of_work(db):
        order = lock_order(db, order_id)
        if order.status in TERMINAL_ORDER_STATUSES:
            raise ConflictError(f"order is already {order.status.value}", {
                "order_id": order.id, "status": order.status.value})
        if not order.table_id:
            raise ValidationError("order is not on a table", {"order_id": order.id})
        if order.table_id == to_table_id:
            raise ValidationError("order is already on this table", {"table_id": to_table_id})

        # tables are always locked in id order
        first, second = sorted([order.table_id, to_table_id])
        locked = {first: lock_table(db, first), second: lock_table(db, second)}
        src, dst = locked[order.table_id], locked[to_table_id]
        if dst.outlet_id != order.outlet_id:
            raise ValidationError("table belongs to another outlet", {"table_id": dst.id})
        if open_session_for(db, dst.id) or dst.status not in (TableStatus.AVAILABLE, TableStatus.RESERVED):
            raise ConflictError(f"table is {dst.status.value}", {"table_id": dst.id, "status": dst.status.value})

        s = db.get(TableSession, order.session_id) if order.session_id else None
        if s and s.closed_at is not None:
            s = None
        if s:
            s.table_id = dst.id
            s.floor_id = dst.floor_id
        order.table_id = dst.id
        order.floor_id = dst.floor_id
        for t in (db.query(KotTicket)
                  .filter(KotTicket.order_id == order.id, KotTicket.status.in_(ACTIVE_KOT_STATUSES))):
            t.table_code = dst.code

        refresh_table(db, src.id)
        refresh_table(db, dst.id)
        audit(db, actor_id, "Order", order.id, "TRANSFER",
              before={"table_id": src.id, "table": src.code}, after={"table_id": dst.id, "table": dst.code})
        effects = [
            table_updated(src),
            table_updated(dst, s),
            order_event(order, "order:transferred", from_table_id=src.id, from_table=src.code, table=dst.code),
        ]
    logger.info("order %s moved from table %s to %s", order.id, src.code, dst.code)
    return order, src, dst, effects


def release_order_session(db: Session, order, actor_id: str) -> TableSession | None:
    """Close the session an order was taken on once the order is paid or cancelled."""
    if not order.session_id:
        return None
    s = db.get(TableSession, order.session_id)
    if s and s.closed_at is None:
        s.closed_at = utcnow()
        s.closed_by = actor_id
        return s
    return None
