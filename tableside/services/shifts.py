"""Floor shifts: the cashier day session that table sessions on a floor bind to."""
import logging
from decimal import Decimal

from sqlalchemy import func
from sqlalchemy.orm import Session

from tableside.db import unit_of_work
from tableside.errors import ConflictError, NotFoundError
from tableside.models.core import FloorShift, Order, Payment, PayMode, TableSession
from tableside.util.audit import audit
from tableside.util.clock import utcnow
from tableside.util.money import q2

logger = logging.getLogger(__name__)


def current_shift(db: Session, outlet_id: str, floor_id: str) -> FloorShift | None:
    return (db.query(FloorShift)
            .filter(FloorShift.outlet_id == outlet_id, FloorShift.floor_id == floor_id,
                    FloorShift.closed_at.is_(None))
            .first())


def open_shift(db: Session, outlet_id: str, floor_id: str, actor_id: str, opening_float=0):
    with unit_of_work(db):
        existing = current_shift(db, outlet_id, floor_id)
        if existing:
            raise ConflictError("a shift is already open for this floor", {
                "shift_id": existing.id, "floor_id": floor_id})
        sh = FloorShift(outlet_id=outlet_id, floor_id=floor_id, opened_by=actor_id, opened_at=utcnow(),
                        opening_float=q2(opening_float))
        db.add(sh)
    logger.info("shift %s opened on floor %s", sh.id, floor_id)
    return sh


def _cash_taken(db: Session, shift_id: str) -> Decimal:
    # cash payments on orders whose sessions belong to this shift
    total = (db.query(func.coalesce(func.sum(Payment.amount), 0))
             .select_from(Payment)
             .join(Order, Order.id == Payment.order_id)
             .join(TableSession, TableSession.id == Order.session_id)
             .filter(TableSession.shift_id == shift_id, Payment.mode == PayMode.CASH)
             .scalar())
    return q2(total)


def close_shift(db: Session, shift_id: str, actor_id: str, actual_cash=None, expected_cash=None,
                note: str | None = None):
    """
    Close a floor shift. Expected cash defaults to the opening float plus cash
    taken at the floor's tables; the mismatch against the counted cash is returned.
    """
    with unit_of_work(db):
        sh = db.query(FloorShift).filter(FloorShift.id == shift_id).with_for_update().first()
        if not sh:
            raise NotFoundError("shift not found", {"shift_id": shift_id})
        if sh.closed_at is not None:
            raise ConflictError("shift already closed", {"shift_id": sh.id})
        still_open = (db.query(func.count(TableSession.id))
                      .filter(TableSession.shift_id == sh.id, TableSession.closed_at.is_(None))
                      .scalar())
        if still_open:
            raise ConflictError("floor still has open table sessions", {
                "shift_id": sh.id, "open_sessions": int(still_open)})

        if expected_cash is None:
            expected_cash = q2(sh.opening_float) + _cash_taken(db, sh.id)
        sh.expected_cash = q2(expected_cash)
        sh.actual_cash = q2(actual_cash) if actual_cash is not None else None
        sh.closed_at = utcnow()
        sh.closed_by = actor_id
        sh.close_note = note
        mismatch = (sh.actual_cash - sh.expected_cash) if sh.actual_cash is not None else None
        audit(db, actor_id, "FloorShift", sh.id, "CLOSE",
              after={"expected": str(sh.expected_cash), "actual": str(sh.actual_cash)}, reason=note)
    logger.info("shift %s closed (mismatch %s)", sh.id, mismatch)
    return sh, mismatch
