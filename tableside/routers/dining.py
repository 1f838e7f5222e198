from fastapi import APIRouter, BackgroundTasks, Depends
from sqlalchemy.orm import Session

from tableside.db import get_db
from tableside.deps import Actor, require_actor
from tableside.models.core import TableStatus
from tableside.routers.rows import row_order, row_session, row_shift, row_table
from tableside.schemas.dining import SessionIn, ShiftCloseIn, ShiftOpenIn, TableIn, TableStatusIn, TransferIn
from tableside.services import shifts, tables
from tableside.services.effects import EffectDispatcher, get_dispatcher
from tableside.util.money import money

router = APIRouter(prefix="/dining", tags=["dining"])


# ------------------------------------------------------------------
# Tables
# ------------------------------------------------------------------
@router.post("/tables")
def create_table(body: TableIn, db: Session = Depends(get_db), actor: Actor = Depends(require_actor)):
    t = tables.create_table(db, body.outlet_id, body.code, body.floor_id, body.capacity)
    return row_table(t)


@router.get("/tables")
def list_tables(
    outlet_id: str | None = None,
    floor_id: str | None = None,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_actor),
):
    return [row_table(t) for t in tables.list_tables(db, outlet_id, floor_id)]


@router.get("/tables/{table_id}")
def get_table(table_id: str, db: Session = Depends(get_db), actor: Actor = Depends(require_actor)):
    t, s = tables.get_table(db, table_id)
    out = row_table(t)
    out["session"] = row_session(s) if s else None
    return out


# ------------------------------------------------------------------
# Sessions
# ------------------------------------------------------------------
@router.post("/tables/{table_id}/session")
def start_session(
    table_id: str,
    body: SessionIn,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    dispatcher: EffectDispatcher = Depends(get_dispatcher),
    actor: Actor = Depends(require_actor),
):
    s, t, effects = tables.start_session(db, table_id, body.guest_count, actor.user_id)
    background.add_task(dispatcher.dispatch, effects)
    return {"session": row_session(s), "table": row_table(t)}


@router.delete("/tables/{table_id}/session")
def end_session(
    table_id: str,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    dispatcher: EffectDispatcher = Depends(get_dispatcher),
    actor: Actor = Depends(require_actor),
):
    t, effects = tables.end_session(db, table_id, actor.user_id)
    background.add_task(dispatcher.dispatch, effects)
    return row_table(t)


@router.post("/tables/{table_id}/status")
def set_status(
    table_id: str,
    body: TableStatusIn,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    dispatcher: EffectDispatcher = Depends(get_dispatcher),
    actor: Actor = Depends(require_actor),
):
    t, effects = tables.set_status(db, table_id, TableStatus(body.status), actor.user_id, body.reason)
    background.add_task(dispatcher.dispatch, effects)
    return row_table(t)


@router.post("/orders/{order_id}/transfer")
def transfer_table(
    order_id: str,
    body: TransferIn,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    dispatcher: EffectDispatcher = Depends(get_dispatcher),
    actor: Actor = Depends(require_actor),
):
    o, src, dst, effects = tables.transfer_table(db, order_id, body.to_table_id, actor.user_id)
    background.add_task(dispatcher.dispatch, effects)
    return {"order": row_order(o), "from_table": row_table(src), "to_table": row_table(dst)}


# ------------------------------------------------------------------
# Floor shifts
# ------------------------------------------------------------------
@router.post("/shifts")
def open_shift(body: ShiftOpenIn, db: Session = Depends(get_db), actor: Actor = Depends(require_actor)):
    sh = shifts.open_shift(db, body.outlet_id, body.floor_id, actor.user_id, body.opening_float)
    return row_shift(sh)


@router.get("/shifts/current")
def current_shift(outlet_id: str, floor_id: str, db: Session = Depends(get_db), actor: Actor = Depends(require_actor)):
    sh = shifts.current_shift(db, outlet_id, floor_id)
    return row_shift(sh) if sh else None


@router.post("/shifts/{shift_id}/close")
def close_shift(shift_id: str, body: ShiftCloseIn, db: Session = Depends(get_db), actor: Actor = Depends(require_actor)):
    sh, mismatch = shifts.close_shift(db, shift_id, actor.user_id, body.actual_cash, body.expected_cash, body.note)
    out = row_shift(sh)
    out["mismatch"] = money(mismatch) if mismatch is not None else None
    return out
