from fastapi import APIRouter, BackgroundTasks, Depends
from sqlalchemy.orm import Session
from typing import Literal

from tableside.db import get_db
from tableside.deps import Actor, require_actor
from tableside.models.core import KOTStatus
from tableside.routers.rows import row_kot_item, row_order, row_ticket
from tableside.schemas.orders import CancelIn
from tableside.services import kot
from tableside.services.catalog import Catalog, get_catalog
from tableside.services.effects import EffectDispatcher, get_dispatcher

router = APIRouter(prefix="/kot", tags=["kot"])

KOTStatusLiteral = Literal["pending", "accepted", "preparing", "ready", "served", "cancelled"]


@router.post("/orders/{order_id}/send")
def send_kot(
    order_id: str,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    catalog: Catalog = Depends(get_catalog),
    dispatcher: EffectDispatcher = Depends(get_dispatcher),
    actor: Actor = Depends(require_actor),
):
    tickets, o, effects = kot.send_kot(db, catalog, order_id, actor.user_id)
    background.add_task(dispatcher.dispatch, effects)
    return {
        "order": row_order(o),
        "tickets": [row_ticket(t, kot.ticket_items(db, t.id)) for t in tickets],
    }


@router.get("/orders/{order_id}/tickets")
def tickets_for_order(order_id: str, db: Session = Depends(get_db), actor: Actor = Depends(require_actor)):
    return [row_ticket(t, kot.ticket_items(db, t.id)) for t in kot.tickets_for_order(db, order_id)]


@router.get("/tickets")
def list_tickets(
    outlet_id: str | None = None,
    station: str | None = None,
    status: KOTStatusLiteral | None = None,
    active_only: bool = False,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_actor),
):
    rows = kot.list_tickets(db, outlet_id, station, KOTStatus(status) if status else None, active_only)
    return [row_ticket(t, kot.ticket_items(db, t.id)) for t in rows]


@router.get("/tickets/{ticket_id}")
def get_ticket(ticket_id: str, db: Session = Depends(get_db), actor: Actor = Depends(require_actor)):
    t, items = kot.get_ticket(db, ticket_id)
    return row_ticket(t, items)


def _transition(fn, ticket_id: str, db: Session, background: BackgroundTasks, dispatcher: EffectDispatcher,
                actor: Actor):
    t, effects = fn(db, ticket_id, actor.user_id)
    background.add_task(dispatcher.dispatch, effects)
    return row_ticket(t, kot.ticket_items(db, t.id))


@router.post("/tickets/{ticket_id}/accept")
def accept(ticket_id: str, background: BackgroundTasks, db: Session = Depends(get_db),
           dispatcher: EffectDispatcher = Depends(get_dispatcher), actor: Actor = Depends(require_actor)):
    return _transition(kot.accept, ticket_id, db, background, dispatcher, actor)


@router.post("/tickets/{ticket_id}/preparing")
def start_preparing(ticket_id: str, background: BackgroundTasks, db: Session = Depends(get_db),
                    dispatcher: EffectDispatcher = Depends(get_dispatcher), actor: Actor = Depends(require_actor)):
    return _transition(kot.start_preparing, ticket_id, db, background, dispatcher, actor)


@router.post("/tickets/{ticket_id}/ready")
def mark_ready(ticket_id: str, background: BackgroundTasks, db: Session = Depends(get_db),
               dispatcher: EffectDispatcher = Depends(get_dispatcher), actor: Actor = Depends(require_actor)):
    return _transition(kot.mark_ready, ticket_id, db, background, dispatcher, actor)


@router.post("/tickets/{ticket_id}/served")
def mark_served(ticket_id: str, background: BackgroundTasks, db: Session = Depends(get_db),
                dispatcher: EffectDispatcher = Depends(get_dispatcher), actor: Actor = Depends(require_actor)):
    t, o, effects = kot.mark_served(db, ticket_id, actor.user_id)
    background.add_task(dispatcher.dispatch, effects)
    return {"ticket": row_ticket(t, kot.ticket_items(db, t.id)), "order": row_order(o)}


@router.post("/items/{kot_item_id}/ready")
def mark_item_ready(kot_item_id: str, background: BackgroundTasks, db: Session = Depends(get_db),
                    dispatcher: EffectDispatcher = Depends(get_dispatcher), actor: Actor = Depends(require_actor)):
    ki, t, effects = kot.mark_item_ready(db, kot_item_id, actor.user_id)
    background.add_task(dispatcher.dispatch, effects)
    return {"item": row_kot_item(ki), "ticket": row_ticket(t)}


@router.post("/tickets/{ticket_id}/cancel")
def cancel(
    ticket_id: str,
    body: CancelIn,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    catalog: Catalog = Depends(get_catalog),
    dispatcher: EffectDispatcher = Depends(get_dispatcher),
    actor: Actor = Depends(require_actor),
):
    t, effects = kot.cancel(db, catalog, ticket_id, actor.user_id, body.reason)
    background.add_task(dispatcher.dispatch, effects)
    return row_ticket(t, kot.ticket_items(db, t.id))


@router.post("/tickets/{ticket_id}/reprint")
def reprint(
    ticket_id: str,
    background: BackgroundTasks,
    reason: str | None = None,
    db: Session = Depends(get_db),
    dispatcher: EffectDispatcher = Depends(get_dispatcher),
    actor: Actor = Depends(require_actor),
):
    t, effects = kot.reprint_ticket(db, ticket_id, actor.user_id, reason)
    background.add_task(dispatcher.dispatch, effects)
    return {"ok": True, "reprint_count": t.reprint_count}
