from fastapi import APIRouter, BackgroundTasks, Depends
from sqlalchemy.orm import Session

from tableside.db import get_db
from tableside.deps import Actor, require_actor
from tableside.models.core import OrderStatus, OrderType
from tableside.routers.rows import (
    row_discount, row_invoice, row_item, row_order, row_payment, row_session, row_table, row_ticket,
)
from tableside.schemas.orders import CancelIn, CancelItemIn, ItemsIn, OrderIn, OrderStatusLiteral, QuantityIn
from tableside.services import orders
from tableside.services.catalog import Catalog, get_catalog
from tableside.services.effects import EffectDispatcher, get_dispatcher

router = APIRouter(prefix="/orders", tags=["orders"])


@router.get("/")
def list_orders(
    outlet_id: str | None = None,
    status: OrderStatusLiteral | None = None,
    table_id: str | None = None,
    page: int = 1,
    size: int = 20,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_actor),
):
    """
    List orders (paged), newest first.

    Response: { "items": [ {...order fields...} ], "total": <int> }
    """
    rows, total = orders.list_orders(db, outlet_id, OrderStatus(status) if status else None, table_id, page, size)
    return {"items": [row_order(o) for o in rows], "total": total}


@router.post("/")
def create_order(
    body: OrderIn,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    dispatcher: EffectDispatcher = Depends(get_dispatcher),
    actor: Actor = Depends(require_actor),
):
    o, effects = orders.create_order(
        db, body.outlet_id, OrderType(body.order_type), actor.user_id,
        table_id=body.table_id, session_id=body.session_id, guest_count=body.guest_count,
        is_interstate=body.is_interstate, note=body.note,
    )
    background.add_task(dispatcher.dispatch, effects)
    return row_order(o)


@router.get("/{order_id}")
def get_order(order_id: str, db: Session = Depends(get_db), actor: Actor = Depends(require_actor)):
    d = orders.get_order(db, order_id)
    out = row_order(d["order"])
    out["table"] = row_table(d["table"]) if d["table"] else None
    out["session"] = row_session(d["session"]) if d["session"] else None
    out["items"] = [row_item(i, addons) for i, addons in d["items"]]
    out["tickets"] = [row_ticket(t, items) for t, items in d["tickets"]]
    out["discounts"] = [row_discount(x) for x in d["discounts"]]
    out["invoices"] = [row_invoice(x) for x in d["invoices"]]
    out["payments"] = [row_payment(p, splits) for p, splits in d["payments"]]
    return out


@router.post("/{order_id}/items")
def add_items(
    order_id: str,
    body: ItemsIn,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    catalog: Catalog = Depends(get_catalog),
    dispatcher: EffectDispatcher = Depends(get_dispatcher),
    actor: Actor = Depends(require_actor),
):
    new = [orders.NewItem(**it.model_dump()) for it in body.items]
    added, o, effects = orders.add_items(db, catalog, order_id, new, actor.user_id)
    background.add_task(dispatcher.dispatch, effects)
    return {"order": row_order(o), "items": [row_item(i) for i in added]}


@router.patch("/items/{item_id}")
def update_item_quantity(
    item_id: str,
    body: QuantityIn,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    catalog: Catalog = Depends(get_catalog),
    dispatcher: EffectDispatcher = Depends(get_dispatcher),
    actor: Actor = Depends(require_actor),
):
    oi, o, effects = orders.update_item_quantity(db, catalog, item_id, body.quantity, actor.user_id)
    background.add_task(dispatcher.dispatch, effects)
    return {"order": row_order(o), "item": row_item(oi)}


@router.post("/items/{item_id}/cancel")
def cancel_item(
    item_id: str,
    body: CancelItemIn,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    catalog: Catalog = Depends(get_catalog),
    dispatcher: EffectDispatcher = Depends(get_dispatcher),
    actor: Actor = Depends(require_actor),
):
    oi, o, effects = orders.cancel_item(db, catalog, item_id, actor.user_id, body.reason, body.approved_by)
    background.add_task(dispatcher.dispatch, effects)
    return {"order": row_order(o), "item": row_item(oi)}


@router.post("/{order_id}/cancel")
def cancel_order(
    order_id: str,
    body: CancelIn,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    catalog: Catalog = Depends(get_catalog),
    dispatcher: EffectDispatcher = Depends(get_dispatcher),
    actor: Actor = Depends(require_actor),
):
    o, effects = orders.cancel_order(db, catalog, order_id, actor.user_id, body.reason)
    background.add_task(dispatcher.dispatch, effects)
    return row_order(o)
