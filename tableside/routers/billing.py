from fastapi import APIRouter, BackgroundTasks, Depends
from sqlalchemy.orm import Session

from tableside.db import get_db
from tableside.deps import Actor, require_actor
from tableside.models.core import DiscountType
from tableside.routers.rows import row_discount, row_invoice, row_order
from tableside.schemas.billing import BillIn, CancelInvoiceIn, DiscountIn
from tableside.services import billing
from tableside.services.catalog import Catalog, get_catalog
from tableside.services.effects import EffectDispatcher, get_dispatcher

router = APIRouter(prefix="/billing", tags=["billing"])


@router.post("/orders/{order_id}/bill")
def generate_bill(
    order_id: str,
    background: BackgroundTasks,
    body: BillIn | None = None,
    db: Session = Depends(get_db),
    catalog: Catalog = Depends(get_catalog),
    dispatcher: EffectDispatcher = Depends(get_dispatcher),
    actor: Actor = Depends(require_actor),
):
    body = body or BillIn()
    discount = None
    if body.discount:
        discount = billing.DiscountRule(DiscountType(body.discount.discount_type), body.discount.value)
    inv, o, effects = billing.generate_bill(
        db, catalog, order_id, actor.user_id,
        discount=discount,
        discount_reason=body.discount.reason if body.discount else None,
        apply_service_charge=body.apply_service_charge,
    )
    background.add_task(dispatcher.dispatch, effects)
    return {"invoice": row_invoice(inv), "order": row_order(o)}


@router.post("/orders/{order_id}/discounts")
def apply_discount(
    order_id: str,
    body: DiscountIn,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    catalog: Catalog = Depends(get_catalog),
    dispatcher: EffectDispatcher = Depends(get_dispatcher),
    actor: Actor = Depends(require_actor),
):
    d, o, effects = billing.apply_discount(
        db, catalog, order_id, actor.user_id, DiscountType(body.discount_type), body.value, body.reason)
    background.add_task(dispatcher.dispatch, effects)
    return {"discount": row_discount(d), "order": row_order(o)}


@router.delete("/orders/{order_id}/discounts/{discount_id}")
def remove_discount(
    order_id: str,
    discount_id: str,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    catalog: Catalog = Depends(get_catalog),
    dispatcher: EffectDispatcher = Depends(get_dispatcher),
    actor: Actor = Depends(require_actor),
):
    o, effects = billing.remove_discount(db, catalog, order_id, discount_id, actor.user_id)
    background.add_task(dispatcher.dispatch, effects)
    return row_order(o)


@router.post("/orders/{order_id}/invoices/{invoice_id}/cancel")
def cancel_invoice(
    order_id: str,
    invoice_id: str,
    body: CancelInvoiceIn,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    dispatcher: EffectDispatcher = Depends(get_dispatcher),
    actor: Actor = Depends(require_actor),
):
    inv, o, effects = billing.cancel_invoice(db, order_id, invoice_id, actor.user_id, body.reason)
    background.add_task(dispatcher.dispatch, effects)
    return {"invoice": row_invoice(inv), "order": row_order(o)}
