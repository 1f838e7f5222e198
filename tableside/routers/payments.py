from fastapi import APIRouter, BackgroundTasks, Depends
from sqlalchemy.orm import Session

from tableside.db import get_db
from tableside.deps import Actor, require_actor
from tableside.models.core import PayMode
from tableside.routers.rows import row_order, row_payment
from tableside.schemas.billing import PaymentIn, SplitPaymentIn
from tableside.services import payments
from tableside.services.effects import EffectDispatcher, get_dispatcher
from tableside.util.money import money

router = APIRouter(prefix="/payments", tags=["payments"])


def _settlement(result: payments.Settlement, splits=None) -> dict:
    return {
        "payment": row_payment(result.payment, splits),
        "order": row_order(result.order),
        "invoice_id": result.invoice_id,
        "paid_amount": money(result.paid_amount),
        "due_amount": money(result.due_amount),
        "change": money(result.change),
        "payment_status": result.payment_status,
    }


@router.post("/orders/{order_id}")
def record_payment(
    order_id: str,
    body: PaymentIn,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    dispatcher: EffectDispatcher = Depends(get_dispatcher),
    actor: Actor = Depends(require_actor),
):
    meta = body.model_dump(exclude={"invoice_id", "mode", "amount"})
    result, effects = payments.record_payment(
        db, order_id, body.invoice_id, PayMode(body.mode), body.amount, actor.user_id, **meta)
    background.add_task(dispatcher.dispatch, effects)
    return _settlement(result)


@router.post("/orders/{order_id}/split")
def record_split_payment(
    order_id: str,
    body: SplitPaymentIn,
    background: BackgroundTasks,
    db: Session = Depends(get_db),
    dispatcher: EffectDispatcher = Depends(get_dispatcher),
    actor: Actor = Depends(require_actor),
):
    parts = [payments.SplitPart(**{**s.model_dump(), "mode": PayMode(s.mode)}) for s in body.splits]
    result, effects = payments.record_split_payment(db, order_id, body.invoice_id, parts, actor.user_id, body.notes)
    background.add_task(dispatcher.dispatch, effects)
    splits = next((s for p, s in payments.payments_for_order(db, order_id) if p.id == result.payment.id), [])
    return _settlement(result, splits)


@router.get("/orders/{order_id}")
def payments_for_order(order_id: str, db: Session = Depends(get_db), actor: Actor = Depends(require_actor)):
    return [row_payment(p, splits) for p, splits in payments.payments_for_order(db, order_id)]
