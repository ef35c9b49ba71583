from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from typing import Optional
from decimal import Decimal
from datetime import datetime
from pydantic import BaseModel
import logging

from db.init import get_db
from models.subscription import Subscription
from services import lifecycle, grace_period
from services.ledger import create_subscription_with_invoice, cancel_subscription
from services.money import calculate_discount, calculate_vat
from services.sweeper import sweep_expirations
from utils.clock import Clock, get_clock
from utils.deps import role_required, get_actor_id
from utils.errors import BillingError
from utils.notifier import Notifier
from utils.serializers import row_to_dict, rows_to_list

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(role_required("admins"))])

# --- Pydantic Models ---

class CreateSubscriptionRequest(BaseModel):
    advertiser_id: int
    plan_id: int
    start_date: Optional[datetime] = None
    discount_type: str = "amount"
    discount_amount: Decimal = Decimal("0")
    initial_payment: Decimal = Decimal("0")
    payment_method: str = "cash"
    vat_percentage: Optional[Decimal] = None
    coverage_type: Optional[str] = None
    city: Optional[str] = None
    notes: Optional[str] = None

class SubscriptionActionRequest(BaseModel):
    reason: Optional[str] = None

class ReactivateRequest(BaseModel):
    reason: Optional[str] = None
    new_start_date: Optional[datetime] = None

class GraceActivateRequest(BaseModel):
    days: Optional[int] = None
    reason: Optional[str] = None

class CalculateDiscountRequest(BaseModel):
    base_price: Decimal
    discount_type: str = "amount"
    discount_amount: Decimal = Decimal("0")
    vat_percentage: Decimal = Decimal("0")


def _billing_call(what: str, fn, *args, **kwargs):
    """Run a service call, translating billing errors to HTTP responses."""
    try:
        return fn(*args, **kwargs)
    except HTTPException:
        raise
    except BillingError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    except Exception as e:
        logger.error(f"Error during {what}: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/")
def get_all(
    advertiser_id: Optional[int] = None,
    status: Optional[str] = None,
    payment_status: Optional[str] = None,
    db: Session = Depends(get_db),
):
    query = db.query(Subscription)
    if advertiser_id is not None:
        query = query.filter(Subscription.advertiser_id == advertiser_id)
    if status:
        query = query.filter(Subscription.status == status)
    if payment_status:
        query = query.filter(Subscription.payment_status == payment_status)
    return rows_to_list(query.order_by(Subscription.id.desc()).all())


@router.post("/")
def create(
    data: CreateSubscriptionRequest,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    actor_id: str = Depends(get_actor_id),
):
    return _billing_call(
        "subscription creation",
        create_subscription_with_invoice,
        db,
        **data.model_dump(),
        actor_id=actor_id,
        clock=clock,
    )


@router.post("/calculate-discount")
def calculate(data: CalculateDiscountRequest):
    """Preview the price breakdown without writing anything."""
    def preview():
        discount = calculate_discount(data.base_price, data.discount_type, data.discount_amount)
        vat = calculate_vat(discount.total_amount, data.vat_percentage)
        return {
            "base_price": discount.base_price,
            "discount_value": discount.discount_value,
            "subtotal": vat.subtotal,
            "vat_amount": vat.vat_amount,
            "total_amount": vat.total_with_vat,
        }
    return _billing_call("discount preview", preview)


@router.get("/grace-period")
def grace_period_subscriptions(db: Session = Depends(get_db)):
    return rows_to_list(grace_period.list_grace_subscriptions(db))


@router.get("/grace-period/stats")
def grace_period_stats(db: Session = Depends(get_db), clock: Clock = Depends(get_clock)):
    return grace_period.get_grace_period_stats(db, clock)


@router.get("/paused")
def paused_subscriptions(db: Session = Depends(get_db)):
    return rows_to_list(lifecycle.get_paused_subscriptions(db))


@router.post("/sweep")
def sweep(db: Session = Depends(get_db), clock: Clock = Depends(get_clock), actor_id: str = Depends(get_actor_id)):
    logger.info(f"Expiry sweep triggered by {actor_id}")
    return _billing_call("expiry sweep", sweep_expirations, db, clock=clock, notifier=Notifier(db))


@router.get("/{id}")
def get_by_id(id: int, db: Session = Depends(get_db)):
    return row_to_dict(_billing_call("subscription lookup", lifecycle.load_subscription, db, id))


@router.post("/{id}/pause")
def pause(
    id: int,
    data: SubscriptionActionRequest = SubscriptionActionRequest(),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    actor_id: str = Depends(get_actor_id),
):
    return _billing_call("pause", lifecycle.pause_subscription, db, id, actor_id, reason=data.reason, clock=clock)


@router.post("/{id}/resume")
def resume(
    id: int,
    data: SubscriptionActionRequest = SubscriptionActionRequest(),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    actor_id: str = Depends(get_actor_id),
):
    return _billing_call("resume", lifecycle.resume_subscription, db, id, actor_id, reason=data.reason, clock=clock)


@router.post("/{id}/stop")
def stop(
    id: int,
    data: SubscriptionActionRequest,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    actor_id: str = Depends(get_actor_id),
):
    return _billing_call("stop", lifecycle.stop_subscription, db, id, actor_id, reason=data.reason, clock=clock)


@router.post("/{id}/reactivate")
def reactivate(
    id: int,
    data: ReactivateRequest = ReactivateRequest(),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    actor_id: str = Depends(get_actor_id),
):
    return _billing_call(
        "reactivate",
        lifecycle.reactivate_subscription,
        db, id, actor_id,
        reason=data.reason,
        new_start_date=data.new_start_date,
        clock=clock,
    )


@router.post("/{id}/cancel")
def cancel(
    id: int,
    data: SubscriptionActionRequest = SubscriptionActionRequest(),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    actor_id: str = Depends(get_actor_id),
):
    return _billing_call("cancel", cancel_subscription, db, id, actor_id=actor_id, reason=data.reason, clock=clock)


@router.get("/{id}/status-history")
def status_history(id: int, db: Session = Depends(get_db)):
    _billing_call("subscription lookup", lifecycle.load_subscription, db, id)
    return rows_to_list(lifecycle.get_status_history(db, id))


@router.post("/{id}/grace/activate")
def activate_grace(
    id: int,
    data: GraceActivateRequest = GraceActivateRequest(),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    actor_id: str = Depends(get_actor_id),
):
    return _billing_call(
        "grace activation",
        grace_period.activate_grace_period,
        db, id, actor_id,
        days=data.days,
        reason=data.reason,
        clock=clock,
    )


@router.post("/{id}/grace/end")
def end_grace(
    id: int,
    data: SubscriptionActionRequest = SubscriptionActionRequest(),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    actor_id: str = Depends(get_actor_id),
):
    return _billing_call("grace end", grace_period.end_grace_period, db, id, actor_id, reason=data.reason, clock=clock)


@router.get("/{id}/grace")
def grace_info(id: int, db: Session = Depends(get_db), clock: Clock = Depends(get_clock)):
    info = _billing_call("grace lookup", grace_period.get_grace_period_info, db, id, clock)
    info["extensions"] = rows_to_list(info["extensions"])
    return info
