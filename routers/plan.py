from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from typing import Optional
from decimal import Decimal
from pydantic import BaseModel
import logging

from db.init import get_db
from models.plan import Plan
from models.subscription import Subscription
from utils.deps import role_required, get_actor_id
from utils.serializers import row_to_dict, rows_to_list

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(role_required("admins"))])

PLAN_TYPES = ("kingdom", "city")
# A subscription in any of these still depends on its plan's price and duration
LIVE_STATUSES = ("pending_payment", "active", "paused")

# --- Pydantic Models ---

class PlanCreate(BaseModel):
    name: str
    duration_days: int
    price: Decimal
    plan_type: str = "city"
    city: Optional[str] = None
    features: Optional[str] = None
    is_active: bool = True

class PlanUpdate(BaseModel):
    name: Optional[str] = None
    duration_days: Optional[int] = None
    price: Optional[Decimal] = None
    plan_type: Optional[str] = None
    city: Optional[str] = None
    features: Optional[str] = None
    is_active: Optional[bool] = None


def _validate(data: dict):
    if data.get("duration_days") is not None and data["duration_days"] <= 0:
        raise HTTPException(status_code=400, detail="Duration must be greater than zero")
    if data.get("price") is not None and data["price"] < 0:
        raise HTTPException(status_code=400, detail="Price cannot be negative")
    if data.get("plan_type") is not None and data["plan_type"] not in PLAN_TYPES:
        raise HTTPException(status_code=400, detail=f"Invalid plan type: {data['plan_type']}")


def _live_subscription_count(db: Session, plan_id: int) -> int:
    return (
        db.query(Subscription)
        .filter(Subscription.plan_id == plan_id, Subscription.status.in_(LIVE_STATUSES))
        .count()
    )


@router.get("/")
def get_all(active_only: bool = False, db: Session = Depends(get_db)):
    query = db.query(Plan)
    if active_only:
        query = query.filter(Plan.is_active == True)  # noqa: E712
    return rows_to_list(query.order_by(Plan.price.asc()).all())


@router.get("/{id}")
def get_by_id(id: int, db: Session = Depends(get_db)):
    plan = db.query(Plan).get(id)
    if not plan:
        raise HTTPException(status_code=404, detail="Plan not found")
    return row_to_dict(plan)


@router.post("/")
def create(data: PlanCreate, db: Session = Depends(get_db), actor_id: str = Depends(get_actor_id)):
    values = data.model_dump()
    _validate(values)
    plan = Plan(**values)
    db.add(plan)
    db.commit()
    db.refresh(plan)
    logger.info(f"Plan {plan.id} '{plan.name}' created by {actor_id}")
    return row_to_dict(plan)


@router.put("/{id}")
def update(id: int, data: PlanUpdate, db: Session = Depends(get_db), actor_id: str = Depends(get_actor_id)):
    plan = db.query(Plan).get(id)
    if not plan:
        raise HTTPException(status_code=404, detail="Plan not found")

    values = data.model_dump(exclude_unset=True)
    _validate(values)

    locked = {"price", "duration_days", "plan_type"} & set(values)
    if locked and _live_subscription_count(db, id):
        raise HTTPException(
            status_code=409,
            detail=f"Plan is used by live subscriptions, cannot change: {', '.join(sorted(locked))}",
        )

    for k, v in values.items():
        setattr(plan, k, v)
    db.commit()
    db.refresh(plan)
    logger.info(f"Plan {id} updated by {actor_id}")
    return row_to_dict(plan)


@router.delete("/{id}")
def delete(id: int, db: Session = Depends(get_db), actor_id: str = Depends(get_actor_id)):
    plan = db.query(Plan).get(id)
    if not plan:
        raise HTTPException(status_code=404, detail="Plan not found")

    referenced = db.query(Subscription).filter(Subscription.plan_id == id).count()
    if referenced:
        plan.is_active = False
        db.commit()
        logger.info(f"Plan {id} deactivated by {actor_id} ({referenced} subscriptions reference it)")
        return {"deleted": False, "deactivated": True}

    db.delete(plan)
    db.commit()
    logger.info(f"Plan {id} deleted by {actor_id}")
    return {"deleted": True, "deactivated": False}
