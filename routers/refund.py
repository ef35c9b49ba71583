from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from typing import Optional
from decimal import Decimal
from datetime import datetime
from pydantic import BaseModel
import logging

from db.init import get_db
from services import refunds
from utils.clock import Clock, get_clock
from utils.deps import role_required, get_actor_id
from utils.errors import BillingError
from utils.serializers import row_to_dict, rows_to_list

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(role_required("admins"))])

# --- Pydantic Models ---

class RefundCreate(BaseModel):
    subscription_id: int
    refund_amount: Decimal
    refund_reason: str
    original_amount: Optional[Decimal] = None
    invoice_id: Optional[int] = None
    payment_id: Optional[int] = None
    refund_method: str = "bank_transfer"
    refund_date: Optional[datetime] = None
    bank_details: Optional[str] = None
    notes: Optional[str] = None

class RefundStatusUpdate(BaseModel):
    status: str
    notes: Optional[str] = None


@router.get("/")
def get_all(subscription_id: Optional[int] = None, db: Session = Depends(get_db)):
    return rows_to_list(refunds.list_refunds(db, subscription_id))


@router.get("/pending")
def get_pending(db: Session = Depends(get_db)):
    return rows_to_list(refunds.get_pending_refunds(db))


@router.get("/stats")
def get_stats(db: Session = Depends(get_db)):
    return refunds.get_refund_stats(db)


@router.get("/{id}")
def get_by_id(id: int, db: Session = Depends(get_db)):
    try:
        return row_to_dict(refunds.get_refund(db, id))
    except BillingError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))


@router.post("/")
def create(
    data: RefundCreate,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    actor_id: str = Depends(get_actor_id),
):
    try:
        refund = refunds.create_refund(db, **data.model_dump(), actor_id=actor_id, clock=clock)
        return row_to_dict(refund)
    except BillingError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    except Exception as e:
        logger.error(f"Error creating refund for subscription {data.subscription_id}: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@router.put("/{id}/status")
def update_status(
    id: int,
    data: RefundStatusUpdate,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    actor_id: str = Depends(get_actor_id),
):
    try:
        refund = refunds.update_refund_status(db, id, data.status, actor_id=actor_id, notes=data.notes, clock=clock)
        return row_to_dict(refund)
    except BillingError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    except Exception as e:
        logger.error(f"Error updating refund {id}: {e}")
        raise HTTPException(status_code=500, detail=str(e))
