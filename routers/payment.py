from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from typing import Optional
from decimal import Decimal
from datetime import datetime
from pydantic import BaseModel
import logging

from db.init import get_db
from models.payment import Payment
from services.ledger import record_payment
from utils.clock import Clock, get_clock
from utils.deps import role_required, get_actor_id
from utils.errors import BillingError
from utils.serializers import row_to_dict, rows_to_list

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(role_required("admins"))])

# --- Pydantic Models ---

class RecordPaymentRequest(BaseModel):
    subscription_id: int
    amount: Decimal
    invoice_id: Optional[int] = None
    payment_method: str = "cash"
    payment_date: Optional[datetime] = None
    transaction_id: Optional[str] = None
    notes: Optional[str] = None


@router.post("/")
def create(
    data: RecordPaymentRequest,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    actor_id: str = Depends(get_actor_id),
):
    try:
        payment = record_payment(db, **data.model_dump(), actor_id=actor_id, clock=clock)
        return {"payment_id": payment.id, "payment": row_to_dict(payment)}
    except BillingError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    except Exception as e:
        logger.error(f"Error recording payment for subscription {data.subscription_id}: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/")
def get_all(subscription_id: Optional[int] = None, db: Session = Depends(get_db)):
    query = db.query(Payment)
    if subscription_id is not None:
        query = query.filter(Payment.subscription_id == subscription_id)
    return rows_to_list(query.order_by(Payment.payment_date.desc(), Payment.id.desc()).all())


@router.get("/{id}")
def get_by_id(id: int, db: Session = Depends(get_db)):
    payment = db.query(Payment).get(id)
    if not payment:
        raise HTTPException(status_code=404, detail="Payment not found")
    return row_to_dict(payment)
