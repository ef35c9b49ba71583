"""
Manual refund records.

A refund here is bookkeeping only: money goes back to the advertiser outside
the system and an admin records it. Subscription balances are not touched.
"""
import logging
from datetime import datetime
from typing import Optional, List, Dict, Any

from sqlalchemy.orm import Session

from models.invoice import Invoice
from models.payment import Payment
from models.refund import Refund
from services.lifecycle import load_subscription
from services.money import ZERO, round2, to_amount, to_decimal
from utils.clock import Clock, get_clock
from utils.errors import NotFound, ValidationError

logger = logging.getLogger(__name__)

REFUND_STATUSES = ("pending", "approved", "completed", "rejected")
REFUND_METHODS = ("cash", "bank_transfer", "card", "other")


def get_refund(db: Session, refund_id: int) -> Refund:
    refund = db.query(Refund).get(refund_id)
    if not refund:
        raise NotFound(f"Refund {refund_id} not found")
    return refund


def create_refund(
    db: Session,
    *,
    subscription_id: int,
    refund_amount,
    refund_reason: str,
    original_amount=None,
    invoice_id: Optional[int] = None,
    payment_id: Optional[int] = None,
    refund_method: str = "bank_transfer",
    refund_date: Optional[datetime] = None,
    bank_details: Optional[str] = None,
    notes: Optional[str] = None,
    actor_id: str = "system",
    clock: Optional[Clock] = None,
) -> Refund:
    clock = clock or get_clock()
    sub = load_subscription(db, subscription_id)

    if not refund_reason or not refund_reason.strip():
        raise ValidationError("A refund reason is required")
    if refund_method not in REFUND_METHODS:
        raise ValidationError(f"Unknown refund method: {refund_method!r}")

    if invoice_id is not None:
        invoice = db.query(Invoice).get(invoice_id)
        if not invoice or invoice.subscription_id != sub.id:
            raise NotFound(f"Invoice {invoice_id} not found for subscription {sub.id}")
    if payment_id is not None:
        payment = db.query(Payment).get(payment_id)
        if not payment or payment.subscription_id != sub.id:
            raise NotFound(f"Payment {payment_id} not found for subscription {sub.id}")

    original = round2(original_amount if original_amount is not None else sub.paid_amount)
    amount = to_amount(refund_amount)
    if amount <= 0:
        raise ValidationError("Refund amount must be greater than zero")
    if amount > original:
        raise ValidationError(f"Refund amount {amount} exceeds the original amount {original}")

    refund = Refund(
        subscription_id=sub.id,
        invoice_id=invoice_id,
        payment_id=payment_id,
        original_amount=original,
        refund_amount=amount,
        refund_reason=refund_reason.strip(),
        refund_method=refund_method,
        refund_date=clock.localize(refund_date) if refund_date else clock.now(),
        processed_by=actor_id,
        status="pending",
        bank_details=bank_details,
        notes=notes,
    )
    db.add(refund)
    db.commit()
    db.refresh(refund)
    logger.info(f"Refund {refund.id} of {amount} created for subscription {sub.id} by {actor_id}")
    return refund


def update_refund_status(
    db: Session,
    refund_id: int,
    status: str,
    actor_id: str = "system",
    notes: Optional[str] = None,
    clock: Optional[Clock] = None,
) -> Refund:
    clock = clock or get_clock()
    if status not in REFUND_STATUSES:
        raise ValidationError(f"Unknown refund status: {status!r}")

    refund = get_refund(db, refund_id)
    refund.status = status
    refund.processed_by = actor_id
    if notes:
        refund.notes = notes
    if status == "completed":
        refund.completed_at = clock.now()

    db.commit()
    db.refresh(refund)
    logger.info(f"Refund {refund_id} marked {status} by {actor_id}")
    return refund


def list_refunds(db: Session, subscription_id: Optional[int] = None) -> List[Refund]:
    query = db.query(Refund)
    if subscription_id is not None:
        query = query.filter(Refund.subscription_id == subscription_id)
    return query.order_by(Refund.created_at.desc(), Refund.id.desc()).all()


def get_pending_refunds(db: Session) -> List[Refund]:
    return (
        db.query(Refund)
        .filter(Refund.status == "pending")
        .order_by(Refund.created_at.asc(), Refund.id.asc())
        .all()
    )


def get_refund_stats(db: Session) -> Dict[str, Any]:
    refunds = db.query(Refund).all()

    by_status: Dict[str, int] = {}
    by_method: Dict[str, int] = {}
    total_amount = ZERO
    completed_amount = ZERO
    for refund in refunds:
        by_status[refund.status] = by_status.get(refund.status, 0) + 1
        by_method[refund.refund_method] = by_method.get(refund.refund_method, 0) + 1
        total_amount += to_decimal(refund.refund_amount)
        if refund.status == "completed":
            completed_amount += to_decimal(refund.refund_amount)

    return {
        "total": len(refunds),
        "total_amount": round2(total_amount),
        "completed_amount": round2(completed_amount),
        "by_status": by_status,
        "by_method": by_method,
    }
