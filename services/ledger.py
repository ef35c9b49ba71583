"""
Ledger Coordinator.

Keeps the subscription / invoice / payment triad consistent. Money fields on
Subscription are written here and nowhere else; every amount comes out of
services.money. The Payment row is always the last thing added to a unit of
work so a failure earlier in the operation never leaves an orphan payment.
"""
import logging
import os
import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional, Dict, Any, List

from sqlalchemy.orm import Session

from models.advertiser import Advertiser
from models.invoice import Invoice
from models.payment import Payment
from models.plan import Plan
from models.subscription import Subscription
from services.coverage import refresh_coverage_safely
from services.lifecycle import load_subscription, record_status_change, activate_after_payment
from services.money import ZERO, to_decimal, to_amount, round2, calculate_discount, calculate_vat
from utils.clock import Clock, get_clock, add_days, fractional_days
from utils.concurrency import subscription_lock, commit_or_conflict
from utils.errors import NotFound, ValidationError, ExceedsBalance, InvalidTransition

logger = logging.getLogger(__name__)

DEFAULT_VAT_PERCENTAGE = Decimal(os.getenv("DEFAULT_VAT_PERCENTAGE", "15"))
MIN_ACTIVATION_AMOUNT = Decimal(os.getenv("MIN_ACTIVATION_AMOUNT", "1"))
CURRENCY_LABEL = os.getenv("CURRENCY_LABEL", "SAR")

# Anything within a halala of the total counts as fully paid
PAID_TOLERANCE = Decimal("0.01")

COVERAGE_TYPES = ("kingdom", "city")
OPEN_INVOICE_STATUSES = ("unpaid", "partial")


@dataclass
class SubscriptionCreated:
    subscription_id: int
    invoice_id: int
    payment_id: Optional[int] = None


@dataclass
class CancellationResult:
    subscription_id: int
    refund_amount: Decimal
    remaining_days: float
    cancelled_invoices: int
    message: str


def derive_payment_status(paid: Decimal, total: Decimal) -> str:
    if total - paid <= PAID_TOLERANCE:
        return "paid"
    if paid > 0:
        return "partial"
    return "pending"


def remaining_balance(total: Decimal, paid: Decimal) -> Decimal:
    return max(ZERO, round2(total - paid))


def resolve_vat_percentage(advertiser: Advertiser, override=None) -> Decimal:
    if override is not None:
        return to_decimal(override)
    if advertiser.include_vat:
        if advertiser.vat_percentage is not None:
            return to_decimal(advertiser.vat_percentage)
        return DEFAULT_VAT_PERCENTAGE
    return ZERO


def generate_invoice_number(now: datetime) -> str:
    return f"INV-{now:%Y%m%d}-{uuid.uuid4().hex[:6].upper()}"


def create_subscription_with_invoice(
    db: Session,
    *,
    advertiser_id: int,
    plan_id: int,
    start_date: Optional[datetime] = None,
    discount_type: str = "amount",
    discount_amount=0,
    initial_payment=0,
    payment_method: str = "cash",
    vat_percentage=None,
    coverage_type: Optional[str] = None,
    city: Optional[str] = None,
    notes: Optional[str] = None,
    actor_id: str = "system",
    clock: Optional[Clock] = None,
) -> SubscriptionCreated:
    """
    Create a subscription together with its invoice and, when money was
    handed over up front, the first payment. All three land in one commit.
    """
    clock = clock or get_clock()

    advertiser = db.query(Advertiser).get(advertiser_id)
    if not advertiser:
        raise NotFound(f"Advertiser {advertiser_id} not found")
    plan = db.query(Plan).get(plan_id)
    if not plan:
        raise NotFound(f"Plan {plan_id} not found")
    if not plan.is_active:
        raise ValidationError(f"Plan {plan_id} is deactivated")

    paid = to_amount(initial_payment)
    if paid < 0:
        raise ValidationError("Initial payment cannot be negative")

    coverage_type = coverage_type or plan.plan_type or "city"
    if coverage_type not in COVERAGE_TYPES:
        raise ValidationError(f"Unknown coverage type: {coverage_type!r}")
    if city is None and coverage_type == "city":
        city = plan.city

    vat_pct = resolve_vat_percentage(advertiser, vat_percentage)
    discount = calculate_discount(plan.price, discount_type, discount_amount)
    vat = calculate_vat(discount.total_amount, vat_pct)
    total = vat.total_with_vat

    if paid > total:
        raise ExceedsBalance(f"Initial payment {paid} exceeds the total amount {total}")

    now = clock.now()
    start = clock.localize(start_date) if start_date else now
    end = add_days(start, plan.duration_days)
    status = "active" if paid >= MIN_ACTIVATION_AMOUNT else "pending_payment"
    payment_status = derive_payment_status(paid, total)

    sub = Subscription(
        advertiser_id=advertiser.id,
        plan_id=plan.id,
        coverage_type=coverage_type,
        city=city,
        start_date=start,
        end_date=end,
        planned_days=plan.duration_days,
        remaining_active_days=plan.duration_days,
        active_days=0,
        base_price=discount.base_price,
        discount_type=discount_type,
        discount_amount=discount.discount_amount,
        vat_percentage=vat_pct,
        vat_amount=vat.vat_amount,
        total_amount=total,
        paid_amount=paid,
        remaining_amount=remaining_balance(total, paid),
        payment_status=payment_status,
        status=status,
        notes=notes,
    )
    db.add(sub)
    db.flush()

    if payment_status == "paid":
        invoice_status = "paid"
    elif paid > 0:
        invoice_status = "partial"
    else:
        invoice_status = "unpaid"

    invoice = Invoice(
        invoice_number=generate_invoice_number(now),
        subscription_id=sub.id,
        subtotal=vat.subtotal,
        vat_percentage=vat_pct,
        vat_amount=vat.vat_amount,
        amount=total,
        status=invoice_status,
        issued_date=now,
        due_date=start,
        paid_date=now if invoice_status == "paid" else None,
    )
    db.add(invoice)
    db.flush()

    payment = None
    if paid > 0:
        payment = Payment(
            subscription_id=sub.id,
            invoice_id=invoice.id,
            amount=paid,
            payment_date=now,
            payment_method=payment_method,
            notes="Initial payment",
            recorded_by=actor_id,
        )
        db.add(payment)

    db.commit()
    logger.info(
        f"Subscription {sub.id} created for advertiser {advertiser.id}: "
        f"total={total} paid={paid} status={status} invoice={invoice.invoice_number}"
    )

    result = SubscriptionCreated(
        subscription_id=sub.id,
        invoice_id=invoice.id,
        payment_id=payment.id if payment else None,
    )
    refresh_coverage_safely(db, advertiser.id)
    return result


def _target_invoice(db: Session, sub: Subscription, invoice_id: Optional[int]) -> Optional[Invoice]:
    if invoice_id is not None:
        invoice = db.query(Invoice).get(invoice_id)
        if not invoice or invoice.subscription_id != sub.id:
            raise NotFound(f"Invoice {invoice_id} not found for subscription {sub.id}")
        if invoice.status == "cancelled":
            raise ValidationError(f"Invoice {invoice.invoice_number} is cancelled")
        return invoice

    return (
        db.query(Invoice)
        .filter(Invoice.subscription_id == sub.id, Invoice.status.in_(OPEN_INVOICE_STATUSES))
        .order_by(Invoice.issued_date.asc(), Invoice.id.asc())
        .first()
    )


def _invoice_paid_so_far(db: Session, invoice_id: int) -> Decimal:
    payments = db.query(Payment.amount).filter(Payment.invoice_id == invoice_id).all()
    return sum((to_decimal(amount) for (amount,) in payments), ZERO)


def record_payment(
    db: Session,
    *,
    subscription_id: int,
    amount,
    invoice_id: Optional[int] = None,
    payment_method: str = "cash",
    payment_date: Optional[datetime] = None,
    transaction_id: Optional[str] = None,
    notes: Optional[str] = None,
    actor_id: str = "system",
    clock: Optional[Clock] = None,
) -> Payment:
    clock = clock or get_clock()
    amount = to_amount(amount)
    if amount <= 0:
        raise ValidationError("Payment amount must be greater than zero")

    with subscription_lock(subscription_id):
        sub = load_subscription(db, subscription_id)

        paid = to_decimal(sub.paid_amount)
        total = to_decimal(sub.total_amount)
        remaining = remaining_balance(total, paid)
        if amount > remaining:
            raise ExceedsBalance(
                f"Payment {amount} exceeds the remaining balance {remaining} of subscription {subscription_id}"
            )

        invoice = _target_invoice(db, sub, invoice_id)

        now = clock.now()
        paid_on = clock.localize(payment_date) if payment_date else now
        new_paid = round2(paid + amount)

        sub.paid_amount = new_paid
        sub.remaining_amount = remaining_balance(total, new_paid)
        sub.payment_status = derive_payment_status(new_paid, total)

        if sub.status == "pending_payment" and new_paid >= MIN_ACTIVATION_AMOUNT:
            activate_after_payment(db, sub, actor_id, now)

        if invoice is not None:
            invoice_total = to_decimal(invoice.amount)
            cumulative = _invoice_paid_so_far(db, invoice.id) + amount
            if invoice_total - cumulative <= PAID_TOLERANCE:
                invoice.status = "paid"
                invoice.paid_date = paid_on
            elif cumulative > 0:
                invoice.status = "partial"

        payment = Payment(
            subscription_id=sub.id,
            invoice_id=invoice.id if invoice is not None else None,
            amount=amount,
            payment_date=paid_on,
            payment_method=payment_method,
            transaction_id=transaction_id,
            notes=notes,
            recorded_by=actor_id,
        )
        db.add(payment)

        advertiser_id = sub.advertiser_id
        commit_or_conflict(db, f"subscription {subscription_id}")
        db.refresh(payment)
        logger.info(
            f"Payment {payment.id} of {amount} recorded for subscription {subscription_id} "
            f"(paid {new_paid}/{total}) by {actor_id}"
        )

        refresh_coverage_safely(db, advertiser_id)
        return payment


def cancel_subscription(
    db: Session,
    subscription_id: int,
    actor_id: str = "system",
    reason: Optional[str] = None,
    clock: Optional[Clock] = None,
) -> CancellationResult:
    """
    Cancel and suggest a straight-line refund for the unused part of the run.
    Nothing is refunded here; the amount is advisory input for a Refund record.
    """
    clock = clock or get_clock()
    with subscription_lock(subscription_id):
        sub = load_subscription(db, subscription_id)
        if sub.status == "cancelled":
            raise InvalidTransition(f"Subscription {subscription_id} is already cancelled")

        now = clock.now()
        start = clock.localize(sub.start_date)
        end = clock.localize(sub.end_date)

        total_days = fractional_days(start, end)
        if total_days > 0:
            remaining_days = min(total_days, max(0.0, fractional_days(now, end)))
            daily_rate = to_decimal(sub.total_amount) / to_decimal(total_days)
            refund_amount = round2(daily_rate * to_decimal(remaining_days))
        else:
            remaining_days = 0.0
            refund_amount = ZERO

        previous = sub.status
        sub.status = "cancelled"
        sub.cancelled_at = now
        sub.cancel_reason = reason
        sub.actual_end_date = now
        sub.is_in_grace_period = False

        unpaid = (
            db.query(Invoice)
            .filter(Invoice.subscription_id == sub.id, Invoice.status == "unpaid")
            .all()
        )
        for invoice in unpaid:
            invoice.status = "cancelled"

        record_status_change(
            db, sub,
            from_status=previous,
            to_status="cancelled",
            action_type="cancel",
            changed_at=now,
            changed_by=actor_id,
            days_before_change=int(remaining_days),
            reason=reason or "Cancelled by admin",
            notes=f"Suggested refund: {refund_amount} {CURRENCY_LABEL}",
        )

        advertiser_id = sub.advertiser_id
        commit_or_conflict(db, f"subscription {subscription_id}")
        logger.info(f"Subscription {subscription_id} cancelled by {actor_id}, suggested refund {refund_amount}")

        refresh_coverage_safely(db, advertiser_id)
        return CancellationResult(
            subscription_id=subscription_id,
            refund_amount=refund_amount,
            remaining_days=round(remaining_days, 2),
            cancelled_invoices=len(unpaid),
            message=f"Subscription cancelled. Suggested refund: {refund_amount} {CURRENCY_LABEL}",
        )


def get_financial_summary(db: Session, advertiser_id: int) -> Dict[str, Any]:
    advertiser = db.query(Advertiser).get(advertiser_id)
    if not advertiser:
        raise NotFound(f"Advertiser {advertiser_id} not found")

    subs: List[Subscription] = (
        db.query(Subscription).filter(Subscription.advertiser_id == advertiser_id).all()
    )
    sub_ids = [s.id for s in subs]

    by_status: Dict[str, int] = {}
    for s in subs:
        by_status[s.status] = by_status.get(s.status, 0) + 1

    total_spent = sum((to_decimal(s.total_amount) for s in subs if s.status != "cancelled"), ZERO)
    total_paid = sum((to_decimal(s.paid_amount) for s in subs), ZERO)
    total_pending = sum(
        (to_decimal(s.remaining_amount) for s in subs if s.status != "cancelled"), ZERO
    )

    payments: List[Payment] = []
    unpaid_invoices: List[Invoice] = []
    if sub_ids:
        payments = (
            db.query(Payment)
            .filter(Payment.subscription_id.in_(sub_ids))
            .order_by(Payment.payment_date.desc(), Payment.id.desc())
            .all()
        )
        unpaid_invoices = (
            db.query(Invoice)
            .filter(Invoice.subscription_id.in_(sub_ids), Invoice.status.in_(OPEN_INVOICE_STATUSES))
            .order_by(Invoice.issued_date.asc())
            .all()
        )

    return {
        "advertiser_id": advertiser_id,
        "total_subscriptions": len(subs),
        "active_subscriptions": by_status.get("active", 0),
        "subscriptions_by_status": by_status,
        "total_spent": round2(total_spent),
        "total_paid": round2(total_paid),
        "total_pending": round2(total_pending),
        "payment_history": payments,
        "unpaid_invoices": unpaid_invoices,
    }


def get_overdue_invoices(db: Session, clock: Optional[Clock] = None) -> List[Invoice]:
    """Unpaid invoices whose due date has passed, earliest due first."""
    clock = clock or get_clock()
    now = clock.now()
    # due dates come back naive from some backends, so compare after localizing
    rows = db.query(Invoice).filter(Invoice.status == "unpaid", Invoice.due_date.isnot(None)).all()
    overdue = [inv for inv in rows if clock.localize(inv.due_date) < now]
    overdue.sort(key=lambda inv: (clock.localize(inv.due_date), inv.id))
    return overdue
