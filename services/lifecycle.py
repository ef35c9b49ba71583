"""
Subscription Lifecycle State Machine.

Owns `Subscription.status` and the day-accounting fields around it:

    pause       active                                    -> paused
    resume      paused                                    -> active
    stop        active, paused, pending_payment           -> stopped
    reactivate  stopped, expired, cancelled, pending_payment -> active
    expire      active (automatic, see services.sweeper)  -> expired, or grace

Every successful transition appends one SubscriptionStatusHistory row with
the day counters and the financial snapshot at the moment of change. Money
fields are never written here.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Dict, Any, List

from sqlalchemy.orm import Session

from models.subscription import Subscription
from models.subscription_status_history import SubscriptionStatusHistory
from services.coverage import refresh_coverage_safely
from utils.clock import Clock, get_clock, days_between, days_until, add_days
from utils.concurrency import subscription_lock, commit_or_conflict
from utils.errors import NotFound, InvalidTransition, ValidationError

logger = logging.getLogger(__name__)

STATUSES = ("pending_payment", "active", "paused", "stopped", "expired", "cancelled")

ALLOWED_FROM = {
    "pause": ("active",),
    "resume": ("paused",),
    "stop": ("active", "paused", "pending_payment"),
    "reactivate": ("stopped", "expired", "cancelled", "pending_payment"),
    "expire": ("active",),
    "activate": ("pending_payment",),
}


@dataclass
class TransitionResult:
    subscription_id: int
    action: str
    status: str
    start_date: datetime
    end_date: datetime
    details: Dict[str, Any] = field(default_factory=dict)


def load_subscription(db: Session, subscription_id: int) -> Subscription:
    sub = db.query(Subscription).get(subscription_id)
    if not sub:
        raise NotFound(f"Subscription {subscription_id} not found")
    return sub


def ensure_allowed(sub: Subscription, action: str):
    allowed = ALLOWED_FROM[action]
    if sub.status not in allowed:
        raise InvalidTransition(
            f"Cannot {action} a subscription with status '{sub.status}' "
            f"(allowed from: {', '.join(allowed)})"
        )


def record_status_change(
    db: Session,
    sub: Subscription,
    *,
    from_status: str,
    to_status: str,
    action_type: str,
    changed_at: datetime,
    changed_by: str,
    changed_by_type: str = "admin",
    days_before_change: int = 0,
    days_after_change: int = 0,
    pause_duration_days: Optional[int] = None,
    effective_from: Optional[datetime] = None,
    reason: Optional[str] = None,
    notes: Optional[str] = None,
) -> SubscriptionStatusHistory:
    """Append one audit row. Added to the caller's unit of work, not committed."""
    entry = SubscriptionStatusHistory(
        subscription_id=sub.id,
        advertiser_id=sub.advertiser_id,
        from_status=from_status,
        to_status=to_status,
        action_type=action_type,
        changed_at=changed_at,
        effective_from=effective_from,
        days_before_change=days_before_change,
        days_after_change=days_after_change,
        pause_duration_days=pause_duration_days,
        changed_by=changed_by,
        changed_by_type=changed_by_type,
        reason=reason,
        notes=notes,
        amount_paid=sub.paid_amount,
        amount_remaining=sub.remaining_amount,
    )
    db.add(entry)
    return entry


def _finish(db: Session, sub: Subscription, action: str, clock: Clock, details: Dict[str, Any]) -> TransitionResult:
    subscription_id = sub.id
    advertiser_id = sub.advertiser_id
    commit_or_conflict(db, f"subscription {subscription_id}")
    logger.info(f"Subscription {subscription_id}: {action} -> {sub.status}")

    refresh_coverage_safely(db, advertiser_id)

    sub = load_subscription(db, subscription_id)
    return TransitionResult(
        subscription_id=subscription_id,
        action=action,
        status=sub.status,
        start_date=clock.localize(sub.start_date),
        end_date=clock.localize(sub.end_date),
        details=details,
    )


def pause_subscription(
    db: Session,
    subscription_id: int,
    actor_id: str,
    reason: Optional[str] = None,
    clock: Optional[Clock] = None,
) -> TransitionResult:
    """
    Freeze day counting. The days left at this moment are kept in
    `remaining_active_days` and handed back untouched on resume.
    """
    clock = clock or get_clock()
    with subscription_lock(subscription_id):
        sub = load_subscription(db, subscription_id)
        ensure_allowed(sub, "pause")

        now = clock.now()
        start = clock.localize(sub.start_date)
        end = clock.localize(sub.end_date)

        days_remaining = days_until(now, end)
        if days_remaining <= 0:
            raise InvalidTransition(f"Subscription {subscription_id} has already ended")

        active_days = days_between(start, now) if now > start else 0

        # First-ever pause keeps the original run for later reactivation
        if sub.original_start_date is None:
            sub.original_start_date = sub.start_date
            sub.original_end_date = sub.end_date
            sub.planned_days = sub.planned_days or days_between(start, end)

        sub.status = "paused"
        sub.paused_at = now
        sub.current_pause_days = 0
        sub.remaining_active_days = days_remaining
        sub.active_days = active_days

        record_status_change(
            db, sub,
            from_status="active",
            to_status="paused",
            action_type="pause",
            changed_at=now,
            changed_by=actor_id,
            days_before_change=days_remaining,
            days_after_change=days_remaining,
            reason=reason or "Paused by admin",
        )

        return _finish(db, sub, "pause", clock, {
            "paused_at": now,
            "days_remaining": days_remaining,
            "active_days": active_days,
        })


def resume_subscription(
    db: Session,
    subscription_id: int,
    actor_id: str,
    reason: Optional[str] = None,
    clock: Optional[Clock] = None,
) -> TransitionResult:
    """Pick up where the subscription left off: end_date moves by the paused days."""
    clock = clock or get_clock()
    with subscription_lock(subscription_id):
        sub = load_subscription(db, subscription_id)
        ensure_allowed(sub, "resume")

        paused_at = clock.localize(sub.paused_at)
        if paused_at is None:
            raise InvalidTransition(f"Subscription {subscription_id} has no pause date")

        now = clock.now()
        pause_days = days_between(paused_at, now)

        new_end = add_days(clock.localize(sub.end_date), pause_days)
        sub.end_date = new_end
        if sub.is_in_grace_period and sub.grace_period_end_date is not None:
            sub.grace_period_end_date = add_days(clock.localize(sub.grace_period_end_date), pause_days)

        sub.status = "active"
        sub.resumed_at = now
        sub.paused_at = None
        sub.current_pause_days = pause_days
        sub.total_paused_days = (sub.total_paused_days or 0) + pause_days

        days_remaining = sub.remaining_active_days or 0
        record_status_change(
            db, sub,
            from_status="paused",
            to_status="active",
            action_type="resume",
            changed_at=now,
            effective_from=now,
            changed_by=actor_id,
            days_before_change=days_remaining,
            days_after_change=days_remaining,
            pause_duration_days=pause_days,
            reason=reason or "Resumed after pause",
        )

        return _finish(db, sub, "resume", clock, {
            "resumed_at": now,
            "pause_duration_days": pause_days,
            "new_end_date": new_end,
            "days_remaining": days_remaining,
        })


def stop_subscription(
    db: Session,
    subscription_id: int,
    actor_id: str,
    reason: Optional[str] = None,
    clock: Optional[Clock] = None,
) -> TransitionResult:
    """End the current run. A later reactivate starts a fresh run of the same plan."""
    if not reason or not reason.strip():
        raise ValidationError("A reason is required to stop a subscription")

    clock = clock or get_clock()
    with subscription_lock(subscription_id):
        sub = load_subscription(db, subscription_id)
        ensure_allowed(sub, "stop")

        now = clock.now()
        start = clock.localize(sub.start_date)
        end = clock.localize(sub.end_date)
        previous = sub.status

        if previous == "active":
            days_used = days_between(start, now) if now > start else 0
            days_wasted = max(0, days_until(now, end))
        elif previous == "paused":
            days_used = sub.active_days or 0
            days_wasted = sub.remaining_active_days or 0
        else:  # pending_payment
            days_used = 0
            days_wasted = days_between(start, end)

        sub.status = "stopped"
        sub.stopped_at = now
        sub.stop_reason = reason.strip()
        sub.actual_end_date = now
        sub.active_days = days_used
        sub.is_in_grace_period = False

        record_status_change(
            db, sub,
            from_status=previous,
            to_status="stopped",
            action_type="stop",
            changed_at=now,
            changed_by=actor_id,
            days_before_change=days_wasted,
            days_after_change=0,
            reason=reason.strip(),
        )

        return _finish(db, sub, "stop", clock, {
            "stopped_at": now,
            "days_used": days_used,
            "days_wasted": days_wasted,
        })


def reactivate_subscription(
    db: Session,
    subscription_id: int,
    actor_id: str,
    reason: Optional[str] = None,
    new_start_date: Optional[datetime] = None,
    clock: Optional[Clock] = None,
) -> TransitionResult:
    """
    Start a brand-new run with the plan's original duration. Pause and grace
    counters go back to zero; money is left alone.
    """
    clock = clock or get_clock()
    with subscription_lock(subscription_id):
        sub = load_subscription(db, subscription_id)
        ensure_allowed(sub, "reactivate")

        now = clock.now()
        start = clock.localize(new_start_date) if new_start_date else now

        planned_days = sub.planned_days or days_between(
            clock.localize(sub.original_start_date or sub.start_date),
            clock.localize(sub.original_end_date or sub.end_date),
        )
        end = add_days(start, planned_days)
        previous = sub.status

        sub.status = "active"
        sub.start_date = start
        sub.end_date = end
        sub.planned_days = planned_days
        sub.resumed_at = now
        sub.paused_at = None
        sub.active_days = 0
        sub.remaining_active_days = planned_days
        sub.total_paused_days = 0
        sub.current_pause_days = 0
        sub.stopped_at = None
        sub.actual_end_date = None
        sub.is_in_grace_period = False
        sub.grace_period_days = None
        sub.grace_period_started_at = None
        sub.grace_period_end_date = None
        sub.total_grace_extensions = 0

        record_status_change(
            db, sub,
            from_status=previous,
            to_status="active",
            action_type="reactivate",
            changed_at=now,
            effective_from=start,
            changed_by=actor_id,
            days_before_change=0,
            days_after_change=planned_days,
            reason=reason or f"Reactivated from status: {previous}",
        )

        return _finish(db, sub, "reactivate", clock, {
            "reactivated_at": now,
            "new_start_date": start,
            "new_end_date": end,
            "total_days": planned_days,
        })


def activate_after_payment(db: Session, sub: Subscription, actor_id: str, now: datetime):
    """
    Pay-on-delivery: a pending_payment subscription goes live once money
    arrives. Called by the ledger while it holds the subscription lock; the
    ledger commits.
    """
    ensure_allowed(sub, "activate")
    sub.status = "active"
    record_status_change(
        db, sub,
        from_status="pending_payment",
        to_status="active",
        action_type="activate",
        changed_at=now,
        effective_from=now,
        changed_by=actor_id,
        reason="Activated on first payment",
    )


def expire_subscription(db: Session, sub: Subscription, clock: Clock, actor_id: str = "system") -> Optional[str]:
    """
    Automatic end-of-term transition, driven by the sweeper under the
    subscription lock. Returns "expired", "grace_activated", or None when the
    subscription does not need expiring (already handled, still running, or in
    grace). The caller commits.
    """
    from services.grace_period import grant_grace, default_grace_days

    if sub.status != "active" or sub.is_in_grace_period:
        return None

    now = clock.now()
    if clock.localize(sub.end_date) >= now:
        return None

    if (sub.paid_amount or 0) > 0:
        sub.status = "expired"
        sub.actual_end_date = now
        record_status_change(
            db, sub,
            from_status="active",
            to_status="expired",
            action_type="expire",
            changed_at=now,
            changed_by=actor_id,
            changed_by_type="system",
            reason="Subscription end date passed",
        )
        return "expired"

    # Nothing paid yet: give the advertiser a tiered grace window instead
    days = default_grace_days(db, sub.advertiser_id)
    grant_grace(
        db, sub,
        days=days,
        actor_id=actor_id,
        reason=f"Automatic {days}-day grace period: no payment received",
        now=now,
        clock=clock,
        changed_by_type="system",
    )
    return "grace_activated"


def get_status_history(db: Session, subscription_id: int) -> List[SubscriptionStatusHistory]:
    return (
        db.query(SubscriptionStatusHistory)
        .filter(SubscriptionStatusHistory.subscription_id == subscription_id)
        .order_by(SubscriptionStatusHistory.changed_at.desc(), SubscriptionStatusHistory.id.desc())
        .all()
    )


def get_paused_subscriptions(db: Session) -> List[Subscription]:
    return db.query(Subscription).filter(Subscription.status == "paused").all()
