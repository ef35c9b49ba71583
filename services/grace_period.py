"""
Grace Period Extension.

A no-cost time extension layered on top of the lifecycle. Granting grace
always puts the subscription back to `active`; grants stack on the current
grace end date. Ending grace (manually or from the sweeper once the window
has passed) moves the subscription to `expired`. Money is never touched.
"""
import logging
import os
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Dict, Any, List

from sqlalchemy.orm import Session

from models.advertiser import Advertiser
from models.grace_period_extension import GracePeriodExtension
from models.subscription import Subscription
from services.coverage import refresh_coverage_safely
from services.lifecycle import load_subscription, record_status_change
from utils.clock import Clock, get_clock, add_days, days_until
from utils.concurrency import subscription_lock, commit_or_conflict
from utils.errors import InvalidTransition, ValidationError

logger = logging.getLogger(__name__)

GRACE_DAYS_BY_CUSTOMER_TYPE = {
    "vip": 14,
    "trusted": 7,
    "new": 3,
}
DEFAULT_GRACE_DAYS = int(os.getenv("DEFAULT_GRACE_DAYS", "3"))

GRACE_ALLOWED_FROM = ("active", "expired")


@dataclass
class GraceState:
    subscription_id: int
    status: str
    is_in_grace_period: bool
    grace_period_end_date: Optional[datetime]
    total_extensions: int
    days_added: int = 0


def default_grace_days(db: Session, advertiser_id: int) -> int:
    advertiser = db.query(Advertiser).get(advertiser_id)
    customer_type = advertiser.customer_type if advertiser else None
    return GRACE_DAYS_BY_CUSTOMER_TYPE.get(customer_type or "new", DEFAULT_GRACE_DAYS)


def grant_grace(
    db: Session,
    sub: Subscription,
    *,
    days: int,
    actor_id: str,
    reason: Optional[str],
    now: datetime,
    clock: Clock,
    changed_by_type: str = "admin",
) -> GracePeriodExtension:
    """Apply one grace extension to `sub`. Caller holds the lock and commits."""
    if sub.status not in GRACE_ALLOWED_FROM:
        raise InvalidTransition(
            f"Grace period can only be granted to active or expired subscriptions (status: '{sub.status}')"
        )

    if sub.is_in_grace_period and sub.grace_period_end_date is not None:
        previous_end = clock.localize(sub.grace_period_end_date)
    else:
        previous_end = clock.localize(sub.end_date)
    new_end = add_days(previous_end, days)

    extension = GracePeriodExtension(
        subscription_id=sub.id,
        days_added=days,
        previous_end_date=previous_end,
        new_end_date=new_end,
        extended_at=now,
        extended_by=actor_id,
        reason=reason or "Grace period extension",
        notes=f"Grace period extended by {days} days",
    )
    db.add(extension)

    previous_status = sub.status
    if not sub.is_in_grace_period:
        sub.grace_period_started_at = now
    sub.is_in_grace_period = True
    sub.grace_period_days = days
    sub.grace_period_end_date = new_end
    sub.total_grace_extensions = (sub.total_grace_extensions or 0) + 1
    sub.status = "active"

    record_status_change(
        db, sub,
        from_status=previous_status,
        to_status="active",
        action_type="grace_start",
        changed_at=now,
        effective_from=previous_end,
        changed_by=actor_id,
        changed_by_type=changed_by_type,
        days_after_change=days,
        reason=extension.reason,
    )
    return extension


def close_grace(
    db: Session,
    sub: Subscription,
    *,
    actor_id: str,
    reason: Optional[str],
    now: datetime,
    clock: Clock,
    changed_by_type: str = "admin",
):
    """End the grace window and expire the subscription. Caller holds the lock and commits."""
    if not sub.is_in_grace_period:
        raise InvalidTransition(f"Subscription {sub.id} is not in a grace period")

    grace_end = clock.localize(sub.grace_period_end_date) or now
    previous_status = sub.status

    sub.is_in_grace_period = False
    sub.status = "expired"
    sub.actual_end_date = now

    db.add(GracePeriodExtension(
        subscription_id=sub.id,
        days_added=0,
        previous_end_date=grace_end,
        new_end_date=now,
        extended_at=now,
        extended_by=actor_id,
        reason=reason or "Grace period ended",
        notes="Grace period closed",
    ))
    record_status_change(
        db, sub,
        from_status=previous_status,
        to_status="expired",
        action_type="grace_end",
        changed_at=now,
        changed_by=actor_id,
        changed_by_type=changed_by_type,
        reason=reason or "Grace period ended",
    )


def _state(sub: Subscription, clock: Clock, days_added: int = 0) -> GraceState:
    return GraceState(
        subscription_id=sub.id,
        status=sub.status,
        is_in_grace_period=bool(sub.is_in_grace_period),
        grace_period_end_date=clock.localize(sub.grace_period_end_date),
        total_extensions=sub.total_grace_extensions or 0,
        days_added=days_added,
    )


def activate_grace_period(
    db: Session,
    subscription_id: int,
    actor_id: str,
    days: Optional[int] = None,
    reason: Optional[str] = None,
    clock: Optional[Clock] = None,
) -> GraceState:
    clock = clock or get_clock()
    if days is not None and days <= 0:
        raise ValidationError("Grace period days must be greater than zero")

    with subscription_lock(subscription_id):
        sub = load_subscription(db, subscription_id)
        if days is None:
            days = default_grace_days(db, sub.advertiser_id)

        grant_grace(db, sub, days=days, actor_id=actor_id, reason=reason, now=clock.now(), clock=clock)

        advertiser_id = sub.advertiser_id
        commit_or_conflict(db, f"subscription {subscription_id}")
        logger.info(f"Grace period of {days} days granted to subscription {subscription_id} by {actor_id}")

        refresh_coverage_safely(db, advertiser_id)
        return _state(load_subscription(db, subscription_id), clock, days_added=days)


def end_grace_period(
    db: Session,
    subscription_id: int,
    actor_id: str,
    reason: Optional[str] = None,
    clock: Optional[Clock] = None,
) -> GraceState:
    clock = clock or get_clock()
    with subscription_lock(subscription_id):
        sub = load_subscription(db, subscription_id)
        close_grace(
            db, sub,
            actor_id=actor_id,
            reason=reason or "Grace period ended manually",
            now=clock.now(),
            clock=clock,
        )

        advertiser_id = sub.advertiser_id
        commit_or_conflict(db, f"subscription {subscription_id}")
        logger.info(f"Grace period ended for subscription {subscription_id} by {actor_id}")

        refresh_coverage_safely(db, advertiser_id)
        return _state(load_subscription(db, subscription_id), clock)


def get_extensions(db: Session, subscription_id: int) -> List[GracePeriodExtension]:
    return (
        db.query(GracePeriodExtension)
        .filter(GracePeriodExtension.subscription_id == subscription_id)
        .order_by(GracePeriodExtension.extended_at.asc(), GracePeriodExtension.id.asc())
        .all()
    )


def get_grace_period_info(db: Session, subscription_id: int, clock: Optional[Clock] = None) -> Dict[str, Any]:
    clock = clock or get_clock()
    sub = load_subscription(db, subscription_id)
    extensions = get_extensions(db, subscription_id)

    info = {
        "subscription_id": sub.id,
        "is_in_grace_period": bool(sub.is_in_grace_period),
        "total_extensions": sub.total_grace_extensions or 0,
        "extensions": extensions,
    }
    if sub.is_in_grace_period and sub.grace_period_end_date is not None:
        end = clock.localize(sub.grace_period_end_date)
        info["end_date"] = end
        info["days_remaining"] = max(0, days_until(clock.now(), end))
    return info


def list_grace_subscriptions(db: Session) -> List[Subscription]:
    return db.query(Subscription).filter(Subscription.is_in_grace_period == True).all()  # noqa: E712


def get_grace_period_stats(db: Session, clock: Optional[Clock] = None) -> Dict[str, Any]:
    clock = clock or get_clock()
    subs = list_grace_subscriptions(db)
    one_day_from_now = add_days(clock.now(), 1)

    expiring_soon = 0
    by_extensions: Dict[int, int] = {}
    for sub in subs:
        end = clock.localize(sub.grace_period_end_date)
        if end is not None and end <= one_day_from_now:
            expiring_soon += 1
        count = sub.total_grace_extensions or 0
        by_extensions[count] = by_extensions.get(count, 0) + 1

    return {
        "total": len(subs),
        "expiring_soon": expiring_soon,
        "by_extensions": by_extensions,
    }
