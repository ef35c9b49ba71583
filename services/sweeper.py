"""
Automatic Expiry Sweeper.

Run periodically (cron calling `python -m services.sweeper`, or
POST /subscriptions/sweep). Each subscription is handled under its own lock
and re-checked after reloading, so two sweeps racing each other, or a sweep
racing an admin action, do each transition at most once. One bad row is
logged and skipped; it never aborts the rest of the sweep.
"""
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from sqlalchemy.orm import Session

from models.subscription import Subscription
from services.coverage import refresh_coverage_safely
from services.grace_period import close_grace
from services.lifecycle import load_subscription, expire_subscription
from utils.clock import Clock, get_clock
from utils.concurrency import subscription_lock, commit_or_conflict
from utils.notifier import notify_safely

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"


@dataclass
class SweepResult:
    expired: List[int] = field(default_factory=list)
    grace_activated: List[int] = field(default_factory=list)
    grace_ended: List[int] = field(default_factory=list)
    errors: List[int] = field(default_factory=list)


def _sweep_one(db: Session, subscription_id: int, clock: Clock) -> Optional[str]:
    sub = load_subscription(db, subscription_id)
    db.refresh(sub)

    if sub.status != "active":
        return None

    if sub.is_in_grace_period:
        grace_end = clock.localize(sub.grace_period_end_date)
        if grace_end is None or grace_end >= clock.now():
            return None
        close_grace(
            db, sub,
            actor_id=SYSTEM_ACTOR,
            reason="Grace period elapsed",
            now=clock.now(),
            clock=clock,
            changed_by_type="system",
        )
        return "grace_ended"

    return expire_subscription(db, sub, clock, actor_id=SYSTEM_ACTOR)


def sweep_expirations(db: Session, clock: Optional[Clock] = None, notifier=None) -> SweepResult:
    clock = clock or get_clock()
    result = SweepResult()
    touched = {}

    candidates = (
        db.query(Subscription.id, Subscription.advertiser_id)
        .filter(Subscription.status == "active")
        .order_by(Subscription.id)
        .all()
    )

    for subscription_id, advertiser_id in candidates:
        with subscription_lock(subscription_id):
            try:
                outcome = _sweep_one(db, subscription_id, clock)
                if outcome is None:
                    continue
                commit_or_conflict(db, f"subscription {subscription_id}")
            except Exception as e:
                db.rollback()
                logger.error(f"Sweep failed for subscription {subscription_id}: {e}")
                result.errors.append(subscription_id)
                continue

        touched[subscription_id] = (advertiser_id, outcome)
        if outcome == "grace_activated":
            result.grace_activated.append(subscription_id)
        elif outcome == "grace_ended":
            result.grace_ended.append(subscription_id)
            result.expired.append(subscription_id)
        else:
            result.expired.append(subscription_id)

    for advertiser_id in sorted({adv for adv, _ in touched.values()}):
        refresh_coverage_safely(db, advertiser_id)

    for subscription_id, (advertiser_id, outcome) in touched.items():
        if outcome == "grace_activated":
            sub = load_subscription(db, subscription_id)
            end = clock.localize(sub.grace_period_end_date)
            message = f"Your subscription #{subscription_id} ended. A grace period is active until {end:%Y-%m-%d}."
        else:
            message = f"Your subscription #{subscription_id} has expired. Renew it to stay visible."
        notify_safely(notifier, advertiser_id, message)

    logger.info(
        f"Sweep finished: {len(result.expired)} expired, {len(result.grace_activated)} grace activated, "
        f"{len(result.grace_ended)} grace ended, {len(result.errors)} errors"
    )
    return result


if __name__ == "__main__":
    from dotenv import load_dotenv

    load_dotenv()
    logging.basicConfig(level=logging.INFO)

    from db.init import SessionLocal, register_models
    from utils.notifier import Notifier

    register_models()
    session = SessionLocal()
    try:
        sweep_expirations(session, notifier=Notifier(session))
    finally:
        session.close()
