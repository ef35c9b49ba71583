"""
Advertiser deletion saga.

Deleting an advertiser removes its whole billing footprint in a fixed order,
one commit per step. Progress is persisted on a DeletionCascade row so a run
that dies halfway can be inspected and resumed instead of leaving half-deleted
data nobody knows about. Status history rows are kept.
"""
import logging
from typing import List

from sqlalchemy.orm import Session

from models.advertiser import Advertiser
from models.deletion_cascade import DeletionCascade
from models.grace_period_extension import GracePeriodExtension
from models.invoice import Invoice
from models.payment import Payment
from models.refund import Refund
from models.subscription import Subscription
from utils.errors import NotFound, InvalidTransition

logger = logging.getLogger(__name__)


def _subscription_ids(db: Session, advertiser_id: int) -> List[int]:
    return [sid for (sid,) in db.query(Subscription.id).filter(Subscription.advertiser_id == advertiser_id).all()]


def _deactivate_advertiser(db: Session, advertiser_id: int) -> int:
    advertiser = db.query(Advertiser).get(advertiser_id)
    if not advertiser:
        return 0
    advertiser.status = "inactive"
    return 1


def _delete_for_subscriptions(model):
    def step(db: Session, advertiser_id: int) -> int:
        sub_ids = _subscription_ids(db, advertiser_id)
        if not sub_ids:
            return 0
        return (
            db.query(model)
            .filter(model.subscription_id.in_(sub_ids))
            .delete(synchronize_session=False)
        )
    return step


def _delete_subscriptions(db: Session, advertiser_id: int) -> int:
    return (
        db.query(Subscription)
        .filter(Subscription.advertiser_id == advertiser_id)
        .delete(synchronize_session=False)
    )


def _delete_advertiser(db: Session, advertiser_id: int) -> int:
    return db.query(Advertiser).filter(Advertiser.id == advertiser_id).delete(synchronize_session=False)


STEPS = (
    "deactivate_advertiser",
    "refunds",
    "payments",
    "invoices",
    "grace_extensions",
    "subscriptions",
    "advertiser",
)

STEP_HANDLERS = {
    "deactivate_advertiser": _deactivate_advertiser,
    "refunds": _delete_for_subscriptions(Refund),
    "payments": _delete_for_subscriptions(Payment),
    "invoices": _delete_for_subscriptions(Invoice),
    "grace_extensions": _delete_for_subscriptions(GracePeriodExtension),
    "subscriptions": _delete_subscriptions,
    "advertiser": _delete_advertiser,
}

# Steps that can be undone without data loss
REVERSIBLE_STEPS = ("deactivate_advertiser",)


def get_cascade(db: Session, cascade_id: int) -> DeletionCascade:
    cascade = db.query(DeletionCascade).get(cascade_id)
    if not cascade:
        raise NotFound(f"Deletion cascade {cascade_id} not found")
    return cascade


def _compensate(db: Session, cascade: DeletionCascade) -> bool:
    """Undo a run that failed before deleting anything. Returns True if restored."""
    destructive_done = [s for s in (cascade.completed_steps or []) if s not in REVERSIBLE_STEPS]
    if destructive_done:
        return False

    advertiser = db.query(Advertiser).get(cascade.advertiser_id)
    if advertiser and cascade.previous_status:
        advertiser.status = cascade.previous_status
    return True


def _run(db: Session, cascade: DeletionCascade) -> DeletionCascade:
    advertiser_id = cascade.advertiser_id

    for step in STEPS:
        if step in (cascade.completed_steps or []):
            continue
        try:
            count = STEP_HANDLERS[step](db, advertiser_id)
            # JSON columns: assign new objects so the change is flushed
            cascade.completed_steps = list(cascade.completed_steps or []) + [step]
            cascade.step_counts = {**(cascade.step_counts or {}), step: count}
            db.commit()
            logger.info(f"Cascade {cascade.id}: step '{step}' removed {count} rows for advertiser {advertiser_id}")
        except Exception as e:
            db.rollback()
            logger.error(f"Cascade {cascade.id}: step '{step}' failed for advertiser {advertiser_id}: {e}")

            cascade.status = "failed"
            cascade.failed_step = step
            cascade.error = str(e)
            if _compensate(db, cascade):
                cascade.status = "compensated"
                logger.warning(f"Cascade {cascade.id}: advertiser {advertiser_id} restored to '{cascade.previous_status}'")
            db.commit()
            return cascade

    cascade.status = "completed"
    cascade.failed_step = None
    cascade.error = None
    db.commit()
    logger.info(f"Cascade {cascade.id}: advertiser {advertiser_id} deleted")
    return cascade


def delete_advertiser(db: Session, advertiser_id: int, actor_id: str = "system") -> DeletionCascade:
    advertiser = db.query(Advertiser).get(advertiser_id)
    if not advertiser:
        raise NotFound(f"Advertiser {advertiser_id} not found")

    cascade = DeletionCascade(
        advertiser_id=advertiser_id,
        requested_by=actor_id,
        status="running",
        previous_status=advertiser.status,
        completed_steps=[],
        step_counts={},
    )
    db.add(cascade)
    db.commit()
    db.refresh(cascade)
    logger.info(f"Cascade {cascade.id}: deletion of advertiser {advertiser_id} requested by {actor_id}")
    return _run(db, cascade)


def resume_cascade(db: Session, cascade_id: int) -> DeletionCascade:
    cascade = get_cascade(db, cascade_id)
    if cascade.status != "failed":
        raise InvalidTransition(f"Cascade {cascade_id} is '{cascade.status}', only failed cascades can be resumed")

    cascade.status = "running"
    cascade.failed_step = None
    cascade.error = None
    db.commit()
    logger.info(f"Cascade {cascade_id}: resuming after {cascade.completed_steps}")
    return _run(db, cascade)


def cascade_report(cascade: DeletionCascade) -> dict:
    return {
        "cascade_id": cascade.id,
        "advertiser_id": cascade.advertiser_id,
        "status": cascade.status,
        "completed_steps": list(cascade.completed_steps or []),
        "step_counts": dict(cascade.step_counts or {}),
        "failed_step": cascade.failed_step,
        "error": cascade.error,
    }
