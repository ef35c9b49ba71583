"""
Per-subscription mutual exclusion.

The ledger and the lifecycle state machine both write to the same
subscription row. Inside one process they serialize on a lock keyed by the
subscription id; across processes the `version` column on Subscription turns
a lost race into a StaleDataError at commit time.

A lock lives in the registry only while some thread holds or waits on it.
"""
import logging
import threading
from contextlib import contextmanager

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from utils.errors import ConcurrentModification

logger = logging.getLogger(__name__)

_registry_lock = threading.Lock()
# subscription id -> [lock, number of holders and waiters]
_subscription_locks: dict[int, list] = {}


@contextmanager
def subscription_lock(subscription_id: int):
    key = int(subscription_id)
    with _registry_lock:
        entry = _subscription_locks.get(key)
        if entry is None:
            entry = _subscription_locks[key] = [threading.RLock(), 0]
        entry[1] += 1
    try:
        with entry[0]:
            yield
    finally:
        with _registry_lock:
            entry[1] -= 1
            if entry[1] == 0:
                del _subscription_locks[key]


def commit_or_conflict(db: Session, what: str):
    """Commit, turning a version mismatch into ConcurrentModification."""
    try:
        db.commit()
    except StaleDataError:
        db.rollback()
        logger.warning(f"Concurrent modification detected while saving {what}")
        raise ConcurrentModification(f"{what} was modified by another request, retry the operation")
