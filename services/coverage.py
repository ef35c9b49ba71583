"""
Coverage Projector.

Rebuilds an advertiser's public visibility scope from its *active*
subscriptions. Advertiser.coverage_type / coverage_cities are a read model:
nothing else writes them, and a failed rebuild never fails the operation that
triggered it.
"""
import logging
from dataclasses import dataclass, field
from typing import Optional, List, Dict, Any

from sqlalchemy.orm import Session

from models.advertiser import Advertiser
from models.subscription import Subscription
from utils.errors import NotFound

logger = logging.getLogger(__name__)


@dataclass
class CoverageProjection:
    advertiser_id: int
    coverage_type: Optional[str]
    coverage_cities: List[str] = field(default_factory=list)
    active_subscriptions: int = 0


def project_coverage(subscriptions) -> tuple[Optional[str], List[str]]:
    has_kingdom = False
    has_city = False
    cities = set()

    for sub in subscriptions:
        if sub.status != "active":
            continue
        if sub.coverage_type == "kingdom":
            has_kingdom = True
        else:
            has_city = True
            if sub.city:
                cities.add(sub.city)

    if has_kingdom and has_city:
        coverage_type = "both"
    elif has_kingdom:
        coverage_type = "kingdom"
    elif has_city:
        coverage_type = "city"
    else:
        coverage_type = None

    return coverage_type, sorted(cities)


def rebuild_coverage(db: Session, advertiser_id: int) -> CoverageProjection:
    advertiser = db.query(Advertiser).get(advertiser_id)
    if not advertiser:
        raise NotFound(f"Advertiser {advertiser_id} not found")

    active = (
        db.query(Subscription)
        .filter(Subscription.advertiser_id == advertiser_id, Subscription.status == "active")
        .all()
    )
    coverage_type, cities = project_coverage(active)

    advertiser.coverage_type = coverage_type
    advertiser.coverage_cities = cities
    db.commit()

    logger.info(f"Coverage for advertiser {advertiser_id}: {coverage_type} {cities}")
    return CoverageProjection(
        advertiser_id=advertiser_id,
        coverage_type=coverage_type,
        coverage_cities=cities,
        active_subscriptions=len(active),
    )


def refresh_coverage_safely(db: Session, advertiser_id: int) -> Optional[CoverageProjection]:
    """Best-effort rebuild used after ledger and lifecycle writes."""
    try:
        return rebuild_coverage(db, advertiser_id)
    except Exception as e:
        db.rollback()
        logger.error(f"Failed to rebuild coverage for advertiser {advertiser_id}: {e}")
        return None


def rebuild_all_coverage(db: Session) -> Dict[str, Any]:
    results = []
    updated = 0
    errors = 0

    for (advertiser_id,) in db.query(Advertiser.id).order_by(Advertiser.id).all():
        try:
            projection = rebuild_coverage(db, advertiser_id)
            updated += 1
            results.append({
                "advertiser_id": advertiser_id,
                "status": "updated",
                "coverage_type": projection.coverage_type,
                "coverage_cities": projection.coverage_cities,
            })
        except Exception as e:
            db.rollback()
            errors += 1
            logger.error(f"Coverage rebuild failed for advertiser {advertiser_id}: {e}")
            results.append({"advertiser_id": advertiser_id, "status": "error", "error": str(e)})

    return {
        "total_checked": len(results),
        "updated": updated,
        "errors": errors,
        "details": results,
    }
