from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from typing import Optional
from decimal import Decimal
from pydantic import BaseModel
import logging

from db.init import get_db
from models.advertiser import Advertiser
from services.cascade import delete_advertiser, resume_cascade, cascade_report
from services.coverage import rebuild_coverage, rebuild_all_coverage
from services.ledger import get_financial_summary
from utils.deps import role_required, get_actor_id
from utils.errors import BillingError
from utils.serializers import row_to_dict, rows_to_list

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(role_required("admins"))])

ADVERTISER_STATUSES = ("active", "inactive", "pending")
CUSTOMER_TYPES = ("new", "trusted", "vip")

# --- Pydantic Models ---

class AdvertiserCreate(BaseModel):
    company_name: str
    phone: str
    whatsapp: Optional[str] = None
    email: Optional[str] = None
    services: Optional[str] = None
    status: str = "active"
    customer_type: str = "new"
    include_vat: bool = False
    vat_percentage: Optional[Decimal] = None

class AdvertiserUpdate(BaseModel):
    company_name: Optional[str] = None
    phone: Optional[str] = None
    whatsapp: Optional[str] = None
    email: Optional[str] = None
    services: Optional[str] = None
    status: Optional[str] = None
    customer_type: Optional[str] = None
    include_vat: Optional[bool] = None
    vat_percentage: Optional[Decimal] = None


def _validate(data: dict):
    if data.get("status") is not None and data["status"] not in ADVERTISER_STATUSES:
        raise HTTPException(status_code=400, detail=f"Invalid status: {data['status']}")
    if data.get("customer_type") is not None and data["customer_type"] not in CUSTOMER_TYPES:
        raise HTTPException(status_code=400, detail=f"Invalid customer type: {data['customer_type']}")
    pct = data.get("vat_percentage")
    if pct is not None and (pct < 0 or pct > 100):
        raise HTTPException(status_code=400, detail="VAT percentage must be between 0 and 100")


@router.get("/")
def get_all(status: Optional[str] = None, db: Session = Depends(get_db)):
    query = db.query(Advertiser)
    if status:
        query = query.filter(Advertiser.status == status)
    return rows_to_list(query.order_by(Advertiser.company_name.asc()).all())


@router.post("/coverage/rebuild")
def rebuild_all(db: Session = Depends(get_db)):
    """Re-project coverage for every advertiser and report per-advertiser outcomes."""
    try:
        return rebuild_all_coverage(db)
    except Exception as e:
        logger.error(f"Coverage rebuild failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/cascades/{cascade_id}/resume")
def resume_deletion(cascade_id: int, db: Session = Depends(get_db), actor_id: str = Depends(get_actor_id)):
    try:
        cascade = resume_cascade(db, cascade_id)
        logger.info(f"Cascade {cascade_id} resumed by {actor_id}")
        return cascade_report(cascade)
    except BillingError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    except Exception as e:
        logger.error(f"Error resuming cascade {cascade_id}: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/{id}")
def get_by_id(id: int, db: Session = Depends(get_db)):
    advertiser = db.query(Advertiser).get(id)
    if not advertiser:
        raise HTTPException(status_code=404, detail="Advertiser not found")
    return row_to_dict(advertiser)


@router.post("/")
def create(data: AdvertiserCreate, db: Session = Depends(get_db), actor_id: str = Depends(get_actor_id)):
    values = data.model_dump()
    _validate(values)

    advertiser = Advertiser(**values, coverage_cities=[])
    db.add(advertiser)
    db.commit()
    db.refresh(advertiser)
    logger.info(f"Advertiser {advertiser.id} created by {actor_id}")
    return row_to_dict(advertiser)


@router.put("/{id}")
def update(id: int, data: AdvertiserUpdate, db: Session = Depends(get_db), actor_id: str = Depends(get_actor_id)):
    advertiser = db.query(Advertiser).get(id)
    if not advertiser:
        raise HTTPException(status_code=404, detail="Advertiser not found")

    # coverage_type / coverage_cities are not part of AdvertiserUpdate: only the projector writes them
    values = data.model_dump(exclude_unset=True)
    _validate(values)
    for k, v in values.items():
        setattr(advertiser, k, v)
    db.commit()
    db.refresh(advertiser)
    logger.info(f"Advertiser {id} updated by {actor_id}: {sorted(values)}")
    return row_to_dict(advertiser)


@router.delete("/{id}")
def delete(id: int, db: Session = Depends(get_db), actor_id: str = Depends(get_actor_id)):
    try:
        cascade = delete_advertiser(db, id, actor_id=actor_id)
        return cascade_report(cascade)
    except BillingError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    except Exception as e:
        logger.error(f"Error deleting advertiser {id}: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/{id}/financial-summary")
def financial_summary(id: int, db: Session = Depends(get_db)):
    try:
        summary = get_financial_summary(db, id)
        summary["payment_history"] = rows_to_list(summary["payment_history"])
        summary["unpaid_invoices"] = rows_to_list(summary["unpaid_invoices"])
        return summary
    except BillingError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    except Exception as e:
        logger.error(f"Error building financial summary for advertiser {id}: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/{id}/coverage")
def rebuild(id: int, db: Session = Depends(get_db)):
    try:
        return rebuild_coverage(db, id)
    except BillingError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    except Exception as e:
        logger.error(f"Error rebuilding coverage for advertiser {id}: {e}")
        raise HTTPException(status_code=500, detail=str(e))
