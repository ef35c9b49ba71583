from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from typing import Optional

from db.init import get_db
from models.invoice import Invoice
from services.ledger import get_overdue_invoices
from utils.clock import Clock, get_clock
from utils.deps import role_required
from utils.serializers import row_to_dict, rows_to_list

router = APIRouter(dependencies=[Depends(role_required("admins"))])


@router.get("/")
def get_all(subscription_id: Optional[int] = None, status: Optional[str] = None, db: Session = Depends(get_db)):
    query = db.query(Invoice)
    if subscription_id is not None:
        query = query.filter(Invoice.subscription_id == subscription_id)
    if status:
        query = query.filter(Invoice.status == status)
    return rows_to_list(query.order_by(Invoice.issued_date.desc(), Invoice.id.desc()).all())


@router.get("/unpaid")
def get_unpaid(db: Session = Depends(get_db)):
    """Invoices still waiting for money, oldest first."""
    rows = (
        db.query(Invoice)
        .filter(Invoice.status.in_(("unpaid", "partial")))
        .order_by(Invoice.issued_date.asc(), Invoice.id.asc())
        .all()
    )
    return rows_to_list(rows)


@router.get("/overdue")
def get_overdue(db: Session = Depends(get_db), clock: Clock = Depends(get_clock)):
    """Unpaid invoices past their due date."""
    return rows_to_list(get_overdue_invoices(db, clock=clock))


@router.get("/{id}")
def get_by_id(id: int, db: Session = Depends(get_db)):
    invoice = db.query(Invoice).get(id)
    if not invoice:
        raise HTTPException(status_code=404, detail="Invoice not found")
    return row_to_dict(invoice)
