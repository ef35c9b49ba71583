from sqlalchemy import Column, Integer, String, Numeric, ForeignKey, DateTime, func
from db.init import Base

class Invoice(Base):
    __tablename__ = "invoices"

    id = Column(Integer, primary_key=True, index=True)
    invoice_number = Column(String(40), unique=True, nullable=False)
    subscription_id = Column(Integer, ForeignKey("subscriptions.id"), nullable=False, index=True)
    subtotal = Column(Numeric(12, 2), nullable=False)
    vat_percentage = Column(Numeric(5, 2), default=0)
    vat_amount = Column(Numeric(12, 2), default=0)
    amount = Column(Numeric(12, 2), nullable=False)  # subtotal + vat_amount
    status = Column(String(20), default="unpaid")  # unpaid / partial / paid / cancelled
    issued_date = Column(DateTime(timezone=True), nullable=False)
    due_date = Column(DateTime(timezone=True), nullable=True)
    paid_date = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
