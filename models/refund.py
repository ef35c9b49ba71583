from sqlalchemy import Column, Integer, String, Numeric, ForeignKey, DateTime, func
from db.init import Base

class Refund(Base):
    __tablename__ = "refunds"

    id = Column(Integer, primary_key=True, index=True)
    subscription_id = Column(Integer, ForeignKey("subscriptions.id"), nullable=False, index=True)
    invoice_id = Column(Integer, ForeignKey("invoices.id"), nullable=True)
    payment_id = Column(Integer, ForeignKey("payments.id"), nullable=True)
    original_amount = Column(Numeric(12, 2), nullable=False)
    refund_amount = Column(Numeric(12, 2), nullable=False)
    refund_reason = Column(String(500), nullable=False)
    refund_method = Column(String(50), default="bank_transfer")
    refund_date = Column(DateTime(timezone=True), nullable=False)
    processed_by = Column(String(150), nullable=True)
    status = Column(String(20), default="pending")  # pending / approved / completed / rejected
    bank_details = Column(String, nullable=True)
    notes = Column(String, nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
