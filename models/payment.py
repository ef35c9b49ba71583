from sqlalchemy import Column, Integer, String, Numeric, ForeignKey, DateTime, func
from db.init import Base

class Payment(Base):
    __tablename__ = "payments"

    # Append-only: rows are never updated
    id = Column(Integer, primary_key=True, index=True)
    subscription_id = Column(Integer, ForeignKey("subscriptions.id"), nullable=False, index=True)
    invoice_id = Column(Integer, ForeignKey("invoices.id"), nullable=True, index=True)
    amount = Column(Numeric(12, 2), nullable=False)
    payment_date = Column(DateTime(timezone=True), nullable=False)
    payment_method = Column(String(50), default="cash")
    transaction_id = Column(String(255), nullable=True)
    notes = Column(String, nullable=True)
    recorded_by = Column(String(150), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
