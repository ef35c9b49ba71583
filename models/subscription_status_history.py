from sqlalchemy import Column, Integer, String, Numeric, DateTime, func
from db.init import Base

class SubscriptionStatusHistory(Base):
    __tablename__ = "subscription_status_history"

    # Append-only audit trail. No FK so rows outlive deleted subscriptions.
    id = Column(Integer, primary_key=True, index=True)
    subscription_id = Column(Integer, nullable=False, index=True)
    advertiser_id = Column(Integer, nullable=False, index=True)
    from_status = Column(String(20), nullable=False)
    to_status = Column(String(20), nullable=False)
    action_type = Column(String(20), nullable=False)
    # pause / resume / stop / reactivate / expire / activate / cancel / grace_start / grace_end
    changed_at = Column(DateTime(timezone=True), nullable=False)
    effective_from = Column(DateTime(timezone=True), nullable=True)
    days_before_change = Column(Integer, default=0)
    days_after_change = Column(Integer, default=0)
    pause_duration_days = Column(Integer, nullable=True)
    changed_by = Column(String(150), nullable=False)
    changed_by_type = Column(String(20), default="admin")  # admin / system
    reason = Column(String(500), nullable=True)
    notes = Column(String, nullable=True)
    amount_paid = Column(Numeric(12, 2), nullable=True)
    amount_remaining = Column(Numeric(12, 2), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
