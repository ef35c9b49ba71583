from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, func
from db.init import Base

class GracePeriodExtension(Base):
    __tablename__ = "grace_period_extensions"

    id = Column(Integer, primary_key=True, index=True)
    subscription_id = Column(Integer, ForeignKey("subscriptions.id"), nullable=False, index=True)
    days_added = Column(Integer, nullable=False)
    previous_end_date = Column(DateTime(timezone=True), nullable=False)
    new_end_date = Column(DateTime(timezone=True), nullable=False)
    extended_at = Column(DateTime(timezone=True), nullable=False)
    extended_by = Column(String(150), nullable=False)
    reason = Column(String(500), nullable=True)
    notes = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
