from sqlalchemy import Column, Integer, String, JSON, DateTime, func
from db.init import Base

class DeletionCascade(Base):
    __tablename__ = "deletion_cascades"

    id = Column(Integer, primary_key=True, index=True)
    advertiser_id = Column(Integer, nullable=False, index=True)
    requested_by = Column(String(150), nullable=True)
    status = Column(String(20), default="running")  # running / completed / failed / compensated
    previous_status = Column(String(20), nullable=True)
    completed_steps = Column(JSON, default=list)
    step_counts = Column(JSON, default=dict)
    failed_step = Column(String(50), nullable=True)
    error = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
