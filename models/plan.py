from sqlalchemy import Column, Integer, String, Boolean, Numeric, DateTime, func
from db.init import Base

class Plan(Base):
    __tablename__ = "plans"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    duration_days = Column(Integer, nullable=False)
    price = Column(Numeric(12, 2), nullable=False)
    plan_type = Column(String(20), default="city")  # kingdom / city
    city = Column(String(100), nullable=True)
    features = Column(String, nullable=True)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
