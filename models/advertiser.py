from sqlalchemy import Column, Integer, String, Boolean, Numeric, JSON, DateTime, func
from db.init import Base

class Advertiser(Base):
    __tablename__ = "advertisers"

    id = Column(Integer, primary_key=True, index=True)
    company_name = Column(String(150), nullable=False)
    phone = Column(String(20), nullable=False)
    whatsapp = Column(String(20), nullable=True)
    email = Column(String(150), nullable=True)
    services = Column(String, nullable=True)
    status = Column(String(20), default="active")  # active / inactive / pending
    customer_type = Column(String(20), default="new")  # new / trusted / vip
    include_vat = Column(Boolean, default=False)
    vat_percentage = Column(Numeric(5, 2), nullable=True)
    # Written only by services.coverage
    coverage_type = Column(String(20), nullable=True)  # kingdom / city / both
    coverage_cities = Column(JSON, default=list)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
