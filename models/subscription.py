from sqlalchemy import Column, Integer, String, Boolean, Numeric, ForeignKey, DateTime, func
from db.init import Base

class Subscription(Base):
    __tablename__ = "subscriptions"

    id = Column(Integer, primary_key=True, index=True)
    advertiser_id = Column(Integer, ForeignKey("advertisers.id"), nullable=False, index=True)
    plan_id = Column(Integer, ForeignKey("plans.id"), nullable=False)
    coverage_type = Column(String(20), default="city")  # kingdom / city
    city = Column(String(100), nullable=True)

    start_date = Column(DateTime(timezone=True), nullable=False)
    end_date = Column(DateTime(timezone=True), nullable=False)

    # ---- Money (services.ledger only) ----
    base_price = Column(Numeric(12, 2), nullable=False)
    discount_type = Column(String(20), default="amount")  # amount / percentage
    discount_amount = Column(Numeric(12, 2), default=0)
    vat_percentage = Column(Numeric(5, 2), default=0)
    vat_amount = Column(Numeric(12, 2), default=0)
    total_amount = Column(Numeric(12, 2), nullable=False)
    paid_amount = Column(Numeric(12, 2), default=0)
    remaining_amount = Column(Numeric(12, 2), default=0)
    payment_status = Column(String(20), default="pending")  # pending / partial / paid

    # ---- Lifecycle (services.lifecycle / services.grace_period only) ----
    status = Column(String(20), default="pending_payment", index=True)
    # pending_payment / active / paused / stopped / expired / cancelled

    paused_at = Column(DateTime(timezone=True), nullable=True)
    resumed_at = Column(DateTime(timezone=True), nullable=True)
    remaining_active_days = Column(Integer, nullable=True)
    active_days = Column(Integer, default=0)
    total_paused_days = Column(Integer, default=0)
    current_pause_days = Column(Integer, default=0)
    original_start_date = Column(DateTime(timezone=True), nullable=True)
    original_end_date = Column(DateTime(timezone=True), nullable=True)
    planned_days = Column(Integer, nullable=True)

    stopped_at = Column(DateTime(timezone=True), nullable=True)
    stop_reason = Column(String(500), nullable=True)
    actual_end_date = Column(DateTime(timezone=True), nullable=True)

    is_in_grace_period = Column(Boolean, default=False, index=True)
    grace_period_days = Column(Integer, nullable=True)
    grace_period_started_at = Column(DateTime(timezone=True), nullable=True)
    grace_period_end_date = Column(DateTime(timezone=True), nullable=True)
    total_grace_extensions = Column(Integer, default=0)

    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    cancel_reason = Column(String(500), nullable=True)

    notes = Column(String, nullable=True)
    version = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Optimistic compare-and-swap: every UPDATE checks and bumps `version`
    __mapper_args__ = {"version_id_col": version}
