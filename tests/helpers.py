import sys
import os
import unittest
from datetime import datetime
from decimal import Decimal

# Add parent directory to path to import modules
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
os.environ.setdefault("DATABASE_URL", "sqlite://")

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from db.init import Base, register_models
from models.advertiser import Advertiser
from models.plan import Plan
from services.ledger import create_subscription_with_invoice
from utils.clock import FrozenClock

# 2025-01-01 09:00 business time
START = datetime(2025, 1, 1, 9, 0)


class BillingTestCase(unittest.TestCase):
    """Fresh in-memory database and a frozen clock for every test."""

    def setUp(self):
        register_models()
        self.engine = create_engine(
            "sqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        Base.metadata.create_all(self.engine)
        self.db = sessionmaker(bind=self.engine, autocommit=False, autoflush=False)()
        self.clock = FrozenClock(START)

    def tearDown(self):
        self.db.close()
        Base.metadata.drop_all(self.engine)
        self.engine.dispose()

    def make_advertiser(self, **kwargs) -> Advertiser:
        values = {
            "company_name": "Al Noor Trading",
            "phone": "+966500000001",
            "email": "owner@alnoor.example",
            "status": "active",
            "customer_type": "new",
            "include_vat": False,
            "coverage_cities": [],
        }
        values.update(kwargs)
        advertiser = Advertiser(**values)
        self.db.add(advertiser)
        self.db.commit()
        return advertiser

    def make_plan(self, **kwargs) -> Plan:
        values = {
            "name": "Monthly City",
            "duration_days": 30,
            "price": Decimal("1000"),
            "plan_type": "city",
            "city": "Riyadh",
            "is_active": True,
        }
        values.update(kwargs)
        plan = Plan(**values)
        self.db.add(plan)
        self.db.commit()
        return plan

    def subscribe(self, advertiser=None, plan=None, **kwargs):
        advertiser = advertiser or self.make_advertiser()
        plan = plan or self.make_plan()
        kwargs.setdefault("actor_id", "admin-1")
        return create_subscription_with_invoice(
            self.db,
            advertiser_id=advertiser.id,
            plan_id=plan.id,
            clock=self.clock,
            **kwargs,
        )

    def reload(self, model, id):
        self.db.expire_all()
        return self.db.query(model).get(id)
