# db/init.py
from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from dotenv import load_dotenv
import os

load_dotenv()

# ---- Database engine & Session ----
DATABASE_URL = os.getenv("DATABASE_URL")
if not DATABASE_URL:
    raise RuntimeError("DATABASE_URL is not set in environment (.env)")

_connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(DATABASE_URL, connect_args=_connect_args)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# ---- Base for ORM models ----
Base = declarative_base()


# ---- DB session dependency ----
def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def register_models():
    """Import every model module so its table is registered on Base."""
    from models import (  # noqa: F401
        advertiser,
        plan,
        subscription,
        invoice,
        payment,
        refund,
        subscription_status_history,
        grace_period_extension,
        deletion_cascade,
    )


# ---- Initialization ----
def init_db(bind=None):
    """
    Imports all model modules to register tables and creates them.
    """
    register_models()
    Base.metadata.create_all(bind=bind or engine)
