import os
import logging

from fastapi import FastAPI
from db.init import init_db
from dotenv import load_dotenv

load_dotenv()

from routers import advertiser, plan, subscription, payment, invoice, refund
from fastapi.middleware.cors import CORSMiddleware

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

origins = [o.strip() for o in os.getenv("CORS_ORIGINS", "http://localhost:8080").split(",") if o.strip()]


app = FastAPI(title="Advertiser Billing Backend")

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,          # cannot be ["*"] if allow_credentials=True
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.on_event("startup")
def startup():
    init_db()

@app.get("/health")
def health_check():
    return {"status": "ok"}

# Routers
app.include_router(advertiser.router, prefix="/advertisers", tags=["Advertisers"])
app.include_router(plan.router, prefix="/plans", tags=["Plans"])
app.include_router(subscription.router, prefix="/subscriptions", tags=["Subscriptions"])
app.include_router(payment.router, prefix="/payments", tags=["Payments"])
app.include_router(invoice.router, prefix="/invoices", tags=["Invoices"])
app.include_router(refund.router, prefix="/refunds", tags=["Refunds"])


@app.get("/")
def root():
    return {"message": "Advertiser Billing Backend running successfully"}
