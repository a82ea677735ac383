from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from funnelbot.database import get_db
from funnelbot.schemas.payment import (
    PaymentIntentRequest,
    PaymentSessionOut,
    PaymentStatusUpdate,
    ReconcileResponse,
)
from funnelbot.services.payment_service import reconcile_status_update, register_payment_intent

router = APIRouter()


@router.post("/payments/intents", response_model=PaymentSessionOut)
def create_payment_intent(request: PaymentIntentRequest, db: Session = Depends(get_db)):
    session = register_payment_intent(db, request)
    db.commit()
    return session


@router.post("/payments/webhook", response_model=ReconcileResponse)
def payment_webhook(update: PaymentStatusUpdate, db: Session = Depends(get_db)):
    """Gateway notification. Safe to redeliver."""
    return reconcile_status_update(db, update, source="webhook")


@router.post("/payments/poll", response_model=ReconcileResponse)
def payment_poll(update: PaymentStatusUpdate, db: Session = Depends(get_db)):
    """Status fetched by the polling job."""
    return reconcile_status_update(db, update, source="polling")
