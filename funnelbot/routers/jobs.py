from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from funnelbot.database import get_db
from funnelbot.services import scheduler_service, subscription_service

router = APIRouter(prefix="/jobs")


@router.post("/scheduled-messages/process")
def process_scheduled_messages(db: Session = Depends(get_db)):
    """Deliver due follow-ups and reminders now instead of waiting for the worker."""
    return scheduler_service.process_due_messages(db)


@router.post("/subscriptions/expire")
def expire_subscriptions(db: Session = Depends(get_db)):
    expired = subscription_service.expire_outdated_subscriptions(db)
    db.commit()
    return {"expired": expired}
