from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from funnelbot.database import get_db
from funnelbot.schemas.billing import (
    ExtraSlotsRequest,
    RefundRequest,
    RefundResultOut,
    SubscriptionCreateRequest,
    SubscriptionOut,
    SubscriptionRenewRequest,
)
from funnelbot.services import refund_service, subscription_service

router = APIRouter(prefix="/billing")


@router.post("/subscriptions", response_model=SubscriptionOut)
def create_subscription(request: SubscriptionCreateRequest, db: Session = Depends(get_db)):
    subscription = subscription_service.create_subscription(
        db,
        request.tenant_id,
        request.plan_name,
        request.payment_id,
        duration_days=request.duration_days,
    )
    db.commit()
    return subscription_service.to_out(subscription)


@router.post("/subscriptions/upgrade", response_model=SubscriptionOut)
def upgrade_subscription(request: SubscriptionCreateRequest, db: Session = Depends(get_db)):
    subscription = subscription_service.upgrade_subscription(
        db,
        request.tenant_id,
        request.plan_name,
        request.payment_id,
        duration_days=request.duration_days,
    )
    db.commit()
    return subscription_service.to_out(subscription)


@router.post("/subscriptions/renew", response_model=SubscriptionOut)
def renew_subscription(request: SubscriptionRenewRequest, db: Session = Depends(get_db)):
    subscription = subscription_service.renew_subscription(
        db,
        request.tenant_id,
        request.payment_id,
        duration_days=request.duration_days,
        renew_with_slots=request.renew_with_slots,
    )
    db.commit()
    return subscription_service.to_out(subscription)


@router.post("/slots", response_model=SubscriptionOut)
def add_extra_slots(request: ExtraSlotsRequest, db: Session = Depends(get_db)):
    subscription = subscription_service.add_extra_slots(db, request.tenant_id, request.count, request.payment_id)
    db.commit()
    return subscription_service.to_out(subscription)


@router.post("/refunds", response_model=RefundResultOut)
def refund_payment(request: RefundRequest, db: Session = Depends(get_db)):
    refund, revoked = refund_service.refund_payment(db, request)
    db.commit()
    return RefundResultOut(refund=refund_service.to_out(refund), revoked=revoked)
