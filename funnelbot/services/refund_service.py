from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from funnelbot.database import dialect_insert
from funnelbot.errors import NotFoundError, ValidationError, store_errors
from funnelbot.logging_config import get_logger
from funnelbot.models import Refund
from funnelbot.schemas.billing import RefundOut, RefundRequest
from funnelbot.services import subscription_service

logger = get_logger("refund_service")

REFUND_STATUSES = {"pending", "approved", "failed"}
UPDATABLE_FIELDS = {"status", "transaction_id", "reason", "refund_metadata"}


def to_out(refund: Refund) -> RefundOut:
    return RefundOut(
        tenant_id=refund.tenant_id,
        payment_id=refund.payment_id,
        session_id=refund.session_id,
        amount=refund.amount,
        reason=refund.reason,
        gateway=refund.gateway,
        status=refund.status,
        refund_date=refund.refund_date,
    )


def create_refund(db: Session, request: RefundRequest) -> tuple[Refund, bool]:
    """Insert the refund once per (tenant, payment, session).

    Returns the stored refund and whether this call created it.
    """
    stmt = (
        dialect_insert(db, Refund.__table__)
        .values(
            tenant_id=request.tenant_id,
            payment_id=request.payment_id,
            session_id=request.session_id,
            transaction_id=request.transaction_id,
            amount=request.amount,
            reason=request.reason,
            gateway=request.gateway,
            status=request.status,
            refund_metadata=request.metadata,
            refund_date=datetime.now(timezone.utc),
        )
        .on_conflict_do_nothing(index_elements=["tenant_id", "payment_id", "session_id"])
    )
    with store_errors("create refund"):
        created = db.execute(stmt).rowcount > 0
        refund = (
            db.execute(
                select(Refund)
                .where(
                    Refund.tenant_id == request.tenant_id,
                    Refund.payment_id == request.payment_id,
                    Refund.session_id == request.session_id,
                )
                .execution_options(populate_existing=True)
            )
            .scalars()
            .one()
        )
    return refund, created


def list_refunds_by_tenant(db: Session, tenant_id: str) -> list[Refund]:
    with store_errors("list refunds"):
        return list(
            db.execute(select(Refund).where(Refund.tenant_id == tenant_id).order_by(Refund.refund_date.desc()))
            .scalars()
            .all()
        )


def list_refunds_by_session(db: Session, tenant_id: str, session_id: str) -> list[Refund]:
    with store_errors("list refunds"):
        return list(
            db.execute(
                select(Refund)
                .where(Refund.tenant_id == tenant_id, Refund.session_id == session_id)
                .order_by(Refund.refund_date.desc())
            )
            .scalars()
            .all()
        )


def update_refund(db: Session, tenant_id: str, session_id: str, updates: dict[str, Any]) -> Refund:
    unknown = set(updates) - UPDATABLE_FIELDS
    if unknown:
        raise ValidationError(f"Cannot update refund fields: {', '.join(sorted(unknown))}")
    if "status" in updates and updates["status"] not in REFUND_STATUSES:
        raise ValidationError(f"Invalid refund status '{updates['status']}'")

    with store_errors("update refund"):
        refund = (
            db.execute(
                select(Refund)
                .where(Refund.tenant_id == tenant_id, Refund.session_id == session_id)
                .order_by(Refund.refund_date.desc())
                .limit(1)
            )
            .scalars()
            .first()
        )
        if refund is None:
            raise NotFoundError(f"No refund for session {session_id}")
        for field, value in updates.items():
            setattr(refund, field, value)
        refund.updated_at = datetime.now(timezone.utc)
        db.flush()
    return refund


def refund_payment(db: Session, request: RefundRequest) -> tuple[Refund, Optional[str]]:
    """Record a refund and take back what the payment bought.

    Returns the refund and what was revoked: ``plan``, ``extra_slots`` or None.
    A repeated request returns the stored refund and revokes nothing.
    """
    refund, created = create_refund(db, request)
    if not created:
        logger.info(
            "Refund already recorded",
            extra={"context": {"tenant_id": request.tenant_id, "payment_id": request.payment_id}},
        )
        return refund, None

    revoked: Optional[str] = None
    subscription = subscription_service.get_active_subscription(db, request.tenant_id)
    if subscription is not None:
        if subscription.payment_id == request.payment_id:
            subscription.status = "refunded"
            revoked = "plan"
        elif subscription_service.remove_extra_slots_by_payment(db, request.tenant_id, request.payment_id):
            revoked = "extra_slots"
        db.flush()

    logger.info(
        "Payment refunded",
        extra={"context": {"tenant_id": request.tenant_id, "payment_id": request.payment_id, "revoked": revoked}},
    )
    return refund, revoked
