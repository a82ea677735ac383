"""Payment sessions and reconciliation of gateway webhooks with polling.

Webhook and polling race freely. The only ordering guarantee is that a
terminal status, once written, never changes: the status write is a single
UPDATE conditioned on the row still being ``pending``.
"""

from datetime import datetime, timezone
from typing import Literal, Optional

from sqlalchemy import and_, case, func, or_, select, update
from sqlalchemy.orm import Session

from funnelbot.database import dialect_insert
from funnelbot.errors import NotFoundError, store_errors
from funnelbot.logging_config import get_logger
from funnelbot.models import PaymentAnomaly, PaymentSession
from funnelbot.schemas.calling import (
    PAYMENT_MADE,
    CallingContext,
    PaymentCalling,
    PaymentValidation,
    TriggerReport,
)
from funnelbot.schemas.payment import (
    PaymentIntentRequest,
    PaymentSessionKey,
    PaymentSessionOut,
    PaymentStatus,
    PaymentStatusUpdate,
    ReconcileResponse,
)
from funnelbot.services import calling_service, classification_service, escalation_service
from funnelbot.services.alert_service import alert_error, alert_warning
from funnelbot.services.payment_state_machine import (
    PaymentOutcome,
    UpdateDecision,
    decide_update,
    normalize_status,
    validate_payment,
)

logger = get_logger("payment_service")

UpdateSource = Literal["webhook", "polling"]


def format_cents(cents: int) -> float:
    return round(cents / 100, 2)


def _key_filter(key: PaymentSessionKey):
    return (
        PaymentSession.tenant_id == key.tenant_id,
        PaymentSession.bot_id == key.bot_id,
        PaymentSession.counterpart == key.counterpart,
    )


def _to_out(session: PaymentSession) -> PaymentSessionOut:
    return PaymentSessionOut(
        tenant_id=session.tenant_id,
        bot_id=session.bot_id,
        counterpart=session.counterpart,
        session_id=session.session_id,
        transaction_id=session.transaction_id,
        amount_original=session.amount_original,
        amount_formatted=session.amount_formatted,
        gateway=session.gateway,
        status=PaymentStatus(session.status),
        status_updated_at=session.status_updated_at,
        last_webhook_at=session.last_webhook_at,
        last_polling_at=session.last_polling_at,
    )


def _select_session(db: Session, key: PaymentSessionKey) -> Optional[PaymentSession]:
    return db.execute(
        select(PaymentSession).where(*_key_filter(key)).execution_options(populate_existing=True)
    ).scalar_one_or_none()


def get_payment_session(db: Session, key: PaymentSessionKey) -> PaymentSessionOut:
    with store_errors("get payment session"):
        session = _select_session(db, key)
    if session is None:
        raise NotFoundError(f"No payment session for {key.counterpart}")
    return _to_out(session)


def list_pending_sessions(db: Session, tenant_id: str, bot_id: Optional[str] = None) -> list[PaymentSessionOut]:
    """Sessions the polling job still has to ask the gateway about."""
    query = select(PaymentSession).where(
        PaymentSession.tenant_id == tenant_id,
        PaymentSession.status == PaymentStatus.PENDING.value,
    )
    if bot_id is not None:
        query = query.where(PaymentSession.bot_id == bot_id)
    with store_errors("list pending payment sessions"):
        rows = db.execute(query.order_by(PaymentSession.created_at)).scalars().all()
    return [_to_out(row) for row in rows]


def register_payment_intent(db: Session, request: PaymentIntentRequest) -> PaymentSessionOut:
    """Create or refresh the counterpart's payment session.

    A new gateway session id starts over at ``pending``; re-sending the same
    session id keeps whatever status it already reached.
    """
    now = datetime.now(timezone.utc)
    table = PaymentSession.__table__
    stmt = dialect_insert(db, table).values(
        tenant_id=request.tenant_id,
        bot_id=request.bot_id,
        counterpart=request.counterpart,
        counterpart_name=request.counterpart_name,
        session_id=request.session_id,
        transaction_id=request.transaction_id,
        amount_original=request.amount,
        amount_formatted=format_cents(request.amount),
        gateway=request.gateway.value,
        status=PaymentStatus.PENDING.value,
        status_updated_at=now,
        created_at=now,
    )
    same_session = table.c.session_id == stmt.excluded.session_id
    stmt = stmt.on_conflict_do_update(
        index_elements=["bot_id", "tenant_id", "counterpart"],
        set_={
            "counterpart_name": stmt.excluded.counterpart_name,
            "session_id": stmt.excluded.session_id,
            "transaction_id": case(
                (same_session, func.coalesce(stmt.excluded.transaction_id, table.c.transaction_id)),
                else_=stmt.excluded.transaction_id,
            ),
            "amount_original": stmt.excluded.amount_original,
            "amount_formatted": stmt.excluded.amount_formatted,
            "gateway": stmt.excluded.gateway,
            "status": case((same_session, table.c.status), else_=PaymentStatus.PENDING.value),
            "status_updated_at": case(
                (same_session, table.c.status_updated_at),
                else_=stmt.excluded.status_updated_at,
            ),
        },
    )

    key = PaymentSessionKey(tenant_id=request.tenant_id, bot_id=request.bot_id, counterpart=request.counterpart)
    with store_errors("register payment intent"):
        db.execute(stmt)
        db.flush()
        session = _select_session(db, key)

    logger.info(
        "Payment intent registered",
        extra={
            "context": {
                "tenant_id": request.tenant_id,
                "bot_id": request.bot_id,
                "session_id": request.session_id,
                "amount": request.amount,
                "gateway": request.gateway.value,
            }
        },
    )
    return _to_out(session)


def _record_anomaly(
    db: Session,
    session: PaymentSession,
    source: UpdateSource,
    incoming: PaymentStatus,
    update_in: PaymentStatusUpdate,
    reason: str,
) -> dict:
    """Store the anomaly and return the alert context. The caller alerts after commit."""
    details = {
        "reason": reason,
        "transaction_id": update_in.transaction_id,
        "stored_transaction_id": session.transaction_id,
        "raw_status": update_in.raw_status,
        "amount_minor_units": update_in.amount_minor_units,
    }
    db.add(
        PaymentAnomaly(
            tenant_id=session.tenant_id,
            payment_session_id=session.id,
            source=source,
            current_status=session.status,
            rejected_status=incoming.value,
            details=details,
            created_at=datetime.now(timezone.utc),
        )
    )
    context = {
        "tenant_id": session.tenant_id,
        "bot_id": session.bot_id,
        "counterpart": session.counterpart,
        "source": source,
        "current_status": session.status,
        "rejected_status": incoming.value,
        "reason": reason,
    }
    logger.warning("Payment status update rejected", extra={"context": context})
    return context


def reconcile_status_update(db: Session, update_in: PaymentStatusUpdate, source: UpdateSource) -> ReconcileResponse:
    """Apply one webhook or polling update. Commits.

    On the single transition to ``paid`` the payment is validated and the
    ``payment_made`` calling fires with the matching outcome.
    """
    incoming = normalize_status(update_in.raw_status)
    key = update_in.session_key
    received_at = update_in.received_at or datetime.now(timezone.utc)
    seen_column = "last_webhook_at" if source == "webhook" else "last_polling_at"

    applied = False
    with store_errors("reconcile payment status"):
        if incoming != PaymentStatus.PENDING:
            conditions = [*_key_filter(key), PaymentSession.status == PaymentStatus.PENDING.value]
            values = {"status": incoming.value, "status_updated_at": received_at, seen_column: received_at}
            if update_in.transaction_id:
                conditions.append(
                    or_(
                        PaymentSession.transaction_id.is_(None),
                        PaymentSession.transaction_id == update_in.transaction_id,
                    )
                )
                values["transaction_id"] = update_in.transaction_id
            result = db.execute(
                update(PaymentSession)
                .where(and_(*conditions))
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            applied = result.rowcount == 1

        if not applied:
            result = db.execute(
                update(PaymentSession)
                .where(*_key_filter(key))
                .values(**{seen_column: received_at})
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                db.rollback()
                raise NotFoundError(f"No payment session for {key.counterpart}")

        session = _select_session(db, key)

    current = PaymentStatus(session.status)
    anomaly: Optional[dict] = None
    if applied:
        decision = UpdateDecision.APPLY
    else:
        decision = decide_update(current, incoming)
        if decision == UpdateDecision.APPLY:
            # still pending, so the conditional write missed on the transaction id
            decision = UpdateDecision.REJECT
            anomaly = _record_anomaly(db, session, source, incoming, update_in, "transaction_mismatch")
        elif decision == UpdateDecision.REJECT:
            anomaly = _record_anomaly(db, session, source, incoming, update_in, "terminal_status")

    with store_errors("commit payment status"):
        db.commit()

    if anomaly is not None:
        alert_warning("Payment status update rejected", anomaly)

    logger.info(
        "Payment status reconciled",
        extra={
            "context": {
                "tenant_id": key.tenant_id,
                "counterpart": key.counterpart,
                "source": source,
                "incoming": incoming.value,
                "status": current.value,
                "result": decision.value,
            }
        },
    )

    outcome: Optional[PaymentOutcome] = None
    if decision == UpdateDecision.APPLY and current == PaymentStatus.PAID:
        outcome = _on_paid(db, session, update_in)

    return ReconcileResponse(
        result=decision.value,
        status=current,
        outcome=outcome.value if outcome else None,
    )


def _payment_validation(db: Session, tenant_id: str, bot_id: str) -> PaymentValidation:
    calling = calling_service.get_calling(db, tenant_id, bot_id, PAYMENT_MADE)
    if isinstance(calling, PaymentCalling):
        return calling.payment_config.validation
    return PaymentValidation()


def _on_paid(db: Session, session: PaymentSession, update_in: PaymentStatusUpdate) -> PaymentOutcome:
    """Validate and fire ``payment_made``. The paid status is already committed."""
    tenant_id, bot_id, counterpart = session.tenant_id, session.bot_id, session.counterpart
    counterpart_name = session.counterpart_name
    validation = _payment_validation(db, tenant_id, bot_id)
    outcome = validate_payment(update_in.amount_minor_units, update_in.recipient, validation)

    try:
        classification_service.record_classification(
            db,
            tenant_id,
            bot_id,
            counterpart,
            PAYMENT_MADE,
            counterpart_name=counterpart_name,
            reason=outcome.value,
        )
        report: TriggerReport = calling_service.trigger_calling(
            db,
            tenant_id,
            bot_id,
            PAYMENT_MADE,
            CallingContext(
                counterpart=counterpart,
                counterpart_name=counterpart_name,
                payment_outcome=outcome.value,
            ),
        )
        db.commit()
    except Exception as exc:
        db.rollback()
        context = {
            "tenant_id": tenant_id,
            "counterpart": counterpart,
            "outcome": outcome.value,
            "error": str(exc),
        }
        logger.error(
            "payment_made actions failed after payment was recorded", exc_info=True, extra={"context": context}
        )
        alert_error("payment_made actions failed", context)
        return outcome

    if report.requested_human:
        escalation_service.notify_pending_handovers(db, tenant_id, bot_id, counterpart)

    logger.info(
        "Payment confirmed",
        extra={
            "context": {
                "tenant_id": tenant_id,
                "counterpart": counterpart,
                "outcome": outcome.value,
                "calling_executed": report.executed,
                "calling_reason": report.reason,
            }
        },
    )
    return outcome
