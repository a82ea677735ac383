from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from funnelbot.errors import store_errors
from funnelbot.logging_config import get_logger
from funnelbot.models import Handover
from funnelbot.services.alert_service import alert_warning

logger = get_logger("escalation_service")


def create_handover(
    db: Session,
    tenant_id: str,
    bot_id: str,
    counterpart: str,
    trigger_type: str,
    trigger_value: Optional[str] = None,
    user_message: Optional[str] = None,
) -> Handover:
    """Create handover record in database. Conversation state is left as is."""
    now = datetime.now(timezone.utc)

    handover = Handover(
        tenant_id=tenant_id,
        bot_id=bot_id,
        counterpart=counterpart,
        trigger_type=trigger_type,
        trigger_value=trigger_value,
        status="pending",
        user_message=user_message,
        created_at=now,
    )
    db.add(handover)
    db.flush()  # Get ID before commit

    return handover


def request_human(
    db: Session,
    tenant_id: str,
    bot_id: str,
    counterpart: str,
    calling_key: Optional[str] = None,
    user_message: Optional[str] = None,
) -> Handover:
    """Record the hand-off. Operators are alerted by notify_pending_handovers once it is committed."""
    handover = create_handover(
        db,
        tenant_id,
        bot_id,
        counterpart,
        trigger_type="calling",
        trigger_value=calling_key,
        user_message=user_message,
    )

    logger.info(
        "Handover created",
        extra={"context": {"handover_id": str(handover.id), "tenant_id": tenant_id, "counterpart": counterpart}},
    )
    return handover


def notify_pending_handovers(db: Session, tenant_id: str, bot_id: str, counterpart: str) -> int:
    """Alert operators about committed handovers nobody was told about yet.

    Runs outside any write transaction. Returns how many alerts went out.
    """
    with store_errors("load pending handovers"):
        pending = [
            {"id": row.id, "calling": row.trigger_value}
            for row in db.execute(
                select(Handover.id, Handover.trigger_value)
                .where(
                    Handover.tenant_id == tenant_id,
                    Handover.bot_id == bot_id,
                    Handover.counterpart == counterpart,
                    Handover.status == "pending",
                    Handover.notified_at.is_(None),
                )
                .order_by(Handover.created_at)
            )
        ]
        db.commit()
    if not pending:
        return 0

    notified = []
    for handover in pending:
        sent = alert_warning(
            "Counterpart needs a human",
            {"tenant_id": tenant_id, "bot_id": bot_id, "counterpart": counterpart, "calling": handover["calling"]},
        )
        if sent:
            notified.append(handover["id"])
        else:
            logger.warning(f"Handover {handover['id']} created without operator notification")

    if notified:
        with store_errors("mark handovers notified"):
            db.execute(
                update(Handover)
                .where(Handover.id.in_(notified))
                .values(notified_at=datetime.now(timezone.utc))
                .execution_options(synchronize_session=False)
            )
            db.commit()
    return len(notified)
