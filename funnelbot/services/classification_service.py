from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from funnelbot.errors import store_errors
from funnelbot.models import ClassificationEvent
from funnelbot.schemas.calling import PAYMENT_MADE


def record_classification(
    db: Session,
    tenant_id: str,
    bot_id: str,
    counterpart: str,
    category: str,
    counterpart_name: Optional[str] = None,
    reason: Optional[str] = None,
    last_message: Optional[str] = None,
) -> ClassificationEvent:
    event = ClassificationEvent(
        tenant_id=tenant_id,
        bot_id=bot_id,
        counterpart=counterpart,
        counterpart_name=counterpart_name,
        category=category,
        reason=reason,
        last_message=last_message,
        created_at=datetime.now(timezone.utc),
    )
    with store_errors("record classification"):
        db.add(event)
        db.flush()
    return event


def has_counterpart_paid(db: Session, tenant_id: str, bot_id: str, counterpart: str) -> bool:
    with store_errors("check payment classification"):
        found = db.execute(
            select(ClassificationEvent.id)
            .where(
                ClassificationEvent.tenant_id == tenant_id,
                ClassificationEvent.bot_id == bot_id,
                ClassificationEvent.counterpart == counterpart,
                ClassificationEvent.category == PAYMENT_MADE,
            )
            .limit(1)
        ).first()
    return found is not None
