from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session

from funnelbot.database import dialect_insert
from funnelbot.errors import ConflictError, NotFoundError, ValidationError, store_errors
from funnelbot.logging_config import get_logger
from funnelbot.models import Bot
from funnelbot.services import subscription_service
from funnelbot.services.plan_utils import has_available_slots

logger = get_logger("bot_service")

BOT_STATUSES = {"connected", "disconnected"}


def count_bots(db: Session, tenant_id: str) -> int:
    return db.execute(select(func.count()).select_from(Bot).where(Bot.tenant_id == tenant_id)).scalar_one()


def register_bot(
    db: Session,
    tenant_id: str,
    session_id: str,
    name: str,
    phone: str,
    url: str = "",
    authorization: str = "",
    replica_number: int = 0,
) -> Bot:
    """Create or refresh a bot, taking a slot from the tenant's plan for new ones."""
    with store_errors("register bot"):
        existing = get_bot(db, tenant_id, session_id)
        if existing is None:
            subscription_service.expire_if_due(db, tenant_id)
            # the subscription row lock serializes concurrent registrations for the tenant
            subscription = subscription_service.get_active_subscription(db, tenant_id, for_update=True)
            used = count_bots(db, tenant_id)
            if subscription is None or not has_available_slots(subscription, used):
                raise ConflictError(
                    "No bot slots available on the current plan",
                    details={"tenant_id": tenant_id, "used_slots": used},
                )

        stmt = dialect_insert(db, Bot.__table__).values(
            tenant_id=tenant_id,
            session_id=session_id,
            name=name,
            phone=phone,
            url=url,
            authorization=authorization,
            replica_number=replica_number,
            status="disconnected",
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["tenant_id", "session_id"],
            set_={
                "name": stmt.excluded.name,
                "phone": stmt.excluded.phone,
                "url": stmt.excluded.url,
                "authorization": stmt.excluded.authorization,
                "replica_number": stmt.excluded.replica_number,
            },
        )
        db.execute(stmt)
        db.flush()

    logger.info("Bot registered", extra={"context": {"tenant_id": tenant_id, "session_id": session_id}})
    return get_bot(db, tenant_id, session_id)


def get_bot(db: Session, tenant_id: str, session_id: str) -> Optional[Bot]:
    return db.execute(
        select(Bot)
        .where(Bot.tenant_id == tenant_id, Bot.session_id == session_id)
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()


def list_bots(db: Session, tenant_id: str) -> list[Bot]:
    return list(db.execute(select(Bot).where(Bot.tenant_id == tenant_id)).scalars().all())


def update_status(db: Session, tenant_id: str, session_id: str, status: str) -> None:
    """Heartbeat from a replica: record the check time and connection status."""
    if status not in BOT_STATUSES:
        raise ValidationError(f"Invalid bot status '{status}'")
    with store_errors("update bot status"):
        result = db.execute(
            update(Bot)
            .where(Bot.tenant_id == tenant_id, Bot.session_id == session_id)
            .values(status=status, last_check=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
    if result.rowcount == 0:
        raise NotFoundError(f"Bot {session_id} not found")


def delete_bot(db: Session, tenant_id: str, session_id: str) -> None:
    with store_errors("delete bot"):
        result = db.execute(delete(Bot).where(Bot.tenant_id == tenant_id, Bot.session_id == session_id))
    if result.rowcount == 0:
        raise NotFoundError(f"Bot {session_id} not found")
