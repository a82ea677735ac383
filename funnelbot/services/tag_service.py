from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session

from funnelbot.database import dialect_insert
from funnelbot.errors import ValidationError, store_errors
from funnelbot.models import ContactTag


def add_tag(db: Session, tenant_id: str, bot_id: str, counterpart: str, tag: str) -> bool:
    """Attach a tag to a contact. Returns False when it was already there."""
    tag = (tag or "").strip()
    if not tag:
        raise ValidationError("Tag must not be empty")
    stmt = (
        dialect_insert(db, ContactTag.__table__)
        .values(
            tenant_id=tenant_id,
            bot_id=bot_id,
            counterpart=counterpart,
            tag=tag,
            created_at=datetime.now(timezone.utc),
        )
        .on_conflict_do_nothing(index_elements=["tenant_id", "bot_id", "counterpart", "tag"])
    )
    with store_errors("add contact tag"):
        result = db.execute(stmt)
    return result.rowcount > 0


def list_tags(db: Session, tenant_id: str, bot_id: str, counterpart: str) -> list[str]:
    return list(
        db.execute(
            select(ContactTag.tag)
            .where(
                ContactTag.tenant_id == tenant_id,
                ContactTag.bot_id == bot_id,
                ContactTag.counterpart == counterpart,
            )
            .order_by(ContactTag.created_at)
        )
        .scalars()
        .all()
    )
