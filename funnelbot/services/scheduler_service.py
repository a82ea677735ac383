from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

from sqlalchemy import and_, or_, select, update
from sqlalchemy.orm import Session

from funnelbot.config import settings
from funnelbot.database import dialect_insert
from funnelbot.errors import ValidationError, store_errors
from funnelbot.logging_config import get_logger
from funnelbot.models import ScheduledMessage
from funnelbot.services import transport_service
from funnelbot.services.result import Result

logger = get_logger("scheduler_service")

SCHEDULE_KINDS = {"followup", "reminder"}


def _ensure_aware(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def build_idempotency_key(counterpart: str, calling_key: str, kind: str, due_at: datetime) -> str:
    """Same counterpart, calling, kind and due-time bucket collapse to one job."""
    bucket = int(_ensure_aware(due_at).timestamp()) // settings.schedule_bucket_seconds
    return f"{counterpart}:{calling_key}:{kind}:{bucket}"


def schedule_message(
    db: Session,
    *,
    tenant_id: str,
    bot_id: str,
    counterpart: str,
    calling_key: str,
    kind: str,
    message: str,
    delay_minutes: int,
    now: Optional[datetime] = None,
) -> str:
    """Register a delayed message. Re-scheduling a pending job replaces it."""
    if kind not in SCHEDULE_KINDS:
        raise ValidationError(f"Unknown schedule kind '{kind}'")
    now = now or datetime.now(timezone.utc)
    due_at = now + timedelta(minutes=delay_minutes)
    key = build_idempotency_key(counterpart, calling_key, kind, due_at)

    stmt = dialect_insert(db, ScheduledMessage.__table__).values(
        tenant_id=tenant_id,
        bot_id=bot_id,
        counterpart=counterpart,
        calling_key=calling_key,
        kind=kind,
        idempotency_key=key,
        message=message,
        due_at=due_at,
        status="PENDING",
        attempts=0,
        created_at=now,
        updated_at=now,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["tenant_id", "bot_id", "idempotency_key"],
        set_={
            "message": stmt.excluded.message,
            "due_at": stmt.excluded.due_at,
            "updated_at": stmt.excluded.updated_at,
        },
        where=ScheduledMessage.__table__.c.status == "PENDING",
    )
    with store_errors("schedule message"):
        db.execute(stmt)

    logger.info(
        "Message scheduled",
        extra={
            "context": {
                "tenant_id": tenant_id,
                "bot_id": bot_id,
                "counterpart": counterpart,
                "kind": kind,
                "idempotency_key": key,
                "due_at": due_at.isoformat(),
            }
        },
    )
    return key


def cancel_scheduled_messages(db: Session, tenant_id: str, bot_id: str, counterpart: str) -> int:
    """Cancel every pending job for a counterpart, e.g. after a human takes over."""
    with store_errors("cancel scheduled messages"):
        result = db.execute(
            update(ScheduledMessage)
            .where(
                ScheduledMessage.tenant_id == tenant_id,
                ScheduledMessage.bot_id == bot_id,
                ScheduledMessage.counterpart == counterpart,
                ScheduledMessage.status == "PENDING",
            )
            .values(status="CANCELLED", updated_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
    return result.rowcount


def claim_due_messages(db: Session, *, limit: int = 10, now: Optional[datetime] = None) -> list[dict[str, Any]]:
    """Move due PENDING jobs to PROCESSING and return them. Commits."""
    now = now or datetime.now(timezone.utc)
    with store_errors("claim scheduled messages"):
        ids = (
            db.execute(
                select(ScheduledMessage.id)
                .where(
                    ScheduledMessage.status == "PENDING",
                    ScheduledMessage.due_at <= now,
                    or_(ScheduledMessage.next_attempt_at.is_(None), ScheduledMessage.next_attempt_at <= now),
                )
                .order_by(ScheduledMessage.due_at)
                .limit(limit)
                .with_for_update(skip_locked=True)
            )
            .scalars()
            .all()
        )
        if not ids:
            db.commit()
            return []

        db.execute(
            update(ScheduledMessage)
            .where(and_(ScheduledMessage.id.in_(ids), ScheduledMessage.status == "PENDING"))
            .values(status="PROCESSING", attempts=ScheduledMessage.attempts + 1, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        rows = (
            db.execute(
                select(
                    ScheduledMessage.id,
                    ScheduledMessage.tenant_id,
                    ScheduledMessage.bot_id,
                    ScheduledMessage.counterpart,
                    ScheduledMessage.calling_key,
                    ScheduledMessage.kind,
                    ScheduledMessage.message,
                    ScheduledMessage.attempts,
                ).where(ScheduledMessage.id.in_(ids), ScheduledMessage.status == "PROCESSING")
            )
            .mappings()
            .all()
        )
        db.commit()
    return [dict(row) for row in rows]


def mark_status(
    db: Session,
    *,
    message_id,
    status: str,
    last_error: str | None = None,
    next_attempt_at: datetime | None = None,
) -> None:
    with store_errors("mark scheduled message"):
        db.execute(
            update(ScheduledMessage)
            .where(ScheduledMessage.id == message_id)
            .values(
                status=status,
                last_error=last_error,
                next_attempt_at=next_attempt_at,
                updated_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )
        db.commit()


def release_stale_processing(
    db: Session,
    *,
    stale_seconds: float,
    max_attempts: int,
    retry_backoff_seconds: float,
    now: Optional[datetime] = None,
) -> int:
    """Recover jobs left in PROCESSING by a worker that died mid-send. Commits.

    Jobs that still have attempts left go back to PENDING after the backoff,
    the rest are marked FAILED.
    """
    now = now or datetime.now(timezone.utc)
    stale = and_(
        ScheduledMessage.status == "PROCESSING",
        ScheduledMessage.updated_at < now - timedelta(seconds=stale_seconds),
    )
    with store_errors("release stale scheduled messages"):
        failed = db.execute(
            update(ScheduledMessage)
            .where(stale, ScheduledMessage.attempts >= max_attempts)
            .values(status="FAILED", last_error="stale_processing", updated_at=now)
            .execution_options(synchronize_session=False)
        ).rowcount
        requeued = db.execute(
            update(ScheduledMessage)
            .where(stale, ScheduledMessage.attempts < max_attempts)
            .values(
                status="PENDING",
                last_error="stale_processing",
                next_attempt_at=now + timedelta(seconds=retry_backoff_seconds),
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        ).rowcount
        db.commit()

    if failed or requeued:
        logger.warning(
            "Released stale scheduled messages",
            extra={"context": {"requeued": requeued, "failed": failed}},
        )
    return failed + requeued


def process_due_messages(
    db: Session,
    *,
    limit: Optional[int] = None,
    max_attempts: Optional[int] = None,
    retry_backoff_seconds: Optional[float] = None,
    stale_seconds: Optional[float] = None,
    send: Optional[Callable[..., Result]] = None,
) -> dict[str, int]:
    """Deliver due jobs. Failed sends go back to PENDING with exponential backoff."""
    limit = limit or settings.scheduled_process_limit
    max_attempts = max_attempts or settings.scheduled_max_attempts
    if retry_backoff_seconds is None:
        retry_backoff_seconds = settings.scheduled_retry_backoff_seconds
    if stale_seconds is None:
        stale_seconds = settings.scheduled_stale_processing_seconds
    send = send or transport_service.deliver_message

    now = datetime.now(timezone.utc)
    released = release_stale_processing(
        db,
        stale_seconds=stale_seconds,
        max_attempts=max_attempts,
        retry_backoff_seconds=retry_backoff_seconds,
        now=now,
    )
    rows = claim_due_messages(db, limit=limit, now=now)
    results = {"claimed": len(rows), "sent": 0, "failed": 0, "retry_scheduled": 0, "released": released}

    for row in rows:
        result = send(db, row["tenant_id"], row["bot_id"], row["counterpart"], row["message"])
        if result.ok:
            mark_status(db, message_id=row["id"], status="SENT")
            results["sent"] += 1
            continue

        error = (result.error or "send_failed")[:500]
        attempts = int(row.get("attempts") or 0)
        if attempts >= max_attempts or not result.retryable:
            mark_status(db, message_id=row["id"], status="FAILED", last_error=error)
            results["failed"] += 1
            logger.error(
                "Scheduled message failed permanently",
                extra={"context": {"id": str(row["id"]), "attempts": attempts, "error": error}},
            )
            continue

        backoff = retry_backoff_seconds * (2 ** max(attempts - 1, 0))
        mark_status(
            db,
            message_id=row["id"],
            status="PENDING",
            last_error=error,
            next_attempt_at=datetime.now(timezone.utc) + timedelta(seconds=backoff),
        )
        results["retry_scheduled"] += 1

    return results
