"""Tenant subscriptions and purchased bot slots."""

from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session

from funnelbot.config import settings
from funnelbot.database import dialect_insert
from funnelbot.errors import ConflictError, NotFoundError, store_errors
from funnelbot.logging_config import get_logger
from funnelbot.models import ExtraSlot, Subscription
from funnelbot.schemas.billing import ExtraSlotOut, PlanName, SubscriptionOut

logger = get_logger("subscription_service")


def _now(now: Optional[datetime]) -> datetime:
    return now or datetime.now(timezone.utc)


def _plan_value(plan_name) -> str:
    return getattr(plan_name, "value", plan_name)


def to_out(subscription: Subscription) -> SubscriptionOut:
    return SubscriptionOut(
        tenant_id=subscription.tenant_id,
        plan_name=PlanName(subscription.plan_name),
        status=subscription.status,
        start_date=subscription.start_date,
        expires_at=subscription.expires_at,
        payment_id=subscription.payment_id,
        extra_slots_expire_at=subscription.extra_slots_expire_at,
        extra_slots=[ExtraSlotOut(count=s.count, payment_id=s.payment_id) for s in subscription.extra_slots],
    )


def expire_if_due(db: Session, tenant_id: Optional[str], now: Optional[datetime] = None) -> int:
    """Flip active subscriptions past their expiry to ``expired``.

    ``tenant_id=None`` sweeps every tenant. Returns the number expired.
    """
    query = update(Subscription).where(
        Subscription.status == "active",
        Subscription.expires_at < _now(now),
    )
    if tenant_id is not None:
        query = query.where(Subscription.tenant_id == tenant_id)

    with store_errors("expire subscriptions"):
        result = db.execute(query.values(status="expired").execution_options(synchronize_session=False))
    return result.rowcount


def get_active_subscription(db: Session, tenant_id: str, for_update: bool = False) -> Optional[Subscription]:
    """Latest active subscription. ``for_update`` locks it until the transaction ends."""
    stmt = (
        select(Subscription)
        .where(Subscription.tenant_id == tenant_id, Subscription.status == "active")
        .order_by(Subscription.start_date.desc())
        .limit(1)
        .execution_options(populate_existing=True)
    )
    if for_update:
        stmt = stmt.with_for_update()
    with store_errors("get active subscription"):
        return db.execute(stmt).scalars().first()


def _require_active(db: Session, tenant_id: str) -> Subscription:
    subscription = get_active_subscription(db, tenant_id)
    if subscription is None:
        raise NotFoundError(f"No active subscription for tenant {tenant_id}")
    return subscription


def is_subscription_valid(db: Session, tenant_id: str, now: Optional[datetime] = None) -> bool:
    expire_if_due(db, tenant_id, now)
    return get_active_subscription(db, tenant_id) is not None


def expire_outdated_subscriptions(db: Session, now: Optional[datetime] = None) -> int:
    expired = expire_if_due(db, None, now)
    if expired:
        logger.info("Expired outdated subscriptions", extra={"context": {"expired": expired}})
    return expired


def create_subscription(
    db: Session,
    tenant_id: str,
    plan_name,
    payment_id: str,
    duration_days: int = 30,
    now: Optional[datetime] = None,
) -> Subscription:
    now = _now(now)
    if is_subscription_valid(db, tenant_id, now):
        raise ConflictError(
            f"Tenant {tenant_id} already has an active subscription",
            details={"hint": "upgrade or renew instead"},
        )

    expires_at = now + timedelta(days=duration_days)
    subscription = Subscription(
        tenant_id=tenant_id,
        plan_name=_plan_value(plan_name),
        status="active",
        start_date=now,
        expires_at=expires_at,
        payment_id=payment_id,
        extra_slots_expire_at=expires_at,
    )
    with store_errors("create subscription"):
        db.add(subscription)
        db.flush()

    logger.info(
        "Subscription created",
        extra={"context": {"tenant_id": tenant_id, "plan": subscription.plan_name, "payment_id": payment_id}},
    )
    return subscription


def upgrade_subscription(
    db: Session,
    tenant_id: str,
    new_plan,
    payment_id: str,
    duration_days: int = 30,
    now: Optional[datetime] = None,
) -> Subscription:
    now = _now(now)
    expire_if_due(db, tenant_id, now)
    subscription = _require_active(db, tenant_id)

    expires_at = now + timedelta(days=duration_days)
    subscription.plan_name = _plan_value(new_plan)
    subscription.payment_id = payment_id
    subscription.start_date = now
    subscription.expires_at = expires_at
    subscription.extra_slots_expire_at = expires_at
    with store_errors("upgrade subscription"):
        db.flush()

    logger.info("Subscription upgraded", extra={"context": {"tenant_id": tenant_id, "plan": subscription.plan_name}})
    return subscription


def renew_subscription(
    db: Session,
    tenant_id: str,
    payment_id: str,
    duration_days: int = 30,
    renew_with_slots: bool = True,
    now: Optional[datetime] = None,
) -> Subscription:
    """Extend the current (or most recently expired) subscription from now.

    Without ``renew_with_slots`` the purchased extra slots are dropped.
    """
    now = _now(now)
    expire_if_due(db, tenant_id, now)
    subscription = get_active_subscription(db, tenant_id)
    if subscription is None:
        subscription = (
            db.execute(
                select(Subscription)
                .where(Subscription.tenant_id == tenant_id, Subscription.status == "expired")
                .order_by(Subscription.expires_at.desc())
                .limit(1)
                .execution_options(populate_existing=True)
            )
            .scalars()
            .first()
        )
    if subscription is None:
        raise NotFoundError(f"No subscription to renew for tenant {tenant_id}")

    expires_at = now + timedelta(days=duration_days)
    subscription.status = "active"
    subscription.payment_id = payment_id
    subscription.start_date = now
    subscription.expires_at = expires_at

    with store_errors("renew subscription"):
        if renew_with_slots:
            subscription.extra_slots_expire_at = expires_at
        else:
            db.execute(delete(ExtraSlot).where(ExtraSlot.subscription_id == subscription.id))
        db.flush()
        db.expire(subscription, ["extra_slots"])

    logger.info(
        "Subscription renewed",
        extra={"context": {"tenant_id": tenant_id, "with_slots": renew_with_slots, "expires_at": expires_at}},
    )
    return subscription


def cancel_subscription(db: Session, tenant_id: str, reason: str) -> Subscription:
    subscription = _require_active(db, tenant_id)
    subscription.status = "cancelled"
    with store_errors("cancel subscription"):
        db.flush()
    logger.info(f"Subscription cancelled for tenant {tenant_id}. Reason: {reason}")
    return subscription


def is_expiring_soon(db: Session, tenant_id: str, now: Optional[datetime] = None) -> bool:
    now = _now(now)
    subscription = get_active_subscription(db, tenant_id)
    if subscription is None:
        return False
    expires_at = subscription.expires_at
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    diff_days = (expires_at - now).total_seconds() / 86400
    return 0 < diff_days <= settings.expiring_soon_days


def add_extra_slots(db: Session, tenant_id: str, count: int, payment_id: str) -> Subscription:
    """Attach purchased slots. The same payment never adds slots twice."""
    subscription = _require_active(db, tenant_id)

    stmt = (
        dialect_insert(db, ExtraSlot.__table__)
        .values(subscription_id=subscription.id, count=count, payment_id=payment_id)
        .on_conflict_do_nothing(index_elements=["subscription_id", "payment_id"])
    )
    with store_errors("add extra slots"):
        result = db.execute(stmt)
        subscription.extra_slots_expire_at = subscription.expires_at
        db.flush()
        db.expire(subscription, ["extra_slots"])

    if result.rowcount == 0:
        logger.info("Extra slots already registered for payment", extra={"context": {"payment_id": payment_id}})
    return subscription


def remove_extra_slots_by_payment(db: Session, tenant_id: str, payment_id: str) -> int:
    subscription = _require_active(db, tenant_id)
    with store_errors("remove extra slots"):
        result = db.execute(
            delete(ExtraSlot).where(
                ExtraSlot.subscription_id == subscription.id,
                ExtraSlot.payment_id == payment_id,
            )
        )
        db.expire(subscription, ["extra_slots"])
    return result.rowcount


def get_total_slots(db: Session, tenant_id: str) -> int:
    """Sum of purchased extra slots on the active subscription."""
    subscription = get_active_subscription(db, tenant_id)
    if subscription is None:
        return 0
    with store_errors("count extra slots"):
        total = db.execute(
            select(func.coalesce(func.sum(ExtraSlot.count), 0)).where(ExtraSlot.subscription_id == subscription.id)
        ).scalar_one()
    return int(total)
