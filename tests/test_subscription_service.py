from datetime import datetime, timedelta, timezone

import pytest

from funnelbot.errors import ConflictError, NotFoundError
from funnelbot.models import Subscription
from funnelbot.services import subscription_service

from tests.helpers import TENANT

NOW = datetime.now(timezone.utc)


def create(db, tenant_id=TENANT, plan="business", payment_id="pay-1", days=30, now=None):
    return subscription_service.create_subscription(db, tenant_id, plan, payment_id, days, now=now)


class TestLifecycle:
    def test_create(self, db_session):
        subscription = create(db_session)

        assert subscription.status == "active"
        assert subscription.plan_name == "business"
        assert subscription_service.is_subscription_valid(db_session, TENANT) is True

    def test_second_active_subscription_conflicts(self, db_session):
        create(db_session)
        with pytest.raises(ConflictError):
            create(db_session, payment_id="pay-2")

    def test_upgrade(self, db_session):
        create(db_session, plan="standard")

        subscription = subscription_service.upgrade_subscription(db_session, TENANT, "enterprise", "pay-2")

        assert subscription.plan_name == "enterprise"
        assert subscription.payment_id == "pay-2"

    def test_upgrade_without_subscription(self, db_session):
        with pytest.raises(NotFoundError):
            subscription_service.upgrade_subscription(db_session, TENANT, "enterprise", "pay-2")

    def test_cancel(self, db_session):
        create(db_session)

        subscription_service.cancel_subscription(db_session, TENANT, "moving away")

        assert subscription_service.get_active_subscription(db_session, TENANT) is None


class TestExpiry:
    def test_lazy_expiry_on_read(self, db_session):
        create(db_session, days=1, now=NOW - timedelta(days=3))
        db_session.commit()

        assert subscription_service.is_subscription_valid(db_session, TENANT) is False
        status = db_session.query(Subscription.status).filter(Subscription.tenant_id == TENANT).scalar()
        assert status == "expired"

    def test_sweep_expires_every_tenant(self, db_session):
        create(db_session, tenant_id="t1", days=1, now=NOW - timedelta(days=3))
        create(db_session, tenant_id="t2", days=1, now=NOW - timedelta(days=3))
        create(db_session, tenant_id="t3", days=30)

        assert subscription_service.expire_outdated_subscriptions(db_session) == 2
        assert subscription_service.is_subscription_valid(db_session, "t3") is True

    def test_tenant_scoped_expiry_leaves_others(self, db_session):
        create(db_session, tenant_id="t1", days=1, now=NOW - timedelta(days=3))
        create(db_session, tenant_id="t2", days=1, now=NOW - timedelta(days=3))

        assert subscription_service.expire_if_due(db_session, "t1") == 1
        assert subscription_service.expire_if_due(db_session, None) == 1

    def test_expiring_soon(self, db_session):
        create(db_session, days=5)
        assert subscription_service.is_expiring_soon(db_session, TENANT) is True

    def test_not_expiring_soon(self, db_session):
        create(db_session, days=20)
        assert subscription_service.is_expiring_soon(db_session, TENANT) is False


class TestExtraSlots:
    def test_add_and_total(self, db_session):
        create(db_session)

        subscription_service.add_extra_slots(db_session, TENANT, 2, "slot-pay-1")
        subscription_service.add_extra_slots(db_session, TENANT, 3, "slot-pay-2")

        assert subscription_service.get_total_slots(db_session, TENANT) == 5

    def test_same_payment_is_added_once(self, db_session):
        create(db_session)

        subscription_service.add_extra_slots(db_session, TENANT, 2, "slot-pay-1")
        subscription = subscription_service.add_extra_slots(db_session, TENANT, 2, "slot-pay-1")

        assert len(subscription.extra_slots) == 1
        assert subscription_service.get_total_slots(db_session, TENANT) == 2

    def test_remove_by_payment(self, db_session):
        create(db_session)
        subscription_service.add_extra_slots(db_session, TENANT, 2, "slot-pay-1")
        subscription_service.add_extra_slots(db_session, TENANT, 1, "slot-pay-2")

        removed = subscription_service.remove_extra_slots_by_payment(db_session, TENANT, "slot-pay-1")

        assert removed == 1
        assert subscription_service.get_total_slots(db_session, TENANT) == 1

    def test_add_without_subscription(self, db_session):
        with pytest.raises(NotFoundError):
            subscription_service.add_extra_slots(db_session, TENANT, 2, "slot-pay-1")

    def test_total_without_subscription_is_zero(self, db_session):
        assert subscription_service.get_total_slots(db_session, TENANT) == 0


class TestRenew:
    def test_renew_with_slots_keeps_them(self, db_session):
        create(db_session, days=3)
        subscription_service.add_extra_slots(db_session, TENANT, 2, "slot-pay-1")

        subscription = subscription_service.renew_subscription(db_session, TENANT, "pay-2", 30, renew_with_slots=True)

        assert subscription.payment_id == "pay-2"
        assert subscription_service.get_total_slots(db_session, TENANT) == 2

    def test_renew_without_slots_drops_them(self, db_session):
        create(db_session, days=3)
        subscription_service.add_extra_slots(db_session, TENANT, 2, "slot-pay-1")

        subscription_service.renew_subscription(db_session, TENANT, "pay-2", 30, renew_with_slots=False)

        assert subscription_service.get_total_slots(db_session, TENANT) == 0

    def test_renew_reactivates_expired(self, db_session):
        create(db_session, days=1, now=NOW - timedelta(days=3))
        subscription_service.expire_outdated_subscriptions(db_session)

        subscription = subscription_service.renew_subscription(db_session, TENANT, "pay-2", 30)

        assert subscription.status == "active"
        assert subscription_service.is_subscription_valid(db_session, TENANT) is True

    def test_renew_without_any_subscription(self, db_session):
        with pytest.raises(NotFoundError):
            subscription_service.renew_subscription(db_session, TENANT, "pay-2", 30)
