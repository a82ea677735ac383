from datetime import datetime, timedelta, timezone
from unittest.mock import Mock

import pytest

from funnelbot.errors import ValidationError
from funnelbot.models import ScheduledMessage
from funnelbot.services import scheduler_service
from funnelbot.services.result import Result

from tests.helpers import BOT, COUNTERPART, TENANT

NOW = datetime(2026, 3, 1, 12, 0, 10, tzinfo=timezone.utc)


def schedule(db, message="Still there?", delay_minutes=0, now=NOW, kind="followup"):
    return scheduler_service.schedule_message(
        db,
        tenant_id=TENANT,
        bot_id=BOT,
        counterpart=COUNTERPART,
        calling_key="interested",
        kind=kind,
        message=message,
        delay_minutes=delay_minutes,
        now=now,
    )


class TestIdempotencyKey:
    def test_same_bucket_same_key(self):
        a = scheduler_service.build_idempotency_key(COUNTERPART, "interested", "followup", NOW)
        b = scheduler_service.build_idempotency_key(COUNTERPART, "interested", "followup", NOW + timedelta(seconds=30))
        assert a == b

    def test_kind_and_bucket_split_keys(self):
        base = scheduler_service.build_idempotency_key(COUNTERPART, "interested", "followup", NOW)
        assert base != scheduler_service.build_idempotency_key(COUNTERPART, "interested", "reminder", NOW)
        assert base != scheduler_service.build_idempotency_key(
            COUNTERPART, "interested", "followup", NOW + timedelta(hours=1)
        )

    def test_naive_datetime_is_treated_as_utc(self):
        naive = NOW.replace(tzinfo=None)
        assert scheduler_service.build_idempotency_key(
            COUNTERPART, "k", "followup", naive
        ) == scheduler_service.build_idempotency_key(COUNTERPART, "k", "followup", NOW)


class TestScheduleMessage:
    def test_rescheduling_pending_replaces_it(self, db_session):
        schedule(db_session, message="first")
        schedule(db_session, message="second", now=NOW + timedelta(seconds=20))

        rows = db_session.query(ScheduledMessage).all()
        assert len(rows) == 1
        assert rows[0].message == "second"

    def test_sent_job_is_not_replaced(self, db_session):
        schedule(db_session, message="first")
        db_session.query(ScheduledMessage).update({"status": "SENT"})

        schedule(db_session, message="second")

        row = db_session.query(ScheduledMessage).one()
        assert row.message == "first"
        assert row.status == "SENT"

    def test_unknown_kind_rejected(self, db_session):
        with pytest.raises(ValidationError):
            schedule(db_session, kind="nudge")

        assert db_session.query(ScheduledMessage).count() == 0

    def test_cancel(self, db_session):
        schedule(db_session)
        schedule(db_session, kind="reminder")

        assert scheduler_service.cancel_scheduled_messages(db_session, TENANT, BOT, COUNTERPART) == 2


class TestProcessDueMessages:
    def test_sends_due_jobs(self, db_session):
        schedule(db_session)
        db_session.commit()
        send = Mock(return_value=Result.success({}))

        results = scheduler_service.process_due_messages(db_session, send=send)

        assert results == {"claimed": 1, "sent": 1, "failed": 0, "retry_scheduled": 0, "released": 0}
        send.assert_called_once_with(db_session, TENANT, BOT, COUNTERPART, "Still there?")
        assert db_session.query(ScheduledMessage.status).scalar() == "SENT"

    def test_future_jobs_wait(self, db_session):
        schedule(db_session, delay_minutes=60, now=datetime.now(timezone.utc))
        db_session.commit()
        send = Mock()

        results = scheduler_service.process_due_messages(db_session, send=send)

        assert results["claimed"] == 0
        send.assert_not_called()

    def test_failure_is_retried_with_backoff(self, db_session):
        schedule(db_session)
        db_session.commit()
        send = Mock(return_value=Result.failure("timeout", "transport_error"))

        results = scheduler_service.process_due_messages(db_session, send=send, retry_backoff_seconds=30)

        assert results["retry_scheduled"] == 1
        row = db_session.query(ScheduledMessage).one()
        db_session.refresh(row)
        assert row.status == "PENDING"
        assert row.attempts == 1
        assert row.last_error == "timeout"
        assert row.next_attempt_at is not None

        # backoff not elapsed yet
        assert scheduler_service.process_due_messages(db_session, send=send)["claimed"] == 0

    def test_gives_up_after_max_attempts(self, db_session):
        schedule(db_session)
        db_session.commit()
        send = Mock(return_value=Result.failure("down", "transport_error"))

        results = scheduler_service.process_due_messages(db_session, send=send, max_attempts=1)

        assert results["failed"] == 1
        assert db_session.query(ScheduledMessage.status).scalar() == "FAILED"

    def test_permanent_failure_is_not_retried(self, db_session):
        schedule(db_session)
        db_session.commit()
        send = Mock(return_value=Result.failure("Empty message", "empty_message"))

        results = scheduler_service.process_due_messages(db_session, send=send)

        assert results["failed"] == 1
        assert results["retry_scheduled"] == 0
        assert db_session.query(ScheduledMessage.status).scalar() == "FAILED"


class TestStaleProcessing:
    def claim_and_abandon(self, db):
        schedule(db)
        db.commit()
        # worker claimed the job and died before marking it
        claimed = scheduler_service.claim_due_messages(db, now=NOW)
        assert len(claimed) == 1

    def test_abandoned_job_is_requeued_and_sent(self, db_session):
        self.claim_and_abandon(db_session)
        send = Mock(return_value=Result.success({}))

        results = scheduler_service.process_due_messages(db_session, send=send, retry_backoff_seconds=0)

        assert results["released"] == 1
        assert results["sent"] == 1
        row = db_session.query(ScheduledMessage).one()
        db_session.refresh(row)
        assert row.status == "SENT"
        assert row.attempts == 2

    def test_abandoned_job_without_attempts_left_fails(self, db_session):
        self.claim_and_abandon(db_session)
        send = Mock()

        results = scheduler_service.process_due_messages(db_session, send=send, max_attempts=1)

        assert results["released"] == 1
        assert results["claimed"] == 0
        send.assert_not_called()
        row = db_session.query(ScheduledMessage).one()
        db_session.refresh(row)
        assert row.status == "FAILED"
        assert row.last_error == "stale_processing"

    def test_recent_processing_is_left_alone(self, db_session):
        self.claim_and_abandon(db_session)

        released = scheduler_service.release_stale_processing(
            db_session, stale_seconds=120, max_attempts=5, retry_backoff_seconds=0, now=NOW + timedelta(seconds=30)
        )

        assert released == 0
        assert db_session.query(ScheduledMessage.status).scalar() == "PROCESSING"
