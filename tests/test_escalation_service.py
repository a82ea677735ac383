from unittest.mock import patch

from funnelbot.models import Handover
from funnelbot.services import conversation_service, escalation_service

from tests.helpers import BOT, COUNTERPART, TENANT


class TestCreateHandover:
    def test_creates_pending_record(self, db_session):
        handover = escalation_service.create_handover(
            db_session, TENANT, BOT, COUNTERPART, trigger_type="manual", user_message="help"
        )

        assert handover.id is not None
        assert handover.status == "pending"
        assert handover.user_message == "help"


class TestRequestHuman:
    @patch("funnelbot.services.escalation_service.alert_warning")
    def test_records_without_alerting(self, mock_alert, db_session):
        handover = escalation_service.request_human(db_session, TENANT, BOT, COUNTERPART, calling_key="human")

        assert handover.trigger_type == "calling"
        assert handover.trigger_value == "human"
        assert handover.notified_at is None
        mock_alert.assert_not_called()

    def test_conversation_state_untouched(self, db_session):
        conversation_service.ensure_state(db_session, TENANT, BOT, COUNTERPART)
        before = conversation_service.read_snapshot(db_session, TENANT, BOT, COUNTERPART)

        escalation_service.request_human(db_session, TENANT, BOT, COUNTERPART, calling_key="human")

        assert conversation_service.read_snapshot(db_session, TENANT, BOT, COUNTERPART) == before


class TestNotifyPendingHandovers:
    @patch("funnelbot.services.escalation_service.alert_warning")
    def test_alerts_outside_the_transaction(self, mock_alert, db_session):
        escalation_service.request_human(db_session, TENANT, BOT, COUNTERPART, calling_key="human")
        db_session.commit()

        def alert(message, context):
            assert not db_session.in_transaction()
            return True

        mock_alert.side_effect = alert

        assert escalation_service.notify_pending_handovers(db_session, TENANT, BOT, COUNTERPART) == 1

        mock_alert.assert_called_once()
        assert mock_alert.call_args[0][1]["counterpart"] == COUNTERPART
        assert mock_alert.call_args[0][1]["calling"] == "human"
        handover = db_session.query(Handover).one()
        assert handover.notified_at is not None

    @patch("funnelbot.services.escalation_service.alert_warning", return_value=True)
    def test_each_handover_is_announced_once(self, mock_alert, db_session):
        escalation_service.request_human(db_session, TENANT, BOT, COUNTERPART)
        db_session.commit()

        escalation_service.notify_pending_handovers(db_session, TENANT, BOT, COUNTERPART)

        assert escalation_service.notify_pending_handovers(db_session, TENANT, BOT, COUNTERPART) == 0
        assert mock_alert.call_count == 1

    @patch("funnelbot.services.escalation_service.alert_warning", return_value=False)
    def test_failed_alert_stays_pending(self, mock_alert, db_session):
        escalation_service.request_human(db_session, TENANT, BOT, COUNTERPART)
        db_session.commit()

        assert escalation_service.notify_pending_handovers(db_session, TENANT, BOT, COUNTERPART) == 0

        assert db_session.query(Handover).one().notified_at is None
