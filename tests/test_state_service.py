from unittest.mock import patch

import pytest

from funnelbot.errors import ConflictError
from funnelbot.services import conversation_service, state_service
from funnelbot.services.state_machine import InboundEvent, TransitionOutcome, compute_transition

from tests.helpers import BOT, COUNTERPART, TENANT


def advance(db, graph, **event):
    return state_service.advance_conversation(db, TENANT, BOT, COUNTERPART, InboundEvent(**event), graph)


class TestEndToEnd:
    def test_first_message_yes_then_no(self, db_session, active_funnel):
        first = advance(db_session, active_funnel, text="hello")
        assert first.created is True
        assert first.decision.outcome == TransitionOutcome.ENTERED
        state = conversation_service.get_state(db_session, TENANT, BOT, COUNTERPART)
        assert state.current_node_id == "1"
        assert state.waiting_for_reply is False

        advance(db_session, active_funnel, matched_handle="yes")
        state = conversation_service.get_state(db_session, TENANT, BOT, COUNTERPART)
        assert state.current_node_id == "2"

        held = advance(db_session, active_funnel, matched_handle="no")
        assert held.decision.outcome == TransitionOutcome.HELD
        state = conversation_service.get_state(db_session, TENANT, BOT, COUNTERPART)
        assert state.current_node_id == "2"
        assert state.waiting_for_reply is True

    def test_variables_merge_across_events(self, db_session, active_funnel):
        advance(db_session, active_funnel, variables={"name": "Ana", "plan": "standard"})
        advance(db_session, active_funnel, matched_handle="yes", variables={"plan": "business"})

        state = conversation_service.get_state(db_session, TENANT, BOT, COUNTERPART)
        assert state.variables == {"name": "Ana", "plan": "business"}


class TestCompletedFunnel:
    def test_events_after_completion_change_nothing(self, db_session, active_funnel):
        advance(db_session, active_funnel)
        advance(db_session, active_funnel, matched_handle="yes")
        advance(db_session, active_funnel, matched_handle="business")
        before = conversation_service.read_snapshot(db_session, TENANT, BOT, COUNTERPART)
        assert before.completed_funnel is True

        result = advance(db_session, active_funnel, matched_handle="yes", variables={"late": True})

        assert result.decision.outcome == TransitionOutcome.IGNORED
        assert conversation_service.read_snapshot(db_session, TENANT, BOT, COUNTERPART) == before

    def test_inactive_funnel_only_creates_state(self, db_session):
        result = advance(db_session, None, matched_handle="yes")

        assert result.created is True
        assert result.decision.outcome == TransitionOutcome.INACTIVE
        snapshot = conversation_service.read_snapshot(db_session, TENANT, BOT, COUNTERPART)
        assert snapshot.current_node_id == "1"
        assert snapshot.revision == 0


class TestConcurrency:
    def test_lost_race_is_recomputed_on_fresh_state(self, db_session, active_funnel):
        advance(db_session, active_funnel)
        real_cas = conversation_service.compare_and_set
        raced = []

        def racing_cas(db, tenant_id, bot_id, counterpart, expected_revision, new_state, counterpart_name=None):
            if not raced:
                raced.append(True)
                # another worker applies "yes" between our read and our write
                snapshot = conversation_service.read_snapshot(db, tenant_id, bot_id, counterpart)
                racer = compute_transition(active_funnel, snapshot, InboundEvent(matched_handle="yes"))
                assert real_cas(db, tenant_id, bot_id, counterpart, snapshot.revision, racer.state)
            return real_cas(db, tenant_id, bot_id, counterpart, expected_revision, new_state, counterpart_name)

        with patch.object(conversation_service, "compare_and_set", side_effect=racing_cas):
            result = advance(db_session, active_funnel, matched_handle="yes")

        # serial order: racer's "yes" (1 -> 2), then ours ("yes" has no edge at 2)
        assert result.attempts == 2
        assert result.decision.outcome == TransitionOutcome.HELD
        snapshot = conversation_service.read_snapshot(db_session, TENANT, BOT, COUNTERPART)
        assert snapshot.current_node_id == "2"
        assert snapshot.waiting_for_reply is True
        assert snapshot.revision == 3

    def test_gives_up_after_max_attempts(self, db_session, active_funnel):
        advance(db_session, active_funnel)

        with patch.object(conversation_service, "compare_and_set", return_value=False) as cas:
            with pytest.raises(ConflictError):
                state_service.advance_conversation(
                    db_session,
                    TENANT,
                    BOT,
                    COUNTERPART,
                    InboundEvent(matched_handle="yes"),
                    active_funnel,
                    max_attempts=3,
                )

        assert cas.call_count == 3


class TestStateStore:
    def test_ensure_state_is_insert_only(self, db_session):
        assert conversation_service.ensure_state(db_session, TENANT, BOT, COUNTERPART) is True
        assert conversation_service.ensure_state(db_session, TENANT, BOT, COUNTERPART) is False

    def test_list_contacts_counts_finished(self, db_session, active_funnel):
        for counterpart in ("a", "b", "c"):
            conversation_service.ensure_state(db_session, TENANT, BOT, counterpart, counterpart.upper())
        conversation_service.mark_funnel_completed(db_session, TENANT, BOT, "b")

        page = conversation_service.list_contacts(db_session, TENANT, BOT, page=1, limit=2)

        assert page.total == 3
        assert page.total_pages == 2
        assert page.total_finished == 1
        assert page.total_not_finished == 2
        assert len(page.data) == 2

    def test_delete_all_states_for_bot(self, db_session):
        conversation_service.ensure_state(db_session, TENANT, BOT, "a")
        conversation_service.ensure_state(db_session, TENANT, BOT, "b")
        conversation_service.ensure_state(db_session, "other-tenant", BOT, "a")

        assert conversation_service.delete_all_states_for_bot(db_session, TENANT, BOT) == 2
        assert conversation_service.read_snapshot(db_session, "other-tenant", BOT, "a") is not None
