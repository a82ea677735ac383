from sqlalchemy.orm import Session

from funnelbot.logging_config import get_logger
from funnelbot.schemas.calling import CallingContext, TriggerReport
from funnelbot.schemas.message import InboundMessageRequest, InboundMessageResponse
from funnelbot.services import (
    calling_service,
    classification_service,
    conversation_service,
    escalation_service,
    funnel_service,
    state_service,
    transport_service,
)
from funnelbot.services.state_machine import REPLY_OUTCOMES, InboundEvent

logger = get_logger("message_service")


def process_inbound_message(db: Session, request: InboundMessageRequest) -> InboundMessageResponse:
    """Run one classified message through the funnel, then its calling.

    The state transition is committed before any side effect, so a failed
    send or calling never reverts it.
    """
    graph = funnel_service.get_funnel(db, request.tenant_id, request.bot_id)
    event = InboundEvent(
        text=request.text,
        matched_handle=request.matched_handle,
        variables=request.variables,
        restart=request.restart,
    )

    applied = state_service.advance_conversation(
        db,
        request.tenant_id,
        request.bot_id,
        request.counterpart,
        event,
        graph,
        counterpart_name=request.counterpart_name,
    )
    db.commit()

    decision = applied.decision
    logger.info(
        "Inbound message processed",
        extra={
            "context": {
                "tenant_id": request.tenant_id,
                "bot_id": request.bot_id,
                "counterpart": request.counterpart,
                "outcome": decision.outcome.value,
                "node_id": decision.state.current_node_id,
                "attempts": applied.attempts,
            }
        },
    )

    reply = None
    if decision.outcome in REPLY_OUTCOMES and decision.node is not None and decision.node.content:
        reply = decision.node.content
        transport_service.deliver_message(db, request.tenant_id, request.bot_id, request.counterpart, reply)

    calling: TriggerReport | None = None
    if request.calling_key:
        classification_service.record_classification(
            db,
            request.tenant_id,
            request.bot_id,
            request.counterpart,
            request.calling_key,
            counterpart_name=request.counterpart_name,
            reason=request.reason,
            last_message=request.text,
        )
        calling = calling_service.trigger_calling(
            db,
            request.tenant_id,
            request.bot_id,
            request.calling_key,
            CallingContext(
                counterpart=request.counterpart,
                counterpart_name=request.counterpart_name,
                text=request.text,
            ),
        )
        db.commit()
        if calling.requested_human:
            escalation_service.notify_pending_handovers(db, request.tenant_id, request.bot_id, request.counterpart)

    state = conversation_service.get_state(db, request.tenant_id, request.bot_id, request.counterpart)
    return InboundMessageResponse(
        success=True,
        outcome=decision.outcome.value,
        state=state,
        reply=reply,
        calling=calling,
    )
