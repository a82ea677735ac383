from funnelbot.services.message_service import process_inbound_message
from funnelbot.services.payment_service import reconcile_status_update, register_payment_intent
from funnelbot.services.state_machine import (
    InboundEvent,
    StateSnapshot,
    TransitionDecision,
    TransitionOutcome,
    compute_transition,
)
from funnelbot.services.state_service import advance_conversation
