from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from funnelbot.config import settings
from funnelbot.errors import ConflictError
from funnelbot.logging_config import get_logger
from funnelbot.schemas.funnel import FunnelGraph
from funnelbot.services import conversation_service
from funnelbot.services.state_machine import (
    InboundEvent,
    StateSnapshot,
    TransitionDecision,
    compute_transition,
)

logger = get_logger("state_service")


@dataclass(frozen=True)
class AppliedTransition:
    decision: TransitionDecision
    previous: StateSnapshot
    created: bool
    attempts: int


def advance_conversation(
    db: Session,
    tenant_id: str,
    bot_id: str,
    counterpart: str,
    event: InboundEvent,
    graph: Optional[FunnelGraph],
    counterpart_name: Optional[str] = None,
    max_attempts: Optional[int] = None,
) -> AppliedTransition:
    """Apply one inbound event to the counterpart's state.

    Read the snapshot, compute the next state, write it back only if the
    revision is unchanged. A concurrent writer makes the write miss and the
    event is recomputed against the fresh snapshot, so concurrent events on
    one key behave as if applied in some serial order.
    """
    max_attempts = max_attempts or settings.state_cas_max_attempts
    created = conversation_service.ensure_state(db, tenant_id, bot_id, counterpart, counterpart_name)

    for attempt in range(1, max_attempts + 1):
        snapshot = conversation_service.read_snapshot(db, tenant_id, bot_id, counterpart)
        if snapshot is None:
            # erased between ensure and read
            conversation_service.ensure_state(db, tenant_id, bot_id, counterpart, counterpart_name)
            continue

        decision = compute_transition(graph, snapshot, event)

        if not decision.changed:
            conversation_service.touch(db, tenant_id, bot_id, counterpart, counterpart_name)
            return AppliedTransition(decision, snapshot, created, attempt)

        written = conversation_service.compare_and_set(
            db,
            tenant_id,
            bot_id,
            counterpart,
            expected_revision=snapshot.revision,
            new_state=decision.state,
            counterpart_name=counterpart_name,
        )
        if written:
            if decision.stale_node:
                logger.warning(
                    "Conversation points at a node missing from the funnel, holding",
                    extra={
                        "context": {
                            "tenant_id": tenant_id,
                            "bot_id": bot_id,
                            "counterpart": counterpart,
                            "node_id": snapshot.current_node_id,
                        }
                    },
                )
            return AppliedTransition(decision, snapshot, created, attempt)

        logger.info(
            "Conversation state changed concurrently, retrying",
            extra={"context": {"tenant_id": tenant_id, "counterpart": counterpart, "attempt": attempt}},
        )

    raise ConflictError(
        f"Could not apply transition for {counterpart} after {max_attempts} attempts",
        details={"tenant_id": tenant_id, "bot_id": bot_id},
    )
