"""Per-(tenant, bot, counterpart) conversation state store.

Every mutation is a single conditional statement: insert-only upsert for
creation, compare-and-set on ``revision`` for transitions.
"""

import math
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session

from funnelbot.database import dialect_insert
from funnelbot.errors import NotFoundError, store_errors
from funnelbot.models import ConversationState
from funnelbot.schemas.funnel import START_NODE_ID
from funnelbot.schemas.message import ContactsPage, ConversationStateOut
from funnelbot.services.state_machine import StateSnapshot


def _key_filter(tenant_id: str, bot_id: str, counterpart: str):
    return (
        ConversationState.tenant_id == tenant_id,
        ConversationState.bot_id == bot_id,
        ConversationState.counterpart == counterpart,
    )


def ensure_state(
    db: Session,
    tenant_id: str,
    bot_id: str,
    counterpart: str,
    counterpart_name: Optional[str] = None,
) -> bool:
    """Create the state at the start node if missing. Returns True when created."""
    now = datetime.now(timezone.utc)
    stmt = (
        dialect_insert(db, ConversationState.__table__)
        .values(
            tenant_id=tenant_id,
            bot_id=bot_id,
            counterpart=counterpart,
            counterpart_name=counterpart_name,
            current_node_id=START_NODE_ID,
            waiting_for_reply=False,
            completed_funnel=False,
            variables={},
            revision=0,
            last_interaction_at=now,
            created_at=now,
        )
        .on_conflict_do_nothing(index_elements=["tenant_id", "bot_id", "counterpart"])
    )
    with store_errors("ensure conversation state"):
        result = db.execute(stmt)
    return result.rowcount > 0


def read_snapshot(db: Session, tenant_id: str, bot_id: str, counterpart: str) -> Optional[StateSnapshot]:
    with store_errors("read conversation state"):
        row = db.execute(
            select(
                ConversationState.current_node_id,
                ConversationState.waiting_for_reply,
                ConversationState.completed_funnel,
                ConversationState.variables,
                ConversationState.revision,
            ).where(*_key_filter(tenant_id, bot_id, counterpart))
        ).first()
    if row is None:
        return None
    return StateSnapshot(
        current_node_id=row.current_node_id,
        waiting_for_reply=row.waiting_for_reply,
        completed_funnel=row.completed_funnel,
        variables=dict(row.variables or {}),
        revision=row.revision,
    )


def compare_and_set(
    db: Session,
    tenant_id: str,
    bot_id: str,
    counterpart: str,
    expected_revision: int,
    new_state: StateSnapshot,
    counterpart_name: Optional[str] = None,
) -> bool:
    """Write ``new_state`` only if nobody wrote since ``expected_revision``."""
    values: dict[str, Any] = {
        "current_node_id": new_state.current_node_id,
        "waiting_for_reply": new_state.waiting_for_reply,
        "completed_funnel": new_state.completed_funnel,
        "variables": new_state.variables,
        "revision": expected_revision + 1,
        "last_interaction_at": datetime.now(timezone.utc),
    }
    if counterpart_name:
        values["counterpart_name"] = counterpart_name

    with store_errors("write conversation state"):
        result = db.execute(
            update(ConversationState)
            .where(
                *_key_filter(tenant_id, bot_id, counterpart),
                ConversationState.revision == expected_revision,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
    return result.rowcount == 1


def touch(db: Session, tenant_id: str, bot_id: str, counterpart: str, counterpart_name: Optional[str] = None) -> None:
    """Refresh last interaction (and name) without touching funnel position."""
    values: dict[str, Any] = {"last_interaction_at": datetime.now(timezone.utc)}
    if counterpart_name:
        values["counterpart_name"] = counterpart_name
    with store_errors("touch conversation state"):
        db.execute(
            update(ConversationState)
            .where(*_key_filter(tenant_id, bot_id, counterpart))
            .values(**values)
            .execution_options(synchronize_session=False)
        )


def to_out(state: ConversationState) -> ConversationStateOut:
    return ConversationStateOut(
        tenant_id=state.tenant_id,
        bot_id=state.bot_id,
        counterpart=state.counterpart,
        counterpart_name=state.counterpart_name,
        current_node_id=state.current_node_id,
        waiting_for_reply=state.waiting_for_reply,
        completed_funnel=state.completed_funnel,
        variables=state.variables or {},
        last_interaction_at=state.last_interaction_at,
    )


def get_state(db: Session, tenant_id: str, bot_id: str, counterpart: str) -> ConversationStateOut:
    with store_errors("get conversation state"):
        state = db.execute(
            select(ConversationState)
            .where(*_key_filter(tenant_id, bot_id, counterpart))
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
    if state is None:
        raise NotFoundError(f"No conversation state for {counterpart}")
    return to_out(state)


def list_contacts(db: Session, tenant_id: str, bot_id: str, page: int = 1, limit: int = 10) -> ContactsPage:
    """Contacts ordered by last interaction, with funnel completion totals."""
    page = max(page, 1)
    limit = max(limit, 1)
    scope = (ConversationState.tenant_id == tenant_id, ConversationState.bot_id == bot_id)

    with store_errors("list contacts"):
        rows = (
            db.execute(
                select(
                    ConversationState.counterpart,
                    ConversationState.counterpart_name,
                    ConversationState.completed_funnel,
                    ConversationState.last_interaction_at,
                )
                .where(*scope)
                .order_by(ConversationState.last_interaction_at.desc())
                .offset((page - 1) * limit)
                .limit(limit)
            )
            .mappings()
            .all()
        )
        total = db.execute(select(func.count()).select_from(ConversationState).where(*scope)).scalar_one()
        total_finished = db.execute(
            select(func.count())
            .select_from(ConversationState)
            .where(*scope, ConversationState.completed_funnel.is_(True))
        ).scalar_one()

    return ContactsPage(
        data=[
            {
                "counterpart": row["counterpart"],
                "name": row["counterpart_name"],
                "completed_funnel": row["completed_funnel"],
                "last_interaction_at": row["last_interaction_at"],
            }
            for row in rows
        ],
        page=page,
        limit=limit,
        total=total,
        total_pages=math.ceil(total / limit),
        total_finished=total_finished,
        total_not_finished=total - total_finished,
    )


def mark_funnel_completed(db: Session, tenant_id: str, bot_id: str, counterpart: str) -> None:
    with store_errors("complete funnel"):
        result = db.execute(
            update(ConversationState)
            .where(*_key_filter(tenant_id, bot_id, counterpart))
            .values(
                completed_funnel=True,
                waiting_for_reply=False,
                revision=ConversationState.revision + 1,
            )
            .execution_options(synchronize_session=False)
        )
    if result.rowcount == 0:
        raise NotFoundError(f"No conversation state for {counterpart}")


def delete_state(db: Session, tenant_id: str, bot_id: str, counterpart: str) -> int:
    with store_errors("delete conversation state"):
        result = db.execute(delete(ConversationState).where(*_key_filter(tenant_id, bot_id, counterpart)))
    return result.rowcount


def delete_all_states_for_bot(db: Session, tenant_id: str, bot_id: str) -> int:
    """Tenant data erasure for one bot."""
    with store_errors("erase conversation states"):
        result = db.execute(
            delete(ConversationState).where(
                ConversationState.tenant_id == tenant_id,
                ConversationState.bot_id == bot_id,
            )
        )
    return result.rowcount
