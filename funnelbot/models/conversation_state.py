import uuid

from sqlalchemy import Boolean, Column, Integer, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID

from funnelbot.database import Base, JSONType


class ConversationState(Base):
    __tablename__ = "conversation_states"
    __table_args__ = (
        UniqueConstraint("tenant_id", "bot_id", "counterpart", name="uq_conversation_states_key"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Text, nullable=False)
    bot_id = Column(Text, nullable=False)
    counterpart = Column(Text, nullable=False)  # phone / chat address
    counterpart_name = Column(Text)
    current_node_id = Column(Text, nullable=False, default="1")
    waiting_for_reply = Column(Boolean, nullable=False, default=False)
    completed_funnel = Column(Boolean, nullable=False, default=False)
    variables = Column(JSONType, nullable=False, default=dict)
    revision = Column(Integer, nullable=False, default=0)
    last_interaction_at = Column(TIMESTAMP(timezone=True), nullable=False)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False)
