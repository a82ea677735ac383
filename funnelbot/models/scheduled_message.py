import uuid

from sqlalchemy import Column, Integer, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID

from funnelbot.database import Base


class ScheduledMessage(Base):
    __tablename__ = "scheduled_messages"
    __table_args__ = (
        UniqueConstraint("tenant_id", "bot_id", "idempotency_key", name="uq_scheduled_messages_key"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Text, nullable=False)
    bot_id = Column(Text, nullable=False)
    counterpart = Column(Text, nullable=False)
    calling_key = Column(Text, nullable=False)
    kind = Column(Text, nullable=False)  # followup, reminder
    idempotency_key = Column(Text, nullable=False)
    message = Column(Text, nullable=False)
    due_at = Column(TIMESTAMP(timezone=True), nullable=False)
    status = Column(Text, nullable=False, default="PENDING")  # PENDING, PROCESSING, SENT, FAILED, CANCELLED
    attempts = Column(Integer, nullable=False, default=0)
    next_attempt_at = Column(TIMESTAMP(timezone=True))
    last_error = Column(Text)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False)
    updated_at = Column(TIMESTAMP(timezone=True), nullable=False)
