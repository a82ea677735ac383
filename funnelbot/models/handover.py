import uuid

from sqlalchemy import Column, Text
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID

from funnelbot.database import Base


class Handover(Base):
    __tablename__ = "handovers"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Text, nullable=False)
    bot_id = Column(Text, nullable=False)
    counterpart = Column(Text, nullable=False)
    trigger_type = Column(Text, nullable=False)  # calling, manual
    trigger_value = Column(Text)  # calling key
    user_message = Column(Text)
    status = Column(Text, nullable=False, default="pending")  # pending, active, resolved
    created_at = Column(TIMESTAMP(timezone=True), nullable=False)
    notified_at = Column(TIMESTAMP(timezone=True))
