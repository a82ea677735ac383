import uuid

from sqlalchemy import Column, Text
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID

from funnelbot.database import Base


class ClassificationEvent(Base):
    __tablename__ = "classification_events"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Text, nullable=False, index=True)
    bot_id = Column(Text, nullable=False)
    counterpart = Column(Text, nullable=False)
    counterpart_name = Column(Text)
    category = Column(Text, nullable=False)
    reason = Column(Text)
    last_message = Column(Text)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False)
