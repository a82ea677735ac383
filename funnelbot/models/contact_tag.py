import uuid

from sqlalchemy import Column, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID

from funnelbot.database import Base


class ContactTag(Base):
    __tablename__ = "contact_tags"
    __table_args__ = (
        UniqueConstraint("tenant_id", "bot_id", "counterpart", "tag", name="uq_contact_tags"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Text, nullable=False)
    bot_id = Column(Text, nullable=False)
    counterpart = Column(Text, nullable=False)
    tag = Column(Text, nullable=False)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False)
