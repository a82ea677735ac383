import uuid

from sqlalchemy import Boolean, Column, Integer, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID

from funnelbot.database import Base, JSONType


class Funnel(Base):
    __tablename__ = "funnels"
    __table_args__ = (UniqueConstraint("tenant_id", "bot_id", name="uq_funnels_tenant_bot"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Text, nullable=False)
    bot_id = Column(Text, nullable=False)
    is_active = Column(Boolean, nullable=False, default=False)
    version = Column(Integer, nullable=False, default=1)
    nodes = Column(JSONType, nullable=False, default=list)  # [{id, type, label, content, outgoing}]
    last_modified = Column(TIMESTAMP(timezone=True), nullable=False)
