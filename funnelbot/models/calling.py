import uuid

from sqlalchemy import Boolean, Column, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID

from funnelbot.database import Base, JSONType


class CallingConfig(Base):
    __tablename__ = "calling_configs"
    __table_args__ = (UniqueConstraint("tenant_id", "bot_id", name="uq_calling_configs_tenant_bot"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Text, nullable=False)
    bot_id = Column(Text, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    updated_at = Column(TIMESTAMP(timezone=True), nullable=False)


class Calling(Base):
    __tablename__ = "callings"
    __table_args__ = (UniqueConstraint("tenant_id", "bot_id", "key", name="uq_callings_key"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Text, nullable=False)
    bot_id = Column(Text, nullable=False)
    key = Column(Text, nullable=False)
    enabled = Column(Boolean, nullable=False, default=False)
    kind = Column(Text, nullable=False)  # actions, payment
    payload = Column(JSONType, nullable=False, default=dict)
