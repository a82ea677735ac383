import uuid

from sqlalchemy import Column, Integer, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID

from funnelbot.database import Base


class Bot(Base):
    __tablename__ = "bots"
    __table_args__ = (UniqueConstraint("tenant_id", "session_id", name="uq_bots_tenant_session"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Text, nullable=False)
    session_id = Column(Text, nullable=False)  # bot_id used across the engine
    name = Column(Text, nullable=False)
    phone = Column(Text, nullable=False)
    replica_number = Column(Integer, nullable=False, default=0)
    url = Column(Text, default="")
    authorization = Column(Text, default="")
    status = Column(Text, nullable=False, default="disconnected")  # connected, disconnected
    last_check = Column(TIMESTAMP(timezone=True))
