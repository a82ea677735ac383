import uuid

from sqlalchemy import BigInteger, Column, Float, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID

from funnelbot.database import Base, JSONType


class PaymentSession(Base):
    __tablename__ = "payment_sessions"
    __table_args__ = (
        UniqueConstraint("bot_id", "tenant_id", "counterpart", name="uq_payment_sessions_key"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Text, nullable=False)
    bot_id = Column(Text, nullable=False)
    counterpart = Column(Text, nullable=False)
    counterpart_name = Column(Text)
    session_id = Column(Text)
    transaction_id = Column(Text, index=True)
    amount_original = Column(BigInteger, nullable=False, default=0)  # minor units
    amount_formatted = Column(Float)
    gateway = Column(Text)  # mercado-pago, stripe, pagbank
    status = Column(Text, nullable=False, default="pending")
    status_updated_at = Column(TIMESTAMP(timezone=True), nullable=False)
    last_webhook_at = Column(TIMESTAMP(timezone=True))
    last_polling_at = Column(TIMESTAMP(timezone=True))
    created_at = Column(TIMESTAMP(timezone=True), nullable=False)


class PaymentAnomaly(Base):
    __tablename__ = "payment_anomalies"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Text, nullable=False)
    payment_session_id = Column(UUID(as_uuid=True), nullable=False)
    source = Column(Text, nullable=False)  # webhook, polling
    current_status = Column(Text, nullable=False)
    rejected_status = Column(Text, nullable=False)
    details = Column(JSONType, nullable=False, default=dict)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False)
