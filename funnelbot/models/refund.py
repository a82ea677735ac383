import uuid

from sqlalchemy import BigInteger, Column, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID

from funnelbot.database import Base, JSONType


class Refund(Base):
    __tablename__ = "refunds"
    __table_args__ = (
        UniqueConstraint("tenant_id", "payment_id", "session_id", name="uq_refunds_tenant_payment_session"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Text, nullable=False, index=True)
    payment_id = Column(Text, nullable=False)
    session_id = Column(Text, nullable=False)
    transaction_id = Column(Text)
    amount = Column(BigInteger, nullable=False)
    reason = Column(Text, nullable=False)
    gateway = Column(Text, nullable=False, default="mercadopago")  # mercadopago, manual, pix, stripe
    status = Column(Text, nullable=False, default="pending")  # pending, approved, failed
    refund_date = Column(TIMESTAMP(timezone=True), nullable=False)
    refund_metadata = Column(JSONType, nullable=False, default=dict)
    updated_at = Column(TIMESTAMP(timezone=True))
