import uuid

from sqlalchemy import Column, ForeignKey, Integer, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID
from sqlalchemy.orm import relationship

from funnelbot.database import Base


class Subscription(Base):
    __tablename__ = "subscriptions"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Text, nullable=False, index=True)
    plan_name = Column(Text, nullable=False)  # none, standard, business, enterprise
    status = Column(Text, nullable=False, default="active")  # active, expired, cancelled, refunded
    start_date = Column(TIMESTAMP(timezone=True), nullable=False)
    expires_at = Column(TIMESTAMP(timezone=True), nullable=False)
    payment_id = Column(Text, nullable=False)
    extra_slots_expire_at = Column(TIMESTAMP(timezone=True))

    extra_slots = relationship("ExtraSlot", back_populates="subscription", cascade="all, delete-orphan")


class ExtraSlot(Base):
    __tablename__ = "extra_slots"
    __table_args__ = (UniqueConstraint("subscription_id", "payment_id", name="uq_extra_slots_payment"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    subscription_id = Column(UUID(as_uuid=True), ForeignKey("subscriptions.id", ondelete="CASCADE"), nullable=False)
    count = Column(Integer, nullable=False)
    payment_id = Column(Text, nullable=False)

    subscription = relationship("Subscription", back_populates="extra_slots")
