from datetime import datetime
from enum import Enum
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field


class PlanName(str, Enum):
    NONE = "none"
    STANDARD = "standard"
    BUSINESS = "business"
    ENTERPRISE = "enterprise"


class SubscriptionCreateRequest(BaseModel):
    tenant_id: str
    plan_name: PlanName
    payment_id: str
    duration_days: int = Field(default=30, gt=0)


class SubscriptionRenewRequest(BaseModel):
    tenant_id: str
    payment_id: str
    duration_days: int = Field(default=30, gt=0)
    renew_with_slots: bool = True


class ExtraSlotsRequest(BaseModel):
    tenant_id: str
    count: int = Field(gt=0)
    payment_id: str


class ExtraSlotOut(BaseModel):
    count: int
    payment_id: str


class SubscriptionOut(BaseModel):
    tenant_id: str
    plan_name: PlanName
    status: str
    start_date: datetime
    expires_at: datetime
    payment_id: str
    extra_slots_expire_at: Optional[datetime] = None
    extra_slots: list[ExtraSlotOut] = Field(default_factory=list)


class RefundRequest(BaseModel):
    tenant_id: str
    payment_id: str
    session_id: str
    transaction_id: Optional[str] = None
    amount: int = Field(ge=0)
    reason: str
    gateway: Literal["mercadopago", "manual", "pix", "stripe"] = "mercadopago"
    status: Literal["pending", "approved", "failed"] = "pending"
    metadata: dict[str, Any] = Field(default_factory=dict)


class RefundOut(BaseModel):
    tenant_id: str
    payment_id: str
    session_id: str
    amount: int
    reason: str
    gateway: str
    status: str
    refund_date: datetime


class RefundResultOut(BaseModel):
    refund: RefundOut
    revoked: Optional[Literal["plan", "extra_slots"]] = None
