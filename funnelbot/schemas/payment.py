from datetime import datetime
from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, Field


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    REFUNDED = "refunded"
    EXPIRED = "expired"
    FAILED = "failed"


class Gateway(str, Enum):
    MERCADO_PAGO = "mercado-pago"
    STRIPE = "stripe"
    PAGBANK = "pagbank"


class PaymentSessionKey(BaseModel):
    tenant_id: str
    bot_id: str
    counterpart: str


class PaymentIntentRequest(BaseModel):
    tenant_id: str
    bot_id: str
    counterpart: str
    counterpart_name: Optional[str] = None
    session_id: str
    transaction_id: Optional[str] = None
    amount: int = Field(ge=0)  # minor units
    gateway: Gateway


class PaymentStatusUpdate(BaseModel):
    """Shape shared by the gateway webhook handler and the polling job."""

    session_key: PaymentSessionKey
    transaction_id: Optional[str] = None
    amount_minor_units: Optional[int] = None
    raw_status: str
    recipient: Optional[str] = None
    received_at: Optional[datetime] = None


class PaymentSessionOut(BaseModel):
    tenant_id: str
    bot_id: str
    counterpart: str
    session_id: Optional[str] = None
    transaction_id: Optional[str] = None
    amount_original: int
    amount_formatted: Optional[float] = None
    gateway: Optional[str] = None
    status: PaymentStatus
    status_updated_at: Optional[datetime] = None
    last_webhook_at: Optional[datetime] = None
    last_polling_at: Optional[datetime] = None


class ReconcileResponse(BaseModel):
    result: Literal["applied", "idempotent", "rejected", "ignored"]
    status: PaymentStatus
    outcome: Optional[str] = None
