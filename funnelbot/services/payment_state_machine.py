from enum import Enum
from typing import Optional

from funnelbot.errors import ValidationError
from funnelbot.schemas.calling import PaymentValidation
from funnelbot.schemas.payment import PaymentStatus

TERMINAL_STATUSES = {
    PaymentStatus.PAID,
    PaymentStatus.REFUNDED,
    PaymentStatus.EXPIRED,
    PaymentStatus.FAILED,
}

VALID_TRANSITIONS = {
    PaymentStatus.PENDING: [
        PaymentStatus.PAID,
        PaymentStatus.REFUNDED,
        PaymentStatus.EXPIRED,
        PaymentStatus.FAILED,
    ],
    PaymentStatus.PAID: [],
    PaymentStatus.REFUNDED: [],
    PaymentStatus.EXPIRED: [],
    PaymentStatus.FAILED: [],
}

# Gateway vocabularies (Mercado Pago, Stripe, PagBank) folded onto ours.
RAW_STATUS_MAP = {
    "pending": PaymentStatus.PENDING,
    "in_process": PaymentStatus.PENDING,
    "in_mediation": PaymentStatus.PENDING,
    "authorized": PaymentStatus.PENDING,
    "waiting": PaymentStatus.PENDING,
    "processing": PaymentStatus.PENDING,
    "requires_payment_method": PaymentStatus.PENDING,
    "requires_action": PaymentStatus.PENDING,
    "open": PaymentStatus.PENDING,
    "paid": PaymentStatus.PAID,
    "approved": PaymentStatus.PAID,
    "succeeded": PaymentStatus.PAID,
    "complete": PaymentStatus.PAID,
    "completed": PaymentStatus.PAID,
    "refunded": PaymentStatus.REFUNDED,
    "charged_back": PaymentStatus.REFUNDED,
    "expired": PaymentStatus.EXPIRED,
    "failed": PaymentStatus.FAILED,
    "rejected": PaymentStatus.FAILED,
    "cancelled": PaymentStatus.FAILED,
    "canceled": PaymentStatus.FAILED,
    "declined": PaymentStatus.FAILED,
}


class UpdateDecision(str, Enum):
    APPLY = "applied"
    IDEMPOTENT = "idempotent"
    REJECT = "rejected"
    IGNORE = "ignored"


class PaymentOutcome(str, Enum):
    SUCCESS = "success"
    VALUE_BELOW = "value_below"
    VALUE_ABOVE = "value_above"
    VALIDATION_FAILURE = "validation_failure"


def normalize_status(raw_status: str) -> PaymentStatus:
    normalized = (raw_status or "").strip().lower().replace(" ", "_").replace("-", "_")
    status = RAW_STATUS_MAP.get(normalized)
    if status is None:
        raise ValidationError(f"Unknown payment status '{raw_status}'")
    return status


def is_terminal(status: PaymentStatus) -> bool:
    return status in TERMINAL_STATUSES


def can_transition(from_status: PaymentStatus, to_status: PaymentStatus) -> bool:
    return to_status in VALID_TRANSITIONS.get(from_status, [])


def decide_update(current: PaymentStatus, incoming: PaymentStatus) -> UpdateDecision:
    """What to do with an incoming status given the stored one."""
    if can_transition(current, incoming):
        return UpdateDecision.APPLY
    if current == incoming:
        return UpdateDecision.IDEMPOTENT if is_terminal(current) else UpdateDecision.IGNORE
    return UpdateDecision.REJECT


def validate_payment(
    amount: Optional[int],
    recipient: Optional[str],
    validation: PaymentValidation,
) -> PaymentOutcome:
    if amount is None or amount < 0:
        return PaymentOutcome.VALIDATION_FAILURE

    if validation.expected_recipient:
        if not recipient or recipient.strip().lower() != validation.expected_recipient.strip().lower():
            return PaymentOutcome.VALIDATION_FAILURE

    # without an explicit minimum the expected amount is the floor
    floor = validation.minimum_amount if validation.minimum_amount is not None else validation.expected_amount
    if floor is not None and amount < floor:
        return PaymentOutcome.VALUE_BELOW

    if validation.expected_amount is not None and amount > validation.expected_amount:
        return PaymentOutcome.VALUE_ABOVE

    return PaymentOutcome.SUCCESS
