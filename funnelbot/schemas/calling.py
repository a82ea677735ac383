from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator, model_validator

PAYMENT_MADE = "payment_made"


class SendMessageAction(BaseModel):
    enabled: bool = False
    message: Optional[str] = None


class AddTagAction(BaseModel):
    enabled: bool = False
    tag: Optional[str] = Field(default=None, min_length=1)

    @field_validator("tag", mode="before")
    @classmethod
    def strip_tag(cls, value):
        return value.strip() if isinstance(value, str) else value


class TransferToHumanAction(BaseModel):
    enabled: bool = False


class ScheduleAction(BaseModel):
    enabled: bool = False
    delay_minutes: Optional[int] = Field(default=None, ge=0)
    message: Optional[str] = None


class ActionBundle(BaseModel):
    send_message: Optional[SendMessageAction] = None
    add_tag: Optional[AddTagAction] = None
    transfer_to_human: Optional[TransferToHumanAction] = None
    schedule_followup: Optional[ScheduleAction] = None
    schedule_reminder: Optional[ScheduleAction] = None


class PaymentValidation(BaseModel):
    expected_recipient: Optional[str] = None
    expected_amount: Optional[int] = Field(default=None, ge=0)  # minor units
    minimum_amount: Optional[int] = Field(default=None, ge=0)


class PaymentConfig(BaseModel):
    validation: PaymentValidation = Field(default_factory=PaymentValidation)
    actions_on_success: ActionBundle = Field(default_factory=ActionBundle)
    actions_on_value_below: ActionBundle = Field(default_factory=ActionBundle)
    actions_on_value_above: ActionBundle = Field(default_factory=ActionBundle)
    actions_on_validation_failure: ActionBundle = Field(default_factory=ActionBundle)

    def bundle_for(self, outcome: str) -> ActionBundle:
        return getattr(self, f"actions_on_{outcome}")


class ActionCalling(BaseModel):
    kind: Literal["actions"] = "actions"
    key: str = Field(min_length=1)
    enabled: bool = False
    actions: ActionBundle = Field(default_factory=ActionBundle)

    @model_validator(mode="after")
    def _not_payment_key(self) -> "ActionCalling":
        if self.key == PAYMENT_MADE:
            raise ValueError(f"'{PAYMENT_MADE}' must carry a payment_config")
        return self


class PaymentCalling(BaseModel):
    kind: Literal["payment"] = "payment"
    key: Literal["payment_made"] = PAYMENT_MADE
    enabled: bool = False
    payment_config: PaymentConfig = Field(default_factory=PaymentConfig)


CallingVariant = Annotated[Union[ActionCalling, PaymentCalling], Field(discriminator="kind")]


def _tag_calling(raw: Any) -> Any:
    """Pick the variant from the key and drop the field of the other variant."""
    if not isinstance(raw, dict):
        return raw
    data = dict(raw)
    if data.get("key") == PAYMENT_MADE:
        data["kind"] = "payment"
        data.pop("actions", None)
    else:
        data["kind"] = "actions"
        data.pop("payment_config", None)
    return data


class CallingConfigIn(BaseModel):
    is_active: bool = True
    callings: list[CallingVariant] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _tag_callings(cls, data: Any) -> Any:
        if isinstance(data, dict) and isinstance(data.get("callings"), list):
            data = {**data, "callings": [_tag_calling(c) for c in data["callings"]]}
        return data

    @model_validator(mode="after")
    def _unique_keys(self) -> "CallingConfigIn":
        keys = [c.key for c in self.callings]
        duplicates = sorted({k for k in keys if keys.count(k) > 1})
        if duplicates:
            raise ValueError(f"Duplicate calling keys: {', '.join(duplicates)}")
        return self


class CallingStatusUpdate(BaseModel):
    key: str
    enabled: bool


class CallingContext(BaseModel):
    counterpart: str
    counterpart_name: Optional[str] = None
    text: Optional[str] = None
    payment_outcome: Optional[Literal["success", "value_below", "value_above", "validation_failure"]] = None


class ActionReport(BaseModel):
    action: str
    ok: bool
    detail: Optional[str] = None


class TriggerReport(BaseModel):
    calling_key: str
    executed: bool
    reason: Optional[str] = None
    actions: list[ActionReport] = Field(default_factory=list)

    @property
    def requested_human(self) -> bool:
        return any(a.action == "transfer_to_human" and a.ok for a in self.actions)
