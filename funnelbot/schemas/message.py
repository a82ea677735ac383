from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from funnelbot.schemas.calling import TriggerReport


class InboundMessageRequest(BaseModel):
    tenant_id: str
    bot_id: str
    counterpart: str
    counterpart_name: Optional[str] = None
    text: str = ""
    matched_handle: Optional[str] = None
    calling_key: Optional[str] = None
    reason: Optional[str] = None
    variables: dict[str, Any] = Field(default_factory=dict)
    restart: bool = False


class ConversationStateOut(BaseModel):
    tenant_id: str
    bot_id: str
    counterpart: str
    counterpart_name: Optional[str] = None
    current_node_id: str
    waiting_for_reply: bool
    completed_funnel: bool
    variables: dict[str, Any] = Field(default_factory=dict)
    last_interaction_at: Optional[datetime] = None


class InboundMessageResponse(BaseModel):
    success: bool
    outcome: str
    state: ConversationStateOut
    reply: Optional[str] = None
    calling: Optional[TriggerReport] = None


class ContactsPage(BaseModel):
    data: list[dict[str, Any]]
    page: int
    limit: int
    total: int
    total_pages: int
    total_finished: int
    total_not_finished: int
