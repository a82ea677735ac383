from funnelbot.schemas.calling import CallingConfigIn, CallingContext, CallingStatusUpdate, TriggerReport
from funnelbot.schemas.funnel import FunnelGraph, FunnelNode, FunnelPublishRequest
from funnelbot.schemas.message import InboundMessageRequest, InboundMessageResponse
from funnelbot.schemas.payment import PaymentIntentRequest, PaymentStatus, PaymentStatusUpdate

__all__ = [
    "CallingConfigIn",
    "CallingContext",
    "CallingStatusUpdate",
    "FunnelGraph",
    "FunnelNode",
    "FunnelPublishRequest",
    "InboundMessageRequest",
    "InboundMessageResponse",
    "PaymentIntentRequest",
    "PaymentStatus",
    "PaymentStatusUpdate",
    "TriggerReport",
]
