from funnelbot.models.bot import Bot
from funnelbot.models.calling import Calling, CallingConfig
from funnelbot.models.classification_event import ClassificationEvent
from funnelbot.models.contact_tag import ContactTag
from funnelbot.models.conversation_state import ConversationState
from funnelbot.models.funnel import Funnel
from funnelbot.models.handover import Handover
from funnelbot.models.payment_session import PaymentAnomaly, PaymentSession
from funnelbot.models.refund import Refund
from funnelbot.models.scheduled_message import ScheduledMessage
from funnelbot.models.subscription import ExtraSlot, Subscription

__all__ = [
    "Bot",
    "Calling",
    "CallingConfig",
    "ClassificationEvent",
    "ContactTag",
    "ConversationState",
    "ExtraSlot",
    "Funnel",
    "Handover",
    "PaymentAnomaly",
    "PaymentSession",
    "Refund",
    "ScheduledMessage",
    "Subscription",
]
