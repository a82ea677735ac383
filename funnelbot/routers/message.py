from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from funnelbot.database import get_db
from funnelbot.schemas.message import InboundMessageRequest, InboundMessageResponse
from funnelbot.services.message_service import process_inbound_message

router = APIRouter()


@router.post("/messages/inbound", response_model=InboundMessageResponse)
def inbound_message(request: InboundMessageRequest, db: Session = Depends(get_db)):
    """Classified inbound message: advance the funnel, then fire its calling."""
    return process_inbound_message(db, request)
