"""Admin API endpoints for funnels, callings, contacts and bots."""

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from funnelbot.database import get_db
from funnelbot.schemas.calling import CallingConfigIn, CallingStatusUpdate
from funnelbot.schemas.funnel import FunnelGraph, FunnelPublishRequest, FunnelStatus
from funnelbot.schemas.message import ContactsPage
from funnelbot.services import bot_service, calling_service, conversation_service, funnel_service

router = APIRouter(prefix="/admin", tags=["admin"])


# === SCHEMAS ===


class ActiveToggle(BaseModel):
    is_active: bool


class BotRegisterRequest(BaseModel):
    session_id: str
    name: str
    phone: str
    url: str = ""
    authorization: str = ""
    replica_number: int = 0


class BotStatusUpdate(BaseModel):
    status: str


class BotOut(BaseModel):
    session_id: str
    name: str
    phone: str
    status: str
    replica_number: int


def _bot_out(bot) -> BotOut:
    return BotOut(
        session_id=bot.session_id,
        name=bot.name,
        phone=bot.phone,
        status=bot.status,
        replica_number=bot.replica_number,
    )


# === FUNNELS ===


@router.put("/funnels", response_model=FunnelGraph)
def publish_funnel(request: FunnelPublishRequest, db: Session = Depends(get_db)):
    graph = funnel_service.publish(db, request.tenant_id, request.bot_id, request.nodes)
    db.commit()
    return graph


@router.get("/funnels/{tenant_id}/{bot_id}", response_model=FunnelStatus)
def funnel_status(tenant_id: str, bot_id: str, db: Session = Depends(get_db)):
    return funnel_service.get_funnel_status(db, tenant_id, bot_id)


@router.post("/funnels/{tenant_id}/{bot_id}/active", response_model=FunnelStatus)
def toggle_funnel(tenant_id: str, bot_id: str, request: ActiveToggle, db: Session = Depends(get_db)):
    status = funnel_service.set_active(db, tenant_id, bot_id, request.is_active)
    db.commit()
    return status


@router.delete("/funnels/{tenant_id}/{bot_id}")
def delete_funnel(tenant_id: str, bot_id: str, db: Session = Depends(get_db)):
    funnel_service.delete_funnel(db, tenant_id, bot_id)
    db.commit()
    return {"success": True}


# === CALLINGS ===


@router.put("/callings/{tenant_id}/{bot_id}", response_model=CallingConfigIn)
def save_callings(tenant_id: str, bot_id: str, config: CallingConfigIn, db: Session = Depends(get_db)):
    saved = calling_service.save_calling_config(db, tenant_id, bot_id, config)
    db.commit()
    return saved


@router.get("/callings/{tenant_id}/{bot_id}", response_model=Optional[CallingConfigIn])
def get_callings(tenant_id: str, bot_id: str, db: Session = Depends(get_db)):
    return calling_service.get_calling_config(db, tenant_id, bot_id)


@router.patch("/callings/{tenant_id}/{bot_id}/statuses")
def update_calling_statuses(
    tenant_id: str,
    bot_id: str,
    updates: list[CallingStatusUpdate],
    db: Session = Depends(get_db),
):
    changed = calling_service.update_calling_statuses(db, tenant_id, bot_id, updates)
    db.commit()
    return {"success": True, "changed": changed}


@router.post("/callings/{tenant_id}/{bot_id}/active")
def toggle_callings(tenant_id: str, bot_id: str, request: ActiveToggle, db: Session = Depends(get_db)):
    calling_service.set_calling_config_active(db, tenant_id, bot_id, request.is_active)
    db.commit()
    return {"success": True, "is_active": request.is_active}


# === CONTACTS ===


@router.get("/contacts/{tenant_id}/{bot_id}", response_model=ContactsPage)
def list_contacts(tenant_id: str, bot_id: str, page: int = 1, limit: int = 10, db: Session = Depends(get_db)):
    return conversation_service.list_contacts(db, tenant_id, bot_id, page=page, limit=limit)


@router.delete("/contacts/{tenant_id}/{bot_id}/{counterpart}")
def delete_contact(tenant_id: str, bot_id: str, counterpart: str, db: Session = Depends(get_db)):
    deleted = conversation_service.delete_state(db, tenant_id, bot_id, counterpart)
    db.commit()
    return {"success": True, "deleted": deleted}


# === BOTS ===


@router.post("/bots/{tenant_id}", response_model=BotOut)
def register_bot(tenant_id: str, request: BotRegisterRequest, db: Session = Depends(get_db)):
    bot = bot_service.register_bot(
        db,
        tenant_id,
        request.session_id,
        request.name,
        request.phone,
        url=request.url,
        authorization=request.authorization,
        replica_number=request.replica_number,
    )
    db.commit()
    return _bot_out(bot)


@router.get("/bots/{tenant_id}", response_model=list[BotOut])
def list_bots(tenant_id: str, db: Session = Depends(get_db)):
    return [_bot_out(bot) for bot in bot_service.list_bots(db, tenant_id)]


@router.post("/bots/{tenant_id}/{session_id}/status")
def update_bot_status(tenant_id: str, session_id: str, request: BotStatusUpdate, db: Session = Depends(get_db)):
    bot_service.update_status(db, tenant_id, session_id, request.status)
    db.commit()
    return {"success": True}


@router.delete("/bots/{tenant_id}/{session_id}")
def delete_bot(tenant_id: str, session_id: str, db: Session = Depends(get_db)):
    bot_service.delete_bot(db, tenant_id, session_id)
    db.commit()
    return {"success": True}
