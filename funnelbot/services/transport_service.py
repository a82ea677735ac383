from typing import Optional

import httpx
from sqlalchemy import select
from sqlalchemy.orm import Session

from funnelbot.config import settings
from funnelbot.logging_config import get_logger
from funnelbot.models import Bot
from funnelbot.services.result import Result

logger = get_logger("transport_service")


class BotTransport:
    """Client for the chat session replica that serves one bot."""

    def __init__(self, base_url: str, authorization: Optional[str] = None, timeout: Optional[float] = None):
        self.base_url = base_url.rstrip("/")
        self.authorization = authorization
        self.timeout = timeout or settings.transport_timeout_seconds

    def _headers(self) -> dict:
        if not self.authorization:
            return {}
        return {"Authorization": f"Bearer {self.authorization}"}

    def _make_request(self, path: str, data: dict) -> Result[dict]:
        url = f"{self.base_url}/{path.lstrip('/')}"
        try:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.post(url, json=data, headers=self._headers())
        except httpx.HTTPError as e:
            logger.error(f"Transport request failed: {e}", extra={"context": {"url": url}})
            return Result.failure(str(e), "transport_error")

        if response.status_code >= 400:
            logger.error(
                "Transport rejected request",
                extra={"context": {"url": url, "status": response.status_code, "body": response.text[:500]}},
            )
            return Result.failure(f"HTTP {response.status_code}", "transport_rejected")

        try:
            body = response.json()
        except ValueError:
            body = {}
        return Result.success(body)

    def send_message(self, counterpart: str, text: str) -> Result[dict]:
        return self._make_request("send-message", {"to": counterpart, "text": text})


def get_transport(db: Session, tenant_id: str, bot_id: str) -> Optional[BotTransport]:
    bot = db.execute(
        select(Bot).where(Bot.tenant_id == tenant_id, Bot.session_id == bot_id)
    ).scalar_one_or_none()
    if not bot or not bot.url:
        return None
    return BotTransport(bot.url, bot.authorization)


def deliver_message(
    db: Session,
    tenant_id: str,
    bot_id: str,
    counterpart: str,
    text: str,
    transport: Optional[BotTransport] = None,
) -> Result[dict]:
    """Fire-and-forget send. Failures are logged and returned, never raised."""
    if not text:
        return Result.failure("Empty message", "empty_message")

    transport = transport or get_transport(db, tenant_id, bot_id)
    if transport is None:
        logger.warning(
            "No transport configured for bot",
            extra={"context": {"tenant_id": tenant_id, "bot_id": bot_id}},
        )
        return Result.failure("No transport configured", "no_transport")

    result = transport.send_message(counterpart, text)
    if not result.ok:
        logger.warning(
            "Message delivery failed",
            extra={
                "context": {
                    "tenant_id": tenant_id,
                    "bot_id": bot_id,
                    "counterpart": counterpart,
                    "error": result.error,
                }
            },
        )
    return result
