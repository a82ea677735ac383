"""Operator alerts sent to a Telegram chat."""

from typing import Optional

import httpx

from funnelbot.config import settings
from funnelbot.logging_config import get_logger

logger = get_logger("alert_service")

LEVEL_MARKS = {"INFO": "ℹ️", "WARNING": "⚠️", "ERROR": "❌"}


def format_alert(level: str, message: str, context: Optional[dict] = None) -> str:
    """Markdown body: level header, message, then the context as a code block.

    Tenant and bot come first so operators can route the alert at a glance.
    """
    lines = [f"{LEVEL_MARKS.get(level, '📢')} *{level}*", "", message]
    if context:
        ordered = sorted(context.items(), key=lambda item: (item[0] not in ("tenant_id", "bot_id"), item[0]))
        lines += ["", "```", *(f"{key}: {value}" for key, value in ordered), "```"]
    return "\n".join(lines)


def send_alert(level: str, message: str, context: Optional[dict] = None) -> bool:
    """Post an alert to the operator chat. Returns True when Telegram accepted it."""
    if not settings.alert_bot_token or not settings.alert_chat_id:
        logger.warning(f"Alert not configured: {level} - {message}", extra={"context": context or {}})
        return False

    try:
        with httpx.Client(timeout=10) as client:
            response = client.post(
                f"https://api.telegram.org/bot{settings.alert_bot_token}/sendMessage",
                json={
                    "chat_id": settings.alert_chat_id,
                    "text": format_alert(level, message, context),
                    "parse_mode": "Markdown",
                },
            )
    except httpx.HTTPError as e:
        logger.error(f"Failed to send alert: {e}")
        return False
    return response.status_code == 200


def alert_error(message: str, context: Optional[dict] = None) -> bool:
    return send_alert("ERROR", message, context)


def alert_warning(message: str, context: Optional[dict] = None) -> bool:
    return send_alert("WARNING", message, context)
