"""Automation callings: per tenant/bot rule sets fired by classification or payments."""

from datetime import datetime, timezone
from typing import Any, Callable, Optional, Union

import pydantic
from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session

from funnelbot.database import dialect_insert
from funnelbot.errors import AppError, NotFoundError, TransientStoreError, ValidationError, store_errors
from funnelbot.logging_config import get_logger, tenant_logger
from funnelbot.models import Calling, CallingConfig
from funnelbot.schemas.calling import (
    ActionBundle,
    ActionCalling,
    ActionReport,
    CallingConfigIn,
    CallingContext,
    CallingStatusUpdate,
    PaymentCalling,
    TriggerReport,
)
from funnelbot.services import escalation_service, scheduler_service, subscription_service, tag_service
from funnelbot.services import transport_service

logger = get_logger("calling_service")

CallingInput = Union[CallingConfigIn, dict[str, Any]]
AnyCalling = Union[ActionCalling, PaymentCalling]


def _scope(model, tenant_id: str, bot_id: str):
    return (model.tenant_id == tenant_id, model.bot_id == bot_id)


def _payload(calling: AnyCalling) -> dict[str, Any]:
    return calling.model_dump(mode="json", exclude={"kind", "key", "enabled"})


def _from_row(row: Calling) -> AnyCalling:
    payload = row.payload or {}
    if row.kind == "payment":
        return PaymentCalling(enabled=row.enabled, payment_config=payload.get("payment_config") or {})
    return ActionCalling(key=row.key, enabled=row.enabled, actions=payload.get("actions") or {})


def save_calling_config(db: Session, tenant_id: str, bot_id: str, config: CallingInput) -> CallingConfigIn:
    """Replace the whole calling set of a bot."""
    if not isinstance(config, CallingConfigIn):
        try:
            config = CallingConfigIn.model_validate(config)
        except pydantic.ValidationError as e:
            raise ValidationError(
                "Malformed calling config",
                details=e.errors(include_url=False, include_context=False),
            ) from e

    now = datetime.now(timezone.utc)
    stmt = dialect_insert(db, CallingConfig.__table__).values(
        tenant_id=tenant_id,
        bot_id=bot_id,
        is_active=config.is_active,
        updated_at=now,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["tenant_id", "bot_id"],
        set_={"is_active": stmt.excluded.is_active, "updated_at": stmt.excluded.updated_at},
    )

    with store_errors("save calling config"):
        db.execute(stmt)
        db.execute(delete(Calling).where(*_scope(Calling, tenant_id, bot_id)))
        if config.callings:
            db.execute(
                dialect_insert(db, Calling.__table__),
                [
                    {
                        "tenant_id": tenant_id,
                        "bot_id": bot_id,
                        "key": calling.key,
                        "enabled": calling.enabled,
                        "kind": calling.kind,
                        "payload": _payload(calling),
                    }
                    for calling in config.callings
                ],
            )
        db.flush()

    logger.info(
        "Calling config saved",
        extra={"context": {"tenant_id": tenant_id, "bot_id": bot_id, "callings": len(config.callings)}},
    )
    return config


def get_calling_config(db: Session, tenant_id: str, bot_id: str) -> Optional[CallingConfigIn]:
    with store_errors("get calling config"):
        config = db.execute(
            select(CallingConfig)
            .where(*_scope(CallingConfig, tenant_id, bot_id))
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if config is None:
            return None
        rows = (
            db.execute(
                select(Calling)
                .where(*_scope(Calling, tenant_id, bot_id))
                .order_by(Calling.key)
                .execution_options(populate_existing=True)
            )
            .scalars()
            .all()
        )
    return CallingConfigIn(is_active=config.is_active, callings=[_from_row(row) for row in rows])


def get_active_calling_config(db: Session, tenant_id: str, bot_id: str) -> Optional[CallingConfigIn]:
    config = get_calling_config(db, tenant_id, bot_id)
    if config is None or not config.is_active:
        return None
    return config


def get_calling(db: Session, tenant_id: str, bot_id: str, key: str) -> Optional[AnyCalling]:
    with store_errors("get calling"):
        row = db.execute(
            select(Calling)
            .where(*_scope(Calling, tenant_id, bot_id), Calling.key == key)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
    return _from_row(row) if row else None


def set_calling_config_active(db: Session, tenant_id: str, bot_id: str, is_active: bool) -> None:
    with store_errors("toggle calling config"):
        result = db.execute(
            update(CallingConfig)
            .where(*_scope(CallingConfig, tenant_id, bot_id))
            .values(is_active=is_active, updated_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
    if result.rowcount == 0:
        raise NotFoundError(f"No calling config for tenant {tenant_id} bot {bot_id}")


def delete_calling_config(db: Session, tenant_id: str, bot_id: str) -> None:
    with store_errors("delete calling config"):
        db.execute(delete(Calling).where(*_scope(Calling, tenant_id, bot_id)))
        result = db.execute(delete(CallingConfig).where(*_scope(CallingConfig, tenant_id, bot_id)))
    if result.rowcount == 0:
        raise NotFoundError(f"No calling config for tenant {tenant_id} bot {bot_id}")


def update_calling_statuses(
    db: Session,
    tenant_id: str,
    bot_id: str,
    updates: list[Union[CallingStatusUpdate, dict[str, Any]]],
) -> int:
    """Toggle ``enabled`` on the listed keys only. Returns how many changed."""
    if not updates:
        return 0

    try:
        parsed = [u if isinstance(u, CallingStatusUpdate) else CallingStatusUpdate.model_validate(u) for u in updates]
    except pydantic.ValidationError as e:
        raise ValidationError(
            "Malformed calling status update",
            details=e.errors(include_url=False, include_context=False),
        ) from e

    changed = 0
    with store_errors("update calling statuses"):
        for item in parsed:
            result = db.execute(
                update(Calling)
                .where(
                    *_scope(Calling, tenant_id, bot_id),
                    Calling.key == item.key,
                    Calling.enabled != item.enabled,
                )
                .values(enabled=item.enabled)
                .execution_options(synchronize_session=False)
            )
            changed += result.rowcount

    logger.info(
        "Calling statuses updated",
        extra={"context": {"tenant_id": tenant_id, "bot_id": bot_id, "requested": len(parsed), "changed": changed}},
    )
    return changed


def _run_action(reports: list[ActionReport], action: str, run: Callable[[], ActionReport]) -> None:
    # store outages still abort the whole trigger
    try:
        reports.append(run())
    except TransientStoreError:
        raise
    except AppError as e:
        logger.warning(f"Action '{action}' failed: {e.message}", extra={"context": {"action": action}})
        reports.append(ActionReport(action=action, ok=False, detail=e.message))


def execute_bundle(
    db: Session,
    tenant_id: str,
    bot_id: str,
    calling_key: str,
    bundle: ActionBundle,
    context: CallingContext,
) -> list[ActionReport]:
    """Run every enabled action of a bundle.

    A failing action is reported and the remaining actions still run.
    """
    reports: list[ActionReport] = []

    send = bundle.send_message
    if send and send.enabled:

        def send_message() -> ActionReport:
            if not send.message:
                return ActionReport(action="send_message", ok=False, detail="missing_message")
            result = transport_service.deliver_message(db, tenant_id, bot_id, context.counterpart, send.message)
            return ActionReport(action="send_message", ok=result.ok, detail=result.describe())

        _run_action(reports, "send_message", send_message)

    tag = bundle.add_tag
    if tag and tag.enabled:

        def add_tag() -> ActionReport:
            if not tag.tag:
                return ActionReport(action="add_tag", ok=False, detail="missing_tag")
            added = tag_service.add_tag(db, tenant_id, bot_id, context.counterpart, tag.tag)
            return ActionReport(action="add_tag", ok=True, detail=None if added else "already_tagged")

        _run_action(reports, "add_tag", add_tag)

    transfer = bundle.transfer_to_human
    if transfer and transfer.enabled:

        def transfer_to_human() -> ActionReport:
            handover = escalation_service.request_human(
                db, tenant_id, bot_id, context.counterpart, calling_key=calling_key, user_message=context.text
            )
            return ActionReport(action="transfer_to_human", ok=True, detail=str(handover.id))

        _run_action(reports, "transfer_to_human", transfer_to_human)

    for action_name, kind in (("schedule_followup", "followup"), ("schedule_reminder", "reminder")):
        action = getattr(bundle, action_name)
        if not action or not action.enabled:
            continue

        def schedule(action_name=action_name, kind=kind, action=action) -> ActionReport:
            if not action.message or action.delay_minutes is None:
                return ActionReport(action=action_name, ok=False, detail="incomplete_schedule")
            key = scheduler_service.schedule_message(
                db,
                tenant_id=tenant_id,
                bot_id=bot_id,
                counterpart=context.counterpart,
                calling_key=calling_key,
                kind=kind,
                message=action.message,
                delay_minutes=action.delay_minutes,
            )
            return ActionReport(action=action_name, ok=True, detail=key)

        _run_action(reports, action_name, schedule)

    return reports


def trigger_calling(
    db: Session,
    tenant_id: str,
    bot_id: str,
    calling_key: str,
    context: CallingContext,
) -> TriggerReport:
    """Fire a calling. Anything missing, disabled or unpaid is a no-op with a reason."""
    log = tenant_logger("calling_service", tenant_id, bot_id)

    def skipped(reason: str) -> TriggerReport:
        log.info(f"Calling '{calling_key}' skipped: {reason}")
        return TriggerReport(calling_key=calling_key, executed=False, reason=reason)

    if not subscription_service.is_subscription_valid(db, tenant_id):
        return skipped("subscription_inactive")

    config = get_active_calling_config(db, tenant_id, bot_id)
    if config is None:
        return skipped("calling_config_inactive")

    calling = next((c for c in config.callings if c.key == calling_key), None)
    if calling is None:
        return skipped("calling_not_found")
    if not calling.enabled:
        return skipped("calling_disabled")

    if isinstance(calling, PaymentCalling):
        if context.payment_outcome is None:
            return skipped("payment_outcome_missing")
        bundle = calling.payment_config.bundle_for(context.payment_outcome)
    else:
        bundle = calling.actions

    actions = execute_bundle(db, tenant_id, bot_id, calling_key, bundle, context)
    log.info(
        f"Calling '{calling_key}' executed",
        context={"counterpart": context.counterpart, "actions": [a.action for a in actions]},
    )
    return TriggerReport(calling_key=calling_key, executed=True, actions=actions)
