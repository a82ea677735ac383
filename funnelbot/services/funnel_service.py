"""Funnel graph storage: publish, activate, resolve."""

from datetime import datetime, timezone
from typing import Any, Iterable, Optional, Union

import pydantic
from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session

from funnelbot.database import dialect_insert
from funnelbot.errors import NotFoundError, ValidationError, store_errors
from funnelbot.logging_config import get_logger
from funnelbot.models import Funnel
from funnelbot.schemas.funnel import START_NODE_ID, FunnelGraph, FunnelNode, FunnelStatus

logger = get_logger("funnel_service")

NodeInput = Union[FunnelNode, dict[str, Any]]


def parse_nodes(nodes: Iterable[NodeInput]) -> list[FunnelNode]:
    try:
        return [n if isinstance(n, FunnelNode) else FunnelNode.model_validate(n) for n in nodes]
    except pydantic.ValidationError as e:
        raise ValidationError(
            "Malformed funnel node",
            details=e.errors(include_url=False, include_context=False),
        ) from e


def validate_nodes(nodes: list[FunnelNode]) -> None:
    """Check the structural invariants of a funnel graph. Raises ValidationError."""
    if not nodes:
        return

    ids = [node.id for node in nodes]
    duplicates = sorted({node_id for node_id in ids if ids.count(node_id) > 1})
    if duplicates:
        raise ValidationError(f"Duplicate node ids: {', '.join(duplicates)}", details={"duplicates": duplicates})

    if START_NODE_ID not in ids:
        raise ValidationError(f"Start node '{START_NODE_ID}' is missing")

    known = set(ids)
    dangling = [
        {"node": node.id, "target": edge.target}
        for node in nodes
        for edge in node.outgoing
        if edge.target not in known
    ]
    if dangling:
        raise ValidationError("Edges point to unknown nodes", details={"dangling": dangling})


def _to_graph(funnel: Funnel) -> FunnelGraph:
    return FunnelGraph(
        tenant_id=funnel.tenant_id,
        bot_id=funnel.bot_id,
        is_active=funnel.is_active,
        version=funnel.version,
        nodes=funnel.nodes or [],
        last_modified=funnel.last_modified,
    )


def publish(db: Session, tenant_id: str, bot_id: str, nodes: Iterable[NodeInput]) -> FunnelGraph:
    """Validate and replace the tenant/bot graph, keeping its active flag."""
    parsed = parse_nodes(nodes)
    validate_nodes(parsed)

    now = datetime.now(timezone.utc)
    payload = [node.model_dump() for node in parsed]
    table = Funnel.__table__

    stmt = dialect_insert(db, table).values(
        tenant_id=tenant_id,
        bot_id=bot_id,
        is_active=False,
        version=1,
        nodes=payload,
        last_modified=now,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["tenant_id", "bot_id"],
        set_={
            "nodes": stmt.excluded.nodes,
            "last_modified": stmt.excluded.last_modified,
            "version": table.c.version + 1,
        },
    )

    with store_errors("publish funnel"):
        db.execute(stmt)
        db.flush()
        funnel = _select_funnel(db, tenant_id, bot_id)

    logger.info(
        "Funnel published",
        extra={"context": {"tenant_id": tenant_id, "bot_id": bot_id, "version": funnel.version, "nodes": len(payload)}},
    )
    return _to_graph(funnel)


def _select_funnel(db: Session, tenant_id: str, bot_id: str) -> Optional[Funnel]:
    return db.execute(
        select(Funnel).where(Funnel.tenant_id == tenant_id, Funnel.bot_id == bot_id).execution_options(
            populate_existing=True
        )
    ).scalar_one_or_none()


def get_funnel(db: Session, tenant_id: str, bot_id: str) -> Optional[FunnelGraph]:
    with store_errors("get funnel"):
        funnel = _select_funnel(db, tenant_id, bot_id)
    return _to_graph(funnel) if funnel else None


def resolve(db: Session, tenant_id: str, bot_id: str) -> FunnelGraph:
    graph = get_funnel(db, tenant_id, bot_id)
    if graph is None:
        raise NotFoundError(f"No funnel for tenant {tenant_id} bot {bot_id}")
    return graph


def set_active(db: Session, tenant_id: str, bot_id: str, is_active: bool) -> FunnelStatus:
    with store_errors("toggle funnel"):
        result = db.execute(
            update(Funnel)
            .where(Funnel.tenant_id == tenant_id, Funnel.bot_id == bot_id)
            .values(is_active=is_active)
        )
    if result.rowcount == 0:
        raise NotFoundError(f"No funnel for tenant {tenant_id} bot {bot_id}")
    db.flush()
    return get_funnel_status(db, tenant_id, bot_id)


def get_funnel_status(db: Session, tenant_id: str, bot_id: str) -> FunnelStatus:
    graph = resolve(db, tenant_id, bot_id)
    return FunnelStatus(tenant_id=tenant_id, bot_id=bot_id, is_active=graph.is_active, version=graph.version)


def delete_funnel(db: Session, tenant_id: str, bot_id: str) -> int:
    with store_errors("delete funnel"):
        result = db.execute(delete(Funnel).where(Funnel.tenant_id == tenant_id, Funnel.bot_id == bot_id))
    if result.rowcount == 0:
        raise NotFoundError(f"No funnel for tenant {tenant_id} bot {bot_id}")
    return result.rowcount
