"""Inbound traffic and heartbeat events feeding the monitors."""
from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import update
from sqlalchemy.orm import Session

from panel.models.target import Client, Node, TargetStatus
from panel.services.alert_dispatch import AlertDispatcher
from panel.services.offline_monitor import check_node_offline
from panel.services.quota_monitor import check_quota
from panel.utils.time import utcnow

logger = logging.getLogger(__name__)


def record_traffic(
    db: Session,
    model: type[Node] | type[Client],
    target_id: int,
    delta: int,
    dispatcher: AlertDispatcher,
) -> Node | Client | None:
    """Add ``delta`` bytes to a target's usage, then evaluate its quota."""

    result = db.execute(
        update(model)
        .where(model.id == target_id)
        .values(quota_used=model.quota_used + delta)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    if result.rowcount != 1:
        return None

    target = db.get(model, target_id, populate_existing=True)
    if target is None:
        return None
    check_quota(db, target, dispatcher)
    return target


def record_heartbeat(db: Session, node_id: int, *, now: datetime | None = None) -> Node | None:
    node = db.get(Node, node_id)
    if node is None:
        return None
    node.status = TargetStatus.ONLINE.value
    node.last_seen = now or utcnow()
    db.commit()
    return node


def change_node_status(
    db: Session,
    node_id: int,
    status: TargetStatus,
    dispatcher: AlertDispatcher,
) -> Node | None:
    """Apply an explicit status transition reported by a collaborator."""

    node = db.get(Node, node_id, populate_existing=True)
    if node is None:
        return None
    previous = node.status
    node.status = status.value
    db.commit()
    logger.info(
        "Node status changed",
        extra={"node_id": node.id, "previous": previous, "status": status.value},
    )
    check_node_offline(db, node, previous, dispatcher)
    return node


__all__ = ["change_node_status", "record_heartbeat", "record_traffic"]
