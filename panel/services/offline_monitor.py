"""Node liveness: explicit offline transitions and heartbeat timeouts."""
from __future__ import annotations

import logging
from datetime import datetime, timedelta

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import set_committed_value

from panel.models.alert import AlertType
from panel.models.target import Node, TargetStatus
from panel.services.alert_dispatch import AlertDispatcher
from panel.utils.formatting import format_timestamp
from panel.utils.time import as_utc, utcnow

logger = logging.getLogger(__name__)


def check_node_offline(
    db: Session,
    node: Node,
    previous_status: str,
    dispatcher: AlertDispatcher,
    *,
    now: datetime | None = None,
) -> bool:
    """Alert when a collaborator moved ``node`` from online to offline."""

    if previous_status != TargetStatus.ONLINE.value or node.status != TargetStatus.OFFLINE.value:
        return False
    message = f"Node {node.name} went offline\nLast seen: {format_timestamp(as_utc(node.last_seen))}"
    dispatcher.trigger_alert(
        db, AlertType.NODE_OFFLINE.value, node.kind.value, node.id, node.name, message, now=now
    )
    return True


def check_offline_nodes(
    db: Session,
    dispatcher: AlertDispatcher,
    timeout_minutes: int,
    *,
    now: datetime | None = None,
) -> list[int]:
    """Mark online nodes with a stale heartbeat offline and alert for each.

    Returns the ids of the nodes this sweep flipped.
    """

    now = now or utcnow()
    threshold = now - timedelta(minutes=timeout_minutes)
    stale = db.scalars(
        select(Node)
        .where(Node.status == TargetStatus.ONLINE.value, Node.last_seen < threshold)
        .order_by(Node.id)
    ).all()

    flipped: list[int] = []
    for node in stale:
        try:
            # Only the sweep that actually flips the row alerts for it.
            result = db.execute(
                update(Node)
                .where(Node.id == node.id, Node.status == TargetStatus.ONLINE.value)
                .values(status=TargetStatus.OFFLINE.value)
                .execution_options(synchronize_session=False)
            )
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Marking node offline failed", extra={"node_id": node.id})
            continue
        if result.rowcount != 1:
            continue

        set_committed_value(node, "status", TargetStatus.OFFLINE.value)
        flipped.append(node.id)
        logger.warning(
            "Node heartbeat timed out",
            extra={"node_id": node.id, "timeout_minutes": timeout_minutes},
        )
        message = (
            f"Node {node.name} heartbeat timed out, marked offline\n"
            f"Last heartbeat: {format_timestamp(as_utc(node.last_seen))}"
        )
        dispatcher.trigger_alert(
            db, AlertType.NODE_OFFLINE.value, node.kind.value, node.id, node.name, message, now=now
        )
    return flipped


__all__ = ["check_node_offline", "check_offline_nodes"]
