"""Inbound traffic and liveness events for nodes and clients."""
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from panel.db import get_db
from panel.dependencies import get_dispatcher
from panel.models.target import Client, Node
from panel.schemas.target import StatusChange, TargetRead, TrafficReport
from panel.security import require_admin_token
from panel.services import events
from panel.services.alert_dispatch import AlertDispatcher
from panel.utils.errors import error_response

router = APIRouter(tags=["targets"], dependencies=[Depends(require_admin_token)])


def _not_found(kind: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=error_response(f"{kind.upper()}_NOT_FOUND", f"{kind.capitalize()} not found."),
    )


@router.post("/nodes/{node_id}/heartbeat", response_model=TargetRead)
def node_heartbeat(node_id: int, db: Session = Depends(get_db)):
    node = events.record_heartbeat(db, node_id)
    if node is None:
        raise _not_found("node")
    return node


@router.post("/nodes/{node_id}/status", response_model=TargetRead)
def node_status(
    node_id: int,
    payload: StatusChange,
    db: Session = Depends(get_db),
    dispatcher: AlertDispatcher = Depends(get_dispatcher),
):
    node = events.change_node_status(db, node_id, payload.status, dispatcher)
    if node is None:
        raise _not_found("node")
    return node


@router.post("/nodes/{node_id}/traffic", response_model=TargetRead)
def node_traffic(
    node_id: int,
    payload: TrafficReport,
    db: Session = Depends(get_db),
    dispatcher: AlertDispatcher = Depends(get_dispatcher),
):
    node = events.record_traffic(db, Node, node_id, payload.bytes, dispatcher)
    if node is None:
        raise _not_found("node")
    return node


@router.post("/clients/{client_id}/traffic", response_model=TargetRead)
def client_traffic(
    client_id: int,
    payload: TrafficReport,
    db: Session = Depends(get_db),
    dispatcher: AlertDispatcher = Depends(get_dispatcher),
):
    client = events.record_traffic(db, Client, client_id, payload.bytes, dispatcher)
    if client is None:
        raise _not_found("client")
    return client
