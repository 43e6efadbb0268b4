"""Alert history, rule/channel listings and channel tests."""
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from panel.db import get_db
from panel.dependencies import get_dispatcher
from panel.schemas.alert import (
    AlertLogPage,
    AlertLogRead,
    AlertRuleRead,
    ChannelTestResult,
    NotifyChannelRead,
)
from panel.security import require_admin_token
from panel.services import alert_rules
from panel.services.alert_dispatch import AlertDispatcher
from panel.utils.errors import ConfigParseError, TransportError, UnknownChannelType, error_response

router = APIRouter(prefix="/alerts", tags=["alerts"], dependencies=[Depends(require_admin_token)])

TEST_TITLE = "Test notification"
TEST_MESSAGE = (
    "This is a test notification from the proxy panel.\n"
    "If you received it, the channel is configured correctly."
)


@router.get("/logs", response_model=AlertLogPage)
def list_alert_logs(
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    alert_type: str | None = Query(default=None, alias="type"),
    db: Session = Depends(get_db),
) -> AlertLogPage:
    items, total = alert_rules.list_alert_logs(db, limit=limit, offset=offset, alert_type=alert_type)
    return AlertLogPage(items=[AlertLogRead.model_validate(item) for item in items], total=total)


@router.get("/rules", response_model=list[AlertRuleRead])
def list_rules(db: Session = Depends(get_db)):
    return alert_rules.list_rules(db)


@router.get("/channels", response_model=list[NotifyChannelRead])
def list_channels(db: Session = Depends(get_db)):
    return alert_rules.list_channels(db)


@router.post("/channels/{channel_id}/test", response_model=ChannelTestResult)
def test_channel(
    channel_id: int,
    db: Session = Depends(get_db),
    dispatcher: AlertDispatcher = Depends(get_dispatcher),
) -> ChannelTestResult:
    channel = alert_rules.get_channel(db, channel_id)
    if channel is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=error_response("CHANNEL_NOT_FOUND", "Notify channel not found."),
        )
    try:
        notifier = dispatcher.notifier_factory(channel)
    except (ConfigParseError, UnknownChannelType) as exc:
        raise HTTPException(
            status_code=422,
            detail=error_response("CHANNEL_CONFIG_INVALID", str(exc)),
        ) from exc
    try:
        notifier.send(TEST_TITLE, TEST_MESSAGE)
    except TransportError as exc:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=error_response("CHANNEL_SEND_FAILED", str(exc), {"stage": exc.stage}),
        ) from exc
    return ChannelTestResult(channel_id=channel.id, status="sent")
