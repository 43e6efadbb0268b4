"""Shared FastAPI dependencies."""
from fastapi import Request

from panel.services.alert_dispatch import AlertDispatcher


def get_dispatcher(request: Request) -> AlertDispatcher:
    """Return the dispatcher built during application startup."""

    dispatcher = getattr(request.app.state, "dispatcher", None)
    if dispatcher is None:
        dispatcher = AlertDispatcher()
        request.app.state.dispatcher = dispatcher
    return dispatcher
