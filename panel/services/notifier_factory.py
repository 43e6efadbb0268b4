"""Build notifiers from persisted channel rows."""
from __future__ import annotations

from pydantic import ValidationError

from panel.models.alert import ChannelType, NotifyChannel
from panel.schemas.alert import SMTPConfig, TelegramConfig, WebhookConfig
from panel.services.notifiers import (
    DEFAULT_TIMEOUT_SECONDS,
    Notifier,
    SMTPNotifier,
    TelegramNotifier,
    WebhookNotifier,
)
from panel.utils.errors import ConfigParseError, UnknownChannelType


def create_notifier(
    channel: NotifyChannel,
    *,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
    subject_prefix: str = "",
) -> Notifier:
    """Return the notifier variant matching ``channel.type``.

    Raises :class:`UnknownChannelType` for unsupported types and
    :class:`ConfigParseError` when ``channel.config`` does not parse into the
    typed configuration for that type.
    """

    try:
        channel_type = ChannelType(channel.type)
    except ValueError as exc:
        raise UnknownChannelType(f"unknown channel type: {channel.type}") from exc

    raw = channel.config or "{}"
    try:
        if channel_type is ChannelType.TELEGRAM:
            return TelegramNotifier(TelegramConfig.model_validate_json(raw), timeout=timeout)
        if channel_type is ChannelType.WEBHOOK:
            return WebhookNotifier(WebhookConfig.model_validate_json(raw), timeout=timeout)
        return SMTPNotifier(
            SMTPConfig.model_validate_json(raw),
            timeout=timeout,
            subject_prefix=subject_prefix,
        )
    except ValidationError as exc:
        raise ConfigParseError(
            f"parse {channel_type.value} config failed: {exc.error_count()} error(s)"
        ) from exc


__all__ = ["create_notifier"]
