"""Notification channel senders.

Each notifier delivers a ``(title, body)`` pair over its own wire protocol and
raises :class:`TransportError` naming the failing stage. Every network call is
bounded by ``timeout``.
"""
from __future__ import annotations

import re
import smtplib
import ssl
from abc import ABC, abstractmethod
from email.mime.text import MIMEText
from email.utils import formatdate, make_msgid

import httpx

from panel.models.alert import ChannelType
from panel.schemas.alert import SMTPConfig, TelegramConfig, WebhookConfig
from panel.utils.errors import TransportError
from panel.utils.time import utcnow

DEFAULT_TIMEOUT_SECONDS = 10.0
TELEGRAM_API_BASE = "https://api.telegram.org"

# MarkdownV2 reserved characters.
_MARKDOWN_V2_SPECIAL = re.compile(r"([_*\[\]()~`>#+\-=|{}.!])")


def escape_markdown_v2(text: str) -> str:
    """Backslash-escape the 18 characters Telegram reserves in MarkdownV2."""

    return _MARKDOWN_V2_SPECIAL.sub(r"\\\1", text)


def _response_excerpt(response: httpx.Response, limit: int = 500) -> str:
    text = response.text or ""
    return text[:limit]


class Notifier(ABC):
    """Capability shared by every channel variant."""

    channel_type: ChannelType

    @abstractmethod
    def send(self, title: str, body: str) -> None:
        """Deliver a message or raise :class:`TransportError`."""


class TelegramNotifier(Notifier):
    channel_type = ChannelType.TELEGRAM

    def __init__(
        self,
        config: TelegramConfig,
        *,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.config = config
        self.timeout = timeout
        self._transport = transport

    @property
    def url(self) -> str:
        return f"{TELEGRAM_API_BASE}/bot{self.config.bot_token}/sendMessage"

    def render(self, title: str, body: str) -> str:
        return f"*{escape_markdown_v2(title)}*\n\n{escape_markdown_v2(body)}"

    def send(self, title: str, body: str) -> None:
        payload = {
            "chat_id": self.config.chat_id,
            "text": self.render(title, body),
            "parse_mode": "MarkdownV2",
        }
        try:
            with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
                response = client.post(self.url, json=payload)
        except httpx.HTTPError as exc:
            raise TransportError(self.channel_type.value, "request", str(exc) or type(exc).__name__) from exc

        if response.status_code != httpx.codes.OK:
            raise TransportError(
                self.channel_type.value,
                "response",
                f"status {response.status_code}: {_response_excerpt(response)}",
            )


class WebhookNotifier(Notifier):
    channel_type = ChannelType.WEBHOOK

    def __init__(
        self,
        config: WebhookConfig,
        *,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.config = config
        self.timeout = timeout
        self._transport = transport

    def send(self, title: str, body: str) -> None:
        payload = {
            "title": title,
            "message": body,
            "timestamp": int(utcnow().timestamp()),
        }
        headers = {"Content-Type": "application/json", **self.config.headers}
        try:
            with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
                response = client.request(self.config.method, self.config.url, json=payload, headers=headers)
        except httpx.HTTPError as exc:
            raise TransportError(self.channel_type.value, "request", str(exc) or type(exc).__name__) from exc

        if response.status_code >= 400:
            raise TransportError(
                self.channel_type.value,
                "response",
                f"status {response.status_code}: {_response_excerpt(response)}",
            )


class SMTPNotifier(Notifier):
    channel_type = ChannelType.SMTP

    def __init__(
        self,
        config: SMTPConfig,
        *,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        subject_prefix: str = "",
    ) -> None:
        self.config = config
        self.timeout = timeout
        self.subject_prefix = subject_prefix

    def build_message(self, title: str, body: str) -> MIMEText:
        message = MIMEText(body, "plain", "utf-8")
        subject = f"{self.subject_prefix} {title}".strip()
        message["Subject"] = subject
        message["From"] = self.config.from_address
        message["To"] = ", ".join(self.config.recipients)
        message["Date"] = formatdate(localtime=False)
        domain = self.config.from_address.rpartition("@")[2] or "localhost"
        message["Message-ID"] = make_msgid(domain=domain)
        return message

    def send(self, title: str, body: str) -> None:
        recipients = self.config.recipients
        if not recipients:
            raise TransportError(self.channel_type.value, "rcpt", "no recipients configured")

        message = self.build_message(title, body)
        if self.config.use_tls:
            self._send_tls(message, recipients)
        else:
            self._send_plain(message, recipients)

    def _auth_plain(self, server: smtplib.SMTP) -> None:
        # AUTH PLAIN only; ``login()`` would prefer CRAM-MD5 when advertised.
        server.user, server.password = self.config.username, self.config.password
        server.auth("PLAIN", server.auth_plain)

    def _fail(self, stage: str, exc: BaseException) -> TransportError:
        return TransportError(self.channel_type.value, stage, str(exc) or type(exc).__name__)

    def _send_tls(self, message: MIMEText, recipients: list[str]) -> None:
        """Implicit TLS session driven stage by stage."""

        config = self.config
        try:
            server = smtplib.SMTP_SSL(
                config.host,
                config.port,
                timeout=self.timeout,
                context=ssl.create_default_context(),
            )
        except (smtplib.SMTPException, OSError) as exc:
            raise self._fail("tls_dial", exc) from exc

        try:
            try:
                server.ehlo()
            except (smtplib.SMTPException, OSError) as exc:
                raise self._fail("handshake", exc) from exc

            if config.username:
                try:
                    self._auth_plain(server)
                except (smtplib.SMTPException, OSError) as exc:
                    raise self._fail("auth", exc) from exc

            try:
                code, reply = server.mail(config.from_address)
            except (smtplib.SMTPException, OSError) as exc:
                raise self._fail("mail", exc) from exc
            if code != 250:
                raise TransportError(self.channel_type.value, "mail", f"{code} {reply!r}")

            for recipient in recipients:
                try:
                    code, reply = server.rcpt(recipient)
                except (smtplib.SMTPException, OSError) as exc:
                    raise self._fail("rcpt", exc) from exc
                if code not in (250, 251):
                    raise TransportError(self.channel_type.value, "rcpt", f"{recipient}: {code} {reply!r}")

            try:
                server.data(message.as_bytes())
            except (smtplib.SMTPException, OSError) as exc:
                raise self._fail("data", exc) from exc

            try:
                server.quit()
            except (smtplib.SMTPException, OSError) as exc:
                raise self._fail("quit", exc) from exc
        finally:
            server.close()

    def _send_plain(self, message: MIMEText, recipients: list[str]) -> None:
        config = self.config
        try:
            with smtplib.SMTP(config.host, config.port, timeout=self.timeout) as server:
                server.ehlo()
                # Upgrade opportunistically, the way most MTAs expect.
                if server.has_extn("starttls"):
                    server.starttls(context=ssl.create_default_context())
                    server.ehlo()
                if config.username:
                    self._auth_plain(server)
                server.sendmail(config.from_address, recipients, message.as_string())
        except (smtplib.SMTPException, OSError) as exc:
            raise self._fail("send", exc) from exc


__all__ = [
    "DEFAULT_TIMEOUT_SECONDS",
    "Notifier",
    "SMTPNotifier",
    "TelegramNotifier",
    "WebhookNotifier",
    "escape_markdown_v2",
]
