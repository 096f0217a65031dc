"""Alert fan-out for classified errors.

Channels (console, webhook, email) are dispatched in parallel; one channel
failing never blocks or fails the others.
"""

from __future__ import annotations

import asyncio
import html
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from email.message import EmailMessage
from enum import Enum
from typing import Any, Dict, Iterable, Optional, Protocol, Sequence

import aiosmtplib
import httpx
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from velonx.obs import metrics as obs_metrics
from velonx.security.entries import ErrorLogEntry, Severity
from velonx.settings import Settings, settings as default_settings

logger = logging.getLogger("velonx.alerts")

USER_AGENT = "VELONX-Alert-Service/1.0"
_BANNER = "=" * 80


class AlertChannel(str, Enum):
    EMAIL = "email"
    WEBHOOK = "webhook"
    CONSOLE = "console"


def parse_channels(values: Iterable[Any]) -> tuple[AlertChannel, ...]:
    """Keep known channel names in order, dropping unknown or duplicate ones."""
    channels: list[AlertChannel] = []
    for value in values:
        name = value.value if isinstance(value, AlertChannel) else str(value).strip().lower()
        try:
            channel = AlertChannel(name)
        except ValueError:
            continue
        if channel not in channels:
            channels.append(channel)
    return tuple(channels)


@dataclass(slots=True)
class AlertConfig:
    enabled: bool = False
    channels: tuple[AlertChannel, ...] = (AlertChannel.CONSOLE,)
    email_recipients: tuple[str, ...] = ()
    webhook_url: Optional[str] = None
    min_severity: Severity = Severity.CRITICAL

    @classmethod
    def from_settings(cls, source: Settings) -> "AlertConfig":
        return cls(
            enabled=bool(source.alerts_enabled),
            channels=parse_channels(source.alert_channels),
            email_recipients=tuple(source.alert_email_recipients),
            webhook_url=source.alert_webhook_url or None,
            min_severity=Severity.parse(source.alert_min_severity, Severity.CRITICAL),
        )


class AlertErrorDetails(BaseModel):
    name: str
    message: str
    stack: Optional[str] = None


class AlertPayload(BaseModel):
    """Channel-agnostic alert body; serialised with camelCase keys."""

    severity: str
    code: str
    message: str
    timestamp: str
    request_id: Optional[str] = None
    user_id: Optional[str] = None
    endpoint: Optional[str] = None
    method: Optional[str] = None
    error: Optional[AlertErrorDetails] = None
    context: Optional[Dict[str, Any]] = None

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def build_payload(entry: ErrorLogEntry, *, include_stack: bool) -> AlertPayload:
    error = None
    if entry.error is not None:
        error = AlertErrorDetails(
            name=entry.error_name or "Exception",
            message=str(entry.error),
            stack=entry.error_stack if include_stack else None,
        )
    return AlertPayload(
        severity=entry.severity.value,
        code=entry.code,
        message=entry.message,
        timestamp=entry.timestamp.isoformat(),
        request_id=entry.request_id,
        user_id=entry.user_id,
        endpoint=entry.endpoint,
        method=entry.method,
        error=error,
        context=entry.context or None,
    )


class EmailSender(Protocol):
    async def send(self, *, recipients: Sequence[str], subject: str, html_body: str) -> None:
        ...


class LoggingEmailSender:
    """Records the email that would have been sent; used when SMTP is not configured."""

    async def send(self, *, recipients: Sequence[str], subject: str, html_body: str) -> None:
        logger.info("alert_email_stub", extra={"recipients": list(recipients), "subject": subject})


class SmtpEmailSender:
    def __init__(
        self,
        *,
        host: str,
        port: int,
        sender: str,
        username: Optional[str] = None,
        password: Optional[str] = None,
        tls: bool = True,
    ) -> None:
        self.host = host
        self.port = port
        self.sender = sender
        self.username = username
        self.password = password
        self.tls = tls

    async def send(self, *, recipients: Sequence[str], subject: str, html_body: str) -> None:
        msg = EmailMessage()
        msg["From"] = self.sender
        msg["To"] = ", ".join(recipients)
        msg["Subject"] = subject
        msg.set_content(html_body, subtype="html")
        # STARTTLS on 587, implicit TLS on 465
        await aiosmtplib.send(
            msg,
            hostname=self.host,
            port=self.port,
            username=self.username,
            password=self.password,
            start_tls=self.tls and self.port == 587,
            use_tls=self.tls and self.port == 465,
        )


def email_sender_from_settings(source: Settings) -> EmailSender:
    if not source.smtp_host:
        return LoggingEmailSender()
    return SmtpEmailSender(
        host=source.smtp_host,
        port=source.smtp_port,
        sender=source.alert_email_from,
        username=source.smtp_user,
        password=source.smtp_password,
        tls=source.smtp_tls,
    )


class AlertHandler(ABC):
    """One delivery channel."""

    channel: AlertChannel

    @abstractmethod
    async def send(self, payload: AlertPayload, config: AlertConfig) -> bool:
        """Deliver the alert. Returns True if it was delivered."""


class ConsoleHandler(AlertHandler):
    """Print a delimited alert block to stdout."""

    channel = AlertChannel.CONSOLE

    async def send(self, payload: AlertPayload, config: AlertConfig) -> bool:
        print(render_console_block(payload))
        return True


class WebhookHandler(AlertHandler):
    """POST the JSON payload once; failures are logged, not retried."""

    channel = AlertChannel.WEBHOOK

    def __init__(self, *, timeout: float = 10.0, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self.timeout = timeout
        self.transport = transport

    async def send(self, payload: AlertPayload, config: AlertConfig) -> bool:
        if not config.webhook_url:
            logger.warning("alert_webhook_not_configured")
            return False
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(
                    config.webhook_url,
                    json=payload.to_wire(),
                    headers={"Content-Type": "application/json", "User-Agent": USER_AGENT},
                )
            if not response.is_success:
                logger.error(
                    "alert_webhook_failed",
                    extra={"status": response.status_code, "alert_code": payload.code},
                )
                return False
        except httpx.HTTPError as exc:
            logger.error("alert_webhook_failed", extra={"error": str(exc), "alert_code": payload.code})
            return False
        logger.info("alert_webhook_sent", extra={"alert_code": payload.code})
        return True


class EmailHandler(AlertHandler):
    channel = AlertChannel.EMAIL

    def __init__(self, sender: EmailSender) -> None:
        self.sender = sender

    async def send(self, payload: AlertPayload, config: AlertConfig) -> bool:
        if not config.email_recipients:
            logger.warning("alert_email_recipients_not_configured")
            return False
        try:
            await self.sender.send(
                recipients=config.email_recipients,
                subject=f"[{payload.severity.upper()}] {payload.code}",
                html_body=render_email_body(payload),
            )
        except Exception as exc:
            logger.error("alert_email_failed", extra={"error": str(exc), "alert_code": payload.code})
            return False
        return True


def render_console_block(payload: AlertPayload) -> str:
    lines = [
        "",
        _BANNER,
        f"{payload.severity.upper()} ERROR ALERT",
        _BANNER,
        f"Severity: {payload.severity.upper()}",
        f"Code: {payload.code}",
        f"Message: {payload.message}",
        f"Timestamp: {payload.timestamp}",
    ]
    if payload.request_id:
        lines.append(f"Request ID: {payload.request_id}")
    if payload.user_id:
        lines.append(f"User ID: {payload.user_id}")
    if payload.endpoint:
        lines.append(f"Endpoint: {' '.join(filter(None, (payload.method, payload.endpoint)))}")
    if payload.error:
        lines.extend(["", "Error Details:", f"  Name: {payload.error.name}", f"  Message: {payload.error.message}"])
        if payload.error.stack:
            lines.append(f"  Stack: {payload.error.stack}")
    if payload.context:
        lines.extend(["", "Context:", json.dumps(payload.context, indent=2, default=str)])
    lines.extend([_BANNER, ""])
    return "\n".join(lines)


def _field(label: str, value: str) -> str:
    return (
        '<div class="field">'
        f'<div class="label">{html.escape(label)}:</div>'
        f'<div class="value">{value}</div>'
        "</div>"
    )


def render_email_body(payload: AlertPayload) -> str:
    parts = [
        _field("Severity", html.escape(payload.severity.upper())),
        _field("Error Code", html.escape(payload.code)),
        _field("Message", html.escape(payload.message)),
        _field("Timestamp", html.escape(payload.timestamp)),
    ]
    if payload.request_id:
        parts.append(_field("Request ID", html.escape(payload.request_id)))
    if payload.user_id:
        parts.append(_field("User ID", html.escape(payload.user_id)))
    if payload.endpoint:
        parts.append(_field("Endpoint", html.escape(f"{payload.method or ''} {payload.endpoint}".strip())))
    if payload.error:
        details = f"<strong>Name:</strong> {html.escape(payload.error.name)}<br><strong>Message:</strong> {html.escape(payload.error.message)}"
        if payload.error.stack:
            details += f'<br><br><pre class="error-stack">{html.escape(payload.error.stack)}</pre>'
        parts.append(_field("Error Details", details))
    if payload.context:
        parts.append(_field("Context", f"<pre>{html.escape(json.dumps(payload.context, indent=2, default=str))}</pre>"))
    body = "\n".join(parts)
    return f"""
    <html>
        <body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333;">
            <div style="max-width: 600px; margin: 0 auto; padding: 20px;">
                <div style="background-color: #dc3545; color: white; padding: 20px;">
                    <h1>Critical Error Alert</h1>
                </div>
                <div style="background-color: #f8f9fa; padding: 20px;">
{body}
                </div>
            </div>
        </body>
    </html>
    """


class AlertService:
    """Decides whether an entry is alert-worthy and fans it out to the configured channels."""

    def __init__(
        self,
        config: Optional[AlertConfig] = None,
        *,
        handlers: Optional[Iterable[AlertHandler]] = None,
        email_sender: Optional[EmailSender] = None,
        webhook_transport: Optional[httpx.AsyncBaseTransport] = None,
        webhook_timeout: float = 10.0,
        include_stack: Optional[bool] = None,
    ) -> None:
        self._config = config or AlertConfig.from_settings(default_settings)
        if handlers is None:
            handlers = (
                ConsoleHandler(),
                WebhookHandler(timeout=webhook_timeout, transport=webhook_transport),
                EmailHandler(email_sender or LoggingEmailSender()),
            )
        self._handlers: dict[AlertChannel, AlertHandler] = {handler.channel: handler for handler in handlers}
        self._include_stack = (not default_settings.is_prod()) if include_stack is None else include_stack

    def get_config(self) -> AlertConfig:
        return replace(self._config)

    def update_config(self, **changes: Any) -> AlertConfig:
        if "channels" in changes:
            changes["channels"] = parse_channels(changes["channels"])
        if "min_severity" in changes:
            changes["min_severity"] = Severity.parse(changes["min_severity"], self._config.min_severity)
        if "email_recipients" in changes:
            changes["email_recipients"] = tuple(changes["email_recipients"] or ())
        self._config = replace(self._config, **changes)
        return self.get_config()

    def should_alert(self, severity: Severity) -> bool:
        return severity >= self._config.min_severity

    async def send_alert(self, entry: ErrorLogEntry) -> dict[str, bool]:
        """Dispatch *entry* to every configured channel; returns per-channel delivery results."""
        config = self._config
        if not config.enabled or not self.should_alert(entry.severity):
            return {}
        payload = build_payload(entry, include_stack=self._include_stack)
        handlers = [self._handlers[channel] for channel in config.channels if channel in self._handlers]
        outcomes = await asyncio.gather(
            *(handler.send(payload, config) for handler in handlers),
            return_exceptions=True,
        )
        results: dict[str, bool] = {}
        for handler, outcome in zip(handlers, outcomes):
            if isinstance(outcome, BaseException):
                logger.error(
                    "alert_channel_failed",
                    extra={"channel": handler.channel.value, "error": repr(outcome)},
                )
                delivered = False
            else:
                delivered = bool(outcome)
            obs_metrics.inc_alert_sent(handler.channel.value, "sent" if delivered else "failed")
            results[handler.channel.value] = delivered
        return results


async def send_critical_error_alert(
    service: AlertService,
    code: str,
    message: str,
    error: Optional[BaseException] = None,
    context: Optional[dict[str, Any]] = None,
) -> dict[str, bool]:
    entry = ErrorLogEntry(
        severity=Severity.CRITICAL,
        code=code,
        message=message,
        error=error,
        context=context or {},
        timestamp=datetime.now(timezone.utc),
    )
    return await service.send_alert(entry)


def build_alert_service(source: Settings = default_settings) -> AlertService:
    return AlertService(
        AlertConfig.from_settings(source),
        email_sender=email_sender_from_settings(source),
        webhook_timeout=source.alert_webhook_timeout_seconds,
        include_stack=not source.is_prod(),
    )
