from __future__ import annotations

import json
from datetime import datetime, timezone

import httpx
import pytest

from velonx.security.alerts import (
    USER_AGENT,
    AlertChannel,
    AlertConfig,
    AlertHandler,
    AlertService,
    ConsoleHandler,
    EmailHandler,
    WebhookHandler,
    build_payload,
    parse_channels,
    render_email_body,
    send_critical_error_alert,
)
from velonx.security.entries import ErrorLogEntry, Severity
from velonx.settings import Settings

WEBHOOK_URL = "https://hooks.example.test/alerts"


def _entry(severity: Severity = Severity.CRITICAL, **overrides) -> ErrorLogEntry:
    fields = dict(
        severity=severity,
        code="DATABASE_CONNECTION_ERROR",
        message="Failed to connect to database",
        timestamp=datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc),
        request_id="req-1",
    )
    fields.update(overrides)
    return ErrorLogEntry(**fields)


class _RecordingHandler(AlertHandler):
    def __init__(self, channel: AlertChannel) -> None:
        self.channel = channel
        self.payloads = []

    async def send(self, payload, config) -> bool:
        self.payloads.append(payload)
        return True


class _ExplodingHandler(AlertHandler):
    channel = AlertChannel.WEBHOOK

    async def send(self, payload, config) -> bool:
        raise RuntimeError("webhook client crashed")


class _RecordingSender:
    def __init__(self) -> None:
        self.sent = []

    async def send(self, *, recipients, subject, html_body) -> None:
        self.sent.append((tuple(recipients), subject, html_body))


def test_severity_is_ordered():
    assert Severity.INFO < Severity.WARNING < Severity.ERROR < Severity.CRITICAL
    assert Severity.parse("bogus", Severity.ERROR) is Severity.ERROR


def test_parse_channels_drops_unknown_names():
    assert parse_channels(["Email", "pager", "console", "email"]) == (AlertChannel.EMAIL, AlertChannel.CONSOLE)


def test_config_from_settings():
    source = Settings(
        alerts_enabled=True,
        alert_channels="console,webhook,sms",
        alert_email_recipients="ops@example.test, oncall@example.test",
        alert_min_severity="ERROR",
    )
    config = AlertConfig.from_settings(source)

    assert config.enabled is True
    assert config.channels == (AlertChannel.CONSOLE, AlertChannel.WEBHOOK)
    assert config.email_recipients == ("ops@example.test", "oncall@example.test")
    assert config.min_severity is Severity.ERROR


def test_default_config_is_disabled_console_critical():
    config = AlertConfig()
    assert config.enabled is False
    assert config.channels == (AlertChannel.CONSOLE,)
    assert config.min_severity is Severity.CRITICAL


@pytest.mark.asyncio
async def test_below_threshold_performs_no_io():
    console = _RecordingHandler(AlertChannel.CONSOLE)
    webhook = _RecordingHandler(AlertChannel.WEBHOOK)
    service = AlertService(
        AlertConfig(enabled=True, channels=(AlertChannel.CONSOLE, AlertChannel.WEBHOOK), webhook_url=WEBHOOK_URL),
        handlers=[console, webhook],
    )

    assert await service.send_alert(_entry(Severity.ERROR)) == {}
    assert console.payloads == []
    assert webhook.payloads == []


@pytest.mark.asyncio
async def test_disabled_service_sends_nothing():
    console = _RecordingHandler(AlertChannel.CONSOLE)
    service = AlertService(AlertConfig(enabled=False), handlers=[console])

    assert await service.send_alert(_entry()) == {}
    assert console.payloads == []


@pytest.mark.asyncio
async def test_failing_channel_does_not_block_others():
    console = _RecordingHandler(AlertChannel.CONSOLE)
    email = _RecordingHandler(AlertChannel.EMAIL)
    service = AlertService(
        AlertConfig(
            enabled=True,
            channels=(AlertChannel.WEBHOOK, AlertChannel.CONSOLE, AlertChannel.EMAIL),
            webhook_url=WEBHOOK_URL,
        ),
        handlers=[_ExplodingHandler(), console, email],
    )

    results = await service.send_alert(_entry())

    assert results == {"webhook": False, "console": True, "email": True}
    assert len(console.payloads) == 1
    assert len(email.payloads) == 1


@pytest.mark.asyncio
async def test_webhook_posts_payload_once():
    requests = []

    def _handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200)

    handler = WebhookHandler(transport=httpx.MockTransport(_handler))
    config = AlertConfig(enabled=True, channels=(AlertChannel.WEBHOOK,), webhook_url=WEBHOOK_URL)

    assert await handler.send(build_payload(_entry(), include_stack=False), config) is True

    [request] = requests
    assert str(request.url) == WEBHOOK_URL
    assert request.headers["user-agent"] == USER_AGENT
    body = json.loads(request.content)
    assert body["code"] == "DATABASE_CONNECTION_ERROR"
    assert body["requestId"] == "req-1"
    assert body["severity"] == "critical"


@pytest.mark.asyncio
async def test_webhook_non_success_status_is_a_failure():
    calls = []

    def _handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(502)

    handler = WebhookHandler(transport=httpx.MockTransport(_handler))
    config = AlertConfig(enabled=True, channels=(AlertChannel.WEBHOOK,), webhook_url=WEBHOOK_URL)

    assert await handler.send(build_payload(_entry(), include_stack=False), config) is False
    assert len(calls) == 1


def test_payload_strips_stack_when_requested():
    try:
        raise ConnectionRefusedError("connection refused")
    except ConnectionRefusedError as exc:
        entry = _entry(error=exc)

    with_stack = build_payload(entry, include_stack=True)
    without_stack = build_payload(entry, include_stack=False)

    assert with_stack.error.name == "ConnectionRefusedError"
    assert "Traceback" in with_stack.error.stack
    assert without_stack.error.stack is None
    assert "stack" not in without_stack.to_wire()["error"]


@pytest.mark.asyncio
async def test_email_channel_renders_escaped_html():
    sender = _RecordingSender()
    handler = EmailHandler(sender)
    config = AlertConfig(enabled=True, channels=(AlertChannel.EMAIL,), email_recipients=("ops@example.test",))
    payload = build_payload(_entry(message="<script>alert(1)</script>"), include_stack=False)

    assert await handler.send(payload, config) is True

    [(recipients, subject, body)] = sender.sent
    assert recipients == ("ops@example.test",)
    assert subject == "[CRITICAL] DATABASE_CONNECTION_ERROR"
    assert "&lt;script&gt;" in body
    assert "<script>" not in body
    assert render_email_body(payload) == body


@pytest.mark.asyncio
async def test_email_channel_without_recipients_fails_softly():
    sender = _RecordingSender()
    config = AlertConfig(enabled=True, channels=(AlertChannel.EMAIL,))
    assert await EmailHandler(sender).send(build_payload(_entry(), include_stack=False), config) is False
    assert sender.sent == []


@pytest.mark.asyncio
async def test_console_block_is_delimited(capsys):
    await ConsoleHandler().send(build_payload(_entry(), include_stack=False), AlertConfig())

    out = capsys.readouterr().out
    assert out.count("=" * 80) == 3
    assert "Code: DATABASE_CONNECTION_ERROR" in out
    assert "Request ID: req-1" in out


def test_update_config_at_runtime():
    service = AlertService(AlertConfig(), handlers=[])
    updated = service.update_config(enabled=True, channels=["webhook", "nope"], min_severity="warning")

    assert updated.enabled is True
    assert updated.channels == (AlertChannel.WEBHOOK,)
    assert service.should_alert(Severity.WARNING)
    assert not service.should_alert(Severity.INFO)

    snapshot = service.get_config()
    snapshot.enabled = False
    assert service.get_config().enabled is True


def test_update_config_accepts_severity_member():
    service = AlertService(AlertConfig(), handlers=[])

    updated = service.update_config(min_severity=Severity.WARNING)

    assert updated.min_severity is Severity.WARNING
    assert service.should_alert(Severity.WARNING)
    assert Severity.parse(Severity.ERROR, Severity.CRITICAL) is Severity.ERROR


@pytest.mark.asyncio
async def test_send_critical_error_alert_helper():
    console = _RecordingHandler(AlertChannel.CONSOLE)
    service = AlertService(AlertConfig(enabled=True), handlers=[console])

    results = await send_critical_error_alert(service, "PAYMENT_GATEWAY_DOWN", "Gateway timed out", context={"gateway": "stripe"})

    assert results == {"console": True}
    assert console.payloads[0].context == {"gateway": "stripe"}
