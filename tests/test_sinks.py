from __future__ import annotations

import json
from datetime import datetime, timezone

import httpx
import pytest

from nginx_monitor.models import (
    FetchErrorKind,
    FetchFailed,
    FindingIdentity,
    LicenseExpiring,
    LicenseInfo,
    Snapshot,
    UpstreamDegraded,
    UpstreamHealth,
)
from nginx_monitor.sinks import (
    TELEGRAM_MAX_MESSAGE_LEN,
    FanoutSink,
    LogSink,
    TelegramConfig,
    TelegramSink,
    chunk_message,
)


def test_chunk_message_packs_lines_within_limit() -> None:
    text = ("line\n" * 2000).strip()
    parts = chunk_message(text, max_len=500)
    assert len(parts) > 1
    assert all(0 < len(p) <= 500 for p in parts)
    assert "\n".join(parts) == text


def test_chunk_message_cuts_overlong_line() -> None:
    text = "a" * (TELEGRAM_MAX_MESSAGE_LEN + 10)
    parts = chunk_message(text)
    assert [len(p) for p in parts] == [TELEGRAM_MAX_MESSAGE_LEN, 10]


def test_chunk_message_never_splits_inside_a_line() -> None:
    lines = [f"ALERT: Upstream group backend-{n} has 1/2 unhealthy peer(s)" for n in range(10)]
    parts = chunk_message("\n".join(lines), max_len=130)
    assert len(parts) == 5
    assert [line for part in parts for line in part.split("\n")] == lines


def test_chunk_message_empty_text() -> None:
    assert chunk_message("   ") == [""]


@pytest.mark.asyncio
async def test_log_sink_reports_license_reporting_state() -> None:
    class RecordingLog:
        def __init__(self) -> None:
            self.entries: list[tuple[str, str, dict]] = []

        def info(self, event: str, **kw) -> None:
            self.entries.append(("info", event, kw))

        def warning(self, event: str, **kw) -> None:
            self.entries.append(("warning", event, kw))

    log = RecordingLog()
    snap = Snapshot(
        fetched_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
        upstreams={"api": UpstreamHealth(name="api", zone="api", total=2, unhealthy=0)},
        license=LicenseInfo(
            active_until=datetime(2025, 1, 1, tzinfo=timezone.utc),
            reporting_grace_seconds=86400,
            reporting_healthy=False,
            reporting_fails=4,
        ),
    )
    await LogSink(log=log).report(snap)

    events = {event: kw for _method, event, kw in log.entries}
    assert events["Upstream status"]["upstream"] == "api"
    assert events["License status"]["reporting_healthy"] is False
    assert events["License status"]["reporting_fails"] == 4
    assert events["License status"]["grace_seconds"] == 86400


def test_finding_descriptions() -> None:
    assert LicenseExpiring(days_remaining=19).describe() == "License expiring in 19 day(s)"
    assert LicenseExpiring(days_remaining=-2).describe() == "License expired 2 day(s) ago"
    assert "2/5" in UpstreamDegraded(name="api", unhealthy_count=2, total_count=5).describe()
    assert "unauthorized" in FetchFailed(error_kind=FetchErrorKind.UNAUTHORIZED, attempt=3).describe()


@pytest.mark.asyncio
async def test_telegram_sink_posts_alerts_and_recoveries() -> None:
    sent: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/botTOKEN/sendMessage"
        sent.append(json.loads(request.content))
        return httpx.Response(200, json={"ok": True, "result": {"message_id": len(sent)}})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        sink = TelegramSink(client, TelegramConfig(bot_token="TOKEN", chat_id="42"), target="10.0.0.1:8080")
        await sink.emit(LicenseExpiring(days_remaining=3))
        await sink.clear(FindingIdentity("upstream_degraded", "api"))

    assert [m["chat_id"] for m in sent] == ["42", "42"]
    assert sent[0]["text"] == "[nginx 10.0.0.1:8080] ALERT: License expiring in 3 day(s)"
    assert sent[1]["text"] == "[nginx 10.0.0.1:8080] RESOLVED: upstream_degraded:api"


@pytest.mark.asyncio
async def test_telegram_failure_is_swallowed() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("unreachable", request=request)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        sink = TelegramSink(client, TelegramConfig(bot_token="TOKEN", chat_id="42"))
        assert await sink.send("hello") is False
        await sink.emit(LicenseExpiring(days_remaining=1))


@pytest.mark.asyncio
async def test_fanout_isolates_failing_sinks() -> None:
    class Broken:
        async def emit(self, finding) -> None:
            raise RuntimeError("nope")

        async def clear(self, identity) -> None:
            raise RuntimeError("nope")

        async def report(self, snapshot) -> None:
            raise RuntimeError("nope")

    class Recorder:
        def __init__(self) -> None:
            self.events: list = []

        async def emit(self, finding) -> None:
            self.events.append(("emit", finding))

        async def clear(self, identity) -> None:
            self.events.append(("clear", identity))

        async def report(self, snapshot) -> None:
            self.events.append(("report", snapshot))

    recorder = Recorder()
    sink = FanoutSink([Broken(), recorder, LogSink()])
    finding = UpstreamDegraded(name="api", unhealthy_count=1, total_count=2)
    snap = Snapshot(fetched_at=datetime(2024, 1, 1, tzinfo=timezone.utc))

    await sink.emit(finding)
    await sink.clear(finding.identity)
    await sink.report(snap)
    assert recorder.events == [("emit", finding), ("clear", finding.identity), ("report", snap)]
