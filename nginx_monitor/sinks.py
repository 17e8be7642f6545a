"""Alert sinks: where findings, clears and upstream summaries are delivered."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, Sequence

import httpx
import structlog

from nginx_monitor.models import Finding, FindingIdentity, Snapshot


logger = structlog.get_logger(__name__)

TELEGRAM_MAX_MESSAGE_LEN = 3900


class Sink(Protocol):
    async def emit(self, finding: Finding) -> None:
        ...

    async def clear(self, identity: FindingIdentity) -> None:
        ...

    async def report(self, snapshot: Snapshot) -> None:
        ...


class LogSink:
    """Writes findings to the structured log."""

    def __init__(self, log=None) -> None:
        self.log = log or logger

    async def emit(self, finding: Finding) -> None:
        self.log.warning(finding.describe(), finding=finding.kind, identity=str(finding.identity))

    async def clear(self, identity: FindingIdentity) -> None:
        self.log.info("Condition resolved", identity=str(identity))

    async def report(self, snapshot: Snapshot) -> None:
        for up in sorted(snapshot.upstreams.values(), key=lambda u: u.name):
            self.log.info(
                "Upstream status",
                upstream=up.name,
                zone=up.zone,
                total=up.total,
                unhealthy=up.unhealthy,
            )
        if snapshot.license is not None:
            self.log.info(
                "License status",
                active_till=snapshot.license.active_until.isoformat(),
                grace_seconds=snapshot.license.reporting_grace_seconds,
                eval=snapshot.license.eval,
                reporting_healthy=snapshot.license.reporting_healthy,
                reporting_fails=snapshot.license.reporting_fails,
            )


def chunk_message(text: str, *, max_len: int = TELEGRAM_MAX_MESSAGE_LEN) -> list[str]:
    """Pack whole lines into messages of at most max_len characters; overlong lines are cut."""
    max_len = max(1, int(max_len))
    chunks: list[str] = []
    current = ""
    for line in (text or "").strip().splitlines():
        while len(line) > max_len:
            if current:
                chunks.append(current)
                current = ""
            chunks.append(line[:max_len])
            line = line[max_len:]
        candidate = f"{current}\n{line}" if current else line
        if len(candidate) > max_len:
            chunks.append(current)
            current = line
        else:
            current = candidate
    if current or not chunks:
        chunks.append(current)
    return chunks


@dataclass(frozen=True)
class TelegramConfig:
    bot_token: str
    chat_id: str


class TelegramSink:
    """
    Posts findings to a Telegram chat.

    Delivery is fire-and-forget: failures are logged with the bot token
    redacted and never raised to the poll loop. Upstream summaries are not
    sent, only transitions.
    """

    def __init__(self, client: httpx.AsyncClient, config: TelegramConfig, *, target: str = "") -> None:
        self.client = client
        self.config = config
        self.target = target

    def _prefix(self) -> str:
        return f"[nginx {self.target}] " if self.target else "[nginx] "

    async def send(self, text: str) -> bool:
        url = f"https://api.telegram.org/bot{self.config.bot_token}/sendMessage"
        ok_all = True
        for part in chunk_message(text):
            try:
                resp = await self.client.post(url, json={"chat_id": self.config.chat_id, "text": part}, timeout=15.0)
                data = resp.json()
                ok = bool(isinstance(data, dict) and data.get("ok"))
            except Exception as exc:
                msg = f"{type(exc).__name__}: {exc}"
                if self.config.bot_token:
                    msg = msg.replace(self.config.bot_token, "<redacted>")
                logger.warning("Telegram send failed", error=msg)
                ok = False
            ok_all = ok_all and ok
        return ok_all

    async def emit(self, finding: Finding) -> None:
        await self.send(f"{self._prefix()}ALERT: {finding.describe()}")

    async def clear(self, identity: FindingIdentity) -> None:
        await self.send(f"{self._prefix()}RESOLVED: {identity}")

    async def report(self, snapshot: Snapshot) -> None:
        return None


class FanoutSink:
    """Delivers to every wrapped sink; one failing sink does not affect the others."""

    def __init__(self, sinks: Sequence[Sink]) -> None:
        self.sinks = list(sinks)

    async def _each(self, method: str, arg) -> None:
        for sink in self.sinks:
            try:
                await getattr(sink, method)(arg)
            except Exception:
                logger.exception("Sink delivery failed", sink=type(sink).__name__, method=method)

    async def emit(self, finding: Finding) -> None:
        await self._each("emit", finding)

    async def clear(self, identity: FindingIdentity) -> None:
        await self._each("clear", identity)

    async def report(self, snapshot: Snapshot) -> None:
        await self._each("report", snapshot)
