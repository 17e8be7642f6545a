"""Poll loop: fetch -> evaluate -> diff -> emit -> sleep, with bounded retries."""

from __future__ import annotations

import asyncio
import enum
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol

import structlog

from nginx_monitor.clock import SystemClock, TimeSource
from nginx_monitor.config import MonitorConfig
from nginx_monitor.evaluator import evaluate
from nginx_monitor.models import FetchError, FetchErrorKind, FetchFailed, Finding, Snapshot
from nginx_monitor.sinks import Sink
from nginx_monitor.state import StateDiff, StateTracker


logger = structlog.get_logger(__name__)


class LoopState(str, enum.Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    EVALUATING = "evaluating"
    EMITTING = "emitting"
    SLEEPING = "sleeping"
    STOPPED = "stopped"


class SnapshotFetcher(Protocol):
    async def fetch(self, deadline: float | None = None) -> Snapshot:
        ...


@dataclass(frozen=True)
class CycleReport:
    started_at: datetime
    attempts: int
    snapshot: Snapshot | None
    error: FetchError | None
    findings: frozenset[Finding]
    diff: StateDiff


def _emit_order(finding: Finding) -> tuple[str, str]:
    return finding.kind, str(finding.identity)


class PollLoop:
    """
    Drives one monitored target.

    Every cycle makes up to `retry_limit` sequential fetch attempts with
    exponential backoff between them. A cycle whose attempts are all exhausted
    contributes a single FetchFailed finding instead of evaluated findings, and
    the loop keeps going. Cycles start on a fixed cadence and never overlap.
    """

    def __init__(
        self,
        config: MonitorConfig,
        fetcher: SnapshotFetcher,
        sink: Sink,
        *,
        clock: TimeSource | None = None,
        tracker: StateTracker | None = None,
    ) -> None:
        if not isinstance(config, MonitorConfig):
            raise TypeError("config must be a MonitorConfig")
        self.config = config
        self.fetcher = fetcher
        self.sink = sink
        self.clock = clock or SystemClock()
        self.tracker = tracker or StateTracker()
        self.state = LoopState.IDLE
        self.cycles = 0
        self._stop = asyncio.Event()

    def stop(self) -> None:
        """Request shutdown; abandons an in-flight fetch and interrupts sleeping or backoff."""
        self._stop.set()

    @property
    def stopping(self) -> bool:
        return self._stop.is_set()

    def backoff_delay(self, attempt: int) -> float:
        base = self.config.backoff_base.total_seconds()
        cap = self.config.effective_backoff_cap.total_seconds()
        return min(base * (2 ** max(0, int(attempt) - 1)), cap)

    async def _sleep(self, seconds: float) -> None:
        if seconds <= 0 or self._stop.is_set():
            return
        sleeper = asyncio.ensure_future(self.clock.sleep(seconds))
        stopper = asyncio.ensure_future(self._stop.wait())
        try:
            await asyncio.wait({sleeper, stopper}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (sleeper, stopper):
                if not task.done():
                    task.cancel()

    async def _fetch_unless_stopped(self, deadline: float) -> Snapshot | None:
        """Run one fetch attempt; a stop request abandons it and yields None."""
        fetch = asyncio.ensure_future(self.fetcher.fetch(deadline))
        stopper = asyncio.ensure_future(self._stop.wait())
        try:
            await asyncio.wait({fetch, stopper}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (fetch, stopper):
                if not task.done():
                    task.cancel()
        if self._stop.is_set():
            if fetch.done() and not fetch.cancelled():
                fetch.exception()
            return None
        return fetch.result()

    async def _fetch_with_retry(self) -> tuple[Snapshot | None, FetchError | None, int]:
        limit = int(self.config.retry_limit)
        timeout = self.config.fetch_timeout.total_seconds()
        last_error: FetchError | None = None

        for attempt in range(1, limit + 1):
            self.state = LoopState.FETCHING
            deadline = self.clock.monotonic() + timeout
            try:
                snapshot = await self._fetch_unless_stopped(deadline)
                if snapshot is None:
                    return None, last_error, attempt
                return snapshot, None, attempt
            except FetchError as exc:
                last_error = exc
            except Exception as exc:
                last_error = FetchError(FetchErrorKind.UNKNOWN, f"{type(exc).__name__}: {exc}")

            logger.warning(
                "Fetch attempt failed",
                attempt=attempt,
                retry_limit=limit,
                kind=last_error.kind.value,
                error=last_error.message,
            )
            if attempt < limit:
                await self._sleep(self.backoff_delay(attempt))
                if self._stop.is_set():
                    return None, last_error, attempt

        return None, last_error, limit

    async def _deliver(self, method: str, arg: Any) -> None:
        try:
            await getattr(self.sink, method)(arg)
        except Exception:
            logger.exception("Sink delivery failed", method=method)

    async def run_once(self) -> CycleReport | None:
        """Run a single cycle. Returns None when a stop request interrupted it."""
        started_at = self.clock.now()
        snapshot, error, attempts = await self._fetch_with_retry()
        if self._stop.is_set():
            return None

        self.state = LoopState.EVALUATING
        if snapshot is not None:
            findings = evaluate(snapshot, self.config.thresholds, self.clock.now())
        else:
            error = error or FetchError(FetchErrorKind.UNKNOWN)
            # Keep the last known conditions so a failed fetch never looks like a recovery.
            carried = [f for f in self.tracker.findings.values() if f.kind != FetchFailed.kind]
            findings = frozenset([*carried, FetchFailed(error_kind=error.kind, attempt=attempts)])
        diff = self.tracker.process(findings)

        self.state = LoopState.EMITTING
        if snapshot is not None:
            await self._deliver("report", snapshot)
        for finding in sorted(diff.to_emit, key=_emit_order):
            await self._deliver("emit", finding)
        for identity in sorted(diff.to_clear, key=str):
            await self._deliver("clear", identity)

        self.cycles += 1
        logger.info(
            "Poll cycle complete",
            cycle=self.cycles,
            attempts=attempts,
            ok=snapshot is not None,
            active=len(findings),
            emitted=len(diff.to_emit),
            cleared=len(diff.to_clear),
        )
        return CycleReport(
            started_at=started_at,
            attempts=attempts,
            snapshot=snapshot,
            error=error,
            findings=findings,
            diff=diff,
        )

    async def run(self, *, max_cycles: int | None = None) -> None:
        """Loop until stop() is called, the task is cancelled, or max_cycles is reached."""
        interval = self.config.poll_interval.total_seconds()
        logger.info("Poll loop starting", base_url=self.config.base_url, interval_seconds=interval)
        try:
            while not self._stop.is_set():
                cycle_start = self.clock.monotonic()
                report = await self.run_once()
                if report is None:
                    break
                if max_cycles is not None and self.cycles >= max_cycles:
                    break
                self.state = LoopState.SLEEPING
                await self._sleep(interval - (self.clock.monotonic() - cycle_start))
        finally:
            self.state = LoopState.STOPPED
            logger.info("Poll loop stopped", cycles=self.cycles)
