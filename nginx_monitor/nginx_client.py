"""Read-only adapter for the NGINX Plus REST API."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any

import httpx
import structlog

from nginx_monitor.clock import SystemClock, TimeSource
from nginx_monitor.config import MonitorConfig
from nginx_monitor.models import FetchError, FetchErrorKind, LicenseInfo, Snapshot, UpstreamHealth


logger = structlog.get_logger(__name__)

UNHEALTHY_PEER_STATES = frozenset({"unhealthy", "down", "unavail"})


def _coerce_int(value: Any, *, default: int = 0) -> int:
    if isinstance(value, bool):
        return int(default)
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        return int(default)


def parse_upstreams(payload: dict[str, Any]) -> dict[str, UpstreamHealth]:
    out: dict[str, UpstreamHealth] = {}
    for name, raw in payload.items():
        group = raw if isinstance(raw, dict) else {}
        peers = group.get("peers")
        peers = peers if isinstance(peers, list) else []
        unhealthy = 0
        for peer in peers:
            state = str((peer or {}).get("state") or "").strip().lower() if isinstance(peer, dict) else ""
            if state in UNHEALTHY_PEER_STATES:
                unhealthy += 1
        out[str(name)] = UpstreamHealth(
            name=str(name),
            zone=str(group.get("zone") or ""),
            total=len(peers),
            unhealthy=unhealthy,
        )
    return out


def parse_license(payload: Any) -> LicenseInfo | None:
    """
    Normalize the /license document.

    `active_till` is unix seconds; a missing or non-positive value means there is
    no usable license data. `reporting.grace` is seconds and is clamped at 0.
    """
    if not isinstance(payload, dict):
        return None
    active_till = _coerce_int(payload.get("active_till"), default=0)
    if active_till <= 0:
        return None
    try:
        active_until = datetime.fromtimestamp(active_till, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None

    reporting = payload.get("reporting")
    reporting = reporting if isinstance(reporting, dict) else {}
    healthy = reporting.get("healthy")
    return LicenseInfo(
        active_until=active_until,
        reporting_grace_seconds=max(0, _coerce_int(reporting.get("grace"), default=0)),
        eval=bool(payload.get("eval", False)),
        reporting_healthy=healthy if isinstance(healthy, bool) else None,
        reporting_fails=max(0, _coerce_int(reporting.get("fails"), default=0)),
    )


class NginxPlusFetcher:
    """Fetches one normalized Snapshot from an NGINX Plus instance per call."""

    def __init__(
        self,
        base_url: str,
        *,
        client: httpx.AsyncClient | None = None,
        fetch_timeout: float = 10.0,
        clock: TimeSource | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.fetch_timeout = max(0.001, float(fetch_timeout))
        self.clock = clock or SystemClock()
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient()

    @classmethod
    def from_config(
        cls,
        config: MonitorConfig,
        *,
        client: httpx.AsyncClient | None = None,
        clock: TimeSource | None = None,
    ) -> "NginxPlusFetcher":
        return cls(
            config.base_url,
            client=client,
            fetch_timeout=config.fetch_timeout.total_seconds(),
            clock=clock,
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "NginxPlusFetcher":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    def _remaining(self, deadline: float) -> float:
        return deadline - self.clock.monotonic()

    async def _get_json(self, path: str, *, timeout: float) -> dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            resp = await self._client.get(url, timeout=timeout)
        except httpx.TimeoutException as exc:
            raise FetchError(FetchErrorKind.NETWORK, f"timeout requesting {path}: {exc}") from exc
        except httpx.DecodingError as exc:
            raise FetchError(FetchErrorKind.PROTOCOL, f"undecodable response from {path}: {exc}") from exc
        except httpx.TransportError as exc:
            raise FetchError(FetchErrorKind.NETWORK, f"{type(exc).__name__}: {exc}") from exc
        except Exception as exc:
            raise FetchError(FetchErrorKind.UNKNOWN, f"{type(exc).__name__}: {exc}") from exc

        if resp.status_code in (401, 403):
            raise FetchError(FetchErrorKind.UNAUTHORIZED, f"HTTP {resp.status_code} from {path}")
        if resp.status_code >= 400:
            raise FetchError(FetchErrorKind.PROTOCOL, f"HTTP {resp.status_code} from {path}")

        try:
            data = resp.json()
        except ValueError as exc:
            raise FetchError(FetchErrorKind.PROTOCOL, f"non-JSON response from {path}") from exc
        if not isinstance(data, dict):
            raise FetchError(FetchErrorKind.PROTOCOL, f"unexpected response from {path} (not a JSON object)")
        return data

    async def _get_bounded(self, path: str, deadline: float) -> dict[str, Any]:
        remaining = self._remaining(deadline)
        if remaining <= 0:
            raise FetchError(FetchErrorKind.NETWORK, f"deadline exceeded before requesting {path}")
        try:
            return await asyncio.wait_for(
                self._get_json(path, timeout=min(remaining, self.fetch_timeout)),
                timeout=remaining,
            )
        except asyncio.TimeoutError as exc:
            raise FetchError(FetchErrorKind.NETWORK, f"deadline exceeded requesting {path}") from exc

    async def fetch(self, deadline: float | None = None) -> Snapshot:
        """
        Query upstream status (required) and license data (best-effort).

        `deadline` is an absolute value on the clock's monotonic scale; without
        one, `fetch_timeout` from now is used. Raises FetchError.
        """
        if deadline is None:
            deadline = self.clock.monotonic() + self.fetch_timeout

        upstream_payload = await self._get_bounded("/http/upstreams", deadline)
        upstreams = parse_upstreams(upstream_payload)

        license_info: LicenseInfo | None = None
        try:
            license_info = parse_license(await self._get_bounded("/license", deadline))
        except FetchError as exc:
            logger.warning("Could not get license data", kind=exc.kind.value, error=exc.message)
        if license_info is None:
            logger.debug("No license data in snapshot")

        return Snapshot(
            fetched_at=self.clock.now(),
            upstreams=upstreams,
            license=license_info,
        )
