"""Value types shared by the fetcher, evaluator, state tracker and sinks."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Mapping, Union


@dataclass(frozen=True)
class UpstreamHealth:
    name: str
    zone: str
    total: int
    unhealthy: int

    @property
    def healthy(self) -> bool:
        return self.unhealthy == 0


@dataclass(frozen=True)
class LicenseInfo:
    active_until: datetime
    reporting_grace_seconds: int = 0
    eval: bool = False
    reporting_healthy: bool | None = None
    reporting_fails: int = 0


@dataclass(frozen=True)
class Snapshot:
    fetched_at: datetime
    upstreams: Mapping[str, UpstreamHealth] = field(default_factory=dict)
    license: LicenseInfo | None = None


class FetchErrorKind(str, enum.Enum):
    NETWORK = "network"
    PROTOCOL = "protocol"
    UNAUTHORIZED = "unauthorized"
    UNKNOWN = "unknown"


class FetchError(Exception):
    """Raised by the snapshot fetcher; always carries a :class:`FetchErrorKind`."""

    def __init__(self, kind: FetchErrorKind, message: str = ""):
        super().__init__(message or kind.value)
        self.kind = kind
        self.message = message or kind.value

    def __repr__(self) -> str:
        return f"FetchError({self.kind.value!r}, {self.message!r})"


@dataclass(frozen=True)
class FindingIdentity:
    kind: str
    key: str = ""

    def __str__(self) -> str:
        return f"{self.kind}:{self.key}" if self.key else self.kind


@dataclass(frozen=True)
class LicenseExpiring:
    days_remaining: int

    kind = "license_expiring"
    resolvable = False

    @property
    def identity(self) -> FindingIdentity:
        return FindingIdentity(self.kind)

    def describe(self) -> str:
        if self.days_remaining < 0:
            return f"License expired {abs(self.days_remaining)} day(s) ago"
        return f"License expiring in {self.days_remaining} day(s)"


@dataclass(frozen=True)
class UsageGraceEnding:
    days_remaining: int

    kind = "usage_grace_ending"
    resolvable = False

    @property
    def identity(self) -> FindingIdentity:
        return FindingIdentity(self.kind)

    def describe(self) -> str:
        return f"Usage reporting grace period ending in {self.days_remaining} day(s)"


@dataclass(frozen=True)
class UpstreamDegraded:
    name: str
    unhealthy_count: int
    total_count: int

    kind = "upstream_degraded"
    resolvable = True

    @property
    def identity(self) -> FindingIdentity:
        return FindingIdentity(self.kind, self.name)

    def describe(self) -> str:
        return f"Upstream {self.name}: {self.unhealthy_count}/{self.total_count} server(s) unhealthy"


@dataclass(frozen=True)
class FetchFailed:
    error_kind: FetchErrorKind
    attempt: int

    kind = "fetch_failed"
    resolvable = True

    @property
    def identity(self) -> FindingIdentity:
        return FindingIdentity(self.kind)

    def describe(self) -> str:
        return f"Status fetch failed ({self.error_kind.value}) after {self.attempt} attempt(s)"


Finding = Union[LicenseExpiring, UsageGraceEnding, UpstreamDegraded, FetchFailed]
