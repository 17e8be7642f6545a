"""Threshold evaluation: maps a snapshot to the set of currently-true findings."""

from __future__ import annotations

import math
from datetime import datetime, timedelta

from nginx_monitor.config import ThresholdConfig
from nginx_monitor.models import (
    Finding,
    LicenseExpiring,
    Snapshot,
    UpstreamDegraded,
    UsageGraceEnding,
)


def duration_days(delta: timedelta) -> int:
    """Whole days in `delta`, floored toward negative infinity (-12h -> -1)."""
    return int(math.floor(delta.total_seconds() / 3600.0 / 24.0))


def days_until(moment: datetime, now: datetime) -> int:
    return duration_days(moment - now)


def threshold_days(window: timedelta) -> int:
    return duration_days(window)


def evaluate(snapshot: Snapshot, config: ThresholdConfig, now: datetime) -> frozenset[Finding]:
    findings: set[Finding] = set()

    lic = snapshot.license
    if lic is not None:
        days_to_expiry = days_until(lic.active_until, now)
        if days_to_expiry < threshold_days(config.expiry_warning_window):
            findings.add(LicenseExpiring(days_remaining=days_to_expiry))

        # Grace is the configured allowance itself, not a countdown from now.
        grace_days = duration_days(timedelta(seconds=max(0, int(lic.reporting_grace_seconds))))
        if grace_days < threshold_days(config.grace_warning_window):
            findings.add(UsageGraceEnding(days_remaining=grace_days))

    for name, upstream in snapshot.upstreams.items():
        if upstream.unhealthy > 0:
            findings.add(
                UpstreamDegraded(
                    name=name,
                    unhealthy_count=int(upstream.unhealthy),
                    total_count=int(upstream.total),
                )
            )

    return frozenset(findings)
