from __future__ import annotations

from nginx_monitor.models import (
    FetchErrorKind,
    FetchFailed,
    FindingIdentity,
    LicenseExpiring,
    UpstreamDegraded,
    UsageGraceEnding,
)
from nginx_monitor.state import StateTracker


def test_repeated_findings_are_emitted_once() -> None:
    tracker = StateTracker()
    findings = {
        LicenseExpiring(days_remaining=12),
        UpstreamDegraded(name="backend", unhealthy_count=1, total_count=3),
    }

    first = tracker.process(findings)
    assert first.to_emit == findings
    assert first.to_clear == frozenset()

    second = tracker.process(findings)
    assert second.to_emit == frozenset()
    assert second.empty


def test_changed_payload_is_re_emitted() -> None:
    tracker = StateTracker()
    tracker.process({UpstreamDegraded(name="backend", unhealthy_count=1, total_count=3)})

    worse = UpstreamDegraded(name="backend", unhealthy_count=2, total_count=3)
    diff = tracker.process({worse})
    assert diff.to_emit == {worse}
    assert diff.to_clear == frozenset()

    expired = LicenseExpiring(days_remaining=-1)
    tracker.process({worse, LicenseExpiring(days_remaining=0)})
    assert tracker.process({worse, expired}).to_emit == {expired}


def test_recovered_upstream_is_cleared() -> None:
    tracker = StateTracker()
    tracker.process({UpstreamDegraded(name="backend", unhealthy_count=1, total_count=3)})

    diff = tracker.process(set())
    assert diff.to_emit == frozenset()
    assert diff.to_clear == {FindingIdentity("upstream_degraded", "backend")}
    assert tracker.findings == {}


def test_license_findings_are_never_cleared_by_absence() -> None:
    tracker = StateTracker()
    lic = LicenseExpiring(days_remaining=5)
    grace = UsageGraceEnding(days_remaining=0)
    tracker.process({lic, grace})

    diff = tracker.process(set())
    assert diff.to_clear == frozenset()
    assert set(tracker.findings.values()) == {lic, grace}

    # Returning with the same value is not a new transition.
    assert tracker.process({lic}).to_emit == frozenset()


def test_fetch_failure_clears_when_fetch_recovers() -> None:
    tracker = StateTracker()
    failed = FetchFailed(error_kind=FetchErrorKind.NETWORK, attempt=3)
    assert tracker.process({failed}).to_emit == {failed}
    assert tracker.process({failed}).empty

    diff = tracker.process(set())
    assert diff.to_clear == {FindingIdentity("fetch_failed")}


def test_diff_does_not_mutate_state() -> None:
    tracker = StateTracker()
    findings = {UpstreamDegraded(name="a", unhealthy_count=1, total_count=1)}
    tracker.diff(findings)
    assert tracker.findings == {}
    tracker.commit(findings)
    assert tracker.diff(findings).empty


def test_upstreams_are_tracked_per_name() -> None:
    tracker = StateTracker()
    a = UpstreamDegraded(name="a", unhealthy_count=1, total_count=2)
    b = UpstreamDegraded(name="b", unhealthy_count=1, total_count=2)
    tracker.process({a})
    diff = tracker.process({b})
    assert diff.to_emit == {b}
    assert diff.to_clear == {a.identity}
