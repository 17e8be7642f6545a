"""Edge-triggered alert state for one monitored target."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Mapping

from nginx_monitor.models import Finding, FindingIdentity


@dataclass(frozen=True)
class StateDiff:
    to_emit: frozenset[Finding]
    to_clear: frozenset[FindingIdentity]

    @property
    def empty(self) -> bool:
        return not self.to_emit and not self.to_clear


def _index(findings: Iterable[Finding]) -> dict[FindingIdentity, Finding]:
    return {f.identity: f for f in findings}


class StateTracker:
    """
    Remembers the previous cycle's findings so only transitions reach the sinks.

    A finding is emitted when its identity is new or its payload changed.
    Resolvable findings (upstream degradation, fetch failure) produce a clear
    when they disappear; license and grace findings stay tracked until they
    are replaced by a changed value. Not safe for concurrent writers.
    """

    def __init__(self) -> None:
        self._state: dict[FindingIdentity, Finding] = {}

    @property
    def findings(self) -> Mapping[FindingIdentity, Finding]:
        return dict(self._state)

    def diff(self, new_findings: Iterable[Finding]) -> StateDiff:
        current = _index(new_findings)
        to_emit = frozenset(f for ident, f in current.items() if self._state.get(ident) != f)
        to_clear = frozenset(
            ident for ident, prev in self._state.items() if ident not in current and prev.resolvable
        )
        return StateDiff(to_emit=to_emit, to_clear=to_clear)

    def commit(self, new_findings: Iterable[Finding]) -> None:
        current = _index(new_findings)
        for ident, prev in self._state.items():
            if ident not in current and not prev.resolvable:
                current[ident] = prev
        self._state = current

    def process(self, new_findings: Iterable[Finding]) -> StateDiff:
        findings = list(new_findings)
        result = self.diff(findings)
        self.commit(findings)
        return result
