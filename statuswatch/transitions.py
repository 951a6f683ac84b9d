"""
Transition detection.

Compares each freshly fetched indicator with the last one observed for
the same source and decides whether the change is worth announcing. The
previous-indicator map lives here rather than in SourceState so it
survives stale refreshes and can still spot a later recovery.
"""

from __future__ import annotations

from typing import Dict, Optional

from statuswatch.models import (
    Source,
    Summary,
    TransitionEvent,
    TransitionKind,
    indicator_severity,
)


class TransitionDetector:
    """Decides degraded / recovered / incident events per source."""

    def __init__(self) -> None:
        self._previous: Dict[str, str] = {}

    def previous(self, source_id: str) -> Optional[str]:
        return self._previous.get(source_id)

    def forget(self, source_id: str) -> None:
        self._previous.pop(source_id, None)

    def observe(self, source: Source, summary: Summary) -> Optional[TransitionEvent]:
        """
        Record ``summary.indicator`` for ``source``; return an event if due.

        The stored indicator is updated whether or not an event fires.
        """
        new = summary.indicator
        old = self._previous.get(source.id)
        self._previous[source.id] = new

        kind = classify_transition(old, new)
        if kind is None or not _passes_threshold(source, kind, old, new):
            return None
        return _build_event(source, summary, kind)


def classify_transition(old: Optional[str], new: str) -> Optional[TransitionKind]:
    """Raw transition kind between two indicators, ignoring thresholds."""
    new_sev = indicator_severity(new)
    if old is None:
        return TransitionKind.INCIDENT if new_sev > 0 else None
    if old == new:
        return None
    old_sev = indicator_severity(old)
    if new_sev > old_sev:
        return TransitionKind.DEGRADED
    if new_sev < old_sev and new == "none":
        return TransitionKind.RECOVERED
    return None


def _passes_threshold(
    source: Source,
    kind: TransitionKind,
    old: Optional[str],
    new: str,
) -> bool:
    minimum = source.alert_level.minimum_severity
    if minimum is None:
        return False
    # A recovery is judged by the level it recovered from.
    if kind is TransitionKind.RECOVERED:
        return old is not None and indicator_severity(old) >= minimum
    return indicator_severity(new) >= minimum


def _build_event(source: Source, summary: Summary, kind: TransitionKind) -> TransitionEvent:
    if kind is TransitionKind.DEGRADED:
        title = f"{source.name} - Status Degraded"
        body = summary.description
    elif kind is TransitionKind.RECOVERED:
        title = f"{source.name} - Recovered"
        body = "All systems operational"
    else:
        title = f"{source.name} - Active Incident"
        body = summary.description

    return TransitionEvent(
        source_id=source.id,
        source_name=source.name,
        source_url=source.base_url,
        title=title,
        body=body,
        indicator=summary.indicator,
        kind=kind,
        components=summary.non_operational_components,
    )
