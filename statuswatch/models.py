"""
Data models for the status aggregator.

Defines the monitored Source, the normalized Summary/Incident shapes that
every provider is funneled into, per-source runtime state, history
checkpoints, and the events handed to notification collaborators.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Iterable, List, Optional

from dateutil import parser as dateutil_parser

# Indicator tokens, ordered by severity. Anything else is "unknown".
INDICATOR_SEVERITY: Dict[str, int] = {
    "none": 0,
    "minor": 1,
    "major": 2,
    "critical": 3,
}
UNKNOWN_INDICATOR = "unknown"


def indicator_severity(indicator: str) -> int:
    """Ordinal severity of an indicator; -1 for anything unrecognized."""
    return INDICATOR_SEVERITY.get(indicator, -1)


def worst_indicator(indicators: Iterable[str]) -> str:
    """Highest-severity indicator of the given ones ("none" if empty)."""
    worst: Optional[str] = None
    for ind in indicators:
        if worst is None or indicator_severity(ind) > indicator_severity(worst):
            worst = ind
    return worst if worst is not None else "none"


def parse_timestamp(value: object) -> Optional[datetime]:
    """Parse a provider timestamp flexibly; None when absent or garbled."""
    if not value or not isinstance(value, str):
        return None
    try:
        return dateutil_parser.parse(value)
    except (ValueError, OverflowError):
        return None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AlertLevel(str, Enum):
    """Per-source notification threshold."""

    ALL = "all"
    CRITICAL = "critical"
    MUTED = "muted"

    @property
    def minimum_severity(self) -> Optional[int]:
        """Lowest severity that notifies; None means never."""
        if self is AlertLevel.ALL:
            return 1
        if self is AlertLevel.CRITICAL:
            return 3
        return None

    @classmethod
    def parse(cls, value: object) -> "AlertLevel":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            return cls.ALL


class Provider(str, Enum):
    """The status-page API shape a source speaks."""

    ATLASSIAN = "atlassian"
    INCIDENT_IO_COMPAT = "incident-io-compatible"  # Atlassian-shaped, no update bodies
    INCIDENT_IO = "incident-io-native"  # widget proxy endpoint
    INSTATUS = "instatus"


# ─── Sources ──────────────────────────────────────────────────


def normalize_base_url(url: str) -> str:
    return url.strip().rstrip("/")


def stable_source_id(base_url: str) -> str:
    """Deterministic id for sources configured without one."""
    return str(uuid.uuid5(uuid.NAMESPACE_URL, normalize_base_url(base_url)))


@dataclass(frozen=True)
class Source:
    """
    A monitored status page.

    Frozen so the id cannot change after creation; edits go through
    ``dataclasses.replace`` in the registry.
    """

    name: str
    base_url: str
    alert_level: AlertLevel = AlertLevel.ALL
    group: Optional[str] = None
    sort_order: int = 0
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def __post_init__(self) -> None:
        object.__setattr__(self, "base_url", normalize_base_url(self.base_url))
        object.__setattr__(self, "alert_level", AlertLevel.parse(self.alert_level))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "base_url": self.base_url,
            "alert_level": self.alert_level.value,
            "group": self.group,
            "sort_order": self.sort_order,
        }

    @classmethod
    def from_dict(cls, raw: dict) -> "Source":
        """Decode a persisted source. Raises KeyError/TypeError on bad input."""
        return cls(
            id=str(raw["id"]),
            name=str(raw["name"]),
            base_url=str(raw["base_url"]),
            alert_level=AlertLevel.parse(raw.get("alert_level", "all")),
            group=raw.get("group"),
            sort_order=int(raw.get("sort_order") or 0),
        )


# ─── Normalized status shapes ─────────────────────────────────


@dataclass(frozen=True)
class PageInfo:
    """Identity of a status page."""

    id: str
    name: str
    url: str
    updated_at: Optional[datetime] = None
    time_zone: Optional[str] = None


@dataclass(frozen=True)
class Component:
    """A single service component listed on a status page."""

    id: str
    name: str
    status: str  # e.g. "operational", "degraded_performance", "major_outage"
    position: int = 0
    description: Optional[str] = None
    group_id: Optional[str] = None

    @property
    def is_operational(self) -> bool:
        return self.status == "operational"


@dataclass(frozen=True)
class IncidentUpdate:
    id: str
    status: str
    body: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass(frozen=True)
class Incident:
    """
    A normalized incident.

    Attributes:
        id: Provider incident id.
        name: Human-readable incident title.
        status: Lifecycle status as the provider words it.
        impact: Derived impact indicator (none/minor/major/critical).
        created_at: When the incident was opened.
        updated_at: When the incident was last updated.
        shortlink: Optional permalink.
        updates: Incident updates, in provider order.
    """

    id: str
    name: str
    status: str
    impact: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    shortlink: Optional[str] = None
    updates: List[IncidentUpdate] = field(default_factory=list)


@dataclass(frozen=True)
class Summary:
    """Normalized snapshot of a status page."""

    page: PageInfo
    indicator: str
    description: str
    components: List[Component] = field(default_factory=list)
    incidents: List[Incident] = field(default_factory=list)

    @property
    def severity(self) -> int:
        return indicator_severity(self.indicator)

    @property
    def non_operational_components(self) -> List[str]:
        return [c.name for c in self.components if not c.is_operational]


@dataclass
class SourceState:
    """Latest known health for one source."""

    summary: Optional[Summary] = None
    recent_incidents: List[Incident] = field(default_factory=list)
    is_loading: bool = False
    last_error: Optional[str] = None
    last_refresh: Optional[datetime] = None
    last_successful_refresh: Optional[datetime] = None
    is_stale: bool = False
    provider: Optional[Provider] = None

    @property
    def indicator(self) -> str:
        return self.summary.indicator if self.summary else UNKNOWN_INDICATOR

    @property
    def severity(self) -> int:
        return indicator_severity(self.indicator)

    @property
    def description(self) -> str:
        return self.summary.description if self.summary else "Loading..."

    @property
    def top_level_components(self) -> List[Component]:
        if not self.summary:
            return []
        top = [c for c in self.summary.components if c.group_id is None]
        return sorted(top, key=lambda c: c.position)

    @property
    def active_incidents(self) -> List[Incident]:
        return list(self.summary.incidents) if self.summary else []


@dataclass(frozen=True)
class Checkpoint:
    """A single timestamped indicator sample."""

    timestamp: datetime
    indicator: str

    def to_dict(self) -> dict:
        return {"timestamp": self.timestamp.isoformat(), "indicator": self.indicator}

    @classmethod
    def from_dict(cls, raw: dict) -> "Checkpoint":
        ts = parse_timestamp(raw.get("timestamp"))
        if ts is None:
            raise ValueError(f"bad checkpoint timestamp: {raw.get('timestamp')!r}")
        if ts.tzinfo is None:
            ts = ts.replace(tzinfo=timezone.utc)
        return cls(timestamp=ts, indicator=str(raw.get("indicator", UNKNOWN_INDICATOR)))


# ─── Events ───────────────────────────────────────────────────

HOOK_STATUS_CHANGE = "on-status-change"
HOOK_REFRESH = "on-refresh"
HOOK_SOURCE_ADD = "on-source-add"
HOOK_SOURCE_REMOVE = "on-source-remove"


class TransitionKind(str, Enum):
    DEGRADED = "degraded"
    RECOVERED = "recovered"
    INCIDENT = "incident"


@dataclass(frozen=True)
class TransitionEvent:
    """A decided status-change notification for one source."""

    source_id: str
    source_name: str
    source_url: str
    title: str
    body: str
    indicator: str
    kind: TransitionKind
    timestamp: datetime = field(default_factory=_utcnow)
    components: List[str] = field(default_factory=list)

    @property
    def severity(self) -> int:
        return indicator_severity(self.indicator)

    def to_payload(self) -> dict:
        """JSON document handed to notification/webhook/hook collaborators."""
        return {
            "source": self.source_name,
            "title": self.title,
            "body": self.body,
            "severity": self.indicator,
            "event": self.kind.value,
            "url": self.source_url,
            "timestamp": self.timestamp.isoformat(),
            "components": list(self.components),
        }

    def hook_environment(self) -> Dict[str, str]:
        return {
            "STATUSBAR_EVENT": HOOK_STATUS_CHANGE,
            "STATUSBAR_SOURCE_NAME": self.source_name,
            "STATUSBAR_SOURCE_URL": self.source_url,
            "STATUSBAR_TITLE": self.title,
            "STATUSBAR_BODY": self.body,
        }


@dataclass(frozen=True)
class RefreshCompleted:
    """Emitted once per refresh_all, after every source has finished."""

    source_count: int
    worst_indicator: str
    timestamp: datetime = field(default_factory=_utcnow)

    def to_payload(self) -> dict:
        return {
            "event": HOOK_REFRESH,
            "source_count": self.source_count,
            "worst_level": self.worst_indicator,
            "timestamp": self.timestamp.isoformat(),
        }

    def hook_environment(self) -> Dict[str, str]:
        return {
            "STATUSBAR_EVENT": HOOK_REFRESH,
            "STATUSBAR_SOURCE_COUNT": str(self.source_count),
            "STATUSBAR_WORST_LEVEL": self.worst_indicator,
        }


@dataclass(frozen=True)
class SourceChanged:
    """A source was added to or removed from the monitor."""

    source: Source
    hook_event: str  # HOOK_SOURCE_ADD or HOOK_SOURCE_REMOVE
    timestamp: datetime = field(default_factory=_utcnow)

    def to_payload(self) -> dict:
        return {
            "event": self.hook_event,
            "source_name": self.source.name,
            "source_url": self.source.base_url,
        }

    def hook_environment(self) -> Dict[str, str]:
        return {
            "STATUSBAR_EVENT": self.hook_event,
            "STATUSBAR_SOURCE_NAME": self.source.name,
            "STATUSBAR_SOURCE_URL": self.source.base_url,
        }


# ─── Settings ─────────────────────────────────────────────────


@dataclass
class TrackerSettings:
    """Global tracker settings."""

    log_level: str = "INFO"
    refresh_interval: float = 300.0
    max_retries: int = 3
    retry_base_delay: float = 1.0
    retry_max_delay: float = 8.0
    request_timeout: float = 15.0
    resource_timeout: float = 30.0
    max_connections_per_host: int = 4
    history_path: Optional[str] = "~/.statuswatch/history.json"
    history_retention_days: int = 30
    history_save_delay: float = 5.0
    notifications_enabled: bool = True
