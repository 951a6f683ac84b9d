"""
Status payload decoders.

Turns the JSON bodies of the three supported status-page APIs into the
common Summary / Incident models:
  - Atlassian Statuspage (and incident.io's Atlassian-compatible shim)
  - incident.io widget proxy
  - Instatus summary + component tree

Everything here is pure: no I/O, so it can be tested against fixtures.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from statuswatch.models import (
    Component,
    Incident,
    IncidentUpdate,
    PageInfo,
    Summary,
    parse_timestamp,
)


class DecodeError(ValueError):
    """Payload does not have the shape the decoder expects."""


# Incident.io free-text status -> impact. Unrecognized statuses map to minor.
_IIO_IMPACT = {
    "investigating": "major",
    "identified": "major",
    "monitoring": "minor",
    "resolved": "none",
    "postmortem": "none",
}
_IIO_ACTIVE = ("investigating", "identified")

_INSTATUS_PAGE_STATUS = {
    "UP": ("none", "All systems operational"),
    "HASISSUES": ("minor", "Experiencing issues"),
    "UNDERMAINTENANCE": ("minor", "Under maintenance"),
}

_INSTATUS_COMPONENT_STATUS = {
    "OPERATIONAL": "operational",
    "DEGRADEDPERFORMANCE": "degraded_performance",
    "PARTIALOUTAGE": "partial_outage",
    "MAJOROUTAGE": "major_outage",
    "UNDERMAINTENANCE": "degraded_performance",
}


# ─── Field helpers ────────────────────────────────────────────


def _require_dict(value: Any, what: str) -> Dict[str, Any]:
    if not isinstance(value, dict):
        raise DecodeError(f"{what} is not an object")
    return value


def _require_str(obj: Dict[str, Any], key: str, what: str) -> str:
    value = obj.get(key)
    if not isinstance(value, str):
        raise DecodeError(f"{what}.{key} missing or not a string")
    return value


def _optional_str(obj: Dict[str, Any], key: str) -> Optional[str]:
    value = obj.get(key)
    return value if isinstance(value, str) else None


def _list_field(obj: Dict[str, Any], key: str) -> List[Any]:
    """Missing or null arrays read as empty."""
    value = obj.get(key)
    if value is None:
        return []
    if not isinstance(value, list):
        raise DecodeError(f"{key} is not a list")
    return value


# ─── Atlassian-shaped payloads ────────────────────────────────


def _decode_page(raw: Any) -> PageInfo:
    page = _require_dict(raw, "page")
    return PageInfo(
        id=_require_str(page, "id", "page"),
        name=_require_str(page, "name", "page"),
        url=_require_str(page, "url", "page"),
        updated_at=parse_timestamp(page.get("updated_at")),
        time_zone=_optional_str(page, "time_zone"),
    )


def _decode_component(raw: Any) -> Component:
    comp = _require_dict(raw, "component")
    position = comp.get("position")
    return Component(
        id=_require_str(comp, "id", "component"),
        name=_require_str(comp, "name", "component"),
        status=_require_str(comp, "status", "component"),
        position=position if isinstance(position, int) else 0,
        description=_optional_str(comp, "description"),
        group_id=_optional_str(comp, "group_id"),
    )


def _decode_update(raw: Any) -> IncidentUpdate:
    upd = _require_dict(raw, "incident_update")
    return IncidentUpdate(
        id=_require_str(upd, "id", "incident_update"),
        status=_require_str(upd, "status", "incident_update"),
        # incident.io's compatibility API leaves bodies out
        body=_optional_str(upd, "body") or "",
        created_at=parse_timestamp(upd.get("created_at")),
        updated_at=parse_timestamp(upd.get("updated_at")),
    )


def _decode_incident(raw: Any) -> Incident:
    inc = _require_dict(raw, "incident")
    return Incident(
        id=_require_str(inc, "id", "incident"),
        name=_require_str(inc, "name", "incident"),
        status=_require_str(inc, "status", "incident"),
        impact=_optional_str(inc, "impact") or "none",
        created_at=parse_timestamp(inc.get("created_at")),
        updated_at=parse_timestamp(inc.get("updated_at")),
        shortlink=_optional_str(inc, "shortlink"),
        updates=[_decode_update(u) for u in _list_field(inc, "incident_updates")],
    )


def decode_atlassian_summary(data: Any) -> Summary:
    """
    Decode an Atlassian ``summary.json`` body.

    Requires ``page`` and ``status.indicator`` / ``status.description``;
    ``components`` and ``incidents`` default to empty.

    Raises:
        DecodeError: If the body is not Atlassian-shaped.
    """
    body = _require_dict(data, "summary")
    page = _decode_page(body.get("page"))
    status = _require_dict(body.get("status"), "status")
    return Summary(
        page=page,
        indicator=_require_str(status, "indicator", "status"),
        description=_require_str(status, "description", "status"),
        components=[_decode_component(c) for c in _list_field(body, "components")],
        incidents=[_decode_incident(i) for i in _list_field(body, "incidents")],
    )


def decode_atlassian_incidents(data: Any) -> List[Incident]:
    """Decode an Atlassian ``incidents.json`` body into incidents."""
    body = _require_dict(data, "incidents response")
    return [_decode_incident(i) for i in _list_field(body, "incidents")]


# ─── incident.io widget ───────────────────────────────────────


def incident_io_impact(status: str) -> str:
    return _IIO_IMPACT.get(status.lower(), "minor")


def incident_io_indicator(statuses: List[str]) -> str:
    if not statuses:
        return "none"
    if any(s.lower() in _IIO_ACTIVE for s in statuses):
        return "major"
    return "minor"


def describe_indicator(indicator: str, incident_count: int) -> str:
    if indicator == "none":
        return "All systems operational"
    if indicator in ("minor", "major"):
        suffix = "" if incident_count == 1 else "s"
        return f"{incident_count} active incident{suffix}"
    return "Status unknown"


def _widget_incident(raw: Any) -> Incident:
    inc = _require_dict(raw, "widget incident")
    inc_id = _optional_str(inc, "id") or str(uuid.uuid4())
    status = _optional_str(inc, "status") or "investigating"
    updated = parse_timestamp(inc.get("updated_at"))

    updates: List[IncidentUpdate] = []
    message = _optional_str(inc, "last_update_message")
    if message:
        updates.append(
            IncidentUpdate(
                id=f"{inc_id}-update",
                status=status,
                body=message,
                created_at=updated,
                updated_at=updated,
            )
        )

    return Incident(
        id=inc_id,
        name=_optional_str(inc, "name") or "Unknown incident",
        status=status,
        impact=incident_io_impact(status),
        created_at=parse_timestamp(inc.get("created_at")),
        updated_at=updated,
        updates=updates,
    )


def normalize_incident_io(data: Any, base_url: str) -> Tuple[Summary, List[Incident]]:
    """
    Normalize an incident.io ``/proxy/widget`` body.

    Ongoing incidents and in-progress maintenances count toward the
    indicator; scheduled maintenances are ignored. The widget carries no
    component list.
    """
    body = _require_dict(data, "widget")
    raw = _list_field(body, "ongoing_incidents") + _list_field(
        body, "in_progress_maintenances"
    )
    incidents = [_widget_incident(r) for r in raw]

    indicator = incident_io_indicator([i.status for i in incidents])
    summary = Summary(
        page=PageInfo(id=base_url, name=base_url, url=base_url),
        indicator=indicator,
        description=describe_indicator(indicator, len(incidents)),
        components=[],
        incidents=incidents,
    )
    return summary, incidents


# ─── Instatus ─────────────────────────────────────────────────


@dataclass(frozen=True)
class InstatusPage:
    name: str
    url: str
    status: str  # bare token, e.g. "UP"


def decode_instatus_summary(data: Any) -> InstatusPage:
    """
    Decode an Instatus ``summary.json`` body.

    Raises:
        DecodeError: If ``page.status`` is not a bare string token.
    """
    body = _require_dict(data, "summary")
    page = _require_dict(body.get("page"), "page")
    return InstatusPage(
        name=_require_str(page, "name", "page"),
        url=_require_str(page, "url", "page"),
        status=_require_str(page, "status", "page"),
    )


def instatus_page_indicator(token: str) -> Tuple[str, str]:
    """(indicator, description) for an Instatus page status token."""
    return _INSTATUS_PAGE_STATUS.get(token, ("major", "Experiencing issues"))


def instatus_component_status(token: str) -> str:
    return _INSTATUS_COMPONENT_STATUS.get(token, token.lower())


def flatten_instatus_components(tree: List[Any]) -> List[Component]:
    """
    Flatten a recursive Instatus component tree, pre-order.

    Positions increase monotonically in traversal order. Nesting is
    dropped: no ``group_id`` is reconstructed for children.
    """
    flat: List[Component] = []

    def _walk(nodes: List[Any]) -> None:
        for raw in nodes:
            node = _require_dict(raw, "component")
            flat.append(
                Component(
                    id=_require_str(node, "id", "component"),
                    name=_require_str(node, "name", "component"),
                    status=instatus_component_status(
                        _require_str(node, "status", "component")
                    ),
                    position=len(flat),
                    description=_optional_str(node, "description"),
                )
            )
            _walk(_list_field(node, "children"))

    _walk(tree)
    return flat


def decode_instatus_components(data: Any) -> List[Component]:
    body = _require_dict(data, "components response")
    return flatten_instatus_components(_list_field(body, "components"))


def normalize_instatus(
    page: InstatusPage,
    components: List[Component],
    base_url: str,
) -> Summary:
    indicator, description = instatus_page_indicator(page.status)
    return Summary(
        page=PageInfo(id=base_url, name=page.name, url=page.url),
        indicator=indicator,
        description=description,
        components=components,
        incidents=[],
    )

