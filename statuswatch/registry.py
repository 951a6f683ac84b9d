"""
Source registry.

Ordered collection of monitored sources plus the import/export formats
they travel in: a JSON list of source objects, and the older
tab-separated ``name<TAB>url`` line format. Also carries the bundled
catalog of well-known status pages.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Sequence, Tuple
from urllib.parse import urlparse

from statuswatch.models import AlertLevel, Source, normalize_base_url

logger = logging.getLogger(__name__)


def validate_source_url(raw_url: str) -> Tuple[bool, Optional[str]]:
    """
    Check a status page base URL.

    Returns:
        (acceptable, message). ``message`` is an error when not acceptable,
        a warning when acceptable, or None when the URL is clean.
    """
    url = raw_url.strip()
    if not url:
        return False, "URL cannot be empty"

    parsed = urlparse(url)
    scheme = parsed.scheme.lower()
    if scheme not in ("http", "https"):
        return False, "URL must use http or https scheme"
    host = parsed.hostname or ""
    if not host:
        return False, "URL must have a host"
    if "." not in host:
        return False, "Host must contain a domain (e.g. example.com)"

    if scheme == "http":
        return True, "Consider using https for secure connections"
    if "/api/" in parsed.path:
        return True, "URL appears to contain an API path; use the base status page URL instead"
    return True, None


class SourceRegistry:
    """
    Monitored sources in manual sort order.

    Sources are immutable values; every edit swaps in a replaced copy with
    the same id.
    """

    def __init__(self, sources: Sequence[Source] = ()) -> None:
        self._sources: List[Source] = []
        for source in sorted(sources, key=lambda s: s.sort_order):
            self.add(source)

    def __iter__(self) -> Iterator[Source]:
        return iter(list(self._sources))

    def __len__(self) -> int:
        return len(self._sources)

    def __contains__(self, source_id: object) -> bool:
        return self.get(source_id) is not None  # type: ignore[arg-type]

    @property
    def sources(self) -> List[Source]:
        return list(self._sources)

    @property
    def ids(self) -> List[str]:
        return [s.id for s in self._sources]

    def get(self, source_id: str) -> Optional[Source]:
        for source in self._sources:
            if source.id == source_id:
                return source
        return None

    def find_by_url(self, base_url: str) -> Optional[Source]:
        wanted = normalize_base_url(base_url)
        for source in self._sources:
            if source.base_url == wanted:
                return source
        return None

    def groups(self) -> List[str]:
        """Distinct group labels, in order of first appearance."""
        seen: Dict[str, None] = {}
        for source in self._sources:
            if source.group:
                seen.setdefault(source.group, None)
        return list(seen)

    # ── CRUD ──────────────────────────────────────────────

    def add(self, source: Source) -> Source:
        """Append ``source`` at the end of the manual order."""
        if self.get(source.id) is not None:
            raise ValueError(f"duplicate source id {source.id}")
        added = replace(source, sort_order=len(self._sources))
        self._sources.append(added)
        return added

    def remove(self, source_id: str) -> Source:
        source = self._require(source_id)
        self._sources.remove(source)
        self._renumber()
        return source

    def rename(self, source_id: str, name: str) -> Source:
        return self._update(source_id, name=name)

    def set_url(self, source_id: str, base_url: str) -> Source:
        return self._update(source_id, base_url=base_url)

    def set_alert_level(self, source_id: str, level: AlertLevel) -> Source:
        return self._update(source_id, alert_level=level)

    def set_group(self, source_id: str, group: Optional[str]) -> Source:
        return self._update(source_id, group=group or None)

    def move(self, source_id: str, index: int) -> None:
        """Move a source to ``index`` (clamped) in the manual order."""
        source = self._require(source_id)
        self._sources.remove(source)
        index = max(0, min(index, len(self._sources)))
        self._sources.insert(index, source)
        self._renumber()

    def replace_all(self, sources: Sequence[Source]) -> None:
        self._sources = []
        for source in sources:
            self.add(source)

    def _require(self, source_id: str) -> Source:
        source = self.get(source_id)
        if source is None:
            raise KeyError(source_id)
        return source

    def _update(self, source_id: str, **changes: object) -> Source:
        source = self._require(source_id)
        updated = replace(source, **changes)
        self._sources[self._sources.index(source)] = updated
        return updated

    def _renumber(self) -> None:
        self._sources = [
            s if s.sort_order == i else replace(s, sort_order=i)
            for i, s in enumerate(self._sources)
        ]


# ─── Import / export ──────────────────────────────────────────


def sources_to_json(sources: Sequence[Source]) -> str:
    """Pretty-printed, key-sorted JSON list."""
    return json.dumps([s.to_dict() for s in sources], indent=2, sort_keys=True)


def sources_from_json(text: str) -> List[Source]:
    """Decode a JSON source list; anything undecodable yields []."""
    try:
        raw = json.loads(text)
        if not isinstance(raw, list):
            return []
        return [Source.from_dict(item) for item in raw]
    except (ValueError, KeyError, TypeError) as exc:
        logger.warning("could not decode source list: %s", exc)
        return []


def save_sources(path: Path, sources: Sequence[Source]) -> bool:
    """
    Write the JSON export atomically.

    Returns:
        False if the write failed; the failure is logged, not raised.
    """
    path = Path(path).expanduser()
    tmp = path.with_name(f"{path.name}.tmp")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp.write_text(sources_to_json(sources), encoding="utf-8")
        tmp.replace(path)
    except OSError:
        logger.exception("failed to write sources to %s", path)
        return False
    return True


def parse_source_lines(text: str) -> List[Source]:
    """
    Parse ``name<TAB>url`` lines.

    Blank lines and ``#`` comments are skipped, as are lines without a
    tab or with an unacceptable URL.
    """
    sources: List[Source] = []
    for line in text.splitlines():
        raw = line.strip()
        if not raw or raw.startswith("#"):
            continue
        parts = raw.split("\t", 1)
        if len(parts) != 2:
            continue
        name, url = parts[0].strip(), parts[1].strip()
        ok, _ = validate_source_url(url)
        if not name or not ok:
            continue
        sources.append(Source(name=name, base_url=url, sort_order=len(sources)))
    return sources


def serialize_source_lines(sources: Sequence[Source]) -> str:
    return "\n".join(f"{s.name}\t{s.base_url}" for s in sources)


# ─── Service catalog ──────────────────────────────────────────

# name<TAB>url<TAB>category
SERVICE_CATALOG = """\
GitHub\thttps://www.githubstatus.com\tDeveloper Tools
Cloudflare\thttps://www.cloudflarestatus.com\tInfrastructure
Anthropic\thttps://status.anthropic.com\tAI & ML
OpenAI\thttps://status.openai.com\tAI & ML
AWS\thttps://health.aws.amazon.com\tCloud
Datadog\thttps://status.datadoghq.com\tObservability
PagerDuty\thttps://status.pagerduty.com\tIncident Management
Vercel\thttps://www.vercel-status.com\tDeveloper Tools
Netlify\thttps://www.netlifystatus.com\tDeveloper Tools
Twilio\thttps://status.twilio.com\tCommunication
Stripe\thttps://status.stripe.com\tPayments
Braintree\thttps://status.braintreepayments.com\tPayments
HashiCorp\thttps://status.hashicorp.com\tDeveloper Tools
Atlassian\thttps://status.atlassian.com\tProductivity
Bitbucket\thttps://bitbucket.status.atlassian.com\tDeveloper Tools
Figma\thttps://status.figma.com\tDesign
Reddit\thttps://www.redditstatus.com\tSocial
Discord\thttps://discordstatus.com\tCommunication
Linear\thttps://linearstatus.com\tProductivity
Notion\thttps://status.notion.so\tProductivity
"""


@dataclass(frozen=True)
class CatalogEntry:
    """A well-known status page offered for one-step adding."""

    name: str
    url: str
    category: str

    def to_source(self) -> Source:
        return Source(name=self.name, base_url=self.url, group=self.category)


def parse_catalog(text: str = SERVICE_CATALOG) -> List[CatalogEntry]:
    """Parse ``name<TAB>url<TAB>category`` lines; malformed lines are skipped."""
    entries: List[CatalogEntry] = []
    for line in text.splitlines():
        raw = line.strip()
        if not raw:
            continue
        parts = raw.split("\t")
        if len(parts) != 3:
            continue
        entries.append(CatalogEntry(*(p.strip() for p in parts)))
    return entries


def search_catalog(
    query: str,
    entries: Optional[Sequence[CatalogEntry]] = None,
) -> List[CatalogEntry]:
    """Case-insensitive substring match on name or category; blank matches all."""
    pool = list(entries) if entries is not None else parse_catalog()
    needle = query.strip().lower()
    if not needle:
        return pool
    return [
        e for e in pool
        if needle in e.name.lower() or needle in e.category.lower()
    ]


def group_catalog(entries: Sequence[CatalogEntry]) -> List[Tuple[str, List[CatalogEntry]]]:
    """Entries bucketed by category, categories sorted alphabetically."""
    groups: Dict[str, List[CatalogEntry]] = {}
    for entry in entries:
        groups.setdefault(entry.category, []).append(entry)
    return [(category, groups[category]) for category in sorted(groups)]
