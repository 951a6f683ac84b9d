"""
YAML configuration loader.

Reads config.yaml and produces typed Source / TrackerSettings objects.
Falls back to sensible defaults if the config file is missing.
"""

from __future__ import annotations

import logging
import os
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from statuswatch.models import AlertLevel, Source, TrackerSettings, stable_source_id
from statuswatch.registry import parse_catalog, sources_from_json, validate_source_url

logger = logging.getLogger(__name__)

# Default path: config.yaml next to the project root
_DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent.parent / "config.yaml"

_CONFIG_ENV = "STATUSWATCH_CONFIG"

# Fallback if no config file exists at all
_DEFAULT_SOURCES = (
    ("Anthropic", "https://status.anthropic.com"),
    ("GitHub", "https://www.githubstatus.com"),
    ("Cloudflare", "https://www.cloudflarestatus.com"),
)


def default_sources() -> List[Source]:
    return [
        Source(name=name, base_url=url, id=stable_source_id(url), sort_order=i)
        for i, (name, url) in enumerate(_DEFAULT_SOURCES)
    ]


def _catalog_source(entry: Dict[str, Any], position: int) -> Optional[Source]:
    name = str(entry["catalog"])
    for service in parse_catalog():
        if service.name.lower() == name.strip().lower():
            return replace(
                service.to_source(),
                id=stable_source_id(service.url),
                alert_level=AlertLevel.parse(entry.get("alert_level", "all")),
                sort_order=position,
            )
    logger.warning("no catalog service named %r", name)
    return None


def _parse_source(entry: Dict[str, Any], position: int) -> Optional[Source]:
    if entry.get("catalog"):
        return _catalog_source(entry, position)
    name = str(entry.get("name") or "").strip()
    url = str(entry.get("url") or entry.get("base_url") or "").strip()
    ok, message = validate_source_url(url)
    if not name or not ok:
        logger.warning("skipping source %r: %s", name or url, message or "missing name")
        return None
    if message:
        logger.info("source %s: %s", name, message)
    return Source(
        id=str(entry.get("id") or stable_source_id(url)),
        name=name,
        base_url=url,
        alert_level=AlertLevel.parse(entry.get("alert_level", "all")),
        group=entry.get("group"),
        sort_order=position,
    )


def _parse_settings(raw: Dict[str, Any]) -> TrackerSettings:
    defaults = TrackerSettings()
    return TrackerSettings(
        log_level=str(raw.get("log_level", defaults.log_level)).upper(),
        refresh_interval=float(raw.get("refresh_interval", defaults.refresh_interval)),
        max_retries=int(raw.get("max_retries", defaults.max_retries)),
        retry_base_delay=float(raw.get("retry_base_delay", defaults.retry_base_delay)),
        retry_max_delay=float(raw.get("retry_max_delay", defaults.retry_max_delay)),
        request_timeout=float(raw.get("request_timeout", defaults.request_timeout)),
        resource_timeout=float(raw.get("resource_timeout", defaults.resource_timeout)),
        max_connections_per_host=int(
            raw.get("max_connections_per_host", defaults.max_connections_per_host)
        ),
        history_path=raw.get("history_path", defaults.history_path),
        history_retention_days=int(
            raw.get("history_retention_days", defaults.history_retention_days)
        ),
        history_save_delay=float(raw.get("history_save_delay", defaults.history_save_delay)),
        notifications_enabled=bool(
            raw.get("notifications_enabled", defaults.notifications_enabled)
        ),
    )


def load_config(
    path: str | Path | None = None,
) -> Tuple[List[Source], TrackerSettings]:
    """
    Load and parse the YAML configuration file.

    Resolution order for the path: argument, ``$STATUSWATCH_CONFIG``, then
    config.yaml at the project root.

    Returns:
        A tuple of (list of Source, TrackerSettings).
    """
    env_path = os.environ.get(_CONFIG_ENV)
    config_path = Path(path) if path else Path(env_path) if env_path else _DEFAULT_CONFIG_PATH

    if not config_path.exists():
        print(f"⚠  Config file not found at {config_path}, using defaults.")
        return default_sources(), TrackerSettings()

    with open(config_path, "r") as fh:
        raw = yaml.safe_load(fh) or {}

    # Parse sources
    sources: List[Source] = []
    seen: set = set()
    for entry in raw.get("sources") or []:
        if not isinstance(entry, dict):
            continue
        source = _parse_source(entry, len(sources))
        if source is not None and source.id not in seen:
            seen.add(source.id)
            sources.append(source)

    sources_file = raw.get("sources_file")
    if sources_file:
        file_path = (config_path.parent / Path(sources_file).expanduser()).resolve()
        try:
            imported = sources_from_json(file_path.read_text(encoding="utf-8"))
        except OSError as exc:
            logger.warning("could not read sources file %s: %s", file_path, exc)
            imported = []
        for source in imported:
            if source.id not in seen:
                seen.add(source.id)
                sources.append(source)

    if not sources:
        sources = default_sources()

    settings = _parse_settings(raw.get("settings") or {})
    return sources, settings
