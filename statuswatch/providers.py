"""
Provider detection and per-provider fetching.

A source is probed once at ``/api/v2/summary.json`` and classified as one
of four Provider variants; each variant has one fetch function that
returns the normalized Summary plus recent incidents. Every individual
HTTP request goes through the retry policy on its own, so the two legs
of an Atlassian fetch retry independently.

All requests share one aiohttp session (and its connection pool).
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

import aiohttp

import statuswatch
from statuswatch.models import Component, Incident, Provider, Summary
from statuswatch.normalize import (
    DecodeError,
    decode_atlassian_incidents,
    decode_atlassian_summary,
    decode_instatus_components,
    decode_instatus_summary,
    normalize_incident_io,
    normalize_instatus,
)
from statuswatch.retry import RetryPolicy

logger = logging.getLogger(__name__)

SUMMARY_PATH = "/api/v2/summary.json"
INCIDENTS_PATH = "/api/v2/incidents.json"
COMPONENTS_PATH = "/api/v2/components.json"
WIDGET_PATH = "/proxy/widget"

_NETWORK_ERRORS = (aiohttp.ClientError, asyncio.TimeoutError)

Normalized = Tuple[Summary, List[Incident]]


@dataclass(frozen=True)
class FetchResult:
    """Outcome of one successful provider fetch."""

    provider: Provider
    summary: Summary
    incidents: List[Incident] = field(default_factory=list)


class StatusClient:
    """
    Retried JSON GETs over a shared aiohttp session.

    Attributes:
        session: The shared, connection-pooled client session.
        retry: Backoff policy applied to every request.
        timeout: Per-request timeout, independent of the backoff.
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        retry: Optional[RetryPolicy] = None,
        timeout: Optional[aiohttp.ClientTimeout] = None,
    ) -> None:
        self.session = session
        self.retry = retry or RetryPolicy()
        self.timeout = timeout or aiohttp.ClientTimeout(total=30, sock_read=15)
        self._headers = {
            "Accept": "application/json",
            "User-Agent": f"statuswatch/{statuswatch.__version__}",
        }

    async def _request(self, url: str) -> Tuple[int, bytes]:
        async with self.session.get(
            url, headers=self._headers, timeout=self.timeout
        ) as resp:
            return resp.status, await resp.read()

    async def probe(self, url: str) -> Tuple[int, bytes]:
        """GET without status checking; retried on network errors only."""
        return await self.retry.run(lambda: self._request(url))

    async def fetch_once(self, url: str) -> Any:
        """One un-retried GET; raises on non-2xx or invalid JSON."""
        async with self.session.get(
            url, headers=self._headers, timeout=self.timeout
        ) as resp:
            resp.raise_for_status()
            return await resp.json(content_type=None)

    async def get_json(self, url: str) -> Any:
        """Retried GET of a JSON document."""
        return await self.retry.run(lambda: self.fetch_once(url))


# ─── Detection ────────────────────────────────────────────────


def classify_summary(status: int, body: bytes) -> Provider:
    """
    Classify a summary probe response.

    Atlassian-shaped bodies are genuine Atlassian pages only when the page
    carries ``time_zone``; incident.io's compatibility shim omits it.
    Anything unrecognized falls back to the incident.io widget.
    """
    if status != 200:
        return Provider.INCIDENT_IO
    try:
        data = json.loads(body)
    except ValueError:
        return Provider.INCIDENT_IO

    try:
        summary = decode_atlassian_summary(data)
    except DecodeError:
        pass
    else:
        if summary.page.time_zone is not None:
            return Provider.ATLASSIAN
        return Provider.INCIDENT_IO_COMPAT

    try:
        decode_instatus_summary(data)
    except DecodeError:
        return Provider.INCIDENT_IO
    return Provider.INSTATUS


async def detect_provider(client: StatusClient, base_url: str) -> Provider:
    """Probe ``base_url`` once and classify it. Never raises on I/O errors."""
    try:
        status, body = await client.probe(base_url + SUMMARY_PATH)
    except _NETWORK_ERRORS as exc:
        logger.debug("summary probe failed for %s: %s", base_url, exc)
        return Provider.INCIDENT_IO
    provider = classify_summary(status, body)
    logger.debug("detected %s for %s", provider.value, base_url)
    return provider


# ─── Fetchers ─────────────────────────────────────────────────


async def _gather_legs(*legs: Awaitable[Any]) -> List[Any]:
    """
    Await every leg concurrently; if one fails, cancel and reap the rest.

    No leg outlives the call, so a failed fetch leaves nothing running on
    the shared session.
    """
    tasks = [asyncio.ensure_future(leg) for leg in legs]
    try:
        return list(await asyncio.gather(*tasks))
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


async def fetch_atlassian(client: StatusClient, base_url: str) -> Normalized:
    summary_data, incidents_data = await _gather_legs(
        client.get_json(base_url + SUMMARY_PATH),
        client.get_json(base_url + INCIDENTS_PATH),
    )
    return (
        decode_atlassian_summary(summary_data),
        decode_atlassian_incidents(incidents_data),
    )


async def fetch_incident_io(client: StatusClient, base_url: str) -> Normalized:
    data = await client.get_json(base_url + WIDGET_PATH)
    return normalize_incident_io(data, base_url)


async def _instatus_components(client: StatusClient, base_url: str) -> List[Component]:
    """Best-effort component tree; any failure yields no components."""
    try:
        data = await client.fetch_once(base_url + COMPONENTS_PATH)
        return decode_instatus_components(data)
    except (*_NETWORK_ERRORS, ValueError) as exc:
        logger.debug("no instatus components for %s: %s", base_url, exc)
        return []


async def fetch_instatus(client: StatusClient, base_url: str) -> Normalized:
    data = await client.get_json(base_url + SUMMARY_PATH)
    page = decode_instatus_summary(data)
    components = await _instatus_components(client, base_url)
    return normalize_instatus(page, components, base_url), []


Fetcher = Callable[[StatusClient, str], Awaitable[Normalized]]

FETCHERS: Dict[Provider, Fetcher] = {
    Provider.ATLASSIAN: fetch_atlassian,
    Provider.INCIDENT_IO_COMPAT: fetch_atlassian,
    Provider.INCIDENT_IO: fetch_incident_io,
    Provider.INSTATUS: fetch_instatus,
}


async def fetch_status(
    client: StatusClient, provider: Provider, base_url: str
) -> FetchResult:
    """
    Fetch and normalize ``base_url`` as ``provider``.

    Raises:
        aiohttp.ClientError, asyncio.TimeoutError: After retries are spent.
        DecodeError: If the body does not match the provider's shape.
    """
    summary, incidents = await FETCHERS[provider](client, base_url)
    return FetchResult(provider, summary, incidents)
