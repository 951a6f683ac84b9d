"""
Refresh orchestrator: the core engine.

StatusMonitor owns all mutable per-source state (states, provider memo,
previous indicators, history) and is driven from a single asyncio event
loop. Fetches for different sources run concurrently; every write to
shared state happens between awaits on that loop, so writes are
serialized without locks.

Failure handling:
  - A per-source failure is caught at the refresh boundary and recorded
    on the source's state (``last_error``, ``is_stale``); the previous
    Summary is kept.
  - A failed fetch clears the provider memo so the next cycle re-detects.
  - A refresh whose source was removed mid-flight is discarded.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Sequence, Set, Union

from statuswatch.history import DEFAULT_RETENTION_DAYS, HistoryStore
from statuswatch.models import (
    HOOK_SOURCE_ADD,
    HOOK_SOURCE_REMOVE,
    Provider,
    RefreshCompleted,
    Source,
    SourceChanged,
    SourceState,
    TransitionEvent,
    UNKNOWN_INDICATOR,
    worst_indicator,
)
from statuswatch.providers import FetchResult, StatusClient, detect_provider, fetch_status
from statuswatch.registry import CatalogEntry, SourceRegistry
from statuswatch.transitions import TransitionDetector

logger = logging.getLogger(__name__)

MonitorEvent = Union[TransitionEvent, RefreshCompleted, SourceChanged]
Subscriber = Callable[[MonitorEvent], object]


class StatusMonitor:
    """
    Refreshes every registered source and fans out the resulting events.

    Attributes:
        client: Shared HTTP client used for detection and fetching.
        registry: The monitored sources.
        history: Checkpoint store, or None to skip history.
        states: Latest known health, keyed by source id.
    """

    def __init__(
        self,
        client: StatusClient,
        registry: Optional[SourceRegistry] = None,
        history: Optional[HistoryStore] = None,
        retention: timedelta = timedelta(days=DEFAULT_RETENTION_DAYS),
    ) -> None:
        self.client = client
        self.registry = registry if registry is not None else SourceRegistry()
        self.history = history
        self.retention = retention
        self.states: Dict[str, SourceState] = {}
        self.detector = TransitionDetector()

        self._providers: Dict[str, Provider] = {}
        self._subscribers: List[Subscriber] = []
        self._pending: Set[asyncio.Future] = set()

    # ── Subscribers ───────────────────────────────────────

    def subscribe(self, callback: Subscriber) -> None:
        """
        Register a collaborator for every emitted event.

        Callbacks may be plain functions or coroutine functions; coroutines
        are scheduled fire-and-forget.
        """
        self._subscribers.append(callback)

    def _emit(self, event: MonitorEvent) -> None:
        for callback in list(self._subscribers):
            try:
                outcome = callback(event)
            except Exception:
                logger.exception("subscriber %r failed on %s", callback, type(event).__name__)
                continue
            if inspect.isawaitable(outcome):
                future = asyncio.ensure_future(outcome)
                self._pending.add(future)
                future.add_done_callback(self._subscriber_done)

    def _subscriber_done(self, future: asyncio.Future) -> None:
        self._pending.discard(future)
        if not future.cancelled() and future.exception() is not None:
            logger.error("async subscriber failed", exc_info=future.exception())

    async def drain(self) -> None:
        """Wait for in-flight async subscribers (shutdown / tests)."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # ── Queries ───────────────────────────────────────────

    def state(self, source_id: str) -> SourceState:
        return self.states.get(source_id) or SourceState()

    def cached_provider(self, source_id: str) -> Optional[Provider]:
        return self._providers.get(source_id)

    @property
    def worst_indicator(self) -> str:
        return worst_indicator(s.indicator for s in self.states.values())

    @property
    def issue_count(self) -> int:
        return sum(
            1
            for s in self.states.values()
            if s.indicator not in ("none", UNKNOWN_INDICATOR)
        )

    @property
    def any_loading(self) -> bool:
        return any(s.is_loading for s in self.states.values())

    # ── Refresh ───────────────────────────────────────────

    async def refresh(self, source: Source) -> None:
        """Refresh one source. Never raises for fetch/decode failures."""
        state = self.states.setdefault(source.id, SourceState())
        state.is_loading = True
        state.last_error = None

        try:
            provider = self._providers.get(source.id)
            if provider is None:
                provider = await detect_provider(self.client, source.base_url)
                if self._is_current(source.id, state):
                    self._providers[source.id] = provider
            result = await fetch_status(self.client, provider, source.base_url)
        except Exception as exc:
            if not self._is_current(source.id, state):
                logger.debug("discarding failed refresh of removed source %s", source.name)
                return
            self._providers.pop(source.id, None)
            state.last_error = str(exc) or type(exc).__name__
            state.last_refresh = datetime.now(timezone.utc)
            if state.summary is not None:
                state.is_stale = True
            logger.warning("%s: refresh failed: %s", source.name, state.last_error)
        else:
            if not self._is_current(source.id, state):
                logger.debug("discarding refresh of removed source %s", source.name)
                return
            self._apply(source.id, state, result)
        finally:
            state.is_loading = False

    def _is_current(self, source_id: str, state: SourceState) -> bool:
        return self.states.get(source_id) is state and source_id in self.registry

    def _apply(self, source_id: str, state: SourceState, result: FetchResult) -> None:
        # Use the registry's copy: the source may have been renamed mid-flight.
        source = self.registry.get(source_id)
        assert source is not None

        now = datetime.now(timezone.utc)
        state.summary = result.summary
        state.recent_incidents = list(result.incidents)
        state.provider = result.provider
        state.last_refresh = now
        state.last_successful_refresh = now
        state.is_stale = False

        event = self.detector.observe(source, result.summary)
        if self.history is not None:
            self.history.record(source_id, result.summary.indicator, at=now)
        if event is not None:
            logger.info("%s: %s (%s)", source.name, event.kind.value, event.indicator)
            self._emit(event)

    async def refresh_all(self) -> RefreshCompleted:
        """
        Refresh every registered source concurrently.

        Returns once every per-source refresh has finished; only then is
        the RefreshCompleted event emitted.
        """
        sources = list(self.registry)
        outcomes = await asyncio.gather(
            *(self.refresh(s) for s in sources),
            return_exceptions=True,
        )
        for source, outcome in zip(sources, outcomes):
            if isinstance(outcome, BaseException):
                logger.error("unexpected error refreshing %s", source.name, exc_info=outcome)

        if self.history is not None:
            self.history.prune_older_than(datetime.now(timezone.utc) - self.retention)

        completed = RefreshCompleted(
            source_count=len(sources),
            worst_indicator=self.worst_indicator,
        )
        self._emit(completed)
        return completed

    async def run(self, interval: float) -> None:
        """Refresh everything every ``interval`` seconds until cancelled."""
        while True:
            await self.refresh_all()
            await asyncio.sleep(interval)

    # ── Source management ─────────────────────────────────

    def add_source(self, source: Source) -> Source:
        added = self.registry.add(source)
        self._emit(SourceChanged(added, HOOK_SOURCE_ADD))
        return added

    def add_catalog_entry(self, entry: CatalogEntry) -> Source:
        """
        Add a catalog service, grouped under its category.

        A service whose URL is already monitored is returned as is.
        """
        existing = self.registry.find_by_url(entry.url)
        if existing is not None:
            return existing
        return self.add_source(entry.to_source())

    def remove_source(self, source_id: str) -> Source:
        """Remove a source and everything kept about it."""
        removed = self.registry.remove(source_id)
        self._forget(source_id)
        self._emit(SourceChanged(removed, HOOK_SOURCE_REMOVE))
        return removed

    def apply_sources(self, sources: Sequence[Source]) -> None:
        """Replace the source list, dropping data for ids no longer present."""
        if not sources:
            return
        keep = {s.id for s in sources}
        dropped = [s for s in self.registry if s.id not in keep]
        self.registry.replace_all(sources)
        for source in dropped:
            self._forget(source.id)
            self._emit(SourceChanged(source, HOOK_SOURCE_REMOVE))

    def _forget(self, source_id: str) -> None:
        self.states.pop(source_id, None)
        self._providers.pop(source_id, None)
        self.detector.forget(source_id)
        if self.history is not None:
            self.history.remove_source(source_id)
