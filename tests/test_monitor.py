"""
Tests for the refresh orchestrator.

Each test runs the monitor against local stub status pages, so provider
detection, retries and decoding all take the real code path.
"""

import asyncio
import copy

import aiohttp
import pytest

from statuswatch.history import HistoryStore
from statuswatch.models import (
    HOOK_SOURCE_ADD,
    HOOK_SOURCE_REMOVE,
    Provider,
    RefreshCompleted,
    Source,
    SourceChanged,
    TransitionEvent,
    TransitionKind,
)
from statuswatch.monitor import StatusMonitor
from statuswatch.providers import INCIDENTS_PATH, SUMMARY_PATH
from statuswatch.registry import CatalogEntry, SourceRegistry

from tests.test_normalize import ATLASSIAN_SUMMARY, INCIDENTS_RESPONSE

UNREACHABLE = "http://127.0.0.1:9"


def _summary_with(indicator):
    data = copy.deepcopy(ATLASSIAN_SUMMARY)
    data["status"]["indicator"] = indicator
    return data


def _atlassian_routes(indicator="minor"):
    return {SUMMARY_PATH: _summary_with(indicator), INCIDENTS_PATH: INCIDENTS_RESPONSE}


def _monitor(session, make_client, *sources):
    monitor = StatusMonitor(
        make_client(session, attempts=2),
        SourceRegistry(sources),
        HistoryStore(),
    )
    events = []
    monitor.subscribe(events.append)
    return monitor, events


def _of_type(events, kind):
    return [e for e in events if isinstance(e, kind)]


class TestRefresh:
    @pytest.mark.asyncio
    async def test_successful_refresh(self, stub_page, make_client):
        async with stub_page(_atlassian_routes("minor")) as page:
            source = Source(name="GitHub", base_url=page.base_url)
            async with aiohttp.ClientSession() as session:
                monitor, events = _monitor(session, make_client, source)
                completed = await monitor.refresh_all()

        state = monitor.state(source.id)
        assert state.indicator == "minor"
        assert state.provider is Provider.ATLASSIAN
        assert state.recent_incidents[0].id == "inc0"
        assert state.last_error is None
        assert not state.is_loading
        assert not state.is_stale
        assert state.last_refresh == state.last_successful_refresh
        assert monitor.cached_provider(source.id) is Provider.ATLASSIAN
        assert [c.indicator for c in monitor.history.data[source.id]] == ["minor"]

        assert completed.source_count == 1
        assert completed.worst_indicator == "minor"
        assert _of_type(events, RefreshCompleted) == [completed]
        # First observation of a non-operational page is an incident.
        transitions = _of_type(events, TransitionEvent)
        assert [t.kind for t in transitions] == [TransitionKind.INCIDENT]
        assert events[-1] is completed

    @pytest.mark.asyncio
    async def test_provider_is_memoized(self, stub_page, make_client):
        async with stub_page(_atlassian_routes("none")) as page:
            source = Source(name="GitHub", base_url=page.base_url)
            async with aiohttp.ClientSession() as session:
                monitor, _ = _monitor(session, make_client, source)
                await monitor.refresh_all()
                await monitor.refresh_all()
        # One detection probe plus one summary fetch per cycle.
        assert page.hits[SUMMARY_PATH] == 3

    @pytest.mark.asyncio
    async def test_failure_is_isolated(self, stub_page, make_client):
        async with stub_page(_atlassian_routes("none")) as page:
            good = Source(name="Good", base_url=page.base_url)
            bad = Source(name="Bad", base_url=UNREACHABLE)
            async with aiohttp.ClientSession() as session:
                monitor, events = _monitor(session, make_client, bad, good)
                completed = await monitor.refresh_all()

        assert monitor.state(good.id).indicator == "none"
        assert monitor.state(good.id).last_error is None

        failed = monitor.state(bad.id)
        assert failed.summary is None
        assert failed.last_error
        assert failed.last_refresh is not None
        assert failed.last_successful_refresh is None
        assert not failed.is_stale
        assert monitor.cached_provider(bad.id) is None

        assert completed.source_count == 2
        assert len(_of_type(events, RefreshCompleted)) == 1

    @pytest.mark.asyncio
    async def test_failure_keeps_previous_summary(self, stub_page, make_client):
        async with stub_page(_atlassian_routes("none")) as page:
            source = Source(name="GitHub", base_url=page.base_url)
            async with aiohttp.ClientSession() as session:
                monitor, events = _monitor(session, make_client, source)
                await monitor.refresh_all()
                first_success = monitor.state(source.id).last_successful_refresh

                page.routes[SUMMARY_PATH] = (500, "down")
                await monitor.refresh_all()

        state = monitor.state(source.id)
        assert state.is_stale
        assert state.indicator == "none"
        assert state.last_error
        assert state.last_successful_refresh == first_success
        assert state.last_refresh > first_success
        assert monitor.cached_provider(source.id) is None
        assert _of_type(events, TransitionEvent) == []

    @pytest.mark.asyncio
    async def test_recovery_after_stale(self, stub_page, make_client):
        async with stub_page(_atlassian_routes("major")) as page:
            source = Source(name="GitHub", base_url=page.base_url)
            async with aiohttp.ClientSession() as session:
                monitor, events = _monitor(session, make_client, source)
                await monitor.refresh_all()
                page.routes[SUMMARY_PATH] = (500, "down")
                await monitor.refresh_all()
                page.routes[SUMMARY_PATH] = _summary_with("none")
                await monitor.refresh_all()

        kinds = [t.kind for t in _of_type(events, TransitionEvent)]
        assert kinds == [TransitionKind.INCIDENT, TransitionKind.RECOVERED]
        assert not monitor.state(source.id).is_stale

    @pytest.mark.asyncio
    async def test_removed_mid_flight_is_discarded(self, stub_page, make_client):
        holder = {}

        def incidents_then_remove():
            monitor = holder["monitor"]
            monitor.remove_source(holder["id"])
            return INCIDENTS_RESPONSE

        routes = {SUMMARY_PATH: _summary_with("major"), INCIDENTS_PATH: incidents_then_remove}
        async with stub_page(routes) as page:
            source = Source(name="GitHub", base_url=page.base_url)
            async with aiohttp.ClientSession() as session:
                monitor, events = _monitor(session, make_client, source)
                holder.update(monitor=monitor, id=source.id)
                await monitor.refresh_all()

        assert source.id not in monitor.states
        assert monitor.cached_provider(source.id) is None
        assert monitor.detector.previous(source.id) is None
        assert source.id not in monitor.history.data
        assert _of_type(events, TransitionEvent) == []

    @pytest.mark.asyncio
    async def test_rename_mid_flight_uses_new_name(self, stub_page, make_client):
        holder = {}

        def incidents_then_rename():
            holder["monitor"].registry.rename(holder["id"], "Renamed")
            return INCIDENTS_RESPONSE

        routes = {SUMMARY_PATH: _summary_with("major"), INCIDENTS_PATH: incidents_then_rename}
        async with stub_page(routes) as page:
            source = Source(name="GitHub", base_url=page.base_url)
            async with aiohttp.ClientSession() as session:
                monitor, events = _monitor(session, make_client, source)
                holder.update(monitor=monitor, id=source.id)
                await monitor.refresh_all()

        (event,) = _of_type(events, TransitionEvent)
        assert event.source_name == "Renamed"


def _slow(status, body, delay):
    async def respond():
        await asyncio.sleep(delay)
        return status, body

    return respond


class TestRefreshBarrier:
    @pytest.mark.asyncio
    async def test_failed_leg_cancels_sibling(self, stub_page, make_client):
        routes = {
            SUMMARY_PATH: (500, "down"),
            INCIDENTS_PATH: _slow(500, "down", 0.3),
        }
        async with stub_page(routes) as page:
            source = Source(name="GitHub", base_url=page.base_url)
            async with aiohttp.ClientSession() as session:
                monitor = StatusMonitor(
                    make_client(session, attempts=3), SourceRegistry([source])
                )
                monitor._providers[source.id] = Provider.ATLASSIAN
                await monitor.refresh_all()
                hits_at_barrier = page.hits[INCIDENTS_PATH]

                await asyncio.sleep(1.0)
                assert page.hits[INCIDENTS_PATH] == hits_at_barrier

        assert hits_at_barrier == 1
        assert monitor.state(source.id).last_error

    @pytest.mark.asyncio
    async def test_slow_failure_does_not_delay_healthy_source(self, stub_page, make_client):
        slow_routes = {
            SUMMARY_PATH: _slow(500, "down", 0.6),
            INCIDENTS_PATH: _slow(500, "down", 0.6),
        }
        async with stub_page(slow_routes) as slow_page:
            async with stub_page(_atlassian_routes("none")) as ok_page:
                slow = Source(name="Slow", base_url=slow_page.base_url)
                ok = Source(name="Ok", base_url=ok_page.base_url)
                async with aiohttp.ClientSession() as session:
                    monitor, events = _monitor(session, make_client, slow, ok)
                    monitor._providers[slow.id] = Provider.ATLASSIAN
                    refresh = asyncio.ensure_future(monitor.refresh_all())

                    await asyncio.sleep(0.3)
                    assert monitor.state(ok.id).indicator == "none"
                    assert not monitor.state(ok.id).is_loading
                    assert monitor.state(slow.id).is_loading
                    assert _of_type(events, RefreshCompleted) == []

                    completed = await refresh

        assert monitor.state(slow.id).last_error
        assert not monitor.state(slow.id).is_loading
        assert completed.source_count == 2
        assert _of_type(events, RefreshCompleted) == [completed]


class TestSubscribers:
    @pytest.mark.asyncio
    async def test_failing_subscriber_does_not_break_others(self, stub_page, make_client):
        received = []

        def broken(event):
            raise RuntimeError("subscriber bug")

        async def async_subscriber(event):
            received.append(event)

        async with stub_page(_atlassian_routes("none")) as page:
            source = Source(name="GitHub", base_url=page.base_url)
            async with aiohttp.ClientSession() as session:
                monitor, events = _monitor(session, make_client, source)
                monitor._subscribers.insert(0, broken)
                monitor.subscribe(async_subscriber)
                await monitor.refresh_all()
                await monitor.drain()

        assert len(_of_type(events, RefreshCompleted)) == 1
        assert len(_of_type(received, RefreshCompleted)) == 1


class TestSourceManagement:
    @pytest.mark.asyncio
    async def test_remove_cascades(self, stub_page, make_client):
        async with stub_page(_atlassian_routes("minor")) as page:
            source = Source(name="GitHub", base_url=page.base_url)
            async with aiohttp.ClientSession() as session:
                monitor, events = _monitor(session, make_client, source)
                await monitor.refresh_all()
                monitor.remove_source(source.id)

        assert source.id not in monitor.registry
        assert source.id not in monitor.states
        assert monitor.cached_provider(source.id) is None
        assert monitor.detector.previous(source.id) is None
        assert source.id not in monitor.history.data
        (changed,) = _of_type(events, SourceChanged)
        assert changed.hook_event == HOOK_SOURCE_REMOVE

    def test_add_emits_event(self):
        monitor = StatusMonitor(client=None)
        events = []
        monitor.subscribe(events.append)
        added = monitor.add_source(Source(name="A", base_url="https://a.example.com"))
        assert added.id in monitor.registry
        assert events[0].hook_event == HOOK_SOURCE_ADD

    def test_add_catalog_entry(self):
        monitor = StatusMonitor(client=None)
        events = []
        monitor.subscribe(events.append)
        entry = CatalogEntry("Stripe", "https://status.stripe.com", "Payments")

        added = monitor.add_catalog_entry(entry)
        assert added.name == "Stripe"
        assert added.group == "Payments"
        assert monitor.registry.groups() == ["Payments"]

        again = monitor.add_catalog_entry(entry)
        assert again.id == added.id
        assert len(monitor.registry) == 1
        assert [e.hook_event for e in events] == [HOOK_SOURCE_ADD]

    def test_apply_sources(self):
        a = Source(name="A", base_url="https://a.example.com")
        b = Source(name="B", base_url="https://b.example.com")
        monitor = StatusMonitor(client=None, registry=SourceRegistry([a, b]))
        events = []
        monitor.subscribe(events.append)

        monitor.apply_sources([])
        assert monitor.registry.ids == [a.id, b.id]

        monitor.apply_sources([b])
        assert monitor.registry.ids == [b.id]
        assert [(e.source.id, e.hook_event) for e in events] == [(a.id, HOOK_SOURCE_REMOVE)]


class TestAggregates:
    @pytest.mark.asyncio
    async def test_worst_and_issue_count(self, stub_page, make_client):
        async with stub_page(_atlassian_routes("major")) as bad_page:
            async with stub_page(_atlassian_routes("none")) as ok_page:
                sources = [
                    Source(name="Bad", base_url=bad_page.base_url),
                    Source(name="Ok", base_url=ok_page.base_url),
                    Source(name="Down", base_url=UNREACHABLE),
                ]
                async with aiohttp.ClientSession() as session:
                    monitor, _ = _monitor(session, make_client, *sources)
                    await monitor.refresh_all()

        assert monitor.worst_indicator == "major"
        assert monitor.issue_count == 1
        assert not monitor.any_loading

    def test_empty_monitor(self):
        monitor = StatusMonitor(client=None)
        assert monitor.worst_indicator == "none"
        assert monitor.issue_count == 0
        assert monitor.state("missing").indicator == "unknown"
