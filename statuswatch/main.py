"""
Main entry point for the StatusWatch application.

Builds the shared aiohttp session, the source registry, the history store
and the StatusMonitor, then refreshes every source on a fixed interval
until interrupted. History is flushed to disk on shutdown.

Usage:
    python -m statuswatch.main
    statuswatch
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import sys
from datetime import datetime, timedelta, timezone
from typing import List, Optional

import aiohttp
from aiohttp import web

from statuswatch.config import load_config
from statuswatch.history import HistoryStore
from statuswatch.models import RefreshCompleted, Source, TrackerSettings
from statuswatch.monitor import StatusMonitor
from statuswatch.providers import StatusClient
from statuswatch.registry import SourceRegistry
from statuswatch.retry import RetryPolicy
from statuswatch import notifier

logger = logging.getLogger(__name__)


class StatusWatchApp:
    """
    Top-level application.

    Manages the lifecycle of the StatusMonitor, its history store and the
    shared aiohttp session.
    """

    def __init__(self, sources: List[Source], settings: TrackerSettings) -> None:
        self.settings = settings
        self.registry = SourceRegistry(sources)
        self.history = HistoryStore(
            settings.history_path,
            save_delay=settings.history_save_delay,
        )
        self.monitor: Optional[StatusMonitor] = None
        self._task: Optional[asyncio.Task] = None

    def _build_monitor(self, session: aiohttp.ClientSession) -> StatusMonitor:
        client = StatusClient(
            session,
            retry=RetryPolicy(
                max_attempts=self.settings.max_retries,
                base_delay=self.settings.retry_base_delay,
                max_delay=self.settings.retry_max_delay,
            ),
            timeout=aiohttp.ClientTimeout(
                total=self.settings.resource_timeout,
                sock_read=self.settings.request_timeout,
            ),
        )
        monitor = StatusMonitor(
            client,
            self.registry,
            self.history,
            retention=timedelta(days=self.settings.history_retention_days),
        )
        monitor.subscribe(notifier.ConsoleNotifier(self.settings.notifications_enabled))
        monitor.subscribe(self._print_states)
        return monitor

    def _print_states(self, event: object) -> None:
        if not isinstance(event, RefreshCompleted) or self.monitor is None:
            return
        for source in self.registry:
            notifier.print_source_state(source, self.monitor.state(source.id))

    async def run(self) -> None:
        """Refresh all sources until cancelled."""
        notifier.print_banner()
        notifier.print_monitoring_start(self.registry, self.settings.refresh_interval)
        self.history.load()

        # Shared session: one connection pool for all sources
        connector = aiohttp.TCPConnector(
            limit_per_host=self.settings.max_connections_per_host
        )
        async with aiohttp.ClientSession(connector=connector) as session:
            self.monitor = self._build_monitor(session)
            self._task = asyncio.create_task(
                self.monitor.run(self.settings.refresh_interval),
                name="statuswatch-refresh",
            )
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            except Exception as exc:
                notifier.print_error("refresh loop", str(exc) or type(exc).__name__)
                raise
            finally:
                await self.monitor.drain()
                self.history.flush()

    def shutdown(self) -> None:
        """Cancel the refresh loop."""
        if self._task is not None:
            self._task.cancel()


def _handle_signals(app: StatusWatchApp, loop: asyncio.AbstractEventLoop) -> None:
    """Register signal handlers for graceful shutdown."""
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, lambda: _do_shutdown(app))
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            pass


def _do_shutdown(app: StatusWatchApp) -> None:
    """Trigger graceful shutdown."""
    notifier.print_shutdown()
    app.shutdown()


def build_health_app(app: StatusWatchApp) -> web.Application:
    """Minimal health-check endpoints for hosted deployments."""

    async def index(_: web.Request) -> web.Response:
        monitor = app.monitor
        days = app.settings.history_retention_days
        cutoff = datetime.now(timezone.utc) - timedelta(days=days)
        sources = []
        for source in app.registry:
            state = monitor.state(source.id) if monitor else None
            window = app.history.checkpoints_since(source.id, cutoff)
            sources.append(
                {
                    "id": source.id,
                    "name": source.name,
                    "indicator": state.indicator if state else "unknown",
                    "stale": state.is_stale if state else False,
                    "error": state.last_error if state else None,
                    "uptime": round(app.history.uptime_fraction(source.id, cutoff), 4),
                    "checkpoints": len(window),
                }
            )
        return web.json_response(
            {
                "status": "running",
                "worst_indicator": monitor.worst_indicator if monitor else "unknown",
                "uptime_window_days": days,
                "sources": sources,
            }
        )

    async def health(_: web.Request) -> web.Response:
        return web.json_response({"status": "healthy"})

    health_app = web.Application()
    health_app.router.add_get("/", index)
    health_app.router.add_get("/health", health)
    return health_app


async def async_main() -> None:
    """Async entry point."""
    sources, settings = load_config()
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    app = StatusWatchApp(sources, settings)

    loop = asyncio.get_running_loop()
    _handle_signals(app, loop)

    port = int(os.environ.get("PORT", 10000))
    runner = web.AppRunner(build_health_app(app))
    await runner.setup()
    site = web.TCPSite(runner, "0.0.0.0", port)
    await site.start()

    try:
        await app.run()
    finally:
        await runner.cleanup()


def main() -> None:
    """Sync entry point."""
    try:
        asyncio.run(async_main())
    except KeyboardInterrupt:
        # Signal handler already printed shutdown message
        sys.exit(0)


if __name__ == "__main__":
    main()
