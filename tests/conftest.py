"""
Shared fixtures: a local stub status page served by aiohttp, and a
StatusClient factory with zero retry delays.
"""

from __future__ import annotations

import inspect
from collections import Counter
from contextlib import asynccontextmanager
from typing import Any, Dict

import aiohttp
import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from statuswatch.providers import StatusClient
from statuswatch.retry import RetryPolicy


class StubStatusPage:
    """
    Serves canned JSON per path.

    ``routes`` maps a path to a JSON-able body (served with 200), a
    ``(status, body)`` tuple, or a zero-arg callable (plain or async)
    returning either.
    String bodies are served as text/plain. Unknown paths return 404.
    ``routes`` can be edited between requests.
    """

    def __init__(self, routes: Dict[str, Any]) -> None:
        self.routes = dict(routes)
        self.hits: Counter = Counter()
        self.base_url = ""

    async def handle(self, request: web.Request) -> web.StreamResponse:
        self.hits[request.path] += 1
        entry = self.routes.get(request.path)
        if entry is None:
            return web.json_response({"error": "not found"}, status=404)
        if callable(entry):
            entry = entry()
            if inspect.isawaitable(entry):
                entry = await entry
        status, body = entry if isinstance(entry, tuple) else (200, entry)
        if isinstance(body, str):
            return web.Response(text=body, status=status)
        return web.json_response(body, status=status)


@pytest.fixture
def stub_page():
    @asynccontextmanager
    async def _serve(routes: Dict[str, Any]):
        page = StubStatusPage(routes)
        app = web.Application()
        app.router.add_route("GET", "/{tail:.*}", page.handle)
        async with TestServer(app) as server:
            page.base_url = f"http://{server.host}:{server.port}"
            yield page

    return _serve


@pytest.fixture
def make_client():
    def _make(session: aiohttp.ClientSession, attempts: int = 3) -> StatusClient:
        return StatusClient(
            session,
            retry=RetryPolicy(max_attempts=attempts, base_delay=0, max_delay=0),
            timeout=aiohttp.ClientTimeout(total=5),
        )

    return _make
