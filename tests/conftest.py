"""Shared fixtures: in-process HTTP sites served by aiohttp."""

import asyncio
import time
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from depthcrawler.utils.config import EngineConfig


@dataclass
class Page:
    body: bytes
    status: int = 200
    content_type: str = "text/html"
    delay: float = 0.0


class FakeSite:
    """A tiny web site with scripted pages that records every request."""

    def __init__(self):
        self.pages: Dict[str, Page] = {}
        self.requests: List[Tuple[str, float]] = []
        self.user_agents: List[Optional[str]] = []
        self.base_url: Optional[str] = None
        self.netloc: Optional[str] = None

    def add(self, path: str, body="", status: int = 200,
            content_type: str = "text/html", delay: float = 0.0):
        if isinstance(body, str):
            body = body.encode("utf-8")
        self.pages[path] = Page(body=body, status=status,
                                content_type=content_type, delay=delay)

    def add_links(self, path: str, *hrefs: str):
        anchors = "".join(f'<a href="{href}">link</a>' for href in hrefs)
        self.add(path, f"<html><body>{anchors}</body></html>")

    def url(self, path: str) -> str:
        return self.base_url.rstrip("/") + path

    def hits(self, path: str) -> List[float]:
        return [at for requested, at in self.requests if requested == path]

    async def handler(self, request: web.Request) -> web.StreamResponse:
        self.requests.append((request.path, time.monotonic()))
        self.user_agents.append(request.headers.get("User-Agent"))
        page = self.pages.get(request.path)
        if page is None:
            return web.Response(status=404, text="not found")
        if page.delay:
            await asyncio.sleep(page.delay)
        return web.Response(status=page.status, body=page.body,
                            content_type=page.content_type)


async def _serve(fake: FakeSite) -> TestServer:
    app = web.Application()
    app.router.add_route("*", "/{tail:.*}", fake.handler)
    server = TestServer(app)
    await server.start_server()
    base = server.make_url("/")
    fake.base_url = str(base)
    fake.netloc = f"{base.host}:{base.port}"
    return server


@pytest.fixture
async def site():
    fake = FakeSite()
    server = await _serve(fake)
    yield fake
    await server.close()


@pytest.fixture
async def other_site():
    fake = FakeSite()
    server = await _serve(fake)
    yield fake
    await server.close()


@pytest.fixture
def fast_config():
    """Engine settings with all pacing disabled."""
    return EngineConfig(
        worker_count=4,
        max_depth=2,
        request_delay=0.0,
        timeout=5.0,
        default_crawl_delay=0.0,
        robots_timeout=2.0,
        stats_interval=0.0,
    )
