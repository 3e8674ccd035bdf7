# File: tests/conftest.py
from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from typing import Callable, Dict

import pytest
import pytest_asyncio
from aiohttp import web

#: handler sleep used by timeout tests
SLOW_SLEEP: float = 1.0


async def _serve_app(app: web.Application, port: int) -> AsyncIterator[str]:
    """Start *app* on *port*, yield base URL, ensure cleanup."""
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, "127.0.0.1", port)
    await site.start()
    try:
        yield f"http://127.0.0.1:{port}"
    finally:
        await runner.cleanup()


def html(body: str) -> web.Response:
    return web.Response(text=f"<html><body>{body}</body></html>", content_type="text/html")


def build_site_app() -> web.Application:
    """Small site: pages, assets, a redirect, an error page and a slow page."""
    app = web.Application()

    async def handle_root(_):
        return html(
            '<a href="/about">About</a>'
            '<a href="/blog/">Blog</a>'
            '<img src="/images/logo.png">'
            '<link rel="stylesheet" href="/styles.css">'
            '<a href="https://external.example/x">Ext</a>'
            '<a href="mailto:team@example.com">Mail</a>'
        )

    async def handle_about(_):
        return html('<a href="/">Home</a><a href="/about/team">Team</a>')

    async def handle_team(_):
        return html("<h1>Team</h1>")

    async def handle_blog(_):
        return html('<a href="/blog/post-1?b=2&a=1#top">Post</a>')

    async def handle_post(_):
        return html("<h1>Post</h1>")

    async def handle_logo(_):
        return web.Response(body=b"\x89PNG\r\n", content_type="image/png")

    async def handle_css(_):
        return web.Response(text="body{color:red}", content_type="text/css")

    async def handle_old(_):
        raise web.HTTPMovedPermanently("/about")

    async def handle_broken(_):
        return web.Response(status=500, text="boom")

    async def handle_slow(_):
        await asyncio.sleep(SLOW_SLEEP)
        return html("slow")

    async def handle_agent(request):
        return web.Response(text=request.headers.get("User-Agent", ""), content_type="text/plain")

    app.router.add_get("/", handle_root)
    app.router.add_get("/about", handle_about)
    app.router.add_get("/about/team", handle_team)
    app.router.add_get("/blog/", handle_blog)
    app.router.add_get("/blog/post-1", handle_post)
    app.router.add_get("/images/logo.png", handle_logo)
    app.router.add_get("/styles.css", handle_css)
    app.router.add_get("/old", handle_old)
    app.router.add_get("/broken", handle_broken)
    app.router.add_get("/slow", handle_slow)
    app.router.add_get("/agent", handle_agent)
    return app


@pytest_asyncio.fixture
async def site_server(unused_tcp_port: int) -> AsyncIterator[str]:
    async for url in _serve_app(build_site_app(), unused_tcp_port):
        yield url


@pytest_asyncio.fixture
async def about_server(unused_tcp_port: int) -> AsyncIterator[str]:
    """Server whose root page links to a single ``/about`` page."""
    app = web.Application()

    async def handle_root(_):
        return web.Response(text='<html><a href="/about">About</a></html>', content_type="text/html")

    async def handle_about(_):
        return web.Response(text="<html>About</html>", content_type="text/html")

    app.router.add_get("/", handle_root)
    app.router.add_get("/about", handle_about)

    async for url in _serve_app(app, unused_tcp_port):
        yield url


@pytest_asyncio.fixture
async def quirks_server(unused_tcp_port: int) -> AsyncIterator[tuple[str, Dict[str, int]]]:
    """Server with a self-linking redirect target and an unknown charset; yields (url, hits)."""
    hits: Dict[str, int] = {}
    app = web.Application()

    @web.middleware
    async def count_hits(request, handler):
        hits[request.path] = hits.get(request.path, 0) + 1
        return await handler(request)

    app.middlewares.append(count_hits)

    async def handle_blog_redirect(_):
        raise web.HTTPMovedPermanently("/blog/")

    async def handle_blog(_):
        return html('<a href="/blog/">Blog</a><a href="/b">B</a>')

    async def handle_bogus(_):
        return web.Response(
            body=b'<html><body><a href="/b">B</a></body></html>',
            headers={"Content-Type": "text/html; charset=x-bogus"},
        )

    async def handle_b(_):
        return html("<p>b</p>")

    app.router.add_get("/blog", handle_blog_redirect)
    app.router.add_get("/blog/", handle_blog)
    app.router.add_get("/bogus", handle_bogus)
    app.router.add_get("/b", handle_b)

    async for url in _serve_app(app, unused_tcp_port):
        yield url, hits


def make_boot(app_factory: Callable[[], web.Application] = build_site_app):
    """Boot function in the shape the crawler expects: ``boot(port=...)``."""

    async def boot(*, port: int):
        runner = web.AppRunner(app_factory())
        await runner.setup()
        await web.TCPSite(runner, "127.0.0.1", port).start()
        return runner.cleanup

    return boot


def make_resolver(pages: Dict[str, str], calls: Dict[str, int] | None = None):
    """Resolver answering from a ``path -> html`` mapping; unknown paths are 404."""

    async def resolver(path: str):
        if calls is not None:
            calls[path] = calls.get(path, 0) + 1
        if path not in pages:
            return web.Response(status=404, text="not found")
        return web.Response(text=pages[path], content_type="text/html")

    return resolver


@pytest.fixture()
def boot_function():
    return make_boot()
