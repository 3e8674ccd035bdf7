# File: tests/test_crawler.py
# Test-suite for the SiteSnapshot crawler
from __future__ import annotations

import asyncio

import pytest

from conftest import make_boot, make_resolver
from site_snapshot.config import SnapshotConfig
from site_snapshot.crawler.crawler import RESOLVER_ORIGIN, Crawler, CrawlerState
from site_snapshot.crawler.discovery import DiscoveryPolicy
from site_snapshot.crawler.resource import Resource
from site_snapshot.crawler.server import Server
from site_snapshot.errors import (
    AlreadyStartedError,
    CrawlInProgressError,
    NotStartedError,
    ServerDiedError,
)

CHAIN = {
    "/": '<a href="/a">a</a>',
    "/a": '<a href="/b">b</a>',
    "/b": '<a href="/c">c</a>',
    "/c": "<p>end</p>",
}


def paths(resources) -> set[str]:
    return {r.url.split("localhost:0", 1)[1] for r in resources}


# --------------------------------------------------------------------------- #
#                             End-to-end scenarios                            #
# --------------------------------------------------------------------------- #


@pytest.mark.asyncio()
async def test_single_resource_budget(about_server: str):
    async with Crawler(SnapshotConfig(server=about_server, routes=["/"])) as crawler:
        resources = await crawler.crawl(max_resources=1)

    assert crawler.frontier_stats() == {"discovered": 1, "crawled": 1, "failed": 0, "total": 2}
    assert len(resources) == 1
    assert len(crawler.html_resources()) == 1
    assert crawler.frontier.is_pending(f"{about_server}/about")


@pytest.mark.asyncio()
async def test_discovery_disabled(about_server: str):
    config = SnapshotConfig(server=about_server, routes=["/"], discover=False)
    async with Crawler(config) as crawler:
        await crawler.crawl(max_resources=1)

    assert crawler.frontier_stats() == {"discovered": 0, "crawled": 1, "failed": 0, "total": 1}


@pytest.mark.asyncio()
async def test_network_error_lands_in_failed_set(unused_tcp_port: int):
    origin = f"http://127.0.0.1:{unused_tcp_port}"
    async with Crawler(SnapshotConfig(server=origin, routes=["/error"])) as crawler:
        resources = await crawler.crawl()
        stats = crawler.statistics

        assert stats.errors_count == 1
        assert stats.resources_count == 0
        assert resources == []
        assert crawler.frontier.failed_urls() == [f"{origin}/error"]

        assert crawler.rediscover("/error") == f"{origin}/error"
        assert crawler.frontier.is_pending("/error")


# --------------------------------------------------------------------------- #
#                              Full site crawls                               #
# --------------------------------------------------------------------------- #


@pytest.mark.asyncio()
async def test_crawl_whole_site(site_server: str):
    async with Crawler(SnapshotConfig(server=site_server)) as crawler:
        resources = await crawler.crawl()

    urls = {r.url for r in resources}
    assert urls == {
        f"{site_server}/",
        f"{site_server}/about",
        f"{site_server}/about/team",
        f"{site_server}/blog/",
        f"{site_server}/blog/post-1?a=1&b=2",
        f"{site_server}/images/logo.png",
        f"{site_server}/styles.css",
    }
    assert len(crawler.asset_resources()) == 2
    assert not any("external.example" in u for u in crawler.all_discovered_urls())
    assert crawler.statistics.resources_count == 7
    assert crawler.statistics.total_time >= 0


@pytest.mark.asyncio()
async def test_crawl_with_boot_function():
    config = SnapshotConfig(server=make_boot(), routes=["/about"])
    crawler = Crawler(config)
    async with crawler:
        origin = crawler.base_url
        assert crawler.server_info()["isBooted"]
        await crawler.crawl()
        assert {r.url for r in crawler.resources} == {
            f"{origin}/about",
            f"{origin}/",
            f"{origin}/about/team",
            f"{origin}/blog/",
            f"{origin}/blog/post-1?a=1&b=2",
            f"{origin}/images/logo.png",
            f"{origin}/styles.css",
        }
    assert crawler.server_info() == {"isBooted": False, "port": None, "origin": None}
    assert crawler.state is CrawlerState.STOPPED


@pytest.mark.asyncio()
async def test_server_death_is_fatal(monkeypatch):
    async def dead(self):
        return False

    crawler = Crawler(SnapshotConfig(server=make_boot()))
    async with crawler:
        monkeypatch.setattr(Server, "is_alive", dead)
        with pytest.raises(ServerDiedError):
            await crawler.crawl()
        assert not crawler.is_crawling


@pytest.mark.asyncio()
async def test_http_errors_are_recorded(site_server: str):
    config = SnapshotConfig(server=site_server, routes=["/broken", "/about/team"])
    async with Crawler(config) as crawler:
        await crawler.crawl()
    assert crawler.frontier.failed_urls() == [f"{site_server}/broken"]
    assert crawler.statistics.errors_count == 1
    assert crawler.statistics.resources_count == 1


@pytest.mark.asyncio()
async def test_unknown_charset_does_not_abort_crawl(quirks_server):
    origin, hits = quirks_server
    config = SnapshotConfig(server=origin, routes=["/bogus", "/blog/"], concurrency=1)
    async with Crawler(config) as crawler:
        resources = await crawler.crawl()

    assert {r.url for r in resources} == {f"{origin}/bogus", f"{origin}/blog/", f"{origin}/b"}
    assert crawler.frontier.failed_count == 0
    assert hits["/b"] == 1


@pytest.mark.asyncio()
async def test_link_extraction_error_fails_only_that_url(monkeypatch):
    extract = Resource.extract_links

    def exploding(self, *args, **kwargs):
        if self.url.endswith("/a"):
            raise RuntimeError("parser exploded")
        return extract(self, *args, **kwargs)

    monkeypatch.setattr(Resource, "extract_links", exploding)
    pages = {"/": '<a href="/a">a</a><a href="/b">b</a>', "/a": '<a href="/c">c</a>', "/b": "b"}
    async with Crawler(SnapshotConfig(resolver=make_resolver(pages))) as crawler:
        await crawler.crawl()

    assert paths(crawler.resources) == {"/", "/b"}
    assert crawler.frontier.failed_urls() == [f"{RESOLVER_ORIGIN}/a"]
    assert not crawler.frontier.is_known("/c")
    assert crawler.statistics.errors_count == 1


@pytest.mark.asyncio()
async def test_redirect_target_is_not_fetched_again(quirks_server):
    origin, hits = quirks_server
    async with Crawler(SnapshotConfig(server=origin, routes=["/blog"])) as crawler:
        resources = await crawler.crawl()

    assert [r.url for r in resources].count(f"{origin}/blog/") == 1
    assert {r.url for r in resources} == {f"{origin}/blog/", f"{origin}/b"}
    assert hits == {"/blog": 1, "/blog/": 1, "/b": 1}
    assert crawler.frontier.is_crawled("/blog")
    assert crawler.frontier.is_crawled("/blog/")


@pytest.mark.asyncio()
async def test_redirect_to_already_fetched_page_is_skipped(quirks_server):
    origin, _ = quirks_server
    config = SnapshotConfig(server=origin, routes=["/blog/", "/blog"], concurrency=1, discover=False)
    async with Crawler(config) as crawler:
        resources = await crawler.crawl()

    assert [r.url for r in resources] == [f"{origin}/blog/"]
    assert crawler.statistics.resources_count == 1
    assert crawler.frontier_stats() == {"discovered": 0, "crawled": 2, "failed": 0, "total": 2}


@pytest.mark.asyncio()
async def test_concurrent_redirect_and_target_yield_one_resource(site_server: str):
    config = SnapshotConfig(server=site_server, routes=["/old", "/about"], concurrency=2, discover=False)
    async with Crawler(config) as crawler:
        resources = await crawler.crawl()

    assert [r.url for r in resources] == [f"{site_server}/about"]
    assert crawler.frontier.crawled_count == 2


# --------------------------------------------------------------------------- #
#                          Resolver mode & discovery                          #
# --------------------------------------------------------------------------- #


@pytest.mark.asyncio()
async def test_resolver_mode_uses_synthetic_origin():
    async with Crawler(SnapshotConfig(resolver=make_resolver(CHAIN))) as crawler:
        assert crawler.base_url == RESOLVER_ORIGIN
        await crawler.crawl()
    assert paths(crawler.resources) == {"/", "/a", "/b", "/c"}


@pytest.mark.asyncio()
async def test_depth_limit():
    config = SnapshotConfig(resolver=make_resolver(CHAIN), discover=DiscoveryPolicy(depth=1))
    async with Crawler(config) as crawler:
        await crawler.crawl()
    assert paths(crawler.resources) == {"/", "/a"}
    assert crawler.frontier_stats()["total"] == 2


@pytest.mark.asyncio()
async def test_ignore_patterns():
    pages = {"/": '<a href="/admin/settings">x</a><a href="/public">p</a>', "/public": "ok"}
    config = SnapshotConfig(
        resolver=make_resolver(pages), discover={"ignore": ["/admin/*"]}
    )
    async with Crawler(config) as crawler:
        await crawler.crawl()
    assert paths(crawler.resources) == {"/", "/public"}
    assert not crawler.frontier.is_known("/admin/settings")


@pytest.mark.asyncio()
async def test_routes_from_async_generator():
    async def routes():
        yield "/b"
        yield "/c"

    config = SnapshotConfig(resolver=make_resolver(CHAIN), routes=routes, discover=False)
    async with Crawler(config) as crawler:
        await crawler.crawl()
    assert paths(crawler.resources) == {"/b", "/c"}


@pytest.mark.asyncio()
async def test_concurrent_workers_fetch_each_url_once():
    pages = {"/": "".join(f'<a href="/p{i}">{i}</a>' for i in range(20))}
    pages.update({f"/p{i}": '<a href="/">home</a>' for i in range(20)})
    calls: dict[str, int] = {}
    plain = make_resolver(pages, calls)

    async def slow_resolver(path):
        await asyncio.sleep(0.01)
        return await plain(path)

    async with Crawler(SnapshotConfig(resolver=slow_resolver, concurrency=5)) as crawler:
        resources = await crawler.crawl()

    assert len(resources) == 21
    assert set(calls.values()) == {1}


@pytest.mark.asyncio()
async def test_budget_respected_with_concurrency():
    pages = {"/": "".join(f'<a href="/p{i}">{i}</a>' for i in range(20))}
    pages.update({f"/p{i}": "x" for i in range(20)})
    async with Crawler(SnapshotConfig(resolver=make_resolver(pages), concurrency=4)) as crawler:
        resources = await crawler.crawl(max_resources=5)
    assert len(resources) == 5


@pytest.mark.asyncio()
async def test_automatic_retry():
    attempts: dict[str, int] = {}

    async def flaky(path):
        attempts[path] = attempts.get(path, 0) + 1
        if path == "/flaky" and attempts[path] == 1:
            raise ConnectionError("reset")
        return await make_resolver({"/": "home", "/flaky": "ok"})(path)

    config = SnapshotConfig(resolver=flaky, routes=["/", "/flaky"], max_retries=1)
    async with Crawler(config) as crawler:
        await crawler.crawl()

    assert paths(crawler.resources) == {"/", "/flaky"}
    assert crawler.frontier.failed_count == 0
    assert crawler.statistics.errors_count == 1


@pytest.mark.asyncio()
async def test_no_automatic_retry_by_default():
    config = SnapshotConfig(resolver=make_resolver({"/": "home"}), routes=["/", "/missing"])
    async with Crawler(config) as crawler:
        await crawler.crawl()
        assert crawler.frontier.failed_count == 1

        crawler.rediscover("/missing")
        await crawler.crawl()
    assert crawler.frontier.failed_count == 1
    assert crawler.statistics.errors_count == 2


# --------------------------------------------------------------------------- #
#                                  Bundles                                    #
# --------------------------------------------------------------------------- #


@pytest.mark.asyncio()
async def test_bundles_are_never_fetched():
    calls: dict[str, int] = {}
    pages = {"/": '<script src="/app.js"></script><a href="/a">a</a>', "/a": "a"}
    crawler = Crawler(SnapshotConfig(resolver=make_resolver(pages, calls)))
    bundle = Resource.bundle("/app.js", b"run()", RESOLVER_ORIGIN)
    crawler.add_visited_resource("/app.js", bundle)

    async with crawler:
        resources = await crawler.crawl()

    assert "/app.js" not in calls
    assert bundle in resources
    assert crawler.frontier.is_crawled("/app.js")


@pytest.mark.asyncio()
async def test_bundles_survive_server_boot():
    crawler = Crawler(SnapshotConfig(server=make_boot(), routes=["/about/team"]))
    crawler.add_visited_resource("/bundle.js", Resource.bundle("/bundle.js", b"x", "http://localhost:3000"))
    async with crawler:
        assert crawler.frontier.is_crawled("/bundle.js")
        await crawler.crawl()
    assert len(crawler.resources) == 2


# --------------------------------------------------------------------------- #
#                                  Lifecycle                                  #
# --------------------------------------------------------------------------- #


@pytest.mark.asyncio()
async def test_crawl_before_start():
    crawler = Crawler(SnapshotConfig(resolver=make_resolver(CHAIN)))
    with pytest.raises(NotStartedError):
        await crawler.crawl()


@pytest.mark.asyncio()
async def test_double_start_and_restart_after_stop():
    crawler = Crawler(SnapshotConfig(resolver=make_resolver(CHAIN)))
    await crawler.start()
    with pytest.raises(AlreadyStartedError):
        await crawler.start()
    await crawler.stop()
    await crawler.stop()
    assert crawler.state is CrawlerState.STOPPED
    with pytest.raises(AlreadyStartedError):
        await crawler.start()


@pytest.mark.asyncio()
async def test_add_visited_after_start():
    async with Crawler(SnapshotConfig(resolver=make_resolver(CHAIN))) as crawler:
        with pytest.raises(AlreadyStartedError):
            crawler.add_visited_resource("/x.js", Resource.bundle("/x.js", b"", RESOLVER_ORIGIN))


@pytest.mark.asyncio()
async def test_single_flight_crawl():
    async def slow(path):
        await asyncio.sleep(0.05)
        return await make_resolver(CHAIN)(path)

    async with Crawler(SnapshotConfig(resolver=slow)) as crawler:
        first = asyncio.create_task(crawler.crawl())
        await asyncio.sleep(0)
        assert crawler.is_crawling
        with pytest.raises(CrawlInProgressError):
            await crawler.crawl()
        await first
        assert not crawler.is_crawling


@pytest.mark.asyncio()
async def test_statistics_are_copies():
    async with Crawler(SnapshotConfig(resolver=make_resolver(CHAIN))) as crawler:
        await crawler.crawl()
        snapshot = crawler.statistics
        snapshot.resources_count = 999
        assert crawler.statistics.resources_count == 4
        listed = crawler.resources
        listed.clear()
        assert len(crawler.resources) == 4


@pytest.mark.asyncio()
async def test_to_dict():
    crawler = Crawler(SnapshotConfig(resolver=make_resolver(CHAIN)))
    assert crawler.to_dict()["state"] == "unstarted"
    async with crawler:
        await crawler.crawl()
        info = crawler.to_dict()
    assert info["state"] == "started"
    assert info["resourcesCount"] == 4
    assert info["frontierStats"]["crawled"] == 4
    assert info["serverInfo"] is None


@pytest.mark.asyncio()
async def test_failed_boot_cleans_up():
    async def boot(*, port):
        raise OSError("no")

    crawler = Crawler(SnapshotConfig(server=boot, server_timeout=0.5))
    with pytest.raises(Exception):
        await crawler.start()
    assert crawler.state is CrawlerState.UNSTARTED
    assert not crawler.is_started
