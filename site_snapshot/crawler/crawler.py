from __future__ import annotations

import asyncio
import inspect
import logging
import time
from collections import Counter
from dataclasses import asdict, dataclass, replace
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Set
from urllib.parse import urlsplit

from aiohttp import ClientSession, ClientTimeout

from site_snapshot.errors import (
    AlreadyStartedError,
    CrawlInProgressError,
    FetchFailure,
    InvalidURLError,
    NotStartedError,
    ServerDiedError,
)

from .discovery import DiscoveryPolicy
from .frontier import Frontier
from .link_extractor import ExtractOptions, LinkScope
from .resource import Resource, fetch_resource, resolve_resource
from .server import Server
from .url import origin_of

if TYPE_CHECKING:
    from site_snapshot.config import SnapshotConfig

__all__ = ("CrawlStatistics", "CrawlerState", "Crawler", "RESOLVER_ORIGIN")

RESOLVER_ORIGIN = "http://localhost:0"
# origin used for pre-registered resources while a boot function has no port yet
_PROVISIONAL_ORIGIN = "http://localhost:3000"

_LINK_OPTIONS = ExtractOptions(scope=LinkScope.INTERNAL)


@dataclass(slots=True)
class CrawlStatistics:
    """Счётчики одного запуска; время в секундах (epoch)."""

    start_time: float = 0.0
    end_time: float = 0.0
    total_time: float = 0.0
    resources_count: int = 0
    errors_count: int = 0

    def finalize(self) -> None:
        self.end_time = time.time()
        self.total_time = max(0.0, self.end_time - self.start_time)

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


class CrawlerState(str, Enum):
    UNSTARTED = "unstarted"
    STARTED = "started"
    STOPPED = "stopped"


class Crawler:
    """
    Краулер: seed маршрутов → fetch → поиск ссылок → следующий URL.

    Один экземпляр допускает только один активный ``crawl()``. Внутри него
    ``concurrency`` воркеров делят один Frontier; URL забирается воркером и
    переводится в crawled/failed без точек переключения между проверкой и
    изменением состояния, поэтому один URL не скачивается дважды.
    """

    def __init__(self, config: SnapshotConfig) -> None:
        self.config = config
        self.logger = logging.getLogger("SiteSnapshot")

        self._state = CrawlerState.UNSTARTED
        self._crawling = False
        self._server: Optional[Server] = None
        self._session: Optional[ClientSession] = None
        self._base_url: Optional[str] = None

        if config.resolver is None and callable(config.server):
            self._server = Server(config.server)

        self._frontier = Frontier(self._provisional_base())
        self._resources: List[Resource] = []
        self._visited: Dict[str, Resource] = {}
        self._depths: Dict[str, int] = {}
        self._retries: Counter[str] = Counter()
        self._in_flight: Set[str] = set()
        self._stats = CrawlStatistics()

    async def __aenter__(self) -> Crawler:
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    # ------------------------------------------------------------------ #
    # Lifecycle                                                          #
    # ------------------------------------------------------------------ #

    def _provisional_base(self) -> str:
        if self.config.resolver is not None:
            return RESOLVER_ORIGIN
        if isinstance(self.config.server, str):
            return self.config.server
        return _PROVISIONAL_ORIGIN

    async def start(self) -> None:
        """Поднимает сервер (если нужен) и заполняет Frontier стартовыми маршрутами."""
        if self._state is not CrawlerState.UNSTARTED:
            raise AlreadyStartedError("Crawler is already started")

        try:
            if self.config.resolver is not None:
                base = RESOLVER_ORIGIN
            else:
                if self._server is not None:
                    base = await self._server.boot(timeout=self.config.server_timeout)
                else:
                    base = str(self.config.server)
                self._session = ClientSession(
                    timeout=ClientTimeout(total=self.config.request_timeout),
                    headers={"User-Agent": self.config.user_agent},
                )

            if base != self._frontier.base_url:
                self._rebase_frontier(base)
            self._base_url = base

            for route in await self._resolve_routes():
                if self._frontier.discover(route):
                    self._depths[self._frontier.canonical(route)] = 0
        except BaseException:
            await self._teardown()
            raise

        self._state = CrawlerState.STARTED
        self._stats.start_time = time.time()
        self.logger.info(
            "Старт: %s, маршрутов в очереди: %d", self._base_url, self._frontier.pending_count
        )

    async def _resolve_routes(self) -> List[str]:
        routes = self.config.routes
        if callable(routes):
            generated = routes()
            if inspect.isawaitable(generated):
                generated = await generated
            if hasattr(generated, "__aiter__"):
                return [str(r) async for r in generated]
            return [str(r) for r in generated]
        return list(routes)

    def _rebase_frontier(self, base: str) -> None:
        """Пересоздаёт Frontier с реальным origin, сохраняя уже добавленные ресурсы."""
        self._frontier = Frontier(base)
        for mount_path in self._visited:
            self._frontier.discover(mount_path)
            self._frontier.mark_crawled(mount_path)

    async def stop(self) -> None:
        """Завершает сессию: фиксирует статистику и останавливает сервер."""
        if self._state is not CrawlerState.STARTED:
            return
        try:
            await self._teardown()
        finally:
            self._state = CrawlerState.STOPPED
            self._crawling = False
            if self._stats.end_time == 0:
                self._stats.finalize()
            self.logger.debug("Crawler stopped: %s", self._stats.as_dict())

    async def _teardown(self) -> None:
        try:
            if self._session is not None and not self._session.closed:
                await self._session.close()
        finally:
            self._session = None
            if self._server is not None:
                await self._server.kill()

    def add_visited_resource(self, mount_path: str, resource: Resource) -> None:
        """Регистрирует собранный заранее ресурс (bundle) как уже обойдённый."""
        if self._state is not CrawlerState.UNSTARTED:
            raise AlreadyStartedError("Cannot add visited resources after crawler is started")
        if not isinstance(resource, Resource):
            raise TypeError("resource must be a Resource instance")
        self._frontier.discover(mount_path)
        self._frontier.mark_crawled(mount_path)
        self._visited[mount_path] = resource
        self._resources.append(resource)

    # ------------------------------------------------------------------ #
    # Crawl loop                                                         #
    # ------------------------------------------------------------------ #

    async def crawl(
        self,
        *,
        max_resources: Optional[int] = None,
        request_timeout: Optional[float] = None,
        concurrency: Optional[int] = None,
        max_retries: Optional[int] = None,
    ) -> List[Resource]:
        """Обходит все pending URL до опустошения Frontier или лимита ресурсов."""
        if self._state is not CrawlerState.STARTED:
            raise NotStartedError("Crawler must be started before crawling")
        if self._crawling:
            raise CrawlInProgressError("Crawling is already in progress")

        limit = max_resources if max_resources is not None else self.config.max_resources
        timeout = request_timeout if request_timeout is not None else self.config.request_timeout
        workers = concurrency if concurrency is not None else self.config.concurrency
        retries = max_retries if max_retries is not None else self.config.max_retries
        if limit < 1 or workers < 1 or timeout <= 0 or retries < 0:
            raise ValueError("max_resources, concurrency and request_timeout must be positive")

        self._crawling = True
        progress = asyncio.Condition()
        started = time.monotonic()
        before = len(self._resources)
        try:
            while True:
                tasks = [
                    asyncio.create_task(self._worker(progress, limit, timeout))
                    for _ in range(workers)
                ]
                try:
                    await asyncio.gather(*tasks)
                except BaseException:
                    for task in tasks:
                        task.cancel()
                    await asyncio.gather(*tasks, return_exceptions=True)
                    raise
                if not self._requeue_failed(retries, limit):
                    break
        finally:
            self._crawling = False
            self._in_flight.clear()
            if self._stats.start_time:
                self._stats.finalize()

        fetched = len(self._resources) - before
        duration = time.monotonic() - started
        self.logger.info(
            "Завершено: %d ресурсов, %d ошибок за %.2f с (%.2f рес/с)",
            fetched,
            self._stats.errors_count,
            duration,
            fetched / duration if duration else 0,
        )
        return self.resources

    def _budget_left(self, limit: int) -> bool:
        return len(self._resources) + len(self._in_flight) < limit

    def _claim_next(self) -> Optional[str]:
        url = self._frontier.first_pending(self._in_flight)
        if url is not None:
            self._in_flight.add(url)
        return url

    def _has_claimable(self) -> bool:
        # _in_flight only holds pending URLs: they leave it on their frontier transition
        return self._frontier.pending_count > len(self._in_flight)

    async def _worker(self, progress: asyncio.Condition, limit: int, timeout: float) -> None:
        while self._state is CrawlerState.STARTED:
            async with progress:
                await progress.wait_for(
                    lambda: not self._in_flight
                    or not self._budget_left(limit)
                    or self._has_claimable()
                )
                if not self._budget_left(limit) or not self._has_claimable():
                    progress.notify_all()
                    return
                url = self._claim_next()
            if url is None:
                return
            try:
                await self._process(url, timeout)
            finally:
                async with progress:
                    self._in_flight.discard(url)
                    progress.notify_all()

    async def _load(self, url: str, timeout: float) -> Resource:
        if self.config.resolver is not None:
            return await resolve_resource(self.config.resolver, url, str(self._base_url))
        if self._session is None:
            raise NotStartedError("HTTP session is not open")
        return await fetch_resource(
            self._session, url, str(self._base_url), timeout=timeout, user_agent=self.config.user_agent
        )

    async def _process(self, url: str, timeout: float) -> None:
        """Fetch one URL; anything that goes wrong with it fails only that URL."""
        depth = self._depths.get(url, 0)
        try:
            resource = await self._load(url, timeout)
            links = self._collect_links(resource, depth)
        except FetchFailure as exc:
            self._record_failure(url, exc.reason)
        except (NotStartedError, ServerDiedError):
            raise
        except Exception as exc:
            self._record_failure(url, f"{type(exc).__name__}: {exc}")
        else:
            self._accept(url, resource, links, depth)

        if self._server is not None and not await self._server.is_alive():
            raise ServerDiedError("Server died during crawling")

    def _record_failure(self, url: str, reason: str) -> None:
        if self._frontier.is_pending(url):
            self._frontier.mark_failed(url)
        self._in_flight.discard(url)
        self._stats.errors_count += 1
        self.logger.warning("Failed %s: %s", url, reason)

    def _accept(self, url: str, resource: Resource, links: List[str], depth: int) -> None:
        self._frontier.mark_crawled(url)
        self._in_flight.discard(url)
        if not self._settle_redirect(url, resource, depth):
            self.logger.debug("Skipped %s: %s was already fetched", url, resource.url)
            return
        self._resources.append(resource)
        self._stats.resources_count += 1
        self.logger.debug("Fetched %s (%s, %d bytes)", url, resource.kind.value, resource.content_length)
        for key in links:
            if self._frontier.discover(key):
                self._depths[key] = depth + 1

    def _settle_redirect(self, url: str, resource: Resource, depth: int) -> bool:
        """Mark the final URL of a redirect crawled. False when it was already fetched."""
        try:
            final = self._frontier.canonical(resource.url)
        except InvalidURLError:
            return True
        if final == url or origin_of(final) != origin_of(str(self._base_url)):
            return True
        if final in self._in_flight or self._frontier.is_crawled(final):
            return False
        if self._frontier.is_failed(final):
            self._frontier.rediscover(final)
        else:
            self._frontier.discover(final)
        self._frontier.mark_crawled(final)
        self._depths.setdefault(final, depth)
        return True

    def _collect_links(self, resource: Resource, depth: int) -> List[str]:
        """Canonical same-origin links of an HTML resource that pass the discovery policy."""
        discover = self.config.discover
        if discover is False or not resource.is_html():
            return []
        policy = discover if isinstance(discover, DiscoveryPolicy) else None
        if policy is not None and not policy.allows_depth(depth):
            return []

        origin = origin_of(str(self._base_url))
        keys: List[str] = []
        for link in resource.extract_links(_LINK_OPTIONS):
            if origin_of(link) != origin:
                continue
            try:
                key = self._frontier.canonical(link)
            except InvalidURLError:
                continue
            path = urlsplit(key).path or "/"
            if path in self._visited:
                continue
            if policy is not None and policy.should_ignore(path):
                continue
            keys.append(key)
        return keys

    def _requeue_failed(self, max_retries: int, limit: int) -> bool:
        """Возвращает упавшие URL в очередь, пока не исчерпан max_retries."""
        if max_retries <= 0 or self._state is not CrawlerState.STARTED or len(self._resources) >= limit:
            return False
        requeued = False
        for url in self._frontier.failed_urls():
            if self._retries[url] < max_retries:
                self._retries[url] += 1
                self._frontier.rediscover(url)
                requeued = True
                self.logger.debug("Retry %d/%d for %s", self._retries[url], max_retries, url)
        return requeued

    def rediscover(self, url: str) -> str:
        """Ручная повторная попытка: переводит failed URL обратно в pending."""
        return self._frontier.rediscover(url)

    # ------------------------------------------------------------------ #
    # Introspection                                                      #
    # ------------------------------------------------------------------ #

    @property
    def frontier(self) -> Frontier:
        return self._frontier

    @property
    def resources(self) -> List[Resource]:
        return list(self._resources)

    def html_resources(self) -> List[Resource]:
        return [r for r in self._resources if r.is_html()]

    def asset_resources(self) -> List[Resource]:
        return [r for r in self._resources if r.is_asset()]

    def all_discovered_urls(self) -> List[str]:
        return self._frontier.all_urls()

    def frontier_stats(self) -> Dict[str, int]:
        return self._frontier.stats()

    @property
    def statistics(self) -> CrawlStatistics:
        return replace(self._stats)

    def server_info(self) -> Optional[Dict[str, Any]]:
        return self._server.to_dict() if self._server is not None else None

    @property
    def base_url(self) -> Optional[str]:
        return self._base_url

    @property
    def state(self) -> CrawlerState:
        return self._state

    @property
    def is_started(self) -> bool:
        return self._state is CrawlerState.STARTED

    @property
    def is_crawling(self) -> bool:
        return self._crawling

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self._state.value,
            "isCrawling": self._crawling,
            "baseUrl": self._base_url,
            "statistics": self._stats.as_dict(),
            "frontierStats": self.frontier_stats(),
            "serverInfo": self.server_info(),
            "resourcesCount": len(self._resources),
        }
