"""site_snapshot.engine: Orchestration layer: обход сайта, сохранение файлов и сборка отчёта."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import List, Optional, Tuple, Union

from site_snapshot.aggregator import SaveErrorInfo, SnapshotReport, build_report
from site_snapshot.config import SnapshotConfig, load_config
from site_snapshot.crawler.crawler import Crawler
from site_snapshot.crawler.resource import Resource
from site_snapshot.errors import ConfigError
from site_snapshot.logger import logger

__all__ = ["Engine", "run_snapshot", "register_bundles", "save_resources"]


def register_bundles(crawler: Crawler, config: SnapshotConfig) -> int:
    """Читает собранные файлы из ``config.bundles`` и регистрирует их как обойдённые."""
    base_url = crawler.frontier.base_url or ""
    for mount_path, file_path in config.bundles.items():
        path = Path(file_path).expanduser()
        try:
            body = path.read_bytes()
        except OSError as exc:
            raise ConfigError(f"Cannot read bundle {file_path} for {mount_path}: {exc}") from exc
        map_path = path.with_name(path.name + ".map")
        sourcemap = map_path.read_bytes() if map_path.is_file() else None
        crawler.add_visited_resource(
            mount_path, Resource.bundle(mount_path, body, base_url, sourcemap=sourcemap)
        )
        logger.debug("Bundle %s -> %s", path, mount_path)
    return len(config.bundles)


def save_resources(
    resources: List[Resource], output_dir: Union[str, Path], base_path: str
) -> Tuple[List[Tuple[Resource, Path]], List[SaveErrorInfo]]:
    """Сохраняет ресурсы; ошибка одного файла не останавливает остальные."""
    saved: List[Tuple[Resource, Path]] = []
    errors: List[SaveErrorInfo] = []
    for resource in resources:
        try:
            saved.append((resource, resource.save_to_file(output_dir, base_path)))
        except (OSError, ValueError, LookupError) as exc:
            logger.error("Failed to save %s: %s", resource.url, exc)
            errors.append({"url": resource.url, "error": str(exc)})
    return saved, errors


async def run_snapshot(
    config: SnapshotConfig,
    *,
    max_resources: Optional[int] = None,
    request_timeout: Optional[float] = None,
    output: Optional[str] = None,
) -> SnapshotReport:
    """Полный цикл: bundles → start → crawl → stop → запись в ``output``."""
    output_dir = Path(output or config.output)
    crawler = Crawler(config)
    register_bundles(crawler, config)

    async with crawler:
        await crawler.crawl(max_resources=max_resources, request_timeout=request_timeout)
        info = crawler.to_dict()
        failed = crawler.frontier.failed_urls()
        resources = crawler.resources

    saved, errors = save_resources(resources, output_dir, config.base_path)
    info["statistics"] = crawler.statistics.as_dict()
    report = build_report(output_dir, saved, errors, info, failed)
    logger.info(
        "Snapshot: %d файлов в %s, %d ошибок обхода, %d ошибок записи",
        len(report.files),
        report.output,
        len(report.failed_urls),
        len(report.errors),
    )
    return report


class Engine:
    """Фасад для CLI и тестов: загрузка конфига и запуск snapshot."""

    @staticmethod
    def load_config(path: Union[str, Path]) -> SnapshotConfig:
        """Загружает конфиг из YAML/JSON/Python-модуля."""
        return load_config(path)

    def __init__(self, config: SnapshotConfig) -> None:
        """Инициализирует Engine с заданной конфигурацией."""
        self.config = config

    def run(
        self,
        *,
        max_resources: Optional[int] = None,
        request_timeout: Optional[float] = None,
        timeout: Optional[float] = None,
    ) -> SnapshotReport:
        """Запускает snapshot синхронно (с общим таймаутом) и возвращает отчёт."""
        logger.info("Starting snapshot…")
        coro = run_snapshot(
            self.config, max_resources=max_resources, request_timeout=request_timeout
        )
        try:
            if timeout:
                return asyncio.run(asyncio.wait_for(coro, timeout=timeout))
            return asyncio.run(coro)
        except asyncio.TimeoutError:
            logger.error("Snapshot did not finish within %s seconds", timeout)
            raise
        except Exception as exc:
            logger.error("Snapshot failed: %s", exc)
            raise
