"""site_snapshot.aggregator: Сводный отчёт по одному запуску snapshot."""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, TypedDict, Union

from site_snapshot.crawler.resource import Resource


class FileInfo(TypedDict, total=False):
    """Информация о сохранённом файле."""

    url: str
    path: str
    kind: str
    content_type: str
    size: int


class SaveErrorInfo(TypedDict, total=False):
    """Ошибка записи одного ресурса на диск."""

    url: str
    error: str


@dataclass(slots=True)
class SnapshotReport:
    """Результат запуска: записанные файлы, ошибки и статистика обхода."""

    output: str = ""
    base_url: Union[str, None] = None
    files: List[FileInfo] = field(default_factory=list)
    errors: List[SaveErrorInfo] = field(default_factory=list)
    failed_urls: List[str] = field(default_factory=list)
    statistics: Dict[str, Any] = field(default_factory=dict)
    frontier: Dict[str, int] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        """True, если нет ни упавших URL, ни ошибок записи."""
        return not self.failed_urls and not self.errors

    def json(self, *, pretty: bool = False) -> str:
        """Возвращает JSON-представление SnapshotReport."""
        output = asdict(self)
        output["ok"] = self.ok
        return json.dumps(output, ensure_ascii=False, indent=2 if pretty else None)


def _file_info(resource: Resource, path: Path, output_dir: Path) -> FileInfo:
    try:
        rel = path.relative_to(output_dir)
    except ValueError:
        rel = path
    return {
        "url": resource.url,
        "path": rel.as_posix(),
        "kind": resource.kind.value,
        "content_type": resource.content_type,
        "size": resource.content_length,
    }


def build_report(
    output_dir: Union[str, Path],
    saved: List[tuple[Resource, Path]],
    errors: List[SaveErrorInfo],
    crawler_info: Dict[str, Any],
    failed_urls: List[str],
) -> SnapshotReport:
    """Собирает все части отчёта в SnapshotReport."""
    root = Path(output_dir).resolve()
    return SnapshotReport(
        output=str(root),
        base_url=crawler_info.get("baseUrl"),
        files=[_file_info(resource, path, root) for resource, path in saved],
        errors=list(errors),
        failed_urls=sorted(failed_urls),
        statistics=dict(crawler_info.get("statistics") or {}),
        frontier=dict(crawler_info.get("frontierStats") or {}),
    )
