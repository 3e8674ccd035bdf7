# site_snapshot/report/json_report.py

"""
Генерация JSON-манифеста для проекта SiteSnapshot.

Сериализация объекта SnapshotReport в файл.
"""
from pathlib import Path

from site_snapshot.aggregator import SnapshotReport


def render_json(report: SnapshotReport, output_path: Path | str) -> Path:
    """
    Сохраняет отчёт report в формате JSON по указанному пути.

    :param report: объект SnapshotReport с результатами запуска
    :param output_path: путь к JSON-файлу
    :return: Path сохранённого файла

    Пример:
    ```python
    from site_snapshot.report.json_report import render_json
    manifest = render_json(report, '_site/manifest.json')
    print(f"Manifest saved to: {manifest}")
    ```
    """
    output = Path(output_path)
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(report.json(pretty=True), encoding="utf-8")
    return output
