# === FILE: site_snapshot/cli.py ===
#!/usr/bin/env python3
"""
Точка входа для запуска SiteSnapshot через командную строку.

Команды:
  static    Обойти сайт и сохранить его как набор статических файлов
  config    Показать текущую конфигурацию

Команда static опции:
  --config PATH       Путь к конфигу (.yaml/.yml/.json/.py)
  --server ORIGIN     Origin уже запущенного сервера (override server)
  --out DIR           Каталог для результата (override output)
  --base PATH         Префикс пути при деплое (override base_path)
  --validate          Только проверить конфигурацию
  --verbose           Подробный лог (DEBUG)
  --max-resources N   Лимит ресурсов за один обход
  --timeout SEC       Таймаут на один запрос (секунд)
  --json PATH         Сохранить JSON-манифест в файл
  --log-file PATH     Файл для логов (иначе log_file из конфига)

Если --config не указан, ищется один из файлов DEFAULT_CONFIG_FILES в текущем
каталоге; при отсутствии конфига достаточно --server.

Пример:
  site-snapshot static --server http://localhost:3000 --out dist --base /docs
"""
import asyncio
import json
import sys
from pathlib import Path
from typing import Optional

import click

from site_snapshot import __version__
from site_snapshot.config import SnapshotConfig, load_config
from site_snapshot.engine import run_snapshot
from site_snapshot.errors import ConfigError
from site_snapshot.logger import init_logging
from site_snapshot.report.json_report import render_json

CONTEXT_SETTINGS = dict(help_option_names=["--help"])

DEFAULT_CONFIG_FILES = (
    "site-snapshot.config.py",
    "site-snapshot.yaml",
    "site-snapshot.yml",
    "site-snapshot.json",
)


def print_error(message: str):
    click.secho(message, fg='red', err=True)
    sys.exit(1)


def _find_default_config(cwd: Path) -> Optional[Path]:
    for name in DEFAULT_CONFIG_FILES:
        candidate = cwd / name
        if candidate.is_file():
            return candidate
    return None


def resolve_config(config_path: Optional[Path], server: Optional[str]) -> SnapshotConfig:
    """Загружает конфиг из файла или собирает минимальный из --server."""
    path = config_path or _find_default_config(Path.cwd())
    if path is not None:
        return load_config(path)
    if server:
        return SnapshotConfig(server=server)
    raise ConfigError(
        "Configuration file not found: pass --config, --server or create one of "
        + ", ".join(DEFAULT_CONFIG_FILES)
    )


config_option = click.option(
    '--config', '-c', 'config_path',
    default=None,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help='Путь к файлу конфигурации (.yaml/.yml/.json/.py).'
)


@click.group(context_settings=CONTEXT_SETTINGS)
@click.version_option(__version__, '--version', '-v', message='SiteSnapshot, version %(version)s')
def cli():
    """Группа команд SiteSnapshot CLI."""


@cli.command('static', context_settings=CONTEXT_SETTINGS)
@config_option
@click.option('--server', '-s', 'server', default=None, help='Origin запущенного сервера')
@click.option(
    '--out', '-o', 'output',
    default=None,
    type=click.Path(file_okay=False, path_type=Path),
    help='Каталог для результата'
)
@click.option('--base', '-b', 'base_path', default=None, help='Префикс пути при деплое')
@click.option('--validate', is_flag=True, help='Только проверить конфигурацию')
@click.option('--verbose', is_flag=True, help='Подробный лог (DEBUG)')
@click.option(
    '--max-resources', 'max_resources',
    type=click.IntRange(min=1),
    default=None,
    help='Макс. число ресурсов за один обход'
)
@click.option(
    '--timeout', 'request_timeout',
    type=click.FloatRange(min=0, min_open=True),
    default=None,
    help='Таймаут на один запрос (секунд)'
)
@click.option(
    '--json', '-j', 'json_output',
    default=None,
    type=click.Path(dir_okay=False, path_type=Path),
    help='Сохранить JSON-манифест в файл'
)
@click.option(
    '--log-file', 'log_file',
    default=None,
    type=click.Path(dir_okay=False, path_type=Path),
    help='Путь к файлу логов (по умолчанию log_file из конфига)'
)
def static(config_path, server, output, base_path, validate, verbose, max_resources,
           request_timeout, json_output, log_file):
    """Обойти сайт и сохранить его как статические файлы."""
    level = 'DEBUG' if verbose else 'INFO'
    init_logging(level=level, log_file=str(log_file) if log_file else None)
    try:
        cfg = resolve_config(config_path, server).with_overrides(
            server=server,
            output=str(output) if output else None,
            base_path=base_path,
            log_file=str(log_file) if log_file else None,
        )
    except (ConfigError, FileNotFoundError, ValueError, TypeError) as e:
        print_error(f'Ошибка загрузки конфигурации: {e}')

    # log_file из конфига, если --log-file не передан
    if cfg.log_file and not log_file:
        try:
            init_logging(level=level, log_file=cfg.log_file)
        except OSError as e:
            print_error(f'Не удалось открыть файл логов {cfg.log_file}: {e}')

    if validate:
        click.echo('Configuration is valid')
        return

    try:
        report = asyncio.run(
            run_snapshot(cfg, max_resources=max_resources, request_timeout=request_timeout)
        )
    except Exception as e:
        print_error(f'Ошибка при обходе: {e}')

    click.echo(
        f'Snapshot: {len(report.files)} files written to {report.output} '
        f'({len(report.failed_urls)} failed URLs, {len(report.errors)} save errors)'
    )

    if json_output:
        try:
            saved_json = render_json(report, json_output)
            click.echo(f'JSON manifest: {saved_json}')
        except OSError as e:
            print_error(f'Ошибка при сохранении JSON: {e}')

    if not report.ok:
        for url in report.failed_urls:
            click.secho(f'  failed: {url}', fg='red', err=True)
        for err in report.errors:
            click.secho(f'  not saved: {err["url"]}: {err["error"]}', fg='red', err=True)
        sys.exit(1)


@cli.command('config', context_settings=CONTEXT_SETTINGS)
@config_option
@click.option('--server', '-s', 'server', default=None, help='Origin запущенного сервера')
def show_config(config_path, server):
    """Показать текущую конфигурацию в JSON."""
    try:
        cfg = resolve_config(config_path, server).with_overrides(server=server)
    except (ConfigError, FileNotFoundError, ValueError, TypeError) as e:
        print_error(f'Ошибка загрузки конфигурации: {e}')
    click.echo(json.dumps(cfg.public_dict(), indent=2, ensure_ascii=False))


# expose these names at module level for test monkey-patching
cli.run_snapshot = run_snapshot
cli.render_json = render_json

if __name__ == "__main__":
    cli()
