# === FILE: site_snapshot/config.py ===
"""
Модуль для загрузки и валидации конфигурации SiteSnapshot.
Используется Pydantic для описания схемы и проверки данных.

Поддерживаются YAML, JSON и Python-модули (``.py``). Только Python-модуль
может передать boot-функцию сервера, resolver или генератор маршрутов.
"""
from __future__ import annotations

import errno
import importlib.util
import json
import os
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union
from urllib.parse import urlsplit

import yaml
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictBool,
    field_validator,
    model_validator,
)

from site_snapshot.crawler.discovery import DiscoveryPolicy
from site_snapshot.errors import ConfigError

__all__ = ["SnapshotConfig", "load_config", "DEFAULT_USER_AGENT"]

DEFAULT_USER_AGENT = "SiteSnapshot/0.1"

RoutesT = Union[List[str], Callable[..., Any]]
ServerT = Union[str, Callable[..., Any]]


class SnapshotConfig(BaseModel):
    """Конфигурация одного запуска: откуда брать страницы и куда их сохранять."""

    model_config = ConfigDict(extra="forbid", frozen=True, arbitrary_types_allowed=True)

    server: Optional[ServerT] = Field(None, description="Origin (строка) или async boot-функция boot(port=...).")
    resolver: Optional[Callable[..., Any]] = Field(None, description="Async resolver(path) -> response.")
    routes: RoutesT = Field(default_factory=lambda: ["/"], description="Стартовые маршруты или async-генератор.")
    discover: Union[StrictBool, DiscoveryPolicy] = Field(True, description="Поиск новых ссылок в HTML.")
    bundles: Dict[str, str] = Field(default_factory=dict, description="Путь монтирования -> собранный файл.")
    base_path: str = Field("/", description="Префикс пути при деплое.")
    output: str = Field("_site", min_length=1, description="Каталог для результата.")
    user_agent: str = Field(DEFAULT_USER_AGENT, min_length=1, description="Заголовок User-Agent.")
    concurrency: int = Field(1, ge=1, description="Число одновременных запросов внутри crawl().")
    max_retries: int = Field(0, ge=0, description="Автоматические повторы для упавших URL.")
    max_resources: int = Field(1000, ge=1, description="Жесткий лимит по числу ресурсов.")
    request_timeout: float = Field(10.0, gt=0, description="Таймаут на один запрос (секунд).")
    server_timeout: float = Field(30.0, gt=0, description="Таймаут запуска boot-функции (секунд).")
    log_file: Optional[str] = Field(None, description="Файл логов с ротацией (5 МиБ x 3).")

    @field_validator("server", mode="after")
    def _check_origin(cls, v: Any) -> Any:
        if isinstance(v, str):
            parts = urlsplit(v)
            if parts.scheme not in ("http", "https") or not parts.netloc:
                raise ValueError(f"server must be an absolute http(s) origin, got {v!r}")
        return v

    @field_validator("routes", mode="after")
    def _check_routes(cls, v: Any) -> Any:
        if isinstance(v, list) and not v:
            raise ValueError("routes must not be empty")
        return v

    @field_validator("base_path", mode="before")
    def _normalize_base_path(cls, v: Any) -> Any:
        if isinstance(v, str):
            stripped = v.strip().strip("/")
            return f"/{stripped}" if stripped else "/"
        return v

    @field_validator("bundles", mode="after")
    def _check_bundles(cls, v: Dict[str, str]) -> Dict[str, str]:
        bad = [mount for mount in v if not mount.startswith("/")]
        if bad:
            raise ValueError(f"bundle mount paths must start with '/': {bad}")
        return v

    @model_validator(mode="after")
    def _server_xor_resolver(self) -> SnapshotConfig:
        if self.server is None and self.resolver is None:
            raise ValueError("Server configuration is required: set 'server' or 'resolver'")
        if self.server is not None and self.resolver is not None:
            raise ValueError("'server' and 'resolver' are mutually exclusive")
        return self

    # ------------------------------------------------------------------ #

    @property
    def discovery_policy(self) -> Optional[DiscoveryPolicy]:
        return self.discover if isinstance(self.discover, DiscoveryPolicy) else None

    @property
    def discovery_enabled(self) -> bool:
        return self.discover is not False

    def with_overrides(self, **overrides: Any) -> SnapshotConfig:
        """Возвращает проверенную копию; значения ``None`` игнорируются."""
        data = {name: getattr(self, name) for name in type(self).model_fields}
        data.update({k: v for k, v in overrides.items() if v is not None})
        if isinstance(overrides.get("server"), str):
            data["resolver"] = None
        return type(self)(**data)

    def public_dict(self) -> Dict[str, Any]:
        """JSON-совместимое представление (функции заменены их именами)."""

        def _plain(value: Any) -> Any:
            if isinstance(value, DiscoveryPolicy):
                return value.model_dump()
            if callable(value):
                return f"<function {getattr(value, '__qualname__', repr(value))}>"
            return value

        return {name: _plain(getattr(self, name)) for name in type(self).model_fields}


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise ValueError(f"Неправильный YAML в {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise TypeError(f"Верхний уровень YAML должен быть mapping, получено {type(data).__name__}")
    return data


def _read_json(path: Path) -> dict[str, Any]:
    try:
        data = json.loads(path.read_text(encoding="utf-8")) or {}
    except json.JSONDecodeError as exc:
        raise ValueError(f"Неправильный JSON в {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise TypeError(f"Верхний уровень JSON должен быть mapping, получено {type(data).__name__}")
    return data


def _read_module(path: Path, name: str) -> Union[dict[str, Any], SnapshotConfig]:
    module_spec = importlib.util.spec_from_file_location(f"_site_snapshot_config_{path.stem}", path)
    if module_spec is None or module_spec.loader is None:
        raise ConfigError(f"Не удалось импортировать {path}")
    module = importlib.util.module_from_spec(module_spec)
    module_spec.loader.exec_module(module)
    if not hasattr(module, name):
        raise ConfigError(f"В {path} нет объекта '{name}'")
    data = getattr(module, name)
    if isinstance(data, SnapshotConfig):
        return data
    if not isinstance(data, dict):
        raise TypeError(f"'{name}' в {path} должен быть dict или SnapshotConfig, получено {type(data).__name__}")
    return data


def load_config(path: Union[str, Path], *, name: str = "config") -> SnapshotConfig:
    """
    Читает YAML, JSON или Python-модуль и возвращает проверенный SnapshotConfig.
    При отсутствии файла бросает FileNotFoundError.
    """
    path_obj = Path(path).expanduser().resolve()
    if not path_obj.is_file():
        raise FileNotFoundError(errno.ENOENT, os.strerror(errno.ENOENT), str(path_obj))

    suffix = path_obj.suffix.lower()
    if suffix in (".yaml", ".yml"):
        data = _read_yaml(path_obj)
    elif suffix == ".json":
        data = _read_json(path_obj)
    elif suffix == ".py":
        data = _read_module(path_obj, name)
        if isinstance(data, SnapshotConfig):
            return data
    else:
        raise ValueError(f"Неподдерживаемый формат конфига: {suffix}")

    return SnapshotConfig(**data)
