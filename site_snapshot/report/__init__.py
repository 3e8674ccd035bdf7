"""site_snapshot.report: Сохранение отчёта о запуске (JSON-манифест)."""

from __future__ import annotations

from .json_report import render_json

__all__ = ["render_json"]
