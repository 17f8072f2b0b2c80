"""
Application logging setup.

Handlers are attached to ``app.logger`` so every ``extra={...}`` field logged
by the importer shows up as a top-level key in JSON output.
"""

from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from flask import Flask
from pythonjsonlogger import jsonlogger

TEXT_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
JSON_FORMAT = "%(asctime)s %(name)s %(levelname)s %(message)s"


class _AppInfoFilter(logging.Filter):
    def __init__(self, app_name: str, app_version: str) -> None:
        super().__init__()
        self.app_name = app_name
        self.app_version = app_version

    def filter(self, record: logging.LogRecord) -> bool:
        record.app_name = self.app_name
        record.app_version = self.app_version
        return True


def _build_formatter(log_format: str) -> logging.Formatter:
    if log_format == "json":
        return jsonlogger.JsonFormatter(
            JSON_FORMAT,
            rename_fields={"asctime": "timestamp", "levelname": "level"},
        )
    return logging.Formatter(TEXT_FORMAT)


def _resolve_log_dir(app: Flask) -> Path:
    log_dir = Path(app.config.get("LOG_DIR", "logs"))
    if not log_dir.is_absolute():
        log_dir = Path(app.root_path) / log_dir
    log_dir.mkdir(parents=True, exist_ok=True)
    return log_dir


def setup_logging(app: Flask) -> None:
    """Configure ``app.logger`` from the ``LOG_*`` settings."""

    level_name = str(app.config.get("LOG_LEVEL", "INFO")).upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        level = logging.INFO
    formatter = _build_formatter(str(app.config.get("LOG_FORMAT", "json")).lower())
    info_filter = _AppInfoFilter(
        app.config.get("APP_NAME", app.import_name),
        app.config.get("APP_VERSION", "unknown"),
    )

    app.logger.handlers.clear()
    app.logger.setLevel(level)
    app.logger.propagate = False

    if app.config.get("ENABLE_CONSOLE_LOGGING", True):
        console = logging.StreamHandler(sys.stdout)
        console.setFormatter(formatter)
        console.addFilter(info_filter)
        app.logger.addHandler(console)

    if app.config.get("ENABLE_FILE_LOGGING", False):
        file_handler = RotatingFileHandler(
            _resolve_log_dir(app) / app.config.get("LOG_FILE_NAME", "crm_app.log"),
            maxBytes=int(app.config.get("LOG_FILE_MAX_BYTES", 10485760)),
            backupCount=int(app.config.get("LOG_FILE_BACKUP_COUNT", 10)),
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        file_handler.addFilter(info_filter)
        app.logger.addHandler(file_handler)

    if not app.logger.handlers:
        app.logger.addHandler(logging.NullHandler())

    app.logger.debug("Logging configured", extra={"log_level": level_name})
