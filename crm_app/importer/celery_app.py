"""
Celery wiring for the background client import worker.

The broker defaults to a SQLite transport in the Flask instance folder so a
local worker needs no Redis; set ``CELERY_BROKER_URL`` and
``CELERY_RESULT_BACKEND`` to point at real infrastructure.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Mapping

from celery import Celery
from flask import Flask
from kombu import Queue

DEFAULT_QUEUE_NAME = "client_imports"
DEFAULT_SQLITE_FILENAME = "celery.sqlite"


def _quiet_worker_loggers(app: Flask) -> None:
    """Keep SQL echo and per-message worker chatter out of import logs."""
    if not app.config.get("SQLALCHEMY_ECHO", False):
        logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("celery.worker.strategy").setLevel(logging.WARNING)


def _sqlite_transport_path(app: Flask) -> Path:
    configured = app.config.get("CELERY_SQLITE_PATH")
    if configured:
        sqlite_path = Path(configured)
        if not sqlite_path.is_absolute():
            sqlite_path = Path(app.instance_path) / sqlite_path
    else:
        sqlite_path = Path(app.instance_path) / DEFAULT_SQLITE_FILENAME

    sqlite_path.parent.mkdir(parents=True, exist_ok=True)
    return sqlite_path


def resolve_connection_urls(app: Flask) -> tuple[str, str]:
    """
    Return ``(broker_url, result_backend)``, filling gaps with SQLite URLs.
    """
    broker_url = app.config.get("CELERY_BROKER_URL")
    result_backend = app.config.get("CELERY_RESULT_BACKEND")
    if broker_url and result_backend:
        return broker_url, result_backend

    # Celery expects forward slashes even on Windows.
    normalized = _sqlite_transport_path(app).as_posix()
    return broker_url or f"sqla+sqlite:///{normalized}", result_backend or f"db+sqlite:///{normalized}"


def _extra_conf(app: Flask) -> Mapping[str, Any] | None:
    extra_conf: Mapping[str, Any] | str | None = app.config.get("CELERY_CONFIG")
    if isinstance(extra_conf, str):
        try:
            return json.loads(extra_conf)
        except json.JSONDecodeError:
            app.logger.warning("CELERY_CONFIG is not valid JSON; ignoring value.", exc_info=True)
            return None
    return extra_conf


def create_celery_app(app: Flask) -> Celery:
    """
    Build a Celery instance whose tasks run inside ``app``'s context.
    """
    broker_url, result_backend = resolve_connection_urls(app)
    celery_app = Celery(
        app.import_name,
        broker=broker_url,
        backend=result_backend,
        include=("crm_app.importer.tasks",),
    )

    queue_name = app.config.get("IMPORTER_CELERY_QUEUE", DEFAULT_QUEUE_NAME)
    celery_app.conf.update(
        task_default_queue=queue_name,
        task_queues=[Queue(queue_name)],
        task_default_exchange=queue_name,
        task_default_routing_key=queue_name,
        task_acks_late=True,
        worker_prefetch_multiplier=1,
        task_track_started=True,
        result_extended=True,
        broker_connection_retry_on_startup=True,
        task_time_limit=app.config.get("IMPORTER_TASK_TIME_LIMIT", 30 * 60),
        task_soft_time_limit=app.config.get("IMPORTER_TASK_SOFT_TIME_LIMIT", 25 * 60),
        worker_log_format="[%(asctime)s: %(levelname)s/%(processName)s] %(message)s",
        worker_task_log_format="[%(asctime)s: %(levelname)s/%(processName)s][%(task_name)s(%(task_id)s)] %(message)s",
        worker_hijack_root_logger=False,
    )

    extra_conf = _extra_conf(app)
    app.logger.info(
        "Importer Celery configuration resolved",
        extra={
            "importer_celery_broker_url": broker_url,
            "importer_celery_result_backend": result_backend,
            "importer_celery_queue": queue_name,
            "importer_worker_enabled": app.config.get("IMPORTER_WORKER_ENABLED"),
        },
    )
    if extra_conf:
        celery_app.conf.update(extra_conf)

    _quiet_worker_loggers(app)

    class FlaskContextTask(celery_app.Task):  # type: ignore[misc]
        """Run Celery tasks inside a Flask application context."""

        def __call__(self, *args, **kwargs):
            with app.app_context():
                return super().__call__(*args, **kwargs)

    celery_app.Task = FlaskContextTask  # type: ignore[assignment]
    celery_app.loader.import_default_modules()
    return celery_app


def ensure_celery_app(app: Flask, state: dict[str, Any]) -> Celery:
    """Return (and cache) the Celery instance inside the importer extension state."""
    celery_app: Celery | None = state.get("celery_app")
    if celery_app is None:
        celery_app = create_celery_app(app)
        state["celery_app"] = celery_app
    return celery_app


def get_celery_app(app: Flask) -> Celery | None:
    """Fetch the importer's Celery instance, creating it when the importer is enabled."""
    state: dict[str, Any] | None = app.extensions.get("importer")  # type: ignore[arg-type]
    if not state:
        return None
    celery_app: Celery | None = state.get("celery_app")
    if celery_app is None and state.get("enabled"):
        celery_app = ensure_celery_app(app, state)
    return celery_app
