"""
Client importer feature package.

Mounts the importer blueprint, CLI group and Celery app when
``IMPORTER_ENABLED`` is set, and a stub CLI group otherwise.
"""

from __future__ import annotations

from flask import Flask

from crm_app.utils.importer import is_importer_enabled, is_worker_enabled

from .celery_app import ensure_celery_app, get_celery_app
from .cli import get_disabled_importer_group, importer_cli
from .config_service import ImportConfigService
from .run_service import build_import_context, create_import_run, execute_import_run, summarize_run
from .views import importer_blueprint

IMPORTER_EXTENSION_KEY = "importer"

__all__ = [
    "IMPORTER_EXTENSION_KEY",
    "ImportConfigService",
    "build_import_context",
    "create_import_run",
    "execute_import_run",
    "get_celery_app",
    "init_importer",
    "summarize_run",
]


def _ensure_extension_state(app: Flask) -> dict:
    return app.extensions.setdefault(
        IMPORTER_EXTENSION_KEY,
        {
            "enabled": False,
            "worker_enabled": False,
            "celery_app": None,
        },
    )


def _set_cli(app: Flask, enabled: bool) -> None:
    """Register the appropriate CLI group based on flag state."""
    command_name = importer_cli.name
    if command_name in app.cli.commands:
        app.cli.commands.pop(command_name)

    if enabled:
        app.cli.add_command(importer_cli)
    else:
        app.cli.add_command(get_disabled_importer_group())


def init_importer(app: Flask) -> None:
    """
    Conditionally mount importer blueprint and CLI based on configuration.

    Records importer state inside ``app.extensions['importer']``.
    """
    enabled = is_importer_enabled(app)
    state = _ensure_extension_state(app)
    state.update({"enabled": enabled, "worker_enabled": is_worker_enabled(app)})

    if not enabled:
        _set_cli(app, enabled=False)
        app.logger.info("Importer disabled via IMPORTER_ENABLED flag; skipping registration.")
        return

    ensure_celery_app(app, state)

    if importer_blueprint.name not in app.blueprints and not getattr(app, "_got_first_request", False):
        app.register_blueprint(importer_blueprint)
    elif importer_blueprint.name not in app.blueprints:
        app.logger.warning(
            "Importer blueprint registration skipped because the app has already handled its first request."
        )
    _set_cli(app, enabled=True)
    app.logger.info("Importer enabled", extra={"importer_worker_enabled": state["worker_enabled"]})
