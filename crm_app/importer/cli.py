"""
CLI commands for client imports.

``flask importer run`` queues a CSV import on the worker by default; pass
``--inline`` to execute inside the CLI process and print the report.
"""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

import click
from celery import Celery
from celery.exceptions import TimeoutError as CeleryTimeoutError
from flask.cli import ScriptInfo
from werkzeug.datastructures import FileStorage

from crm_app.importer.adapters import CSVAdapterError
from crm_app.importer.celery_app import DEFAULT_QUEUE_NAME, get_celery_app
from crm_app.importer.config_service import ImportConfigService, get_preset_catalog
from crm_app.importer.pipeline import ConfigError, ImportReport
from crm_app.importer.run_service import (
    build_import_context,
    create_import_run,
    execute_import_run,
    request_cancel,
    summarize_run,
)
from crm_app.importer.utils import allowed_file, cleanup_upload, persist_upload, resolve_upload_directory
from crm_app.models import ImportRun, ImportRunStatus, db
from crm_app.utils.importer import is_importer_enabled


@click.group(name="importer", invoke_without_command=True)
@click.pass_context
def importer_cli(ctx):
    """
    Client import commands.

    Lists the available import presets when invoked without a subcommand.
    """
    info = ctx.ensure_object(ScriptInfo)
    app = info.load_app()
    if not is_importer_enabled(app):
        raise click.ClickException(
            "Importer is disabled via IMPORTER_ENABLED=false. " "Enable it to run importer CLI commands."
        )
    if ctx.invoked_subcommand is None:
        with app.app_context():
            catalog = get_preset_catalog()
        click.echo("Available import presets:")
        for key in catalog.keys():
            click.echo(f"  - {key}")


def get_disabled_importer_group() -> click.Group:
    """
    Return a minimal command group that informs the operator the importer is disabled.
    """

    @click.group(name="importer", invoke_without_command=True)
    def disabled_group():
        raise click.ClickException("Importer commands are unavailable because IMPORTER_ENABLED=false.")

    return disabled_group


def _resolve_celery(app) -> Optional[Celery]:
    celery_app = get_celery_app(app)
    if celery_app is None:
        raise click.ClickException(
            "Importer Celery app is unavailable. Ensure IMPORTER_ENABLED=true and the "
            "importer package initialises before running worker commands."
        )
    return celery_app


def _format_summary(run: ImportRun, report: ImportReport) -> str:
    status_value = run.status.value if hasattr(run.status, "value") else str(run.status)
    lines = [
        f"Run {run.id} completed with status {status_value}.",
        f"  total            : {report.total}",
        f"  created          : {report.created}",
        f"  updated          : {report.updated}",
        f"  skipped          : {report.skipped}",
        f"  errors           : {report.errors}",
        f"  regions_created  : {report.regions_created}",
    ]
    if report.aborted:
        lines.append("  aborted          : yes")
    if report.cancelled:
        lines.append("  cancelled        : yes")
    for error in report.row_errors[:10]:
        lines.append(f"  row {error.row_number}: {error.message}")
    if len(report.row_errors) > 10:
        lines.append(f"  ... {len(report.row_errors) - 10} more error(s)")
    return "\n".join(lines)


@importer_cli.group(name="worker")
@click.pass_context
def worker_group(ctx):
    """Manage the importer background worker."""
    info = ctx.ensure_object(ScriptInfo)
    app = info.load_app()
    state = app.extensions.get("importer", {})
    if not state.get("worker_enabled") and not app.config.get("IMPORTER_WORKER_ENABLED"):
        click.echo(
            "Warning: IMPORTER_WORKER_ENABLED is false. Commands will still run, "
            "but enable the flag to surface accurate health status.",
            err=True,
        )


@worker_group.command("run")
@click.option("--loglevel", default="info", show_default=True)
@click.option("--concurrency", type=int, help="Number of worker processes/threads.")
@click.option(
    "--pool",
    type=str,
    help="Celery pool implementation (e.g., 'prefork', 'solo', 'threads').",
)
@click.option(
    "--queues",
    default=DEFAULT_QUEUE_NAME,
    show_default=True,
    help="Comma-separated queue list to consume.",
)
@click.pass_context
def worker_run(ctx, loglevel: str, concurrency: Optional[int], pool: Optional[str], queues: str):
    """
    Start the Celery worker in the current process.
    """
    info = ctx.ensure_object(ScriptInfo)
    app = info.load_app()
    celery_app = _resolve_celery(app)

    state = app.extensions.get("importer", {})
    if state is not None:
        state["worker_enabled"] = True

    argv = ["worker", "--loglevel", loglevel, "-Q", queues]
    if concurrency:
        argv.extend(["--concurrency", str(concurrency)])
    if pool:
        argv.extend(["--pool", pool])

    pool_msg = f", pool: {pool}" if pool else ""
    click.echo(f"Starting importer worker (queues: {queues}, loglevel: {loglevel}{pool_msg})")
    try:
        celery_app.worker_main(argv=argv)
    except KeyboardInterrupt:
        click.echo("Worker shutdown requested. Exiting...")


@worker_group.command("ping")
@click.option("--timeout", default=10.0, show_default=True, help="Seconds to wait for a response.")
@click.pass_context
def worker_ping(ctx, timeout: float):
    """
    Validate worker connectivity by executing the heartbeat task.
    """
    info = ctx.ensure_object(ScriptInfo)
    app = info.load_app()
    celery_app = _resolve_celery(app)
    task = celery_app.tasks.get("importer.healthcheck")
    if task is None:
        raise click.ClickException("Heartbeat task 'importer.healthcheck' is not registered.")

    result = task.apply_async()
    try:
        payload = result.get(timeout=timeout)
    except CeleryTimeoutError as exc:
        raise click.ClickException(f"Worker did not respond within {timeout}s") from exc

    click.echo(json.dumps(payload, indent=2))


@importer_cli.command("run")
@click.option(
    "--file",
    "file_path",
    required=True,
    type=click.Path(path_type=Path, exists=True, dir_okay=False),
    help="Path to the client CSV file.",
)
@click.option("--group-id", required=True, type=int, help="Target client group.")
@click.option("--user-id", required=True, type=int, help="User performing the import.")
@click.option("--config-id", type=int, help="Stored import config to use (defaults to the owner's default).")
@click.option(
    "--inline/--no-inline",
    default=False,
    help="Run inline within the CLI process instead of queueing via Celery.",
)
@click.option(
    "--keep-file/--remove-file",
    default=True,
    help="Keep the staged copy of the CSV in the upload directory after a queued run finishes.",
)
@click.option(
    "--summary-json",
    is_flag=True,
    help="Emit a machine-readable summary payload after completion (inline runs only).",
)
@click.pass_context
def importer_run(
    ctx,
    file_path: Path,
    group_id: int,
    user_id: int,
    config_id: Optional[int],
    inline: bool,
    keep_file: bool,
    summary_json: bool,
):
    """Import clients from a CSV file into a client group."""
    info = ctx.ensure_object(ScriptInfo)
    app = info.load_app()
    if not is_importer_enabled(app):
        raise click.ClickException("Importer is disabled; enable it via IMPORTER_ENABLED before running.")
    if summary_json and not inline:
        raise click.ClickException("--summary-json is only available for --inline runs.")

    csv_path = file_path.resolve()
    if not allowed_file(csv_path.name):
        raise click.ClickException("Only .csv files can be imported.")

    with app.app_context():
        try:
            context = build_import_context(group_id, user_id)
            ImportConfigService().resolve_for_run(config_id, context.owner_id)
        except ConfigError as exc:
            raise click.ClickException(str(exc)) from exc

        # Queued runs read a staged copy inside the upload directory.
        if not inline:
            with csv_path.open("rb") as handle:
                csv_path = persist_upload(FileStorage(stream=handle, filename=csv_path.name), app)

        run = create_import_run(
            file_path=csv_path,
            group_id=group_id,
            user_id=user_id,
            config_id=config_id,
            keep_file=keep_file,
        )
        run_id = run.id

        if not inline:
            celery_app = _resolve_celery(app)
            try:
                async_result = celery_app.send_task(
                    "importer.pipeline.import_clients",
                    kwargs={"run_id": run_id},
                )
            except Exception as exc:
                recovery_run = db.session.get(ImportRun, run_id)
                if recovery_run is not None:
                    recovery_run.status = ImportRunStatus.FAILED
                    recovery_run.error_summary = str(exc)
                    recovery_run.finished_at = datetime.now(timezone.utc)
                    db.session.commit()
                raise click.ClickException(f"Failed to enqueue import run {run_id}: {exc}") from exc

            app.logger.info(
                "Client import queued via CLI",
                extra={
                    "importer_run_id": run_id,
                    "importer_task_id": async_result.id,
                    "importer_group_id": group_id,
                },
            )
            click.echo(json.dumps({"run_id": run_id, "task_id": async_result.id, "status": "queued"}))
            return

        try:
            report = execute_import_run(run)
        except (ConfigError, CSVAdapterError, FileNotFoundError) as exc:
            raise click.ClickException(f"Import run {run_id} failed: {exc}") from exc

        run = db.session.get(ImportRun, run_id)
        click.echo(_format_summary(run, report))
        if summary_json:
            payload = {"run_id": run_id, "status": run.status.value, **report.to_dict()}
            click.echo(json.dumps(payload, indent=2, sort_keys=True))


@importer_cli.command("status")
@click.option("--run-id", required=True, type=int, help="ID of the import run.")
@click.option("--error-limit", type=int, help="Maximum number of row errors to print.")
@click.pass_context
def importer_status(ctx, run_id: int, error_limit: Optional[int]):
    """Print the stored report of an import run as JSON."""
    info = ctx.ensure_object(ScriptInfo)
    app = info.load_app()
    with app.app_context():
        run = db.session.get(ImportRun, run_id)
        if run is None:
            raise click.ClickException(f"Import run {run_id} not found.")
        click.echo(json.dumps(summarize_run(run, error_limit=error_limit).to_dict(), indent=2))


@importer_cli.command("cancel")
@click.option("--run-id", required=True, type=int, help="ID of the import run to cancel.")
@click.pass_context
def importer_cancel(ctx, run_id: int):
    """Ask a pending or running import to stop before its next row."""
    info = ctx.ensure_object(ScriptInfo)
    app = info.load_app()
    with app.app_context():
        try:
            run = request_cancel(run_id)
        except ValueError as exc:
            raise click.ClickException(str(exc)) from exc
        app.logger.info("Import run cancellation requested", extra={"importer_run_id": run_id})
        click.echo(json.dumps({"run_id": run.id, "status": run.status.value}))


@importer_cli.command("presets")
@click.pass_context
def importer_presets(ctx):
    """Show the import presets and their policies."""
    info = ctx.ensure_object(ScriptInfo)
    app = info.load_app()
    with app.app_context():
        catalog = get_preset_catalog()
    payload = [
        {"key": preset.key, "label": preset.label, "description": preset.description, "config": preset.config_payload()}
        for preset in catalog.presets
    ]
    click.echo(json.dumps(payload, indent=2, ensure_ascii=False))


@importer_cli.group(name="configs")
def configs_group():
    """Manage stored import configurations."""


@configs_group.command("list")
@click.option("--user-id", required=True, type=int)
@click.pass_context
def configs_list(ctx, user_id: int):
    info = ctx.find_object(ScriptInfo)
    app = info.load_app()
    with app.app_context():
        records = ImportConfigService().list_configs(user_id)
        payload = [
            {"id": record.id, "name": record.name, "is_default": record.is_default, "description": record.description}
            for record in records
        ]
    click.echo(json.dumps(payload, indent=2, ensure_ascii=False))


@configs_group.command("from-preset")
@click.option("--user-id", required=True, type=int)
@click.option("--preset", "preset_key", required=True, help="Preset key, see `flask importer presets`.")
@click.option("--name", help="Config name (defaults to the preset label).")
@click.option("--default", "is_default", is_flag=True, help="Make this the user's default config.")
@click.pass_context
def configs_from_preset(ctx, user_id: int, preset_key: str, name: Optional[str], is_default: bool):
    """Store a preset as a named config for a user."""
    info = ctx.find_object(ScriptInfo)
    app = info.load_app()
    with app.app_context():
        try:
            record = ImportConfigService().create_from_preset(preset_key, user_id, name=name, is_default=is_default)
        except ConfigError as exc:
            raise click.ClickException(str(exc)) from exc
        click.echo(json.dumps({"id": record.id, "name": record.name, "is_default": record.is_default}))


@importer_cli.command("cleanup-uploads")
@click.option(
    "--max-age-hours",
    default=72,
    show_default=True,
    type=int,
    help="Remove importer uploads older than the specified number of hours.",
)
@click.pass_context
def importer_cleanup_uploads(ctx, max_age_hours: int):
    """
    Delete stale importer upload files from the configured storage directory.
    """

    info = ctx.ensure_object(ScriptInfo)
    app = info.load_app()

    uploads_dir = resolve_upload_directory(app)
    if not uploads_dir.exists():
        click.echo(f"No upload directory found at {uploads_dir}. Nothing to clean.")
        return

    cutoff = datetime.now(timezone.utc) - timedelta(hours=max_age_hours)
    removed = 0
    for path in uploads_dir.iterdir():
        if not path.is_file():
            continue
        try:
            modified = datetime.fromtimestamp(path.stat().st_mtime, timezone.utc)
        except FileNotFoundError:  # pragma: no cover - race condition
            continue
        if modified < cutoff:
            cleanup_upload(path)
            removed += 1

    click.echo(f"Removed {removed} upload file(s) older than {max_age_hours} hours from {uploads_dir}.")
