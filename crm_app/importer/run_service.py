"""
Import run lifecycle: create, execute, persist and summarize client imports.

Both the CLI (inline runs) and the Celery worker go through
``execute_import_run`` so status transitions and report persistence are
identical regardless of where the import executes.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable

from flask import current_app, has_app_context
from sqlalchemy.orm import Session

from crm_app.models import ClientGroup, ImportRun, ImportRunStatus, User, db

from .adapters import ClientCSVAdapter
from .config_service import ImportConfigService
from .metrics import record_run
from .pipeline.config import ConfigError, ImportContext
from .pipeline.orchestrator import ImportReport, run_client_import

RUN_SOURCE = "csv"
RUN_ADAPTER = "csv_clients"
DEFAULT_ERROR_LIMIT = 20


def build_import_context(
    group_id: int,
    user_id: int,
    *,
    run_id: int | None = None,
    session: Session | None = None,
) -> ImportContext:
    """
    Resolve who owns the import and whether the caller may run it.

    Imported clients belong to the target group's owner. Only the owner or a
    super admin may import into a group; super admins are also the only
    callers allowed to search across all users.
    """

    session = session or db.session
    user = session.get(User, user_id)
    if user is None:
        raise ConfigError(f"User {user_id} not found.")
    group = session.get(ClientGroup, group_id)
    if group is None:
        raise ConfigError(f"Client group {group_id} not found.")
    if group.user_id != user.id and not user.is_super_admin:
        raise ConfigError(f"User {user_id} may not import into client group {group_id}.")
    return ImportContext(
        owner_id=group.user_id,
        group_id=group.id,
        is_privileged=bool(user.is_super_admin),
        run_id=run_id,
    )


def create_import_run(
    *,
    file_path: str | Path,
    group_id: int,
    user_id: int,
    config_id: int | None = None,
    keep_file: bool = True,
    session: Session | None = None,
) -> ImportRun:
    """Create a pending run and store everything the worker needs to execute it."""

    session = session or db.session
    run = ImportRun(
        source=RUN_SOURCE,
        adapter=RUN_ADAPTER,
        status=ImportRunStatus.PENDING,
        triggered_by_user_id=user_id,
        group_id=group_id,
        config_id=config_id,
        ingest_params_json={
            "file_path": str(file_path),
            "group_id": group_id,
            "user_id": user_id,
            "config_id": config_id,
            "keep_file": keep_file,
        },
    )
    session.add(run)
    session.commit()
    return run


def cancel_requested(run_id: int, *, session: Session | None = None) -> bool:
    session = session or db.session
    status = session.query(ImportRun.status).filter(ImportRun.id == run_id).scalar()
    return status == ImportRunStatus.CANCELLED


def request_cancel(run_id: int, *, session: Session | None = None) -> ImportRun:
    """Flag a pending or running run as cancelled; the worker stops before its next row."""

    session = session or db.session
    run = session.get(ImportRun, run_id)
    if run is None:
        raise ValueError(f"Import run {run_id} not found.")
    if run.status not in (ImportRunStatus.PENDING, ImportRunStatus.RUNNING):
        raise ValueError(f"Import run {run_id} is already {run.status.value}.")
    run.status = ImportRunStatus.CANCELLED
    if run.started_at is None:
        run.finished_at = datetime.now(timezone.utc)
    session.commit()
    return run


def final_status(report: ImportReport) -> ImportRunStatus:
    if report.cancelled:
        return ImportRunStatus.CANCELLED
    if report.aborted or report.errors:
        return ImportRunStatus.PARTIALLY_FAILED
    return ImportRunStatus.SUCCEEDED


def persist_report(run: ImportRun, report: ImportReport) -> None:
    """
    Store the full report on ``run``; the caller commits.

    A cancel request that landed after the last row was read keeps the run
    ``cancelled`` even though every row was processed.
    """

    stored_status = db.session.query(ImportRun.status).filter(ImportRun.id == run.id).scalar()
    cancelled = report.cancelled or stored_status == ImportRunStatus.CANCELLED
    run.counts_json = {**report.counts(), "aborted": report.aborted, "cancelled": cancelled}
    run.errors_json = [error.to_dict() for error in report.row_errors]
    run.warnings_json = list(report.warnings)
    if report.aborted and report.row_errors:
        last = report.row_errors[-1]
        run.error_summary = f"Aborted at row {last.row_number}: {last.message}"
    elif report.errors:
        run.error_summary = f"{report.errors} row(s) failed."
    else:
        run.error_summary = None
    run.status = ImportRunStatus.CANCELLED if cancelled else final_status(report)
    run.finished_at = datetime.now(timezone.utc)


def _mark_failed(run_id: int, message: str) -> None:
    db.session.rollback()
    run = db.session.get(ImportRun, run_id)
    if run is None:
        return
    run.status = ImportRunStatus.FAILED
    run.error_summary = message
    run.finished_at = datetime.now(timezone.utc)
    db.session.commit()


def execute_import_run(
    run: ImportRun,
    *,
    should_cancel: Callable[[], bool] | None = None,
    config_service: ImportConfigService | None = None,
) -> ImportReport:
    """
    Run the import described by ``run.ingest_params_json`` and persist the report.

    Setup failures (missing file, bad header, unusable config) mark the run
    ``failed`` and re-raise; row-level problems never do.
    """

    params: dict[str, Any] = dict(run.ingest_params_json or {})
    run_id = run.id
    started = time.monotonic()

    if run.status is ImportRunStatus.CANCELLED:
        report = ImportReport.from_results((), regions_created=0, cancelled=True)
        persist_report(run, report)
        db.session.commit()
        return report

    run.status = ImportRunStatus.RUNNING
    run.started_at = datetime.now(timezone.utc)
    db.session.commit()

    try:
        path = Path(params["file_path"])
        if not path.exists():
            raise FileNotFoundError(f"CSV file not found: {path}")

        context = build_import_context(params["group_id"], params["user_id"], run_id=run_id)
        service = config_service or ImportConfigService()
        config, _record = service.resolve_for_run(params.get("config_id"), context.owner_id)
        run.config_snapshot_json = config.to_dict()
        db.session.commit()

        if should_cancel is None:

            def should_cancel() -> bool:
                return cancel_requested(run_id)

        with path.open("r", encoding="utf-8-sig", newline="") as handle:
            adapter = ClientCSVAdapter(handle)
            adapter.validate_header()
            report = run_client_import(adapter, config, context, should_cancel=should_cancel)

        run = db.session.get(ImportRun, run_id)
        persist_report(run, report)
        run.counts_json = {**run.counts_json, "rows_skipped_blank": adapter.statistics.rows_skipped_blank}
        db.session.commit()
    except Exception as exc:
        _mark_failed(run_id, str(exc))
        record_run(status=ImportRunStatus.FAILED.value, duration_seconds=time.monotonic() - started)
        if has_app_context():
            current_app.logger.exception(
                "Client import run failed",
                extra={"importer_run_id": run_id, "importer_error": str(exc)},
            )
        raise

    record_run(status=run.status.value, duration_seconds=time.monotonic() - started)
    if has_app_context():
        current_app.logger.info(
            "Client import run finished",
            extra={
                "importer_run_id": run_id,
                "importer_status": run.status.value,
                **{f"importer_rows_{key}": value for key, value in report.counts().items()},
            },
        )
    return report


@dataclass(frozen=True)
class RunSummary:
    """Display-ready view of a run: counts plus a bounded slice of its errors."""

    run_id: int
    status: str
    counts: dict[str, Any]
    errors: list[dict[str, Any]]
    total_errors: int
    warnings: list[str]
    total_warnings: int
    error_summary: str | None
    started_at: str | None
    finished_at: str | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "status": self.status,
            "counts": self.counts,
            "errors": self.errors,
            "total_errors": self.total_errors,
            "warnings": self.warnings,
            "total_warnings": self.total_warnings,
            "error_summary": self.error_summary,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
        }


def summarize_run(run: ImportRun, *, error_limit: int | None = None) -> RunSummary:
    if error_limit is None:
        error_limit = DEFAULT_ERROR_LIMIT
        if has_app_context():
            error_limit = int(current_app.config.get("IMPORTER_REPORT_ERROR_LIMIT", DEFAULT_ERROR_LIMIT))
    errors = list(run.errors_json or [])
    warnings = list(run.warnings_json or [])
    return RunSummary(
        run_id=run.id,
        status=run.status.value,
        counts=dict(run.counts_json or {}),
        errors=errors[:error_limit],
        total_errors=len(errors),
        warnings=warnings[:error_limit],
        total_warnings=len(warnings),
        error_summary=run.error_summary,
        started_at=run.started_at.isoformat() if run.started_at else None,
        finished_at=run.finished_at.isoformat() if run.finished_at else None,
    )
