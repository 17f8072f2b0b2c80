"""
Importer Celery tasks.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from celery import shared_task

from crm_app.importer.run_service import execute_import_run, summarize_run
from crm_app.importer.utils import cleanup_upload
from crm_app.models import ImportRun, db


@shared_task(name="importer.healthcheck", bind=True)
def importer_healthcheck(self) -> dict[str, Any]:
    """
    Simple heartbeat task used by worker health checks.
    """
    now = datetime.now(timezone.utc)
    return {
        "status": "ok",
        "timestamp": now.isoformat(),
        "worker_hostname": self.request.hostname,
    }


@shared_task(name="importer.pipeline.import_clients", bind=True)
def import_clients(self, *, run_id: int) -> dict[str, Any]:
    """
    Execute a queued client import run via the importer worker.

    The uploaded file is removed afterwards unless the run was queued with
    ``keep_file``.
    """

    run = db.session.get(ImportRun, run_id)
    if run is None:
        raise ValueError(f"Import run {run_id} not found.")

    params = run.ingest_params_json or {}
    cleanup_target: Path | None = None if params.get("keep_file", True) else Path(params["file_path"])

    try:
        report = execute_import_run(run)
        run = db.session.get(ImportRun, run_id)
        return {
            **summarize_run(run).to_dict(),
            "counts": report.counts(),
        }
    finally:
        if cleanup_target is not None:
            cleanup_upload(cleanup_target)
