"""
Importer blueprint endpoints for health and import run reports.
"""

from __future__ import annotations

import time
from http import HTTPStatus

from celery.exceptions import TimeoutError as CeleryTimeoutError
from flask import Blueprint, current_app, jsonify, request

from config.monitoring import ImporterMonitoring
from crm_app.models import ImportRun, db
from crm_app.utils.importer import is_importer_enabled

from .celery_app import DEFAULT_QUEUE_NAME, get_celery_app
from .run_service import summarize_run

importer_blueprint = Blueprint("importer", __name__, url_prefix="/importer")


def _json_error(message: str, status: HTTPStatus):
    return jsonify({"error": message}), status


@importer_blueprint.get("/health")
def importer_healthcheck():
    """
    Lightweight health endpoint proving the importer blueprint mounted correctly.
    """
    importer_state = current_app.extensions.get("importer", {})
    return (
        jsonify(
            {
                "status": "ok",
                "enabled": importer_state.get("enabled", False),
                "worker_enabled": importer_state.get("worker_enabled", False),
            }
        ),
        200,
    )


@importer_blueprint.get("/worker_health")
def importer_worker_health():
    """
    Validate importer worker availability via the heartbeat task.
    """
    importer_state = current_app.extensions.get("importer", {})
    enabled = importer_state.get("enabled", False)
    worker_enabled = importer_state.get("worker_enabled", False)
    timeout_seconds = float(request.args.get("timeout", 5))

    payload = {
        "importer_enabled": enabled,
        "worker_enabled": worker_enabled,
        "queue": current_app.config.get("IMPORTER_CELERY_QUEUE", DEFAULT_QUEUE_NAME),
        "timeout_seconds": timeout_seconds,
    }

    if not enabled or not worker_enabled:
        payload["status"] = "disabled"
        if enabled:
            payload["message"] = "Worker flag disabled; start the worker or set IMPORTER_WORKER_ENABLED=true."
        return jsonify(payload), 200

    celery_app = get_celery_app(current_app)
    if celery_app is None:
        payload["status"] = "error"
        payload["error"] = "celery_app_unavailable"
        return jsonify(payload), 500

    task = celery_app.tasks.get("importer.healthcheck")
    if task is None:
        payload["status"] = "error"
        payload["error"] = "heartbeat_task_missing"
        return jsonify(payload), 500

    result = task.apply_async()
    try:
        payload["status"] = "ok"
        payload["heartbeat"] = result.get(timeout=timeout_seconds)
        return jsonify(payload), 200
    except CeleryTimeoutError:
        payload["status"] = "timeout"
        return jsonify(payload), 504


def _error_limit() -> int:
    default = int(current_app.config.get("IMPORTER_REPORT_ERROR_LIMIT", 20))
    raw = request.args.get("error_limit")
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValueError("error_limit must be an integer.") from exc
    if value < 0:
        raise ValueError("error_limit must not be negative.")
    return min(value, default)


@importer_blueprint.get("/runs/<int:run_id>")
def importer_run_detail(run_id: int):
    """Return counts, the first errors and warnings, and totals for an import run."""
    if not is_importer_enabled(current_app):
        return _json_error("Importer is disabled.", HTTPStatus.NOT_FOUND)

    start_time = time.perf_counter()
    try:
        error_limit = _error_limit()
    except ValueError as exc:
        ImporterMonitoring.record_run_report(duration_seconds=0.0, status="invalid_request")
        return _json_error(str(exc), HTTPStatus.BAD_REQUEST)

    run = db.session.get(ImportRun, run_id)
    if run is None:
        ImporterMonitoring.record_run_report(
            duration_seconds=time.perf_counter() - start_time, status="not_found"
        )
        return _json_error(f"Import run {run_id} not found.", HTTPStatus.NOT_FOUND)

    summary = summarize_run(run, error_limit=error_limit)
    payload = {
        **summary.to_dict(),
        "source": run.source,
        "adapter": run.adapter,
        "group_id": run.group_id,
        "config_id": run.config_id,
        "config_snapshot": run.config_snapshot_json,
    }

    duration = time.perf_counter() - start_time
    ImporterMonitoring.record_run_report(duration_seconds=duration, status="success")
    current_app.logger.info(
        "Importer run report retrieved",
        extra={
            "importer_run_id": run_id,
            "importer_status": summary.status,
            "importer_total_errors": summary.total_errors,
            "importer_response_time_ms": round(duration * 1000, 2),
        },
    )
    return jsonify(payload), HTTPStatus.OK
