import json
import os
import time
from pathlib import Path
from unittest.mock import Mock, patch

import pytest
from flask import Flask

from crm_app.importer import init_importer
from crm_app.importer.run_service import create_import_run
from crm_app.models import Client, ImportConfigRecord, ImportRun, ImportRunStatus, db

pytestmark = pytest.mark.integration


def _run_args(path, group, user, *extra):
    return [
        "importer",
        "run",
        "--file",
        str(path),
        "--group-id",
        str(group.id),
        "--user-id",
        str(user.id),
        *extra,
    ]


def _json_tail(output: str):
    return json.loads(output[output.index("{") :])


def test_importer_run_cli_queues_staged_copy_by_default(app, runner, csv_writer, owner, target_group):
    path = csv_writer("Иванов Иван,+79991234567,Тверь,")

    async_result = Mock()
    async_result.id = "celery-task-123"
    celery_app = Mock()
    celery_app.send_task.return_value = async_result

    with patch("crm_app.importer.cli._resolve_celery", return_value=celery_app):
        result = runner.invoke(args=_run_args(path, target_group, owner, "--remove-file"))

    assert result.exit_code == 0, result.output
    payload = json.loads(result.output.strip())
    assert payload == {"run_id": payload["run_id"], "task_id": "celery-task-123", "status": "queued"}
    celery_app.send_task.assert_called_once_with(
        "importer.pipeline.import_clients", kwargs={"run_id": payload["run_id"]}
    )

    db.session.expire_all()
    run = db.session.get(ImportRun, payload["run_id"])
    assert run.status is ImportRunStatus.PENDING
    staged = Path(run.ingest_params_json["file_path"])
    assert staged.parent == Path(app.config["IMPORTER_UPLOAD_DIR"])
    assert staged.read_text(encoding="utf-8") == path.read_text(encoding="utf-8")
    assert run.ingest_params_json["keep_file"] is False
    assert db.session.query(Client).count() == 0


def test_importer_run_cli_enqueue_failure_marks_run_failed(runner, csv_writer, owner, target_group):
    path = csv_writer("Иванов Иван,+79991234567,Тверь,")
    celery_app = Mock()
    celery_app.send_task.side_effect = RuntimeError("broker down")

    with patch("crm_app.importer.cli._resolve_celery", return_value=celery_app):
        result = runner.invoke(args=_run_args(path, target_group, owner))

    assert result.exit_code != 0
    assert "Failed to enqueue import run" in result.output

    db.session.expire_all()
    (run,) = db.session.query(ImportRun).all()
    assert run.status is ImportRunStatus.FAILED
    assert run.error_summary == "broker down"


def test_importer_run_cli_summary_json_requires_inline(runner, csv_writer, owner, target_group):
    path = csv_writer("Иванов Иван,+79991234567,Тверь,")

    with patch("crm_app.importer.cli._resolve_celery") as mock_resolve:
        result = runner.invoke(args=_run_args(path, target_group, owner, "--summary-json"))

    assert result.exit_code != 0
    assert "--summary-json is only available for --inline runs" in result.output
    mock_resolve.assert_not_called()
    assert db.session.query(ImportRun).count() == 0


def test_importer_run_cli_inline_prints_summary(runner, csv_writer, owner, target_group):
    path = csv_writer(
        "Иванов Иван,+79991234567,Тверь,",
        "Петров Пётр,,Тверь,",
    )

    result = runner.invoke(args=_run_args(path, target_group, owner, "--inline", "--summary-json"))

    assert result.exit_code == 0, result.output
    assert "completed with status succeeded" in result.output
    assert "row 3: At least one valid phone number is required." in result.output
    payload = _json_tail(result.output)
    assert payload["status"] == "succeeded"
    assert (payload["created"], payload["skipped"], payload["regions_created"]) == (1, 1, 1)
    assert payload["row_errors"][0]["row"] == 3
    assert db.session.query(Client).count() == 1


def test_importer_run_cli_rejects_unauthorized_user(runner, csv_writer, other_owner, target_group):
    path = csv_writer("Иванов Иван,+79991234567,Тверь,")

    result = runner.invoke(args=_run_args(path, target_group, other_owner, "--inline"))

    assert result.exit_code != 0
    assert "may not import" in result.output
    assert db.session.query(ImportRun).count() == 0


def test_importer_run_cli_reports_bad_header(runner, csv_writer, owner, target_group):
    path = csv_writer("Иван", header="ФИО\n")

    result = runner.invoke(args=_run_args(path, target_group, owner, "--inline"))

    assert result.exit_code != 0
    assert "Missing required columns" in result.output
    db.session.expire_all()
    assert db.session.query(ImportRun).one().status is ImportRunStatus.FAILED


def test_importer_status_and_cancel(runner, csv_writer, owner, target_group):
    run = create_import_run(
        file_path=csv_writer("Иван,+79991234567,,"), group_id=target_group.id, user_id=owner.id
    )

    status = runner.invoke(args=["importer", "status", "--run-id", str(run.id)])
    assert status.exit_code == 0, status.output
    assert json.loads(status.output)["status"] == "pending"

    cancel = runner.invoke(args=["importer", "cancel", "--run-id", str(run.id)])
    assert cancel.exit_code == 0, cancel.output
    assert json.loads(cancel.output) == {"run_id": run.id, "status": "cancelled"}

    again = runner.invoke(args=["importer", "cancel", "--run-id", str(run.id)])
    assert again.exit_code != 0
    assert "already cancelled" in again.output

    missing = runner.invoke(args=["importer", "status", "--run-id", "999"])
    assert missing.exit_code != 0
    assert "not found" in missing.output


def test_importer_status_respects_error_limit(runner, csv_writer, owner, target_group):
    path = csv_writer(*(f"Client {n},,," for n in range(4)))
    runner.invoke(args=_run_args(path, target_group, owner, "--inline"))
    run_id = db.session.query(ImportRun.id).scalar()

    result = runner.invoke(args=["importer", "status", "--run-id", str(run_id), "--error-limit", "1"])

    payload = json.loads(result.output)
    assert payload["total_errors"] == 4
    assert len(payload["errors"]) == 1


def test_importer_presets_and_default_listing(runner):
    result = runner.invoke(args=["importer", "presets"])
    assert result.exit_code == 0, result.output
    presets = json.loads(result.output)
    assert presets[0]["key"] == "full_import"
    assert presets[0]["config"]["searchScope"]["scopes"] == ["none"]

    listing = runner.invoke(args=["importer"])
    assert listing.exit_code == 0, listing.output
    assert "Available import presets:" in listing.output
    assert "  - smart_import" in listing.output


def test_importer_configs_from_preset_and_list(runner, owner):
    created = runner.invoke(
        args=["importer", "configs", "from-preset", "--user-id", str(owner.id), "--preset", "group_search", "--default"]
    )
    assert created.exit_code == 0, created.output
    payload = json.loads(created.output)
    assert payload["is_default"] is True

    listing = runner.invoke(args=["importer", "configs", "list", "--user-id", str(owner.id)])
    assert [item["id"] for item in json.loads(listing.output)] == [payload["id"]]

    unknown = runner.invoke(
        args=["importer", "configs", "from-preset", "--user-id", str(owner.id), "--preset", "nope"]
    )
    assert unknown.exit_code != 0
    assert "Unknown import preset" in unknown.output
    assert db.session.query(ImportConfigRecord).count() == 1


def test_cleanup_uploads_removes_stale_files(app, runner):
    upload_dir = Path(app.config["IMPORTER_UPLOAD_DIR"])
    upload_dir.mkdir(parents=True, exist_ok=True)
    stale = upload_dir / "stale.csv"
    fresh = upload_dir / "fresh.csv"
    stale.write_text("x", encoding="utf-8")
    fresh.write_text("x", encoding="utf-8")
    old = time.time() - 5 * 3600
    os.utime(stale, (old, old))

    result = runner.invoke(args=["importer", "cleanup-uploads", "--max-age-hours", "1"])

    assert result.exit_code == 0, result.output
    assert "Removed 1 upload file(s)" in result.output
    assert not stale.exists()
    assert fresh.exists()


def test_disabled_importer_group_explains_flag():
    app = Flask(__name__)
    app.config.update(SECRET_KEY="test-secret", TESTING=True, IMPORTER_ENABLED=False)
    init_importer(app)

    result = app.test_cli_runner().invoke(args=["importer"])

    assert result.exit_code != 0
    assert "IMPORTER_ENABLED=false" in result.output
    assert "importer" not in app.blueprints


def test_importer_run_cli_rejects_non_csv_files(runner, tmp_path, owner, target_group):
    path = tmp_path / "clients.xlsx"
    path.write_bytes(b"not a csv")

    result = runner.invoke(args=_run_args(path, target_group, owner, "--inline"))

    assert result.exit_code != 0
    assert "Only .csv files can be imported." in result.output
