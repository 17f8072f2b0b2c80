import pytest

from crm_app.importer.pipeline.config import ErrorHandling, ValidationRules
from crm_app.importer.pipeline.normalize import ImportRow, normalize_row
from crm_app.importer.pipeline.validation import ImportAborted, RowError, validate_candidate

pytestmark = pytest.mark.unit


def _rules(error_handling=ErrorHandling.SKIP, *, name=True, phone=True, region=True):
    return ValidationRules(
        require_name=name,
        require_phone=phone,
        require_region=region,
        error_handling=error_handling,
    )


def _candidate(**fields):
    return normalize_row(ImportRow(row_number=fields.pop("row_number", 7), **fields))


def test_valid_candidate_passes():
    result = validate_candidate(_candidate(name="Ivan", phone="+79991234567", region="Tver"), _rules())
    assert result.ok
    assert result.warnings == ()


def test_skip_mode_returns_error_with_messages_in_field_order():
    candidate = _candidate(name="", phone="", region="")
    result = validate_candidate(candidate, _rules())

    assert not result.ok
    assert result.error.message == (
        "Name is required.; At least one valid phone number is required.; Region is required."
    )
    row_error = result.error.to_row_error()
    assert row_error.row_number == 7
    assert row_error.kind == "validation"


def test_phone_with_only_invalid_tokens_counts_as_missing():
    result = validate_candidate(_candidate(name="Ivan", phone="123", region="Tver"), _rules())
    assert not result.ok
    assert [violation.field for violation in result.error.violations] == ["phone"]
    assert result.error.to_row_error().phone == "123"


def test_stop_mode_raises_import_aborted():
    with pytest.raises(ImportAborted) as excinfo:
        validate_candidate(_candidate(name="Ivan", phone="+79991234567"), _rules(ErrorHandling.STOP))

    assert excinfo.value.row_error.message == "Region is required."
    assert "row 7" in str(excinfo.value)


def test_warn_mode_accepts_row_and_reports_warnings():
    result = validate_candidate(_candidate(phone="+79991234567"), _rules(ErrorHandling.WARN))

    assert result.ok
    assert result.warnings == ("Row 7: Name is required.", "Row 7: Region is required.")


def test_disabled_rules_never_fire():
    result = validate_candidate(_candidate(), _rules(name=False, phone=False, region=False))
    assert result.ok


def test_row_error_to_dict_shape():
    error = RowError(row_number=3, message="Name is required.", kind="validation", phone="+79991234567")
    assert error.to_dict() == {
        "row": 3,
        "message": "Name is required.",
        "kind": "validation",
        "data": {"name": None, "phone": "+79991234567", "region": None},
    }
