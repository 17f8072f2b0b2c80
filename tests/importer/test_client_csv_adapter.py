import io

import pytest

from crm_app.importer.adapters import ClientCSVAdapter, CSVHeaderError, CSVRowError
from crm_app.importer.adapters.csv_clients import normalize_header, resolve_headers
from crm_app.importer.pipeline.normalize import RowSourceError

pytestmark = pytest.mark.unit


def _make_csv(contents: str) -> io.StringIO:
    stream = io.StringIO(contents)
    stream.seek(0)
    return stream


def _make_csv_adapter(contents: str) -> ClientCSVAdapter:
    return ClientCSVAdapter(_make_csv(contents))


def test_adapter_accepts_russian_aliases_and_ignores_unknown_columns():
    adapter = _make_csv_adapter("ФИО,Телефон,Комментарий,Город,Статус\n" "  Иванов Иван ,+7 999 123 45 67,vip,Тверь,OLD\n")
    rows = list(adapter)

    assert adapter.columns == {"name": 0, "phone": 1, "region": 3, "status": 4}
    assert len(rows) == 1
    row = rows[0]
    assert row.row_number == 2
    assert row.name == "Иванов Иван"
    assert row.phone == "+7 999 123 45 67"
    assert row.region == "Тверь"
    assert row.status == "OLD"


def test_header_matching_is_case_and_spacing_insensitive():
    assert normalize_header("\ufeff Full_Name ") == "full name"
    assert resolve_headers(["FULL NAME", "Mobile", "REGION"]) == {"name": 0, "phone": 1, "region": 2}


def test_adapter_rejects_missing_required_headers():
    adapter = _make_csv_adapter("name,phone\nIvan,+79991234567\n")

    with pytest.raises(CSVHeaderError) as excinfo:
        adapter.validate_header()

    assert excinfo.value.missing == ("region",)
    assert "Missing required columns: region." in str(excinfo.value)


def test_adapter_rejects_duplicate_canonical_columns():
    with pytest.raises(CSVHeaderError) as excinfo:
        _make_csv_adapter("name,phone,телефон,region\n").validate_header()
    assert excinfo.value.duplicates == ("phone",)


def test_adapter_rejects_empty_file():
    with pytest.raises(CSVHeaderError):
        _make_csv_adapter("").validate_header()


def test_adapter_skips_blank_rows_and_keeps_spreadsheet_line_numbers():
    adapter = _make_csv_adapter(
        "name,phone,region\n" "Ivan,+79991234567,Tver\n" ",,\n" "\n" "Anna,,\n" "Oleg,+79990000000\n"
    )
    rows = list(adapter.iter_rows())

    assert [row.row_number for row in rows] == [2, 5, 6]
    assert rows[1].phone is None
    assert rows[2].region is None
    assert adapter.statistics.rows_read == 3
    assert adapter.statistics.rows_skipped_blank == 2


def test_adapter_handles_quoted_multiline_cells():
    adapter = _make_csv_adapter('name,phone,region\n"Ivan","+79991234567,\n+79997654321",Tver\nAnna,+79990000000,Tver\n')
    rows = list(adapter)

    assert rows[0].phone == "+79991234567,\n+79997654321"
    assert [row.row_number for row in rows] == [3, 4]


def test_adapter_reports_malformed_row_with_its_line_number():
    adapter = _make_csv_adapter("name,phone,region\nIvan,+79991234567,Tver\n" + "x" * 200_000 + ",+79990000000,Tver\n")
    rows = []

    with pytest.raises(CSVRowError) as excinfo:
        for row in adapter:
            rows.append(row)

    assert [row.name for row in rows] == ["Ivan"]
    assert isinstance(excinfo.value, RowSourceError)
    assert excinfo.value.row_number == 3
    assert str(excinfo.value).startswith("Malformed CSV row:")


def test_adapter_reports_undecodable_bytes_after_valid_rows():
    lines = "".join(f"Client {n},+7999{n:07d},Tver\n" for n in range(400))
    data = ("name,phone,region\n" + lines).encode("utf-8") + b"\xff\xfe bad,+79990000000,Tver\n"
    adapter = ClientCSVAdapter(io.TextIOWrapper(io.BytesIO(data), encoding="utf-8", newline=""))
    rows = []

    with pytest.raises(CSVRowError) as excinfo:
        for row in adapter:
            rows.append(row)

    assert rows
    assert excinfo.value.row_number == len(rows) + 2
    assert "not valid UTF-8" in str(excinfo.value)
