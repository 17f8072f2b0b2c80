"""CSV row source for client imports.

Maps spreadsheet headers (English or Russian aliases, case-insensitive) onto
the canonical ``name``/``phone``/``region``/``status`` columns and streams
``ImportRow`` objects tagged with their spreadsheet line number. Columns the
importer does not know are ignored.
"""

from __future__ import annotations

import csv
from dataclasses import dataclass
from typing import IO, Iterator, Mapping, Sequence

from crm_app.importer.pipeline.normalize import ImportRow, RowSourceError

HEADER_ALIASES: Mapping[str, tuple[str, ...]] = {
    "name": ("name", "имя", "фио", "full name", "полное имя", "контакт"),
    "phone": ("phone", "телефон", "tel", "mobile", "мобильный", "номер"),
    "region": ("region", "регион", "область", "город", "city", "area"),
    "status": ("status", "статус"),
}
REQUIRED_COLUMNS: tuple[str, ...] = ("name", "phone", "region")


class CSVAdapterError(Exception):
    """Base exception for CSV adapter failures."""


class CSVHeaderError(CSVAdapterError):
    """Raised when the CSV header row does not provide the required columns."""

    def __init__(
        self,
        *,
        missing: Sequence[str] | None = None,
        duplicates: Sequence[str] | None = None,
    ) -> None:
        details: list[str] = []
        if missing:
            details.append(f"Missing required columns: {', '.join(sorted(missing))}.")
        if duplicates:
            details.append(
                "Duplicate columns detected: "
                + ", ".join(sorted(duplicates))
                + ". Ensure each field appears only once."
            )
        message = "CSV header validation failed. " + " ".join(details) if details else "CSV header validation failed."
        super().__init__(message)
        self.missing = tuple(missing or ())
        self.duplicates = tuple(duplicates or ())


class CSVRowError(CSVAdapterError, RowSourceError):
    """Raised when a data row cannot be decoded or parsed."""


@dataclass
class ClientCSVStatistics:
    """Accumulated statistics from CSV parsing."""

    rows_read: int = 0
    rows_skipped_blank: int = 0


def _sanitize_header(header: str | None) -> str:
    token = (header or "").strip()
    return token.lstrip("﻿")


def normalize_header(header: str | None) -> str:
    return " ".join(_sanitize_header(header).replace("_", " ").lower().split())


def _alias_map() -> dict[str, str]:
    return {alias: canonical for canonical, aliases in HEADER_ALIASES.items() for alias in aliases}


def resolve_headers(raw_headers: Sequence[str]) -> dict[str, int]:
    """Return canonical column -> position, raising ``CSVHeaderError`` on gaps."""

    alias_map = _alias_map()
    positions: dict[str, int] = {}
    duplicates: list[str] = []
    for index, header in enumerate(raw_headers):
        canonical = alias_map.get(normalize_header(header))
        if canonical is None:
            continue
        if canonical in positions:
            duplicates.append(canonical)
            continue
        positions[canonical] = index

    missing = [column for column in REQUIRED_COLUMNS if column not in positions]
    if missing or duplicates:
        raise CSVHeaderError(missing=missing, duplicates=duplicates)
    return positions


def _cell(row: Sequence[str], position: int | None) -> str | None:
    if position is None or position >= len(row):
        return None
    value = row[position].strip()
    return value or None


class ClientCSVAdapter:
    """Lazy, single-pass CSV row source."""

    def __init__(self, file_obj: IO[str], *, skip_blank_rows: bool = True) -> None:
        self._file_obj = file_obj
        self.skip_blank_rows = skip_blank_rows
        self.statistics = ClientCSVStatistics()
        self._reader: csv.reader | None = None
        self._positions: dict[str, int] | None = None

    @property
    def columns(self) -> dict[str, int] | None:
        return self._positions

    def validate_header(self) -> dict[str, int]:
        """Read and check the header row; safe to call before ``iter_rows``."""

        if self._positions is None:
            self._reader = csv.reader(self._file_obj)
            try:
                raw_headers = next(self._reader)
            except StopIteration:
                raise CSVHeaderError(missing=REQUIRED_COLUMNS) from None
            self._positions = resolve_headers(raw_headers)
        return self._positions

    def iter_rows(self) -> Iterator[ImportRow]:
        positions = self.validate_header()
        reader = self._reader
        while True:
            try:
                raw_row = next(reader)
            except StopIteration:
                return
            except UnicodeDecodeError as exc:
                # Decoding fails before the reader counts the line.
                raise CSVRowError(reader.line_num + 1, f"File is not valid UTF-8: {exc}") from exc
            except csv.Error as exc:
                raise CSVRowError(reader.line_num, f"Malformed CSV row: {exc}") from exc

            name = _cell(raw_row, positions.get("name"))
            phone = _cell(raw_row, positions.get("phone"))
            region = _cell(raw_row, positions.get("region"))
            status = _cell(raw_row, positions.get("status"))

            if self.skip_blank_rows and not (name or phone or region):
                self.statistics.rows_skipped_blank += 1
                continue

            self.statistics.rows_read += 1
            yield ImportRow(
                row_number=reader.line_num,
                name=name,
                phone=phone,
                region=region,
                status=status,
            )

    def __iter__(self) -> Iterator[ImportRow]:
        return self.iter_rows()
