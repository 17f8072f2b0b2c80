"""Importer row sources."""

from __future__ import annotations

from .csv_clients import (
    HEADER_ALIASES,
    REQUIRED_COLUMNS,
    ClientCSVAdapter,
    ClientCSVStatistics,
    CSVAdapterError,
    CSVHeaderError,
    CSVRowError,
)

__all__ = [
    "HEADER_ALIASES",
    "REQUIRED_COLUMNS",
    "ClientCSVAdapter",
    "ClientCSVStatistics",
    "CSVAdapterError",
    "CSVHeaderError",
    "CSVRowError",
]
