from __future__ import annotations

import copy
from pathlib import Path

import pytest

from config.import_presets import DEFAULT_IMPORT_CONFIG
from crm_app.importer.pipeline.config import ImportConfig, ImportContext, merge_config_payload
from crm_app.importer.pipeline.normalize import ImportRow

CSV_HEADER = "ФИО,Телефон,Регион,Статус\n"


def build_config(**sections) -> ImportConfig:
    """
    Build an ``ImportConfig`` from the system default with per-section overrides.

    ``build_config(validation={"requireName": True})`` only changes that flag.
    """
    payload = copy.deepcopy(DEFAULT_IMPORT_CONFIG)
    overrides = {}
    for key, value in sections.items():
        camel = {
            "search_scope": "searchScope",
            "duplicate_action": "duplicateAction",
            "no_duplicate_action": "noDuplicateAction",
        }.get(key, key)
        overrides[camel] = value
    return ImportConfig.from_dict(merge_config_payload(payload, overrides))


@pytest.fixture
def make_config():
    return build_config


@pytest.fixture
def make_row():
    def _make(row_number=2, name=None, phone=None, region=None, status=None) -> ImportRow:
        return ImportRow(row_number=row_number, name=name, phone=phone, region=region, status=status)

    return _make


@pytest.fixture
def import_context(owner, target_group):
    return ImportContext(owner_id=owner.id, group_id=target_group.id)


@pytest.fixture
def csv_writer(tmp_path):
    """Write a client CSV; ``lines`` are the data rows without the header."""

    def _write(*lines: str, header: str = CSV_HEADER, name: str = "clients.csv") -> Path:
        path = tmp_path / name
        path.write_text(header + "".join(f"{line}\n" for line in lines), encoding="utf-8")
        return path

    return _write
