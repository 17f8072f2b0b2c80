"""
Service layer for owner-scoped import configurations.

Stored policies are always complete: creates validate the full payload and
updates merge a partial payload over the stored one before validating.
Each owner has at most one default configuration; if several are found
(legacy data or a lost race) the newest is kept and the rest are cleared.
"""

from __future__ import annotations

import os
from typing import Any, Mapping, Sequence

from flask import current_app, has_app_context
from sqlalchemy.orm import Session

from config.import_presets import ImportPreset, PresetCatalog, load_presets
from crm_app.models import ImportConfigRecord, db

from .pipeline.config import ConfigError, ImportConfig, merge_config_payload

MAX_NAME_LENGTH = 100


def get_preset_catalog() -> PresetCatalog:
    """Load presets using the app config when available, else the process environment."""

    if has_app_context():
        path = current_app.config.get("IMPORTER_PRESETS_PATH")
        return load_presets({"IMPORTER_PRESETS_PATH": path} if path else {})
    return load_presets(os.environ)


def _validate_name(name: object) -> str:
    token = str(name or "").strip()
    if not token:
        raise ConfigError("Config name is required.")
    if len(token) > MAX_NAME_LENGTH:
        raise ConfigError(f"Config name must be at most {MAX_NAME_LENGTH} characters.")
    return token


def _log(level: str, message: str, **extra: Any) -> None:
    if has_app_context():
        getattr(current_app.logger, level)(message, extra=extra)


class ImportConfigService:
    """Create, read, update and delete import configurations for an owner."""

    def __init__(self, session: Session | None = None, *, catalog: PresetCatalog | None = None):
        self.session: Session = session or db.session
        self._catalog = catalog

    @property
    def catalog(self) -> PresetCatalog:
        if self._catalog is None:
            self._catalog = get_preset_catalog()
        return self._catalog

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def list_configs(self, user_id: int) -> Sequence[ImportConfigRecord]:
        return (
            self.session.query(ImportConfigRecord)
            .filter(ImportConfigRecord.user_id == user_id)
            .order_by(ImportConfigRecord.is_default.desc(), ImportConfigRecord.created_at.desc(), ImportConfigRecord.id.desc())
            .all()
        )

    def get_config(self, config_id: int, user_id: int) -> ImportConfigRecord | None:
        return (
            self.session.query(ImportConfigRecord)
            .filter(ImportConfigRecord.id == config_id, ImportConfigRecord.user_id == user_id)
            .one_or_none()
        )

    def get_default_config(self, user_id: int) -> ImportConfigRecord | None:
        defaults = (
            self.session.query(ImportConfigRecord)
            .filter(ImportConfigRecord.user_id == user_id, ImportConfigRecord.is_default.is_(True))
            .order_by(ImportConfigRecord.created_at.desc(), ImportConfigRecord.id.desc())
            .all()
        )
        if not defaults:
            return None
        keep, extras = defaults[0], defaults[1:]
        if extras:
            _log(
                "warning",
                "Multiple default import configs found, keeping the newest",
                importer_user_id=user_id,
                importer_config_id=keep.id,
                importer_cleared_config_ids=[record.id for record in extras],
            )
            for record in extras:
                record.is_default = False
            self.session.commit()
        return keep

    def load_config(self, record: ImportConfigRecord) -> ImportConfig:
        """Parse a stored record into a frozen ``ImportConfig``."""

        try:
            return ImportConfig.from_dict(record.config_json)
        except ConfigError as exc:
            _log(
                "error",
                "Failed to parse stored import config",
                importer_config_id=record.id,
                importer_error=str(exc),
            )
            raise

    def resolve_for_run(self, config_id: int | None, user_id: int) -> tuple[ImportConfig, ImportConfigRecord | None]:
        """
        Pick and freeze the policy a run will execute with.

        An explicit ``config_id`` must belong to ``user_id``. Without one the
        owner's default is used, then the system default.
        """

        if config_id is not None:
            record = self.get_config(config_id, user_id)
            if record is None:
                raise ConfigError(f"Import config {config_id} not found for user {user_id}.")
            return self.load_config(record), record

        record = self.get_default_config(user_id)
        if record is not None:
            return self.load_config(record), record
        return ImportConfig.from_dict(self.catalog.default_config), None

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------
    def create_config(
        self,
        user_id: int,
        name: str,
        config: Mapping[str, Any] | ImportConfig,
        *,
        description: str | None = None,
        is_default: bool = False,
    ) -> ImportConfigRecord:
        parsed = config if isinstance(config, ImportConfig) else ImportConfig.from_dict(config)
        record = ImportConfigRecord(
            user_id=user_id,
            name=_validate_name(name),
            description=description,
            is_default=bool(is_default),
            config_json=parsed.to_dict(),
        )
        if record.is_default:
            self._clear_defaults(user_id)
        self.session.add(record)
        self.session.commit()
        _log("info", "Import config created", importer_config_id=record.id, importer_user_id=user_id)
        return record

    def create_from_preset(
        self,
        preset_key: str,
        user_id: int,
        *,
        name: str | None = None,
        is_default: bool = False,
    ) -> ImportConfigRecord:
        preset: ImportPreset | None = self.catalog.get(preset_key)
        if preset is None:
            raise ConfigError(f"Unknown import preset '{preset_key}'.")
        return self.create_config(
            user_id,
            name or preset.label,
            preset.config_payload(),
            description=preset.description,
            is_default=is_default,
        )

    def update_config(
        self,
        config_id: int,
        user_id: int,
        *,
        name: str | None = None,
        description: str | None = None,
        is_default: bool | None = None,
        config: Mapping[str, Any] | None = None,
    ) -> ImportConfigRecord | None:
        """Apply a partial update; returns ``None`` when the config is not the owner's."""

        record = self.get_config(config_id, user_id)
        if record is None:
            return None

        if config:
            try:
                base = ImportConfig.from_dict(record.config_json).to_dict()
            except ConfigError as exc:
                _log(
                    "error",
                    "Stored import config is malformed; rebuilding from the system default",
                    importer_config_id=record.id,
                    importer_error=str(exc),
                )
                base = dict(self.catalog.default_config)
            record.config_json = ImportConfig.from_dict(merge_config_payload(base, config)).to_dict()
        if name is not None:
            record.name = _validate_name(name)
        if description is not None:
            record.description = description
        if is_default is not None:
            if is_default:
                self._clear_defaults(user_id, exclude_id=record.id)
            record.is_default = is_default

        self.session.commit()
        _log("info", "Import config updated", importer_config_id=record.id, importer_user_id=user_id)
        return record

    def delete_config(self, config_id: int, user_id: int) -> bool:
        record = self.get_config(config_id, user_id)
        if record is None:
            return False
        self.session.delete(record)
        self.session.commit()
        _log("info", "Import config deleted", importer_config_id=config_id, importer_user_id=user_id)
        return True

    def _clear_defaults(self, user_id: int, *, exclude_id: int | None = None) -> None:
        query = self.session.query(ImportConfigRecord).filter(
            ImportConfigRecord.user_id == user_id,
            ImportConfigRecord.is_default.is_(True),
        )
        if exclude_id is not None:
            query = query.filter(ImportConfigRecord.id != exclude_id)
        for record in query.all():
            record.is_default = False


__all__ = ["ImportConfigService", "MAX_NAME_LENGTH", "get_preset_catalog"]
