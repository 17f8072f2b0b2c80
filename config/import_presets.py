"""
Built-in client import presets.

Each preset is a complete import policy in the stored camelCase shape used
by ``ImportConfigRecord.config_json``. The importer resolves presets through
``load_presets`` so operators can add or replace presets without a release:
point ``IMPORTER_PRESETS_PATH`` at a JSON or YAML file shaped like::

    presets:
      - key: strict_update
        label: Strict update
        description: Update matches by phone and name, stop on first error.
        config: {...complete policy...}
    default: {...optional replacement for the system default policy...}

Policies from the file are checked for shape here and fully validated by
``crm_app.importer.pipeline.config.ImportConfig.from_dict`` when used.
"""

from __future__ import annotations

import copy
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, MutableMapping

import yaml


@dataclass(frozen=True)
class ImportPreset:
    key: str
    label: str
    description: str
    config: Mapping[str, Any]

    def config_payload(self) -> dict[str, Any]:
        """Return a mutable deep copy of the preset policy."""
        return copy.deepcopy(dict(self.config))


def _policy(
    *,
    scopes: tuple[str, ...],
    default_action: str,
    update_name: bool,
    add_phones: bool,
    add_to_group: bool,
    no_duplicate_action: str,
    update_region: bool = False,
    move_to_group: bool = False,
    match_criteria: str = "phone",
) -> dict[str, Any]:
    return {
        "searchScope": {"scopes": list(scopes), "matchCriteria": match_criteria},
        "duplicateAction": {
            "defaultAction": default_action,
            "updateName": update_name,
            "updateRegion": update_region,
            "addPhones": add_phones,
            "addToGroup": add_to_group,
            "moveToGroup": move_to_group,
        },
        "noDuplicateAction": no_duplicate_action,
        "validation": {
            "requireName": False,
            "requirePhone": True,
            "requireRegion": False,
            "errorHandling": "skip",
        },
        "additional": {"newClientStatus": "NEW", "updateStatus": False},
    }


# System default used when an owner has no default config of their own.
DEFAULT_IMPORT_CONFIG: dict[str, Any] = _policy(
    scopes=("owner_groups",),
    default_action="update",
    update_name=True,
    add_phones=True,
    add_to_group=True,
    no_duplicate_action="create",
)

BUILTIN_PRESETS: tuple[ImportPreset, ...] = (
    ImportPreset(
        key="full_import",
        label="Full import",
        description="No duplicate detection. Every row becomes a new client.",
        config=_policy(
            scopes=("none",),
            default_action="create",
            update_name=False,
            add_phones=False,
            add_to_group=False,
            no_duplicate_action="create",
        ),
    ),
    ImportPreset(
        key="group_search",
        label="Search in group",
        description="Look for duplicates only in the target group. Update matches, create the rest.",
        config=_policy(
            scopes=("current_group",),
            default_action="update",
            update_name=True,
            add_phones=True,
            add_to_group=False,
            no_duplicate_action="create",
        ),
    ),
    ImportPreset(
        key="owner_search",
        label="Search all my clients",
        description="Look for duplicates among all clients of the owner. Update matches, create the rest.",
        config=_policy(
            scopes=("owner_groups",),
            default_action="update",
            update_name=True,
            add_phones=True,
            add_to_group=True,
            no_duplicate_action="create",
        ),
    ),
    ImportPreset(
        key="smart_import",
        label="Smart import",
        description="Add existing clients to the group, fill in their data and create new clients.",
        config=_policy(
            scopes=("owner_groups",),
            default_action="update",
            update_name=True,
            add_phones=True,
            add_to_group=True,
            no_duplicate_action="create",
        ),
    ),
    ImportPreset(
        key="update_only",
        label="Update only",
        description="Only update existing clients. New clients are not created.",
        config=_policy(
            scopes=("owner_groups",),
            default_action="update",
            update_name=True,
            add_phones=True,
            add_to_group=False,
            no_duplicate_action="skip",
        ),
    ),
    ImportPreset(
        key="create_only",
        label="Create only",
        description="Only create new clients. Existing clients are skipped.",
        config=_policy(
            scopes=("owner_groups",),
            default_action="skip",
            update_name=False,
            add_phones=False,
            add_to_group=False,
            no_duplicate_action="create",
        ),
    ),
)


@dataclass(frozen=True)
class PresetCatalog:
    presets: tuple[ImportPreset, ...]
    default_config: Mapping[str, Any]

    def get(self, key: str) -> ImportPreset | None:
        for preset in self.presets:
            if preset.key == key:
                return preset
        return None

    def keys(self) -> tuple[str, ...]:
        return tuple(preset.key for preset in self.presets)


DEFAULT_CATALOG = PresetCatalog(presets=BUILTIN_PRESETS, default_config=DEFAULT_IMPORT_CONFIG)


class PresetConfigError(RuntimeError):
    """Raised when a preset override file cannot be parsed."""


def _load_override(path: Path) -> MutableMapping[str, object]:
    if not path.exists():
        raise PresetConfigError(f"Preset override file {path} does not exist.")
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:  # pragma: no cover - filesystem failure
        raise PresetConfigError(f"Unable to read preset override file {path}: {exc}") from exc

    try:
        if path.suffix.lower() in {".yaml", ".yml"}:
            data = yaml.safe_load(text)
        else:
            data = json.loads(text)
    except (yaml.YAMLError, json.JSONDecodeError) as exc:
        raise PresetConfigError(f"Preset override file {path} is not valid: {exc}") from exc

    if not isinstance(data, Mapping):
        raise PresetConfigError("Preset override must be a JSON/YAML object.")
    return dict(data)


def _coerce_preset(raw: object) -> ImportPreset:
    if not isinstance(raw, Mapping):
        raise PresetConfigError("Each preset must be an object.")
    key = str(raw.get("key") or "").strip()
    if not key:
        raise PresetConfigError("Each preset requires a non-empty key.")
    config = raw.get("config")
    if not isinstance(config, Mapping):
        raise PresetConfigError(f"Preset {key} requires a config object.")
    label = str(raw.get("label") or key.replace("_", " ").title()).strip()
    description = str(raw.get("description") or "").strip()
    return ImportPreset(key=key, label=label, description=description, config=dict(config))


def load_presets(env: Mapping[str, str] | None = None) -> PresetCatalog:
    """
    Load the active preset catalog.

    Presets from ``IMPORTER_PRESETS_PATH`` replace built-ins with the same
    key and are appended otherwise; built-in order is kept.
    """

    env_map = env or {}
    override_path = env_map.get("IMPORTER_PRESETS_PATH")
    if not override_path:
        return DEFAULT_CATALOG

    raw = _load_override(Path(override_path))
    raw_presets = raw.get("presets") or ()
    if not isinstance(raw_presets, (list, tuple)):
        raise PresetConfigError("presets must be a list.")
    overrides = {preset.key: preset for preset in (_coerce_preset(item) for item in raw_presets)}

    merged = [overrides.pop(preset.key, preset) for preset in BUILTIN_PRESETS]
    merged.extend(overrides.values())

    default_config = raw.get("default") or DEFAULT_IMPORT_CONFIG
    if not isinstance(default_config, Mapping):
        raise PresetConfigError("default must be a config object.")
    return PresetCatalog(presets=tuple(merged), default_config=dict(default_config))


__all__ = [
    "BUILTIN_PRESETS",
    "DEFAULT_CATALOG",
    "DEFAULT_IMPORT_CONFIG",
    "ImportPreset",
    "PresetCatalog",
    "PresetConfigError",
    "load_presets",
]
