"""
Typed import policy for the client importer.

The policy is stored as camelCase JSON (see ``ImportConfigRecord``) and is
parsed exactly once per run into the frozen dataclasses below. Every field
is mandatory; partial payloads must be merged over a complete config before
parsing (``merge_config_payload``). Run-level checks that depend on who is
importing live in ``validate_for_run``.
"""

from __future__ import annotations

import copy
import enum
from dataclasses import dataclass
from typing import Any, Mapping


class ConfigError(ValueError):
    """Raised when an import policy is malformed or unusable for a run."""


class SearchScope(str, enum.Enum):
    NONE = "none"
    CURRENT_GROUP = "current_group"
    OWNER_GROUPS = "owner_groups"
    ALL_USERS = "all_users"


class MatchCriteria(str, enum.Enum):
    PHONE = "phone"
    PHONE_AND_NAME = "phone_and_name"
    NAME = "name"


class DuplicateAction(str, enum.Enum):
    SKIP = "skip"
    UPDATE = "update"
    CREATE = "create"


class NoDuplicateAction(str, enum.Enum):
    CREATE = "create"
    SKIP = "skip"


class ErrorHandling(str, enum.Enum):
    STOP = "stop"
    SKIP = "skip"
    WARN = "warn"


class NewClientStatus(str, enum.Enum):
    NEW = "NEW"
    OLD = "OLD"
    FROM_FILE = "from_file"


class GroupMode(str, enum.Enum):
    """Group membership change requested for matched clients."""

    NONE = "none"
    ADD = "add"
    MOVE = "move"


# Evaluation order used when a policy lists several scopes.
SCOPE_ORDER: tuple[SearchScope, ...] = (
    SearchScope.CURRENT_GROUP,
    SearchScope.OWNER_GROUPS,
    SearchScope.ALL_USERS,
)


@dataclass(frozen=True)
class SearchScopeConfig:
    scopes: frozenset[SearchScope]
    match_criteria: MatchCriteria

    def __post_init__(self) -> None:
        if not self.scopes:
            raise ConfigError("searchScope.scopes must contain at least one scope.")
        if SearchScope.NONE in self.scopes and len(self.scopes) > 1:
            raise ConfigError("searchScope.scopes cannot combine 'none' with other scopes.")

    @property
    def detection_disabled(self) -> bool:
        return SearchScope.NONE in self.scopes

    def ordered_scopes(self) -> tuple[SearchScope, ...]:
        return tuple(scope for scope in SCOPE_ORDER if scope in self.scopes)


@dataclass(frozen=True)
class DuplicateActionConfig:
    default_action: DuplicateAction
    update_name: bool
    update_region: bool
    add_phones: bool
    group_mode: GroupMode = GroupMode.NONE

    @property
    def add_to_group(self) -> bool:
        return self.group_mode is GroupMode.ADD

    @property
    def move_to_group(self) -> bool:
        return self.group_mode is GroupMode.MOVE


@dataclass(frozen=True)
class ValidationRules:
    require_name: bool
    require_phone: bool
    require_region: bool
    error_handling: ErrorHandling


@dataclass(frozen=True)
class AdditionalOptions:
    new_client_status: NewClientStatus
    update_status: bool


@dataclass(frozen=True)
class ImportConfig:
    """Complete, immutable import policy."""

    search_scope: SearchScopeConfig
    duplicate_action: DuplicateActionConfig
    no_duplicate_action: NoDuplicateAction
    validation: ValidationRules
    additional: AdditionalOptions

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "ImportConfig":
        """Parse a complete camelCase payload, raising ``ConfigError`` on any gap."""

        if not isinstance(payload, Mapping):
            raise ConfigError("Import config must be a mapping.")

        scope_payload = _section(payload, "searchScope")
        raw_scopes = scope_payload.get("scopes")
        if not isinstance(raw_scopes, (list, tuple, set, frozenset)):
            raise ConfigError("searchScope.scopes must be a list of scopes.")
        scopes = frozenset(_enum(SearchScope, value, "searchScope.scopes") for value in raw_scopes)
        search_scope = SearchScopeConfig(
            scopes=scopes,
            match_criteria=_enum(MatchCriteria, _required(scope_payload, "matchCriteria", "searchScope"), "searchScope.matchCriteria"),
        )

        duplicate_payload = _section(payload, "duplicateAction")
        add_to_group = _flag(duplicate_payload, "addToGroup", "duplicateAction")
        move_to_group = _flag(duplicate_payload, "moveToGroup", "duplicateAction")
        # Move implies membership in the target group, so it supersedes add.
        if move_to_group:
            group_mode = GroupMode.MOVE
        elif add_to_group:
            group_mode = GroupMode.ADD
        else:
            group_mode = GroupMode.NONE
        duplicate_action = DuplicateActionConfig(
            default_action=_enum(
                DuplicateAction,
                _required(duplicate_payload, "defaultAction", "duplicateAction"),
                "duplicateAction.defaultAction",
            ),
            update_name=_flag(duplicate_payload, "updateName", "duplicateAction"),
            update_region=_flag(duplicate_payload, "updateRegion", "duplicateAction"),
            add_phones=_flag(duplicate_payload, "addPhones", "duplicateAction"),
            group_mode=group_mode,
        )

        validation_payload = _section(payload, "validation")
        validation = ValidationRules(
            require_name=_flag(validation_payload, "requireName", "validation"),
            require_phone=_flag(validation_payload, "requirePhone", "validation"),
            require_region=_flag(validation_payload, "requireRegion", "validation"),
            error_handling=_enum(
                ErrorHandling,
                _required(validation_payload, "errorHandling", "validation"),
                "validation.errorHandling",
            ),
        )

        additional_payload = _section(payload, "additional")
        additional = AdditionalOptions(
            new_client_status=_enum(
                NewClientStatus,
                _required(additional_payload, "newClientStatus", "additional"),
                "additional.newClientStatus",
            ),
            update_status=_flag(additional_payload, "updateStatus", "additional"),
        )

        return cls(
            search_scope=search_scope,
            duplicate_action=duplicate_action,
            no_duplicate_action=_enum(
                NoDuplicateAction,
                _required(payload, "noDuplicateAction", "config"),
                "noDuplicateAction",
            ),
            validation=validation,
            additional=additional,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "searchScope": {
                "scopes": [scope.value for scope in self._sorted_scopes()],
                "matchCriteria": self.search_scope.match_criteria.value,
            },
            "duplicateAction": {
                "defaultAction": self.duplicate_action.default_action.value,
                "updateName": self.duplicate_action.update_name,
                "updateRegion": self.duplicate_action.update_region,
                "addPhones": self.duplicate_action.add_phones,
                "addToGroup": self.duplicate_action.add_to_group,
                "moveToGroup": self.duplicate_action.move_to_group,
            },
            "noDuplicateAction": self.no_duplicate_action.value,
            "validation": {
                "requireName": self.validation.require_name,
                "requirePhone": self.validation.require_phone,
                "requireRegion": self.validation.require_region,
                "errorHandling": self.validation.error_handling.value,
            },
            "additional": {
                "newClientStatus": self.additional.new_client_status.value,
                "updateStatus": self.additional.update_status,
            },
        }

    def _sorted_scopes(self) -> list[SearchScope]:
        if self.search_scope.detection_disabled:
            return [SearchScope.NONE]
        return list(self.search_scope.ordered_scopes())


@dataclass(frozen=True)
class ImportContext:
    """Who is importing, and into which group."""

    owner_id: int
    group_id: int | None = None
    is_privileged: bool = False
    run_id: int | None = None


def validate_for_run(config: ImportConfig, context: ImportContext) -> None:
    """Reject policies that cannot run for ``context``; called once before the first row."""

    scopes = config.search_scope.scopes
    if SearchScope.ALL_USERS in scopes and not context.is_privileged:
        raise ConfigError("The 'all_users' search scope is restricted to privileged operators.")
    if SearchScope.CURRENT_GROUP in scopes and context.group_id is None:
        raise ConfigError("The 'current_group' search scope requires a target group.")
    if config.duplicate_action.group_mode is not GroupMode.NONE and context.group_id is None:
        raise ConfigError("Group membership actions require a target group.")


def merge_config_payload(base: Mapping[str, Any], overrides: Mapping[str, Any] | None) -> dict[str, Any]:
    """
    Deep-merge ``overrides`` over ``base`` one section at a time.

    Selecting ``moveToGroup`` in the overrides clears ``addToGroup`` and vice
    versa, and a scopes list replaces (never extends) the stored list.
    """

    merged = copy.deepcopy(dict(base))
    if not overrides:
        return merged
    for key, value in overrides.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), Mapping):
            section = dict(merged[key])
            section.update(value)
            if key == "duplicateAction":
                if value.get("moveToGroup") is True:
                    section["addToGroup"] = False
                elif value.get("addToGroup") is True:
                    section["moveToGroup"] = False
            merged[key] = section
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def _section(payload: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    value = payload.get(key)
    if not isinstance(value, Mapping):
        raise ConfigError(f"Import config is missing the '{key}' section.")
    return value


def _required(section: Mapping[str, Any], key: str, section_name: str) -> Any:
    if key not in section or section[key] is None:
        raise ConfigError(f"{section_name}.{key} is required.")
    return section[key]


def _flag(section: Mapping[str, Any], key: str, section_name: str) -> bool:
    value = _required(section, key, section_name)
    if not isinstance(value, bool):
        raise ConfigError(f"{section_name}.{key} must be a boolean.")
    return value


def _enum(enum_cls, value: Any, label: str):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError as exc:
        allowed = ", ".join(member.value for member in enum_cls)
        raise ConfigError(f"{label} must be one of: {allowed} (got {value!r}).") from exc
