"""
Resolution policy: decide what to do with a candidate and its match.

``resolve`` never touches the store. It returns a ``ResolutionPlan`` that
the orchestrator hands to the store, which keeps every policy branch
testable without a database.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Union

from crm_app.models.client import ClientStatus

from .config import AdditionalOptions, DuplicateAction, GroupMode, ImportConfig, ImportContext, NewClientStatus, NoDuplicateAction
from .matching import ExistingClient, MatchResult
from .normalize import Candidate, ParsedName


class PlanAction(str, enum.Enum):
    CREATE = "create"
    UPDATE = "update"
    SKIP = "skip"


@dataclass(frozen=True)
class AddToGroup:
    group_id: int


@dataclass(frozen=True)
class MoveToGroup:
    group_id: int
    previous_groups: tuple[int, ...]


GroupAction = Union[AddToGroup, MoveToGroup, None]


@dataclass(frozen=True)
class NewClientPlan:
    name: ParsedName | None
    phones: tuple[str, ...]
    region: str | None
    status: ClientStatus
    group_id: int | None


@dataclass(frozen=True)
class MergePlan:
    """Field-level changes for an existing client. ``None`` means leave as-is."""

    client_id: int
    name: ParsedName | None = None
    region: str | None = None
    add_phones: tuple[str, ...] = ()
    group_action: GroupAction = None
    status: ClientStatus | None = None

    @property
    def has_changes(self) -> bool:
        return any(
            (
                self.name is not None,
                self.region is not None,
                bool(self.add_phones),
                self.group_action is not None,
                self.status is not None,
            )
        )


@dataclass(frozen=True)
class ResolutionPlan:
    action: PlanAction
    reason: str
    create: NewClientPlan | None = None
    merge: MergePlan | None = None
    existing_client_id: int | None = None

    @property
    def region_name(self) -> str | None:
        """Region the plan needs resolved before it can be applied."""
        if self.create is not None:
            return self.create.region
        if self.merge is not None:
            return self.merge.region
        return None


def resolve_status(candidate: Candidate, options: AdditionalOptions) -> ClientStatus:
    """Apply the creation status rule; ``from_file`` falls back to ``NEW``."""

    if options.new_client_status is NewClientStatus.FROM_FILE:
        return ClientStatus.coerce(candidate.status) or ClientStatus.NEW
    return ClientStatus(options.new_client_status.value)


def _create_plan(candidate: Candidate, config: ImportConfig, context: ImportContext, reason: str, existing_id=None) -> ResolutionPlan:
    return ResolutionPlan(
        action=PlanAction.CREATE,
        reason=reason,
        create=NewClientPlan(
            name=candidate.name,
            phones=candidate.phones,
            region=candidate.region,
            status=resolve_status(candidate, config.additional),
            group_id=context.group_id,
        ),
        existing_client_id=existing_id,
    )


def _group_action(existing: ExistingClient, mode: GroupMode, group_id: int | None) -> GroupAction:
    if group_id is None or mode is GroupMode.NONE:
        return None
    if mode is GroupMode.ADD:
        return None if group_id in existing.group_ids else AddToGroup(group_id)
    previous = tuple(gid for gid in existing.group_ids if gid != group_id)
    if not previous and group_id in existing.group_ids:
        return None
    return MoveToGroup(group_id=group_id, previous_groups=previous)


def build_merge_plan(candidate: Candidate, existing: ExistingClient, config: ImportConfig, context: ImportContext) -> MergePlan:
    flags = config.duplicate_action
    name = None
    if flags.update_name and not existing.has_name and candidate.name is not None:
        name = candidate.name
    region = candidate.region if flags.update_region and candidate.region else None
    add_phones: tuple[str, ...] = ()
    if flags.add_phones:
        add_phones = tuple(phone for phone in candidate.phones if phone not in existing.phones)
    status = resolve_status(candidate, config.additional) if config.additional.update_status else None
    return MergePlan(
        client_id=existing.id,
        name=name,
        region=region,
        add_phones=add_phones,
        group_action=_group_action(existing, flags.group_mode, context.group_id),
        status=status,
    )


def resolve(candidate: Candidate, match: MatchResult, config: ImportConfig, context: ImportContext) -> ResolutionPlan:
    if not match.is_match:
        if config.no_duplicate_action is NoDuplicateAction.SKIP:
            return ResolutionPlan(action=PlanAction.SKIP, reason="No duplicate found; policy skips new clients")
        return _create_plan(candidate, config, context, "New client")

    existing = match.client
    action = config.duplicate_action.default_action
    if action is DuplicateAction.SKIP:
        return ResolutionPlan(action=PlanAction.SKIP, reason="Duplicate", existing_client_id=existing.id)
    if action is DuplicateAction.CREATE:
        return _create_plan(candidate, config, context, "Duplicate ignored by policy", existing_id=existing.id)
    return ResolutionPlan(
        action=PlanAction.UPDATE,
        reason=f"Duplicate matched by {match.criterion.value}",
        merge=build_merge_plan(candidate, existing, config, context),
        existing_client_id=existing.id,
    )
