"""
Duplicate lookup for import candidates.

The store narrows the search to clients inside the requested scopes that
share a phone and/or a name key with the candidate; this module applies the
match predicate and picks a single winner. Several matches are not an
error: the most recently updated client wins, then the highest id.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Protocol

from crm_app.models.client import ClientStatus

from .config import MatchCriteria, SearchScope, SearchScopeConfig
from .normalize import Candidate


@dataclass(frozen=True)
class ExistingClient:
    """Read-only snapshot of a stored client as seen by the pipeline."""

    id: int
    owner_id: int
    last_name: str | None
    first_name: str | None
    middle_name: str | None
    name_key: str | None
    phones: tuple[str, ...]
    group_ids: tuple[int, ...]
    region_id: int | None
    status: ClientStatus
    updated_at: datetime | None

    @property
    def has_name(self) -> bool:
        return bool(self.last_name or self.first_name)

    @property
    def full_name(self) -> str:
        return " ".join(part for part in (self.last_name, self.first_name, self.middle_name) if part)


@dataclass(frozen=True)
class CandidateQuery:
    scopes: tuple[SearchScope, ...]
    criteria: MatchCriteria
    owner_id: int
    group_id: int | None
    phones: tuple[str, ...]
    name_key: str | None


class CandidateFinder(Protocol):
    def find_candidates(self, query: CandidateQuery) -> Iterable[ExistingClient]:
        ...


@dataclass(frozen=True)
class MatchResult:
    client: ExistingClient | None = None
    criterion: MatchCriteria | None = None
    considered: int = 0

    @property
    def is_match(self) -> bool:
        return self.client is not None


NO_MATCH = MatchResult()


def matches(candidate: Candidate, existing: ExistingClient, criteria: MatchCriteria) -> bool:
    phone_hit = bool(set(candidate.phones) & set(existing.phones))
    name_hit = candidate.name_key is not None and candidate.name_key == existing.name_key
    if criteria is MatchCriteria.PHONE:
        return phone_hit
    if criteria is MatchCriteria.NAME:
        return name_hit
    return phone_hit and name_hit


def _recency_key(existing: ExistingClient) -> tuple[float, int]:
    stamp = existing.updated_at.timestamp() if existing.updated_at is not None else float("-inf")
    return (stamp, existing.id)


def find_match(
    candidate: Candidate,
    scope: SearchScopeConfig,
    owner_id: int,
    current_group_id: int | None,
    store: CandidateFinder,
) -> MatchResult:
    """Return the single existing client ``candidate`` duplicates, if any."""

    if scope.detection_disabled:
        return NO_MATCH

    criteria = scope.match_criteria
    needs_phone = criteria in (MatchCriteria.PHONE, MatchCriteria.PHONE_AND_NAME)
    needs_name = criteria in (MatchCriteria.NAME, MatchCriteria.PHONE_AND_NAME)
    if (needs_phone and not candidate.phones) or (needs_name and candidate.name_key is None):
        return NO_MATCH

    query = CandidateQuery(
        scopes=scope.ordered_scopes(),
        criteria=criteria,
        owner_id=owner_id,
        group_id=current_group_id,
        phones=candidate.phones,
        name_key=candidate.name_key,
    )
    hits = [existing for existing in store.find_candidates(query) if matches(candidate, existing, criteria)]
    if not hits:
        return MatchResult(considered=0)
    winner = max(hits, key=_recency_key)
    return MatchResult(client=winner, criterion=criteria, considered=len(hits))
