"""
SQLAlchemy-backed client store used by the import orchestrator.

Reads return ``ExistingClient`` snapshots; writes take the declarative
plans produced by ``resolution``. Each row's writes run inside
``row_transaction`` which commits on success and rolls back on failure, so
a partially applied merge is never persisted while rows committed earlier
in the run stand.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator

from sqlalchemy import and_, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from crm_app.models import Client, ClientGroup, ClientPhone, Region, db
from crm_app.utils.names import collapse_whitespace, name_key

from .config import MatchCriteria, SearchScope
from .matching import CandidateQuery, ExistingClient
from .resolution import AddToGroup, MergePlan, MoveToGroup, NewClientPlan


class StoreError(Exception):
    """A store read or write failed; fatal to the current row."""


@dataclass(frozen=True)
class RegionRef:
    id: int
    name: str
    created: bool = False


def snapshot_client(client: Client) -> ExistingClient:
    return ExistingClient(
        id=client.id,
        owner_id=client.user_id,
        last_name=client.last_name or None,
        first_name=client.first_name or None,
        middle_name=client.middle_name or None,
        name_key=client.name_key,
        phones=client.phone_numbers(),
        group_ids=client.group_ids(),
        region_id=client.region_id,
        status=client.status,
        updated_at=client.updated_at,
    )


class SQLAlchemyClientStore:
    """Client store over the Flask-SQLAlchemy session."""

    def __init__(self, session: Session | None = None) -> None:
        self.session: Session = session or db.session

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def find_candidates(self, query: CandidateQuery) -> list[ExistingClient]:
        statement = self.session.query(Client).options(
            selectinload(Client.phones),
            selectinload(Client.groups),
        )

        scope_filter = self._scope_filter(query)
        if scope_filter is not None:
            statement = statement.filter(scope_filter)

        phone_filter = Client.phones.any(ClientPhone.phone.in_(query.phones))
        name_filter = Client.name_key == query.name_key
        if query.criteria is MatchCriteria.PHONE:
            statement = statement.filter(phone_filter)
        elif query.criteria is MatchCriteria.NAME:
            statement = statement.filter(name_filter)
        else:
            statement = statement.filter(and_(phone_filter, name_filter))

        try:
            clients = statement.order_by(Client.updated_at.desc(), Client.id.desc()).all()
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise StoreError(f"Failed to search existing clients: {exc}") from exc
        return [snapshot_client(client) for client in clients]

    def _scope_filter(self, query: CandidateQuery):
        if SearchScope.ALL_USERS in query.scopes:
            return None
        clauses = []
        if SearchScope.CURRENT_GROUP in query.scopes and query.group_id is not None:
            clauses.append(Client.groups.any(ClientGroup.id == query.group_id))
        if SearchScope.OWNER_GROUPS in query.scopes:
            clauses.append(Client.user_id == query.owner_id)
        if not clauses:
            # Nothing is visible; match an impossible id instead of everything.
            return Client.id.is_(None)
        return or_(*clauses)

    def get_group(self, group_id: int) -> ClientGroup | None:
        return self.session.get(ClientGroup, group_id)

    def get_client(self, client_id: int) -> Client:
        client = self.session.get(Client, client_id)
        if client is None:
            raise StoreError(f"Client {client_id} no longer exists.")
        return client

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------
    @contextmanager
    def row_transaction(self) -> Iterator[None]:
        """Commit the enclosed writes as one unit; roll back and raise ``StoreError`` on failure."""

        try:
            yield
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise StoreError(str(exc)) from exc
        except Exception:
            self.session.rollback()
            raise

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    def ensure_region(self, owner_id: int, name: str) -> RegionRef:
        """
        Find or create a region by case-insensitive name for ``owner_id``.

        Creation is committed immediately. When a concurrent run wins the
        race, the unique (owner, name key) constraint fires and the existing
        row is returned instead.
        """

        display_name = collapse_whitespace(name)
        key = name_key(display_name)
        if key is None:
            raise StoreError("Region name is empty.")

        existing = self._find_region(owner_id, key)
        if existing is not None:
            return RegionRef(id=existing.id, name=existing.name)

        region = Region(user_id=owner_id, name=display_name, name_key=key)
        self.session.add(region)
        try:
            self.session.commit()
        except IntegrityError:
            self.session.rollback()
            existing = self._find_region(owner_id, key)
            if existing is None:
                raise StoreError(f"Region '{display_name}' could not be created or found.")
            return RegionRef(id=existing.id, name=existing.name)
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise StoreError(f"Failed to create region '{display_name}': {exc}") from exc
        return RegionRef(id=region.id, name=region.name, created=True)

    def _find_region(self, owner_id: int, key: str) -> Region | None:
        return self.session.query(Region).filter(Region.user_id == owner_id, Region.name_key == key).one_or_none()

    def create_client(self, owner_id: int, plan: NewClientPlan, *, region_id: int | None = None) -> int:
        client = Client(user_id=owner_id, region_id=region_id, status=plan.status)
        if plan.name is not None:
            client.set_name(
                last_name=plan.name.last_name,
                first_name=plan.name.first_name,
                middle_name=plan.name.middle_name,
            )
        else:
            client.set_name()
        client.phones = [ClientPhone(phone=phone) for phone in plan.phones]
        self.session.add(client)
        self.session.flush()
        if plan.group_id is not None:
            self.add_to_group(client.id, plan.group_id)
        return client.id

    def merge_client(self, client_id: int, plan: MergePlan, *, region_id: int | None = None) -> None:
        client = self.get_client(client_id)
        if plan.name is not None:
            client.set_name(
                last_name=plan.name.last_name,
                first_name=plan.name.first_name,
                middle_name=plan.name.middle_name,
            )
        if region_id is not None:
            client.region_id = region_id
        if plan.add_phones:
            present = set(client.phone_numbers())
            for phone in plan.add_phones:
                if phone not in present:
                    client.phones.append(ClientPhone(phone=phone))
                    present.add(phone)
        if plan.status is not None:
            client.status = plan.status

        if isinstance(plan.group_action, MoveToGroup):
            self.move_to_group(client_id, plan.group_action.group_id)
        elif isinstance(plan.group_action, AddToGroup):
            self.add_to_group(client_id, plan.group_action.group_id)
        client.touch()
        self.session.flush()

    def add_to_group(self, client_id: int, group_id: int) -> None:
        client = self.get_client(client_id)
        group = self.get_group(group_id)
        if group is None:
            raise StoreError(f"Client group {group_id} not found.")
        if group not in client.groups:
            client.groups.append(group)

    def remove_from_group(self, client_id: int, group_id: int) -> None:
        client = self.get_client(client_id)
        client.groups = [group for group in client.groups if group.id != group_id]

    def move_to_group(self, client_id: int, group_id: int) -> None:
        client = self.get_client(client_id)
        for group in list(client.groups):
            if group.id != group_id:
                self.remove_from_group(client_id, group.id)
        self.add_to_group(client_id, group_id)
