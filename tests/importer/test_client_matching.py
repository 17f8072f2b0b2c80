import pytest

from crm_app.importer.pipeline.config import MatchCriteria, SearchScope, SearchScopeConfig
from crm_app.importer.pipeline.matching import find_match
from crm_app.importer.pipeline.normalize import ImportRow, normalize_row
from crm_app.importer.pipeline.store import SQLAlchemyClientStore

pytestmark = pytest.mark.integration

PHONE = "+79991234567"


def _scope(*scopes, criteria=MatchCriteria.PHONE):
    return SearchScopeConfig(scopes=frozenset(scopes), match_criteria=criteria)


def _candidate(name="Ivan Petrov", phone=PHONE):
    return normalize_row(ImportRow(row_number=2, name=name, phone=phone))


def test_detection_disabled_never_queries(owner, target_group, client_factory):
    client_factory(owner, phones=(PHONE,), groups=(target_group,))

    class ExplodingStore:
        def find_candidates(self, query):
            raise AssertionError("store must not be queried")

    result = find_match(_candidate(), _scope(SearchScope.NONE), owner.id, target_group.id, ExplodingStore())
    assert not result.is_match


def test_current_group_scope_ignores_other_groups(owner, target_group, group_factory, client_factory):
    other_group = group_factory(owner, name="Other")
    client_factory(owner, phones=(PHONE,), groups=(other_group,))
    store = SQLAlchemyClientStore()

    result = find_match(_candidate(), _scope(SearchScope.CURRENT_GROUP), owner.id, target_group.id, store)
    assert not result.is_match

    in_group = client_factory(owner, phones=(PHONE,), groups=(target_group,))
    result = find_match(_candidate(), _scope(SearchScope.CURRENT_GROUP), owner.id, target_group.id, store)
    assert result.client.id == in_group.id
    assert result.criterion is MatchCriteria.PHONE


def test_owner_groups_scope_is_limited_to_owner(owner, other_owner, target_group, client_factory):
    foreign = client_factory(other_owner, phones=(PHONE,))
    store = SQLAlchemyClientStore()

    assert not find_match(_candidate(), _scope(SearchScope.OWNER_GROUPS), owner.id, target_group.id, store).is_match

    result = find_match(_candidate(), _scope(SearchScope.ALL_USERS), owner.id, target_group.id, store)
    assert result.client.id == foreign.id
    assert result.client.owner_id == other_owner.id


def test_owner_groups_includes_clients_without_groups(owner, target_group, client_factory):
    ungrouped = client_factory(owner, phones=(PHONE,))
    result = find_match(
        _candidate(), _scope(SearchScope.OWNER_GROUPS), owner.id, target_group.id, SQLAlchemyClientStore()
    )
    assert result.client.id == ungrouped.id
    assert result.client.group_ids == ()


def test_phone_and_name_requires_both(owner, target_group, client_factory):
    client_factory(owner, last_name="Sidorov", first_name="Petr", phones=(PHONE,))
    scope = _scope(SearchScope.OWNER_GROUPS, criteria=MatchCriteria.PHONE_AND_NAME)
    store = SQLAlchemyClientStore()

    assert not find_match(_candidate(), scope, owner.id, target_group.id, store).is_match

    same = client_factory(owner, last_name="IVAN", first_name="petrov", phones=(PHONE,))
    result = find_match(_candidate(name="  ivan  Petrov"), scope, owner.id, target_group.id, store)
    assert result.client.id == same.id


def test_name_criterion_without_name_is_no_match(owner, target_group, client_factory):
    client_factory(owner, phones=(PHONE,))
    scope = _scope(SearchScope.OWNER_GROUPS, criteria=MatchCriteria.NAME)
    result = find_match(_candidate(name=None), scope, owner.id, target_group.id, SQLAlchemyClientStore())
    assert not result.is_match


def test_most_recently_updated_match_wins(owner, target_group, client_factory):
    client_factory(owner, phones=(PHONE,), age_minutes=60)
    newest = client_factory(owner, phones=(PHONE,), age_minutes=5)
    client_factory(owner, phones=(PHONE, "+79990000000"), age_minutes=30)

    result = find_match(
        _candidate(), _scope(SearchScope.OWNER_GROUPS), owner.id, target_group.id, SQLAlchemyClientStore()
    )

    assert result.client.id == newest.id
    assert result.considered == 3


def test_any_shared_phone_matches(owner, target_group, client_factory):
    existing = client_factory(owner, phones=("+79990000000", PHONE))
    result = find_match(
        _candidate(phone="+79995555555, 89991234567"),
        _scope(SearchScope.OWNER_GROUPS),
        owner.id,
        target_group.id,
        SQLAlchemyClientStore(),
    )
    assert result.client.id == existing.id
