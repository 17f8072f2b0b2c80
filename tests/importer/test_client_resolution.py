from datetime import datetime, timezone

import pytest

from crm_app.importer.pipeline.config import ImportContext, MatchCriteria
from crm_app.importer.pipeline.matching import ExistingClient, MatchResult
from crm_app.importer.pipeline.normalize import ImportRow, ParsedName, normalize_row
from crm_app.importer.pipeline.resolution import AddToGroup, MoveToGroup, PlanAction, resolve
from crm_app.models.client import ClientStatus

pytestmark = pytest.mark.unit

CONTEXT = ImportContext(owner_id=1, group_id=10)


def _existing(**overrides):
    fields = dict(
        id=42,
        owner_id=1,
        last_name=None,
        first_name=None,
        middle_name=None,
        name_key=None,
        phones=("+79991234567",),
        group_ids=(5,),
        region_id=None,
        status=ClientStatus.NEW,
        updated_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
    )
    fields.update(overrides)
    return ExistingClient(**fields)


def _candidate(name="Ivan Petrov", phone="+79991234567", region=None, status=None):
    return normalize_row(ImportRow(row_number=2, name=name, phone=phone, region=region, status=status))


def _match(existing, criterion="phone"):
    return MatchResult(client=existing, criterion=MatchCriteria(criterion), considered=1)


def test_no_match_creates_with_configured_status(make_config):
    config = make_config(additional={"newClientStatus": "OLD"})
    plan = resolve(_candidate(region="Moscow"), MatchResult(), config, CONTEXT)

    assert plan.action is PlanAction.CREATE
    assert plan.reason == "New client"
    assert plan.create.status is ClientStatus.OLD
    assert plan.create.group_id == 10
    assert plan.region_name == "Moscow"


def test_no_match_skips_when_policy_says_so(make_config):
    plan = resolve(_candidate(), MatchResult(), make_config(no_duplicate_action="skip"), CONTEXT)
    assert plan.action is PlanAction.SKIP
    assert plan.create is None


@pytest.mark.parametrize(
    "file_status, expected",
    [("OLD", ClientStatus.OLD), ("new", ClientStatus.NEW), ("bogus", ClientStatus.NEW), (None, ClientStatus.NEW)],
)
def test_from_file_status_falls_back_to_new(make_config, file_status, expected):
    config = make_config(additional={"newClientStatus": "from_file"})
    plan = resolve(_candidate(status=file_status), MatchResult(), config, CONTEXT)
    assert plan.create.status is expected


def test_duplicate_skip(make_config):
    config = make_config(duplicate_action={"defaultAction": "skip"})
    plan = resolve(_candidate(), _match(_existing()), config, CONTEXT)

    assert plan.action is PlanAction.SKIP
    assert plan.reason == "Duplicate"
    assert plan.existing_client_id == 42


def test_duplicate_force_create(make_config):
    config = make_config(duplicate_action={"defaultAction": "create"})
    plan = resolve(_candidate(), _match(_existing()), config, CONTEXT)

    assert plan.action is PlanAction.CREATE
    assert plan.reason == "Duplicate ignored by policy"
    assert plan.existing_client_id == 42


def test_update_fills_empty_name(make_config):
    plan = resolve(_candidate(), _match(_existing()), make_config(), CONTEXT)

    assert plan.action is PlanAction.UPDATE
    assert plan.reason == "Duplicate matched by phone"
    assert plan.merge.name == ParsedName(last_name="Ivan", first_name="Petrov")


def test_update_never_overwrites_existing_name(make_config):
    existing = _existing(last_name="Sidorov", first_name="Petr", name_key="sidorov petr")
    plan = resolve(_candidate(), _match(existing), make_config(), CONTEXT)
    assert plan.merge.name is None


def test_update_adds_only_new_phones(make_config):
    candidate = _candidate(phone="+79991234567, +79997654321")
    plan = resolve(candidate, _match(_existing()), make_config(), CONTEXT)
    assert plan.merge.add_phones == ("+79997654321",)

    no_phones = make_config(duplicate_action={"addPhones": False})
    assert resolve(candidate, _match(_existing()), no_phones, CONTEXT).merge.add_phones == ()


def test_update_region_only_when_enabled(make_config):
    candidate = _candidate(region="Tver")
    assert resolve(candidate, _match(_existing()), make_config(), CONTEXT).merge.region is None

    config = make_config(duplicate_action={"updateRegion": True})
    plan = resolve(candidate, _match(_existing()), config, CONTEXT)
    assert plan.merge.region == "Tver"
    assert plan.region_name == "Tver"


def test_update_status_only_when_enabled(make_config):
    config = make_config(additional={"newClientStatus": "OLD", "updateStatus": True})
    plan = resolve(_candidate(), _match(_existing()), config, CONTEXT)
    assert plan.merge.status is ClientStatus.OLD

    assert resolve(_candidate(), _match(_existing()), make_config(), CONTEXT).merge.status is None


def test_add_to_group_is_skipped_for_existing_members(make_config):
    config = make_config(duplicate_action={"addToGroup": True, "moveToGroup": False})
    plan = resolve(_candidate(), _match(_existing()), config, CONTEXT)
    assert plan.merge.group_action == AddToGroup(group_id=10)

    member = _existing(group_ids=(5, 10))
    assert resolve(_candidate(), _match(member), config, CONTEXT).merge.group_action is None


def test_move_to_group_records_previous_groups(make_config):
    config = make_config(duplicate_action={"moveToGroup": True})
    plan = resolve(_candidate(), _match(_existing(group_ids=(5, 10))), config, CONTEXT)
    assert plan.merge.group_action == MoveToGroup(group_id=10, previous_groups=(5,))

    only_target = _existing(group_ids=(10,))
    assert resolve(_candidate(), _match(only_target), config, CONTEXT).merge.group_action is None


def test_update_with_nothing_to_change_is_still_an_update(make_config):
    config = make_config(
        duplicate_action={"updateName": False, "addPhones": False, "addToGroup": False},
    )
    plan = resolve(_candidate(), _match(_existing()), config, CONTEXT)

    assert plan.action is PlanAction.UPDATE
    assert plan.merge.has_changes is False
