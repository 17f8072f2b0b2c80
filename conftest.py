# conftest.py

import os
from datetime import datetime, timedelta, timezone

import pytest

# Set testing environment BEFORE importing app so app.py picks TestingConfig
# and mounts the importer blueprint at import time
os.environ["FLASK_ENV"] = "testing"
os.environ.setdefault("IMPORTER_ENABLED", "true")

# Now import app and other modules after environment is set
from app import app as flask_app  # noqa: E402
from crm_app.models import (  # noqa: E402
    Client,
    ClientGroup,
    ClientPhone,
    ClientStatus,
    Region,
    User,
    db,
)
from crm_app.utils.names import name_key  # noqa: E402


@pytest.fixture(scope="function")
def app(tmp_path):
    """Create and configure a test Flask application with a clean database"""
    flask_app.config.update(
        {
            "TESTING": True,
            "SECRET_KEY": "test-secret-key-for-testing-only",
            "IMPORTER_ENABLED": True,
            "IMPORTER_WORKER_ENABLED": False,
            "IMPORTER_UPLOAD_DIR": str(tmp_path / "uploads"),
            "IMPORTER_DEFAULT_COUNTRY_CODE": "7",
            "IMPORTER_REPORT_ERROR_LIMIT": 20,
            "IMPORTER_PRESETS_PATH": None,
        }
    )

    with flask_app.app_context():
        # The in-memory database is shared by the whole session; reset it per test
        db.drop_all()
        db.create_all()
        yield flask_app
        db.session.remove()
        db.drop_all()


@pytest.fixture(autouse=True)
def app_context(app):
    """Automatically provide app context for all tests"""
    with app.app_context():
        yield


@pytest.fixture
def client(app):
    """Create a test client for the Flask application"""
    return app.test_client()


@pytest.fixture
def runner(app):
    """Create a test CLI runner for the Flask application"""
    return app.test_cli_runner()


def _make_user(username, *, is_super_admin=False):
    user = User(username=username, email=f"{username}@example.com", is_active=True, is_super_admin=is_super_admin)
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture
def owner(app):
    """The operator who owns the import target group"""
    return _make_user("owner")


@pytest.fixture
def other_owner(app):
    return _make_user("other_owner")


@pytest.fixture
def super_admin(app):
    return _make_user("super_admin", is_super_admin=True)


@pytest.fixture
def group_factory(app):
    def _factory(owner, name="Campaign"):
        group = ClientGroup(user_id=owner.id, name=name)
        db.session.add(group)
        db.session.commit()
        return group

    return _factory


@pytest.fixture
def target_group(owner, group_factory):
    return group_factory(owner, name="Target")


@pytest.fixture
def region_factory(app):
    def _factory(owner, name):
        region = Region(user_id=owner.id, name=name, name_key=name_key(name))
        db.session.add(region)
        db.session.commit()
        return region

    return _factory


@pytest.fixture
def client_factory(app):
    """Create stored clients; ``age_minutes`` backdates ``updated_at`` for recency checks."""

    def _factory(
        owner,
        *,
        last_name="",
        first_name="",
        middle_name=None,
        phones=(),
        groups=(),
        region=None,
        status=ClientStatus.NEW,
        age_minutes=0,
    ):
        record = Client(user_id=owner.id, status=status)
        record.set_name(last_name=last_name, first_name=first_name, middle_name=middle_name)
        record.phones = [ClientPhone(phone=phone) for phone in phones]
        record.groups = list(groups)
        if region is not None:
            record.region = region
        db.session.add(record)
        db.session.commit()
        if age_minutes:
            stamp = datetime.now(timezone.utc) - timedelta(minutes=age_minutes)
            db.session.query(Client).filter(Client.id == record.id).update(
                {Client.updated_at: stamp}, synchronize_session=False
            )
            db.session.commit()
            db.session.refresh(record)
        return record

    return _factory
