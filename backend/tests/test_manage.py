import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.deps import has_role, hash_key
from app.manage import ManageError, create_user, grant_role, issue_key
from app.models import Base
from app.models.api_key import ApiKey


@pytest.fixture
def db():
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    session = sessionmaker(bind=engine)()
    yield session
    session.close()


def test_create_user_active_and_duplicate(db):
    user = create_user(db, "ada@example.com", "Ada", active=True)
    assert user.member_status == "active"
    with pytest.raises(ManageError, match="already exists"):
        create_user(db, "ada@example.com")


def test_grant_role_is_idempotent(db):
    user = create_user(db, "ada@example.com")
    assert grant_role(db, "ada@example.com", "admin") is True
    assert grant_role(db, "ada@example.com", "admin") is False
    assert has_role(db, user.id, "admin")
    assert not has_role(db, user.id, "chief_architect")


def test_grant_role_rejects_unknown(db):
    create_user(db, "ada@example.com")
    with pytest.raises(ManageError, match="Unknown role"):
        grant_role(db, "ada@example.com", "superuser")
    with pytest.raises(ManageError, match="No user"):
        grant_role(db, "nobody@example.com", "admin")


def test_issue_key_stores_only_hash(db):
    create_user(db, "ada@example.com")
    raw = issue_key(db, "ada@example.com", "laptop")
    stored = db.query(ApiKey).one()
    assert stored.key_hash == hash_key(raw)
    assert stored.key_hash != raw
