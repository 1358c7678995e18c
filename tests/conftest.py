import os
import tempfile

# must be set before gemverse.config is imported
os.environ["GEMVERSE_DATABASE_URL"] = "sqlite:///" + os.path.join(
    tempfile.mkdtemp(prefix="gemverse-test-"), "test.db"
)

import pytest
from fastapi.testclient import TestClient

from gemverse import models
from gemverse.database import Base, SessionLocal, engine
from gemverse.permissions import Role
from gemverse.security import hash_password

PASSWORD = "Passw0rd"


@pytest.fixture
def db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def make_user(db):
    def _make(username, role=Role.PLAYER, gems=1000, **fields):
        user = models.User(
            username=username,
            password_hash=hash_password(PASSWORD),
            role=role,
            gems=gems,
            **fields,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make


@pytest.fixture
def owner(make_user):
    return make_user("boss", role=Role.OWNER, gems=1_000_000, crystals=10_000, level=100)


@pytest.fixture
def moderator(make_user):
    return make_user("mod", role=Role.ADMIN)


@pytest.fixture
def player(make_user):
    return make_user("alice")


@pytest.fixture
def client_factory(db):
    from gemverse.main import app

    def _client():
        return TestClient(app)

    return _client
