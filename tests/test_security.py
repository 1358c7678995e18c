from datetime import datetime, timedelta

import pytest

from gemverse import models
from gemverse.errors import Unauthenticated
from gemverse.security import (
    create_session,
    delete_session,
    hash_password,
    resolve_session,
    verify_password,
)


def test_password_hash_round_trip():
    hashed = hash_password("Passw0rd")
    assert hashed != "Passw0rd"
    assert verify_password(hashed, "Passw0rd")
    assert not verify_password(hashed, "passw0rd")


def test_session_resolves_to_its_account(db, player):
    session = create_session(db, player.id)
    assert resolve_session(db, session.session_token).id == player.id
    assert session.expires > datetime.utcnow() + timedelta(hours=23)


def test_expired_session_is_removed(db, player):
    session = create_session(db, player.id)
    session.expires = datetime.utcnow() - timedelta(seconds=1)
    db.commit()
    with pytest.raises(Unauthenticated, match="Session expired"):
        resolve_session(db, session.session_token)
    assert db.query(models.Session).count() == 0


def test_missing_and_deleted_sessions(db, player):
    with pytest.raises(Unauthenticated, match="No session"):
        resolve_session(db, None)
    token = create_session(db, player.id).session_token
    delete_session(db, token)
    with pytest.raises(Unauthenticated, match="Invalid session"):
        resolve_session(db, token)
