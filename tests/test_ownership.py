import json

import pytest
from sqlalchemy.exc import IntegrityError

from gemverse import models, ownership
from gemverse.errors import Forbidden, InvalidInput, NotFound
from gemverse.permissions import Role


def _owner_count(db):
    return db.query(models.User).filter(models.User.role == Role.OWNER).count()


def test_transfer_swaps_roles_and_grants_bonus(db, owner, player):
    new_owner = ownership.transfer_ownership(db, owner.id, player.id)

    assert new_owner.id == player.id
    assert new_owner.role is Role.OWNER
    assert new_owner.gems == 1000 + 1_000_000
    assert new_owner.crystals == 10_000
    assert new_owner.level == 100
    db.refresh(owner)
    assert owner.role is Role.ADMIN
    assert _owner_count(db) == 1
    assert ownership.get_owner(db).id == player.id
    assert ownership.is_owner(db, player.id)
    assert not ownership.is_owner(db, owner.id)

    log = db.query(models.AdminLog).filter(models.AdminLog.action == "TRANSFER_OWNERSHIP").one()
    assert log.admin_id == owner.id
    assert log.target_id == player.id
    details = json.loads(log.details)
    assert details["previous_owner"] == owner.id
    assert details["new_owner"] == player.id


def test_transfer_keeps_a_higher_level(db, owner, make_user):
    veteran = make_user("veteran", level=250)
    ownership.transfer_ownership(db, owner.id, veteran.id)
    db.refresh(veteran)
    assert veteran.level == 250


def test_only_the_owner_can_transfer(db, owner, moderator, player):
    with pytest.raises(Forbidden):
        ownership.transfer_ownership(db, moderator.id, player.id)
    db.refresh(owner)
    assert owner.role is Role.OWNER
    assert _owner_count(db) == 1


@pytest.mark.parametrize("case", ["self", "missing", "banned"])
def test_rejected_transfer_changes_nothing(db, owner, player, case):
    if case == "self":
        candidate_id, error = owner.id, InvalidInput
    elif case == "missing":
        candidate_id, error = 9999, NotFound
    else:
        player.is_banned = True
        db.commit()
        candidate_id, error = player.id, InvalidInput

    with pytest.raises(error):
        ownership.transfer_ownership(db, owner.id, candidate_id)
    db.refresh(owner)
    db.refresh(player)
    assert owner.role is Role.OWNER
    assert player.role is Role.PLAYER
    assert player.gems == 1000
    assert db.query(models.AdminLog).count() == 0


def test_transfer_can_be_disabled(db, owner, player):
    db.add(models.Setting(key="owner_transfer_enabled", value=json.dumps({"enabled": False})))
    db.commit()
    with pytest.raises(Forbidden):
        ownership.transfer_ownership(db, owner.id, player.id)


@pytest.mark.parametrize("stored,allowed", [(False, False), (True, True), ("junk", True)])
def test_transfer_toggle_reads_plain_values(db, owner, player, stored, allowed):
    db.add(models.Setting(key="owner_transfer_enabled", value=json.dumps(stored)))
    db.commit()
    if allowed:
        assert ownership.transfer_ownership(db, owner.id, player.id).role is Role.OWNER
    else:
        with pytest.raises(Forbidden):
            ownership.transfer_ownership(db, owner.id, player.id)


def test_database_refuses_a_second_owner(db, owner):
    db.add(models.User(username="usurper", password_hash="x", role=Role.OWNER))
    with pytest.raises(IntegrityError):
        db.commit()
    db.rollback()
    assert _owner_count(db) == 1


def test_initialize_system_runs_once(db):
    assert ownership.initialize_system(db) is True
    assert ownership.initialize_system(db) is False
    assert ownership.read_setting(db, "system_initialized") == {"value": True}
    assert ownership.read_setting(db, "owner_transfer_enabled") == {"enabled": True}


def test_system_stats(db, owner, player, make_user):
    make_user("bob", gems=500)
    stats = ownership.system_stats(db)
    assert stats["total_users"] == 3
    assert stats["total_gems"] == 1_000_000 + 1000 + 500
    assert stats["owner"].id == owner.id
    assert [p.username for p in stats["top_players"]] == ["alice", "bob"]
    assert stats["game_statistics"]["total_wagered"] == 0
    assert stats["registration_growth"]["current_period"] == 3
