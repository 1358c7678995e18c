import pytest

from gemverse import accounts, models, ownership
from gemverse.errors import (
    Forbidden,
    InsufficientBalance,
    InvalidInput,
    NotFound,
    Unauthenticated,
)
from gemverse.permissions import Role

PASSWORD = "Sup3rSecret"


def test_first_account_becomes_owner(db):
    first = accounts.register_user(db, "Founder", PASSWORD)
    assert first.username == "founder"
    assert first.role is Role.OWNER
    assert first.gems == 1_000_000
    assert first.crystals == 10_000
    assert first.level == 100
    assert ownership.read_setting(db, "system_initialized") == {"value": True}

    second = accounts.register_user(db, "player_two", PASSWORD)
    assert second.role is Role.PLAYER
    assert second.gems == 1000

    actions = [log.action for log in db.query(models.AdminLog).order_by(models.AdminLog.id)]
    assert actions == ["USER_REGISTERED", "USER_REGISTERED"]


def test_usernames_are_unique_ignoring_case(db):
    accounts.register_user(db, "Gemma", PASSWORD)
    with pytest.raises(InvalidInput):
        accounts.register_user(db, "gEMMA", PASSWORD)


@pytest.mark.parametrize(
    "username,password",
    [
        ("ab", PASSWORD),
        ("x" * 31, PASSWORD),
        ("bad name", PASSWORD),
        ("Admin", PASSWORD),
        ("valid_name", "short1A"),
        ("valid_name", "alllowercase1"),
        ("valid_name", "ALLUPPERCASE1"),
        ("valid_name", "NoDigitsHere"),
        ("valid_name", "A1a" * 43),
    ],
)
def test_registration_rules(db, username, password):
    with pytest.raises(InvalidInput):
        accounts.register_user(db, username, password)
    assert db.query(models.User).count() == 0


def test_referral_credits_both_sides(db, owner, player):
    newcomer = accounts.register_user(db, "newcomer", PASSWORD, referral_code="ALICE")
    db.refresh(player)
    assert newcomer.gems == 1100
    assert newcomer.referred_by_id == player.id
    assert player.gems == 1100
    assert (
        db.query(models.AdminLog).filter(models.AdminLog.action == "REFERRAL_COMPLETED").count()
        == 1
    )


def test_unknown_referral_is_ignored(db, owner):
    newcomer = accounts.register_user(db, "newcomer", PASSWORD, referral_code="nobody")
    assert newcomer.gems == 1000
    assert newcomer.referred_by_id is None


def test_authenticate(db, owner):
    user = accounts.register_user(db, "loginner", PASSWORD)
    assert accounts.authenticate(db, "LOGINNER", PASSWORD).id == user.id
    with pytest.raises(Unauthenticated):
        accounts.authenticate(db, "loginner", "Wr0ngPassword")
    with pytest.raises(Unauthenticated):
        accounts.authenticate(db, "ghost", PASSWORD)

    user.is_banned = True
    db.commit()
    with pytest.raises(Forbidden):
        accounts.authenticate(db, "loginner", PASSWORD)


def test_transfer_applies_tax(db, player, make_user):
    bob = make_user("bob")
    result = accounts.transfer_gems(db, player, "Bob", 100)
    assert result.amount_sent == 95
    assert result.tax_collected == 5
    assert result.new_balance == 900
    db.refresh(bob)
    assert bob.gems == 1095

    small = accounts.transfer_gems(db, player, "bob", 19)
    assert small.tax_collected == 0
    assert small.amount_sent == 19


def test_transfer_rejections(db, player, make_user):
    make_user("bob")
    with pytest.raises(InvalidInput):
        accounts.transfer_gems(db, player, "alice", 10)
    with pytest.raises(NotFound):
        accounts.transfer_gems(db, player, "nobody", 10)
    with pytest.raises(InvalidInput):
        accounts.transfer_gems(db, player, "bob", 0)
    with pytest.raises(InsufficientBalance):
        accounts.transfer_gems(db, player, "bob", 1001)
    db.refresh(player)
    assert player.gems == 1000
