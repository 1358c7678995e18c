"""Owner account management.

The owner is whichever account currently holds `Role.OWNER`; a partial
unique index keeps it to one row. All functions take the database session
explicitly.
"""
import json
import logging
import time
from datetime import datetime

from sqlalchemy import case, func
from sqlalchemy.orm import Session

from . import models
from .audit import log_admin_action, since
from .config import OWNER_BONUS_CRYSTALS, OWNER_BONUS_GEMS, OWNER_MIN_LEVEL
from .database import unit_of_work
from .errors import Conflict, Forbidden, InvalidInput, NotFound
from .permissions import Role

logger = logging.getLogger("gemverse.owner")

_STARTED_AT = time.monotonic()

SYSTEM_DEFAULTS = {
    "system_initialized": {"value": True},
    "owner_transfer_enabled": {"enabled": True},
    "system_version": {"version": "1.0.0"},
    "last_gem_rain": None,
    "maintenance_mode": {"enabled": False, "message": ""},
}


def read_setting(db: Session, key: str, default=None):
    row = db.query(models.Setting).filter(models.Setting.key == key).first()
    if row is None or row.value is None:
        return default
    return json.loads(row.value)


def read_toggle(db: Session, key: str, default: bool = False) -> dict:
    """Read an on/off setting as `{"enabled": bool, ...}`; a bare boolean is accepted."""
    value = read_setting(db, key)
    if isinstance(value, bool):
        return {"enabled": value}
    if not isinstance(value, dict):
        return {"enabled": default}
    return {**value, "enabled": bool(value.get("enabled", default))}


def get_owner(db: Session) -> models.User | None:
    return (
        db.query(models.User)
        .filter(models.User.role == Role.OWNER)
        .order_by(models.User.id.asc())
        .first()
    )


def is_owner(db: Session, user_id: int) -> bool:
    owner = get_owner(db)
    return owner is not None and owner.id == user_id


def transfer_ownership(db: Session, actor_id: int, candidate_id: int) -> models.User:
    """Hand the owner role from `actor_id` to `candidate_id` in one transaction.

    The previous owner becomes an admin; the new owner receives the owner
    starting bonus. Returns the new owner.
    """
    if actor_id == candidate_id:
        raise InvalidInput("Cannot transfer ownership to yourself")
    if not read_toggle(db, "owner_transfer_enabled", default=True)["enabled"]:
        raise Forbidden("Ownership transfer is disabled")

    with unit_of_work(db):
        actor = db.query(models.User).filter(models.User.id == actor_id).first()
        if actor is None or actor.role is not Role.OWNER:
            raise Forbidden("Only the current owner can transfer ownership")
        candidate = db.query(models.User).filter(models.User.id == candidate_id).first()
        if candidate is None:
            raise NotFound("User not found")
        if candidate.is_banned:
            raise InvalidInput("Cannot transfer ownership to a banned account")
        if candidate.role is Role.OWNER:
            raise InvalidInput("Account already holds the owner role")

        now = datetime.utcnow()
        demoted = (
            db.query(models.User)
            .filter(models.User.id == actor_id, models.User.role == Role.OWNER)
            .update(
                {models.User.role: Role.ADMIN, models.User.updated_at: now},
                synchronize_session=False,
            )
        )
        if demoted != 1:
            raise Conflict("Ownership changed concurrently, retry")
        promoted = (
            db.query(models.User)
            .filter(
                models.User.id == candidate_id,
                models.User.is_banned.is_(False),
                models.User.role != Role.OWNER,
            )
            .update(
                {
                    models.User.role: Role.OWNER,
                    models.User.gems: models.User.gems + OWNER_BONUS_GEMS,
                    models.User.crystals: models.User.crystals + OWNER_BONUS_CRYSTALS,
                    models.User.level: case(
                        (models.User.level < OWNER_MIN_LEVEL, OWNER_MIN_LEVEL),
                        else_=models.User.level,
                    ),
                    models.User.updated_at: now,
                },
                synchronize_session=False,
            )
        )
        if promoted != 1:
            raise Conflict("Candidate changed concurrently, retry")
        log_admin_action(
            db,
            actor_id,
            "TRANSFER_OWNERSHIP",
            target_id=candidate_id,
            details={
                "previous_owner": actor_id,
                "new_owner": candidate_id,
                "timestamp": now.isoformat(),
            },
        )

    db.refresh(candidate)
    db.refresh(actor)
    logger.warning("ownership transferred from user %s to user %s", actor_id, candidate_id)
    return candidate


def initialize_system(db: Session) -> bool:
    """Seed the system settings once; returns False if they already exist."""
    existing = (
        db.query(models.Setting)
        .filter(models.Setting.key == "system_initialized")
        .first()
    )
    if existing is not None:
        return False
    with unit_of_work(db):
        for key, value in SYSTEM_DEFAULTS.items():
            if db.query(models.Setting).filter(models.Setting.key == key).first() is None:
                db.add(models.Setting(key=key, value=json.dumps(value)))
    logger.info("system settings initialized")
    return True


def system_stats(db: Session) -> dict:
    owner = get_owner(db)
    total_users = db.query(func.count(models.User.id)).scalar() or 0
    total_gems = db.query(func.coalesce(func.sum(models.User.gems), 0)).scalar() or 0
    active_users = (
        db.query(func.count(models.User.id))
        .filter(models.User.last_active >= since(24))
        .scalar()
        or 0
    )
    per_game = dict(
        db.query(models.Bet.game, func.count(models.Bet.id)).group_by(models.Bet.game).all()
    )
    total_wagered = db.query(func.coalesce(func.sum(models.Bet.amount), 0)).scalar() or 0
    house_profit = db.query(
        func.coalesce(func.sum(models.Bet.amount - models.Bet.payout), 0)
    ).filter(models.Bet.status != "active").scalar() or 0
    active_sessions = (
        db.query(func.count(models.Session.id))
        .filter(models.Session.expires > datetime.utcnow())
        .scalar()
        or 0
    )
    top_players = (
        db.query(models.User)
        .filter(models.User.role == Role.PLAYER)
        .order_by(models.User.gems.desc())
        .limit(10)
        .all()
    )
    recent_registrations = (
        db.query(models.User)
        .filter(models.User.created_at >= since(24 * 7))
        .order_by(models.User.created_at.desc())
        .limit(10)
        .all()
    )
    current = (
        db.query(func.count(models.User.id))
        .filter(models.User.created_at >= since(24))
        .scalar()
        or 0
    )
    previous = (
        db.query(func.count(models.User.id))
        .filter(models.User.created_at >= since(48), models.User.created_at < since(24))
        .scalar()
        or 0
    )
    return {
        "total_users": total_users,
        "active_users_24h": active_users,
        "total_gems": int(total_gems),
        "avg_gems_per_user": int(total_gems) // total_users if total_users else 0,
        "total_bets": sum(per_game.values()),
        "owner": owner,
        "top_players": top_players,
        "recent_registrations": recent_registrations,
        "registration_growth": {
            "current_period": current,
            "previous_period": previous,
            "growth_rate": ((current - previous) / previous * 100) if previous else 0.0,
        },
        "game_statistics": {
            "mines_bets": per_game.get("mines", 0),
            "plinko_bets": per_game.get("plinko", 0),
            "crash_bets": per_game.get("crash", 0),
            "total_wagered": int(total_wagered),
            "house_profit": int(house_profit),
        },
        "system_health": {
            "active_sessions": active_sessions,
            "uptime": time.monotonic() - _STARTED_AT,
        },
    }
