"""Administrative operations.

Every mutation writes its AdminLog row in the same unit of work as the
change it records.
"""
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List

from sqlalchemy.orm import Session, aliased

from . import games, models
from .audit import log_admin_action
from .config import (
    ANNOUNCEMENT_MAX_LENGTH,
    BROADCAST_MAX_LENGTH,
    GEM_RAIN_AMOUNT,
    GEM_RAIN_COOLDOWN_HOURS,
    REPORT_REASON_MAX_LENGTH,
)
from .database import unit_of_work
from .errors import Conflict, CooldownActive, Forbidden, InvalidInput, NotFound
from .ownership import read_setting
from .permissions import Role, validate_ban, validate_role_transition
from .settlement import apply_balance_change, current_balance, get_game_setting

logger = logging.getLogger("gemverse.admin")

BULK_ACTIONS = ("ban", "unban", "promote", "demote")
REPORT_STATUSES = ("PENDING", "RESOLVED", "DISMISSED")

# keys maintained by the service itself
MANAGED_SETTINGS = ("system_initialized", "last_gem_rain")

# on/off settings read by the service; field -> (type, required)
TOGGLE_SETTINGS = {
    "maintenance_mode": {"enabled": (bool, True), "message": (str, False)},
    "owner_transfer_enabled": {"enabled": (bool, True)},
}


@dataclass
class BulkResult:
    action: str
    processed: List[int] = field(default_factory=list)
    failed: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class GemRainResult:
    recipients: int
    amount: int
    next_available_at: datetime


def get_target(db: Session, user_id: int) -> models.User:
    user = db.query(models.User).filter(models.User.id == user_id).first()
    if user is None:
        raise NotFound("User not found")
    return user


def list_users(db: Session, search: str | None = None, limit: int = 200) -> list[models.User]:
    query = db.query(models.User)
    if search:
        query = query.filter(models.User.username.contains(search.lower()))
    return query.order_by(models.User.created_at.desc()).limit(min(max(limit, 1), 500)).all()


def _set_banned(db: Session, target: models.User, banned: bool) -> None:
    target.is_banned = banned
    target.updated_at = datetime.utcnow()
    if banned:
        db.query(models.Session).filter(models.Session.user_id == target.id).delete(
            synchronize_session=False
        )


def ban_user(db: Session, actor: models.User, target_id: int, reason: str | None = None) -> models.User:
    target = get_target(db, target_id)
    check = validate_ban(actor.role, target.role, actor.id == target.id)
    if not check.allowed:
        raise Forbidden(check.reason)
    with unit_of_work(db):
        _set_banned(db, target, True)
        log_admin_action(
            db,
            actor.id,
            "BAN_USER",
            target_id=target.id,
            details={"username": target.username, "reason": reason},
        )
    db.refresh(target)
    logger.warning("user %s banned user %s", actor.id, target.id)
    return target


def unban_user(db: Session, actor: models.User, target_id: int, reason: str | None = None) -> models.User:
    target = get_target(db, target_id)
    check = validate_ban(actor.role, target.role, actor.id == target.id)
    if not check.allowed:
        raise Forbidden(check.reason)
    with unit_of_work(db):
        _set_banned(db, target, False)
        log_admin_action(
            db,
            actor.id,
            "UNBAN_USER",
            target_id=target.id,
            details={"username": target.username, "reason": reason},
        )
    db.refresh(target)
    logger.info("user %s unbanned user %s", actor.id, target.id)
    return target


def change_role(db: Session, actor: models.User, target_id: int, new_role: Role) -> models.User:
    target = get_target(db, target_id)
    check = validate_role_transition(actor.role, target.role, new_role, actor.id == target.id)
    if not check.allowed:
        raise Forbidden(check.reason)
    previous = target.role
    with unit_of_work(db):
        # conditional on the role we validated against
        updated = (
            db.query(models.User)
            .filter(models.User.id == target.id, models.User.role == previous)
            .update(
                {models.User.role: new_role, models.User.updated_at: datetime.utcnow()},
                synchronize_session=False,
            )
        )
        if updated != 1:
            raise Conflict("Role changed concurrently, retry")
        log_admin_action(
            db,
            actor.id,
            "CHANGE_ROLE",
            target_id=target.id,
            details={"from": previous.value, "to": new_role.value},
        )
    db.refresh(target)
    logger.info("user %s changed role of %s: %s -> %s", actor.id, target.id, previous.value, new_role.value)
    return target


def update_user(db: Session, actor: models.User, target_id: int, changes: Dict[str, Any]) -> models.User:
    """Owner edit of an account's balances, progress and ban flag."""
    if actor.role is not Role.OWNER:
        raise Forbidden("Owner privileges required")
    target = get_target(db, target_id)
    changes = {k: v for k, v in changes.items() if v is not None}
    for key in ("gems", "crystals", "xp"):
        if key in changes and changes[key] < 0:
            raise InvalidInput(f"{key} cannot be negative")
    if "level" in changes and changes["level"] < 1:
        raise InvalidInput("level must be at least 1")
    if "is_banned" in changes and changes["is_banned"] != target.is_banned:
        check = validate_ban(actor.role, target.role, actor.id == target.id)
        if not check.allowed:
            raise Forbidden(check.reason)

    with unit_of_work(db):
        if "gems" in changes:
            delta = changes["gems"] - current_balance(db, target.id)
            if delta:
                apply_balance_change(
                    db, target.id, delta, f"admin:{actor.id}:set_gems", result_type="admin"
                )
        for key in ("crystals", "level", "xp"):
            if key in changes:
                setattr(target, key, changes[key])
        if "is_banned" in changes:
            _set_banned(db, target, changes["is_banned"])
        target.updated_at = datetime.utcnow()
        log_admin_action(db, actor.id, "UPDATE_USER", target_id=target.id, details=changes)
    db.refresh(target)
    return target


def bulk_action(
    db: Session,
    actor: models.User,
    action: str,
    user_ids: List[int],
    reason: str | None = None,
) -> BulkResult:
    """Apply one action to many accounts; each target is checked on its own."""
    if action not in BULK_ACTIONS:
        raise InvalidInput(f"Unknown bulk action: {action}")
    if not user_ids:
        raise InvalidInput("No users selected")

    result = BulkResult(action=action)
    with unit_of_work(db):
        for user_id in dict.fromkeys(user_ids):
            target = db.query(models.User).filter(models.User.id == user_id).first()
            if target is None:
                result.failed.append({"user_id": user_id, "reason": "User not found"})
                continue
            if action in ("ban", "unban"):
                check = validate_ban(actor.role, target.role, actor.id == target.id)
                if check.allowed:
                    _set_banned(db, target, action == "ban")
            else:
                desired = Role.ADMIN if action == "promote" else Role.PLAYER
                check = validate_role_transition(
                    actor.role, target.role, desired, actor.id == target.id
                )
                if check.allowed:
                    target.role = desired
                    target.updated_at = datetime.utcnow()
            if check.allowed:
                result.processed.append(target.id)
            else:
                result.failed.append({"user_id": target.id, "reason": check.reason})
        log_admin_action(
            db,
            actor.id,
            "BULK_ACTION",
            details={
                "action": action,
                "processed": result.processed,
                "failed": result.failed,
                "reason": reason,
            },
        )
    logger.info(
        "bulk %s by user %s: %d processed, %d failed",
        action,
        actor.id,
        len(result.processed),
        len(result.failed),
    )
    return result


def post_announcement(db: Session, actor: models.User, message: str) -> models.AdminLog:
    message = (message or "").strip()
    if not message:
        raise InvalidInput("Announcement cannot be empty")
    if len(message) > ANNOUNCEMENT_MAX_LENGTH:
        raise InvalidInput(f"Announcement must be at most {ANNOUNCEMENT_MAX_LENGTH} characters")
    entry = log_admin_action(db, actor.id, "ANNOUNCEMENT", details={"message": message}, commit=True)
    db.refresh(entry)
    return entry


def broadcast_message(db: Session, actor: models.User, message: str) -> models.AdminLog:
    if actor.role is not Role.OWNER:
        raise Forbidden("Owner privileges required")
    message = (message or "").strip()
    if not message:
        raise InvalidInput("Message is required")
    if len(message) > BROADCAST_MAX_LENGTH:
        raise InvalidInput("Message too long")
    entry = log_admin_action(
        db, actor.id, "BROADCAST_MESSAGE", details={"message": message}, commit=True
    )
    db.refresh(entry)
    logger.info("broadcast from %s: %s", actor.username, message)
    return entry


# Reports


def file_report(db: Session, reporter: models.User, target_id: int, reason: str) -> models.Report:
    target = get_target(db, target_id)
    if target.id == reporter.id:
        raise InvalidInput("Cannot report yourself")
    reason = (reason or "").strip()
    if not reason:
        raise InvalidInput("Reason is required")
    if len(reason) > REPORT_REASON_MAX_LENGTH:
        raise InvalidInput(f"Reason must be at most {REPORT_REASON_MAX_LENGTH} characters")
    report = models.Report(reporter_id=reporter.id, target_id=target.id, reason=reason)
    with unit_of_work(db):
        db.add(report)
    db.refresh(report)
    return report


def list_reports(db: Session, status: str | None = None, limit: int = 200) -> list[dict]:
    """Newest reports first, with both usernames resolved."""
    if status is not None and status not in REPORT_STATUSES:
        raise InvalidInput(f"Unknown report status: {status}")
    reporter = aliased(models.User)
    target = aliased(models.User)
    query = (
        db.query(models.Report, reporter.username, target.username)
        .outerjoin(reporter, reporter.id == models.Report.reporter_id)
        .outerjoin(target, target.id == models.Report.target_id)
    )
    if status is not None:
        query = query.filter(models.Report.status == status)
    rows = (
        query.order_by(models.Report.created_at.desc(), models.Report.id.desc())
        .limit(min(max(limit, 1), 500))
        .all()
    )
    return [
        {
            "id": report.id,
            "reporter_id": report.reporter_id,
            "target_id": report.target_id,
            "reason": report.reason,
            "status": report.status,
            "created_at": report.created_at,
            "reporter_username": reporter_name or "Unknown",
            "target_username": target_name or "Unknown",
        }
        for report, reporter_name, target_name in rows
    ]


def update_report_status(
    db: Session, actor: models.User, report_id: int, status: str
) -> models.Report:
    if status not in REPORT_STATUSES:
        raise InvalidInput(f"Unknown report status: {status}")
    report = db.query(models.Report).filter(models.Report.id == report_id).first()
    if report is None:
        raise NotFound("Report not found")
    previous = report.status
    with unit_of_work(db):
        report.status = status
        report.updated_at = datetime.utcnow()
        log_admin_action(
            db,
            actor.id,
            "UPDATE_REPORT",
            target_id=report.id,
            details={"status": status, "previous_status": previous},
        )
    db.refresh(report)
    return report



def gem_rain(db: Session, actor: models.User, now: datetime | None = None) -> GemRainResult:
    """Give every player with a live session a few gems, once per cool-down."""
    now = now or datetime.utcnow()
    cooldown = timedelta(hours=GEM_RAIN_COOLDOWN_HOURS)
    row = db.query(models.Setting).filter(models.Setting.key == "last_gem_rain").first()
    previous_raw = row.value if row is not None else None
    previous = json.loads(previous_raw) if previous_raw else None
    if previous:
        next_at = datetime.fromisoformat(previous["timestamp"]) + cooldown
        if now < next_at:
            minutes = int((next_at - now).total_seconds() // 60) + 1
            raise CooldownActive(f"Gem rain is cooling down, try again in {minutes} minutes")

    stamp = json.dumps({"timestamp": now.isoformat(), "admin_id": actor.id})
    with unit_of_work(db):
        if row is None:
            db.add(models.Setting(key="last_gem_rain", value=stamp, updated_at=now))
            db.flush()
        else:
            # claim the slot before paying out, so two rains cannot both fire
            claimed = (
                db.query(models.Setting)
                .filter(
                    models.Setting.key == "last_gem_rain",
                    models.Setting.value.is_(None)
                    if previous_raw is None
                    else models.Setting.value == previous_raw,
                )
                .update(
                    {models.Setting.value: stamp, models.Setting.updated_at: now},
                    synchronize_session=False,
                )
            )
            if claimed != 1:
                raise CooldownActive("Gem rain already triggered")
        recipient_ids = [
            user_id
            for (user_id,) in db.query(models.Session.user_id)
            .join(models.User, models.User.id == models.Session.user_id)
            .filter(models.Session.expires > now, models.User.is_banned.is_(False))
            .distinct()
            .all()
        ]
        for user_id in recipient_ids:
            apply_balance_change(db, user_id, GEM_RAIN_AMOUNT, "gem_rain", result_type="bonus")
        log_admin_action(
            db,
            actor.id,
            "GEM_RAIN",
            details={"recipients": len(recipient_ids), "amount": GEM_RAIN_AMOUNT},
        )
    logger.info("gem rain by user %s reached %d players", actor.id, len(recipient_ids))
    return GemRainResult(
        recipients=len(recipient_ids), amount=GEM_RAIN_AMOUNT, next_available_at=now + cooldown
    )


def get_settings(db: Session) -> Dict[str, Any]:
    rows = db.query(models.Setting).order_by(models.Setting.key.asc()).all()
    return {row.key: json.loads(row.value) if row.value else None for row in rows}


def _check_toggle(key: str, value: Any, fields: Dict[str, tuple]) -> None:
    if not isinstance(value, dict):
        raise InvalidInput(f"{key} must be an object with an \"enabled\" flag")
    unknown = set(value) - set(fields)
    if unknown:
        raise InvalidInput(f"Unknown field for {key}: {sorted(unknown)[0]}")
    for name, (kind, required) in fields.items():
        if name not in value:
            if required:
                raise InvalidInput(f"{key}.{name} is required")
            continue
        if not isinstance(value[name], kind):
            raise InvalidInput(f"{key}.{name} must be a {kind.__name__}")


def update_settings(db: Session, actor: models.User, values: Dict[str, Any]) -> Dict[str, Any]:
    if not values:
        raise InvalidInput("No settings given")
    managed = [key for key in values if key in MANAGED_SETTINGS]
    if managed:
        raise InvalidInput(f"Setting cannot be changed directly: {managed[0]}")
    for key, value in values.items():
        if key in TOGGLE_SETTINGS:
            _check_toggle(key, value, TOGGLE_SETTINGS[key])
    now = datetime.utcnow()
    with unit_of_work(db):
        for key, value in values.items():
            row = db.query(models.Setting).filter(models.Setting.key == key).first()
            if row is None:
                row = models.Setting(key=key)
                db.add(row)
            row.value = json.dumps(value)
            row.updated_at = now
        log_admin_action(db, actor.id, "UPDATE_SETTINGS", details=values)
    return get_settings(db)


def list_game_settings(db: Session) -> list[models.GameSetting]:
    with unit_of_work(db):
        settings = [get_game_setting(db, game) for game in games.GAMES]
    return settings


def update_game_settings(
    db: Session, actor: models.User, items: List[Dict[str, Any]]
) -> list[models.GameSetting]:
    for item in items:
        if item.get("game_id") not in games.GAMES:
            raise InvalidInput(f"Unknown game: {item.get('game_id')}")
        if item["min_bet"] < 1 or item["max_bet"] < item["min_bet"]:
            raise InvalidInput("Bet limits must satisfy 1 <= min_bet <= max_bet")
        if not 0 <= item.get("house_edge", 0) < 1:
            raise InvalidInput("House edge must be in [0, 1)")
        if item.get("max_multiplier", games.CRASH_MIN_POINT) < games.CRASH_MIN_POINT:
            raise InvalidInput(f"Max multiplier must be at least {games.CRASH_MIN_POINT}")

    now = datetime.utcnow()
    with unit_of_work(db):
        for item in items:
            setting = get_game_setting(db, item["game_id"])
            setting.min_bet = item["min_bet"]
            setting.max_bet = item["max_bet"]
            setting.maintenance_mode = item.get("maintenance_mode", False)
            if "house_edge" in item:
                setting.house_edge = item["house_edge"]
            if "max_multiplier" in item:
                setting.max_multiplier = item["max_multiplier"]
            setting.updated_at = now
        log_admin_action(db, actor.id, "UPDATE_GAME_SETTINGS", details={"settings": items})
    return list_game_settings(db)
