import json
from datetime import datetime, timedelta, timezone

from sqlalchemy.orm import Session

from . import models


def log_admin_action(
    db: Session,
    admin_id: int | None,
    action: str,
    target_id: int | None = None,
    details: dict | str | None = None,
    commit: bool = False,
) -> models.AdminLog:
    details_str = (
        json.dumps(details, ensure_ascii=False, default=str)
        if isinstance(details, (dict, list))
        else details
    )
    log = models.AdminLog(
        admin_id=admin_id,
        action=action,
        target_id=target_id,
        details=details_str,
    )
    db.add(log)
    if commit:
        db.commit()
    return log


def recent_admin_logs(db: Session, limit: int = 200) -> list[models.AdminLog]:
    limit = min(max(limit, 1), 500)
    return (
        db.query(models.AdminLog)
        .order_by(models.AdminLog.created_at.desc(), models.AdminLog.id.desc())
        .limit(limit)
        .all()
    )


def to_iso_utc(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat()


def since(hours: float) -> datetime:
    return datetime.utcnow() - timedelta(hours=hours)
