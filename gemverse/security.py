import logging
import secrets
from datetime import datetime, timedelta

from fastapi import Cookie, Depends
from sqlalchemy.orm import Session
from werkzeug.security import check_password_hash, generate_password_hash

from . import models
from .config import SESSION_COOKIE, SESSION_TTL_HOURS
from .database import get_db
from .errors import Forbidden, Unauthenticated
from .ownership import is_owner
from .permissions import Permission, Role, has_all_permissions, has_any_permission

logger = logging.getLogger("gemverse.auth")


def hash_password(password: str) -> str:
    return generate_password_hash(password)


def verify_password(password_hash: str, password: str) -> bool:
    return check_password_hash(password_hash, password)


def create_session(db: Session, user_id: int, commit: bool = True) -> models.Session:
    session = models.Session(
        session_token=secrets.token_urlsafe(32),
        user_id=user_id,
        expires=datetime.utcnow() + timedelta(hours=SESSION_TTL_HOURS),
    )
    db.add(session)
    if commit:
        db.commit()
        db.refresh(session)
    return session


def delete_session(db: Session, token: str) -> None:
    db.query(models.Session).filter(models.Session.session_token == token).delete()
    db.commit()


def resolve_session(db: Session, token: str | None) -> models.User:
    """Map a cookie token to its account, dropping expired sessions on sight."""
    if not token:
        raise Unauthenticated("No session")
    session = (
        db.query(models.Session)
        .filter(models.Session.session_token == token)
        .first()
    )
    if session is None:
        raise Unauthenticated("Invalid session")
    if session.expires < datetime.utcnow():
        db.delete(session)
        db.commit()
        raise Unauthenticated("Session expired")
    user = db.query(models.User).filter(models.User.id == session.user_id).first()
    if user is None:
        raise Unauthenticated("Invalid session")
    return user


def get_current_user(
    session_token: str | None = Cookie(None, alias=SESSION_COOKIE),
    db: Session = Depends(get_db),
) -> models.User:
    user = resolve_session(db, session_token)
    if user.is_banned:
        raise Forbidden("Account has been banned")
    return user


def _permission_guard(permissions, check):
    def dependency(current_user: models.User = Depends(get_current_user)) -> models.User:
        if not check(current_user.role, permissions):
            logger.info(
                "permission %s denied for user %s (%s)",
                ",".join(p.value for p in permissions),
                current_user.id,
                current_user.role.value,
            )
            raise Forbidden("Insufficient privileges")
        return current_user

    return dependency


def require_permission(*permissions: Permission):
    """Dependency that lets through users holding every one of `permissions`."""
    return _permission_guard(permissions, has_all_permissions)


def require_any_permission(*permissions: Permission):
    return _permission_guard(permissions, has_any_permission)


def require_owner(
    current_user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> models.User:
    if current_user.role is not Role.OWNER or not is_owner(db, current_user.id):
        raise Forbidden("Owner privileges required")
    return current_user
