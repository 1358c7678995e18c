import logging
import re
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_FLOOR, Decimal

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import models
from .audit import log_admin_action
from .config import (
    OWNER_BONUS_CRYSTALS,
    OWNER_BONUS_GEMS,
    OWNER_MIN_LEVEL,
    REFERRAL_BONUS,
    RESERVED_USERNAMES,
    STARTING_GEMS,
    TRANSFER_TAX_RATE,
)
from .database import unit_of_work
from .errors import Conflict, Forbidden, InvalidInput, NotFound, Unauthenticated
from .ownership import initialize_system
from .permissions import Role
from .security import hash_password, verify_password
from .settlement import apply_balance_change

logger = logging.getLogger("gemverse.accounts")

USERNAME_RE = re.compile(r"^[a-zA-Z0-9_-]+$")


@dataclass
class TransferResult:
    amount_sent: int
    tax_collected: int
    new_balance: int


def validate_registration_input(username: str, password: str) -> None:
    if not username or not 3 <= len(username) <= 30:
        raise InvalidInput("Username must be 3-30 characters long")
    if not USERNAME_RE.match(username):
        raise InvalidInput(
            "Username can only contain letters, numbers, underscores, and hyphens"
        )
    if username.lower() in RESERVED_USERNAMES:
        raise InvalidInput("Username is reserved")
    if not password or len(password) < 8:
        raise InvalidInput("Password must be at least 8 characters long")
    if len(password) > 128:
        raise InvalidInput("Password too long")
    if not (
        re.search(r"\d", password)
        and re.search(r"[a-z]", password)
        and re.search(r"[A-Z]", password)
    ):
        raise InvalidInput(
            "Password must contain at least one number, one lowercase, and one uppercase letter"
        )


def find_by_username(db: Session, username: str) -> models.User | None:
    return (
        db.query(models.User)
        .filter(models.User.username == username.strip().lower())
        .first()
    )


def register_user(
    db: Session, username: str, password: str, referral_code: str | None = None
) -> models.User:
    """Create an account. The very first account becomes the owner."""
    validate_registration_input(username, password)
    if find_by_username(db, username) is not None:
        raise InvalidInput("Username already taken")

    is_first_user = (db.query(func.count(models.User.id)).scalar() or 0) == 0
    referrer = find_by_username(db, referral_code) if referral_code else None

    gems = OWNER_BONUS_GEMS if is_first_user else STARTING_GEMS
    if referrer is not None:
        gems += REFERRAL_BONUS
    user = models.User(
        username=username.lower(),
        password_hash=hash_password(password),
        role=Role.OWNER if is_first_user else Role.PLAYER,
        gems=gems,
        crystals=OWNER_BONUS_CRYSTALS if is_first_user else 0,
        level=OWNER_MIN_LEVEL if is_first_user else 1,
        xp=0,
        referred_by_id=referrer.id if referrer else None,
    )
    try:
        with unit_of_work(db):
            db.add(user)
            db.flush()
            db.add(
                models.Transaction(
                    user_id=user.id,
                    type="bonus",
                    amount=gems,
                    before_balance=0,
                    after_balance=gems,
                    description="starting balance",
                )
            )
            if referrer is not None:
                apply_balance_change(
                    db,
                    referrer.id,
                    REFERRAL_BONUS,
                    f"referral:{user.id}",
                    result_type="bonus",
                )
                log_admin_action(
                    db,
                    user.id,
                    "REFERRAL_COMPLETED",
                    target_id=referrer.id,
                    details={"referrer_username": referrer.username, "bonus_gems": REFERRAL_BONUS},
                )
            log_admin_action(
                db,
                user.id,
                "USER_REGISTERED",
                target_id=user.id,
                details={
                    "username": user.username,
                    "role": user.role.value,
                    "is_first_user": is_first_user,
                    "referral_code": referral_code,
                },
            )
    except IntegrityError:
        # lost a race on the username or on the single owner slot
        raise Conflict("Username already taken or registration raced, retry")

    if is_first_user:
        initialize_system(db)
    db.refresh(user)
    logger.info("registered user %s (%s)", user.username, user.role.value)
    return user


def authenticate(db: Session, username: str, password: str) -> models.User:
    if not username or not password:
        raise InvalidInput("Username and password are required")
    user = find_by_username(db, username)
    if user is None:
        raise Unauthenticated("Invalid credentials")
    if user.is_banned:
        raise Forbidden("Account has been banned")
    if not verify_password(user.password_hash, password):
        raise Unauthenticated("Invalid credentials")
    user.last_active = datetime.utcnow()
    db.commit()
    db.refresh(user)
    return user


def transfer_gems(
    db: Session, sender: models.User, to_username: str, amount: int
) -> TransferResult:
    """Send gems to another player; the recipient receives the amount minus tax."""
    if amount < 1:
        raise InvalidInput("Amount must be at least 1")
    recipient = find_by_username(db, to_username or "")
    if recipient is None:
        raise NotFound("Recipient not found")
    if recipient.id == sender.id:
        raise InvalidInput("Cannot transfer to yourself")
    if recipient.is_banned:
        raise InvalidInput("Recipient account is banned")

    tax = int(
        (Decimal(amount) * Decimal(str(TRANSFER_TAX_RATE))).to_integral_value(rounding=ROUND_FLOOR)
    )
    amount_after_tax = amount - tax
    with unit_of_work(db):
        new_balance = apply_balance_change(
            db, sender.id, -amount, f"transfer:to:{recipient.id}", result_type="transfer"
        )
        apply_balance_change(
            db,
            recipient.id,
            amount_after_tax,
            f"transfer:from:{sender.id}",
            result_type="transfer",
        )
    logger.info(
        "user %s sent %s gems to user %s (tax %s)", sender.id, amount, recipient.id, tax
    )
    return TransferResult(amount_sent=amount_after_tax, tax_collected=tax, new_balance=new_balance)
