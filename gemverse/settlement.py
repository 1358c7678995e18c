"""Wager placement and settlement.

Balance changes never read-modify-write an ORM attribute: every movement is
a single conditional UPDATE, so two requests racing on the same account
cannot lose an update or push the balance below zero. A bet leaves the
`active` state through one conditional UPDATE as well, which makes a second
cash-out or resolution fail with AlreadySettled.
"""
import json
import logging
import math
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from . import fairness, games, models
from .config import (
    CRASH_HOUSE_EDGE,
    CRASH_MAX_MULTIPLIER,
    DEFAULT_MAX_BET,
    DEFAULT_MIN_BET,
)
from .database import unit_of_work
from .errors import (
    AlreadySettled,
    Conflict,
    Forbidden,
    InsufficientBalance,
    InvalidInput,
    NotFound,
)
from .ownership import read_toggle

logger = logging.getLogger("gemverse.settlement")

# outcome keys that would give the round away while it is still open
HIDDEN_WHILE_ACTIVE = ("mines", "crash_point", "server_seed")


@dataclass
class WagerPlacement:
    bet: models.Bet
    new_balance: int
    outcome: Dict[str, Any]
    payout: Optional[int] = None


@dataclass
class SettlementResult:
    bet: models.Bet
    status: str
    multiplier: float
    payout: int
    new_balance: int
    outcome: Dict[str, Any] = field(default_factory=dict)


def get_game_setting(db: Session, game_id: str) -> models.GameSetting:
    setting = (
        db.query(models.GameSetting)
        .filter(models.GameSetting.game_id == game_id)
        .first()
    )
    if setting is None:
        setting = models.GameSetting(
            game_id=game_id,
            min_bet=DEFAULT_MIN_BET,
            max_bet=DEFAULT_MAX_BET,
            maintenance_mode=False,
            house_edge=CRASH_HOUSE_EDGE,
            max_multiplier=CRASH_MAX_MULTIPLIER,
        )
        db.add(setting)
        db.flush()
    return setting


def enforce_bet_limits(setting: models.GameSetting, stake: int) -> None:
    if setting.maintenance_mode:
        raise Forbidden(f"{games.GAME_LABELS.get(setting.game_id, setting.game_id)} is under maintenance")
    if stake > setting.max_bet:
        raise InvalidInput(f"Maximum bet is {setting.max_bet}")
    if stake < setting.min_bet:
        raise InvalidInput(f"Minimum bet is {setting.min_bet}")


def current_balance(db: Session, user_id: int) -> int:
    return db.query(models.User.gems).filter(models.User.id == user_id).scalar()


def apply_balance_change(
    db: Session,
    user_id: int,
    delta: int,
    description: str,
    game_type: str | None = None,
    result_type: str = "game",
) -> int:
    """Move `delta` gems in one UPDATE and record the ledger row; returns the new balance."""
    query = db.query(models.User).filter(models.User.id == user_id)
    if delta < 0:
        query = query.filter(models.User.gems >= -delta)
    updated = query.update(
        {
            models.User.gems: models.User.gems + delta,
            models.User.updated_at: datetime.utcnow(),
        },
        synchronize_session=False,
    )
    if updated != 1:
        if delta < 0:
            raise InsufficientBalance()
        raise NotFound("User not found")
    after = current_balance(db, user_id)
    db.add(
        models.Transaction(
            user_id=user_id,
            type=result_type,
            game_type=game_type,
            amount=delta,
            before_balance=after - delta,
            after_balance=after,
            description=description,
        )
    )
    return after


def load_outcome(bet: models.Bet) -> Dict[str, Any]:
    return json.loads(bet.outcome or "{}")


def public_outcome(bet: models.Bet) -> Dict[str, Any]:
    outcome = load_outcome(bet)
    if bet.status == "active":
        for key in HIDDEN_WHILE_ACTIVE:
            outcome.pop(key, None)
    return outcome


def _validate_params(game: str, params: Dict[str, Any]) -> None:
    if game == "mines":
        games.validate_mines_params(int(params["grid_size"]), int(params["mines_count"]))
    elif game == "plinko":
        games.validate_plinko_params(int(params["rows"]), str(params["risk"]))
    elif game == "crash":
        auto_cashout = params.get("auto_cashout")
        if auto_cashout is not None and auto_cashout < games.CRASH_MIN_POINT:
            raise InvalidInput(f"Auto cash-out must be at least {games.CRASH_MIN_POINT}")
    else:
        raise InvalidInput(f"Unknown game: {game}")


def _next_nonce(db: Session, user_id: int) -> int:
    return db.query(func.count(models.Bet.id)).filter(models.Bet.user_id == user_id).scalar() or 0


def place_wager(
    db: Session,
    user: models.User,
    game: str,
    stake: int,
    params: Dict[str, Any] | None = None,
    now: datetime | None = None,
) -> WagerPlacement:
    """Debit the stake and open (or, for plinko, immediately resolve) a wager.

    Checks run in a fixed order and nothing is written until all pass:
    account state, game parameters and bet limits, then balance.
    """
    params = params or {}
    if user.is_banned:
        raise Forbidden("Account has been banned")
    if game not in games.GAMES:
        raise InvalidInput(f"Unknown game: {game}")
    if stake < 1:
        raise InvalidInput("Stake must be at least 1")
    try:
        _validate_params(game, params)
    except (KeyError, TypeError, ValueError):
        raise InvalidInput(f"Missing or malformed parameters for {game}")

    now = now or datetime.utcnow()
    with unit_of_work(db):
        site_maintenance = read_toggle(db, "maintenance_mode")
        if site_maintenance["enabled"]:
            raise Forbidden(site_maintenance.get("message") or "Site is under maintenance")
        setting = get_game_setting(db, game)
        enforce_bet_limits(setting, stake)
        if current_balance(db, user.id) < stake:
            raise InsufficientBalance()

        seed = fairness.issue_seed(params.get("client_seed"), _next_nonce(db, user.id))
        new_balance = apply_balance_change(
            db, user.id, -stake, f"game:{game}:bet", game_type=game
        )
        outcome: Dict[str, Any] = {
            "server_seed": seed.server_seed,
            "server_seed_hash": seed.server_seed_hash,
            "client_seed": seed.client_seed,
            "nonce": seed.nonce,
        }
        bet = models.Bet(
            id=str(uuid.uuid4()),
            user_id=user.id,
            game=game,
            amount=stake,
            status="active",
            profit=-stake,
            created_at=now,
        )
        payout = None

        if game == "mines":
            grid_size = int(params["grid_size"])
            mines_count = int(params["mines_count"])
            outcome.update(
                {
                    "grid_size": grid_size,
                    "mines_count": mines_count,
                    "mines": games.place_mines(grid_size, mines_count, seed.rng()),
                    "revealed": [],
                    "multiplier": 1.0,
                }
            )
        elif game == "crash":
            turbo = bool(params.get("turbo", False))
            outcome.update(
                {
                    "crash_point": games.generate_crash_point(
                        seed.uniform(), setting.max_multiplier, setting.house_edge
                    ),
                    "turbo": turbo,
                    "auto_cashout": params.get("auto_cashout"),
                    "started_at": now.isoformat(),
                }
            )
        else:
            drop = games.simulate_plinko(int(params["rows"]), str(params["risk"]), seed.rng())
            payout = games.payout_for(stake, drop.multiplier)
            outcome.update(
                {
                    "rows": int(params["rows"]),
                    "risk": str(params["risk"]),
                    "slot": drop.slot,
                    "multiplier": drop.multiplier,
                    "path": drop.path,
                }
            )
            if payout:
                new_balance = apply_balance_change(
                    db, user.id, payout, "game:plinko:payout", game_type=game
                )
            bet.status = "won" if drop.multiplier >= 1 else "lost"
            bet.payout = payout
            bet.profit = payout - stake
            bet.settled_at = now

        bet.outcome = json.dumps(outcome)
        db.add(bet)

    logger.info(
        "user %s placed %s bet %s stake=%s status=%s", user.id, game, bet.id, stake, bet.status
    )
    return WagerPlacement(bet=bet, new_balance=new_balance, outcome=public_outcome(bet), payout=payout)


def _load_open_bet(db: Session, user: models.User, bet_id: str, game: str | None = None) -> models.Bet:
    bet = db.query(models.Bet).filter(models.Bet.id == bet_id).first()
    if bet is None or bet.user_id != user.id or (game and bet.game != game):
        raise NotFound("Bet not found")
    if bet.status != "active":
        raise AlreadySettled()
    return bet


def settle_wager(
    db: Session,
    bet_id: str,
    status: str,
    multiplier: float,
    outcome: Dict[str, Any] | None = None,
    now: datetime | None = None,
) -> SettlementResult:
    """Close an active bet as won or lost and credit its payout."""
    if status not in ("won", "lost"):
        raise InvalidInput("Settlement status must be 'won' or 'lost'")
    now = now or datetime.utcnow()
    with unit_of_work(db):
        bet = db.query(models.Bet).filter(models.Bet.id == bet_id).first()
        if bet is None:
            raise NotFound("Bet not found")
        stake = bet.amount
        if outcome is None:
            outcome = load_outcome(bet)
        payout = games.payout_for(stake, multiplier) if status == "won" else 0
        outcome["status"] = status
        updated = (
            db.query(models.Bet)
            .filter(models.Bet.id == bet_id, models.Bet.status == "active")
            .update(
                {
                    models.Bet.status: status,
                    models.Bet.outcome: json.dumps(outcome),
                    models.Bet.payout: payout,
                    models.Bet.profit: payout - stake,
                    models.Bet.settled_at: now,
                },
                synchronize_session=False,
            )
        )
        if updated != 1:
            raise AlreadySettled()
        if payout:
            new_balance = apply_balance_change(
                db, bet.user_id, payout, f"game:{bet.game}:payout", game_type=bet.game
            )
        else:
            new_balance = current_balance(db, bet.user_id)
    db.refresh(bet)
    logger.info(
        "bet %s settled %s multiplier=%.4f payout=%s", bet_id, status, multiplier, payout
    )
    return SettlementResult(
        bet=bet,
        status=status,
        multiplier=multiplier if status == "won" else 0.0,
        payout=payout,
        new_balance=new_balance,
        outcome=public_outcome(bet),
    )


def reveal_tile(db: Session, user: models.User, bet_id: str, cell: int) -> SettlementResult:
    bet = _load_open_bet(db, user, bet_id, game="mines")
    raw_outcome = bet.outcome
    outcome = load_outcome(bet)
    grid_size = outcome["grid_size"]
    mines_count = outcome["mines_count"]
    if not 0 <= cell < grid_size * grid_size:
        raise InvalidInput("Cell is outside the grid")
    if cell in outcome["revealed"]:
        raise InvalidInput("Tile already revealed")

    if cell in outcome["mines"]:
        outcome["hit"] = cell
        return settle_wager(db, bet.id, "lost", 0.0, outcome)

    outcome["revealed"].append(cell)
    multiplier = games.mines_multiplier(grid_size, mines_count, len(outcome["revealed"]))
    outcome["multiplier"] = multiplier
    if len(outcome["revealed"]) == grid_size * grid_size - mines_count:
        return settle_wager(db, bet.id, "won", multiplier, outcome)

    with unit_of_work(db):
        # compare-and-swap on the whole payload so two reveals cannot interleave
        updated = (
            db.query(models.Bet)
            .filter(
                models.Bet.id == bet.id,
                models.Bet.status == "active",
                models.Bet.outcome == raw_outcome,
            )
            .update({models.Bet.outcome: json.dumps(outcome)}, synchronize_session=False)
        )
        if updated != 1:
            status = db.query(models.Bet.status).filter(models.Bet.id == bet.id).scalar()
            if status != "active":
                raise AlreadySettled()
            raise Conflict("Bet was updated concurrently, retry")
        balance = current_balance(db, user.id)
    db.refresh(bet)
    return SettlementResult(
        bet=bet,
        status="active",
        multiplier=multiplier,
        payout=0,
        new_balance=balance,
        outcome=public_outcome(bet),
    )


def _crash_state(outcome: Dict[str, Any], now: datetime) -> float:
    started_at = datetime.fromisoformat(outcome["started_at"])
    elapsed = (now - started_at).total_seconds()
    return games.crash_multiplier(elapsed, outcome.get("turbo", False))


def cash_out(
    db: Session,
    user: models.User,
    bet_id: str,
    multiplier: float | None = None,
    now: datetime | None = None,
) -> SettlementResult:
    """Take the current winnings of an open mines or crash bet."""
    now = now or datetime.utcnow()
    bet = _load_open_bet(db, user, bet_id)
    outcome = load_outcome(bet)

    if bet.game == "mines":
        revealed = len(outcome["revealed"])
        if revealed == 0:
            raise InvalidInput("Reveal at least one tile before cashing out")
        board_multiplier = games.mines_multiplier(
            outcome["grid_size"], outcome["mines_count"], revealed
        )
        if multiplier is not None and multiplier > board_multiplier + 1e-9:
            raise InvalidInput("Multiplier does not match the board")
        outcome["cashout_multiplier"] = board_multiplier
        return settle_wager(db, bet.id, "won", board_multiplier, outcome, now)

    if bet.game == "crash":
        live = _crash_state(outcome, now)
        requested = live if multiplier is None else multiplier
        if requested < 1.0:
            raise InvalidInput("Multiplier must be at least 1.0")
        crash_point = outcome["crash_point"]
        auto_cashout = outcome.get("auto_cashout")
        auto_wins = auto_cashout is not None and auto_cashout < crash_point
        if live >= crash_point:
            # the round is over; only an auto cash-out below the crash point still pays
            if not auto_wins:
                outcome["crashed"] = True
                return settle_wager(db, bet.id, "lost", 0.0, outcome, now)
            effective = auto_cashout
        else:
            effective = min(requested, live)
            if auto_wins and auto_cashout <= effective:
                effective = auto_cashout
        effective = max(1.0, math.floor(effective * 100) / 100)
        outcome["cashout_multiplier"] = effective
        return settle_wager(db, bet.id, "won", effective, outcome, now)

    raise InvalidInput(f"{bet.game} bets cannot be cashed out")


def resolve_crash(
    db: Session, user: models.User, bet_id: str, now: datetime | None = None
) -> SettlementResult:
    """Settle a crash bet whose round is over: auto cash-out if it fired, else lost."""
    now = now or datetime.utcnow()
    bet = _load_open_bet(db, user, bet_id, game="crash")
    outcome = load_outcome(bet)
    live = _crash_state(outcome, now)
    crash_point = outcome["crash_point"]
    auto_cashout = outcome.get("auto_cashout")

    if auto_cashout is not None and auto_cashout < crash_point:
        if live < auto_cashout:
            raise InvalidInput("Round is still running")
        outcome["cashout_multiplier"] = auto_cashout
        return settle_wager(db, bet.id, "won", auto_cashout, outcome, now)

    if live < crash_point:
        raise InvalidInput("Round is still running")
    outcome["crashed"] = True
    return settle_wager(db, bet.id, "lost", 0.0, outcome, now)


def recent_bets(db: Session, user_id: int, limit: int = 50) -> list[models.Bet]:
    limit = min(max(limit, 1), 200)
    return (
        db.query(models.Bet)
        .filter(models.Bet.user_id == user_id)
        .order_by(models.Bet.created_at.desc())
        .limit(limit)
        .all()
    )


def crash_history(db: Session, limit: int = 50) -> list[dict]:
    bets = (
        db.query(models.Bet)
        .filter(models.Bet.game == "crash", models.Bet.status != "active")
        .order_by(models.Bet.settled_at.desc())
        .limit(limit)
        .all()
    )
    return [
        {
            "round_id": bet.id,
            "crash_point": load_outcome(bet)["crash_point"],
            "timestamp": bet.settled_at,
        }
        for bet in bets
    ]
