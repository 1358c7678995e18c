import logging
from typing import List

from fastapi import Cookie, Depends, FastAPI, Request, Response
from fastapi.responses import JSONResponse, RedirectResponse
from fastapi.templating import Jinja2Templates
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import accounts, admin, models, ownership, schemas, settlement
from .audit import recent_admin_logs, to_iso_utc
from .config import (
    BASE_DIR,
    COOKIE_SECURE,
    LOG_LEVEL,
    SESSION_COOKIE,
    SESSION_TTL_HOURS,
)
from .database import SessionLocal, get_db, init_db
from .errors import CasinoError, Forbidden, Internal, NotFound
from .games import GAME_LABELS
from .permissions import Permission
from .security import (
    create_session,
    delete_session,
    get_current_user,
    require_any_permission,
    require_owner,
    require_permission,
    resolve_session,
)

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("gemverse.api")

ERROR_RESPONSES = {
    status: {"model": schemas.ErrorResponse}
    for status in (400, 401, 403, 404, 409, 429, 500)
}

app = FastAPI(
    title="GEMVERSE",
    description="Play-money casino with mines, plinko and crash.",
    responses=ERROR_RESPONSES,
)

templates = Jinja2Templates(directory=str(BASE_DIR / "templates"))


@app.exception_handler(CasinoError)
def casino_error_handler(request: Request, exc: CasinoError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.kind, "detail": exc.message},
    )


@app.exception_handler(SQLAlchemyError)
def storage_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.exception("storage error on %s %s", request.method, request.url.path)
    error = Internal()
    return JSONResponse(
        status_code=error.status_code,
        content={"error": error.kind, "detail": error.message},
    )


@app.on_event("startup")
def startup() -> None:
    init_db()
    db = SessionLocal()
    try:
        admin.list_game_settings(db)
        if ownership.get_owner(db) is not None:
            ownership.initialize_system(db)
    finally:
        db.close()


def _set_session_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        SESSION_COOKIE,
        token,
        max_age=SESSION_TTL_HOURS * 3600,
        httponly=True,
        samesite="lax",
        secure=COOKIE_SECURE,
        path="/",
    )


def _bet_item(bet: models.Bet) -> schemas.BetItem:
    return schemas.BetItem(
        id=bet.id,
        game=bet.game,
        amount=bet.amount,
        status=bet.status,
        payout=bet.payout,
        profit=bet.profit,
        created_at=bet.created_at,
        settled_at=bet.settled_at,
        outcome=settlement.public_outcome(bet),
    )


def _placement_response(placement: settlement.WagerPlacement) -> schemas.GameResponse:
    bet = placement.bet
    multiplier = placement.outcome.get("multiplier", 1.0)
    return schemas.GameResponse(
        bet_id=bet.id,
        game=bet.game,
        result=bet.status,
        payout_multiplier=multiplier,
        payout_amount=placement.payout or 0,
        balance=placement.new_balance,
        server_seed_hash=placement.outcome.get("server_seed_hash"),
        detail=placement.outcome,
    )


def _settlement_response(result: settlement.SettlementResult) -> schemas.GameResponse:
    return schemas.GameResponse(
        bet_id=result.bet.id,
        game=result.bet.game,
        result=result.status,
        payout_multiplier=result.multiplier,
        payout_amount=result.payout,
        balance=result.new_balance,
        server_seed_hash=result.outcome.get("server_seed_hash"),
        detail=result.outcome,
    )


@app.get("/", include_in_schema=False)
def root() -> RedirectResponse:
    return RedirectResponse(url="/docs")


# Auth


@app.post("/api/auth/register", response_model=schemas.SessionResponse)
def register(
    payload: schemas.RegisterRequest,
    response: Response,
    db: Session = Depends(get_db),
):
    user = accounts.register_user(db, payload.username, payload.password, payload.referral_code)
    session = create_session(db, user.id)
    _set_session_cookie(response, session.session_token)
    return schemas.SessionResponse(user=user, expires=session.expires)


@app.post("/api/auth/login", response_model=schemas.SessionResponse)
def login(
    payload: schemas.LoginRequest,
    response: Response,
    db: Session = Depends(get_db),
):
    user = accounts.authenticate(db, payload.username, payload.password)
    session = create_session(db, user.id)
    _set_session_cookie(response, session.session_token)
    logger.info("user %s logged in", user.id)
    return schemas.SessionResponse(user=user, expires=session.expires)


@app.post("/api/auth/logout")
def logout(
    response: Response,
    session_token: str | None = Cookie(None, alias=SESSION_COOKIE),
    db: Session = Depends(get_db),
):
    if session_token:
        delete_session(db, session_token)
    response.delete_cookie(SESSION_COOKIE, path="/")
    return {"success": True}


@app.get("/api/auth/session", response_model=schemas.SessionResponse)
def current_session(
    session_token: str | None = Cookie(None, alias=SESSION_COOKIE),
    db: Session = Depends(get_db),
):
    user = resolve_session(db, session_token)
    if user.is_banned:
        raise Forbidden("Account has been banned")
    session = (
        db.query(models.Session)
        .filter(models.Session.session_token == session_token)
        .first()
    )
    return schemas.SessionResponse(user=user, expires=session.expires if session else None)


# Player


@app.get("/api/balance", response_model=schemas.BalanceResponse)
def balance(current_user: models.User = Depends(get_current_user)):
    return current_user


@app.post("/api/transfer", response_model=schemas.TransferResponse)
def transfer(
    payload: schemas.TransferRequest,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_permission(Permission.TRANSFER_GEMS)),
):
    return accounts.transfer_gems(db, current_user, payload.to_username, payload.amount)


@app.post("/api/reports", response_model=schemas.ReportItem)
def report_player(
    payload: schemas.ReportRequest,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    return admin.file_report(db, current_user, payload.target_id, payload.reason)


@app.get("/api/bets", response_model=List[schemas.BetItem])
def list_bets(
    limit: int = 50,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    return [_bet_item(bet) for bet in settlement.recent_bets(db, current_user.id, limit)]


@app.get("/api/bets/{bet_id}", response_model=schemas.BetItem)
def get_bet(
    bet_id: str,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    bet = db.query(models.Bet).filter(models.Bet.id == bet_id).first()
    if bet is None or bet.user_id != current_user.id:
        raise NotFound("Bet not found")
    return _bet_item(bet)


# Games


@app.post("/api/games/mines/bet", response_model=schemas.GameResponse)
def mines_bet(
    payload: schemas.MinesBetRequest,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    placement = settlement.place_wager(
        db,
        current_user,
        "mines",
        payload.bet_amount,
        {
            "grid_size": payload.grid_size,
            "mines_count": payload.mines_count,
            "client_seed": payload.client_seed,
        },
    )
    return _placement_response(placement)


@app.post("/api/games/mines/reveal", response_model=schemas.GameResponse)
def mines_reveal(
    payload: schemas.MinesRevealRequest,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    return _settlement_response(
        settlement.reveal_tile(db, current_user, payload.bet_id, payload.cell)
    )


@app.post("/api/games/mines/cashout", response_model=schemas.GameResponse)
def mines_cashout(
    payload: schemas.CashoutRequest,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    bet = db.query(models.Bet.game).filter(models.Bet.id == payload.bet_id).scalar()
    if bet != "mines":
        raise NotFound("Bet not found")
    return _settlement_response(
        settlement.cash_out(db, current_user, payload.bet_id, payload.multiplier)
    )


@app.post("/api/games/plinko/drop", response_model=schemas.GameResponse)
def plinko_drop(
    payload: schemas.PlinkoRequest,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    placement = settlement.place_wager(
        db,
        current_user,
        "plinko",
        payload.bet_amount,
        {"rows": payload.rows, "risk": payload.risk, "client_seed": payload.client_seed},
    )
    return _placement_response(placement)


@app.post("/api/games/crash/bet", response_model=schemas.GameResponse)
def crash_bet(
    payload: schemas.CrashBetRequest,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    placement = settlement.place_wager(
        db,
        current_user,
        "crash",
        payload.bet_amount,
        {
            "auto_cashout": payload.auto_cashout,
            "turbo": payload.turbo,
            "client_seed": payload.client_seed,
        },
    )
    return _placement_response(placement)


@app.post("/api/games/crash/cashout", response_model=schemas.GameResponse)
def crash_cashout(
    payload: schemas.CashoutRequest,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    bet = db.query(models.Bet.game).filter(models.Bet.id == payload.bet_id).scalar()
    if bet != "crash":
        raise NotFound("Bet not found")
    return _settlement_response(
        settlement.cash_out(db, current_user, payload.bet_id, payload.multiplier)
    )


@app.post("/api/games/crash/resolve", response_model=schemas.GameResponse)
def crash_resolve(
    payload: schemas.CrashResolveRequest,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    return _settlement_response(settlement.resolve_crash(db, current_user, payload.bet_id))


@app.get("/api/games/crash/history", response_model=List[schemas.CrashHistoryItem])
def crash_history(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    return settlement.crash_history(db)


# Admin


@app.post("/api/admin/user/{user_id}/ban", response_model=schemas.UserItem)
def ban_user(
    user_id: int,
    payload: schemas.BanRequest | None = None,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_permission(Permission.BAN_USERS)),
):
    return admin.ban_user(db, current_user, user_id, payload.reason if payload else None)


@app.post("/api/admin/user/{user_id}/unban", response_model=schemas.UserItem)
def unban_user(
    user_id: int,
    payload: schemas.BanRequest | None = None,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_permission(Permission.BAN_USERS)),
):
    return admin.unban_user(db, current_user, user_id, payload.reason if payload else None)


@app.post("/api/admin/user/{user_id}/role", response_model=schemas.UserItem)
def change_role(
    user_id: int,
    payload: schemas.RoleChangeRequest,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_permission(Permission.ASSIGN_ROLES)),
):
    return admin.change_role(db, current_user, user_id, payload.role)


@app.post("/api/admin/announcement", response_model=schemas.AnnouncementResponse)
def announcement(
    payload: schemas.AnnouncementRequest,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_permission(Permission.POST_ANNOUNCEMENTS)),
):
    entry = admin.post_announcement(db, current_user, payload.message)
    return schemas.AnnouncementResponse(
        id=entry.id, message=payload.message.strip(), created_at=entry.created_at
    )


@app.get("/api/admin/users", response_model=List[schemas.UserItem])
def admin_list_users(
    search: str | None = None,
    limit: int = 200,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_permission(Permission.VIEW_USERS)),
):
    return admin.list_users(db, search, limit)


@app.get("/api/admin/logs", response_model=List[schemas.AdminLogItem])
def admin_logs(
    limit: int = 200,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_permission(Permission.VIEW_LOGS)),
):
    return recent_admin_logs(db, limit)


@app.get("/api/admin/reports", response_model=List[schemas.ReportItem])
def admin_reports(
    status: schemas.ReportStatus | None = None,
    limit: int = 200,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(
        require_any_permission(Permission.VIEW_REPORTS, Permission.HANDLE_REPORTS)
    ),
):
    return admin.list_reports(db, status, limit)


@app.patch("/api/admin/report/{report_id}", response_model=schemas.ReportItem)
def admin_update_report(
    report_id: int,
    payload: schemas.ReportStatusUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_permission(Permission.HANDLE_REPORTS)),
):
    return admin.update_report_status(db, current_user, report_id, payload.status)


# Owner


@app.patch("/api/owner/user/{user_id}", response_model=schemas.UserItem)
def owner_update_user(
    user_id: int,
    payload: schemas.OwnerUserUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_owner),
):
    return admin.update_user(db, current_user, user_id, payload.model_dump(exclude_unset=True))


@app.post("/api/owner/bulk-action", response_model=schemas.BulkActionResponse)
def owner_bulk_action(
    payload: schemas.BulkActionRequest,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_owner),
):
    return admin.bulk_action(db, current_user, payload.action, payload.user_ids, payload.reason)


@app.post("/api/owner/broadcast", response_model=schemas.AnnouncementResponse)
def owner_broadcast(
    payload: schemas.BroadcastRequest,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_permission(Permission.BROADCAST)),
):
    entry = admin.broadcast_message(db, current_user, payload.message)
    return schemas.AnnouncementResponse(
        id=entry.id, message=payload.message.strip(), created_at=entry.created_at
    )


@app.post("/api/owner/gem-rain", response_model=schemas.GemRainResponse)
def owner_gem_rain(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_permission(Permission.GEM_RAIN)),
):
    return admin.gem_rain(db, current_user)


@app.post("/api/owner/transfer-ownership", response_model=schemas.TransferOwnershipResponse)
def owner_transfer_ownership(
    payload: schemas.TransferOwnershipRequest,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_permission(Permission.TRANSFER_OWNERSHIP)),
):
    new_owner = ownership.transfer_ownership(db, current_user.id, payload.new_owner_id)
    return schemas.TransferOwnershipResponse(previous_owner=current_user, new_owner=new_owner)


@app.get("/api/owner/settings")
def owner_get_settings(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_permission(Permission.SYSTEM_SETTINGS)),
):
    return admin.get_settings(db)


@app.post("/api/owner/settings")
def owner_update_settings(
    payload: schemas.SettingsUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_permission(Permission.SYSTEM_SETTINGS)),
):
    return admin.update_settings(db, current_user, payload.settings)


@app.get("/api/owner/game-settings", response_model=List[schemas.GameSettingItem])
def owner_get_game_settings(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_permission(Permission.EDIT_GAMES)),
):
    return admin.list_game_settings(db)


@app.post("/api/owner/game-settings", response_model=List[schemas.GameSettingItem])
def owner_update_game_settings(
    payload: schemas.GameSettingsUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_permission(Permission.EDIT_GAMES)),
):
    return admin.update_game_settings(
        db, current_user, [item.model_dump() for item in payload.settings]
    )


@app.get("/api/owner/system-stats", response_model=schemas.SystemStatsResponse)
def owner_system_stats(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_owner),
):
    return schemas.SystemStatsResponse.model_validate(ownership.system_stats(db))


# Dashboards


@app.get("/admin", include_in_schema=False)
def admin_dashboard(
    request: Request,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(
        require_permission(Permission.VIEW_USERS, Permission.VIEW_LOGS)
    ),
):
    logs = recent_admin_logs(db, 25)
    for log in logs:
        log.created_utc = to_iso_utc(log.created_at)
    return templates.TemplateResponse(
        request,
        "admin.html",
        {
            "current_user": current_user,
            "users": admin.list_users(db, limit=50),
            "logs": logs,
            "reports": admin.list_reports(db, "PENDING", 25),
        },
    )


@app.get("/owner", include_in_schema=False)
def owner_dashboard(
    request: Request,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(require_owner),
):
    return templates.TemplateResponse(
        request,
        "owner.html",
        {
            "current_user": current_user,
            "stats": ownership.system_stats(db),
            "game_settings": admin.list_game_settings(db),
            "game_labels": GAME_LABELS,
        },
    )
