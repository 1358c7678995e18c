from datetime import datetime
from typing import Annotated, Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer

from .permissions import Role


# gems, crystals, xp, stakes and payouts leave the API as strings
BigInt = Annotated[int, PlainSerializer(str, return_type=str, when_used="json")]

GameID = Literal["mines", "plinko", "crash"]
BetStatus = Literal["active", "won", "lost"]


class ErrorResponse(BaseModel):
    error: str
    detail: str


# Accounts


class RegisterRequest(BaseModel):
    username: str
    password: str
    referral_code: Optional[str] = None


class LoginRequest(BaseModel):
    username: str
    password: str


class UserItem(BaseModel):
    id: int
    username: str
    role: Role
    gems: BigInt
    crystals: BigInt
    level: int
    xp: BigInt
    is_banned: bool
    created_at: datetime
    last_active: datetime

    model_config = ConfigDict(from_attributes=True)


class SessionResponse(BaseModel):
    user: UserItem
    expires: Optional[datetime] = None


class BalanceResponse(BaseModel):
    gems: BigInt
    crystals: BigInt
    level: int
    xp: BigInt

    model_config = ConfigDict(from_attributes=True)


class TransferRequest(BaseModel):
    to_username: str
    amount: int


class TransferResponse(BaseModel):
    amount_sent: BigInt
    tax_collected: BigInt
    new_balance: BigInt

    model_config = ConfigDict(from_attributes=True)


# Games


class GameBaseRequest(BaseModel):
    bet_amount: int
    client_seed: Optional[str] = Field(default=None, max_length=64)


class MinesBetRequest(GameBaseRequest):
    grid_size: int = 5
    mines_count: int = 3


class MinesRevealRequest(BaseModel):
    bet_id: str
    cell: int


class CashoutRequest(BaseModel):
    bet_id: str
    multiplier: Optional[float] = None


class PlinkoRequest(GameBaseRequest):
    rows: int = 16
    risk: Literal["low", "medium", "high"] = "medium"


class CrashBetRequest(GameBaseRequest):
    auto_cashout: Optional[float] = None
    turbo: bool = False


class CrashResolveRequest(BaseModel):
    bet_id: str


class GameResponse(BaseModel):
    bet_id: str
    game: GameID
    result: BetStatus
    payout_multiplier: float
    payout_amount: BigInt
    balance: BigInt
    server_seed_hash: Optional[str] = None
    detail: Optional[dict] = None


class BetItem(BaseModel):
    id: str
    game: GameID
    amount: BigInt
    status: BetStatus
    payout: BigInt
    profit: BigInt
    created_at: datetime
    settled_at: Optional[datetime] = None
    outcome: Dict[str, Any] = {}


class CrashHistoryItem(BaseModel):
    round_id: str
    crash_point: float
    timestamp: datetime


# Administration


class BanRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=500)


class RoleChangeRequest(BaseModel):
    role: Role


class OwnerUserUpdate(BaseModel):
    gems: Optional[int] = None
    crystals: Optional[int] = None
    level: Optional[int] = None
    xp: Optional[int] = None
    is_banned: Optional[bool] = None


class BulkActionRequest(BaseModel):
    action: Literal["ban", "unban", "promote", "demote"]
    user_ids: List[int]
    reason: Optional[str] = None


class BulkFailure(BaseModel):
    user_id: int
    reason: str


class BulkActionResponse(BaseModel):
    action: str
    processed: List[int]
    failed: List[BulkFailure]

    model_config = ConfigDict(from_attributes=True)


class AnnouncementRequest(BaseModel):
    message: str


class AnnouncementResponse(BaseModel):
    id: int
    message: str
    created_at: datetime


class BroadcastRequest(BaseModel):
    message: str


ReportStatus = Literal["PENDING", "RESOLVED", "DISMISSED"]


class ReportRequest(BaseModel):
    target_id: int
    reason: str


class ReportStatusUpdate(BaseModel):
    status: ReportStatus


class ReportItem(BaseModel):
    id: int
    reporter_id: int
    target_id: int
    reason: str
    status: ReportStatus
    created_at: datetime
    reporter_username: Optional[str] = None
    target_username: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class GemRainResponse(BaseModel):
    recipients: int
    amount: BigInt
    next_available_at: datetime

    model_config = ConfigDict(from_attributes=True)


class TransferOwnershipRequest(BaseModel):
    new_owner_id: int


class TransferOwnershipResponse(BaseModel):
    previous_owner: UserItem
    new_owner: UserItem


class SettingsUpdate(BaseModel):
    settings: Dict[str, Any]


class GameSettingItem(BaseModel):
    game_id: GameID
    min_bet: int
    max_bet: int
    maintenance_mode: bool = False
    house_edge: float = 0.01
    max_multiplier: float = 50.0

    model_config = ConfigDict(from_attributes=True)


class GameSettingsUpdate(BaseModel):
    settings: List[GameSettingItem]


class AdminLogItem(BaseModel):
    id: int
    admin_id: Optional[int] = None
    action: str
    target_id: Optional[int] = None
    details: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class RegistrationGrowth(BaseModel):
    current_period: int
    previous_period: int
    growth_rate: float


class GameStatistics(BaseModel):
    mines_bets: int
    plinko_bets: int
    crash_bets: int
    total_wagered: BigInt
    house_profit: BigInt


class SystemHealth(BaseModel):
    active_sessions: int
    uptime: float


class SystemStatsResponse(BaseModel):
    total_users: int
    active_users_24h: int
    total_gems: BigInt
    avg_gems_per_user: BigInt
    total_bets: int
    owner: Optional[UserItem] = None
    top_players: List[UserItem]
    recent_registrations: List[UserItem]
    registration_growth: RegistrationGrowth
    game_statistics: GameStatistics
    system_health: SystemHealth

    model_config = ConfigDict(from_attributes=True)
