import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

BASE_DIR = Path(__file__).resolve().parent

DATABASE_URL = os.environ.get(
    "GEMVERSE_DATABASE_URL",
    f"sqlite:///{(BASE_DIR.parent / 'gemverse.db').as_posix()}",
)
LOG_LEVEL = os.environ.get("GEMVERSE_LOG_LEVEL", "INFO")

SESSION_COOKIE = "session-token"
SESSION_TTL_HOURS = int(os.environ.get("GEMVERSE_SESSION_TTL_HOURS", "24"))
COOKIE_SECURE = os.environ.get("GEMVERSE_COOKIE_SECURE", "0") == "1"

# Economy
STARTING_GEMS = 1000
REFERRAL_BONUS = 100
OWNER_BONUS_GEMS = 1_000_000
OWNER_BONUS_CRYSTALS = 10_000
OWNER_MIN_LEVEL = 100
TRANSFER_TAX_RATE = 0.05
GEM_RAIN_AMOUNT = 10
GEM_RAIN_COOLDOWN_HOURS = 1
ANNOUNCEMENT_MAX_LENGTH = 120
BROADCAST_MAX_LENGTH = 500
REPORT_REASON_MAX_LENGTH = 500

# Bet limits applied when a game has no stored setting yet
DEFAULT_MIN_BET = int(os.environ.get("GEMVERSE_MIN_BET", "1"))
DEFAULT_MAX_BET = int(os.environ.get("GEMVERSE_MAX_BET", "100000"))

# Crash round parameters
CRASH_MAX_MULTIPLIER = float(os.environ.get("GEMVERSE_CRASH_MAX_MULTIPLIER", "50"))
CRASH_HOUSE_EDGE = float(os.environ.get("GEMVERSE_CRASH_HOUSE_EDGE", "0.01"))

RESERVED_USERNAMES = {
    "admin",
    "administrator",
    "root",
    "system",
    "owner",
    "moderator",
    "gemverse",
    "casino",
    "support",
    "help",
    "info",
    "test",
    "guest",
}
