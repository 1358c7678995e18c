"""Outcome calculators for mines, plinko and crash.

Everything here is pure: randomness comes in through an explicit
`random.Random` (or a uniform float), so a round can be replayed from its
fairness seed.
"""
import math
import random
from dataclasses import dataclass, field
from decimal import ROUND_FLOOR, Decimal
from typing import Dict, List, Tuple

from .errors import InvalidInput

GAMES = ("mines", "plinko", "crash")
GAME_LABELS: Dict[str, str] = {
    "mines": "Mines",
    "plinko": "Plinko",
    "crash": "Crash",
}

MINES_MIN_GRID = 3
MINES_MAX_GRID = 8
MINES_MAX_MULTIPLIER = 1000.0

PLINKO_MIN_ROWS = 8
PLINKO_MAX_ROWS = 16
PLINKO_RISKS = ("low", "medium", "high")
PLINKO_PAYOUT_TABLES: Dict[str, Tuple[float, ...]] = {
    "low": (5.6, 2.1, 1.1, 1.0, 0.5, 1.0, 1.1, 2.1, 5.6),
    "medium": (13.0, 3.0, 1.3, 0.7, 0.4, 0.7, 1.3, 3.0, 13.0),
    "high": (29.0, 4.0, 1.5, 0.6, 0.2, 0.6, 1.5, 4.0, 29.0),
}

# Board geometry and physics, in pixels per frame
PLINKO_BOARD_WIDTH = 600.0
PLINKO_PEG_TOP = 60.0
PLINKO_PEG_SPACING = 40.0
PLINKO_PEG_RADIUS = 4.0
PLINKO_BALL_RADIUS = 8.0
PLINKO_SLOT_WIDTH = 60.0
PLINKO_SLOT_HEIGHT = 40.0
PLINKO_GRAVITY = 0.5
PLINKO_FRICTION = 0.99
PLINKO_RESTITUTION = 0.8
PLINKO_MAX_STEPS = 10000
PLINKO_PATH_EVERY = 4

CRASH_CURVE_DIVISOR = 10.0
CRASH_TURBO_DIVISOR = 5.0
CRASH_MIN_POINT = 1.01


def payout_for(stake: int, multiplier: float) -> int:
    """floor(stake * multiplier), computed in decimal to avoid float drift."""
    value = Decimal(stake) * Decimal(str(multiplier))
    return int(value.to_integral_value(rounding=ROUND_FLOOR))


# ---------------------------------------------------------------- mines


def validate_mines_params(grid_size: int, mines_count: int) -> None:
    if not MINES_MIN_GRID <= grid_size <= MINES_MAX_GRID:
        raise InvalidInput(
            f"Grid size must be between {MINES_MIN_GRID} and {MINES_MAX_GRID}"
        )
    if not 1 <= mines_count < grid_size * grid_size:
        raise InvalidInput(
            f"Mines count must be between 1 and {grid_size * grid_size - 1}"
        )


def place_mines(grid_size: int, mines_count: int, rng: random.Random) -> List[int]:
    validate_mines_params(grid_size, mines_count)
    return sorted(rng.sample(range(grid_size * grid_size), mines_count))


def mines_multiplier(grid_size: int, mines_count: int, revealed: int) -> float:
    safe_tiles = grid_size * grid_size - mines_count
    if revealed >= safe_tiles:
        return MINES_MAX_MULTIPLIER
    multiplier = 1 / (1 - revealed / safe_tiles)
    return max(1.0, min(multiplier, MINES_MAX_MULTIPLIER))


# ---------------------------------------------------------------- plinko


@dataclass
class PlinkoDrop:
    slot: int
    multiplier: float
    path: List[Tuple[float, float]] = field(default_factory=list)


def validate_plinko_params(rows: int, risk: str) -> None:
    if not PLINKO_MIN_ROWS <= rows <= PLINKO_MAX_ROWS:
        raise InvalidInput(
            f"Rows must be between {PLINKO_MIN_ROWS} and {PLINKO_MAX_ROWS}"
        )
    if risk not in PLINKO_PAYOUT_TABLES:
        raise InvalidInput("Risk must be one of: " + ", ".join(PLINKO_RISKS))


def plinko_board_height(rows: int) -> float:
    return PLINKO_PEG_TOP + (rows - 1) * PLINKO_PEG_SPACING + 100.0


def plinko_pegs(rows: int) -> List[Tuple[float, float]]:
    center = PLINKO_BOARD_WIDTH / 2
    pegs = []
    for row in range(rows):
        pegs_in_row = row + 1
        y = PLINKO_PEG_TOP + row * PLINKO_PEG_SPACING
        for col in range(pegs_in_row):
            x = center - (pegs_in_row - 1) * (PLINKO_PEG_SPACING / 2) + col * PLINKO_PEG_SPACING
            pegs.append((x, y))
    return pegs


def slot_for_x(x: float) -> int:
    slots = len(PLINKO_PAYOUT_TABLES["low"])
    strip_start = PLINKO_BOARD_WIDTH / 2 - (slots * PLINKO_SLOT_WIDTH) / 2
    slot = math.floor((x - strip_start) / PLINKO_SLOT_WIDTH)
    return min(max(slot, 0), slots - 1)


def simulate_plinko(rows: int, risk: str, rng: random.Random) -> PlinkoDrop:
    """Drop one ball through the peg board and report where it lands."""
    validate_plinko_params(rows, risk)
    pegs = plinko_pegs(rows)
    floor_y = plinko_board_height(rows) - PLINKO_SLOT_HEIGHT - PLINKO_BALL_RADIUS
    hit_distance = PLINKO_PEG_RADIUS + PLINKO_BALL_RADIUS

    x = PLINKO_BOARD_WIDTH / 2 + (rng.random() - 0.5) * 20
    y = 30.0
    vx = (rng.random() - 0.5) * 2
    vy = 2.0
    path = [(round(x, 1), round(y, 1))]

    for step in range(PLINKO_MAX_STEPS):
        vy += PLINKO_GRAVITY
        vx *= PLINKO_FRICTION
        vy *= PLINKO_FRICTION
        x += vx
        y += vy

        for peg_x, peg_y in pegs:
            dx = x - peg_x
            dy = y - peg_y
            distance = math.hypot(dx, dy)
            if distance < hit_distance:
                angle = math.atan2(dy, dx)
                speed = math.hypot(vx, vy)
                vx = math.cos(angle) * speed * PLINKO_RESTITUTION
                vy = math.sin(angle) * speed * PLINKO_RESTITUTION
                vx += (rng.random() - 0.5) * 2
                # push the ball back onto the peg surface
                x = peg_x + math.cos(angle) * hit_distance
                y = peg_y + math.sin(angle) * hit_distance

        if step % PLINKO_PATH_EVERY == 0:
            path.append((round(x, 1), round(y, 1)))
        if y > floor_y:
            break

    path.append((round(x, 1), round(y, 1)))
    slot = slot_for_x(x)
    return PlinkoDrop(slot=slot, multiplier=PLINKO_PAYOUT_TABLES[risk][slot], path=path)


# ---------------------------------------------------------------- crash


def crash_multiplier(elapsed: float, turbo: bool = False) -> float:
    if elapsed <= 0:
        return 1.0
    divisor = CRASH_TURBO_DIVISOR if turbo else CRASH_CURVE_DIVISOR
    return math.exp(elapsed / divisor)


def crash_time(point: float, turbo: bool = False) -> float:
    """Seconds after the round start at which the curve reaches `point`."""
    divisor = CRASH_TURBO_DIVISOR if turbo else CRASH_CURVE_DIVISOR
    return math.log(point) * divisor


def generate_crash_point(u: float, max_multiplier: float, house_edge: float) -> float:
    if not 0 <= house_edge < 1:
        raise InvalidInput("House edge must be in [0, 1)")
    if max_multiplier < CRASH_MIN_POINT:
        raise InvalidInput(f"Max multiplier must be at least {CRASH_MIN_POINT}")
    raw = 1 + u * (max_multiplier - 1)
    point = math.floor(raw * (1 - house_edge) * 100) / 100
    return min(max(point, CRASH_MIN_POINT), max_multiplier)
