import random

import pytest

from gemverse import games
from gemverse.errors import InvalidInput


def test_mines_multiplier_follows_revealed_fraction():
    assert games.mines_multiplier(5, 5, 0) == 1.0
    assert games.mines_multiplier(5, 5, 1) == pytest.approx(1 / (1 - 1 / 20))
    assert games.mines_multiplier(5, 5, 10) == pytest.approx(2.0)


def test_mines_multiplier_caps_when_board_cleared():
    assert games.mines_multiplier(3, 1, 8) == games.MINES_MAX_MULTIPLIER
    assert games.mines_multiplier(8, 63, 1) == games.MINES_MAX_MULTIPLIER


def test_payout_floors_to_whole_gems():
    assert games.payout_for(100, games.mines_multiplier(5, 5, 1)) == 105
    assert games.payout_for(3, 0.5) == 1
    assert games.payout_for(10, 5.6) == 56
    assert games.payout_for(100, 0) == 0


def test_place_mines_distinct_and_in_range():
    rng = random.Random(7)
    for grid_size, mines_count in [(3, 1), (5, 5), (8, 63)]:
        mines = games.place_mines(grid_size, mines_count, rng)
        assert len(mines) == mines_count
        assert len(set(mines)) == mines_count
        assert all(0 <= cell < grid_size * grid_size for cell in mines)


def test_place_mines_is_reproducible_from_the_seed():
    assert games.place_mines(5, 5, random.Random(99)) == games.place_mines(5, 5, random.Random(99))


@pytest.mark.parametrize("grid_size,mines_count", [(2, 1), (9, 1), (5, 0), (5, 25), (3, 9)])
def test_mines_rejects_bad_parameters(grid_size, mines_count):
    with pytest.raises(InvalidInput):
        games.validate_mines_params(grid_size, mines_count)


@pytest.mark.parametrize("risk", games.PLINKO_RISKS)
def test_plinko_tables_are_symmetric(risk):
    table = games.PLINKO_PAYOUT_TABLES[risk]
    assert len(table) % 2 == 1
    assert list(table) == list(reversed(table))
    center = table[len(table) // 2]
    assert center < 1
    assert table[0] == max(table)


def test_plinko_drop_lands_in_a_slot():
    rng = random.Random(1234)
    for rows in (8, 12, 16):
        for risk in games.PLINKO_RISKS:
            drop = games.simulate_plinko(rows, risk, rng)
            assert 0 <= drop.slot < len(games.PLINKO_PAYOUT_TABLES[risk])
            assert drop.multiplier == games.PLINKO_PAYOUT_TABLES[risk][drop.slot]
            assert len(drop.path) >= 2


def test_plinko_drop_is_reproducible_from_the_seed():
    first = games.simulate_plinko(16, "high", random.Random(5))
    second = games.simulate_plinko(16, "high", random.Random(5))
    assert first.slot == second.slot
    assert first.path == second.path


def test_slot_for_x_clamps_to_edge_slots():
    assert games.slot_for_x(-1000) == 0
    assert games.slot_for_x(10_000) == 8
    assert games.slot_for_x(games.PLINKO_BOARD_WIDTH / 2) == 4


@pytest.mark.parametrize("rows,risk", [(7, "low"), (17, "low"), (8, "extreme")])
def test_plinko_rejects_bad_parameters(rows, risk):
    with pytest.raises(InvalidInput):
        games.validate_plinko_params(rows, risk)


def test_crash_curve_starts_at_one_and_grows():
    assert games.crash_multiplier(0) == 1.0
    values = [games.crash_multiplier(t / 2) for t in range(40)]
    assert values == sorted(values)
    assert games.crash_multiplier(10) == pytest.approx(2.718281828, rel=1e-6)
    assert games.crash_multiplier(5, turbo=True) > games.crash_multiplier(5)


def test_crash_time_inverts_the_curve():
    for point in (1.01, 2.0, 37.5):
        assert games.crash_multiplier(games.crash_time(point)) == pytest.approx(point)
        assert games.crash_multiplier(games.crash_time(point, True), True) == pytest.approx(point)


def test_crash_point_bounds():
    assert games.generate_crash_point(0.0, 50, 0.01) == games.CRASH_MIN_POINT
    assert games.generate_crash_point(0.999999, 50, 0.0) <= 50
    assert games.generate_crash_point(0.5, 50, 0.0) == 25.5
    assert games.generate_crash_point(0.5, 50, 0.01) == 25.24
    for u in (0.1, 0.3, 0.7, 0.95):
        point = games.generate_crash_point(u, 10, 0.05)
        assert games.CRASH_MIN_POINT <= point <= 10
        assert round(point, 2) == point


@pytest.mark.parametrize("max_multiplier,edge", [(50, 1.0), (50, -0.1), (1.0, 0.01)])
def test_crash_point_rejects_bad_settings(max_multiplier, edge):
    with pytest.raises(InvalidInput):
        games.generate_crash_point(0.5, max_multiplier, edge)
