import pytest

from cabin.handlers.grid_layout import GridLayoutEngine, calculate_grid_layout
from cabin.services.state import Orientation, Session
from fakes import RecordingSurface


@pytest.mark.parametrize("count, expected", [
    (1, (1, 1)),
    (2, (2, 1)),
    (3, (3, 1)),
    (4, (2, 2)),
    (0, (2, 2)),
    (7, (2, 2)),
])
def test_vertical_layout_table(count, expected):
    assert calculate_grid_layout(count, Orientation.VERTICAL) == expected


@pytest.mark.parametrize("count, expected", [
    (1, (1, 1)),
    (2, (1, 2)),
    (3, (1, 3)),
    (4, (2, 2)),
    (5, (2, 2)),
])
def test_horizontal_layout_table(count, expected):
    assert calculate_grid_layout(count, Orientation.HORIZONTAL) == expected


def make_engine(orientation=Orientation.HORIZONTAL):
    session = Session(self_id="me", self_name="Alice", room_address="cabin-1")
    surface = RecordingSurface(orientation)
    return session, surface, GridLayoutEngine(session, surface)


def test_single_tile_gets_one_by_one():
    session, surface, engine = make_engine()
    engine.place_tile("tile-me")
    engine.refresh()

    assert [g.tiles for g in engine.grids] == [["tile-me"]]
    assert surface.layouts["video-grid1"] == (1, 1)
    assert session.grid_number == 1


def test_five_tiles_in_vertical_mode_split_into_two_grids():
    session, surface, engine = make_engine(Orientation.VERTICAL)
    for i in range(1, 6):
        engine.place_tile(f"t{i}")

    # one pass moves exactly one tile out of the overfull grid
    assert engine.recalculate() is True
    assert [g.tiles for g in engine.grids] == [["t2", "t3", "t4", "t5"], ["t1"]]
    assert surface.focused == ["video-grid2"]

    assert engine.recalculate() is False
    assert surface.layouts["video-grid1"] == (2, 2)
    assert surface.layouts["video-grid2"] == (1, 1)
    assert session.grid_number == 2


def test_refresh_settles_large_overflow():
    session, surface, engine = make_engine()
    for i in range(9):
        engine.place_tile(f"t{i}")

    engine.refresh()

    # each pass peels one tile off the front of the first grid
    assert all(0 < len(g.tiles) <= 4 for g in engine.grids)
    assert engine.grids[0].tiles == ["t5", "t6", "t7", "t8"]
    assert engine.tile_count == 9
    assert session.grid_number == len(engine.grids) == 6


def test_new_tiles_go_to_last_grid():
    _, _, engine = make_engine()
    for i in range(5):
        engine.place_tile(f"t{i}")
    engine.refresh()

    grid = engine.place_tile("late")
    assert grid is engine.grids[-1]
    assert engine.grid_of("late") is grid


def test_empty_grids_are_removed():
    session, surface, engine = make_engine()
    for i in range(5):
        engine.place_tile(f"t{i}")
    engine.refresh()
    assert session.grid_number == 2

    # t0 was moved into the second grid on its own
    assert engine.remove_tile("t0") is True
    engine.refresh()

    assert len(engine.grids) == 1
    assert ("remove_grid", "video-grid2") in surface.calls
    assert surface.layouts["video-grid1"] == (2, 2)
    assert session.grid_number == 1


def test_zero_tiles_keeps_grid_number_at_one():
    session, _, engine = make_engine()
    engine.place_tile("only")
    engine.remove_tile("only")
    engine.refresh()

    assert engine.grids == []
    assert session.grid_number == 1

    grid = engine.place_tile("again")
    assert engine.grids == [grid]


def test_remove_unknown_tile_is_noop():
    _, _, engine = make_engine()
    assert engine.remove_tile("ghost") is False


def test_orientation_change_applies_on_next_pass():
    _, surface, engine = make_engine(Orientation.HORIZONTAL)
    engine.place_tile("a")
    engine.place_tile("b")
    engine.refresh()
    assert surface.layouts["video-grid1"] == (1, 2)

    surface.orientation_mode = Orientation.VERTICAL
    engine.refresh()
    assert surface.layouts["video-grid1"] == (2, 1)
