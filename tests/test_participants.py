import pytest

from cabin.handlers.grid_layout import GridLayoutEngine
from cabin.handlers.participants import ParticipantRegistry
from cabin.handlers.status_tracker import StatusIndicatorTracker
from fakes import make_stream


@pytest.fixture
def registry(session, surface, scheduler):
    layout = GridLayoutEngine(session, surface)
    status = StatusIndicatorTracker(surface, scheduler)
    return ParticipantRegistry(session, layout, status, surface)


def test_add_local_user_labels_self_view(registry, session):
    session.local_stream = make_stream()
    tile = registry.add_local_user(session.local_stream)

    assert tile.is_local
    assert tile.label == "You (Alice)"
    assert registry.local_tile is tile
    # the local participant is not part of the remote roster
    assert session.participants == {}
    assert registry.add_local_user(session.local_stream) is tile


def test_add_remote_user_is_idempotent(registry, session):
    first = registry.add_remote_user("bob", "Bob", make_stream())
    second = registry.add_remote_user("bob", "Bob", make_stream())

    assert first is not None
    assert second is None
    assert list(session.participants) == ["bob"]
    assert registry.layout.tile_count == 1


def test_remove_user_is_idempotent(registry, session, surface):
    registry.add_remote_user("bob", "Bob", make_stream())

    assert registry.remove_user("bob") is True
    assert registry.remove_user("bob") is False
    assert "bob" not in session.participants
    assert registry.tile_for("bob") is None
    assert registry.layout.tile_count == 0


def test_remote_track_state_is_applied_to_received_track(registry):
    tile = registry.add_remote_user("bob", "Bob", make_stream())

    assert registry.set_remote_track_enabled("bob", "audio", False) is True
    assert tile.stream.first_track("audio").enabled is False
    assert registry.set_remote_track_enabled("carol", "audio", False) is False


def test_fifth_tile_opens_second_grid(registry, session):
    session.local_stream = make_stream()
    registry.add_local_user(session.local_stream)
    for name in ("bob", "carol", "dave", "erin"):
        registry.add_remote_user(name, name.title(), make_stream())

    assert session.grid_number == 2
    assert registry.layout.tile_count == 5


def test_track_state_announced_before_stream_is_applied_on_arrival(registry):
    assert registry.set_remote_track_enabled("bob", "video", False) is False

    tile = registry.add_remote_user("bob", "Bob", make_stream())

    assert tile.stream.first_track("video").enabled is False
    assert tile.stream.first_track("audio").enabled is True
    assert registry.announced == {}


def test_departed_participant_forgets_announced_state(registry):
    registry.set_remote_track_enabled("bob", "audio", False)
    registry.remove_user("bob")

    tile = registry.add_remote_user("bob", "Bob", make_stream())

    assert tile.stream.first_track("audio").enabled is True
