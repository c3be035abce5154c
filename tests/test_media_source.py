import asyncio

import pytest

from cabin.constants import MUTED_INDICATOR
from cabin.errors import (
    AcquisitionFailure, InvalidTransition, SessionClosed, TrackReplacementFailure, UnsupportedCapability
)
from cabin.handlers.room import Room
from cabin.services.state import FacingMode
from fakes import FakeDevices, acquisition_error, make_stream


@pytest.mark.asyncio
async def test_flip_camera_swaps_video_everywhere(room, session, devices):
    await room.initialize()
    bob = room.mesh.on_roster_join("bob", "Bob")
    old_video = session.local_stream.first_track("video")
    audio = session.local_stream.first_track("audio")

    await room.media.flip_camera()

    new_video = session.local_stream.first_track("video")
    assert new_video is not old_video
    assert old_video.readyState == "ended"
    assert session.local_stream.get_video_tracks() == [new_video]
    assert session.local_stream.first_track("audio") is audio
    assert bob.video_sender().track is new_video
    assert session.facing_mode == FacingMode.REAR
    assert devices.user_media_requests[-1] == (FacingMode.REAR, False)


@pytest.mark.asyncio
async def test_failed_acquisition_leaves_state_unchanged(room, session, devices):
    await room.initialize()
    bob = room.mesh.on_roster_join("bob", "Bob")
    old_video = session.local_stream.first_track("video")

    devices.fail_next = acquisition_error()
    with pytest.raises(AcquisitionFailure):
        await room.media.flip_camera()

    assert session.local_stream.first_track("video") is old_video
    assert old_video.readyState == "live"
    assert bob.video_sender().track is old_video
    assert session.facing_mode == FacingMode.FRONT


@pytest.mark.asyncio
async def test_unexpected_acquire_error_becomes_acquisition_failure(room):
    await room.initialize()

    async def broken():
        raise RuntimeError("ffmpeg exploded")

    with pytest.raises(AcquisitionFailure) as info:
        await room.media.switch_source(broken)
    assert "ffmpeg exploded" in str(info.value)


@pytest.mark.asyncio
async def test_stream_without_video_is_rejected(room, session):
    await room.initialize()
    audio_only = make_stream(video=False)

    async def acquire():
        return audio_only

    with pytest.raises(AcquisitionFailure):
        await room.media.switch_source(acquire)
    assert audio_only.first_track("audio").readyState == "ended"
    assert session.local_stream.first_track("video").readyState == "live"


@pytest.mark.asyncio
async def test_leave_during_acquisition_discards_new_stream(room, session):
    await room.initialize()
    acquired = make_stream(audio=False)

    async def acquire():
        session.mark_left()
        return acquired

    with pytest.raises(SessionClosed):
        await room.media.switch_source(acquire)
    assert acquired.first_track("video").readyState == "ended"


@pytest.mark.asyncio
async def test_switch_after_leave_raises(room, session):
    await room.initialize()
    await room.leave()

    with pytest.raises(SessionClosed):
        await room.media.flip_camera()


@pytest.mark.asyncio
async def test_flip_unsupported_without_facing_mode(session, endpoint, signaling, surface, scheduler):
    devices = FakeDevices(facing_mode=False)
    room = Room(session, devices, endpoint, signaling, surface=surface, scheduler=scheduler, leave_delay=0)
    await room.initialize()

    with pytest.raises(UnsupportedCapability):
        await room.media.flip_camera()
    assert devices.user_media_requests == [(FacingMode.FRONT, True)]


@pytest.mark.asyncio
async def test_flip_while_sharing_is_rejected(room, session):
    await room.initialize()
    await room.media.start_screen_share()

    with pytest.raises(InvalidTransition):
        await room.media.flip_camera()
    assert session.is_screen_sharing


@pytest.mark.asyncio
async def test_screen_share_round_trip(room, session, devices, surface):
    await room.initialize()
    bob = room.mesh.on_roster_join("bob", "Bob")

    await room.media.toggle_screen_share()
    screen_video = devices.display_streams[0].first_track("video")
    assert session.is_screen_sharing
    assert bob.video_sender().track is screen_video
    assert ("set_screen_sharing", "tile-me", True) in surface.calls

    await room.media.toggle_screen_share()
    assert not session.is_screen_sharing
    assert session.screen_stream is None
    assert screen_video.readyState == "ended"
    assert bob.video_sender().track is session.local_stream.first_track("video")
    assert ("set_screen_sharing", "tile-me", False) in surface.calls


@pytest.mark.asyncio
async def test_screen_source_ended_returns_to_remembered_camera(room, session, devices):
    await room.initialize()
    await room.media.flip_camera()
    await room.media.start_screen_share()
    screen_video = session.screen_stream.first_track("video")

    # the OS stops the capture, not the app
    screen_video.source.stop()
    await room.media.auto_stop_task

    assert not session.is_screen_sharing
    assert session.facing_mode == FacingMode.REAR
    assert devices.user_media_requests[-1] == (FacingMode.REAR, False)
    assert session.local_stream.first_track("video").readyState == "live"


@pytest.mark.asyncio
async def test_camera_reacquire_failure_keeps_sharing(room, session, devices):
    await room.initialize()
    await room.media.start_screen_share()

    devices.fail_next = acquisition_error()
    with pytest.raises(AcquisitionFailure):
        await room.media.stop_screen_share()

    assert session.is_screen_sharing
    assert session.screen_stream is not None


@pytest.mark.asyncio
async def test_toggle_audio_off_and_on(room, session, surface):
    await room.initialize()
    audio = session.local_stream.first_track("audio")

    assert room.media.toggle_local_track("audio") is False
    assert audio.enabled is False
    assert surface.indicators[("tile-me", MUTED_INDICATOR)] is True

    assert room.media.toggle_local_track("audio") is True
    assert audio.enabled is True
    assert surface.indicators[("tile-me", MUTED_INDICATOR)] is False


@pytest.mark.asyncio
async def test_camera_off_survives_source_switch(room, session):
    await room.initialize()
    room.media.toggle_local_track("video")

    await room.media.flip_camera()

    assert session.local_stream.first_track("video").enabled is False


@pytest.mark.asyncio
async def test_failed_peer_replacement_is_reported_once(room, surface):
    await room.initialize()
    for peer in ("bob", "carol"):
        room.mesh.on_roster_join(peer, peer.title()).video_sender().fail = True

    await room.media.flip_camera()

    assert surface.notices == [TrackReplacementFailure.default_message]


# -----------------------------------------------------------------------------
# Switches queued behind a slow acquisition
# -----------------------------------------------------------------------------
@pytest.fixture
def slow_devices():
    return FakeDevices(delay=0.01)


@pytest.fixture
def slow_room(session, slow_devices, endpoint, signaling, surface, scheduler):
    return Room(session, slow_devices, endpoint, signaling, surface=surface, scheduler=scheduler, leave_delay=0)


@pytest.mark.asyncio
async def test_concurrent_switches_run_one_at_a_time(slow_room, session, slow_devices):
    await slow_room.initialize()
    bob = slow_room.mesh.on_roster_join("bob", "Bob")

    async def camera():
        return await slow_devices.get_user_media(FacingMode.FRONT, audio=False)

    streams = await asyncio.gather(*(slow_room.media.switch_source(camera) for _ in range(3)))

    assert slow_devices.max_in_flight == 1
    last_video = streams[-1].first_track("video")
    assert session.local_stream.get_video_tracks() == [last_video]
    assert [s.first_track("video").readyState for s in streams] == ["ended", "ended", "live"]
    assert bob.video_sender().track is last_video


@pytest.mark.asyncio
async def test_queued_flips_alternate_facing_mode(slow_room, session, slow_devices):
    await slow_room.initialize()

    await asyncio.gather(slow_room.media.flip_camera(), slow_room.media.flip_camera())

    assert session.facing_mode == FacingMode.FRONT
    assert slow_devices.user_media_requests == [
        (FacingMode.FRONT, True), (FacingMode.REAR, False), (FacingMode.FRONT, False)]


@pytest.mark.asyncio
async def test_queued_stops_release_screen_once(slow_room, session, slow_devices):
    await slow_room.initialize()
    await slow_room.media.start_screen_share()
    screen_video = session.screen_stream.first_track("video")

    await asyncio.gather(slow_room.media.stop_screen_share(), slow_room.media.stop_screen_share())

    assert not session.is_screen_sharing
    assert session.screen_stream is None
    assert screen_video.readyState == "ended"
    assert slow_devices.user_media_requests.count((FacingMode.FRONT, False)) == 1


@pytest.mark.asyncio
async def test_flip_queued_behind_share_is_rejected(slow_room, session, slow_devices):
    await slow_room.initialize()

    results = await asyncio.gather(
        slow_room.media.start_screen_share(), slow_room.media.flip_camera(), return_exceptions=True)

    assert results[0] is None
    assert isinstance(results[1], InvalidTransition)
    assert session.is_screen_sharing
    assert session.facing_mode == FacingMode.FRONT
    assert session.local_stream.first_track("video") is session.screen_stream.first_track("video")


@pytest.mark.asyncio
async def test_queued_toggles_start_then_stop(slow_room, session, slow_devices):
    await slow_room.initialize()

    await asyncio.gather(slow_room.media.toggle_screen_share(), slow_room.media.toggle_screen_share())

    assert not session.is_screen_sharing
    assert len(slow_devices.display_streams) == 1
    assert slow_devices.display_streams[0].first_track("video").readyState == "ended"
    assert session.local_stream.first_track("video").readyState == "live"
