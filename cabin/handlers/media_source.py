# handlers/media_source.py
import asyncio
import logging
from typing import Awaitable, Callable, Optional

from cabin.errors import (
    AcquisitionFailure, InvalidTransition, RoomError, SessionClosed, UnsupportedCapability
)
from cabin.handlers.participants import ParticipantRegistry
from cabin.handlers.peer_mesh import PeerMeshManager
from cabin.services.events import subscribe
from cabin.services.media import MediaStream
from cabin.services.render import RenderSurface
from cabin.services.state import Session

logger = logging.getLogger(__name__)

Acquirer = Callable[[], Awaitable[MediaStream]]


class MediaSourceController:
    """
    Owns the local capture state: camera, screen share and camera facing mode.

    Every source change goes through switch_source(), which only touches the
    local stream and the peers after the new source has been acquired, so a
    failed acquisition leaves everything as it was.
    """

    def __init__(
            self,
            session: Session,
            devices,
            mesh: PeerMeshManager,
            registry: ParticipantRegistry,
            surface: RenderSurface) -> None:
        self.session = session
        self.devices = devices
        self.mesh = mesh
        self.registry = registry
        self.surface = surface
        self._dispose_screen_hook: Optional[Callable[[], None]] = None
        self.auto_stop_task: Optional[asyncio.Task] = None

    # -------------------------------------------------------------------------
    # Generic transition
    # -------------------------------------------------------------------------
    async def switch_source(self, acquire: Acquirer) -> MediaStream:
        """
        Replace the local video track with the one produced by `acquire`.

        The previous video track is stopped and detached, the new one attached
        (audio is left alone), the self-view refreshed and every peer's video
        sender swapped. Calls are serialized per session.

        Args:
            acquire (Acquirer): Coroutine function returning the new MediaStream.

        Returns:
            MediaStream: The stream returned by `acquire`.

        Raises:
            AcquisitionFailure: If acquisition failed or produced no video track.
            PermissionDenied: If access to the new source was refused.
            SessionClosed: If the session left before or during acquisition.
        """
        self.session.ensure_active("switch_source")
        async with self.session.switch_lock:
            return await self._switch_locked(acquire)

    async def _switch_locked(self, acquire: Acquirer) -> MediaStream:
        # caller holds session.switch_lock
        self.session.ensure_active("switch_source")
        try:
            new_stream = await acquire()
        except RoomError:
            raise
        except Exception as e:
            raise AcquisitionFailure("switch_source", detail=str(e)) from e

        new_track = new_stream.first_track("video")
        if new_track is None or self.session.has_left:
            new_stream.stop()
            if self.session.has_left:
                raise SessionClosed("switch_source")
            raise AcquisitionFailure("switch_source", detail="acquired stream has no video track")

        local = self.session.local_stream
        enabled = True
        for old_track in local.get_video_tracks():
            enabled = getattr(old_track, "enabled", True)
            old_track.stop()
            local.remove_track(old_track)
        new_track.enabled = enabled
        local.add_track(new_track)

        self.registry.refresh_local_stream()
        failures = await self.mesh.replace_outbound_video_track(new_track)
        if failures:
            # one notice per switch, however many peers missed the new track
            self.surface.notify(failures[0].user_message)
        logger.info(f"Switched local video to track {new_track.id}")
        return new_stream

    # -------------------------------------------------------------------------
    # Camera
    # -------------------------------------------------------------------------
    def _camera(self, facing_mode) -> Acquirer:
        async def acquire():
            return await self.devices.get_user_media(facing_mode, audio=False)
        return acquire

    async def flip_camera(self) -> None:
        """
        Switch to the opposite camera.

        The sharing check and the target facing mode are decided under the
        switch lock, so queued flips alternate.

        Raises:
            UnsupportedCapability: If the device cannot select a facing mode.
            InvalidTransition: While screen sharing.
        """
        self.session.ensure_active("flip_camera")
        if not self.devices.capabilities.facing_mode:
            raise UnsupportedCapability(
                "flip_camera", user_message="Camera flipping is not supported on this device")

        async with self.session.switch_lock:
            if self.session.is_screen_sharing:
                raise InvalidTransition(
                    "flip_camera", user_message="Stop sharing your screen before flipping the camera.")
            target = self.session.facing_mode.flipped()
            await self._switch_locked(self._camera(target))
            self.session.facing_mode = target
        logger.info(f"Camera flipped to {target.value}")

    # -------------------------------------------------------------------------
    # Screen sharing
    # -------------------------------------------------------------------------
    async def toggle_screen_share(self) -> None:
        """
        Start or stop sharing, decided under the switch lock so queued toggles alternate.
        """
        self.session.ensure_active("toggle_screen_share")
        async with self.session.switch_lock:
            if self.session.is_screen_sharing:
                await self._stop_sharing_locked()
            else:
                self._require_screen_capture()
                await self._start_sharing_locked()

    def _require_screen_capture(self) -> None:
        if not self.devices.capabilities.screen_capture:
            raise UnsupportedCapability(
                "start_screen_share", user_message="Screen sharing is not supported on this device")

    async def start_screen_share(self) -> None:
        """
        Send the screen instead of the camera. A no-op if already sharing.

        Raises:
            UnsupportedCapability: If screen capture is not available.
        """
        self.session.ensure_active("start_screen_share")
        self._require_screen_capture()
        async with self.session.switch_lock:
            await self._start_sharing_locked()

    async def _start_sharing_locked(self) -> None:
        if self.session.is_screen_sharing:
            return
        screen_stream = await self._switch_locked(self.devices.get_display_media)
        self.session.screen_stream = screen_stream
        self.session.is_screen_sharing = True
        self._arm_screen_hook()
        self._set_sharing_style(True)
        logger.info("Screen sharing started")

    async def stop_screen_share(self) -> None:
        """
        Return to the camera with the remembered facing mode and release the screen.

        A no-op if not sharing. If the camera cannot be reacquired, sharing
        state is kept and the termination hook re-armed.
        """
        if self.session.screen_stream is None:
            return
        self.session.ensure_active("stop_screen_share")
        async with self.session.switch_lock:
            await self._stop_sharing_locked()

    async def _stop_sharing_locked(self) -> None:
        screen_stream = self.session.screen_stream
        if screen_stream is None:
            return
        self._disarm_screen_hook()
        try:
            await self._switch_locked(self._camera(self.session.facing_mode))
        except RoomError:
            self._arm_screen_hook()
            raise

        self.session.screen_stream = None
        screen_stream.stop()
        self.session.is_screen_sharing = False
        self._set_sharing_style(False)
        logger.info("Screen sharing stopped")

    def _arm_screen_hook(self) -> None:
        screen_stream = self.session.screen_stream
        track = screen_stream.first_track("video") if screen_stream else None
        if track is None or track.readyState == "ended":
            return
        self._disarm_screen_hook()
        self._dispose_screen_hook = subscribe(track, "ended", self._on_screen_source_ended)

    def _disarm_screen_hook(self) -> None:
        if self._dispose_screen_hook is not None:
            self._dispose_screen_hook()
            self._dispose_screen_hook = None

    def _on_screen_source_ended(self) -> None:
        self._dispose_screen_hook = None
        if self.session.has_left:
            return
        logger.info("Screen source ended outside the app, returning to camera")
        self.auto_stop_task = asyncio.ensure_future(self.stop_screen_share())
        self.auto_stop_task.add_done_callback(self._log_auto_stop)

    def _log_auto_stop(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Automatic stop of screen sharing failed", exc_info=exc)
            if isinstance(exc, RoomError):
                self.surface.notify(exc.user_message)

    def _set_sharing_style(self, active: bool) -> None:
        tile = self.registry.local_tile
        if tile is not None:
            self.surface.set_screen_sharing(tile.tile_id, active)
        self.surface.set_control_state("share-screen", active)

    # -------------------------------------------------------------------------
    # Mute / camera off
    # -------------------------------------------------------------------------
    def toggle_local_track(self, kind: str) -> Optional[bool]:
        """
        Flip the enabled flag of the local track of `kind`; no renegotiation.

        Args:
            kind (str): "audio" or "video".

        Returns:
            bool or None: The new enabled state, or None if there is no such track.
        """
        self.session.ensure_active("toggle_local_track")
        stream = self.session.local_stream
        track = stream.first_track(kind) if stream else None
        if track is None:
            return None

        track.enabled = not track.enabled
        self.registry.set_local_indicator(kind, not track.enabled)
        self.surface.set_control_state("toggle-mic" if kind == "audio" else "toggle-camera", track.enabled)
        logger.info(f"Local {kind} track enabled={track.enabled}")
        return track.enabled
