# handlers/room.py
import asyncio
import logging
from typing import Callable, Dict, Optional

from cabin.constants import LEAVE_REDIRECT_DELAY
from cabin.errors import PermissionDenied, RoomError
from cabin.handlers.grid_layout import GridLayoutEngine
from cabin.handlers.media_source import MediaSourceController
from cabin.handlers.participants import ParticipantRegistry
from cabin.handlers.peer_mesh import PeerMeshManager
from cabin.handlers.status_tracker import StatusIndicatorTracker
from cabin.services.events import subscribe
from cabin.services.render import RenderSurface
from cabin.services.scheduler import AsyncioScheduler
from cabin.services.state import Session

logger = logging.getLogger(__name__)


class Room:
    """
    Wires signaling events and user actions to the session components.

    One Room exists per Session. Inbound signaling is ignored once the session
    has left; user actions after leaving raise SessionClosed (reported, not
    propagated, by the action methods).
    """

    def __init__(
            self,
            session: Session,
            devices,
            endpoint,
            signaling,
            surface: Optional[RenderSurface] = None,
            scheduler=None,
            on_exit: Optional[Callable[[], None]] = None,
            leave_delay: float = LEAVE_REDIRECT_DELAY) -> None:
        self.session = session
        self.devices = devices
        self.endpoint = endpoint
        self.signaling = signaling
        self.surface = surface or RenderSurface()
        self.on_exit = on_exit
        self.leave_delay = leave_delay

        self.layout = GridLayoutEngine(session, self.surface)
        self.status = StatusIndicatorTracker(self.surface, scheduler or AsyncioScheduler())
        self.registry = ParticipantRegistry(session, self.layout, self.status, self.surface)
        self.mesh = PeerMeshManager(session, endpoint, self.registry)
        self.media = MediaSourceController(session, devices, self.mesh, self.registry, self.surface)

        self._disposers = [
            subscribe(signaling, "participant_joined", self.on_participant_joined),
            subscribe(signaling, "participant_left", self.on_participant_left),
            subscribe(signaling, "track_state", self.on_track_state),
            subscribe(signaling, "join_room", self.on_join_ack),
            subscribe(signaling, "error_response", self.on_error_response),
        ]
        self._announcements = set()

    # -------------------------------------------------------------------------
    # Startup
    # -------------------------------------------------------------------------
    async def initialize(self) -> None:
        """
        Acquire camera and microphone, show the self-view and join the room.

        Raises:
            PermissionDenied: If capture access is refused (reported to the user first).
            AcquisitionFailure: If the devices could not be opened.
        """
        try:
            stream = await self.devices.get_user_media(self.session.facing_mode, audio=True)
        except RoomError as e:
            logger.error(f"Failed to initialize: {e}")
            self.surface.notify(e.user_message)
            raise

        self.session.local_stream = stream
        video = stream.first_track("video")
        logger.info(f"Local stream ready: {stream!r}, video track {video.id if video else None}")
        self.registry.add_local_user(stream)
        await self.signaling.join(self.session.room_address, self.session.self_id, self.session.self_name)

    def controls(self) -> Dict[str, bool]:
        """
        Which controls should be exposed on this platform.
        """
        caps = self.devices.capabilities
        return {
            "toggle-camera": True,
            "toggle-mic": True,
            "leave": True,
            "flip-camera": caps.can_flip_camera,
            "share-screen": caps.can_share_screen,
        }

    # -------------------------------------------------------------------------
    # Signaling events
    # -------------------------------------------------------------------------
    def on_participant_joined(self, payload: dict) -> None:
        if self.session.has_left:
            return
        participant_id, name = payload.get("id"), payload.get("name")
        if not participant_id or participant_id == self.session.self_id:
            return
        logger.info(f"{name} ({participant_id}) connected")
        self.surface.play_cue("user_join")
        self.mesh.on_roster_join(participant_id, name)
        self._spawn_announcement(participant_id)

    def on_participant_left(self, payload: dict) -> None:
        if self.session.has_left:
            return
        participant_id, name = payload.get("id"), payload.get("name")
        logger.info(f"{name} ({participant_id}) disconnected")
        if participant_id == self.session.self_id:
            logger.info("You left the room")
            return
        if self.mesh.on_participant_left(participant_id):
            self.surface.play_cue("user_leave")

    def on_track_state(self, payload: dict) -> None:
        if self.session.has_left:
            return
        self.registry.set_remote_track_enabled(
            payload.get("from"), payload.get("kind"), bool(payload.get("enabled")))

    def on_join_ack(self, payload: dict) -> None:
        logger.info(f"Joined room {payload.get('room')} ({payload.get('members')} members)")

    def on_error_response(self, message: dict) -> None:
        operation = message.get("msg_type")
        logger.warning(f"Relay refused {operation}: {message.get('error_code')} {message.get('error_message')}")
        if operation == "join_room" and not self.session.has_left:
            self.surface.notify("Could not join the room.")

    def _spawn_announcement(self, participant_id: str) -> None:
        task = asyncio.ensure_future(self.announce_track_state(participant_id))
        self._announcements.add(task)
        task.add_done_callback(self._announcement_done)

    def _announcement_done(self, task: asyncio.Task) -> None:
        self._announcements.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Track state announcement failed", exc_info=task.exception())

    async def announce_track_state(self, participant_id: str) -> None:
        """
        Tell a newcomer whether our microphone and camera are on.
        """
        stream = self.session.local_stream
        if stream is None or self.session.has_left:
            return
        for kind in ("audio", "video"):
            track = stream.first_track(kind)
            if track is not None:
                await self.signaling.send_track_state(kind, track.enabled, target=participant_id)

    # -------------------------------------------------------------------------
    # User actions
    # -------------------------------------------------------------------------
    def _report(self, operation: str, error: RoomError) -> None:
        if isinstance(error, PermissionDenied) and operation == "toggle_screen_share":
            # the user dismissed the screen picker
            logger.info(f"{operation} cancelled: {error}")
            return
        logger.error(f"{operation} failed: {error}", exc_info=error)
        self.surface.notify(error.user_message)

    async def _toggle_track(self, kind: str) -> Optional[bool]:
        try:
            enabled = self.media.toggle_local_track(kind)
        except RoomError as e:
            self._report(f"toggle_{kind}", e)
            return None
        if enabled is not None:
            await self.signaling.send_track_state(kind, enabled)
        return enabled

    async def toggle_microphone(self) -> Optional[bool]:
        return await self._toggle_track("audio")

    async def toggle_camera(self) -> Optional[bool]:
        return await self._toggle_track("video")

    async def flip_camera(self) -> bool:
        try:
            await self.media.flip_camera()
            return True
        except RoomError as e:
            self._report("flip_camera", e)
            return False

    async def toggle_screen_share(self) -> bool:
        try:
            await self.media.toggle_screen_share()
            return True
        except RoomError as e:
            self._report("toggle_screen_share", e)
            return False

    def on_resize(self) -> None:
        if not self.session.has_left:
            self.layout.refresh()

    # -------------------------------------------------------------------------
    # Departure
    # -------------------------------------------------------------------------
    async def _disconnect(self) -> None:
        if self.session.local_stream is not None:
            self.session.local_stream.stop()
        if self.session.screen_stream is not None:
            self.session.screen_stream.stop()
            self.session.screen_stream = None

        for task in list(self._announcements):
            task.cancel()
        self.registry.clear()
        self.mesh.close_all()
        self.endpoint.destroy()
        while self._disposers:
            self._disposers.pop()()

        await self.signaling.leave()
        logger.info("Disconnected and cleaned up")

    async def leave(self) -> bool:
        """
        Leave the room once: tear everything down, play the leave cue, wait, exit.

        Returns:
            bool: True for the call that performed the leave, False for repeats.
        """
        if not self.session.mark_left():
            return False
        await self._disconnect()
        self.surface.play_cue("leave")
        await asyncio.sleep(self.leave_delay)
        if self.on_exit is not None:
            self.on_exit()
        return True

    async def on_unload(self) -> bool:
        """
        Process shutdown: same teardown as leave(), without the cue delay.
        """
        if not self.session.mark_left():
            return False
        await self._disconnect()
        return True
