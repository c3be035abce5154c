# services/devices.py
"""
Local capture devices backed by aiortc's MediaPlayer (FFmpeg input formats).

Opening a device blocks inside FFmpeg, so players are created in the default
executor. Every acquired track is wrapped in a ToggleableTrack.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from aiortc.contrib.media import MediaPlayer
from av.error import FFmpegError

from cabin.config import ClientConfig
from cabin.constants import IDEAL_VIDEO_HEIGHT, IDEAL_VIDEO_WIDTH, VIDEO_FRAMERATE
from cabin.errors import AcquisitionFailure, PermissionDenied
from cabin.services.media import MediaStream, ToggleableTrack
from cabin.services.state import FacingMode

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Capabilities:
    """
    What the platform can do, queried before a control is exposed or used.

    Attributes:
        facing_mode (bool): Front and rear cameras can be selected.
        screen_capture (bool): The screen can be captured.
        mobile (bool): The client runs on a mobile platform.
    """
    facing_mode: bool
    screen_capture: bool
    mobile: bool

    @property
    def can_flip_camera(self) -> bool:
        return self.facing_mode and self.mobile

    @property
    def can_share_screen(self) -> bool:
        return self.screen_capture


class MediaDevices:
    """
    Acquires camera, microphone and screen streams.
    """

    def __init__(self, config: ClientConfig) -> None:
        self.config = config
        self.capabilities = Capabilities(
            facing_mode=bool(config.front_camera and config.rear_camera),
            screen_capture=bool(config.screen_device and config.screen_format),
            mobile=config.mobile,
        )
        logger.info(f"Device capabilities: {self.capabilities}")

    def _camera_device(self, facing_mode: FacingMode) -> str:
        if facing_mode == FacingMode.REAR and self.config.rear_camera:
            return self.config.rear_camera
        return self.config.front_camera

    @staticmethod
    def _open_player(operation: str, device: str, fmt: Optional[str], options: Optional[dict] = None) -> MediaPlayer:
        """
        Open an FFmpeg input and translate failures into room errors.

        Raises:
            PermissionDenied: If the OS refused access to the device.
            AcquisitionFailure: If the device could not be opened.
        """
        try:
            return MediaPlayer(device, format=fmt, options=options or {})
        except PermissionError as e:
            raise PermissionDenied(operation, detail=f"{device}: {e}") from e
        except (OSError, FFmpegError) as e:
            raise AcquisitionFailure(operation, detail=f"{device}: {e}") from e

    async def _open(self, operation: str, device: str, fmt: Optional[str], options: Optional[dict] = None) -> MediaPlayer:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._open_player, operation, device, fmt, options)

    async def get_user_media(self, facing_mode: FacingMode = FacingMode.FRONT, audio: bool = True) -> MediaStream:
        """
        Open the camera for `facing_mode` and, optionally, the microphone.

        Args:
            facing_mode (FacingMode): Which camera to open.
            audio (bool): Whether to include a microphone track.

        Returns:
            MediaStream: Stream with one video track and, if requested, one audio track.

        Raises:
            PermissionDenied: If camera or microphone access was refused.
            AcquisitionFailure: If a device could not be opened or yields no track.
        """
        device = self._camera_device(facing_mode)
        options = {
            "video_size": f"{IDEAL_VIDEO_WIDTH}x{IDEAL_VIDEO_HEIGHT}",
            "framerate": str(VIDEO_FRAMERATE),
        }
        camera = await self._open("get_user_media", device, self.config.camera_format, options)
        if camera.video is None:
            raise AcquisitionFailure("get_user_media", detail=f"{device} produced no video track")
        tracks = [ToggleableTrack(camera.video)]

        if audio:
            try:
                microphone = await self._open("get_user_media", self.config.audio_device, self.config.audio_format)
            except Exception:
                tracks[0].stop()
                raise
            if microphone.audio is None:
                tracks[0].stop()
                raise AcquisitionFailure(
                    "get_user_media", detail=f"{self.config.audio_device} produced no audio track")
            tracks.append(ToggleableTrack(microphone.audio))

        logger.info(f"Opened camera {device} ({facing_mode.value}), audio={audio}")
        return MediaStream(tracks)

    async def get_display_media(self) -> MediaStream:
        """
        Open a screen capture stream (video only).

        Raises:
            AcquisitionFailure: If screen capture is not configured or fails to open.
        """
        if not self.capabilities.screen_capture:
            raise AcquisitionFailure("get_display_media", detail="no screen capture source configured")
        options = {"framerate": str(VIDEO_FRAMERATE), "draw_mouse": "1"}
        screen = await self._open("get_display_media", self.config.screen_device, self.config.screen_format, options)
        if screen.video is None:
            raise AcquisitionFailure("get_display_media", detail="screen capture produced no video track")
        logger.info(f"Opened screen capture {self.config.screen_device}")
        return MediaStream([ToggleableTrack(screen.video)])
