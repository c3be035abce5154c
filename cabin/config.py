# config.py
import os
import sys
import uuid
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import load_dotenv

# Load environment variables for configuration
load_dotenv()


def _env_flag(name: str, default: bool = False) -> bool:
    """
    Read a boolean flag from the environment ("1", "true", "yes", "on" are truthy).
    """
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _default_camera_format() -> str:
    if sys.platform.startswith("linux"):
        return "v4l2"
    if sys.platform == "darwin":
        return "avfoundation"
    return "dshow"


def _default_audio_source():
    if sys.platform.startswith("linux"):
        return "default", "pulse"
    if sys.platform == "darwin":
        return "none:0", "avfoundation"
    return "audio=Microphone", "dshow"


def _default_screen_source():
    if sys.platform.startswith("linux"):
        display = os.getenv("DISPLAY")
        return (display, "x11grab") if display else (None, None)
    if sys.platform == "darwin":
        return "1:none", "avfoundation"
    if sys.platform == "win32":
        return "desktop", "gdigrab"
    return None, None


@dataclass
class ClientConfig:
    """
    Runtime configuration of the room client, read from the environment.

    Attributes:
        signaling_url (str): Websocket URL of the signaling relay.
        room_address (str): Room to join.
        user_id (str): Stable id of the local participant.
        username (str): Display name of the local participant.
        front_camera (str): Capture device for the front-facing camera.
        rear_camera (str, optional): Capture device for the rear camera; facing-mode
            flipping is only supported when it is set.
        camera_format (str): FFmpeg input format for cameras.
        audio_device (str): Microphone capture device.
        audio_format (str): FFmpeg input format for the microphone.
        screen_device (str, optional): Screen capture input; None disables sharing.
        screen_format (str, optional): FFmpeg input format for screen capture.
        mobile (bool): Whether the client runs on a mobile platform.
        orientation (str): Initial presentation mode, "vertical" or "horizontal".
        ice_servers (List[str]): STUN/TURN urls handed to aiortc.
        verify_tls (bool): Whether the relay's TLS certificate is verified.
    """
    signaling_url: str = "ws://localhost:8765"
    room_address: str = "lobby"
    user_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    username: str = "Guest"
    front_camera: str = "/dev/video0"
    rear_camera: Optional[str] = None
    camera_format: str = field(default_factory=_default_camera_format)
    audio_device: Optional[str] = None
    audio_format: Optional[str] = None
    screen_device: Optional[str] = None
    screen_format: Optional[str] = None
    mobile: bool = False
    orientation: str = "horizontal"
    ice_servers: List[str] = field(default_factory=lambda: ["stun:stun.l.google.com:19302"])
    verify_tls: bool = True

    def __post_init__(self):
        if self.audio_device is None:
            self.audio_device, self.audio_format = _default_audio_source()
        if self.screen_device is None and self.screen_format is None:
            self.screen_device, self.screen_format = _default_screen_source()

    @classmethod
    def from_env(cls) -> "ClientConfig":
        """
        Build a configuration from CABIN_* environment variables (and a .env file).

        Returns:
            ClientConfig: Configuration with defaults for every unset variable.
        """
        ice = os.getenv("CABIN_ICE_SERVERS")
        kwargs = {
            "signaling_url": os.getenv("CABIN_SIGNALING_URL", "ws://localhost:8765"),
            "room_address": os.getenv("CABIN_ROOM", "lobby"),
            "username": os.getenv("CABIN_USERNAME", "Guest"),
            "front_camera": os.getenv("CABIN_FRONT_CAMERA", "/dev/video0"),
            "rear_camera": os.getenv("CABIN_REAR_CAMERA") or None,
            "audio_device": os.getenv("CABIN_AUDIO_DEVICE") or None,
            "audio_format": os.getenv("CABIN_AUDIO_FORMAT") or None,
            "screen_device": os.getenv("CABIN_SCREEN_DEVICE") or None,
            "screen_format": os.getenv("CABIN_SCREEN_FORMAT") or None,
            "mobile": _env_flag("CABIN_MOBILE"),
            "orientation": os.getenv("CABIN_ORIENTATION", "horizontal").lower(),
            "verify_tls": _env_flag("CABIN_VERIFY_TLS", True),
        }
        if os.getenv("CABIN_USER_ID"):
            kwargs["user_id"] = os.getenv("CABIN_USER_ID")
        if os.getenv("CABIN_CAMERA_FORMAT"):
            kwargs["camera_format"] = os.getenv("CABIN_CAMERA_FORMAT")
        if ice is not None:
            kwargs["ice_servers"] = [url.strip() for url in ice.split(",") if url.strip()]
        return cls(**kwargs)
