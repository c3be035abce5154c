# services/state.py
import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional

from cabin.errors import SessionClosed
from cabin.services.media import MediaStream


class FacingMode(str, Enum):
    """Which physical camera is active."""
    FRONT = "user"
    REAR = "environment"

    def flipped(self) -> "FacingMode":
        return FacingMode.REAR if self is FacingMode.FRONT else FacingMode.FRONT


class Orientation(str, Enum):
    """Presentation mode of the rendering surface."""
    VERTICAL = "vertical"
    HORIZONTAL = "horizontal"


class SourceKind(str, Enum):
    """Where the outgoing video track comes from."""
    CAMERA = "camera"
    SCREEN = "screen"


@dataclass
class Participant:
    """
    One remote identity in the room.

    Attributes:
        id (str): Stable participant id for the session.
        display_name (str): Name shown on the tile.
        muted (bool): Derived from the enabled flag of the audio track.
        video_off (bool): Derived from the enabled flag of the video track.
    """
    id: str
    display_name: str
    muted: bool = False
    video_off: bool = False


@dataclass
class Session:
    """
    The local participant's call state.

    Constructed once at startup and passed by reference to every component.
    `participants` holds remote participants only; `peers` maps a participant id
    to its single live connection.
    """
    self_id: str
    self_name: str
    room_address: str
    local_stream: Optional[MediaStream] = None
    screen_stream: Optional[MediaStream] = None
    facing_mode: FacingMode = FacingMode.FRONT
    is_screen_sharing: bool = False
    has_left: bool = False
    grid_number: int = 1
    participants: Dict[str, Participant] = field(default_factory=dict)
    peers: Dict[str, object] = field(default_factory=dict)
    switch_lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    @property
    def source(self) -> SourceKind:
        return SourceKind.SCREEN if self.is_screen_sharing else SourceKind.CAMERA

    def ensure_active(self, operation: str) -> None:
        """
        Raise SessionClosed if the session already left the room.

        Args:
            operation (str): Name of the operation being attempted, for the error context.

        Raises:
            SessionClosed: If `has_left` is set.
        """
        if self.has_left:
            raise SessionClosed(operation)

    def mark_left(self) -> bool:
        """
        Flip `has_left` from False to True.

        Returns:
            bool: True for the call that performed the transition, False afterwards.
        """
        if self.has_left:
            return False
        self.has_left = True
        return True
