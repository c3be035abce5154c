"""
Application-wide constants for media capture, grid layout, status polling, session lifecycle and the relay server.
"""
from typing import Dict, Tuple

# --- Media Capture ---
#: Preferred capture width (in pixels) requested from the camera.
IDEAL_VIDEO_WIDTH: int = 1920
#: Preferred capture height (in pixels) requested from the camera.
IDEAL_VIDEO_HEIGHT: int = 1080
#: Preferred capture frame rate for camera and screen sources.
VIDEO_FRAMERATE: int = 30

# --- Grid Layout ---
#: Maximum number of tiles a single grid may hold.
MAX_TILES_PER_GRID: int = 4
#: (rows, columns) per tile count when the presentation is vertical.
VERTICAL_LAYOUTS: Dict[int, Tuple[int, int]] = {
    1: (1, 1),
    2: (2, 1),
    3: (3, 1),
    4: (2, 2),
}
#: (rows, columns) per tile count when the presentation is horizontal.
HORIZONTAL_LAYOUTS: Dict[int, Tuple[int, int]] = {
    1: (1, 1),
    2: (1, 2),
    3: (1, 3),
    4: (2, 2),
}
#: Layout used for any tile count missing from the tables.
FALLBACK_LAYOUT: Tuple[int, int] = (2, 2)
#: Upper bound on layout passes run by a single refresh.
MAX_LAYOUT_PASSES: int = 32

# --- Status Indicators ---
#: Interval (in seconds) between polls of a track's enabled flag.
STATUS_POLL_INTERVAL: float = 1.0
#: Indicator names used by the rendering surface.
MUTED_INDICATOR: str = "muted"
VIDEO_OFF_INDICATOR: str = "video-off"

# --- Session Lifecycle ---
#: Delay (in seconds) between leaving and exiting, so the leave cue can play.
LEAVE_REDIRECT_DELAY: float = 0.45

# --- Signaling Client ---
#: Interval (in seconds) between heartbeat pings sent to the relay.
CLIENT_PING_INTERVAL: int = 5

# --- Relay Heartbeat Configuration ---
#: Interval (in seconds) between heartbeat checks on each client.
HEARTBEAT_INTERVAL: int = 10
#: Timeout (in seconds) to wait for a heartbeat ping before closing.
HEARTBEAT_TIMEOUT: int = 15

# --- Relay Constraints ---
#: Maximum length allowed for room addresses.
ROOM_ADDRESS_MAX_LENGTH: int = 64
#: Maximum length allowed for display names.
DISPLAY_NAME_MAX_LENGTH: int = 32

# --- Relay Rate Limiting ---
#: Length (in seconds) of the per-IP sliding window.
RATE_WINDOW_SECONDS: float = 5
#: Messages allowed per IP within one window; offer/answer bursts on join stay well under it.
RATE_MAX_MESSAGES: int = 60
#: Ban duration (in seconds) once an IP exceeds the limit.
RATE_BAN_SECONDS: float = 30
