"""
Error taxonomy for room operations.

Every error carries the operation that failed, the participant involved (when
there is one), a stable ``code`` and a short message that can be shown to the
user as-is.
"""
from typing import Optional


class RoomError(Exception):
    """Base class for failures raised by the room orchestration layer."""

    code: str = "ROOM_ERROR"
    default_message: str = "Something went wrong. Please try again."

    def __init__(
            self,
            operation: str,
            detail: Optional[str] = None,
            participant_id: Optional[str] = None,
            user_message: Optional[str] = None):
        self.operation = operation
        self.detail = detail
        self.participant_id = participant_id
        self.user_message = user_message or self.default_message
        super().__init__(self._describe())

    def _describe(self) -> str:
        text = f"{self.code} in {self.operation}"
        if self.participant_id:
            text += f" (participant={self.participant_id})"
        if self.detail:
            text += f": {self.detail}"
        return text


class PermissionDenied(RoomError):
    """Camera, microphone or screen access was refused."""
    code = "PERMISSION_DENIED"
    default_message = "Failed to access camera and microphone. Please check your permissions."


class UnsupportedCapability(RoomError):
    """The platform lacks the capability the operation needs."""
    code = "UNSUPPORTED_CAPABILITY"
    default_message = "This feature is not supported on this device."


class AcquisitionFailure(RoomError):
    """A new media source could not be acquired; nothing was swapped."""
    code = "ACQUISITION_FAILED"
    default_message = "Failed to switch the video source. Please try again."


class TrackReplacementFailure(RoomError):
    """One peer's sender rejected a track swap."""
    code = "TRACK_REPLACEMENT_FAILED"
    default_message = "A participant may still see your previous video."


class InvalidTransition(RoomError):
    """The operation is not valid in the current media state."""
    code = "INVALID_TRANSITION"
    default_message = "That action is not available right now."


class SessionClosed(RoomError):
    """The session has already left the room."""
    code = "SESSION_CLOSED"
    default_message = "You have left the room."
