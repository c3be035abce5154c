# handlers/status_tracker.py
import logging

from cabin.constants import MUTED_INDICATOR, STATUS_POLL_INTERVAL, VIDEO_OFF_INDICATOR
from cabin.services.events import subscribe
from cabin.services.render import RenderSurface

logger = logging.getLogger(__name__)

# kind -> (participant attribute, indicator name)
_INDICATORS = {
    "audio": ("muted", MUTED_INDICATOR),
    "video": ("video_off", VIDEO_OFF_INDICATOR),
}


def is_track_off(track) -> bool:
    """
    A track counts as off when it is disabled or has ended.
    """
    return track.readyState == "ended" or not getattr(track, "enabled", True)


class StatusIndicatorTracker:
    """
    Derives the muted / video-off indicators of each tile from its tracks.

    Track state changes are not reliably signalled by the transport, so every
    watched track is polled once per interval; an "ended" event flips the
    indicator to off at once. Poll tasks and listeners are registered as
    disposers on the tile, so removing the tile stops them.
    """

    def __init__(self, surface: RenderSurface, scheduler, interval: float = STATUS_POLL_INTERVAL) -> None:
        self.surface = surface
        self.scheduler = scheduler
        self.interval = interval

    def watch(self, tile) -> None:
        """
        Start tracking the first audio and first video track of the tile's stream.

        Args:
            tile (Tile): Tile whose stream and participant are tracked.
        """
        for kind in ("audio", "video"):
            track = tile.stream.first_track(kind)
            if track is not None:
                self._watch_track(tile, kind, track)

    def _watch_track(self, tile, kind: str, track) -> None:
        self.apply(tile, kind, is_track_off(track), force=True)

        def on_ended():
            self.apply(tile, kind, True)

        def poll():
            self.apply(tile, kind, is_track_off(track))

        task = self.scheduler.every(self.interval, poll)
        tile.watches.append(task.cancel)
        tile.watches.append(subscribe(track, "ended", on_ended))

    def unwatch(self, tile) -> None:
        """
        Cancel every poll task and listener registered for the tile.
        """
        while tile.watches:
            dispose = tile.watches.pop()
            dispose()

    def apply(self, tile, kind: str, off: bool, force: bool = False) -> None:
        """
        Record the derived flag on the participant and update the indicator if it changed.

        Args:
            tile (Tile): Tile being updated.
            kind (str): "audio" or "video".
            off (bool): True when the track is disabled or ended.
            force (bool): Push to the surface even if the flag did not change.
        """
        attribute, indicator = _INDICATORS[kind]
        if not force and getattr(tile.participant, attribute) == off:
            return
        setattr(tile.participant, attribute, off)
        self.surface.set_indicator(tile.tile_id, indicator, off)
        logger.debug(f"{indicator} for {tile.participant.id} -> {off}")
