# handlers/participants.py
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from cabin.handlers.grid_layout import GridLayoutEngine
from cabin.handlers.status_tracker import StatusIndicatorTracker
from cabin.services.media import MediaStream
from cabin.services.render import RenderSurface
from cabin.services.state import Participant, Session

logger = logging.getLogger(__name__)


@dataclass
class Tile:
    """
    The rendered unit bound to one participant (or to the local session).

    Attributes:
        tile_id (str): Handle given to the rendering surface.
        participant (Participant): Record whose indicator flags the tile shows.
        label (str): Caption under the video.
        stream (MediaStream): Stream rendered by the tile.
        is_local (bool): True for the self-view tile.
        watches (List[Callable]): Disposers of status polls and listeners.
    """
    tile_id: str
    participant: Participant
    label: str
    stream: MediaStream
    is_local: bool = False
    watches: List[Callable[[], None]] = field(default_factory=list, repr=False)


class ParticipantRegistry:
    """
    Maps participant ids to their Participant record and owned Tile.

    All layout changes caused by adding or removing a participant go through
    here, so the tile set and the grid structure never diverge.
    """

    def __init__(
            self,
            session: Session,
            layout: GridLayoutEngine,
            status: StatusIndicatorTracker,
            surface: RenderSurface) -> None:
        self.session = session
        self.layout = layout
        self.status = status
        self.surface = surface
        self.tiles: Dict[str, Tile] = {}
        # track state announced before the participant's stream arrived
        self.announced: Dict[str, Dict[str, bool]] = {}

    def tile_for(self, participant_id: str) -> Optional[Tile]:
        return self.tiles.get(participant_id)

    @property
    def local_tile(self) -> Optional[Tile]:
        return self.tiles.get(self.session.self_id)

    def _mount(self, tile: Tile) -> None:
        self.tiles[tile.participant.id] = tile
        self.surface.create_tile(tile)
        self.surface.set_tile_stream(tile.tile_id, tile.stream)
        self.layout.place_tile(tile.tile_id)
        self.status.watch(tile)
        self.layout.refresh()

    def add_local_user(self, stream: MediaStream) -> Tile:
        """
        Create the self-view tile for the local stream.

        Args:
            stream (MediaStream): The session's local stream.

        Returns:
            Tile: The self-view tile (the existing one if already created).
        """
        existing = self.local_tile
        if existing is not None:
            return existing
        me = Participant(self.session.self_id, self.session.self_name)
        tile = Tile(
            tile_id=f"tile-{me.id}",
            participant=me,
            label=f"You ({me.display_name})",
            stream=stream,
            is_local=True,
        )
        self._mount(tile)
        logger.info(f"Added local tile for {me.display_name} ({me.id})")
        return tile

    def add_remote_user(self, participant_id: str, name: str, stream: MediaStream) -> Optional[Tile]:
        """
        Create the participant, its tile and status indicators on first stream arrival.

        A second arrival for the same id is ignored.

        Args:
            participant_id (str): Remote participant id.
            name (str): Display name announced by the remote side.
            stream (MediaStream): Remote stream to render.

        Returns:
            Tile or None: The new tile, or None if the participant already exists.
        """
        if participant_id in self.session.participants or participant_id in self.tiles:
            logger.debug(f"User {name} ({participant_id}) already exists, skipping")
            return None

        participant = Participant(participant_id, name)
        self.session.participants[participant_id] = participant
        for kind, enabled in self.announced.pop(participant_id, {}).items():
            track = stream.first_track(kind)
            if track is not None:
                track.enabled = enabled
        tile = Tile(tile_id=f"tile-{participant_id}", participant=participant, label=name, stream=stream)
        self._mount(tile)
        logger.info(f"Added user: {name} ({participant_id})")
        return tile

    def remove_user(self, participant_id: str) -> bool:
        """
        Remove a participant's tile and record. Unknown ids are ignored.

        Returns:
            bool: True if anything was removed.
        """
        participant = self.session.participants.pop(participant_id, None)
        tile = self.tiles.pop(participant_id, None)
        self.announced.pop(participant_id, None)
        if tile is None:
            return participant is not None

        self.status.unwatch(tile)
        self.layout.remove_tile(tile.tile_id)
        self.surface.remove_tile(tile.tile_id)
        self.layout.refresh()
        logger.info(f"Removed user: {tile.label} ({participant_id})")
        return True

    def refresh_local_stream(self) -> None:
        """
        Re-point the self-view at the session's local stream after a track swap
        and restart status tracking on the new tracks.
        """
        tile = self.local_tile
        if tile is None:
            return
        tile.stream = self.session.local_stream
        self.status.unwatch(tile)
        self.status.watch(tile)
        self.surface.set_tile_stream(tile.tile_id, tile.stream)

    def set_local_indicator(self, kind: str, off: bool) -> None:
        tile = self.local_tile
        if tile is not None:
            self.status.apply(tile, kind, off)

    def set_remote_track_enabled(self, participant_id: str, kind: str, enabled: bool) -> bool:
        """
        Apply a remote participant's announced track state to their received track.

        The indicator follows on the next poll. A state announced before the
        participant's stream arrives is kept and applied on arrival.

        Returns:
            bool: True if a matching track was found.
        """
        if not participant_id or participant_id == self.session.self_id:
            return False
        tile = self.tiles.get(participant_id)
        if tile is None:
            self.announced.setdefault(participant_id, {})[kind] = enabled
            return False
        if tile.is_local:
            return False
        track = tile.stream.first_track(kind)
        if track is None:
            return False
        track.enabled = enabled
        logger.debug(f"{kind} track of {participant_id} enabled={enabled}")
        return True

    def clear(self) -> None:
        """
        Stop tracking every tile; used on teardown.
        """
        self.announced.clear()
        for tile in self.tiles.values():
            self.status.unwatch(tile)
