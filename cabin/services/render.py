# services/render.py
"""
Narrow interface between the orchestration layer and whatever draws the room.

Components hand the surface opaque ids and handles; the surface never has to
derive one id from another. The base class renders nothing and only logs, which
is what the headless client uses.
"""
import logging
from typing import Iterable

from cabin.services.state import Orientation

logger = logging.getLogger(__name__)


class RenderSurface:
    """
    Rendering collaborator for tiles, grids, indicators and user-facing messages.

    Attributes:
        orientation_mode (Orientation): Current presentation mode; read through
            orientation() once per layout pass.
    """

    def __init__(self, orientation: Orientation = Orientation.HORIZONTAL) -> None:
        self.orientation_mode = Orientation(orientation)

    def orientation(self) -> Orientation:
        return self.orientation_mode

    # -- grids ---------------------------------------------------------------
    def add_grid(self, grid_id: str, tile_ids: Iterable[str], position: int) -> None:
        logger.debug(f"Grid {grid_id} added at {position} with tiles {list(tile_ids)}")

    def remove_grid(self, grid_id: str) -> None:
        logger.debug(f"Grid {grid_id} removed")

    def focus_grid(self, grid_id: str) -> None:
        logger.debug(f"Grid {grid_id} focused")

    def set_grid_layout(self, grid_id: str, rows: int, columns: int) -> None:
        logger.debug(f"Grid {grid_id} layout {rows}x{columns}")

    # -- tiles ---------------------------------------------------------------
    def create_tile(self, tile) -> None:
        logger.debug(f"Tile {tile.tile_id} created for {tile.label}")

    def attach_tile(self, grid_id: str, tile_id: str) -> None:
        logger.debug(f"Tile {tile_id} attached to {grid_id}")

    def detach_tile(self, tile_id: str) -> None:
        logger.debug(f"Tile {tile_id} detached")

    def remove_tile(self, tile_id: str) -> None:
        logger.debug(f"Tile {tile_id} removed")

    def set_tile_stream(self, tile_id: str, stream) -> None:
        logger.debug(f"Tile {tile_id} now shows {stream!r}")

    def set_indicator(self, tile_id: str, indicator: str, visible: bool) -> None:
        logger.debug(f"Tile {tile_id} indicator {indicator} visible={visible}")

    def set_screen_sharing(self, tile_id: str, active: bool) -> None:
        logger.debug(f"Tile {tile_id} screen-sharing style={active}")

    # -- controls and feedback -------------------------------------------------
    def set_control_state(self, control: str, active: bool) -> None:
        logger.debug(f"Control {control} active={active}")

    def notify(self, message: str) -> None:
        logger.warning(f"User notice: {message}")

    def play_cue(self, cue: str) -> None:
        logger.debug(f"Cue {cue}")
