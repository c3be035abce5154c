# handlers/grid_layout.py
import itertools
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from cabin.constants import (
    FALLBACK_LAYOUT, HORIZONTAL_LAYOUTS, MAX_LAYOUT_PASSES, MAX_TILES_PER_GRID, VERTICAL_LAYOUTS
)
from cabin.services.render import RenderSurface
from cabin.services.state import Orientation, Session

logger = logging.getLogger(__name__)


def calculate_grid_layout(tile_count: int, orientation: Orientation) -> Tuple[int, int]:
    """
    Look up the (rows, columns) arrangement for a grid.

    Args:
        tile_count (int): Number of tiles in the grid.
        orientation (Orientation): Current presentation mode.

    Returns:
        Tuple[int, int]: Rows and columns; (2, 2) for counts outside 1-4.
    """
    table = VERTICAL_LAYOUTS if orientation == Orientation.VERTICAL else HORIZONTAL_LAYOUTS
    return table.get(tile_count, FALLBACK_LAYOUT)


@dataclass
class Grid:
    """
    An ordered bucket of tile ids shown together.
    """
    grid_id: str
    tiles: List[str] = field(default_factory=list)
    rows: int = 1
    columns: int = 1


class GridLayoutEngine:
    """
    Keeps the number and dimensions of grids consistent with the visible tiles.

    The engine owns grid structure; the surface only mirrors it through
    add_grid/remove_grid/focus_grid/set_grid_layout/attach_tile/detach_tile.
    """

    def __init__(self, session: Session, surface: RenderSurface) -> None:
        self.session = session
        self.surface = surface
        self.grids: List[Grid] = []
        self._grid_ids = itertools.count(1)
        self._append_grid([])

    # -------------------------------------------------------------------------
    # Structure helpers
    # -------------------------------------------------------------------------
    def _new_grid_id(self) -> str:
        return f"video-grid{next(self._grid_ids)}"

    def _append_grid(self, tiles: List[str]) -> Grid:
        return self._insert_grid(len(self.grids), tiles)

    def _insert_grid(self, position: int, tiles: List[str]) -> Grid:
        grid = Grid(self._new_grid_id(), list(tiles))
        self.grids.insert(position, grid)
        self.surface.add_grid(grid.grid_id, list(tiles), position)
        return grid

    def _drop_grid(self, grid: Grid) -> None:
        self.grids.remove(grid)
        self.surface.remove_grid(grid.grid_id)

    @property
    def tile_count(self) -> int:
        return sum(len(grid.tiles) for grid in self.grids)

    def grid_of(self, tile_id: str) -> Optional[Grid]:
        return next((grid for grid in self.grids if tile_id in grid.tiles), None)

    # -------------------------------------------------------------------------
    # Tile placement
    # -------------------------------------------------------------------------
    def place_tile(self, tile_id: str) -> Grid:
        """
        Append a tile to the last grid. Overflow is resolved by the next recalculation.

        Args:
            tile_id (str): Id of the tile to place.

        Returns:
            Grid: The grid the tile was placed into.
        """
        existing = self.grid_of(tile_id)
        if existing is not None:
            return existing
        if not self.grids:
            self._append_grid([])
        grid = self.grids[-1]
        grid.tiles.append(tile_id)
        self.surface.attach_tile(grid.grid_id, tile_id)
        return grid

    def remove_tile(self, tile_id: str) -> bool:
        """
        Take a tile out of its grid. Empty grids are dropped by the next recalculation.

        Returns:
            bool: True if the tile was placed somewhere.
        """
        grid = self.grid_of(tile_id)
        if grid is None:
            return False
        grid.tiles.remove(tile_id)
        self.surface.detach_tile(tile_id)
        return True

    # -------------------------------------------------------------------------
    # Layout
    # -------------------------------------------------------------------------
    def recalculate(self) -> bool:
        """
        Run one layout pass over the grids in display order.

        Empty grids are removed. A grid holding more than four tiles gives its
        first tile to a new grid inserted right after it, and that grid gets
        focus; only one tile moves per grid per pass. Every other grid gets its
        (rows, columns) from the orientation table.

        Returns:
            bool: True if a tile was relocated (another pass may be needed).
        """
        orientation = self.surface.orientation()
        total = self.tile_count
        grid_number = -(-total // MAX_TILES_PER_GRID)
        relocated = False

        for grid in list(self.grids):
            count = len(grid.tiles)

            if count == 0:
                self._drop_grid(grid)
                grid_number -= 1
                continue

            if count > MAX_TILES_PER_GRID:
                tile_id = grid.tiles.pop(0)
                self.surface.detach_tile(tile_id)
                position = self.grids.index(grid) + 1
                new_grid = self._insert_grid(position, [tile_id])
                grid_number += 1
                self.surface.focus_grid(new_grid.grid_id)
                logger.info(f"Moved tile {tile_id} from {grid.grid_id} into new grid {new_grid.grid_id}")
                relocated = True
                continue

            grid.rows, grid.columns = calculate_grid_layout(count, orientation)
            self.surface.set_grid_layout(grid.grid_id, grid.rows, grid.columns)

        non_empty = sum(1 for grid in self.grids if grid.tiles)
        if grid_number != non_empty:
            logger.debug(f"Grid counter drifted to {grid_number}, reconciling to {non_empty}")
        self.session.grid_number = max(non_empty, 1)
        return relocated

    def refresh(self) -> None:
        """
        Repeat layout passes until no tile moves.

        Each pass moves at most one excess tile per grid, so this converges.
        """
        for _ in range(MAX_LAYOUT_PASSES):
            if not self.recalculate():
                return
        logger.warning(f"Grid layout did not settle after {MAX_LAYOUT_PASSES} passes")
