# pstack_api/grid.py
"""
Voxel occupancy grid over a single container.

The grid is a boolean numpy array of shape (Hc, Lc, Wc) indexed [z, y, x],
so its C-order flattening uses `z * (Wc * Lc) + y * Wc + x`. A voxel is True
iff some committed box covers it. The grid is append-only: there is no
removal operation.

Every container dimension must be a multiple of the cell size; otherwise
the last voxel row would under-cover the container, so construction is
rejected with GridDimensionError.
"""

from __future__ import annotations

from typing import Tuple

import numpy as np

from .models import ContainerSpec, Extents, Position, rotated_extents

DEFAULT_CELL_SIZE = 5


class GridDimensionError(ValueError):
    """Container dimensions are not evenly divisible by the grid cell size."""


class CollisionGrid:
    def __init__(self, container: ContainerSpec, cell_size: int = DEFAULT_CELL_SIZE):
        if cell_size <= 0:
            raise ValueError(f"cell_size must be positive, got {cell_size}")
        bad = [d for d in container.dims if d % cell_size]
        if bad:
            raise GridDimensionError(
                f"container {container.dims} is not a multiple of cell size {cell_size}"
            )
        self.container = container
        self.cell_size = cell_size
        self.cells: Tuple[int, int, int] = tuple(d // cell_size for d in container.dims)  # type: ignore[assignment]
        wc, lc, hc = self.cells
        self.occupancy = np.zeros((hc, lc, wc), dtype=bool)

    def flat_index(self, x: int, y: int, z: int) -> int:
        """Flattened index of voxel (x, y, z)."""
        wc, lc, _ = self.cells
        return z * (wc * lc) + y * wc + x

    def _voxel_span(self, position: Position, extents: Extents):
        # half-open voxel range [lo, hi) per axis
        c = self.cell_size
        return tuple(
            (p // c, -(-(p + e) // c)) for p, e in zip(position, extents)
        )

    def _in_bounds(self, span) -> bool:
        return all(lo >= 0 and hi <= n for (lo, hi), n in zip(span, self.cells))

    def can_place(self, size: Extents, position: Position, rotation: int = 0) -> bool:
        """
        True when the rotated box fits inside the container and every voxel
        it covers is free.
        """
        span = self._voxel_span(position, rotated_extents(size, rotation))
        if not self._in_bounds(span):
            return False
        (x0, x1), (y0, y1), (z0, z1) = span
        return not self.occupancy[z0:z1, y0:y1, x0:x1].any()

    def commit(self, size: Extents, position: Position, rotation: int = 0) -> None:
        """
        Mark the voxels covered by the rotated box as occupied.

        Callers must have had can_place() return True for the same arguments;
        nothing is re-validated here.
        """
        (x0, x1), (y0, y1), (z0, z1) = self._voxel_span(
            position, rotated_extents(size, rotation)
        )
        self.occupancy[z0:z1, y0:y1, x0:x1] = True

    def is_occupied(self, x: int, y: int, z: int) -> bool:
        """Occupancy of a single voxel, addressed in voxel coordinates."""
        return bool(self.occupancy.reshape(-1)[self.flat_index(x, y, z)])

    @property
    def occupied_count(self) -> int:
        return int(np.count_nonzero(self.occupancy))


__all__ = ["DEFAULT_CELL_SIZE", "GridDimensionError", "CollisionGrid"]
