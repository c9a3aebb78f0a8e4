"""
Grid (pixel canvas) variant.

Each paint overwrites one cell. There is no logical clock: whichever paint a
replica applies last wins locally, so concurrent paints of the same cell
can leave replicas showing different colors. Paints of different cells
always converge.
"""

from dataclasses import dataclass
from typing import Any

import numpy as np

from .errors import OperationRejected
from .variant import Variant, VariantKind

GRID_SIZE = 50
BLANK = "white"
DEFAULT_PALETTE = ("black", "red", "green", "blue")


@dataclass(frozen=True)
class Paint:
    """Set the cell at column *x*, row *y* to *color*."""

    x: int
    y: int
    color: str


class GridVariant(Variant):
    """Fixed-size color grid; state is a 2-D object array indexed ``[y, x]``.

    Args:
        size: Width and height of the grid.
        palette: Colors drawn by random workloads.
    """

    kind = VariantKind.GRID

    def __init__(self, size: int = GRID_SIZE, palette: tuple[str, ...] = DEFAULT_PALETTE):
        if size <= 0:
            raise ValueError(f"Grid size must be positive, got {size}")
        if not palette:
            raise ValueError("Palette must contain at least one color")
        self.size = size
        self.palette = palette

    def initial_state(self, replica_id: str) -> np.ndarray:
        return np.full((self.size, self.size), BLANK, dtype=object)

    def apply(self, operation: Any, state: np.ndarray) -> np.ndarray:
        if not isinstance(operation, Paint):
            raise OperationRejected(operation, "not a grid operation")
        if not (0 <= operation.x < self.size and 0 <= operation.y < self.size):
            raise OperationRejected(operation, f"outside the {self.size}x{self.size} grid")

        cells = state.copy()
        cells[operation.y, operation.x] = operation.color
        return cells

    def author_random_operations(
        self, state: np.ndarray, replica_id: str, rng: np.random.Generator
    ) -> list[Any]:
        x, y = rng.integers(0, self.size, size=2)
        color = self.palette[int(rng.integers(len(self.palette)))]
        return [Paint(x=int(x), y=int(y), color=color)]

    def view(self, state: np.ndarray) -> tuple[tuple[str, ...], ...]:
        return tuple(tuple(row) for row in state.tolist())

    def __repr__(self) -> str:
        return f"GridVariant(size={self.size})"
