"""Geometry of the bar grids shown on each trial.

Every target sits inside its own grid of oriented bars.  The single-pair layout
places one grid left and one right of the fixation point; the dual-pair layout
places one grid in each screen quadrant.  All values here are in pixels with
PsychoPy's convention of ``(0, 0)`` at the screen centre and y growing
upwards.  Grid rows are counted from the top.

Keeping the arithmetic free of PsychoPy objects lets the renderer and the tests
share it.
"""
from __future__ import annotations

import random
from dataclasses import dataclass
from typing import List, Optional, Tuple

from .conditions import Target

# ---------------------------------------------------------------------------
# Layout constants
# ---------------------------------------------------------------------------

CELL_PX: int = 40
FIT_MARGIN_PX: int = 10
BAR_LENGTH_FRACTION: float = 0.8
BAR_WIDTH_FRACTION: float = 0.2
TARGET_SCALE: float = 1.0
DISTRACTOR_SCALE_MEAN: float = 0.7
DISTRACTOR_SCALE_SD: float = 0.1

GridSize = Tuple[int, int]
Point = Tuple[float, float]


@dataclass(frozen=True)
class BarSpec:
    """One bar of a grid: its centre, its size factor and whether it is the target."""

    position: Point
    scale: float
    is_target: bool = False


def grid_center(target: Target, grid_size: GridSize, cell_px: int = CELL_PX) -> Point:
    """Return the centre of the grid holding ``target``.

    Grids are shifted by half their width towards their side.  Quadrant grids
    are shifted by half their height as well.
    """

    columns, rows = grid_size
    x = (-1 if target.is_left else 1) * columns * cell_px / 2.0
    y = 0.0
    if target.quadrant is not None:
        y = (1 if target.quadrant.is_top else -1) * rows * cell_px / 2.0
    return x, y


def cell_center(
    column: int, row: int, grid_size: GridSize, origin: Point = (0.0, 0.0), cell_px: int = CELL_PX
) -> Point:
    """Return the centre of cell ``(column, row)`` of a grid centred on ``origin``."""

    columns, rows = grid_size
    x = origin[0] + (column + 0.5 - columns / 2.0) * cell_px
    y = origin[1] + (rows / 2.0 - row - 0.5) * cell_px
    return x, y


def content_size(grid_size: GridSize, dual: bool, cell_px: int = CELL_PX) -> Tuple[int, int]:
    """Return the width and height covered by all grids of a trial."""

    columns, rows = grid_size
    return columns * cell_px * 2, rows * cell_px * (2 if dual else 1)


def fit_scale(
    content: Tuple[float, float], window: Tuple[float, float], margin: float = FIT_MARGIN_PX
) -> float:
    """Return the factor that fits ``content`` into ``window`` minus ``margin``."""

    width, height = content
    if width <= 0 or height <= 0:
        raise ValueError("Content size must be positive")
    available_w = max(window[0] - 2 * margin, 1.0)
    available_h = max(window[1] - 2 * margin, 1.0)
    return min(available_w / width, available_h / height)


def bar_grid(
    target: Target,
    grid_size: GridSize,
    rng: random.Random,
    *,
    cell_px: int = CELL_PX,
    origin: Optional[Point] = None,
) -> List[BarSpec]:
    """Return the bars of the grid around ``target``.

    The target bar keeps full size.  Every other bar is drawn from a normal
    distribution around :data:`DISTRACTOR_SCALE_MEAN` so the target does not
    stand out by size alone.
    """

    columns, rows = grid_size
    target_column, target_row = target.grid_position
    if not (0 <= target_column < columns and 0 <= target_row < rows):
        raise ValueError(f"Target position {target.grid_position} lies outside a {grid_size} grid")
    if origin is None:
        origin = grid_center(target, grid_size, cell_px)

    bars = []
    for row in range(rows):
        for column in range(columns):
            is_target = (column, row) == (target_column, target_row)
            if is_target:
                scale = TARGET_SCALE
            else:
                scale = max(rng.gauss(DISTRACTOR_SCALE_MEAN, DISTRACTOR_SCALE_SD), 0.1)
            bars.append(
                BarSpec(
                    position=cell_center(column, row, grid_size, origin, cell_px),
                    scale=scale,
                    is_target=is_target,
                )
            )
    return bars


def bar_size(scale: float, cell_px: int = CELL_PX) -> Tuple[float, float]:
    """Return ``(width, length)`` of a bar drawn at ``scale``."""

    return cell_px * BAR_WIDTH_FRACTION * scale, cell_px * BAR_LENGTH_FRACTION * scale


__all__ = [
    "BarSpec",
    "CELL_PX",
    "FIT_MARGIN_PX",
    "bar_grid",
    "bar_size",
    "cell_center",
    "content_size",
    "fit_scale",
    "grid_center",
]
