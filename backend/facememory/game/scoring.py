"""Scoring policies.

Both policies take percentage coordinates (0-100). A room uses exactly one
of them for its whole lifetime, picked by ``Settings.scoring_mode``.
"""

from __future__ import annotations

import math
import random

from .models import Placement, Position


# (max distance, points), checked in order
DISTANCE_BANDS: tuple[tuple[float, int], ...] = (
    (5, 100),
    (15, 75),
    (30, 50),
    (50, 25),
)
FAR_BAND_LIMIT = 100

GRID_SIZE = 16
SECTION_SIZE = GRID_SIZE // 2

GRID_EXACT = 100
GRID_NEIGHBOUR = 50
GRID_SAME_SECTION = 0
GRID_OTHER_SECTION = -10
GRID_OFF_BOARD = -25


def distance(a: Position, b: Position) -> float:
    return math.hypot(a.x - b.x, a.y - b.y)


def distance_score(click: Position, target: Position, far_points: int = 10) -> int:
    d = distance(click, target)
    for limit, points in DISTANCE_BANDS:
        if d <= limit:
            return points
    if d <= FAR_BAND_LIMIT:
        return far_points
    return 0


def section_of(row: int, col: int) -> int:
    """Quadrant 1-4: 1 top-left, 2 top-right, 3 bottom-left, 4 bottom-right."""
    if row < SECTION_SIZE:
        return 1 if col < SECTION_SIZE else 2
    return 3 if col < SECTION_SIZE else 4


def cell_of(position: Position, size: int = GRID_SIZE) -> tuple[int, int] | None:
    """Return (row, col) for a board position, or None when off the board."""
    if not (0 <= position.x <= 100 and 0 <= position.y <= 100):
        return None
    col = min(int(position.x * size / 100), size - 1)
    row = min(int(position.y * size / 100), size - 1)
    return row, col


def cell_center(row: int, col: int, size: int = GRID_SIZE) -> Position:
    step = 100 / size
    return Position(x=(col + 0.5) * step, y=(row + 0.5) * step)


def grid_score(click: Position, placement: Placement, size: int = GRID_SIZE) -> int:
    cell = cell_of(click, size)
    if cell is None:
        return GRID_OFF_BOARD
    row, col = cell
    if (row, col) == (placement.row, placement.col):
        return GRID_EXACT
    if abs(row - placement.row) <= 1 and abs(col - placement.col) <= 1:
        return GRID_NEIGHBOUR
    if section_of(row, col) == placement.section:
        return GRID_SAME_SECTION
    return GRID_OTHER_SECTION


def random_placement(rng: random.Random | None = None) -> Placement:
    # One cell of margin inside the chosen section
    rng = rng or random
    section = rng.randint(1, 4)
    start_row = 0 if section <= 2 else SECTION_SIZE
    start_col = 0 if section in (1, 3) else SECTION_SIZE
    row = start_row + rng.randint(1, SECTION_SIZE - 2)
    col = start_col + rng.randint(1, SECTION_SIZE - 2)
    return Placement(row=row, col=col, section=section, center=cell_center(row, col))
