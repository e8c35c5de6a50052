from __future__ import annotations

import json
from collections import deque
from dataclasses import dataclass, field
from enum import IntEnum
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple, Union

WALL = "#"
FLOOR = "."
START = "S"
GOAL = "G"

ALLOWED_SIZES = (9, 11, 13, 15, 17)
ALLOWED_CELLS = frozenset({WALL, FLOOR, START, GOAL})
MAX_WALL_DENSITY = 0.6


class MazeError(ValueError):
    """Raised when a maze definition fails validation."""

    def __init__(self, errors: Sequence[str]):
        self.errors = list(errors)
        super().__init__(" ".join(self.errors))


class Direction(IntEnum):
    UP = 0
    RIGHT = 1
    DOWN = 2
    LEFT = 3

    def turn_left(self) -> "Direction":
        return Direction((self + 3) % 4)

    def turn_right(self) -> "Direction":
        return Direction((self + 1) % 4)

    def opposite(self) -> "Direction":
        return Direction((self + 2) % 4)

    @property
    def forward_delta(self) -> Tuple[int, int]:
        return _DIR_VECTORS[self]


_DIR_VECTORS: Dict[Direction, Tuple[int, int]] = {
    Direction.UP: (-1, 0),
    Direction.RIGHT: (0, 1),
    Direction.DOWN: (1, 0),
    Direction.LEFT: (0, -1),
}


@dataclass(frozen=True)
class Point:
    row: int
    col: int


@dataclass(frozen=True)
class MazeLayout:
    """Square maze grid. Immutable once loaded."""

    name: str
    size: int
    grid: Tuple[str, ...]
    start: Point
    goal: Point

    def in_bounds(self, row: int, col: int) -> bool:
        return 0 <= row < self.size and 0 <= col < self.size

    def cell(self, row: int, col: int) -> str:
        """Cell character; anything off the grid or malformed reads as a wall."""
        if not self.in_bounds(row, col):
            return WALL
        if row >= len(self.grid) or col >= len(self.grid[row]):
            return WALL
        return self.grid[row][col]

    def is_wall(self, row: int, col: int) -> bool:
        return self.cell(row, col) == WALL

    def to_json(self) -> Dict[str, object]:
        return {"name": self.name, "size": self.size, "grid": list(self.grid)}


@dataclass
class MazeValidation:
    ok: bool
    errors: List[str] = field(default_factory=list)


@dataclass
class MazeAnalysis:
    shortest_path_length: Optional[int]
    dead_ends: int
    intersections: int
    wall_density_percent: float


def _find_cells(grid: Sequence[str], char: str) -> List[Point]:
    return [Point(r, c) for r, row in enumerate(grid) for c, cell in enumerate(row) if cell == char]


def _open_neighbors(layout: MazeLayout, row: int, col: int) -> List[Point]:
    out = []
    for direction in (Direction.UP, Direction.DOWN, Direction.LEFT, Direction.RIGHT):
        dr, dc = direction.forward_delta
        nr, nc = row + dr, col + dc
        if layout.in_bounds(nr, nc) and not layout.is_wall(nr, nc):
            out.append(Point(nr, nc))
    return out


def _explicit_point(data: Dict[str, object], key: str) -> Optional[Point]:
    value = data.get(key)
    if isinstance(value, dict) and "row" in value and "col" in value:
        return Point(int(value["row"]), int(value["col"]))
    return None


def _locate(data: Dict[str, object], grid: Sequence[str], key: str, char: str) -> List[Point]:
    """S/G cells, or an explicit ``{row, col}`` entry when the grid has none."""
    found = _find_cells(grid, char)
    explicit = _explicit_point(data, key)
    if not found and explicit is not None:
        return [explicit]
    return found


def parse_maze(data: Dict[str, object]) -> MazeLayout:
    """Build a layout from ``{name, size, grid}`` plus optional ``start``/``goal``."""
    size = int(data["size"])  # type: ignore[arg-type]
    grid = tuple(str(row) for row in data["grid"])  # type: ignore[union-attr]
    starts = _locate(data, grid, "start", START)
    goals = _locate(data, grid, "goal", GOAL)
    return MazeLayout(
        name=str(data.get("name", "maze")),
        size=size,
        grid=grid,
        start=starts[0] if starts else Point(1, 1),
        goal=goals[0] if goals else Point(size - 2, size - 2),
    )


def validate_maze(data: Dict[str, object]) -> MazeValidation:
    errors: List[str] = []
    size = data.get("size")
    raw_grid = data.get("grid")
    if not isinstance(size, int) or size not in ALLOWED_SIZES:
        errors.append(f"Maze size must be one of: {', '.join(str(s) for s in ALLOWED_SIZES)}.")
        return MazeValidation(ok=False, errors=errors)
    if not isinstance(raw_grid, (list, tuple)) or not all(isinstance(row, str) for row in raw_grid):
        errors.append("Grid must be a list of strings.")
        return MazeValidation(ok=False, errors=errors)

    grid: List[str] = list(raw_grid)
    if len(grid) != size:
        errors.append(f"Grid row count ({len(grid)}) must match size ({size}).")
    for r, row in enumerate(grid):
        if len(row) != size:
            errors.append(f"Row {r + 1} length ({len(row)}) must match size ({size}).")
        for c, cell in enumerate(row):
            if cell not in ALLOWED_CELLS:
                errors.append(f"Invalid cell '{cell}' at row {r + 1}, col {c + 1}.")
    if errors:
        return MazeValidation(ok=False, errors=errors)

    starts = _locate(data, grid, "start", START)
    goals = _locate(data, grid, "goal", GOAL)
    if len(starts) != 1:
        errors.append(f"Maze must contain exactly one start S. Found {len(starts)}.")
    if len(goals) != 1:
        errors.append(f"Maze must contain exactly one goal G. Found {len(goals)}.")
    for point in starts + goals:
        if not (0 <= point.row < size and 0 <= point.col < size) or grid[point.row][point.col] == WALL:
            errors.append(f"Start/goal at row {point.row + 1}, col {point.col + 1} must be an open cell.")

    if any(grid[0][i] != WALL or grid[size - 1][i] != WALL for i in range(size)):
        errors.append("Top and bottom borders must be all walls (#).")
    if any(grid[i][0] != WALL or grid[i][size - 1] != WALL for i in range(size)):
        errors.append("Left and right borders must be all walls (#).")

    density = sum(row.count(WALL) for row in grid) / float(size * size)
    if density > MAX_WALL_DENSITY:
        errors.append(f"Wall density {density * 100:.1f}% exceeds 60% limit.")

    if len(starts) == 1 and len(goals) == 1:
        layout = MazeLayout(name="", size=size, grid=tuple(grid), start=starts[0], goal=goals[0])
        if shortest_path_length(layout) is None:
            errors.append("Goal is not reachable from start (BFS check failed).")

    return MazeValidation(ok=not errors, errors=errors)


def load_maze(source: Union[str, Path, Dict[str, object]]) -> MazeLayout:
    """Load and validate a maze from a JSON file path or an already-decoded dict."""
    if isinstance(source, dict):
        data = source
    else:
        with open(source, "r", encoding="utf-8") as f:
            data = json.load(f)
    validation = validate_maze(data)
    if not validation.ok:
        raise MazeError(validation.errors)
    return parse_maze(data)


def shortest_path_length(layout: MazeLayout) -> Optional[int]:
    """BFS distance in cells from start to goal, ignoring facing direction."""
    queue = deque([(layout.start, 0)])
    visited = {layout.start}
    while queue:
        cur, dist = queue.popleft()
        if cur == layout.goal:
            return dist
        for nxt in _open_neighbors(layout, cur.row, cur.col):
            if nxt in visited:
                continue
            visited.add(nxt)
            queue.append((nxt, dist + 1))
    return None


def analyze_maze(layout: MazeLayout) -> MazeAnalysis:
    floor_count = 0
    wall_count = 0
    dead_ends = 0
    intersections = 0
    for r in range(layout.size):
        for c in range(layout.size):
            if layout.is_wall(r, c):
                wall_count += 1
                continue
            floor_count += 1
            degree = len(_open_neighbors(layout, r, c))
            if degree == 1:
                dead_ends += 1
            if degree >= 3:
                intersections += 1
    total = wall_count + floor_count
    return MazeAnalysis(
        shortest_path_length=shortest_path_length(layout),
        dead_ends=dead_ends,
        intersections=intersections,
        wall_density_percent=(wall_count / total * 100.0) if total else 0.0,
    )


def initial_direction(layout: MazeLayout) -> Direction:
    """Fixed starting heading for a layout.

    Tries the axis pointing at the goal, then the other axis towards it, then
    the two directions away from it; a start boxed in on all sides faces RIGHT.
    """
    start, goal = layout.start, layout.goal
    if start == goal:
        return Direction.RIGHT

    def open_towards(direction: Direction) -> bool:
        dr, dc = direction.forward_delta
        return not layout.is_wall(start.row + dr, start.col + dc)

    dr = goal.row - start.row
    dc = goal.col - start.col
    horizontal = Direction.RIGHT if dc >= 0 else Direction.LEFT
    vertical = Direction.DOWN if dr >= 0 else Direction.UP
    if abs(dc) >= abs(dr):
        preferred = [horizontal, vertical, horizontal.opposite(), vertical.opposite()]
    else:
        preferred = [vertical, horizontal, vertical.opposite(), horizontal.opposite()]
    for direction in preferred:
        if open_towards(direction):
            return direction
    return Direction.RIGHT
