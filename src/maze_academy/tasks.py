from __future__ import annotations

from dataclasses import dataclass
from typing import Dict

from .world import MazeLayout, load_maze


@dataclass
class Mission:
    level_id: int
    name: str
    description: str
    layout: MazeLayout


_MISSION_MAZES = {
    1: {
        "name": "maze1_easy_9",
        "size": 9,
        "grid": [
            "#########",
            "#S....#.#",
            "#.###.#.#",
            "#...#...#",
            "###.###.#",
            "#.......#",
            "#.#####.#",
            "#......G#",
            "#########",
        ],
    },
    2: {
        "name": "maze2_medium_11",
        "size": 11,
        "grid": [
            "###########",
            "#S..#.....#",
            "#.#.#.###.#",
            "#.#...#...#",
            "#.#####.#.#",
            "#.....#.#.#",
            "###.#.#.#.#",
            "#...#...#.#",
            "#.#######.#",
            "#........G#",
            "###########",
        ],
    },
    3: {
        "name": "maze3_fork_9",
        "size": 9,
        "grid": [
            "#########",
            "#S......#",
            "#.#####.#",
            "#.#...#.#",
            "#.#.#.#.#",
            "#...#.#.#",
            "#.#.#.#.#",
            "#...#..G#",
            "#########",
        ],
    },
    4: {
        "name": "maze4_winding_11",
        "size": 11,
        "grid": [
            "###########",
            "#S#.......#",
            "#.#.#####.#",
            "#.#.#...#.#",
            "#.#.#.#.#.#",
            "#...#.#...#",
            "#####.#####",
            "#.....#...#",
            "#.###.#.#.#",
            "#...#...#G#",
            "###########",
        ],
    },
}


def mission_presets() -> Dict[int, Mission]:
    """Return the built-in missions, ordered by difficulty."""
    return {
        1: Mission(
            level_id=1,
            name="First Steps",
            description="Small 9x9 maze with two equal-length routes; learn what rewards do.",
            layout=load_maze(_MISSION_MAZES[1]),
        ),
        2: Mission(
            level_id=2,
            name="Longer Paths",
            description="11x11 maze with several dead ends; exploration starts to matter.",
            layout=load_maze(_MISSION_MAZES[2]),
        ),
        3: Mission(
            level_id=3,
            name="The Fork",
            description="9x9 maze whose inner loop traps greedy agents; compare SARSA with Q-learning.",
            layout=load_maze(_MISSION_MAZES[3]),
        ),
        4: Mission(
            level_id=4,
            name="Winding Maze",
            description="11x11 maze with a single long corridor to the goal.",
            layout=load_maze(_MISSION_MAZES[4]),
        ),
    }


def mission_layouts() -> Dict[int, MazeLayout]:
    return {level_id: mission.layout for level_id, mission in mission_presets().items()}
