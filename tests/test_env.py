import json
import pathlib
import sys

import pytest

ROOT = pathlib.Path(__file__).resolve().parents[1]
sys.path.append(str(ROOT / "src"))

from maze_academy import Action, Direction, MazeEnv, MazeError, RewardConfig, load_maze, state_to_key  # noqa: E402
from maze_academy.tasks import mission_layouts  # noqa: E402
from maze_academy.world import analyze_maze, initial_direction, parse_maze, validate_maze  # noqa: E402

SPLIT_GRID = [
    "#########",
    "#S..#...#",
    "#...#...#",
    "#...#...#",
    "#...#...#",
    "#...#...#",
    "#...#...#",
    "#...#..G#",
    "#########",
]


def first_mission_env(**reward_overrides):
    layout = mission_layouts()[1]
    return MazeEnv(layout, RewardConfig(**reward_overrides))


def test_reset_places_agent_on_start_facing_open_corridor():
    env = first_mission_env()
    ob = env.reset()
    assert (ob.row, ob.col) == (1, 1)
    assert ob.dir == Direction.RIGHT
    assert not ob.front_blocked
    assert ob.left_blocked
    assert not ob.right_blocked
    assert state_to_key(ob) == "1,1,1,0,1,0"
    assert env.step_count == 0
    assert env.episode_return == 0.0


def test_forward_into_wall_bumps_without_moving():
    env = first_mission_env()
    env.reset()
    turn = env.step(Action.LEFT)
    assert not turn.bump
    assert turn.state.dir == Direction.UP

    bump = env.step(Action.FORWARD)
    assert bump.bump
    assert (bump.state.row, bump.state.col) == (1, 1)
    assert bump.reward == pytest.approx(-0.06)
    assert bump.episode_return == pytest.approx(-0.07)
    assert not bump.done


def test_turns_never_move_or_bump():
    env = first_mission_env()
    env.reset()
    for action, expected in ((Action.RIGHT, Direction.DOWN), (Action.RIGHT, Direction.LEFT), (Action.LEFT, Direction.DOWN)):
        result = env.step(action)
        assert not result.bump
        assert (result.state.row, result.state.col) == (1, 1)
        assert result.state.dir == expected
        assert result.reward == pytest.approx(-0.01)


def test_reaching_goal_succeeds_and_ends_episode():
    env = first_mission_env()
    env.reset()
    plan = (
        [Action.FORWARD] * 4
        + [Action.RIGHT]
        + [Action.FORWARD] * 2
        + [Action.LEFT]
        + [Action.FORWARD] * 2
        + [Action.RIGHT]
        + [Action.FORWARD] * 4
    )
    results = [env.step(a) for a in plan]
    last = results[-1]
    assert all(not r.done for r in results[:-1])
    assert last.done and last.success
    assert not last.max_steps_reached
    assert (last.state.row, last.state.col) == (7, 7)
    assert last.reward == pytest.approx(0.99)
    assert last.step_count == len(plan)


def test_episode_ends_after_exactly_max_steps_on_small_maze():
    env = first_mission_env()
    env.reset()
    assert env.max_steps == 120
    results = []
    while True:
        result = env.step(Action.LEFT)
        results.append(result)
        if result.done:
            break
    assert len(results) == 120
    assert results[-1].max_steps_reached
    assert not results[-1].success
    assert results[-1].episode_return == pytest.approx(-1.2)


def test_larger_maze_uses_longer_step_limit():
    env = MazeEnv(mission_layouts()[2])
    assert env.max_steps == 180


def test_observation_does_not_mutate_state():
    env = first_mission_env()
    env.reset()
    env.step(Action.FORWARD)
    before = (env.state, env.step_count, env.episode_return)
    first = env.observation()
    second = env.observation()
    assert first == second
    assert (env.state, env.step_count, env.episode_return) == before


def test_out_of_bounds_cells_count_as_walls():
    grid = [
        "#S......#",
        "#.......#",
        "#.......#",
        "#.......#",
        "#.......#",
        "#.......#",
        "#.......#",
        "#......G#",
        "#########",
    ]
    layout = parse_maze({"name": "open_top", "size": 9, "grid": grid})
    env = MazeEnv(layout)
    assert env.reset().dir == Direction.DOWN
    env.step(Action.LEFT)
    env.step(Action.LEFT)
    ob = env.observation()
    assert ob.dir == Direction.UP
    assert ob.front_blocked
    result = env.step(Action.FORWARD)
    assert result.bump
    assert (result.state.row, result.state.col) == (0, 1)


def test_validate_reports_unreachable_goal():
    validation = validate_maze({"size": 9, "grid": SPLIT_GRID})
    assert not validation.ok
    assert any("not reachable" in err for err in validation.errors)


def test_validate_rejects_bad_size_and_duplicate_start():
    assert not validate_maze({"size": 10, "grid": SPLIT_GRID}).ok
    grid = list(SPLIT_GRID)
    grid[2] = "#S..#...#"
    validation = validate_maze({"size": 9, "grid": grid})
    assert any("exactly one start" in err for err in validation.errors)


def test_load_maze_raises_with_errors_and_reads_files(tmp_path):
    with pytest.raises(MazeError) as excinfo:
        load_maze({"size": 9, "grid": SPLIT_GRID})
    assert excinfo.value.errors

    layout = mission_layouts()[1]
    path = tmp_path / "maze.json"
    path.write_text(json.dumps(layout.to_json()), encoding="utf-8")
    loaded = load_maze(path)
    assert loaded == layout


def test_analyze_first_mission():
    analysis = analyze_maze(mission_layouts()[1])
    assert analysis.shortest_path_length == 12
    assert analysis.wall_density_percent == pytest.approx(48 / 81 * 100)


def test_all_missions_are_valid_and_solvable():
    for level_id, layout in mission_layouts().items():
        assert validate_maze(layout.to_json()).ok, level_id
        assert analyze_maze(layout).shortest_path_length is not None


def test_explicit_start_and_goal_are_accepted():
    grid = [row.replace("S", ".").replace("G", ".") for row in mission_layouts()[1].grid]
    data = {"name": "explicit", "size": 9, "grid": grid, "start": {"row": 1, "col": 1}, "goal": {"row": 7, "col": 7}}
    layout = load_maze(data)
    assert (layout.start.row, layout.start.col) == (1, 1)
    assert (layout.goal.row, layout.goal.col) == (7, 7)
    assert analyze_maze(layout).shortest_path_length == 12

    data["goal"] = {"row": 0, "col": 0}
    assert not validate_maze(data).ok


def test_initial_direction_falls_back_to_any_open_side():
    boxed = [
        "#########",
        "#S#.....#",
        "###.....#",
        "#.......#",
        "#.......#",
        "#.......#",
        "#.......#",
        "#......G#",
        "#########",
    ]
    assert initial_direction(parse_maze({"size": 9, "grid": boxed})) == Direction.RIGHT

    away_from_goal = [
        "#########",
        "#.......#",
        "#.......#",
        "#S#.....#",
        "###.....#",
        "#.......#",
        "#.......#",
        "#......G#",
        "#########",
    ]
    assert initial_direction(parse_maze({"size": 9, "grid": away_from_goal})) == Direction.UP
