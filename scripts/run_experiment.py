import argparse
import csv
from pathlib import Path
import sys

ROOT = Path(__file__).resolve().parents[1]
sys.path.append(str(ROOT / "src"))

from maze_academy import Algorithm, ExperimentConfig, MazeTrainer, load_maze, mission_layouts, run_sync


def main():
    parser = argparse.ArgumentParser(description="Compare algorithms on one maze with repeated seeded trials.")
    parser.add_argument("--mission", type=int, default=1, help="Built-in mission to use when --maze is not given.")
    parser.add_argument("--maze", type=str, default=None, help="Path to a maze JSON file.")
    parser.add_argument(
        "--algorithms",
        type=str,
        nargs="+",
        default=[Algorithm.RANDOM.value, Algorithm.Q_LEARNING.value, Algorithm.SARSA.value],
        choices=[a.value for a in Algorithm],
    )
    parser.add_argument("--trials", type=int, default=3)
    parser.add_argument("--episodes", type=int, default=50)
    parser.add_argument("--seed_base", type=int, default=8800)
    parser.add_argument("--csv", type=str, default=None, help="Optional per-episode CSV export.")
    args = parser.parse_args()

    layout = load_maze(args.maze) if args.maze else mission_layouts()[args.mission]
    config = ExperimentConfig(
        algorithms=args.algorithms,
        trials=args.trials,
        episodes=args.episodes,
        seed_base=args.seed_base,
    )
    result = run_sync(MazeTrainer().run_experiment(layout, config))
    if result is None:
        print("Experiment was canceled.")
        return

    print(f"Maze {layout.name}: {config.trials} trials x {config.episodes} episodes")
    for row in result.summary:
        print(
            f"{row.algorithm:>18}: success(last10)={row.avg_success_last10:.1f}% "
            f"steps(last10)={row.avg_steps_last10:.1f} return(last10)={row.avg_return_last10:.3f} "
            f"first_success={row.avg_episodes_to_first_success:.1f}"
        )

    if args.csv:
        with open(args.csv, "w", newline="", encoding="utf-8") as f:
            writer = csv.writer(f)
            writer.writerow(["algorithm", "maze", "trial", "seed", "episode", "steps", "success", "return"])
            for r in result.rows:
                writer.writerow([r.algorithm, r.maze_name, r.trial, r.seed, r.episode, r.steps, r.success, r.episode_return])
        print(f"Saved per-episode rows to {args.csv}")


if __name__ == "__main__":
    main()
