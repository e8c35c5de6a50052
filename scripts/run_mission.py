"""
Coached mission run: ask the adaptive coach for a plan, train with it, report back,
and print what the coach thinks the learner should try next.
"""

import argparse
import logging
from pathlib import Path
import sys

ROOT = Path(__file__).resolve().parents[1]
sys.path.append(str(ROOT / "src"))

from maze_academy import (
    AdaptiveCoach,
    DeterministicRng,
    JsonFileStorage,
    MazeTrainer,
    TrainingConfig,
    mission_presets,
    run_sync,
)
from maze_academy.metrics import avg_steps_on_success, success_rate


def main():
    missions = mission_presets()
    parser = argparse.ArgumentParser(description="Train one mission with the adaptive coach's suggested plan.")
    parser.add_argument("--mission", type=int, default=1, choices=sorted(missions))
    parser.add_argument("--seed", type=int, default=202601)
    parser.add_argument("--algorithm", type=str, default=None, help="Override the coach's algorithm choice.")
    parser.add_argument("--episodes", type=int, default=None, help="Override the coach's episode count.")
    parser.add_argument("--state", type=str, default="coach_state.json", help="Where the coach keeps its memory.")
    parser.add_argument("--log_path", type=str, default=None, help="Optional JSONL per-episode log file.")
    parser.add_argument("--no_auto_stop", action="store_true", help="Always run every planned episode.")
    parser.add_argument("-v", "--verbose", action="store_true")
    args = parser.parse_args()

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    mission = missions[args.mission]
    coach = AdaptiveCoach(
        {level_id: m.layout for level_id, m in missions.items()},
        storage=JsonFileStorage(args.state),
        rng=DeterministicRng(args.seed),
    )
    plan = coach.choose_coach_plan(mission.level_id)
    algorithm = args.algorithm or plan.algorithm
    episodes = args.episodes or plan.episodes
    print(f"Mission {mission.level_id}: {mission.name} ({mission.layout.size}x{mission.layout.size})")
    print(f"Coach plan: {plan.algorithm.value}, {plan.episodes} episodes at {plan.speed.value} speed. {plan.reason}")

    trainer = MazeTrainer(log_path=args.log_path)
    config = TrainingConfig(
        algorithm=algorithm,
        episodes=episodes,
        seed=args.seed,
        speed=plan.speed,
        auto_stop=not args.no_auto_stop,
    )
    result = run_sync(trainer.train(mission.layout, config))
    if result is None:
        print("Run was canceled.")
        return

    steps = avg_steps_on_success(result.metrics)
    print(
        f"Trained {len(result.metrics)} episodes: success={success_rate(result.metrics):.1f}% "
        f"avg_steps_on_success={'n/a' if steps is None else f'{steps:.1f}'} "
        f"explore_rate={result.report.explore_rate:.2f} bump_rate={result.report.bump_rate:.2f}"
    )
    if result.early_stopped:
        print(result.stop_message)

    evaluation = run_sync(trainer.evaluate_greedy_policy(mission.layout, result.agent))
    if evaluation is not None:
        print(f"Greedy policy: {evaluation.success_count}/{evaluation.episodes} successful evaluation runs.")

    insight = coach.record_mission_run(mission.level_id, result.report)
    print(f"Status: {insight.status.value} (mastery {insight.mastery_percent}%)")
    print(insight.summary_line)
    print(insight.coach_tip)
    print(f"Next: {insight.plan.algorithm.value} for {insight.plan.episodes} episodes. {insight.next_step}")


if __name__ == "__main__":
    main()
