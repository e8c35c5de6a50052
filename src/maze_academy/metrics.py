from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Callable, Dict, List, Mapping, Optional, Sequence


@dataclass(frozen=True)
class EpisodeMetrics:
    episode: int
    steps: int
    success: bool
    episode_return: float

    def to_dict(self) -> Dict[str, object]:
        return asdict(self)


@dataclass(frozen=True)
class ExperimentSummaryRow:
    algorithm: str
    maze_name: str
    trials: int
    episodes: int
    avg_success_last10: float
    avg_steps_last10: float
    avg_return_last10: float
    avg_episodes_to_first_success: float


def avg(values: Sequence[float]) -> float:
    if len(values) == 0:
        return 0.0
    return float(sum(values)) / len(values)


def success_rate(metrics: Sequence[EpisodeMetrics]) -> float:
    """Percentage of successful episodes; 0 for an empty run."""
    if len(metrics) == 0:
        return 0.0
    wins = sum(1 for m in metrics if m.success)
    return wins / float(len(metrics)) * 100.0


def avg_steps_on_success(metrics: Sequence[EpisodeMetrics]) -> Optional[float]:
    wins = [m.steps for m in metrics if m.success]
    if not wins:
        return None
    return float(sum(wins)) / len(wins)


def improvement_window(n: int) -> int:
    return max(3, min(10, n // 2))


def improvement(metrics: Sequence[EpisodeMetrics]) -> float:
    """Trailing minus leading success rate, in percentage points."""
    if len(metrics) < 2:
        return 0.0
    window = improvement_window(len(metrics))
    first = success_rate(metrics[:window])
    last = success_rate(metrics[-window:])
    return last - first


def rolling_success(metrics: Sequence[EpisodeMetrics], window_size: int) -> float:
    return success_rate(metrics[max(0, len(metrics) - window_size):])


def rolling_avg_steps(metrics: Sequence[EpisodeMetrics], window_size: int) -> float:
    value = avg_steps_on_success(metrics[max(0, len(metrics) - window_size):])
    return 0.0 if value is None else value


def rolling_avg_return(metrics: Sequence[EpisodeMetrics], window_size: int) -> float:
    return avg([m.episode_return for m in metrics[max(0, len(metrics) - window_size):]])


def episodes_to_first_success(metrics: Sequence[EpisodeMetrics]) -> int:
    for idx, m in enumerate(metrics):
        if m.success:
            return idx + 1
    return len(metrics)


def aggregate_episode_means(
    trials: Sequence[Sequence[EpisodeMetrics]], pick: Callable[[EpisodeMetrics], float]
) -> List[float]:
    """Per-episode mean of ``pick`` across trials (trials must share a length)."""
    if len(trials) == 0:
        return []
    episodes = len(trials[0])
    totals = [0.0] * episodes
    for trial in trials:
        for i in range(episodes):
            totals[i] += pick(trial[i])
    return [t / len(trials) for t in totals]


def summarize_experiment(
    maze_name: str,
    episodes: int,
    trials: int,
    metrics_by_algorithm: Mapping[str, Sequence[Sequence[EpisodeMetrics]]],
) -> List[ExperimentSummaryRow]:
    rows: List[ExperimentSummaryRow] = []
    for algorithm, trials_data in metrics_by_algorithm.items():
        success_last10 = [rolling_success(t, 10) for t in trials_data]
        steps_last10 = [rolling_avg_steps(t, 10) for t in trials_data]
        return_last10 = [rolling_avg_return(t, 10) for t in trials_data]
        first_success = [episodes_to_first_success(t) for t in trials_data]
        rows.append(
            ExperimentSummaryRow(
                algorithm=str(algorithm),
                maze_name=maze_name,
                trials=trials,
                episodes=episodes,
                avg_success_last10=round(avg(success_last10), 3),
                avg_steps_last10=round(avg(steps_last10), 3),
                avg_return_last10=round(avg(return_last10), 3),
                avg_episodes_to_first_success=round(avg(first_success), 3),
            )
        )
    return rows
