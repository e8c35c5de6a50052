from __future__ import annotations

import asyncio
import inspect
import json
import logging
import math
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Tuple, TypeVar, Union

import numpy as np

from .agents import Agent, AgentParams, Algorithm, Transition, make_agent
from .env import ALL_ACTIONS, MazeEnv, RewardConfig, StepResult, state_to_key
from .metrics import (
    EpisodeMetrics,
    ExperimentSummaryRow,
    rolling_avg_return,
    rolling_success,
    summarize_experiment,
)
from .rng import DeterministicRng
from .world import MazeLayout

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RunSpeed(str, Enum):
    SLOW = "slow"
    NORMAL = "normal"
    FAST = "fast"
    TURBO = "turbo"

    @property
    def step_delay(self) -> float:
        """Per-step pacing delay in seconds used when a run is paced for display."""
        return {
            RunSpeed.SLOW: 0.26,
            RunSpeed.NORMAL: 0.13,
            RunSpeed.FAST: 0.055,
            RunSpeed.TURBO: 0.0,
        }[self]


class RunController:
    """Owns the active-run token and the pause flag.

    Only one run is active at a time: ``begin()`` bumps the token, so any run
    holding an older token stops at its next gate check and returns ``None``.
    """

    def __init__(self, poll_interval: float = 0.065):
        self.poll_interval = poll_interval
        self.active_token = 0
        self.paused = False

    def begin(self) -> int:
        self.active_token += 1
        self.paused = False
        return self.active_token

    def cancel(self) -> None:
        self.active_token += 1
        self.paused = False

    def pause(self) -> None:
        self.paused = True

    def resume(self) -> None:
        self.paused = False

    def toggle_pause(self) -> bool:
        self.paused = not self.paused
        return self.paused

    def is_active(self, token: int) -> bool:
        return token == self.active_token

    async def gate(self, token: int) -> bool:
        """Block while paused; False once ``token`` has been superseded."""
        while self.paused and token == self.active_token:
            await asyncio.sleep(self.poll_interval)
        return token == self.active_token


@dataclass(frozen=True)
class StepInfo:
    step: StepResult
    explored: bool
    state_key: str
    q_values: np.ndarray
    epsilon: float


StepObserver = Callable[[StepInfo], Union[None, Awaitable[None]]]


async def _maybe_await(result: object) -> None:
    if inspect.isawaitable(result):
        await result


class EpisodeRunner:
    """Couples one environment and one agent for a single episode."""

    def __init__(self, controller: Optional[RunController] = None):
        self.controller = controller or RunController()

    async def run_episode(
        self,
        env: MazeEnv,
        agent: Agent,
        *,
        episode_index: int,
        total_episodes: int,
        rng_seed: int,
        token: Optional[int] = None,
        on_step: Optional[StepObserver] = None,
    ) -> Optional[EpisodeMetrics]:
        """Run one episode; ``None`` means the run was superseded."""
        if token is None:
            token = self.controller.active_token
        rng = DeterministicRng(rng_seed)

        agent.start_episode(episode_index, total_episodes)
        first_obs = env.reset()
        state_key = state_to_key(first_obs)
        decision = agent.select_action(state_key, rng)

        for _ in range(env.max_steps):
            if not await self.controller.gate(token):
                return None

            step = env.step(decision.action)
            next_key = state_to_key(step.observation)
            next_decision = None if step.done else agent.select_action(next_key, rng)

            agent.update(
                Transition(
                    state_key=state_key,
                    action=decision.action,
                    reward=step.reward,
                    next_state_key=next_key,
                    done=step.done,
                    next_action=None if next_decision is None else next_decision.action,
                )
            )

            if on_step is not None:
                await _maybe_await(
                    on_step(
                        StepInfo(
                            step=step,
                            explored=decision.explored,
                            state_key=state_key,
                            q_values=agent.q_values(state_key),
                            epsilon=agent.epsilon(),
                        )
                    )
                )

            if step.done:
                return EpisodeMetrics(
                    episode=episode_index + 1,
                    steps=step.step_count,
                    success=step.success,
                    episode_return=step.episode_return,
                )

            state_key = next_key
            decision = next_decision

        return EpisodeMetrics(
            episode=episode_index + 1,
            steps=env.step_count,
            success=False,
            episode_return=env.episode_return,
        )


@dataclass(frozen=True)
class MissionRunReport:
    """What the coach learns from after a training run."""

    algorithm: Algorithm
    episodes: int
    speed: RunSpeed
    metrics: Tuple[EpisodeMetrics, ...]
    explore_rate: float
    bump_rate: float


@dataclass
class TrainingConfig:
    algorithm: Union[str, Algorithm] = Algorithm.Q_LEARNING
    episodes: int = 60
    seed: int = 202601
    speed: RunSpeed = RunSpeed.NORMAL
    params: Optional[AgentParams] = None
    auto_stop: bool = True
    pace: bool = False  # sleep speed.step_delay after every step
    plateau_window: int = 10
    min_success_gain: float = 0.5  # percentage points
    min_return_gain: float = 0.01


@dataclass
class TrainingResult:
    agent: Agent
    metrics: List[EpisodeMetrics]
    report: MissionRunReport
    early_stopped: bool = False
    stop_message: str = ""


@dataclass
class ExperimentConfig:
    algorithms: Sequence[Union[str, Algorithm]] = (
        Algorithm.RANDOM,
        Algorithm.Q_LEARNING,
        Algorithm.SARSA,
    )
    trials: int = 3
    episodes: int = 50
    seed_base: int = 8800
    params: Optional[AgentParams] = None


@dataclass(frozen=True)
class ExperimentRow:
    algorithm: str
    maze_name: str
    trial: int
    seed: int
    episode: int
    steps: int
    success: int
    episode_return: float


@dataclass
class ExperimentResult:
    metrics_by_algorithm: Dict[str, List[List[EpisodeMetrics]]]
    rows: List[ExperimentRow] = field(default_factory=list)
    summary: List[ExperimentSummaryRow] = field(default_factory=list)


@dataclass(frozen=True)
class PolicyEvaluation:
    episodes: int
    success_rate: float
    avg_steps_on_success: Optional[float]
    avg_steps_all: float
    success_count: int


@dataclass
class _RunCounters:
    decisions: int = 0
    explored: int = 0
    bumps: int = 0

    def rate(self, count: int) -> float:
        return 0.0 if self.decisions == 0 else count / float(self.decisions)


class MazeTrainer:
    """Training, comparison and evaluation loops over the episode runner.

    Every loop grabs a fresh token from the shared controller, so starting one
    quietly supersedes whatever was running before.
    """

    def __init__(
        self,
        controller: Optional[RunController] = None,
        rewards: Optional[RewardConfig] = None,
        log_path: Optional[str] = None,
    ) -> None:
        self.controller = controller or RunController()
        self.runner = EpisodeRunner(self.controller)
        self.rewards = rewards or RewardConfig()
        self.log_path = log_path

    async def train(
        self,
        layout: MazeLayout,
        config: Optional[TrainingConfig] = None,
        *,
        on_step: Optional[StepObserver] = None,
        on_episode: Optional[Callable[[EpisodeMetrics], None]] = None,
    ) -> Optional[TrainingResult]:
        """Train one agent on one maze with an optional plateau auto-stop."""
        config = config or TrainingConfig()
        if config.episodes <= 0:
            raise ValueError("episodes must be positive")
        algorithm = Algorithm.parse(config.algorithm)
        token = self.controller.begin()

        agent = make_agent(algorithm, config.params)
        env = MazeEnv(layout, self.rewards)
        agent.start_trial(config.seed)
        counters = _RunCounters()
        delay = config.speed.step_delay if config.pace else 0.0

        async def observe(info: StepInfo) -> None:
            counters.decisions += 1
            if info.explored:
                counters.explored += 1
            if info.step.bump:
                counters.bumps += 1
            if delay > 0:
                await asyncio.sleep(delay)
            if on_step is not None:
                await _maybe_await(on_step(info))

        episodes = config.episodes
        auto_stop = config.auto_stop and episodes >= 30
        auto_stop_min = min(episodes, max(18, config.plateau_window * 2))
        patience = max(8, int(math.floor(episodes * 0.24)))
        best_success = -math.inf
        best_return = -math.inf
        stagnant = 0
        early_stopped = False
        stop_message = ""
        completed: List[EpisodeMetrics] = []

        for ep in range(episodes):
            metrics = await self.runner.run_episode(
                env,
                agent,
                token=token,
                episode_index=ep,
                total_episodes=episodes,
                rng_seed=config.seed + ep,
                on_step=observe,
            )
            if metrics is None:
                logger.debug("Training run %s superseded at episode %d", token, ep + 1)
                return None
            completed.append(metrics)
            self._log({"algorithm": algorithm.value, "seed": config.seed, **metrics.to_dict()})
            if on_episode is not None:
                on_episode(metrics)
            if not await self.controller.gate(token):
                return None

            success_now = rolling_success(completed, config.plateau_window)
            return_now = rolling_avg_return(completed, config.plateau_window)
            improved = False
            if success_now > best_success + config.min_success_gain:
                best_success = success_now
                improved = True
            if return_now > best_return + config.min_return_gain:
                best_return = return_now
                improved = True
            stagnant = 0 if improved else stagnant + 1

            if auto_stop and len(completed) >= auto_stop_min and stagnant >= patience:
                early_stopped = True
                stop_message = (
                    f"Auto-stop: no clear improvement for {stagnant} episodes "
                    f"({len(completed)}/{episodes})."
                )
                logger.info(stop_message)
                break

        report = MissionRunReport(
            algorithm=algorithm,
            episodes=len(completed),
            speed=config.speed,
            metrics=tuple(completed),
            explore_rate=counters.rate(counters.explored),
            bump_rate=counters.rate(counters.bumps),
        )
        return TrainingResult(
            agent=agent,
            metrics=completed,
            report=report,
            early_stopped=early_stopped,
            stop_message=stop_message,
        )

    async def run_experiment(
        self,
        layout: MazeLayout,
        config: Optional[ExperimentConfig] = None,
    ) -> Optional[ExperimentResult]:
        """Fair side-by-side comparison: same maze, rewards, trials and episodes."""
        config = config or ExperimentConfig()
        if config.trials <= 0 or config.episodes <= 0:
            raise ValueError("trials and episodes must be positive")
        algorithms = [Algorithm.parse(a) for a in config.algorithms]
        if not algorithms:
            raise ValueError("at least one algorithm is required")
        token = self.controller.begin()

        seed_offsets = {algorithm: (idx + 1) * 100_003 for idx, algorithm in enumerate(algorithms)}
        result = ExperimentResult(metrics_by_algorithm={a.value: [] for a in algorithms})

        for trial in range(1, config.trials + 1):
            seed = config.seed_base + trial
            contexts = []
            for algorithm in algorithms:
                algorithm_seed = seed + seed_offsets[algorithm]
                agent = make_agent(algorithm, config.params)
                agent.start_trial(algorithm_seed)
                trial_metrics: List[EpisodeMetrics] = []
                result.metrics_by_algorithm[algorithm.value].append(trial_metrics)
                contexts.append((algorithm, agent, MazeEnv(layout, self.rewards), algorithm_seed, trial_metrics))

            for ep in range(config.episodes):
                if not await self.controller.gate(token):
                    return None
                for algorithm, agent, env, algorithm_seed, trial_metrics in contexts:
                    metrics = await self.runner.run_episode(
                        env,
                        agent,
                        token=token,
                        episode_index=ep,
                        total_episodes=config.episodes,
                        rng_seed=algorithm_seed + ep * 31,
                    )
                    if metrics is None:
                        return None
                    trial_metrics.append(metrics)
                    row = ExperimentRow(
                        algorithm=algorithm.value,
                        maze_name=layout.name,
                        trial=trial,
                        seed=algorithm_seed,
                        episode=ep + 1,
                        steps=metrics.steps,
                        success=1 if metrics.success else 0,
                        episode_return=round(metrics.episode_return, 4),
                    )
                    result.rows.append(row)
                    self._log(asdict(row))

        result.summary = summarize_experiment(
            layout.name, config.episodes, config.trials, result.metrics_by_algorithm
        )
        return result

    async def evaluate_greedy_policy(
        self,
        layout: MazeLayout,
        agent: Agent,
        episodes: int = 10,
        seed_base: int = 282601,
    ) -> Optional[PolicyEvaluation]:
        """Roll out the learned greedy policy without updating it."""
        token = self.controller.begin()
        env = MazeEnv(layout, self.rewards)
        success_count = 0
        total_steps = 0
        steps_on_success = 0

        for ep in range(episodes):
            if not await self.controller.gate(token):
                return None
            env.reset()
            rng = DeterministicRng(seed_base + ep * 97)
            for _ in range(env.max_steps):
                if not await self.controller.gate(token):
                    return None
                state_key = state_to_key(env.observation())
                q_values = agent.q_values(state_key)
                all_equal = float(np.max(q_values) - np.min(q_values)) < 1e-9
                action = rng.pick(ALL_ACTIONS) if all_equal else agent.greedy_action(state_key)
                step = env.step(action)
                if not step.done:
                    continue
                total_steps += step.step_count
                if step.success:
                    success_count += 1
                    steps_on_success += step.step_count
                break

        return PolicyEvaluation(
            episodes=episodes,
            success_rate=success_count / float(max(1, episodes)) * 100.0,
            avg_steps_on_success=None if success_count == 0 else steps_on_success / float(success_count),
            avg_steps_all=total_steps / float(max(1, episodes)),
            success_count=success_count,
        )

    def _log(self, payload: Dict[str, object]) -> None:
        if not self.log_path:
            return
        with open(self.log_path, "a", encoding="utf-8") as f:
            f.write(json.dumps(payload) + "\n")


def run_sync(awaitable: Awaitable[T]) -> T:
    """Drive one of the async loops to completion from synchronous code."""

    async def _wrap() -> T:
        return await awaitable

    return asyncio.run(_wrap())
