from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from enum import Enum
from typing import Dict, Iterator, List, Optional, Sequence, Tuple, Type, Union

import numpy as np

from .env import ALL_ACTIONS, NUM_ACTIONS, Action
from .rng import DOUBLE_Q_SALT, DYNA_Q_SALT, DeterministicRng


class Algorithm(str, Enum):
    RANDOM = "Random"
    Q_LEARNING = "Q-learning"
    SARSA = "SARSA"
    EXPECTED_SARSA = "Expected SARSA"
    DOUBLE_Q_LEARNING = "Double Q-learning"
    DYNA_Q = "Dyna-Q"
    PPO_TABULAR = "PPO (Tabular)"

    @classmethod
    def parse(cls, value: Union[str, "Algorithm"]) -> "Algorithm":
        """Accept an ``Algorithm``, its display name or its enum name."""
        if isinstance(value, Algorithm):
            return value
        text = str(value).strip()
        for algorithm in cls:
            if text == algorithm.value or text.upper() == algorithm.name:
                return algorithm
        raise ValueError(f"Unknown algorithm {value!r}; expected one of {[a.value for a in cls]}")


@dataclass
class AgentParams:
    alpha: float = 0.2
    gamma: float = 0.95
    epsilon_start: float = 0.3
    epsilon_end: float = 0.05


@dataclass(frozen=True)
class ActionDecision:
    action: Action
    explored: bool


@dataclass(frozen=True)
class Transition:
    state_key: str
    action: Action
    reward: float
    next_state_key: str
    done: bool
    next_action: Optional[Action] = None


class QTable:
    """State key -> 3-vector of action values, created as zeros on first access."""

    def __init__(self, width: int = NUM_ACTIONS):
        self.width = width
        self._values: Dict[str, np.ndarray] = {}

    def ensure(self, key: str) -> np.ndarray:
        values = self._values.get(key)
        if values is None:
            values = np.zeros(self.width, dtype=np.float64)
            self._values[key] = values
        return values

    def clear(self) -> None:
        self._values = {}

    def keys(self) -> List[str]:
        return list(self._values.keys())

    def items(self) -> Iterator[Tuple[str, np.ndarray]]:
        return iter(self._values.items())

    def __contains__(self, key: object) -> bool:
        return key in self._values

    def __len__(self) -> int:
        return len(self._values)


def argmax(values: Sequence[float]) -> Action:
    """Index of the first maximum; ties resolve to the lowest action."""
    return Action(int(np.argmax(np.asarray(values))))


def epsilon_linear(episode_index: int, total_episodes: int, epsilon_start: float, epsilon_end: float) -> float:
    if total_episodes <= 1:
        return epsilon_end
    t = min(1.0, max(0.0, episode_index / float(total_episodes - 1)))
    return epsilon_start + t * (epsilon_end - epsilon_start)


def softmax(values: np.ndarray) -> np.ndarray:
    values = np.asarray(values, dtype=np.float64)
    exps = np.exp(values - np.max(values))
    denom = float(exps.sum())
    if denom <= 0 or not np.isfinite(denom):
        return np.full(values.shape, 1.0 / len(values))
    return exps / denom


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


class Agent(ABC):
    """Common contract for every tabular learner driven by the episode runner."""

    algorithm: Algorithm
    default_params = AgentParams()

    def __init__(self, params: Optional[AgentParams] = None, **overrides: float):
        self.params = replace(params or self.default_params, **overrides)
        self._eps = self.params.epsilon_start

    def start_trial(self, seed: int) -> None:
        """Forget everything learned; called once per trial."""

    def start_episode(self, episode_index: int, total_episodes: int) -> None:
        self._eps = epsilon_linear(
            episode_index, total_episodes, self.params.epsilon_start, self.params.epsilon_end
        )

    def select_action(self, state_key: str, rng: DeterministicRng) -> ActionDecision:
        explore = rng.next() < self._eps
        if explore:
            return ActionDecision(action=rng.pick(ALL_ACTIONS), explored=True)
        return ActionDecision(action=self.greedy_action(state_key), explored=False)

    @abstractmethod
    def update(self, transition: Transition) -> None:
        raise NotImplementedError

    def epsilon(self) -> float:
        return self._eps

    @abstractmethod
    def q_values(self, state_key: str) -> np.ndarray:
        raise NotImplementedError

    def greedy_action(self, state_key: str) -> Action:
        return argmax(self.q_values(state_key))


class RandomAgent(Agent):
    """Control baseline: uniform actions, no learning."""

    algorithm = Algorithm.RANDOM

    def select_action(self, state_key: str, rng: DeterministicRng) -> ActionDecision:
        return ActionDecision(action=rng.pick(ALL_ACTIONS), explored=True)

    def update(self, transition: Transition) -> None:
        return

    def epsilon(self) -> float:
        return 1.0

    def q_values(self, state_key: str) -> np.ndarray:
        return np.zeros(NUM_ACTIONS, dtype=np.float64)

    def greedy_action(self, state_key: str) -> Action:
        return Action.FORWARD


class TabularQAgent(Agent):
    """Single Q-table learner; subclasses supply the bootstrap target."""

    def __init__(self, params: Optional[AgentParams] = None, **overrides: float):
        super().__init__(params, **overrides)
        self.q = QTable()

    def start_trial(self, seed: int) -> None:
        self.q.clear()

    def select_action(self, state_key: str, rng: DeterministicRng) -> ActionDecision:
        self.q.ensure(state_key)
        return super().select_action(state_key, rng)

    def update(self, transition: Transition) -> None:
        q_s = self.q.ensure(transition.state_key)
        q_next = self.q.ensure(transition.next_state_key)
        bootstrap = 0.0 if transition.done else self.params.gamma * self._next_value(q_next, transition)
        target = transition.reward + bootstrap
        a = int(transition.action)
        q_s[a] = q_s[a] + self.params.alpha * (target - q_s[a])

    @abstractmethod
    def _next_value(self, q_next: np.ndarray, transition: Transition) -> float:
        raise NotImplementedError

    def q_values(self, state_key: str) -> np.ndarray:
        return self.q.ensure(state_key).copy()

    def greedy_action(self, state_key: str) -> Action:
        return argmax(self.q.ensure(state_key))


class QLearningAgent(TabularQAgent):
    algorithm = Algorithm.Q_LEARNING

    def _next_value(self, q_next: np.ndarray, transition: Transition) -> float:
        return float(np.max(q_next))


class SarsaAgent(TabularQAgent):
    algorithm = Algorithm.SARSA

    def _next_value(self, q_next: np.ndarray, transition: Transition) -> float:
        next_action = transition.next_action
        if next_action is None:
            next_action = argmax(q_next)
        return float(q_next[int(next_action)])


class ExpectedSarsaAgent(TabularQAgent):
    """Bootstraps on the expected next value under the current epsilon-greedy policy."""

    algorithm = Algorithm.EXPECTED_SARSA

    def _next_value(self, q_next: np.ndarray, transition: Transition) -> float:
        probs = np.full(NUM_ACTIONS, self._eps / NUM_ACTIONS)
        probs[int(argmax(q_next))] += 1.0 - self._eps
        return float(np.dot(probs, q_next))


class DoubleQLearningAgent(Agent):
    """Two tables; a seeded coin picks which one learns, the other evaluates."""

    algorithm = Algorithm.DOUBLE_Q_LEARNING

    def __init__(self, params: Optional[AgentParams] = None, **overrides: float):
        super().__init__(params, **overrides)
        self.q_a = QTable()
        self.q_b = QTable()
        self._coin = DeterministicRng.derive(0, DOUBLE_Q_SALT)

    def start_trial(self, seed: int) -> None:
        self.q_a.clear()
        self.q_b.clear()
        self._coin = DeterministicRng.derive(seed, DOUBLE_Q_SALT)

    def update(self, transition: Transition) -> None:
        if self._coin.next() < 0.5:
            self._update_table(self.q_a, self.q_b, transition)
        else:
            self._update_table(self.q_b, self.q_a, transition)

    def _update_table(self, primary: QTable, other: QTable, transition: Transition) -> None:
        q_primary = primary.ensure(transition.state_key)
        next_primary = primary.ensure(transition.next_state_key)
        next_other = other.ensure(transition.next_state_key)
        best_next = int(argmax(next_primary))
        estimate = 0.0 if transition.done else self.params.gamma * float(next_other[best_next])
        target = transition.reward + estimate
        a = int(transition.action)
        q_primary[a] = q_primary[a] + self.params.alpha * (target - q_primary[a])

    def q_values(self, state_key: str) -> np.ndarray:
        return (self.q_a.ensure(state_key) + self.q_b.ensure(state_key)) / 2.0

    def greedy_action(self, state_key: str) -> Action:
        return argmax(self.q_a.ensure(state_key) + self.q_b.ensure(state_key))


@dataclass(frozen=True)
class ModelTransition:
    next_state_key: str
    reward: float
    done: bool


class DynaQAgent(QLearningAgent):
    """Q-learning plus replay of a deterministic last-seen transition model."""

    algorithm = Algorithm.DYNA_Q
    default_params = AgentParams(epsilon_start=0.28, epsilon_end=0.03)
    PLANNING_STEPS = 8

    def __init__(
        self,
        params: Optional[AgentParams] = None,
        planning_steps: Optional[int] = None,
        **overrides: float,
    ):
        super().__init__(params, **overrides)
        self.planning_steps = self.PLANNING_STEPS if planning_steps is None else int(planning_steps)
        self.model: Dict[Tuple[str, Action], ModelTransition] = {}
        self._model_keys: List[Tuple[str, Action]] = []
        self._rand = DeterministicRng.derive(0, DYNA_Q_SALT)

    def start_trial(self, seed: int) -> None:
        super().start_trial(seed)
        self.model = {}
        self._model_keys = []
        self._rand = DeterministicRng.derive(seed, DYNA_Q_SALT)

    def update(self, transition: Transition) -> None:
        super().update(transition)
        self._remember(transition)
        for _ in range(self.planning_steps):
            if not self._model_keys:
                break
            state_key, action = self._rand.pick(self._model_keys)
            sample = self.model[(state_key, action)]
            super().update(
                Transition(
                    state_key=state_key,
                    action=action,
                    reward=sample.reward,
                    next_state_key=sample.next_state_key,
                    done=sample.done,
                )
            )

    def _remember(self, transition: Transition) -> None:
        key = (transition.state_key, Action(transition.action))
        if key not in self.model:
            self._model_keys.append(key)
        self.model[key] = ModelTransition(
            next_state_key=transition.next_state_key,
            reward=transition.reward,
            done=transition.done,
        )


class TabularPpoAgent(Agent):
    """Actor-critic with a PPO-style clipped step on a per-state logits table.

    The critic is a plain Q-table trained with the Q-learning target. Its TD
    error is the advantage signal for the actor. Each actor step is clipped so
    the chosen action's probability ratio stays within ``1 +/- CLIP``, pulled
    towards the critic's softmax and towards uniform, bounded per logit, then
    recentred to zero mean.
    """

    algorithm = Algorithm.PPO_TABULAR

    CLIP = 0.2
    POLICY_ALPHA = 0.18
    DISTILL_ALPHA = 0.12
    DISTILL_TEMP = 0.35
    ENTROPY_ALPHA = 0.03
    MAX_LOGIT_STEP = 0.45
    ADVANTAGE_SCALE = 2.5
    ADVANTAGE_LIMIT = 1.5
    LOG_PROB_WEIGHT = 0.02
    EPS_SCHEDULE_CAP = 1200

    def __init__(self, params: Optional[AgentParams] = None, **overrides: float):
        super().__init__(params, **overrides)
        self.policy = QTable()
        self.q = QTable()

    def start_trial(self, seed: int) -> None:
        self.policy.clear()
        self.q.clear()

    def start_episode(self, episode_index: int, total_episodes: int) -> None:
        horizon = max(2, min(total_episodes, self.EPS_SCHEDULE_CAP))
        capped = min(episode_index, horizon - 1)
        self._eps = epsilon_linear(capped, horizon, self.params.epsilon_start, self.params.epsilon_end)

    def select_action(self, state_key: str, rng: DeterministicRng) -> ActionDecision:
        explore = rng.next() < self._eps
        if explore:
            return ActionDecision(action=rng.pick(ALL_ACTIONS), explored=True)
        # Critic values lead; the actor only nudges while it is still forming.
        q_values = self.q.ensure(state_key)
        probs = softmax(self.policy.ensure(state_key))
        blended = q_values + self.LOG_PROB_WEIGHT * np.log(np.maximum(1e-6, probs))
        return ActionDecision(action=argmax(blended), explored=False)

    def update(self, transition: Transition) -> None:
        a = int(transition.action)

        q_state = self.q.ensure(transition.state_key)
        prev_q = float(q_state[a])
        q_next = self.q.ensure(transition.next_state_key)
        best_next = float(np.max(q_next))
        td_target = transition.reward + (0.0 if transition.done else self.params.gamma * best_next)
        td_error = td_target - prev_q
        q_state[a] = prev_q + self.params.alpha * td_error

        logits = self.policy.ensure(transition.state_key)
        probs = softmax(logits)
        gradients = -probs
        gradients[a] += 1.0
        old_prob = max(float(probs[a]), 1e-6)

        advantage = _clamp(td_error * self.ADVANTAGE_SCALE, -self.ADVANTAGE_LIMIT, self.ADVANTAGE_LIMIT)
        tentative = logits + self.POLICY_ALPHA * advantage * gradients
        tentative_prob = max(float(softmax(tentative)[a]), 1e-6)
        ratio = tentative_prob / old_prob
        scale = 1.0
        if advantage >= 0 and ratio > 1 + self.CLIP:
            scale = (1 + self.CLIP) / ratio
        elif advantage < 0 and ratio < 1 - self.CLIP:
            scale = (1 - self.CLIP) / ratio
        effective_advantage = advantage * scale

        critic_policy = softmax(q_state / self.DISTILL_TEMP)
        ppo_step = self.POLICY_ALPHA * effective_advantage * gradients
        distill_step = self.DISTILL_ALPHA * (critic_policy - probs)
        entropy_step = self.ENTROPY_ALPHA * (1.0 / len(logits) - probs)
        logits += np.clip(ppo_step + distill_step + entropy_step, -self.MAX_LOGIT_STEP, self.MAX_LOGIT_STEP)

        logits -= logits.mean()

    def policy_probs(self, state_key: str) -> np.ndarray:
        return softmax(self.policy.ensure(state_key))

    def q_values(self, state_key: str) -> np.ndarray:
        return self.q.ensure(state_key).copy()

    def greedy_action(self, state_key: str) -> Action:
        return argmax(self.q.ensure(state_key))


AGENT_TYPES: Dict[Algorithm, Type[Agent]] = {
    Algorithm.RANDOM: RandomAgent,
    Algorithm.Q_LEARNING: QLearningAgent,
    Algorithm.SARSA: SarsaAgent,
    Algorithm.EXPECTED_SARSA: ExpectedSarsaAgent,
    Algorithm.DOUBLE_Q_LEARNING: DoubleQLearningAgent,
    Algorithm.DYNA_Q: DynaQAgent,
    Algorithm.PPO_TABULAR: TabularPpoAgent,
}


def make_agent(algorithm: Union[str, Algorithm], params: Optional[AgentParams] = None, **overrides) -> Agent:
    """Build a fresh agent for ``algorithm`` (display name or enum)."""
    return AGENT_TYPES[Algorithm.parse(algorithm)](params, **overrides)
