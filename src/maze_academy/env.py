from __future__ import annotations

from dataclasses import dataclass, replace
from enum import IntEnum
from typing import Optional

from .world import Direction, MazeLayout, initial_direction


class Action(IntEnum):
    FORWARD = 0
    LEFT = 1
    RIGHT = 2


ALL_ACTIONS = (Action.FORWARD, Action.LEFT, Action.RIGHT)
NUM_ACTIONS = len(ALL_ACTIONS)

ACTION_NAMES = {
    Action.FORWARD: "forward",
    Action.LEFT: "left",
    Action.RIGHT: "right",
}


@dataclass
class RewardConfig:
    step_penalty: float = -0.01
    wall_bump_penalty: float = -0.05
    goal_reward: float = 1.0
    max_steps_9: int = 120
    max_steps_11: int = 180

    def max_steps_for(self, size: int) -> int:
        return self.max_steps_9 if size == 9 else self.max_steps_11


@dataclass(frozen=True)
class EnvState:
    row: int
    col: int
    dir: Direction


@dataclass(frozen=True)
class Observation:
    row: int
    col: int
    dir: Direction
    front_blocked: bool
    left_blocked: bool
    right_blocked: bool
    at_goal: bool


@dataclass(frozen=True)
class StepResult:
    prev_state: EnvState
    state: EnvState
    action: Action
    reward: float
    done: bool
    success: bool
    bump: bool
    observation: Observation
    step_count: int
    episode_return: float
    max_steps_reached: bool


def state_to_key(ob: Observation) -> str:
    """Canonical value-table key: ``row,col,dir,front,left,right`` with 0/1 flags."""
    return (
        f"{ob.row},{ob.col},{int(ob.dir)},"
        f"{int(ob.front_blocked)},{int(ob.left_blocked)},{int(ob.right_blocked)}"
    )


class MazeEnv:
    """Single-agent turn-and-move maze. Pure state machine over a fixed layout."""

    def __init__(self, layout: MazeLayout, rewards: Optional[RewardConfig] = None):
        self.layout = layout
        self.rewards = rewards or RewardConfig()
        self.max_steps = self.rewards.max_steps_for(layout.size)
        self.start_dir = initial_direction(layout)
        self.state = EnvState(layout.start.row, layout.start.col, self.start_dir)
        self.step_count = 0
        self.episode_return = 0.0

    def reset(self) -> Observation:
        self.state = EnvState(self.layout.start.row, self.layout.start.col, self.start_dir)
        self.step_count = 0
        self.episode_return = 0.0
        return self._observe(self.state)

    def is_blocked(self, row: int, col: int) -> bool:
        return self.layout.is_wall(row, col)

    def step(self, action: Action) -> StepResult:
        action = Action(action)
        prev_state = self.state
        next_state = prev_state
        bump = False

        if action == Action.LEFT:
            next_state = replace(prev_state, dir=prev_state.dir.turn_left())
        elif action == Action.RIGHT:
            next_state = replace(prev_state, dir=prev_state.dir.turn_right())
        else:
            dr, dc = prev_state.dir.forward_delta
            nr, nc = prev_state.row + dr, prev_state.col + dc
            if self.is_blocked(nr, nc):
                bump = True
            else:
                next_state = replace(prev_state, row=nr, col=nc)

        self.state = next_state
        self.step_count += 1
        observation = self._observe(next_state)

        reward = self.rewards.step_penalty
        if bump:
            reward += self.rewards.wall_bump_penalty

        done = False
        success = False
        if observation.at_goal:
            reward += self.rewards.goal_reward
            done = True
            success = True
        if self.step_count >= self.max_steps:
            done = True

        self.episode_return += reward
        return StepResult(
            prev_state=prev_state,
            state=next_state,
            action=action,
            reward=reward,
            done=done,
            success=success,
            bump=bump,
            observation=observation,
            step_count=self.step_count,
            episode_return=self.episode_return,
            max_steps_reached=done and not success and self.step_count >= self.max_steps,
        )

    def observation(self) -> Observation:
        """Sensed walls for the current state; does not mutate the environment."""
        return self._observe(self.state)

    def _observe(self, state: EnvState) -> Observation:
        def blocked(direction: Direction) -> bool:
            dr, dc = direction.forward_delta
            return self.is_blocked(state.row + dr, state.col + dc)

        return Observation(
            row=state.row,
            col=state.col,
            dir=state.dir,
            front_blocked=blocked(state.dir),
            left_blocked=blocked(state.dir.turn_left()),
            right_blocked=blocked(state.dir.turn_right()),
            at_goal=(state.row, state.col) == (self.layout.goal.row, self.layout.goal.col),
        )
