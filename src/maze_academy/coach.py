"""Adaptive mission coach.

The coach is itself a small tabular Q-learner. Its state is the mission's
difficulty bucket crossed with how the learner did last time, its actions are
training presets (algorithm, speed, episode count), and its reward is the
learner's progress after running the suggested configuration. A lighter
bandit-style tracker picks which concept to quiz next.
"""

from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Mapping, Optional, Sequence

import numpy as np

from .agents import Algorithm
from .metrics import avg_steps_on_success, improvement, success_rate
from .questions import CHECK_IN_QUESTIONS, CONCEPT_LABELS, QuestionDef, find_question
from .rl import MissionRunReport, RunSpeed
from .rng import DeterministicRng
from .storage import CoachStorage, InMemoryStorage
from .world import MazeLayout, analyze_maze

logger = logging.getLogger(__name__)

DEFAULT_IDEAL_STEPS = 18


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def _number(value: object) -> float:
    """Finite float from a persisted value; anything else is a ValueError."""
    number = float(value)  # type: ignore[arg-type]
    if not math.isfinite(number):
        raise ValueError(f"non-finite number {value!r} in coach state")
    return number


class MissionStatus(str, Enum):
    NEW = "new"
    PRACTICING = "practicing"
    IMPROVING = "improving"
    MASTERED = "mastered"


@dataclass(frozen=True)
class CoachPreset:
    id: int
    label: str
    algorithm: Algorithm
    speed: RunSpeed
    base_episodes: int
    level_bump: int
    reason: str


COACH_ACTIONS = (
    CoachPreset(0, "Careful Q-learning", Algorithm.Q_LEARNING, RunSpeed.SLOW, 45, 10,
                "Go step-by-step so you can see rewards teach the agent."),
    CoachPreset(1, "Standard Q-learning", Algorithm.Q_LEARNING, RunSpeed.NORMAL, 65, 12,
                "Run a balanced practice to improve success and keep it watchable."),
    CoachPreset(2, "Long Q-learning", Algorithm.Q_LEARNING, RunSpeed.FAST, 100, 15,
                "Give the AI many tries so it can discover better paths."),
    CoachPreset(3, "Safe SARSA", Algorithm.SARSA, RunSpeed.NORMAL, 75, 14,
                "Use SARSA to practice safer turns and fewer wall bumps."),
    CoachPreset(4, "Deep SARSA", Algorithm.SARSA, RunSpeed.SLOW, 110, 18,
                "Slow down and run longer to build stable, careful behavior."),
    CoachPreset(5, "Control Random", Algorithm.RANDOM, RunSpeed.NORMAL, 50, 8,
                "Use Random as a control group baseline to compare learning against."),
)


@dataclass
class MissionCoachRecord:
    attempts: int = 0
    last_algorithm: Algorithm = Algorithm.Q_LEARNING
    last_episodes: int = 45
    last_speed: RunSpeed = RunSpeed.SLOW
    last_success_rate: float = 0.0
    best_success_rate: float = 0.0
    last_avg_steps_on_success: Optional[float] = None
    best_avg_steps_on_success: Optional[float] = None
    last_explore_rate: float = 0.0
    last_bump_rate: float = 0.0
    improvement: float = 0.0
    mastery_percent: float = 0.0

    def copy(self) -> "MissionCoachRecord":
        return MissionCoachRecord(**self.__dict__)

    def to_dict(self) -> Dict[str, object]:
        return {
            "attempts": self.attempts,
            "lastAlgorithm": self.last_algorithm.value,
            "lastEpisodes": self.last_episodes,
            "lastSpeed": self.last_speed.value,
            "lastSuccessRate": self.last_success_rate,
            "bestSuccessRate": self.best_success_rate,
            "lastAvgStepsOnSuccess": self.last_avg_steps_on_success,
            "bestAvgStepsOnSuccess": self.best_avg_steps_on_success,
            "lastExploreRate": self.last_explore_rate,
            "lastBumpRate": self.last_bump_rate,
            "improvement": self.improvement,
            "masteryPercent": self.mastery_percent,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> "MissionCoachRecord":
        if not isinstance(data, Mapping):
            raise TypeError("mission record must be an object")
        default = cls()

        def optional_float(key: str) -> Optional[float]:
            value = data.get(key)
            return None if value is None else _number(value)

        return cls(
            attempts=int(_number(data.get("attempts", default.attempts))),
            last_algorithm=Algorithm.parse(data.get("lastAlgorithm", default.last_algorithm)),  # type: ignore[arg-type]
            last_episodes=int(_number(data.get("lastEpisodes", default.last_episodes))),
            last_speed=RunSpeed(data.get("lastSpeed", default.last_speed.value)),
            last_success_rate=_number(data.get("lastSuccessRate", 0.0)),
            best_success_rate=_number(data.get("bestSuccessRate", 0.0)),
            last_avg_steps_on_success=optional_float("lastAvgStepsOnSuccess"),
            best_avg_steps_on_success=optional_float("bestAvgStepsOnSuccess"),
            last_explore_rate=_number(data.get("lastExploreRate", 0.0)),
            last_bump_rate=_number(data.get("lastBumpRate", 0.0)),
            improvement=_number(data.get("improvement", 0.0)),
            mastery_percent=_number(data.get("masteryPercent", 0.0)),
        )


@dataclass
class ConceptRecord:
    attempts: int = 0
    correct: int = 0
    streak: int = 0
    mastery_percent: int = 10
    q_value: float = 0.0

    def to_dict(self) -> Dict[str, object]:
        return {
            "attempts": self.attempts,
            "correct": self.correct,
            "streak": self.streak,
            "masteryPercent": self.mastery_percent,
            "qValue": self.q_value,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> "ConceptRecord":
        if not isinstance(data, Mapping):
            raise TypeError("concept record must be an object")
        return cls(
            attempts=int(_number(data.get("attempts", 0))),
            correct=int(_number(data.get("correct", 0))),
            streak=int(_number(data.get("streak", 0))),
            mastery_percent=int(_number(data.get("masteryPercent", 10))),
            q_value=_number(data.get("qValue", 0.0)),
        )


@dataclass
class CoachState:
    missions: Dict[str, MissionCoachRecord] = field(default_factory=dict)
    policy_q: Dict[str, List[float]] = field(default_factory=dict)
    concepts: Dict[str, ConceptRecord] = field(default_factory=dict)
    question_seen: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, object]:
        return {
            "missions": {k: v.to_dict() for k, v in self.missions.items()},
            "policyQ": {k: [float(x) for x in v] for k, v in self.policy_q.items()},
            "concepts": {k: v.to_dict() for k, v in self.concepts.items()},
            "questionSeen": dict(self.question_seen),
        }

    @classmethod
    def from_dict(cls, data: object) -> "CoachState":
        """Parse the persisted blob; sections that are not objects load empty."""
        if not isinstance(data, dict):
            raise ValueError("coach state must be a JSON object")

        def section(key: str) -> Dict[str, object]:
            value = data.get(key)
            return value if isinstance(value, dict) else {}

        return cls(
            missions={str(k): MissionCoachRecord.from_dict(v) for k, v in section("missions").items()},  # type: ignore[arg-type]
            policy_q={str(k): [_number(x) for x in v] for k, v in section("policyQ").items()},  # type: ignore[union-attr]
            concepts={str(k): ConceptRecord.from_dict(v) for k, v in section("concepts").items()},  # type: ignore[arg-type]
            question_seen={str(k): int(_number(v)) for k, v in section("questionSeen").items()},
        )


@dataclass(frozen=True)
class MissionCoachPlan:
    level_id: int
    algorithm: Algorithm
    episodes: int
    speed: RunSpeed
    reason: str


@dataclass(frozen=True)
class MissionCoachInsight:
    level_id: int
    status: MissionStatus
    mastery_percent: int
    has_history: bool
    coach_tip: str
    summary_line: str
    next_step: str
    plan: MissionCoachPlan


@dataclass(frozen=True)
class CheckInPrompt:
    question_id: str
    concept_id: str
    concept_label: str
    prompt: str
    options: Sequence[str]
    confidence_percent: int


@dataclass(frozen=True)
class CheckInResult:
    correct: bool
    message: str
    review: str
    concept_mastery_percent: int


@dataclass(frozen=True)
class ConceptMasterySummary:
    concept_id: str
    label: str
    mastery_percent: int


@dataclass(frozen=True)
class QuizQuestion:
    question_id: str
    concept_id: str
    concept_label: str
    prompt: str
    options: Sequence[str]
    review_tip: str


@dataclass(frozen=True)
class QuizSubmission:
    question_id: str
    chosen_index: int


@dataclass(frozen=True)
class QuizGrade:
    score: int
    total: int
    passed: bool
    message: str
    review_lines: List[str]


@dataclass(frozen=True)
class CoachStats:
    coach_episodes: int
    user_mastery_rewarded: int
    total_checks: int
    coach_brain_stability: float


class AdaptiveCoach:
    """Chooses the next training configuration and the next quiz concept."""

    ALPHA = 0.26
    GAMMA = 0.84
    EPSILON_START = 0.34
    EPSILON_DECAY = 0.03
    EPSILON_FLOOR = 0.08
    CONCEPT_EXPLORATION = 0.16
    CONCEPT_ALPHA = 0.28
    TARGET_EXPLORE_RATE = 0.28

    def __init__(
        self,
        levels: Mapping[int, MazeLayout],
        storage: Optional[CoachStorage] = None,
        rng: Optional[DeterministicRng] = None,
        ideal_steps: Optional[Mapping[int, int]] = None,
    ) -> None:
        self.levels = dict(levels)
        self.storage = storage if storage is not None else InMemoryStorage()
        self.rng = rng or DeterministicRng()
        self.ideal_steps_by_level: Dict[int, int] = {}
        for level_id, layout in self.levels.items():
            path = analyze_maze(layout).shortest_path_length
            self.ideal_steps_by_level[level_id] = path if path is not None else max(10, round(layout.size * 1.8))
        if ideal_steps:
            self.ideal_steps_by_level.update({int(k): int(v) for k, v in ideal_steps.items()})
        self.state = self._load()

    # Mission policy ---------------------------------------------------------
    def choose_coach_plan(self, level_id: int) -> MissionCoachPlan:
        record = self._get_or_create(level_id)
        state_key = self.state_key(level_id, record)
        action_id = self._select_action(state_key, record.attempts, allow_explore=True)
        plan = self._plan_for_action(level_id, action_id, record, self.status(level_id, record))
        self.save()
        return plan

    def record_mission_run(self, level_id: int, report: MissionRunReport) -> MissionCoachInsight:
        record = self._get_or_create(level_id)
        prev = record.copy()

        rate = success_rate(report.metrics)
        avg_steps = avg_steps_on_success(report.metrics)
        gain = improvement(report.metrics)
        next_mastery = self.compute_mastery(level_id, rate, avg_steps, gain, report.explore_rate)
        reward = self.compute_reward(prev, rate, avg_steps, gain, report.bump_rate, next_mastery)

        state_before = self.state_key(level_id, prev)
        action_id = self.action_from_report(report)

        record.attempts = prev.attempts + 1
        record.last_algorithm = Algorithm.parse(report.algorithm)
        record.last_episodes = report.episodes
        record.last_speed = RunSpeed(report.speed)
        record.last_success_rate = rate
        record.best_success_rate = max(prev.best_success_rate, rate)
        record.last_avg_steps_on_success = avg_steps
        if avg_steps is not None:
            if prev.best_avg_steps_on_success is None:
                record.best_avg_steps_on_success = avg_steps
            else:
                record.best_avg_steps_on_success = min(prev.best_avg_steps_on_success, avg_steps)
        record.last_explore_rate = report.explore_rate
        record.last_bump_rate = report.bump_rate
        record.improvement = gain
        if prev.attempts == 0:
            record.mastery_percent = next_mastery
        else:
            record.mastery_percent = round(prev.mastery_percent * 0.55 + next_mastery * 0.45)

        state_after = self.state_key(level_id, record)
        self._update_q(state_before, action_id, reward, state_after)
        logger.debug(
            "Coach update level=%s %s -[%d]-> %s reward=%.3f", level_id, state_before, action_id, state_after, reward
        )

        self.save()
        return self.get_mission_insight(level_id)

    def get_mission_insight(self, level_id: int) -> MissionCoachInsight:
        if level_id not in self.levels:
            fallback = self._default_plan(level_id)
            return MissionCoachInsight(
                level_id=level_id,
                status=MissionStatus.NEW,
                mastery_percent=0,
                has_history=False,
                coach_tip="Load a mission first.",
                summary_line="No mission data yet.",
                next_step=fallback.reason,
                plan=fallback,
            )

        record = self.state.missions.get(str(level_id))
        snapshot = record if record is not None else self._empty_record(level_id)
        has_history = snapshot.attempts > 0
        status = self.status(level_id, snapshot)
        greedy_action = self._select_action(self.state_key(level_id, snapshot), snapshot.attempts, allow_explore=False)
        plan = self._plan_for_action(level_id, greedy_action, snapshot, status)

        coach_tip = {
            MissionStatus.NEW: "Start a training run, then compare the results.",
            MissionStatus.PRACTICING: "Keep practicing. More tries help the agent connect actions to rewards.",
            MissionStatus.IMPROVING: "Great growth. Now aim for fewer steps and fewer bumps.",
            MissionStatus.MASTERED: "Mastered. You can unlock the next mission or try a harder one.",
        }[status]

        if has_history:
            if snapshot.last_avg_steps_on_success is None:
                steps_text = "n/a"
            else:
                steps_text = f"{snapshot.last_avg_steps_on_success:.1f} avg steps on wins"
            summary_line = f"Last run: {snapshot.last_success_rate:.0f}% success, {steps_text}."
        else:
            summary_line = "No runs yet. Your first run will teach the coach how you learn."

        return MissionCoachInsight(
            level_id=level_id,
            status=status,
            mastery_percent=int(_clamp(round(snapshot.mastery_percent), 0, 100)),
            has_history=has_history,
            coach_tip=coach_tip,
            summary_line=summary_line,
            next_step=plan.reason,
            plan=plan,
        )

    def get_academy_recommendation(self, unlocked: Sequence[int], cleared: Sequence[int]) -> str:
        weakest = self._weakest_concept()
        if weakest is not None and weakest.mastery_percent < 55:
            return f"Quick review suggested: {weakest.label}. Take a no-pressure check-in question."

        next_uncleared = next((level_id for level_id in unlocked if level_id not in cleared), None)
        if next_uncleared is not None:
            insight = self.get_mission_insight(next_uncleared)
            return f"Recommended now: Mission {next_uncleared}. {insight.next_step}"
        if cleared:
            return "All unlocked missions are cleared. Try an experiment and compare the algorithms."
        return "Start with Mission 1. The coach will adapt after your first run."

    def ideal_steps(self, level_id: int) -> int:
        return self.ideal_steps_by_level.get(level_id, DEFAULT_IDEAL_STEPS)

    @staticmethod
    def difficulty_bucket(level_id: int) -> str:
        if level_id <= 2:
            return "path"
        if level_id == 3:
            return "trap"
        return "maze"

    def state_key(self, level_id: int, record: MissionCoachRecord) -> str:
        difficulty = self.difficulty_bucket(level_id)
        if record.attempts == 0:
            return f"{difficulty}:new"
        ideal = self.ideal_steps(level_id)
        if record.last_success_rate < 25:
            return f"{difficulty}:struggle"
        if record.last_success_rate < 55:
            return f"{difficulty}:learning"
        if record.last_avg_steps_on_success is not None and record.last_avg_steps_on_success > ideal * 2.3:
            return f"{difficulty}:inefficient"
        if record.last_success_rate < 85:
            return f"{difficulty}:growing"
        return f"{difficulty}:master"

    def status(self, level_id: int, record: MissionCoachRecord) -> MissionStatus:
        if record.attempts == 0:
            return MissionStatus.NEW
        ideal = self.ideal_steps(level_id)
        avg_steps = record.last_avg_steps_on_success
        if (
            record.last_success_rate >= 85
            and avg_steps is not None
            and avg_steps <= ideal * 1.9
            and record.mastery_percent >= 80
        ):
            return MissionStatus.MASTERED
        if record.last_success_rate >= 45 or record.improvement >= 12 or record.mastery_percent >= 55:
            return MissionStatus.IMPROVING
        return MissionStatus.PRACTICING

    @classmethod
    def coach_epsilon(cls, attempts: int) -> float:
        return max(cls.EPSILON_FLOOR, cls.EPSILON_START - attempts * cls.EPSILON_DECAY)

    def compute_mastery(
        self,
        level_id: int,
        success_rate_percent: float,
        avg_steps: Optional[float],
        improvement_points: float,
        explore_rate: float,
    ) -> int:
        """Blend of success, step efficiency, improvement and exploration, 0-100."""
        ideal = self.ideal_steps(level_id)
        success_score = _clamp(success_rate_percent / 90.0, 0.0, 1.0)
        step_score = 0.0 if avg_steps is None else _clamp(ideal / max(ideal, avg_steps), 0.0, 1.0)
        improvement_score = _clamp((improvement_points + 15.0) / 35.0, 0.0, 1.0)
        target = self.TARGET_EXPLORE_RATE
        explore_score = _clamp(1.0 - abs(explore_rate - target) / target, 0.0, 1.0)
        blended = 0.58 * success_score + 0.22 * step_score + 0.14 * improvement_score + 0.06 * explore_score
        return int(round(blended * 100))

    @staticmethod
    def compute_reward(
        prev: MissionCoachRecord,
        success_rate_percent: float,
        avg_steps: Optional[float],
        improvement_points: float,
        bump_rate: float,
        mastery_percent: float,
    ) -> float:
        base_success = success_rate_percent / 100.0
        delta_success = (success_rate_percent - prev.last_success_rate) / 100.0
        improvement_boost = improvement_points / 45.0
        bump_penalty = bump_rate * 0.7
        mastery_boost = mastery_percent / 100.0
        step_boost = 0.0
        if prev.last_avg_steps_on_success is not None and avg_steps is not None:
            step_boost = _clamp((prev.last_avg_steps_on_success - avg_steps) / 25.0, -0.4, 0.5)
        reward = (
            1.3 * base_success
            + 1.6 * delta_success
            + 0.4 * improvement_boost
            + 0.3 * mastery_boost
            + step_boost
            - bump_penalty
        )
        return _clamp(reward, -1.1, 2.2)

    @staticmethod
    def action_from_report(report: MissionRunReport) -> int:
        """Preset closest to the configuration the learner actually ran."""
        algorithm = Algorithm.parse(report.algorithm)
        best = 0
        best_score = -np.inf
        for preset in COACH_ACTIONS:
            score = 0.0
            if preset.algorithm == algorithm:
                score += 3.2
            if preset.speed == report.speed:
                score += 1.4
            score -= abs(preset.base_episodes - report.episodes) / 38.0
            if preset.algorithm == Algorithm.RANDOM and algorithm != Algorithm.RANDOM:
                score -= 1.5
            if score > best_score:
                best_score = score
                best = preset.id
        return best

    def policy_values(self, state_key: str) -> np.ndarray:
        return np.asarray(self._ensure_q(state_key), dtype=np.float64)

    def _select_action(self, state_key: str, attempts: int, allow_explore: bool) -> int:
        values = self._ensure_q(state_key)
        if allow_explore and self.rng.next() < self.coach_epsilon(attempts):
            return self.rng.int(0, len(COACH_ACTIONS) - 1)
        return int(np.argmax(values))

    def _ensure_q(self, state_key: str) -> List[float]:
        existing = self.state.policy_q.get(state_key)
        if existing is not None and len(existing) == len(COACH_ACTIONS):
            return existing
        created = [0.0] * len(COACH_ACTIONS)
        self.state.policy_q[state_key] = created
        return created

    def _update_q(self, state_key: str, action_id: int, reward: float, next_state_key: str) -> None:
        q_state = self._ensure_q(state_key)
        q_next = self._ensure_q(next_state_key)
        current = q_state[action_id]
        target = reward + self.GAMMA * max(q_next)
        q_state[action_id] = current + self.ALPHA * (target - current)

    def _plan_for_action(
        self, level_id: int, action_id: int, record: MissionCoachRecord, status: MissionStatus
    ) -> MissionCoachPlan:
        preset = COACH_ACTIONS[action_id] if 0 <= action_id < len(COACH_ACTIONS) else COACH_ACTIONS[0]
        status_bump = {
            MissionStatus.NEW: -8,
            MissionStatus.PRACTICING: 12,
            MissionStatus.IMPROVING: 4,
            MissionStatus.MASTERED: -8,
        }[status]
        fail_bump = 14 if record.last_success_rate < 30 else 0
        episodes = round(preset.base_episodes + (level_id - 1) * preset.level_bump + status_bump + fail_bump)
        return MissionCoachPlan(
            level_id=level_id,
            algorithm=preset.algorithm,
            episodes=int(_clamp(episodes, 30, 400)),
            speed=preset.speed,
            reason=preset.reason,
        )

    def _default_plan(self, level_id: int) -> MissionCoachPlan:
        action = 3 if level_id >= 3 else 0
        return self._plan_for_action(level_id, action, self._empty_record(level_id), MissionStatus.NEW)

    @staticmethod
    def _default_episodes(level_id: int) -> int:
        if level_id >= 4:
            return 90
        if level_id >= 2:
            return 65
        return 45

    def _empty_record(self, level_id: int) -> MissionCoachRecord:
        return MissionCoachRecord(last_episodes=self._default_episodes(level_id))

    def _get_or_create(self, level_id: int) -> MissionCoachRecord:
        key = str(level_id)
        record = self.state.missions.get(key)
        if record is None:
            record = self._empty_record(level_id)
            self.state.missions[key] = record
        return record

    # Concept tracker --------------------------------------------------------
    def get_check_in_prompt(self) -> CheckInPrompt:
        concept_id = self.pick_check_in_concept()
        question = self._pick_question_for_concept(concept_id)
        concept = self._concept(question.concept_id)
        self._mark_seen(question)
        self.save()
        return CheckInPrompt(
            question_id=question.id,
            concept_id=question.concept_id,
            concept_label=CONCEPT_LABELS.get(question.concept_id, question.concept_id),
            prompt=question.prompt,
            options=question.options,
            confidence_percent=concept.mastery_percent,
        )

    def submit_check_in_answer(self, question_id: str, chosen_index: int) -> CheckInResult:
        question = find_question(question_id)
        if question is None:
            return CheckInResult(
                correct=False,
                message="Question expired. Ask for a fresh check-in.",
                review="No problem. Learning is a process.",
                concept_mastery_percent=0,
            )
        correct = chosen_index == question.correct_index
        concept = self.apply_concept_outcome(question.concept_id, correct)
        self.save()
        if correct:
            label = CONCEPT_LABELS.get(question.concept_id, question.concept_id)
            return CheckInResult(
                correct=True,
                message=f"Nice work. {question.explain}",
                review=f"Mastery in {label} is now {concept.mastery_percent}%.",
                concept_mastery_percent=concept.mastery_percent,
            )
        return CheckInResult(
            correct=False,
            message="Good try. You are still learning, and that is exactly the goal.",
            review=f"{question.review_tip} Then do one more check-in.",
            concept_mastery_percent=concept.mastery_percent,
        )

    def submit_concept_practice(self, concept_id: str, correct: bool) -> ConceptMasterySummary:
        concept = self.apply_concept_outcome(concept_id, correct)
        self.save()
        return ConceptMasterySummary(
            concept_id=concept_id,
            label=CONCEPT_LABELS.get(concept_id, concept_id),
            mastery_percent=concept.mastery_percent,
        )

    def get_concept_mastery_summary(self) -> List[ConceptMasterySummary]:
        return [
            ConceptMasterySummary(concept_id=cid, label=label, mastery_percent=self._concept(cid).mastery_percent)
            for cid, label in CONCEPT_LABELS.items()
        ]

    def get_questions_for_concepts(self, concept_ids: Sequence[str], max_count: int = 4) -> List[QuizQuestion]:
        """One least-seen question per concept, then topped up from the same pool."""
        wanted = set(concept_ids)
        pool = [q for q in CHECK_IN_QUESTIONS if q.concept_id in wanted]
        selected: List[QuestionDef] = []
        for concept_id in concept_ids:
            concept_pool = [q for q in pool if q.concept_id == concept_id]
            if concept_pool and len(selected) < max_count:
                choice = self._pick_least_seen(concept_pool)
                if choice not in selected:
                    selected.append(choice)
        for question in pool:
            if len(selected) >= max_count:
                break
            if question not in selected:
                selected.append(question)

        for question in selected:
            self._mark_seen(question)
        self.save()
        return [
            QuizQuestion(
                question_id=q.id,
                concept_id=q.concept_id,
                concept_label=CONCEPT_LABELS.get(q.concept_id, q.concept_id),
                prompt=q.prompt,
                options=q.options,
                review_tip=q.review_tip,
            )
            for q in selected
        ]

    def grade_question_set(self, submissions: Sequence[QuizSubmission], pass_ratio: float = 0.7) -> QuizGrade:
        score = 0
        review_lines: List[str] = []
        missed_concepts = set()
        for submission in submissions:
            question = find_question(submission.question_id)
            if question is None:
                continue
            correct = submission.chosen_index == question.correct_index
            self.apply_concept_outcome(question.concept_id, correct)
            if correct:
                score += 1
            elif question.concept_id not in missed_concepts:
                missed_concepts.add(question.concept_id)
                review_lines.append(f"{CONCEPT_LABELS.get(question.concept_id, question.concept_id)}: {question.review_tip}")

        total = len(submissions)
        ratio = 0.0 if total == 0 else score / float(total)
        passed = ratio >= pass_ratio
        self.save()
        if passed:
            message = "Awesome effort. You are building real RL understanding."
        else:
            message = "Nice try. You are learning, and a quick review will make the next round easier."
        return QuizGrade(score=score, total=total, passed=passed, message=message, review_lines=review_lines)

    def is_question_correct(self, question_id: str, chosen_index: int) -> bool:
        question = find_question(question_id)
        return question is not None and chosen_index == question.correct_index

    def apply_concept_outcome(self, concept_id: str, correct: bool) -> ConceptRecord:
        concept = self._concept(concept_id)
        prev_mastery = concept.mastery_percent

        concept.attempts += 1
        if correct:
            concept.correct += 1
            concept.streak += 1
        else:
            concept.streak = 0

        accuracy = concept.correct / float(max(1, concept.attempts))
        streak_boost = min(0.2, concept.streak * 0.03)
        concept.mastery_percent = int(round(_clamp((accuracy + streak_boost) * 100, 5, 100)))

        reward_base = 0.9 if correct else -0.25
        growth_bonus = (concept.mastery_percent - prev_mastery) / 100.0
        reward = _clamp(reward_base + growth_bonus, -0.5, 1.2)
        concept.q_value = concept.q_value + self.CONCEPT_ALPHA * (reward - concept.q_value)
        return concept

    def pick_check_in_concept(self) -> str:
        concept_ids = list(CONCEPT_LABELS.keys())
        if self.rng.next() < self.CONCEPT_EXPLORATION:
            return self.rng.pick(concept_ids)

        best_id = concept_ids[0]
        best_score = -np.inf
        for concept_id in concept_ids:
            concept = self._concept(concept_id)
            weakness = (100 - concept.mastery_percent) / 100.0
            novelty = 0.15 if concept.attempts < 2 else 0.0
            score = concept.q_value + weakness * 0.9 + novelty
            if score > best_score:
                best_score = score
                best_id = concept_id
        return best_id

    def _concept(self, concept_id: str) -> ConceptRecord:
        concept = self.state.concepts.get(concept_id)
        if concept is None:
            concept = ConceptRecord()
            self.state.concepts[concept_id] = concept
        return concept

    def _weakest_concept(self) -> Optional[ConceptMasterySummary]:
        summary = self.get_concept_mastery_summary()
        if not summary:
            return None
        return min(summary, key=lambda item: item.mastery_percent)

    def _pick_question_for_concept(self, concept_id: str) -> QuestionDef:
        pool = [q for q in CHECK_IN_QUESTIONS if q.concept_id == concept_id]
        if not pool:
            return CHECK_IN_QUESTIONS[0]
        return self._pick_least_seen(pool)

    def _pick_least_seen(self, pool: Sequence[QuestionDef]) -> QuestionDef:
        return min(pool, key=lambda q: self.state.question_seen.get(q.id, 0))

    def _mark_seen(self, question: QuestionDef) -> None:
        self.state.question_seen[question.id] = self.state.question_seen.get(question.id, 0) + 1

    # Stats & persistence ----------------------------------------------------
    def stats(self) -> CoachStats:
        all_q = [value for values in self.state.policy_q.values() for value in values]
        return CoachStats(
            coach_episodes=sum(m.attempts for m in self.state.missions.values()),
            user_mastery_rewarded=sum(c.correct for c in self.state.concepts.values()),
            total_checks=sum(c.attempts for c in self.state.concepts.values()),
            coach_brain_stability=round(float(np.mean(all_q)), 3) if all_q else 0.0,
        )

    def save(self) -> None:
        self.storage.save(json.dumps(self.state.to_dict()))

    def _load(self) -> CoachState:
        try:
            raw = self.storage.load()
        except (OSError, ValueError) as err:
            logger.warning("Could not read adaptive coach state, starting fresh: %s", err)
            return CoachState()
        if not raw:
            return CoachState()
        try:
            return CoachState.from_dict(json.loads(raw))
        except (ValueError, TypeError, AttributeError, OverflowError, RecursionError) as err:
            logger.warning("Failed to parse adaptive coach state, starting fresh: %s", err)
            return CoachState()
