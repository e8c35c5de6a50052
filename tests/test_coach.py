import json
import pathlib
import sys

import pytest

ROOT = pathlib.Path(__file__).resolve().parents[1]
sys.path.append(str(ROOT / "src"))

from maze_academy import (  # noqa: E402
    AdaptiveCoach,
    Algorithm,
    DeterministicRng,
    EpisodeMetrics,
    InMemoryStorage,
    JsonFileStorage,
    MissionRunReport,
    MissionStatus,
    RunSpeed,
)
from maze_academy.coach import COACH_ACTIONS, MissionCoachRecord, QuizSubmission  # noqa: E402
from maze_academy.questions import CHECK_IN_QUESTIONS, CONCEPT_LABELS  # noqa: E402
from maze_academy.tasks import mission_layouts  # noqa: E402


def make_coach(storage=None, seed=7):
    return AdaptiveCoach(mission_layouts(), storage=storage or InMemoryStorage(), rng=DeterministicRng(seed))


def make_report(outcomes, steps=20, algorithm=Algorithm.Q_LEARNING, speed=RunSpeed.NORMAL, explore=0.28, bumps=0.1):
    metrics = tuple(
        EpisodeMetrics(episode=i + 1, steps=steps, success=ok, episode_return=0.5 if ok else -1.0)
        for i, ok in enumerate(outcomes)
    )
    return MissionRunReport(
        algorithm=algorithm,
        episodes=len(metrics),
        speed=speed,
        metrics=metrics,
        explore_rate=explore,
        bump_rate=bumps,
    )


def test_ideal_steps_come_from_shortest_paths():
    coach = make_coach()
    assert coach.ideal_steps(1) == 12
    assert coach.ideal_steps(99) == 18


def test_coach_epsilon_decays_to_floor():
    assert AdaptiveCoach.coach_epsilon(0) == pytest.approx(0.34)
    assert AdaptiveCoach.coach_epsilon(3) == pytest.approx(0.25)
    assert AdaptiveCoach.coach_epsilon(50) == pytest.approx(0.08)


def test_difficulty_buckets_and_new_state_key():
    coach = make_coach()
    assert coach.state_key(1, MissionCoachRecord()) == "path:new"
    assert coach.state_key(3, MissionCoachRecord()) == "trap:new"
    assert coach.state_key(4, MissionCoachRecord()) == "maze:new"
    record = MissionCoachRecord(attempts=2, last_success_rate=60.0, last_avg_steps_on_success=40.0)
    assert coach.state_key(1, record) == "path:inefficient"


def test_plan_episodes_are_clamped_and_valid():
    coach = make_coach()
    for level_id in (1, 2, 3, 4, 20):
        for _ in range(10):
            plan = coach.choose_coach_plan(level_id)
            assert 30 <= plan.episodes <= 400
            assert plan.algorithm in {p.algorithm for p in COACH_ACTIONS}


def test_first_run_shows_raw_mastery_then_smooths():
    coach = make_coach()
    report = make_report([False] * 5 + [True] * 15, steps=16)
    raw = coach.compute_mastery(1, 75.0, 16.0, 50.0, 0.28)
    insight = coach.record_mission_run(1, report)
    assert insight.mastery_percent == raw
    assert insight.has_history

    second = make_report([True] * 20, steps=12)
    raw_second = coach.compute_mastery(1, 100.0, 12.0, 0.0, 0.28)
    insight = coach.record_mission_run(1, second)
    assert insight.mastery_percent == round(raw * 0.55 + raw_second * 0.45)


def test_mastery_stays_within_percent_bounds():
    coach = make_coach()
    assert coach.compute_mastery(1, 0.0, None, -100.0, 5.0) == 0
    assert coach.compute_mastery(1, 100.0, 1.0, 100.0, 0.28) == 100
    for outcomes in ([False] * 10, [True] * 10, [True, False] * 10):
        insight = coach.record_mission_run(2, make_report(outcomes, steps=300))
        assert 0 <= insight.mastery_percent <= 100


def test_reward_is_clamped():
    prev = MissionCoachRecord(attempts=1, last_success_rate=0.0, last_avg_steps_on_success=200.0)
    high = AdaptiveCoach.compute_reward(prev, 100.0, 10.0, 100.0, 0.0, 100.0)
    low = AdaptiveCoach.compute_reward(MissionCoachRecord(last_success_rate=100.0), 0.0, None, -100.0, 1.0, 0.0)
    assert high == 2.2
    assert low == -1.1


def test_report_is_credited_to_closest_preset():
    report = make_report([True] * 110, algorithm=Algorithm.SARSA, speed=RunSpeed.SLOW)
    assert AdaptiveCoach.action_from_report(report) == 4
    report = make_report([True] * 50, algorithm=Algorithm.RANDOM)
    assert AdaptiveCoach.action_from_report(report) == 5
    report = make_report([True] * 60, algorithm=Algorithm.DYNA_Q, speed=RunSpeed.NORMAL)
    assert AdaptiveCoach.action_from_report(report) == 1


def test_recording_a_run_updates_record_and_policy():
    coach = make_coach()
    insight = coach.record_mission_run(1, make_report([True] * 20, steps=14))
    record = coach.state.missions["1"]
    assert record.attempts == 1
    assert record.last_success_rate == 100.0
    assert record.best_avg_steps_on_success == 14.0
    assert insight.status in set(MissionStatus)
    assert any(value != 0.0 for value in coach.policy_values("path:new"))

    coach.record_mission_run(1, make_report([True] * 10 + [False] * 10, steps=30))
    record = coach.state.missions["1"]
    assert record.best_success_rate == 100.0
    assert record.best_avg_steps_on_success == 14.0
    assert record.last_avg_steps_on_success == 30.0


def test_status_rules():
    coach = make_coach()
    assert coach.status(1, MissionCoachRecord()) == MissionStatus.NEW
    mastered = MissionCoachRecord(
        attempts=3, last_success_rate=90.0, last_avg_steps_on_success=20.0, mastery_percent=85
    )
    assert coach.status(1, mastered) == MissionStatus.MASTERED
    improving = MissionCoachRecord(attempts=1, last_success_rate=10.0, improvement=15.0)
    assert coach.status(1, improving) == MissionStatus.IMPROVING
    practicing = MissionCoachRecord(attempts=1, last_success_rate=10.0)
    assert coach.status(1, practicing) == MissionStatus.PRACTICING


def test_unknown_level_gets_fallback_insight():
    insight = make_coach().get_mission_insight(42)
    assert insight.status == MissionStatus.NEW
    assert not insight.has_history
    assert insight.plan.algorithm == Algorithm.SARSA


def test_concept_streak_raises_mastery():
    streak = make_coach()
    for _ in range(3):
        streak.apply_concept_outcome("reward", True)
    single = make_coach()
    single.apply_concept_outcome("reward", False)
    single.apply_concept_outcome("reward", False)
    single.apply_concept_outcome("reward", True)
    assert streak.state.concepts["reward"].attempts == single.state.concepts["reward"].attempts == 3
    assert streak.state.concepts["reward"].mastery_percent > single.state.concepts["reward"].mastery_percent
    assert streak.state.concepts["reward"].mastery_percent == 100


def test_concept_mastery_floor():
    coach = make_coach()
    for _ in range(4):
        concept = coach.apply_concept_outcome("alpha", False)
    assert concept.mastery_percent == 5
    assert concept.streak == 0


def test_check_in_round_trip():
    coach = make_coach()
    prompt = coach.get_check_in_prompt()
    assert prompt.concept_id in CONCEPT_LABELS
    assert coach.state.question_seen[prompt.question_id] == 1
    question = next(q for q in CHECK_IN_QUESTIONS if q.id == prompt.question_id)
    result = coach.submit_check_in_answer(prompt.question_id, question.correct_index)
    assert result.correct
    assert coach.state.concepts[prompt.concept_id].correct == 1

    expired = coach.submit_check_in_answer("no_such_question", 0)
    assert not expired.correct


def test_quiz_assembly_and_grading():
    coach = make_coach()
    questions = coach.get_questions_for_concepts(["reward", "explore", "control"], max_count=4)
    assert len(questions) == 4
    assert {q.concept_id for q in questions[:3]} == {"reward", "explore", "control"}
    answers = {q.id: q.correct_index for q in CHECK_IN_QUESTIONS}
    submissions = [QuizSubmission(q.question_id, answers[q.question_id]) for q in questions]
    grade = coach.grade_question_set(submissions)
    assert grade.score == grade.total == 4
    assert grade.passed
    assert grade.review_lines == []

    wrong = [QuizSubmission(q.question_id, (answers[q.question_id] + 1) % 3) for q in questions]
    grade = coach.grade_question_set(wrong)
    assert grade.score == 0
    assert not grade.passed
    assert len(grade.review_lines) == 3


def test_concept_summary_lists_every_concept():
    summary = make_coach().get_concept_mastery_summary()
    assert [item.concept_id for item in summary] == list(CONCEPT_LABELS)
    assert all(item.mastery_percent == 10 for item in summary)


def test_recommendation_prefers_weak_concept_review():
    coach = make_coach()
    assert "Quick review" in coach.get_academy_recommendation([1], [])
    for concept_id in CONCEPT_LABELS:
        for _ in range(3):
            coach.apply_concept_outcome(concept_id, True)
    assert coach.get_academy_recommendation([1, 2], [1]).startswith("Recommended now: Mission 2.")


def test_state_persists_through_file_storage(tmp_path):
    path = tmp_path / "coach.json"
    coach = make_coach(JsonFileStorage(path))
    coach.record_mission_run(2, make_report([True] * 12 + [False] * 8))
    coach.apply_concept_outcome("qtable", True)
    coach.save()

    data = json.loads(path.read_text(encoding="utf-8"))
    assert set(data) == {"missions", "policyQ", "concepts", "questionSeen"}
    assert data["missions"]["2"]["attempts"] == 1

    reloaded = make_coach(JsonFileStorage(path))
    assert reloaded.state.missions["2"] == coach.state.missions["2"]
    assert reloaded.state.concepts["qtable"].correct == 1
    assert reloaded.state.policy_q == coach.state.policy_q
    assert reloaded.stats().coach_episodes == 1


def test_malformed_state_falls_back_to_empty():
    blobs = (
        "{not json",
        "[1, 2, 3]",
        json.dumps({"missions": {"1": "oops"}}),
        '{"missions": {}, "policyQ": {}, "concepts": {}, "questionSeen": {"reward_goal": 1e400}}',
        '{"concepts": {"reward": {"attempts": 1e400}}}',
        '{"missions": {"1": {"lastSuccessRate": NaN}}}',
        "[" * 100000 + "]" * 100000,
    )
    for blob in blobs:
        coach = make_coach(InMemoryStorage(blob))
        assert coach.state.missions == {}
        assert coach.state.policy_q == {}


def test_wrong_length_policy_vector_is_reset():
    blob = json.dumps({"missions": {}, "policyQ": {"path:new": [1.0, 2.0]}, "concepts": {}, "questionSeen": {}})
    coach = make_coach(InMemoryStorage(blob))
    assert list(coach.policy_values("path:new")) == [0.0] * len(COACH_ACTIONS)


def test_choose_plan_saves_state():
    storage = InMemoryStorage()
    coach = make_coach(storage)
    coach.choose_coach_plan(1)
    assert storage.saves == 1
    assert "1" in json.loads(storage.blob)["missions"]


def test_undecodable_state_file_falls_back_to_empty(tmp_path):
    path = tmp_path / "coach.json"
    path.write_bytes(b'{"missions": "\xff\xfe"}')
    coach = make_coach(JsonFileStorage(path))
    assert coach.state.missions == {}
    coach.choose_coach_plan(1)
    assert "1" in json.loads(path.read_text(encoding="utf-8"))["missions"]
