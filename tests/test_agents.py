import pathlib
import sys

import numpy as np
import pytest

ROOT = pathlib.Path(__file__).resolve().parents[1]
sys.path.append(str(ROOT / "src"))

from maze_academy import Action, AgentParams, Algorithm, DeterministicRng, Transition, make_agent  # noqa: E402
from maze_academy.agents import (  # noqa: E402
    AGENT_TYPES,
    DoubleQLearningAgent,
    DynaQAgent,
    ExpectedSarsaAgent,
    QLearningAgent,
    RandomAgent,
    SarsaAgent,
    TabularPpoAgent,
    epsilon_linear,
    softmax,
)


def sample_transitions(count=40, seed=5):
    rng = DeterministicRng(seed)
    states = ["1,1,1,0,1,0", "1,2,1,0,1,1", "1,3,2,1,0,0", "2,3,2,0,1,1"]
    out = []
    for i in range(count):
        s = rng.pick(states)
        ns = rng.pick(states)
        done = i % 9 == 8
        out.append(
            Transition(
                state_key=s,
                action=rng.pick([Action.FORWARD, Action.LEFT, Action.RIGHT]),
                reward=1.0 if done else -0.01,
                next_state_key=ns,
                done=done,
                next_action=rng.pick([Action.FORWARD, Action.LEFT, Action.RIGHT]),
            )
        )
    return out


def test_every_algorithm_has_an_agent():
    assert set(AGENT_TYPES) == set(Algorithm)
    for algorithm in Algorithm:
        agent = make_agent(algorithm.value)
        assert agent.algorithm == algorithm


def test_algorithm_parse_accepts_display_and_enum_names():
    assert Algorithm.parse("Q-learning") is Algorithm.Q_LEARNING
    assert Algorithm.parse("DYNA_Q") is Algorithm.DYNA_Q
    assert Algorithm.parse(Algorithm.SARSA) is Algorithm.SARSA
    with pytest.raises(ValueError):
        Algorithm.parse("Monte Carlo")


@pytest.mark.parametrize("algorithm", list(Algorithm))
def test_q_values_are_three_wide_and_reading_is_harmless(algorithm):
    agent = make_agent(algorithm)
    agent.start_trial(11)
    first = agent.q_values("9,9,0,1,1,1")
    assert first.shape == (3,)
    assert np.all(first == 0.0)
    first[0] = 42.0
    again = agent.q_values("9,9,0,1,1,1")
    assert np.all(again == 0.0)


def test_q_learning_terminal_update_matches_hand_computation():
    agent = QLearningAgent()
    agent.update(Transition("s", Action.FORWARD, 1.0, "goal", True))
    assert agent.q_values("s")[Action.FORWARD] == pytest.approx(0.2)
    assert agent.greedy_action("s") == Action.FORWARD


def test_q_learning_bootstraps_on_best_next_value():
    agent = QLearningAgent()
    agent.q.ensure("next")[:] = [0.0, 1.0, 0.0]
    agent.update(Transition("s", Action.LEFT, 0.0, "next", False, next_action=Action.FORWARD))
    assert agent.q_values("s")[Action.LEFT] == pytest.approx(0.2 * 0.95)


def test_sarsa_bootstraps_on_the_action_actually_taken():
    agent = SarsaAgent()
    agent.q.ensure("next")[:] = [0.0, 1.0, 0.0]
    agent.update(Transition("s", Action.LEFT, 0.0, "next", False, next_action=Action.FORWARD))
    assert agent.q_values("s")[Action.LEFT] == pytest.approx(0.0)
    agent.update(Transition("s", Action.RIGHT, 0.0, "next", False, next_action=Action.LEFT))
    assert agent.q_values("s")[Action.RIGHT] == pytest.approx(0.2 * 0.95)


def test_expected_sarsa_uses_epsilon_greedy_expectation():
    agent = ExpectedSarsaAgent()
    agent.start_episode(0, 10)
    assert agent.epsilon() == pytest.approx(0.3)
    agent.q.ensure("next")[:] = [1.0, 0.0, 0.0]
    agent.update(Transition("s", Action.FORWARD, 0.0, "next", False))
    expected_next = (0.3 / 3 + 0.7) * 1.0
    assert agent.q_values("s")[Action.FORWARD] == pytest.approx(0.2 * 0.95 * expected_next)


def test_epsilon_schedule_is_linear_between_endpoints():
    assert epsilon_linear(0, 50, 0.3, 0.05) == pytest.approx(0.3)
    assert epsilon_linear(49, 50, 0.3, 0.05) == pytest.approx(0.05)
    assert epsilon_linear(0, 1, 0.3, 0.05) == pytest.approx(0.05)


def test_random_agent_always_explores_and_never_learns():
    agent = RandomAgent()
    rng = DeterministicRng(3)
    decisions = [agent.select_action("s", rng) for _ in range(20)]
    assert all(d.explored for d in decisions)
    agent.update(Transition("s", Action.FORWARD, 1.0, "t", True))
    assert np.all(agent.q_values("s") == 0.0)
    assert agent.epsilon() == 1.0


def test_double_q_is_deterministic_per_trial_seed():
    first = DoubleQLearningAgent()
    second = DoubleQLearningAgent()
    first.start_trial(77)
    second.start_trial(77)
    for transition in sample_transitions():
        first.update(transition)
        second.update(transition)
    for key in first.q_a.keys():
        np.testing.assert_allclose(first.q_a.ensure(key), second.q_a.ensure(key))
        np.testing.assert_allclose(first.q_b.ensure(key), second.q_b.ensure(key))
    key = first.q_a.keys()[0]
    np.testing.assert_allclose(first.q_values(key), (first.q_a.ensure(key) + first.q_b.ensure(key)) / 2.0)


def test_double_q_updates_exactly_one_table_per_transition():
    agent = DoubleQLearningAgent()
    agent.start_trial(1)
    agent.update(Transition("s", Action.FORWARD, 1.0, "goal", True))
    values = (agent.q_a.ensure("s")[0], agent.q_b.ensure("s")[0])
    assert sorted(values) == pytest.approx([0.0, 0.2])


def test_dyna_q_without_planning_matches_q_learning():
    params = AgentParams()
    dyna = DynaQAgent(params, planning_steps=0)
    plain = QLearningAgent(params)
    dyna.start_trial(9)
    plain.start_trial(9)
    for transition in sample_transitions():
        dyna.update(transition)
        plain.update(transition)
    assert sorted(dyna.q.keys()) == sorted(plain.q.keys())
    for key in plain.q.keys():
        np.testing.assert_allclose(dyna.q_values(key), plain.q_values(key))


def test_dyna_q_planning_replays_remembered_transitions():
    agent = DynaQAgent()
    agent.start_trial(4)
    assert agent.params.epsilon_start == pytest.approx(0.28)
    assert agent.planning_steps == 8
    agent.update(Transition("s", Action.FORWARD, 1.0, "goal", True))
    assert ("s", Action.FORWARD) in agent.model
    # One real update plus eight replays of the same terminal transition.
    assert agent.q_values("s")[Action.FORWARD] == pytest.approx(1.0 - 0.8 ** 9)


def test_ppo_logits_stay_centred_and_probs_normalised():
    agent = TabularPpoAgent()
    agent.start_trial(2)
    agent.start_episode(0, 40)
    for transition in sample_transitions(80):
        agent.update(transition)
    for key in agent.policy.keys():
        logits = agent.policy.ensure(key)
        assert abs(float(logits.mean())) < 1e-9
        probs = agent.policy_probs(key)
        assert probs.sum() == pytest.approx(1.0)
        assert np.all(probs > 0.0)


def test_ppo_rewarded_action_gains_probability():
    agent = TabularPpoAgent()
    before = agent.policy_probs("s")[Action.RIGHT]
    agent.update(Transition("s", Action.RIGHT, 1.0, "goal", True))
    assert agent.policy_probs("s")[Action.RIGHT] > before
    assert agent.q_values("s")[Action.RIGHT] == pytest.approx(0.2)


def test_ppo_ratio_clip_scales_back_a_large_step():
    agent = TabularPpoAgent()
    agent.DISTILL_ALPHA = 0.0
    agent.ENTROPY_ALPHA = 0.0
    start = np.array([0.0, 5.0, 5.0])
    agent.policy.ensure("s")[:] = start
    old_probs = softmax(start)

    gradients = -old_probs
    gradients[0] += 1.0
    full_step = TabularPpoAgent.POLICY_ALPHA * TabularPpoAgent.ADVANTAGE_LIMIT * gradients
    unclipped_ratio = softmax(start + full_step)[0] / old_probs[0]
    assert unclipped_ratio > 1.2

    agent.update(Transition("s", Action.FORWARD, 10.0, "goal", True))

    expected = start + full_step * (1.2 / unclipped_ratio)
    expected -= expected.mean()
    np.testing.assert_allclose(agent.policy.ensure("s"), expected)
    new_ratio = agent.policy_probs("s")[0] / old_probs[0]
    assert 1.0 < new_ratio < unclipped_ratio


def test_ppo_logit_step_is_bounded():
    agent = TabularPpoAgent()
    agent.DISTILL_ALPHA = 5.0
    agent.update(Transition("s", Action.FORWARD, 10.0, "goal", True))
    # every raw step saturates at +/-0.45 before recentring
    np.testing.assert_allclose(agent.policy.ensure("s"), [0.6, -0.3, -0.3])


def test_start_trial_forgets_learning():
    agent = make_agent(Algorithm.Q_LEARNING)
    agent.update(Transition("s", Action.FORWARD, 1.0, "goal", True))
    agent.start_trial(1)
    assert np.all(agent.q_values("s") == 0.0)


def test_overrides_replace_default_params():
    agent = make_agent("SARSA", alpha=0.5)
    assert agent.params.alpha == 0.5
    assert agent.params.gamma == 0.95
