from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional, Tuple

CONCEPT_LABELS: Dict[str, str] = {
    "reward": "Rewards",
    "explore": "Explore vs Exploit",
    "control": "Control Group",
    "qtable": "Q-Table Memory",
    "discount": "Discount Factor (Gamma)",
    "alpha": "Learning Rate (Alpha)",
    "general": "Generalization",
}


@dataclass(frozen=True)
class QuestionDef:
    id: str
    concept_id: str
    prompt: str
    options: Tuple[str, ...]
    correct_index: int
    explain: str
    review_tip: str


CHECK_IN_QUESTIONS: Tuple[QuestionDef, ...] = (
    QuestionDef(
        id="reward_goal",
        concept_id="reward",
        prompt="Why does the AI want to reach the goal square?",
        options=(
            "Because it gives the biggest positive reward.",
            "Because it makes the maze disappear.",
            "Because random actions always go to the goal.",
        ),
        correct_index=0,
        explain="The goal gives a big reward, so learning pushes the AI toward it.",
        review_tip="Watch the reward of each step while a training run is going.",
    ),
    QuestionDef(
        id="reward_bump",
        concept_id="reward",
        prompt="What does a wall bump penalty teach the AI?",
        options=(
            "Keep bumping because it is faster.",
            "Avoid that action in that state next time.",
            "Turn off learning.",
        ),
        correct_index=1,
        explain="Negative reward means that move is less useful there.",
        review_tip="Notice how bump-heavy episodes get lower returns.",
    ),
    QuestionDef(
        id="explore_meaning",
        concept_id="explore",
        prompt="When a step is marked 'Explore', what is happening?",
        options=(
            "The AI tries a new action to gather info.",
            "The AI always uses its best-known move.",
            "The AI pauses training.",
        ),
        correct_index=0,
        explain="Explore means trying something new to learn more.",
        review_tip="Run at slow speed and watch explore and exploit steps alternate.",
    ),
    QuestionDef(
        id="exploit_meaning",
        concept_id="explore",
        prompt="When a step is marked 'Exploit', what is happening?",
        options=(
            "The AI ignores rewards.",
            "The AI uses what it already learned works best.",
            "The AI picks a random move.",
        ),
        correct_index=1,
        explain="Exploit means using the current best known choice.",
        review_tip="Look for exploitation increasing after more episodes.",
    ),
    QuestionDef(
        id="control_group",
        concept_id="control",
        prompt="Why do we keep Random as a control group?",
        options=(
            "To compare against a no-learning baseline.",
            "Because Random is always the best performer.",
            "To make charts colorful.",
        ),
        correct_index=0,
        explain="A control group shows that learning actually improved results.",
        review_tip="Compare Random's late success rate with Q-learning and SARSA in an experiment.",
    ),
    QuestionDef(
        id="fair_test",
        concept_id="control",
        prompt="For a fair algorithm comparison, what must stay the same?",
        options=(
            "Maze, start/goal, rewards, and episodes/trials.",
            "Only the colors.",
            "Only algorithm names.",
        ),
        correct_index=0,
        explain="Keep everything fixed so only the algorithm changes.",
        review_tip="Use the experiment defaults for fair repeated trials.",
    ),
    QuestionDef(
        id="qtable_role",
        concept_id="qtable",
        prompt="What does a Q-table store?",
        options=(
            "How shiny the goal looks.",
            "Estimated value for actions in each state.",
            "Only wall positions.",
        ),
        correct_index=1,
        explain="It stores how good each action seems in each situation.",
        review_tip="Watch the Q-values of a state change as learning runs.",
    ),
    QuestionDef(
        id="qtable_growth",
        concept_id="qtable",
        prompt="As training continues, the Q-table should usually...",
        options=(
            "Stay exactly zero forever.",
            "Get updated from rewards and transitions.",
            "Delete all past knowledge every step.",
        ),
        correct_index=1,
        explain="It updates repeatedly from reward feedback.",
        review_tip="Try 50+ episodes and compare early vs late behavior.",
    ),
    QuestionDef(
        id="gamma_vision",
        concept_id="discount",
        prompt="What happens if Gamma is set very low (near 0)?",
        options=(
            "The AI only cares about the immediate next reward.",
            "The AI becomes a master of long-term planning.",
            "The AI stops moving entirely.",
        ),
        correct_index=0,
        explain="Low Gamma makes the AI greedy for the next step only.",
        review_tip="Train with a low Gamma on a long maze and see if it finds the goal.",
    ),
    QuestionDef(
        id="alpha_speed",
        concept_id="alpha",
        prompt="What does the Learning Rate (Alpha) control?",
        options=(
            "How fast the robot physically moves in the maze.",
            "How much new information updates the AI's old memory.",
            "The complexity of the maze grid.",
        ),
        correct_index=1,
        explain="Alpha sets how far each update moves the old estimate.",
        review_tip="Compare how fast Q-values change with a high vs low Alpha.",
    ),
    QuestionDef(
        id="generalization_goal",
        concept_id="general",
        prompt="What is 'Generalization' in AI?",
        options=(
            "Memorizing a single path perfectly.",
            "Applying what was learned in one situation to a new, similar one.",
            "Picking actions completely at random.",
        ),
        correct_index=1,
        explain="Generalization is reusing what was learned in new situations.",
        review_tip="Check whether a policy trained on one maze helps on the next one.",
    ),
)


def find_question(question_id: str) -> Optional[QuestionDef]:
    for question in CHECK_IN_QUESTIONS:
        if question.id == question_id:
            return question
    return None
