"""Grid-world maze sandbox for teaching tabular reinforcement learning."""

from .agents import AgentParams, Algorithm, Transition, make_agent  # noqa: F401
from .coach import AdaptiveCoach, MissionCoachInsight, MissionCoachPlan, MissionStatus  # noqa: F401
from .env import Action, MazeEnv, RewardConfig, state_to_key  # noqa: F401
from .metrics import EpisodeMetrics  # noqa: F401
from .rl import (  # noqa: F401
    EpisodeRunner,
    ExperimentConfig,
    MazeTrainer,
    MissionRunReport,
    RunController,
    RunSpeed,
    TrainingConfig,
    run_sync,
)
from .rng import DeterministicRng  # noqa: F401
from .storage import InMemoryStorage, JsonFileStorage  # noqa: F401
from .tasks import Mission, mission_layouts, mission_presets  # noqa: F401
from .world import Direction, MazeError, MazeLayout, analyze_maze, load_maze  # noqa: F401
