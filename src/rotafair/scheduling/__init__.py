"""Scheduling engine for rotation assignment."""

from rotafair.scheduling.estimator import EstimatorConfig, RateEstimator
from rotafair.scheduling.gap_filler import GapFiller, GapFillResult
from rotafair.scheduling.presence import PresenceCalculator
from rotafair.scheduling.priority import PriorityConfig, PriorityScore, PriorityScorer
from rotafair.scheduling.random_source import (
    NumpyRandomSource,
    RandomSource,
    SequenceRandomSource,
)
from rotafair.scheduling.rotation_scheduler import (
    RotationScheduler,
    RunningBatchState,
    create_rotation_scheduler,
)
from rotafair.scheduling.selector import (
    SelectionResult,
    StochasticSelector,
    adaptive_temperature,
    apply_diversity_penalty,
    selection_entropy,
)

__all__ = [
    "EstimatorConfig",
    "GapFillResult",
    "GapFiller",
    "NumpyRandomSource",
    "PresenceCalculator",
    "PriorityConfig",
    "PriorityScore",
    "PriorityScorer",
    "RandomSource",
    "RateEstimator",
    "RotationScheduler",
    "RunningBatchState",
    "SelectionResult",
    "SequenceRandomSource",
    "StochasticSelector",
    "adaptive_temperature",
    "apply_diversity_penalty",
    "create_rotation_scheduler",
    "selection_entropy",
]
