"""rotafair - fairness-aware rotation scheduling.

Decides, period by period, which members of a changing population take on a
recurring task so that assignments track presence time, newcomers are paired
with experienced members and the resulting distribution stays measurably
even.
"""

__version__ = "0.1.0"

from rotafair.domain.models import (
    AssignmentInput,
    BatchResult,
    Entity,
    EntityInput,
    EstimatorState,
    GenerationOptions,
    MembershipInterval,
    PeriodAssignment,
)
from rotafair.scheduling.gap_filler import fill_gap_after_removal
from rotafair.scheduling.rotation_scheduler import RotationScheduler, generate_batch
from rotafair.validation.fairness_report import compute_fairness_report

__all__ = [
    "__version__",
    # Models
    "AssignmentInput",
    "BatchResult",
    "Entity",
    "EntityInput",
    "EstimatorState",
    "GenerationOptions",
    "MembershipInterval",
    "PeriodAssignment",
    # Operations
    "RotationScheduler",
    "compute_fairness_report",
    "fill_gap_after_removal",
    "generate_batch",
]
