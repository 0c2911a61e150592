"""Domain models and business rules for rotation scheduling."""

from rotafair.domain.models import (
    AssignmentInput,
    BatchResult,
    CorrectiveAction,
    CorrectiveActionType,
    Entity,
    EntityInput,
    EntityRate,
    EstimatorState,
    FairnessReport,
    FairnessViolation,
    GenerationOptions,
    MembershipInterval,
    PeriodAssignment,
    ScheduleWarning,
    ViolationType,
    WarningType,
    coerce_assignment,
    coerce_entity,
    parse_date,
)
from rotafair.domain.policies import (
    BaselineOnboardingPolicy,
    DefaultExperiencePolicy,
    EqualRateOnboardingPolicy,
    ExperiencePolicy,
    OnboardingPolicy,
)

__all__ = [
    # Models
    "AssignmentInput",
    "BatchResult",
    "CorrectiveAction",
    "CorrectiveActionType",
    "Entity",
    "EntityInput",
    "EntityRate",
    "EstimatorState",
    "FairnessReport",
    "FairnessViolation",
    "GenerationOptions",
    "MembershipInterval",
    "PeriodAssignment",
    "ScheduleWarning",
    "ViolationType",
    "WarningType",
    "coerce_assignment",
    "coerce_entity",
    "parse_date",
    # Policies
    "BaselineOnboardingPolicy",
    "DefaultExperiencePolicy",
    "EqualRateOnboardingPolicy",
    "ExperiencePolicy",
    "OnboardingPolicy",
]
