"""Validation and fairness reporting for rotation schedules."""

from rotafair.validation.fairness_report import (
    FairnessThresholds,
    apply_corrective_actions,
    compute_fairness_report,
    convergence_rate,
    derive_corrective_actions,
    is_converging,
)
from rotafair.validation.validator import RotationValidator, ValidationError

__all__ = [
    "FairnessThresholds",
    "RotationValidator",
    "ValidationError",
    "apply_corrective_actions",
    "compute_fairness_report",
    "convergence_rate",
    "derive_corrective_actions",
    "is_converging",
]
