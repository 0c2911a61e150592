"""Fairness statistics over a set of period assignments.

Rates are primary assignments per presence day, so entities that joined late
or left early are compared on equal terms. The report carries:

- Gini coefficient of the rates, ``sum |ri - rj| / (2 n^2 mean)``,
- coefficient of variation of the rates (population std / mean),
- Theil index of the rates,
- standard deviation of the raw assignment counts,
- violations of the configured bounds and the corrective actions they call
  for,
- convergence of the rate variance against the ``1 / sqrt(periods)`` bound.
"""

import dataclasses
import math
from dataclasses import dataclass
from datetime import date
from typing import Iterable, Optional, Sequence

import numpy as np

from rotafair.domain.models import (
    AssignmentInput,
    CorrectiveAction,
    CorrectiveActionType,
    Entity,
    EntityInput,
    EntityRate,
    FairnessReport,
    FairnessViolation,
    ViolationType,
    coerce_assignment,
    coerce_entity,
)
from rotafair.scheduling.presence import PresenceCalculator


@dataclass
class FairnessThresholds:
    """Bounds checked by a fairness report.

    Attributes:
        gini_threshold: Maximum acceptable Gini coefficient.
        cv_threshold: Maximum acceptable coefficient of variation.
        deficit_coefficient: Per-entity cumulative deficit bound is this
            coefficient times the square root of presence days.
        convergence_window: Periods compared when checking whether the
            variance is trending down.
    """

    gini_threshold: float = 0.25
    cv_threshold: float = 0.5
    deficit_coefficient: float = 2.0
    convergence_window: int = 5


def gini_coefficient(values: np.ndarray) -> float:
    """Pairwise Gini coefficient, 0 for empty or all-zero input."""
    if values.size == 0:
        return 0.0
    mean = values.mean()
    if mean <= 0:
        return 0.0
    pairwise = np.abs(values[:, None] - values[None, :]).sum()
    return float(pairwise / (2 * values.size ** 2 * mean))


def theil_index(values: np.ndarray) -> float:
    """Theil T index; zero values contribute nothing."""
    if values.size == 0:
        return 0.0
    mean = values.mean()
    if mean <= 0:
        return 0.0
    ratios = values[values > 0] / mean
    return float((ratios * np.log(ratios)).sum() / values.size)


def convergence_rate(variance: float, period_count: int) -> float:
    """Variance relative to the theoretical ``1 / sqrt(t)`` bound.

    Args:
        variance: Current rate variance.
        period_count: Periods of operation so far.

    Returns:
        Below 1 when variance is under the bound, 1.0 with no periods.
    """
    if period_count <= 0:
        return 1.0
    return variance * math.sqrt(period_count)


def is_converging(variance_history: Sequence[float], window: int = 5) -> bool:
    """Check whether variance is trending down.

    Compares the mean of the last ``window`` values with the mean of the
    ``window`` values before them. Too short a history is not converging.
    """
    if len(variance_history) < window:
        return False
    recent = variance_history[-window:]
    older = variance_history[-2 * window:-window]
    if not older:
        return False
    return float(np.mean(recent)) < float(np.mean(older))


def derive_corrective_actions(
    violations: Iterable[FairnessViolation],
) -> list[CorrectiveAction]:
    """Turn per-entity deficit violations into corrective actions.

    Violations are handled most severe first. An entity owed assignments
    (positive deficit) gets a priority boost, an over-assigned one a
    penalty. Magnitude is the severity and the duration grows with it.
    """
    actions = []
    for violation in sorted(violations, key=lambda v: v.severity, reverse=True):
        if violation.violation_type != ViolationType.CUMULATIVE_DEFICIT:
            continue
        if not violation.entity_id:
            continue
        actions.append(
            CorrectiveAction(
                entity_id=violation.entity_id,
                action=(
                    CorrectiveActionType.PRIORITY_BOOST
                    if violation.value > 0
                    else CorrectiveActionType.PRIORITY_PENALTY
                ),
                magnitude=violation.severity,
                duration_periods=math.ceil(violation.severity * 4),
                reason=(
                    f"Cumulative deficit {violation.value:.2f} exceeds bound "
                    f"{violation.bound:.2f}"
                ),
            )
        )
    return actions


def apply_corrective_actions(
    entities: Iterable[EntityInput], actions: Iterable[CorrectiveAction]
) -> list[Entity]:
    """Fold corrective actions into the entities' carried fairness debt.

    Entities without an action are returned unchanged; the others are new
    objects, so the input is never modified.
    """
    deltas: dict[str, float] = {}
    for action in actions:
        deltas[action.entity_id] = deltas.get(action.entity_id, 0.0) + action.debt_delta

    adjusted = []
    for entity in map(coerce_entity, entities):
        if entity.id in deltas:
            entity = dataclasses.replace(
                entity,
                fairness_debt=entity.fairness_debt + deltas[entity.id],
                membership_intervals=list(entity.membership_intervals),
                attributes=dict(entity.attributes),
            )
        adjusted.append(entity)
    return adjusted


def compute_fairness_report(
    entities: Iterable[EntityInput],
    assignments: Iterable[AssignmentInput],
    reference_date: date,
    since: Optional[date] = None,
    thresholds: Optional[FairnessThresholds] = None,
    variance_history: Optional[Sequence[float]] = None,
) -> FairnessReport:
    """Compute distribution statistics and violations.

    Args:
        entities: Population to report on, as objects or entity records.
        assignments: Periods to count, as objects or period records. Only
            periods starting on or before the reference date (and on or
            after ``since``) are counted.
        reference_date: Date presence is measured at.
        since: Optional window start. Presence and assignments before it are
            ignored.
        thresholds: Bounds to check (defaults if omitted).
        variance_history: Per-period rate variance, used to decide whether
            the distribution is converging.

    Returns:
        The fairness report. Entities without presence in the window are
        listed with rate 0 but left out of the statistics.

    Raises:
        KeyError: If a record lacks a required key.
        ValueError: If a record is malformed.
    """
    thresholds = thresholds or FairnessThresholds()
    presence = PresenceCalculator()
    entities = sorted(map(coerce_entity, entities), key=lambda e: e.id)

    counted = [
        a
        for a in map(coerce_assignment, assignments)
        if a.period_start <= reference_date
        and (since is None or a.period_start >= since)
    ]
    counts = {entity.id: 0 for entity in entities}
    for assignment in counted:
        for entity_id in assignment.primary_ids:
            if entity_id in counts:
                counts[entity_id] += 1

    rows = []
    for entity in entities:
        days = presence.days_present_between(entity, since, reference_date)
        rate = counts[entity.id] / days if days > 0 else 0.0
        rows.append(EntityRate(entity.id, counts[entity.id], days, rate))

    measured = [row for row in rows if row.presence_days > 0]
    report = FairnessReport(entity_rates=rows)
    if measured:
        rates = np.array([row.rate for row in measured], dtype=float)
        report.mean_rate = float(rates.mean())
        report.rate_variance = float(rates.var())
        report.gini = gini_coefficient(rates)
        report.coefficient_of_variation = (
            float(rates.std() / report.mean_rate) if report.mean_rate > 0 else 0.0
        )
        report.theil_index = theil_index(rates)
        report.count_std_dev = float(
            np.array([row.assignment_count for row in measured], dtype=float).std()
        )

    if report.gini > thresholds.gini_threshold:
        report.violations.append(
            FairnessViolation(
                ViolationType.GINI_EXCEEDED, report.gini, thresholds.gini_threshold
            )
        )
    if report.coefficient_of_variation > thresholds.cv_threshold:
        report.violations.append(
            FairnessViolation(
                ViolationType.CV_EXCEEDED,
                report.coefficient_of_variation,
                thresholds.cv_threshold,
            )
        )

    for row in measured:
        deficit = report.mean_rate * row.presence_days - row.assignment_count
        bound = thresholds.deficit_coefficient * math.sqrt(row.presence_days)
        if abs(deficit) > bound:
            report.violations.append(
                FairnessViolation(
                    ViolationType.CUMULATIVE_DEFICIT,
                    deficit,
                    bound,
                    entity_id=row.entity_id,
                )
            )

    for assignment in counted:
        if not assignment.mentor_satisfied:
            report.violations.append(
                FairnessViolation(
                    ViolationType.MENTOR_MISSING,
                    1.0,
                    0.0,
                    period_index=assignment.period_index,
                )
            )

    report.corrective_actions = derive_corrective_actions(report.violations)
    report.convergence_rate = convergence_rate(report.rate_variance, len(counted))
    if variance_history is not None:
        report.converging = is_converging(
            variance_history, thresholds.convergence_window
        )
    return report
