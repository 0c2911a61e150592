"""Domain models for the rotation scheduler.

This module contains the core data structures shared by every part of the
rotation system: entities and their membership intervals, per-entity
estimator state, scheduled period assignments, generation options and the
batch result returned to callers.

Records exchanged with the surrounding application use camelCase keys
(``periodIndex``, ``membershipIntervals`` ...). Every model that has a record
form keeps unknown keys so a read/write cycle never drops fields.
"""

import dataclasses
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Optional, Union


def parse_date(value: Any) -> date:
    """Coerce a record value into a ``date``.

    Args:
        value: A ``date``, a ``datetime`` or an ISO-8601 ``YYYY-MM-DD`` string.

    Returns:
        The parsed calendar date.

    Raises:
        ValueError: If the value is not a date or an unparsable string.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value[:10])
        except ValueError as exc:
            raise ValueError(f"Malformed date: {value!r}") from exc
    raise ValueError(f"Malformed date: {value!r}")


def format_date(value: Optional[date]) -> Optional[str]:
    """Render a date as ISO text, passing ``None`` through."""
    return value.isoformat() if value is not None else None


@dataclass(frozen=True)
class MembershipInterval:
    """A contiguous span during which an entity belongs to the rotation.

    Attributes:
        start: First day of membership (inclusive).
        end: Last day of membership (inclusive), None while still active.
    """

    start: date
    end: Optional[date] = None

    def __post_init__(self):
        if self.end is not None and self.end < self.start:
            raise ValueError(
                f"Interval end {self.end} is before its start {self.start}"
            )

    @property
    def is_open(self) -> bool:
        """True if the interval has no end date."""
        return self.end is None

    def contains(self, day: date) -> bool:
        """Check whether a date falls inside the interval."""
        return self.start <= day and (self.end is None or day <= self.end)

    def to_record(self) -> dict:
        return {"start": self.start.isoformat(), "end": format_date(self.end)}

    @classmethod
    def from_record(cls, record: dict) -> "MembershipInterval":
        end = record.get("end")
        return cls(
            start=parse_date(record["start"]),
            end=parse_date(end) if end is not None else None,
        )


@dataclass
class Entity:
    """A participant in the rotation.

    Entities are read-only inputs to the scheduler. Whether an entity counts
    as experienced is derived on demand by an ``ExperiencePolicy`` and never
    stored here.

    Attributes:
        id: Stable unique identifier.
        membership_intervals: Chronological, non-overlapping membership spans.
            A returning entity gets a new interval appended.
        name: Display name.
        fairness_debt: Imbalance carried over from earlier scheduling cycles.
            Positive values mean the entity is owed assignments.
        attributes: Extra record fields, kept for lossless round-trips.
    """

    id: str
    membership_intervals: list[MembershipInterval] = field(default_factory=list)
    name: str = ""
    fairness_debt: float = 0.0
    attributes: dict = field(default_factory=dict)

    def __post_init__(self):
        for previous, current in zip(
            self.membership_intervals, self.membership_intervals[1:]
        ):
            if previous.end is None or current.start <= previous.end:
                raise ValueError(
                    f"Entity {self.id}: membership intervals overlap or are "
                    f"out of order ({previous.start} / {current.start})"
                )

    @property
    def first_joined(self) -> Optional[date]:
        """Start of the earliest membership interval."""
        if not self.membership_intervals:
            return None
        return self.membership_intervals[0].start

    @property
    def current_interval(self) -> Optional[MembershipInterval]:
        """The open interval, if the entity is currently a member."""
        if self.membership_intervals and self.membership_intervals[-1].is_open:
            return self.membership_intervals[-1]
        return None

    def to_record(self) -> dict:
        record: dict[str, Any] = {"id": self.id}
        if self.name:
            record["name"] = self.name
        record["membershipIntervals"] = [
            interval.to_record() for interval in self.membership_intervals
        ]
        if self.fairness_debt:
            record["fairnessDebt"] = self.fairness_debt
        record.update(self.attributes)
        return record

    @classmethod
    def from_record(cls, record: dict) -> "Entity":
        """Build an entity from its record form.

        Args:
            record: Mapping with ``id`` and ``membershipIntervals`` keys.
                Any other keys are kept in ``attributes``.

        Raises:
            ValueError: If a date is malformed or intervals overlap.
        """
        known = {"id", "name", "membershipIntervals", "fairnessDebt"}
        return cls(
            id=str(record["id"]),
            membership_intervals=[
                MembershipInterval.from_record(item)
                for item in record.get("membershipIntervals", [])
            ],
            name=record.get("name", ""),
            fairness_debt=float(record.get("fairnessDebt", 0.0)),
            attributes={k: v for k, v in record.items() if k not in known},
        )


@dataclass(frozen=True)
class EstimatorState:
    """Smoothed belief about an entity's per-period assignment rate.

    Attributes:
        entity_id: Entity the state belongs to.
        mean: Posterior mean of the assignment rate, kept within [0, 1].
        variance: Posterior variance (uncertainty), never negative.
        observation_count: Number of periods observed so far.
        last_updated: Date of the period that produced this state.
    """

    entity_id: str
    mean: float = 0.0
    variance: float = 0.1
    observation_count: int = 0
    last_updated: Optional[date] = None

    def __post_init__(self):
        if self.variance < 0:
            raise ValueError(f"Negative variance for {self.entity_id}")
        object.__setattr__(self, "mean", min(1.0, max(0.0, float(self.mean))))

    @property
    def std_dev(self) -> float:
        return self.variance ** 0.5

    def to_record(self) -> dict:
        return {
            "entityId": self.entity_id,
            "mean": self.mean,
            "variance": self.variance,
            "observationCount": self.observation_count,
            "lastUpdated": format_date(self.last_updated),
        }

    @classmethod
    def from_record(cls, record: dict) -> "EstimatorState":
        last_updated = record.get("lastUpdated")
        return cls(
            entity_id=str(record["entityId"]),
            mean=float(record.get("mean", 0.0)),
            variance=float(record.get("variance", 0.1)),
            observation_count=int(record.get("observationCount", 0)),
            last_updated=parse_date(last_updated) if last_updated else None,
        )


_ASSIGNMENT_KEYS = (
    "periodIndex",
    "periodStartDate",
    "primaryIds",
    "substituteIds",
    "mentorSatisfied",
    "annotation",
    "isEmergency",
    "emergencyReason",
)


@dataclass(frozen=True)
class PeriodAssignment:
    """One scheduled period.

    Instances are immutable. Manual edits go through ``replace_assignee`` and
    ``mark_emergency``, which return new records and never touch any other
    period.

    Attributes:
        period_index: Position of the period in the overall sequence.
        period_start: First day of the period.
        primary_ids: Entities doing the task, in rank order.
        substitute_ids: Backup entities, in rank order.
        mentor_satisfied: Whether the team contains an experienced member.
        annotation: Free-text note.
        is_emergency: Whether the period was flagged as an emergency.
        emergency_reason: Reason given for the emergency flag.
        attributes: Extra record fields, kept for lossless round-trips.
    """

    period_index: int
    period_start: date
    primary_ids: tuple[str, ...] = ()
    substitute_ids: tuple[str, ...] = ()
    mentor_satisfied: bool = True
    annotation: Optional[str] = None
    is_emergency: bool = False
    emergency_reason: Optional[str] = None
    attributes: dict = field(default_factory=dict, compare=False)

    def __post_init__(self):
        # Lists handed in by callers are frozen into tuples
        object.__setattr__(self, "primary_ids", tuple(self.primary_ids))
        object.__setattr__(self, "substitute_ids", tuple(self.substitute_ids))
        overlap = set(self.primary_ids) & set(self.substitute_ids)
        if overlap:
            raise ValueError(
                f"Period {self.period_index}: {sorted(overlap)} listed as both "
                "primary and substitute"
            )

    @property
    def assigned_ids(self) -> tuple[str, ...]:
        """Primary and substitute ids together."""
        return self.primary_ids + self.substitute_ids

    def involves(self, entity_id: str) -> bool:
        return entity_id in self.primary_ids or entity_id in self.substitute_ids

    def replace_assignee(
        self, old_id: str, new_id: str, annotation: Optional[str] = None
    ) -> "PeriodAssignment":
        """Return a copy with one assignee swapped for another.

        The swap keeps the position of the replaced entity. Nothing else is
        recomputed, including ``mentor_satisfied``.

        Args:
            old_id: Entity currently in the period.
            new_id: Entity taking its place.
            annotation: Optional note replacing the current annotation.

        Raises:
            ValueError: If ``old_id`` is not in the period.
        """
        if not self.involves(old_id):
            raise ValueError(f"{old_id} is not assigned in period {self.period_index}")
        primaries = tuple(new_id if i == old_id else i for i in self.primary_ids)
        substitutes = tuple(
            i for i in (new_id if i == old_id else i for i in self.substitute_ids)
            if i not in primaries
        )
        return dataclasses.replace(
            self,
            primary_ids=primaries,
            substitute_ids=substitutes,
            annotation=annotation if annotation is not None else self.annotation,
            attributes=dict(self.attributes),
        )

    def mark_emergency(self, reason: str) -> "PeriodAssignment":
        """Return a copy flagged as an emergency."""
        return dataclasses.replace(
            self,
            is_emergency=True,
            emergency_reason=reason,
            attributes=dict(self.attributes),
        )

    def to_record(self) -> dict:
        record: dict[str, Any] = {
            "periodIndex": self.period_index,
            "periodStartDate": self.period_start.isoformat(),
            "primaryIds": list(self.primary_ids),
            "substituteIds": list(self.substitute_ids),
            "mentorSatisfied": self.mentor_satisfied,
        }
        if self.annotation is not None:
            record["annotation"] = self.annotation
        if self.is_emergency:
            record["isEmergency"] = True
        if self.emergency_reason is not None:
            record["emergencyReason"] = self.emergency_reason
        record.update(self.attributes)
        return record

    @classmethod
    def from_record(cls, record: dict) -> "PeriodAssignment":
        """Build a period assignment from its record form.

        Raises:
            ValueError: If the start date is malformed or the primary and
                substitute lists overlap.
        """
        return cls(
            period_index=int(record["periodIndex"]),
            period_start=parse_date(record["periodStartDate"]),
            primary_ids=tuple(str(i) for i in record.get("primaryIds", [])),
            substitute_ids=tuple(str(i) for i in record.get("substituteIds", [])),
            mentor_satisfied=bool(record.get("mentorSatisfied", True)),
            annotation=record.get("annotation"),
            is_emergency=bool(record.get("isEmergency", False)),
            emergency_reason=record.get("emergencyReason"),
            attributes={
                k: v for k, v in record.items() if k not in _ASSIGNMENT_KEYS
            },
        )


EntityInput = Union[Entity, dict]
AssignmentInput = Union[PeriodAssignment, dict]


def coerce_entity(item: EntityInput) -> Entity:
    """Return an ``Entity``, building it from its record form if needed.

    Raises:
        KeyError: If a record lacks its ``id``.
        ValueError: If a record holds malformed dates or intervals.
    """
    return item if isinstance(item, Entity) else Entity.from_record(item)


def coerce_assignment(item: AssignmentInput) -> PeriodAssignment:
    """Return a ``PeriodAssignment``, building it from its record form if needed.

    Raises:
        KeyError: If a record lacks ``periodIndex`` or ``periodStartDate``.
        ValueError: If a record is malformed.
    """
    if isinstance(item, PeriodAssignment):
        return item
    return PeriodAssignment.from_record(item)


@dataclass
class GenerationOptions:
    """Options controlling one batch generation call.

    Attributes:
        team_size: Number of primary assignees per period.
        substitute_count: Number of substitutes per period.
        enforce_no_consecutive: Keep last period's primaries out of this one.
        require_experienced_member: Require one experienced primary per team.
        random_seed: Seed for the stochastic tie-breaking.
        temperature: Gumbel noise scale; 0 gives a deterministic ranking.
        gini_threshold: Gini coefficient above which a warning is raised.
        cv_threshold: Coefficient of variation above which a warning is raised.
        period_length_days: Days between consecutive period start dates.
        recent_window_periods: Length of the trailing window used for the
            recency bonus.
        align_to_week_start: Move the start date back to its Monday.
        rest_substitutes_min_population: Active pool size from which the
            previous period's substitutes are also rested.
        adaptive_temperature: Derive each period's temperature from the
            current rate spread, convergence and selection entropy, using
            ``temperature`` as the base.
        min_temperature: Lower clamp for the adaptive temperature.
        max_temperature: Upper clamp for the adaptive temperature.
        diversity_weight: Log-priority penalty per recent selection
            (0 disables it).
        diversity_window: Periods of recent selections the penalty looks at.
    """

    team_size: int = 2
    substitute_count: int = 2
    enforce_no_consecutive: bool = True
    require_experienced_member: bool = True
    random_seed: int = 42
    temperature: float = 0.1
    gini_threshold: float = 0.25
    cv_threshold: float = 0.5
    period_length_days: int = 7
    recent_window_periods: int = 4
    align_to_week_start: bool = False
    rest_substitutes_min_population: int = 10
    adaptive_temperature: bool = False
    min_temperature: float = 0.01
    max_temperature: float = 5.0
    diversity_weight: float = 0.0
    diversity_window: int = 5

    def validate(self) -> list[str]:
        """Return a message for every invalid option (empty if all valid)."""
        problems = []
        if self.team_size < 1:
            problems.append(f"team_size must be at least 1, got {self.team_size}")
        if self.substitute_count < 0:
            problems.append(
                f"substitute_count must not be negative, got {self.substitute_count}"
            )
        if self.temperature < 0:
            problems.append(
                f"temperature must not be negative, got {self.temperature}"
            )
        if self.period_length_days < 1:
            problems.append(
                f"period_length_days must be at least 1, got {self.period_length_days}"
            )
        if self.recent_window_periods < 1:
            problems.append(
                "recent_window_periods must be at least 1, "
                f"got {self.recent_window_periods}"
            )
        if self.adaptive_temperature and not (
            0 < self.min_temperature <= self.max_temperature
        ):
            problems.append(
                "adaptive temperature bounds must satisfy "
                f"0 < {self.min_temperature} <= {self.max_temperature}"
            )
        if self.diversity_weight < 0:
            problems.append(
                f"diversity_weight must not be negative, got {self.diversity_weight}"
            )
        if self.diversity_window < 1:
            problems.append(
                f"diversity_window must be at least 1, got {self.diversity_window}"
            )
        return problems


class WarningType(Enum):
    """Kinds of constraint relaxation reported alongside a result."""

    TEAM_UNDERSIZED = "team_undersized"
    SUBSTITUTES_SHORT = "substitutes_short"
    CONSECUTIVE_RELAXED = "consecutive_relaxed"
    MENTOR_UNAVAILABLE = "mentor_unavailable"
    GINI_EXCEEDED = "gini_exceeded"
    CV_EXCEEDED = "cv_exceeded"
    NO_REPLACEMENT = "no_replacement"


@dataclass
class ScheduleWarning:
    """A non-fatal constraint relaxation."""

    warning_type: WarningType
    message: str
    period_index: Optional[int] = None
    entity_id: Optional[str] = None

    def __str__(self) -> str:
        parts = [f"[{self.warning_type.value}]"]
        if self.period_index is not None:
            parts.append(f"Period {self.period_index}:")
        parts.append(self.message)
        return " ".join(parts)


class ViolationType(Enum):
    """Kinds of fairness violation found by a fairness report."""

    GINI_EXCEEDED = "gini_exceeded"
    CV_EXCEEDED = "cv_exceeded"
    CUMULATIVE_DEFICIT = "cumulative_deficit"
    MENTOR_MISSING = "mentor_missing"


@dataclass
class FairnessViolation:
    """A single fairness violation.

    Attributes:
        violation_type: What was violated.
        value: Observed value.
        bound: Limit that was exceeded.
        entity_id: Entity concerned, for per-entity violations.
        period_index: Period concerned, for per-period violations.
    """

    violation_type: ViolationType
    value: float
    bound: float
    entity_id: Optional[str] = None
    period_index: Optional[int] = None

    @property
    def severity(self) -> float:
        """How far the value is past its bound (1.0 means at the bound)."""
        if self.bound == 0:
            return float("inf") if self.value else 0.0
        return abs(self.value) / self.bound

    def __str__(self) -> str:
        parts = [f"[{self.violation_type.value}]"]
        if self.entity_id:
            parts.append(f"Entity {self.entity_id}:")
        if self.period_index is not None:
            parts.append(f"Period {self.period_index}:")
        parts.append(f"{self.value:.4f} exceeds {self.bound:.4f}")
        return " ".join(parts)


class CorrectiveActionType(Enum):
    """Kinds of corrective action derived from fairness violations."""

    PRIORITY_BOOST = "priority_boost"
    PRIORITY_PENALTY = "priority_penalty"


@dataclass
class CorrectiveAction:
    """A suggested adjustment for an entity that drifted out of bounds.

    Attributes:
        entity_id: Entity to adjust.
        action: Boost for entities owed assignments, penalty for the rest.
        magnitude: Size of the adjustment (the violation severity).
        duration_periods: Periods the adjustment should last.
        reason: Human-readable explanation.
    """

    entity_id: str
    action: CorrectiveActionType
    magnitude: float
    duration_periods: int
    reason: str = ""

    @property
    def debt_delta(self) -> float:
        """Signed change to apply to an entity's carried fairness debt."""
        if self.action == CorrectiveActionType.PRIORITY_BOOST:
            return self.magnitude
        return -self.magnitude


@dataclass
class EntityRate:
    """Assignment rate of one entity inside a fairness report."""

    entity_id: str
    assignment_count: int
    presence_days: int
    rate: float


@dataclass
class FairnessReport:
    """Distribution statistics for a set of assignments.

    Attributes:
        entity_rates: Per-entity rate rows, ordered by entity id.
        mean_rate: Mean assignments per presence day.
        gini: Gini coefficient of the rates (0 = perfectly equal).
        coefficient_of_variation: Standard deviation over mean of the rates.
        count_std_dev: Standard deviation of raw assignment counts.
        theil_index: Entropy-based inequality of the rates.
        rate_variance: Population variance of the rates.
        violations: Fairness violations found.
        corrective_actions: Adjustments derived from the violations, most
            severe first.
        convergence_rate: Rate variance relative to the 1/sqrt(periods)
            bound (below 1 means converging faster than the bound).
        converging: Whether per-period rate variance is trending down.
    """

    entity_rates: list[EntityRate] = field(default_factory=list)
    mean_rate: float = 0.0
    gini: float = 0.0
    coefficient_of_variation: float = 0.0
    count_std_dev: float = 0.0
    theil_index: float = 0.0
    rate_variance: float = 0.0
    violations: list[FairnessViolation] = field(default_factory=list)
    corrective_actions: list[CorrectiveAction] = field(default_factory=list)
    convergence_rate: float = 1.0
    converging: bool = False

    @property
    def per_entity_rate(self) -> dict[str, float]:
        return {row.entity_id: row.rate for row in self.entity_rates}

    @property
    def is_fair(self) -> bool:
        return not self.violations


@dataclass
class BatchResult:
    """Result of a batch generation call.

    On a validation error ``success`` is False, ``errors`` explains why and
    no assignments are returned.

    Attributes:
        success: Whether the batch was generated.
        assignments: Generated periods in order.
        warnings: Constraint relaxations encountered.
        errors: Validation errors that rejected the call.
        fairness_report: Report over the generated periods.
        estimator_states: Estimator table to carry into the next batch.
        variance_history: Rate variance across the active pool after each
            period.
        temperatures: Selection temperature used for each period.
    """

    success: bool
    assignments: list[PeriodAssignment] = field(default_factory=list)
    warnings: list[ScheduleWarning] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    fairness_report: Optional[FairnessReport] = None
    estimator_states: dict[str, EstimatorState] = field(default_factory=dict)
    variance_history: list[float] = field(default_factory=list)
    temperatures: list[float] = field(default_factory=list)

    def add_error(self, error: str) -> None:
        """Add an error and mark the batch as failed."""
        self.errors.append(error)
        self.success = False

    def add_warning(self, warning: ScheduleWarning) -> None:
        self.warnings.append(warning)

    def assignment_counts(self) -> dict[str, int]:
        """Primary assignment count per entity over the batch."""
        counts: dict[str, int] = {}
        for assignment in self.assignments:
            for entity_id in assignment.primary_ids:
                counts[entity_id] = counts.get(entity_id, 0) + 1
        return counts
