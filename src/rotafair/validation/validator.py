"""Validation module for verifying rotation correctness.

This module checks generated or hand-edited periods against the hard rules of
the rotation. It is used by tests and by callers that accept schedules from
outside the scheduler.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Optional

from rotafair.domain.models import Entity, GenerationOptions, PeriodAssignment
from rotafair.scheduling.presence import PresenceCalculator


class ValidationErrorType(Enum):
    """Types of validation errors."""

    UNKNOWN_ENTITY = "unknown_entity"
    INACTIVE_ENTITY = "inactive_entity"
    DUPLICATE_ENTITY = "duplicate_entity"
    TEAM_OVERSIZED = "team_oversized"
    CONSECUTIVE_ASSIGNMENT = "consecutive_assignment"
    PERIODS_OUT_OF_ORDER = "periods_out_of_order"


@dataclass
class ValidationError:
    """A single validation error."""

    error_type: ValidationErrorType
    message: str
    entity_id: Optional[str] = None
    period_index: Optional[int] = None

    def __str__(self) -> str:
        parts = [f"[{self.error_type.value}]"]
        if self.entity_id:
            parts.append(f"Entity {self.entity_id}:")
        parts.append(self.message)
        if self.period_index is not None:
            parts.append(f"(period {self.period_index})")
        return " ".join(parts)


@dataclass
class ValidationResult:
    """Result of validating a set of periods."""

    is_valid: bool
    errors: list[ValidationError] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def add_error(self, error: ValidationError) -> None:
        """Add an error and mark as invalid."""
        self.errors.append(error)
        self.is_valid = False

    def add_warning(self, warning: str) -> None:
        """Add a warning (doesn't affect validity)."""
        self.warnings.append(warning)


class RotationValidator:
    """Validates period assignments against the rotation rules.

    Example:
        >>> validator = RotationValidator()
        >>> result = validator.validate(assignments, entities, options)
        >>> if not result.is_valid:
        ...     for error in result.errors:
        ...         print(error)
    """

    def __init__(self):
        self.presence = PresenceCalculator()

    def validate(
        self,
        assignments: Iterable[PeriodAssignment],
        entities: Iterable[Entity],
        options: Optional[GenerationOptions] = None,
    ) -> ValidationResult:
        """Validate a sequence of periods.

        Args:
            assignments: Periods in schedule order.
            entities: Population the periods draw from.
            options: Rules to check against (defaults if omitted).

        Returns:
            ValidationResult with any errors found. Undersized teams and
            missing experienced members are reported as warnings.
        """
        options = options or GenerationOptions()
        entities_map = {entity.id: entity for entity in entities}
        result = ValidationResult(is_valid=True)

        previous = None
        for assignment in assignments:
            self._validate_period(assignment, entities_map, options, result)
            if previous is not None:
                self._validate_sequence(previous, assignment, options, result)
            previous = assignment

        return result

    def _validate_period(
        self,
        assignment: PeriodAssignment,
        entities_map: dict[str, Entity],
        options: GenerationOptions,
        result: ValidationResult,
    ) -> None:
        index = assignment.period_index
        for ids in (assignment.primary_ids, assignment.substitute_ids):
            seen = set()
            for entity_id in ids:
                if entity_id in seen:
                    result.add_error(
                        ValidationError(
                            ValidationErrorType.DUPLICATE_ENTITY,
                            "Listed more than once",
                            entity_id=entity_id,
                            period_index=index,
                        )
                    )
                seen.add(entity_id)

        for entity_id in assignment.assigned_ids:
            entity = entities_map.get(entity_id)
            if entity is None:
                result.add_error(
                    ValidationError(
                        ValidationErrorType.UNKNOWN_ENTITY,
                        "Not part of the population",
                        entity_id=entity_id,
                        period_index=index,
                    )
                )
            elif not self.presence.is_active(entity, assignment.period_start):
                result.add_error(
                    ValidationError(
                        ValidationErrorType.INACTIVE_ENTITY,
                        f"Not active on {assignment.period_start}",
                        entity_id=entity_id,
                        period_index=index,
                    )
                )

        team = len(assignment.primary_ids)
        if team > options.team_size:
            result.add_error(
                ValidationError(
                    ValidationErrorType.TEAM_OVERSIZED,
                    f"{team} primaries for a team of {options.team_size}",
                    period_index=index,
                )
            )
        elif team < options.team_size:
            result.add_warning(
                f"Period {index}: {team} of {options.team_size} primaries"
            )

        if options.require_experienced_member and not assignment.mentor_satisfied:
            result.add_warning(f"Period {index}: no experienced member")

    def _validate_sequence(
        self,
        previous: PeriodAssignment,
        current: PeriodAssignment,
        options: GenerationOptions,
        result: ValidationResult,
    ) -> None:
        if current.period_start <= previous.period_start:
            result.add_error(
                ValidationError(
                    ValidationErrorType.PERIODS_OUT_OF_ORDER,
                    f"Starts {current.period_start}, not after "
                    f"{previous.period_start}",
                    period_index=current.period_index,
                )
            )
        if not options.enforce_no_consecutive:
            return
        for entity_id in set(previous.primary_ids) & set(current.primary_ids):
            result.add_error(
                ValidationError(
                    ValidationErrorType.CONSECUTIVE_ASSIGNMENT,
                    f"Also primary in period {previous.period_index}",
                    entity_id=entity_id,
                    period_index=current.period_index,
                )
            )
