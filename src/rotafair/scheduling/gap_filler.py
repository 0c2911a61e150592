"""Filling the slots left by an entity removed from an existing schedule.

Only periods that contained the removed entity are touched; every other
period is returned as the very same object. Each touched period gets at most
one replacement, taken from entities that are active on the period date and
not already part of it. When nobody qualifies the slot stays empty.
Optionally the primaries of the neighbouring periods can be kept out too.
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import date
from typing import Iterable, Optional

from rotafair.domain.models import (
    AssignmentInput,
    Entity,
    EntityInput,
    PeriodAssignment,
    ScheduleWarning,
    WarningType,
    coerce_assignment,
    coerce_entity,
)
from rotafair.domain.policies import DefaultExperiencePolicy, ExperiencePolicy
from rotafair.scheduling.presence import PresenceCalculator
from rotafair.scheduling.priority import PriorityScorer

logger = logging.getLogger(__name__)


@dataclass
class GapFillResult:
    """Outcome of a gap fill.

    Attributes:
        assignments: All periods, in input order, with the touched ones
            replaced.
        changed_indices: Period indices that were modified.
        warnings: Slots that could not be filled.
    """

    assignments: list[PeriodAssignment] = field(default_factory=list)
    changed_indices: list[int] = field(default_factory=list)
    warnings: list[ScheduleWarning] = field(default_factory=list)


class GapFiller:
    """Replaces a removed entity period by period.

    Attributes:
        rest_adjacent: Skip candidates who are primary in the period right
            before or after the one being filled. Off by default, so every
            active entity not already in the period is a candidate.
    """

    def __init__(
        self,
        experience_policy: Optional[ExperiencePolicy] = None,
        scorer: Optional[PriorityScorer] = None,
        rest_adjacent: bool = False,
    ):
        self.experience_policy = experience_policy or DefaultExperiencePolicy()
        self.scorer = scorer or PriorityScorer()
        self.presence = PresenceCalculator()
        self.rest_adjacent = rest_adjacent

    def fill_gap_after_removal(
        self,
        removed_entity_id: str,
        existing_assignments: Iterable[AssignmentInput],
        current_population: Iterable[EntityInput],
        reference_date: date,
    ) -> GapFillResult:
        """Replace a removed entity in every period that contained it.

        Args:
            removed_entity_id: Entity leaving the schedule.
            existing_assignments: Previously generated periods, as objects
                or records.
            current_population: Entities still in the rotation, as objects
                or records.
            reference_date: Date presence is measured at for scoring.

        Returns:
            The updated periods plus warnings for unfilled slots.

        Raises:
            KeyError: If a record lacks a required key.
            ValueError: If a record is malformed.
        """
        assignments = [coerce_assignment(a) for a in existing_assignments]
        population = {
            entity.id: entity
            for entity in map(coerce_entity, current_population)
            if entity.id != removed_entity_id
        }
        counts: dict[str, int] = {}
        for assignment in assignments:
            for entity_id in assignment.primary_ids:
                if entity_id != removed_entity_id:
                    counts[entity_id] = counts.get(entity_id, 0) + 1

        by_index = {a.period_index: a for a in assignments}
        result = GapFillResult()
        for assignment in assignments:
            if not assignment.involves(removed_entity_id):
                result.assignments.append(assignment)
                continue

            replacement = self._best_candidate(
                assignment, by_index, population, counts, reference_date
            )
            updated = self._apply(assignment, removed_entity_id, replacement)
            if replacement is None:
                result.warnings.append(
                    ScheduleWarning(
                        WarningType.NO_REPLACEMENT,
                        f"No replacement available for {removed_entity_id}; "
                        "slot left empty",
                        period_index=assignment.period_index,
                        entity_id=removed_entity_id,
                    )
                )
            elif replacement in updated.primary_ids:
                counts[replacement] = counts.get(replacement, 0) + 1

            if updated.primary_ids != assignment.primary_ids:
                updated = replace(
                    updated,
                    mentor_satisfied=self._has_experienced(
                        updated, population, counts
                    ),
                )
            by_index[updated.period_index] = updated
            result.assignments.append(updated)
            result.changed_indices.append(updated.period_index)

        logger.info(
            "Removed %s from %d period(s), %d left short",
            removed_entity_id,
            len(result.changed_indices),
            len(result.warnings),
        )
        return result

    def _best_candidate(
        self,
        assignment: PeriodAssignment,
        by_index: dict[int, PeriodAssignment],
        population: dict[str, Entity],
        counts: dict[str, int],
        reference_date: date,
    ) -> Optional[str]:
        blocked = set(assignment.assigned_ids)
        if self.rest_adjacent:
            for neighbour in (assignment.period_index - 1, assignment.period_index + 1):
                if neighbour in by_index:
                    blocked.update(by_index[neighbour].primary_ids)

        scores = [
            self.scorer.score(
                entity.id,
                None,
                presence_days=self.presence.days_present(entity, reference_date),
                is_mentor_candidate=False,
                recent_assignment_count=0,
                cross_period_debt=entity.fairness_debt,
                effective_assignments=counts.get(entity.id, 0),
                effective_days=self.presence.days_present(entity, reference_date),
            )
            for entity in population.values()
            if entity.id not in blocked
            and self.presence.is_active(entity, assignment.period_start)
        ]
        if not scores:
            return None
        return min(scores, key=lambda score: score.rank_key).entity_id

    @staticmethod
    def _apply(
        assignment: PeriodAssignment, removed_id: str, replacement: Optional[str]
    ) -> PeriodAssignment:
        def swap(ids: tuple[str, ...]) -> tuple[str, ...]:
            if replacement is None:
                return tuple(i for i in ids if i != removed_id)
            return tuple(replacement if i == removed_id else i for i in ids)

        return replace(
            assignment,
            primary_ids=swap(assignment.primary_ids),
            substitute_ids=swap(assignment.substitute_ids),
            attributes=dict(assignment.attributes),
        )

    def _has_experienced(
        self,
        assignment: PeriodAssignment,
        population: dict[str, Entity],
        counts: dict[str, int],
    ) -> bool:
        for entity_id in assignment.primary_ids:
            entity = population.get(entity_id)
            if entity is None:
                continue
            days = self.presence.days_present(entity, assignment.period_start)
            if self.experience_policy.is_experienced(days, counts.get(entity_id, 0)):
                return True
        return False


def fill_gap_after_removal(
    removed_entity_id: str,
    existing_assignments: Iterable[AssignmentInput],
    current_population: Iterable[EntityInput],
    reference_date: date,
    rest_adjacent: bool = False,
) -> GapFillResult:
    """Fill gaps with a default-configured ``GapFiller``."""
    return GapFiller(rest_adjacent=rest_adjacent).fill_gap_after_removal(
        removed_entity_id, existing_assignments, current_population, reference_date
    )
