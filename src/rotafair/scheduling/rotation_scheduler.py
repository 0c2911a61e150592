"""Multi-period rotation scheduler.

This module drives batch generation. For each period it builds the active
candidate pool, scores every candidate from the running batch state, applies
the rest and experienced-member rules, selects the team and folds the outcome
back into the running state and the rate estimator before moving on to the
next period.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from types import MappingProxyType
from typing import Callable, Iterable, Mapping, Optional, Union

import numpy as np

from rotafair.domain.models import (
    AssignmentInput,
    BatchResult,
    Entity,
    EntityInput,
    EstimatorState,
    GenerationOptions,
    PeriodAssignment,
    ScheduleWarning,
    WarningType,
    coerce_assignment,
    coerce_entity,
    parse_date,
)
from rotafair.domain.policies import (
    DefaultExperiencePolicy,
    EqualRateOnboardingPolicy,
    ExperiencePolicy,
    OnboardingPolicy,
)
from rotafair.scheduling.estimator import EstimatorConfig, RateEstimator
from rotafair.scheduling.presence import PresenceCalculator
from rotafair.scheduling.priority import PriorityConfig, PriorityScore, PriorityScorer
from rotafair.scheduling.random_source import NumpyRandomSource, RandomSource
from rotafair.scheduling.selector import (
    StochasticSelector,
    adaptive_temperature,
    apply_diversity_penalty,
    selection_entropy,
)
from rotafair.validation.fairness_report import (
    FairnessThresholds,
    compute_fairness_report,
    is_converging,
)

logger = logging.getLogger(__name__)


@dataclass
class RunningBatchState:
    """Accumulated state for one batch generation call.

    The historical snapshot is taken once when the batch starts and exposed
    read-only, so periods generated earlier in the same call are never
    counted twice.

    Attributes:
        historical_counts: Primary assignments per entity before the batch.
        historical_days: Presence days per entity at the batch start.
        batch_counts: Primary assignments per entity within the batch.
        periods_generated: Periods completed so far.
        recent_primaries: Primary teams of the trailing periods, oldest first.
    """

    historical_counts: Mapping[str, int]
    historical_days: Mapping[str, int]
    batch_counts: dict[str, int] = field(default_factory=dict)
    periods_generated: int = 0
    recent_primaries: list[tuple[str, ...]] = field(default_factory=list)

    @classmethod
    def snapshot(
        cls,
        entities: list[Entity],
        history: list[PeriodAssignment],
        start_date: date,
        presence: PresenceCalculator,
        window: int,
    ) -> "RunningBatchState":
        counts = {entity.id: 0 for entity in entities}
        for assignment in history:
            for entity_id in assignment.primary_ids:
                counts[entity_id] = counts.get(entity_id, 0) + 1
        days = {e.id: presence.days_present(e, start_date) for e in entities}
        earlier = [a for a in history if a.period_start < start_date]
        return cls(
            historical_counts=MappingProxyType(counts),
            historical_days=MappingProxyType(days),
            batch_counts={entity.id: 0 for entity in entities},
            recent_primaries=[a.primary_ids for a in earlier[-window:]],
        )

    def effective_assignments(self, entity_id: str) -> int:
        """Historical plus in-batch assignment count."""
        return self.historical_counts.get(entity_id, 0) + self.batch_counts.get(
            entity_id, 0
        )

    def recent_count(self, entity_id: str, window: int) -> int:
        """Primary appearances in the last ``window`` periods."""
        return sum(entity_id in team for team in self.recent_primaries[-window:])

    def record_period(self, primary_ids: Iterable[str], window: int) -> None:
        """Fold one completed period into the state."""
        team = tuple(primary_ids)
        for entity_id in team:
            self.batch_counts[entity_id] = self.batch_counts.get(entity_id, 0) + 1
            assert self.batch_counts[entity_id] > 0
        self.periods_generated += 1
        self.recent_primaries.append(team)
        del self.recent_primaries[:-window]


class RotationScheduler:
    """Generates batches of period assignments.

    The scheduler itself is stateless between calls: the running batch state,
    the estimator table and the random source all live only for the duration
    of one ``generate_batch`` call.

    Example:
        >>> scheduler = RotationScheduler()
        >>> result = scheduler.generate_batch(date(2024, 1, 1), 8, entities)
        >>> for assignment in result.assignments:
        ...     print(assignment.period_start, assignment.primary_ids)
    """

    def __init__(
        self,
        experience_policy: Optional[ExperiencePolicy] = None,
        onboarding_policy: Optional[OnboardingPolicy] = None,
        estimator_config: Optional[EstimatorConfig] = None,
        priority_config: Optional[PriorityConfig] = None,
        random_source_factory: Optional[Callable[[int], RandomSource]] = None,
    ):
        self.experience_policy = experience_policy or DefaultExperiencePolicy()
        self.onboarding_policy = onboarding_policy or EqualRateOnboardingPolicy()
        self.estimator = RateEstimator(estimator_config)
        self.scorer = PriorityScorer(priority_config)
        self.presence = PresenceCalculator()
        self.random_source_factory = random_source_factory or NumpyRandomSource

    def generate_batch(
        self,
        start_date: Union[date, str],
        period_count: int,
        entities: Iterable[EntityInput],
        historical_assignments: Iterable[AssignmentInput] = (),
        options: Optional[GenerationOptions] = None,
        estimator_states: Optional[Mapping[str, EstimatorState]] = None,
    ) -> BatchResult:
        """Generate consecutive periods starting at a date.

        Input problems reject the whole call: the result has
        ``success=False``, the reasons in ``errors`` and no assignments.
        Constraint relaxations never abort the batch and are reported as
        warnings.

        Args:
            start_date: Start of the first period.
            period_count: Number of periods to generate.
            entities: Population as ``Entity`` objects or entity records.
            historical_assignments: Earlier periods as objects or records.
            options: Generation options (defaults if omitted).
            estimator_states: Estimator table carried over from an earlier
                batch. It is not modified.

        Returns:
            The batch result, including the updated estimator table.
        """
        options = options or GenerationOptions()
        result = BatchResult(success=True)

        start, population, history = self._validate_inputs(
            start_date, period_count, entities, historical_assignments, options, result
        )
        if not result.success:
            logger.info("Batch rejected: %s", "; ".join(result.errors))
            return result

        if options.align_to_week_start:
            start -= timedelta(days=start.weekday())

        window = max(options.recent_window_periods, options.diversity_window)
        batch_state = RunningBatchState.snapshot(
            population, history, start, self.presence, window
        )
        states = dict(estimator_states or {})
        selector = StochasticSelector(self.random_source_factory(options.random_seed))
        population_rate = self._population_rate(batch_state)

        first_index = max((a.period_index for a in history), default=-1) + 1
        previous = self._preceding_period(history, start, options)
        period_length = timedelta(days=options.period_length_days)

        for offset in range(period_count):
            period_start = start + period_length * offset
            assignment, warnings = self._schedule_period(
                period_index=first_index + offset,
                period_start=period_start,
                batch_start=start,
                population=population,
                batch_state=batch_state,
                states=states,
                previous=previous,
                selector=selector,
                options=options,
                population_rate=population_rate,
                result=result,
            )
            result.assignments.append(assignment)
            result.warnings.extend(warnings)
            previous = assignment

        self._finalize(result, population, start, options)
        result.estimator_states = states
        logger.info(
            "Generated %d periods from %s with %d warnings",
            len(result.assignments),
            start,
            len(result.warnings),
        )
        return result

    def _validate_inputs(
        self, start_date, period_count, entities, historical_assignments, options, result
    ) -> tuple[Optional[date], list[Entity], list[PeriodAssignment]]:
        start = None
        try:
            start = parse_date(start_date)
        except ValueError as exc:
            result.add_error(str(exc))

        if isinstance(period_count, bool) or not isinstance(period_count, int):
            result.add_error(f"Period count must be an integer, got {period_count!r}")
        elif period_count < 1:
            result.add_error(f"Period count must be at least 1, got {period_count}")

        for problem in options.validate():
            result.add_error(problem)

        entities = list(entities)
        if not entities:
            result.add_error("Entity population is empty")

        population = []
        for item in entities:
            try:
                population.append(coerce_entity(item))
            except (KeyError, ValueError) as exc:
                result.add_error(f"Malformed entity record: {exc}")
        seen = set()
        for entity in population:
            if entity.id in seen:
                result.add_error(f"Duplicate entity id: {entity.id}")
            seen.add(entity.id)

        history = []
        for item in historical_assignments:
            try:
                history.append(coerce_assignment(item))
            except (KeyError, ValueError) as exc:
                result.add_error(f"Malformed assignment record: {exc}")
        history.sort(key=lambda a: (a.period_start, a.period_index))

        if start is not None and population and not result.errors:
            if not self.presence.active_entities(population, start):
                result.add_error(f"No entity is active on the start date {start}")

        return start, population, history

    def _preceding_period(
        self,
        history: list[PeriodAssignment],
        start: date,
        options: GenerationOptions,
    ) -> Optional[PeriodAssignment]:
        """Historical period that ends right before the batch, if any."""
        earliest = start - timedelta(days=options.period_length_days)
        for assignment in reversed(history):
            if earliest <= assignment.period_start < start:
                return assignment
        return None

    def _population_rate(self, batch_state: RunningBatchState) -> float:
        """Historical assignments per presence day across the population."""
        total_days = sum(batch_state.historical_days.values())
        if total_days <= 0:
            return 0.0
        return sum(batch_state.historical_counts.values()) / total_days

    def _schedule_period(
        self,
        period_index: int,
        period_start: date,
        batch_start: date,
        population: list[Entity],
        batch_state: RunningBatchState,
        states: dict[str, EstimatorState],
        previous: Optional[PeriodAssignment],
        selector: StochasticSelector,
        options: GenerationOptions,
        population_rate: float,
        result: BatchResult,
    ) -> tuple[PeriodAssignment, list[ScheduleWarning]]:
        warnings: list[ScheduleWarning] = []
        pool = self.presence.active_entities(population, period_start)
        pool_ids = sorted(entity.id for entity in pool)
        ideal_rate = min(1.0, options.team_size / len(pool)) if pool else 0.0

        for entity in pool:
            if entity.id not in states:
                states[entity.id] = self._onboard(entity.id, states)

        experienced = {
            entity.id
            for entity in pool
            if self.experience_policy.is_experienced(
                self.presence.days_present(entity, period_start),
                batch_state.effective_assignments(entity.id),
            )
        }

        scores = self._score_pool(
            pool,
            period_start,
            batch_start,
            batch_state,
            states,
            experienced,
            options,
            population_rate,
            ideal_rate,
        )
        if options.diversity_weight > 0:
            scores = apply_diversity_penalty(
                scores,
                batch_state.recent_primaries,
                options.diversity_weight,
                options.diversity_window,
            )
        temperature = self._period_temperature(
            scores, result.variance_history, options
        )
        result.temperatures.append(temperature)

        excluded = self._rest_exclusions(
            pool_ids, scores, previous, options, period_index, warnings
        )

        selection = selector.select(
            pool_ids,
            scores,
            primary_count=options.team_size,
            substitute_count=options.substitute_count,
            excluded=excluded,
            temperature=temperature,
            period_index=period_index,
        )
        warnings.extend(selection.warnings)
        primaries = list(selection.primary_ids)
        substitutes = list(selection.substitute_ids)

        mentor_satisfied = True
        if options.require_experienced_member and primaries:
            if not experienced.intersection(primaries):
                mentor = next(
                    (c for c in selection.ranking if c in experienced), None
                )
                if mentor is None:
                    mentor_satisfied = False
                    warnings.append(
                        ScheduleWarning(
                            WarningType.MENTOR_UNAVAILABLE,
                            "No experienced member available; team scheduled "
                            "without one",
                            period_index=period_index,
                        )
                    )
                else:
                    primaries[-1] = mentor
                    substitutes = [
                        c for c in selection.ranking if c not in primaries
                    ][: options.substitute_count]

        batch_state.record_period(
            primaries, max(options.recent_window_periods, options.diversity_window)
        )
        for entity_id in pool_ids:
            previous_state = states[entity_id]
            elapsed = 1.0
            if previous_state.last_updated is not None:
                elapsed = (
                    period_start - previous_state.last_updated
                ).days / options.period_length_days
            states[entity_id] = self.estimator.update(
                previous_state,
                was_assigned=entity_id in primaries,
                elapsed_periods=elapsed,
                ideal_rate=ideal_rate,
                as_of=period_start,
            )
        result.variance_history.append(
            self._rate_variance(
                pool,
                batch_state,
                period_start + timedelta(days=options.period_length_days),
            )
        )

        assignment = PeriodAssignment(
            period_index=period_index,
            period_start=period_start,
            primary_ids=tuple(primaries),
            substitute_ids=tuple(substitutes),
            mentor_satisfied=mentor_satisfied,
        )
        return assignment, warnings

    def _onboard(
        self, entity_id: str, states: dict[str, EstimatorState]
    ) -> EstimatorState:
        prior_mean, prior_variance = self.onboarding_policy.initial_state(
            entity_id,
            list(states.values()),
            self.estimator.config.prior_variance,
        )
        return self.estimator.initialize(entity_id, prior_mean, prior_variance)

    def _score_pool(
        self,
        pool: list[Entity],
        period_start: date,
        batch_start: date,
        batch_state: RunningBatchState,
        states: dict[str, EstimatorState],
        experienced: set[str],
        options: GenerationOptions,
        population_rate: float,
        ideal_rate: float,
    ) -> dict[str, PriorityScore]:
        elapsed_days = batch_state.periods_generated * options.period_length_days
        window = min(
            options.recent_window_periods, len(batch_state.recent_primaries)
        )
        expected_recent = window * ideal_rate

        scores = {}
        for entity in pool:
            historical_days = batch_state.historical_days.get(entity.id, 0)
            batch_days = min(
                elapsed_days,
                self.presence.days_present_between(entity, batch_start, period_start),
            )
            real_assignments = batch_state.effective_assignments(entity.id)
            virtual = self.onboarding_policy.virtual_assignments(
                historical_days,
                population_rate,
                batch_state.historical_counts.get(entity.id, 0) > 0,
            )
            scores[entity.id] = self.scorer.score(
                entity.id,
                states.get(entity.id),
                presence_days=self.presence.days_present(entity, period_start),
                is_mentor_candidate=(
                    options.require_experienced_member and entity.id in experienced
                ),
                recent_assignment_count=batch_state.recent_count(
                    entity.id, options.recent_window_periods
                ),
                cross_period_debt=entity.fairness_debt,
                effective_assignments=real_assignments + virtual,
                effective_days=historical_days + batch_days,
                expected_recent_count=expected_recent,
                ideal_rate=ideal_rate,
            )
        return scores

    def _period_temperature(
        self,
        scores: dict[str, PriorityScore],
        variance_history: list[float],
        options: GenerationOptions,
    ) -> float:
        """Selection temperature for one period.

        The configured temperature unless adaptive mode is on, in which case
        it is cooled by the spread of the current rates and heated when the
        variance is converging or the selection has become too predictable.
        """
        if not options.adaptive_temperature:
            return options.temperature
        rates = np.array([score.current_rate for score in scores.values()])
        spread = 0.0
        if rates.size and rates.mean() > 0:
            spread = float(rates.var() / rates.mean() ** 2)
        entropy = (
            selection_entropy(scores.values(), options.temperature)
            if options.temperature > 0
            else 1.0
        )
        return adaptive_temperature(
            options.temperature,
            spread,
            converging=is_converging(variance_history),
            entropy=entropy,
            minimum=options.min_temperature,
            maximum=options.max_temperature,
        )

    def _rate_variance(
        self, pool: list[Entity], batch_state: RunningBatchState, as_of: date
    ) -> float:
        """Variance of assignments per presence day across the pool."""
        rates = []
        for entity in pool:
            days = self.presence.days_present(entity, as_of)
            if days > 0:
                rates.append(batch_state.effective_assignments(entity.id) / days)
        return float(np.var(rates)) if rates else 0.0

    def _rest_exclusions(
        self,
        pool_ids: list[str],
        scores: dict[str, PriorityScore],
        previous: Optional[PeriodAssignment],
        options: GenerationOptions,
        period_index: int,
        warnings: list[ScheduleWarning],
    ) -> set[str]:
        """Entities kept out of this period by the no-consecutive rule.

        Previous primaries are rested; with a large enough pool the previous
        substitutes are rested too. When the rested pool would be smaller
        than the team, the best-scored previous primaries are let back in
        and a warning is recorded.
        """
        if not options.enforce_no_consecutive or previous is None:
            return set()

        pool = set(pool_ids)
        rested = pool.intersection(previous.primary_ids)
        shortfall = options.team_size - len(pool - rested)
        if shortfall > 0 and rested:
            readmitted = sorted(
                (scores[i] for i in rested), key=lambda s: s.rank_key
            )[:shortfall]
            rested -= {score.entity_id for score in readmitted}
            warnings.append(
                ScheduleWarning(
                    WarningType.CONSECUTIVE_RELAXED,
                    f"Pool of {len(pool)} too small to rest the previous team; "
                    f"{len(readmitted)} consecutive assignment(s) allowed",
                    period_index=period_index,
                )
            )
            return rested

        if len(pool) >= options.rest_substitutes_min_population:
            with_substitutes = rested | pool.intersection(previous.substitute_ids)
            if len(pool - with_substitutes) >= options.team_size:
                rested = with_substitutes
        return rested

    def _finalize(
        self,
        result: BatchResult,
        population: list[Entity],
        start: date,
        options: GenerationOptions,
    ) -> None:
        """Attach the batch fairness report and its threshold warnings."""
        last_start = result.assignments[-1].period_start
        report = compute_fairness_report(
            population,
            result.assignments,
            reference_date=last_start + timedelta(days=options.period_length_days),
            since=start,
            thresholds=FairnessThresholds(
                gini_threshold=options.gini_threshold,
                cv_threshold=options.cv_threshold,
            ),
            variance_history=result.variance_history,
        )
        result.fairness_report = report
        if report.gini > options.gini_threshold:
            result.add_warning(
                ScheduleWarning(
                    WarningType.GINI_EXCEEDED,
                    f"Gini coefficient {report.gini:.3f} exceeds "
                    f"{options.gini_threshold:.3f}",
                )
            )
        if report.coefficient_of_variation > options.cv_threshold:
            result.add_warning(
                ScheduleWarning(
                    WarningType.CV_EXCEEDED,
                    f"Coefficient of variation {report.coefficient_of_variation:.3f} "
                    f"exceeds {options.cv_threshold:.3f}",
                )
            )


def create_rotation_scheduler(
    days_threshold: int = 90,
    assignments_threshold: int = 4,
    onboarding_policy: Optional[OnboardingPolicy] = None,
) -> RotationScheduler:
    """Factory function to create a scheduler with common settings.

    Args:
        days_threshold: Presence days after which an entity is experienced.
        assignments_threshold: Assignments after which an entity is experienced.
        onboarding_policy: Newcomer strategy (equal rate by default).

    Returns:
        Configured RotationScheduler instance.
    """
    return RotationScheduler(
        experience_policy=DefaultExperiencePolicy(
            days_threshold=days_threshold,
            assignments_threshold=assignments_threshold,
        ),
        onboarding_policy=onboarding_policy,
    )


def generate_batch(
    start_date: Union[date, str],
    period_count: int,
    entities: Iterable[EntityInput],
    historical_assignments: Iterable[AssignmentInput] = (),
    options: Optional[GenerationOptions] = None,
    estimator_states: Optional[Mapping[str, EstimatorState]] = None,
) -> BatchResult:
    """Generate a batch with a default-configured scheduler."""
    return RotationScheduler().generate_batch(
        start_date,
        period_count,
        entities,
        historical_assignments,
        options,
        estimator_states,
    )
