"""Policy definitions for rotation rules.

This module contains configurable policies that define who counts as an
experienced member and how newcomers enter the rate estimator. Policies are
kept separate from the scheduling engine to allow independent testing and
easy modification.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from rotafair.domain.models import EstimatorState


class ExperiencePolicy(ABC):
    """Abstract base class for experience rules."""

    @abstractmethod
    def is_experienced(self, presence_days: int, assignment_count: int) -> bool:
        """Check whether an entity counts as experienced.

        Args:
            presence_days: Days the entity has been a member.
            assignment_count: Real primary assignments so far.

        Returns:
            True if the entity can act as the experienced team member.
        """
        pass


class OnboardingPolicy(ABC):
    """Abstract base class for newcomer handling.

    An onboarding policy decides the starting estimator state of an entity
    that has none, and whether a newcomer is credited virtual assignments
    when its rate is computed.
    """

    @abstractmethod
    def initial_state(
        self,
        entity_id: str,
        population_states: list[EstimatorState],
        prior_variance: float,
    ) -> tuple[Optional[float], float]:
        """Get the prior for a newcomer's estimator.

        Args:
            entity_id: The newcomer.
            population_states: Current states of the rest of the population.
            prior_variance: Configured default prior variance.

        Returns:
            Tuple of (prior_mean, prior_variance). A prior mean of None
            means the estimator default.
        """
        pass

    @abstractmethod
    def virtual_assignments(
        self, presence_days: int, population_rate: float, has_history: bool
    ) -> float:
        """Get assignments credited to an entity without real history.

        Args:
            presence_days: Days of presence before the batch.
            population_rate: Population assignments per presence day.
            has_history: Whether the entity already has real assignments.

        Returns:
            Number of virtual assignments to add to the rate numerator.
        """
        pass


@dataclass
class DefaultExperiencePolicy(ExperiencePolicy):
    """Default experience rule.

    An entity is experienced after 90 days of presence or 4 assignments,
    whichever comes first.
    """

    days_threshold: int = 90
    assignments_threshold: int = 4

    def is_experienced(self, presence_days: int, assignment_count: int) -> bool:
        return (
            presence_days >= self.days_threshold
            or assignment_count >= self.assignments_threshold
        )


class EqualRateOnboardingPolicy(OnboardingPolicy):
    """Newcomers start from a neutral prior and get no catch-up.

    The estimator begins at its default mean with the configured variance and
    converges through ordinary updates. No virtual history is credited, so a
    newcomer competes at the same per-day rate as everyone else from the day
    it joins.
    """

    def initial_state(self, entity_id, population_states, prior_variance):
        return None, prior_variance

    def virtual_assignments(self, presence_days, population_rate, has_history):
        return 0.0


@dataclass
class BaselineOnboardingPolicy(OnboardingPolicy):
    """Newcomers inherit the population baseline.

    The prior mean is the population's average posterior mean with inflated
    variance, and an entity without history is credited the assignments it
    would have received at the population rate.

    Attributes:
        variance_multiplier: Factor applied to the prior variance.
    """

    variance_multiplier: float = 2.0

    def initial_state(self, entity_id, population_states, prior_variance):
        if not population_states:
            return None, prior_variance
        baseline = sum(s.mean for s in population_states) / len(population_states)
        return baseline, prior_variance * self.variance_multiplier

    def virtual_assignments(self, presence_days, population_rate, has_history):
        if has_history:
            return 0.0
        return population_rate * presence_days
