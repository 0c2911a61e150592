"""Priority scoring for rotation candidates.

The priority of a candidate is the inverse of its effective assignment rate,
adjusted by three multipliers:

- a mentor penalty for entities filling the experienced-member role,
- a recency bonus for entities under-represented in a trailing window,
- a debt bonus for imbalance carried over from earlier cycles.

Entities that have never been assigned form a class of their own that ranks
above every other candidate.
"""

from dataclasses import dataclass
from typing import Optional

from rotafair.domain.models import EstimatorState


@dataclass
class PriorityConfig:
    """Weights of the priority formula.

    Attributes:
        epsilon: Added to the rate to keep the inverse finite.
        mentor_penalty: Multiplier for mentor candidates (< 1 discourages
            overuse of experienced members).
        debt_weight: Weight of the carried debt.
        max_debt: Debt values above this are capped.
    """

    epsilon: float = 1e-3
    mentor_penalty: float = 0.85
    debt_weight: float = 0.5
    max_debt: float = 5.0

    def __post_init__(self):
        if self.epsilon <= 0:
            raise ValueError(f"epsilon must be positive, got {self.epsilon}")
        if self.mentor_penalty <= 0:
            raise ValueError(
                f"mentor_penalty must be positive, got {self.mentor_penalty}"
            )
        if self.debt_weight < 0:
            raise ValueError(
                f"debt_weight must be non-negative, got {self.debt_weight}"
            )
        if self.max_debt < 0:
            raise ValueError(f"max_debt must be non-negative, got {self.max_debt}")


@dataclass
class PriorityScore:
    """A candidate's priority with its breakdown.

    Attributes:
        entity_id: Candidate the score belongs to.
        value: Final priority.
        base_priority: Inverse effective rate.
        mentor_factor: Multiplier applied for the mentor role.
        recency_bonus: Multiplier from the trailing window.
        debt_bonus: Multiplier from carried debt.
        diversity_factor: Multiplier from recent team membership (1.0 unless
            a diversity penalty was applied).
        current_rate: Effective assignments per effective day.
        presence_days: Days of presence, used for tie-breaking.
        never_assigned: True if the entity has no assignments at all.
    """

    entity_id: str
    value: float
    base_priority: float
    mentor_factor: float = 1.0
    recency_bonus: float = 1.0
    debt_bonus: float = 1.0
    diversity_factor: float = 1.0
    current_rate: float = 0.0
    presence_days: int = 0
    never_assigned: bool = False

    @property
    def score_class(self) -> int:
        """0 for never-assigned entities, 1 for everyone else."""
        return 0 if self.never_assigned else 1

    @property
    def rank_key(self) -> tuple:
        """Ascending sort key: best candidate first.

        Orders by score class, then priority, then longest presence, then id.
        """
        return (self.score_class, -self.value, -self.presence_days, self.entity_id)


class PriorityScorer:
    """Combines rate deficit, mentor role, recency and debt into one score."""

    def __init__(self, config: Optional[PriorityConfig] = None):
        self.config = config or PriorityConfig()

    def score(
        self,
        entity_id: str,
        estimator_state: Optional[EstimatorState],
        presence_days: int,
        is_mentor_candidate: bool,
        recent_assignment_count: int,
        cross_period_debt: float,
        effective_assignments: float,
        effective_days: float,
        expected_recent_count: float = 0.0,
        ideal_rate: Optional[float] = None,
    ) -> PriorityScore:
        """Score one candidate.

        Args:
            entity_id: Candidate id.
            estimator_state: Current rate belief, if any.
            presence_days: Days of presence at the period date.
            is_mentor_candidate: Whether the candidate fills the mentor role.
            recent_assignment_count: Assignments in the trailing window.
            cross_period_debt: Debt carried over from earlier cycles.
            effective_assignments: Historical plus in-batch assignments.
            effective_days: Historical plus in-batch presence days.
            expected_recent_count: Fair share of the trailing window.
            ideal_rate: Fair per-period rate. When given together with an
                estimator state, the estimator's shortfall is added to the
                carried debt.

        Returns:
            The score and its breakdown.
        """
        cfg = self.config
        current_rate = (
            effective_assignments / effective_days if effective_days > 0 else 0.0
        )
        base_priority = 1.0 / (current_rate + cfg.epsilon)

        mentor_factor = cfg.mentor_penalty if is_mentor_candidate else 1.0
        recency_bonus = 1.0 + max(
            0.0, expected_recent_count - recent_assignment_count
        )

        debt = cross_period_debt + self.estimator_shortfall(
            estimator_state, ideal_rate
        )
        debt_bonus = 1.0 + cfg.debt_weight * min(max(debt, 0.0), cfg.max_debt)

        return PriorityScore(
            entity_id=entity_id,
            value=base_priority * mentor_factor * recency_bonus * debt_bonus,
            base_priority=base_priority,
            mentor_factor=mentor_factor,
            recency_bonus=recency_bonus,
            debt_bonus=debt_bonus,
            current_rate=current_rate,
            presence_days=presence_days,
            never_assigned=effective_assignments <= 0,
        )

    @staticmethod
    def estimator_shortfall(
        state: Optional[EstimatorState], ideal_rate: Optional[float]
    ) -> float:
        """How far a rate belief falls below the ideal, relative to the ideal."""
        if state is None or not ideal_rate or ideal_rate <= 0:
            return 0.0
        return max(0.0, ideal_rate - state.mean) / ideal_rate
