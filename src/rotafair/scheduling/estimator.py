"""Recursive Bayesian estimation of per-entity assignment rates.

Each entity's long-run assignment rate is tracked with a one-dimensional
Kalman filter over a random-walk model:

    prior variance     = posterior variance + process_noise * elapsed_periods
    gain               = prior variance / (prior variance + observation_noise)
    posterior mean     = mean + gain * (observation - mean)
    posterior variance = (1 - gain) * prior variance

where the observation is 1 for a period in which the entity was assigned and
0 otherwise. A bounded drift correction then pulls the mean part of the way
toward the ideal rate whenever it strays too far, so estimates built on very
few observations cannot run away.
"""

from dataclasses import dataclass, replace
from datetime import date
from typing import Optional

from rotafair.domain.models import EstimatorState

# Two-sided z-scores for the supported confidence levels
_Z_SCORES = {0.8: 1.2816, 0.9: 1.6449, 0.95: 1.96, 0.99: 2.5758}


@dataclass
class EstimatorConfig:
    """Constants of the rate filter.

    Attributes:
        process_noise: Variance added per elapsed period.
        observation_noise: Variance of a single period observation.
        drift_threshold: Distance from the ideal rate that triggers correction.
        drift_correction: Fraction of the drift removed by a correction (0-1).
        prior_variance: Variance of a freshly initialized state.
    """

    process_noise: float = 0.005
    observation_noise: float = 0.05
    drift_threshold: float = 0.03
    drift_correction: float = 0.2
    prior_variance: float = 0.1


class RateEstimator:
    """Initializes and updates ``EstimatorState`` values.

    The estimator holds no per-entity data itself; states are immutable and
    every update returns a new one. Identical inputs always give identical
    outputs.
    """

    def __init__(self, config: Optional[EstimatorConfig] = None):
        self.config = config or EstimatorConfig()

    def initialize(
        self,
        entity_id: str,
        prior_mean: Optional[float] = None,
        prior_variance: Optional[float] = None,
        as_of: Optional[date] = None,
    ) -> EstimatorState:
        """Create a fresh state.

        Args:
            entity_id: Entity the state belongs to.
            prior_mean: Starting rate belief (default 0).
            prior_variance: Starting uncertainty (default from config).
            as_of: Date recorded as the last update.
        """
        mean = 0.0 if prior_mean is None else _clamp(prior_mean)
        variance = (
            self.config.prior_variance if prior_variance is None else prior_variance
        )
        return EstimatorState(
            entity_id=entity_id,
            mean=mean,
            variance=max(0.0, variance),
            observation_count=0,
            last_updated=as_of,
        )

    def update(
        self,
        state: EstimatorState,
        was_assigned: bool,
        elapsed_periods: float,
        ideal_rate: float,
        as_of: Optional[date] = None,
    ) -> EstimatorState:
        """Fold one period's observation into a state.

        Args:
            state: Current state.
            was_assigned: Whether the entity was a primary this period.
            elapsed_periods: Periods since the previous update.
            ideal_rate: Fair per-period rate for the current pool.
            as_of: Date of the observed period.

        Returns:
            The updated state.
        """
        cfg = self.config
        prior_variance = state.variance + cfg.process_noise * max(0.0, elapsed_periods)
        observation = 1.0 if was_assigned else 0.0

        gain = prior_variance / (prior_variance + cfg.observation_noise)
        mean = state.mean + gain * (observation - state.mean)
        variance = (1.0 - gain) * prior_variance

        drift = mean - ideal_rate
        if abs(drift) > cfg.drift_threshold:
            mean -= cfg.drift_correction * drift

        assert variance <= prior_variance
        return replace(
            state,
            mean=_clamp(mean),
            variance=variance,
            observation_count=state.observation_count + 1,
            last_updated=as_of if as_of is not None else state.last_updated,
        )

    def predict(self, state: EstimatorState, periods_ahead: float) -> EstimatorState:
        """Project a state forward without any observation.

        The mean is unchanged; only the process noise accumulates.
        """
        return replace(
            state,
            variance=state.variance
            + self.config.process_noise * max(0.0, periods_ahead),
        )

    def confidence_interval(
        self, state: EstimatorState, level: float = 0.95
    ) -> tuple[float, float]:
        """Normal-approximation interval around the rate belief.

        Args:
            state: State to summarize.
            level: One of 0.8, 0.9, 0.95 or 0.99. Other values use 0.95.

        Returns:
            Tuple of (lower, upper). The lower bound is clamped at 0.
        """
        z = _Z_SCORES.get(level, _Z_SCORES[0.95])
        spread = z * state.std_dev
        return max(0.0, state.mean - spread), state.mean + spread


def _clamp(value: float) -> float:
    return min(1.0, max(0.0, value))
