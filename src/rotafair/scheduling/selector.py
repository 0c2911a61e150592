"""Temperature-controlled selection of primaries and substitutes.

With temperature 0 candidates are ranked by their priority score. With a
positive temperature each candidate's log-priority is perturbed by Gumbel
noise, the Gumbel-max trick for sampling without replacement from a softmax
over log-priorities. Draws come from an injected ``RandomSource``.

The module also carries the optional tuning steps applied before a selection:
an adaptive temperature derived from the spread of the current rates, and a
diversity penalty that discourages picking the same entities period after
period.
"""

import dataclasses
import logging
import math
from dataclasses import dataclass, field
from typing import Iterable, Optional, Sequence

import numpy as np

from rotafair.domain.models import ScheduleWarning, WarningType
from rotafair.scheduling.priority import PriorityScore
from rotafair.scheduling.random_source import (
    NumpyRandomSource,
    RandomSource,
    sample_gumbel,
)

logger = logging.getLogger(__name__)


@dataclass
class SelectionResult:
    """Outcome of one selection.

    Attributes:
        primary_ids: Chosen primaries, best first.
        substitute_ids: Chosen substitutes, best first.
        ranking: Every eligible candidate in final rank order.
        warnings: Shortfalls encountered while filling the slots.
    """

    primary_ids: list[str] = field(default_factory=list)
    substitute_ids: list[str] = field(default_factory=list)
    ranking: list[str] = field(default_factory=list)
    warnings: list[ScheduleWarning] = field(default_factory=list)


class StochasticSelector:
    """Ranks candidates and splits the ranking into primaries and substitutes.

    Example:
        >>> selector = StochasticSelector(NumpyRandomSource(seed=7))
        >>> result = selector.select(pool, scores, primary_count=2,
        ...                          substitute_count=2, temperature=0.1)
    """

    def __init__(self, random_source: Optional[RandomSource] = None):
        self.random_source = random_source or NumpyRandomSource()

    def rank(
        self,
        candidates: Iterable[str],
        priorities: dict[str, PriorityScore],
        excluded: Optional[set[str]] = None,
        temperature: float = 0.0,
    ) -> list[str]:
        """Order eligible candidates from best to worst.

        Excluded candidates are removed before any ranking or noise draw.

        Args:
            candidates: Candidate ids.
            priorities: Score per candidate id.
            excluded: Ids that may not be chosen.
            temperature: Gumbel noise scale, 0 for a deterministic ranking.

        Returns:
            Eligible candidate ids, best first.
        """
        excluded = excluded or set()
        # Sorting first makes the noise draws independent of input order
        pool = sorted(
            (priorities[c] for c in set(candidates) if c not in excluded),
            key=lambda score: score.rank_key,
        )
        if temperature <= 0:
            return [score.entity_id for score in pool]

        keyed = []
        for score in pool:
            perturbed = math.log(score.value) + temperature * sample_gumbel(
                self.random_source
            )
            keyed.append(
                (score.score_class, -perturbed, -score.presence_days, score.entity_id)
            )
        keyed.sort()
        return [key[-1] for key in keyed]

    def select(
        self,
        candidates: Iterable[str],
        priorities: dict[str, PriorityScore],
        primary_count: int,
        substitute_count: int = 0,
        excluded: Optional[set[str]] = None,
        temperature: float = 0.0,
        period_index: Optional[int] = None,
    ) -> SelectionResult:
        """Pick primaries and substitutes from a candidate pool.

        If fewer than ``primary_count`` candidates are eligible, all of them
        become primaries and a warning is returned. Substitutes are best
        effort.

        Args:
            candidates: Candidate ids.
            priorities: Score per candidate id.
            primary_count: Primaries wanted.
            substitute_count: Substitutes wanted.
            excluded: Ids that may not be chosen.
            temperature: Gumbel noise scale.
            period_index: Period the selection is for, used in warnings.

        Returns:
            The selection.
        """
        candidates = list(candidates)
        ranking = self.rank(candidates, priorities, excluded, temperature)
        result = SelectionResult(
            primary_ids=ranking[:primary_count],
            substitute_ids=ranking[primary_count:primary_count + substitute_count],
            ranking=ranking,
        )

        eligible = set(candidates) - (excluded or set())
        assert set(result.primary_ids) <= eligible
        assert set(result.substitute_ids) <= eligible

        if len(result.primary_ids) < primary_count:
            result.warnings.append(
                ScheduleWarning(
                    WarningType.TEAM_UNDERSIZED,
                    f"Only {len(result.primary_ids)} of {primary_count} primaries "
                    "available",
                    period_index=period_index,
                )
            )
        if len(result.substitute_ids) < substitute_count:
            result.warnings.append(
                ScheduleWarning(
                    WarningType.SUBSTITUTES_SHORT,
                    f"Only {len(result.substitute_ids)} of {substitute_count} "
                    "substitutes available",
                    period_index=period_index,
                )
            )
        logger.debug(
            "Period %s: primaries=%s substitutes=%s",
            period_index,
            result.primary_ids,
            result.substitute_ids,
        )
        return result


def selection_entropy(scores: Iterable[PriorityScore], temperature: float) -> float:
    """Normalized entropy of the selection distribution at a temperature.

    The distribution is the softmax of ``log(value) / temperature``, the one
    the Gumbel ranking samples from. 1.0 means every candidate is equally
    likely; 0.0 means the choice is deterministic.
    """
    values = np.array([score.value for score in scores], dtype=float)
    if values.size < 2 or temperature <= 0:
        return 0.0
    logits = np.log(values) / temperature
    logits -= logits.max()
    probabilities = np.exp(logits)
    probabilities /= probabilities.sum()
    nonzero = probabilities[probabilities > 0]
    return float(-(nonzero * np.log(nonzero)).sum() / math.log(values.size))


def adaptive_temperature(
    base: float,
    variance: float,
    converging: bool = False,
    entropy: float = 1.0,
    minimum: float = 0.01,
    maximum: float = 5.0,
    variance_scale: float = 10.0,
    min_entropy: float = 0.5,
) -> float:
    """Temperature for one period from the state of the distribution.

    A large spread of rates lowers the temperature so the most owed
    candidates win more reliably. A converging variance raises it by 20%,
    and so does a selection entropy below ``min_entropy`` (proportionally).

    Args:
        base: Temperature used when the rates are perfectly even.
        variance: Scale-free spread of the current rates (squared
            coefficient of variation).
        converging: Whether the variance is trending down.
        entropy: Normalized selection entropy at the base temperature.
        minimum: Lower clamp.
        maximum: Upper clamp.
        variance_scale: How strongly the spread cools the selection.
        min_entropy: Entropy under which the selection is heated up.

    Returns:
        The clamped temperature.
    """
    temperature = base / (1.0 + max(0.0, variance) * variance_scale)
    if converging:
        temperature *= 1.2
    if entropy < min_entropy:
        temperature *= min_entropy / max(0.1, entropy)
    return max(minimum, min(maximum, temperature))


def apply_diversity_penalty(
    scores: dict[str, PriorityScore],
    recent_teams: Sequence[Sequence[str]],
    weight: float,
    window: int = 5,
) -> dict[str, PriorityScore]:
    """Penalize candidates that were picked in the last few periods.

    Each appearance in the last ``window`` teams counts with a weight that
    decays linearly with age, 1.0 for the most recent team. The priority is
    multiplied by ``exp(-weight * decayed_count)``, which subtracts the same
    amount from the log-priority the selection works on.

    Args:
        scores: Score per candidate id.
        recent_teams: Primary teams of earlier periods, oldest first.
        weight: Penalty per decayed appearance; 0 leaves scores unchanged.
        window: Number of most recent teams considered.

    Returns:
        A new mapping; the input scores are not modified.
    """
    teams = list(recent_teams)[-window:]
    if weight <= 0 or not teams:
        return dict(scores)

    decayed: dict[str, float] = {}
    for age, team in enumerate(reversed(teams)):
        for entity_id in team:
            decayed[entity_id] = decayed.get(entity_id, 0.0) + 1.0 - age / len(teams)

    penalized = {}
    for entity_id, score in scores.items():
        count = decayed.get(entity_id, 0.0)
        if count <= 0:
            penalized[entity_id] = score
            continue
        factor = math.exp(-weight * count)
        penalized[entity_id] = dataclasses.replace(
            score, value=score.value * factor, diversity_factor=factor
        )
    return penalized
