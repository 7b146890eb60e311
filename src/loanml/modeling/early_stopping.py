"""
Early-stopping policy and moving-average score keeper.

An iterative model is scored every ``score_interval`` iterations. With
``k = rounds``, training stops once at least ``2k`` scores exist and the
moving average of the last ``k`` scores improves on the best moving
average of an earlier, non-overlapping window by no more than
``tolerance``, relative.
"""

from collections.abc import Sequence
from dataclasses import dataclass

import numpy as np

from loanml.config.settings import EarlyStoppingConfig
from loanml.exceptions import InvalidParameterError


@dataclass(frozen=True)
class EarlyStopping:
    """
    Early-stopping policy for iterative families.

    Attributes:
        max_iterations: Upper bound on trees, boosting rounds or epochs.
        score_interval: Iterations between two scoring events.
        metric: Metric to watch; 'auto' picks logloss or deviance.
        tolerance: Minimum relative improvement that counts as progress.
        rounds: Patience in scoring events; 0 disables stopping.
    """

    max_iterations: int = 500
    score_interval: int = 10
    metric: str = "auto"
    tolerance: float = 1e-3
    rounds: int = 3

    def __post_init__(self) -> None:
        if self.max_iterations < 1 or self.score_interval < 1:
            msg = "max_iterations and score_interval must be >= 1"
            raise InvalidParameterError(msg)
        if self.tolerance < 0 or self.rounds < 0:
            msg = "tolerance and rounds must be >= 0"
            raise InvalidParameterError(msg)

    @classmethod
    def from_config(cls, config: EarlyStoppingConfig) -> "EarlyStopping":
        """Build the policy from its configuration section."""
        return cls(
            max_iterations=config.max_iterations,
            score_interval=config.score_interval,
            metric=config.metric,
            tolerance=config.tolerance,
            rounds=config.rounds,
        )


def stop_early(
    scores: Sequence[float],
    rounds: int,
    tolerance: float,
    *,
    maximize: bool,
) -> bool:
    """
    Decide whether a sequence of scores has stopped improving.

    Args:
        scores: Scores in scoring order.
        rounds: Window length and patience ``k``; 0 never stops.
        tolerance: Relative improvement threshold.
        maximize: Whether larger scores are better.

    Returns:
        True if training should stop.
    """
    if rounds <= 0 or len(scores) < 2 * rounds:
        return False

    values = np.asarray(scores, dtype=float)
    if not np.isfinite(values).all():
        return False

    # moving averages over every window of k consecutive scores
    averages = np.convolve(values, np.ones(rounds) / rounds, mode="valid")
    last = averages[-1]
    # windows that end before the last window starts
    earlier = averages[: len(averages) - rounds]
    reference = earlier.max() if maximize else earlier.min()

    improvement = last - reference if maximize else reference - last
    if reference != 0:
        improvement /= abs(reference)
    return bool(improvement <= tolerance)
