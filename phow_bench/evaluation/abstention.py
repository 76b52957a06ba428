"""
Abstention policies: decide when a prediction is too uncertain to commit to.
Abstained samples land in the 'unknown' bucket of the confusion matrix.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Hashable, Mapping

from phow_bench.errors import ConfigurationError


class AbstentionPolicy(ABC):
    """Decides from the per-class scores whether to withhold a prediction."""

    @abstractmethod
    def should_abstain(self, scores: Mapping[Hashable, float]) -> bool:
        pass

    def __str__(self) -> str:
        return self.__class__.__name__


class NoAbstention(AbstentionPolicy):
    """Always commit to the top-scoring class."""

    def should_abstain(self, scores: Mapping[Hashable, float]) -> bool:
        return False


class MarginAbstention(AbstentionPolicy):
    """Abstain when the best score beats the runner-up by less than min_margin."""

    def __init__(self, min_margin: float):
        if min_margin < 0:
            raise ConfigurationError(f"min_margin must be non-negative, got {min_margin}")
        self.min_margin = float(min_margin)

    def should_abstain(self, scores: Mapping[Hashable, float]) -> bool:
        if len(scores) < 2:
            return False
        top, runner_up = sorted(scores.values(), reverse=True)[:2]
        return (top - runner_up) < self.min_margin

    def __str__(self) -> str:
        return f"MarginAbstention(min_margin={self.min_margin})"


class ScoreThresholdAbstention(AbstentionPolicy):
    """Abstain when even the best score is below min_score."""

    def __init__(self, min_score: float):
        self.min_score = float(min_score)

    def should_abstain(self, scores: Mapping[Hashable, float]) -> bool:
        if not scores:
            return True
        return max(scores.values()) < self.min_score

    def __str__(self) -> str:
        return f"ScoreThresholdAbstention(min_score={self.min_score})"


def create_abstention_policy(abstention_config: Dict[str, Any]) -> AbstentionPolicy:
    """
    Factory for abstention policies.

    Args:
        abstention_config: {'policy': 'none' | 'margin' | 'threshold', ...}

    Raises:
        ConfigurationError: If the policy name is not recognized
    """
    policy = (abstention_config or {}).get('policy', 'none')
    if policy == 'none':
        return NoAbstention()
    if policy == 'margin':
        return MarginAbstention(abstention_config.get('min_margin', 0.0))
    if policy == 'threshold':
        return ScoreThresholdAbstention(abstention_config.get('min_score', 0.0))
    raise ConfigurationError(f"Unknown abstention policy: {policy}. Available: none, margin, threshold")
