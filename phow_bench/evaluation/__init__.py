"""Classification evaluation: abstention, confusion matrices, reports."""

from phow_bench.evaluation.abstention import (
    AbstentionPolicy,
    MarginAbstention,
    NoAbstention,
    ScoreThresholdAbstention,
    create_abstention_policy,
)
from phow_bench.evaluation.confusion_matrix import UNKNOWN, ClassMetrics, ConfusionMatrix, EvaluationReport
from phow_bench.evaluation.evaluator import Evaluator

__all__ = [
    'AbstentionPolicy',
    'NoAbstention',
    'MarginAbstention',
    'ScoreThresholdAbstention',
    'create_abstention_policy',
    'UNKNOWN',
    'ClassMetrics',
    'ConfusionMatrix',
    'EvaluationReport',
    'Evaluator',
]
