"""
Confusion matrix accumulation and the derived evaluation report.

Accuracy counts only committed predictions: samples recorded under the
'unknown' bucket are neither correct nor incorrect.
"""

from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, Hashable, Iterable, List, Optional, Tuple

import numpy as np
import pandas as pd

from phow_bench.classification.classifier import UNKNOWN
from phow_bench.errors import ConfigurationError

Label = Hashable


@dataclass(frozen=True)
class ClassMetrics:
    """Precision, recall and F1 for one class."""
    precision: float
    recall: float
    f1: float
    support: int


@dataclass(frozen=True)
class EvaluationReport:
    """Summary statistics derived from a confusion matrix."""
    accuracy: float
    n_correct: int
    n_incorrect: int
    n_abstained: int
    per_class: Dict[Label, ClassMetrics]
    counts: Dict[Tuple[Label, Label], int] = field(repr=False)
    labels: Tuple[Label, ...] = field(repr=False)

    @property
    def n_samples(self) -> int:
        return self.n_correct + self.n_incorrect + self.n_abstained

    @property
    def abstention_rate(self) -> float:
        return self.n_abstained / self.n_samples if self.n_samples else 0.0

    @property
    def macro_precision(self) -> float:
        return _mean([m.precision for m in self.per_class.values()])

    @property
    def macro_recall(self) -> float:
        return _mean([m.recall for m in self.per_class.values()])

    @property
    def macro_f1(self) -> float:
        return _mean([m.f1 for m in self.per_class.values()])

    def to_dict(self) -> Dict[str, Any]:
        """JSON-serialisable view (labels rendered as strings)."""
        confusion: Dict[str, Dict[str, int]] = {}
        for (true, predicted), count in self.counts.items():
            confusion.setdefault(str(true), {})[str(predicted)] = int(count)
        return {
            'accuracy': self.accuracy,
            'n_samples': self.n_samples,
            'n_correct': self.n_correct,
            'n_incorrect': self.n_incorrect,
            'n_abstained': self.n_abstained,
            'abstention_rate': self.abstention_rate,
            'macro_precision': self.macro_precision,
            'macro_recall': self.macro_recall,
            'macro_f1': self.macro_f1,
            'per_class': {
                str(label): {
                    'precision': m.precision,
                    'recall': m.recall,
                    'f1': m.f1,
                    'support': m.support,
                }
                for label, m in self.per_class.items()
            },
            'confusion': confusion,
        }

    def to_dataframe(self) -> pd.DataFrame:
        """Confusion counts as a DataFrame (rows: true class, columns: predicted)."""
        columns = list(self.labels)
        if self.n_abstained or any(p == UNKNOWN for _, p in self.counts):
            columns.append(UNKNOWN)
        frame = pd.DataFrame(0, index=list(self.labels), columns=columns, dtype=np.int64)
        for (true, predicted), count in self.counts.items():
            if true not in frame.index:
                frame.loc[true] = 0
            frame.loc[true, predicted] = count
        frame.index.name = 'true'
        frame.columns.name = 'predicted'
        return frame

    def per_class_dataframe(self) -> pd.DataFrame:
        rows = [
            {'class': label, 'precision': m.precision, 'recall': m.recall, 'f1': m.f1, 'support': m.support}
            for label, m in self.per_class.items()
        ]
        return pd.DataFrame(rows, columns=['class', 'precision', 'recall', 'f1', 'support'])


def _mean(values: List[float]) -> float:
    return float(np.mean(values)) if values else 0.0


def _ratio(numerator: int, denominator: int) -> float:
    return numerator / denominator if denominator else 0.0


class ConfusionMatrix:
    """Counts of (true class, predicted class) pairs, including the 'unknown' bucket."""

    def __init__(self, classes: Optional[Iterable[Label]] = None):
        self._classes: List[Label] = []
        self._counts: Counter = Counter()
        for label in classes or []:
            self._add_class(label)

    def _add_class(self, label: Label) -> None:
        if label == UNKNOWN:
            raise ConfigurationError(f"'{UNKNOWN}' is reserved for abstentions and cannot be a class label")
        if label not in self._classes:
            self._classes.append(label)

    @property
    def classes(self) -> Tuple[Label, ...]:
        return tuple(self._classes)

    def increment(self, true_label: Label, predicted_label: Label, count: int = 1) -> None:
        """Record count samples of true_label predicted as predicted_label."""
        self._add_class(true_label)
        if predicted_label != UNKNOWN:
            self._add_class(predicted_label)
        self._counts[(true_label, predicted_label)] += count

    def merge(self, other: 'ConfusionMatrix') -> 'ConfusionMatrix':
        """Add other's counts into this matrix in place and return self."""
        for label in other.classes:
            self._add_class(label)
        self._counts.update(other._counts)
        return self

    def count(self, true_label: Label, predicted_label: Label) -> int:
        return self._counts.get((true_label, predicted_label), 0)

    @property
    def counts(self) -> Dict[Tuple[Label, Label], int]:
        return dict(self._counts)

    @property
    def total(self) -> int:
        return sum(self._counts.values())

    @property
    def n_abstained(self) -> int:
        return sum(c for (_, p), c in self._counts.items() if p == UNKNOWN)

    @property
    def n_correct(self) -> int:
        return sum(c for (t, p), c in self._counts.items() if t == p and p != UNKNOWN)

    @property
    def n_incorrect(self) -> int:
        return sum(c for (t, p), c in self._counts.items() if t != p and p != UNKNOWN)

    @property
    def accuracy(self) -> float:
        """correct / (correct + incorrect); abstentions are excluded."""
        return _ratio(self.n_correct, self.n_correct + self.n_incorrect)

    def as_array(self) -> Tuple[List[Label], np.ndarray]:
        """Square count matrix over classes plus a trailing 'unknown' column."""
        labels = list(self._classes)
        index = {label: i for i, label in enumerate(labels)}
        matrix = np.zeros((len(labels), len(labels) + 1), dtype=np.int64)
        for (true, predicted), count in self._counts.items():
            column = len(labels) if predicted == UNKNOWN else index[predicted]
            matrix[index[true], column] += count
        return labels, matrix

    def report(self) -> EvaluationReport:
        """Derive accuracy and per-class precision / recall / F1."""
        labels, matrix = self.as_array()
        committed = matrix[:, :len(labels)]

        per_class = {}
        for i, label in enumerate(labels):
            true_positive = int(committed[i, i])
            predicted_total = int(committed[:, i].sum())
            actual_total = int(committed[i, :].sum())
            precision = _ratio(true_positive, predicted_total)
            recall = _ratio(true_positive, actual_total)
            f1 = _ratio(2 * precision * recall, precision + recall) if (precision + recall) else 0.0
            per_class[label] = ClassMetrics(
                precision=precision,
                recall=recall,
                f1=f1,
                support=int(matrix[i, :].sum()),
            )

        return EvaluationReport(
            accuracy=self.accuracy,
            n_correct=self.n_correct,
            n_incorrect=self.n_incorrect,
            n_abstained=self.n_abstained,
            per_class=per_class,
            counts=self.counts,
            labels=tuple(labels),
        )

    def __repr__(self) -> str:
        return (
            f"ConfusionMatrix(classes={len(self._classes)}, total={self.total}, "
            f"abstained={self.n_abstained})"
        )
