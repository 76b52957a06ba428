"""
Parallel evaluation of a trained classifier on held-out samples.

The test set is split into contiguous partitions; each worker classifies its
partition into a private confusion matrix, and the partials are merged into
the shared result under one lock. Merging is plain count addition, so the
result does not depend on the number of workers or on completion order.
"""

import logging
from typing import Hashable, Optional, Sequence, Tuple, Union

import numpy as np

from phow_bench.classification.classifier import ClassifierModel, LabeledSample, LinearClassifier, unpack_samples
from phow_bench.evaluation.abstention import AbstentionPolicy, NoAbstention
from phow_bench.evaluation.confusion_matrix import UNKNOWN, ConfusionMatrix, EvaluationReport
from phow_bench.parallel import parallel_reduce

logger = logging.getLogger(__name__)

Sample = Union[LabeledSample, Tuple[np.ndarray, Hashable]]


class Evaluator:
    """Classifies test samples and accumulates a confusion matrix."""

    def __init__(self, policy: Optional[AbstentionPolicy] = None, num_workers: Optional[int] = 1):
        """
        Args:
            policy: When to answer 'unknown' instead of the top class
            num_workers: Worker threads (None or <= 0 uses every core)
        """
        self.policy = policy or NoAbstention()
        self.num_workers = num_workers
        self._matrix: Optional[ConfusionMatrix] = None

    def classify(self, model: Union[ClassifierModel, LinearClassifier], vector: np.ndarray) -> Hashable:
        """Predicted class for one vector, or 'unknown' if the policy abstains."""
        model = _resolve_model(model)
        label, scores = model.predict(vector)
        return UNKNOWN if self.policy.should_abstain(scores) else label

    def evaluate(
        self,
        model: Union[ClassifierModel, LinearClassifier],
        samples: Sequence[Sample]
    ) -> ConfusionMatrix:
        """
        Classify every sample and tally (true, predicted) pairs.

        Raises:
            UntrainedModelError: If given a classifier that was never trained
        """
        model = _resolve_model(model)
        samples = list(samples)
        policy = self.policy

        def classify_partition(part: Sequence[Sample]) -> ConfusionMatrix:
            partial = ConfusionMatrix(model.classes)
            X, labels = unpack_samples(part)
            scores = model.decision_scores(X)
            for true_label, row in zip(labels, scores):
                score_map = {c: float(s) for c, s in zip(model.classes, row)}
                if policy.should_abstain(score_map):
                    predicted = UNKNOWN
                else:
                    predicted = model.classes[int(np.argmax(row))]
                partial.increment(true_label, predicted)
            return partial

        logger.info(f"Evaluating {len(samples)} samples (policy={policy}, workers={self.num_workers})")
        matrix = parallel_reduce(
            samples,
            classify_partition,
            lambda acc, partial: acc.merge(partial),
            ConfusionMatrix(model.classes),
            num_workers=self.num_workers,
        )
        self._matrix = matrix
        logger.info(
            f"Evaluated {matrix.total} samples: {matrix.n_correct} correct, "
            f"{matrix.n_incorrect} incorrect, {matrix.n_abstained} abstained"
        )
        return matrix

    @property
    def confusion_matrix(self) -> ConfusionMatrix:
        if self._matrix is None:
            raise ValueError("No evaluation has been run; call evaluate() first")
        return self._matrix

    def report(self) -> EvaluationReport:
        """Report for the most recent evaluate() call."""
        return self.confusion_matrix.report()


def _resolve_model(model: Union[ClassifierModel, LinearClassifier]) -> ClassifierModel:
    if isinstance(model, LinearClassifier):
        return model.model
    return model
