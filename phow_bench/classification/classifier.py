"""
One-vs-rest linear classifier over fixed-length feature vectors.

Training solves one binary problem per class (that class against all
others). Prediction scores a vector against every class and returns the
argmax together with the full score mapping, so callers can apply their own
abstention rule.
"""

import logging
import pickle
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Hashable, List, Optional, Sequence, Tuple, Union

import numpy as np
from tqdm import tqdm

from phow_bench.classification.solver import LOSSES, LinearSolver, LiblinearSolver
from phow_bench.errors import ConfigurationError, UntrainedModelError
from phow_bench.utils.atomic import atomic_pickle_dump

logger = logging.getLogger(__name__)

Label = Hashable

# Reserved for abstained predictions; never a trainable class
UNKNOWN = 'unknown'


@dataclass(frozen=True, eq=False)
class LabeledSample:
    """A feature vector with its ground-truth class."""
    vector: np.ndarray
    label: Label


@dataclass(frozen=True, eq=False)
class ClassifierModel:
    """Trained one-vs-rest weights. Immutable; shared read-only by predictions."""
    classes: Tuple[Label, ...]
    weights: np.ndarray  # [n_classes, n_features]
    biases: np.ndarray   # [n_classes]
    regularization: float
    loss: str

    @property
    def n_features(self) -> int:
        return int(self.weights.shape[1])

    def decision_scores(self, vectors: np.ndarray) -> np.ndarray:
        """Scores [n_samples, n_classes] for a matrix of feature vectors."""
        vectors = np.asarray(vectors, dtype=np.float64)
        if vectors.ndim == 1:
            vectors = vectors.reshape(1, -1)
        if vectors.shape[1] != self.n_features:
            raise ConfigurationError(
                f"Feature vector has length {vectors.shape[1]}, model expects {self.n_features}"
            )
        return vectors @ self.weights.T + self.biases

    def predict(self, vector: np.ndarray) -> Tuple[Label, Dict[Label, float]]:
        """Best class (lowest class index wins ties) and the score of every class."""
        scores = self.decision_scores(vector)[0]
        best = int(np.argmax(scores))
        return self.classes[best], {c: float(s) for c, s in zip(self.classes, scores)}

    def to_dict(self) -> Dict[str, Any]:
        return {
            'classes': list(self.classes),
            'weights': self.weights,
            'biases': self.biases,
            'regularization': self.regularization,
            'loss': self.loss,
        }

    def save(self, path: Union[str, Path]) -> Path:
        path = atomic_pickle_dump(self.to_dict(), path)
        logger.info(f"Saved classifier ({len(self.classes)} classes, {self.n_features} features) to {path}")
        return path

    @classmethod
    def load(cls, path: Union[str, Path]) -> 'ClassifierModel':
        with open(path, 'rb') as f:
            payload = pickle.load(f)
        return cls(
            classes=tuple(payload['classes']),
            weights=np.asarray(payload['weights'], dtype=np.float64),
            biases=np.asarray(payload['biases'], dtype=np.float64),
            regularization=float(payload['regularization']),
            loss=payload['loss'],
        )


def unpack_samples(samples: Sequence[Union[LabeledSample, Tuple[np.ndarray, Label]]]) -> Tuple[np.ndarray, List[Label]]:
    vectors, labels = [], []
    for sample in samples:
        if isinstance(sample, LabeledSample):
            vector, label = sample.vector, sample.label
        else:
            vector, label = sample
        vectors.append(np.asarray(vector, dtype=np.float64).reshape(-1))
        labels.append(label)

    if not vectors:
        raise ConfigurationError("Sample set is empty")
    lengths = {len(v) for v in vectors}
    if len(lengths) != 1:
        raise ConfigurationError(f"Training vectors have inconsistent lengths: {sorted(lengths)}")
    return np.vstack(vectors), labels


class LinearClassifier:
    """Trains and applies a one-vs-rest linear model."""

    def __init__(
        self,
        regularization: float = 1.0,
        loss: str = 'squared_hinge',
        solver: Optional[LinearSolver] = None,
        show_progress: bool = False
    ):
        """
        Args:
            regularization: Inverse regularization strength (C)
            loss: 'squared_hinge' (default), 'hinge' or 'logistic'
            solver: Binary solver; defaults to liblinear with tol=1e-5
            show_progress: Show a progress bar over classes while training
        """
        if loss not in LOSSES:
            raise ConfigurationError(f"Unknown loss: {loss}. Available: {', '.join(LOSSES)}")
        if regularization <= 0:
            raise ConfigurationError(f"regularization must be positive, got {regularization}")

        self.regularization = float(regularization)
        self.loss = loss
        self.solver = solver or LiblinearSolver()
        self.show_progress = show_progress
        self._model: Optional[ClassifierModel] = None

    @property
    def model(self) -> ClassifierModel:
        if self._model is None:
            raise UntrainedModelError("Classifier has not been trained; call train() first")
        return self._model

    @property
    def is_trained(self) -> bool:
        return self._model is not None

    def train(self, samples: Sequence[Union[LabeledSample, Tuple[np.ndarray, Label]]]) -> ClassifierModel:
        """
        Fit one binary discriminant per class and replace any previous model.

        Raises:
            ConfigurationError: Empty input, ragged vectors or fewer than two classes
            TrainingError: If any binary problem fails to converge
        """
        X, labels = unpack_samples(samples)
        classes = tuple(sorted(set(labels)))
        if UNKNOWN in classes:
            raise ConfigurationError(f"'{UNKNOWN}' is reserved for abstentions and cannot be a class label")
        if len(classes) < 2:
            raise ConfigurationError(f"Need at least two classes to train, got {list(classes)}")

        label_array = np.array([classes.index(label) for label in labels])
        logger.info(
            f"Training one-vs-rest {self.loss} classifier: {len(classes)} classes, "
            f"{X.shape[0]} samples, {X.shape[1]} features, C={self.regularization}"
        )

        weights = np.zeros((len(classes), X.shape[1]), dtype=np.float64)
        biases = np.zeros(len(classes), dtype=np.float64)
        class_iter = enumerate(classes)
        if self.show_progress:
            class_iter = tqdm(class_iter, total=len(classes), desc="Training one-vs-rest")
        for index, label in class_iter:
            target = (label_array == index).astype(np.int64)
            weights[index], biases[index] = self.solver.fit_binary(X, target, self.regularization, self.loss)
            logger.debug(f"Trained discriminant for class '{label}' ({int(target.sum())} positives)")

        weights.setflags(write=False)
        biases.setflags(write=False)
        self._model = ClassifierModel(
            classes=classes,
            weights=weights,
            biases=biases,
            regularization=self.regularization,
            loss=self.loss,
        )
        return self._model

    def predict(self, vector: np.ndarray) -> Tuple[Label, Dict[Label, float]]:
        """Predicted class and per-class scores for one vector."""
        return self.model.predict(vector)

    def predict_batch(self, vectors: np.ndarray) -> List[Label]:
        scores = self.model.decision_scores(vectors)
        return [self.model.classes[i] for i in np.argmax(scores, axis=1)]
