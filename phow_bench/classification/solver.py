"""
Binary linear solvers used for one-vs-rest training.

A solver receives a design matrix and 0/1 targets and returns a weight
vector and bias such that a positive score means "target class".
"""

import logging
import warnings
from abc import ABC, abstractmethod
from typing import Any, Dict, Tuple

import numpy as np
from sklearn.exceptions import ConvergenceWarning
from sklearn.linear_model import LogisticRegression
from sklearn.svm import LinearSVC

from phow_bench.errors import ConfigurationError, TrainingError

logger = logging.getLogger(__name__)

LOSSES = ('squared_hinge', 'hinge', 'logistic')


class LinearSolver(ABC):
    """Fits one binary linear discriminant."""

    @abstractmethod
    def fit_binary(
        self,
        X: np.ndarray,
        y: np.ndarray,
        regularization: float,
        loss: str
    ) -> Tuple[np.ndarray, float]:
        """
        Args:
            X: Design matrix [n_samples, n_features]
            y: Targets in {0, 1}
            regularization: Inverse regularization strength (liblinear C)
            loss: One of LOSSES

        Returns:
            (weights [n_features], bias)

        Raises:
            TrainingError: If the solver does not converge
        """
        pass


class LiblinearSolver(LinearSolver):
    """L2-regularized liblinear solvers from scikit-learn."""

    def __init__(self, tol: float = 1e-5, max_iter: int = 10000, random_state: int = 0):
        self.tol = tol
        self.max_iter = max_iter
        self.random_state = random_state

    def _estimator(self, regularization: float, loss: str):
        if loss in ('squared_hinge', 'hinge'):
            return LinearSVC(
                penalty='l2',
                loss=loss,
                dual=True,
                C=regularization,
                tol=self.tol,
                max_iter=self.max_iter,
                random_state=self.random_state
            )
        if loss == 'logistic':
            return LogisticRegression(
                solver='liblinear',
                C=regularization,
                tol=self.tol,
                max_iter=self.max_iter,
                random_state=self.random_state
            )
        raise ConfigurationError(f"Unknown loss: {loss}. Available: {', '.join(LOSSES)}")

    def fit_binary(
        self,
        X: np.ndarray,
        y: np.ndarray,
        regularization: float,
        loss: str
    ) -> Tuple[np.ndarray, float]:
        estimator = self._estimator(regularization, loss)

        with warnings.catch_warnings():
            warnings.simplefilter('error', ConvergenceWarning)
            try:
                estimator.fit(X, y)
            except ConvergenceWarning as e:
                raise TrainingError(
                    f"liblinear ({loss}, C={regularization}) did not converge in {self.max_iter} iterations"
                ) from e
            except ValueError as e:
                raise TrainingError(f"liblinear rejected the training data: {e}") from e

        weights = np.asarray(estimator.coef_, dtype=np.float64).reshape(-1)
        bias = float(np.asarray(estimator.intercept_).reshape(-1)[0])
        if not np.all(np.isfinite(weights)) or not np.isfinite(bias):
            raise TrainingError("Solver produced non-finite weights")
        return weights, bias


def create_solver(solver_config: Dict[str, Any]) -> LinearSolver:
    """Factory for linear solvers (only 'liblinear' is built in)."""
    name = solver_config.get('solver', 'liblinear')
    if name != 'liblinear':
        raise ConfigurationError(f"Unknown solver: {name}. Available: liblinear")
    return LiblinearSolver(
        tol=float(solver_config.get('tol', 1e-5)),
        max_iter=int(solver_config.get('max_iter', 10000)),
        random_state=int(solver_config.get('random_state', 0)),
    )
