"""Linear classification over PHOW features."""

from .classifier import ClassifierModel, LabeledSample, LinearClassifier
from .solver import LiblinearSolver, LinearSolver, create_solver

__all__ = [
    'ClassifierModel',
    'LabeledSample',
    'LinearClassifier',
    'LinearSolver',
    'LiblinearSolver',
    'create_solver',
]
