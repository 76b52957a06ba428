"""Tests for one-vs-rest linear classification."""

import warnings

import numpy as np
import pytest

from phow_bench.classification import ClassifierModel, LabeledSample, LinearClassifier, LiblinearSolver, create_solver
from phow_bench.errors import ConfigurationError, TrainingError, UntrainedModelError


def separable_samples(n_per_class: int = 5, labels=('cat', 'dog'), seed: int = 0):
    """Each class sits near its own axis of a small feature space."""
    rng = np.random.default_rng(seed)
    dim = len(labels) + 2
    samples = []
    for index, label in enumerate(labels):
        for _ in range(n_per_class):
            vector = rng.normal(0.0, 0.05, size=dim)
            vector[index] += 1.0
            samples.append(LabeledSample(vector=vector, label=label))
    return samples


class TestTraining:

    def test_two_classes_perfect_training_accuracy(self):
        samples = separable_samples()
        classifier = LinearClassifier(regularization=1.0)
        model = classifier.train(samples)

        assert model.classes == ('cat', 'dog')
        predictions = [classifier.predict(s.vector)[0] for s in samples]
        assert predictions == [s.label for s in samples]

    def test_three_classes_sorted(self):
        samples = separable_samples(labels=('zebra', 'ant', 'moose'))
        classifier = LinearClassifier()
        model = classifier.train(samples)
        assert model.classes == ('ant', 'moose', 'zebra')
        assert model.weights.shape == (3, 5)
        assert classifier.predict_batch(np.vstack([s.vector for s in samples])) == [s.label for s in samples]

    @pytest.mark.parametrize('loss', ['hinge', 'logistic'])
    def test_other_losses(self, loss):
        samples = separable_samples()
        classifier = LinearClassifier(loss=loss)
        classifier.train(samples)
        assert classifier.predict(samples[0].vector)[0] == 'cat'

    def test_logistic_loss_raises_no_future_warnings(self):
        with warnings.catch_warnings():
            warnings.simplefilter('error', FutureWarning)
            LinearClassifier(loss='logistic').train(separable_samples())

    def test_tuple_samples(self):
        samples = [(s.vector, s.label) for s in separable_samples()]
        assert LinearClassifier().train(samples).classes == ('cat', 'dog')

    def test_retraining_replaces_model(self):
        classifier = LinearClassifier()
        first = classifier.train(separable_samples(seed=0))
        second = classifier.train(separable_samples(labels=('x', 'y', 'z'), seed=1))
        assert classifier.model is second
        assert first.classes == ('cat', 'dog')

    def test_weights_are_read_only(self):
        model = LinearClassifier().train(separable_samples())
        with pytest.raises(ValueError):
            model.weights[0, 0] = 0.0


class TestValidation:

    def test_predict_before_training(self):
        classifier = LinearClassifier()
        assert not classifier.is_trained
        with pytest.raises(UntrainedModelError):
            classifier.predict(np.zeros(4))

    def test_single_class(self):
        samples = separable_samples(labels=('only',))
        with pytest.raises(ConfigurationError, match="at least two classes"):
            LinearClassifier().train(samples)

    def test_reserved_label(self):
        samples = separable_samples(labels=('cat', 'unknown'))
        with pytest.raises(ConfigurationError, match="reserved"):
            LinearClassifier().train(samples)

    def test_empty(self):
        with pytest.raises(ConfigurationError, match="empty"):
            LinearClassifier().train([])

    def test_ragged_vectors(self):
        samples = [LabeledSample(np.zeros(3), 'a'), LabeledSample(np.zeros(4), 'b')]
        with pytest.raises(ConfigurationError, match="inconsistent lengths"):
            LinearClassifier().train(samples)

    def test_wrong_length_at_prediction(self):
        classifier = LinearClassifier()
        classifier.train(separable_samples())
        with pytest.raises(ConfigurationError, match="model expects 4"):
            classifier.predict(np.zeros(7))

    def test_bad_parameters(self):
        with pytest.raises(ConfigurationError, match="Unknown loss"):
            LinearClassifier(loss='l1')
        with pytest.raises(ConfigurationError, match="positive"):
            LinearClassifier(regularization=0.0)

    def test_non_convergence_is_a_training_error(self):
        rng = np.random.default_rng(0)
        samples = [LabeledSample(rng.normal(size=20), label) for label in ['a', 'b'] * 50]
        classifier = LinearClassifier(regularization=1000.0, solver=LiblinearSolver(max_iter=1))
        with pytest.raises(TrainingError, match="did not converge"):
            classifier.train(samples)


class TestModel:

    def test_ties_go_to_first_class(self):
        model = ClassifierModel(
            classes=('a', 'b'),
            weights=np.zeros((2, 3)),
            biases=np.zeros(2),
            regularization=1.0,
            loss='squared_hinge'
        )
        label, scores = model.predict(np.ones(3))
        assert label == 'a'
        assert scores == {'a': 0.0, 'b': 0.0}

    def test_save_and_load(self, tmp_path):
        samples = separable_samples()
        model = LinearClassifier().train(samples)
        restored = ClassifierModel.load(model.save(tmp_path / 'model.pkl'))

        assert restored.classes == model.classes
        probe = np.vstack([s.vector for s in samples])
        np.testing.assert_allclose(restored.decision_scores(probe), model.decision_scores(probe))

    def test_create_solver(self):
        solver = create_solver({'solver': 'liblinear', 'tol': 1e-3, 'max_iter': 50})
        assert solver.tol == 1e-3
        assert solver.max_iter == 50
        with pytest.raises(ConfigurationError, match="Unknown solver"):
            create_solver({'solver': 'sgd'})
