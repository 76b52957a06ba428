"""End-to-end runs over a tiny synthetic two-class dataset."""

import json
import logging

import numpy as np
import pytest
import yaml

from phow_bench.aggregation import SpatialAggregator
from phow_bench.classification import LabeledSample, LinearClassifier
from phow_bench.cli import create_argument_parser, command_clear_cache, load_run_config, main
from phow_bench.clustering import VectorQuantizer
from phow_bench.config import merge_configs
from phow_bench.experiment_runner import ExperimentRunner
from phow_bench.feature_cache import open_feature_cache
from phow_bench.feature_extraction import DescriptorSet, ImageBounds


@pytest.fixture
def dataset_root(tmp_path, noise_image, stripe_image, encode_png):
    """Two visually distinct classes, four images each."""
    root = tmp_path / 'dataset'
    for label, factory in [('noise', noise_image), ('stripes', stripe_image)]:
        (root / label).mkdir(parents=True)
        for i in range(4):
            (root / label / f"{i}.png").write_bytes(encode_png(factory(seed=100 + i)))
    return root


@pytest.fixture
def run_config(tmp_path, dataset_root, small_extractor_config):
    return merge_configs('run.default.yaml', {
        'run_name': 'tiny',
        'dataset': {'root': str(dataset_root), 'n_groups': 2, 'n_train': 2, 'n_test': 2, 'seed': 0},
        'extractor': small_extractor_config,
        'vocabulary': {'k': 8, 'n_images': 4, 'path': str(tmp_path / 'vocab.pkl')},
        'cache': {'enabled': True, 'store_location': str(tmp_path / 'cache')},
        'output_dir': str(tmp_path / 'outputs'),
        'num_workers': 2,
    })


class TestExperimentRunner:

    def test_full_run_writes_every_artifact(self, run_config, tmp_path):
        runner = ExperimentRunner(run_config, run_directory=tmp_path / 'run')
        report = runner.run()

        assert report.n_samples == 4
        assert 0.0 <= report.accuracy <= 1.0
        for name in ['report.json', 'confusion_matrix.csv', 'per_class.csv', 'report.txt',
                     'run_config.yaml', 'classifier.pkl', 'run.log']:
            assert (tmp_path / 'run' / name).exists(), name
        assert (tmp_path / 'vocab.pkl').exists()

    def test_second_run_reuses_vocabulary_and_cache(self, run_config, tmp_path):
        first = ExperimentRunner(run_config, run_directory=tmp_path / 'first').run()
        second = ExperimentRunner(run_config, run_directory=tmp_path / 'second').run()

        payload = json.loads((tmp_path / 'second' / 'report.json').read_text())
        assert payload['cache']['hits'] == 8
        assert payload['cache']['misses'] == 0
        assert second.counts == first.counts

    def test_without_cache(self, run_config, tmp_path):
        run_config['cache']['enabled'] = False
        runner = ExperimentRunner(run_config, run_directory=tmp_path / 'run')
        runner.run()
        assert runner.pipeline.cache is None
        assert not (tmp_path / 'cache').exists()


class TestCommandLine:

    def test_overrides(self, dataset_root, tmp_path):
        parser = create_argument_parser()
        args = parser.parse_args([
            'run', '--dataset', str(dataset_root), '--workers', '3', '--no-cache',
            '--output-dir', str(tmp_path / 'out'),
        ])
        config = load_run_config(args)

        assert config['dataset']['root'] == str(dataset_root)
        assert config['num_workers'] == 3
        assert config['cache']['enabled'] is False
        assert config['vocabulary']['k'] == 600

    def test_quick_mode(self, dataset_root):
        args = create_argument_parser().parse_args(['run', '--dataset', str(dataset_root), '--quick'])
        config = load_run_config(args)
        assert config['vocabulary']['k'] == 50
        assert config['cache']['enabled'] is False

    def test_unknown_extractor_is_reported_not_raised(self, dataset_root, tmp_path, monkeypatch, capsys):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setattr(logging.getLogger(), 'handlers', [])
        run_file = tmp_path / 'bad_run.yaml'
        run_file.write_text(yaml.safe_dump({
            'dataset': {'n_groups': 2, 'n_train': 2, 'n_test': 2},
            'extractor': {'extractor': 'surf'},
        }))

        exit_code = main([
            'run', '--run-config', str(run_file), '--dataset', str(dataset_root),
            '--output-dir', str(tmp_path / 'out'), '--no-cache',
        ])

        assert exit_code == 1
        assert 'Unknown extractor: surf' in capsys.readouterr().err

    def test_clear_cache(self, tmp_path, capsys):
        cache = open_feature_cache(tmp_path / 'store', {'k': 1}, vector_length=2)
        cache.put('a', [1.0, 2.0])
        cache.put('b', [3.0, 4.0])
        cache.close()

        args = create_argument_parser().parse_args(['clear-cache', '--store-location', str(tmp_path / 'store')])
        assert command_clear_cache(args) == 0
        assert 'Removed 2' in capsys.readouterr().out


class TestSyntheticScenario:
    """Vocabulary, pyramid histograms and classifier chained on known 2-D data."""

    MEANS = np.array([[0.0, 0.0], [8.0, 8.0]])

    def test_vocabulary_and_classifier_on_two_clusters(self):
        rng = np.random.default_rng(7)
        points = np.vstack([rng.normal(mean, 0.1, size=(10, 2)) for mean in self.MEANS])

        quantizer = VectorQuantizer()
        centroids = quantizer.train(points, k=4, seed=0)

        distances = np.linalg.norm(centroids[:, None, :] - self.MEANS[None, :, :], axis=2)
        assert distances.min(axis=1).max() < 0.5
        assert set(distances.argmin(axis=1)) == {0, 1}

        aggregator = SpatialAggregator(quantizer, pyramid_levels=[(1, 1), (2, 2)])
        bounds = ImageBounds(width=32, height=32)
        samples = []
        for label, mean in zip(['left', 'right'], self.MEANS):
            for _ in range(5):
                descriptors = DescriptorSet(
                    descriptors=rng.normal(mean, 0.1, size=(12, 2)),
                    locations=rng.uniform(0, 32, size=(12, 2)),
                )
                samples.append(LabeledSample(aggregator.aggregate(descriptors, bounds), label))

        classifier = LinearClassifier()
        classifier.train(samples)

        predicted = classifier.predict_batch(np.vstack([s.vector for s in samples]))
        assert predicted == [s.label for s in samples]
