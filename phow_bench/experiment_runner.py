"""
Experiment runner: dataset -> vocabulary -> features -> classifier -> report.
"""

import logging
import time
from pathlib import Path
from typing import Any, Dict, Optional

import numpy as np

from phow_bench.classification import LabeledSample, LinearClassifier, create_solver
from phow_bench.clustering import VectorQuantizer, build_training_sample
from phow_bench.config import get_global_config
from phow_bench.datasets import DatasetSplit, GroupedImageDataset, grouped_random_split, sample_groups
from phow_bench.evaluation import EvaluationReport, Evaluator, create_abstention_policy
from phow_bench.feature_extraction import create_keypoint_extractor
from phow_bench.logging_config import log_results, log_run_end, log_run_start, log_stage, setup_logger
from phow_bench.pipeline import PhowPipeline, build_pipeline
from phow_bench.result_manager import ResultManager, format_report


class ExperimentRunner:
    """Orchestrates one classification run and collects its results."""

    def __init__(self, run_config: Dict[str, Any], run_directory: Optional[Path] = None):
        """
        Args:
            run_config: Run configuration (see configs/run.default.yaml)
            run_directory: Output directory; a timestamped one is created if None
        """
        self.run_config = run_config
        self.global_config = get_global_config()
        self.num_workers = run_config.get('num_workers', self.global_config.get_int('num_workers', 0))

        self.result_manager = ResultManager(run_config, run_directory)
        self.run_directory = self.result_manager.run_directory

        log_level = (run_config.get('logging') or {}).get('level', 'INFO')
        self.logger = setup_logger("phow_bench", self.run_directory / "run.log", log_level, console=False)
        log_run_start(self.logger, run_config)

        self.timings: Dict[str, float] = {}
        self.pipeline: Optional[PhowPipeline] = None

    def _section(self, name: str) -> Dict[str, Any]:
        return self.run_config.get(name) or {}

    # -- stages -------------------------------------------------------------

    def load_split(self) -> DatasetSplit:
        dataset_cfg = self._section('dataset')
        print(f"\n{'='*60}")
        print(f"Loading dataset: {dataset_cfg.get('root')}")
        print(f"{'='*60}")

        dataset = GroupedImageDataset.from_directory(dataset_cfg['root'])
        if dataset_cfg.get('n_groups'):
            dataset = sample_groups(dataset, int(dataset_cfg['n_groups']))

        split = grouped_random_split(
            dataset,
            n_train=int(dataset_cfg.get('n_train', 15)),
            n_validation=int(dataset_cfg.get('n_validation', 0)),
            n_test=int(dataset_cfg.get('n_test', 15)),
            seed=int(dataset_cfg.get('seed', 42)),
        )
        self.dataset = dataset
        print(f"[OK] Classes: {', '.join(dataset.labels)}")
        print(f"[OK] Train: {len(split.train)}, test: {len(split.test)}")
        return split

    def vocabulary_path(self) -> Path:
        configured = self._section('vocabulary').get('path')
        return Path(configured) if configured else self.run_directory / "vocabulary.pkl"

    def train_vocabulary(self, split: DatasetSplit) -> VectorQuantizer:
        """Load the configured vocabulary if it exists, otherwise train and save one."""
        vocab_cfg = self._section('vocabulary')
        path = self.vocabulary_path()

        if path.exists() and not vocab_cfg.get('retrain', False):
            quantizer = VectorQuantizer.load(path)
            print(f"[OK] Loaded vocabulary: {path} (k={quantizer.k})")
            self.logger.info(f"Loaded vocabulary from {path}")
            return quantizer

        log_stage(self.logger, "Vocabulary training", vocab_cfg)
        print(f"\n[1/4] Vocabulary Training")
        print("-" * 60)
        start = time.perf_counter()

        extractor = create_keypoint_extractor(self._section('extractor'))
        sample = build_training_sample(
            split.train,
            extractor,
            n_images=int(vocab_cfg.get('n_images', 30)),
            descriptors_per_image=vocab_cfg.get('descriptors_per_image'),
            max_descriptors=int(vocab_cfg.get('max_samples', 10000)),
            seed=int(vocab_cfg.get('seed', 42)),
            num_workers=self.num_workers,
        )
        quantizer = VectorQuantizer.from_config(vocab_cfg)
        quantizer.train(sample, k=int(vocab_cfg.get('k', 600)), seed=int(vocab_cfg.get('seed', 42)))
        quantizer.save(path)

        self.timings['vocabulary'] = time.perf_counter() - start
        print(f"[OK] Trained {quantizer.k} visual words from {len(sample)} descriptors "
              f"in {self.timings['vocabulary']:.1f}s")
        return quantizer

    def build_pipeline(self, quantizer: VectorQuantizer) -> PhowPipeline:
        cache_cfg = self._section('cache')
        cache_root = None
        if cache_cfg.get('enabled', self.global_config.get_bool('enable_feature_cache', True)):
            cache_root = cache_cfg.get('store_location') or (self.global_config.get_path('cache_dir') / 'features')

        dataset_root = self._section('dataset').get('root')
        self.pipeline = build_pipeline(
            self.run_config,
            quantizer,
            cache_root=cache_root,
            recompute_on_corruption=cache_cfg.get('recompute_on_corruption', True),
            dataset_id=str(Path(dataset_root).resolve()) if dataset_root else None,
        )
        return self.pipeline

    def extract_features(self, records, desc: str) -> np.ndarray:
        start = time.perf_counter()
        features = self.pipeline.extract_many(records, num_workers=self.num_workers, desc=desc)
        self.timings[f"features_{desc.lower()}"] = time.perf_counter() - start
        print(f"[OK] {desc} feature matrix shape: {features.shape}")
        return features

    def train_classifier(self, records, features: np.ndarray) -> LinearClassifier:
        classifier_cfg = self._section('classifier')
        log_stage(self.logger, "Classifier training", classifier_cfg)
        print(f"\n[3/4] Classifier Training")
        print("-" * 60)

        classifier = LinearClassifier(
            regularization=float(classifier_cfg.get('regularization', 1.0)),
            loss=classifier_cfg.get('loss', 'squared_hinge'),
            solver=create_solver(classifier_cfg),
            show_progress=True,
        )
        start = time.perf_counter()
        classifier.train([LabeledSample(v, r.label) for v, r in zip(features, records)])
        self.timings['classifier'] = time.perf_counter() - start
        return classifier

    def evaluate(self, classifier: LinearClassifier, records, features: np.ndarray) -> EvaluationReport:
        evaluation_cfg = self._section('evaluation')
        log_stage(self.logger, "Evaluation", evaluation_cfg)
        print(f"\n[4/4] Evaluation")
        print("-" * 60)

        evaluator = Evaluator(
            policy=create_abstention_policy(evaluation_cfg.get('abstention') or {}),
            num_workers=self.num_workers,
        )
        start = time.perf_counter()
        evaluator.evaluate(classifier, [LabeledSample(v, r.label) for v, r in zip(features, records)])
        self.timings['evaluation'] = time.perf_counter() - start
        return evaluator.report()

    # -- entry point --------------------------------------------------------

    def run(self) -> EvaluationReport:
        """Execute every stage and save the results."""
        self.result_manager.save_config()
        split = self.load_split()
        quantizer = self.train_vocabulary(split)
        self.build_pipeline(quantizer)

        log_stage(self.logger, "Feature extraction", {'output_length': self.pipeline.output_length})
        print(f"\n[2/4] Feature Extraction")
        print("-" * 60)
        train_features = self.extract_features(split.train, "Train")
        test_features = self.extract_features(split.test, "Test")

        classifier = self.train_classifier(split.train, train_features)
        report = self.evaluate(classifier, split.test, test_features)
        classifier.model.save(self.run_directory / "classifier.pkl")

        extra: Dict[str, Any] = {'timings': self.timings}
        if self.pipeline.cache is not None:
            extra['cache'] = {'namespace': self.pipeline.cache.namespace, **self.pipeline.cache.stats}
            self.pipeline.cache.close()
        self.result_manager.save_report(report, extra=extra)

        log_results(self.logger, {
            'accuracy': report.accuracy,
            'macro_f1': report.macro_f1,
            'n_abstained': report.n_abstained,
            'n_samples': report.n_samples,
        })
        log_run_end(self.logger)

        print()
        print(format_report(report))
        return report

    def get_output_directory(self) -> Path:
        return self.run_directory
