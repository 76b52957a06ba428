"""
Command-line interface for phow-bench.

Sub-commands:
  run               Full run: vocabulary, features, classifier, evaluation
  train-vocabulary  Train and save a visual vocabulary only
  clear-cache       Delete cached feature vectors
"""

import argparse
import sys
from pathlib import Path
from typing import Any, Dict, Optional, Sequence

from phow_bench.config import get_global_config, merge_configs, setup_logging
from phow_bench.errors import PhowError
from phow_bench.experiment_runner import ExperimentRunner
from phow_bench.feature_cache import CacheConfig, FeatureCache

DEFAULT_RUN_CONFIG = 'run.default.yaml'

QUICK_OVERRIDES = {
    'dataset': {'n_groups': 2, 'n_train': 5, 'n_test': 5},
    'vocabulary': {'k': 50, 'n_images': 6},
    'cache': {'enabled': False},
}


def load_run_config(args: argparse.Namespace) -> Dict[str, Any]:
    """Merge the run config file with command-line overrides."""
    overrides: Dict[str, Any] = {}
    if getattr(args, 'dataset', None):
        overrides.setdefault('dataset', {})['root'] = args.dataset
    if getattr(args, 'vocabulary', None):
        overrides.setdefault('vocabulary', {})['path'] = args.vocabulary
    if getattr(args, 'workers', None) is not None:
        overrides['num_workers'] = args.workers
    if getattr(args, 'output_dir', None):
        overrides['output_dir'] = args.output_dir

    configs = [args.run_config]
    if getattr(args, 'quick', False):
        print("\nQUICK MODE: Using small subset for fast testing")
        print(f"   • Limited to {QUICK_OVERRIDES['dataset']['n_groups']} classes, "
              f"k={QUICK_OVERRIDES['vocabulary']['k']}")
        print("   • Feature caching disabled")
        configs.append(QUICK_OVERRIDES)
    if getattr(args, 'no_cache', False):
        overrides.setdefault('cache', {})['enabled'] = False
    configs.append(overrides)

    run_config = merge_configs(*configs)
    if not (run_config.get('dataset') or {}).get('root'):
        raise PhowError("No dataset root given (use --dataset or set dataset.root in the run config)")
    return run_config


def command_run(args: argparse.Namespace) -> int:
    run_config = load_run_config(args)

    print("=" * 60)
    print("PHOW-BENCH CLASSIFICATION")
    print("=" * 60)
    print(f"Dataset: {run_config['dataset']['root']}")
    print(f"Vocabulary: k={run_config.get('vocabulary', {}).get('k')}")
    print("=" * 60)

    runner = ExperimentRunner(run_config)
    report = runner.run()
    print(f"\nAccuracy: {report.accuracy:.4f}")
    print(f"Results saved to: {runner.get_output_directory()}")
    return 0


def command_train_vocabulary(args: argparse.Namespace) -> int:
    run_config = load_run_config(args)
    runner = ExperimentRunner(run_config)
    quantizer = runner.train_vocabulary(runner.load_split())
    print(f"\nVocabulary ({quantizer.k} words) saved to: {runner.vocabulary_path()}")
    return 0


def command_clear_cache(args: argparse.Namespace) -> int:
    store_location = Path(args.store_location or (get_global_config().get_path('cache_dir') / 'features'))
    cache = FeatureCache(CacheConfig(store_location=store_location, namespace_key=args.namespace or 'phow'))
    removed = cache.clear(all_namespaces=args.namespace is None)
    cache.close()
    print(f"Removed {removed} cached feature vectors from {store_location}")
    return 0


def _add_run_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        '--run-config', '-c',
        type=str,
        default=DEFAULT_RUN_CONFIG,
        help=f"Run configuration YAML (default: configs/{DEFAULT_RUN_CONFIG})"
    )
    parser.add_argument('--dataset', '-d', type=str, help="Dataset root laid out as <root>/<class>/<image>")
    parser.add_argument('--vocabulary', type=str, help="Vocabulary file to load or create")
    parser.add_argument('--output-dir', '-o', type=str, help="Directory for run outputs")
    parser.add_argument(
        '--workers', '-w',
        type=int,
        help="Worker threads for extraction and evaluation (0 = one per core)"
    )
    parser.add_argument(
        '--quick', '-q',
        action='store_true',
        help="Quick test mode: few classes, small vocabulary, no caching"
    )
    parser.add_argument('--no-cache', action='store_true', help="Disable the feature cache")


def create_argument_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='phow-bench',
        description="PHOW image classification benchmark",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Full run on a Caltech-101 style directory
  phow-bench run --dataset data/caltech101

  # Quick smoke run without caching
  phow-bench run --dataset data/caltech101 --quick

  # Train a vocabulary once and reuse it
  phow-bench train-vocabulary --dataset data/caltech101 --vocabulary vocab/k600.pkl
  phow-bench run --dataset data/caltech101 --vocabulary vocab/k600.pkl

  # Drop every cached feature vector
  phow-bench clear-cache
        """
    )
    parser.add_argument('--log-level', default=None, help="Override logging.level from the global config")
    subparsers = parser.add_subparsers(dest='command', required=True)

    run_parser = subparsers.add_parser('run', help="Run the full classification experiment")
    _add_run_arguments(run_parser)
    run_parser.set_defaults(func=command_run)

    vocab_parser = subparsers.add_parser('train-vocabulary', help="Train and save a visual vocabulary")
    _add_run_arguments(vocab_parser)
    vocab_parser.set_defaults(func=command_train_vocabulary)

    clear_parser = subparsers.add_parser('clear-cache', help="Delete cached feature vectors")
    clear_parser.add_argument('--store-location', type=str, help="Cache directory (default: <cache_dir>/features)")
    clear_parser.add_argument('--namespace', type=str, help="Only clear this namespace")
    clear_parser.set_defaults(func=command_clear_cache)

    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main entry point for the CLI."""
    parser = create_argument_parser()
    args = parser.parse_args(argv)
    setup_logging(args.log_level)

    try:
        return args.func(args)
    except PhowError as error:
        print(f"Error: {error}", file=sys.stderr)
        return 1


if __name__ == '__main__':
    sys.exit(main())
