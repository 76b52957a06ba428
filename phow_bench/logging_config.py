"""
Per-run logging: a run.log beside the results, optional console echo, and
banner lines that mark where each stage starts.
"""

import logging
import sys
from pathlib import Path
from typing import Any, Dict, Optional, Union

from phow_bench.config import DATE_FORMAT, LOG_FORMAT

BANNER_WIDTH = 80


def setup_logger(
    name: str = "phow_bench",
    log_file: Optional[Union[str, Path]] = None,
    level: str = "INFO",
    console: bool = True
) -> logging.Logger:
    """
    Point a named logger at a run log file and, optionally, stdout.

    Module loggers under the same name (phow_bench.*) propagate into it, so
    the run log captures every stage. Handlers left by a previous run are
    closed first.

    Args:
        name: Logger name
        log_file: Path to the run log (None disables file output)
        level: Threshold for the console handler and the logger itself
        console: Also echo records to stdout

    Returns:
        The configured logger
    """
    run_logger = logging.getLogger(name)
    for stale in list(run_logger.handlers):
        run_logger.removeHandler(stale)
        stale.close()
    run_logger.setLevel(level.upper())

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    if log_file is not None:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        run_file = logging.FileHandler(log_path, mode='a', encoding='utf-8')
        run_file.setFormatter(formatter)
        run_logger.addHandler(run_file)

    if console:
        echo = logging.StreamHandler(sys.stdout)
        echo.setLevel(level.upper())
        echo.setFormatter(formatter)
        run_logger.addHandler(echo)

    return run_logger


def _banner(logger: logging.Logger, title: str, rule: str = "=") -> None:
    logger.info(rule * BANNER_WIDTH)
    logger.info(title)
    logger.info(rule * BANNER_WIDTH)


def log_run_start(logger: logging.Logger, config: Dict[str, Any]) -> None:
    """Record what this run is about to do."""
    dataset = config.get('dataset') or {}
    vocabulary = config.get('vocabulary') or {}
    aggregation = config.get('aggregation') or {}

    _banner(logger, f"RUN START: {config.get('run_name', 'unnamed')}")
    logger.info(f"Dataset: {dataset.get('root', 'N/A')} (groups: {dataset.get('n_groups') or 'all'})")
    logger.info(f"Per-class split: train={dataset.get('n_train')}, "
                f"validation={dataset.get('n_validation', 0)}, test={dataset.get('n_test')}")
    logger.info(f"Extractor: {config.get('extractor') or {}}")
    logger.info(f"Vocabulary: k={vocabulary.get('k')}, images={vocabulary.get('n_images')}")
    logger.info(f"Pyramid: {aggregation.get('pyramid_levels')} ({aggregation.get('normalization', 'l2')})")
    logger.info(f"Kernel map: {config.get('kernel_map') or {}}")
    logger.info(f"Feature cache: {'on' if (config.get('cache') or {}).get('enabled', True) else 'off'}")
    logger.info("=" * BANNER_WIDTH)


def log_stage(logger: logging.Logger, stage: str, details: Optional[Dict[str, Any]] = None) -> None:
    _banner(logger, f"STAGE: {stage}" + (f" {details}" if details else ""), rule="-")


def log_results(logger: logging.Logger, metrics: Dict[str, Any]) -> None:
    """Log scalar metrics; floats get six decimals, anything non-scalar is skipped."""
    logger.info("RESULTS:")
    for name, value in metrics.items():
        if isinstance(value, float):
            logger.info(f"  {name:<20}: {value:.6f}")
        elif isinstance(value, (int, str)):
            logger.info(f"  {name:<20}: {value}")


def log_run_end(logger: logging.Logger) -> None:
    _banner(logger, "RUN COMPLETE")
