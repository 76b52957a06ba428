"""
Configuration management for phow-bench.

Two layers:
  - process settings (worker count, output/cache/log locations, logging),
    held by a GlobalConfig read from configs/global_config.yaml, or from the
    file named by $PHOW_BENCH_CONFIG
  - run settings (dataset, extractor, vocabulary, classifier, ...), read from
    run YAML files and merged with command-line overrides

Command-line overrides beat the run file, the run file beats the process
settings, and those beat the built-in defaults below.

Example:
    >>> from phow_bench.config import get_global_config
    >>> get_global_config().get_path('cache_dir')
    PosixPath('.cache')
"""

import copy
import logging
import os
from dataclasses import dataclass, field
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import yaml

from phow_bench.errors import ConfigurationError

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parent.parent
CONFIG_DIR = PROJECT_ROOT / 'configs'
CONFIG_ENV_VAR = 'PHOW_BENCH_CONFIG'

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

DEFAULT_SETTINGS: Dict[str, Any] = {
    'num_workers': 0,
    'output_dir': 'outputs/',
    'cache_dir': '.cache/',
    'log_dir': 'logs/',
    'enable_feature_cache': True,
    'logging': {
        'level': 'INFO',
        'format': LOG_FORMAT,
        'date_format': DATE_FORMAT,
        'log_to_file': True,
        'log_to_console': True,
        'max_log_size_mb': 100,
        'backup_count': 3,
    },
}

_TRUE_STRINGS = {'1', 'true', 'yes', 'on'}
_FALSE_STRINGS = {'0', 'false', 'no', 'off', ''}


def _default_settings_path() -> Path:
    override = os.environ.get(CONFIG_ENV_VAR)
    return Path(override) if override else CONFIG_DIR / 'global_config.yaml'


class GlobalConfig:
    """
    Process-wide settings with dotted-key access.

    Pipeline components never read from here; the runner and CLI resolve
    what they need and pass it down explicitly.
    """

    def __init__(self, settings_path: Optional[Union[str, Path]] = None):
        self.settings_path = Path(settings_path) if settings_path else _default_settings_path()
        self._settings: Dict[str, Any] = {}
        self.reload()

    def reload(self) -> None:
        """Re-read the settings file on top of the built-in defaults."""
        self._settings = copy.deepcopy(DEFAULT_SETTINGS)
        if not self.settings_path.exists():
            logger.warning(f"No settings file at {self.settings_path}; using built-in defaults")
            return
        try:
            with open(self.settings_path, 'r') as f:
                overrides = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.warning(f"Could not read {self.settings_path} ({e}); using built-in defaults")
            return
        if not isinstance(overrides, dict):
            logger.warning(f"{self.settings_path} does not hold a mapping; using built-in defaults")
            return
        _deep_merge_dicts(self._settings, overrides)
        logger.debug(f"Process settings loaded from {self.settings_path}")

    def get(self, key: str, default: Any = None) -> Any:
        """
        Look up a setting; 'logging.level' walks into nested sections.

        Returns default when any part of the path is missing.
        """
        node: Any = self._settings
        for part in key.split('.'):
            if not isinstance(node, dict) or part not in node:
                return default
            node = node[part]
        return node

    def get_path(self, key: str, default: str = '') -> Path:
        return Path(self.get(key, default))

    def get_int(self, key: str, default: int = 0) -> int:
        raw = self.get(key, default)
        if isinstance(raw, bool):
            raise ConfigurationError(f"Setting '{key}' must be an integer, got {raw!r}")
        try:
            return int(raw)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Setting '{key}' must be an integer, got {raw!r}") from e

    def get_bool(self, key: str, default: bool = False) -> bool:
        raw = self.get(key, default)
        if isinstance(raw, str):
            lowered = raw.strip().lower()
            if lowered in _TRUE_STRINGS:
                return True
            if lowered in _FALSE_STRINGS:
                return False
            raise ConfigurationError(f"Setting '{key}' must be a boolean, got {raw!r}")
        return bool(raw)

    def set(self, key: str, value: Any) -> None:
        """Override a setting in memory for the rest of this process."""
        *parents, leaf = key.split('.')
        node = self._settings
        for part in parents:
            node = node.setdefault(part, {})
        node[leaf] = value

    def to_dict(self) -> Dict[str, Any]:
        return copy.deepcopy(self._settings)


_global_config: Optional[GlobalConfig] = None


def get_global_config() -> GlobalConfig:
    """Return the process-wide settings, loading them on first use."""
    global _global_config
    if _global_config is None:
        _global_config = GlobalConfig()
    return _global_config


def setup_logging(level: Optional[str] = None) -> None:
    """
    Install console and rotating-file handlers on the root logger.

    Call once from an entry point. Handlers installed by an earlier call are
    replaced, not duplicated.

    Args:
        level: Overrides logging.level from the process settings
    """
    settings = get_global_config()
    level_name = (level or settings.get('logging.level', 'INFO')).upper()
    if not isinstance(logging.getLevelName(level_name), int):
        raise ConfigurationError(f"Unknown log level: {level_name}")

    formatter = logging.Formatter(
        settings.get('logging.format', LOG_FORMAT),
        datefmt=settings.get('logging.date_format', DATE_FORMAT)
    )
    handlers: List[logging.Handler] = []
    if settings.get_bool('logging.log_to_console', True):
        handlers.append(logging.StreamHandler())
    if settings.get_bool('logging.log_to_file', True):
        log_dir = settings.get_path('log_dir', 'logs/')
        log_dir.mkdir(parents=True, exist_ok=True)
        handlers.append(RotatingFileHandler(
            log_dir / 'phow-bench.log',
            maxBytes=settings.get_int('logging.max_log_size_mb', 100) * 1024 * 1024,
            backupCount=settings.get_int('logging.backup_count', 3),
            encoding='utf-8'
        ))

    root = logging.getLogger()
    for old in list(root.handlers):
        root.removeHandler(old)
        old.close()
    for handler in handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)
    root.setLevel(level_name)

    logger.debug(f"Logging ready: level={level_name}, handlers={[type(h).__name__ for h in handlers]}")


def load_yaml(path: Union[str, Path]) -> Dict[str, Any]:
    """
    Read a YAML mapping. A relative name that does not exist from the
    working directory is looked up in configs/.
    """
    path = Path(path)
    if not path.is_absolute() and not path.exists():
        path = CONFIG_DIR / path
    if not path.exists():
        raise ConfigurationError(f"Config file not found: {path}")
    try:
        with open(path, 'r') as f:
            loaded = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e
    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise ConfigurationError(f"{path} must contain a mapping at the top level")
    return loaded


def merge_configs(*configs: Union[Dict, Path, str]) -> Dict[str, Any]:
    """
    Layer configurations left to right; later values win, nested sections
    merge key by key.

    Args:
        *configs: Dicts, or paths/names of YAML files

    Example:
        >>> merge_configs('run.default.yaml', {'vocabulary': {'k': 100}})['vocabulary']['k']
        100
    """
    merged: Dict[str, Any] = {}
    for layer in configs:
        if isinstance(layer, (Path, str)):
            layer = load_yaml(layer)
        elif not isinstance(layer, dict):
            raise TypeError(f"Config layers must be dicts or paths, got {type(layer).__name__}")
        _deep_merge_dicts(merged, copy.deepcopy(layer))
    return merged


def _deep_merge_dicts(base: Dict, updates: Dict) -> None:
    for key, value in updates.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _deep_merge_dicts(base[key], value)
        else:
            base[key] = value


def deep_merge(base: Dict[str, Any], updates: Dict[str, Any]) -> Dict[str, Any]:
    """
    Return a merged copy; neither argument is modified.

    Example:
        >>> deep_merge({'a': 1, 'n': {'b': 2}}, {'n': {'c': 3}})
        {'a': 1, 'n': {'b': 2, 'c': 3}}
    """
    result = copy.deepcopy(base)
    _deep_merge_dicts(result, copy.deepcopy(updates))
    return result


@dataclass(frozen=True)
class PipelineConfig:
    """Settings that define the feature pipeline."""
    extractor: Dict[str, Any] = field(default_factory=lambda: {'extractor': 'dense_sift'})
    pyramid_levels: List[Tuple[int, int]] = field(default_factory=lambda: [(2, 2), (4, 4)])
    normalization: str = 'l2'
    kernel_map: Dict[str, Any] = field(default_factory=lambda: {'kernel': 'chi2', 'sample_steps': 2})

    @classmethod
    def from_dict(cls, run_config: Dict[str, Any]) -> 'PipelineConfig':
        """Build from the 'extractor', 'aggregation' and 'kernel_map' sections of a run config."""
        defaults = cls()
        aggregation = run_config.get('aggregation', {}) or {}
        levels = aggregation.get('pyramid_levels', defaults.pyramid_levels)
        try:
            levels = [(int(rows), int(cols)) for rows, cols in levels]
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"pyramid_levels must be a list of [rows, cols] pairs, got {levels}") from e
        return cls(
            extractor=dict(run_config.get('extractor') or defaults.extractor),
            pyramid_levels=levels,
            normalization=aggregation.get('normalization', defaults.normalization),
            kernel_map=dict(run_config.get('kernel_map') or defaults.kernel_map),
        )


__all__ = [
    'GlobalConfig',
    'PipelineConfig',
    'get_global_config',
    'setup_logging',
    'load_yaml',
    'merge_configs',
    'deep_merge'
]
