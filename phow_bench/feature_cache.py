"""
Persistent feature cache: input identity -> final feature vector.

Entries live in a SQLite database under the configured store location, one
row per (namespace, key) holding the vector as .npy bytes and its length.
Every write is a single transaction, so a crash never leaves a half-written
entry visible. The namespace isolates pipeline configurations from each
other; the cache never invalidates entries on its own.
"""

import hashlib
import io
import json
import logging
import sqlite3
import threading
import zlib
from collections import Counter
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Union

import numpy as np

from phow_bench.errors import CacheCorruptionError, ConfigurationError

logger = logging.getLogger(__name__)

DB_FILENAME = 'feature_cache.db'

# Fixed pool of per-key locks, picked by key hash
KEY_LOCK_STRIPES = 64


def namespace_for(feature_config: Dict[str, Any], prefix: str = 'phow') -> str:
    """
    Derive a namespace key from every parameter that affects feature values.

    Args:
        feature_config: JSON-serialisable description of the pipeline
        prefix: Human-readable prefix kept in front of the hash

    Returns:
        Namespace string such as 'phow_3f2a9c0d1b7e4a55'
    """
    config_str = json.dumps(feature_config, sort_keys=True, default=str)
    digest = hashlib.sha256(config_str.encode()).hexdigest()[:16]
    return f"{prefix}_{digest}"


@dataclass(frozen=True)
class CacheConfig:
    """Where the cache lives and which key space it uses."""
    store_location: Path
    namespace_key: str
    recompute_on_corruption: bool = True

    def __post_init__(self):
        if not self.namespace_key:
            raise ConfigurationError("namespace_key cannot be empty")
        object.__setattr__(self, 'store_location', Path(self.store_location))

    @classmethod
    def from_dict(cls, cache_config: Dict[str, Any]) -> 'CacheConfig':
        return cls(
            store_location=Path(cache_config['store_location']),
            namespace_key=cache_config['namespace_key'],
            recompute_on_corruption=bool(cache_config.get('recompute_on_corruption', True)),
        )


class FeatureCache:
    """Durable get-or-compute store for feature vectors."""

    def __init__(self, config: CacheConfig, vector_length: Optional[int] = None):
        """
        Args:
            config: Store location and namespace
            vector_length: Expected length of every vector; checked on read and write
        """
        self.config = config
        self.vector_length = vector_length
        self.db_path = config.store_location / DB_FILENAME

        self._local = threading.local()
        self._init_lock = threading.Lock()
        self._initialized = False

        self._key_locks = [threading.Lock() for _ in range(KEY_LOCK_STRIPES)]

        self._stats = Counter()
        self._stats_lock = threading.Lock()

    @property
    def namespace(self) -> str:
        return self.config.namespace_key

    # -- storage ------------------------------------------------------------

    def _init_store(self) -> None:
        """Create the directory and table on first use."""
        with self._init_lock:
            if self._initialized:
                return
            self.config.store_location.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(str(self.db_path), timeout=30.0)
            try:
                conn.execute("PRAGMA journal_mode=WAL")
                conn.execute("""
                    CREATE TABLE IF NOT EXISTS feature_cache (
                        namespace TEXT NOT NULL,
                        cache_key TEXT NOT NULL,
                        vector_length INTEGER NOT NULL,
                        vector BLOB NOT NULL,
                        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                        PRIMARY KEY (namespace, cache_key)
                    )
                """)
                conn.commit()
            finally:
                conn.close()
            self._initialized = True
            logger.info(f"Feature cache ready at {self.db_path} (namespace={self.namespace})")

    def _get_connection(self) -> sqlite3.Connection:
        """Get thread-local database connection."""
        if not self._initialized:
            self._init_store()
        if getattr(self._local, 'conn', None) is None:
            self._local.conn = sqlite3.connect(str(self.db_path), timeout=30.0)
        return self._local.conn

    def close(self) -> None:
        """Close the calling thread's connection."""
        conn = getattr(self._local, 'conn', None)
        if conn is not None:
            conn.close()
            self._local.conn = None

    # -- serialisation ------------------------------------------------------

    @staticmethod
    def _encode(vector: np.ndarray) -> bytes:
        buffer = io.BytesIO()
        np.save(buffer, vector, allow_pickle=False)
        return buffer.getvalue()

    def _decode(self, key: str, stored_length: int, blob: bytes) -> np.ndarray:
        try:
            vector = np.load(io.BytesIO(blob), allow_pickle=False)
        except (ValueError, OSError, EOFError) as e:
            raise CacheCorruptionError(key, f"cannot deserialize vector ({e})") from e

        if vector.ndim != 1 or vector.dtype != np.float64:
            raise CacheCorruptionError(key, f"expected 1D float64 vector, got {vector.dtype} {vector.shape}")
        if vector.size != stored_length:
            raise CacheCorruptionError(key, f"stored length {stored_length} but vector has {vector.size} values")
        if self.vector_length is not None and vector.size != self.vector_length:
            raise CacheCorruptionError(key, f"expected length {self.vector_length}, found {vector.size}")
        return vector

    def _validate(self, vector: Any) -> np.ndarray:
        vector = np.asarray(vector, dtype=np.float64)
        if vector.ndim != 1:
            raise ConfigurationError(f"Cached features must be 1D, got shape {vector.shape}")
        if self.vector_length is not None and vector.size != self.vector_length:
            raise ConfigurationError(
                f"Feature vector has length {vector.size}, cache expects {self.vector_length}"
            )
        return vector

    # -- public API ---------------------------------------------------------

    def get(self, key: str) -> Optional[np.ndarray]:
        """
        Read a persisted vector.

        Returns:
            The vector, or None when the key is absent

        Raises:
            CacheCorruptionError: If the entry cannot be decoded to the expected length
        """
        row = self._get_connection().execute(
            "SELECT vector_length, vector FROM feature_cache WHERE namespace = ? AND cache_key = ?",
            (self.namespace, key)
        ).fetchone()
        if row is None:
            return None
        return self._decode(key, int(row[0]), bytes(row[1]))

    def put(self, key: str, vector: np.ndarray) -> np.ndarray:
        """Persist a vector under key, superseding any previous entry."""
        vector = self._validate(vector)
        conn = self._get_connection()
        with conn:
            conn.execute(
                "INSERT OR REPLACE INTO feature_cache (namespace, cache_key, vector_length, vector) "
                "VALUES (?, ?, ?, ?)",
                (self.namespace, key, int(vector.size), sqlite3.Binary(self._encode(vector)))
            )
        self._count('writes')
        return vector

    def contains(self, key: str) -> bool:
        row = self._get_connection().execute(
            "SELECT 1 FROM feature_cache WHERE namespace = ? AND cache_key = ?",
            (self.namespace, key)
        ).fetchone()
        return row is not None

    def discard(self, key: str) -> None:
        conn = self._get_connection()
        with conn:
            conn.execute(
                "DELETE FROM feature_cache WHERE namespace = ? AND cache_key = ?",
                (self.namespace, key)
            )

    def get_or_compute(self, key: str, compute: Callable[[], np.ndarray]) -> np.ndarray:
        """
        Return the cached vector for key, computing and persisting it on a miss.

        compute runs at most once per key on this instance, even when several
        threads ask for the same missing key.

        Raises:
            CacheCorruptionError: If the entry is corrupt and
                recompute_on_corruption is off (the entry is discarded first)
            ConfigurationError: If compute returns a vector of the wrong length
        """
        with self._lock_for(key):
            try:
                cached = self.get(key)
            except CacheCorruptionError as e:
                self._count('corrupt')
                logger.warning(f"{e} (namespace={self.namespace})")
                if not self.config.recompute_on_corruption:
                    self.discard(key)
                    raise
                cached = None

            if cached is not None:
                self._count('hits')
                return cached

            self._count('misses')
            vector = self._validate(compute())
            return self.put(key, vector)

    def _lock_for(self, key: str) -> threading.Lock:
        return self._key_locks[zlib.crc32(key.encode('utf-8')) % KEY_LOCK_STRIPES]

    def _count(self, event: str) -> None:
        with self._stats_lock:
            self._stats[event] += 1

    @property
    def stats(self) -> Dict[str, int]:
        """Counts of hits, misses, writes and corrupt reads on this instance."""
        with self._stats_lock:
            return {name: self._stats.get(name, 0) for name in ('hits', 'misses', 'writes', 'corrupt')}

    def __len__(self) -> int:
        row = self._get_connection().execute(
            "SELECT COUNT(*) FROM feature_cache WHERE namespace = ?",
            (self.namespace,)
        ).fetchone()
        return int(row[0])

    def clear(self, all_namespaces: bool = False) -> int:
        """
        Delete cached entries.

        Args:
            all_namespaces: If True, clear every namespace in the store,
                otherwise only this cache's namespace

        Returns:
            Number of rows removed
        """
        conn = self._get_connection()
        with conn:
            if all_namespaces:
                cursor = conn.execute("DELETE FROM feature_cache")
            else:
                cursor = conn.execute("DELETE FROM feature_cache WHERE namespace = ?", (self.namespace,))
        removed = cursor.rowcount
        scope = 'all namespaces' if all_namespaces else f"namespace '{self.namespace}'"
        logger.info(f"Cleared {removed} cache entries from {scope}")
        return removed

    def __str__(self) -> str:
        return f"FeatureCache({self.db_path}, namespace={self.namespace})"


def open_feature_cache(
    store_location: Union[str, Path],
    feature_config: Dict[str, Any],
    vector_length: Optional[int] = None,
    recompute_on_corruption: bool = True
) -> FeatureCache:
    """Build a cache whose namespace is derived from the feature configuration."""
    config = CacheConfig(
        store_location=Path(store_location),
        namespace_key=namespace_for(feature_config),
        recompute_on_corruption=recompute_on_corruption,
    )
    return FeatureCache(config, vector_length=vector_length)
