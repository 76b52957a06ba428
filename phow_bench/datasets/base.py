"""
Grouped image datasets: images organised as root/<class>/<image>.

Records are keyed by their dataset-relative POSIX path, which is stable
across machines and doubles as the feature-cache key.
"""

import logging
import random
from collections import OrderedDict
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Sequence, Union

from phow_bench.classification.classifier import UNKNOWN
from phow_bench.errors import ConfigurationError

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = ('.jpg', '.jpeg', '.png', '.bmp', '.tif', '.tiff', '.pgm', '.ppm', '.webp')


@dataclass(frozen=True)
class ImageRecord:
    """One image in a grouped dataset."""
    key: str
    path: Path
    label: str

    def read_bytes(self) -> bytes:
        return self.path.read_bytes()


class GroupedImageDataset:
    """Images grouped by class label, groups kept in sorted label order."""

    def __init__(self, groups: Dict[str, List[ImageRecord]], root: Optional[Path] = None):
        self.root = root
        self._groups: 'OrderedDict[str, List[ImageRecord]]' = OrderedDict(
            (label, list(groups[label])) for label in sorted(groups)
        )

    @classmethod
    def from_directory(
        cls,
        root: Union[str, Path],
        extensions: Sequence[str] = IMAGE_EXTENSIONS
    ) -> 'GroupedImageDataset':
        """
        Scan root/<class>/<image> and build a dataset.

        Raises:
            ConfigurationError: If root is missing or holds no images
        """
        root = Path(root)
        if not root.is_dir():
            raise ConfigurationError(f"Dataset directory not found: {root}")

        extensions = tuple(ext.lower() for ext in extensions)
        groups: Dict[str, List[ImageRecord]] = {}
        for class_dir in sorted(p for p in root.iterdir() if p.is_dir()):
            records = [
                ImageRecord(key=path.relative_to(root).as_posix(), path=path, label=class_dir.name)
                for path in sorted(class_dir.iterdir())
                if path.is_file() and path.suffix.lower() in extensions
            ]
            if records:
                groups[class_dir.name] = records

        if not groups:
            raise ConfigurationError(f"No images found under {root}")
        if UNKNOWN in groups:
            raise ConfigurationError(
                f"Class folder '{UNKNOWN}' under {root} clashes with the abstention bucket; rename it"
            )

        dataset = cls(groups, root=root)
        logger.info(f"Loaded dataset from {root}: {len(dataset.labels)} classes, {len(dataset)} images")
        return dataset

    @property
    def labels(self) -> List[str]:
        return list(self._groups)

    def group(self, label: str) -> List[ImageRecord]:
        return list(self._groups[label])

    def records(self) -> List[ImageRecord]:
        return [record for group in self._groups.values() for record in group]

    def __len__(self) -> int:
        return sum(len(group) for group in self._groups.values())

    def __iter__(self) -> Iterator[ImageRecord]:
        return iter(self.records())

    def __str__(self) -> str:
        return f"GroupedImageDataset({len(self.labels)} classes, {len(self)} images)"


@dataclass(frozen=True)
class DatasetSplit:
    """Disjoint train / validation / test record lists."""
    train: List[ImageRecord]
    validation: List[ImageRecord]
    test: List[ImageRecord]


def sample_groups(dataset: GroupedImageDataset, n_groups: int) -> GroupedImageDataset:
    """Keep the first n_groups classes (in label order)."""
    if n_groups <= 0:
        raise ConfigurationError(f"n_groups must be positive, got {n_groups}")
    kept = dataset.labels[:n_groups]
    if len(kept) < n_groups:
        logger.warning(f"Requested {n_groups} groups but dataset only has {len(kept)}")
    return GroupedImageDataset({label: dataset.group(label) for label in kept}, root=dataset.root)


def grouped_random_split(
    dataset: GroupedImageDataset,
    n_train: int,
    n_validation: int,
    n_test: int,
    seed: int = 42
) -> DatasetSplit:
    """
    Draw n_train / n_validation / n_test images per class without overlap.

    Raises:
        ConfigurationError: If any class has fewer images than requested
    """
    needed = n_train + n_validation + n_test
    rng = random.Random(seed)
    train, validation, test = [], [], []

    for label in dataset.labels:
        group = dataset.group(label)
        if len(group) < needed:
            raise ConfigurationError(
                f"Class '{label}' has {len(group)} images, split needs {needed} "
                f"({n_train} train + {n_validation} validation + {n_test} test)"
            )
        shuffled = rng.sample(group, len(group))
        train.extend(shuffled[:n_train])
        validation.extend(shuffled[n_train:n_train + n_validation])
        test.extend(shuffled[n_train + n_validation:needed])

    logger.info(f"Split {len(dataset.labels)} classes: {len(train)} train, "
                f"{len(validation)} validation, {len(test)} test")
    return DatasetSplit(train=train, validation=validation, test=test)


def uniform_sample(records: Sequence[ImageRecord], n: int, seed: int = 42) -> List[ImageRecord]:
    """
    Draw n records uniformly at random, without replacement.

    Returns every record (shuffled) when n exceeds the population.
    """
    records = list(records)
    rng = random.Random(seed)
    return rng.sample(records, min(n, len(records)))
