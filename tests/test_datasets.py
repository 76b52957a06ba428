"""Tests for grouped datasets, sampling and splitting."""

import pytest

from phow_bench.datasets import GroupedImageDataset, grouped_random_split, sample_groups, uniform_sample
from phow_bench.errors import ConfigurationError


@pytest.fixture
def dataset_root(tmp_path):
    """Three classes with 6, 5 and 4 placeholder images plus some noise files."""
    root = tmp_path / 'images'
    for label, count in [('bonsai', 6), ('airplanes', 5), ('cougar', 4)]:
        class_dir = root / label
        class_dir.mkdir(parents=True)
        for i in range(count):
            (class_dir / f"image_{i:04d}.jpg").write_bytes(b'placeholder')
        (class_dir / 'notes.txt').write_text('not an image')
    (root / 'README.md').write_text('top-level file is ignored')
    (root / 'empty_class').mkdir()
    return root


class TestGroupedImageDataset:

    def test_from_directory(self, dataset_root):
        dataset = GroupedImageDataset.from_directory(dataset_root)

        assert dataset.labels == ['airplanes', 'bonsai', 'cougar']
        assert len(dataset) == 15
        assert len(dataset.group('bonsai')) == 6

    def test_keys_are_relative_posix_paths(self, dataset_root):
        dataset = GroupedImageDataset.from_directory(dataset_root)
        record = dataset.group('cougar')[0]
        assert record.key == 'cougar/image_0000.jpg'
        assert record.label == 'cougar'
        assert record.read_bytes() == b'placeholder'

    def test_missing_directory(self, tmp_path):
        with pytest.raises(ConfigurationError, match="not found"):
            GroupedImageDataset.from_directory(tmp_path / 'nope')

    def test_no_images(self, tmp_path):
        (tmp_path / 'only_text').mkdir()
        (tmp_path / 'only_text' / 'a.txt').write_text('x')
        with pytest.raises(ConfigurationError, match="No images"):
            GroupedImageDataset.from_directory(tmp_path)

    def test_class_folder_named_unknown(self, dataset_root):
        (dataset_root / 'unknown').mkdir()
        (dataset_root / 'unknown' / 'a.jpg').write_bytes(b'placeholder')
        with pytest.raises(ConfigurationError, match="abstention"):
            GroupedImageDataset.from_directory(dataset_root)


class TestSampling:

    def test_sample_groups_takes_first_classes(self, dataset_root):
        dataset = sample_groups(GroupedImageDataset.from_directory(dataset_root), 2)
        assert dataset.labels == ['airplanes', 'bonsai']
        assert len(dataset) == 11

    def test_sample_more_groups_than_exist(self, dataset_root, caplog):
        dataset = sample_groups(GroupedImageDataset.from_directory(dataset_root), 10)
        assert len(dataset.labels) == 3
        assert 'only has 3' in caplog.text

    def test_uniform_sample(self, dataset_root):
        records = GroupedImageDataset.from_directory(dataset_root).records()
        first = uniform_sample(records, 5, seed=1)
        second = uniform_sample(records, 5, seed=1)

        assert [r.key for r in first] == [r.key for r in second]
        assert len({r.key for r in first}) == 5
        assert len(uniform_sample(records, 100)) == 15


class TestSplit:

    def test_sizes_and_disjointness(self, dataset_root):
        dataset = GroupedImageDataset.from_directory(dataset_root)
        split = grouped_random_split(dataset, n_train=2, n_validation=1, n_test=1, seed=0)

        assert len(split.train) == 6
        assert len(split.validation) == 3
        assert len(split.test) == 3
        keys = [r.key for r in split.train + split.validation + split.test]
        assert len(keys) == len(set(keys))
        for label in dataset.labels:
            assert sum(r.label == label for r in split.train) == 2

    def test_deterministic_for_seed(self, dataset_root):
        dataset = GroupedImageDataset.from_directory(dataset_root)
        first = grouped_random_split(dataset, 2, 0, 2, seed=5)
        second = grouped_random_split(dataset, 2, 0, 2, seed=5)
        assert [r.key for r in first.test] == [r.key for r in second.test]

    def test_class_too_small(self, dataset_root):
        dataset = GroupedImageDataset.from_directory(dataset_root)
        with pytest.raises(ConfigurationError, match="'cougar' has 4 images"):
            grouped_random_split(dataset, n_train=3, n_validation=0, n_test=2)
