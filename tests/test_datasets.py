import numpy as np
import pytest
import torch

from nanogrid_vae.core.config import DataConfig, ModelConfig, TrainingConfig
from nanogrid_vae.data import (
    DataLoaderBatchSource,
    ErrorVectorDataset,
    SyntheticErrorVectorDataset,
    collate_ctb,
    create_batch_sources,
    discover_sequence_files,
    load_sequence_files,
    partition_files,
)


def _write_sequences(path, num_sequences=4, num_features=3, length=6, num_actions=2, seed=0):
    rng = np.random.default_rng(seed)
    np.savez(
        path,
        error_vectors=rng.standard_normal((num_sequences, num_features, length)).astype(np.float32),
        labels=rng.integers(0, num_actions, (num_sequences, length)),
    )


def test_partition_files_is_an_80_20_contiguous_split():
    training, validation = partition_files(list(range(10)))

    assert training == list(range(8))
    assert validation == [8, 9]


def test_partition_files_handles_uneven_counts():
    training, validation = partition_files(list(range(7)))

    assert len(training) + len(validation) == 7
    assert training + validation == list(range(7))
    assert 1 <= len(validation) <= 2


def test_partition_files_needs_one_item_per_partition():
    with pytest.raises(ValueError, match="at least 5"):
        partition_files(["a", "b", "c"])


def test_discover_sequence_files_is_recursive_and_sorted(tmp_path):
    (tmp_path / "b").mkdir()
    _write_sequences(tmp_path / "b" / "two.npz")
    _write_sequences(tmp_path / "one.npz")
    (tmp_path / "notes.txt").write_text("ignored")

    files = discover_sequence_files(tmp_path)

    assert [p.relative_to(tmp_path).as_posix() for p in files] == ["b/two.npz", "one.npz"]
    assert all(p.suffix == ".npz" for p in files)


def test_discover_sequence_files_fails_fast(tmp_path):
    with pytest.raises(FileNotFoundError):
        discover_sequence_files(tmp_path / "missing")
    with pytest.raises(FileNotFoundError, match="No files"):
        discover_sequence_files(tmp_path)


def test_load_sequence_files_concatenates(tmp_path):
    _write_sequences(tmp_path / "a.npz", num_sequences=2)
    _write_sequences(tmp_path / "b.npz", num_sequences=3, seed=1)

    error_vectors, labels = load_sequence_files([tmp_path / "a.npz", tmp_path / "b.npz"])

    assert error_vectors.shape == (5, 3, 6)
    assert error_vectors.dtype == np.float32
    assert labels.shape == (5, 6)
    assert labels.dtype == np.int64


def test_load_sequence_files_rejects_missing_arrays_and_bad_shapes(tmp_path):
    np.savez(tmp_path / "nolabels.npz", error_vectors=np.zeros((2, 3, 4)))
    np.savez(tmp_path / "badshape.npz", error_vectors=np.zeros((2, 3, 4)), labels=np.zeros((2, 5)))

    with pytest.raises(ValueError, match="missing arrays"):
        load_sequence_files([tmp_path / "nolabels.npz"])
    with pytest.raises(ValueError, match="expected error_vectors"):
        load_sequence_files([tmp_path / "badshape.npz"])


def test_collate_ctb_puts_batch_last():
    samples = [(torch.full((3, 5), float(i)), torch.full((5,), i)) for i in range(4)]

    batch = collate_ctb(samples)

    assert batch.error_vectors.shape == (3, 5, 4)
    assert batch.labels.shape == (5, 4)
    assert torch.equal(batch.error_vectors[:, :, 2], torch.full((3, 5), 2.0))
    assert batch.batch_size == 4


def test_batch_source_drops_partial_batches_and_rewinds_on_shuffle():
    dataset = SyntheticErrorVectorDataset(10, num_features=3, num_actions=2, sequence_length=5)
    source = DataLoaderBatchSource(dataset, batch_size=4, seed=0)

    batches = []
    while source.has_next():
        batches.append(source.next())

    assert len(batches) == 2
    assert all(b.error_vectors.shape == (3, 5, 4) for b in batches)
    with pytest.raises(StopIteration):
        source.next()

    source.shuffle()
    assert source.has_next()


def test_synthetic_dataset_is_deterministic_per_seed():
    first = SyntheticErrorVectorDataset(6, 3, 2, 5, seed=7)
    second = SyntheticErrorVectorDataset(6, 3, 2, 5, seed=7)
    other = SyntheticErrorVectorDataset(6, 3, 2, 5, seed=8)

    assert torch.equal(first.error_vectors, second.error_vectors)
    assert not torch.equal(first.error_vectors, other.error_vectors)
    assert first.labels.max() < 2


def test_create_batch_sources_from_files(tmp_path):
    for i in range(5):
        _write_sequences(tmp_path / f"part{i}.npz", num_sequences=4, seed=i)
    data_config = DataConfig(data_dir=str(tmp_path))
    training_config = TrainingConfig(batch_size=2, seed=0)
    model_config = ModelConfig(num_features=3, num_actions=2)

    training_source, validation_source = create_batch_sources(data_config, training_config, model_config)

    assert len(training_source) == 8
    assert len(validation_source) == 2


def test_create_batch_sources_checks_feature_count(tmp_path):
    for i in range(5):
        _write_sequences(tmp_path / f"part{i}.npz", num_features=4, seed=i)

    with pytest.raises(ValueError, match="features"):
        create_batch_sources(
            DataConfig(data_dir=str(tmp_path)),
            TrainingConfig(batch_size=2),
            ModelConfig(num_features=3, num_actions=2),
        )


def test_create_batch_sources_synthetic():
    data_config = DataConfig(synthetic_num_sequences=50, synthetic_sequence_length=8)
    training_source, validation_source = create_batch_sources(
        data_config,
        TrainingConfig(batch_size=5, seed=1),
        ModelConfig(num_features=3, num_actions=2),
        synthetic=True,
    )

    assert len(training_source) == 8
    assert len(validation_source) == 2
    batch = training_source.next()
    assert batch.error_vectors.shape == (3, 8, 5)
    assert batch.labels.shape == (8, 5)


def test_error_vector_dataset_rejects_row_mismatch():
    with pytest.raises(ValueError, match="Row count mismatch"):
        ErrorVectorDataset(np.zeros((3, 2, 4)), np.zeros((2, 4), dtype=np.int64))
