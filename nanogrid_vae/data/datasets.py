"""
Error-Vector Sequence Datasets

Sequence files are .npz archives holding:
    error_vectors   float array (N, C, T): N sequences of C features over T steps
    labels          int array (N, T): action class per timestep

Files are discovered recursively under the data directory, split into
contiguous partitions (4 training / 1 validation by default), and served
as [C, T, B] batches through DataLoaderBatchSource, which implements the
BatchSource interface the training loop consumes.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Sequence, TypeVar

import numpy as np
import torch
from torch.utils.data import DataLoader, Dataset, Subset

from nanogrid_vae.core.config import DataConfig, ModelConfig, TrainingConfig
from nanogrid_vae.core.interfaces import Batch, BatchSource

logger = logging.getLogger(__name__)

ERROR_VECTORS_KEY = "error_vectors"
LABELS_KEY = "labels"

T = TypeVar("T")


# =============================================================================
# File discovery and sharding
# =============================================================================


def discover_sequence_files(data_dir: str | Path, pattern: str = "*.npz") -> list[Path]:
    """
    Find sequence files recursively, in sorted order.

    Raises:
        FileNotFoundError: If data_dir does not exist or holds no matching files
    """
    data_dir = Path(data_dir)
    if not data_dir.is_dir():
        raise FileNotFoundError(f"Data directory not found: {data_dir}")

    files = sorted(p for p in data_dir.rglob(pattern) if p.is_file())
    if not files:
        raise FileNotFoundError(f"No files matching '{pattern}' under {data_dir}")

    logger.info(f"Found {len(files)} sequence files under {data_dir}")
    return files


def partition_files(
    items: Sequence[T],
    num_partitions: int = 5,
    validation_partitions: int = 1,
) -> tuple[list[T], list[T]]:
    """
    Split items into contiguous partitions; the last validation_partitions
    partitions form the validation split.

    With the defaults this is an 80/20 split. Partition sizes differ by at
    most one item.

    Returns:
        Tuple of (training items, validation items)

    Raises:
        ValueError: If there are fewer items than partitions
    """
    if len(items) < num_partitions:
        raise ValueError(
            f"Need at least {num_partitions} items to make {num_partitions} partitions, "
            f"got {len(items)}"
        )

    bounds = np.linspace(0, len(items), num_partitions + 1).round().astype(int)
    partitions = [list(items[bounds[i]:bounds[i + 1]]) for i in range(num_partitions)]

    split = num_partitions - validation_partitions
    training = [item for part in partitions[:split] for item in part]
    validation = [item for part in partitions[split:] for item in part]
    return training, validation


def load_sequence_files(paths: Sequence[str | Path]) -> tuple[np.ndarray, np.ndarray]:
    """
    Load and concatenate sequence files.

    Returns:
        Tuple of (error_vectors (N, C, T) float32, labels (N, T) int64)

    Raises:
        ValueError: If a file lacks a required array or shapes disagree
    """
    error_vectors = []
    labels = []
    for path in paths:
        with np.load(path) as archive:
            missing = [key for key in (ERROR_VECTORS_KEY, LABELS_KEY) if key not in archive]
            if missing:
                raise ValueError(f"{path} is missing arrays: {missing}")
            x = archive[ERROR_VECTORS_KEY]
            y = archive[LABELS_KEY]

        if x.ndim != 3 or y.ndim != 2 or x.shape[0] != y.shape[0] or x.shape[2] != y.shape[1]:
            raise ValueError(
                f"{path}: expected error_vectors (N, C, T) and labels (N, T), "
                f"got {x.shape} and {y.shape}"
            )
        if error_vectors and x.shape[1:] != error_vectors[0].shape[1:]:
            raise ValueError(
                f"{path}: sequence shape {x.shape[1:]} differs from "
                f"{error_vectors[0].shape[1:]} in {paths[0]}"
            )
        error_vectors.append(x.astype(np.float32))
        labels.append(y.astype(np.int64))

    if not error_vectors:
        raise ValueError("No sequence files to load")

    return np.concatenate(error_vectors), np.concatenate(labels)


# =============================================================================
# Datasets
# =============================================================================


class ErrorVectorDataset(Dataset):
    """
    In-memory dataset of error-vector sequences.

    Each item is (error_vectors (C, T), labels (T,)).
    """

    def __init__(self, error_vectors: np.ndarray, labels: np.ndarray):
        """
        Args:
            error_vectors: Array (N, C, T)
            labels: Integer array (N, T)
        """
        if error_vectors.shape[0] != labels.shape[0]:
            raise ValueError(
                f"Row count mismatch: {error_vectors.shape[0]} sequences, {labels.shape[0]} label rows"
            )
        self.error_vectors = torch.as_tensor(error_vectors, dtype=torch.float32)
        self.labels = torch.as_tensor(labels, dtype=torch.long)

    @classmethod
    def from_files(cls, paths: Sequence[str | Path]) -> ErrorVectorDataset:
        error_vectors, labels = load_sequence_files(paths)
        logger.info(
            f"Loaded {error_vectors.shape[0]} sequences from {len(paths)} files: "
            f"features={error_vectors.shape[1]}, length={error_vectors.shape[2]}"
        )
        return cls(error_vectors, labels)

    @property
    def num_features(self) -> int:
        return self.error_vectors.shape[1]

    @property
    def num_classes_seen(self) -> int:
        return int(self.labels.max().item()) + 1 if len(self) else 0

    def __len__(self) -> int:
        return self.error_vectors.shape[0]

    def __getitem__(self, idx: int) -> tuple[torch.Tensor, torch.Tensor]:
        return self.error_vectors[idx], self.labels[idx]


class SyntheticErrorVectorDataset(ErrorVectorDataset):
    """
    Learnable synthetic sequences for smoke runs and tests.

    Each action class has a fixed feature prototype; an error vector is the
    prototype of its timestep's label plus Gaussian noise.
    """

    def __init__(
        self,
        num_sequences: int,
        num_features: int,
        num_actions: int,
        sequence_length: int,
        noise_std: float = 0.1,
        seed: int | None = None,
    ):
        generator = torch.Generator()
        generator.manual_seed(0 if seed is None else seed)

        prototypes = torch.randn(num_actions, num_features, generator=generator)
        labels = torch.randint(
            0, num_actions, (num_sequences, sequence_length), generator=generator
        )
        # (N, T, C) -> (N, C, T)
        error_vectors = prototypes[labels].permute(0, 2, 1)
        error_vectors = error_vectors + noise_std * torch.randn(
            error_vectors.shape, generator=generator
        )

        super().__init__(error_vectors.numpy(), labels.numpy())


def collate_ctb(samples: list[tuple[torch.Tensor, torch.Tensor]]) -> Batch:
    """Stack (C, T) / (T,) samples into a Batch with (C, T, B) / (T, B) tensors."""
    error_vectors = torch.stack([x for x, _ in samples], dim=-1)
    labels = torch.stack([y for _, y in samples], dim=-1)
    return Batch(error_vectors=error_vectors, labels=labels)


# =============================================================================
# Batch source
# =============================================================================


class DataLoaderBatchSource(BatchSource):
    """
    BatchSource over a torch DataLoader.

    Partial mini-batches are dropped. shuffle() starts a new pass in a new
    random order; has_next() looks one batch ahead.
    """

    def __init__(
        self,
        dataset: Dataset,
        batch_size: int,
        shuffle: bool = True,
        num_workers: int = 0,
        seed: int | None = None,
    ):
        if len(dataset) < batch_size:
            logger.warning(
                f"Dataset has {len(dataset)} sequences, fewer than batch size {batch_size}; "
                "no full batch can be formed"
            )

        generator = None
        if seed is not None:
            generator = torch.Generator()
            generator.manual_seed(seed)

        self.loader = DataLoader(
            dataset,
            batch_size=batch_size,
            shuffle=shuffle,
            drop_last=True,
            num_workers=num_workers,
            collate_fn=collate_ctb,
            generator=generator,
        )
        self._iterator = None
        self._pending: Batch | None = None

    def __len__(self) -> int:
        return len(self.loader)

    def shuffle(self) -> None:
        self._iterator = iter(self.loader)
        self._pending = None

    def has_next(self) -> bool:
        if self._pending is not None:
            return True
        if self._iterator is None:
            self.shuffle()
        try:
            self._pending = next(self._iterator)
        except StopIteration:
            return False
        return True

    def next(self) -> Batch:
        if not self.has_next():
            raise StopIteration("Batch source is exhausted")
        batch, self._pending = self._pending, None
        return batch


def _check_dataset(dataset: ErrorVectorDataset, model_config: ModelConfig, name: str) -> None:
    if dataset.num_features != model_config.num_features:
        raise ValueError(
            f"{name} data has {dataset.num_features} features, "
            f"model expects {model_config.num_features}"
        )
    if dataset.num_classes_seen > model_config.num_actions:
        raise ValueError(
            f"{name} labels reach class {dataset.num_classes_seen - 1}, "
            f"model has {model_config.num_actions} actions"
        )


def create_batch_sources(
    data_config: DataConfig,
    training_config: TrainingConfig,
    model_config: ModelConfig,
    synthetic: bool = False,
) -> tuple[DataLoaderBatchSource, DataLoaderBatchSource]:
    """
    Build the training and validation batch sources.

    Args:
        data_config: Data location and sharding
        training_config: Batch size and seed
        model_config: Feature and action counts the data must match
        synthetic: Generate synthetic sequences instead of reading files

    Returns:
        Tuple of (training source, validation source)
    """
    if synthetic:
        dataset = SyntheticErrorVectorDataset(
            num_sequences=data_config.synthetic_num_sequences,
            num_features=model_config.num_features,
            num_actions=model_config.num_actions,
            sequence_length=data_config.synthetic_sequence_length,
            seed=training_config.seed,
        )
        train_indices, val_indices = partition_files(
            range(len(dataset)), data_config.num_partitions, data_config.validation_partitions
        )
        training_data = Subset(dataset, train_indices)
        validation_data = Subset(dataset, val_indices)
        logger.info(
            f"Synthetic data: {len(train_indices)} training / {len(val_indices)} validation "
            f"sequences of length {data_config.synthetic_sequence_length}"
        )
    else:
        if data_config.data_dir is None:
            raise ValueError("data.data_dir is not set (or pass --synthetic)")
        files = discover_sequence_files(data_config.data_dir, data_config.file_pattern)
        train_files, val_files = partition_files(
            files, data_config.num_partitions, data_config.validation_partitions
        )
        training_data = ErrorVectorDataset.from_files(train_files)
        validation_data = ErrorVectorDataset.from_files(val_files)
        _check_dataset(training_data, model_config, "Training")
        _check_dataset(validation_data, model_config, "Validation")

    training_source = DataLoaderBatchSource(
        training_data,
        batch_size=training_config.batch_size,
        num_workers=data_config.num_workers,
        seed=training_config.seed,
    )
    validation_source = DataLoaderBatchSource(
        validation_data,
        batch_size=training_config.batch_size,
        num_workers=data_config.num_workers,
        seed=None if training_config.seed is None else training_config.seed + 1,
    )
    logger.info(
        f"Batches per epoch: {len(training_source)} training, {len(validation_source)} validation "
        f"(batch size {training_config.batch_size})"
    )
    return training_source, validation_source
