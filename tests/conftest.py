"""Shared fixtures: a tiny model, synthetic batches and in-memory batch sources."""

import pytest
import torch

from nanogrid_vae.core.config import ModelConfig, TrainingConfig, TrainingParams
from nanogrid_vae.core.interfaces import Batch, BatchSource
from nanogrid_vae.model import create_model

NUM_FEATURES = 3
NUM_ACTIONS = 2
SEQUENCE_LENGTH = 5
BATCH_SIZE = 4


class ListBatchSource(BatchSource):
    """Serves a fixed list of batches in order; shuffle() rewinds."""

    def __init__(self, batches: list[Batch]):
        self.batches = list(batches)
        self.position = 0
        self.shuffle_count = 0

    def has_next(self) -> bool:
        return self.position < len(self.batches)

    def next(self) -> Batch:
        if not self.has_next():
            raise StopIteration("exhausted")
        batch = self.batches[self.position]
        self.position += 1
        return batch

    def shuffle(self) -> None:
        self.shuffle_count += 1
        self.position = 0


@pytest.fixture
def model_config() -> ModelConfig:
    return ModelConfig(
        num_features=NUM_FEATURES,
        num_actions=NUM_ACTIONS,
        num_filters=8,
        num_res_blocks=1,
        encoder_hidden_size=4,
        latent_dims=2,
    )


@pytest.fixture
def model(model_config):
    torch.manual_seed(0)
    return create_model(model_config)


@pytest.fixture
def params() -> TrainingParams:
    return TrainingParams(monte_carlo_reps=2)


@pytest.fixture
def make_batch():
    """Factory for reproducible (C, T, B) batches with (T, B) index labels."""

    def _make(seed: int = 0, batch_size: int = BATCH_SIZE) -> Batch:
        generator = torch.Generator().manual_seed(seed)
        error_vectors = torch.randn(NUM_FEATURES, SEQUENCE_LENGTH, batch_size, generator=generator)
        labels = torch.randint(0, NUM_ACTIONS, (SEQUENCE_LENGTH, batch_size), generator=generator)
        return Batch(error_vectors=error_vectors, labels=labels)

    return _make


@pytest.fixture
def make_batch_source(make_batch):
    """Factory for a ListBatchSource of num_batches distinct batches."""

    def _make(num_batches: int, seed_offset: int = 0) -> ListBatchSource:
        return ListBatchSource([make_batch(seed=seed_offset + i) for i in range(num_batches)])

    return _make


@pytest.fixture
def output_dir(tmp_path):
    return tmp_path / "output"


@pytest.fixture
def training_config(output_dir) -> TrainingConfig:
    return TrainingConfig(
        epoch_count=2,
        batch_size=BATCH_SIZE,
        validation_iteration_count=3,
        checkpoint_iteration_count=1000,
        console_update_iterations=5,
        device="cpu",
        output_dir=str(output_dir),
    )
