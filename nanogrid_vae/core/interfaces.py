"""
Abstract Interfaces for External Collaborators

The training core only depends on these contracts:
- Batch / BatchSource: the data pipeline hands over pre-batched tensors
- MetricsDashboard: the progress sink the monitor forwards metrics to

Sub-networks need no interface of their own: any torch.nn.Module mapping a
[C, T, B] tensor to a [C', T, B] tensor can be plugged into ErrorVectorVAE.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

import torch
from torch import Tensor

# Axis layout of every sequence tensor: (channel/feature, time, batch-element)
DIM_C = 0
DIM_T = 1
DIM_B = 2


@dataclass
class Batch:
    """
    One mini-batch of error-vector sequences.

    Attributes:
        error_vectors: Encoder input (C, T, B)
        labels: Action labels, either class indices (T, B) or
                class probabilities (A, T, B)
        targets: Reconstruction target (C, T, B); defaults to error_vectors
    """

    error_vectors: Tensor
    labels: Tensor
    targets: Tensor | None = None

    @property
    def reconstruction_targets(self) -> Tensor:
        return self.error_vectors if self.targets is None else self.targets

    @property
    def batch_size(self) -> int:
        return self.error_vectors.shape[DIM_B]

    def to(self, device: str | torch.device) -> "Batch":
        """Return a copy of this batch moved to device."""
        return Batch(
            error_vectors=self.error_vectors.to(device),
            labels=self.labels.to(device),
            targets=None if self.targets is None else self.targets.to(device),
        )


class BatchSource(ABC):
    """
    Interface for the training and validation batch iterators.

    Implementations are pre-sharded and pre-batched. shuffle() also rewinds
    the source to the start of a fresh pass over its data.
    """

    @abstractmethod
    def has_next(self) -> bool:
        """Return True while at least one more full batch is available."""
        pass

    @abstractmethod
    def next(self) -> Batch:
        """
        Return the next batch.

        Raises:
            StopIteration: If the source is exhausted
        """
        pass

    @abstractmethod
    def shuffle(self) -> None:
        """Reorder the underlying data and restart iteration."""
        pass


class MetricsDashboard(ABC):
    """
    Capability interface for live progress display.

    The training loop only talks to this interface, so a headless run and a
    Weights & Biases run differ only in which implementation is passed in.
    """

    @abstractmethod
    def record_metrics(self, iteration: int, **metrics: float) -> None:
        """Record per-iteration scalar metrics (plotted against iteration)."""
        pass

    @abstractmethod
    def update_info(self, **info: Any) -> None:
        """Update summary info fields (epoch, latest total loss, ...)."""
        pass

    @abstractmethod
    def stop_requested(self) -> bool:
        """Polled at epoch and iteration boundaries."""
        pass

    def close(self) -> None:
        """Release dashboard resources at the end of training."""
        return None
