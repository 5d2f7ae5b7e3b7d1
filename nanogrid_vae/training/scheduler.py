"""
Learning Rate Schedules

Epoch-indexed learning-rate multipliers. The parameter updater applies
    lr = params.learn_rate * schedule.multiplier(epoch_index)
to every sub-network optimizer before each step, so the base learning rate
stays in TrainingParams (and in checkpoints) and schedules stay stateless.

Supports warmup and various annealing strategies.
"""

import logging
import math
from abc import ABC, abstractmethod
from typing import Any

from nanogrid_vae.core.registry import ComponentRegistry

logger = logging.getLogger(__name__)


class LearningRateSchedule(ABC):
    """Maps a 0-based epoch index to a multiplier of the base learning rate."""

    def __init__(self, warmup_epochs: int = 0, min_lr_ratio: float = 0.0, total_epochs: int = 1):
        if warmup_epochs < 0:
            raise ValueError(f"warmup_epochs must be >= 0, got {warmup_epochs}")
        if not 0.0 <= min_lr_ratio <= 1.0:
            raise ValueError(f"min_lr_ratio must be in [0, 1], got {min_lr_ratio}")
        self.warmup_epochs = warmup_epochs
        self.min_lr_ratio = min_lr_ratio
        self.total_epochs = total_epochs

    def multiplier(self, epoch: int) -> float:
        """Compute learning rate multiplier for given epoch."""
        if epoch < self.warmup_epochs:
            # Linear warmup from 0 to 1
            return (epoch + 1) / self.warmup_epochs
        return self._after_warmup(epoch)

    def _progress(self, epoch: int) -> float:
        progress = (epoch - self.warmup_epochs) / max(1, self.total_epochs - self.warmup_epochs)
        return min(progress, 1.0)

    @abstractmethod
    def _after_warmup(self, epoch: int) -> float:
        pass

    def describe(self) -> str:
        return (
            f"{type(self).__name__}(warmup={self.warmup_epochs} epochs, "
            f"min_lr_ratio={self.min_lr_ratio}, total={self.total_epochs} epochs)"
        )


# Registry for schedule types
schedule_registry = ComponentRegistry[LearningRateSchedule]("schedule")


@schedule_registry.register("cosine")
class CosineSchedule(LearningRateSchedule):
    """
    Cosine annealing with linear warmup.

    During warmup: LR linearly increases from 0 to initial LR
    After warmup: LR follows cosine decay to min_lr_ratio * initial_lr
    """

    def _after_warmup(self, epoch: int) -> float:
        cosine_decay = 0.5 * (1 + math.cos(math.pi * self._progress(epoch)))
        return self.min_lr_ratio + (1 - self.min_lr_ratio) * cosine_decay


@schedule_registry.register("linear")
class LinearSchedule(LearningRateSchedule):
    """
    Linear decay with linear warmup.

    After warmup: LR linearly decays to min_lr_ratio * initial_lr
    """

    def _after_warmup(self, epoch: int) -> float:
        return self.min_lr_ratio + (1 - self.min_lr_ratio) * (1 - self._progress(epoch))


@schedule_registry.register("constant")
class ConstantSchedule(LearningRateSchedule):
    """Constant learning rate with optional warmup. min_lr_ratio is ignored."""

    def _after_warmup(self, epoch: int) -> float:
        return 1.0


def create_schedule(config: dict[str, Any], total_epochs: int) -> LearningRateSchedule:
    """
    Create a learning rate schedule from config.

    Args:
        config: Scheduler configuration containing:
            - type: Schedule type ("cosine", "linear", "constant")
            - warmup_epochs: Number of warmup epochs (default 0)
            - min_lr_ratio: Minimum LR as ratio of initial LR (default 0)
        total_epochs: Total number of training epochs

    Returns:
        Configured LearningRateSchedule
    """
    schedule = schedule_registry.create(
        config["type"],
        warmup_epochs=config.get("warmup_epochs", 0),
        min_lr_ratio=config.get("min_lr_ratio", 0.0),
        total_epochs=total_epochs,
    )
    logger.info(f"Learning rate schedule: {schedule.describe()}")
    return schedule
