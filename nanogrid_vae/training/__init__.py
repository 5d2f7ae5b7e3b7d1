# Training core: evaluation, adaptive KL weighting, updates, loop, monitoring

from .checkpoint import CheckpointWriter, load_checkpoint
from .evaluator import Gradients, LossEvaluator, LossSet
from .kl_weighting import AdaptiveKLWeightController
from .monitoring import (
    HeadlessDashboard,
    MonitorState,
    WandbDashboard,
    append_csv_record,
    create_dashboard,
    create_monitor,
    format_csv_record,
    record_validation,
    update_monitor,
)
from .optimizers import create_optimizer, optimizer_registry
from .scheduler import LearningRateSchedule, create_schedule, schedule_registry
from .trainer import Trainer, TrainingState, TrainingSummary
from .updater import ParameterUpdater

__all__ = [
    # Checkpoints
    "CheckpointWriter",
    "load_checkpoint",
    # Evaluation
    "Gradients",
    "LossEvaluator",
    "LossSet",
    "AdaptiveKLWeightController",
    # Updates
    "ParameterUpdater",
    "create_optimizer",
    "optimizer_registry",
    "LearningRateSchedule",
    "create_schedule",
    "schedule_registry",
    # Monitoring
    "HeadlessDashboard",
    "MonitorState",
    "WandbDashboard",
    "append_csv_record",
    "create_dashboard",
    "create_monitor",
    "format_csv_record",
    "record_validation",
    "update_monitor",
    # Loop
    "Trainer",
    "TrainingState",
    "TrainingSummary",
]
