"""
Progress Monitoring

MonitorState is an explicit value threaded through the training loop:
update_monitor() and record_validation() take a state and return the
updated state. Nothing is kept in module globals.

Every training iteration forwards its losses to the dashboard. Console and
CSV output is throttled to once every console_update_iterations iterations.
CSV records have no header and one line per emission:

    timestamp, epoch, iteration, total_loss, recon_loss, kl_loss

Validation passes append the same record format to validation.csv.
"""

import dataclasses
import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

from nanogrid_vae.core.config import TrainingParams
from nanogrid_vae.core.errors import ResourceWriteError
from nanogrid_vae.core.interfaces import MetricsDashboard
from .evaluator import LossSet

logger = logging.getLogger(__name__)

TRAINING_CSV_FILENAME = "training.csv"
VALIDATION_CSV_FILENAME = "validation.csv"

TIMESTAMP_FORMAT = "%d-%b-%Y %H:%M:%S"


# =============================================================================
# Dashboards
# =============================================================================


class HeadlessDashboard(MetricsDashboard):
    """
    Dashboard for runs without a UI. Keeps the latest metrics and info in
    memory and reports a stop request when the stop signal is set.
    """

    def __init__(self, stop_signal: threading.Event | None = None):
        self.stop_signal = stop_signal
        self.latest_metrics: dict[str, float] = {}
        self.last_iteration: int | None = None
        self.info: dict[str, Any] = {}

    def record_metrics(self, iteration: int, **metrics: float) -> None:
        self.last_iteration = iteration
        self.latest_metrics.update(metrics)

    def update_info(self, **info: Any) -> None:
        self.info.update(info)

    def stop_requested(self) -> bool:
        return self.stop_signal is not None and self.stop_signal.is_set()


class WandbDashboard(HeadlessDashboard):
    """
    Weights & Biases dashboard. Metrics are logged against the global
    iteration; info fields go to the run summary.

    Raises:
        ImportError: If wandb is not installed
    """

    def __init__(
        self,
        project: str,
        entity: str | None = None,
        run_config: dict[str, Any] | None = None,
        run_name: str | None = None,
        stop_signal: threading.Event | None = None,
    ):
        super().__init__(stop_signal)
        import wandb

        self.run = wandb.init(project=project, entity=entity, name=run_name, config=run_config)
        logger.info(f"W&B logging enabled: {self.run.url}")

    def record_metrics(self, iteration: int, **metrics: float) -> None:
        super().record_metrics(iteration, **metrics)
        self.run.log(dict(metrics), step=iteration)

    def update_info(self, **info: Any) -> None:
        super().update_info(**info)
        self.run.summary.update(info)

    def close(self) -> None:
        self.run.finish()


def create_dashboard(
    logging_config: dict[str, Any],
    run_config: dict[str, Any] | None = None,
    stop_signal: threading.Event | None = None,
) -> MetricsDashboard:
    """
    Create the dashboard selected by the logging.wandb config section.

    Falls back to the headless dashboard if wandb is disabled, missing, or
    fails to initialize.
    """
    wandb_config = dict(logging_config.get("wandb") or {})
    if not wandb_config.get("enabled", False):
        return HeadlessDashboard(stop_signal)

    try:
        return WandbDashboard(
            project=wandb_config.get("project", "nanogrid-vae"),
            entity=wandb_config.get("entity"),
            run_config=run_config,
            run_name=wandb_config.get("run_name"),
            stop_signal=stop_signal,
        )
    except ImportError:
        logger.warning("wandb not installed, disabling W&B logging")
    except Exception as e:
        logger.warning(f"Failed to initialize wandb: {e}")
    return HeadlessDashboard(stop_signal)


# =============================================================================
# Monitor state
# =============================================================================


@dataclass
class MonitorState:
    """
    Latest losses, counters and output locations of one training run.

    console_update_counter counts down from console_update_iterations; a
    console/CSV record is emitted when it reaches zero.
    """

    name: str
    dashboard: MetricsDashboard
    training_csv_file: Path
    validation_csv_file: Path
    console_update_iterations: int = 25
    console_update_counter: int | None = None
    losses: LossSet | None = None
    validation_losses: LossSet | None = None
    epoch: int = 0
    iteration: int = 0

    def __post_init__(self):
        if self.console_update_iterations < 1:
            raise ValueError(
                f"console_update_iterations must be >= 1, got {self.console_update_iterations}"
            )
        if self.console_update_counter is None:
            self.console_update_counter = self.console_update_iterations


def create_monitor(
    output_dir: str | Path,
    dashboard: MetricsDashboard,
    console_update_iterations: int = 25,
    name: str = "Training Progress",
) -> MonitorState:
    """Monitor writing training.csv and validation.csv into output_dir."""
    output_dir = Path(output_dir)
    return MonitorState(
        name=name,
        dashboard=dashboard,
        training_csv_file=output_dir / TRAINING_CSV_FILENAME,
        validation_csv_file=output_dir / VALIDATION_CSV_FILENAME,
        console_update_iterations=console_update_iterations,
    )


def format_csv_record(
    epoch: int,
    iteration: int,
    losses: LossSet,
    timestamp: datetime | None = None,
) -> str:
    """One CSV line: timestamp, epoch, iteration, total, recon, kl."""
    timestamp = timestamp or datetime.now()
    return (
        f"{timestamp.strftime(TIMESTAMP_FORMAT)}, {epoch:d}, {iteration:d}, "
        f"{losses.total_loss.item():f}, {losses.recon_loss.item():f}, {losses.kl_loss.item():f}\n"
    )


def append_csv_record(path: str | Path, record: str) -> None:
    """
    Append one record, opening and closing the file around the write.

    Raises:
        ResourceWriteError: If the file cannot be opened or written
    """
    path = Path(path)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "a") as f:
            f.write(record)
    except OSError as e:
        raise ResourceWriteError(path, e) from e


def _emit(path: Path, record: str, label: str) -> None:
    logger.info(f"{label}: {record.rstrip()}")
    try:
        append_csv_record(path, record)
    except ResourceWriteError as e:
        logger.warning(f"Could not record {label.lower()} losses: {e}")


def update_monitor(state: MonitorState, losses: LossSet, params: TrainingParams) -> MonitorState:
    """
    Record the losses of one training iteration.

    Args:
        state: Current monitor state
        losses: Losses of the iteration just completed
        params: Training params (epoch, iteration, kl_loss_factor are read)

    Returns:
        The updated monitor state
    """
    loss_values = losses.to_dict()
    state.dashboard.record_metrics(
        params.iteration,
        **loss_values,
        kl_loss_factor=params.kl_loss_factor,
    )
    state.dashboard.update_info(
        epoch=params.epoch,
        iteration=params.iteration,
        total_loss=loss_values["total_loss"],
    )

    counter = state.console_update_counter - 1
    if counter <= 0:
        counter = state.console_update_iterations
        record = format_csv_record(params.epoch, params.iteration, losses)
        _emit(state.training_csv_file, record, "Training")

    return dataclasses.replace(
        state,
        losses=losses,
        epoch=params.epoch,
        iteration=params.iteration,
        console_update_counter=counter,
    )


def record_validation(state: MonitorState, losses: LossSet) -> MonitorState:
    """
    Record the losses of one validation pass at the current epoch/iteration.

    Returns:
        The updated monitor state
    """
    loss_values = losses.to_dict()
    state.dashboard.record_metrics(
        state.iteration,
        **{f"val_{key}": value for key, value in loss_values.items()},
    )

    record = format_csv_record(state.epoch, state.iteration, losses)
    _emit(state.validation_csv_file, record, "Validation")

    return dataclasses.replace(state, validation_losses=losses)
